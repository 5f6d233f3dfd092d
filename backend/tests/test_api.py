"""HTTP API over in-memory stores."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from flowpath.core.app_context import AppContext
from flowpath.main import create_app

OWNER = "owner-1"
OWNER_HEADERS = {"X-User-Id": OWNER, "X-Access-Level": "customer"}
ADMIN_HEADERS = {"X-User-Id": "ops", "X-Access-Level": "admin"}
VISITOR_HEADERS = {"X-User-Id": "visitor-1"}

GRAPH = {
    "entry": "welcome",
    "nodes": [
        {
            "id": "welcome",
            "title": "Welcome",
            "components": [{"id": "role", "type": "role-selector", "config": {"key": "role"}}],
            "connections": ["route"],
        },
        {"id": "engineering", "title": "Engineering", "connections": ["end"]},
        {"id": "general", "title": "General", "connections": ["end"]},
    ],
    "logic_blocks": [
        {
            "id": "route",
            "type": "multi-path",
            "discriminator": "role",
            "cases": [{"value": "engineer", "target": "engineering"}],
            "default": "general",
        }
    ],
}


@pytest.fixture
def client(lifecycle, membership_service, traversals):
    ctx = AppContext(flows=lifecycle, memberships=membership_service, traversals=traversals)
    with TestClient(create_app(ctx)) as test_client:
        yield test_client


@pytest.fixture
def flow_id(client) -> str:
    response = client.post(
        "/api/flows", json={"owner_id": OWNER, "title": "Onboarding"}, headers=OWNER_HEADERS
    )
    assert response.status_code == 201
    return response.json()["id"]


@pytest.fixture
def live_flow_id(client, flow_id) -> str:
    assert client.put(f"/api/flows/{flow_id}/graph", json=GRAPH, headers=OWNER_HEADERS).status_code == 200
    response = client.post(f"/api/flows/{flow_id}/activate", headers=OWNER_HEADERS)
    assert response.status_code == 200
    assert response.json()["status"] == "Live"
    return flow_id


def test_health_echoes_request_id(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.status_code == 200
    assert response.text == "ok"
    assert response.headers["X-Request-ID"] == "req-123"


def test_create_and_list_flows(client, flow_id):
    response = client.get("/api/flows", params={"owner_id": OWNER}, headers=OWNER_HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert [f["id"] for f in body] == [flow_id]
    assert body[0]["status"] == "Draft"
    assert body[0]["nodes"] == []


def test_free_tier_quota_is_403(client, flow_id):
    response = client.post(
        "/api/flows", json={"owner_id": OWNER, "title": "Second"}, headers=OWNER_HEADERS
    )
    assert response.status_code == 403
    detail = response.json()["detail"]
    assert detail["resource"] == "flows"
    assert detail["limit"] == 1


def test_other_customers_cannot_touch_the_flow(client, flow_id):
    stranger = {"X-User-Id": "owner-2", "X-Access-Level": "customer"}
    assert client.get(f"/api/flows/{flow_id}", headers=stranger).status_code == 403
    assert client.get(f"/api/flows/{flow_id}", headers=ADMIN_HEADERS).status_code == 200
    assert client.get(f"/api/flows/{flow_id}").status_code == 403


def test_unknown_flow_is_404(client):
    assert client.get("/api/flows/nope", headers=ADMIN_HEADERS).status_code == 404


def test_activation_of_invalid_flow_is_422(client, flow_id):
    response = client.post(f"/api/flows/{flow_id}/activate", headers=OWNER_HEADERS)
    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["ok"] is False
    assert detail["violations"][0]["kind"] == "dangling_reference"


def test_validate_endpoint(client, flow_id):
    client.put(f"/api/flows/{flow_id}/graph", json=GRAPH, headers=OWNER_HEADERS)
    response = client.get(f"/api/flows/{flow_id}/validate", headers=OWNER_HEADERS)
    assert response.json() == {"ok": True, "violations": []}


def test_graph_edit_with_duplicate_ids_is_409(client, flow_id):
    graph = {"nodes": [{"id": "a", "connections": ["end"]}, {"id": "a"}]}
    response = client.put(f"/api/flows/{flow_id}/graph", json=graph, headers=OWNER_HEADERS)
    assert response.status_code == 409


def test_breaking_a_live_flow_is_422(client, live_flow_id):
    broken = {**GRAPH, "nodes": [{**GRAPH["nodes"][0], "connections": ["ghost"]}, *GRAPH["nodes"][1:]]}
    response = client.put(f"/api/flows/{live_flow_id}/graph", json=broken, headers=OWNER_HEADERS)
    assert response.status_code == 422
    assert response.json()["detail"]["violations"][0]["kind"] == "dangling_reference"


def test_lifecycle_endpoints(client, live_flow_id):
    assert client.post(f"/api/flows/{live_flow_id}/deactivate", headers=OWNER_HEADERS).json()["status"] == "Draft"
    assert client.post(f"/api/flows/{live_flow_id}/archive", headers=OWNER_HEADERS).json()["status"] == "Archived"
    assert client.post(f"/api/flows/{live_flow_id}/activate", headers=OWNER_HEADERS).status_code == 409
    assert client.post(f"/api/flows/{live_flow_id}/restore", headers=OWNER_HEADERS).json()["status"] == "Draft"

    response = client.patch(f"/api/flows/{live_flow_id}", json={"title": "Renamed"}, headers=OWNER_HEADERS)
    assert response.json()["title"] == "Renamed"

    assert client.delete(f"/api/flows/{live_flow_id}", headers=OWNER_HEADERS).status_code == 204
    assert client.get(f"/api/flows/{live_flow_id}", headers=OWNER_HEADERS).status_code == 404


def test_traversal_walk(client, live_flow_id):
    live = client.get(f"/api/experiences/{OWNER}/flow")
    assert live.json()["id"] == live_flow_id

    started = client.post(f"/api/experiences/{OWNER}/traversals", headers=VISITOR_HEADERS)
    assert started.status_code == 201
    session = started.json()
    assert session["current_node"]["id"] == "welcome"

    session_id = session["session_id"]
    step = client.post(
        f"/api/traversals/{session_id}/responses",
        json={"answers": {"role": "engineer"}},
        headers=VISITOR_HEADERS,
    ).json()
    assert step["current_node"]["id"] == "engineering"
    assert step["path"] == ["welcome", "engineering"]

    done = client.post(
        f"/api/traversals/{session_id}/responses", json={"answers": {}}, headers=VISITOR_HEADERS
    ).json()
    assert done["is_complete"] is True
    assert done["current_node"] is None

    again = client.post(
        f"/api/traversals/{session_id}/responses", json={"answers": {}}, headers=VISITOR_HEADERS
    )
    assert again.status_code == 409

    completion = client.get(f"/api/flows/{live_flow_id}/completion", headers=VISITOR_HEADERS)
    assert completion.json() == {"flow_id": live_flow_id, "user_id": "visitor-1", "has_completed": True}

    stats = client.get(f"/api/flows/{live_flow_id}/analytics", headers=OWNER_HEADERS).json()
    assert stats["completion_rate"] == 100.0
    [finished] = stats["sessions"]
    assert finished["session_id"] == session_id
    assert [(p["node_id"], p["node_title"]) for p in finished["path"]] == [
        ("welcome", "Welcome"),
        ("engineering", "Engineering"),
    ]
    assert finished["responses"] == {"role": "engineer"}

    restarted = client.post(f"/api/traversals/{session_id}/restart", headers=VISITOR_HEADERS)
    assert restarted.status_code == 201
    assert restarted.json()["current_node"]["id"] == "welcome"

    # Restarting drops the finished session
    completion = client.get(f"/api/flows/{live_flow_id}/completion", headers=VISITOR_HEADERS)
    assert completion.json()["has_completed"] is False
    stats = client.get(f"/api/flows/{live_flow_id}/analytics", headers=OWNER_HEADERS).json()
    assert stats["total_sessions"] == 1
    assert stats["completed_sessions"] == 0
    assert stats["sessions"] == []


def test_completion_of_another_user_needs_admin(client, live_flow_id):
    url = f"/api/flows/{live_flow_id}/completion?user_id=visitor-2"
    assert client.get(url, headers=VISITOR_HEADERS).status_code == 403
    response = client.get(url, headers=ADMIN_HEADERS)
    assert response.status_code == 200
    assert response.json()["has_completed"] is False
    assert client.get(f"/api/flows/{live_flow_id}/completion").status_code == 401
    assert client.get("/api/flows/missing/completion", headers=VISITOR_HEADERS).status_code == 404


def test_traversal_needs_identity_and_live_flow(client, flow_id):
    assert client.post(f"/api/experiences/{OWNER}/traversals").status_code == 401
    assert client.post(f"/api/experiences/{OWNER}/traversals", headers=VISITOR_HEADERS).status_code == 404
    assert client.get(f"/api/experiences/{OWNER}/flow").status_code == 404


def test_sessions_belong_to_their_user(client, live_flow_id):
    session_id = client.post(
        f"/api/experiences/{OWNER}/traversals", headers=VISITOR_HEADERS
    ).json()["session_id"]
    other = {"X-User-Id": "visitor-2"}
    response = client.post(
        f"/api/traversals/{session_id}/responses", json={"answers": {}}, headers=other
    )
    assert response.status_code == 403
    assert client.get(f"/api/traversals/{session_id}", headers=VISITOR_HEADERS).status_code == 200


def test_membership_endpoints(client):
    response = client.get(f"/api/memberships/{OWNER}", headers=OWNER_HEADERS)
    assert response.status_code == 200
    assert response.json()["tier"] == "free"
    assert response.json()["max_flows"] == 1

    update = {"active": True, "payment_id": "pay_123", "plan_type": "monthly"}
    assert client.put(f"/api/memberships/{OWNER}", json=update, headers=OWNER_HEADERS).status_code == 403

    response = client.put(f"/api/memberships/{OWNER}", json=update, headers=ADMIN_HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert body["tier"] == "active"
    assert body["max_flows"] == 3
    assert body["max_nodes_per_flow"] == 30
