from __future__ import annotations

import pytest
from flow_builders import node

from flowpath.flow_core.errors import (
    FlowNotFoundError,
    NoLiveFlowError,
    SessionCompletedError,
    SessionNotFoundError,
)
from flowpath.flow_core.ir import MultiPathBlock, PathCase

OWNER = "owner-1"


@pytest.fixture
def live_flow(lifecycle):
    flow = lifecycle.create_flow(OWNER, "Onboarding")
    flow.nodes = [
        node("welcome", "route"),
        node("engineering", "wrap-up"),
        node("general", "wrap-up"),
        node("wrap-up", "end"),
    ]
    flow.logic_blocks = [
        MultiPathBlock(
            id="route",
            discriminator="role",
            cases=[PathCase(value="engineer", target="engineering")],
            default="general",
        )
    ]
    lifecycle.save_graph(flow)
    assert lifecycle.activate(flow.id).ok
    return lifecycle.get_flow(flow.id)


def test_start_requires_a_live_flow(traversals, lifecycle):
    lifecycle.create_flow(OWNER, "Draft only")
    with pytest.raises(NoLiveFlowError):
        traversals.start(OWNER, "visitor")


def test_start_positions_on_first_node(traversals, live_flow):
    state = traversals.start(OWNER, "visitor")
    assert state.flow_id == live_flow.id
    assert state.current_node_id == "welcome"
    assert [step.node_id for step in state.path] == ["welcome"]
    assert not state.is_complete


def test_full_walk(traversals, live_flow):
    state = traversals.start(OWNER, "visitor")
    state = traversals.submit(state.session_id, {"role": "engineer"})
    assert state.current_node_id == "engineering"
    state = traversals.submit(state.session_id, {"stack": "python"})
    assert state.current_node_id == "wrap-up"
    state = traversals.submit(state.session_id, {})
    assert state.is_complete
    assert state.current_node_id is None
    assert state.completed_at is not None
    assert [s.node_id for s in state.path] == ["welcome", "engineering", "wrap-up"]
    assert state.responses == {"role": "engineer", "stack": "python"}

    with pytest.raises(SessionCompletedError):
        traversals.submit(state.session_id, {"late": True})


def test_sessions_are_isolated_per_user(traversals, live_flow):
    alice = traversals.start(OWNER, "alice")
    bob = traversals.start(OWNER, "bob")
    traversals.submit(alice.session_id, {"role": "engineer"})
    traversals.submit(bob.session_id, {"role": "sales"})
    assert traversals.get_session(alice.session_id).current_node_id == "engineering"
    assert traversals.get_session(bob.session_id).current_node_id == "general"
    assert traversals.get_session(bob.session_id).responses == {"role": "sales"}


def test_restart_creates_a_fresh_session(traversals, live_flow):
    state = traversals.start(OWNER, "visitor")
    traversals.submit(state.session_id, {"role": "engineer"})
    fresh = traversals.restart(state.session_id)
    assert fresh.session_id != state.session_id
    assert fresh.user_id == "visitor"
    assert fresh.current_node_id == "welcome"
    assert fresh.responses == {}


def test_unknown_session(traversals):
    with pytest.raises(SessionNotFoundError):
        traversals.submit("missing", {})


def test_analytics(traversals, live_flow):
    done = traversals.start(OWNER, "alice")
    for answers in ({"role": "engineer"}, {}, {}):
        traversals.submit(done.session_id, answers)
    traversals.start(OWNER, "bob")

    stats = traversals.analytics(live_flow.id)
    assert stats.total_sessions == 2
    assert stats.completed_sessions == 1
    assert stats.completion_rate == 50.0
    assert stats.node_visits == {"welcome": 2, "engineering": 1, "wrap-up": 1}

    [finished] = stats.sessions
    assert finished.session_id == done.session_id
    assert finished.user_id == "alice"
    assert finished.duration_seconds >= 0
    assert finished.responses == {"role": "engineer"}
    assert [(p["node_title"], p["order_index"]) for p in finished.path] == [
        ("Welcome", 0),
        ("Engineering", 1),
        ("Wrap-Up", 2),
    ]
    data = stats.to_dict()
    assert data["completion_rate"] == 50.0
    assert data["sessions"][0]["completed_at"] >= data["sessions"][0]["started_at"]


def test_completion_rate_is_a_rounded_percentage(traversals, live_flow):
    done = traversals.start(OWNER, "alice")
    for answers in ({"role": "engineer"}, {}, {}):
        traversals.submit(done.session_id, answers)
    traversals.start(OWNER, "bob")
    traversals.start(OWNER, "carol")
    assert traversals.analytics(live_flow.id).completion_rate == 33.33


def test_has_completed(traversals, live_flow):
    state = traversals.start(OWNER, "visitor")
    assert not traversals.has_completed(live_flow.id, "visitor")
    for answers in ({"role": "sales"}, {}, {}):
        state = traversals.submit(state.session_id, answers)
    assert state.is_complete
    assert traversals.has_completed(live_flow.id, "visitor")
    assert not traversals.has_completed(live_flow.id, "someone-else")
    with pytest.raises(FlowNotFoundError):
        traversals.has_completed("missing", "visitor")


def test_restart_drops_the_users_completed_sessions(traversals, live_flow):
    mine = traversals.start(OWNER, "visitor")
    for answers in ({"role": "engineer"}, {}, {}):
        traversals.submit(mine.session_id, answers)
    theirs = traversals.start(OWNER, "other")
    for answers in ({"role": "engineer"}, {}, {}):
        traversals.submit(theirs.session_id, answers)

    fresh = traversals.restart(mine.session_id)

    assert not traversals.has_completed(live_flow.id, "visitor")
    assert traversals.has_completed(live_flow.id, "other")
    with pytest.raises(SessionNotFoundError):
        traversals.get_session(mine.session_id)
    stats = traversals.analytics(live_flow.id)
    assert stats.total_sessions == 2
    assert stats.completed_sessions == 1
    assert {s.user_id for s in stats.sessions} == {"other"}
    assert traversals.get_session(fresh.session_id).current_node_id == "welcome"
