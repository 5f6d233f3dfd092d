"""Next-step resolution across plain nodes and the four logic block kinds."""

from __future__ import annotations

import pytest
from flow_builders import make_flow, node

from flowpath.flow_core.engine import FlowRouter, ab_bucket, compute_score, first_step, next_step
from flowpath.flow_core.errors import (
    MissingIdentityError,
    NoDefaultBranchError,
    RoutingLoopError,
    UnknownNodeError,
)
from flowpath.flow_core.ir import (
    ABArm,
    ABTestBlock,
    Condition,
    IfElseBlock,
    MultiPathBlock,
    PathCase,
    ScoreBucket,
    ScoreThresholdBlock,
)


def test_plain_node_without_logic_block_follows_first_connection():
    flow = make_flow([node("a", "b", "c"), node("b"), node("c")])
    result = next_step(flow, "a", {})
    assert result.node_id == "b"
    assert not result.is_end
    assert result.evaluated_blocks == []


def test_node_with_several_connections_routes_through_its_logic_block():
    block = MultiPathBlock(
        id="route",
        discriminator="role",
        cases=[PathCase(value="eng", target="eng")],
        default="general",
    )
    flow = make_flow([node("start", "general", "route"), node("eng"), node("general")], [block])
    result = next_step(flow, "start", {"role": "eng"})
    assert result.node_id == "eng"
    assert result.evaluated_blocks == ["route"]
    assert next_step(flow, "start", {"role": "sales"}).node_id == "general"


def test_node_without_connections_ends_the_flow():
    flow = make_flow([node("a")])
    assert next_step(flow, "a", {}).is_end


def test_first_step_is_the_entry_node():
    flow = make_flow([node("a", "b"), node("b")], entry="b")
    assert first_step(flow).node_id == "b"
    assert first_step(make_flow([])).is_end


def test_first_step_resolves_a_logic_block_entry():
    gate = IfElseBlock(id="gate", condition="answered(invite)", on_true="b", on_false="a")
    flow = make_flow([node("a"), node("b")], [gate], entry="gate")
    assert first_step(flow).node_id == "a"
    assert first_step(flow, {"invite": "abc"}).node_id == "b"


def test_unknown_current_id():
    with pytest.raises(UnknownNodeError):
        next_step(make_flow([node("a")]), "ghost", {})


class TestIfElse:
    @pytest.fixture
    def flow(self):
        block = IfElseBlock(id="check", condition="plan == pro", on_true="pro", on_false="basic")
        return make_flow([node("start", "check"), node("pro"), node("basic")], [block])

    def test_true_branch(self, flow):
        result = next_step(flow, "start", {"plan": "Pro"})
        assert result.node_id == "pro"
        assert result.evaluated_blocks == ["check"]

    def test_false_branch(self, flow):
        assert next_step(flow, "start", {"plan": "basic"}).node_id == "basic"

    def test_missing_field_takes_false_branch(self, flow):
        assert next_step(flow, "start", {}).node_id == "basic"

    def test_structured_condition(self):
        block = IfElseBlock(
            id="check",
            condition=Condition(fn="greater_or_equal", args={"key": "seats", "value": 10}),
            on_true="end",
            on_false="small",
        )
        flow = make_flow([node("start", "check"), node("small")], [block])
        assert next_step(flow, "start", {"seats": 25}).is_end
        assert next_step(flow, "start", {"seats": 3}).node_id == "small"


class TestMultiPath:
    @pytest.fixture
    def flow(self):
        block = MultiPathBlock(
            id="route",
            discriminator="role",
            cases=[
                PathCase(value="engineer", target="eng"),
                PathCase(value="designer", target="design"),
                PathCase(value="engineer", target="design"),
            ],
            default="general",
        )
        nodes = [node("role", "route"), node("eng"), node("design"), node("general")]
        return make_flow(nodes, [block])

    @pytest.mark.parametrize(
        "answer,expected",
        [
            ("engineer", "eng"),
            ("Designer", "design"),
            ("sales", "general"),
            (None, "general"),
            (["designer", "engineer"], "eng"),
        ],
    )
    def test_routes_by_discriminator(self, flow, answer, expected):
        responses = {} if answer is None else {"role": answer}
        assert next_step(flow, "role", responses).node_id == expected

    def test_no_default_branch(self):
        block = MultiPathBlock(
            id="route", discriminator="role", cases=[PathCase(value="x", target="a")]
        )
        flow = make_flow([node("start", "route"), node("a")], [block])
        with pytest.raises(NoDefaultBranchError) as exc:
            next_step(flow, "start", {"role": "y"})
        assert exc.value.block_id == "route"
        assert exc.value.value == "y"


class TestScoreThreshold:
    @pytest.fixture
    def block(self):
        return ScoreThresholdBlock(
            id="score",
            weights={"experience": 2, "hours": 0.5},
            option_scores={"plan": {"pro": 10, "basic": 2}},
            buckets=[
                ScoreBucket(threshold=20, target="high"),
                ScoreBucket(threshold=0, target="low"),
                ScoreBucket(threshold=10, target="mid"),
            ],
        )

    @pytest.fixture
    def flow(self, block):
        nodes = [node("q", "score"), node("low"), node("mid"), node("high")]
        return make_flow(nodes, [block])

    def test_weighted_sum(self, block):
        responses = {"experience": "3", "hours": 10, "plan": "Pro"}
        assert compute_score(block, responses) == pytest.approx(3 * 2 + 10 * 0.5 + 10)

    def test_absent_fields_contribute_zero(self, block):
        assert compute_score(block, {}) == 0
        assert compute_score(block, {"experience": "lots", "plan": "enterprise"}) == 0

    def test_non_finite_answers_contribute_zero(self, block):
        assert compute_score(block, {"experience": "nan", "hours": "inf"}) == 0
        assert compute_score(block, {"experience": "NaN", "hours": 20}) == pytest.approx(10)

    @pytest.mark.parametrize(
        "experience,expected",
        [(0, "low"), (4, "low"), (5, "mid"), (9.5, "mid"), (10, "high"), (40, "high")],
    )
    def test_greatest_threshold_not_above_score(self, flow, experience, expected):
        assert next_step(flow, "q", {"experience": experience}).node_id == expected

    def test_score_below_every_threshold_takes_lowest_bucket(self, flow):
        assert next_step(flow, "q", {"experience": -50}).node_id == "low"

    def test_raising_the_score_never_lowers_the_bucket(self, flow):
        rank = {"low": 0, "mid": 1, "high": 2}
        previous = -1
        for experience in range(-5, 30):
            current = rank[next_step(flow, "q", {"experience": experience}).node_id]
            assert current >= previous
            previous = current


class TestABTest:
    @pytest.fixture
    def flow(self):
        block = ABTestBlock(
            id="exp", arms=[ABArm(target="a", weight=1), ABArm(target="b", weight=3)]
        )
        return make_flow([node("start", "exp"), node("a"), node("b")], [block], flow_id="ab-flow")

    def test_bucket_is_stable_and_in_range(self):
        point = ab_bucket("ab-flow", "exp", "user-1")
        assert 0 <= point < 1
        assert ab_bucket("ab-flow", "exp", "user-1") == point
        assert ab_bucket("ab-flow", "other-block", "user-1") != point

    def test_same_user_always_gets_the_same_arm(self, flow):
        router = FlowRouter(flow)
        first = router.next_step("start", {}, user_id="user-42").node_id
        for _ in range(20):
            assert router.next_step("start", {"anything": 1}, user_id="user-42").node_id == first

    def test_assignment_follows_weights(self, flow):
        router = FlowRouter(flow)
        users = [f"user-{i}" for i in range(2000)]
        share_b = sum(router.next_step("start", {}, user_id=u).node_id == "b" for u in users) / len(users)
        assert 0.70 < share_b < 0.80

    def test_missing_identity(self, flow):
        with pytest.raises(MissingIdentityError):
            next_step(flow, "start", {})


def test_chained_blocks_are_all_reported():
    gate = IfElseBlock(id="gate", condition="answered(email)", on_true="route", on_false="end")
    route = MultiPathBlock(
        id="route", discriminator="plan", cases=[PathCase(value="pro", target="pro")], default="end"
    )
    flow = make_flow([node("start", "gate"), node("pro")], [gate, route])
    result = next_step(flow, "start", {"email": "a@b.c", "plan": "pro"})
    assert result.node_id == "pro"
    assert result.evaluated_blocks == ["gate", "route"]
    assert next_step(flow, "start", {"email": "a@b.c"}).is_end


def test_cycle_of_logic_blocks_is_bounded():
    ping = IfElseBlock(id="ping", condition=Condition(fn="always"), on_true="pong", on_false="pong")
    pong = IfElseBlock(id="pong", condition=Condition(fn="always"), on_true="ping", on_false="ping")
    flow = make_flow([node("start", "ping")], [ping, pong])
    with pytest.raises(RoutingLoopError) as exc:
        next_step(flow, "start", {})
    assert exc.value.start_id == "start"


def test_routing_is_pure():
    block = IfElseBlock(id="check", condition="plan == pro", on_true="pro", on_false="basic")
    flow = make_flow([node("start", "check"), node("pro"), node("basic")], [block])
    responses = {"plan": "pro"}
    before = flow.model_dump()
    results = {next_step(flow, "start", responses).node_id for _ in range(5)}
    assert results == {"pro"}
    assert responses == {"plan": "pro"}
    assert flow.model_dump() == before
