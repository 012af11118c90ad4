"""Tests for conditional edges."""

from enum import Enum

import pytest

from researchgraph.core.node import END, GraphValidationError
from researchgraph.core.router import ConditionalEdge, RouterContractViolation


class Branch(str, Enum):
    LEFT = "left"
    RIGHT = "right"


class TestBuild:
    def test_list_targets_map_to_themselves(self):
        edge = ConditionalEdge.build("r", lambda s: [], ["a", "b"])
        assert dict(edge.targets) == {"a": "a", "b": "b"}

    def test_mapping_targets(self):
        edge = ConditionalEdge.build("r", lambda s: "error", {"error": END, "ok": "next"})
        assert edge.possible_targets == {END, "next"}

    def test_enum_class_targets(self):
        edge = ConditionalEdge.build("r", lambda s: Branch.LEFT, Branch)
        assert edge.possible_targets == {"left", "right"}

    def test_empty_targets_rejected(self):
        with pytest.raises(GraphValidationError, match="no targets"):
            ConditionalEdge.build("r", lambda s: [], [])

    @pytest.mark.parametrize("targets", [[1, "a"], {"ok": 3}])
    def test_non_string_targets_rejected(self, targets):
        with pytest.raises(GraphValidationError, match="not a string"):
            ConditionalEdge.build("r", lambda s: "ok", targets)


class TestRoute:
    def test_single_label(self):
        edge = ConditionalEdge.build("r", lambda s: "ok", {"error": END, "ok": "next"})
        assert edge.route({}) == ("next",)

    def test_multiple_labels_keep_order(self):
        edge = ConditionalEdge.build("r", lambda s: ["c", "a"], ["a", "b", "c"])
        assert edge.route({}) == ("c", "a")

    def test_duplicates_removed(self):
        edge = ConditionalEdge.build("r", lambda s: ["a", "a"], ["a"])
        assert edge.route({}) == ("a",)

    def test_empty_and_none_mean_no_successors(self):
        assert ConditionalEdge.build("r", lambda s: [], ["a"]).route({}) == ()
        assert ConditionalEdge.build("r", lambda s: None, ["a"]).route({}) == ()

    def test_enum_members_accepted(self):
        edge = ConditionalEdge.build("r", lambda s: [Branch.RIGHT], Branch)
        assert edge.route({}) == ("right",)

    def test_router_reads_state(self):
        edge = ConditionalEdge.build("r", lambda s: s["pick"], ["a", "b"])
        assert edge.route({"pick": "b"}) == ("b",)

    def test_undeclared_target_violates_contract(self):
        edge = ConditionalEdge.build("r", lambda s: ["a", "rogue"], ["a", "b"])
        with pytest.raises(RouterContractViolation, match="'rogue'"):
            edge.route({})

    def test_non_string_target_violates_contract(self):
        edge = ConditionalEdge.build("r", lambda s: [1], ["a"])
        with pytest.raises(RouterContractViolation):
            edge.route({})
