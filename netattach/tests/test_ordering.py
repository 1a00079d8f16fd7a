"""Tests for default/parent ordering correction."""

import pytest

from netattach.errors import ConfigurationError
from netattach.identity import resolve_identities
from netattach.ordering import attach_sort_key, correct_order
from netattach.planner import plan_interface_changes
from netattach.schemas import rank_orders


def _plan(current, desired, trunk=False):
    current_keyed = resolve_identities(rank_orders(current))
    desired_keyed = resolve_identities(rank_orders(desired))
    diff = plan_interface_changes(current_keyed, desired_keyed)
    return current_keyed, correct_order(current_keyed, desired_keyed, diff, trunk=trunk)


def _apply(current_keyed, plan):
    """Resulting attachment order when the plan runs against ``current``."""
    detached = set(plan.detach_keys)
    kept = [key for key, _ in sorted(current_keyed.items(), key=lambda i: i[1].order) if key not in detached]
    return kept + plan.attach_keys


class TestScenarios:
    def test_new_default_already_attached_second(self, subnet):
        """S2 becomes default: S1 leaves, S2 stays in place, S3 is added after it."""
        current, plan = _plan(
            [subnet("S1", default=True, port_id="p1"), subnet("S2", port_id="p2")],
            [subnet("S2", default=True), subnet("S3")],
        )

        assert plan.default_key == "S2"
        assert plan.detach_keys == ["S1"]
        assert plan.attach_keys == ["S3"]
        assert _apply(current, plan) == ["S2", "S3"]

    def test_first_interface_on_empty_instance(self, subnet):
        _, plan = _plan([], [subnet("S1", default=True)])

        assert plan.detach_keys == []
        assert plan.attach_keys == ["S1"]


class TestDefaultFirst:
    def test_unchanged_default_needs_nothing(self, subnet):
        _, plan = _plan(
            [subnet("S1", default=True), subnet("S2")],
            [subnet("S1", default=True), subnet("S2")],
        )
        assert plan.is_empty

    def test_default_appended_when_not_attached(self, subnet):
        current, plan = _plan(
            [subnet("S1", default=True), subnet("S2")],
            [subnet("S3", default=True), subnet("S2")],
        )

        # Everything currently attached has to make room
        assert plan.detach_keys == ["S2", "S1"]
        assert plan.attach_keys == ["S3", "S2"]
        assert plan.reattach_keys == {"S2"}
        assert _apply(current, plan) == ["S3", "S2"]

    def test_survivors_ahead_of_default_are_reattached(self, subnet):
        current, plan = _plan(
            [subnet("S1", default=True), subnet("S2"), subnet("S3")],
            [subnet("S3", default=True), subnet("S1"), subnet("S2")],
        )

        assert plan.detach_keys == ["S2", "S1"]
        assert plan.attach_keys == ["S1", "S2"]
        assert "S3" not in plan.detach_keys + plan.attach_keys
        assert _apply(current, plan) == ["S3", "S1", "S2"]

    def test_interfaces_after_default_stay_attached(self, subnet):
        current, plan = _plan(
            [subnet("S1", default=True), subnet("S2"), subnet("S3")],
            [subnet("S2", default=True), subnet("S3")],
        )

        assert plan.detach_keys == ["S1"]
        assert plan.attach_keys == []
        assert _apply(current, plan) == ["S2", "S3"]

    def test_attach_sort_puts_default_before_lower_order(self, subnet):
        _, plan = _plan([], [subnet("S2"), subnet("S4"), subnet("S1", default=True)])

        assert plan.attach_keys == ["S1", "S2", "S4"]

    def test_attach_sort_key(self, subnet):
        primary = subnet("S1", default=True, order=5)
        other = subnet("S2", order=1)
        assert attach_sort_key(primary) < attach_sort_key(other)


class TestTrunk:
    def test_changing_parent_is_configuration_error(self, subnet):
        with pytest.raises(ConfigurationError, match="trunk"):
            _plan(
                [subnet("P", parent=True, port_id="p1"), subnet("A", port_id="p2")],
                [subnet("Q", parent=True), subnet("A")],
                trunk=True,
            )

    def test_sub_port_changes_leave_parent_alone(self, subnet):
        _, plan = _plan(
            [subnet("P", parent=True), subnet("A"), subnet("B")],
            [subnet("P", parent=True), subnet("B"), subnet("C")],
            trunk=True,
        )

        assert plan.detach_keys == ["A"]
        assert plan.attach_keys == ["C"]

    def test_parent_detach_allowed_outside_trunk_mode(self, subnet):
        _, plan = _plan(
            [subnet("P", parent=True), subnet("A")],
            [subnet("Q", parent=True), subnet("A")],
        )
        assert "P" in plan.detach_keys
