"""Tests for hierarchy snapshots and scope resolution."""
import time
from dataclasses import dataclass

import pytest

from app.features.permissions.exceptions import HierarchyCycleError, MissingHierarchyError
from app.features.permissions.hierarchy import (
    EmployeeRecord,
    ScopeResolver,
    filter_records,
)
from app.features.permissions.roles import EmployeeStatus, OperationalRole, Scope

from tests.sample_org import SAMPLE_ORG, TENANT_ID, make_snapshot


def _with_changes(**changes):
    """Sample org rows with (role, manager, status) overrides per employee id."""
    rows = []
    for emp_id, tenant_id, role, manager_id, status in SAMPLE_ORG:
        if emp_id in changes:
            override = changes[emp_id]
            manager_id = override.get("manager_id", manager_id)
            status = override.get("status", status)
        rows.append((emp_id, tenant_id, role, manager_id, status))
    return rows


class TestEmployeeRecord:
    def test_from_values(self):
        record = EmployeeRecord.from_values(id="e1", role="CA", manager_id="", status="Active")
        assert record.role is OperationalRole.CA
        assert record.manager_id is None
        assert record.is_active

    def test_unknown_role_has_no_role(self):
        record = EmployeeRecord.from_values(id="e1", role="Intern")
        assert record.role is None

    def test_unknown_status_is_inactive(self):
        record = EmployeeRecord.from_values(id="e1", role="Staff", status="On Leave")
        assert record.status is EmployeeStatus.INACTIVE
        assert not record.is_active

    def test_status_case_is_ignored(self):
        record = EmployeeRecord.from_values(id="e1", role="Staff", status=" active ")
        assert record.status is EmployeeStatus.ACTIVE


class TestSnapshot:
    def test_direct_reports(self, snapshot):
        assert set(snapshot.direct_reports("emp-004")) == {"emp-005", "emp-007"}
        assert snapshot.direct_reports("emp-003") == ()

    def test_require_missing(self, snapshot):
        with pytest.raises(MissingHierarchyError):
            snapshot.require("emp-999")

    def test_contains(self, snapshot):
        assert "emp-001" in snapshot
        assert "emp-999" not in snapshot
        assert len(snapshot) == len(SAMPLE_ORG)


class TestTeamVisibility:
    """Team scope: the requester plus every active report below them."""

    def test_leaf_sees_only_self(self, snapshot):
        assert ScopeResolver(snapshot).visible_user_ids("emp-003") == {"emp-003"}

    def test_manager_sees_transitive_reports(self, snapshot):
        visible = ScopeResolver(snapshot).visible_user_ids("emp-004")
        assert visible == {"emp-004", "emp-005", "emp-006"}

    def test_inactive_report_and_their_subtree_are_excluded(self, snapshot):
        visible = ScopeResolver(snapshot).visible_user_ids("emp-004")
        assert "emp-007" not in visible
        assert "emp-008" not in visible

    def test_root_sees_whole_active_tree(self, snapshot):
        visible = ScopeResolver(snapshot).visible_user_ids("emp-001")
        assert visible == {"emp-001", "emp-002", "emp-003", "emp-004", "emp-005", "emp-006"}

    def test_deactivation_removes_employee_from_manager_view(self):
        before = ScopeResolver(make_snapshot()).visible_user_ids("emp-004")
        assert "emp-005" in before

        after = ScopeResolver(
            make_snapshot(_with_changes(**{"emp-005": {"status": "Inactive"}}))
        ).visible_user_ids("emp-004")
        assert "emp-005" not in after
        assert after == {"emp-004"}

    def test_unknown_requester_sees_only_self(self, snapshot):
        assert ScopeResolver(snapshot).visible_user_ids("emp-999") == {"emp-999"}

    def test_inactive_requester_sees_only_self(self, snapshot):
        assert ScopeResolver(snapshot).visible_user_ids("emp-007") == {"emp-007"}

    def test_deep_chain(self):
        """A 50k-long reporting line resolves in linear time."""
        depth = 50_000
        rows = [("n0", TENANT_ID, "Partner", None, "Active")]
        rows += [(f"n{i}", TENANT_ID, "Staff", f"n{i - 1}", "Active") for i in range(1, depth)]
        resolver = ScopeResolver(make_snapshot(rows))

        started = time.perf_counter()
        visible = resolver.visible_user_ids("n0")
        chain = resolver.manager_chain(f"n{depth - 1}")
        elapsed = time.perf_counter() - started

        assert len(visible) == depth
        assert len(chain) == depth - 1
        assert resolver.team_levels("n0")[f"n{depth - 1}"] == depth - 1
        assert elapsed < 2.0

    def test_result_is_immutable(self, snapshot):
        visible = ScopeResolver(snapshot).visible_user_ids("emp-004")
        assert isinstance(visible, frozenset)

    def test_other_tenant_reports_are_ignored(self):
        rows = SAMPLE_ORG + [("emp-201", "tenant-2", "Staff", "emp-004", "Active")]
        visible = ScopeResolver(make_snapshot(rows)).visible_user_ids("emp-004")
        assert "emp-201" not in visible


class TestMissingReferences:
    """A manager id that does not resolve restricts the requester to self."""

    def test_unresolved_manager_restricts_to_self(self):
        rows = [
            ("a", TENANT_ID, "Manager", "ghost", "Active"),
            ("b", TENANT_ID, "Staff", "a", "Active"),
        ]
        resolver = ScopeResolver(make_snapshot(rows))
        assert resolver.visible_user_ids("a") == {"a"}
        assert resolver.team_levels("a") == {"a": 0}

    def test_unresolved_manager_higher_up(self):
        rows = [
            ("a", TENANT_ID, "Partner", "ghost", "Active"),
            ("b", TENANT_ID, "Manager", "a", "Active"),
            ("c", TENANT_ID, "Staff", "b", "Active"),
        ]
        assert ScopeResolver(make_snapshot(rows)).visible_user_ids("b") == {"b"}

    def test_unresolved_manager_scope_team(self):
        rows = [
            ("a", TENANT_ID, "Manager", "ghost", "Active"),
            ("b", TENANT_ID, "Staff", "a", "Active"),
        ]
        resolver = ScopeResolver(make_snapshot(rows))
        assert resolver.visible_user_ids_for_scope("a", Scope.TEAM) == {"a"}

    def test_ancestry_check_raises(self):
        rows = [("a", TENANT_ID, "Manager", "ghost", "Active")]
        snapshot = make_snapshot(rows)
        with pytest.raises(MissingHierarchyError) as exc_info:
            ScopeResolver(snapshot)._check_ancestry(snapshot.require("a"))
        assert exc_info.value.employee_id == "ghost"
        assert exc_info.value.referenced_by == "a"

    def test_intact_org_is_unaffected(self, snapshot):
        assert ScopeResolver(snapshot).visible_user_ids("emp-005") == {"emp-005", "emp-006"}


class TestTeamLevels:
    """Team members carry their depth below the requester."""

    def test_levels(self, snapshot):
        levels = ScopeResolver(snapshot).team_levels("emp-004")
        assert levels == {"emp-004": 0, "emp-005": 1, "emp-006": 2}

    def test_root_levels(self, snapshot):
        levels = ScopeResolver(snapshot).team_levels("emp-001")
        assert levels["emp-002"] == 1
        assert levels["emp-004"] == 1
        assert levels["emp-003"] == 2
        assert levels["emp-006"] == 3

    def test_leaf(self, snapshot):
        assert ScopeResolver(snapshot).team_levels("emp-003") == {"emp-003": 0}

    def test_matches_visible_ids(self, snapshot):
        resolver = ScopeResolver(snapshot)
        for emp_id, *_ in SAMPLE_ORG:
            assert set(resolver.team_levels(emp_id)) == resolver.visible_user_ids(emp_id)


class TestCycles:
    """Cycles in the reports-to graph are detected and fail closed."""

    def test_cycle_restricts_to_self(self):
        rows = [
            ("a", TENANT_ID, "Manager", "c", "Active"),
            ("b", TENANT_ID, "Staff", "a", "Active"),
            ("c", TENANT_ID, "Staff", "b", "Active"),
        ]
        resolver = ScopeResolver(make_snapshot(rows))
        assert resolver.visible_user_ids("a") == {"a"}

    def test_walk_raises_on_cycle(self):
        rows = [
            ("a", TENANT_ID, "Manager", "b", "Active"),
            ("b", TENANT_ID, "Staff", "a", "Active"),
        ]
        snapshot = make_snapshot(rows)
        with pytest.raises(HierarchyCycleError) as exc_info:
            ScopeResolver(snapshot)._walk_team(snapshot.require("a"))
        assert exc_info.value.path == ["a", "b", "a"]

    def test_self_managed_employee(self):
        rows = [("a", TENANT_ID, "Manager", "a", "Active")]
        assert ScopeResolver(make_snapshot(rows)).visible_user_ids("a") == {"a"}

    def test_manager_chain_cycle_raises(self):
        rows = [
            ("a", TENANT_ID, "Manager", "b", "Active"),
            ("b", TENANT_ID, "Staff", "a", "Active"),
        ]
        with pytest.raises(HierarchyCycleError):
            ScopeResolver(make_snapshot(rows)).manager_chain("a")


class TestScopeResolution:
    """Granted scopes resolve to sets of owner ids."""

    def test_own(self, snapshot):
        assert ScopeResolver(snapshot).visible_user_ids_for_scope("emp-004", Scope.OWN) == {"emp-004"}

    def test_team(self, snapshot):
        visible = ScopeResolver(snapshot).visible_user_ids_for_scope("emp-004", Scope.TEAM)
        assert visible == {"emp-004", "emp-005", "emp-006"}

    def test_all_stays_within_tenant(self, snapshot):
        visible = ScopeResolver(snapshot).visible_user_ids_for_scope("emp-003", "all")
        assert "emp-101" not in visible
        assert {"emp-001", "emp-007", "emp-008"} <= visible

    def test_denied(self, snapshot):
        assert ScopeResolver(snapshot).visible_user_ids_for_scope("emp-004", None) == frozenset()


class TestManagerChain:
    def test_chain_nearest_first(self, snapshot):
        assert ScopeResolver(snapshot).manager_chain("emp-006") == ["emp-005", "emp-004", "emp-001"]

    def test_root_has_no_chain(self, snapshot):
        assert ScopeResolver(snapshot).manager_chain("emp-001") == []

    def test_missing_manager_truncates(self):
        rows = [("a", TENANT_ID, "Staff", "ghost", "Active")]
        assert ScopeResolver(make_snapshot(rows)).manager_chain("a") == []


class TestWouldCreateCycle:
    def test_reporting_to_own_report(self, snapshot):
        assert ScopeResolver(snapshot).would_create_cycle("emp-004", "emp-006") is True

    def test_reporting_to_self(self, snapshot):
        assert ScopeResolver(snapshot).would_create_cycle("emp-004", "emp-004") is True

    def test_valid_move(self, snapshot):
        assert ScopeResolver(snapshot).would_create_cycle("emp-006", "emp-002") is False

    def test_clearing_manager(self, snapshot):
        assert ScopeResolver(snapshot).would_create_cycle("emp-006", None) is False


@dataclass
class _Case:
    id: str
    owner_id: str


class TestFilterRecords:
    def test_filters_by_owner(self):
        cases = [_Case("c1", "emp-004"), _Case("c2", "emp-006"), _Case("c3", "emp-002")]
        visible = frozenset({"emp-004", "emp-005", "emp-006"})
        kept = filter_records(cases, lambda c: c.owner_id, visible)
        assert [c.id for c in kept] == ["c1", "c2"]

    def test_unrestricted(self):
        cases = [_Case("c1", "emp-004"), _Case("c2", "emp-002")]
        assert filter_records(cases, lambda c: c.owner_id, None) == cases

    def test_empty_visible_set_keeps_nothing(self):
        cases = [_Case("c1", "emp-004")]
        assert filter_records(cases, lambda c: c.owner_id, frozenset()) == []
