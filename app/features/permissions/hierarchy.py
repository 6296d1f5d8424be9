"""
Reporting hierarchy and record scope resolution.

A HierarchySnapshot is an immutable, per-request view of one tenant's
employees. ScopeResolver walks the reports-to edges of that snapshot to work
out whose records a requester may see:

    all  -> every employee in the tenant
    team -> the requester and every active employee below them
    own  -> the requester only

Resolution fails closed: a missing record, a dangling reference or a cycle in
the reports-to graph degrades the result to the requester alone.
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Iterable, Optional, TypeVar

from app.features.permissions.exceptions import (
    HierarchyCycleError,
    MissingHierarchyError,
    UnknownRoleError,
)
from app.features.permissions.roles import EmployeeStatus, OperationalRole, Scope
from app.utils import get_logger


log = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class EmployeeRecord:
    """The slice of an employee that access control needs."""
    id: str
    role: Optional[OperationalRole]
    manager_id: Optional[str]
    status: EmployeeStatus
    tenant_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == EmployeeStatus.ACTIVE

    @classmethod
    def from_values(
        cls,
        id: str,
        role: Any,
        manager_id: Optional[str] = None,
        status: Any = EmployeeStatus.ACTIVE,
        tenant_id: Optional[str] = None,
    ) -> "EmployeeRecord":
        """
        Build a record from stored values.

        An unrecognised role is kept as None (no permissions) rather than
        coerced; an unrecognised status is treated as Inactive.
        """
        try:
            parsed_role = OperationalRole.parse(role)
        except UnknownRoleError as e:
            log.warning("Employee %s: %s", id, e)
            parsed_role = None
        return cls(
            id=id,
            role=parsed_role,
            manager_id=manager_id or None,
            status=EmployeeStatus.from_stored(status, employee_id=id),
            tenant_id=tenant_id,
        )


class HierarchySnapshot:
    """Read-only index of employees and their direct reports."""

    def __init__(self, records: Iterable[EmployeeRecord]):
        by_id: dict[str, EmployeeRecord] = {}
        reports: dict[str, list[str]] = {}
        for record in records:
            by_id[record.id] = record
            if record.manager_id:
                reports.setdefault(record.manager_id, []).append(record.id)
        self._by_id = MappingProxyType(by_id)
        self._reports = MappingProxyType({k: tuple(v) for k, v in reports.items()})

    @property
    def by_id(self):
        return self._by_id

    def get(self, employee_id: str) -> Optional[EmployeeRecord]:
        return self._by_id.get(employee_id)

    def require(self, employee_id: str, referenced_by: Optional[str] = None) -> EmployeeRecord:
        record = self._by_id.get(employee_id)
        if record is None:
            raise MissingHierarchyError(employee_id, referenced_by)
        return record

    def direct_reports(self, employee_id: str) -> tuple[str, ...]:
        return self._reports.get(employee_id, ())

    def __contains__(self, employee_id: object) -> bool:
        return employee_id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)


class ScopeResolver:
    """Compute visible user ids over a HierarchySnapshot."""

    def __init__(self, snapshot: HierarchySnapshot):
        self.snapshot = snapshot

    def _check_ancestry(self, record: EmployeeRecord) -> None:
        """
        Follow manager ids from ``record`` up to the root.

        Raises MissingHierarchyError for a manager id with no record and
        HierarchyCycleError when the chain loops.
        """
        path = [record.id]
        seen = {record.id}
        current = record
        while current.manager_id:
            manager_id = current.manager_id
            if manager_id in seen:
                raise HierarchyCycleError(path + [manager_id])
            current = self.snapshot.require(manager_id, referenced_by=current.id)
            path.append(manager_id)
            seen.add(manager_id)

    def _walk_team(self, root: EmployeeRecord) -> dict[str, int]:
        """
        Depth-first walk over active reports below ``root``.

        Returns each reachable id with its depth below ``root`` (root is 0).
        Raises HierarchyCycleError if a node is reached twice.
        """
        levels = {root.id: 0}
        parent: dict[str, str] = {}
        stack = [root.id]
        while stack:
            current = stack.pop()
            for report_id in self.snapshot.direct_reports(current):
                report = self.snapshot.by_id[report_id]
                if not report.is_active or report.tenant_id != root.tenant_id:
                    continue
                if report_id in levels:
                    raise HierarchyCycleError(self._path_to(current, parent) + [report_id])
                levels[report_id] = levels[current] + 1
                parent[report_id] = current
                stack.append(report_id)
        return levels

    @staticmethod
    def _path_to(node: str, parent: dict[str, str]) -> list[str]:
        path = [node]
        while node in parent:
            node = parent[node]
            path.append(node)
        path.reverse()
        return path

    def team_levels(self, user_id: str) -> dict[str, int]:
        """
        Team visibility with depth: the requester (level 0) plus all active
        reports, transitively, each with its distance below the requester.

        Never raises; a missing record, a manager id that does not resolve or
        a cycle returns ``{user_id: 0}``.
        """
        record = self.snapshot.get(user_id)
        if record is None:
            log.warning(f"Employee {user_id} not in hierarchy - restricting scope to self")
            return {user_id: 0}
        if not record.is_active:
            log.info(f"Employee {user_id} is inactive - restricting scope to self")
            return {user_id: 0}

        try:
            self._check_ancestry(record)
            return self._walk_team(record)
        except MissingHierarchyError as e:
            log.error(f"Broken hierarchy at {user_id}: {e} - restricting scope to self")
        except HierarchyCycleError as e:
            log.error(f"{e} - restricting scope of {user_id} to self")
        return {user_id: 0}

    def visible_user_ids(self, user_id: str) -> frozenset[str]:
        """Team visibility as a set of ids. Same fail-closed rules as team_levels."""
        return frozenset(self.team_levels(user_id))

    def visible_user_ids_for_scope(self, user_id: str, scope: Optional[Scope]) -> frozenset[str]:
        """Resolve a granted scope to a set of owner ids. None (denied) is empty."""
        if scope is None:
            return frozenset()
        scope = Scope.parse(scope)
        if scope == Scope.OWN:
            return frozenset({user_id})
        if scope == Scope.TEAM:
            return self.visible_user_ids(user_id)

        record = self.snapshot.get(user_id)
        if record is None:
            log.warning(f"Employee {user_id} not in hierarchy - restricting scope to self")
            return frozenset({user_id})
        return frozenset(
            emp.id for emp in self.snapshot.by_id.values() if emp.tenant_id == record.tenant_id
        ) | {user_id}

    def manager_chain(self, user_id: str) -> list[str]:
        """
        Ids of the managers above ``user_id``, nearest first.

        Stops at the root or at a manager id with no record. Raises
        HierarchyCycleError when the chain loops back on itself.
        """
        chain: list[str] = []
        seen = {user_id}
        current = self.snapshot.get(user_id)
        while current is not None and current.manager_id:
            manager_id = current.manager_id
            if manager_id in seen:
                raise HierarchyCycleError([user_id] + chain + [manager_id])
            manager = self.snapshot.get(manager_id)
            if manager is None:
                log.warning(f"Manager {manager_id} of {current.id} not found - chain truncated")
                break
            chain.append(manager_id)
            seen.add(manager_id)
            current = manager
        return chain

    def would_create_cycle(self, employee_id: str, new_manager_id: Optional[str]) -> bool:
        """True if making ``new_manager_id`` the manager of ``employee_id`` closes a loop."""
        if not new_manager_id:
            return False
        if new_manager_id == employee_id:
            return True
        seen = {new_manager_id}
        current = self.snapshot.get(new_manager_id)
        while current is not None and current.manager_id:
            if current.manager_id == employee_id:
                return True
            if current.manager_id in seen:
                # Existing loop elsewhere in the chain.
                return True
            seen.add(current.manager_id)
            current = self.snapshot.get(current.manager_id)
        return False


def filter_records(
    records: Iterable[T],
    owner_of: Callable[[T], Optional[str]],
    visible: Optional[frozenset[str]],
) -> list[T]:
    """
    Keep records whose owner is in ``visible``.

    ``visible=None`` means unrestricted. Records without an owner are only
    kept when unrestricted.
    """
    if visible is None:
        return list(records)
    return [record for record in records if owner_of(record) in visible]
