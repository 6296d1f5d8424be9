"""
Role and permission vocabulary for the case-management platform.

Operational roles are the job titles stored on employee records. Each one maps
to one or more permission roles, and grants are attached to permission roles:

    Partner   -> SuperAdmin
    Admin     -> Admin
    CA        -> Admin
    Advocate  -> Manager
    Manager   -> Manager
    RM        -> Manager
    Finance   -> Staff
    Staff     -> Staff

Usage:
    from app.features.permissions.roles import RoleMapper, OperationalRole

    mapper = RoleMapper()
    mapper.roles_for(OperationalRole.PARTNER)   # frozenset({PermissionRoleId.SUPER_ADMIN})
    mapper.roles_for("Intern")                  # frozenset() - unknown roles get nothing
"""
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

from app.features.permissions.exceptions import UnknownRoleError
from app.utils import get_logger


log = get_logger(__name__)


class _ParseableEnum(str, Enum):
    """String enum that validates raw values at the system boundary."""

    @classmethod
    def _aliases(cls) -> Mapping[str, str]:
        return {}

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise UnknownRoleError(cls.__name__, value)
        key = value.strip().lower()
        key = cls._aliases().get(key, key)
        for member in cls:
            if member.value.lower() == key or member.name.lower() == key:
                return member
        raise UnknownRoleError(cls.__name__, value)


class OperationalRole(_ParseableEnum):
    """Business-facing job titles. Every active employee holds exactly one."""

    PARTNER = "Partner"
    CA = "CA"
    ADVOCATE = "Advocate"
    MANAGER = "Manager"
    STAFF = "Staff"
    RM = "RM"
    FINANCE = "Finance"
    ADMIN = "Admin"


class PermissionRoleId(_ParseableEnum):
    """Abstract roles that permission grants are attached to."""

    SUPER_ADMIN = "SuperAdmin"
    ADMIN = "Admin"
    MANAGER = "Manager"
    STAFF = "Staff"


class Module(_ParseableEnum):
    """Protected application modules."""

    CLIENTS = "clients"
    CASES = "cases"
    TASKS = "tasks"
    HEARINGS = "hearings"
    DOCUMENTS = "documents"
    REPORTS = "reports"
    DASHBOARD = "dashboard"
    ANALYTICS = "analytics"
    EMPLOYEES = "employees"
    COURTS = "courts"
    JUDGES = "judges"
    SETTINGS = "settings"
    RBAC = "rbac"
    AUDIT = "audit"

    @classmethod
    def _aliases(cls) -> Mapping[str, str]:
        return {
            "client": "clients",
            "case": "cases",
            "task": "tasks",
            "hearing": "hearings",
            "document": "documents",
            "report": "reports",
            "employee": "employees",
            "court": "courts",
            "judge": "judges",
            "setting": "settings",
        }


class Action(_ParseableEnum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    APPROVE = "approve"
    ADMIN = "admin"

    @classmethod
    def _aliases(cls) -> Mapping[str, str]:
        return {
            "view": "read",
            "create": "write",
            "update": "write",
            "edit": "write",
            "manage": "admin",
        }


class Scope(_ParseableEnum):
    """Breadth of records a grant applies to. Ordered own < team < all."""

    OWN = "own"
    TEAM = "team"
    ALL = "all"

    @classmethod
    def _aliases(cls) -> Mapping[str, str]:
        return {"org": "all", "organization": "all", "self": "own"}

    @property
    def rank(self) -> int:
        return _SCOPE_RANK[self]

    @classmethod
    def widest(cls, scopes) -> Optional["Scope"]:
        """Return the broadest scope in ``scopes`` or None when empty."""
        best = None
        for scope in scopes:
            if best is None or scope.rank > best.rank:
                best = scope
        return best


_SCOPE_RANK = {Scope.OWN: 0, Scope.TEAM: 1, Scope.ALL: 2}


class EmployeeStatus(_ParseableEnum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"

    @classmethod
    def from_stored(cls, value, employee_id: Optional[str] = None) -> "EmployeeStatus":
        """Parse a stored status. Anything unrecognised is treated as Inactive."""
        try:
            return cls.parse(value)
        except UnknownRoleError as e:
            log.warning(f"Employee {employee_id}: {e} - treating as inactive")
            return cls.INACTIVE


# =============================================================================
# ROLE MAPPING
# =============================================================================

DEFAULT_ROLE_MAPPING: Mapping[OperationalRole, frozenset[PermissionRoleId]] = MappingProxyType({
    OperationalRole.PARTNER: frozenset({PermissionRoleId.SUPER_ADMIN}),
    OperationalRole.ADMIN: frozenset({PermissionRoleId.ADMIN}),
    OperationalRole.CA: frozenset({PermissionRoleId.ADMIN}),
    OperationalRole.ADVOCATE: frozenset({PermissionRoleId.MANAGER}),
    OperationalRole.MANAGER: frozenset({PermissionRoleId.MANAGER}),
    OperationalRole.RM: frozenset({PermissionRoleId.MANAGER}),
    OperationalRole.FINANCE: frozenset({PermissionRoleId.STAFF}),
    OperationalRole.STAFF: frozenset({PermissionRoleId.STAFF}),
})


class RoleMapper:
    """
    Translate operational roles into permission-role ids.

    The mapping is copied into a read-only view on construction, so a mapper
    can be shared freely between requests.
    """

    def __init__(self, mapping: Mapping[OperationalRole, frozenset[PermissionRoleId]] | None = None):
        source = DEFAULT_ROLE_MAPPING if mapping is None else mapping
        self._mapping = MappingProxyType({
            OperationalRole.parse(role): frozenset(PermissionRoleId.parse(r) for r in role_ids)
            for role, role_ids in source.items()
        })

    @property
    def mapping(self) -> Mapping[OperationalRole, frozenset[PermissionRoleId]]:
        return self._mapping

    def roles_for(self, operational_role) -> frozenset[PermissionRoleId]:
        """
        Get the permission roles for an operational role.

        Unknown values (anything outside OperationalRole, including None) are
        logged and yield an empty set, which denies everything downstream.
        """
        try:
            role = OperationalRole.parse(operational_role)
        except UnknownRoleError as e:
            log.warning("%s - treating as zero permissions", e)
            return frozenset()
        return self._mapping.get(role, frozenset())
