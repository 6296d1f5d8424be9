"""
Permission policy and evaluator.

A policy is an immutable set of additive grants ``(role, module, action, scope)``.
It is built once - from the default tables below or from the permission_grants
table - and handed to a PermissionEvaluator. There are no deny rules: anything
not granted is denied.

Implied actions are expanded while the policy is built, so an ``admin`` grant
on a module is stored as explicit admin/approve/delete/write/read grants and
evaluation stays a plain lookup.
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Union

from app.features.permissions.exceptions import PolicyConfigurationError, UnknownRoleError
from app.features.permissions.roles import Action, Module, PermissionRoleId, Scope
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class Grant:
    """A single allow rule attached to a permission role."""
    role: PermissionRoleId
    module: Module
    action: Action
    scope: Scope

    @property
    def key(self) -> str:
        return f"{self.module.value}.{self.action.value}.{self.scope.value}"

    @classmethod
    def from_values(cls, role, module, action, scope) -> "Grant":
        """Build a grant from raw values, raising PolicyConfigurationError on bad input."""
        try:
            return cls(
                role=PermissionRoleId.parse(role),
                module=Module.parse(module),
                action=Action.parse(action),
                scope=Scope.parse(scope),
            )
        except UnknownRoleError as e:
            raise PolicyConfigurationError(
                f"Invalid grant ({role!r}, {module!r}, {action!r}, {scope!r}): {e}"
            ) from e


IMPLIED_ACTIONS: Mapping[Action, tuple[Action, ...]] = MappingProxyType({
    Action.ADMIN: (Action.APPROVE, Action.DELETE, Action.WRITE, Action.READ),
    Action.DELETE: (Action.WRITE, Action.READ),
    Action.WRITE: (Action.READ,),
    Action.APPROVE: (Action.READ,),
    Action.READ: (),
})


def expand_implied(grant: Grant) -> list[Grant]:
    """Return the grant plus the lower actions it implies, at the same scope."""
    expanded = [grant]
    for action in IMPLIED_ACTIONS[grant.action]:
        expanded.append(Grant(grant.role, grant.module, action, grant.scope))
    return expanded


# =============================================================================
# DEFAULT GRANT TABLE
# =============================================================================

DEFAULT_PERMISSIONS = [
    # Clients
    ("clients.read.own", "clients", "read", "own", "View own clients"),
    ("clients.read.team", "clients", "read", "team", "View team clients"),
    ("clients.write.team", "clients", "write", "team", "Edit team clients"),
    ("clients.admin.all", "clients", "admin", "all", "Full client administration"),

    # Cases
    ("cases.read.own", "cases", "read", "own", "View own cases"),
    ("cases.write.team", "cases", "write", "team", "Edit team cases"),
    ("cases.delete.team", "cases", "delete", "team", "Delete team cases"),
    ("cases.admin.all", "cases", "admin", "all", "Full case administration"),

    # Tasks
    ("tasks.write.own", "tasks", "write", "own", "Edit own tasks"),
    ("tasks.read.all", "tasks", "read", "all", "View all tasks"),
    ("tasks.write.team", "tasks", "write", "team", "Edit team tasks"),
    ("tasks.admin.all", "tasks", "admin", "all", "Full task administration"),

    # Hearings
    ("hearings.read.own", "hearings", "read", "own", "View own hearings"),
    ("hearings.write.team", "hearings", "write", "team", "Schedule team hearings"),
    ("hearings.admin.all", "hearings", "admin", "all", "Full hearing administration"),

    # Documents
    ("documents.write.own", "documents", "write", "own", "Upload own documents"),
    ("documents.read.team", "documents", "read", "team", "View team documents"),
    ("documents.write.team", "documents", "write", "team", "Upload team documents"),
    ("documents.admin.all", "documents", "admin", "all", "Full document administration"),

    # Reports, dashboard, analytics
    ("reports.read.own", "reports", "read", "own", "View own reports"),
    ("reports.admin.all", "reports", "admin", "all", "Manage report templates"),
    ("dashboard.read.own", "dashboard", "read", "own", "View own dashboard"),
    ("dashboard.admin.all", "dashboard", "admin", "all", "Customize dashboards"),
    ("analytics.read.own", "analytics", "read", "own", "View own analytics"),
    ("analytics.admin.all", "analytics", "admin", "all", "Configure analytics"),

    # Masters
    ("employees.read.team", "employees", "read", "team", "View team members"),
    ("employees.admin.all", "employees", "admin", "all", "Manage employees"),
    ("courts.read.all", "courts", "read", "all", "View courts"),
    ("courts.admin.all", "courts", "admin", "all", "Manage courts"),
    ("judges.read.all", "judges", "read", "all", "View judges"),
    ("judges.admin.all", "judges", "admin", "all", "Manage judges"),

    # System
    ("settings.admin.all", "settings", "admin", "all", "Manage system settings"),
    ("rbac.admin.all", "rbac", "admin", "all", "Manage roles and permissions"),
    ("audit.read.all", "audit", "read", "all", "View audit logs"),
]


DEFAULT_ROLE_GRANTS: dict[str, dict] = {
    "SuperAdmin": {
        "description": "Full system access with organization scope",
        "permissions": "ALL",  # Special case - every module and action
    },
    "Admin": {
        "description": "Administrative access with organization scope for most modules",
        "permissions": [
            "clients.admin.all", "cases.admin.all", "tasks.admin.all",
            "hearings.admin.all", "documents.admin.all",
            "reports.admin.all", "dashboard.admin.all", "analytics.admin.all",
            "employees.admin.all", "courts.admin.all", "judges.admin.all",
            "settings.admin.all", "audit.read.all",
        ],
    },
    "Manager": {
        "description": "Team lead with team scope for cases, clients and documents",
        "permissions": [
            "clients.write.team", "cases.delete.team",
            "tasks.read.all", "tasks.write.team",
            "hearings.write.team", "documents.write.team",
            "reports.read.own", "dashboard.read.own", "analytics.read.own",
            "employees.read.team", "courts.read.all", "judges.read.all",
        ],
    },
    "Staff": {
        "description": "Staff with own scope for assigned work",
        "permissions": [
            "clients.read.own", "cases.read.own", "tasks.write.own",
            "hearings.read.own", "documents.write.own", "documents.read.team",
            "reports.read.own", "dashboard.read.own", "analytics.read.own",
            "courts.read.all", "judges.read.all",
        ],
    },
}


def default_grants() -> list[Grant]:
    """Materialise DEFAULT_ROLE_GRANTS into Grant objects (before implied expansion)."""
    catalog = {name: (module, action, scope) for name, module, action, scope, _ in DEFAULT_PERMISSIONS}
    grants: list[Grant] = []

    for role_name, role_config in DEFAULT_ROLE_GRANTS.items():
        if role_config["permissions"] == "ALL":
            for module in Module:
                for action in Action:
                    grants.append(Grant.from_values(role_name, module, action, Scope.ALL))
            continue

        for perm_name in role_config["permissions"]:
            if perm_name not in catalog:
                raise PolicyConfigurationError(f"Permission {perm_name!r} not defined for role {role_name!r}")
            grants.append(Grant.from_values(role_name, *catalog[perm_name]))

    return grants


# =============================================================================
# POLICY
# =============================================================================

class PermissionPolicy:
    """
    Immutable lookup table: (role, module, action) -> granted scopes.

    Build with ``from_grants`` or ``build_default_policy``; never mutate after
    construction. Reloading means building a new policy.
    """

    def __init__(self, table: Mapping[tuple[PermissionRoleId, Module, Action], frozenset[Scope]]):
        self._table = MappingProxyType(dict(table))

    @classmethod
    def from_grants(cls, grants: Iterable[Grant], strict: bool = True) -> "PermissionPolicy":
        """
        Build a policy from grants, expanding implied actions.

        Items may be Grant objects or raw (role, module, action, scope) tuples.
        With ``strict=False`` invalid raw rows are logged and skipped (fail
        closed) instead of raising PolicyConfigurationError.
        """
        table: dict[tuple[PermissionRoleId, Module, Action], set[Scope]] = {}
        for item in grants:
            try:
                grant = item if isinstance(item, Grant) else Grant.from_values(*item)
            except PolicyConfigurationError as e:
                if strict:
                    raise
                log.error("Skipping grant: %s", e)
                continue
            for expanded in expand_implied(grant):
                table.setdefault((expanded.role, expanded.module, expanded.action), set()).add(expanded.scope)

        return cls({key: frozenset(scopes) for key, scopes in table.items()})

    def scopes(self, role: PermissionRoleId, module: Module, action: Action) -> frozenset[Scope]:
        return self._table.get((role, module, action), frozenset())

    def grants(self) -> list[Grant]:
        """All (expanded) grants, sorted for stable output."""
        result = [
            Grant(role, module, action, scope)
            for (role, module, action), scopes in self._table.items()
            for scope in scopes
        ]
        return sorted(result, key=lambda g: (g.role.value, g.module.value, g.action.value, g.scope.rank))

    def grants_for(self, role: PermissionRoleId) -> list[Grant]:
        return [g for g in self.grants() if g.role == role]

    def roles(self) -> frozenset[PermissionRoleId]:
        return frozenset(role for role, _, _ in self._table)

    def modules(self, role: Optional[PermissionRoleId] = None) -> frozenset[Module]:
        """Modules with at least one grant, optionally for a single role."""
        return frozenset(
            module for granted_role, module, _ in self._table
            if role is None or granted_role == role
        )

    def __len__(self) -> int:
        return sum(len(scopes) for scopes in self._table.values())


def build_default_policy() -> PermissionPolicy:
    return PermissionPolicy.from_grants(default_grants())


# =============================================================================
# EVALUATOR
# =============================================================================

RoleIds = Iterable[Union[PermissionRoleId, str]]


class PermissionEvaluator:
    """
    Decide allow/deny for a set of held permission roles.

    Evaluation is a union across held roles and has no side effects. Unknown
    roles, modules or actions are configuration errors and deny.
    """

    def __init__(self, policy: PermissionPolicy):
        self.policy = policy

    @staticmethod
    def _normalize_roles(role_ids: RoleIds) -> list[PermissionRoleId]:
        roles = []
        for role_id in role_ids or ():
            try:
                roles.append(PermissionRoleId.parse(role_id))
            except UnknownRoleError as e:
                log.debug("Ignoring %s", e)
        return roles

    def scope_for(self, role_ids: RoleIds, module, action) -> Optional[Scope]:
        """
        Get the widest scope granted for (module, action), or None if denied.
        """
        try:
            module = Module.parse(module)
            action = Action.parse(action)
        except UnknownRoleError as e:
            log.debug(f"Denying unconfigured permission: {e}")
            return None

        scopes = set()
        for role in self._normalize_roles(role_ids):
            scopes.update(self.policy.scopes(role, module, action))
        return Scope.widest(scopes)

    def can_perform(self, role_ids: RoleIds, module, action) -> bool:
        """Check whether any held role grants ``action`` on ``module``."""
        role_ids = list(role_ids or ())
        allowed = self.scope_for(role_ids, module, action) is not None
        if not allowed:
            log.debug(f"Permission denied: {action} on {module} for roles {role_ids}")
        return allowed

    def can_see_module(self, role_ids: RoleIds, module) -> bool:
        """A module is visible when any action on it is granted."""
        role_ids = list(role_ids or ())
        return any(self.can_perform(role_ids, module, action) for action in Action)

    def permission_matrix(self, role_ids: RoleIds) -> dict[Module, dict[Action, Scope]]:
        """Every granted (module, action) with its widest scope."""
        matrix: dict[Module, dict[Action, Scope]] = {}
        roles = self._normalize_roles(role_ids)
        for module in Module:
            for action in Action:
                scope = self.scope_for(roles, module, action)
                if scope is not None:
                    matrix.setdefault(module, {})[action] = scope
        return matrix
