"""
Access-control error taxonomy.

The evaluation core recovers from all of these locally by falling back to the
most restrictive outcome. They are raised at the boundary (validating input)
and inside traversal so the failure is visible in logs and tests.
"""


class RbacError(Exception):
    """Base class for access-control errors."""


class UnknownRoleError(RbacError, ValueError):
    """A role, module, action or scope value is outside its enumeration."""

    def __init__(self, kind: str, value: object):
        self.kind = kind
        self.value = value
        super().__init__(f"Unknown {kind}: {value!r}")


class MissingHierarchyError(RbacError, LookupError):
    """A reports-to reference does not resolve to an employee record."""

    def __init__(self, employee_id: str, referenced_by: str | None = None):
        self.employee_id = employee_id
        self.referenced_by = referenced_by
        message = f"Employee {employee_id!r} not found"
        if referenced_by:
            message += f" (referenced by {referenced_by!r})"
        super().__init__(message)


class HierarchyCycleError(RbacError):
    """The reports-to graph contains a cycle."""

    def __init__(self, path: list[str]):
        self.path = path
        super().__init__("Reporting cycle detected: " + " -> ".join(path))


class PolicyConfigurationError(RbacError):
    """A grant row cannot be turned into a policy entry."""
