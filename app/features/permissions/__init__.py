"""
Permission management feature module.

Implements tenant-scoped Role-Based Access Control: operational roles map to
permission roles, grants carry an own/team/all scope, and the reporting
hierarchy decides which owners' records a team scope reaches.
"""
