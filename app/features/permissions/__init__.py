"""
Permission management feature module.

Role-based permissions with per-user grant/revoke overrides, scoped to an
organization. The admin role bypasses every check.
"""
