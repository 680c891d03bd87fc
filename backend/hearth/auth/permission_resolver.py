from __future__ import annotations

from hearth.auth.permissions import PermissionSet
from hearth.auth.role_catalog import RoleCatalog
from hearth.auth.store import MembershipRecord


class PermissionResolver:
    def __init__(self, catalog: RoleCatalog):
        self._catalog = catalog

    def compute(self, membership: MembershipRecord) -> PermissionSet:
        """
        Effective permissions for a membership.

        Per-flag OR over the member's roles, skipping ids the catalog no longer
        knows (cascade cleanup may lag). Any ADMINISTRATOR role yields the
        all-true set. When none of the member's roles exist (no ids, or only
        stale ones) the default role applies, and the all-false set when even
        that is unavailable.
        """
        roles = self._catalog.existing(membership.role_ids)
        if not roles:
            default = self._catalog.default_role
            return default.permissions if default is not None else PermissionSet.none()

        effective = PermissionSet.none()
        for role in roles:
            if role.permissions.ADMINISTRATOR:
                return PermissionSet.all()
            effective = effective | role.permissions
        return effective
