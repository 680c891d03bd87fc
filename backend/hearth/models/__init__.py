# Import models here so Alembic can discover metadata.
from hearth.models.user import User  # noqa: F401

from hearth.models.tenant import Tenant  # noqa: F401
from hearth.models.role import Role  # noqa: F401
from hearth.models.tenant_membership import TenantMembership, MembershipRole, TenantBan  # noqa: F401
