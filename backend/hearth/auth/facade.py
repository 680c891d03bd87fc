"""
Authorization façade: the one entry point every mutating endpoint calls.

`can()` evaluates a request against a fresh read of tenant, role and
membership state and returns a Decision. Expected denials are values, never
exceptions. Store failures and timeouts come back as INFRASTRUCTURE_ERROR
denials so that nothing ever defaults to allow.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Iterable, Optional, Sequence, TypeVar

from hearth.auth.actions import (
    DEFAULT_ROLE_LOCKED_ACTIONS,
    OWNER_PROTECTED_ACTIONS,
    Action,
    ActionRule,
    MemberTarget,
    NewRoleTarget,
    RoleAssignmentTarget,
    RoleReorderTarget,
    RoleTarget,
    Target,
    rule_for,
)
from hearth.auth.decision import Decision, DenyReason, ProtectedInvariant
from hearth.auth.errors import InfrastructureError, NotFoundError, StoreError, ValidationError
from hearth.auth.hierarchy import Authority, HierarchyGuard
from hearth.auth.membership import MembershipResolver
from hearth.auth.permission_resolver import PermissionResolver
from hearth.auth.permissions import PermissionSet
from hearth.auth.role_catalog import RoleCatalog
from hearth.auth.store import AuthzStore, MembershipRecord, RoleRecord, TenantRecord, UserRef

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_STORE_TIMEOUT_SECONDS = 2.0


class _BoundedReads:
    """AuthzStore proxy: every read gets a deadline and failures become InfrastructureError."""

    def __init__(self, store: AuthzStore, timeout: Optional[float]):
        self._store = store
        self._timeout = timeout

    async def _call(self, op: str, aw: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(aw, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise InfrastructureError(e, f"store read timed out: {op}") from e
        except (StoreError, OSError) as e:
            raise InfrastructureError(e, f"store read failed: {op}") from e

    async def normalize_user_id(self, ref: UserRef) -> Optional[uuid.UUID]:
        return await self._call("normalize_user_id", self._store.normalize_user_id(ref))

    async def get_tenant(self, tenant_id: uuid.UUID) -> Optional[TenantRecord]:
        return await self._call("get_tenant", self._store.get_tenant(tenant_id))

    async def get_membership(self, tenant_id: uuid.UUID, user_id: uuid.UUID) -> Optional[MembershipRecord]:
        return await self._call("get_membership", self._store.get_membership(tenant_id, user_id))

    async def list_roles(self, tenant_id: uuid.UUID) -> Sequence[RoleRecord]:
        return await self._call("list_roles", self._store.list_roles(tenant_id))

    async def get_role(self, tenant_id: uuid.UUID, role_id: uuid.UUID) -> Optional[RoleRecord]:
        return await self._call("get_role", self._store.get_role(tenant_id, role_id))


@dataclass(frozen=True)
class _Resolved:
    """Target looked up against the same snapshot as the actor."""

    role: Optional[RoleRecord] = None
    member: Optional[MembershipRecord] = None
    moves: tuple[tuple[RoleRecord, int], ...] = ()


def _coerce_uuid(value: object, what: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"{what} must be a valid UUID")


class AuthorizationFacade:
    def __init__(
        self,
        store: AuthzStore,
        *,
        store_timeout: Optional[float] = DEFAULT_STORE_TIMEOUT_SECONDS,
        skip_membership_check: bool = False,
    ):
        self._store = _BoundedReads(store, store_timeout)
        self._members = MembershipResolver(self._store)
        # Debug override carried over from the old channel endpoints.
        # TODO: remove AUTHZ_SKIP_MEMBERSHIP_CHECK once legacy membership data is repaired.
        self._skip_membership_check = skip_membership_check
        if skip_membership_check:
            logger.warning("authorization: membership check bypass is ENABLED")

    # ---------------------------------------------------------
    # Public API
    # ---------------------------------------------------------
    async def can(
        self,
        actor: UserRef,
        tenant_id: uuid.UUID | str,
        action: Action | str,
        target: Optional[Target] = None,
    ) -> Decision:
        try:
            decision = await self._evaluate(actor, tenant_id, action, target)
        except ValidationError as e:
            decision = Decision.deny(DenyReason.VALIDATION_ERROR, str(e))
        except NotFoundError as e:
            decision = Decision.deny(DenyReason.NOT_FOUND, str(e))
        except InfrastructureError as e:
            logger.warning("authorization: infrastructure failure tenant=%s action=%s: %s", tenant_id, action, e)
            decision = Decision.deny(DenyReason.INFRASTRUCTURE_ERROR, "Authorization is temporarily unavailable.")

        if not decision.allow:
            logger.info(
                "authorization denied actor=%s tenant=%s action=%s reason=%s",
                actor,
                tenant_id,
                getattr(action, "value", action),
                decision.reason.value if decision.reason else None,
            )
        return decision

    async def can_all(
        self,
        actor: UserRef,
        tenant_id: uuid.UUID | str,
        actions: Iterable[Action | str],
        target: Optional[Target] = None,
    ) -> Decision:
        """First denial among `actions`, or allow when every one passes."""
        evaluated = False
        for action in actions:
            evaluated = True
            decision = await self.can(actor, tenant_id, action, target)
            if not decision.allow:
                return decision
        if not evaluated:
            return Decision.deny(DenyReason.VALIDATION_ERROR, "No action to authorize.")
        return Decision.allowed()

    # ---------------------------------------------------------
    # Evaluation
    # ---------------------------------------------------------
    async def _evaluate(
        self,
        actor: UserRef,
        tenant_id: uuid.UUID | str,
        action: Action | str,
        target: Optional[Target],
    ) -> Decision:
        try:
            action = Action(action)
        except ValueError:
            raise ValidationError(f"Unknown action: {action!r}")
        rule = rule_for(action)
        self._check_shape(action, rule, target)

        tenant = await self._store.get_tenant(_coerce_uuid(tenant_id, "tenant_id"))
        if tenant is None:
            raise NotFoundError("tenant", tenant_id)

        # 1. membership (the owner always resolves); nothing about the target
        # is looked up for non-members
        actor_id = await self._members.normalize(actor)
        membership = await self._members.resolve_id(tenant, actor_id) if actor_id is not None else None
        if membership is None:
            if self._skip_membership_check and actor_id is not None:
                logger.warning("authorization: membership check skipped tenant=%s actor=%s", tenant.id, actor_id)
                membership = MembershipRecord(tenant_id=tenant.id, user_id=actor_id)
            else:
                return Decision.deny(
                    DenyReason.MEMBERSHIP_REQUIRED,
                    "You are not a member of this tenant.",
                )

        catalog = await RoleCatalog.load(self._store, tenant.id, tenant.default_role_id)
        guard = HierarchyGuard(catalog, tenant)
        resolved = await self._resolve_target(tenant, catalog, target)

        # 2. invariants no actor can override, the owner included
        denied = self._protected_invariants(tenant, catalog, action, resolved)
        if denied is not None:
            return denied

        # 3. owner
        if guard.is_owner(membership.user_id):
            return Decision.allowed()

        # 4. permission flag
        permissions = PermissionResolver(catalog).compute(membership)
        if not permissions.allows(rule.permission):
            return Decision.deny(
                DenyReason.PERMISSION_DENIED,
                f"Missing permission: {rule.permission.value}",
                permission=rule.permission,
            )

        # 5. hierarchy
        authority = guard.authority(membership)
        target_authority = self._target_authority(guard, catalog, action, resolved)
        if target_authority is not None and not guard.can_act_on(authority, target_authority):
            return Decision.deny(
                DenyReason.INSUFFICIENT_HIERARCHY,
                "Target is positioned higher than or equal to your highest role.",
            )

        # 6. invariants that depend on who is asking
        denied = self._actor_invariants(action, target, resolved, authority, permissions)
        if denied is not None:
            return denied
        return Decision.allowed()

    @staticmethod
    def _check_shape(action: Action, rule: ActionRule, target: Optional[Target]) -> None:
        if rule.target_type is None:
            if target is not None:
                raise ValidationError(f"{action.value} does not take a target")
            return
        if target is None and rule.target_type is NewRoleTarget:
            return
        if not isinstance(target, rule.target_type):
            raise ValidationError(f"{action.value} requires a {rule.target_type.__name__}")

    async def _resolve_target(self, tenant: TenantRecord, catalog: RoleCatalog, target: Optional[Target]) -> _Resolved:
        if isinstance(target, RoleTarget):
            return _Resolved(role=self._require_role(catalog, target.role_id))

        if isinstance(target, MemberTarget):
            return _Resolved(member=await self._require_member(tenant, target.user_id))

        if isinstance(target, RoleAssignmentTarget):
            role = self._require_role(catalog, target.role_id)
            member = await self._require_member(tenant, target.user_id)
            return _Resolved(role=role, member=member)

        if isinstance(target, RoleReorderTarget):
            if not target.moves:
                raise ValidationError("At least one role position is required")
            seen: set[uuid.UUID] = set()
            moves = []
            for role_id, position in target.moves:
                role = self._require_role(catalog, _coerce_uuid(role_id, "role_id"))
                if role.id in seen:
                    raise ValidationError(f"Duplicate role in reorder: {role.id}")
                if not isinstance(position, int) or isinstance(position, bool):
                    raise ValidationError("Role positions must be integers")
                if position < 1 and not role.is_default:
                    raise ValidationError("Only the default role may sit at position 0")
                seen.add(role.id)
                moves.append((role, position))
            return _Resolved(moves=tuple(moves))

        return _Resolved()

    @staticmethod
    def _require_role(catalog: RoleCatalog, role_id: object) -> RoleRecord:
        role = catalog.get(_coerce_uuid(role_id, "role_id"))
        if role is None:
            raise NotFoundError("role", role_id)
        return role

    async def _require_member(self, tenant: TenantRecord, user_ref: UserRef) -> MembershipRecord:
        member = await self._members.resolve(tenant, user_ref)
        if member is None:
            raise NotFoundError("member", user_ref)
        return member

    @staticmethod
    def _protected_invariants(
        tenant: TenantRecord,
        catalog: RoleCatalog,
        action: Action,
        resolved: _Resolved,
    ) -> Optional[Decision]:
        role = resolved.role
        if role is not None and catalog.is_default(role.id):
            if action in DEFAULT_ROLE_LOCKED_ACTIONS:
                kind = (
                    ProtectedInvariant.DEFAULT_ROLE_UNDELETABLE
                    if action is Action.DELETE_ROLE
                    else ProtectedInvariant.DEFAULT_ROLE_IMMUTABLE
                )
                return Decision.deny(
                    DenyReason.PROTECTED_INVARIANT,
                    "The default role cannot be renamed, re-permissioned or deleted.",
                    invariant=kind,
                )
            if action is Action.REMOVE_ROLE:
                return Decision.deny(
                    DenyReason.PROTECTED_INVARIANT,
                    "The default role cannot be removed from a member.",
                    invariant=ProtectedInvariant.DEFAULT_ROLE_REQUIRED,
                )

        for moved, position in resolved.moves:
            if catalog.is_default(moved.id) and position != moved.position:
                return Decision.deny(
                    DenyReason.PROTECTED_INVARIANT,
                    "The default role cannot be moved.",
                    invariant=ProtectedInvariant.DEFAULT_ROLE_IMMUTABLE,
                )

        member = resolved.member
        if member is not None and member.user_id == tenant.owner_id and action in OWNER_PROTECTED_ACTIONS:
            return Decision.deny(
                DenyReason.PROTECTED_INVARIANT,
                "The tenant owner cannot be kicked, banned, muted or demoted.",
                invariant=ProtectedInvariant.OWNER_PROTECTED,
            )
        return None

    @staticmethod
    def _target_authority(
        guard: HierarchyGuard,
        catalog: RoleCatalog,
        action: Action,
        resolved: _Resolved,
    ) -> Optional[Authority]:
        if resolved.member is not None:
            return guard.authority(resolved.member)
        if resolved.role is not None:
            return resolved.role.position
        if resolved.moves:
            # both where the role sits now and where it would land
            return max(max(role.position, position) for role, position in resolved.moves)
        if action is Action.CREATE_ROLE:
            # new roles always land on top
            return catalog.next_position()
        return None

    @staticmethod
    def _actor_invariants(
        action: Action,
        target: Optional[Target],
        resolved: _Resolved,
        authority: Authority,
        permissions: PermissionSet,
    ) -> Optional[Decision]:
        if action in (Action.ASSIGN_ROLE, Action.REMOVE_ROLE) and resolved.role is not None:
            if resolved.role.position >= authority:
                return Decision.deny(
                    DenyReason.PROTECTED_INVARIANT,
                    "You cannot assign or remove a role positioned at or above your highest role.",
                    invariant=ProtectedInvariant.ROLE_ABOVE_AUTHORITY,
                )

        requested = getattr(target, "permissions", None)
        if action in (Action.CREATE_ROLE, Action.EDIT_ROLE_PERMISSIONS) and requested is not None:
            escalated = requested.missing_from(permissions)
            if escalated:
                names = ", ".join(sorted(p.value for p in escalated))
                return Decision.deny(
                    DenyReason.PROTECTED_INVARIANT,
                    f"You cannot grant permissions you do not hold: {names}",
                    invariant=ProtectedInvariant.PERMISSION_ESCALATION,
                )
        return None
