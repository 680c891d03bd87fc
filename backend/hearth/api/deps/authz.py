from __future__ import annotations

import uuid
from typing import Iterable, Optional

from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from hearth.auth.actions import Action, Target
from hearth.auth.decision import Decision
from hearth.auth.facade import AuthorizationFacade
from hearth.auth.store import Store, UserRef
from hearth.core.config import settings
from hearth.core.retry import RetryPolicy, decide_with_retry
from hearth.crud.store import SqlAlchemyStore
from hearth.db.session import get_db


async def get_store(db: AsyncSession = Depends(get_db)) -> Store:
    """One store per request, sharing the request's session."""
    return SqlAlchemyStore(db)


def get_facade(store: Store = Depends(get_store)) -> AuthorizationFacade:
    return AuthorizationFacade(
        store,
        store_timeout=settings.AUTHZ_STORE_TIMEOUT_SECONDS,
        skip_membership_check=settings.AUTHZ_SKIP_MEMBERSHIP_CHECK,
    )


def get_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.AUTHZ_RETRY_ATTEMPTS,
        backoff_base=settings.AUTHZ_RETRY_BACKOFF_SECONDS,
    )


def raise_for_decision(decision: Decision) -> None:
    """
    Translate a non-allow decision into the stable HTTP contract:
    403 for denials, 404 for missing targets, 500 for infrastructure.
    """
    if decision.allow:
        return
    raise HTTPException(status_code=decision.status_code, detail=decision.to_detail())


class Authorizer:
    """Request-scoped gate: evaluate (with retry) and raise on anything but allow."""

    def __init__(
        self,
        facade: AuthorizationFacade = Depends(get_facade),
        policy: RetryPolicy = Depends(get_retry_policy),
    ):
        self.facade = facade
        self.policy = policy

    async def decide(
        self,
        actor: UserRef,
        tenant_id: uuid.UUID,
        actions: Action | Iterable[Action],
        target: Optional[Target] = None,
    ) -> Decision:
        if isinstance(actions, Action):
            actions = [actions]
        actions = list(actions)
        return await decide_with_retry(
            lambda: self.facade.can_all(actor, tenant_id, actions, target),
            self.policy,
        )

    async def require(
        self,
        actor: UserRef,
        tenant_id: uuid.UUID,
        actions: Action | Iterable[Action],
        target: Optional[Target] = None,
    ) -> None:
        raise_for_decision(await self.decide(actor, tenant_id, actions, target))
