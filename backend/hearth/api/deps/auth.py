from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException, status

from hearth.api.deps.authz import get_store
from hearth.auth.store import Store
from hearth.core.security import bearer_scheme, decode_access_token


async def get_current_user_id(
    credentials=Depends(bearer_scheme),
    store: Store = Depends(get_store),
) -> uuid.UUID:
    """
    Dependency for protected endpoints.
    The token subject may be the internal user id or the public id; both normalize to users.id.
    """
    subject = decode_access_token(credentials.credentials)

    user_id = await store.normalize_user_id(subject)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    return user_id
