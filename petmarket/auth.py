"""
FastAPI dependency that enforces the route authorization policy.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from petmarket.config import Settings, get_settings
from petmarket.dependencies import get_identity_verifier
from petmarket.identity import (
    Identity,
    IdentityProviderError,
    IdentityVerifier,
    InvalidTokenError,
)
from petmarket.policy import AuthLevel, auth_level_for

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=message,
        headers={"WWW-Authenticate": "Bearer"},
    )


def authorize(route: str) -> Callable[..., Optional[Identity]]:
    """
    Build the dependency guarding ``route``.

    The dependency yields the verified identity, or None when the route is
    open or optional and no token was sent.
    """

    def dependency(
        bearer: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
        settings: Settings = Depends(get_settings),
        verifier: IdentityVerifier = Depends(get_identity_verifier),
    ) -> Optional[Identity]:
        level = auth_level_for(route, settings.route_auth)
        if level is AuthLevel.NONE:
            return None
        token = bearer.credentials if bearer else None
        if not token:
            if level is AuthLevel.OPTIONAL:
                return None
            raise _unauthorized("Unauthorized! Token not found.")
        try:
            return verifier.verify(token)
        except InvalidTokenError:
            logger.info("Invalid token on %s", route)
            raise _unauthorized("Unauthorized! Invalid token.")
        except IdentityProviderError:
            raise HTTPException(
                status_code=503, detail="Identity provider unavailable."
            )

    dependency.__name__ = f"authorize_{route}"
    return dependency
