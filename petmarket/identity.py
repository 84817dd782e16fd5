"""
Bearer-token verification against Firebase Authentication, plus a static
test implementation.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional, Protocol

import firebase_admin
from firebase_admin import auth, credentials, exceptions

logger = logging.getLogger(__name__)


class InvalidTokenError(Exception):
    """Raised when a bearer token cannot be verified."""


class IdentityProviderError(Exception):
    """Raised when the identity provider itself fails."""


@dataclass(frozen=True)
class Identity:
    uid: str
    email: Optional[str] = None
    claims: dict = field(default_factory=dict, compare=False)


class IdentityVerifier(Protocol):
    """Interface for validating bearer tokens."""

    def verify(self, token: str) -> Identity:
        ...

    def close(self) -> None:
        ...


@dataclass
class StaticTokenVerifier:
    """Accepts only the tokens it was built with. Empty by default."""

    tokens: dict[str, Identity] = field(default_factory=dict)

    def verify(self, token: str) -> Identity:
        identity = self.tokens.get(token)
        if identity is None:
            raise InvalidTokenError("Unknown token")
        return identity

    def close(self) -> None:
        pass


_VERIFY_ERRORS = (
    auth.InvalidIdTokenError,
    auth.ExpiredIdTokenError,
    auth.RevokedIdTokenError,
    auth.CertificateFetchError,
    auth.UserDisabledError,
    auth.UserNotFoundError,
    ValueError,
)


class FirebaseIdentityVerifier:
    """
    Verifies Firebase ID tokens with the Admin SDK.

    Each instance owns a named firebase app so it can be created and deleted
    independently of the default app.
    """

    def __init__(
        self,
        credentials_path: str | None = None,
        *,
        project_id: str | None = None,
        timeout_seconds: float = 10.0,
        check_revoked: bool = False,
    ):
        if credentials_path:
            cred = credentials.Certificate(credentials_path)
        else:
            cred = credentials.ApplicationDefault()
        options = {"httpTimeout": timeout_seconds}
        if project_id:
            options["projectId"] = project_id
        self.check_revoked = check_revoked
        self.app = firebase_admin.initialize_app(
            cred, options, name=f"petmarket-{uuid.uuid4().hex[:8]}"
        )

    def verify(self, token: str) -> Identity:
        try:
            decoded = auth.verify_id_token(
                token, app=self.app, check_revoked=self.check_revoked
            )
        except _VERIFY_ERRORS as exc:
            logger.warning("Rejected bearer token: %s", exc)
            raise InvalidTokenError(str(exc)) from exc
        except exceptions.FirebaseError as exc:
            logger.error("Identity provider failure: %s", exc)
            raise IdentityProviderError(str(exc)) from exc
        return Identity(
            uid=decoded["uid"], email=decoded.get("email"), claims=decoded
        )

    def close(self) -> None:
        firebase_admin.delete_app(self.app)
