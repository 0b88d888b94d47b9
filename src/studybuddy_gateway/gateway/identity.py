"""Firebase ID-token gate for incoming requests."""
from __future__ import annotations
import functools
import logging
from typing import Any, Callable

import firebase_admin
from firebase_admin import auth, credentials

from studybuddy_gateway.common.errors import NO_TOKEN, UNAUTHORIZED, ConfigError, Unauthenticated
from studybuddy_gateway.common.schema import VerifiedIdentity

LOGGER = logging.getLogger("studybuddy.gateway.identity")

BEARER_PREFIX = "Bearer "
FIREBASE_APP_NAME = "studybuddy-gateway"

TokenVerifier = Callable[[str], dict[str, Any]]


class IdentityVerifier:
    """
    Turn an Authorization header into a verified identity.

    Args:
        verify_token: Callable that validates a raw ID token and returns its
            decoded claims, raising on any failure.
    """

    def __init__(self, verify_token: TokenVerifier) -> None:
        self._verify_token = verify_token

    @classmethod
    def from_service_account(cls, service_account: dict[str, Any] | None, timeout: float = 10.0) -> "IdentityVerifier":
        """Initialize a dedicated Firebase app and verify tokens against it."""
        if not service_account:
            raise ConfigError("FIREBASE_JSON is required to verify identity tokens")
        try:
            cred = credentials.Certificate(service_account)
        except (ValueError, KeyError) as e:
            raise ConfigError("FIREBASE_JSON is not a valid service-account credential") from e
        try:
            app = firebase_admin.get_app(FIREBASE_APP_NAME)
        except ValueError:
            app = firebase_admin.initialize_app(
                cred, options={"httpTimeout": timeout}, name=FIREBASE_APP_NAME
            )
        LOGGER.info("Firebase identity verification ready (project=%s)", service_account.get("project_id"))
        return cls(functools.partial(auth.verify_id_token, app=app))

    def verify(self, authorization: str | None) -> VerifiedIdentity:
        if not authorization or not authorization.startswith(BEARER_PREFIX):
            raise Unauthenticated(NO_TOKEN)

        token = authorization[len(BEARER_PREFIX):].strip()
        if not token:
            raise Unauthenticated(UNAUTHORIZED, detail="Empty bearer token")

        try:
            claims = self._verify_token(token)
        except Exception as e:
            # callers only ever see "Unauthorized"
            LOGGER.warning("Firebase token error: %s: %s", type(e).__name__, e)
            raise Unauthenticated(UNAUTHORIZED, detail=f"Token rejected: {type(e).__name__}") from e

        uid = claims.get("uid") or claims.get("sub") or ""
        return VerifiedIdentity(uid=str(uid), claims=dict(claims))
