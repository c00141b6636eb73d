"""Authentication for the PingLater API.

Provides:
- HMAC-signed bearer tokens carrying a user id and scopes
- A FastAPI dependency resolving the calling user

Token issuance belongs to the account service; create_token() exists for
tooling and tests.
"""

import hashlib
import hmac
import time
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field

from pinglater.config import Settings
from pinglater.config import settings as default_settings
from pinglater.exceptions import AuthenticationError, AuthorizationError
from pinglater.logging import bind_context, get_logger

logger = get_logger(__name__)

# Security scheme for OpenAPI docs
security = HTTPBearer(auto_error=False)

WEBHOOKS_SCOPE = "webhooks"
WILDCARD_SCOPE = "*"
USER_ID_HEADER = "X-User-ID"


class AuthenticatedUser(BaseModel):
    """Represents an authenticated caller.

    Attributes:
        user_id: Unique identifier for the user.
        scopes: Permission scopes granted to the token.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(min_length=1, description="Unique identifier for the user")
    scopes: list[str] = Field(default_factory=list, description="Permission scopes")

    def has_scope(self, scope: str) -> bool:
        return WILDCARD_SCOPE in self.scopes or scope in self.scopes


class TokenValidator:
    """Validates Bearer tokens using HMAC-SHA256.

    Token format: user_id:scopes:expires_at:signature
    where scopes is comma-separated and
    signature = HMAC(secret, user_id:scopes:expires_at).
    """

    def __init__(self, secret_key: str) -> None:
        self.secret_key = secret_key.encode()

    def _sign(self, payload: str) -> str:
        return hmac.new(self.secret_key, payload.encode(), hashlib.sha256).hexdigest()

    def create_token(
        self,
        user_id: str,
        scopes: list[str] | None = None,
        expire_minutes: int = 60,
    ) -> str:
        """Create a signed token for a user.

        Args:
            user_id: User identifier.
            scopes: Granted scopes. Defaults to the webhooks scope.
            expire_minutes: Token validity in minutes.

        Returns:
            Signed token string.
        """
        scope_list = scopes if scopes is not None else [WEBHOOKS_SCOPE]
        expires_at = int(time.time()) + (expire_minutes * 60)
        payload = f"{user_id}:{','.join(scope_list)}:{expires_at}"
        return f"{payload}:{self._sign(payload)}"

    def validate_token(self, token: str) -> AuthenticatedUser:
        """Validate a token and return the authenticated user.

        Raises:
            AuthenticationError: If the token is malformed, forged or expired.
        """
        parts = token.rsplit(":", 3)
        if len(parts) != 4:
            raise AuthenticationError("Invalid token format")

        user_id, scopes, expires_at_str, signature = parts
        payload = f"{user_id}:{scopes}:{expires_at_str}"

        if not hmac.compare_digest(signature.encode("utf-8"), self._sign(payload).encode("ascii")):
            raise AuthenticationError("Invalid token signature")

        try:
            expires_at = int(expires_at_str)
        except ValueError as e:
            raise AuthenticationError(f"Invalid token: {e}") from e

        if time.time() > expires_at:
            raise AuthenticationError("Token has expired")
        if not user_id:
            raise AuthenticationError("Token has no user")

        return AuthenticatedUser(
            user_id=user_id,
            scopes=[s.strip() for s in scopes.split(",") if s.strip()],
        )


@lru_cache(maxsize=1)
def get_token_validator(secret_key: str) -> TokenValidator:
    """Get or create the token validator singleton.

    The secret_key parameter ensures a new validator is created if the key changes.
    """
    return TokenValidator(secret_key)


def reset_auth_singletons() -> None:
    """Reset cached validators (for testing)."""
    get_token_validator.cache_clear()


class AuthDependency:
    """FastAPI dependency resolving the calling user.

    With auth enabled, a valid bearer token carrying the required scope
    is needed. With auth disabled (development), the user id is taken
    from the X-User-ID header.

    Usage:
        @router.get("/webhooks")
        async def list_webhooks(
            user: Annotated[AuthenticatedUser, Depends(AuthDependency())],
        ):
            ...
    """

    def __init__(
        self,
        settings: Settings | None = None,
        required_scope: str = WEBHOOKS_SCOPE,
    ) -> None:
        self.settings = settings
        self.required_scope = required_scope

    def _resolve_settings(self, request: Request) -> Settings:
        if self.settings is not None:
            return self.settings
        return getattr(request.app.state, "settings", default_settings)

    async def __call__(
        self,
        request: Request,
        credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    ) -> AuthenticatedUser:
        settings = self._resolve_settings(request)

        if not settings.is_auth_enabled:
            user_id = request.headers.get(USER_ID_HEADER, "").strip()
            if not user_id:
                raise AuthenticationError(f"Missing {USER_ID_HEADER} header")
            user = AuthenticatedUser(user_id=user_id, scopes=[WILDCARD_SCOPE])
        else:
            if credentials is None:
                raise AuthenticationError("Missing authentication credentials")
            validator = get_token_validator(settings.effective_auth_secret_key)
            user = validator.validate_token(credentials.credentials)

        if not user.has_scope(self.required_scope):
            raise AuthorizationError(f"Token lacks the '{self.required_scope}' scope")

        bind_context(user_id=user.user_id)
        logger.debug("User authenticated", user_id=user.user_id)
        return user
