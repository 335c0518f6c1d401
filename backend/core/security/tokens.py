"""
JWT verification for identity-provider access tokens.

Accounts are owned by the external identity provider; the API only checks
the provider-signed access token and trusts its ``sub`` claim as the user id.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt


@dataclass
class TokenPayload:
    """JWT token payload structure."""

    sub: str  # Subject (user ID)
    exp: datetime  # Expiration time
    iat: datetime  # Issued at
    email: str | None = None
    role: str | None = None


class TokenService:
    """Service for validating (and, for local tooling, issuing) access tokens."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        audience: str | None = "authenticated",
        access_token_expire_minutes: int = 60,
    ):
        """
        Initialize the token service.

        Args:
            secret_key: Shared JWT secret of the identity provider
            algorithm: JWT algorithm (default: HS256)
            audience: Expected ``aud`` claim; None disables the check
            access_token_expire_minutes: Lifetime of tokens issued by create_access_token
        """
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._audience = audience
        self._access_token_expire_minutes = access_token_expire_minutes

    def create_access_token(
        self,
        user_id: str,
        email: str | None = None,
        role: str | None = "authenticated",
    ) -> str:
        """
        Create an access token shaped like the identity provider's.

        Used by tests and local development scripts.
        """
        now = datetime.now(UTC)
        expire = now + timedelta(minutes=self._access_token_expire_minutes)

        payload = {
            "sub": user_id,
            "exp": expire,
            "iat": now,
        }
        if self._audience:
            payload["aud"] = self._audience
        if email:
            payload["email"] = email
        if role:
            payload["role"] = role

        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def verify_access_token(self, token: str) -> TokenPayload | None:
        """
        Decode and validate an access token.

        Args:
            token: JWT token to verify

        Returns:
            TokenPayload if valid, None if invalid, expired or for another audience
        """
        options = {} if self._audience else {"verify_aud": False}
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                audience=self._audience,
                options=options,
            )

            for field in ("sub", "exp"):
                if not payload.get(field):
                    raise JWTError(f"Missing required field: {field}")

            return TokenPayload(
                sub=str(payload["sub"]),
                exp=datetime.fromtimestamp(payload["exp"], tz=UTC),
                iat=datetime.fromtimestamp(payload.get("iat", 0), tz=UTC),
                email=payload.get("email"),
                role=payload.get("role"),
            )
        except JWTError:
            return None
