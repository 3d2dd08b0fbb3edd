import secrets
from datetime import timedelta
from typing import Optional

import jwt

from paysys.config.setting import settings
from paysys.shared.clock import Clock, system_clock
from paysys.shared.errors import TokenExpiredError, UnauthenticatedError

ISSUER = "sistema-pagamentos"
AUDIENCE = "sistema-pagamentos-app"


class JWTService:
    def __init__(
        self,
        secret_key: Optional[str] = None,
        refresh_secret_key: Optional[str] = None,
        access_expires_minutes: Optional[int] = None,
        refresh_expires_days: Optional[int] = None,
        clock: Clock = system_clock,
    ):
        self.secret_key = secret_key or settings.jwt_secret
        self.refresh_secret_key = refresh_secret_key or settings.jwt_refresh_secret
        self.algorithm = "HS256"
        self.access_token_expire_minutes = access_expires_minutes or settings.jwt_expires_minutes
        self.refresh_token_expire_days = refresh_expires_days or settings.jwt_refresh_expires_days
        self.clock = clock

    def _encode(self, user_id: str, email: str, secret: str, expires_delta: timedelta, token_type: str) -> str:
        now = self.clock.now()
        to_encode = {
            "sub": str(user_id),
            "email": email,
            "type": token_type,
            "iat": now,
            "exp": now + expires_delta,
            "iss": ISSUER,
            "aud": AUDIENCE,
            # Keeps two tokens issued in the same second distinct
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(to_encode, secret, algorithm=self.algorithm)

    def create_access_token(self, user_id: str, email: str) -> str:
        """Create a new JWT access token."""
        return self._encode(
            user_id, email, self.secret_key,
            timedelta(minutes=self.access_token_expire_minutes), "access",
        )

    def create_refresh_token(self, user_id: str, email: str) -> str:
        return self._encode(
            user_id, email, self.refresh_secret_key,
            timedelta(days=self.refresh_token_expire_days), "refresh",
        )

    def create_token_pair(self, user_id: str, email: str) -> dict:
        return {
            "access_token": self.create_access_token(user_id, email),
            "refresh_token": self.create_refresh_token(user_id, email),
            "token_type": "Bearer",
            "expires_in": self.access_token_expire_minutes * 60,
        }

    def _decode(self, token: str, secret: str, token_type: str) -> dict:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self.algorithm],
                audience=AUDIENCE,
                issuer=ISSUER,
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpiredError("Token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise UnauthenticatedError("Invalid token", code="INVALID_TOKEN") from exc

        if payload.get("type") != token_type or not payload.get("sub"):
            raise UnauthenticatedError("Invalid token", code="INVALID_TOKEN")
        return payload

    def verify_access_token(self, token: str) -> dict:
        """Verify an access token and return its claims."""
        return self._decode(token, self.secret_key, "access")

    def verify_refresh_token(self, token: str) -> dict:
        return self._decode(token, self.refresh_secret_key, "refresh")
