from fastapi import Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from paysys.domains.auth.models import Identity
from paysys.shared.errors import UnauthenticatedError


class JWTAuthMiddleware(HTTPBearer):
    """Bearer token dependency that resolves the calling account."""

    def __init__(self):
        super(JWTAuthMiddleware, self).__init__(auto_error=False)

    async def __call__(self, request: Request) -> Identity:
        credentials: HTTPAuthorizationCredentials = await super(JWTAuthMiddleware, self).__call__(request)
        if not credentials or not credentials.credentials:
            raise UnauthenticatedError("Access token required", code="MISSING_TOKEN")

        jwt_service = request.app.state.jwt_service
        user_service = request.app.state.user_service

        claims = jwt_service.verify_access_token(credentials.credentials)
        user = await user_service.get_account(claims["sub"])
        if user is None:
            raise UnauthenticatedError("User not found", code="USER_NOT_FOUND")
        if not user.get("is_active", True):
            raise UnauthenticatedError("User account is deactivated", code="USER_DEACTIVATED")

        return Identity(
            id=str(user["_id"]),
            email=user["email"],
            first_name=user.get("first_name"),
            last_name=user.get("last_name"),
            is_active=user.get("is_active", True),
            is_email_verified=user.get("is_email_verified", False),
        )


jwt_auth = JWTAuthMiddleware()
