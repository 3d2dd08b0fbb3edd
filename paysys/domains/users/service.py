import asyncio
import hashlib
import logging
from typing import Optional

import bcrypt

from paysys.domains.auth.jwt_service import JWTService
from paysys.domains.auth.models import (
    ChangePasswordRequest,
    Identity,
    LoginRequest,
    RegisterRequest,
    UpdateProfileRequest,
)
from paysys.domains.users.repository import UserRepository
from paysys.shared.clock import Clock, system_clock
from paysys.shared.errors import (
    ConflictError,
    NotFoundError,
    UnauthenticatedError,
    ValidationError,
)
from paysys.shared.serialization import serialize_document

logger = logging.getLogger(__name__)

HIDDEN_FIELDS = ("password_hash", "refresh_tokens")
RECIPIENT_FIELDS = ("id", "email", "first_name", "last_name")


def _token_fingerprint(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class UserService:
    def __init__(
        self,
        repository: UserRepository,
        jwt_service: JWTService,
        clock: Clock = system_clock,
        passwordless_register: bool = False,
        auto_login_after_register: bool = False,
        bcrypt_rounds: int = 12,
    ):
        self.repository = repository
        self.jwt_service = jwt_service
        self.clock = clock
        self.passwordless_register = passwordless_register
        self.auto_login_after_register = auto_login_after_register
        self.bcrypt_rounds = bcrypt_rounds

    @staticmethod
    def serialize(user: dict) -> dict:
        return serialize_document(user, hidden=HIDDEN_FIELDS)

    async def hash_password(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.bcrypt_rounds)
        hashed = await asyncio.to_thread(bcrypt.hashpw, password.encode("utf-8"), salt)
        return hashed.decode("utf-8")

    @staticmethod
    async def check_password(password: str, password_hash: Optional[str]) -> bool:
        if not password_hash:
            return False
        return await asyncio.to_thread(bcrypt.checkpw, password.encode("utf-8"), password_hash.encode("utf-8"))

    async def _issue_tokens(self, user: dict) -> dict:
        tokens = self.jwt_service.create_token_pair(str(user["_id"]), user["email"])
        await self.repository.add_refresh_token(user["_id"], _token_fingerprint(tokens["refresh_token"]))
        return tokens

    async def get_account(self, user_id) -> Optional[dict]:
        return await self.repository.get(user_id)

    async def register(self, request: RegisterRequest) -> dict:
        email = request.email.lower()
        if request.password is None and not self.passwordless_register:
            raise ValidationError("Password is required", code="PASSWORD_REQUIRED")
        if await self.repository.find_by_email(email):
            raise ConflictError("Email already registered", code="EMAIL_EXISTS")
        if request.document and await self.repository.find_by_document(request.document):
            raise ConflictError("Document already registered", code="DOCUMENT_EXISTS")

        now = self.clock.now()
        document = {
            "email": email,
            "first_name": request.first_name.strip(),
            "last_name": request.last_name.strip(),
            "phone": request.phone,
            "document": request.document,
            "is_active": True,
            "is_email_verified": False,
            "refresh_tokens": [],
            "created_at": now,
            "updated_at": now,
        }
        if request.password is not None:
            document["password_hash"] = await self.hash_password(request.password)

        user = await self.repository.insert(document)
        logger.info(f"User registered: {user['_id']}")

        result = {"user": self.serialize(user)}
        # Passwordless accounts have no other way to obtain a session
        if self.auto_login_after_register or "password_hash" not in user:
            result["tokens"] = await self._issue_tokens(user)
        return result

    async def login(self, request: LoginRequest) -> dict:
        user = await self.repository.find_by_email(request.email)
        if user is None or not await self.check_password(request.password, user.get("password_hash")):
            raise UnauthenticatedError("Invalid email or password", code="INVALID_CREDENTIALS")
        if not user.get("is_active", True):
            raise UnauthenticatedError("Account is deactivated", code="ACCOUNT_DEACTIVATED")

        tokens = await self._issue_tokens(user)
        user = await self.repository.update(user["_id"], {"last_login_at": self.clock.now()})
        logger.info(f"User logged in: {user['_id']}")
        return {"user": self.serialize(user), "tokens": tokens}

    async def refresh(self, refresh_token: str) -> dict:
        try:
            claims = self.jwt_service.verify_refresh_token(refresh_token)
        except UnauthenticatedError as exc:
            raise UnauthenticatedError("Invalid refresh token", code="INVALID_REFRESH_TOKEN") from exc

        user = await self.repository.get(claims["sub"])
        fingerprint = _token_fingerprint(refresh_token)
        if user is None or fingerprint not in user.get("refresh_tokens", []):
            raise UnauthenticatedError("Invalid refresh token", code="INVALID_REFRESH_TOKEN")
        if not user.get("is_active", True):
            raise UnauthenticatedError("Account is deactivated", code="ACCOUNT_DEACTIVATED")

        tokens = self.jwt_service.create_token_pair(str(user["_id"]), user["email"])
        # A refresh token can be exchanged once
        rotated = await self.repository.replace_refresh_token(
            user["_id"], fingerprint, _token_fingerprint(tokens["refresh_token"])
        )
        if not rotated:
            raise UnauthenticatedError("Invalid refresh token", code="INVALID_REFRESH_TOKEN")
        return {"tokens": tokens}

    async def logout(self, owner: Identity, refresh_token: Optional[str] = None):
        if refresh_token:
            await self.repository.remove_refresh_token(owner.id, _token_fingerprint(refresh_token))
        else:
            await self.repository.clear_refresh_tokens(owner.id)
        logger.info(f"User logged out: {owner.id}")

    async def get_profile(self, owner: Identity) -> dict:
        user = await self.repository.get(owner.id)
        if user is None:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")
        return self.serialize(user)

    async def update_profile(self, owner: Identity, request: UpdateProfileRequest) -> dict:
        changes = request.model_dump(exclude_none=True)
        if "document" in changes:
            holder = await self.repository.find_by_document(changes["document"])
            if holder is not None and str(holder["_id"]) != owner.id:
                raise ConflictError("Document already registered by another user", code="DOCUMENT_EXISTS")

        changes["updated_at"] = self.clock.now()
        user = await self.repository.update(owner.id, changes)
        if user is None:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")
        return self.serialize(user)

    async def change_password(self, owner: Identity, request: ChangePasswordRequest):
        user = await self.repository.get(owner.id)
        if user is None:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")
        if not await self.check_password(request.current_password, user.get("password_hash")):
            raise ValidationError("Current password is incorrect", code="INVALID_CURRENT_PASSWORD")

        await self.repository.update(owner.id, {
            "password_hash": await self.hash_password(request.new_password),
            "updated_at": self.clock.now(),
        })
        # Every session has to log in again with the new password
        await self.repository.clear_refresh_tokens(owner.id)
        logger.info(f"Password changed for user {owner.id}")

    @staticmethod
    def _recipient_view(user: dict) -> dict:
        view = serialize_document(user, hidden=HIDDEN_FIELDS)
        return {key: view.get(key) for key in RECIPIENT_FIELDS}

    async def list_recipients(self, owner: Identity, search: Optional[str] = None, limit: int = 20) -> list:
        limit = max(1, min(limit, 50))
        users = await self.repository.search_active(owner.id, search, limit)
        return [self._recipient_view(user) for user in users]

    async def lookup_by_email(self, email: str) -> dict:
        user = await self.repository.find_by_email(email)
        if user is None or not user.get("is_active", True):
            raise NotFoundError("User not found", code="USER_NOT_FOUND")
        return self._recipient_view(user)
