from typing import Optional

from fastapi import APIRouter, Depends, Request

from paysys.domains.auth.middleware import jwt_auth
from paysys.domains.auth.models import (
    ChangePasswordRequest,
    Identity,
    LoginRequest,
    LogoutRequest,
    RefreshTokenRequest,
    RegisterRequest,
    UpdateProfileRequest,
)
from paysys.domains.users.service import UserService

router = APIRouter(prefix="/auth", tags=["Auth"])


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


@router.post("/register", status_code=201)
async def register(body: RegisterRequest, service: UserService = Depends(get_user_service)):
    result = await service.register(body)
    result["message"] = "User registered successfully"
    return {"success": True, "data": result}


@router.post("/login")
async def login(body: LoginRequest, service: UserService = Depends(get_user_service)):
    result = await service.login(body)
    result["message"] = "Login successful"
    return {"success": True, "data": result}


@router.post("/refresh")
async def refresh(body: RefreshTokenRequest, service: UserService = Depends(get_user_service)):
    return {"success": True, "data": await service.refresh(body.refresh_token)}


@router.post("/logout")
async def logout(
    body: Optional[LogoutRequest] = None,
    identity: Identity = Depends(jwt_auth),
    service: UserService = Depends(get_user_service),
):
    await service.logout(identity, body.refresh_token if body else None)
    return {"success": True, "data": {"message": "Logout successful"}}


@router.get("/profile")
async def get_profile(
    identity: Identity = Depends(jwt_auth),
    service: UserService = Depends(get_user_service),
):
    return {"success": True, "data": {"user": await service.get_profile(identity)}}


@router.put("/profile")
async def update_profile(
    body: UpdateProfileRequest,
    identity: Identity = Depends(jwt_auth),
    service: UserService = Depends(get_user_service),
):
    user = await service.update_profile(identity, body)
    return {"success": True, "data": {"user": user, "message": "Profile updated successfully"}}


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    identity: Identity = Depends(jwt_auth),
    service: UserService = Depends(get_user_service),
):
    await service.change_password(identity, body)
    return {"success": True, "data": {"message": "Password changed successfully. Please log in again."}}
