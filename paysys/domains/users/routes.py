from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import EmailStr

from paysys.domains.auth.middleware import jwt_auth
from paysys.domains.auth.models import Identity
from paysys.domains.users.service import UserService

router = APIRouter(prefix="/users", tags=["Users"])


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


@router.get("")
async def list_recipients(
    search: Optional[str] = None,
    limit: int = Query(20, ge=1),
    identity: Identity = Depends(jwt_auth),
    service: UserService = Depends(get_user_service),
):
    users = await service.list_recipients(identity, search, limit)
    return {"success": True, "data": {"users": users}}


@router.get("/lookup")
async def lookup_by_email(
    email: EmailStr,
    identity: Identity = Depends(jwt_auth),
    service: UserService = Depends(get_user_service),
):
    return {"success": True, "data": {"user": await service.lookup_by_email(email)}}
