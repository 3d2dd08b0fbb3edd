from fastapi import APIRouter, Depends, Request

from paysys.domains.auth.middleware import jwt_auth
from paysys.domains.auth.models import Identity
from paysys.domains.cards.models import SaveCardRequest, UpdateCardRequest
from paysys.domains.cards.services import CardService
from paysys.shared.card_validation_service import CardValidationService

router = APIRouter(prefix="/cards", tags=["Cards"])


def get_card_service(request: Request) -> CardService:
    return request.app.state.card_service


def get_card_validator(request: Request) -> CardValidationService:
    return request.app.state.card_validator


@router.get("")
async def list_cards(
    identity: Identity = Depends(jwt_auth),
    service: CardService = Depends(get_card_service),
):
    cards = await service.list_cards(identity)
    return {"success": True, "data": {"cards": cards, "total": len(cards)}}


@router.post("", status_code=201)
async def save_card(
    body: SaveCardRequest,
    identity: Identity = Depends(jwt_auth),
    service: CardService = Depends(get_card_service),
    validator: CardValidationService = Depends(get_card_validator),
):
    service.check_card(body)
    validation = await validator.validate(body.card_fields(), {"id": identity.id, "email": identity.email})
    card = await service.save_card(identity, body, validation)
    data = {"card": card, "message": "Card saved successfully"}
    if not validation.is_bypassed:
        data["validation"] = validation.model_dump(exclude={"raw"})
    return {"success": True, "data": data}


@router.get("/check/expiration")
async def check_expiration(
    identity: Identity = Depends(jwt_auth),
    service: CardService = Depends(get_card_service),
):
    return {"success": True, "data": await service.check_expiration(identity)}


@router.get("/stats/overview")
async def card_stats(
    identity: Identity = Depends(jwt_auth),
    service: CardService = Depends(get_card_service),
):
    return {"success": True, "data": await service.card_stats(identity)}


@router.delete("/expired/cleanup")
async def purge_expired(
    identity: Identity = Depends(jwt_auth),
    service: CardService = Depends(get_card_service),
):
    deleted = await service.purge_expired(identity)
    return {
        "success": True,
        "data": {"deleted_count": deleted, "message": f"{deleted} expired cards removed"},
    }


@router.get("/{card_id}")
async def get_card(
    card_id: str,
    identity: Identity = Depends(jwt_auth),
    service: CardService = Depends(get_card_service),
):
    return {"success": True, "data": {"card": await service.get_card(card_id, identity)}}


@router.put("/{card_id}")
async def update_card(
    card_id: str,
    body: UpdateCardRequest,
    identity: Identity = Depends(jwt_auth),
    service: CardService = Depends(get_card_service),
):
    card = await service.update_card(card_id, identity, body)
    return {"success": True, "data": {"card": card, "message": "Card updated successfully"}}


@router.delete("/{card_id}")
async def delete_card(
    card_id: str,
    identity: Identity = Depends(jwt_auth),
    service: CardService = Depends(get_card_service),
):
    await service.delete_card(card_id, identity)
    return {"success": True, "data": {"message": "Card deleted successfully"}}


@router.patch("/{card_id}/set-default")
async def set_default(
    card_id: str,
    identity: Identity = Depends(jwt_auth),
    service: CardService = Depends(get_card_service),
):
    card = await service.set_default(card_id, identity)
    return {"success": True, "data": {"card": card, "message": "Default card updated"}}
