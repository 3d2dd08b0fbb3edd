import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from paysys.domains.auth.middleware import jwt_auth
from paysys.domains.auth.models import Identity
from paysys.domains.cards.models import SaveCardRequest
from paysys.domains.cards.services import CardService
from paysys.domains.transactions.models import (
    CreditCardPaymentRequest,
    InitiatePaymentRequest,
    PixPaymentRequest,
    TransactionStatus,
)
from paysys.domains.transactions.services import TransactionService
from paysys.shared.card_validation_service import CardValidationService
from paysys.shared.payment_gateway import PaymentGatewaySimulator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_transaction_service(request: Request) -> TransactionService:
    return request.app.state.transaction_service


def get_card_service(request: Request) -> CardService:
    return request.app.state.card_service


def get_card_validator(request: Request) -> CardValidationService:
    return request.app.state.card_validator


def get_gateway(request: Request) -> PaymentGatewaySimulator:
    return request.app.state.gateway


@router.post("/initiate", status_code=201)
async def initiate_payment(
    body: InitiatePaymentRequest,
    identity: Identity = Depends(jwt_auth),
    service: TransactionService = Depends(get_transaction_service),
):
    transaction = await service.initiate(identity, body)
    return {
        "success": True,
        "data": {"transaction": transaction, "message": "Payment initiated successfully"},
    }


@router.get("/recent")
async def recent_transactions(
    limit: int = 5,
    identity: Identity = Depends(jwt_auth),
    service: TransactionService = Depends(get_transaction_service),
):
    return {"success": True, "data": await service.recent(identity, limit)}


async def _save_card_after_charge(
    identity: Identity,
    card: dict,
    card_service: CardService,
    validator: CardValidationService,
):
    try:
        request = SaveCardRequest(**card)
        card_service.check_card(request)
        validation = await validator.validate(request.card_fields(), {"id": identity.id, "email": identity.email})
        saved = await card_service.save_card(identity, request, validation)
        logger.info(f"Card {saved['id']} saved after approved charge")
    except Exception as exc:
        # The charge already went through, saving the card is best effort
        logger.warning(f"Could not save card after charge for user {identity.id}: {exc.__class__.__name__}")


@router.post("/credit-card")
async def process_credit_card(
    body: CreditCardPaymentRequest,
    identity: Identity = Depends(jwt_auth),
    service: TransactionService = Depends(get_transaction_service),
    card_service: CardService = Depends(get_card_service),
    validator: CardValidationService = Depends(get_card_validator),
):
    if body.card_id:
        card = await card_service.detokenize_for_charge(body.card_id, identity)
        card["cvv"] = body.cvv
    else:
        card = body.card_fields()

    outcome = await service.process_credit_card(body.transaction_id, card, identity)

    if body.save_card and body.card_id is None and outcome["status"] == TransactionStatus.APPROVED.value:
        await _save_card_after_charge(identity, card, card_service, validator)

    response = {
        "success": outcome["success"],
        "data": {
            "transaction": outcome["transaction"],
            "status": outcome["status"],
            "message": outcome["message"],
            "auth_code": outcome["auth_code"],
        },
    }
    if not outcome["success"]:
        response["error"] = {"message": outcome["message"], "code": "PAYMENT_DECLINED"}
    return response


@router.post("/pix")
async def process_pix(
    body: PixPaymentRequest,
    identity: Identity = Depends(jwt_auth),
    service: TransactionService = Depends(get_transaction_service),
):
    outcome = await service.process_pix(body.transaction_id, identity)
    response = {
        "success": outcome["success"],
        "data": {
            "transaction": outcome["transaction"],
            "pix_code": outcome["pix_code"],
            "qr_code_image": outcome["qr_code_image"],
            "expires_at": outcome["expires_at"],
            "message": outcome["message"],
        },
    }
    if not outcome["success"]:
        response["error"] = {"message": outcome["message"], "code": "PIX_GENERATION_FAILED"}
    return response


@router.get("/pix/{transaction_id}/status")
async def check_pix_status(
    transaction_id: str,
    identity: Identity = Depends(jwt_auth),
    service: TransactionService = Depends(get_transaction_service),
):
    outcome = await service.check_pix_status(transaction_id, identity)
    return {
        "success": True,
        "data": {
            "transaction": outcome["transaction"],
            "status": outcome["status"],
            "message": outcome["message"],
            "paid_at": outcome["paid_at"],
        },
    }


@router.get("/stats/overview")
async def payment_stats(
    period: str = "30d",
    identity: Identity = Depends(jwt_auth),
    service: TransactionService = Depends(get_transaction_service),
):
    return {"success": True, "data": await service.aggregate_stats(identity, period)}


@router.get("/test/cards")
async def test_cards(
    identity: Identity = Depends(jwt_auth),
    gateway: PaymentGatewaySimulator = Depends(get_gateway),
):
    return {
        "success": True,
        "data": {
            "test_cards": gateway.get_test_cards(),
            "note": "Use these cards in the sandbox. Any other valid card is approved at the configured rate.",
        },
    }


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    identity: Identity = Depends(jwt_auth),
    service: TransactionService = Depends(get_transaction_service),
):
    transaction = await service.get_transaction(transaction_id, identity)
    return {"success": True, "data": {"transaction": transaction}}


@router.patch("/{transaction_id}/cancel")
async def cancel_transaction(
    transaction_id: str,
    identity: Identity = Depends(jwt_auth),
    service: TransactionService = Depends(get_transaction_service),
):
    return {"success": True, "data": await service.cancel(transaction_id, identity)}


@router.get("")
async def transaction_history(
    status: Optional[TransactionStatus] = None,
    payment_method: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    sort: str = "created_at",
    direction: str = "desc",
    identity: Identity = Depends(jwt_auth),
    service: TransactionService = Depends(get_transaction_service),
):
    history = await service.list_history(
        identity,
        status=status.value if status else None,
        payment_method=payment_method,
        page=page,
        limit=limit,
        sort=sort,
        direction=direction,
    )
    return {"success": True, "data": history}
