import asyncio
import logging
import math
import re
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from paysys.domains.auth.models import Identity
from paysys.domains.transactions.models import (
    CANCELLABLE_STATUSES,
    MAX_INSTALLMENTS,
    MIN_INSTALLMENTS,
    PIX_KEY_PATTERN,
    SORTABLE_FIELDS,
    STATS_PERIODS,
    TERMINAL_STATUSES,
    InitiatePaymentRequest,
    InstallmentMode,
    PaymentMethod,
    TransactionStatus,
)
from paysys.domains.transactions.repository import TransactionRepository
from paysys.shared.card_utils import validate_card_expiration
from paysys.shared.clock import Clock, system_clock
from paysys.shared.errors import (
    CannotCancelError,
    DuplicateOrderError,
    InstallmentsNotAllowedError,
    InvalidInstallmentsError,
    InvalidStatusError,
    NotFoundError,
    PaymentProcessingError,
    PaymentTimeoutError,
    PixNotInitiatedError,
    PixProcessingError,
    PixStatusCheckError,
    RecipientConflictError,
    UnauthorizedError,
    ValidationError,
    WrongMethodError,
)
from paysys.shared.ids import same_account, to_object_id
from paysys.shared.payment_gateway import PaymentGatewaySimulator
from paysys.shared.serialization import serialize_document


logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HIDDEN_FIELDS = ("active_order_key",)

PENDING = TransactionStatus.PENDING.value
PROCESSING = TransactionStatus.PROCESSING.value
APPROVED = TransactionStatus.APPROVED.value
DECLINED = TransactionStatus.DECLINED.value
FAILED = TransactionStatus.FAILED.value


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_installments(base_amount, quantity: int, interest_monthly) -> dict:
    """
    Installment plan for a credit card charge.

    A single installment carries no interest. Otherwise the total is the base
    amount compounded monthly, ``base * (1 + rate) ** quantity``, rounded to
    cents, and split evenly.
    """
    if quantity < MIN_INSTALLMENTS or quantity > MAX_INSTALLMENTS:
        raise InvalidInstallmentsError()

    base = to_money(base_amount)
    if quantity == 1:
        return {
            "quantity": 1,
            "interest_monthly": 0.0,
            "total_with_interest": float(base),
            "installment_value": float(base),
            "mode": InstallmentMode.AVISTA.value,
        }

    rate = Decimal(str(interest_monthly))
    total = to_money(base * (1 + rate) ** quantity)
    installment_value = to_money(total / quantity)
    return {
        "quantity": quantity,
        "interest_monthly": float(rate),
        "total_with_interest": float(total),
        "installment_value": float(installment_value),
        "mode": InstallmentMode.PARCELADO.value,
    }


class TransactionService:
    def __init__(
        self,
        repository: TransactionRepository,
        gateway: PaymentGatewaySimulator,
        clock: Clock = system_clock,
        interest_monthly: float = 0.03,
        gateway_timeout: float = 30.0,
    ):
        self.repository = repository
        self.gateway = gateway
        self.clock = clock
        self.interest_monthly = interest_monthly
        self.gateway_timeout = gateway_timeout

    @staticmethod
    def serialize(doc: dict) -> dict:
        return serialize_document(doc, hidden=HIDDEN_FIELDS)

    async def initiate(self, owner: Identity, request: InitiatePaymentRequest) -> dict:
        user_id = to_object_id(owner.id)

        existing = await self.repository.find_active_order(user_id, request.order_id)
        if existing:
            raise DuplicateOrderError()

        if request.recipient_user_id and request.recipient_pix_key:
            raise RecipientConflictError()
        if request.recipient_pix_key and not re.match(PIX_KEY_PATTERN, request.recipient_pix_key):
            raise ValidationError("Invalid PIX key format", code="INVALID_PIX_KEY")

        recipient_id = None
        if request.recipient_user_id:
            recipient_id = to_object_id(request.recipient_user_id)
            if recipient_id is None:
                raise ValidationError("Invalid recipient user id", code="INVALID_RECIPIENT")
            if recipient_id == user_id:
                raise ValidationError("Cannot send a payment to yourself", code="INVALID_RECIPIENT")

        base_amount = to_money(request.amount)
        amount = base_amount
        installments = None
        if request.payment_method == PaymentMethod.CREDIT_CARD:
            quantity = request.installments.quantity if request.installments else 1
            installments = compute_installments(base_amount, quantity, self.interest_monthly)
            amount = to_money(installments["total_with_interest"])
        elif request.installments is not None:
            raise InstallmentsNotAllowedError()

        now = self.clock.now()
        document = {
            "order_id": request.order_id,
            "user_id": user_id,
            "recipient_user_id": recipient_id,
            "recipient_pix_key": request.recipient_pix_key or None,
            "amount": float(amount),
            "base_amount": float(base_amount) if request.payment_method == PaymentMethod.CREDIT_CARD else None,
            "currency": request.currency,
            "payment_method": request.payment_method.value,
            "status": PENDING,
            "customer": request.customer.model_dump(),
            "return_url": str(request.return_url),
            "callback_url": str(request.callback_url),
            "installments": installments,
            "created_at": now,
            "updated_at": now,
        }
        transaction = await self.repository.create(document)
        logger.info(f"Transaction {transaction['_id']} initiated for order {request.order_id}")
        return self.serialize(transaction)

    async def _load(self, transaction_id, requester: Optional[Identity], owner_only: bool = False) -> dict:
        transaction = await self.repository.get(transaction_id)
        if transaction is None:
            raise NotFoundError("Transaction not found", code="TRANSACTION_NOT_FOUND")

        owner_id = transaction.get("user_id")
        # Guest transactions carry no owner and are open to any caller
        if owner_id is None and not owner_only:
            return transaction
        if requester is None or not same_account(owner_id, requester.id):
            raise UnauthorizedError("Unauthorized access to transaction", code="UNAUTHORIZED_TRANSACTION")
        return transaction

    async def _fail(self, transaction_id, expected_statuses, error: str) -> Optional[dict]:
        return await self.repository.transition(transaction_id, expected_statuses, {
            "status": FAILED,
            "gateway_response": {"error": error},
            "updated_at": self.clock.now(),
        })

    async def process_credit_card(self, transaction_id, card: dict, requester: Optional[Identity]) -> dict:
        transaction = await self._load(transaction_id, requester)
        if transaction["status"] != PENDING:
            raise InvalidStatusError()
        if transaction["payment_method"] != PaymentMethod.CREDIT_CARD.value:
            raise WrongMethodError()
        if not validate_card_expiration(card.get("expiration_month"), card.get("expiration_year"), self.clock.today()):
            raise ValidationError("Card has expired", code="CARD_EXPIRED")

        # Claim the transaction before talking to the gateway
        claimed = await self.repository.transition(transaction_id, [PENDING], {
            "status": PROCESSING,
            "updated_at": self.clock.now(),
        })
        if claimed is None:
            raise InvalidStatusError()

        try:
            response = await asyncio.wait_for(
                self.gateway.process_credit_card(card, claimed["amount"]),
                timeout=self.gateway_timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error(f"Gateway timeout while charging transaction {transaction_id}")
            await self._fail(transaction_id, [PROCESSING], "Gateway timeout")
            raise PaymentTimeoutError() from exc
        except Exception as exc:
            logger.error(f"Gateway error while charging transaction {transaction_id}: {exc}")
            await self._fail(transaction_id, [PROCESSING], str(exc))
            raise PaymentProcessingError() from exc

        updated = await self.repository.transition(transaction_id, [PROCESSING], {
            "status": response.status,
            "bank_transaction_id": response.gateway_transaction_id,
            "gateway_response": response.details,
            "updated_at": self.clock.now(),
        })
        if updated is None:
            # Cancelled while the gateway was working; keep what is stored
            logger.warning(f"Transaction {transaction_id} changed during gateway call, result {response.status} not applied")
            updated = await self.repository.get(transaction_id)

        return {
            "success": response.success and updated["status"] == APPROVED,
            "transaction": self.serialize(updated),
            "status": updated["status"],
            "message": response.message,
            "auth_code": response.details.get("auth_code"),
        }

    async def process_pix(self, transaction_id, requester: Optional[Identity]) -> dict:
        transaction = await self._load(transaction_id, requester)
        if transaction["status"] != PENDING:
            raise InvalidStatusError()
        if transaction["payment_method"] != PaymentMethod.PIX.value:
            raise WrongMethodError()

        claimed = await self.repository.claim_pix(transaction_id, self.clock.now())
        if claimed is None:
            raise InvalidStatusError("PIX payment already requested for this transaction")

        try:
            response = await asyncio.wait_for(
                self.gateway.process_pix_payment(
                    claimed["amount"],
                    f"Order {claimed['order_id']}",
                    (claimed.get("customer") or {}).get("email"),
                ),
                timeout=self.gateway_timeout,
            )
        except Exception as exc:
            logger.error(f"PIX creation failed for transaction {transaction_id}: {exc!r}")
            await self._fail(transaction_id, [PENDING], str(exc) or exc.__class__.__name__)
            raise PixProcessingError() from exc

        changes = {
            "bank_pix_id": response.gateway_transaction_id,
            "pix_code": response.pix_code,
            "qr_code_image": response.qr_code_image,
            "expires_at": response.expires_at,
            "gateway_response": response.details,
            "updated_at": self.clock.now(),
        }
        if not response.success:
            changes["status"] = response.status
        updated = await self.repository.transition(transaction_id, [PENDING], changes)
        if updated is None:
            updated = await self.repository.get(transaction_id)

        return {
            "success": response.success,
            "transaction": self.serialize(updated),
            "pix_code": response.pix_code,
            "qr_code_image": response.qr_code_image,
            "expires_at": response.expires_at.isoformat() if response.expires_at else None,
            "message": response.message,
        }

    async def check_pix_status(self, transaction_id, requester: Optional[Identity]) -> dict:
        transaction = await self._load(transaction_id, requester)
        if transaction["payment_method"] != PaymentMethod.PIX.value:
            raise WrongMethodError("Invalid payment method for status check")
        if not transaction.get("bank_pix_id"):
            raise PixNotInitiatedError()

        if transaction["status"] in TERMINAL_STATUSES:
            return {
                "success": transaction["status"] == APPROVED,
                "transaction": self.serialize(transaction),
                "status": transaction["status"],
                "message": "PIX payment already settled",
                "paid_at": (transaction.get("gateway_response") or {}).get("status_check", {}).get("paid_at"),
            }

        try:
            response = await asyncio.wait_for(
                self.gateway.check_pix_status(transaction["bank_pix_id"]),
                timeout=self.gateway_timeout,
            )
        except Exception as exc:
            logger.error(f"PIX status check failed for transaction {transaction_id}: {exc!r}")
            raise PixStatusCheckError() from exc

        status = response.status
        message = response.message
        expires_at = transaction.get("expires_at")
        if status == PENDING and expires_at is not None and expires_at <= self.clock.now():
            status = DECLINED
            message = "PIX payment expired"

        gateway_response = dict(transaction.get("gateway_response") or {})
        gateway_response["status_check"] = response.details
        updated = await self.repository.transition(transaction_id, [PENDING, PROCESSING], {
            "status": status,
            "gateway_response": gateway_response,
            "updated_at": self.clock.now(),
        })
        if updated is None:
            updated = await self.repository.get(transaction_id)
        if transaction["status"] != updated["status"]:
            logger.info(f"PIX transaction {transaction_id} moved {transaction['status']} -> {updated['status']}")

        return {
            "success": updated["status"] == APPROVED,
            "transaction": self.serialize(updated),
            "status": updated["status"],
            "message": message,
            "paid_at": response.details.get("paid_at"),
        }

    async def get_transaction(self, transaction_id, requester: Optional[Identity]) -> dict:
        transaction = await self._load(transaction_id, requester)
        return self.serialize(transaction)

    async def recent(self, owner: Identity, limit: int = 5) -> dict:
        limit = max(1, min(limit, 20))
        transactions = await self.repository.recent(to_object_id(owner.id), limit)
        return {"transactions": [self.serialize(t) for t in transactions], "limit": limit}

    async def cancel(self, transaction_id, requester: Identity) -> dict:
        transaction = await self._load(transaction_id, requester, owner_only=True)
        if transaction["status"] not in CANCELLABLE_STATUSES:
            raise CannotCancelError()

        now = self.clock.now()
        gateway_response = dict(transaction.get("gateway_response") or {})
        gateway_response["cancellation"] = {
            "cancelled_at": now,
            "cancelled_by": requester.id,
            "reason": "USER_CANCELLATION",
        }
        updated = await self.repository.transition(transaction_id, CANCELLABLE_STATUSES, {
            "status": FAILED,
            "gateway_response": gateway_response,
            "updated_at": now,
        })
        if updated is None:
            raise CannotCancelError()

        logger.info(f"Transaction {transaction_id} cancelled by {requester.id}")
        return {"transaction": self.serialize(updated), "message": "Transaction cancelled successfully"}

    async def list_history(
        self,
        owner: Identity,
        status: Optional[str] = None,
        payment_method: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
        sort: str = "created_at",
        direction: str = "desc",
    ) -> dict:
        page = max(page, 1)
        limit = max(1, min(limit, 100))
        sort_field = sort if sort in SORTABLE_FIELDS else "created_at"
        ascending = str(direction).lower() == "asc"

        transactions, total = await self.repository.search(
            to_object_id(owner.id),
            status,
            payment_method,
            sort_field,
            ascending,
            (page - 1) * limit,
            limit,
        )
        return {
            "transactions": [self.serialize(t) for t in transactions],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
            },
            "sort": sort_field,
            "direction": "asc" if ascending else "desc",
        }

    async def aggregate_stats(self, owner: Identity, period: str = "30d") -> dict:
        if period not in STATS_PERIODS:
            period = "30d"
        since = self.clock.now() - timedelta(days=STATS_PERIODS[period])

        stats = await self.repository.stats(to_object_id(owner.id), since)
        total = stats["total_transactions"]
        stats["total_amount"] = float(to_money(stats["total_amount"]))
        stats["approved_amount"] = float(to_money(stats["approved_amount"]))
        stats["approval_rate"] = f"{stats['approved_count'] / total * 100:.2f}" if total > 0 else "0.00"
        return {"period": period, "stats": stats}
