"""
Mock acquirer / PIX provider.

Stands in for a real gateway: a fixed table of test card numbers forces
outcomes, every other card is approved with a configurable probability, and
PIX status checks resolve from the last character of the gateway id so tests
can pick the outcome by choosing the id. Every call sleeps a bounded random
delay to behave like a network hop.
"""
import asyncio
import logging
import random
import re
import secrets
from datetime import datetime, timedelta
from decimal import Decimal
from types import MappingProxyType
from typing import Callable, Mapping, Optional, Tuple

from pydantic import BaseModel, Field

from paysys.shared.card_utils import get_card_brand
from paysys.shared.clock import Clock, system_clock
from paysys.shared.qr_service import QRCodeRenderer

logger = logging.getLogger(__name__)

APPROVED = "APPROVED"
DECLINED = "DECLINED"
PROCESSING = "PROCESSING"
PENDING = "PENDING"

DEFAULT_TEST_CARDS: Mapping[str, Mapping[str, str]] = MappingProxyType({
    "4111111111111111": MappingProxyType({"status": APPROVED, "message": "Transaction approved"}),
    "5555555555554444": MappingProxyType({"status": APPROVED, "message": "Transaction approved"}),
    "4000000000000119": MappingProxyType({"status": DECLINED, "message": "Insufficient funds"}),
    "4000000000000127": MappingProxyType({"status": DECLINED, "message": "Invalid CVV"}),
    "4000000000000069": MappingProxyType({"status": DECLINED, "message": "Card expired"}),
    "4000000000000002": MappingProxyType({"status": DECLINED, "message": "Card declined"}),
    "4000000000000259": MappingProxyType({"status": PROCESSING, "message": "Transaction being processed"}),
})

# Seconds of simulated latency per operation
DEFAULT_LATENCY: Mapping[str, Tuple[float, float]] = MappingProxyType({
    "credit_card": (1.0, 3.0),
    "pix": (0.5, 1.5),
    "pix_status": (0.2, 0.8),
})
NO_LATENCY: Mapping[str, Tuple[float, float]] = MappingProxyType({
    "credit_card": (0.0, 0.0),
    "pix": (0.0, 0.0),
    "pix_status": (0.0, 0.0),
})

MERCHANT_NAME = "Sistema de Pagamentos"
MERCHANT_CITY = "SAO PAULO"
CURRENCY_BRL = "986"


class GatewayResponse(BaseModel):
    success: bool
    status: str
    message: str
    gateway_transaction_id: Optional[str] = None
    pix_code: Optional[str] = None
    qr_code_image: Optional[str] = None
    expires_at: Optional[datetime] = None
    details: dict = Field(default_factory=dict)


def _tlv(tag: str, value: str) -> str:
    return f"{tag}{len(value):02d}{value}"


def crc16_ccitt(payload: str) -> str:
    crc = 0xFFFF
    for byte in payload.encode("utf-8"):
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return f"{crc:04X}"


def build_pix_code(pix_key: str, amount, reference: str,
                   merchant_name: str = MERCHANT_NAME, merchant_city: str = MERCHANT_CITY) -> str:
    """EMV "copia e cola" payload, CRC included."""
    label = re.sub(r"[^A-Za-z0-9]", "", reference)[:25] or "***"
    merchant_account = _tlv("00", "br.gov.bcb.pix") + _tlv("01", pix_key)
    payload = (
        _tlv("00", "01")
        + _tlv("26", merchant_account)
        + _tlv("52", "0000")
        + _tlv("53", CURRENCY_BRL)
        + _tlv("54", f"{Decimal(str(amount)):.2f}")
        + _tlv("58", "BR")
        + _tlv("59", merchant_name[:25])
        + _tlv("60", merchant_city[:15])
        + _tlv("62", _tlv("05", label))
        + "6304"
    )
    return payload + crc16_ccitt(payload)


def pix_status_for(gateway_transaction_id: str) -> str:
    """0-6 approved, 7-8 still pending, 9 expired (last hex digit mod 10)."""
    discriminator = int(gateway_transaction_id[-1], 16) % 10
    if discriminator <= 6:
        return APPROVED
    if discriminator <= 8:
        return PENDING
    return DECLINED


class PaymentGatewaySimulator:
    def __init__(
        self,
        test_cards: Mapping[str, Mapping[str, str]] = DEFAULT_TEST_CARDS,
        rng: Optional[random.Random] = None,
        approval_rate: float = 0.85,
        latency: Mapping[str, Tuple[float, float]] = DEFAULT_LATENCY,
        qr_renderer: Optional[Callable[[str], str]] = None,
        clock: Clock = system_clock,
        pix_expiration_minutes: int = 30,
    ):
        self.test_cards = MappingProxyType(dict(test_cards))
        self.rng = rng or random.Random()
        self.approval_rate = approval_rate
        self.latency = latency
        self.qr_renderer = qr_renderer or QRCodeRenderer()
        self.clock = clock
        self.pix_expiration_minutes = pix_expiration_minutes

    async def process_credit_card(self, card: dict, amount) -> GatewayResponse:
        await self._simulate_delay("credit_card")

        card_number = card["card_number"]
        gateway_transaction_id = self.generate_transaction_id()
        details = {
            "card_brand": get_card_brand(card_number),
            "last_four_digits": card_number[-4:],
            "amount": float(amount),
            "processing_time": self.clock.now().isoformat(),
        }

        forced = self.test_cards.get(card_number)
        if forced is None:
            approved = self.rng.random() < self.approval_rate
            status = APPROVED if approved else DECLINED
            message = "Transaction approved" if approved else "Transaction declined by issuer"
        else:
            status = forced["status"]
            message = forced["message"]
            details["is_test_card"] = True

        if status == APPROVED:
            details["auth_code"] = self.generate_auth_code()

        logger.info(f"Gateway card charge {gateway_transaction_id}: {status}")
        return GatewayResponse(
            success=status == APPROVED,
            status=status,
            message=message,
            gateway_transaction_id=gateway_transaction_id,
            details=details,
        )

    async def process_pix_payment(self, amount, description: str, customer_email: str = None) -> GatewayResponse:
        await self._simulate_delay("pix")

        gateway_transaction_id = self.generate_transaction_id()
        pix_key = self.generate_pix_key()
        pix_code = build_pix_code(pix_key, amount, description)
        expires_at = self.clock.now() + timedelta(minutes=self.pix_expiration_minutes)

        try:
            qr_code_image = await asyncio.to_thread(self.qr_renderer, pix_code)
        except Exception as exc:
            logger.error(f"QR code generation failed for {gateway_transaction_id}: {exc}")
            return GatewayResponse(
                success=False,
                status=DECLINED,
                message="Failed to generate PIX payment",
                gateway_transaction_id=gateway_transaction_id,
                details={"error": "QR_CODE_GENERATION_FAILED"},
            )

        return GatewayResponse(
            success=True,
            status=PENDING,
            message="PIX payment created successfully. Awaiting payment.",
            gateway_transaction_id=gateway_transaction_id,
            pix_code=pix_code,
            qr_code_image=qr_code_image,
            expires_at=expires_at,
            details={
                "pix_key": pix_key,
                "bank_name": "Banco Mock",
                "recipient_name": f"{MERCHANT_NAME} LTDA",
                "description": description,
                "customer_email": customer_email,
                "processing_time": self.clock.now().isoformat(),
            },
        )

    async def check_pix_status(self, gateway_transaction_id: str) -> GatewayResponse:
        await self._simulate_delay("pix_status")

        status = pix_status_for(gateway_transaction_id)
        messages = {
            APPROVED: "PIX payment confirmed",
            PENDING: "PIX payment still pending",
            DECLINED: "PIX payment expired",
        }
        details = {"processing_time": self.clock.now().isoformat()}
        if status == APPROVED:
            details.update({
                "paid_at": self.clock.now().isoformat(),
                "payer_bank": "Banco do Cliente",
                "payer_account": "****1234",
            })

        return GatewayResponse(
            success=status == APPROVED,
            status=status,
            message=messages[status],
            gateway_transaction_id=gateway_transaction_id,
            details=details,
        )

    def get_test_cards(self) -> dict:
        grouped = {"approved": [], "declined": [], "processing": []}
        for number, outcome in self.test_cards.items():
            grouped.setdefault(outcome["status"].lower(), []).append({
                "number": number,
                "brand": get_card_brand(number),
                "description": outcome["message"],
            })
        return grouped

    @staticmethod
    def generate_transaction_id() -> str:
        return f"txn_{secrets.token_hex(16)}"

    @staticmethod
    def generate_auth_code() -> str:
        return secrets.token_hex(3).upper()

    @staticmethod
    def generate_pix_key() -> str:
        return f"pagamentos+{secrets.token_hex(4)}@sistemapagamentos.com"

    async def _simulate_delay(self, operation: str):
        low, high = self.latency[operation]
        if high <= 0:
            return
        await asyncio.sleep(self.rng.uniform(low, high))
