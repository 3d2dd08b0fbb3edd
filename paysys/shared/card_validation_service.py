import asyncio
import logging
from enum import Enum
from typing import Any, List, Optional

import requests
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from paysys.shared.errors import UpstreamValidationError, ValidationTimeoutError

logger = logging.getLogger(__name__)


class ValidationStatus(str, Enum):
    BYPASSED = "bypassed"
    CHECKED = "checked"


class CardValidationResult(BaseModel):
    """Outcome of the external check. ``bypassed`` means no validator is configured."""

    status: ValidationStatus
    valid: Optional[bool] = None
    brand: Optional[str] = None
    fraud_score: Optional[float] = None
    reasons: List[str] = Field(default_factory=list)
    provider: Optional[str] = None
    raw: Optional[dict] = None

    @classmethod
    def bypassed(cls) -> "CardValidationResult":
        return cls(status=ValidationStatus.BYPASSED)

    @property
    def is_bypassed(self) -> bool:
        return self.status == ValidationStatus.BYPASSED


class CardValidationService:
    def __init__(
        self,
        url: str = "",
        api_key: str = "",
        timeout_ms: int = 4000,
        provider: str = "external-validator",
        session: Any = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout_ms / 1000
        self.provider = provider
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def build_headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def validate(self, card_fields: dict, account: dict) -> CardValidationResult:
        """
        Ask the external validator about a card before it is stored.

        Args:
            card_fields (dict): card_number, card_holder_name, expiration_month,
                expiration_year and cvv.
            account (dict): id and email of the requesting account.

        Returns:
            CardValidationResult: ``bypassed`` when no URL is configured.
        """
        if not self.enabled:
            return CardValidationResult.bypassed()

        payload = {
            "cardNumber": card_fields["card_number"],
            "expirationMonth": card_fields["expiration_month"],
            "expirationYear": card_fields["expiration_year"],
            "cvv": card_fields["cvv"],
            "cardHolderName": card_fields["card_holder_name"],
            "user": {"id": account["id"], "email": account["email"]},
        }
        return await asyncio.to_thread(self._post, payload)

    def _post(self, payload: dict) -> CardValidationResult:
        try:
            response = self.session.post(
                self.url, headers=self.build_headers(), json=payload, timeout=self.timeout
            )
        except requests.Timeout as exc:
            logger.warning(f"Card validation timed out after {self.timeout}s ({self.provider})")
            raise ValidationTimeoutError("External card validation timeout") from exc
        except requests.RequestException as exc:
            logger.warning(f"Card validation unreachable ({self.provider}): {exc.__class__.__name__}")
            raise ValidationTimeoutError("External card validation unavailable") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if not response.ok:
            message = body.get("message") or f"External validation failed with status {response.status_code}"
            logger.warning(f"Card validation upstream error {response.status_code} ({self.provider})")
            raise UpstreamValidationError(message)

        reasons = body.get("reasons")
        try:
            return CardValidationResult(
                status=ValidationStatus.CHECKED,
                valid=bool(body.get("valid")),
                brand=body.get("brand"),
                fraud_score=body.get("fraudScore"),
                reasons=reasons if isinstance(reasons, list) else [],
                provider=self.provider,
                raw=body,
            )
        except PydanticValidationError as exc:
            logger.warning(f"Card validation returned a malformed body ({self.provider})")
            raise UpstreamValidationError("Malformed response from external card validation") from exc
