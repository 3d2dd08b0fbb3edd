import asyncio
import logging
import weakref
from collections import Counter
from typing import Optional

from paysys.domains.auth.models import Identity
from paysys.domains.cards.models import SaveCardRequest, UpdateCardRequest
from paysys.domains.cards.repository import CardRepository
from paysys.shared.card_utils import assert_valid_card, is_card_expired, months_until_expiry
from paysys.shared.card_validation_service import CardValidationResult
from paysys.shared.clock import Clock, system_clock
from paysys.shared.encryption_service import CardDetails, EncryptionService
from paysys.shared.errors import CardRejectedError, DuplicateCardError, NotFoundError, UnauthorizedError
from paysys.shared.ids import same_account, to_object_id
from paysys.shared.serialization import serialize_document

logger = logging.getLogger(__name__)

HIDDEN_FIELDS = ("card_token", "encrypted_data")


class CardService:
    """
    Card vault. Stores a deterministic token, the AES-GCM encrypted payload and
    display-safe fields only. The raw card comes back out through
    ``detokenize_for_charge`` and nowhere else.
    """

    def __init__(
        self,
        repository: CardRepository,
        encryption: EncryptionService,
        clock: Clock = system_clock,
        fraud_score_threshold: float = 80,
        expiring_window_months: int = 3,
    ):
        self.repository = repository
        self.encryption = encryption
        self.clock = clock
        self.fraud_score_threshold = fraud_score_threshold
        self.expiring_window_months = expiring_window_months
        # One lock per owner serializes "clear other defaults, then set".
        # Entries vanish once no coroutine holds or awaits the lock.
        self._owner_locks = weakref.WeakValueDictionary()

    def _owner_lock(self, user_id) -> asyncio.Lock:
        key = str(user_id)
        lock = self._owner_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._owner_locks[key] = lock
        return lock

    @staticmethod
    def serialize(card: dict) -> dict:
        return serialize_document(card, hidden=HIDDEN_FIELDS)

    def apply_validation_policy(self, validation: Optional[CardValidationResult]):
        """
        Decide whether an external validation result blocks persistence.

        A missing or bypassed result has no opinion and lets the card through.
        An explicit ``valid=False`` or a fraud score at or above the configured
        threshold rejects the card.
        """
        if validation is None or validation.is_bypassed:
            return
        if validation.valid is False:
            reasons = ", ".join(validation.reasons) or "rejected by validator"
            raise CardRejectedError(f"Card rejected by external validation: {reasons}", code="CARD_VALIDATION_REJECTED")
        if validation.fraud_score is not None and validation.fraud_score >= self.fraud_score_threshold:
            raise CardRejectedError("Card flagged as suspicious by external validation", code="CARD_SUSPICIOUS")

    def check_card(self, card: SaveCardRequest) -> str:
        """Local card rules (Luhn, expiry, brand). Returns the brand."""
        return assert_valid_card(
            card.card_number, card.expiration_month, card.expiration_year, self.clock.today()
        )

    async def save_card(
        self,
        owner: Identity,
        card: SaveCardRequest,
        validation: Optional[CardValidationResult] = None,
    ) -> dict:
        user_id = to_object_id(owner.id)
        brand = self.check_card(card)
        self.apply_validation_policy(validation)

        details = CardDetails(
            card_number=card.card_number,
            card_holder_name=card.card_holder_name,
            expiration_month=card.expiration_month,
            expiration_year=card.expiration_year,
        )
        tokenized = self.encryption.tokenize_card(details)
        if await self.repository.find_by_token(user_id, tokenized.token):
            raise DuplicateCardError()

        now = self.clock.now()
        document = {
            "user_id": user_id,
            "card_token": tokenized.token,
            "encrypted_data": tokenized.encrypted_payload,
            "last_four_digits": tokenized.last_four_digits,
            "card_brand": brand,
            "card_holder_name": card.card_holder_name,
            "expiration_month": card.expiration_month,
            "expiration_year": card.expiration_year,
            "is_default": card.is_default,
            "created_at": now,
            "updated_at": now,
        }

        async with self._owner_lock(user_id):
            if card.is_default:
                await self.repository.clear_default(user_id)
            saved = await self.repository.insert(document)

        logger.info(f"Card ending {tokenized.last_four_digits} saved for user {owner.id}")
        return self.serialize(saved)

    async def _owned(self, card_id, owner: Identity) -> dict:
        card = await self.repository.get(card_id)
        if card is None:
            raise NotFoundError("Card not found", code="CARD_NOT_FOUND")
        if not same_account(card["user_id"], owner.id):
            raise UnauthorizedError("Unauthorized access to card", code="UNAUTHORIZED_CARD")
        return card

    async def get_card(self, card_id, owner: Identity) -> dict:
        return self.serialize(await self._owned(card_id, owner))

    async def list_cards(self, owner: Identity) -> list:
        cards = await self.repository.list_for_owner(to_object_id(owner.id))
        return [self.serialize(card) for card in cards]

    async def update_card(self, card_id, owner: Identity, changes: UpdateCardRequest) -> dict:
        card = await self._owned(card_id, owner)
        user_id = card["user_id"]

        update = {"updated_at": self.clock.now()}
        if changes.card_holder_name is not None:
            update["card_holder_name"] = changes.card_holder_name
        if changes.is_default is not None:
            update["is_default"] = changes.is_default

        async with self._owner_lock(user_id):
            if changes.is_default:
                await self.repository.clear_default(user_id, except_id=card["_id"])
            updated = await self.repository.update(card["_id"], user_id, update)

        if updated is None:
            raise NotFoundError("Card not found", code="CARD_NOT_FOUND")
        return self.serialize(updated)

    async def set_default(self, card_id, owner: Identity) -> dict:
        return await self.update_card(card_id, owner, UpdateCardRequest(is_default=True))

    async def delete_card(self, card_id, owner: Identity):
        card = await self._owned(card_id, owner)
        await self.repository.delete(card["_id"], card["user_id"])
        logger.info(f"Card {card_id} deleted for user {owner.id}")

    def _expiry_view(self, card: dict, months_left: int) -> dict:
        view = self.serialize(card)
        view["months_until_expiry"] = months_left
        return view

    async def check_expiration(self, owner: Identity) -> dict:
        today = self.clock.today()
        expired, expiring_soon = [], []
        for card in await self.repository.list_for_owner(to_object_id(owner.id)):
            months_left = months_until_expiry(card["expiration_month"], card["expiration_year"], today)
            if months_left < 0:
                expired.append(self._expiry_view(card, months_left))
            elif months_left <= self.expiring_window_months:
                expiring_soon.append(self._expiry_view(card, months_left))
        return {"expired": expired, "expiring_soon": expiring_soon}

    async def purge_expired(self, owner: Identity) -> int:
        user_id = to_object_id(owner.id)
        today = self.clock.today()
        expired_ids = [
            card["_id"]
            for card in await self.repository.list_for_owner(user_id)
            if is_card_expired(card["expiration_month"], card["expiration_year"], today)
        ]
        deleted = await self.repository.delete_many(user_id, expired_ids)
        if deleted:
            logger.info(f"Purged {deleted} expired cards for user {owner.id}")
        return deleted

    async def card_stats(self, owner: Identity) -> dict:
        today = self.clock.today()
        cards = await self.repository.list_for_owner(to_object_id(owner.id))
        default = next((card for card in cards if card.get("is_default")), None)
        return {
            "total": len(cards),
            "by_brand": dict(Counter(card["card_brand"] for card in cards)),
            "expired": sum(
                1 for card in cards if is_card_expired(card["expiration_month"], card["expiration_year"], today)
            ),
            "default_card_id": str(default["_id"]) if default else None,
        }

    async def detokenize_for_charge(self, card_id, owner: Identity) -> dict:
        """Raw card fields for a single charge. Never log or persist the result."""
        card = await self._owned(card_id, owner)
        details = self.encryption.detokenize_card(card["encrypted_data"])
        return details.model_dump()
