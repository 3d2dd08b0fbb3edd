"""Tests for the card vault."""

import asyncio
from datetime import timedelta

import pytest

from paysys.domains.cards.models import SaveCardRequest, UpdateCardRequest
from paysys.shared.card_validation_service import CardValidationResult, ValidationStatus
from paysys.shared.errors import (
    CardRejectedError,
    DuplicateCardError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from paysys.shared.ids import to_object_id


def card(number="4111111111111111", month="12", year="2030", is_default=False) -> SaveCardRequest:
    return SaveCardRequest(
        card_number=number,
        card_holder_name="ana  silva",
        expiration_month=month,
        expiration_year=year,
        cvv="123",
        is_default=is_default,
    )


def checked(**fields) -> CardValidationResult:
    return CardValidationResult(status=ValidationStatus.CHECKED, **fields)


class TestSaveCard:
    def test_stores_only_display_fields(self, card_service, card_repository, owner) -> None:
        saved = asyncio.run(card_service.save_card(owner, card()))

        assert saved["last_four_digits"] == "1111"
        assert saved["card_brand"] == "visa"
        assert saved["card_holder_name"] == "ANA SILVA"
        assert "card_token" not in saved
        assert "encrypted_data" not in saved
        assert "card_number" not in saved

        stored = card_repository.docs[to_object_id(saved["id"])]
        assert stored["card_token"].startswith("card_")
        assert "4111111111111111" not in str(stored)
        assert "cvv" not in stored

    @pytest.mark.parametrize(
        "request_card, code",
        [
            (card(number="4111111111111112"), "INVALID_CARD_NUMBER"),
            (card(month="05", year="2025"), "CARD_EXPIRED"),
            (card(number="6011111111111117"), "UNSUPPORTED_CARD_BRAND"),
        ],
    )
    def test_local_rules(self, card_service, owner, request_card, code) -> None:
        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(card_service.save_card(owner, request_card))
        assert exc_info.value.code == code

    def test_duplicate_card(self, card_service, owner) -> None:
        async def scenario():
            await card_service.save_card(owner, card())
            await card_service.save_card(owner, card())

        with pytest.raises(DuplicateCardError):
            asyncio.run(scenario())

    def test_same_card_other_expiry_is_not_duplicate(self, card_service, owner) -> None:
        async def scenario():
            await card_service.save_card(owner, card())
            await card_service.save_card(owner, card(year="2031"))
            return await card_service.list_cards(owner)

        assert len(asyncio.run(scenario())) == 2

    def test_same_card_for_two_owners(self, card_service, owner, stranger) -> None:
        async def scenario():
            await card_service.save_card(owner, card())
            return await card_service.save_card(stranger, card())

        assert asyncio.run(scenario())["last_four_digits"] == "1111"


class TestValidationPolicy:
    def test_bypassed_result_saves(self, card_service, owner) -> None:
        saved = asyncio.run(card_service.save_card(owner, card(), CardValidationResult.bypassed()))
        assert saved["id"]

    def test_clean_result_saves(self, card_service, owner) -> None:
        saved = asyncio.run(card_service.save_card(owner, card(), checked(valid=True, fraud_score=10)))
        assert saved["id"]

    def test_invalid_verdict_rejects(self, card_service, card_repository, owner) -> None:
        with pytest.raises(CardRejectedError) as exc_info:
            asyncio.run(card_service.save_card(owner, card(), checked(valid=False, reasons=["stolen"])))
        assert exc_info.value.code == "CARD_VALIDATION_REJECTED"
        assert exc_info.value.status_code == 422
        assert "stolen" in exc_info.value.message
        assert card_repository.docs == {}

    @pytest.mark.parametrize("score, rejected", [(79, False), (80, True), (99.5, True)])
    def test_fraud_score_threshold(self, card_service, owner, score, rejected) -> None:
        result = checked(valid=True, fraud_score=score)
        if rejected:
            with pytest.raises(CardRejectedError) as exc_info:
                asyncio.run(card_service.save_card(owner, card(), result))
            assert exc_info.value.code == "CARD_SUSPICIOUS"
        else:
            assert asyncio.run(card_service.save_card(owner, card(), result))["id"]


class TestDefaultCard:
    def test_new_default_replaces_old(self, card_service, card_repository, owner) -> None:
        async def scenario():
            first = await card_service.save_card(owner, card(is_default=True))
            second = await card_service.save_card(owner, card(number="5555555555554444", is_default=True))
            return first, second, await card_service.list_cards(owner)

        first, second, cards = asyncio.run(scenario())
        assert card_repository.count_defaults(to_object_id(owner.id)) == 1
        assert cards[0]["id"] == second["id"]
        assert cards[0]["is_default"]
        assert not next(c for c in cards if c["id"] == first["id"])["is_default"]

    def test_set_default_moves_flag(self, card_service, card_repository, owner) -> None:
        async def scenario():
            first = await card_service.save_card(owner, card(is_default=True))
            second = await card_service.save_card(owner, card(number="5555555555554444"))
            updated = await card_service.set_default(second["id"], owner)
            return first, updated

        first, updated = asyncio.run(scenario())
        assert updated["is_default"]
        assert not card_repository.docs[to_object_id(first["id"])]["is_default"]
        assert card_repository.count_defaults(to_object_id(owner.id)) == 1

    def test_concurrent_defaults_leave_one(self, card_service, card_repository, owner) -> None:
        numbers = ["4111111111111111", "5555555555554444", "378282246310005", "6362970000457013"]

        async def scenario():
            saved = [await card_service.save_card(owner, card(number=number)) for number in numbers]
            await asyncio.gather(*(card_service.set_default(c["id"], owner) for c in saved))
            await asyncio.gather(*(
                card_service.save_card(owner, card(number=number, year="2031", is_default=True))
                for number in numbers
            ))

        asyncio.run(scenario())
        assert card_repository.count_defaults(to_object_id(owner.id)) == 1

    def test_defaults_are_per_owner(self, card_service, card_repository, owner, stranger) -> None:
        async def scenario():
            await card_service.save_card(owner, card(is_default=True))
            await card_service.save_card(stranger, card(is_default=True))

        asyncio.run(scenario())
        assert card_repository.count_defaults(to_object_id(owner.id)) == 1
        assert card_repository.count_defaults(to_object_id(stranger.id)) == 1

    def test_owner_locks_are_released(self, card_service, owner, stranger) -> None:
        async def scenario():
            await card_service.save_card(owner, card(is_default=True))
            await card_service.save_card(stranger, card(is_default=True))
            await card_service.save_card(owner, card(number="5555555555554444", is_default=True))

        asyncio.run(scenario())
        assert len(card_service._owner_locks) == 0

    def test_unset_default(self, card_service, owner) -> None:
        async def scenario():
            saved = await card_service.save_card(owner, card(is_default=True))
            return await card_service.update_card(saved["id"], owner, UpdateCardRequest(is_default=False))

        assert asyncio.run(scenario())["is_default"] is False


class TestCardAccess:
    def test_update_holder_name(self, card_service, owner) -> None:
        async def scenario():
            saved = await card_service.save_card(owner, card())
            return await card_service.update_card(saved["id"], owner, UpdateCardRequest(card_holder_name="ana s costa"))

        updated = asyncio.run(scenario())
        assert updated["card_holder_name"] == "ANA S COSTA"
        assert updated["last_four_digits"] == "1111"

    def test_foreign_card_is_unauthorized(self, card_service, owner, stranger) -> None:
        async def scenario():
            saved = await card_service.save_card(owner, card())
            with pytest.raises(UnauthorizedError):
                await card_service.get_card(saved["id"], stranger)
            with pytest.raises(UnauthorizedError):
                await card_service.delete_card(saved["id"], stranger)
            with pytest.raises(UnauthorizedError):
                await card_service.detokenize_for_charge(saved["id"], stranger)

        asyncio.run(scenario())

    def test_missing_card(self, card_service, owner) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            asyncio.run(card_service.get_card("665f1c2e8b3f4a0012345678", owner))
        assert exc_info.value.code == "CARD_NOT_FOUND"

    def test_delete(self, card_service, owner) -> None:
        async def scenario():
            saved = await card_service.save_card(owner, card())
            await card_service.delete_card(saved["id"], owner)
            return await card_service.list_cards(owner)

        assert asyncio.run(scenario()) == []

    def test_detokenize_for_charge(self, card_service, owner) -> None:
        async def scenario():
            saved = await card_service.save_card(owner, card())
            return await card_service.detokenize_for_charge(saved["id"], owner)

        assert asyncio.run(scenario()) == {
            "card_number": "4111111111111111",
            "card_holder_name": "ANA SILVA",
            "expiration_month": "12",
            "expiration_year": "2030",
        }


class TestExpiration:
    def seed(self, card_service, owner, clock):
        async def scenario():
            # Clock starts at 2025-06-15
            await card_service.save_card(owner, card(month="07", year="2025"))
            await card_service.save_card(owner, card(number="5555555555554444", month="10", year="2025"))
            await card_service.save_card(owner, card(number="378282246310005", month="12", year="2030"))

        asyncio.run(scenario())
        clock.advance(timedelta(days=62))

    def test_check_expiration(self, card_service, owner, clock) -> None:
        self.seed(card_service, owner, clock)
        report = asyncio.run(card_service.check_expiration(owner))

        assert [c["last_four_digits"] for c in report["expired"]] == ["1111"]
        assert [c["last_four_digits"] for c in report["expiring_soon"]] == ["4444"]
        assert report["expiring_soon"][0]["months_until_expiry"] == 2
        assert "card_token" not in report["expired"][0]

    def test_purge_expired(self, card_service, owner, clock) -> None:
        self.seed(card_service, owner, clock)

        async def scenario():
            deleted = await card_service.purge_expired(owner)
            return deleted, await card_service.list_cards(owner)

        deleted, remaining = asyncio.run(scenario())
        assert deleted == 1
        assert {c["last_four_digits"] for c in remaining} == {"4444", "0005"}

    def test_purge_is_scoped_to_owner(self, card_service, owner, stranger, clock) -> None:
        self.seed(card_service, owner, clock)
        assert asyncio.run(card_service.purge_expired(stranger)) == 0

    def test_card_stats(self, card_service, owner, clock) -> None:
        self.seed(card_service, owner, clock)
        stats = asyncio.run(card_service.card_stats(owner))

        assert stats["total"] == 3
        assert stats["by_brand"] == {"visa": 1, "mastercard": 1, "amex": 1}
        assert stats["expired"] == 1
        assert stats["default_card_id"] is None
