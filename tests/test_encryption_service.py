"""Tests for AES-GCM card encryption and tokenization."""

import base64

import pytest

from paysys.shared.encryption_service import (
    CardDetails,
    EncryptionService,
    generate_encryption_key,
    load_encryption_key,
)
from paysys.shared.errors import ConfigurationError, IntegrityError

CARD = CardDetails(
    card_number="4111111111111111",
    card_holder_name="ANA SILVA",
    expiration_month="12",
    expiration_year="2030",
)


class TestKeyLoading:
    def test_accepts_32_byte_key(self) -> None:
        assert len(load_encryption_key("a" * 32)) == 32

    @pytest.mark.parametrize("raw", ["", None, "short", "a" * 33])
    def test_rejects_bad_keys(self, raw) -> None:
        with pytest.raises(ConfigurationError):
            load_encryption_key(raw)

    def test_generated_key_is_usable(self) -> None:
        EncryptionService(generate_encryption_key())


class TestEncryptDecrypt:
    @pytest.mark.parametrize("plaintext", ["", "hello", "çartão ✓ 💳", "x" * 5000])
    def test_round_trip(self, encryption, plaintext) -> None:
        assert encryption.decrypt(encryption.encrypt(plaintext)) == plaintext

    def test_same_plaintext_encrypts_differently(self, encryption) -> None:
        assert encryption.encrypt("4111111111111111") != encryption.encrypt("4111111111111111")

    def test_payload_layout(self, encryption) -> None:
        raw = base64.b64decode(encryption.encrypt("abc"))
        # nonce(12) + tag(16) + ciphertext(3)
        assert len(raw) == 12 + 16 + 3

    @pytest.mark.parametrize("position", [0, 14, -1])
    def test_tampering_any_byte_fails(self, encryption, position) -> None:
        raw = bytearray(base64.b64decode(encryption.encrypt("sensitive card data")))
        raw[position] ^= 0x01
        with pytest.raises(IntegrityError):
            encryption.decrypt(base64.b64encode(bytes(raw)).decode())

    def test_garbage_payload_fails(self, encryption) -> None:
        with pytest.raises(IntegrityError):
            encryption.decrypt("not base64 at all!!")

    def test_truncated_payload_fails(self, encryption) -> None:
        with pytest.raises(IntegrityError):
            encryption.decrypt(base64.b64encode(b"too short").decode())

    def test_other_key_cannot_decrypt(self, encryption) -> None:
        other = EncryptionService("b" * 32)
        with pytest.raises(IntegrityError):
            other.decrypt(encryption.encrypt("secret"))


class TestCardTokens:
    def test_token_is_deterministic(self, encryption) -> None:
        first = encryption.derive_card_token("4111111111111111", "12", "2030")
        second = encryption.derive_card_token("4111111111111111", "12", "2030")
        assert first == second
        assert encryption.is_valid_card_token(first)

    def test_token_changes_with_expiry(self, encryption) -> None:
        assert encryption.derive_card_token("4111111111111111", "12", "2030") != encryption.derive_card_token(
            "4111111111111111", "11", "2030"
        )

    def test_token_does_not_leak_number(self, encryption) -> None:
        assert "4111111111111111" not in encryption.derive_card_token("4111111111111111", "12", "2030")

    @pytest.mark.parametrize("token", ["", "card_xyz", "tok_" + "a" * 32, "card_" + "A" * 32])
    def test_invalid_tokens(self, encryption, token) -> None:
        assert not encryption.is_valid_card_token(token)

    def test_mask_for_display(self, encryption) -> None:
        assert encryption.mask_for_display("4111111111111111") == "•" * 12 + "1111"

    def test_tokenize_and_detokenize(self, encryption) -> None:
        tokenized = encryption.tokenize_card(CARD)
        assert tokenized.last_four_digits == "1111"
        assert "4111111111111111" not in tokenized.encrypted_payload
        assert encryption.detokenize_card(tokenized.encrypted_payload) == CARD
