import base64
import binascii
import hashlib
import json
import re
import secrets
import string
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import BaseModel

from paysys.shared.clock import Clock, system_clock
from paysys.shared.errors import ConfigurationError, IntegrityError

KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16
MASK_CHAR = "•"

_CARD_TOKEN_PATTERN = re.compile(r"^card_[a-f0-9]{32}$")


class CardDetails(BaseModel):
    card_number: str
    card_holder_name: str
    expiration_month: str
    expiration_year: str


class TokenizedCard(BaseModel):
    token: str
    last_four_digits: str
    encrypted_payload: str


def load_encryption_key(raw_key: Optional[Union[str, bytes]]) -> bytes:
    """Return the key as bytes, refusing anything that is not exactly 32 bytes."""
    if not raw_key:
        raise ConfigurationError("ENCRYPTION_KEY is not defined")
    key = raw_key.encode("utf-8") if isinstance(raw_key, str) else bytes(raw_key)
    if len(key) != KEY_LENGTH:
        raise ConfigurationError(
            f"ENCRYPTION_KEY must be exactly {KEY_LENGTH} bytes long. Current length: {len(key)}"
        )
    return key


def generate_encryption_key() -> str:
    """Generate a random 32-character key for initial setup."""
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(KEY_LENGTH))


class EncryptionService:
    """
    AES-256-GCM encryption for card data at rest plus the one-way helpers
    used to identify a card without decrypting it.

    Encrypted payloads are base64 of ``nonce(12) + tag(16) + ciphertext``.
    """

    def __init__(self, key: Union[str, bytes], clock: Clock = system_clock):
        self._aesgcm = AESGCM(load_encryption_key(key))
        self.clock = clock

    def encrypt(self, plaintext: str) -> str:
        nonce = secrets.token_bytes(NONCE_LENGTH)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag, move it in front of the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    def decrypt(self, payload: str) -> str:
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError, TypeError) as exc:
            raise IntegrityError() from exc
        if len(raw) < NONCE_LENGTH + TAG_LENGTH:
            raise IntegrityError()

        nonce = raw[:NONCE_LENGTH]
        tag = raw[NONCE_LENGTH:NONCE_LENGTH + TAG_LENGTH]
        ciphertext = raw[NONCE_LENGTH + TAG_LENGTH:]
        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise IntegrityError() from exc
        return plaintext.decode("utf-8")

    @staticmethod
    def hash(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    def derive_card_token(self, card_number: str, expiration_month: str, expiration_year: str) -> str:
        digest = self.hash(f"{card_number}:{expiration_month}:{expiration_year}")
        return f"card_{digest[:32]}"

    @staticmethod
    def is_valid_card_token(token: str) -> bool:
        return bool(_CARD_TOKEN_PATTERN.match(token or ""))

    @staticmethod
    def mask_for_display(card_number: str) -> str:
        if len(card_number) < 4:
            return card_number
        return MASK_CHAR * (len(card_number) - 4) + card_number[-4:]

    def tokenize_card(self, card: CardDetails) -> TokenizedCard:
        token = self.derive_card_token(card.card_number, card.expiration_month, card.expiration_year)
        sensitive = card.model_dump()
        sensitive["tokenized_at"] = self.clock.now().isoformat()
        return TokenizedCard(
            token=token,
            last_four_digits=card.card_number[-4:],
            encrypted_payload=self.encrypt(json.dumps(sensitive)),
        )

    def detokenize_card(self, encrypted_payload: str) -> CardDetails:
        data = json.loads(self.decrypt(encrypted_payload))
        return CardDetails(
            card_number=data["card_number"],
            card_holder_name=data["card_holder_name"],
            expiration_month=data["expiration_month"],
            expiration_year=data["expiration_year"],
        )
