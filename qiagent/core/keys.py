"""
Identity and payment codes.

An identity is a 32 byte seed. Two keys are derived from it with HKDF:
an X25519 key used for channel key agreement (its public half is what the
payment code publishes) and an Ed25519 key used to sign transactions.
"""
import base64
import binascii
import json
import secrets
from dataclasses import dataclass
from typing import Dict, Optional

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import InvalidCounterpartyCode
from .interfaces import KeyService, SignedTransaction
from ..utils.hash import sm3_digest, sm3_hex
from ..utils.validation import is_valid_seed, looks_like_payment_code

PAYMENT_CODE_PREFIX = "PM8T"
PAYMENT_CODE_VERSION = 0x47
_CHECKSUM_LEN = 4
_KEY_LEN = 32

_AGREEMENT_INFO = b"qiagent/payment-code/0"
_SIGNING_INFO = b"qiagent/signing/0"


def canonical_payload(payload: Dict) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()


def _hkdf(seed: bytes, info: bytes) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=_KEY_LEN, salt=None, info=info).derive(seed)


def _raw_public(key) -> bytes:
    return key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def encode_payment_code(public_material: bytes) -> str:
    body = bytes([PAYMENT_CODE_VERSION]) + public_material
    checksum = sm3_digest(body)[:_CHECKSUM_LEN]
    return PAYMENT_CODE_PREFIX + base64.b32encode(body + checksum).decode("ascii").rstrip("=")


def decode_payment_code(code: str) -> bytes:
    """Return the public key material inside a payment code.

    Raises InvalidCounterpartyCode for anything that is not a well formed,
    checksummed code.
    """
    if not looks_like_payment_code(code):
        raise InvalidCounterpartyCode(code)
    text = code[len(PAYMENT_CODE_PREFIX):]
    text += "=" * (-len(text) % 8)
    try:
        raw = base64.b32decode(text)
    except (binascii.Error, ValueError):
        raise InvalidCounterpartyCode(code, "undecodable payment code")
    if len(raw) != 1 + _KEY_LEN + _CHECKSUM_LEN:
        raise InvalidCounterpartyCode(code, "wrong payment code length")
    body, checksum = raw[:-_CHECKSUM_LEN], raw[-_CHECKSUM_LEN:]
    if body[0] != PAYMENT_CODE_VERSION:
        raise InvalidCounterpartyCode(code, "unsupported payment code version")
    if sm3_digest(body)[:_CHECKSUM_LEN] != checksum:
        raise InvalidCounterpartyCode(code, "payment code checksum mismatch")
    if encode_payment_code(body[1:]) != code:
        raise InvalidCounterpartyCode(code, "non-canonical payment code")
    return body[1:]


@dataclass(frozen=True)
class Identity:
    """Root key material of a wallet. Immutable for the wallet's lifetime."""
    seed: bytes

    @classmethod
    def generate(cls) -> "Identity":
        return cls(secrets.token_bytes(_KEY_LEN))

    @classmethod
    def from_seed(cls, seed_hex: str) -> "Identity":
        if not is_valid_seed(seed_hex):
            raise ValueError("Seed must be 64 hex characters")
        return cls(bytes.fromhex(seed_hex.strip()))

    @property
    def seed_hex(self) -> str:
        return self.seed.hex()

    @property
    def fingerprint(self) -> str:
        """Public, non-secret identifier of this identity."""
        return sm3_hex(b"qiagent/fingerprint" + derive_public_material(self))[:16]

    def __repr__(self) -> str:
        return f"Identity(fingerprint={self.fingerprint})"


def derive_public_material(identity: Identity) -> bytes:
    return _raw_public(X25519PrivateKey.from_private_bytes(_hkdf(identity.seed, _AGREEMENT_INFO)))


def derive_payment_code(identity: Identity) -> str:
    """The identity's single published payment code (index 0)."""
    return encode_payment_code(derive_public_material(identity))


class LocalKeyService(KeyService):
    """Key service holding the identity's keys in process memory."""

    def __init__(self, identity: Identity):
        self.identity = identity
        self._agreement_key = X25519PrivateKey.from_private_bytes(_hkdf(identity.seed, _AGREEMENT_INFO))
        self._signing_key = Ed25519PrivateKey.from_private_bytes(_hkdf(identity.seed, _SIGNING_INFO))

    def derive_public_material(self) -> bytes:
        return _raw_public(self._agreement_key)

    def derive_shared_secret(self, counterparty_public: bytes) -> bytes:
        peer = X25519PublicKey.from_public_bytes(counterparty_public)
        return self._agreement_key.exchange(peer)

    def signing_public_key(self) -> str:
        return _raw_public(self._signing_key).hex()

    def sign(self, payload: Dict) -> SignedTransaction:
        body = canonical_payload(payload)
        tx_hash = "0x" + sm3_hex(body)
        signature = self._signing_key.sign(body).hex()
        return SignedTransaction(
            payload=payload,
            hash=tx_hash,
            signature=signature,
            public_key=self.signing_public_key(),
        )


def compute_shared_secret(key_service: KeyService, counterparty_code: str,
                          counterparty_public: Optional[bytes] = None) -> bytes:
    """Key agreement with a counterparty, mapping low-order keys to InvalidCounterpartyCode."""
    if counterparty_public is None:
        counterparty_public = decode_payment_code(counterparty_code)
    try:
        return key_service.derive_shared_secret(counterparty_public)
    except (ValueError, InvalidKey) as e:
        raise InvalidCounterpartyCode(counterparty_code, f"unusable public key ({e})")
