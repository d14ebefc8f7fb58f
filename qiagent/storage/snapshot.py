"""
Wallet snapshots.

A snapshot is a persistable projection of wallet state: a reference to the
identity, the wallet's payment code, known senders, per-zone scan cursors,
channel cursors, the live outpoint cache and timestamps. The identity
reference carries the seed only as Fernet ciphertext, and only when a
password is given; otherwise the seed must be supplied again on restore.
"""
import base64
import hashlib
import json
import os
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

import msgpack
from cryptography.fernet import Fernet, InvalidToken

from ..core.errors import SerializationError
from ..core.keys import Identity, derive_payment_code
from ..core.zones import parse_zone
from ..utils.console import print_success
from ..utils.validation import MAX_SNAPSHOT_BYTES

SNAPSHOT_VERSION = 1
IDENTITY_SCHEME = "qiagent-seed-v1"


def _fernet(password: str) -> Fernet:
    key = base64.urlsafe_b64encode(hashlib.sha256(password.encode()).digest())
    return Fernet(key)


def _now_ms() -> int:
    return int(time.time() * 1000)


def identity_reference(identity: Identity, password: Optional[str] = None) -> Dict:
    reference = {"scheme": IDENTITY_SCHEME, "fingerprint": identity.fingerprint}
    if password:
        reference["encryptedSeed"] = _fernet(password).encrypt(identity.seed_hex.encode()).decode()
    return reference


def unlock_identity(reference: Dict, seed: Optional[str] = None, password: Optional[str] = None) -> Identity:
    """Recover the identity a snapshot refers to and check it is the same one."""
    if reference.get("scheme") != IDENTITY_SCHEME:
        raise SerializationError(f"Unsupported identity scheme: {reference.get('scheme')!r}")

    if seed is not None:
        try:
            identity = Identity.from_seed(seed)
        except ValueError as e:
            raise SerializationError(f"Invalid seed: {e}")
    elif password and reference.get("encryptedSeed"):
        try:
            seed_hex = _fernet(password).decrypt(reference["encryptedSeed"].encode()).decode()
            identity = Identity.from_seed(seed_hex)
        except InvalidToken:
            raise SerializationError("Wrong password for wallet snapshot")
        except ValueError as e:
            raise SerializationError(f"Corrupt encrypted seed: {e}")
    else:
        raise SerializationError("Snapshot restore needs the seed or the snapshot password")

    if identity.fingerprint != reference.get("fingerprint"):
        raise SerializationError("Seed does not match the snapshot's identity")
    return identity


@dataclass
class WalletSnapshot:
    wallet: Dict
    payment_code: str
    known_senders: List[str] = field(default_factory=list)
    last_scanned_blocks: Dict[str, int] = field(default_factory=dict)
    channels: Dict[str, Dict[str, Dict]] = field(default_factory=dict)
    outpoints: List[Dict] = field(default_factory=list)
    created_at: int = field(default_factory=_now_ms)
    last_activity: int = field(default_factory=_now_ms)
    version: int = SNAPSHOT_VERSION

    def to_dict(self) -> Dict:
        return {
            "version": self.version,
            "wallet": dict(self.wallet),
            "paymentCode": self.payment_code,
            "knownSenders": list(self.known_senders),
            "lastScannedBlocks": dict(self.last_scanned_blocks),
            "channels": {code: dict(zones) for code, zones in self.channels.items()},
            "outpoints": list(self.outpoints),
            "createdAt": self.created_at,
            "lastActivity": self.last_activity,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "WalletSnapshot":
        if not isinstance(data, dict):
            raise SerializationError("Snapshot must be a mapping")
        version = data.get("version")
        if version != SNAPSHOT_VERSION:
            raise SerializationError(f"Unsupported snapshot version: {version!r}")
        try:
            wallet = data["wallet"]
            payment_code = data["paymentCode"]
            if not isinstance(wallet, dict) or not isinstance(payment_code, str):
                raise TypeError("wallet must be a mapping and paymentCode a string")
            last_scanned = {}
            for zone_key, height in (data.get("lastScannedBlocks") or {}).items():
                last_scanned[parse_zone(zone_key).value] = int(height)
            return cls(
                wallet=wallet,
                payment_code=payment_code,
                known_senders=[str(code) for code in data.get("knownSenders") or []],
                last_scanned_blocks=last_scanned,
                channels={str(code): dict(zones) for code, zones in (data.get("channels") or {}).items()},
                outpoints=list(data.get("outpoints") or []),
                created_at=int(data.get("createdAt", 0)),
                last_activity=int(data.get("lastActivity", 0)),
                version=version,
            )
        except SerializationError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise SerializationError(f"Malformed snapshot: {e}")

    def verify(self, identity: Identity) -> None:
        if derive_payment_code(identity) != self.payment_code:
            raise SerializationError("Snapshot payment code does not belong to this identity")


def encode_snapshot(snapshot: WalletSnapshot, fmt: str = "json") -> bytes:
    data = snapshot.to_dict()
    if fmt == "json":
        return json.dumps(data, indent=2, sort_keys=True).encode("utf-8")
    if fmt == "msgpack":
        return msgpack.packb(data, use_bin_type=True)
    raise ValueError(f"Unknown snapshot format: {fmt!r}")


def decode_snapshot(raw: Union[bytes, str, Dict]) -> WalletSnapshot:
    """Parse a snapshot from a dict, JSON text or msgpack bytes."""
    if isinstance(raw, dict):
        return WalletSnapshot.from_dict(raw)
    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    if not isinstance(raw, (bytes, bytearray)) or not raw:
        raise SerializationError("Empty or unsupported snapshot payload")
    if len(raw) > MAX_SNAPSHOT_BYTES:
        raise SerializationError(f"Snapshot exceeds {MAX_SNAPSHOT_BYTES} bytes")
    try:
        if raw.lstrip()[:1] == b"{":
            data = json.loads(raw.decode("utf-8"))
        else:
            data = msgpack.unpackb(raw, raw=False)
    except (ValueError, TypeError) as e:
        raise SerializationError(f"Corrupt snapshot: {e}")
    return WalletSnapshot.from_dict(data)


def format_for_path(path: str) -> str:
    return "msgpack" if str(path).lower().endswith(".msgpack") else "json"


def save_snapshot(snapshot: WalletSnapshot, path: str) -> str:
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    payload = encode_snapshot(snapshot, format_for_path(path))
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "wb") as f:
        f.write(payload)
    os.replace(tmp_path, path)
    print_success(f"💾 Wallet saved to {path}")
    return path


def load_snapshot(path: str) -> WalletSnapshot:
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as e:
        raise SerializationError(f"Cannot read snapshot {path}: {e}")
    return decode_snapshot(raw)
