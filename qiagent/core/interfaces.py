"""
Collaborator contracts consumed by the wallet.

The wallet never talks to a node, a contract or a key store directly; it is
handed objects implementing these interfaces. ``qiagent.network`` ships an
HTTP gateway client and an in-process devnet that implement all three ledger
facing services.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .zones import Zone


@dataclass(frozen=True)
class ChainOutput:
    """An unspent output as reported by the chain query service."""
    tx_hash: str
    index: int
    denomination: int
    lock: int = 0
    block_number: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict) -> "ChainOutput":
        return cls(
            tx_hash=str(data.get("txhash") or data.get("txHash") or data.get("tx_hash")),
            index=int(data["index"]),
            denomination=int(data["denomination"]),
            lock=int(data.get("lock") or 0),
            block_number=data.get("blockNumber"),
        )

    def to_dict(self) -> Dict:
        return {
            "txhash": self.tx_hash,
            "index": self.index,
            "denomination": self.denomination,
            "lock": self.lock,
            "blockNumber": self.block_number,
        }


@dataclass
class TransferReceipt:
    hash: str
    confirmed: bool = False
    block_number: Optional[int] = None


@dataclass
class NotificationReceipt:
    tx_hash: str
    sender: str
    receiver: str
    confirmed: bool = False
    block_number: Optional[int] = None


@dataclass
class SignedTransaction:
    payload: Dict
    hash: str
    signature: str
    public_key: str
    extra: Dict = field(default_factory=dict)

    def to_dict(self) -> Dict:
        data = dict(self.payload)
        data.update({"hash": self.hash, "signature": self.signature, "publicKey": self.public_key})
        return data


class KeyService(ABC):
    """Opaque cryptographic primitives bound to one identity."""

    @abstractmethod
    def derive_public_material(self) -> bytes:
        """Public key material published inside this identity's payment code."""

    @abstractmethod
    def derive_shared_secret(self, counterparty_public: bytes) -> bytes:
        """Shared secret between this identity and a counterparty's public material."""

    @abstractmethod
    def sign(self, payload: Dict) -> SignedTransaction:
        pass


class ChainQueryService(ABC):
    @abstractmethod
    def get_unspent_outputs(self, address: str, zone: Zone) -> List[ChainOutput]:
        pass

    @abstractmethod
    def get_block_height(self, zone: Zone) -> int:
        pass


class TransactionSubmitter(ABC):
    @abstractmethod
    def submit(self, signed_tx: SignedTransaction, zone: Zone) -> TransferReceipt:
        pass


class NotificationRegistry(ABC):
    """The on-chain mailbox contract surface."""

    @abstractmethod
    def notify(self, sender_code: str, receiver_code: str) -> str:
        """Submit a notification, returning its transaction hash."""

    @abstractmethod
    def wait_for_receipt(self, tx_hash: str, timeout: float) -> NotificationReceipt:
        """Block until the notification transaction is durable."""

    @abstractmethod
    def get_notifications(self, receiver_code: str) -> List[str]:
        pass

    @abstractmethod
    def subscribe(self, listener: Callable[[str, str], None]) -> Callable[[], None]:
        """Deliver ``NotificationSent(sender, receiver)`` events; returns an unsubscribe function."""
