"""
In-process devnet.

Implements the chain query, transaction submission and notification
registry services over plain dictionaries. Used by the ``local`` network
preset and by the test-suite; it also lets callers inject per-zone and
mailbox failures and query latency.
"""
import secrets
import threading
import time
from collections import Counter, OrderedDict
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from ..core.denominations import sum_denominations, validate_denomination
from ..core.errors import GatewayError
from ..core.interfaces import (
    ChainOutput,
    ChainQueryService,
    NotificationReceipt,
    NotificationRegistry,
    SignedTransaction,
    TransactionSubmitter,
    TransferReceipt,
)
from ..core.keys import canonical_payload
from ..core.zones import ALL_ZONES, Zone, parse_zone, zone_of_address
from ..utils.console import print_debug, print_warn
from ..utils.hash import sm3_hex


class InMemoryNetwork(ChainQueryService, TransactionSubmitter, NotificationRegistry):
    def __init__(self, zones: Iterable[Zone] = ALL_ZONES, latency: float = 0.0):
        self._lock = threading.RLock()
        self._heights: Dict[Zone, int] = {parse_zone(z): 0 for z in zones}
        self._utxos: Dict[Zone, Dict[str, Dict[Tuple[str, int], ChainOutput]]] = {z: {} for z in self._heights}
        self._notifications: Dict[str, List[str]] = {}
        self._receipts: Dict[str, NotificationReceipt] = {}
        self._listeners: "OrderedDict[int, Callable[[str, str], None]]" = OrderedDict()
        self._listener_ids = 0
        self.transactions: List[Dict] = []
        self.latency = latency
        self.failing_zones: Set[Zone] = set()
        self.mailbox_down = False
        self.notify_down = False
        self.submit_down = False
        self.calls: Counter = Counter()

    def _check_zone(self, zone) -> Zone:
        zone = parse_zone(zone)
        if zone in self.failing_zones:
            raise GatewayError(f"zone {zone} unavailable")
        if zone not in self._heights:
            raise GatewayError(f"zone {zone} not served by this network")
        return zone

    def _new_hash(self) -> str:
        return "0x" + sm3_hex(secrets.token_bytes(32))

    # =========================================================================
    # Chain query
    # =========================================================================

    def get_unspent_outputs(self, address: str, zone: Zone) -> List[ChainOutput]:
        self.calls["get_unspent_outputs"] += 1
        if self.latency:
            time.sleep(self.latency)
        zone = self._check_zone(zone)
        with self._lock:
            return list(self._utxos[zone].get(address.lower(), {}).values())

    def get_block_height(self, zone: Zone) -> int:
        self.calls["get_block_height"] += 1
        zone = self._check_zone(zone)
        with self._lock:
            return self._heights[zone]

    def mine(self, zone: Zone, blocks: int = 1) -> int:
        zone = parse_zone(zone)
        with self._lock:
            self._heights[zone] += blocks
            return self._heights[zone]

    def fund(self, address: str, denominations: Iterable[int], zone: Optional[Zone] = None,
             lock: int = 0) -> str:
        """Credit outputs to ``address`` in a new block; returns the transaction hash."""
        if zone is None:
            zone = zone_of_address(address)
        zone = parse_zone(zone)
        tx_hash = self._new_hash()
        with self._lock:
            height = self.mine(zone)
            bucket = self._utxos[zone].setdefault(address.lower(), {})
            for i, denom in enumerate(denominations):
                validate_denomination(denom)
                bucket[(tx_hash, i)] = ChainOutput(tx_hash, i, denom, lock=lock, block_number=height)
        return tx_hash

    def spend(self, zone: Zone, tx_hash: str, index: int) -> bool:
        """Remove an output as if spent elsewhere."""
        zone = parse_zone(zone)
        with self._lock:
            for bucket in self._utxos[zone].values():
                if bucket.pop((tx_hash, index), None) is not None:
                    self.mine(zone)
                    return True
        return False

    # =========================================================================
    # Transaction submission
    # =========================================================================

    def submit(self, signed_tx: SignedTransaction, zone: Zone) -> TransferReceipt:
        self.calls["submit"] += 1
        if self.submit_down:
            raise GatewayError("transaction pool unavailable")
        zone = self._check_zone(zone)
        payload = signed_tx.payload
        try:
            Ed25519PublicKey.from_public_bytes(bytes.fromhex(signed_tx.public_key)).verify(
                bytes.fromhex(signed_tx.signature), canonical_payload(payload)
            )
        except (InvalidSignature, ValueError):
            raise GatewayError("invalid transaction signature", status_code=400)

        with self._lock:
            spent = []
            seen = set()
            for tx_in in payload["inputs"]:
                bucket = self._utxos[zone].get(tx_in["address"].lower(), {})
                key = (tx_in["txhash"], int(tx_in["index"]))
                if key not in bucket or key in seen:
                    raise GatewayError(f"input {key[0][:12]}:{key[1]} is not unspent", status_code=400)
                seen.add(key)
                spent.append((bucket, key))
            in_total = sum_denominations(bucket[key].denomination for bucket, key in spent)
            out_total = sum_denominations(out["denomination"] for out in payload["outputs"])
            if out_total > in_total:
                raise GatewayError("outputs exceed inputs", status_code=400)

            for bucket, key in spent:
                del bucket[key]
            touched = {zone}
            for i, out in enumerate(payload["outputs"]):
                out_zone = parse_zone(out["zone"])
                touched.add(out_zone)
                height = self._heights[out_zone] + 1
                self._utxos[out_zone].setdefault(out["address"].lower(), {})[(signed_tx.hash, i)] = ChainOutput(
                    signed_tx.hash, i, int(out["denomination"]), block_number=height
                )
            for z in touched:
                self.mine(z)
            self.transactions.append(signed_tx.to_dict())
            block = self._heights[zone]
        print_debug(f"devnet: accepted {signed_tx.hash} in {zone}")
        return TransferReceipt(hash=signed_tx.hash, confirmed=True, block_number=block)

    # =========================================================================
    # Notification registry
    # =========================================================================

    def notify(self, sender_code: str, receiver_code: str) -> str:
        self.calls["notify"] += 1
        if self.mailbox_down or self.notify_down:
            raise GatewayError("mailbox unavailable")
        tx_hash = self._new_hash()
        with self._lock:
            self._notifications.setdefault(receiver_code, []).append(sender_code)
            block = self.mine(Zone.CYPRUS1)
            self._receipts[tx_hash] = NotificationReceipt(
                tx_hash=tx_hash, sender=sender_code, receiver=receiver_code, confirmed=True, block_number=block
            )
            listeners = list(self._listeners.values())
        for listener in listeners:
            try:
                listener(sender_code, receiver_code)
            except Exception as e:
                print_warn(f"⚠️  devnet: notification listener error: {e}")
        return tx_hash

    def wait_for_receipt(self, tx_hash: str, timeout: float) -> NotificationReceipt:
        with self._lock:
            receipt = self._receipts.get(tx_hash)
        if receipt is None:
            raise GatewayError(f"unknown transaction {tx_hash}")
        return receipt

    def get_notifications(self, receiver_code: str) -> List[str]:
        self.calls["get_notifications"] += 1
        if self.mailbox_down:
            raise GatewayError("mailbox unavailable")
        with self._lock:
            return list(self._notifications.get(receiver_code, []))

    def subscribe(self, listener: Callable[[str, str], None]) -> Callable[[], None]:
        with self._lock:
            self._listener_ids += 1
            token = self._listener_ids
            self._listeners[token] = listener

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(token, None)

        return unsubscribe
