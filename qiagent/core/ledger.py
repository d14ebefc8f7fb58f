"""
Local UTXO ledger state.

Holds the live outpoint set per zone and the per-zone scan cursors. Every
mutation goes through ``merge_zone`` / ``reserve`` / ``restore_cursor`` under
one lock, so concurrent zone scans can query in parallel but only one merge
happens at a time.
"""
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .denominations import denomination_value, validate_denomination
from .zones import ALL_ZONES, Zone, parse_zone

OutpointKey = Tuple[str, int, Zone]


@dataclass(frozen=True)
class Outpoint:
    """A spendable output owned by one of this wallet's derived addresses."""
    tx_hash: str
    index: int
    zone: Zone
    denomination: int
    address: str
    lock: int = 0
    block_number: Optional[int] = None
    counterparty: Optional[str] = None   # None for the self channel
    address_index: int = 0

    def __post_init__(self):
        validate_denomination(self.denomination)

    @property
    def key(self) -> OutpointKey:
        return (self.tx_hash, self.index, self.zone)

    @property
    def value(self) -> int:
        return denomination_value(self.denomination)

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["zone"] = self.zone.value
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "Outpoint":
        return cls(
            tx_hash=str(data["tx_hash"]),
            index=int(data["index"]),
            zone=parse_zone(data["zone"]),
            denomination=int(data["denomination"]),
            address=str(data["address"]),
            lock=int(data.get("lock", 0)),
            block_number=data.get("block_number"),
            counterparty=data.get("counterparty"),
            address_index=int(data.get("address_index", 0)),
        )


@dataclass
class ScanCursor:
    """Per-zone watermark, moved only after a successful scan of the zone."""
    zone: Zone
    block_height: int = -1
    scanned_at: float = 0.0
    scans: int = 0


@dataclass
class MergeResult:
    zone: Zone
    added: List[Outpoint] = field(default_factory=list)
    dropped: List[Outpoint] = field(default_factory=list)


class LedgerState:
    def __init__(self, zones: Iterable[Zone] = ALL_ZONES):
        self.zones = [parse_zone(z) for z in zones]
        self._outpoints: Dict[Zone, Dict[OutpointKey, Outpoint]] = {z: {} for z in self.zones}
        self._cursors: Dict[Zone, ScanCursor] = {z: ScanCursor(z) for z in self.zones}
        self._reserved: Set[OutpointKey] = set()
        self._heights: Dict[Zone, int] = {}
        self.lock = threading.RLock()

    def _bucket(self, zone: Zone) -> Dict[OutpointKey, Outpoint]:
        zone = parse_zone(zone)
        if zone not in self._outpoints:
            self._outpoints[zone] = {}
            self._cursors[zone] = ScanCursor(zone)
            self.zones.append(zone)
        return self._outpoints[zone]

    # =========================================================================
    # Queries
    # =========================================================================

    def outpoints(self, zone: Zone) -> List[Outpoint]:
        with self.lock:
            return list(self._bucket(zone).values())

    def spendable(self, zone: Zone) -> List[Outpoint]:
        """Live, unlocked outpoints not reserved by an in-flight send."""
        with self.lock:
            height = self._heights.get(parse_zone(zone), -1)
            return [
                op for op in self._bucket(zone).values()
                if op.key not in self._reserved and op.lock <= height
            ]

    def is_locked(self, outpoint: Outpoint) -> bool:
        with self.lock:
            return outpoint.lock > self._heights.get(outpoint.zone, -1)

    def addresses_with_outpoints(self, zone: Zone) -> Dict[str, List[Outpoint]]:
        with self.lock:
            by_address: Dict[str, List[Outpoint]] = {}
            for op in self._bucket(zone).values():
                by_address.setdefault(op.address, []).append(op)
            return by_address

    def cursor(self, zone: Zone) -> ScanCursor:
        with self.lock:
            self._bucket(zone)
            return self._cursors[parse_zone(zone)]

    def cursors(self) -> Dict[Zone, ScanCursor]:
        with self.lock:
            return dict(self._cursors)

    def __len__(self) -> int:
        with self.lock:
            return sum(len(bucket) for bucket in self._outpoints.values())

    # =========================================================================
    # Mutations
    # =========================================================================

    def merge_zone(self, zone: Zone, observed: Iterable[Outpoint], scanned_addresses: Iterable[str],
                   block_height: int) -> MergeResult:
        """Merge one zone's scan into the outpoint set.

        Observed outpoints are inserted if absent. Previously recorded
        outpoints at a scanned address that were not observed again are
        dropped as spent. Outpoints at addresses outside this scan stay.
        """
        zone = parse_zone(zone)
        scanned = set(scanned_addresses)
        result = MergeResult(zone)
        with self.lock:
            bucket = self._bucket(zone)
            seen_keys = set()
            for op in observed:
                seen_keys.add(op.key)
                if op.key not in bucket:
                    bucket[op.key] = op
                    result.added.append(op)
            for key, op in list(bucket.items()):
                if op.address in scanned and key not in seen_keys:
                    del bucket[key]
                    self._reserved.discard(key)
                    result.dropped.append(op)

            cursor = self._cursors[zone]
            if block_height > cursor.block_height:
                cursor.block_height = block_height
            self._heights[zone] = max(self._heights.get(zone, -1), block_height)
            cursor.scanned_at = time.time()
            cursor.scans += 1
        return result

    def reserve(self, outpoints: Iterable[Outpoint]) -> None:
        with self.lock:
            for op in outpoints:
                self._reserved.add(op.key)

    def release(self, outpoints: Iterable[Outpoint]) -> None:
        with self.lock:
            for op in outpoints:
                self._reserved.discard(op.key)

    def restore_cursor(self, zone: Zone, block_height: int) -> None:
        with self.lock:
            self._bucket(zone)
            cursor = self._cursors[parse_zone(zone)]
            cursor.block_height = max(cursor.block_height, int(block_height))
            self._heights[cursor.zone] = max(self._heights.get(cursor.zone, -1), cursor.block_height)

    def restore_outpoints(self, outpoints: Iterable[Outpoint]) -> int:
        """Insert previously persisted outpoints; returns how many were new."""
        added = 0
        with self.lock:
            for op in outpoints:
                bucket = self._bucket(op.zone)
                if op.key not in bucket:
                    bucket[op.key] = op
                    added += 1
        return added
