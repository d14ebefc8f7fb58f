"""
UTXO scanner.

For a zone, walks the receive sequence of every *open* channel (the self
channel included) and asks the chain query service for unspent outputs.
Channels that are not open are invisible here: a sender must be discovered
and its channel opened before a scan can find its payments.

Per channel the scan covers:
  * addresses already holding live outpoints (to notice spends), and
  * the look-ahead from ``last_used + 1`` until ``gap_limit`` consecutive
    addresses come back empty.

All chain I/O happens before anything is merged; cursor moves and the
outpoint merge are applied together under the ledger lock.
"""
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .channels import RECEIVE, Channel, ChannelManager, derive_address
from .errors import ScanFailed
from .interfaces import ChainQueryService
from .ledger import LedgerState, Outpoint
from .zones import ALL_ZONES, Zone, parse_zone
from ..utils.console import print_debug, print_info, print_warn

DEFAULT_GAP_LIMIT = 20


@dataclass
class ChannelScan:
    channel: Channel
    found: List[Outpoint] = field(default_factory=list)
    addresses: List[str] = field(default_factory=list)
    highest_index: int = -1
    highest_used: int = -1


@dataclass
class ScanResult:
    zone: Zone
    block_height: int = -1
    new_outpoints: List[Outpoint] = field(default_factory=list)
    dropped_outpoints: List[Outpoint] = field(default_factory=list)
    addresses_scanned: int = 0
    channels_scanned: int = 0
    elapsed: float = 0.0


@dataclass
class ScanReport:
    """Outcome of a multi-zone scan: per-zone results plus per-zone failures."""
    results: Dict[Zone, ScanResult] = field(default_factory=dict)
    errors: Dict[Zone, ScanFailed] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def new_outpoints(self) -> List[Outpoint]:
        found = []
        for result in self.results.values():
            found.extend(result.new_outpoints)
        return found


class UTXOScanner:
    def __init__(self, chain: ChainQueryService, channels: ChannelManager, ledger: LedgerState,
                 gap_limit: int = DEFAULT_GAP_LIMIT, max_workers: Optional[int] = None):
        if gap_limit < 1:
            raise ValueError("gap_limit must be at least 1")
        self.chain = chain
        self.channels = channels
        self.ledger = ledger
        self.gap_limit = gap_limit
        self.max_workers = max_workers or int(os.getenv("QIAGENT_SCAN_WORKERS", "3"))

    def watched_channels(self) -> List[Channel]:
        return self.channels.open_channels()

    def _query(self, address: str, zone: Zone):
        return self.chain.get_unspent_outputs(address, zone)

    def _to_outpoints(self, channel: Channel, zone: Zone, address: str, index: int, outputs) -> List[Outpoint]:
        counterparty = None if channel.is_self else channel.counterparty_code
        return [
            Outpoint(
                tx_hash=out.tx_hash,
                index=out.index,
                zone=zone,
                denomination=out.denomination,
                address=address,
                lock=out.lock,
                block_number=out.block_number,
                counterparty=counterparty,
                address_index=index,
            )
            for out in outputs
        ]

    def _scan_channel(self, channel: Channel, zone: Zone, held: Dict[str, List[Outpoint]]) -> ChannelScan:
        scan = ChannelScan(channel)
        zc = channel.zone_cursor(zone)
        checked = set()

        # Recheck addresses with live outpoints from this channel.
        for address, ops in held.items():
            mine = [op for op in ops if op.counterparty == (None if channel.is_self else channel.counterparty_code)]
            if not mine:
                continue
            index = mine[0].address_index
            outputs = self._query(address, zone)
            checked.add(index)
            scan.addresses.append(address)
            if outputs:
                scan.found.extend(self._to_outpoints(channel, zone, address, index, outputs))
                scan.highest_used = max(scan.highest_used, index)

        index = zc.last_used + 1
        consecutive_empty = 0
        while consecutive_empty < self.gap_limit:
            if index in checked:
                index += 1
                continue
            address = derive_address(channel, zone, index, RECEIVE)
            outputs = self._query(address, zone)
            scan.addresses.append(address)
            scan.highest_index = max(scan.highest_index, index)
            if outputs:
                scan.found.extend(self._to_outpoints(channel, zone, address, index, outputs))
                scan.highest_used = max(scan.highest_used, index)
                consecutive_empty = 0
            else:
                consecutive_empty += 1
            index += 1
        return scan

    def scan(self, zone: Zone) -> ScanResult:
        """Scan one zone. Raises ScanFailed; nothing is merged on failure."""
        zone = parse_zone(zone)
        started = time.time()
        try:
            block_height = self.chain.get_block_height(zone)
            held = self.ledger.addresses_with_outpoints(zone)
            channel_scans = [self._scan_channel(ch, zone, held) for ch in self.watched_channels()]
        except ScanFailed:
            raise
        except Exception as e:
            raise ScanFailed(zone, e) from e

        result = ScanResult(zone, block_height=block_height)
        observed: List[Outpoint] = []
        scanned_addresses: List[str] = []
        with self.ledger.lock:
            for cs in channel_scans:
                observed.extend(cs.found)
                scanned_addresses.extend(cs.addresses)
                if cs.highest_index >= 0:
                    cs.channel.advance_cursor(zone, cs.highest_index)
                if cs.highest_used >= 0:
                    cs.channel.mark_used(zone, cs.highest_used)
            merged = self.ledger.merge_zone(zone, observed, scanned_addresses, block_height)

        result.new_outpoints = merged.added
        result.dropped_outpoints = merged.dropped
        result.addresses_scanned = len(scanned_addresses)
        result.channels_scanned = len(channel_scans)
        result.elapsed = time.time() - started
        print_debug(
            f"Scanned {zone}: {result.addresses_scanned} addresses, "
            f"{len(result.new_outpoints)} new, {len(result.dropped_outpoints)} spent"
        )
        return result

    def scan_zones(self, zones: Optional[Iterable[Zone]] = None) -> ScanReport:
        """Scan several zones in parallel, isolating per-zone failures."""
        zones = [parse_zone(z) for z in (zones if zones is not None else ALL_ZONES)]
        report = ScanReport()
        if not zones:
            return report
        print_info(f"🔍 Scanning {len(zones)} zone(s)...")
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(zones))) as pool:
            futures: List[Tuple[Zone, object]] = [(z, pool.submit(self.scan, z)) for z in zones]
            for zone, future in futures:
                try:
                    report.results[zone] = future.result()
                except ScanFailed as e:
                    print_warn(f"⚠️  Scan failed for {zone}: {e.cause}")
                    report.errors[zone] = e
        return report
