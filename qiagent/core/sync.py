"""
Sync orchestration.

One sync cycle runs strictly in this order:

    IDLE -> DISCOVERING_SENDERS -> OPENING_CHANNELS -> SCANNING -> IDLE

Discovery reads the mailbox for this wallet's payment code and records new
senders; channel opening derives the receive sequences for them; only then
does the scanner run, and it only ever watches open channels. Cycles never
overlap: ``sync`` waits for an in-flight cycle, poller ticks skip instead.
"""
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

from .channels import Channel, ChannelManager
from .errors import InvalidCounterpartyCode, MailboxQueryFailed, SyncInProgress
from .events import PaymentReceived, SubscriptionRegistry
from .mailbox import MailboxClient
from .scanner import ScanReport, UTXOScanner
from .zones import Zone, parse_zone
from ..utils.console import print_error, print_info, print_success, print_warn


class SyncState(Enum):
    IDLE = "idle"
    DISCOVERING_SENDERS = "discovering_senders"
    OPENING_CHANNELS = "opening_channels"
    SCANNING = "scanning"


@dataclass
class SyncReport:
    zones: List[Zone]
    new_senders: List[str] = field(default_factory=list)
    channel_errors: Dict[str, Exception] = field(default_factory=dict)
    discovery_error: Optional[MailboxQueryFailed] = None
    scan: ScanReport = field(default_factory=ScanReport)
    started_at: float = 0.0
    finished_at: float = 0.0

    @property
    def ok(self) -> bool:
        return self.discovery_error is None and not self.channel_errors and self.scan.ok

    @property
    def new_outpoints(self):
        return self.scan.new_outpoints


class SyncOrchestrator:
    def __init__(self, channels: ChannelManager, mailbox: MailboxClient, scanner: UTXOScanner,
                 default_zones: Iterable[Zone], retry_failed_channels: bool = True):
        self.channels = channels
        self.mailbox = mailbox
        self.scanner = scanner
        self.default_zones = [parse_zone(z) for z in default_zones]
        self.retry_failed_channels = retry_failed_channels

        self.payment_events: SubscriptionRegistry[PaymentReceived] = SubscriptionRegistry("Payment")
        self.sender_events: SubscriptionRegistry[str] = SubscriptionRegistry("Sender")

        self.state = SyncState.IDLE
        self._known_senders: Dict[str, None] = {}
        self.rejected_senders: Dict[str, str] = {}
        self.channel_errors: Dict[str, Exception] = {}
        self._cycle_lock = threading.Lock()
        self._state_lock = threading.RLock()
        self.cycles = 0
        self.last_sync_at: Optional[float] = None

    # =========================================================================
    # Known senders
    # =========================================================================

    @property
    def known_senders(self) -> List[str]:
        with self._state_lock:
            return list(self._known_senders)

    def restore_known_senders(self, codes: Iterable[str]) -> None:
        """Re-register senders from a snapshot and open their channels."""
        with self._state_lock:
            for code in codes:
                code = str(code).strip()
                if code and code not in self._known_senders:
                    self._known_senders[code] = None
                    self.channels.register(code)
            self._open_channels(list(self._known_senders))

    def _open_channels(self, codes: List[str]) -> List[str]:
        opened = []
        for code in codes:
            if code in self.rejected_senders:
                continue
            try:
                self.channels.open_channel(code)
            except InvalidCounterpartyCode as e:
                self.rejected_senders[code] = e.reason
                self.channel_errors[code] = e
                print_warn(f"⚠️  Rejected sender {code[:20]}...: {e.reason}")
                continue
            except Exception as e:
                self.channel_errors[code] = e
                print_error(f"❌ Failed to open channel with {code[:20]}...: {e}")
                continue
            self.channel_errors.pop(code, None)
            opened.append(code)
        return opened

    def import_sender(self, code: str) -> Channel:
        """Add a counterparty without a mailbox notification. Raises on bad codes."""
        code = str(code).strip()
        channel = self.channels.open_channel(code)
        with self._state_lock:
            is_new = code not in self._known_senders
            self._known_senders[code] = None
            self.channel_errors.pop(code, None)
        if is_new and not channel.is_self:
            self.sender_events.emit(code)
        return channel

    # =========================================================================
    # Cycle steps
    # =========================================================================

    def discover_senders(self, wait: bool = True) -> List[str]:
        """Read the mailbox, record new senders and open their channels.

        Returns the newly seen sender codes. A channel-open failure for one
        sender is recorded in ``channel_errors`` and does not stop the others.
        Raises MailboxQueryFailed when the mailbox cannot be read. Holds the
        cycle lock while it runs; with ``wait=False`` raises SyncInProgress
        instead of waiting for a running cycle.
        """
        if not self._cycle_lock.acquire(blocking=wait):
            raise SyncInProgress("A sync cycle is already running")
        try:
            return self._discovery_step()
        finally:
            self._set_state(SyncState.IDLE)
            self._cycle_lock.release()

    def _discovery_step(self) -> List[str]:
        self._set_state(SyncState.DISCOVERING_SENDERS)
        new_senders = self._discover()

        if new_senders:
            print_success(f"👋 Discovered {len(new_senders)} new sender(s)")
        for code in new_senders:
            self.sender_events.emit(code)
        return new_senders

    def _discover(self) -> List[str]:
        notifications = self.mailbox.list_notifications(self.channels.payment_code)

        with self._state_lock:
            new_senders = sorted(
                code for code in notifications
                if code not in self._known_senders and code != self.channels.payment_code
            )
            for code in new_senders:
                self._known_senders[code] = None

            self._set_state(SyncState.OPENING_CHANNELS)
            to_open = list(new_senders)
            if self.retry_failed_channels:
                to_open += [
                    c.counterparty_code for c in self.channels.unopened()
                    if c.counterparty_code in self._known_senders and c.counterparty_code not in new_senders
                ]
            for code in new_senders:
                self.channels.register(code)
            self._open_channels(to_open)
        return new_senders

    def _scan(self, zones: List[Zone]) -> ScanReport:
        self._set_state(SyncState.SCANNING)
        report = self.scanner.scan_zones(zones)
        for result in report.results.values():
            for op in result.new_outpoints:
                self.payment_events.emit(PaymentReceived(
                    amount=op.value,
                    tx_hash=op.tx_hash,
                    zone=op.zone,
                    output_index=op.index,
                    address=op.address,
                    block_number=op.block_number,
                    timestamp=time.time(),
                    sender_payment_code=op.counterparty,
                ))
        return report

    def _set_state(self, state: SyncState) -> None:
        self.state = state

    def _run_cycle(self, zones: List[Zone]) -> SyncReport:
        report = SyncReport(zones=zones, started_at=time.time())
        names = ", ".join(str(z) for z in zones)
        print_info(f"🔄 Syncing wallet for {names}...")
        try:
            try:
                report.new_senders = self._discovery_step()
            except MailboxQueryFailed as e:
                report.discovery_error = e
                print_warn(f"⚠️  Sender discovery failed, scanning known channels only: {e}")
            with self._state_lock:
                report.channel_errors = dict(self.channel_errors)
            report.scan = self._scan(zones)
        finally:
            self._set_state(SyncState.IDLE)
            report.finished_at = time.time()
            self.cycles += 1
            self.last_sync_at = report.finished_at
        print_success(f"✅ Sync complete in {report.finished_at - report.started_at:.2f}s")
        return report

    def _zones(self, zones: Union[None, Zone, str, Iterable]) -> List[Zone]:
        if zones is None:
            return list(self.default_zones)
        if isinstance(zones, (Zone, str)):
            return [parse_zone(zones)]
        return [parse_zone(z) for z in zones]

    # =========================================================================
    # Public cycle entry points
    # =========================================================================

    @property
    def busy(self) -> bool:
        return self._cycle_lock.locked()

    def sync(self, zones=None) -> SyncReport:
        """Run discovery then scanning; waits for any in-flight cycle first."""
        zones = self._zones(zones)
        with self._cycle_lock:
            return self._run_cycle(zones)

    def scan(self, zones=None) -> ScanReport:
        """Scan only, against the channels opened so far. Never overlaps a cycle."""
        zones = self._zones(zones)
        with self._cycle_lock:
            try:
                return self._scan(zones)
            finally:
                self._set_state(SyncState.IDLE)

    def try_sync(self, zones=None) -> Optional[SyncReport]:
        """Like ``sync`` but returns None immediately if a cycle is running."""
        zones = self._zones(zones)
        if not self._cycle_lock.acquire(blocking=False):
            return None
        try:
            return self._run_cycle(zones)
        finally:
            self._cycle_lock.release()


class SyncPoller:
    """Runs sync cycles on a fixed interval.

    A tick that fires while a cycle is still running is skipped (and counted),
    never queued. ``stop`` cancels the timer only; a running cycle finishes.
    """

    def __init__(self, orchestrator: SyncOrchestrator, interval: float, zones=None):
        if interval <= 0:
            raise ValueError("Polling interval must be positive")
        self.orchestrator = orchestrator
        self.interval = float(interval)
        self.zones = zones
        self.ticks = 0
        self.skipped_ticks = 0
        self.completed_cycles = 0
        self.failed_cycles = 0
        self.last_report: Optional[SyncReport] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="qiagent-sync")
        self._counter_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("Poller already started")
        self._thread = threading.Thread(target=self._loop, name="qiagent-poller", daemon=True)
        self._thread.start()
        print_info(f"🔄 Started polling every {self.interval:g}s")

    def _loop(self) -> None:
        self.tick()
        while not self._stop.wait(self.interval):
            self.tick()

    def tick(self) -> bool:
        """Dispatch one cycle unless one is in flight. Returns False when skipped."""
        with self._counter_lock:
            self.ticks += 1
        orchestrator = self.orchestrator
        if not orchestrator._cycle_lock.acquire(blocking=False):
            with self._counter_lock:
                self.skipped_ticks += 1
            print_warn("⚠️  Previous sync still running, skipping tick")
            return False
        try:
            self._worker.submit(self._run)
        except RuntimeError:
            orchestrator._cycle_lock.release()
            return False
        return True

    def _run(self) -> None:
        orchestrator = self.orchestrator
        try:
            self.last_report = orchestrator._run_cycle(orchestrator._zones(self.zones))
            with self._counter_lock:
                self.completed_cycles += 1
        except Exception as e:
            with self._counter_lock:
                self.failed_cycles += 1
            print_error(f"❌ Polling error: {e}")
        finally:
            orchestrator._cycle_lock.release()

    def stop(self, wait: bool = False) -> None:
        """Stop scheduling cycles. With ``wait`` also block until a running cycle ends."""
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.interval + 1)
        self._worker.shutdown(wait=wait)
        print_info("⏹️  Stopped polling")
