import threading
import time

import pytest

from qiagent.core.errors import SyncInProgress
from qiagent.core.sync import SyncPoller, SyncState
from qiagent.core.zones import ALL_ZONES, Zone


class TestSyncOrchestrator:
    def test_scan_before_discovery_misses_funds(self, funded_alice, bob):
        """Scanning before the sender's channel is open finds nothing; discover then rescan finds it"""
        funded_alice.send(bob.get_payment_code(), 1000)

        bob.scan_all_zones()
        assert bob.get_balance(Zone.CYPRUS1) == 0

        assert bob.discover_senders() == [funded_alice.get_payment_code()]
        bob.scan_all_zones()
        assert bob.get_balance(Zone.CYPRUS1) == 1000

    def test_sync_discovers_before_scanning(self, funded_alice, bob):
        funded_alice.send(bob.get_payment_code(), 1000)
        states = []
        original_scan = bob.scanner.scan_zones

        def scan_zones(zones=None):
            states.append(bob.orchestrator.state)
            states.append(list(bob.orchestrator.known_senders))
            return original_scan(zones)

        bob.scanner.scan_zones = scan_zones
        report = bob.sync(Zone.CYPRUS1)

        assert states == [SyncState.SCANNING, [funded_alice.get_payment_code()]]
        assert bob.orchestrator.state is SyncState.IDLE
        assert report.ok
        assert bob.get_balance(Zone.CYPRUS1) == 1000

    def test_payment_event_fires_once_per_outpoint(self, funded_alice, bob):
        received = []
        bob.on_payment_received(received.append)
        funded_alice.send(bob.get_payment_code(), 1500)

        bob.sync(Zone.CYPRUS1)
        bob.sync(Zone.CYPRUS1)

        assert sorted(p.amount for p in received) == [500, 1000]
        assert {p.sender_payment_code for p in received} == {funded_alice.get_payment_code()}
        assert len({(p.tx_hash, p.output_index) for p in received}) == 2

    def test_sender_event_fires_once_per_code(self, funded_alice, bob):
        senders = []
        bob.on_sender_discovered(senders.append)
        funded_alice.send(bob.get_payment_code(), 1000)
        funded_alice.mailbox.notify(funded_alice.get_payment_code(), bob.get_payment_code())

        bob.sync(Zone.CYPRUS1)
        bob.sync(Zone.CYPRUS1)

        assert senders == [funded_alice.get_payment_code()]

    def test_failing_callback_does_not_block_others(self, funded_alice, bob):
        delivered = []

        def broken(payment):
            raise RuntimeError("observer bug")

        bob.on_payment_received(broken)
        bob.on_payment_received(delivered.append)
        funded_alice.send(bob.get_payment_code(), 1000)

        report = bob.sync(Zone.CYPRUS1)

        assert len(delivered) == 1
        assert report.ok
        assert bob.orchestrator.payment_events.failures == 1

    def test_unsubscribe_stops_delivery(self, funded_alice, bob):
        delivered = []
        subscription = bob.on_payment_received(delivered.append)
        assert subscription.active
        subscription.unsubscribe()
        assert not subscription.active

        funded_alice.send(bob.get_payment_code(), 1000)
        bob.sync(Zone.CYPRUS1)
        assert delivered == []

    def test_malformed_sender_does_not_stop_discovery(self, funded_alice, bob, network):
        garbage = "PM8TGARBAGEGARBAGEGARBAGE"
        network.notify(garbage, bob.get_payment_code())
        funded_alice.send(bob.get_payment_code(), 1000)

        report = bob.sync(Zone.CYPRUS1)

        assert funded_alice.get_payment_code() in report.new_senders
        assert garbage in report.channel_errors
        assert garbage in bob.orchestrator.rejected_senders
        assert bob.channels.get(funded_alice.get_payment_code()).is_open
        assert bob.get_balance(Zone.CYPRUS1) == 1000

    def test_channel_open_failure_is_retried_next_cycle(self, funded_alice, bob, monkeypatch):
        funded_alice.send(bob.get_payment_code(), 1000)
        original_open = bob.channels.open_channel
        attempts = []

        def flaky_open(code):
            attempts.append(code)
            if len(attempts) == 1:
                raise RuntimeError("key service unavailable")
            return original_open(code)

        monkeypatch.setattr(bob.channels, "open_channel", flaky_open)

        first = bob.sync(Zone.CYPRUS1)
        assert funded_alice.get_payment_code() in first.channel_errors
        assert bob.get_balance(Zone.CYPRUS1) == 0

        second = bob.sync(Zone.CYPRUS1)
        assert second.channel_errors == {}
        assert bob.get_balance(Zone.CYPRUS1) == 1000

    def test_mailbox_failure_still_scans_open_channels(self, alice, network):
        network.fund(alice.get_receive_address(Zone.CYPRUS1), [6])
        network.mailbox_down = True

        report = alice.sync(Zone.CYPRUS1)

        assert report.discovery_error is not None
        assert not report.ok
        assert Zone.CYPRUS1 in report.scan.results
        assert alice.get_balance(Zone.CYPRUS1) == 1000

    def test_scan_failure_reported_per_zone(self, alice, network):
        network.failing_zones.add(Zone.HYDRA3)
        report = alice.sync(ALL_ZONES)
        assert set(report.scan.errors) == {Zone.HYDRA3}
        assert len(report.scan.results) == len(ALL_ZONES) - 1

    def test_import_sender_opens_channel(self, funded_alice, bob, network):
        funded_alice.send(bob.get_payment_code(), 1000)
        network.mailbox_down = True

        bob.import_sender(funded_alice.get_payment_code())
        bob.sync(Zone.CYPRUS1)

        assert bob.get_known_senders() == [funded_alice.get_payment_code()]
        assert bob.get_balance(Zone.CYPRUS1) == 1000

    def test_non_blocking_sync_raises_while_busy(self, alice):
        with alice.orchestrator._cycle_lock:
            with pytest.raises(SyncInProgress):
                alice.sync(wait=False)
            assert alice.orchestrator.try_sync() is None

    def test_discovery_during_cycle_leaves_state_alone(self, funded_alice, bob):
        funded_alice.send(bob.get_payment_code(), 1000)
        seen = {}
        original_scan = bob.scanner.scan_zones

        def scan_zones(zones=None):
            with pytest.raises(SyncInProgress):
                bob.discover_senders(wait=False)
            seen["state"] = bob.orchestrator.state
            return original_scan(zones)

        bob.scanner.scan_zones = scan_zones
        bob.sync(Zone.CYPRUS1)

        assert seen["state"] is SyncState.SCANNING
        assert bob.orchestrator.state is SyncState.IDLE

    def test_push_during_cycle_is_left_to_next_cycle(self, funded_alice, bob):
        bob.enable_push_discovery()
        with bob.orchestrator._cycle_lock:
            funded_alice.send(bob.get_payment_code(), 1000)
            assert bob.get_known_senders() == []
        assert bob.orchestrator.state is SyncState.IDLE

        bob.sync(Zone.CYPRUS1)
        assert bob.get_known_senders() == [funded_alice.get_payment_code()]
        assert bob.get_balance(Zone.CYPRUS1) == 1000
        bob.close()

    def test_push_discovery(self, funded_alice, bob):
        bob.enable_push_discovery()
        funded_alice.send(bob.get_payment_code(), 1000)
        assert bob.get_known_senders() == [funded_alice.get_payment_code()]
        bob.start_polling(30)

        bob.close()

        assert bob._push_unsubscribe is None
        assert not bob.is_polling


class TestSyncPoller:
    def test_tick_skipped_while_cycle_in_flight(self, alice):
        poller = SyncPoller(alice.orchestrator, interval=60)
        with alice.orchestrator._cycle_lock:
            assert poller.tick() is False
        assert poller.ticks == 1
        assert poller.skipped_ticks == 1
        poller.stop()

    def test_invalid_interval(self, alice):
        with pytest.raises(ValueError):
            SyncPoller(alice.orchestrator, interval=0)

    def test_overlap_guard(self, alice, monkeypatch):
        """A short interval with a slow sync never runs two cycles at once"""
        lock = threading.Lock()
        active = {"now": 0, "max": 0}
        original = alice.scanner.scan_zones

        def slow_scan(zones=None):
            with lock:
                active["now"] += 1
                active["max"] = max(active["max"], active["now"])
            try:
                time.sleep(0.2)
                return original(zones)
            finally:
                with lock:
                    active["now"] -= 1

        monkeypatch.setattr(alice.scanner, "scan_zones", slow_scan)

        poller = alice.start_polling(0.02)
        time.sleep(0.5)
        alice.stop_polling(wait=True)

        assert active["max"] == 1
        assert poller.completed_cycles >= 1
        assert poller.skipped_ticks >= 1
        assert poller.ticks == poller.skipped_ticks + poller.completed_cycles + poller.failed_cycles

    def test_stop_lets_in_flight_cycle_finish(self, alice, monkeypatch):
        started = threading.Event()
        original = alice.scanner.scan_zones

        def slow_scan(zones=None):
            started.set()
            time.sleep(0.2)
            return original(zones)

        monkeypatch.setattr(alice.scanner, "scan_zones", slow_scan)

        poller = alice.start_polling(30)
        assert started.wait(2)
        alice.stop_polling(wait=True)

        assert poller.completed_cycles == 1
        assert not alice.is_polling
        assert not alice.orchestrator.busy
        time.sleep(0.05)
        assert poller.ticks == 1
