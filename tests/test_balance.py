import pytest

from qiagent.core.balance import BalanceAggregator
from qiagent.core.denominations import (
    DENOMINATIONS,
    denominate,
    denomination_qi,
    denomination_value,
    sum_denominations,
    validate_denomination,
)
from qiagent.core.errors import InvalidDenomination
from qiagent.core.ledger import Outpoint
from qiagent.core.zones import ALL_ZONES, Zone


def _fill(ledger, zone, denominations, lock=0):
    ops = [
        Outpoint(tx_hash=f"0x{zone.value}{i}", index=i, zone=zone, denomination=d,
                 address=f"addr-{zone.value}", lock=lock)
        for i, d in enumerate(denominations)
    ]
    ledger.merge_zone(zone, ops, [], 100)
    return ops


class TestDenominations:
    def test_table(self):
        assert len(DENOMINATIONS) == 15
        assert denomination_value(0) == 1
        assert denomination_value(6) == 1000
        assert denomination_value(14) == 1000000000
        assert denomination_qi(7) == 5.0

    @pytest.mark.parametrize("index", [-1, 15, 99, "3", 2.0, True, None])
    def test_out_of_range_index_raises(self, index):
        with pytest.raises(InvalidDenomination):
            validate_denomination(index)

    def test_sum_and_denominate(self):
        assert sum_denominations([6, 6, 2]) == 2010
        assert denominate(2010) == [6, 6, 2]
        assert denominate(0) == []
        assert sum_denominations(denominate(123456789)) == 123456789


class TestBalanceAggregator:
    def test_zone_balance_sums_denomination_values(self, ledger):
        _fill(ledger, Zone.CYPRUS1, [6, 6, 2])
        balance = BalanceAggregator(ledger).balance(Zone.CYPRUS1)

        assert balance.balance == 2010
        assert balance.utxo_count == 3
        assert balance.locked_balance == 0
        assert balance.available_balance == 2010

    def test_locked_outputs_count_separately(self, ledger):
        _fill(ledger, Zone.PAXOS1, [6])
        ledger.merge_zone(Zone.PAXOS1, [
            Outpoint(tx_hash="0xlocked", index=0, zone=Zone.PAXOS1, denomination=7, address="a", lock=500)
        ], [], 100)

        balance = BalanceAggregator(ledger).balance(Zone.PAXOS1)
        assert balance.balance == 6000
        assert balance.locked_balance == 5000
        assert balance.available_balance == 1000

    def test_total_sums_all_zones(self, ledger):
        _fill(ledger, Zone.CYPRUS1, [6, 6, 2])
        _fill(ledger, Zone.HYDRA2, [4])
        total = BalanceAggregator(ledger).total_balance()

        assert total.total == 2110
        assert int(total) == 2110
        assert total.complete
        assert set(total.zones) == set(ALL_ZONES)

    def test_failing_zone_contributes_zero_with_warning(self, ledger, monkeypatch):
        _fill(ledger, Zone.CYPRUS1, [6, 6, 2])
        _fill(ledger, Zone.HYDRA3, [8])
        original = ledger.outpoints

        def outpoints(zone):
            if zone == Zone.HYDRA3:
                raise RuntimeError("Hydra3 unavailable")
            return original(zone)

        monkeypatch.setattr(ledger, "outpoints", outpoints)
        total = BalanceAggregator(ledger).total_balance()

        assert total.total == 2010
        assert not total.complete
        assert list(total.warnings) == [Zone.HYDRA3]
        assert "Hydra3 unavailable" in total.warnings[Zone.HYDRA3]
        assert Zone.HYDRA3 not in total.zones

    def test_to_dict(self, ledger):
        _fill(ledger, Zone.CYPRUS1, [6, 6, 2])
        data = BalanceAggregator(ledger).balance(Zone.CYPRUS1).to_dict()
        assert data["zone"] == "0x00"
        assert data["balance"] == 2010
        assert data["balanceDisplay"] == "2.010 Qi"
