"""Zone and wallet balances derived from the local ledger."""
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

from .ledger import LedgerState
from .zones import ALL_ZONES, Zone, parse_zone
from ..utils.console import print_warn
from ..utils.formatting import format_balance


@dataclass
class ZoneBalance:
    zone: Zone
    balance: int = 0          # qits, locked outputs included
    utxo_count: int = 0
    locked_balance: int = 0

    @property
    def available_balance(self) -> int:
        return self.balance - self.locked_balance

    def to_dict(self) -> Dict:
        return {
            "zone": self.zone.value,
            "balance": self.balance,
            "utxoCount": self.utxo_count,
            "lockedBalance": self.locked_balance,
            "balanceDisplay": format_balance(self.balance),
        }


@dataclass
class TotalBalance:
    """Sum over zones. Zones that failed contribute zero and appear in ``warnings``."""
    total: int = 0
    zones: Dict[Zone, ZoneBalance] = field(default_factory=dict)
    warnings: Dict[Zone, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.warnings

    def __int__(self) -> int:
        return self.total


class BalanceAggregator:
    def __init__(self, ledger: LedgerState, zones: Optional[Iterable[Zone]] = None):
        self.ledger = ledger
        self.zones = [parse_zone(z) for z in (zones if zones is not None else ALL_ZONES)]

    def balance(self, zone: Zone) -> ZoneBalance:
        """Sum denomination values of the zone's live outpoints.

        An out-of-range denomination index raises InvalidDenomination rather
        than counting as zero.
        """
        zone = parse_zone(zone)
        result = ZoneBalance(zone)
        with self.ledger.lock:
            for op in self.ledger.outpoints(zone):
                value = op.value
                result.balance += value
                result.utxo_count += 1
                if self.ledger.is_locked(op):
                    result.locked_balance += value
        return result

    def total_balance(self) -> TotalBalance:
        total = TotalBalance()
        for zone in self.zones:
            try:
                zb = self.balance(zone)
            except Exception as e:
                total.warnings[zone] = str(e)
                print_warn(f"⚠️  Balance for {zone} unavailable, counted as zero: {e}")
                continue
            total.zones[zone] = zb
            total.total += zb.balance
        return total
