"""
Qi denominations.

Qi outputs carry a denomination index instead of a raw amount, like cash
bills. Values are in qits; 1000 qits = 1 Qi.

    0 = 1 qit        6 = 1000 qits (1 Qi)     14 = 1,000,000,000 qits
"""
from typing import Iterable, List

from .errors import InvalidDenomination
from ..utils.formatting import QITS_PER_QI

DENOMINATIONS: tuple = (
    1,
    5,
    10,
    50,
    100,
    500,
    1000,
    5000,
    10000,
    50000,
    100000,
    1000000,
    10000000,
    100000000,
    1000000000,
)

MAX_DENOMINATION_INDEX = len(DENOMINATIONS) - 1


def validate_denomination(index) -> int:
    if isinstance(index, bool) or not isinstance(index, int):
        raise InvalidDenomination(index)
    if index < 0 or index > MAX_DENOMINATION_INDEX:
        raise InvalidDenomination(index)
    return index


def denomination_value(index: int) -> int:
    """Value in qits of a denomination index."""
    return DENOMINATIONS[validate_denomination(index)]


def denomination_qi(index: int) -> float:
    return denomination_value(index) / QITS_PER_QI


def sum_denominations(indices: Iterable[int]) -> int:
    return sum(denomination_value(i) for i in indices)


def denominate(amount: int) -> List[int]:
    """Split an amount of qits into denomination indices, largest first."""
    if amount < 0:
        raise ValueError("amount must not be negative")
    indices = []
    remaining = int(amount)
    for index in range(MAX_DENOMINATION_INDEX, -1, -1):
        value = DENOMINATIONS[index]
        while remaining >= value:
            indices.append(index)
            remaining -= value
    return indices
