import os
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

QITS_PER_QI = 1000


def _format_number(value: float, decimals: int) -> str:
    fmt = f"{value:.{decimals}f}"
    if "." in fmt:
        fmt = fmt.rstrip("0").rstrip(".")
    return fmt


def format_qi(qits: int) -> str:
    """Convert qits to a plain Qi string, e.g. 1500 -> "1.5"."""
    sign = "-" if qits < 0 else ""
    whole, frac = divmod(abs(int(qits)), QITS_PER_QI)
    if frac == 0:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{frac:03d}".rstrip("0")


def parse_qi(qi: Union[str, int, float]) -> int:
    """Convert a human Qi amount ("1.5", 1.5) to qits."""
    try:
        value = Decimal(str(qi).strip())
    except InvalidOperation:
        raise ValueError(f"Invalid Qi amount: {qi!r}")
    qits = value * QITS_PER_QI
    if qits != qits.to_integral_value():
        raise ValueError(f"Qi amount has more than 3 decimals: {qi!r}")
    return int(qits)


def format_balance(qits: Optional[int], decimals: Optional[int] = None) -> str:
    """Format qits as a display string like "1.500 Qi"."""
    if qits is None:
        qits = 0
    if decimals is None:
        decimals = int(os.getenv("QIAGENT_AMOUNT_DECIMALS", "3"))
    if decimals < 0:
        decimals = 0
    qi = Decimal(int(qits)) / QITS_PER_QI
    return f"{qi:.{decimals}f} Qi"


def format_amount(qits: Optional[int], unit: Optional[str] = None) -> str:
    """Format qits with human-friendly large units (kQi, MQi)."""
    if qits is None:
        qits = 0
    base_unit = unit or os.getenv("QIAGENT_CURRENCY_UNIT", "Qi")
    value = int(qits) / QITS_PER_QI
    abs_value = abs(value)

    large_units = [
        (1e9, f"G{base_unit}"),
        (1e6, f"M{base_unit}"),
        (1e3, f"k{base_unit}"),
    ]
    for scale, suffix in large_units:
        if abs_value >= scale:
            return f"{_format_number(value / scale, 3)} {suffix}"
    return f"{_format_number(value, 3)} {base_unit}"
