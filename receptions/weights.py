"""Shared Decimal precision for every weight and percentage in the engine.

Weights are kept at 3 decimal places (grams), percentages at 2 and money
amounts at 4, all rounded half-up. Proportional splits (breakdown lines,
batch shares) use the same precision with a largest-remainder pass so parts
sum to the whole.
"""
from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP

Q3 = Decimal("0.001")
Q2 = Decimal("0.01")
Q4 = Decimal("0.0001")
ZERO = Decimal("0.000")
HUNDRED = Decimal("100")


def _dec(x):
    """Ensure Decimal conversion with string for precision."""
    if x is None:
        return None
    if isinstance(x, Decimal):
        return x
    try:
        return Decimal(str(x))
    except (InvalidOperation, ValueError):
        return Decimal("NaN")


def q_weight(x) -> Decimal:
    return _dec(x if x is not None else 0).quantize(Q3, rounding=ROUND_HALF_UP)


def q_percent(x) -> Decimal:
    return _dec(x if x is not None else 0).quantize(Q2, rounding=ROUND_HALF_UP)


def q_money(x) -> Decimal:
    return _dec(x if x is not None else 0).quantize(Q4, rounding=ROUND_HALF_UP)


def is_finite_non_negative(x) -> bool:
    value = _dec(x)
    return value is not None and value.is_finite() and value >= 0


def allocate_proportionally(total, weights):
    """Split ``total`` across ``weights`` at 3 dp so the parts sum exactly.

    Every part is first rounded down; the leftover thousandths go to the
    parts with the largest remainders (ties favour the heavier weight).
    """
    total = q_weight(total)
    weights = [_dec(w) for w in weights]
    denominator = sum(weights, Decimal("0"))
    if not denominator.is_finite() or denominator <= 0:
        raise ValueError("Cannot allocate over a non-positive total weight")
    raw = [total * w / denominator for w in weights]
    parts = [r.quantize(Q3, rounding=ROUND_DOWN) for r in raw]
    units = int(((total - sum(parts, Decimal("0"))) / Q3).to_integral_value(rounding=ROUND_HALF_UP))
    order = sorted(
        range(len(raw)),
        key=lambda i: (raw[i] - parts[i], weights[i]),
        reverse=True,
    )
    for i in order[:units]:
        parts[i] += Q3
    return parts
