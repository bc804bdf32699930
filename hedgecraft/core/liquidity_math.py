"""
Concentrated-Liquidity Math.

Stateless fixed-point helpers used to size the yield leg:
- liquidity from token amounts (and back) for a bounded price range
- impermanent-loss estimate from a price ratio

Fixed-point scale:
    All prices are WAD integers (1e18 == 1.0), quoted as token1 per token0.
    Token amounts and liquidity are plain integers in base units.
    Square-root prices are also WAD-scaled: sqrt_wad(4 * WAD) == 2 * WAD.

Python integers do not overflow, so every multiplication is carried out at
full width before dividing. A result that would not fit in an unsigned
256-bit word (what a venue can accept) raises ArithmeticOverflowError
instead of being clamped.

Region split (same as Uniswap V3 LiquidityAmounts):
    price <= lower         -> position is all token0
    lower < price < upper  -> both tokens, liquidity = min of the two sides
    price >= upper         -> position is all token1
"""
from decimal import Decimal, ROUND_DOWN, localcontext
from math import isqrt
from typing import Tuple, Union

from hedgecraft.errors import (
    ArithmeticOverflowError,
    DivisionByZeroError,
    InvalidInputError,
    InvalidRangeError,
)

WAD = 10 ** 18
MAX_UINT256 = 2 ** 256 - 1

Number = Union[int, str, Decimal]


def _checked(value: int, operation: str) -> int:
    if value < 0 or value > MAX_UINT256:
        raise ArithmeticOverflowError(
            f"{operation} result {value} outside uint256",
            operation=operation,
        )
    return value


def mul_div(a: int, b: int, denominator: int, round_up: bool = False) -> int:
    """Compute a * b / denominator at full width, rounding down unless asked."""
    if denominator == 0:
        raise DivisionByZeroError("mul_div with zero denominator", operation="mul_div")
    if round_up:
        result = -((-a * b) // denominator)
    else:
        result = (a * b) // denominator
    return _checked(result, "mul_div")


def wad_mul(a: int, b: int) -> int:
    return mul_div(a, b, WAD)


def wad_div(a: int, b: int) -> int:
    return mul_div(a, WAD, b)


def sqrt_wad(x: int) -> int:
    """Square root of a WAD value, returned as a WAD value (rounded down)."""
    if x < 0:
        raise InvalidInputError(f"Cannot take square root of {x}", field="price")
    return isqrt(x * WAD)


def to_wad(value: Number) -> int:
    """Convert a decimal quantity (e.g. Decimal("1.25")) to WAD, truncating."""
    scaled = (Decimal(str(value)) * WAD).to_integral_value(rounding=ROUND_DOWN)
    return int(scaled)


def from_wad(value: int) -> Decimal:
    """Convert a WAD integer back to a Decimal for display."""
    with localcontext() as ctx:
        ctx.prec = 60
        return Decimal(value) / Decimal(WAD)


# ---------------------------------------------------------------------------
# Liquidity <-> amounts
# ---------------------------------------------------------------------------

def _validate_range(price: int, price_lower: int, price_upper: int) -> None:
    if price_lower >= price_upper:
        raise InvalidRangeError(
            f"Range lower {price_lower} must be below upper {price_upper}",
            field="price_lower",
        )
    if price_lower <= 0:
        raise InvalidInputError("Range bounds must be positive", field="price_lower")
    if price <= 0:
        raise InvalidInputError("Price must be positive", field="price")


def _liquidity_for_amount0(sqrt_a: int, sqrt_b: int, amount0: int) -> int:
    # L = x * sqrt(a) * sqrt(b) / (sqrt(b) - sqrt(a))
    return mul_div(amount0, sqrt_a * sqrt_b, (sqrt_b - sqrt_a) * WAD)


def _liquidity_for_amount1(sqrt_a: int, sqrt_b: int, amount1: int) -> int:
    # L = y / (sqrt(b) - sqrt(a))
    return mul_div(amount1, WAD, sqrt_b - sqrt_a)


def _amount0_for_liquidity(sqrt_a: int, sqrt_b: int, liquidity: int, round_up: bool) -> int:
    # x = L * (sqrt(b) - sqrt(a)) / (sqrt(a) * sqrt(b))
    return mul_div(liquidity * (sqrt_b - sqrt_a), WAD, sqrt_a * sqrt_b, round_up)


def _amount1_for_liquidity(sqrt_a: int, sqrt_b: int, liquidity: int, round_up: bool) -> int:
    # y = L * (sqrt(b) - sqrt(a))
    return mul_div(liquidity, sqrt_b - sqrt_a, WAD, round_up)


def liquidity_from_amounts(
    amount0: int,
    amount1: int,
    price: int,
    price_lower: int,
    price_upper: int,
) -> int:
    """
    Largest liquidity both amounts can support in [price_lower, price_upper].

    Inside the range the result is the lesser of the two single-sided
    liquidities, so the venue is never asked for more than either side of
    the deposit can fund.

    Raises:
        InvalidRangeError: price_lower >= price_upper
        InvalidInputError: both amounts zero, negative amount, non-positive price
    """
    _validate_range(price, price_lower, price_upper)
    if amount0 < 0 or amount1 < 0:
        raise InvalidInputError("Amounts cannot be negative", field="amount")
    if amount0 == 0 and amount1 == 0:
        raise InvalidInputError("At least one amount must be non-zero", field="amount")

    sqrt_price = sqrt_wad(price)
    sqrt_a = sqrt_wad(price_lower)
    sqrt_b = sqrt_wad(price_upper)

    if sqrt_price <= sqrt_a:
        return _liquidity_for_amount0(sqrt_a, sqrt_b, amount0)
    if sqrt_price < sqrt_b:
        liquidity0 = _liquidity_for_amount0(sqrt_price, sqrt_b, amount0)
        liquidity1 = _liquidity_for_amount1(sqrt_a, sqrt_price, amount1)
        return min(liquidity0, liquidity1)
    return _liquidity_for_amount1(sqrt_a, sqrt_b, amount1)


def amounts_from_liquidity(
    liquidity: int,
    price: int,
    price_lower: int,
    price_upper: int,
    round_up: bool = False,
) -> Tuple[int, int]:
    """
    Token amounts represented by `liquidity` at `price`.

    Use round_up=True for amounts a caller must supply to a venue; the
    default rounds down, which is fine for view-only estimates.
    """
    _validate_range(price, price_lower, price_upper)
    if liquidity < 0:
        raise InvalidInputError("Liquidity cannot be negative", field="liquidity")

    sqrt_price = sqrt_wad(price)
    sqrt_a = sqrt_wad(price_lower)
    sqrt_b = sqrt_wad(price_upper)

    if sqrt_price <= sqrt_a:
        return _amount0_for_liquidity(sqrt_a, sqrt_b, liquidity, round_up), 0
    if sqrt_price < sqrt_b:
        return (
            _amount0_for_liquidity(sqrt_price, sqrt_b, liquidity, round_up),
            _amount1_for_liquidity(sqrt_a, sqrt_price, liquidity, round_up),
        )
    return 0, _amount1_for_liquidity(sqrt_a, sqrt_b, liquidity, round_up)


# ---------------------------------------------------------------------------
# Impermanent loss
# ---------------------------------------------------------------------------

def estimate_impermanent_loss(initial_price: int, current_price: int) -> int:
    """
    Approximate impermanent loss as a WAD-scaled percentage (WAD == 1%).

    Uses the second-order expansion IL ≈ (r - 1)² / 8 with
    r = current_price / initial_price.

    This is a display/decision-support estimate, not an accounting figure:
    it tracks the exact 1 - 2·√r/(1+r) closely for small moves but
    overstates it once the price moves by more than a few tens of percent
    (at r = 2 the estimate is 12.5% against an exact 5.72%). Use
    exact_impermanent_loss when the true figure matters.

    Raises:
        DivisionByZeroError: initial_price == 0
    """
    if initial_price == 0:
        raise DivisionByZeroError("Initial price is zero", operation="estimate_impermanent_loss")
    if initial_price < 0 or current_price < 0:
        raise InvalidInputError("Prices cannot be negative", field="price")

    deviation = mul_div(abs(current_price - initial_price), WAD, initial_price)
    return mul_div(deviation * deviation, 100, 8 * WAD)


def exact_impermanent_loss(initial_price: int, current_price: int) -> Decimal:
    """Exact impermanent loss 1 - 2·√r/(1+r), as a positive percentage."""
    if initial_price == 0:
        raise DivisionByZeroError("Initial price is zero", operation="exact_impermanent_loss")
    if initial_price < 0 or current_price < 0:
        raise InvalidInputError("Prices cannot be negative", field="price")

    with localcontext() as ctx:
        ctx.prec = 40
        ratio = Decimal(current_price) / Decimal(initial_price)
        loss = 1 - (2 * ratio.sqrt()) / (1 + ratio)
        return loss * 100
