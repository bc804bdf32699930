"""
Allocation splitter.

Splits a deposit between the yield leg and the hedge leg. Integer division
leaves a remainder; it always goes to the hedge leg so the two shares add
back to the deposit exactly.

Example (79% to yield):
    split_allocation(1000, 79) -> yield 790, hedge 210
    split_allocation(10, 79)   -> yield 7,   hedge 3
"""
from dataclasses import dataclass

from hedgecraft.errors import InvalidInputError


@dataclass(frozen=True)
class AllocationResult:
    """One deposit amount split across the two legs."""

    yield_share: int
    hedge_share: int

    @property
    def total(self) -> int:
        return self.yield_share + self.hedge_share


def split_allocation(total_value: int, yield_percent: int) -> AllocationResult:
    """
    Split `total_value` so that yield_share = floor(total * pct / 100).

    Raises:
        InvalidInputError: yield_percent outside (0, 100) or negative total
    """
    if not 0 < yield_percent < 100:
        raise InvalidInputError(
            f"yield_percent must be between 0 and 100 exclusive, got {yield_percent}",
            field="yield_percent",
        )
    if total_value < 0:
        raise InvalidInputError(
            f"total_value cannot be negative, got {total_value}",
            field="total_value",
        )

    yield_share = total_value * yield_percent // 100
    return AllocationResult(
        yield_share=yield_share,
        hedge_share=total_value - yield_share,
    )
