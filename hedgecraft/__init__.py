"""
HedgeCraft delta-neutral position engine.

Pairs a concentrated-liquidity yield leg with a leveraged short hedge leg
and manages both as one position.
"""

__version__ = "0.1.0"
