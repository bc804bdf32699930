"""
Engine configuration (allocation split, leverage bounds, swap protection).

Replaces module-level constants with one validated object that is passed to
the orchestrator and hedge manager, so tests can run alternate
configurations deterministically.
"""
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

from hedgecraft.config.settings import load_risk_config
from hedgecraft.core.liquidity_math import to_wad


class EngineConfig(BaseModel):
    """Validated engine parameters."""

    model_config = {"frozen": True}

    # Allocation
    yield_percent: int = Field(default=79, gt=0, lt=100)
    min_deposit: int = Field(default=1000, ge=0)

    # Liquidity venue
    fee_tier: int = Field(default=3000, ge=0)

    # Hedge
    default_leverage: Decimal = Field(default=Decimal("1.25"))
    min_leverage: Decimal = Field(default=Decimal("1.0"))
    max_leverage: Decimal = Field(default=Decimal("3.0"))
    borrow_policy: Literal["fixed_fraction", "spot_priced"] = "fixed_fraction"
    borrow_fraction_bps: int = Field(default=5000, gt=0, le=10_000)
    target_ltv_bps: int = Field(default=5000, gt=0, lt=10_000)

    # Swap protection
    slippage_bps: int = Field(default=50, ge=0, lt=10_000)
    swap_deadline_seconds: int = Field(default=300, gt=0)

    @model_validator(mode="after")
    def _check_leverage_bounds(self) -> "EngineConfig":
        if self.min_leverage < Decimal("1"):
            raise ValueError("min_leverage must be at least 1.0x")
        if not (self.min_leverage <= self.default_leverage <= self.max_leverage):
            raise ValueError(
                f"default_leverage {self.default_leverage} outside "
                f"[{self.min_leverage}, {self.max_leverage}]"
            )
        return self

    @property
    def default_leverage_wad(self) -> int:
        return to_wad(self.default_leverage)

    @property
    def min_leverage_wad(self) -> int:
        return to_wad(self.min_leverage)

    @property
    def max_leverage_wad(self) -> int:
        return to_wad(self.max_leverage)

    def min_amount_out(self, quoted: int) -> int:
        """Slippage-protected minimum output for a quoted swap."""
        return quoted * (10_000 - self.slippage_bps) // 10_000

    @classmethod
    def from_risk_config(cls, path: Optional[str] = None) -> "EngineConfig":
        """Build from the sections of risk.yaml."""
        raw = load_risk_config(path)
        allocation = raw.get("allocation", {})
        liquidity = raw.get("liquidity", {})
        hedge = raw.get("hedge", {})
        swap = raw.get("swap", {})

        values = {
            "yield_percent": allocation.get("yield_percent"),
            "min_deposit": allocation.get("min_deposit"),
            "fee_tier": liquidity.get("fee_tier"),
            "default_leverage": hedge.get("default_leverage"),
            "min_leverage": hedge.get("min_leverage"),
            "max_leverage": hedge.get("max_leverage"),
            "borrow_policy": hedge.get("borrow_policy"),
            "borrow_fraction_bps": hedge.get("borrow_fraction_bps"),
            "target_ltv_bps": hedge.get("target_ltv_bps"),
            "slippage_bps": swap.get("slippage_bps"),
            "swap_deadline_seconds": swap.get("deadline_seconds"),
        }
        # Missing keys fall back to the model defaults
        return cls(**{k: v for k, v in values.items() if v is not None})


_engine_config: Optional[EngineConfig] = None


def get_engine_config() -> EngineConfig:
    """Get or create the engine config from the default risk.yaml."""
    global _engine_config
    if _engine_config is None:
        _engine_config = EngineConfig.from_risk_config()
    return _engine_config
