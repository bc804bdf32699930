#!/usr/bin/env python3
"""
Paper simulation of a composite position.

Opens a position against in-memory venues, accrues some fees, moves the
price, prints the status report and closes the position.

Usage:
    python scripts/run_simulation.py
    python scripts/run_simulation.py --amount0 5000000 --amount1 5000000 --move-bps 300
    python scripts/run_simulation.py --leverage 1.25 --fees 1500
"""

import argparse
import asyncio
import json
import os
import sys
from decimal import Decimal

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from hedgecraft.config.engine import EngineConfig
from hedgecraft.core.hedge_manager import HedgeManager
from hedgecraft.core.liquidity_math import WAD, from_wad, to_wad
from hedgecraft.core.position_manager import PositionManager
from hedgecraft.errors import HedgeCraftError
from hedgecraft.utils.logger import configure_logging
from hedgecraft.venues.paper import build_paper_venues

BASE = "USDC"
QUOTE = "WMATIC"
OWNER = "0xowner"
SEED = 10 ** 15


async def simulate(args: argparse.Namespace) -> dict:
    config = EngineConfig.from_risk_config(args.config) if args.config else EngineConfig()
    if args.leverage:
        config = EngineConfig(**{**config.model_dump(), "default_leverage": Decimal(args.leverage)})

    venues = build_paper_venues(prices={BASE: WAD, QUOTE: WAD})
    for account in (venues.lending.address, venues.swap.address):
        venues.ledger.mint(account, BASE, SEED)
        venues.ledger.mint(account, QUOTE, SEED)
    # Pool-side reserves so the liquidity venue can pay out after a price move
    venues.ledger.mint(venues.liquidity.address, BASE, args.amount0)
    venues.ledger.mint(venues.liquidity.address, QUOTE, args.amount1)

    hedge_manager = HedgeManager(
        venues.ledger, venues.lending, venues.swap, venues.settlement, config=config,
    )
    manager = PositionManager(
        venues.ledger, venues.liquidity, venues.swap, hedge_manager, venues.settlement, config=config,
    )

    venues.ledger.mint(OWNER, BASE, args.amount0)
    venues.ledger.mint(OWNER, QUOTE, args.amount1)
    await venues.ledger.approve(OWNER, manager.address, BASE, args.amount0)
    await venues.ledger.approve(OWNER, manager.address, QUOTE, args.amount1)

    position_id = await manager.open_position(
        OWNER, BASE, QUOTE, args.amount0, args.amount1,
        to_wad(args.range_lower), to_wad(args.range_upper),
    )
    position = manager.get_position(position_id)

    if args.fees:
        venues.liquidity.accrue_fees(position.yield_leg.leg_id, args.fees, args.fees)

    moved_price = WAD * (10_000 + args.move_bps) // 10_000
    venues.market.set_price(BASE, moved_price)

    status = await manager.get_status(position_id)
    result = await manager.close_position(position_id, OWNER)

    return {
        "position": position.to_summary(),
        "status": {
            "liquidity": status.liquidity,
            "owed0": status.owed0,
            "owed1": status.owed1,
            "current_price": str(from_wad(status.current_price)),
            "il_estimate_pct": str(from_wad(status.impermanent_loss_estimate)),
        },
        "close": {
            "amount0_returned": result.amount0_returned,
            "amount1_returned": result.amount1_returned,
            "fees0": result.fees0,
            "fees1": result.fees1,
        },
        "owner_balances": {
            BASE: venues.ledger.balance(OWNER, BASE),
            QUOTE: venues.ledger.balance(OWNER, QUOTE),
        },
        "events": [e.type for e in manager.event_bus.history()],
    }


def main():
    parser = argparse.ArgumentParser(
        description="Run a paper simulation of a composite position"
    )
    parser.add_argument("--amount0", type=int, default=1_000_000, help="Base asset deposit")
    parser.add_argument("--amount1", type=int, default=1_000_000, help="Quote asset deposit")
    parser.add_argument("--range-lower", default="0.8", help="Lower price bound (default: 0.8)")
    parser.add_argument("--range-upper", default="1.25", help="Upper price bound (default: 1.25)")
    parser.add_argument(
        "--leverage",
        default="1.25",
        help="Hedge leverage (default: 1.25; above 4/3 needs a spot_priced borrow policy)",
    )
    parser.add_argument("--fees", type=int, default=0, help="Fees to accrue on each token")
    parser.add_argument("--move-bps", type=int, default=0, help="Base price move before close, in bps")
    parser.add_argument("--config", help="Path to a risk.yaml (default: model defaults)")
    args = parser.parse_args()

    configure_logging()

    try:
        report = asyncio.run(simulate(args))
    except HedgeCraftError as e:
        print(json.dumps(e.to_dict(), indent=2, default=str))
        sys.exit(1)

    print(json.dumps(report, indent=2, default=str))


if __name__ == "__main__":
    main()
