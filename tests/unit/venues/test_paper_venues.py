"""Tests for the in-memory paper venues."""
import pytest

from hedgecraft.core.liquidity_math import MAX_UINT256, WAD
from hedgecraft.errors import (
    DeadlineExceededError,
    InsufficientBalanceError,
    InsufficientLiquidityError,
    InvalidInputError,
    LoanRejectedError,
    PositionNotFoundError,
    SlippageExceededError,
    VenueUnavailableError,
)
from hedgecraft.venues.paper import (
    PaperLedger,
    PaperLendingVenue,
    PaperLiquidityVenue,
    PaperMarket,
    PaperSettlement,
    PaperSwapVenue,
)

ALICE = "0xalice"
BOB = "0xbob"
USDC = "USDC"
WETH = "WETH"


class StubReceiver:
    """Loan receiver that optionally approves the repayment."""

    def __init__(self, ledger, address="0xreceiver", accept=True, approve_repayment=True):
        self.ledger = ledger
        self.address = address
        self.accept = accept
        self.approve_repayment = approve_repayment
        self.calls = []

    async def on_loan_received(self, caller, request_id, asset, amount, fee, initiator, context=None):
        self.calls.append((caller, request_id, asset, amount, fee))
        if self.approve_repayment:
            await self.ledger.approve(self.address, caller, asset, amount + fee)
        return self.accept


@pytest.fixture
def ledger():
    return PaperLedger()


@pytest.fixture
def market():
    return PaperMarket({USDC: WAD, WETH: 2000 * WAD})


class TestPaperLedger:

    @pytest.mark.asyncio
    async def test_transfer(self, ledger):
        ledger.mint(ALICE, USDC, 100)

        await ledger.transfer(ALICE, BOB, USDC, 40)

        assert await ledger.balance_of(ALICE, USDC) == 60
        assert await ledger.balance_of(BOB, USDC) == 40

    @pytest.mark.asyncio
    async def test_transfer_over_balance(self, ledger):
        ledger.mint(ALICE, USDC, 10)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await ledger.transfer(ALICE, BOB, USDC, 11)

        assert exc_info.value.available == 10
        assert ledger.balance(ALICE, USDC) == 10

    @pytest.mark.asyncio
    async def test_transfer_from_spends_allowance(self, ledger):
        ledger.mint(ALICE, USDC, 100)
        await ledger.approve(ALICE, BOB, USDC, 50)

        await ledger.transfer_from(BOB, ALICE, BOB, USDC, 30)

        assert await ledger.allowance(ALICE, BOB, USDC) == 20
        with pytest.raises(InsufficientBalanceError):
            await ledger.transfer_from(BOB, ALICE, BOB, USDC, 21)

    @pytest.mark.asyncio
    async def test_unlimited_allowance_not_decremented(self, ledger):
        ledger.mint(ALICE, USDC, 100)
        ledger.grant(ALICE, BOB, USDC, MAX_UINT256)

        await ledger.transfer_from(BOB, ALICE, BOB, USDC, 100)

        assert await ledger.allowance(ALICE, BOB, USDC) == MAX_UINT256

    def test_negative_amounts_rejected(self, ledger):
        with pytest.raises(InvalidInputError):
            ledger.mint(ALICE, USDC, -1)
        with pytest.raises(InvalidInputError):
            ledger.grant(ALICE, BOB, USDC, -1)

    def test_snapshot_restore(self, ledger):
        ledger.mint(ALICE, USDC, 5)
        state = ledger.snapshot()
        ledger.mint(ALICE, USDC, 5)
        ledger.grant(ALICE, BOB, USDC, 1)

        ledger.restore(state)

        assert ledger.balance(ALICE, USDC) == 5
        assert ledger.snapshot()["allowances"].get((ALICE, BOB, USDC), 0) == 0


class TestPaperMarket:

    def test_pair_price(self, market):
        assert market.price(WETH, USDC) == 2000 * WAD
        assert market.price(USDC, WETH) == WAD // 2000

    def test_convert(self, market):
        assert market.convert(WETH, USDC, 3) == 6000

    def test_missing_price(self, market):
        with pytest.raises(VenueUnavailableError):
            market.price_of("DOGE")

    def test_non_positive_price(self, market):
        with pytest.raises(InvalidInputError):
            market.set_price(USDC, 0)


class TestPaperSwapVenue:

    @pytest.fixture
    def router(self, ledger, market):
        router = PaperSwapVenue(ledger, market, fee_bps=30, clock=lambda: 1000.0)
        ledger.mint(router.address, USDC, 10 ** 9)
        ledger.mint(ALICE, WETH, 10)
        ledger.grant(ALICE, router.address, WETH, 10)
        return router

    @pytest.mark.asyncio
    async def test_quote_includes_fee(self, router):
        assert await router.quote(WETH, USDC, 1) == 1994

    @pytest.mark.asyncio
    async def test_swap(self, ledger, router):
        out = await router.swap(ALICE, WETH, USDC, 1, min_amount_out=1990, deadline=1000.0)

        assert out == 1994
        assert ledger.balance(ALICE, USDC) == 1994
        assert ledger.balance(ALICE, WETH) == 9

    @pytest.mark.asyncio
    async def test_swap_to_recipient(self, ledger, router):
        await router.swap(ALICE, WETH, USDC, 1, min_amount_out=0, deadline=2000.0, recipient=BOB)

        assert ledger.balance(BOB, USDC) == 1994
        assert ledger.balance(ALICE, USDC) == 0

    @pytest.mark.asyncio
    async def test_slippage(self, ledger, router):
        with pytest.raises(SlippageExceededError):
            await router.swap(ALICE, WETH, USDC, 1, min_amount_out=1995, deadline=1000.0)

        assert ledger.balance(ALICE, WETH) == 10

    @pytest.mark.asyncio
    async def test_deadline(self, ledger, router):
        with pytest.raises(DeadlineExceededError):
            await router.swap(ALICE, WETH, USDC, 1, min_amount_out=0, deadline=999.0)

        assert ledger.balance(ALICE, WETH) == 10

    @pytest.mark.asyncio
    async def test_router_inventory(self, ledger, market):
        router = PaperSwapVenue(ledger, market, clock=lambda: 0.0)
        ledger.mint(ALICE, WETH, 1)
        ledger.grant(ALICE, router.address, WETH, 1)

        with pytest.raises(InsufficientLiquidityError):
            await router.swap(ALICE, WETH, USDC, 1, min_amount_out=0, deadline=1.0)

    @pytest.mark.asyncio
    async def test_spot_price(self, router):
        assert await router.spot_price(WETH, USDC) == 2000 * WAD


class TestPaperLendingVenue:

    @pytest.fixture
    def pool(self, ledger, market):
        pool = PaperLendingVenue(ledger, market)
        ledger.mint(pool.address, USDC, 10 ** 9)
        ledger.mint(pool.address, WETH, 10 ** 6)
        return pool

    async def _supply(self, ledger, pool, amount=4000):
        ledger.mint(ALICE, USDC, amount)
        await ledger.approve(ALICE, pool.address, USDC, amount)
        await pool.supply_collateral(ALICE, USDC, amount)

    def test_loan_fee_rounds_up(self, pool):
        assert pool.loan_fee(250) == 1
        assert pool.loan_fee(20_000) == 10
        assert pool.loan_fee(20_001) == 11

    @pytest.mark.asyncio
    async def test_loan_settles(self, ledger, pool):
        receiver = StubReceiver(ledger)
        ledger.mint(receiver.address, USDC, 1)

        fee = await pool.request_loan(receiver.address, receiver, USDC, 1000, "req-1", {})

        assert fee == 1
        assert receiver.calls == [(pool.address, "req-1", USDC, 1000, 1)]
        assert ledger.balance(receiver.address, USDC) == 0
        assert ledger.balance(pool.address, USDC) == 10 ** 9 + 1

    @pytest.mark.asyncio
    async def test_loan_declined(self, ledger, pool):
        receiver = StubReceiver(ledger, accept=False)

        with pytest.raises(LoanRejectedError):
            await pool.request_loan(receiver.address, receiver, USDC, 1000, "req-2")

    @pytest.mark.asyncio
    async def test_loan_not_repaid(self, ledger, pool):
        receiver = StubReceiver(ledger, approve_repayment=False)

        with pytest.raises(LoanRejectedError):
            await pool.request_loan(receiver.address, receiver, USDC, 1000, "req-3")

    @pytest.mark.asyncio
    async def test_loan_over_inventory(self, ledger, pool):
        receiver = StubReceiver(ledger)

        with pytest.raises(LoanRejectedError):
            await pool.request_loan(receiver.address, receiver, WETH, 10 ** 7, "req-4")
        assert receiver.calls == []

    @pytest.mark.asyncio
    async def test_borrow_within_ltv(self, ledger, pool):
        await self._supply(ledger, pool)

        await pool.borrow(ALICE, WETH, 1)
        status = await pool.account_status(ALICE)

        assert ledger.balance(ALICE, WETH) == 1
        assert status.collateral == 4000
        assert status.debt == 2000
        assert status.available_to_borrow == 1200
        # 4000 × 85% / 2000
        assert status.health_factor == 17 * WAD // 10

    @pytest.mark.asyncio
    async def test_borrow_over_ltv(self, ledger, pool):
        await self._supply(ledger, pool)

        with pytest.raises(LoanRejectedError):
            await pool.borrow(ALICE, WETH, 2)
        assert await pool.reserve_balances(ALICE, USDC, WETH) == (4000, 0)

    @pytest.mark.asyncio
    async def test_withdraw_keeps_account_healthy(self, ledger, pool):
        await self._supply(ledger, pool)
        await pool.borrow(ALICE, WETH, 1)

        with pytest.raises(LoanRejectedError):
            await pool.withdraw(ALICE, USDC, 2000, ALICE)
        assert await pool.reserve_balances(ALICE, USDC, WETH) == (4000, 1)

        assert await pool.withdraw(ALICE, USDC, 1000, BOB) == 1000
        assert ledger.balance(BOB, USDC) == 1000

    @pytest.mark.asyncio
    async def test_repay_capped_at_debt(self, ledger, pool):
        await self._supply(ledger, pool)
        await pool.borrow(ALICE, WETH, 1)
        ledger.mint(ALICE, WETH, 5)
        await ledger.approve(ALICE, pool.address, WETH, 6)

        assert await pool.repay(ALICE, WETH, 6) == 1
        assert ledger.balance(ALICE, WETH) == 5
        assert (await pool.account_status(ALICE)).health_factor is None


class TestPaperLiquidityVenue:

    @pytest.fixture
    def venue(self, ledger):
        market = PaperMarket({USDC: WAD, WETH: WAD})
        venue = PaperLiquidityVenue(ledger, market)
        ledger.mint(ALICE, USDC, 10_000)
        ledger.mint(ALICE, WETH, 10_000)
        ledger.grant(ALICE, venue.address, USDC, 10_000)
        ledger.grant(ALICE, venue.address, WETH, 10_000)
        return venue

    @pytest.mark.asyncio
    async def test_open_and_decrease(self, ledger, venue):
        mint = await venue.open(ALICE, ALICE, USDC, WETH, 5000, 5000, 8 * WAD // 10, 125 * WAD // 100)

        assert mint.liquidity > 0
        assert mint.used0 <= 5000 and mint.used1 <= 5000
        assert ledger.balance(venue.address, USDC) == mint.used0

        amount0, amount1 = await venue.decrease(mint.leg_id, mint.liquidity, BOB)

        assert amount0 <= mint.used0 and amount1 <= mint.used1
        assert ledger.balance(BOB, USDC) == amount0
        assert (await venue.details(mint.leg_id)).liquidity == 0

    @pytest.mark.asyncio
    async def test_min_liquidity(self, ledger, venue):
        with pytest.raises(SlippageExceededError):
            await venue.open(ALICE, ALICE, USDC, WETH, 5000, 5000, 8 * WAD // 10, 125 * WAD // 100,
                             min_liquidity=10 ** 12)
        assert ledger.balance(ALICE, USDC) == 10_000

    @pytest.mark.asyncio
    async def test_fees(self, ledger, venue):
        mint = await venue.open(ALICE, ALICE, USDC, WETH, 5000, 5000, 8 * WAD // 10, 125 * WAD // 100)
        venue.accrue_fees(mint.leg_id, 3, 4)

        assert await venue.collect_fees(mint.leg_id, BOB) == (3, 4)
        assert await venue.collect_fees(mint.leg_id, BOB) == (0, 0)

    @pytest.mark.asyncio
    async def test_decrease_more_than_held(self, venue):
        mint = await venue.open(ALICE, ALICE, USDC, WETH, 5000, 5000, 8 * WAD // 10, 125 * WAD // 100)

        with pytest.raises(InvalidInputError):
            await venue.decrease(mint.leg_id, mint.liquidity + 1, ALICE)

    @pytest.mark.asyncio
    async def test_unknown_leg(self, venue):
        with pytest.raises(PositionNotFoundError):
            await venue.details("paper-leg-404")

    @pytest.mark.asyncio
    async def test_fee_tier_recorded(self, venue):
        mint = await venue.open(ALICE, ALICE, USDC, WETH, 5000, 5000, 8 * WAD // 10, 125 * WAD // 100,
                                fee_tier=500)

        assert (await venue.details(mint.leg_id)).fee_tier == 500

    @pytest.mark.asyncio
    async def test_unknown_fee_tier(self, ledger, venue):
        with pytest.raises(InvalidInputError):
            await venue.open(ALICE, ALICE, USDC, WETH, 5000, 5000, 8 * WAD // 10, 125 * WAD // 100,
                             fee_tier=2500)
        assert ledger.balance(ALICE, USDC) == 10_000


class TestPaperSettlement:

    @pytest.mark.asyncio
    async def test_rollback_on_error(self, ledger):
        settlement = PaperSettlement([ledger])
        ledger.mint(ALICE, USDC, 10)

        with pytest.raises(RuntimeError):
            async with settlement.atomic():
                await ledger.transfer(ALICE, BOB, USDC, 10)
                raise RuntimeError("boom")

        assert ledger.balance(ALICE, USDC) == 10
        assert ledger.balance(BOB, USDC) == 0
        assert settlement.rollbacks == 1

    @pytest.mark.asyncio
    async def test_commit_on_success(self, ledger):
        settlement = PaperSettlement([ledger])
        ledger.mint(ALICE, USDC, 10)

        async with settlement.atomic():
            await ledger.transfer(ALICE, BOB, USDC, 4)

        assert ledger.balance(BOB, USDC) == 4
        assert settlement.rollbacks == 0

    @pytest.mark.asyncio
    async def test_handled_inner_failure_keeps_outer_work(self, ledger):
        settlement = PaperSettlement([ledger])
        ledger.mint(ALICE, USDC, 10)

        async with settlement.atomic():
            await ledger.transfer(ALICE, BOB, USDC, 4)
            try:
                async with settlement.atomic():
                    await ledger.transfer(ALICE, BOB, USDC, 6)
                    raise RuntimeError("inner")
            except RuntimeError:
                pass

        assert ledger.balance(BOB, USDC) == 4
        assert ledger.balance(ALICE, USDC) == 6

    @pytest.mark.asyncio
    async def test_after_commit_waits_for_outermost_block(self, ledger):
        settlement = PaperSettlement([ledger])
        calls = []

        async def record_async():
            calls.append("async")

        async with settlement.atomic():
            async with settlement.atomic():
                settlement.after_commit(lambda: calls.append("sync"))
                settlement.after_commit(record_async)
            assert calls == []
            assert settlement.depth == 1

        assert calls == ["sync", "async"]
        assert settlement.depth == 0

    @pytest.mark.asyncio
    async def test_after_commit_dropped_on_rollback(self, ledger):
        settlement = PaperSettlement([ledger])
        calls = []

        async with settlement.atomic():
            settlement.after_commit(lambda: calls.append("outer"))
            try:
                async with settlement.atomic():
                    settlement.after_commit(lambda: calls.append("inner"))
                    raise RuntimeError("inner")
            except RuntimeError:
                pass

        assert calls == ["outer"]

        with pytest.raises(RuntimeError):
            async with settlement.atomic():
                settlement.after_commit(lambda: calls.append("lost"))
                raise RuntimeError("outer")

        assert calls == ["outer"]
        assert settlement.depth == 0

    def test_after_commit_outside_block(self, ledger):
        settlement = PaperSettlement([ledger])

        with pytest.raises(RuntimeError):
            settlement.after_commit(lambda: None)
