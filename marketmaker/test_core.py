"""
Engine-wide guarantees: collateral conservation, all-or-nothing
operations, single-writer execution, event publication, and market
configuration checks.
"""

import random

import pytest

from marketmaker.errors import (
    InsufficientAllowance, InsufficientBalance, InvalidConditions,
    InvalidFee, MarketMakerError, MarketNotFound, ReentrantCall,
    WrongMarketType,
)
from marketmaker.events import (
    FPMMBuy, LMSRFunded, MarketCreated, OutcomeTokenTrade,
)
from marketmaker.ledger import LEDGER_ACCOUNT
from marketmaker.market_engine import create_engine
from marketmaker.models import FEE_ONE, next_id, reset_counters

E18 = 10 ** 18


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def fresh_system(n_traders=3, trader_balance=10 * E18, funding=E18):
    """
    One binary condition carrying an LMSR market and an FPMM pool, and
    traders holding collateral, full sets and every needed approval.
    Returns everything needed for testing, plus the total deposited.
    """
    reset_counters()
    me = create_engine()
    cid = me.positions.prepare_condition("oracle", "question-1", 2)

    me.collateral.deposit("owner", 2 * funding)
    lmsr_market = me.create_lmsr_market("owner", [cid], 10 ** 16,
                                        funding=funding)
    fpmm_market = me.create_fpmm_market("owner", [cid], 3 * 10 ** 15,
                                        initial_funds=funding)

    traders = []
    for i in range(n_traders):
        name = f"trader{i}"
        me.collateral.deposit(name, 2 * trader_balance)
        me.collateral.approve(name, LEDGER_ACCOUNT, trader_balance)
        me.positions.split_position(name, [cid], trader_balance)
        for market in (lmsr_market, fpmm_market):
            me.collateral.approve(name, market.account, trader_balance)
            me.positions.set_approval_for_all(name, market.account, True)
        traders.append(name)

    total = 2 * funding + 2 * trader_balance * n_traders
    return me, lmsr_market, fpmm_market, traders, total


def random_trades(me, lmsr_market, fpmm_market, traders, n=60, seed=42):
    """Execute n random trades on both markets. Returns the count executed."""
    rng = random.Random(seed)
    executed = 0
    for _ in range(n):
        trader = rng.choice(traders)
        outcome = rng.randrange(2)
        kind = rng.choice(["lmsr", "buy", "sell"])
        try:
            if kind == "lmsr":
                amounts = [rng.randint(-E18 // 2, E18 // 2) for _ in range(2)]
                me.trade(lmsr_market.id, trader, amounts)
            elif kind == "buy":
                me.buy(fpmm_market.id, trader, rng.randint(1, E18), outcome, 0)
            else:
                me.sell(fpmm_market.id, trader, rng.randint(1, E18 // 4),
                        outcome, 10 * E18)
            executed += 1
        except MarketMakerError:
            pass  # allowance or liquidity exhausted
    return executed


def position_supply(me, position_id):
    return sum(held.get(position_id, 0) for held in me.positions.balances.values())


# ---------------------------------------------------------------------------
# Conservation
# ---------------------------------------------------------------------------

class TestConservation:

    def test_collateral_conserved_through_trading(self):
        me, lmsr_market, fpmm_market, traders, total = fresh_system()
        assert random_trades(me, lmsr_market, fpmm_market, traders) > 0
        assert me.collateral.total_supply == total
        assert sum(me.collateral.balances.values()) == total

    def test_positions_backed_by_locked_collateral(self):
        me, lmsr_market, fpmm_market, traders, _ = fresh_system()
        random_trades(me, lmsr_market, fpmm_market, traders)
        locked = me.collateral.balance_of(LEDGER_ACCOUNT)
        for pid in lmsr_market.position_ids:
            assert position_supply(me, pid) == locked

    def test_pools_never_go_negative(self):
        me, lmsr_market, fpmm_market, traders, _ = fresh_system()
        random_trades(me, lmsr_market, fpmm_market, traders, n=100, seed=7)
        assert all(b >= 0 for b in me.pool_balances(lmsr_market.id))
        assert all(b > 0 for b in me.pool_balances(fpmm_market.id))

    def test_conserved_through_close(self):
        me, lmsr_market, fpmm_market, traders, total = fresh_system()
        random_trades(me, lmsr_market, fpmm_market, traders)
        me.close(lmsr_market.id, "owner")
        me.withdraw_lmsr_fees(lmsr_market.id, "owner")
        assert me.pool_balances(lmsr_market.id) == [0, 0]
        assert me.collateral.balance_of(lmsr_market.account) == 0
        assert sum(me.collateral.balances.values()) == total


# ---------------------------------------------------------------------------
# All-or-nothing operations
# ---------------------------------------------------------------------------

class TestRollback:

    def test_rejected_trade_leaves_no_trace(self):
        me, lmsr_market, _, traders, _ = fresh_system()
        trader = traders[0]
        me.collateral.approve(trader, lmsr_market.account, 1)

        collateral_before = me.collateral.snapshot()
        positions_before = me.positions.snapshot()
        q_before = list(lmsr_market.net_outcome_tokens_sold)
        n_events = len(me.events.history)

        with pytest.raises(InsufficientAllowance):
            me.trade(lmsr_market.id, trader, [E18, 0])

        assert me.collateral.snapshot() == collateral_before
        assert me.positions.snapshot() == positions_before
        assert lmsr_market.net_outcome_tokens_sold == q_before
        assert len(me.events.history) == n_events

    def test_rejected_sell_restores_fee_accounting(self):
        me, _, fpmm_market, traders, _ = fresh_system()
        me.buy(fpmm_market.id, traders[0], E18 // 10, 0, 0)
        weight = fpmm_market.fee_pool_weight
        pool = me.pool_balances(fpmm_market.id)

        me.positions.set_approval_for_all("broke", fpmm_market.account, True)
        with pytest.raises(InsufficientBalance):
            me.sell(fpmm_market.id, "broke", E18 // 10, 0, 10 * E18)

        assert fpmm_market.fee_pool_weight == weight
        assert me.pool_balances(fpmm_market.id) == pool

    def test_rollback_drops_accounts_created_mid_operation(self):
        me, _, fpmm_market, traders, _ = fresh_system()
        trader = traders[0]

        def hook(operator, sender, position_ids, amounts):
            me.positions.safe_batch_transfer_from(
                trader, trader, "stranger", position_ids, amounts)
            raise RuntimeError("receiver refused")

        collateral_before = me.collateral.snapshot()
        positions_before = me.positions.snapshot()
        me.positions.register_receiver(trader, hook)
        with pytest.raises(RuntimeError):
            me.buy(fpmm_market.id, trader, E18 // 10, 0, 0)

        assert "stranger" not in me.positions.balances
        assert me.collateral.snapshot() == collateral_before
        assert me.positions.snapshot() == positions_before
        assert me.collateral.journal is None
        assert me.positions.journal is None

    def test_failed_creation_is_not_registered(self):
        reset_counters()
        me = create_engine()
        cid = me.positions.prepare_condition("oracle", "q", 2)
        with pytest.raises(InsufficientBalance):
            me.create_lmsr_market("pauper", [cid], 0, funding=E18)
        with pytest.raises(InsufficientBalance):
            me.create_fpmm_market("pauper", [cid], 0, initial_funds=E18)
        assert me.markets == {}
        assert me.events.history == []


# ---------------------------------------------------------------------------
# Single writer
# ---------------------------------------------------------------------------

class TestReentrancy:

    def test_nested_operation_rejected(self):
        me, lmsr_market, fpmm_market, traders, _ = fresh_system()
        trader = traders[0]
        q_before = list(lmsr_market.net_outcome_tokens_sold)

        def hook(operator, sender, position_ids, amounts):
            me.buy(fpmm_market.id, trader, E18 // 10, 0, 0)

        me.positions.register_receiver(trader, hook)
        with pytest.raises(ReentrantCall):
            me.trade(lmsr_market.id, trader, [E18 // 10, 0])

        assert lmsr_market.net_outcome_tokens_sold == q_before
        assert fpmm_market.fee_pool_weight == E18

        me.positions.register_receiver(trader, None)
        me.trade(lmsr_market.id, trader, [E18 // 10, 0])

    @pytest.mark.parametrize("create", ["create_lmsr_market", "create_fpmm_market"])
    def test_nested_creation_leaves_no_market(self, create):
        me, _, fpmm_market, traders, _ = fresh_system()
        trader = traders[0]
        n_events = len(me.events.history)

        def hook(operator, sender, position_ids, amounts):
            getattr(me, create)(trader, fpmm_market.condition_ids, 0)

        me.positions.register_receiver(trader, hook)
        with pytest.raises(ReentrantCall):
            me.buy(fpmm_market.id, trader, E18 // 10, 0, 0)

        assert sorted(me.markets) == [1, 2]
        assert next_id("market") == 3
        assert len(me.events.history) == n_events

    def test_queries_allowed_and_see_new_state(self):
        me, lmsr_market, _, traders, _ = fresh_system()
        trader = traders[0]
        seen = []

        def hook(operator, sender, position_ids, amounts):
            seen.append(me.marginal_prices(lmsr_market.id))

        me.positions.register_receiver(trader, hook)
        me.trade(lmsr_market.id, trader, [E18 // 10, 0])
        assert seen == [me.marginal_prices(lmsr_market.id)]

    def test_sequential_buyers_pay_more(self):
        me, lmsr_market, _, traders, _ = fresh_system()
        first = me.trade(lmsr_market.id, traders[0], [E18 // 10, 0])
        second = me.trade(lmsr_market.id, traders[1], [E18 // 10, 0])
        assert second > first


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class TestEvents:

    def test_creation_events(self):
        me, lmsr_market, fpmm_market, _, _ = fresh_system()
        events = me.events.for_market(lmsr_market.id)
        assert isinstance(events[0], MarketCreated)
        assert events[0].market_type == "lmsr"
        assert events[1] == LMSRFunded(lmsr_market.id, "owner", E18)
        assert me.events.for_market(fpmm_market.id)[0].market_type == "fpmm"

    def test_subscribers_see_committed_operations_only(self):
        me, lmsr_market, fpmm_market, traders, _ = fresh_system()
        received = []
        me.events.subscribe(received.append)

        net = me.trade(lmsr_market.id, traders[0], [E18 // 10, 0])
        with pytest.raises(MarketMakerError):
            me.buy(fpmm_market.id, traders[0], E18, 0, 10 * E18)
        me.buy(fpmm_market.id, traders[1], E18 // 10, 1, 0)

        assert [type(e) for e in received] == [OutcomeTokenTrade, FPMMBuy]
        assert received[0].outcome_token_net_cost == net
        assert received[0].market_fees == net * 10 ** 16 // FEE_ONE

        me.events.unsubscribe(received.append)
        me.trade(lmsr_market.id, traders[0], [E18 // 10, 0])
        assert len(received) == 2


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class TestConfiguration:

    def setup_method(self):
        reset_counters()
        self.me = create_engine()
        self.cid = self.me.positions.prepare_condition("oracle", "q", 2)

    @pytest.mark.parametrize("condition_ids", [[], ["unknown"]])
    def test_bad_conditions(self, condition_ids):
        with pytest.raises(InvalidConditions):
            self.me.create_lmsr_market("owner", condition_ids, 0)

    def test_duplicate_conditions(self):
        with pytest.raises(InvalidConditions):
            self.me.create_fpmm_market("owner", [self.cid, self.cid], 0)

    @pytest.mark.parametrize("fee", [-1, FEE_ONE, FEE_ONE + 1])
    def test_bad_fee(self, fee):
        with pytest.raises(InvalidFee):
            self.me.create_fpmm_market("owner", [self.cid], fee)

    def test_unknown_market(self):
        with pytest.raises(MarketNotFound):
            self.me.get_market(42)

    def test_wrong_market_type(self):
        market = self.me.create_fpmm_market("owner", [self.cid], 0)
        with pytest.raises(WrongMarketType):
            self.me.close(market.id, "owner")
