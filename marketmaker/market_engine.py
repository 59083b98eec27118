"""
Market engine. Creates markets, settles LMSR and FPMM trades, manages
FPMM pool shares and fee accounting.

Markets live in one registry: market id -> record. Pricing is pure
(lmsr.py, fpmm.py). This module moves collateral and positions through
the two collaborators (ledger.py) and keeps the per-market bookkeeping.

Every state-mutating call runs inside _operation():
  - only one operation runs at a time; a call made from a ledger
    receiver hook while another operation is in flight raises
    ReentrantCall
  - the market record is copied and both collaborators log their writes
    to a Journal; any exception restores the record and rewinds the
    journal before propagating, so a rejected operation leaves no trace
  - events collected during the operation are published after commit

Market bookkeeping (q, shares, fee weights) is written before any
outbound transfer, so a hook that queries the market sees the new state.

Collateral flow:
  LMSR trade   trader pays net_cost + fee; net_cost is split into full
               sets (or merged out of inventory on a sale); the fee stays
               in the pool account until the owner withdraws it
  FPMM buy     trader pays the investment; the fee stays in the pool
               account, the rest is split into full sets
  FPMM sell    return + fee full sets are merged; the return goes to the
               trader, the fee stays
"""

import copy
import logging
from contextlib import contextmanager
from math import prod

from marketmaker import fpmm, lmsr
from marketmaker.errors import (
    AlreadyClosed, AlreadyFunded, CostAboveLimit, InsufficientShares,
    InvalidAmount, InvalidConditions, InvalidFee, InvalidOutcomeIndex,
    InvariantViolation, MarketClosed, MarketNotFound, NotFunded,
    OutcomeCountMismatch, ProceedsBelowLimit, ReentrantCall,
    SlippageExceeded, Unauthorized, WrongMarketType,
)
from marketmaker.events import (
    EventBus, FeesWithdrawn, FPMMBuy, FPMMSell, FundingAdded,
    FundingRemoved, LMSRFunded, MarketClosed as MarketClosedEvent,
    MarketCreated, OutcomeTokenTrade, SharesTransferred,
)
from marketmaker.ledger import (
    LEDGER_ACCOUNT, CollateralToken, Journal, PositionLedger,
)
from marketmaker.models import (
    FEE_ONE, FPMMMarket, LMSRMarket, Market, PoolStatus, Stage, _now,
)

logger = logging.getLogger(__name__)


def create_engine(collateral_symbol: str = "WETH") -> "MarketEngine":
    """A fresh engine with its own collateral token and position ledger."""
    collateral = CollateralToken(collateral_symbol)
    return MarketEngine(collateral, PositionLedger(collateral))


class MarketEngine:

    def __init__(self, collateral: CollateralToken, positions: PositionLedger,
                 events: EventBus | None = None):
        self.collateral = collateral
        self.positions = positions
        self.events = events or EventBus()
        self.markets: dict[int, Market] = {}
        self._in_flight: set[int] = set()

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def get_market(self, market_id: int) -> Market:
        market = self.markets.get(market_id)
        if market is None:
            raise MarketNotFound(f"market {market_id} not found")
        return market

    def _get_lmsr(self, market_id: int) -> LMSRMarket:
        market = self.get_market(market_id)
        if not isinstance(market, LMSRMarket):
            raise WrongMarketType(f"market {market_id} is not an LMSR market")
        return market

    def _get_fpmm(self, market_id: int) -> FPMMMarket:
        market = self.get_market(market_id)
        if not isinstance(market, FPMMMarket):
            raise WrongMarketType(f"market {market_id} is not an FPMM market")
        return market

    def pool_balances(self, market_id: int) -> list[int]:
        """Current pool inventory, one entry per atomic position."""
        return self._inventory(self.get_market(market_id))

    def _validate_config(self, condition_ids: list[str], fee: int) -> list[str]:
        if not condition_ids:
            raise InvalidConditions("at least one condition is required")
        if len(set(condition_ids)) != len(condition_ids):
            raise InvalidConditions("duplicate condition ids")
        counts = []
        for cid in condition_ids:
            count = self.positions.get_outcome_slot_count(cid)
            if count == 0:
                raise InvalidConditions(f"condition {cid} is not prepared")
            counts.append(count)
        if not 0 <= fee < FEE_ONE:
            raise InvalidFee(f"fee {fee} outside [0, {FEE_ONE})")

        position_ids = self.positions.atomic_position_ids(
            self.collateral.symbol, condition_ids)
        expected = prod(counts)
        if len(position_ids) != expected or len(set(position_ids)) != expected:
            raise OutcomeCountMismatch(
                f"{len(set(position_ids))} positions for {expected} outcomes")
        return position_ids

    # ------------------------------------------------------------------
    # LMSR: lifecycle
    # ------------------------------------------------------------------

    def create_lmsr_market(self, creator: str, condition_ids: list[str],
                           fee: int, funding: int | None = None) -> LMSRMarket:
        """
        Create an LMSR market owned by `creator`. With `funding`, the
        market is funded in the same operation, the collateral moving
        straight from the creator.
        """
        self._check_idle("market creation")
        position_ids = self._validate_config(condition_ids, fee)
        market = LMSRMarket.new(
            owner=creator,
            collateral=self.collateral.symbol,
            condition_ids=condition_ids,
            fee=fee,
            position_ids=position_ids,
        )
        self.markets[market.id] = market
        with self._operation(market, created=True) as pending:
            pending.append(self._created_event(market, creator))
            if funding is not None:
                self._fund_lmsr(market, creator, funding, pending,
                                spender=creator)

        logger.info("lmsr market %d created by %s: %d outcomes, fee %d",
                    market.id, creator, market.outcome_count, fee)
        return market

    def fund(self, market_id: int, funder: str, funding: int) -> None:
        """
        Fund an LMSR market once. Pulls `funding` collateral using the
        funder's allowance to the pool account and splits it into every
        position, so the pool holds `funding` of each.
        """
        market = self._get_lmsr(market_id)
        if funder != market.owner:
            raise Unauthorized(f"only the owner may fund market {market_id}")
        if market.stage is Stage.CLOSED:
            raise MarketClosed(f"market {market_id} is closed")
        with self._operation(market) as pending:
            self._fund_lmsr(market, funder, funding, pending,
                            spender=market.account)

    def _fund_lmsr(self, market: LMSRMarket, funder: str, funding: int,
                   pending: list, spender: str) -> None:
        if market.funded:
            raise AlreadyFunded(f"market {market.id} is already funded")
        if funding <= 0:
            raise InvalidAmount("funding must be positive")

        market.funding = funding
        market.net_outcome_tokens_sold = [0] * market.outcome_count
        self._pull(market, funder, funding, spender)
        self._split(market, funding)
        pending.append(LMSRFunded(market.id, funder, funding))
        logger.info("lmsr market %d funded with %d", market.id, funding)

    def close(self, market_id: int, caller: str) -> list[int]:
        """
        Close an LMSR market for good. The remaining inventory moves to
        the owner, who can merge full sets back into collateral through
        the position ledger. No collateral moves here.
        """
        market = self._get_lmsr(market_id)
        if caller != market.owner:
            raise Unauthorized(f"only the owner may close market {market_id}")
        if market.stage is Stage.CLOSED:
            raise AlreadyClosed(f"market {market_id} is already closed")

        with self._operation(market) as pending:
            market.stage = Stage.CLOSED
            market.closed_at = _now()
            inventory = self._inventory(market)
            if any(inventory):
                self.positions.safe_batch_transfer_from(
                    market.account, market.account, market.owner,
                    market.position_ids, inventory)
            pending.append(MarketClosedEvent(
                market.id, market.owner, tuple(inventory)))

        logger.info("lmsr market %d closed", market.id)
        return inventory

    def withdraw_lmsr_fees(self, market_id: int, caller: str) -> int:
        """Send the fee collateral held by the pool account to the owner."""
        market = self._get_lmsr(market_id)
        if caller != market.owner:
            raise Unauthorized(
                f"only the owner may withdraw fees of market {market_id}")
        with self._operation(market) as pending:
            amount = self.collateral.balance_of(market.account)
            if amount > 0:
                self.collateral.transfer(market.account, market.owner, amount)
                pending.append(FeesWithdrawn(market.id, market.owner, amount))
        return amount

    # ------------------------------------------------------------------
    # LMSR: pricing
    # ------------------------------------------------------------------

    def calc_net_cost(self, market_id: int, amounts: list[int]) -> int:
        market = self._get_lmsr(market_id)
        self._require_lmsr_funded(market)
        self._check_amounts(market, amounts)
        return lmsr.net_cost(self._inventory(market), amounts, market.funding)

    def calc_market_fee(self, market_id: int, net_cost: int) -> int:
        market = self._get_lmsr(market_id)
        return lmsr.market_fee(net_cost, market.fee)

    def calc_marginal_price(self, market_id: int, outcome_index: int) -> int:
        market = self._get_lmsr(market_id)
        self._require_lmsr_funded(market)
        self._check_outcome(market, outcome_index)
        return lmsr.marginal_price(
            market.net_outcome_tokens_sold, market.funding, outcome_index)

    def marginal_prices(self, market_id: int) -> list[int]:
        market = self._get_lmsr(market_id)
        self._require_lmsr_funded(market)
        return lmsr.marginal_prices(
            market.net_outcome_tokens_sold, market.funding)

    # ------------------------------------------------------------------
    # LMSR: trading
    # ------------------------------------------------------------------

    def trade(self, market_id: int, trader: str, amounts: list[int],
              collateral_limit: int | None = None) -> int:
        """
        Buy (positive) and sell (negative) any mix of positions in one go.

        collateral_limit bounds net_cost + fee: a positive limit caps
        what the trader pays, a negative one sets the minimum proceeds.
        None means no limit. Returns the net cost before fees.
        """
        market = self._get_lmsr(market_id)
        if market.stage is Stage.CLOSED:
            raise MarketClosed(f"market {market_id} is closed")
        self._require_lmsr_funded(market)
        self._check_amounts(market, amounts)

        with self._operation(market) as pending:
            net = lmsr.net_cost(self._inventory(market), amounts, market.funding)
            fee = lmsr.market_fee(net, market.fee)
            total = net + fee
            if collateral_limit is not None and total > collateral_limit:
                if collateral_limit >= 0:
                    raise CostAboveLimit(
                        f"cost {total} exceeds limit {collateral_limit}")
                raise ProceedsBelowLimit(
                    f"proceeds {-total} below minimum {-collateral_limit}")

            market.net_outcome_tokens_sold = [
                q + a for q, a in zip(market.net_outcome_tokens_sold, amounts)]

            if total > 0:
                self._pull(market, trader, total, market.account)
            if net > 0:
                self._split(market, net)

            sold = [-a if a < 0 else 0 for a in amounts]
            if any(sold):
                self.positions.safe_batch_transfer_from(
                    market.account, trader, market.account,
                    market.position_ids, sold)
            if net < 0:
                self._merge(market, -net)

            bought = [a if a > 0 else 0 for a in amounts]
            if any(bought):
                self.positions.safe_batch_transfer_from(
                    market.account, market.account, trader,
                    market.position_ids, bought)
            if total < 0:
                self.collateral.transfer(market.account, trader, -total)

            pending.append(OutcomeTokenTrade(
                market.id, trader, tuple(amounts), net, fee))

        logger.debug("lmsr market %d: %s traded %s, net cost %d, fee %d",
                     market.id, trader, amounts, net, fee)
        return net

    # ------------------------------------------------------------------
    # FPMM: lifecycle and liquidity
    # ------------------------------------------------------------------

    def create_fpmm_market(self, creator: str, condition_ids: list[str],
                           fee: int, initial_funds: int | None = None,
                           distribution_hint: list[int] = ()) -> FPMMMarket:
        """
        Create a fixed product market. With `initial_funds` the pool is
        funded in the same operation, the collateral moving straight from
        the creator; `distribution_hint` then sets the initial odds.
        """
        self._check_idle("market creation")
        position_ids = self._validate_config(condition_ids, fee)
        market = FPMMMarket.new(
            creator=creator,
            collateral=self.collateral.symbol,
            condition_ids=condition_ids,
            fee=fee,
            position_ids=position_ids,
        )
        self.markets[market.id] = market
        with self._operation(market, created=True) as pending:
            pending.append(self._created_event(market, creator))
            if initial_funds is not None:
                self._add_funding(market, creator, initial_funds,
                                  distribution_hint, pending, spender=creator)

        logger.info("fpmm market %d created by %s: %d outcomes, fee %d",
                    market.id, creator, market.outcome_count, fee)
        return market

    def add_funding(self, market_id: int, funder: str, added_funds: int,
                    distribution_hint: list[int] = ()) -> int:
        """
        Add `added_funds` collateral as liquidity. Returns shares minted.

        The pool keeps its prices: outcome i receives
        added * balance_i / max(balance) and the rest of each full set
        goes back to the funder as positions.
        """
        market = self._get_fpmm(market_id)
        with self._operation(market) as pending:
            minted = self._add_funding(market, funder, added_funds,
                                       distribution_hint, pending,
                                       spender=market.account)
        return minted

    def _add_funding(self, market: FPMMMarket, funder: str, added_funds: int,
                     distribution_hint: list[int], pending: list,
                     spender: str) -> int:
        amounts_added, send_back, minted = fpmm.calc_funding(
            self._inventory(market), market.total_shares, added_funds,
            distribution_hint)

        self._mint_shares(market, funder, minted, pending)
        self._pull(market, funder, added_funds, spender)
        self._split(market, added_funds)
        if any(send_back):
            self.positions.safe_batch_transfer_from(
                market.account, market.account, funder,
                market.position_ids, send_back)

        pending.append(FundingAdded(
            market.id, funder, tuple(amounts_added), minted,
            market.total_shares))
        logger.info("fpmm market %d: %s added %d, minted %d shares",
                    market.id, funder, added_funds, minted)
        return minted

    def remove_funding(self, market_id: int, funder: str,
                       shares_to_burn: int) -> list[int]:
        """
        Burn pool shares for a pro-rata slice of every pool balance.
        Pending fees of the funder are paid out first. Returns the
        position amounts sent.
        """
        market = self._get_fpmm(market_id)
        if shares_to_burn < 0:
            raise InvalidAmount("shares to burn must be non-negative")
        if shares_to_burn > market.share_balance(funder):
            raise InsufficientShares(
                f"{funder} holds {market.share_balance(funder)} shares, "
                f"cannot burn {shares_to_burn}")

        with self._operation(market) as pending:
            send = fpmm.calc_removal(
                self._inventory(market), market.total_shares, shares_to_burn)
            fee_pool_before = self.collateral.balance_of(market.account)
            self._burn_shares(market, funder, shares_to_burn, pending)
            fee_removed = fee_pool_before - self.collateral.balance_of(market.account)
            if any(send):
                self.positions.safe_batch_transfer_from(
                    market.account, market.account, funder,
                    market.position_ids, send)
            pending.append(FundingRemoved(
                market.id, funder, tuple(send), fee_removed,
                shares_to_burn, market.total_shares))

        logger.info("fpmm market %d: %s burnt %d shares", market.id, funder,
                    shares_to_burn)
        return send

    # ------------------------------------------------------------------
    # FPMM: pricing
    # ------------------------------------------------------------------

    def calc_buy_amount(self, market_id: int, investment_amount: int,
                        outcome_index: int) -> int:
        market = self._get_fpmm(market_id)
        self._require_pool_funded(market)
        return fpmm.calc_buy_amount(
            self._inventory(market), investment_amount, outcome_index,
            market.fee)

    def calc_sell_amount(self, market_id: int, return_amount: int,
                         outcome_index: int) -> int:
        market = self._get_fpmm(market_id)
        self._require_pool_funded(market)
        return fpmm.calc_sell_amount(
            self._inventory(market), return_amount, outcome_index,
            market.fee)

    # ------------------------------------------------------------------
    # FPMM: trading
    # ------------------------------------------------------------------

    def buy(self, market_id: int, buyer: str, investment_amount: int,
            outcome_index: int, min_outcome_tokens_to_buy: int) -> int:
        """Spend collateral on one outcome. Returns outcome tokens bought."""
        market = self._get_fpmm(market_id)
        self._require_pool_funded(market)
        if investment_amount <= 0:
            raise InvalidAmount("investment amount must be positive")

        with self._operation(market) as pending:
            before = self._inventory(market)
            bought = fpmm.calc_buy_amount(
                before, investment_amount, outcome_index, market.fee)
            if bought < min_outcome_tokens_to_buy:
                raise SlippageExceeded(
                    f"would buy {bought}, minimum {min_outcome_tokens_to_buy}")

            fee_amount = fpmm.buy_fee(investment_amount, market.fee)
            market.fee_pool_weight += fee_amount

            self._pull(market, buyer, investment_amount, market.account)
            self._split(market, investment_amount - fee_amount)
            self.positions.safe_transfer_from(
                market.account, market.account, buyer,
                market.position_ids[outcome_index], bought)
            self._check_pool(before, self._inventory(market))

            pending.append(FPMMBuy(
                market.id, buyer, investment_amount, fee_amount,
                outcome_index, bought))

        logger.debug("fpmm market %d: %s bought %d of outcome %d for %d",
                     market.id, buyer, bought, outcome_index,
                     investment_amount)
        return bought

    def sell(self, market_id: int, seller: str, return_amount: int,
             outcome_index: int, max_outcome_tokens_to_sell: int) -> int:
        """Sell one outcome for `return_amount` collateral. Returns tokens sold."""
        market = self._get_fpmm(market_id)
        self._require_pool_funded(market)
        if return_amount <= 0:
            raise InvalidAmount("return amount must be positive")

        with self._operation(market) as pending:
            before = self._inventory(market)
            sold = fpmm.calc_sell_amount(
                before, return_amount, outcome_index, market.fee)
            if sold > max_outcome_tokens_to_sell:
                raise SlippageExceeded(
                    f"would sell {sold}, maximum {max_outcome_tokens_to_sell}")

            fee_amount = fpmm.sell_fee(return_amount, market.fee)
            market.fee_pool_weight += fee_amount

            self.positions.safe_transfer_from(
                market.account, seller, market.account,
                market.position_ids[outcome_index], sold)
            self._merge(market, return_amount + fee_amount)
            self.collateral.transfer(market.account, seller, return_amount)
            self._check_pool(before, self._inventory(market))

            pending.append(FPMMSell(
                market.id, seller, return_amount, fee_amount,
                outcome_index, sold))

        logger.debug("fpmm market %d: %s sold %d of outcome %d for %d",
                     market.id, seller, sold, outcome_index, return_amount)
        return sold

    # ------------------------------------------------------------------
    # FPMM: pool shares and fees
    # ------------------------------------------------------------------

    def share_balance(self, market_id: int, account: str) -> int:
        return self._get_fpmm(market_id).share_balance(account)

    def collected_fees(self, market_id: int) -> int:
        return self._get_fpmm(market_id).collected_fees

    def fees_withdrawable_by(self, market_id: int, account: str) -> int:
        return self._fees_withdrawable(self._get_fpmm(market_id), account)

    def withdraw_fees(self, market_id: int, account: str) -> int:
        market = self._get_fpmm(market_id)
        with self._operation(market) as pending:
            amount = self._withdraw_fees(market, account, pending)
        return amount

    def transfer_shares(self, market_id: int, sender: str, recipient: str,
                        amount: int) -> None:
        """Move pool shares; the fee credit moves with them."""
        market = self._get_fpmm(market_id)
        if amount < 0:
            raise InvalidAmount("share amount must be non-negative")
        if amount > market.share_balance(sender):
            raise InsufficientShares(
                f"{sender} holds {market.share_balance(sender)} shares, "
                f"cannot transfer {amount}")

        with self._operation(market) as pending:
            self._before_share_transfer(market, sender, recipient, amount,
                                        pending)
            market.share_balances[sender] -= amount
            market.share_balances[recipient] = (
                market.share_balance(recipient) + amount)
            pending.append(SharesTransferred(
                market.id, sender, recipient, amount))

    def _fees_withdrawable(self, market: FPMMMarket, account: str) -> int:
        if market.total_shares == 0:
            return 0
        raw = (market.fee_pool_weight * market.share_balance(account)
               // market.total_shares)
        return max(raw - market.withdrawn_fees.get(account, 0), 0)

    def _withdraw_fees(self, market: FPMMMarket, account: str,
                       pending: list) -> int:
        amount = self._fees_withdrawable(market, account)
        if amount == 0:
            return 0
        market.withdrawn_fees[account] = (
            market.withdrawn_fees.get(account, 0) + amount)
        market.total_withdrawn_fees += amount
        self.collateral.transfer(market.account, account, amount)
        pending.append(FeesWithdrawn(market.id, account, amount))
        return amount

    def _before_share_transfer(self, market: FPMMMarket, sender: str | None,
                               recipient: str | None, amount: int,
                               pending: list) -> None:
        """
        Move fee credit along with shares. None stands for mint (sender)
        or burn (recipient). Pending fees of the sender are paid out
        first, so shares never carry unclaimed fees to a new holder.
        """
        if sender is not None:
            self._withdraw_fees(market, sender, pending)

        supply = market.total_shares
        if supply == 0:
            moved = amount
        else:
            moved = market.fee_pool_weight * amount // supply

        if sender is not None:
            market.withdrawn_fees[sender] = (
                market.withdrawn_fees.get(sender, 0) - moved)
            market.total_withdrawn_fees -= moved
        else:
            market.fee_pool_weight += moved

        if recipient is not None:
            market.withdrawn_fees[recipient] = (
                market.withdrawn_fees.get(recipient, 0) + moved)
            market.total_withdrawn_fees += moved
        else:
            market.fee_pool_weight -= moved

    def _mint_shares(self, market: FPMMMarket, account: str, amount: int,
                     pending: list) -> None:
        self._before_share_transfer(market, None, account, amount, pending)
        market.share_balances[account] = market.share_balance(account) + amount
        market.total_shares += amount

    def _burn_shares(self, market: FPMMMarket, account: str, amount: int,
                     pending: list) -> None:
        if amount > market.share_balance(account):
            raise InsufficientShares(
                f"{account} holds {market.share_balance(account)} shares")
        self._before_share_transfer(market, account, None, amount, pending)
        market.share_balances[account] -= amount
        market.total_shares -= amount

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check_idle(self, what: str) -> None:
        if self._in_flight:
            raise ReentrantCall(
                f"{what}: operation already in flight on "
                f"market(s) {sorted(self._in_flight)}")

    @contextmanager
    def _operation(self, market: Market, created: bool = False):
        """All-or-nothing section around one state-mutating call."""
        self._check_idle(f"market {market.id}")
        saved_market = copy.deepcopy(market)
        journal = Journal()
        self.collateral.journal = self.positions.journal = journal
        pending: list = []
        self._in_flight.add(market.id)
        try:
            yield pending
        except Exception as exc:
            logger.warning("market %d: operation rejected (%s), rolled back",
                           market.id, getattr(exc, "code", type(exc).__name__))
            vars(market).update(vars(saved_market))
            journal.rollback()
            if created:
                self.markets.pop(market.id, None)
            raise
        finally:
            self.collateral.journal = self.positions.journal = None
            self._in_flight.discard(market.id)

        for event in pending:
            self.events.publish(event)

    def _created_event(self, market: Market, creator: str) -> MarketCreated:
        return MarketCreated(
            market_id=market.id,
            market_type=market.type,
            creator=creator,
            collateral=market.collateral,
            condition_ids=tuple(market.condition_ids),
            position_ids=tuple(market.position_ids),
            fee=market.fee,
        )

    def _inventory(self, market: Market) -> list[int]:
        return self.positions.balance_of_batch(
            [market.account] * market.outcome_count, market.position_ids)

    def _pull(self, market: Market, account: str, amount: int,
              spender: str) -> None:
        self.collateral.transfer_from(spender, account, market.account, amount)

    def _split(self, market: Market, amount: int) -> None:
        if amount == 0:
            return
        self.collateral.approve(market.account, LEDGER_ACCOUNT, amount)
        self.positions.split_position(
            market.account, market.condition_ids, amount)

    def _merge(self, market: Market, amount: int) -> None:
        if amount == 0:
            return
        self.positions.merge_positions(
            market.account, market.condition_ids, amount)

    def _check_amounts(self, market: Market, amounts: list[int]) -> None:
        if len(amounts) != market.outcome_count:
            raise InvalidAmount(
                f"expected {market.outcome_count} amounts, got {len(amounts)}")

    def _check_outcome(self, market: Market, outcome_index: int) -> None:
        if not 0 <= outcome_index < market.outcome_count:
            raise InvalidOutcomeIndex(
                f"outcome index {outcome_index} out of range "
                f"(0..{market.outcome_count - 1})")

    def _check_pool(self, before: list[int], after: list[int]) -> None:
        if any(b <= 0 for b in after):
            raise InvariantViolation("trade would empty a pool balance")
        if prod(after) < prod(before):
            raise InvariantViolation("trade would decrease the pool product")

    @staticmethod
    def _require_lmsr_funded(market: LMSRMarket) -> None:
        if not market.funded:
            raise NotFunded(f"market {market.id} is not funded")

    @staticmethod
    def _require_pool_funded(market: FPMMMarket) -> None:
        if market.status is not PoolStatus.FUNDED:
            raise NotFunded(f"market {market.id} has no liquidity")
