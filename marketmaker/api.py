"""
FastAPI application. HTTP calling layer over the market engine.

Public endpoints: health, markets, market detail, prices, quotes, accounts.
Account actions (account named in the request): approvals, split/merge,
trading, funding, fee withdrawal.
Admin endpoints (admin key): deposit collateral, prepare conditions,
create markets.

All amounts travel as decimal strings of base units. Mutations run under
one asyncio.Lock and the state is snapshotted after each of them.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from marketmaker import __version__, config
from marketmaker.api_errors import APIError, api_error_handler, translate_engine_error
from marketmaker.api_models import (
    HealthResponse, AccountResponse, BalanceResponse,
    ApproveRequest, ApprovePositionsRequest, SplitRequest,
    MarketSummary, MarketDetail,
    DepositRequest, PrepareConditionRequest, ConditionResponse,
    CreateLMSRRequest, CreateFPMMRequest, CreateMarketResponse,
    FundRequest, QuoteRequest, QuoteResponse,
    LMSRTradeRequest, LMSRTradeResult, PricesResponse,
    CallerRequest, CloseResponse, WithdrawFeesResponse,
    AmountQuoteResponse, BuyRequest, SellRequest, FPMMTradeResult,
    AddFundingRequest, AddFundingResponse,
    RemoveFundingRequest, RemoveFundingResponse,
    FeesResponse, TransferSharesRequest,
)
from marketmaker.errors import MarketMakerError
from marketmaker.events import event_to_dict
from marketmaker.fixed_math import to_decimal
from marketmaker.ledger import LEDGER_ACCOUNT
from marketmaker.market_engine import MarketEngine, create_engine
from marketmaker.middleware import AdminDep
from marketmaker.models import FPMMMarket, LMSRMarket, Market, reset_counters
from marketmaker.persistence import load_snapshot, save_snapshot

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.setup_logging()
    # Load state
    if os.path.exists(config.STATE_PATH):
        engine = load_snapshot(config.STATE_PATH)
    else:
        reset_counters()
        engine = create_engine()

    app.state.engine = engine
    app.state.lock = asyncio.Lock()
    yield


app = FastAPI(title="Market Maker API", version=__version__, lifespan=lifespan)
app.add_exception_handler(APIError, api_error_handler)


def _save():
    """Save state to disk. Called after every mutation."""
    save_snapshot(app.state.engine, config.STATE_PATH)


def _engine() -> MarketEngine:
    return app.state.engine


def _parse_amount(value: str, name: str, signed: bool = False) -> int:
    """Decimal string of base units -> int."""
    try:
        amount = int(value)
    except (TypeError, ValueError):
        raise APIError(400, "invalid_amount", f"Invalid {name}: {value}")
    if amount < 0 and not signed:
        raise APIError(400, "invalid_amount", f"{name} must be non-negative")
    return amount


def _get_market(market_id: int) -> Market:
    m = _engine().markets.get(market_id)
    if m is None:
        raise APIError(404, "market_not_found", f"Market {market_id} not found")
    return m


def _status(m: Market) -> str:
    if isinstance(m, LMSRMarket):
        return m.stage.value
    return m.status.value


def _summary(m: Market) -> MarketSummary:
    return MarketSummary(
        market_id=m.id,
        type=m.type,
        status=_status(m),
        collateral=m.collateral,
        account=m.account,
        outcome_count=m.outcome_count,
        fee=str(m.fee),
        created_at=m.created_at,
    )


def _prices(market_id: int) -> list[str]:
    return [str(to_decimal(p)) for p in _engine().marginal_prices(market_id)]


# ---------------------------------------------------------------------------
# Health + accounts (public)
# ---------------------------------------------------------------------------

@app.get("/v1/health")
async def health() -> HealthResponse:
    engine = _engine()
    return HealthResponse(
        status="ok",
        markets=len(engine.markets),
        accounts=len(engine.collateral.balances),
    )


@app.get("/v1/accounts/{account}")
async def get_account(account: str) -> AccountResponse:
    """Collateral, non-zero positions and pool shares held by an account."""
    engine = _engine()
    held = engine.positions.balances.get(account, {})
    shares = {
        str(m.id): str(m.share_balance(account))
        for m in engine.markets.values()
        if isinstance(m, FPMMMarket) and m.share_balance(account) > 0
    }
    return AccountResponse(
        account=account,
        collateral=str(engine.collateral.balance_of(account)),
        positions={pid: str(v) for pid, v in held.items() if v},
        shares=shares,
    )


@app.post("/v1/accounts/{account}/approve")
async def approve(account: str, req: ApproveRequest) -> dict:
    """Set the collateral allowance of `spender` (e.g. a market account)."""
    amount = _parse_amount(req.amount, "amount")
    async with app.state.lock:
        _engine().collateral.approve(account, req.spender, amount)
        _save()
    return {"account": account, "spender": req.spender, "allowance": str(amount)}


@app.post("/v1/accounts/{account}/approve-positions")
async def approve_positions(account: str, req: ApprovePositionsRequest) -> dict:
    """Let `operator` move all of the account's positions."""
    async with app.state.lock:
        _engine().positions.set_approval_for_all(
            account, req.operator, req.approved)
        _save()
    return {"account": account, "operator": req.operator,
            "approved": req.approved}


@app.post("/v1/accounts/{account}/split")
async def split(account: str, req: SplitRequest) -> AccountResponse:
    """Turn collateral into a full set of positions over the conditions."""
    amount = _parse_amount(req.amount, "amount")
    async with app.state.lock:
        engine = _engine()
        try:
            engine.collateral.approve(account, LEDGER_ACCOUNT, amount)
            engine.positions.split_position(account, req.condition_ids, amount)
        except MarketMakerError as e:
            engine.collateral.approve(account, LEDGER_ACCOUNT, 0)
            raise translate_engine_error(e)
        _save()
    return await get_account(account)


@app.post("/v1/accounts/{account}/merge")
async def merge(account: str, req: SplitRequest) -> AccountResponse:
    """Burn a full set of positions back into collateral."""
    amount = _parse_amount(req.amount, "amount")
    async with app.state.lock:
        try:
            _engine().positions.merge_positions(
                account, req.condition_ids, amount)
        except MarketMakerError as e:
            raise translate_engine_error(e)
        _save()
    return await get_account(account)


# ---------------------------------------------------------------------------
# Public market data
# ---------------------------------------------------------------------------

@app.get("/v1/markets")
async def list_markets(type: str | None = None,
                       status: str | None = None) -> list[MarketSummary]:
    """List all markets.

    Optional filters:
    - type: "lmsr" or "fpmm"
    - status: "running" / "closed" (LMSR), "funded" / "unfunded" (FPMM)
    """
    result = []
    for m in _engine().markets.values():
        if type is not None and m.type != type:
            continue
        if status is not None and _status(m) != status:
            continue
        result.append(_summary(m))
    return result


@app.get("/v1/markets/{market_id}")
async def get_market(market_id: int) -> MarketDetail:
    """Full market detail including pool inventory."""
    m = _get_market(market_id)
    engine = _engine()
    detail = dict(
        _summary(m).model_dump(),
        condition_ids=m.condition_ids,
        position_ids=m.position_ids,
        pool_balances=[str(b) for b in engine.pool_balances(market_id)],
    )
    if isinstance(m, LMSRMarket):
        detail.update(
            owner=m.owner,
            funding=str(m.funding),
            net_outcome_tokens_sold=[str(q) for q in m.net_outcome_tokens_sold],
            prices=_prices(market_id) if m.funded else None,
            closed_at=m.closed_at,
        )
    else:
        detail.update(
            owner=m.creator,
            total_shares=str(m.total_shares),
            collected_fees=str(m.collected_fees),
        )
    return MarketDetail(**detail)


@app.get("/v1/markets/{market_id}/events")
async def get_market_events(market_id: int) -> list[dict]:
    """Events published for a market since the process started."""
    _get_market(market_id)
    return [event_to_dict(e) for e in _engine().events.for_market(market_id)]


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------

@app.post("/v1/admin/deposit")
async def admin_deposit(req: DepositRequest, _: AdminDep) -> BalanceResponse:
    """Wrap base asset into collateral for an account."""
    amount = _parse_amount(req.amount, "amount")
    if amount == 0:
        raise APIError(400, "invalid_amount", "Amount must be positive")

    async with app.state.lock:
        _engine().collateral.deposit(req.account, amount)
        _save()

    return BalanceResponse(
        account=req.account,
        collateral=str(_engine().collateral.balance_of(req.account)),
    )


@app.post("/v1/admin/conditions")
async def admin_prepare_condition(req: PrepareConditionRequest,
                                  _: AdminDep) -> ConditionResponse:
    async with app.state.lock:
        try:
            cid = _engine().positions.prepare_condition(
                req.oracle, req.question_id, req.outcome_slot_count)
        except MarketMakerError as e:
            raise translate_engine_error(e)
        _save()
    return ConditionResponse(condition_id=cid,
                             outcome_slot_count=req.outcome_slot_count)


@app.post("/v1/admin/markets/lmsr")
async def admin_create_lmsr(req: CreateLMSRRequest,
                            _: AdminDep) -> CreateMarketResponse:
    """Create an LMSR market; with `funding` it is funded by the creator."""
    fee = _parse_amount(req.fee, "fee")
    funding = None
    if req.funding is not None:
        funding = _parse_amount(req.funding, "funding")

    async with app.state.lock:
        try:
            market = _engine().create_lmsr_market(
                req.creator, req.condition_ids, fee, funding=funding)
        except MarketMakerError as e:
            raise translate_engine_error(e)
        _save()

    return CreateMarketResponse(market_id=market.id, account=market.account,
                                position_ids=market.position_ids)


@app.post("/v1/admin/markets/fpmm")
async def admin_create_fpmm(req: CreateFPMMRequest,
                            _: AdminDep) -> CreateMarketResponse:
    """Create an FPMM market; with `initial_funds` the creator seeds the pool."""
    fee = _parse_amount(req.fee, "fee")
    initial_funds = None
    if req.initial_funds is not None:
        initial_funds = _parse_amount(req.initial_funds, "initial_funds")
    hint = [_parse_amount(h, "distribution_hint") for h in req.distribution_hint]

    async with app.state.lock:
        try:
            market = _engine().create_fpmm_market(
                req.creator, req.condition_ids, fee,
                initial_funds=initial_funds, distribution_hint=hint)
        except MarketMakerError as e:
            raise translate_engine_error(e)
        _save()

    return CreateMarketResponse(market_id=market.id, account=market.account,
                                position_ids=market.position_ids)


# ---------------------------------------------------------------------------
# LMSR
# ---------------------------------------------------------------------------

@app.post("/v1/markets/{market_id}/fund")
async def fund(market_id: int, req: FundRequest) -> MarketDetail:
    """Fund an LMSR market (owner only, once)."""
    funding = _parse_amount(req.funding, "funding")
    async with app.state.lock:
        try:
            _engine().fund(market_id, req.funder, funding)
        except MarketMakerError as e:
            raise translate_engine_error(e)
        _save()
    return await get_market(market_id)


@app.post("/v1/markets/{market_id}/quote")
async def quote(market_id: int, req: QuoteRequest) -> QuoteResponse:
    """Net cost and fee of a trade, without executing it."""
    amounts = [_parse_amount(a, "amounts", signed=True) for a in req.amounts]
    engine = _engine()
    try:
        net = engine.calc_net_cost(market_id, amounts)
        fee = engine.calc_market_fee(market_id, net)
    except MarketMakerError as e:
        raise translate_engine_error(e)
    return QuoteResponse(net_cost=str(net), fee=str(fee), total=str(net + fee))


@app.post("/v1/markets/{market_id}/trade")
async def trade(market_id: int, req: LMSRTradeRequest) -> LMSRTradeResult:
    """Buy (positive) and sell (negative) positions in one trade."""
    amounts = [_parse_amount(a, "amounts", signed=True) for a in req.amounts]
    limit = None
    if req.collateral_limit is not None:
        limit = _parse_amount(req.collateral_limit, "collateral_limit",
                              signed=True)

    async with app.state.lock:
        engine = _engine()
        try:
            net = engine.trade(market_id, req.trader, amounts,
                               collateral_limit=limit)
        except MarketMakerError as e:
            raise translate_engine_error(e)
        _save()

    return LMSRTradeResult(
        market_id=market_id,
        net_cost=str(net),
        fee=str(engine.calc_market_fee(market_id, net)),
        prices=_prices(market_id),
    )


@app.get("/v1/markets/{market_id}/prices")
async def prices(market_id: int) -> PricesResponse:
    try:
        result = _prices(market_id)
    except MarketMakerError as e:
        raise translate_engine_error(e)
    return PricesResponse(market_id=market_id, prices=result)


@app.post("/v1/markets/{market_id}/close")
async def close(market_id: int, req: CallerRequest) -> CloseResponse:
    """Close an LMSR market; the owner receives the remaining inventory."""
    async with app.state.lock:
        try:
            inventory = _engine().close(market_id, req.account)
        except MarketMakerError as e:
            raise translate_engine_error(e)
        _save()
    return CloseResponse(market_id=market_id, status="closed",
                         inventory=[str(v) for v in inventory])


@app.post("/v1/markets/{market_id}/withdraw-fees")
async def withdraw_fees(market_id: int,
                        req: CallerRequest) -> WithdrawFeesResponse:
    """LMSR: owner collects market fees. FPMM: a liquidity provider collects
    its share of the fee pool."""
    m = _get_market(market_id)
    async with app.state.lock:
        engine = _engine()
        try:
            if isinstance(m, LMSRMarket):
                amount = engine.withdraw_lmsr_fees(market_id, req.account)
            else:
                amount = engine.withdraw_fees(market_id, req.account)
        except MarketMakerError as e:
            raise translate_engine_error(e)
        _save()
    return WithdrawFeesResponse(market_id=market_id, account=req.account,
                                amount=str(amount))


# ---------------------------------------------------------------------------
# FPMM
# ---------------------------------------------------------------------------

@app.get("/v1/markets/{market_id}/buy-amount")
async def buy_amount(market_id: int, investment_amount: str,
                     outcome_index: int) -> AmountQuoteResponse:
    investment = _parse_amount(investment_amount, "investment_amount")
    try:
        tokens = _engine().calc_buy_amount(market_id, investment, outcome_index)
    except MarketMakerError as e:
        raise translate_engine_error(e)
    return AmountQuoteResponse(market_id=market_id, outcome_index=outcome_index,
                               outcome_tokens=str(tokens))


@app.get("/v1/markets/{market_id}/sell-amount")
async def sell_amount(market_id: int, return_amount: str,
                      outcome_index: int) -> AmountQuoteResponse:
    ret = _parse_amount(return_amount, "return_amount")
    try:
        tokens = _engine().calc_sell_amount(market_id, ret, outcome_index)
    except MarketMakerError as e:
        raise translate_engine_error(e)
    return AmountQuoteResponse(market_id=market_id, outcome_index=outcome_index,
                               outcome_tokens=str(tokens))


@app.post("/v1/markets/{market_id}/buy")
async def buy(market_id: int, req: BuyRequest) -> FPMMTradeResult:
    investment = _parse_amount(req.investment_amount, "investment_amount")
    min_tokens = _parse_amount(req.min_outcome_tokens_to_buy,
                               "min_outcome_tokens_to_buy")

    async with app.state.lock:
        engine = _engine()
        try:
            bought = engine.buy(market_id, req.buyer, investment,
                                req.outcome_index, min_tokens)
        except MarketMakerError as e:
            raise translate_engine_error(e)
        _save()

    return FPMMTradeResult(
        market_id=market_id,
        outcome_index=req.outcome_index,
        outcome_tokens=str(bought),
        pool_balances=[str(b) for b in engine.pool_balances(market_id)],
    )


@app.post("/v1/markets/{market_id}/sell")
async def sell(market_id: int, req: SellRequest) -> FPMMTradeResult:
    ret = _parse_amount(req.return_amount, "return_amount")
    max_tokens = _parse_amount(req.max_outcome_tokens_to_sell,
                               "max_outcome_tokens_to_sell")

    async with app.state.lock:
        engine = _engine()
        try:
            sold = engine.sell(market_id, req.seller, ret,
                               req.outcome_index, max_tokens)
        except MarketMakerError as e:
            raise translate_engine_error(e)
        _save()

    return FPMMTradeResult(
        market_id=market_id,
        outcome_index=req.outcome_index,
        outcome_tokens=str(sold),
        pool_balances=[str(b) for b in engine.pool_balances(market_id)],
    )


@app.post("/v1/markets/{market_id}/funding")
async def add_funding(market_id: int,
                      req: AddFundingRequest) -> AddFundingResponse:
    added = _parse_amount(req.added_funds, "added_funds")
    hint = [_parse_amount(h, "distribution_hint") for h in req.distribution_hint]

    async with app.state.lock:
        engine = _engine()
        try:
            minted = engine.add_funding(market_id, req.funder, added,
                                        distribution_hint=hint)
        except MarketMakerError as e:
            raise translate_engine_error(e)
        _save()

    return AddFundingResponse(
        market_id=market_id,
        shares_minted=str(minted),
        total_shares=str(engine.get_market(market_id).total_shares),
    )


@app.post("/v1/markets/{market_id}/funding/remove")
async def remove_funding(market_id: int,
                         req: RemoveFundingRequest) -> RemoveFundingResponse:
    shares = _parse_amount(req.shares_to_burn, "shares_to_burn")

    async with app.state.lock:
        engine = _engine()
        try:
            sent = engine.remove_funding(market_id, req.funder, shares)
        except MarketMakerError as e:
            raise translate_engine_error(e)
        _save()

    return RemoveFundingResponse(
        market_id=market_id,
        amounts_removed=[str(a) for a in sent],
        total_shares=str(engine.get_market(market_id).total_shares),
    )


@app.get("/v1/markets/{market_id}/fees/{account}")
async def fees_withdrawable(market_id: int, account: str) -> FeesResponse:
    try:
        amount = _engine().fees_withdrawable_by(market_id, account)
    except MarketMakerError as e:
        raise translate_engine_error(e)
    return FeesResponse(market_id=market_id, account=account,
                        withdrawable=str(amount))


@app.post("/v1/markets/{market_id}/shares/transfer")
async def transfer_shares(market_id: int, req: TransferSharesRequest) -> dict:
    amount = _parse_amount(req.amount, "amount")
    async with app.state.lock:
        engine = _engine()
        try:
            engine.transfer_shares(market_id, req.sender, req.recipient, amount)
        except MarketMakerError as e:
            raise translate_engine_error(e)
        _save()
    return {
        "market_id": market_id,
        "sender": req.sender,
        "recipient": req.recipient,
        "amount": str(amount),
    }
