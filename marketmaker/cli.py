#!/usr/bin/env python3
"""
Market maker CLI. Every invocation: lock → load → execute → save → unlock.

Usage:
    marketmaker deposit ACCOUNT AMOUNT
    marketmaker prepare-condition ORACLE QUESTION_ID OUTCOME_SLOTS
    marketmaker approve OWNER SPENDER AMOUNT
    marketmaker approve-positions OWNER OPERATOR [--revoke]
    marketmaker split ACCOUNT AMOUNT CONDITION_ID...
    marketmaker merge ACCOUNT AMOUNT CONDITION_ID...

    marketmaker create-lmsr CREATOR FEE CONDITION_ID... [--funding N]
    marketmaker fund MARKET_ID FUNDER FUNDING
    marketmaker quote MARKET_ID AMOUNT...
    marketmaker trade MARKET_ID TRADER AMOUNT... [--limit N]
    marketmaker prices MARKET_ID
    marketmaker close MARKET_ID CALLER

    marketmaker create-fpmm CREATOR FEE CONDITION_ID... [--funds N] [--hint H...]
    marketmaker buy MARKET_ID BUYER INVESTMENT OUTCOME_INDEX [--min N]
    marketmaker sell MARKET_ID SELLER RETURN OUTCOME_INDEX --max N
    marketmaker add-funding MARKET_ID FUNDER AMOUNT [--hint H...]
    marketmaker remove-funding MARKET_ID FUNDER SHARES
    marketmaker fees MARKET_ID ACCOUNT
    marketmaker withdraw-fees MARKET_ID ACCOUNT
    marketmaker transfer-shares MARKET_ID SENDER RECIPIENT AMOUNT

    marketmaker account ACCOUNT
    marketmaker market MARKET_ID
    marketmaker markets

Amounts are integers in base units; trade amounts may be negative (sell).
Output: JSON, one line. {"ok": true, ...} or {"ok": false, "error": "...", "code": "..."}
State: MARKETMAKER_STATE env var, default ./marketmaker_state.json
"""

import argparse
import fcntl
import json
import logging
import os
import sys
from contextlib import contextmanager

from marketmaker import config
from marketmaker.fixed_math import to_decimal
from marketmaker.ledger import LEDGER_ACCOUNT
from marketmaker.market_engine import MarketEngine, create_engine
from marketmaker.models import FPMMMarket, LMSRMarket, reset_counters
from marketmaker.persistence import save_snapshot, load_snapshot

logger = logging.getLogger(__name__)


@contextmanager
def file_lock(path):
    """Exclusive file lock. Prevents concurrent CLI invocations from corrupting state."""
    lock_path = path + ".lock"
    f = open(lock_path, "w")
    try:
        fcntl.flock(f, fcntl.LOCK_EX)
        yield
    finally:
        fcntl.flock(f, fcntl.LOCK_UN)
        f.close()


def load_or_create(path) -> MarketEngine:
    if os.path.exists(path):
        return load_snapshot(path)
    reset_counters()
    return create_engine()


def reply(data):
    print(json.dumps(data))


def _amounts(values) -> list[str]:
    return [str(v) for v in values]


# ---------------------------------------------------------------------------
# Collateral and positions
# ---------------------------------------------------------------------------

def cmd_deposit(me, args):
    me.collateral.deposit(args.account, args.amount)
    return {"ok": True, "account": args.account,
            "collateral": str(me.collateral.balance_of(args.account))}


def cmd_prepare_condition(me, args):
    cid = me.positions.prepare_condition(
        args.oracle, args.question_id, args.outcome_slots)
    return {"ok": True, "condition_id": cid,
            "outcome_slot_count": args.outcome_slots}


def cmd_approve(me, args):
    me.collateral.approve(args.owner, args.spender, args.amount)
    return {"ok": True, "owner": args.owner, "spender": args.spender,
            "allowance": str(args.amount)}


def cmd_approve_positions(me, args):
    me.positions.set_approval_for_all(args.owner, args.operator,
                                      not args.revoke)
    return {"ok": True, "owner": args.owner, "operator": args.operator,
            "approved": not args.revoke}


def cmd_split(me, args):
    me.collateral.approve(args.account, LEDGER_ACCOUNT, args.amount)
    ids = me.positions.split_position(args.account, args.condition_ids,
                                      args.amount)
    return {"ok": True, "account": args.account, "position_ids": ids}


def cmd_merge(me, args):
    ids = me.positions.merge_positions(args.account, args.condition_ids,
                                       args.amount)
    return {"ok": True, "account": args.account, "position_ids": ids}


# ---------------------------------------------------------------------------
# LMSR
# ---------------------------------------------------------------------------

def cmd_create_lmsr(me, args):
    market = me.create_lmsr_market(args.creator, args.condition_ids,
                                   args.fee, funding=args.funding)
    return {"ok": True, "market_id": market.id, "account": market.account,
            "position_ids": market.position_ids}


def cmd_fund(me, args):
    me.fund(args.market_id, args.funder, args.funding)
    return {"ok": True, "market_id": args.market_id,
            "funding": str(args.funding)}


def cmd_quote(me, args):
    net = me.calc_net_cost(args.market_id, args.amounts)
    fee = me.calc_market_fee(args.market_id, net)
    return {"ok": True, "net_cost": str(net), "fee": str(fee),
            "total": str(net + fee)}


def cmd_trade(me, args):
    net = me.trade(args.market_id, args.trader, args.amounts,
                   collateral_limit=args.limit)
    return {"ok": True, "market_id": args.market_id, "net_cost": str(net),
            "fee": str(me.calc_market_fee(args.market_id, net))}


def cmd_prices(me, args):
    prices = me.marginal_prices(args.market_id)
    return {"ok": True, "market_id": args.market_id,
            "prices": [str(to_decimal(p)) for p in prices]}


def cmd_close(me, args):
    inventory = me.close(args.market_id, args.caller)
    return {"ok": True, "market_id": args.market_id,
            "inventory": _amounts(inventory)}


# ---------------------------------------------------------------------------
# FPMM
# ---------------------------------------------------------------------------

def cmd_create_fpmm(me, args):
    market = me.create_fpmm_market(args.creator, args.condition_ids,
                                   args.fee, initial_funds=args.funds,
                                   distribution_hint=args.hint)
    return {"ok": True, "market_id": market.id, "account": market.account,
            "position_ids": market.position_ids,
            "total_shares": str(market.total_shares)}


def cmd_buy(me, args):
    bought = me.buy(args.market_id, args.buyer, args.investment,
                    args.outcome_index, args.min)
    return {"ok": True, "market_id": args.market_id,
            "outcome_tokens_bought": str(bought)}


def cmd_sell(me, args):
    sold = me.sell(args.market_id, args.seller, args.return_amount,
                   args.outcome_index, args.max)
    return {"ok": True, "market_id": args.market_id,
            "outcome_tokens_sold": str(sold)}


def cmd_add_funding(me, args):
    minted = me.add_funding(args.market_id, args.funder, args.amount,
                            distribution_hint=args.hint)
    return {"ok": True, "market_id": args.market_id,
            "shares_minted": str(minted),
            "total_shares": str(me.get_market(args.market_id).total_shares)}


def cmd_remove_funding(me, args):
    sent = me.remove_funding(args.market_id, args.funder, args.shares)
    return {"ok": True, "market_id": args.market_id,
            "amounts_removed": _amounts(sent)}


def cmd_fees(me, args):
    amount = me.fees_withdrawable_by(args.market_id, args.account)
    return {"ok": True, "market_id": args.market_id,
            "withdrawable": str(amount)}


def cmd_transfer_shares(me, args):
    me.transfer_shares(args.market_id, args.sender, args.recipient, args.amount)
    return {"ok": True, "market_id": args.market_id,
            "sender_shares": str(me.share_balance(args.market_id, args.sender)),
            "recipient_shares": str(
                me.share_balance(args.market_id, args.recipient))}


def cmd_withdraw_fees(me, args):
    market = me.get_market(args.market_id)
    if isinstance(market, LMSRMarket):
        amount = me.withdraw_lmsr_fees(args.market_id, args.account)
    else:
        amount = me.withdraw_fees(args.market_id, args.account)
    return {"ok": True, "market_id": args.market_id, "amount": str(amount)}


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def cmd_account(me, args):
    held = me.positions.balances.get(args.account, {})
    shares = {
        str(m.id): str(m.share_balance(args.account))
        for m in me.markets.values()
        if isinstance(m, FPMMMarket) and m.share_balance(args.account) > 0
    }
    return {"ok": True, "account": args.account,
            "collateral": str(me.collateral.balance_of(args.account)),
            "positions": {pid: str(v) for pid, v in held.items() if v},
            "shares": shares}


def cmd_market(me, args):
    market = me.get_market(args.market_id)
    result = {"ok": True, "market_id": market.id, "type": market.type,
              "account": market.account,
              "condition_ids": market.condition_ids,
              "fee": str(market.fee),
              "pool_balances": _amounts(me.pool_balances(market.id))}
    if isinstance(market, LMSRMarket):
        result.update(
            owner=market.owner,
            stage=market.stage.value,
            funding=str(market.funding),
            net_outcome_tokens_sold=_amounts(market.net_outcome_tokens_sold),
        )
    else:
        result.update(
            creator=market.creator,
            status=market.status.value,
            total_shares=str(market.total_shares),
            collected_fees=str(market.collected_fees),
        )
    return result


def cmd_markets(me, args):
    result = []
    for m in me.markets.values():
        status = m.stage if isinstance(m, LMSRMarket) else m.status
        result.append({
            "market_id": m.id,
            "type": m.type,
            "status": status.value,
            "outcome_count": m.outcome_count,
        })
    return {"ok": True, "markets": result}


# Commands that mutate state (need save after)
MUTATING = {"deposit", "prepare-condition", "approve", "approve-positions",
            "split", "merge", "create-lmsr", "fund", "trade", "close",
            "create-fpmm", "buy", "sell", "add-funding", "remove-funding",
            "withdraw-fees", "transfer-shares"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Market maker CLI")
    parser.add_argument("--state", default=config.STATE_PATH,
                        help="Path to state file")
    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("deposit")
    p.add_argument("account")
    p.add_argument("amount", type=int)

    p = sub.add_parser("prepare-condition")
    p.add_argument("oracle")
    p.add_argument("question_id")
    p.add_argument("outcome_slots", type=int)

    p = sub.add_parser("approve")
    p.add_argument("owner")
    p.add_argument("spender")
    p.add_argument("amount", type=int)

    p = sub.add_parser("approve-positions")
    p.add_argument("owner")
    p.add_argument("operator")
    p.add_argument("--revoke", action="store_true")

    for name in ("split", "merge"):
        p = sub.add_parser(name)
        p.add_argument("account")
        p.add_argument("amount", type=int)
        p.add_argument("condition_ids", nargs="+")

    p = sub.add_parser("create-lmsr")
    p.add_argument("creator")
    p.add_argument("fee", type=int, help="Fee on the 1e18 scale")
    p.add_argument("condition_ids", nargs="+")
    p.add_argument("--funding", type=int, default=None)

    p = sub.add_parser("fund")
    p.add_argument("market_id", type=int)
    p.add_argument("funder")
    p.add_argument("funding", type=int)

    p = sub.add_parser("quote")
    p.add_argument("market_id", type=int)
    p.add_argument("amounts", type=int, nargs="+")

    p = sub.add_parser("trade")
    p.add_argument("market_id", type=int)
    p.add_argument("trader")
    p.add_argument("amounts", type=int, nargs="+")
    p.add_argument("--limit", type=int, default=None,
                   help="Max cost (or, negative, min proceeds)")

    p = sub.add_parser("prices")
    p.add_argument("market_id", type=int)

    p = sub.add_parser("close")
    p.add_argument("market_id", type=int)
    p.add_argument("caller")

    p = sub.add_parser("create-fpmm")
    p.add_argument("creator")
    p.add_argument("fee", type=int, help="Fee on the 1e18 scale")
    p.add_argument("condition_ids", nargs="+")
    p.add_argument("--funds", type=int, default=None)
    p.add_argument("--hint", type=int, nargs="+", default=[])

    p = sub.add_parser("buy")
    p.add_argument("market_id", type=int)
    p.add_argument("buyer")
    p.add_argument("investment", type=int)
    p.add_argument("outcome_index", type=int)
    p.add_argument("--min", type=int, default=0)

    p = sub.add_parser("sell")
    p.add_argument("market_id", type=int)
    p.add_argument("seller")
    p.add_argument("return_amount", type=int)
    p.add_argument("outcome_index", type=int)
    p.add_argument("--max", type=int, required=True)

    p = sub.add_parser("add-funding")
    p.add_argument("market_id", type=int)
    p.add_argument("funder")
    p.add_argument("amount", type=int)
    p.add_argument("--hint", type=int, nargs="+", default=[])

    p = sub.add_parser("remove-funding")
    p.add_argument("market_id", type=int)
    p.add_argument("funder")
    p.add_argument("shares", type=int)

    for name in ("fees", "withdraw-fees"):
        p = sub.add_parser(name)
        p.add_argument("market_id", type=int)
        p.add_argument("account")

    p = sub.add_parser("transfer-shares")
    p.add_argument("market_id", type=int)
    p.add_argument("sender")
    p.add_argument("recipient")
    p.add_argument("amount", type=int)

    p = sub.add_parser("account")
    p.add_argument("account")

    p = sub.add_parser("market")
    p.add_argument("market_id", type=int)

    sub.add_parser("markets")
    return parser


COMMANDS = {
    "deposit": cmd_deposit,
    "prepare-condition": cmd_prepare_condition,
    "approve": cmd_approve,
    "approve-positions": cmd_approve_positions,
    "split": cmd_split,
    "merge": cmd_merge,
    "create-lmsr": cmd_create_lmsr,
    "fund": cmd_fund,
    "quote": cmd_quote,
    "trade": cmd_trade,
    "prices": cmd_prices,
    "close": cmd_close,
    "create-fpmm": cmd_create_fpmm,
    "buy": cmd_buy,
    "sell": cmd_sell,
    "add-funding": cmd_add_funding,
    "remove-funding": cmd_remove_funding,
    "fees": cmd_fees,
    "withdraw-fees": cmd_withdraw_fees,
    "transfer-shares": cmd_transfer_shares,
    "account": cmd_account,
    "market": cmd_market,
    "markets": cmd_markets,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    config.setup_logging()
    state_path = args.state

    try:
        with file_lock(state_path):
            me = load_or_create(state_path)
            result = COMMANDS[args.command](me, args)

            if args.command in MUTATING:
                save_snapshot(me, state_path)

            reply(result)
    except Exception as e:
        logger.debug("command %s failed", args.command, exc_info=True)
        reply({"ok": False, "error": str(e),
               "code": getattr(e, "code", "error")})
        sys.exit(1)


if __name__ == "__main__":
    main()
