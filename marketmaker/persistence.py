"""
Persistence layer. JSON snapshot + atomic writes.

The snapshot contains the complete engine state:
  - collateral token: balances, allowances, total supply
  - position ledger: prepared conditions, balances, operator approvals
  - markets: configuration plus LMSR / FPMM bookkeeping
  - ID counters (so IDs resume correctly after restart)

Receiver hooks and event subscribers are runtime wiring and are not
persisted. Amounts are plain JSON integers; Python reads them back
without loss of precision.

Atomic write: write to .tmp, then os.replace. A crash mid-write
leaves the previous snapshot intact.
"""

import dataclasses
import json
import logging
import os
from enum import Enum

from marketmaker.ledger import CollateralToken, PositionLedger
from marketmaker.market_engine import MarketEngine
from marketmaker.models import (
    FPMMMarket, LMSRMarket, Market, Stage, _counters, reset_counters,
    set_counter,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def _serialize(obj):
    """Recursively serialize dataclasses, enums and sets to JSON-safe types."""
    if isinstance(obj, Enum):
        return obj.value
    if dataclasses.is_dataclass(obj):
        return {
            f.name: _serialize(getattr(obj, f.name))
            for f in dataclasses.fields(obj)
        }
    if isinstance(obj, (set, frozenset)):
        return sorted(_serialize(item) for item in obj)
    if isinstance(obj, (list, tuple)):
        return [_serialize(item) for item in obj]
    if isinstance(obj, dict):
        return {str(k): _serialize(v) for k, v in obj.items()}
    return obj


def _serialize_collateral(token: CollateralToken) -> dict:
    return {
        "symbol": token.symbol,
        "balances": dict(token.balances),
        "allowances": _serialize(token.allowances),
        "total_supply": token.total_supply,
    }


def _serialize_positions(ledger: PositionLedger) -> dict:
    return {
        "conditions": dict(ledger.conditions),
        "balances": _serialize(ledger.balances),
        "operators": _serialize(ledger.operators),
    }


# ---------------------------------------------------------------------------
# Deserialization helpers
# ---------------------------------------------------------------------------

def _load_lmsr_market(d: dict) -> LMSRMarket:
    return LMSRMarket(
        id=d["id"],
        owner=d["owner"],
        collateral=d["collateral"],
        condition_ids=list(d["condition_ids"]),
        fee=d["fee"],
        position_ids=list(d["position_ids"]),
        funding=d["funding"],
        net_outcome_tokens_sold=list(d["net_outcome_tokens_sold"]),
        stage=Stage(d["stage"]),
        created_at=d["created_at"],
        closed_at=d.get("closed_at"),
    )


def _load_fpmm_market(d: dict) -> FPMMMarket:
    return FPMMMarket(
        id=d["id"],
        creator=d["creator"],
        collateral=d["collateral"],
        condition_ids=list(d["condition_ids"]),
        fee=d["fee"],
        position_ids=list(d["position_ids"]),
        total_shares=d["total_shares"],
        share_balances=dict(d["share_balances"]),
        withdrawn_fees=dict(d["withdrawn_fees"]),
        fee_pool_weight=d["fee_pool_weight"],
        total_withdrawn_fees=d["total_withdrawn_fees"],
        created_at=d["created_at"],
    )


_MARKET_LOADERS = {
    "lmsr": _load_lmsr_market,
    "fpmm": _load_fpmm_market,
}


def _load_market(d: dict) -> Market:
    loader = _MARKET_LOADERS.get(d["type"])
    if loader is None:
        raise ValueError(f"unknown market type {d['type']!r}")
    return loader(d)


def _load_collateral(d: dict) -> CollateralToken:
    token = CollateralToken(d["symbol"])
    token.balances = dict(d["balances"])
    token.allowances = {
        owner: dict(spenders) for owner, spenders in d["allowances"].items()
    }
    token.total_supply = d["total_supply"]
    return token


def _load_positions(d: dict, collateral: CollateralToken) -> PositionLedger:
    ledger = PositionLedger(collateral)
    ledger.conditions = dict(d["conditions"])
    ledger.balances = {
        account: dict(held) for account, held in d["balances"].items()
    }
    ledger.operators = {
        owner: set(ops) for owner, ops in d["operators"].items()
    }
    return ledger


# ---------------------------------------------------------------------------
# Schema versioning
# ---------------------------------------------------------------------------

CURRENT_VERSION = 1

_MIGRATIONS: dict[int, callable] = {}


def _apply_migrations(state: dict) -> dict:
    """Bring state to CURRENT_VERSION, refusing snapshots from the future."""
    version = state.get("version", 1)
    if version > CURRENT_VERSION:
        raise ValueError(
            f"snapshot version {version} is newer than {CURRENT_VERSION}")
    while version < CURRENT_VERSION:
        migrate = _MIGRATIONS.get(version)
        if migrate is None:
            raise ValueError(
                f"no migration from version {version} to {version + 1}")
        state = migrate(state)
        version = state["version"]
    return state


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def save_snapshot(engine: MarketEngine, path: str) -> None:
    """
    Save the complete engine state to a JSON file.
    Atomic: writes to .tmp then renames.
    """
    state = {
        "version": CURRENT_VERSION,
        "counters": dict(_counters),
        "collateral": _serialize_collateral(engine.collateral),
        "positions": _serialize_positions(engine.positions),
        "markets": [_serialize(m) for m in engine.markets.values()],
    }
    tmp = path + ".tmp"
    with open(tmp, "w") as f:
        json.dump(state, f, indent=2)
    os.replace(tmp, path)
    logger.debug("snapshot saved to %s (%d markets)", path,
                 len(engine.markets))


def load_snapshot(path: str) -> MarketEngine:
    """
    Load engine state from a JSON snapshot.
    Applies migrations automatically if the snapshot is an older version.
    Returns a MarketEngine ready to use.
    """
    with open(path) as f:
        state = json.load(f)

    state = _apply_migrations(state)

    # Restore ID counters
    reset_counters()
    for kind, value in state["counters"].items():
        set_counter(kind, value)

    collateral = _load_collateral(state["collateral"])
    positions = _load_positions(state["positions"], collateral)

    engine = MarketEngine(collateral, positions)
    for mdata in state["markets"]:
        market = _load_market(mdata)
        engine.markets[market.id] = market

    logger.info("snapshot loaded from %s (%d markets)", path,
                len(engine.markets))
    return engine
