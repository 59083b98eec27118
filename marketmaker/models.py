"""
Data models for the market maker.

Two market kinds share one registry (MarketEngine.markets):
- LMSRMarket: cost-function market, funded once, closed once
- FPMMMarket: fixed-product pool with fungible pool shares

Pool inventory is not stored on the market. It lives in the position
ledger under the market's pool account ("market:<id>"). A market record
holds its fixed configuration plus the accounting the ledger knows
nothing about: LMSR quantities sold, FPMM share and fee bookkeeping.

All amounts are integers in base units. Fee rates are scaled by
FEE_ONE (10**18 == 100%).
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


FEE_ONE = 10 ** 18


# ---------------------------------------------------------------------------
# Sequential IDs
# ---------------------------------------------------------------------------

_counters: dict[str, int] = defaultdict(int)


def next_id(kind: str) -> int:
    """Sequential ID. Kinds: market."""
    _counters[kind] += 1
    return _counters[kind]


def reset_counters() -> None:
    """Reset all counters. For testing."""
    _counters.clear()


def set_counter(kind: str, value: int) -> None:
    """Set a counter. For loading persisted state."""
    _counters[kind] = value


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def pool_account(market_id: int) -> str:
    """Ledger account that holds a market's inventory and fee collateral."""
    return f"market:{market_id}"


class Stage(str, Enum):
    RUNNING = "running"
    CLOSED = "closed"


class PoolStatus(str, Enum):
    UNFUNDED = "unfunded"
    FUNDED = "funded"


# ---------------------------------------------------------------------------
# LMSR
# ---------------------------------------------------------------------------

@dataclass
class LMSRMarket:
    """
    Logarithmic market scoring rule market.

    funding: collateral committed by the owner; b = funding / ln(n).
             0 until fund() runs, immutable afterwards.
    net_outcome_tokens_sold: signed q_i per atomic position.
    position_ids: ledger ids of the atomic positions, first condition
                  varying fastest.
    """
    id: int
    owner: str
    collateral: str
    condition_ids: list[str]
    fee: int
    position_ids: list[str]
    funding: int = 0
    net_outcome_tokens_sold: list[int] = field(default_factory=list)
    stage: Stage = Stage.RUNNING
    type: str = "lmsr"
    created_at: str = field(default_factory=_now)
    closed_at: str | None = None

    @staticmethod
    def new(owner: str, collateral: str, condition_ids: list[str],
            fee: int, position_ids: list[str]) -> "LMSRMarket":
        return LMSRMarket(
            id=next_id("market"),
            owner=owner,
            collateral=collateral,
            condition_ids=list(condition_ids),
            fee=fee,
            position_ids=list(position_ids),
            net_outcome_tokens_sold=[0] * len(position_ids),
        )

    @property
    def account(self) -> str:
        return pool_account(self.id)

    @property
    def outcome_count(self) -> int:
        return len(self.position_ids)

    @property
    def funded(self) -> bool:
        return self.funding > 0


# ---------------------------------------------------------------------------
# FPMM
# ---------------------------------------------------------------------------

@dataclass
class FPMMMarket:
    """
    Fixed product market maker.

    Pool shares are a fungible token local to the market. Fee
    bookkeeping:
      fee_pool_weight       cumulative fee pool, adjusted on mint/burn so
                            that new shares never claim old fees
      withdrawn_fees[a]     fee credit already attributed to holder a
      total_withdrawn_fees  sum of withdrawn_fees
    collected_fees = fee_pool_weight - total_withdrawn_fees is the fee
    collateral the pool still holds.
    """
    id: int
    creator: str
    collateral: str
    condition_ids: list[str]
    fee: int
    position_ids: list[str]
    total_shares: int = 0
    share_balances: dict[str, int] = field(default_factory=dict)
    withdrawn_fees: dict[str, int] = field(default_factory=dict)
    fee_pool_weight: int = 0
    total_withdrawn_fees: int = 0
    type: str = "fpmm"
    created_at: str = field(default_factory=_now)

    @staticmethod
    def new(creator: str, collateral: str, condition_ids: list[str],
            fee: int, position_ids: list[str]) -> "FPMMMarket":
        return FPMMMarket(
            id=next_id("market"),
            creator=creator,
            collateral=collateral,
            condition_ids=list(condition_ids),
            fee=fee,
            position_ids=list(position_ids),
        )

    @property
    def account(self) -> str:
        return pool_account(self.id)

    @property
    def outcome_count(self) -> int:
        return len(self.position_ids)

    @property
    def status(self) -> PoolStatus:
        if self.total_shares > 0:
            return PoolStatus.FUNDED
        return PoolStatus.UNFUNDED

    @property
    def collected_fees(self) -> int:
        return self.fee_pool_weight - self.total_withdrawn_fees

    def share_balance(self, account: str) -> int:
        return self.share_balances.get(account, 0)


Market = LMSRMarket | FPMMMarket
