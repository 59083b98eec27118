"""
Domain events.

The engine collects events while an operation runs and publishes them
only after the operation commits. A rejected operation publishes
nothing. Each event carries the full set of deltas it applied, so an
observer can rebuild market state from the stream alone.
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketCreated:
    market_id: int
    market_type: str
    creator: str
    collateral: str
    condition_ids: tuple[str, ...]
    position_ids: tuple[str, ...]
    fee: int


@dataclass(frozen=True)
class LMSRFunded:
    market_id: int
    funder: str
    funding: int


@dataclass(frozen=True)
class OutcomeTokenTrade:
    market_id: int
    transactor: str
    outcome_token_amounts: tuple[int, ...]
    outcome_token_net_cost: int
    market_fees: int


@dataclass(frozen=True)
class MarketClosed:
    market_id: int
    owner: str
    inventory: tuple[int, ...]


@dataclass(frozen=True)
class FeesWithdrawn:
    market_id: int
    account: str
    amount: int


@dataclass(frozen=True)
class FundingAdded:
    market_id: int
    funder: str
    amounts_added: tuple[int, ...]
    shares_minted: int
    total_shares: int


@dataclass(frozen=True)
class FundingRemoved:
    market_id: int
    funder: str
    amounts_removed: tuple[int, ...]
    collateral_removed_from_fee_pool: int
    shares_burnt: int
    total_shares: int


@dataclass(frozen=True)
class FPMMBuy:
    market_id: int
    buyer: str
    investment_amount: int
    fee_amount: int
    outcome_index: int
    outcome_tokens_bought: int


@dataclass(frozen=True)
class FPMMSell:
    market_id: int
    seller: str
    return_amount: int
    fee_amount: int
    outcome_index: int
    outcome_tokens_sold: int


@dataclass(frozen=True)
class SharesTransferred:
    market_id: int
    sender: str
    recipient: str
    amount: int


Event = (MarketCreated | LMSRFunded | OutcomeTokenTrade | MarketClosed
         | FeesWithdrawn | FundingAdded | FundingRemoved | FPMMBuy
         | FPMMSell | SharesTransferred)


def event_to_dict(event: Event) -> dict:
    data = dataclasses.asdict(event)
    data["event"] = type(event).__name__
    return data


class EventBus:
    """Synchronous fan-out to subscribers, with an in-memory history."""

    def __init__(self):
        self.subscribers: list[Callable[[Event], None]] = []
        self.history: list[Event] = []

    def subscribe(self, handler: Callable[[Event], None]) -> None:
        self.subscribers.append(handler)

    def unsubscribe(self, handler: Callable[[Event], None]) -> None:
        self.subscribers.remove(handler)

    def publish(self, event: Event) -> None:
        logger.debug("event %s", event)
        self.history.append(event)
        for handler in list(self.subscribers):
            handler(event)

    def for_market(self, market_id: int) -> list[Event]:
        return [e for e in self.history if e.market_id == market_id]
