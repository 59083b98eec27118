"""
Fixed product market maker: pure math, no state.

Pool balances are the market's inventory of each atomic position. The
invariant is the product of all balances: a trade may never decrease it.

Buying outcome k with investment I (fee f):
    I' = I - I * f               collateral that reaches the pool
    every balance grows by I'    (I' is split into full sets)
    k shrinks until the product is restored; the difference goes to
    the trader.

Selling outcome k for return R:
    R' = R / (1 - f)             return plus fee
    every balance shrinks by R'  (R' full sets are merged)
    the trader adds outcome k until the product is restored.

Every intermediate division rounds up, in favour of the pool. All
amounts are integers in base units; fees are scaled by FEE_ONE.
"""

from math import prod

from marketmaker.errors import (
    InsufficientLiquidity, InvalidAmount, InvalidDistributionHint,
    InvalidOutcomeIndex,
)
from marketmaker.models import FEE_ONE


def ceildiv(x: int, y: int) -> int:
    if x > 0:
        return (x - 1) // y + 1
    return x // y


def pool_product(balances: list[int]) -> int:
    return prod(balances)


def _check_outcome(balances: list[int], outcome_index: int) -> None:
    if not 0 <= outcome_index < len(balances):
        raise InvalidOutcomeIndex(
            f"outcome index {outcome_index} out of range "
            f"(0..{len(balances) - 1})")


# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------

def buy_fee(investment_amount: int, fee: int) -> int:
    return investment_amount * fee // FEE_ONE


def sell_fee(return_amount: int, fee: int) -> int:
    return return_amount * fee // (FEE_ONE - fee)


# ---------------------------------------------------------------------------
# Trading
# ---------------------------------------------------------------------------

def calc_buy_amount(balances: list[int], investment_amount: int,
                    outcome_index: int, fee: int) -> int:
    """Outcome tokens received for `investment_amount` of collateral."""
    _check_outcome(balances, outcome_index)
    if investment_amount < 0:
        raise InvalidAmount("investment amount must be non-negative")

    invested = investment_amount - buy_fee(investment_amount, fee)
    target = balances[outcome_index]
    ending = target * FEE_ONE
    for i, balance in enumerate(balances):
        if i != outcome_index:
            ending = ceildiv(ending * balance, balance + invested)
    if ending <= 0:
        raise InsufficientLiquidity("pool has no liquidity")
    return target + invested - ceildiv(ending, FEE_ONE)


def calc_sell_amount(balances: list[int], return_amount: int,
                     outcome_index: int, fee: int) -> int:
    """Outcome tokens the trader must surrender to receive `return_amount`."""
    _check_outcome(balances, outcome_index)
    if return_amount < 0:
        raise InvalidAmount("return amount must be non-negative")

    return_plus_fees = return_amount * FEE_ONE // (FEE_ONE - fee)
    target = balances[outcome_index]
    ending = target * FEE_ONE
    for i, balance in enumerate(balances):
        if i != outcome_index:
            if balance <= return_plus_fees:
                raise InsufficientLiquidity(
                    f"return {return_amount} exceeds pool balance {balance}")
            ending = ceildiv(ending * balance, balance - return_plus_fees)
    return return_plus_fees + ceildiv(ending, FEE_ONE) - target


# ---------------------------------------------------------------------------
# Funding
# ---------------------------------------------------------------------------

def _validate_hint(hint: list[int], n: int) -> None:
    if len(hint) != n:
        raise InvalidDistributionHint(
            f"hint has {len(hint)} entries, market has {n} outcomes")
    if any(h < 0 for h in hint):
        raise InvalidDistributionHint("hint entries must be non-negative")
    if max(hint) == 0:
        raise InvalidDistributionHint("hint must not be all zero")


def calc_funding(balances: list[int], total_shares: int, added_funds: int,
                 distribution_hint: list[int] = ()
                 ) -> tuple[list[int], list[int], int]:
    """
    Split `added_funds` full sets between pool and funder.

    Returns (amounts_added, send_back, shares_minted).

    Existing pool: each balance grows in proportion to its size relative
    to the largest balance, so prices are preserved; shares minted are
    proportional to added / max(balance). The hint is validated and then
    ignored: the result never depends on it.

    Empty pool: shares minted == added_funds. A hint sets the initial
    odds, outcome i receiving added * hint[i] / max(hint); without one
    every outcome receives the full amount.
    """
    if added_funds <= 0:
        raise InvalidAmount("funding must be positive")
    n = len(balances)
    hint = list(distribution_hint)
    if hint:
        _validate_hint(hint, n)

    if total_shares > 0:
        pool_weight = max(balances)
        if pool_weight == 0:
            raise InsufficientLiquidity("pool has shares but no inventory")
        amounts_added = [added_funds * b // pool_weight for b in balances]
        minted = added_funds * total_shares // pool_weight
    elif hint:
        hint_max = max(hint)
        amounts_added = [added_funds * h // hint_max for h in hint]
        if any(a == 0 for a in amounts_added):
            raise InvalidDistributionHint(
                "hint leaves an outcome without initial liquidity")
        minted = added_funds
    else:
        amounts_added = [added_funds] * n
        minted = added_funds

    send_back = [added_funds - a for a in amounts_added]
    return amounts_added, send_back, minted


def calc_removal(balances: list[int], total_shares: int,
                 shares_to_burn: int) -> list[int]:
    """Pro-rata slice of every pool balance for `shares_to_burn`."""
    if total_shares == 0:
        return [0] * len(balances)
    return [b * shares_to_burn // total_shares for b in balances]
