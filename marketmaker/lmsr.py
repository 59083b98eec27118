"""
LMSR (Logarithmic Market Scoring Rule): pure math, no state.

All functions take integers and return integers. Quantities and funding
are in base units; probabilities and raw cost values are fixed point
(fixed_math.ONE == 1.0). The caller (market engine) handles state,
transfers and persistence.

Notation:
    q: net outcome tokens sold per atomic position (signed)
    funding: collateral committed by the owner
    b = funding / ln(n): liquidity parameter, max loss == funding

    C(q) = b * ln(Σ e^(q_i / b))
    p_i  = e^(q_i / b) / Σ e^(q_j / b)

The largest exponent is subtracted before exponentiating (log-sum-exp),
so exp is only ever evaluated at arguments <= 0.

ln(n) is taken once at MIDPOINT and used as the exact definition of b.
Cost bounds then only depend on the rounding of exponents, exp and ln,
each of which is pushed in the requested direction.
"""

from marketmaker import fixed_math
from marketmaker.fixed_math import EstimationMode, ONE
from marketmaker.models import FEE_ONE


UPPER = EstimationMode.UPPER_BOUND
LOWER = EstimationMode.LOWER_BOUND
MIDPOINT = EstimationMode.MIDPOINT


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def ln_outcome_count(n: int) -> int:
    """ln(n) in fixed point. Defines b = funding / ln(n)."""
    return fixed_math.ln(fixed_math.to_fixed(n), MIDPOINT)


def _div(a: int, b: int, mode: EstimationMode) -> int:
    """a / b for b > 0, rounded per mode."""
    if mode is UPPER:
        return -(-a // b)
    if mode is LOWER:
        return a // b
    return (2 * a + b) // (2 * b)


def _exponents(q: list[int], funding: int, ln_n: int,
               mode: EstimationMode) -> list[int]:
    """q_i / b = q_i * ln(n) / funding, in fixed point."""
    return [_div(qi * ln_n, funding, mode) for qi in q]


def _log_sum_exp(exponents: list[int], mode: EstimationMode) -> int:
    """ln(Σ e^x_i), stabilized by the largest exponent."""
    offset = max(exponents)
    total = sum(fixed_math.exp(x - offset, mode) for x in exponents)
    return offset + fixed_math.ln(total, mode)


# ---------------------------------------------------------------------------
# Core functions
# ---------------------------------------------------------------------------

def cost(q: list[int], funding: int,
         mode: EstimationMode = MIDPOINT) -> int:
    """
    C(q) in fixed point (collateral * ONE).

    UPPER_BOUND never underestimates, LOWER_BOUND never overestimates.
    """
    if funding <= 0:
        raise ValueError("funding must be positive")
    ln_n = ln_outcome_count(len(q))
    lse = _log_sum_exp(_exponents(q, funding, ln_n, mode), mode)
    # b * lse == funding * lse / ln_n; lse and ln_n share the ONE scale
    return _div(funding * lse * ONE, ln_n, mode)


def net_cost(inventory: list[int], amounts: list[int], funding: int) -> int:
    """
    Collateral cost of moving the pool by `amounts` (positive = trader
    buys). Negative means the trader receives collateral. Fees excluded.

    Evaluated against the pool's actual inventory: every trade adds its
    cost to every inventory entry and removes amounts_i, so

        C(amounts - inventory) = C(q + amounts) - C(q) - surplus

    where surplus >= 0 is rounding already collected. One upper-bound
    evaluation, rounded up, keeps C(-inventory) <= 0 after every trade,
    which implies inventory_i >= 0: the pool can always deliver.
    """
    if not any(amounts):
        return 0
    shifted = [a - inv for a, inv in zip(amounts, inventory)]
    raw = cost(shifted, funding, UPPER)
    return -(-raw // ONE)


def marginal_prices(q: list[int], funding: int) -> list[int]:
    """All marginal prices in fixed point. Sum to ONE within n ulps."""
    if funding <= 0:
        raise ValueError("funding must be positive")
    ln_n = ln_outcome_count(len(q))
    exponents = _exponents(q, funding, ln_n, MIDPOINT)
    offset = max(exponents)
    terms = [fixed_math.exp(x - offset, MIDPOINT) for x in exponents]
    total = sum(terms)
    return [fixed_math.divide(t, total) for t in terms]


def marginal_price(q: list[int], funding: int, outcome_index: int) -> int:
    """p_i = e^(q_i / b) / Σ e^(q_j / b), fixed point in [0, ONE]."""
    return marginal_prices(q, funding)[outcome_index]


def market_fee(net: int, fee: int) -> int:
    """|net| * fee, floored. Always >= 0."""
    return abs(net) * fee // FEE_ONE
