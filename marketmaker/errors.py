"""
Engine error taxonomy.

Every error carries a machine-readable `code` (the error kind). Messages
are for logs only; presentation belongs to the calling layer (see
api_errors.translate_engine_error).

Families:
  ConfigurationError: rejected at market creation
  LifecycleError: wrong market state for the operation
  NumericError: fixed-point overflow, domain, division by zero
  SlippageError: caller-supplied limit not met
  InvalidRequest: malformed arguments (amounts, outcome index)
  ResourceError: collateral/position balance, allowance, ownership
"""


class MarketMakerError(Exception):
    code = "market_maker_error"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigurationError(MarketMakerError):
    code = "invalid_configuration"


class InvalidConditions(ConfigurationError):
    code = "invalid_conditions"


class InvalidFee(ConfigurationError):
    code = "invalid_fee"


class OutcomeCountMismatch(ConfigurationError):
    code = "outcome_count_mismatch"


class InvalidDistributionHint(ConfigurationError):
    code = "invalid_distribution_hint"


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class LifecycleError(MarketMakerError):
    code = "invalid_state"


class MarketNotFound(LifecycleError):
    code = "market_not_found"


class MarketClosed(LifecycleError):
    code = "market_closed"


class AlreadyClosed(LifecycleError):
    code = "already_closed"


class AlreadyFunded(LifecycleError):
    code = "already_funded"


class NotFunded(LifecycleError):
    code = "not_funded"


class InsufficientShares(LifecycleError):
    code = "insufficient_shares"


class ReentrantCall(LifecycleError):
    code = "reentrant_call"


class WrongMarketType(LifecycleError):
    code = "wrong_market_type"


# ---------------------------------------------------------------------------
# Numeric
# ---------------------------------------------------------------------------

class NumericError(MarketMakerError):
    code = "numeric_error"


class Overflow(NumericError):
    code = "overflow"


class DivisionByZero(NumericError):
    code = "division_by_zero"


class DomainError(NumericError):
    code = "domain_error"


class InsufficientLiquidity(NumericError):
    code = "insufficient_liquidity"


class InvariantViolation(NumericError):
    code = "invariant_violation"


# ---------------------------------------------------------------------------
# Slippage
# ---------------------------------------------------------------------------

class SlippageError(MarketMakerError):
    code = "slippage"


class CostAboveLimit(SlippageError):
    code = "cost_above_limit"


class ProceedsBelowLimit(SlippageError):
    code = "proceeds_below_limit"


class SlippageExceeded(SlippageError):
    code = "slippage_exceeded"


# ---------------------------------------------------------------------------
# Request arguments
# ---------------------------------------------------------------------------

class InvalidRequest(MarketMakerError):
    code = "invalid_request"


class InvalidAmount(InvalidRequest):
    code = "invalid_amount"


class InvalidOutcomeIndex(InvalidRequest):
    code = "invalid_outcome"


# ---------------------------------------------------------------------------
# Resources (surfaced from the collateral token / position ledger)
# ---------------------------------------------------------------------------

class ResourceError(MarketMakerError):
    code = "resource_error"


class InsufficientBalance(ResourceError):
    code = "insufficient_balance"


class InsufficientAllowance(ResourceError):
    code = "insufficient_allowance"


class Unauthorized(ResourceError):
    code = "unauthorized"
