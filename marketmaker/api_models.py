"""
Pydantic request/response models for the API.
All amounts are decimal strings of base units; they can exceed any
float or 64-bit range. Fees are strings on the FEE_ONE (1e18) scale.
"""

from pydantic import BaseModel


# --- Health / accounts ---

class HealthResponse(BaseModel):
    status: str
    markets: int
    accounts: int

class AccountResponse(BaseModel):
    account: str
    collateral: str
    positions: dict[str, str]
    shares: dict[str, str]

class BalanceResponse(BaseModel):
    account: str
    collateral: str

class ApproveRequest(BaseModel):
    spender: str
    amount: str

class ApprovePositionsRequest(BaseModel):
    operator: str
    approved: bool = True

class SplitRequest(BaseModel):
    condition_ids: list[str]
    amount: str


# --- Markets ---

class MarketSummary(BaseModel):
    market_id: int
    type: str
    status: str
    collateral: str
    account: str
    outcome_count: int
    fee: str
    created_at: str

class MarketDetail(MarketSummary):
    condition_ids: list[str]
    position_ids: list[str]
    pool_balances: list[str]
    owner: str
    # LMSR
    funding: str | None = None
    net_outcome_tokens_sold: list[str] | None = None
    prices: list[str] | None = None
    closed_at: str | None = None
    # FPMM
    total_shares: str | None = None
    collected_fees: str | None = None


# --- Admin ---

class DepositRequest(BaseModel):
    account: str
    amount: str

class PrepareConditionRequest(BaseModel):
    oracle: str
    question_id: str
    outcome_slot_count: int

class ConditionResponse(BaseModel):
    condition_id: str
    outcome_slot_count: int

class CreateLMSRRequest(BaseModel):
    creator: str
    condition_ids: list[str]
    fee: str = "0"
    funding: str | None = None

class CreateFPMMRequest(BaseModel):
    creator: str
    condition_ids: list[str]
    fee: str = "0"
    initial_funds: str | None = None
    distribution_hint: list[str] = []

class CreateMarketResponse(BaseModel):
    market_id: int
    account: str
    position_ids: list[str]


# --- LMSR ---

class FundRequest(BaseModel):
    funder: str
    funding: str

class QuoteRequest(BaseModel):
    amounts: list[str]

class QuoteResponse(BaseModel):
    net_cost: str
    fee: str
    total: str

class LMSRTradeRequest(BaseModel):
    trader: str
    amounts: list[str]
    collateral_limit: str | None = None

class LMSRTradeResult(BaseModel):
    market_id: int
    net_cost: str
    fee: str
    prices: list[str]

class PricesResponse(BaseModel):
    market_id: int
    prices: list[str]

class CallerRequest(BaseModel):
    account: str

class CloseResponse(BaseModel):
    market_id: int
    status: str
    inventory: list[str]

class WithdrawFeesResponse(BaseModel):
    market_id: int
    account: str
    amount: str


# --- FPMM ---

class AmountQuoteResponse(BaseModel):
    market_id: int
    outcome_index: int
    outcome_tokens: str

class BuyRequest(BaseModel):
    buyer: str
    investment_amount: str
    outcome_index: int
    min_outcome_tokens_to_buy: str = "0"

class SellRequest(BaseModel):
    seller: str
    return_amount: str
    outcome_index: int
    max_outcome_tokens_to_sell: str

class FPMMTradeResult(BaseModel):
    market_id: int
    outcome_index: int
    outcome_tokens: str
    pool_balances: list[str]

class AddFundingRequest(BaseModel):
    funder: str
    added_funds: str
    distribution_hint: list[str] = []

class AddFundingResponse(BaseModel):
    market_id: int
    shares_minted: str
    total_shares: str

class RemoveFundingRequest(BaseModel):
    funder: str
    shares_to_burn: str

class RemoveFundingResponse(BaseModel):
    market_id: int
    amounts_removed: list[str]
    total_shares: str

class FeesResponse(BaseModel):
    market_id: int
    account: str
    withdrawable: str

class TransferSharesRequest(BaseModel):
    sender: str
    recipient: str
    amount: str
