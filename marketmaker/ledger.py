"""
Collateral token and position ledger.

These are the engine's two external collaborators. The market engine
never touches their dicts directly; it only calls the methods below,
which is the whole interface it relies on:

  CollateralToken  balance_of, transfer, transfer_from, approve,
                   deposit / withdraw (wrap / unwrap of a base asset)
  PositionLedger   balance_of, balance_of_batch, safe_transfer_from,
                   safe_batch_transfer_from, split_position,
                   merge_positions, position_id derivation

Accounts are plain strings. Markets hold their inventory and fee
collateral under "market:<id>"; the ledger holds collateral backing
all outstanding positions under LEDGER_ACCOUNT.

Position ids are derived deterministically from the collateral and the
(condition, index set) pairs, independent of condition order:

    position_id = sha256(collateral | sorted("condition_id:index_set"))

Atomic positions of a condition list are enumerated in mixed radix with
the first condition varying fastest.

While the engine has a Journal attached, every write to either
collaborator is logged so a rejected operation can be undone in time
proportional to what it touched. snapshot() is a read-only copy used
for comparisons.
"""

import copy
import hashlib
from typing import Callable

from marketmaker.errors import (
    InsufficientAllowance, InsufficientBalance, InvalidAmount,
    InvalidConditions, Unauthorized,
)


LEDGER_ACCOUNT = "ledger"

MAX_OUTCOME_SLOTS = 256


def _check_amount(amount: int) -> None:
    if amount < 0:
        raise InvalidAmount(f"amount must be non-negative, got {amount}")


# ---------------------------------------------------------------------------
# Undo journal
# ---------------------------------------------------------------------------

_MISSING = object()


class Journal:
    """
    Undo log of dict writes. Each entry keeps the previous value of one
    key (or that the key was absent); rollback replays them newest first.
    """

    def __init__(self):
        self.entries: list[tuple[dict, object, object]] = []

    def remember(self, mapping: dict, key) -> None:
        self.entries.append((mapping, key, mapping.get(key, _MISSING)))

    def rollback(self) -> None:
        for mapping, key, old in reversed(self.entries):
            if old is _MISSING:
                mapping.pop(key, None)
            else:
                mapping[key] = old
        self.entries.clear()


class _Journaled:
    """Routes every write through the active journal, if any."""

    journal: Journal | None = None

    def _set(self, mapping: dict, key, value) -> None:
        if self.journal is not None:
            self.journal.remember(mapping, key)
        mapping[key] = value

    def _inner(self, mapping: dict, key) -> dict:
        if key not in mapping:
            self._set(mapping, key, {})
        return mapping[key]


# ---------------------------------------------------------------------------
# Collateral
# ---------------------------------------------------------------------------

class CollateralToken(_Journaled):
    """Fungible collateral with wrap/unwrap of a base asset."""

    def __init__(self, symbol: str = "WETH"):
        self.symbol = symbol
        self.balances: dict[str, int] = {}
        self.allowances: dict[str, dict[str, int]] = {}
        self.total_supply = 0

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get(owner, {}).get(spender, 0)

    # ------------------------------------------------------------------
    # Wrapping
    # ------------------------------------------------------------------

    def deposit(self, account: str, amount: int) -> None:
        """Wrap base asset into collateral. The only way collateral enters."""
        _check_amount(amount)
        self._set(self.balances, account, self.balance_of(account) + amount)
        self._set(vars(self), "total_supply", self.total_supply + amount)

    def withdraw(self, account: str, amount: int) -> None:
        """Unwrap collateral back into the base asset."""
        _check_amount(amount)
        self._debit(account, amount)
        self._set(vars(self), "total_supply", self.total_supply - amount)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        _check_amount(amount)
        self._debit(sender, amount)
        self._set(self.balances, recipient, self.balance_of(recipient) + amount)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        _check_amount(amount)
        self._set(self._inner(self.allowances, owner), spender, amount)

    def transfer_from(self, spender: str, owner: str, recipient: str,
                      amount: int) -> None:
        """Move `amount` from owner to recipient using spender's allowance."""
        _check_amount(amount)
        if spender != owner:
            allowed = self.allowance(owner, spender)
            if allowed < amount:
                raise InsufficientAllowance(
                    f"{spender} may spend {allowed} of {owner}'s "
                    f"{self.symbol}, needs {amount}")
            self._set(self.allowances[owner], spender, allowed - amount)
        self.transfer(owner, recipient, amount)

    def _debit(self, account: str, amount: int) -> None:
        have = self.balance_of(account)
        if have < amount:
            raise InsufficientBalance(
                f"{account}: need {amount} {self.symbol}, have {have}")
        self._set(self.balances, account, have - amount)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> dict:
        return {
            "balances": dict(self.balances),
            "allowances": copy.deepcopy(self.allowances),
            "total_supply": self.total_supply,
        }


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------

def condition_id(oracle: str, question_id: str, outcome_slot_count: int) -> str:
    payload = f"{oracle}|{question_id}|{outcome_slot_count}"
    return hashlib.sha256(payload.encode()).hexdigest()


def position_id(collateral: str, index_sets: dict[str, int]) -> str:
    """Deterministic id of the position (condition -> outcome mask) set."""
    parts = sorted(f"{cid}:{mask}" for cid, mask in index_sets.items())
    payload = collateral + "|" + ",".join(parts)
    return hashlib.sha256(payload.encode()).hexdigest()


ReceiverHook = Callable[[str, str, list[str], list[int]], None]


class PositionLedger(_Journaled):
    """
    Multi-token balances of combinatorial outcome positions.

    Collateral backing every outstanding full set sits in LEDGER_ACCOUNT.
    Splitting pulls collateral from the caller (who must have approved
    LEDGER_ACCOUNT); merging pays it back.
    """

    def __init__(self, collateral: CollateralToken):
        self.collateral = collateral
        self.conditions: dict[str, int] = {}
        self.balances: dict[str, dict[str, int]] = {}
        self.operators: dict[str, set[str]] = {}
        self.receivers: dict[str, ReceiverHook] = {}

    # ------------------------------------------------------------------
    # Conditions and ids
    # ------------------------------------------------------------------

    def prepare_condition(self, oracle: str, question_id: str,
                          outcome_slot_count: int) -> str:
        if not 2 <= outcome_slot_count <= MAX_OUTCOME_SLOTS:
            raise InvalidConditions(
                f"outcome slot count must be in 2..{MAX_OUTCOME_SLOTS}")
        cid = condition_id(oracle, question_id, outcome_slot_count)
        if cid in self.conditions:
            raise InvalidConditions(f"condition {cid} already prepared")
        self._set(self.conditions, cid, outcome_slot_count)
        return cid

    def get_outcome_slot_count(self, condition_id: str) -> int:
        """0 for an unknown condition."""
        return self.conditions.get(condition_id, 0)

    def atomic_position_ids(self, collateral: str,
                            condition_ids: list[str]) -> list[str]:
        """
        Ids of every atomic position over the condition cross product,
        first condition varying fastest.
        """
        if not condition_ids:
            raise InvalidConditions("no conditions given")
        if len(set(condition_ids)) != len(condition_ids):
            raise InvalidConditions(f"duplicate condition in {condition_ids}")
        counts = [self.get_outcome_slot_count(cid) for cid in condition_ids]
        if any(c == 0 for c in counts):
            raise InvalidConditions("condition not prepared")
        total = 1
        for c in counts:
            total *= c

        ids = []
        for index in range(total):
            index_sets = {}
            rest = index
            for cid, count in zip(condition_ids, counts):
                index_sets[cid] = 1 << (rest % count)
                rest //= count
            ids.append(position_id(collateral, index_sets))
        return ids

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def balance_of(self, account: str, position_id: str) -> int:
        return self.balances.get(account, {}).get(position_id, 0)

    def balance_of_batch(self, accounts: list[str],
                         position_ids: list[str]) -> list[int]:
        if len(accounts) != len(position_ids):
            raise ValueError("accounts and position ids differ in length")
        return [self.balance_of(a, p) for a, p in zip(accounts, position_ids)]

    def _credit(self, account: str, position_id: str, amount: int) -> None:
        held = self._inner(self.balances, account)
        self._set(held, position_id, held.get(position_id, 0) + amount)

    def _debit(self, account: str, position_id: str, amount: int) -> None:
        have = self.balance_of(account, position_id)
        if have < amount:
            raise InsufficientBalance(
                f"{account}: need {amount} of position {position_id[:12]}, "
                f"have {have}")
        self._set(self._inner(self.balances, account), position_id,
                  have - amount)

    # ------------------------------------------------------------------
    # Approvals and transfers
    # ------------------------------------------------------------------

    def set_approval_for_all(self, owner: str, operator: str,
                             approved: bool) -> None:
        ops = set(self.operators.get(owner, ()))
        if approved:
            ops.add(operator)
        else:
            ops.discard(operator)
        self._set(self.operators, owner, ops)

    def is_approved_for_all(self, owner: str, operator: str) -> bool:
        return operator in self.operators.get(owner, set())

    def register_receiver(self, account: str, hook: ReceiverHook | None) -> None:
        """Install (or with None, remove) a callback run on every receipt."""
        if hook is None:
            self.receivers.pop(account, None)
        else:
            self.receivers[account] = hook

    def safe_transfer_from(self, operator: str, sender: str, recipient: str,
                           position_id: str, amount: int) -> None:
        self.safe_batch_transfer_from(
            operator, sender, recipient, [position_id], [amount])

    def safe_batch_transfer_from(self, operator: str, sender: str,
                                 recipient: str, position_ids: list[str],
                                 amounts: list[int]) -> None:
        if len(position_ids) != len(amounts):
            raise ValueError("position ids and amounts differ in length")
        if operator != sender and not self.is_approved_for_all(sender, operator):
            raise Unauthorized(f"{operator} is not an operator for {sender}")
        for amount in amounts:
            _check_amount(amount)
        for pid, amount in zip(position_ids, amounts):
            self._debit(sender, pid, amount)
            self._credit(recipient, pid, amount)
        self._notify(recipient, operator, sender, position_ids, amounts)

    def _notify(self, recipient: str, operator: str, sender: str,
                position_ids: list[str], amounts: list[int]) -> None:
        hook = self.receivers.get(recipient)
        if hook is not None:
            hook(operator, sender, position_ids, amounts)

    # ------------------------------------------------------------------
    # Split / merge
    # ------------------------------------------------------------------

    def split_position(self, account: str, condition_ids: list[str],
                       amount: int) -> list[str]:
        """Lock `amount` collateral, mint `amount` of every atomic position."""
        _check_amount(amount)
        ids = self.atomic_position_ids(self.collateral.symbol, condition_ids)
        self.collateral.transfer_from(
            LEDGER_ACCOUNT, account, LEDGER_ACCOUNT, amount)
        for pid in ids:
            self._credit(account, pid, amount)
        self._notify(account, account, "", ids, [amount] * len(ids))
        return ids

    def merge_positions(self, account: str, condition_ids: list[str],
                        amount: int) -> list[str]:
        """Burn `amount` of every atomic position, release the collateral."""
        _check_amount(amount)
        ids = self.atomic_position_ids(self.collateral.symbol, condition_ids)
        for pid in ids:
            self._debit(account, pid, amount)
        self.collateral.transfer(LEDGER_ACCOUNT, account, amount)
        return ids

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> dict:
        return {
            "conditions": dict(self.conditions),
            "balances": copy.deepcopy(self.balances),
            "operators": copy.deepcopy(self.operators),
        }
