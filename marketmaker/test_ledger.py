"""Collateral token and position ledger tests."""

import pytest

from marketmaker.errors import (
    InsufficientAllowance, InsufficientBalance, InvalidAmount,
    InvalidConditions, Unauthorized,
)
from marketmaker.ledger import (
    LEDGER_ACCOUNT, CollateralToken, Journal, PositionLedger, condition_id,
)


def fresh_ledger():
    collateral = CollateralToken("WETH")
    return collateral, PositionLedger(collateral)


class TestCollateral:

    def test_deposit_and_withdraw(self):
        token = CollateralToken()
        token.deposit("alice", 100)
        token.withdraw("alice", 40)
        assert token.balance_of("alice") == 60
        assert token.total_supply == 60

    def test_withdraw_more_than_held(self):
        token = CollateralToken()
        token.deposit("alice", 10)
        with pytest.raises(InsufficientBalance):
            token.withdraw("alice", 11)

    def test_negative_amount(self):
        token = CollateralToken()
        with pytest.raises(InvalidAmount):
            token.deposit("alice", -1)

    def test_transfer_from_uses_allowance(self):
        token = CollateralToken()
        token.deposit("alice", 100)
        token.approve("alice", "bob", 30)
        token.transfer_from("bob", "alice", "carol", 20)
        assert token.balance_of("carol") == 20
        assert token.allowance("alice", "bob") == 10
        with pytest.raises(InsufficientAllowance):
            token.transfer_from("bob", "alice", "carol", 11)

    def test_owner_needs_no_allowance(self):
        token = CollateralToken()
        token.deposit("alice", 100)
        token.transfer_from("alice", "alice", "bob", 100)
        assert token.balance_of("bob") == 100

    def test_journal_rollback(self):
        token = CollateralToken()
        token.deposit("alice", 100)
        state = token.snapshot()
        token.journal = Journal()
        token.approve("alice", "bob", 5)
        token.transfer("alice", "bob", 50)
        token.deposit("carol", 7)
        token.journal.rollback()
        token.journal = None
        assert token.snapshot() == state
        assert "bob" not in token.balances
        assert token.total_supply == 100


class TestConditions:

    def test_prepare(self):
        _, positions = fresh_ledger()
        cid = positions.prepare_condition("oracle", "q", 3)
        assert cid == condition_id("oracle", "q", 3)
        assert positions.get_outcome_slot_count(cid) == 3
        assert positions.get_outcome_slot_count("unknown") == 0

    @pytest.mark.parametrize("count", [0, 1, 257])
    def test_slot_count_bounds(self, count):
        _, positions = fresh_ledger()
        with pytest.raises(InvalidConditions):
            positions.prepare_condition("oracle", "q", count)

    def test_prepare_twice(self):
        _, positions = fresh_ledger()
        positions.prepare_condition("oracle", "q", 2)
        with pytest.raises(InvalidConditions):
            positions.prepare_condition("oracle", "q", 2)

    def test_atomic_positions_cover_the_cross_product(self):
        _, positions = fresh_ledger()
        c1 = positions.prepare_condition("oracle", "q1", 2)
        c2 = positions.prepare_condition("oracle", "q2", 3)
        ids = positions.atomic_position_ids("WETH", [c1, c2])
        assert len(ids) == len(set(ids)) == 6
        assert set(positions.atomic_position_ids("WETH", [c2, c1])) == set(ids)

    def test_positions_depend_on_collateral(self):
        _, positions = fresh_ledger()
        cid = positions.prepare_condition("oracle", "q", 2)
        weth = positions.atomic_position_ids("WETH", [cid])
        dai = positions.atomic_position_ids("DAI", [cid])
        assert not set(weth) & set(dai)


class TestPositions:

    def setup_method(self):
        self.collateral, self.positions = fresh_ledger()
        self.cid = self.positions.prepare_condition("oracle", "q", 2)
        self.collateral.deposit("alice", 100)
        self.collateral.approve("alice", LEDGER_ACCOUNT, 100)
        self.ids = self.positions.split_position("alice", [self.cid], 60)

    def test_split_locks_collateral(self):
        assert self.collateral.balance_of("alice") == 40
        assert self.collateral.balance_of(LEDGER_ACCOUNT) == 60
        assert self.positions.balance_of_batch(["alice", "alice"], self.ids) == [60, 60]

    def test_split_needs_allowance(self):
        self.collateral.deposit("bob", 10)
        with pytest.raises(InsufficientAllowance):
            self.positions.split_position("bob", [self.cid], 10)

    def test_merge_releases_collateral(self):
        self.positions.merge_positions("alice", [self.cid], 60)
        assert self.collateral.balance_of("alice") == 100
        assert self.collateral.balance_of(LEDGER_ACCOUNT) == 0

    @pytest.mark.parametrize("condition_ids", [[], ["dup", "dup"]])
    def test_split_rejects_bad_condition_lists(self, condition_ids):
        condition_ids = [self.cid if c == "dup" else c for c in condition_ids]
        self.collateral.deposit("eve", 100)
        self.collateral.approve("eve", LEDGER_ACCOUNT, 100)
        with pytest.raises(InvalidConditions):
            self.positions.split_position("eve", condition_ids, 100)
        assert self.collateral.balance_of("eve") == 100
        assert self.positions.balance_of("eve", self.ids[0]) == 0

    def test_repeated_condition_cannot_mint_collateral(self):
        self.collateral.deposit("eve", 100)
        self.collateral.approve("eve", LEDGER_ACCOUNT, 100)
        with pytest.raises(InvalidConditions):
            self.positions.split_position("eve", [self.cid, self.cid], 100)
        with pytest.raises(InvalidConditions):
            self.positions.merge_positions("eve", [self.cid, self.cid], 100)
        self.positions.split_position("eve", [self.cid], 100)
        with pytest.raises(InsufficientBalance):
            self.positions.merge_positions("eve", [self.cid], 200)
        self.positions.merge_positions("eve", [self.cid], 100)
        assert self.collateral.balance_of("eve") == 100
        assert self.collateral.balance_of(LEDGER_ACCOUNT) == 60

    def test_merge_needs_full_sets(self):
        self.positions.safe_transfer_from("alice", "alice", "bob", self.ids[0], 1)
        with pytest.raises(InsufficientBalance):
            self.positions.merge_positions("alice", [self.cid], 60)

    def test_operator_approval(self):
        with pytest.raises(Unauthorized):
            self.positions.safe_transfer_from("bob", "alice", "bob", self.ids[0], 5)
        self.positions.set_approval_for_all("alice", "bob", True)
        self.positions.safe_transfer_from("bob", "alice", "bob", self.ids[0], 5)
        assert self.positions.balance_of("bob", self.ids[0]) == 5

        self.positions.set_approval_for_all("alice", "bob", False)
        assert not self.positions.is_approved_for_all("alice", "bob")

    def test_receiver_hook(self):
        received = []
        self.positions.register_receiver(
            "bob", lambda operator, sender, ids, amounts: received.append(amounts))
        self.positions.safe_batch_transfer_from(
            "alice", "alice", "bob", self.ids, [1, 2])
        assert received == [[1, 2]]

        self.positions.register_receiver("bob", None)
        self.positions.safe_transfer_from("alice", "alice", "bob", self.ids[0], 1)
        assert len(received) == 1

    def test_journal_rollback(self):
        state = self.positions.snapshot()
        journal = Journal()
        self.positions.journal = self.collateral.journal = journal
        self.positions.merge_positions("alice", [self.cid], 60)
        self.positions.safe_transfer_from("alice", "alice", "bob", self.ids[0], 0)
        self.positions.set_approval_for_all("alice", "bob", True)
        self.positions.prepare_condition("oracle", "q2", 3)
        journal.rollback()
        self.positions.journal = self.collateral.journal = None
        assert self.positions.snapshot() == state
        assert self.collateral.balance_of("alice") == 40
        assert not self.positions.is_approved_for_all("alice", "bob")
