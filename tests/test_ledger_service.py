from decimal import Decimal

import pytest

from services import ledger_service

A, B, C = 1, 2, 3


@pytest.fixture
def history():
    expenses = [
        {"id": 10, "paid_by": A, "amount": "100.00", "category": "expense"},
        {"id": 11, "paid_by": B, "amount": "60.00", "category": "expense"},
        # cancelled settlement: still on record, ignored by every calculation
        {"id": 12, "paid_by": C, "amount": "20.00", "category": "settlement",
         "settlement_status": "cancelled"},
    ]
    splits = [
        {"expense_id": 10, "user_id": A, "owe_amount": "33.34"},
        {"expense_id": 10, "user_id": B, "owe_amount": "33.33"},
        {"expense_id": 10, "user_id": C, "owe_amount": "33.33"},
        {"expense_id": 11, "user_id": A, "owe_amount": "20.00"},
        {"expense_id": 11, "user_id": B, "owe_amount": "20.00"},
        {"expense_id": 11, "user_id": C, "owe_amount": "20.00"},
        {"expense_id": 12, "user_id": B, "owe_amount": "20.00"},
    ]
    return expenses, splits


def test_net_balance(history):
    expenses, splits = history
    assert ledger_service.compute_net_balance(A, expenses, splits) == Decimal("46.66")
    assert ledger_service.compute_net_balance(B, expenses, splits) == Decimal("6.67")
    assert ledger_service.compute_net_balance(C, expenses, splits) == Decimal("-53.33")


def test_balances_are_conserved(history):
    expenses, splits = history
    total = sum(
        (ledger_service.compute_net_balance(uid, expenses, splits) for uid in (A, B, C)),
        Decimal("0"),
    )
    assert total == 0

    balances = ledger_service.compute_group_balances(expenses, splits)
    assert ledger_service.balance_integrity_ok(balances)


def test_debt_matrix_nets_mutual_debts(history):
    expenses, splits = history
    matrix = ledger_service.compute_debt_matrix(expenses, splits)

    assert ledger_service.net_debt(matrix, B, A) == Decimal("13.33")
    assert ledger_service.net_debt(matrix, C, A) == Decimal("33.33")
    assert ledger_service.net_debt(matrix, C, B) == Decimal("20.00")
    assert ledger_service.net_debt(matrix, A, C) == Decimal("-33.33")


def test_debt_matrix_is_antisymmetric_without_self_debt(history):
    expenses, splits = history
    matrix = ledger_service.compute_debt_matrix(expenses, splits)

    for x in (A, B, C):
        assert x not in matrix.get(x, {})
        assert ledger_service.net_debt(matrix, x, x) == 0
        for y in (A, B, C):
            assert ledger_service.net_debt(matrix, x, y) == -ledger_service.net_debt(matrix, y, x)


def test_debt_matrix_can_leave_out_settlements():
    expenses = [
        {"id": 1, "paid_by": A, "amount": "50", "category": "expense"},
        {"id": 2, "paid_by": B, "amount": "30", "category": "settlement",
         "settlement_status": "pending_confirmation"},
    ]
    splits = [
        {"expense_id": 1, "user_id": B, "owe_amount": "50"},
        {"expense_id": 2, "user_id": A, "owe_amount": "30"},
    ]

    with_settlements = ledger_service.compute_debt_matrix(expenses, splits)
    without = ledger_service.compute_debt_matrix(expenses, splits, include_settlements=False)

    assert ledger_service.net_debt(with_settlements, B, A) == Decimal("20")
    assert ledger_service.net_debt(without, B, A) == Decimal("50")


def test_balance_status():
    assert ledger_service.balance_status(Decimal("0.004")) == "settled"
    assert ledger_service.balance_status(Decimal("-0.009")) == "settled"
    assert ledger_service.balance_status(Decimal("12.50")) == "owed"
    assert ledger_service.balance_status(Decimal("-0.01")) == "owes"


def test_spending_shares(history):
    expenses, splits = history
    members = [ledger_service.make_member(uid, name) for uid, name in ((A, "Asha"), (B, "Bilal"), (C, "Chen"))]

    shares = ledger_service.compute_spending_shares(expenses, splits, members)

    assert [row["member_id"] for row in shares] == [A, B, C]
    assert shares[0]["spent"] == Decimal("53.34")
    assert shares[0]["percentage"] == Decimal("33.34")
    assert sum(row["spent"] for row in shares) == Decimal("160.00")


def test_spending_shares_with_no_expenses():
    shares = ledger_service.compute_spending_shares([], [], [A, B])
    assert [row["percentage"] for row in shares] == [0, 0]


def test_reconcile_members_keeps_people_who_left(history):
    expenses, splits = history
    names = {A: "Zara", B: "Bilal", C: "Chen"}

    members = ledger_service.reconcile_members([A, B], expenses, splits, names)

    assert [m["id"] for m in members] == [B, A, C]
    assert [m["is_current_member"] for m in members] == [True, True, False]


def test_suggest_settlements(history):
    expenses, splits = history
    balances = ledger_service.compute_group_balances(expenses, splits)

    suggestions = ledger_service.suggest_settlements(balances)

    assert suggestions == [
        {"from": C, "to": A, "amount": Decimal("46.66")},
        {"from": C, "to": B, "amount": Decimal("6.67")},
    ]


def test_can_leave_group(history):
    expenses, splits = history
    assert ledger_service.can_leave_group(A, expenses, splits)
    assert not ledger_service.can_leave_group(C, expenses, splits)
