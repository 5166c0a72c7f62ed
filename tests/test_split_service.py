from decimal import Decimal
from itertools import permutations

import pytest

from services import split_service
from services.errors import InvalidSplitError, ValidationError


def _amounts(splits):
    return [s["owe_amount"] for s in splits]


def _total(splits):
    return sum(_amounts(splits), Decimal("0"))


def test_equal_split_gives_remainder_to_first_member():
    splits = split_service.allocate_equal("100.00", [1, 2, 3])

    assert [s["user_id"] for s in splits] == [1, 2, 3]
    assert _amounts(splits) == [Decimal("33.34"), Decimal("33.33"), Decimal("33.33")]
    assert _total(splits) == Decimal("100.00")


def test_equal_split_negative_remainder():
    # 0.05 / 3 rounds up to 0.02 each, so the first member gives a cent back
    splits = split_service.allocate_equal("0.05", [1, 2, 3])
    assert _amounts(splits) == [Decimal("0.01"), Decimal("0.02"), Decimal("0.02")]


@pytest.mark.parametrize("total", ["0.01", "0.05", "1", "10", "99.99", "100", "333.33", "1000000"])
def test_equal_split_always_adds_up(total):
    for n in range(1, 21):
        splits = split_service.allocate_equal(total, list(range(n)))
        assert len(splits) == n
        assert abs(_total(splits) - Decimal(total)) <= Decimal("0.005")


def test_equal_split_is_deterministic():
    first = split_service.allocate_equal("71.17", [4, 9, 2, 7])
    second = split_service.allocate_equal("71.17", [4, 9, 2, 7])
    assert first == second


def test_equal_split_rejects_bad_input():
    with pytest.raises(ValidationError):
        split_service.allocate_equal("100", [])
    with pytest.raises(ValidationError):
        split_service.allocate_equal("0", [1, 2])
    with pytest.raises(ValidationError):
        split_service.allocate_equal("abc", [1, 2])
    with pytest.raises(ValidationError):
        split_service.allocate_equal("10", [1, 1])


def test_custom_split_fills_unlocked_members():
    splits = split_service.allocate_custom("100", [1, 2, 3, 4], {1: "10"})
    assert _amounts(splits) == [Decimal("10"), Decimal("30.00"), Decimal("30.00"), Decimal("30.00")]


def test_custom_split_rounding_drift_goes_to_last_unlocked():
    splits = split_service.allocate_custom("100", [1, 2, 3, 4], {1: "0"})
    assert _amounts(splits) == [Decimal("0"), Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    assert _total(splits) == Decimal("100")


def test_custom_split_keeps_fully_typed_entries():
    splits = split_service.allocate_custom("90", [1, 2], {1: "50", 2: "40"})
    assert _amounts(splits) == [Decimal("50"), Decimal("40")]


def test_custom_split_overshoot_fails_validation():
    splits = split_service.allocate_custom("50", [1, 2], {1: "60"})
    assert _amounts(splits) == [Decimal("60"), Decimal("-10.00")]

    with pytest.raises(InvalidSplitError) as excinfo:
        split_service.ensure_valid_splits("50", splits)
    assert "negative" in str(excinfo.value)


def test_custom_split_rejects_unknown_member():
    with pytest.raises(ValidationError):
        split_service.allocate_custom("50", [1, 2], {3: "10"})


def test_locking_in_any_order_converges():
    members = [1, 2, 3, 4, 5]
    total = Decimal("250.75")
    typed = {3: "40", 1: "55.50", 5: "20.25", 2: "60"}

    for order in permutations(typed):
        locked = set()
        current = split_service.allocate_equal(total, members)
        for member in order:
            before = split_service.splits_to_map(current)
            current, locked = split_service.recompute_on_lock(
                total, members, locked, member, typed[member], current
            )
            after = split_service.splits_to_map(current)

            assert abs(_total(current) - total) <= Decimal("0.005")
            assert after[member] == Decimal(typed[member])
            for earlier in locked - {member}:
                assert after[earlier] == before[earlier]


def test_recompute_on_lock_treats_empty_value_as_zero():
    splits, locked = split_service.recompute_on_lock("30", [1, 2, 3], set(), 2, "")
    assert locked == frozenset({2})
    assert _amounts(splits) == [Decimal("15.00"), Decimal("0"), Decimal("15.00")]


def test_recompute_on_lock_needs_amounts_for_locked_members():
    with pytest.raises(ValidationError):
        split_service.recompute_on_lock("30", [1, 2, 3], {1}, 2, "5")


def test_validate_splits_tolerance_and_negatives():
    assert split_service.validate_splits("100", {1: "50", 2: "49.95"}).ok

    result = split_service.validate_splits("100", {1: "50", 2: "49.80"})
    assert not result.ok
    assert result.difference == Decimal("-0.20")

    result = split_service.validate_splits("100", {1: "110", 2: "-10"})
    assert not result.ok
    assert result.errors == ["Split amounts cannot be negative."]


def test_detect_split_mode():
    assert split_service.detect_split_mode(
        "100", {1: "33.34", 2: "33.33", 3: "33.33"}, [1, 2, 3]
    ) == split_service.SPLIT_EQUAL
    assert split_service.detect_split_mode(
        "100", {1: "50", 2: "25", 3: "25"}, [1, 2, 3]
    ) == split_service.SPLIT_CUSTOM
    assert split_service.detect_split_mode(
        "100", {1: "50", 2: "50"}, [1, 2, 3]
    ) == split_service.SPLIT_CUSTOM


@pytest.mark.parametrize("bad", ["NaN", "sNaN", "Infinity", "-Infinity"])
def test_non_finite_total_is_rejected(bad):
    with pytest.raises(ValidationError):
        split_service.allocate_equal(bad, [1, 2])
    with pytest.raises(ValidationError):
        split_service.allocate_custom(bad, [1, 2], {1: "5"})
    with pytest.raises(ValidationError):
        split_service.validate_splits(bad, {1: "5", 2: "5"})


@pytest.mark.parametrize("bad", ["NaN", "Infinity"])
def test_non_finite_entry_is_rejected(bad):
    with pytest.raises(ValidationError):
        split_service.allocate_custom("10", [1, 2], {1: bad})
    with pytest.raises(ValidationError):
        split_service.validate_splits("10", {1: bad, 2: "10"})
    with pytest.raises(ValidationError):
        split_service.recompute_on_lock("10", [1, 2], set(), 1, bad)


def test_tiny_equal_split_over_many_members_fails_validation():
    splits = split_service.allocate_equal("0.10", list(range(20)))
    assert splits[0]["owe_amount"] == Decimal("-0.09")

    with pytest.raises(InvalidSplitError):
        split_service.ensure_valid_splits("0.10", splits)
