import pytest

from piggybank.errors import InvalidInput
from piggybank.penalty import calculate_penalty


def test_round_amount_splits_ninety_ten():
    q = calculate_penalty(100)
    assert q.payout == 90
    assert q.penalty == 10


def test_remainder_goes_to_penalty():
    q = calculate_penalty(101)
    assert q.payout == 90
    assert q.penalty == 11


@pytest.mark.parametrize("amount", [0, 1, 9, 10, 11, 19, 999, 10 ** 18 + 7, 2 ** 256 - 1])
def test_payout_plus_penalty_is_amount(amount):
    q = calculate_penalty(amount)
    assert q.payout + q.penalty == amount
    assert q.payout == (amount * 9) // 10


def test_large_amount_is_exact():
    # float math would lose precision here
    amount = 123_456_789_012_345_678_901
    assert calculate_penalty(amount).payout == 111_111_110_111_111_111_010


def test_negative_amount_rejected():
    with pytest.raises(InvalidInput):
        calculate_penalty(-1)


def test_float_amount_rejected():
    with pytest.raises(InvalidInput):
        calculate_penalty(1.5)
