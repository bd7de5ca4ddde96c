import pytest

from ledgerbot.tools.splits import compute_splits, rescale_splits


def test_equal_split_gives_remainder_to_last_person():
    shares = compute_splits(100, ["Alex", "Sam", "Kim"])

    assert shares == {"Alex": 33.33, "Sam": 33.33, "Kim": 33.34}


def test_excluded_participants_pay_nothing():
    shares = compute_splits(60, ["Alex", "Sam", "Kim"], excluded=["Sam"])

    assert shares == {"Alex": 30.0, "Kim": 30.0}


def test_custom_splits_are_used_as_given():
    shares = compute_splits(50, ["Alex", "Sam"], custom_splits={"Alex": 20, "Sam": 30})

    assert shares == {"Alex": 20.0, "Sam": 30.0}


def test_custom_splits_must_add_up():
    with pytest.raises(ValueError):
        compute_splits(50, ["Alex", "Sam"], custom_splits={"Alex": 20, "Sam": 20})


def test_nobody_left_to_split_with():
    with pytest.raises(ValueError):
        compute_splits(50, ["Alex"], excluded=["Alex"])


def test_rescale_keeps_equal_shares_equal():
    assert rescale_splits({"Alex": 25.0, "Sam": 25.0}, 40) == {"Alex": 20.0, "Sam": 20.0}


def test_rescale_keeps_proportions_and_sums_to_total():
    shares = rescale_splits({"Alex": 20.0, "Sam": 30.0, "Kim": 50.0}, 33.33)

    assert shares["Alex"] == 6.67
    assert shares["Sam"] == 10.0
    assert sum(shares.values()) == pytest.approx(33.33)


def test_rescale_without_splits():
    assert rescale_splits({}, 40) == {}
