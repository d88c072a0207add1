from songbattle.services.ordering import (
    ALREADY_SUBMITTED,
    MAXIMUM_SUBMITTED,
    decide_submission_order,
)


def test_first_entry_takes_position_one() -> None:
    for double in (False, True):
        decision = decide_submission_order(0, double)
        assert decision.allowed
        assert decision.position == 1
        assert decision.message is None


def test_second_entry_needs_double_submissions() -> None:
    single = decide_submission_order(1, False)
    assert not single.allowed
    assert single.position is None
    assert single.message == ALREADY_SUBMITTED

    double = decide_submission_order(1, True)
    assert double.allowed
    assert double.position == 2


def test_third_entry_is_always_rejected() -> None:
    for double in (False, True):
        decision = decide_submission_order(2, double)
        assert not decision.allowed
        assert decision.message == MAXIMUM_SUBMITTED

    assert decide_submission_order(5, True).message == MAXIMUM_SUBMITTED


def test_negative_count_is_treated_as_empty() -> None:
    decision = decide_submission_order(-1, False)
    assert decision.allowed
    assert decision.position == 1
