import pytest

from app.models.payments import PaymentStatus
from app.models.transactions import TransactionStatus
from app.services.errors import InconsistentStateError
from app.services.payments.lifecycle import (
    TERMINAL_STATES,
    TRANSITIONS,
    plan_transition,
    transaction_status_for,
)

ALL_STATES = list(PaymentStatus)


@pytest.mark.parametrize(
    "current, target",
    [
        ("pending", "completed"),
        ("pending", "failed"),
        ("pending", "cancelled"),
        ("pending", "unknown"),
        ("unknown", "completed"),
        ("unknown", "failed"),
        ("unknown", "cancelled"),
        ("completed", "refunded"),
    ],
)
def test_allowed_transitions_are_written(current, target):
    assert plan_transition(current, target) is True


@pytest.mark.parametrize("state", ALL_STATES)
def test_same_state_is_a_no_op(state):
    assert plan_transition(state, state) is False


@pytest.mark.parametrize("state", ALL_STATES)
def test_pending_reports_never_regress(state):
    assert plan_transition(state, PaymentStatus.PENDING) is False


@pytest.mark.parametrize("state", ["completed", "failed", "cancelled", "refunded"])
def test_unknown_reports_never_overwrite_an_outcome(state):
    assert plan_transition(state, "unknown") is False


@pytest.mark.parametrize(
    "current, target",
    [
        ("completed", "failed"),
        ("completed", "cancelled"),
        ("failed", "completed"),
        ("cancelled", "completed"),
        ("refunded", "completed"),
        ("pending", "refunded"),
        ("failed", "refunded"),
    ],
)
def test_conflicting_transitions_raise(current, target):
    with pytest.raises(InconsistentStateError) as exc_info:
        plan_transition(current, target)

    assert exc_info.value.current == current
    assert exc_info.value.target == target


def test_terminal_states_have_no_exits():
    for state in TERMINAL_STATES:
        assert TRANSITIONS[state] == frozenset()


def test_transaction_status_mapping():
    assert transaction_status_for("completed") == TransactionStatus.COMPLETED
    assert transaction_status_for("cancelled") == TransactionStatus.FAILED
    assert transaction_status_for("failed") == TransactionStatus.FAILED
    assert transaction_status_for("refunded") == TransactionStatus.REFUNDED
    assert transaction_status_for("unknown") == TransactionStatus.PENDING
