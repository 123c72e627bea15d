"""Tests for the status state machines."""

from __future__ import annotations

import pytest

from applydispatch.dispatch.lifecycle import can_advance, ensure_transition
from applydispatch.exceptions import InvalidTransition
from applydispatch.models import ApplicationStatus as A
from applydispatch.models import SentStatus as S


def test_application_happy_path():
    path = [A.DRAFT, A.PENDING, A.SENT, A.DELIVERED, A.READ]
    for current, new in zip(path, path[1:]):
        assert can_advance(current, new)


def test_application_never_goes_back():
    assert not can_advance(A.SENT, A.PENDING)
    assert not can_advance(A.DELIVERED, A.SENT)
    assert not can_advance(A.BOUNCED, A.DELIVERED)
    assert not can_advance(A.DRAFT, A.SENT)


def test_failed_application_can_be_requeued():
    assert can_advance(A.FAILED, A.DRAFT)


def test_email_log_transitions():
    assert can_advance(S.PENDING, S.SENT)
    assert can_advance(S.PENDING, S.FAILED)
    assert can_advance(S.SENT, S.BOUNCED)
    assert not can_advance(S.DELIVERED, S.PENDING)
    assert not can_advance(S.FAILED, S.SENT)
    assert not can_advance(S.READ, S.DELIVERED)


def test_ensure_transition_raises():
    with pytest.raises(InvalidTransition):
        ensure_transition(S.DELIVERED, S.SENT)
