"""
Tests for identity resolution and the bounded retry helper.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from api.database import User
from api.errors import Unauthorized
from api.identity import placeholder_email, resolve_user
from api.notifications import is_placeholder_email
from api.retry import call_with_retry


class TestResolveUser:

    def test_creates_user_on_first_sight(self, db_session, store):
        user = resolve_user(store, "user_new", delay=0)

        assert user.id is not None
        assert user.external_id == "user_new"
        assert is_placeholder_email(user.email)
        assert db_session.query(User).count() == 1

    def test_existing_user_found(self, db_session, store, sample_user):
        assert resolve_user(store, "user_abc123").id == sample_user.id
        assert db_session.query(User).count() == 1

    def test_numeric_identity_gets_its_own_user(self, db_session, store, sample_user):
        user = resolve_user(store, str(sample_user.id), delay=0)

        assert user.id != sample_user.id
        assert user.external_id == str(sample_user.id)
        assert is_placeholder_email(user.email)
        assert db_session.query(User).count() == 2

    @pytest.mark.parametrize("external_id", [None, "", "   "])
    def test_empty_identity_unauthorized(self, store, external_id):
        with pytest.raises(Unauthorized):
            resolve_user(store, external_id)

    def test_lost_creation_race_retries(self, db_session, store, monkeypatch):
        original_create = store.create_user

        def racing_create(external_id, email, name=None):
            # Another request inserts the same identity first
            db_session.add(User(external_id=external_id, email="winner@realmail.test"))
            db_session.commit()
            monkeypatch.setattr(store, 'create_user', original_create)
            raise IntegrityError("INSERT INTO users", {}, Exception("UNIQUE constraint failed"))

        monkeypatch.setattr(store, 'create_user', racing_create)
        user = resolve_user(store, "user_race", delay=0)

        assert user.email == "winner@realmail.test"
        assert db_session.query(User).filter(User.external_id == "user_race").count() == 1

    def test_persistent_conflict_propagates(self, store, monkeypatch):
        calls = []

        def always_conflict(external_id, email, name=None):
            calls.append(external_id)
            raise IntegrityError("INSERT INTO users", {}, Exception("UNIQUE constraint failed"))

        monkeypatch.setattr(store, 'create_user', always_conflict)
        with pytest.raises(IntegrityError):
            resolve_user(store, "user_stuck", attempts=3, delay=0)
        assert len(calls) == 3

    def test_placeholder_email_shape(self):
        address = placeholder_email("example.com")
        assert address.startswith("user-")
        assert address.endswith("@example.com")
        assert placeholder_email("example.com") != address


class TestCallWithRetry:

    def test_returns_first_success(self):
        assert call_with_retry(lambda: 42, ValueError, sleep=lambda s: None) == 42

    def test_retries_with_backoff(self):
        outcomes = [ValueError("first"), ValueError("second"), "ok"]
        waits = []
        retried = []

        def flaky():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        result = call_with_retry(
            flaky, ValueError, attempts=3, delay=0.1, backoff=3.0,
            on_retry=retried.append, sleep=waits.append,
        )

        assert result == "ok"
        assert waits == pytest.approx([0.1, 0.3])
        assert [str(e) for e in retried] == ["first", "second"]

    def test_last_error_propagates(self):
        def fail():
            raise ValueError("still failing")

        with pytest.raises(ValueError, match="still failing"):
            call_with_retry(fail, ValueError, attempts=2, sleep=lambda s: None)

    def test_other_exceptions_not_retried(self):
        calls = []

        def fail():
            calls.append(1)
            raise KeyError("nope")

        with pytest.raises(KeyError):
            call_with_retry(fail, ValueError, attempts=5, sleep=lambda s: None)
        assert len(calls) == 1

    def test_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            call_with_retry(lambda: None, ValueError, attempts=0)
