import pytest
from jose import jwt

from auth import ALGORITHM, SessionIssuer
from errors import MalformedToken, SessionExpired, Unauthenticated, UnknownSession
from tests.conftest import SESSION_TTL_SECONDS, TEST_SECRET


class TestIssueAndValidate:

    def test_round_trip(self, services, db, user_id):
        session = services.sessions.issue(user_id)

        assert session.token_type == "Bearer"
        assert services.sessions.validate(db, session.token) == user_id

    def test_tokens_are_distinct(self, services, user_id):
        first = services.sessions.issue(user_id)
        second = services.sessions.issue(user_id)

        assert first.token != second.token

    def test_expiry_is_reported(self, services, user_id, clock):
        session = services.sessions.issue(user_id)

        assert session.expires_at.timestamp() == clock.epoch() + SESSION_TTL_SECONDS


class TestExpiry:

    def test_valid_up_to_the_expiry_instant(self, services, db, user_id, clock):
        session = services.sessions.issue(user_id)

        clock.advance(seconds=SESSION_TTL_SECONDS)
        assert services.sessions.validate(db, session.token) == user_id

    def test_expired_once_past_ttl(self, services, db, user_id, clock):
        session = services.sessions.issue(user_id)

        clock.advance(seconds=SESSION_TTL_SECONDS + 1)
        with pytest.raises(SessionExpired):
            services.sessions.validate(db, session.token)


class TestRejection:

    def test_garbage_token(self, services, db):
        with pytest.raises(MalformedToken):
            services.sessions.validate(db, "not-a-jwt")

    def test_empty_token(self, services, db):
        with pytest.raises(MalformedToken):
            services.sessions.validate(db, "")

    def test_tampered_signature(self, services, db, user_id):
        token = services.sessions.issue(user_id).token
        header, payload, signature = token.split(".")
        tampered = ".".join([header, payload, signature[::-1]])

        with pytest.raises(MalformedToken):
            services.sessions.validate(db, tampered)

    def test_foreign_secret(self, services, db, user_id, clock):
        foreign = SessionIssuer(services.credentials, secret_key="some-other-secret-value-0000000000",
                                clock=clock.epoch)
        token = foreign.issue(user_id).token

        with pytest.raises(MalformedToken):
            services.sessions.validate(db, token)

    def test_token_without_session_type(self, services, db, user_id, clock):
        token = jwt.encode({"sub": str(user_id), "exp": clock.epoch() + 60}, TEST_SECRET, algorithm=ALGORITHM)

        with pytest.raises(MalformedToken):
            services.sessions.validate(db, token)

    def test_unknown_user(self, services, db):
        token = services.sessions.issue(99999).token

        with pytest.raises(UnknownSession):
            services.sessions.validate(db, token)

    def test_every_failure_is_unauthenticated(self):
        for error in (MalformedToken, SessionExpired, UnknownSession):
            assert issubclass(error, Unauthenticated)
            assert error.code == "unauthenticated"
