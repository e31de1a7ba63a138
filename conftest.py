import os

# Must be set before any project module reads core.config
os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["REDIS_URL"] = ""
os.environ["PUSHER_ENABLED"] = "false"
os.environ["MESSAGE_SEND_TIMEOUT_SECONDS"] = "0"

from contextlib import contextmanager

import pytest
from sqlalchemy.orm import sessionmaker

from core.db import Base, build_engine
from core.rate_limit import default_rate_limiter
from models import USER_TYPE_EARNER, USER_TYPE_SEEKER, User, Wallet

SEEKER_ID = 1000000001
SEEKER_2_ID = 1000000002
EARNER_ID = 2000000001
EARNER_2_ID = 2000000002


@pytest.fixture
def test_engine(tmp_path):
    """File-backed SQLite so threadpool-run code sees the same database."""
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(bind=test_engine, autocommit=False, autoflush=False)


@pytest.fixture
def test_db(session_factory):
    """Session seeded with two seekers and two earners."""
    db = session_factory()
    try:
        db.add_all(
            [
                User(account_id=SEEKER_ID, descope_user_id="seeker_1", email="seeker1@example.com",
                     username="seeker1", user_type=USER_TYPE_SEEKER),
                User(account_id=SEEKER_2_ID, descope_user_id="seeker_2", email="seeker2@example.com",
                     username="seeker2", user_type=USER_TYPE_SEEKER),
                User(account_id=EARNER_ID, descope_user_id="earner_1", email="earner1@example.com",
                     username="earner1", user_type=USER_TYPE_EARNER),
                User(account_id=EARNER_2_ID, descope_user_id="earner_2", email="earner2@example.com",
                     username="earner2", user_type=USER_TYPE_EARNER),
            ]
        )
        db.flush()
        db.add_all(
            [
                Wallet(user_id=SEEKER_ID, credit_balance=100, available_earnings_minor=0),
                Wallet(user_id=SEEKER_2_ID, credit_balance=0, available_earnings_minor=0),
                Wallet(user_id=EARNER_ID, credit_balance=0, available_earnings_minor=0),
                Wallet(user_id=EARNER_2_ID, credit_balance=0, available_earnings_minor=0),
            ]
        )
        db.commit()
        yield db
    finally:
        db.close()


@pytest.fixture
def seeker(test_db):
    return test_db.get(User, SEEKER_ID)


@pytest.fixture
def broke_seeker(test_db):
    return test_db.get(User, SEEKER_2_ID)


@pytest.fixture
def earner(test_db):
    return test_db.get(User, EARNER_ID)


@pytest.fixture
def other_earner(test_db):
    return test_db.get(User, EARNER_2_ID)


@pytest.fixture
def db_context(session_factory):
    """Stand-in for core.db.get_db_context bound to the test database."""

    @contextmanager
    def _context():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    return _context


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    default_rate_limiter.reset()
    yield
    default_rate_limiter.reset()
