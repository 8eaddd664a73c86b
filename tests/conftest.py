import os

# Settings are read at import time, so configure the environment first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CACHE_ENABLED"] = "false"
os.environ["KAFKA_ENABLED"] = "false"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-student-leave-service"
os.environ["USAGE_FETCH_RETRY_DELAY"] = "0"
os.environ["LOG_LEVEL"] = "WARNING"

import fnmatch  # noqa: E402
from datetime import date, datetime, timezone  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from redis import WatchError  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from app.core.cache import RedisClient  # noqa: E402
from app.core.config import settings  # noqa: E402
from app.core.database import get_session  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.main import app  # noqa: E402
from app.models.leave import Leave, LeaveStatus, RequestKind  # noqa: E402

STUDENT_ID = "stu-001"
STUDENT_ROLL = "BCA-2024-001"
OTHER_STUDENT_ID = "stu-002"
OTHER_STUDENT_ROLL = "BA-2024-017"
ADMIN_ID = "admin-001"


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture(name="client")
def client_fixture(session: Session):
    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def student_headers():
    return auth_headers(
        create_access_token(
            STUDENT_ID,
            "student",
            name="Asha Verma",
            email="asha@student.edu",
            roll_number=STUDENT_ROLL,
            stream="BCA",
        )
    )


@pytest.fixture
def other_student_headers():
    return auth_headers(
        create_access_token(
            OTHER_STUDENT_ID,
            "student",
            name="Ravi Kumar",
            roll_number=OTHER_STUDENT_ROLL,
            stream="BA",
        )
    )


@pytest.fixture
def admin_headers():
    return auth_headers(create_access_token(ADMIN_ID, "admin", name="Office Admin"))


def make_leave(
    session: Session,
    user_id: str = STUDENT_ID,
    status: LeaveStatus = LeaveStatus.PENDING,
    start_date: date | None = date(2025, 3, 10),
    end_date: date | None = date(2025, 3, 11),
    selected_dates: list[str] | None = None,
    decided_at: datetime | None = None,
    **fields,
) -> Leave:
    """Insert a leave record. Approved records default to being decided now."""
    if status != LeaveStatus.PENDING and decided_at is None:
        decided_at = datetime.now(timezone.utc)
    leave = Leave(
        user_id=user_id,
        user_name=fields.pop("user_name", "Asha Verma"),
        roll_number=fields.pop("roll_number", STUDENT_ROLL),
        stream=fields.pop("stream", "BCA"),
        reason=fields.pop("reason", "Family function"),
        request_type=RequestKind.CALENDAR if selected_dates else RequestKind.RANGE,
        start_date=None if selected_dates else start_date,
        end_date=None if selected_dates else end_date,
        selected_dates=selected_dates,
        status=status,
        decided_at=decided_at,
        **fields,
    )
    session.add(leave)
    session.commit()
    session.refresh(leave)
    return leave


class FakePipeline:
    """Optimistic-locking pipeline over a FakeRedis store."""

    def __init__(self, redis):
        self.redis = redis
        self.watched = {}
        self.queued = []

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.reset()

    def watch(self, *keys):
        self.watched = {key: self.redis.store.get(key) for key in keys}

    def get(self, key):
        return self.redis.get(key)

    def multi(self):
        pass

    def setex(self, key, ttl, value):
        self.queued.append((key, ttl, value))

    def execute(self):
        if self.redis.before_execute:
            self.redis.before_execute()
        if any(self.redis.store.get(key) != value for key, value in self.watched.items()):
            raise WatchError("Watched variable changed.")
        for key, ttl, value in self.queued:
            self.redis.setex(key, ttl, value)

    def reset(self):
        self.watched = {}
        self.queued = []


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.before_execute = None

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    def incr(self, key):
        self.store[key] = str(int(self.store.get(key) or 0) + 1)
        return int(self.store[key])

    def pipeline(self):
        return FakePipeline(self)

    def scan_iter(self, match):
        return [key for key in list(self.store) if fnmatch.fnmatch(key, match)]

    def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)

    def close(self):
        pass


@pytest.fixture
def redis(monkeypatch):
    """Enable the cache against an in-memory FakeRedis."""
    fake = FakeRedis()
    monkeypatch.setattr(settings, "CACHE_ENABLED", True)
    monkeypatch.setattr(RedisClient, "_instance", fake)
    return fake
