import os
from collections.abc import Generator
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import uuid

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from songbattle.main import app
from songbattle.api.v1 import users as users_api
from songbattle.db.base import Base
from songbattle.db.session import build_engine
from songbattle.models.user import User
from songbattle.services.battles import create_battle, join_battle


SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"

engine = build_engine(SQLALCHEMY_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)

NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


def override_get_db() -> Generator:
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="session", autouse=True)
def setup_database() -> Generator:
    # Every router takes its session from users.get_db.
    app.dependency_overrides[users_api.get_db] = override_get_db

    yield

    Base.metadata.drop_all(bind=engine)
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def fresh_tables() -> Generator:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def db() -> Generator:
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture()
def now() -> datetime:
    return NOW


def track(n: int) -> str:
    return f"https://open.spotify.com/track/{n:022d}"


@dataclass
class BattleSetup:
    battle_id: uuid.UUID
    round_id: uuid.UUID
    invite_code: str
    creator_id: uuid.UUID
    player_ids: list[uuid.UUID] = field(default_factory=list)
    submission_deadline: datetime = NOW + timedelta(days=1)
    voting_deadline: datetime = NOW + timedelta(days=2)

    @property
    def everyone(self) -> list[uuid.UUID]:
        return [self.creator_id, *self.player_ids]


@pytest.fixture()
def make_user(db):
    def _make(username: str) -> uuid.UUID:
        user = User(
            username=username,
            api_key_prefix="0" * 12,
            api_key_hash="not-a-real-hash",
            created_at=NOW,
        )
        db.add(user)
        db.commit()
        return user.id

    return _make


@pytest.fixture()
def make_battle(db, make_user):
    counter = {"n": 0}

    def _make(
        players: int = 2,
        *,
        double_submissions: bool = False,
        max_participants: int = 10,
        name: str = "Summer Clash",
    ) -> BattleSetup:
        counter["n"] += 1
        prefix = f"b{counter['n']}"
        creator_id = make_user(f"{prefix}-creator")
        submission_deadline = NOW + timedelta(days=1)
        voting_deadline = NOW + timedelta(days=2)
        created = create_battle(
            db,
            creator_id,
            name=name,
            max_participants=max_participants,
            double_submissions=double_submissions,
            visibility="private",
            theme="Songs about the sea",
            submission_deadline=submission_deadline,
            voting_deadline=voting_deadline,
            now=NOW,
        )
        assert created.success, created.message

        player_ids = []
        for i in range(players - 1):
            user_id = make_user(f"{prefix}-player{i + 1}")
            joined = join_battle(db, user_id, created["invite_code"], now=NOW)
            assert joined.success, joined.message
            player_ids.append(user_id)

        return BattleSetup(
            battle_id=uuid.UUID(created["battle_id"]),
            round_id=uuid.UUID(created["round_id"]),
            invite_code=created["invite_code"],
            creator_id=creator_id,
            player_ids=player_ids,
            submission_deadline=submission_deadline,
            voting_deadline=voting_deadline,
        )

    return _make
