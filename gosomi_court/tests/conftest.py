"""
Shared fixtures: a fresh SQLite database per test, seeded users and a fake
judge that returns canned verdicts.
"""

import json
import os
import sys
from pathlib import Path
from typing import List

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from gosomi_court.llm.base import JudgeCallResult, JudgeClient


NICKNAMES = ["alice", "bob", "carol", "dave", "erin", "frank", "grace", "heidi"]


def verdict_payload(**overrides) -> dict:
    """A valid judge verdict; override any top-level field."""
    payload = {
        "result": "GUILTY",
        "intensity": "mid",
        "lawRefs": [{"id": "time-1-2", "category": "Punctuality Act"}],
        "oneLine": "The defendant is guilty of chronic lateness.",
        "reasoning": "Under Article 1(2) of the Punctuality Act, repeated lateness is a moderate offence.",
        "penalties": {
            "serious": ["Buy a coffee", "Buy a meal", "Plan the next meetup"],
            "funny": ["Act out the excuse on video"],
        },
        "faultRatio": {"plaintiff": 30, "defendant": 70},
    }
    payload.update(overrides)
    return payload


class FakeJudge(JudgeClient):
    """
    Judge that replays queued responses (dicts, raw strings or
    JudgeCallResults) and falls back to `verdict_payload()`.
    """

    name = "fake"

    def __init__(self, responses=None, reject_images: bool = False):
        super().__init__(api_key="test-key", model="fake-judge", base_url="http://judge.test")
        self.responses = list(responses or [])
        self.reject_images = reject_images
        self.calls: List[dict] = []

    async def _post(self, prompt, images):
        self.calls.append({"prompt": prompt, "images": list(images)})
        if self.reject_images and images:
            return self._failure("[400 Bad Request] Unable to process input image")

        item = self.responses.pop(0) if self.responses else verdict_payload()
        if isinstance(item, JudgeCallResult):
            return item
        content = item if isinstance(item, str) else json.dumps(item)
        return JudgeCallResult(content=content, model=self.model)


@pytest.fixture
def sqlalchemy_db(tmp_path):
    """Configure a fresh SQLAlchemy SQLite DB for tests."""
    from gosomi_court.db.session import reset_engine, init_db

    old_db_url = os.environ.get("DATABASE_URL")
    db_path = tmp_path / "gosomi_test.db"
    os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"
    reset_engine()
    init_db()

    yield

    if old_db_url is not None:
        os.environ["DATABASE_URL"] = old_db_url
    else:
        os.environ.pop("DATABASE_URL", None)
    reset_engine()


def seed_users(count: int = len(NICKNAMES)) -> List[int]:
    from gosomi_court.db.session import SessionLocal, get_engine
    from gosomi_court.db.models import User

    get_engine()
    db = SessionLocal()
    try:
        users = [User(nickname=name) for name in NICKNAMES[:count]]
        db.add_all(users)
        db.commit()
        return [u.id for u in users]
    finally:
        db.close()


@pytest.fixture
def users(sqlalchemy_db) -> List[int]:
    """Eight users; ids 1..8 in a fresh database."""
    return seed_users()


@pytest.fixture
def db_session(sqlalchemy_db):
    from gosomi_court.db.session import SessionLocal, get_engine

    get_engine()
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def settings(tmp_path):
    from gosomi_court.config import Settings

    return Settings(upload_root=str(tmp_path), judge_mode="none", summons_ttl_hours=24)


@pytest.fixture
def fake_judge() -> FakeJudge:
    return FakeJudge()


@pytest.fixture
def client(sqlalchemy_db, fake_judge):
    """TestClient with the fake judge wired in."""
    from fastapi.testclient import TestClient
    from gosomi_court.api import app, get_judge_client

    app.dependency_overrides[get_judge_client] = lambda: fake_judge
    yield TestClient(app)
    app.dependency_overrides.clear()
