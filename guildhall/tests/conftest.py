# tests/conftest.py
import datetime
import os

import pytest

os.environ["ENV_MODE"] = "dev"
os.environ["GUILDHALL_STORE"] = "memory"

from fastapi.testclient import TestClient

from guildhall import main  # noqa: F401  registers every route
from guildhall.notifications.utils import Notifier
from guildhall.Progression.engine import QuestProgression
from guildhall.Quests.models import Objective, Quest
from guildhall.Quests.utils import add_objective, create_quest, publish_quest
from guildhall.settings import app, store
from guildhall.User.models import Principal
from guildhall.User.utils import create_access_token, ensure_user, load_principal

START = datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.timezone.utc)


class FakeClock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + datetime.timedelta(**kwargs)


@pytest.fixture(autouse=True)
def clean_store():
    store.clear()
    yield
    store.clear()


@pytest.fixture(scope="session")
def client():
    # startup events (the deadline sweep) are not run outside a `with` block
    return TestClient(app)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(clock):
    return QuestProgression(store, Notifier(store, clock=clock), clock=clock)


@pytest.fixture
def make_user():
    def _make_user(user_id, *roles, display_name=None):
        ensure_user(user_id, email=f"{user_id}@guildhall.test", display_name=display_name or user_id)
        for role in roles:
            store.add_role(user_id, role)
        return load_principal(user_id)

    return _make_user


@pytest.fixture
def adventurer(make_user) -> Principal:
    return make_user("alice")


@pytest.fixture
def gm(make_user) -> Principal:
    return make_user("gamemaster", "gm")


@pytest.fixture
def headers_for():
    def _headers_for(principal: Principal):
        token = create_access_token(principal.id, email=principal.email)
        return {"Authorization": f"Bearer {token}"}

    return _headers_for


@pytest.fixture
def make_quest(gm):
    """Create and publish a quest. Objectives are dicts of Objective fields;
    ``depends_on`` is the index of an earlier objective in the list."""

    def _make_quest(objectives=None, publish=True, **fields):
        fields.setdefault("title", "Clear the Cellar")
        fields.setdefault("points", 100)
        quest = create_quest(store, gm, Quest(**fields))

        created = []
        for objective in objectives if objectives is not None else [{"title": "Find the rats"}]:
            objective = dict(objective)
            depends_on = objective.pop("depends_on", None)
            if depends_on is not None:
                objective["depends_on_id"] = created[depends_on]["id"]
            created.append(add_objective(store, gm, quest["id"], Objective(**objective)))

        if publish:
            quest = publish_quest(store, gm, quest["id"])
        quest["objectives"] = created
        return quest

    return _make_quest
