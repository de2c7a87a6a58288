"""Shared fixtures: in-memory database, API client and entity factories."""
import itertools
import os

os.environ.setdefault("TASKPULSE_DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from taskpulse_core import crud, schemas
from taskpulse_core.api.dependencies import get_current_user
from taskpulse_core.api.main import app
from taskpulse_core.auth import CurrentUser
from taskpulse_core.database import create_db_engine, get_db
from taskpulse_core.models import Base, Role, User


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


def as_user(user: User) -> CurrentUser:
    return CurrentUser.from_user(user)


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(role=Role.DEVELOPER, full_name=None, is_active=True):
        n = next(counter)
        user = User(
            email=f"user{n}@example.com",
            full_name=full_name or f"User {n}",
            role=role,
            resource_serial=n,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def manager(make_user):
    return make_user(Role.MANAGER, "Maya Manager")


@pytest.fixture
def developer(make_user):
    return make_user(Role.DEVELOPER, "Dev One")


@pytest.fixture
def make_project(db, manager):
    def _make(name="Payroll", members=(), modules=(), owner=None):
        data = schemas.ProjectCreate(
            name=name,
            members=[m.id for m in members],
            modules=[schemas.ModuleInput(name=m) for m in modules],
        )
        return crud.create_project(db, data, as_user(owner or manager))

    return _make


@pytest.fixture
def make_sprint(db, manager):
    def _make(project, start_date=None, end_date=None, status="active"):
        data = schemas.SprintCreate(
            project_id=project.id,
            start_date=start_date,
            end_date=end_date,
            status=status,
        )
        return crud.create_sprint(db, data, as_user(manager))

    return _make


@pytest.fixture
def make_task(db, manager):
    def _make(project, actor=None, now=None, **fields):
        fields.setdefault("title", "Build login page")
        data = schemas.TaskCreate(project_id=project.id, **fields)
        return crud.create_task(db, data, as_user(actor or manager), now=now)

    return _make


@pytest.fixture
def api(db):
    """TestClient bound to the test session; lifespan is not run."""
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login(api):
    """Authenticate subsequent requests as the given user."""
    def _login(user: User) -> CurrentUser:
        current = as_user(user)
        app.dependency_overrides[get_current_user] = lambda: current
        return current

    return _login
