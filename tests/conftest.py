import os
import threading
import time

import pytest
from sqlalchemy.exc import OperationalError

from offsite_api import create_app
from offsite_api.common.auth import Actor
from offsite_api.common.errors import APIError, SequenceUnavailable
from offsite_api.extensions import db
from offsite_api.models.project import Project, ProjectMember
from offsite_api.models.user import User
from offsite_api.services.sequence import offsite_id_for_role
from offsite_api import seed_rbac


class MemoryStorage:
    """Keeps stored objects in a dict; URLs look like the local provider's."""

    def __init__(self):
        self.objects = {}

    def store(self, data, folder, name, content_type=None):
        key = f"{folder}/{len(self.objects) + 1}_{name}"
        self.objects[key] = (data, content_type)
        return f"/files/{key}"


class FailingStorage(MemoryStorage):
    def store(self, data, folder, name, content_type=None):
        raise ConnectionError("storage offline")


@pytest.fixture(scope="function")
def app(tmp_path):
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    app = create_app(test_config={
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "STORAGE_LOCAL_ROOT": str(tmp_path / "storage"),
        "SMTP_HOST": None,
    })
    with app.app_context():
        db.create_all()
        seed_rbac.run()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def storage(app):
    from offsite_api.storage import set_storage
    s = MemoryStorage()
    set_storage(app, s)
    return s


@pytest.fixture
def client(app):
    return app.test_client()


def make_user(role, email=None, name=None):
    u = User(
        email=email or f"{role}{User.query.count() + 1}@site.test",
        full_name=name or role.replace("_", " ").title(),
        role=role,
        offsite_id=offsite_id_for_role(role),
    )
    u.set_password("secret123")
    db.session.add(u)
    db.session.flush()
    seed_rbac.grant_role(u, role)
    db.session.commit()
    return u


def actor_for(user):
    return Actor(user_id=user.id, role=user.role)


def make_project(owner, members=(), **geo):
    p = Project(name="Tower A", location="Pune", owner_id=owner.id, **geo)
    db.session.add(p)
    db.session.flush()
    for m in members:
        db.session.add(ProjectMember(project_id=p.id, user_id=m.id))
    db.session.commit()
    return p


def build_team():
    """Owner, two managers, an engineer and a purchase manager on one project."""
    owner = make_user("owner")
    pm = make_user("manager")
    pm2 = make_user("manager")
    eng = make_user("engineer")
    pur = make_user("purchase_manager")
    project = make_project(owner, members=(pm, pm2, eng, pur))
    return {"owner": owner, "pm": pm, "pm2": pm2, "eng": eng, "pur": pur, "project": project}


@pytest.fixture
def team(app):
    return build_team()


@pytest.fixture
def shared_app(tmp_path):
    """File-backed database so parallel app contexts really share state."""
    app = create_app(test_config={
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'race.db'}",
        "STORAGE_LOCAL_ROOT": str(tmp_path / "storage"),
        "SMTP_HOST": None,
    })
    with app.app_context():
        db.create_all()
        seed_rbac.run()
        yield app
        db.session.remove()


def race(app, fn, workers=4):
    """
    Start ``workers`` threads together, each calling fn() in its own app
    context. Returns "ok" or the APIError code for every worker.
    """
    gate = threading.Barrier(workers)
    outcomes, errors = [], []

    def worker():
        with app.app_context():
            try:
                gate.wait()
                for _ in range(200):
                    try:
                        fn()
                    except (SequenceUnavailable, OperationalError):
                        # sqlite lock contention; the whole call is retryable
                        db.session.rollback()
                        time.sleep(0.01)
                        continue
                    except APIError as e:
                        db.session.rollback()
                        outcomes.append(e.code)
                    else:
                        outcomes.append("ok")
                    break
            except Exception as e:
                errors.append(e)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []
    assert len(outcomes) == workers
    return sorted(outcomes)
