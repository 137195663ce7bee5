"""
Pytest fixtures for the material request backend tests.

Provides the application on in-memory SQLite, a per-test table wipe, a
small catalog, role profiles for each kind of actor, and helpers to build
editor payloads.
"""

import pytest
from ims import create_app
from ims.config import EditorSettings
from ims.extensions import db
from ims.models import Engineer, Item, Project, RoleProfile
from ims.services.permission_service import ActorContext


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture
def settings():
    return EditorSettings()


@pytest.fixture(scope='function')
def catalog(db_session):
    """
    Items:
    - HSE-001 Safety Helmet, HSE, PCS, stock 4
    - HSE-002 Safety Gloves, HSE, PR (BOX = 10 PR), stock 200
    - TRP-001 Engine Oil, TRP, L, stock 100
    """
    items = [
        Item(item_code="HSE-001", name_en="Safety Helmet", owner_dept_id="HSE",
             unit="PCS", allowed_units=["PCS"], units=[], qty=4),
        Item(item_code="HSE-002", name_en="Safety Gloves", owner_dept_id="HSE",
             unit="PR", allowed_units=["PR", "BOX"],
             units=[{"code": "BOX", "label": "Box", "per_base": 0.1}], qty=200),
        Item(item_code="TRP-001", name_en="Engine Oil", owner_dept_id="TRP",
             unit="L", allowed_units=["L"], units=[], qty=100),
    ]
    db_session.add_all(items)
    db_session.add(Project(id="P-1", name_en="Northern Depot", active=True))
    db_session.add(Project(id="P-2", name_en="Harbour Expansion", active=True))
    db_session.add(Engineer(id="E-1", name_en="Omar Haddad", active=True))
    db_session.commit()
    return {item.item_code: item for item in items}


def _profile(db_session, uid, roles, depts, full_name=None):
    profile = RoleProfile(
        uid=uid,
        full_name=full_name or uid,
        email=f"{uid}@ims.local",
        roles=roles,
        department_ids=depts,
        is_active=True,
    )
    db_session.add(profile)
    db_session.commit()
    return ActorContext.from_profile(profile)


@pytest.fixture
def requester(db_session):
    return _profile(db_session, "trp-req", {"requester": True}, ["TRP"], "Sara Ali")


@pytest.fixture
def trp_manager(db_session):
    return _profile(db_session, "trp-mgr", {"dept_manager": True}, ["TRP"], "Transport Manager")


@pytest.fixture
def hse_manager(db_session):
    return _profile(db_session, "hse-mgr", {"dept_manager": True}, ["HSE"], "HSE Manager")


@pytest.fixture
def store_keeper(db_session):
    return _profile(db_session, "store-1", {"store_officer": True}, ["Store"], "Store Keeper")


@pytest.fixture
def hse_store_manager(db_session):
    """Department manager who is also store officer for HSE stock."""
    return _profile(
        db_session, "hse-store", {"dept_manager": True, "store_officer": True, "requester": True}, ["HSE"],
        "HSE Store Manager",
    )


@pytest.fixture
def admin(db_session):
    return _profile(db_session, "admin", {"admin": True}, ["ADM"], "Admin User")


@pytest.fixture
def outsider(db_session):
    return _profile(db_session, "vrp-req", {"requester": True}, ["VRP"], "Other Requester")

