"""
Pytest fixtures for deal engine backend tests.

Provides test database setup, rep/admin identities, and test client.
"""

import pytest
from dealflow import create_app
from dealflow.extensions import db
from dealflow.models import Rep, Pin


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_ATTEMPTS': 2,
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


@pytest.fixture(scope='function')
def rep_a(db_session):
    """Rep A: 10% default."""
    rep = Rep(user_id="rep-a", full_name="Alex Setter", default_commission_percent_bps=1000)
    db_session.add(rep)
    db_session.commit()
    return rep


@pytest.fixture(scope='function')
def rep_b(db_session):
    """Rep B: 5% default, senior closer."""
    rep = Rep(user_id="rep-b", full_name="Blair Closer", commission_level="senior",
              default_commission_percent_bps=500)
    db_session.add(rep)
    db_session.commit()
    return rep


@pytest.fixture(scope='function')
def inactive_rep(db_session):
    rep = Rep(user_id="rep-gone", full_name="Gone Rep", active=False)
    db_session.add(rep)
    db_session.commit()
    return rep


@pytest.fixture(scope='function')
def pin_a(db_session, rep_a):
    """Pin owned by rep A at 123 Main St."""
    pin = Pin(
        rep_id=rep_a.id,
        latitude=33.0,
        longitude=-96.0,
        address="123 Main St",
        city="Plano",
        state="TX",
        zip_code="75024",
        normalized_address="123 main st",
        homeowner_name="Pat Homeowner",
        homeowner_phone="555-0100",
        status="appointment",
    )
    db_session.add(pin)
    db_session.commit()
    return pin


@pytest.fixture(scope='function')
def admin_headers():
    """Gateway headers for an admin."""
    return {'X-User-Id': 'admin-1', 'X-User-Role': 'admin'}


@pytest.fixture(scope='function')
def rep_a_headers(rep_a):
    return {'X-User-Id': rep_a.user_id, 'X-User-Role': 'rep', 'X-Rep-Id': str(rep_a.id)}


@pytest.fixture(scope='function')
def rep_b_headers(rep_b):
    # No X-Rep-Id: resolved from the roster by user id
    return {'X-User-Id': rep_b.user_id, 'X-User-Role': 'rep'}


EXTENDED_TO_INSTALLED = (
    "inspection_scheduled",
    "claim_filed",
    "adjuster_scheduled",
    "adjuster_met",
    "approved",
    "signed",
    "collect_acv",
    "collect_deductible",
    "install_scheduled",
    "installed",
)

LEGACY_TO_INSTALLED = ("signed", "permit", "install_scheduled", "installed")


@pytest.fixture(scope='function')
def advance():
    """Walk a deal through a sequence of forward statuses."""
    from dealflow.services import deal_service

    def _advance(deal_id: int, *statuses: str, is_admin: bool = False):
        deal = None
        for status in statuses:
            deal = deal_service.transition_deal(deal_id, status, actor_user_id="test", is_admin=is_admin)
        return deal

    return _advance


@pytest.fixture(scope='function')
def installed_deal(db_session, rep_a, rep_b, pin_a, advance):
    """
    $10,000.00 extended deal converted from pin_a, with 10% (rep A) and
    5% (rep B) commissions, advanced to 'installed'.
    """
    from dealflow.services import conversion_service, commission_service

    deal = conversion_service.convert_pin_to_deal(
        pin_a.id, {"total_price_cents": 1_000_000}, actor_user_id="test"
    )
    commission_service.add_commission(deal.id, rep_b.id, "closer", "5")
    return advance(deal.id, *EXTENDED_TO_INSTALLED)
