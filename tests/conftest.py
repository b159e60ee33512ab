"""
Shared fixtures: one app on in-memory SQLite, a fresh schema per test,
factories for clients, staff and treatments.
"""
from datetime import date
from decimal import Decimal

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.treatment import Treatment, TreatmentPrice
from models.user import Role, User
from security.password import hash_password
from services import ledger
from utils.seed import seed_roles
from utils.timeslots import day_key

PASSWORD = "Passw0rd123"

# far enough ahead that "today" never interferes with slot generation
BOOKING_DAY = date(2030, 6, 5)
DAY_KEY = day_key(BOOKING_DAY)
PRACTITIONER = "Maria"


@pytest.fixture(scope="session")
def app():
    return create_app(TestConfig)


@pytest.fixture(autouse=True)
def _database(app):
    with app.app_context():
        db.drop_all()
        db.create_all()
        seed_roles()
        yield db
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(scope="session")
def password_hash():
    # bcrypt is slow on purpose; hash once per run
    return hash_password(PASSWORD)


@pytest.fixture
def make_user(password_hash):
    counter = {"n": 0}

    def _make(email=None, roles=("CLIENT",), credit="0.00", full_name="Lerato Mokoena"):
        counter["n"] += 1
        user = User(
            email=email or f"client{counter['n']}@example.com",
            password_hash=password_hash,
            full_name=full_name,
            phone_number="0821234567",
            credit_balance=Decimal(credit),
        )
        for name in roles:
            user.roles.append(Role.query.filter_by(name=name).one())
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def staff(make_user):
    return make_user(email="staff@example.com", roles=("ADMIN",), full_name="Front Desk")


@pytest.fixture
def make_treatment():
    def _make(name="Swedish Massage", prices=None, available=True):
        treatment = Treatment(name=name, speciality="Massage", about="Full body", available=available)
        for duration, price in (prices or {30: "500.00", 60: "800.00"}).items():
            treatment.prices.append(TreatmentPrice(duration=duration, price=Decimal(price)))
        db.session.add(treatment)
        db.session.commit()
        return treatment

    return _make


@pytest.fixture
def treatment(make_treatment):
    return make_treatment()


@pytest.fixture
def make_appointment(treatment):
    def _make(user, slot_time="10:00", duration=30, practitioner=PRACTITIONER, slot_date=DAY_KEY,
              payment_type="full", treatment_id=None):
        return ledger.create_appointment(
            user_id=user.id,
            treatment_id=treatment_id or treatment.id,
            slot_date=slot_date,
            slot_time=slot_time,
            duration=duration,
            practitioner=practitioner,
            payment_type=payment_type,
        )

    return _make


@pytest.fixture
def login(client):
    """Log in through the API and return the headers a state-changing call needs."""
    def _login(user, password=PASSWORD, using=None):
        c = using or client
        resp = c.post("/auth/login", json={"email": user.email, "password": password})
        assert resp.status_code == 200, resp.get_json()
        token = c.get_cookie("csrf_token").value
        return {"X-CSRF-Token": token}

    return _login
