"""
Shared fixtures. Every test gets its own SQLite file so the overlap triggers
and BEGIN IMMEDIATE behave as they do in a real deployment.

Times: the facility runs 06:00-23:00 in Asia/Dhaka (UTC+6). NOW is Monday
2030-01-07 06:00 local; most slots are booked on Tuesday 2030-01-08.
"""
from datetime import date, datetime, time, timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from app import create_app
from config import Config
from models import (
    Facility,
    OwnerSubscription,
    PaymentIntent,
    PeakRule,
    PlayArea,
    PricingProfile,
    User,
    db,
)
from security.session import create_session
from services import get_services
from services.gateway import SandboxGatewayClient, sign_payload

STORE_PASSWORD = "test-store-pass"
DHAKA_OFFSET = timedelta(hours=6)

NOW = datetime(2030, 1, 7, 0, 0)
DAY = date(2030, 1, 8)


def at(hour: int, minute: int = 0, day: date = DAY) -> datetime:
    """Dhaka wall-clock time on `day` as naive UTC."""
    return datetime.combine(day, time(hour, minute)) - DHAKA_OFFSET


def delivery(intent_or_tran, amount, status: str = "VALID", val_id: str = None,
             password: str = STORE_PASSWORD, **extra) -> dict:
    """A signed IPN body the way the gateway posts it."""
    tran_id = getattr(intent_or_tran, "gateway_tran_id", intent_or_tran)
    payload = {
        "tran_id": tran_id,
        "val_id": val_id or f"VAL{tran_id}",
        "amount": str(amount),
        "currency": "BDT",
        "status": status,
    }
    payload.update(extra)
    return sign_payload(payload, password)


@pytest.fixture
def redis_mock():
    client = MagicMock()
    client.set.return_value = True
    client.eval.return_value = 1
    client.get.return_value = None
    return client


@pytest.fixture
def gateway():
    return SandboxGatewayClient()


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def app(tmp_path, redis_mock, gateway, notifier):
    class TestConfig(Config):
        TESTING = True
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "slotkeeper-test.db")
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 30}}
        SSLCOMMERZ_STORE_PASSWORD = STORE_PASSWORD
        FACILITY_TIMEZONE = "Asia/Dhaka"
        PAYMENT_GATEWAY = "sandbox"
        REDIS_URL = None
        LOG_LEVEL = "WARNING"

    app = create_app(TestConfig, redis_client=redis_mock, gateway=gateway, notifier=notifier)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def services(app):
    return get_services()


@pytest.fixture
def world(app):
    """Owner with an active subscription, an approved facility, one play area and a player."""
    owner = User(email="owner@example.com", full_name="Pitch Owner")
    player = User(email="player@example.com", full_name="Rafi Player", phone_number="01700000000")
    other = User(email="other@example.com", full_name="Second Player")
    db.session.add_all([owner, player, other])
    db.session.flush()

    facility = Facility(owner_user_id=owner.id, name="Dhanmondi Arena", opening_time="06:00",
                        closing_time="23:00", is_approved=True)
    db.session.add(facility)
    db.session.add(OwnerSubscription(owner_user_id=owner.id, status="ACTIVE"))
    db.session.flush()

    area = PlayArea(facility_id=facility.id, name="Court A", conflict_group_id="cg-arena-1")
    db.session.add(area)
    db.session.flush()

    profile = PricingProfile(
        play_area_id=area.id,
        sport="FUTSAL",
        allowed_durations=[60, 90],
        duration_prices={"60": 1000, "90": 1400},
        peak_duration_prices={"60": 1500},
        slot_interval_minutes=30,
        buffer_minutes=10,
        min_lead_time_minutes=60,
    )
    db.session.add(profile)
    db.session.flush()

    # Tuesday evenings are peak
    db.session.add(PeakRule(pricing_profile_id=profile.id, day_of_week=1, start_time="18:00", end_time="22:00"))
    db.session.flush()

    ids = SimpleNamespace(
        owner_id=owner.id,
        player_id=player.id,
        other_id=other.id,
        facility_id=facility.id,
        play_area_id=area.id,
        profile_id=profile.id,
        conflict_group_id=area.conflict_group_id,
    )
    db.session.commit()
    return ids


@pytest.fixture
def hold(services, world):
    """Factory: place a hold for the player (or someone else) at a local time on DAY."""

    def _hold(hour: int = 16, minute: int = 0, duration: int = 60, buyer_id: int = None, now: datetime = NOW):
        return services.holds.create_hold(
            buyer_id or world.player_id,
            world.play_area_id,
            world.profile_id,
            at(hour, minute),
            duration,
            now=now,
        )

    return _hold


@pytest.fixture
def pay(services):
    """Factory: deliver a verified success for a hold and return the reconciliation result."""

    def _pay(hold_result, **kwargs):
        intent = PaymentIntent.query.get(hold_result.payment_intent_id)
        return services.reconciler.process_webhook_delivery(delivery(intent, intent.amount, **kwargs))

    return _pay


def _client_for(app, user_id):
    token = create_session(user_id)
    client = app.test_client()
    client.set_cookie(app.config["AUTH_COOKIE_NAME"], token)
    return client


@pytest.fixture
def player_client(app, world):
    return _client_for(app, world.player_id)


@pytest.fixture
def owner_client(app, world):
    return _client_for(app, world.owner_id)


@pytest.fixture
def other_client(app, world):
    return _client_for(app, world.other_id)
