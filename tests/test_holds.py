import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from models import (
    BookingEvent,
    Facility,
    ManualBlock,
    OwnerSubscription,
    PaymentIntent,
    PlayArea,
    PricingProfile,
    Reservation,
    User,
    db,
)
from models.exclusion import is_overlap_violation
from services.errors import (
    DomainError,
    FacilityNotBookable,
    InvalidDuration,
    NotFound,
    RateLimited,
    SlotConflict,
    SlotNotBookable,
    SubscriptionInactive,
)
from services.holds import new_reservation_number
from services.sweeps import complete_finished, expire_due_holds

from conftest import NOW, at


class TestCreateHold:
    def test_hold_snapshots_pricing(self, hold) -> None:
        result = hold(16)

        reservation = Reservation.query.get(result.reservation_id)
        assert reservation.status == "HOLD"
        assert reservation.payment_stage == "NOT_PAID"
        assert reservation.start_at == at(16)
        assert reservation.end_at == at(17)
        assert reservation.blocked_end_at == at(17, 10)
        assert (reservation.total_amount, reservation.advance_amount) == (1000, 100)
        assert (reservation.platform_commission, reservation.owner_advance_credit) == (50, 50)
        assert reservation.hold_expires_at == NOW + timedelta(minutes=10)
        assert reservation.reservation_number.startswith("SK-20300107-")

        intent = PaymentIntent.query.get(result.payment_intent_id)
        assert intent.status == "PENDING"
        assert intent.amount == 100
        assert intent.gateway_tran_id == result.gateway_tran_id

        events = BookingEvent.query.filter_by(reservation_id=reservation.id).all()
        assert [e.event for e in events] == ["created"]

    def test_peak_hold_uses_peak_price(self, hold) -> None:
        result = hold(19)
        reservation = Reservation.query.get(result.reservation_id)
        assert reservation.is_peak_pricing
        assert reservation.total_amount == 1500
        assert result.advance_amount == 150

    def test_hold_publishes_created(self, hold, notifier) -> None:
        hold(16)
        assert notifier.notify.call_args[0][0] == "created"

    def test_buffer_blocks_back_to_back(self, hold) -> None:
        hold(16)
        with pytest.raises(SlotConflict):
            hold(17)
        second = hold(17, 10)
        assert second.reservation_id

    def test_slot_before_needs_room_for_its_buffer(self, hold) -> None:
        hold(16)
        with pytest.raises(SlotConflict):
            hold(15)
        assert hold(14, 50).reservation_id

    def test_duration_not_offered(self, hold) -> None:
        with pytest.raises(InvalidDuration) as exc:
            hold(16, duration=45)
        assert exc.value.details["allowed"] == [60, 90]

    def test_outside_operating_hours(self, hold) -> None:
        with pytest.raises(SlotNotBookable):
            hold(22, 30)
        with pytest.raises(SlotNotBookable):
            hold(5)

    def test_inside_lead_time(self, hold) -> None:
        with pytest.raises(SlotNotBookable):
            hold(16, now=at(15, 30))

    def test_inactive_subscription(self, hold, world) -> None:
        OwnerSubscription.query.filter_by(owner_user_id=world.owner_id).update({"status": "SUSPENDED"})
        db.session.commit()
        with pytest.raises(SubscriptionInactive) as exc:
            hold(16)
        assert exc.value.http_status == 403
        assert exc.value.details["subscription_status"] == "SUSPENDED"

    def test_trial_subscription_can_book(self, hold, world) -> None:
        OwnerSubscription.query.filter_by(owner_user_id=world.owner_id).update({"status": "TRIAL"})
        db.session.commit()
        assert hold(16).reservation_id

    def test_unapproved_facility(self, hold, world) -> None:
        Facility.query.filter_by(id=world.facility_id).update({"is_approved": False})
        db.session.commit()
        with pytest.raises(FacilityNotBookable):
            hold(16)

    def test_unknown_play_area(self, services, world) -> None:
        with pytest.raises(NotFound):
            services.holds.create_hold(world.player_id, 9999, world.profile_id, at(16), 60, now=NOW)

    def test_manual_block_conflict(self, hold, world) -> None:
        db.session.add(ManualBlock(facility_id=world.facility_id, conflict_group_id=world.conflict_group_id,
                                   start_at=at(10), end_at=at(12), block_type="MAINTENANCE",
                                   created_by=world.owner_id))
        db.session.commit()
        with pytest.raises(SlotConflict):
            hold(11)
        with pytest.raises(SlotConflict):
            hold(9)
        assert hold(12).reservation_id

    def test_rate_limited(self, app, hold) -> None:
        app.config["BOOKING_RATE_MAX_REQUESTS"] = 2
        hold(8)
        hold(10)
        with pytest.raises(RateLimited) as exc:
            hold(12)
        assert exc.value.http_status == 429
        assert 1 <= exc.value.retry_after <= 60

    def test_rate_limit_window_slides(self, app, hold) -> None:
        app.config["BOOKING_RATE_MAX_REQUESTS"] = 1
        hold(8)
        with pytest.raises(RateLimited):
            hold(10)
        assert hold(10, now=NOW + timedelta(minutes=3)).reservation_id

    def test_advisory_lock_miss_does_not_block(self, hold, redis_mock) -> None:
        redis_mock.set.return_value = False
        assert hold(16).reservation_id

    def test_lock_taken_over_by_reservation(self, hold, redis_mock, world) -> None:
        result = hold(16)
        key = f"lock:slot:{world.conflict_group_id}:{at(16).isoformat()}:{at(17).isoformat()}"
        last_set = redis_mock.set.call_args
        assert last_set[0][0] == key
        assert f'"reservation_id": "{result.reservation_id}"' in last_set[0][1]
        assert last_set[1]["nx"] is True


class TestNoDoubleBooking:
    def test_concurrent_holds_on_one_slot(self, app, services, world) -> None:
        buyers = []
        for i in range(6):
            user = User(email=f"racer{i}@example.com")
            db.session.add(user)
            db.session.flush()
            buyers.append(user.id)
        db.session.commit()

        barrier = threading.Barrier(len(buyers))
        outcomes = []

        def attempt(buyer_id):
            with app.app_context():
                barrier.wait()
                try:
                    services.holds.create_hold(buyer_id, world.play_area_id, world.profile_id, at(16), 60, now=NOW)
                    outcomes.append("won")
                except SlotConflict:
                    outcomes.append("conflict")

        threads = [threading.Thread(target=attempt, args=(b,)) for b in buyers]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert sorted(outcomes) == ["conflict"] * (len(buyers) - 1) + ["won"]
        assert Reservation.occupying(world.conflict_group_id).count() == 1

    def test_storage_rejects_overlap_written_directly(self, hold, world) -> None:
        first = Reservation.query.get(hold(16).reservation_id)

        clone = Reservation(
            reservation_number="SK-DIRECT-1",
            player_user_id=world.other_id,
            play_area_id=world.play_area_id,
            pricing_profile_id=world.profile_id,
            conflict_group_id=world.conflict_group_id,
            start_at=at(17),
            end_at=at(18),
            blocked_end_at=at(18, 10),
            duration_minutes=60,
            status="CONFIRMED",
            total_amount=1000,
            advance_amount=100,
            platform_commission=50,
            owner_advance_credit=50,
        )
        db.session.add(clone)
        with pytest.raises(IntegrityError) as exc:
            db.session.commit()
        db.session.rollback()
        assert is_overlap_violation(exc.value)
        assert first.status == "HOLD"

    def test_storage_rejects_block_over_hold(self, hold, world) -> None:
        hold(16)
        db.session.add(ManualBlock(facility_id=world.facility_id, conflict_group_id=world.conflict_group_id,
                                   start_at=at(17), end_at=at(18), created_by=world.owner_id))
        with pytest.raises(IntegrityError) as exc:
            db.session.commit()
        db.session.rollback()
        assert is_overlap_violation(exc.value)

    def test_other_conflict_group_is_independent(self, services, hold, world) -> None:
        area = PlayArea(facility_id=world.facility_id, name="Court B", conflict_group_id="cg-arena-2")
        db.session.add(area)
        db.session.flush()
        profile = PricingProfile(play_area_id=area.id, allowed_durations=[60], duration_prices={"60": 800},
                                 buffer_minutes=0, min_lead_time_minutes=0)
        db.session.add(profile)
        db.session.flush()
        area_id, profile_id = area.id, profile.id
        db.session.commit()

        hold(16)
        other = services.holds.create_hold(world.other_id, area_id, profile_id, at(16), 60, now=NOW)
        assert other.total_amount == 800


class TestTimeExits:
    def test_expire_is_idempotent_and_releases_lock(self, services, hold, redis_mock, world) -> None:
        result = hold(16)
        rid = result.reservation_id

        assert not services.holds.expire_hold(rid, now=NOW + timedelta(minutes=5))
        assert services.holds.expire_hold(rid, now=NOW + timedelta(minutes=10))
        assert not services.holds.expire_hold(rid, now=NOW + timedelta(minutes=11))

        reservation = Reservation.query.get(rid)
        assert reservation.status == "EXPIRED"
        assert reservation.expired_at == NOW + timedelta(minutes=10)
        assert PaymentIntent.query.get(result.payment_intent_id).status == "EXPIRED"
        assert BookingEvent.query.filter_by(reservation_id=rid, event="expired").count() == 1

        key = f"lock:slot:{world.conflict_group_id}:{at(16).isoformat()}:{at(17).isoformat()}"
        assert redis_mock.eval.call_args[0][2:] == (key, str(rid))

    def test_sweep_expires_only_due_holds(self, services, hold) -> None:
        early = hold(8)
        late = hold(12, now=NOW + timedelta(minutes=5))

        assert expire_due_holds(services.holds, now=NOW + timedelta(minutes=12)) == 1
        assert Reservation.query.get(early.reservation_id).status == "EXPIRED"
        assert Reservation.query.get(late.reservation_id).status == "HOLD"
        assert expire_due_holds(services.holds, now=NOW + timedelta(minutes=12)) == 0

    def test_complete_after_end(self, services, hold, pay) -> None:
        result = hold(16)
        pay(result)

        assert complete_finished(services.holds, now=at(16, 59)) == 0
        assert complete_finished(services.holds, now=at(17)) == 1
        reservation = Reservation.query.get(result.reservation_id)
        assert reservation.status == "COMPLETED"
        assert reservation.completed_at == at(17)

    def test_unpaid_hold_is_never_completed(self, services, hold) -> None:
        result = hold(16)
        assert not services.holds.complete_reservation(result.reservation_id, now=at(18))


class TestOfflinePayment:
    def test_balance_collected_in_two_parts(self, services, hold, pay, world) -> None:
        result = hold(16)
        pay(result)

        r = services.holds.record_offline_payment(result.reservation_id, world.owner_id, 400)
        assert r.payment_stage == "PARTIAL_OFFLINE"
        r = services.holds.record_offline_payment(result.reservation_id, world.owner_id, 500, method="BKASH")
        assert r.payment_stage == "FULL_PAID_OFFLINE"
        assert r.offline_amount_collected == 900

    def test_cannot_overcollect(self, services, hold, pay, world) -> None:
        result = hold(16)
        pay(result)
        with pytest.raises(DomainError) as exc:
            services.holds.record_offline_payment(result.reservation_id, world.owner_id, 901)
        assert exc.value.code == "InvalidAmount"

    def test_not_before_confirmation(self, services, hold, world) -> None:
        result = hold(16)
        with pytest.raises(DomainError) as exc:
            services.holds.record_offline_payment(result.reservation_id, world.owner_id, 100)
        assert exc.value.code == "OfflinePaymentNotAllowed"


def test_reservation_number_format() -> None:
    number = new_reservation_number(datetime(2030, 1, 7, 12, 0))
    assert number.startswith("SK-20300107-")
    assert len(number) == len("SK-20300107-") + 6
