"""
Hold manager: provisional reservations and their time-based exits.

create_hold runs in two tiers. A Redis lease on the slot is tried first and
only logged when it cannot be had; the insert itself is checked by the
booking_no_overlap rule in the database, which is what decides who wins.
"""
import logging
import secrets
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError

from models import db
from models.exclusion import is_overlap_violation
from models.payment import PaymentIntent
from models.play_area import PlayArea
from models.pricing import PricingProfile
from models.reservation import Reservation
from models.subscription import OwnerSubscription
from security.rate_limit import check_and_increment_booking_rate
from services import availability
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
from services.events import record_event
from services.money import ADVANCE_RATE, COMMISSION_RATE, booking_pricing
from services.state_machine import (
    COMPLETED,
    CONFIRMED,
    EXPIRED,
    HOLD,
    PaymentIntentStatus,
    PaymentStage,
    can_receive_offline_payment,
)
from services.transitions import apply_transition

logger = logging.getLogger(__name__)

NUMBER_ATTEMPTS = 3


@dataclass
class HoldResult:
    reservation_id: int
    reservation_number: str
    payment_intent_id: int
    gateway_tran_id: str
    total_amount: int
    advance_amount: int
    hold_expires_at: datetime

    def to_dict(self) -> dict:
        out = asdict(self)
        out["hold_expires_at"] = self.hold_expires_at.isoformat()
        return out


def new_reservation_number(now: datetime) -> str:
    return f"SK-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


def new_tran_id() -> str:
    return f"TXN{secrets.token_hex(8).upper()}"


class HoldManager:
    def __init__(self, slot_lock, dispatcher, hold_minutes: int = 10, advance_rate=ADVANCE_RATE,
                 commission_rate=COMMISSION_RATE, currency: str = "BDT", gateway_name: str = "SSLCOMMERZ",
                 rate_limiter=check_and_increment_booking_rate):
        self.slot_lock = slot_lock
        self.dispatcher = dispatcher
        self.hold_minutes = hold_minutes
        self.advance_rate = advance_rate
        self.commission_rate = commission_rate
        self.currency = currency
        self.gateway_name = gateway_name
        self.rate_limiter = rate_limiter

    # ---------- preconditions ----------

    def _load_bookable(self, play_area_id: int, pricing_profile_id: int):
        area = PlayArea.query.get(play_area_id)
        if not area or not area.is_active or area.deleted_at is not None:
            raise NotFound("Play area not found", details={"play_area_id": play_area_id})

        profile = PricingProfile.query.get(pricing_profile_id)
        if not profile or profile.play_area_id != area.id or not profile.is_active:
            raise NotFound("Pricing profile not found", details={"pricing_profile_id": pricing_profile_id})

        facility = area.facility
        if not facility.is_bookable:
            raise FacilityNotBookable("Facility is not open for bookings", details={"facility_id": facility.id})

        sub = OwnerSubscription.query.filter_by(owner_user_id=facility.owner_user_id).first()
        if not sub or not sub.is_active:
            raise SubscriptionInactive(facility.owner_user_id, sub.status if sub else None)

        return area, profile

    def _check_window(self, facility, profile, start_at: datetime, end_at: datetime, now: datetime):
        if not availability.respects_lead_time(start_at, profile.min_lead_time_minutes, now):
            raise SlotNotBookable(
                f"Bookings must start at least {profile.min_lead_time_minutes} minutes from now",
                details={"start_at": start_at.isoformat()},
            )

        tz = availability.facility_tz()
        local_day = availability.utc_to_local(start_at, tz).date()
        # a window that closes after midnight belongs to the previous local day
        for day in (local_day, local_day - timedelta(days=1)):
            open_at, close_at = availability.operating_window(facility, day, tz)
            if open_at <= start_at and end_at <= close_at:
                return
        raise SlotNotBookable(
            "Requested time is outside operating hours",
            details={"start_at": start_at.isoformat(), "end_at": end_at.isoformat()},
        )

    # ---------- create ----------

    def create_hold(self, buyer_id: int, play_area_id: int, pricing_profile_id: int, start_at: datetime,
                    duration_minutes: int, contact: dict = None, now: datetime = None) -> HoldResult:
        now = now or datetime.utcnow()
        contact = contact or {}

        allowed, retry_after = self.rate_limiter(buyer_id, now)
        if not allowed:
            raise RateLimited(retry_after)

        area, profile = self._load_bookable(play_area_id, pricing_profile_id)
        if not profile.allows_duration(duration_minutes):
            raise InvalidDuration(duration_minutes, profile.allowed_durations)

        end_at = start_at + timedelta(minutes=duration_minutes)
        blocked_end_at = end_at + timedelta(minutes=profile.buffer_minutes)
        self._check_window(area.facility, profile, start_at, end_at, now)

        peak = availability.is_peak(start_at, end_at, profile.peak_rules, availability.facility_tz())
        total = availability.quote_price(profile, duration_minutes, peak)
        if total is None:
            raise InvalidDuration(duration_minutes, profile.allowed_durations)
        pricing = booking_pricing(total, self.advance_rate, self.commission_rate)

        cg = area.conflict_group_id
        lock_key = self.slot_lock.key(cg, start_at, end_at)
        provisional_owner = f"pending-{secrets.token_hex(6)}"
        locked = self.slot_lock.acquire(lock_key, provisional_owner, buyer_id)
        if not locked:
            logger.warning(
                "slot_lock_contended",
                extra={"key": lock_key, "buyer_id": buyer_id},
            )

        hold_expires_at = now + timedelta(minutes=self.hold_minutes)
        try:
            reservation, intent = self._insert_hold(
                buyer_id, area, profile, start_at, end_at, blocked_end_at, duration_minutes,
                pricing, peak, hold_expires_at, contact, now,
            )
        except Exception:
            if locked:
                self.slot_lock.release(lock_key, provisional_owner)
            raise

        if locked:
            self.slot_lock.release(lock_key, provisional_owner)
        self.slot_lock.acquire(lock_key, reservation.id, buyer_id, ttl_seconds=self.hold_minutes * 60)

        logger.info(
            "hold_created",
            extra={"reservation_id": reservation.id, "conflict_group_id": cg, "start_at": start_at.isoformat()},
        )
        self.dispatcher.publish("created", reservation)

        return HoldResult(
            reservation_id=reservation.id,
            reservation_number=reservation.reservation_number,
            payment_intent_id=intent.id,
            gateway_tran_id=intent.gateway_tran_id,
            total_amount=reservation.total_amount,
            advance_amount=reservation.advance_amount,
            hold_expires_at=hold_expires_at,
        )

    def _insert_hold(self, buyer_id, area, profile, start_at, end_at, blocked_end_at, duration_minutes,
                     pricing, peak, hold_expires_at, contact, now):
        cg = area.conflict_group_id
        for attempt in range(1, NUMBER_ATTEMPTS + 1):
            if not availability.is_slot_free(cg, start_at, blocked_end_at):
                db.session.rollback()
                raise SlotConflict(cg, start_at, blocked_end_at)

            reservation = Reservation(
                reservation_number=new_reservation_number(now),
                player_user_id=buyer_id,
                play_area_id=area.id,
                pricing_profile_id=profile.id,
                conflict_group_id=cg,
                start_at=start_at,
                end_at=end_at,
                blocked_end_at=blocked_end_at,
                duration_minutes=duration_minutes,
                status=HOLD,
                payment_stage=PaymentStage.NOT_PAID,
                total_amount=pricing.total_amount,
                advance_amount=pricing.advance_amount,
                platform_commission=pricing.platform_commission,
                owner_advance_credit=pricing.owner_advance_credit,
                is_peak_pricing=peak,
                hold_expires_at=hold_expires_at,
                contact_name=contact.get("name"),
                contact_phone=contact.get("phone"),
                contact_email=contact.get("email"),
                notes=contact.get("notes"),
                created_at=now,
            )
            db.session.add(reservation)
            try:
                db.session.flush()
                intent = PaymentIntent(
                    reservation_id=reservation.id,
                    gateway=self.gateway_name,
                    amount=pricing.advance_amount,
                    currency=self.currency,
                    status=PaymentIntentStatus.PENDING,
                    gateway_tran_id=new_tran_id(),
                    expires_at=hold_expires_at,
                    created_at=now,
                )
                db.session.add(intent)
                record_event(
                    reservation.id, "created", None, HOLD,
                    metadata={"advance_amount": pricing.advance_amount, "hold_expires_at": hold_expires_at.isoformat()},
                    created_by=buyer_id,
                )
                db.session.commit()
                return reservation, intent
            except IntegrityError as exc:
                db.session.rollback()
                if is_overlap_violation(exc):
                    logger.info(
                        "hold_rejected_overlap",
                        extra={"conflict_group_id": cg, "start_at": start_at.isoformat()},
                    )
                    raise SlotConflict(cg, start_at, blocked_end_at) from exc
                if "reservation_number" not in str(exc.orig) and "gateway_tran_id" not in str(exc.orig):
                    raise
                logger.warning("hold_number_collision", extra={"attempt": attempt})
        raise DomainError("Could not allocate a reservation number", code="NumberAllocationFailed")

    # ---------- time-based exits ----------

    def expire_hold(self, reservation_id: int, now: datetime = None) -> bool:
        """HOLD -> EXPIRED once the deadline passed. False when there was nothing to do."""
        now = now or datetime.utcnow()
        reservation = Reservation.query.get(reservation_id)
        if not reservation or reservation.status != HOLD:
            return False
        if reservation.hold_expires_at and reservation.hold_expires_at > now:
            return False

        if not apply_transition(reservation_id, HOLD, EXPIRED, expired_at=now):
            db.session.rollback()
            return False

        PaymentIntent.query.filter(
            PaymentIntent.reservation_id == reservation_id,
            PaymentIntent.status == PaymentIntentStatus.PENDING,
        ).update({"status": PaymentIntentStatus.EXPIRED, "updated_at": now}, synchronize_session="fetch")
        record_event(reservation_id, "expired", HOLD, EXPIRED, metadata={"hold_expires_at": str(reservation.hold_expires_at)})
        db.session.commit()

        self.release_slot(reservation)
        logger.info("hold_expired", extra={"reservation_id": reservation_id})
        self.dispatcher.publish("expired", reservation)
        return True

    def complete_reservation(self, reservation_id: int, now: datetime = None) -> bool:
        now = now or datetime.utcnow()
        reservation = Reservation.query.get(reservation_id)
        if not reservation or reservation.status != CONFIRMED or reservation.end_at > now:
            return False

        if not apply_transition(reservation_id, CONFIRMED, COMPLETED, completed_at=now):
            db.session.rollback()
            return False
        record_event(reservation_id, "completed", CONFIRMED, COMPLETED)
        db.session.commit()

        self.dispatcher.publish("completed", reservation)
        return True

    def release_slot(self, reservation) -> None:
        key = self.slot_lock.key(reservation.conflict_group_id, reservation.start_at, reservation.end_at)
        self.slot_lock.release(key, reservation.id)

    # ---------- offline collection ----------

    def record_offline_payment(self, reservation_id: int, recorder_id: int, amount: int,
                               method: str = "CASH", notes: str = None) -> Reservation:
        reservation = Reservation.query.get(reservation_id)
        if not reservation or reservation.deleted_at is not None:
            raise NotFound("Reservation not found", details={"reservation_id": reservation_id})
        if not can_receive_offline_payment(reservation.status):
            raise DomainError(
                f"Cannot record payment for a {reservation.status} reservation",
                code="OfflinePaymentNotAllowed",
                details={"reservation_id": reservation_id, "status": reservation.status},
            )
        if amount <= 0:
            raise DomainError("Amount must be positive", code="InvalidAmount")

        collected = reservation.offline_amount_collected + amount
        if collected > reservation.remaining_amount:
            raise DomainError(
                "Amount exceeds the balance due",
                code="InvalidAmount",
                details={"remaining": reservation.remaining_amount - reservation.offline_amount_collected},
            )

        reservation.offline_amount_collected = collected
        reservation.payment_stage = (
            PaymentStage.FULL_PAID_OFFLINE if collected >= reservation.remaining_amount
            else PaymentStage.PARTIAL_OFFLINE
        )
        record_event(
            reservation.id, "offline_payment_recorded", reservation.status, reservation.status,
            metadata={"amount": amount, "method": method, "notes": notes, "collected": collected},
            created_by=recorder_id,
        )
        db.session.commit()
        return reservation
