from datetime import timedelta

import pytest

from models import LedgerEntry, PaymentIntent, Refund, Reservation
from services import ledger
from services.cancellation import evaluate, tier_for
from services.errors import CancellationNotAllowed, NotFound, RefundStateError
from services.money import TIER_FULL, TIER_NONE, TIER_PARTIAL_50

from conftest import NOW, at


class TestTiers:
    @pytest.mark.parametrize(
        "hours, tier",
        [
            (48, TIER_FULL),
            (24.01, TIER_FULL),
            (24, TIER_PARTIAL_50),
            (6, TIER_PARTIAL_50),
            (5.99, TIER_NONE),
            (0.5, TIER_NONE),
        ],
    )
    def test_boundaries(self, hours, tier) -> None:
        assert tier_for(hours) == tier


class TestCancelPaidBooking:
    @pytest.mark.parametrize(
        "hours_before, tier, refund, retained",
        [
            (30, TIER_FULL, 50, 50),
            (10, TIER_PARTIAL_50, 0, 100),
            (3, TIER_NONE, 0, 100),
        ],
    )
    def test_refund_by_tier(self, services, hold, pay, world, hours_before, tier, refund, retained) -> None:
        held = hold(16)
        pay(held)
        now = at(16) - timedelta(hours=hours_before)

        quote = services.cancellations.quote(held.reservation_id, now=now)
        assert quote.can_cancel
        assert (quote.tier, quote.refundable_amount, quote.platform_fee_retained) == (tier, refund, retained)

        result = services.cancellations.cancel(held.reservation_id, world.player_id, "rain", now=now)

        assert (result.tier, result.refund_amount, result.platform_fee_retained) == (tier, refund, retained)
        reservation = Reservation.query.get(held.reservation_id)
        assert reservation.status == "CANCELED"
        assert reservation.canceled_by == world.player_id
        assert reservation.cancellation_reason == "rain"

        row = Refund.query.get(result.refund_id)
        assert row.status == "REQUESTED"
        assert row.refund_amount == refund
        assert row.original_advance == 100
        assert row.refund_amount + row.platform_fee_retained == row.original_advance

    def test_cancel_reverses_owner_credit(self, services, hold, pay, world) -> None:
        held = hold(16)
        pay(held)
        assert ledger.owner_balance(world.owner_id) == 50

        services.cancellations.cancel(held.reservation_id, world.player_id, now=at(16) - timedelta(hours=30))

        entries = LedgerEntry.query.filter_by(reservation_id=held.reservation_id).order_by(LedgerEntry.id).all()
        assert [(e.entry_type, e.amount) for e in entries] == [("BOOKING_CREDIT", 50), ("BOOKING_REVERSAL", -50)]
        assert ledger.owner_balance(world.owner_id) == 0

        summary = ledger.settlement_summary(world.owner_id, entries[0].period_month)
        assert summary["net"] == 0
        assert summary["entries"]["BOOKING_CREDIT"] == {"count": 1, "amount": 50}

    def test_cancel_releases_slot_and_lock(self, services, hold, pay, world, redis_mock) -> None:
        held = hold(16)
        pay(held)
        services.cancellations.cancel(held.reservation_id, world.player_id, now=at(16) - timedelta(hours=30))

        assert redis_mock.eval.call_args[0][3] == str(held.reservation_id)
        # same slot can be held again
        assert hold(16, buyer_id=world.other_id).reservation_id


class TestCancelEdgeCases:
    def test_unpaid_hold_cancels_without_refund(self, services, hold, world) -> None:
        held = hold(16)
        result = services.cancellations.cancel(held.reservation_id, world.player_id, now=at(16) - timedelta(hours=30))

        assert result.refund_amount == 0
        assert result.refund_id is None
        assert Refund.query.count() == 0
        assert PaymentIntent.query.get(held.payment_intent_id).status == "EXPIRED"

    def test_unpaid_quote_has_nothing_to_refund(self, services, hold) -> None:
        held = hold(16)
        quote = services.cancellations.quote(held.reservation_id, now=at(16) - timedelta(hours=30))
        assert quote.advance_paid == 0
        assert quote.refundable_amount == 0

    def test_cannot_cancel_after_start(self, services, hold, pay, world) -> None:
        held = hold(16)
        pay(held)
        with pytest.raises(CancellationNotAllowed):
            services.cancellations.cancel(held.reservation_id, world.player_id, now=at(16, 5))
        assert Reservation.query.get(held.reservation_id).status == "CONFIRMED"

    def test_cancel_exactly_at_start_refunds_nothing(self, services, hold, pay, world) -> None:
        held = hold(16)
        pay(held)
        reservation = Reservation.query.get(held.reservation_id)

        quote = evaluate(reservation, now=at(16))
        assert quote.can_cancel
        assert quote.tier == TIER_NONE
        assert quote.refundable_amount == 0

        result = services.cancellations.cancel(held.reservation_id, world.player_id, now=at(16))
        assert result.refund_amount == 0
        assert Reservation.query.get(held.reservation_id).status == "CANCELED"

    def test_cannot_cancel_twice(self, services, hold, pay, world) -> None:
        held = hold(16)
        pay(held)
        now = at(16) - timedelta(hours=30)
        services.cancellations.cancel(held.reservation_id, world.player_id, now=now)
        with pytest.raises(CancellationNotAllowed):
            services.cancellations.cancel(held.reservation_id, world.player_id, now=now)
        assert Refund.query.count() == 1

    def test_expired_hold_cannot_be_cancelled(self, services, hold, world) -> None:
        held = hold(16)
        assert services.holds.expire_hold(held.reservation_id, now=NOW + timedelta(minutes=11))
        reservation = Reservation.query.get(held.reservation_id)
        quote = evaluate(reservation, now=at(16) - timedelta(hours=30))
        assert not quote.can_cancel
        assert quote.reason == "Reservation is EXPIRED"

    def test_unknown_reservation(self, services, world) -> None:
        with pytest.raises(NotFound):
            services.cancellations.quote(424242)


class TestRefundAdministration:
    def _refund_id(self, services, hold, pay, world):
        held = hold(16)
        pay(held)
        return services.cancellations.cancel(
            held.reservation_id, world.player_id, now=at(16) - timedelta(hours=30)
        ).refund_id

    def test_happy_path(self, services, hold, pay, world) -> None:
        refund_id = self._refund_id(services, hold, pay, world)

        refund = services.cancellations.approve_refund(refund_id, world.owner_id)
        assert refund.status == "APPROVED"
        assert refund.decided_by == world.owner_id
        assert services.cancellations.start_refund(refund_id).status == "PROCESSING"

        refund = services.cancellations.mark_refunded(refund_id, "BKASH-991")
        assert refund.status == "REFUNDED"
        assert refund.reference_id == "BKASH-991"
        assert refund.processed_at is not None

    def test_cannot_skip_approval(self, services, hold, pay, world) -> None:
        refund_id = self._refund_id(services, hold, pay, world)
        with pytest.raises(RefundStateError):
            services.cancellations.mark_refunded(refund_id, "REF")

    def test_rejected_is_final(self, services, hold, pay, world) -> None:
        refund_id = self._refund_id(services, hold, pay, world)
        refund = services.cancellations.reject_refund(refund_id, world.owner_id, "chargeback opened")
        assert refund.status == "REJECTED"
        with pytest.raises(RefundStateError):
            services.cancellations.approve_refund(refund_id, world.owner_id)
