"""
Payment webhook reconciliation.

Deliveries are untrusted and may arrive twice, out of order or after the hold
expired. Each one goes through, in order: signature, structure, correlation,
idempotency claim, amount, out-of-band lookup, then the outcome. Nothing is
written before the idempotency claim; trust failures after it leave a
PaymentTransaction row behind so tampering can be reconstructed.
"""
import logging
from dataclasses import dataclass, asdict
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from models import db
from models.exclusion import is_overlap_violation
from models.payment import PaymentIntent, PaymentTransaction
from models.refund import Refund
from models.reservation import Reservation
from services import availability, ledger
from services.errors import (
    AmountMismatch,
    CannotConfirm,
    IntentNotFound,
    InvalidSignature,
    MalformedPayload,
    VerificationFailed,
)
from services.events import record_event
from services.gateway import (
    FAILURE_STATUSES,
    KNOWN_STATUSES,
    SUCCESS_STATUSES,
    GatewayError,
    verify_signature,
)
from services.money import TIER_LATE_CONFLICT, parse_amount, to_minor_units
from services.state_machine import (
    CONFIRMED,
    EXPIRED,
    HOLD,
    PaymentIntentStatus,
    PaymentStage,
    RefundStatus,
)
from services.transitions import apply_transition

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("tran_id", "val_id", "amount", "status", "verify_sign", "verify_key")

# transaction row statuses beyond the gateway's own
TX_SUCCESS = "SUCCESS"
TX_AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
TX_VALIDATION_FAILED = "VALIDATION_FAILED"
TX_LATE_CONFLICT = "LATE_SUCCESS_CONFLICT"
TX_CANNOT_CONFIRM = "CANNOT_CONFIRM"

CONFIRM_ATTEMPTS = 3


@dataclass
class ReconciliationResult:
    accepted: bool
    reservation_id: int = None
    message: str = ""
    code: str = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ReconciliationResult":
        return cls(
            accepted=bool(data.get("accepted")),
            reservation_id=data.get("reservation_id"),
            message=data.get("message", ""),
            code=data.get("code"),
        )


class PaymentReconciler:
    def __init__(self, gateway, store_password: str, idempotency, dispatcher):
        self.gateway = gateway
        self.store_password = store_password
        self.idempotency = idempotency
        self.dispatcher = dispatcher

    # ---------- pipeline ----------

    def process_webhook_delivery(self, payload: dict) -> ReconciliationResult:
        payload = {k: v for k, v in (payload or {}).items()}

        if not verify_signature(payload, self.store_password):
            logger.error(
                "webhook_invalid_signature",
                extra={"tran_id": payload.get("tran_id"), "payload": payload},
            )
            raise InvalidSignature("Signature verification failed", details={"tran_id": payload.get("tran_id")})

        status, amount = self._validate_structure(payload)
        intent = self._correlate(payload)

        # one claim per intent for every gateway outcome, so a FAILED intent stays failed
        key = self.idempotency.make_key(intent.id, "confirm")
        claim = self.idempotency.claim(key)
        if not claim.acquired:
            if claim.result is not None:
                logger.info("webhook_duplicate", extra={"intent_id": intent.id, "status": status})
                return ReconciliationResult.from_dict(claim.result)
            return ReconciliationResult(
                accepted=False,
                reservation_id=intent.reservation_id,
                message="Delivery is already being processed",
                code="IN_PROGRESS",
            )

        try:
            return self._process_claimed(payload, status, amount, intent.id, key)
        except (AmountMismatch, VerificationFailed, CannotConfirm):
            raise
        except Exception:
            db.session.rollback()
            self.idempotency.release(key)
            raise

    def _validate_structure(self, payload: dict):
        missing = [f for f in REQUIRED_FIELDS if not payload.get(f)]
        if missing:
            raise MalformedPayload("Missing required fields", details={"missing": missing})

        status = str(payload["status"]).strip().upper()
        if status not in KNOWN_STATUSES:
            raise MalformedPayload("Unknown payment status", details={"status": payload["status"]})

        try:
            amount = parse_amount(payload["amount"])
        except ValueError:
            raise MalformedPayload("Amount is not a number", details={"amount": payload["amount"]})
        return status, amount

    def _correlate(self, payload: dict) -> PaymentIntent:
        intent = PaymentIntent.query.filter_by(gateway_tran_id=str(payload["tran_id"])).first()
        if intent is None and payload.get("value_a"):
            ref = str(payload["value_a"])
            if ref.isdigit():
                intent = PaymentIntent.query.get(int(ref))
        if intent is None:
            raise IntentNotFound(payload.get("tran_id"), payload.get("value_a"))
        return intent

    def _process_claimed(self, payload, status, amount, intent_id, key) -> ReconciliationResult:
        intent = PaymentIntent.query.get(intent_id)

        delivered = to_minor_units(amount)
        currency = payload.get("currency")
        if delivered != intent.amount or (currency and currency.upper() != intent.currency.upper()):
            self._reject(
                intent, payload, TX_AMOUNT_MISMATCH, key,
                AmountMismatch(intent.amount, str(payload["amount"])),
                delivered,
            )

        # no transaction stays open across the network call
        db.session.commit()
        self._verify_out_of_band(intent, payload, status, key, delivered)

        if status in FAILURE_STATUSES:
            return self._handle_failure(intent, payload, status, key, delivered)
        return self._handle_success(intent, payload, key, delivered)

    def _verify_out_of_band(self, intent, payload, status, key, delivered) -> None:
        try:
            data = self.gateway.validate(payload["val_id"])
        except GatewayError as exc:
            self._reject(
                intent, payload, TX_VALIDATION_FAILED, key,
                VerificationFailed("Gateway lookup failed", details={"reason": str(exc)}),
                delivered,
            )

        gateway_status = str(data.get("status") or "").upper()
        problems = []
        if (status in SUCCESS_STATUSES) != (gateway_status in SUCCESS_STATUSES):
            problems.append("status")
        if gateway_status in SUCCESS_STATUSES:
            if data.get("tran_id") and str(data["tran_id"]) != str(payload["tran_id"]):
                problems.append("tran_id")
            if data.get("amount") is not None:
                try:
                    looked_up = to_minor_units(parse_amount(data["amount"]))
                except ValueError:
                    looked_up = None
                if looked_up != intent.amount:
                    problems.append("amount")

        if problems:
            self._reject(
                intent, payload, TX_VALIDATION_FAILED, key,
                VerificationFailed(
                    "Gateway lookup disagrees with the delivery",
                    details={"mismatch": problems, "delivered_status": status, "gateway_status": gateway_status},
                ),
                delivered,
            )

    def _reject(self, intent, payload, tx_status, key, exc, delivered):
        """
        Keep a forensic row for a delivery that failed a trust check, then raise.
        The rejection is recorded under its own key so the real delivery for
        this intent can still be processed.
        """
        db.session.rollback()
        self._append_transaction(intent, payload, tx_status, delivered, verified=False)

        result = ReconciliationResult(
            accepted=False,
            reservation_id=intent.reservation_id,
            message=exc.message,
            code=exc.code,
        )
        reject_key = self.idempotency.make_key(intent.id, "rejected", payload.get("tran_id"), payload.get("val_id"), payload.get("amount"))
        db.session.commit()
        reject_claim = self.idempotency.claim(reject_key)
        if reject_claim.acquired:
            self.idempotency.record(reject_key, result.to_dict())
        self.idempotency.release(key)

        logger.error(
            "webhook_rejected",
            extra={"intent_id": intent.id, "reason": tx_status, "details": exc.details, "payload": payload},
        )
        raise exc

    # ---------- outcomes ----------

    def _handle_failure(self, intent, payload, status, key, delivered) -> ReconciliationResult:
        reservation = Reservation.query.get(intent.reservation_id)
        self._append_transaction(intent, payload, status, delivered, verified=True)

        if intent.status in (PaymentIntentStatus.PENDING, PaymentIntentStatus.EXPIRED):
            intent.status = PaymentIntentStatus.FAILED
            intent.updated_at = datetime.utcnow()
        record_event(
            reservation.id, "payment_failed", reservation.status, reservation.status,
            metadata={"gateway_status": status, "tran_id": payload.get("tran_id")},
        )

        result = ReconciliationResult(
            accepted=False,
            reservation_id=reservation.id,
            message=f"Payment {status.lower()}",
            code="PAYMENT_FAILED",
        )
        self.idempotency.record(key, result.to_dict(), commit=False)
        db.session.commit()

        self.dispatcher.publish("payment_failed", reservation)
        return result

    def _handle_success(self, intent, payload, key, delivered) -> ReconciliationResult:
        if intent.status in PaymentIntentStatus.TERMINAL and intent.status != PaymentIntentStatus.SUCCESS:
            result = ReconciliationResult(
                accepted=False,
                reservation_id=intent.reservation_id,
                message=f"Payment intent is already {intent.status}",
                code="INTENT_CLOSED",
            )
            self.idempotency.record(key, result.to_dict())
            logger.error(
                "success_for_closed_intent",
                extra={"intent_id": intent.id, "intent_status": intent.status, "payload": payload},
            )
            return result

        for _ in range(CONFIRM_ATTEMPTS):
            reservation = Reservation.query.get(intent.reservation_id)
            db.session.refresh(reservation)

            if reservation.status == CONFIRMED:
                result = ReconciliationResult(
                    accepted=True,
                    reservation_id=reservation.id,
                    message="Reservation already confirmed",
                    code="ALREADY_CONFIRMED",
                )
                self.idempotency.record(key, result.to_dict())
                return result

            if reservation.status == HOLD:
                result = self._confirm(reservation, intent, payload, key, delivered, late=False)
            elif reservation.status == EXPIRED:
                result = self._late_payment(reservation, intent, payload, key, delivered)
            else:
                return self._cannot_confirm(reservation, intent, payload, key, delivered)

            if result is not None:
                return result
            # the row moved under us (e.g. the expiry sweep); look again

        raise RuntimeError(f"reservation {intent.reservation_id} kept changing during confirmation")

    def _confirm(self, reservation, intent, payload, key, delivered, late: bool):
        now = datetime.utcnow()
        from_status = EXPIRED if late else HOLD
        event = "late_payment_accepted" if late else "confirmed"
        try:
            moved = apply_transition(
                reservation.id, from_status, CONFIRMED,
                confirmed_at=now,
                payment_stage=PaymentStage.ADVANCE_PAID,
            )
            if not moved:
                db.session.rollback()
                return None

            intent.status = PaymentIntentStatus.SUCCESS
            intent.paid_at = now
            intent.updated_at = now
            self._append_transaction(intent, payload, TX_SUCCESS, delivered, verified=True)
            record_event(
                reservation.id, event, from_status, CONFIRMED,
                metadata={"tran_id": payload.get("tran_id"), "val_id": payload.get("val_id"), "amount": delivered},
            )
            result = ReconciliationResult(
                accepted=True,
                reservation_id=reservation.id,
                message="Late payment accepted, reservation confirmed" if late else "Reservation confirmed",
                code="LATE_CONFIRMED" if late else "CONFIRMED",
            )
            self.idempotency.record(key, result.to_dict(), commit=False)
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            if late and is_overlap_violation(exc):
                logger.info("late_payment_lost_race", extra={"reservation_id": reservation.id})
                return self._late_conflict(reservation, intent, payload, key, delivered)
            raise

        logger.info("reservation_confirmed", extra={"reservation_id": reservation.id, "late": late})
        self._after_confirm(reservation, event)
        return result

    def _after_confirm(self, reservation, event: str) -> None:
        try:
            ledger.record_booking_credit(reservation)
        except Exception:
            db.session.rollback()
            logger.exception("ledger_credit_failed", extra={"reservation_id": reservation.id})
        self.dispatcher.publish(event, reservation)

    def _late_payment(self, reservation, intent, payload, key, delivered):
        free = availability.is_slot_free(
            reservation.conflict_group_id,
            reservation.start_at,
            reservation.blocked_end_at,
            exclude_reservation_id=reservation.id,
        )
        if free:
            return self._confirm(reservation, intent, payload, key, delivered, late=True)
        return self._late_conflict(reservation, intent, payload, key, delivered)

    def _late_conflict(self, reservation, intent, payload, key, delivered) -> ReconciliationResult:
        now = datetime.utcnow()
        intent = PaymentIntent.query.get(intent.id)
        intent.status = PaymentIntentStatus.LATE_SUCCESS_CONFLICT
        intent.paid_at = now
        intent.updated_at = now
        self._append_transaction(intent, payload, TX_LATE_CONFLICT, delivered, verified=True)

        refund = Refund.query.filter_by(payment_intent_id=intent.id, tier=TIER_LATE_CONFLICT).first()
        if refund is None:
            refund = Refund(
                reservation_id=reservation.id,
                payment_intent_id=intent.id,
                refund_amount=delivered,
                platform_fee_retained=0,
                original_advance=reservation.advance_amount,
                tier=TIER_LATE_CONFLICT,
                status=RefundStatus.APPROVED,
                reason="Payment arrived after the hold expired and the slot was taken",
                approved_at=now,
            )
            db.session.add(refund)
        record_event(
            reservation.id, "late_payment_conflict", EXPIRED, EXPIRED,
            metadata={"tran_id": payload.get("tran_id"), "refund_amount": delivered},
        )

        result = ReconciliationResult(
            accepted=False,
            reservation_id=reservation.id,
            message="Slot no longer available, full refund approved",
            code="LATE_PAYMENT_CONFLICT",
        )
        self.idempotency.record(key, result.to_dict(), commit=False)
        db.session.commit()

        logger.warning(
            "late_payment_conflict",
            extra={"reservation_id": reservation.id, "intent_id": intent.id, "refund_id": refund.id},
        )
        self.dispatcher.publish("late_payment_conflict", reservation, refund_amount=delivered)
        return result

    def _cannot_confirm(self, reservation, intent, payload, key, delivered):
        self._append_transaction(intent, payload, TX_CANNOT_CONFIRM, delivered, verified=True)
        error = CannotConfirm(reservation.id, reservation.status)
        result = ReconciliationResult(
            accepted=False,
            reservation_id=reservation.id,
            message=error.message,
            code=error.code,
        )
        self.idempotency.record(key, result.to_dict(), commit=False)
        db.session.commit()
        logger.error(
            "payment_for_closed_reservation",
            extra={"reservation_id": reservation.id, "status": reservation.status, "payload": payload},
        )
        raise error

    # ---------- helpers ----------

    def _append_transaction(self, intent, payload, status, amount, verified: bool):
        existing = PaymentTransaction.query.filter_by(tran_id=str(payload["tran_id"]), status=status).first()
        if existing is not None:
            return existing
        now = datetime.utcnow()
        tx = PaymentTransaction(
            payment_intent_id=intent.id,
            tran_id=str(payload["tran_id"]),
            val_id=payload.get("val_id"),
            amount=amount,
            currency=payload.get("currency") or intent.currency,
            status=status,
            gateway_status=str(payload.get("status")),
            signature_valid=True,
            raw_payload=payload,
            verified_at=now if verified else None,
            created_at=now,
        )
        db.session.add(tx)
        return tx
