"""
Typed domain errors raised by the booking core.

Blueprints never build these responses by hand: the app-level error handler
renders any DomainError as {"error", "code", "details"} with its http_status.
"""


class DomainError(Exception):
    """Base class for every error the core raises on purpose."""

    http_status = 400

    def __init__(self, message: str, code: str = None, details: dict = None):
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


# ---------- validation ----------

class InvalidDuration(DomainError):
    def __init__(self, duration_minutes, allowed):
        super().__init__(
            f"Duration {duration_minutes} minutes is not offered",
            details={"duration_minutes": duration_minutes, "allowed": list(allowed or [])},
        )


class SlotNotBookable(DomainError):
    """Start time is in the past, inside the lead time or outside operating hours."""


class MalformedPayload(DomainError):
    pass


# ---------- not found ----------

class NotFound(DomainError):
    http_status = 404


class IntentNotFound(NotFound):
    def __init__(self, tran_id=None, intent_ref=None):
        super().__init__(
            "Payment intent not found",
            details={"tran_id": tran_id, "intent_ref": intent_ref},
        )


# ---------- business state ----------

class InvalidTransition(DomainError):
    http_status = 409

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot transition from {from_status} to {to_status}",
            details={"from": from_status, "to": to_status},
        )


class FacilityNotBookable(DomainError):
    http_status = 403


class SubscriptionInactive(DomainError):
    http_status = 403

    def __init__(self, owner_user_id, status=None):
        super().__init__(
            "Facility is not accepting bookings right now",
            details={"owner_user_id": owner_user_id, "subscription_status": status},
        )


class CannotConfirm(DomainError):
    http_status = 409

    def __init__(self, reservation_id, status):
        super().__init__(
            f"Reservation in {status} cannot be confirmed",
            details={"reservation_id": reservation_id, "status": status},
        )


class CancellationNotAllowed(DomainError):
    http_status = 409


class PaymentNotPayable(DomainError):
    http_status = 409


class RefundStateError(DomainError):
    http_status = 409


# ---------- conflict ----------

class SlotConflict(DomainError):
    """The requested range collides with a hold, booking or manual block."""

    http_status = 409

    def __init__(self, conflict_group_id, start_at, blocked_end_at, reservation_id=None):
        super().__init__(
            "This slot is no longer available",
            details={
                "conflict_group_id": conflict_group_id,
                "start_at": start_at.isoformat() if start_at else None,
                "blocked_end_at": blocked_end_at.isoformat() if blocked_end_at else None,
                "reservation_id": reservation_id,
            },
        )


class RateLimited(DomainError):
    http_status = 429

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__("Too many booking attempts", details={"retry_after": retry_after})


# ---------- trust ----------

class InvalidSignature(DomainError):
    http_status = 401


class AmountMismatch(DomainError):
    def __init__(self, expected: int, delivered):
        super().__init__(
            "Delivered amount does not match the payment intent",
            details={"expected": expected, "delivered": delivered},
        )


class VerificationFailed(DomainError):
    """Out-of-band lookup at the gateway disagreed, failed or timed out."""

    http_status = 502
