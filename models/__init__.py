from .db import db
from .user import User
from .session import Session
from .audit_log import AuditLog
from .facility import Facility
from .subscription import OwnerSubscription
from .play_area import PlayArea
from .pricing import PricingProfile, PeakRule
from .reservation import Reservation
from .manual_block import ManualBlock
from .payment import PaymentIntent, PaymentTransaction
from .refund import Refund
from .ledger_entry import LedgerEntry
from .booking_event import BookingEvent
from .idempotency_key import IdempotencyKey
from .booking_rate_limit import BookingRateLimit
from . import exclusion
