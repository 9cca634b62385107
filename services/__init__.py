import logging
from dataclasses import dataclass

from flask import current_app
from redis import Redis

from services.cancellation import CancellationService
from services.events import EventDispatcher
from services.gateway import build_gateway_client
from services.holds import HoldManager
from services.idempotency import IdempotencyStore
from services.money import ADVANCE_RATE, COMMISSION_RATE, PROCESSING_FEE
from services.notifications import build_notifier
from services.payments import PaymentService
from services.reconciler import PaymentReconciler
from services.slot_lock import SlotLock

logger = logging.getLogger(__name__)

EXTENSION_KEY = "slotkeeper"


@dataclass
class Services:
    slot_lock: SlotLock
    dispatcher: EventDispatcher
    gateway: object
    holds: HoldManager
    reconciler: PaymentReconciler
    cancellations: CancellationService
    payments: PaymentService


def _connect_redis(url):
    if not url:
        logger.info("slot_lock_disabled_no_redis_url")
        return None
    try:
        client = Redis.from_url(url, encoding="utf-8", decode_responses=True)
        client.ping()
    except Exception as exc:
        logger.warning("slot_lock_redis_unavailable", extra={"error": str(exc)})
        return None
    return client


def build_services(config, redis_client=None, gateway=None, notifier=None) -> Services:
    """Wire the core once. Tests pass their own redis/gateway/notifier."""
    hold_minutes = config.get("BOOKING_HOLD_MINUTES", 10)

    slot_lock = SlotLock(
        redis_client,
        ttl_seconds=hold_minutes * 60,
        prefix=config.get("SLOT_LOCK_PREFIX", "lock:slot"),
    )
    dispatcher = EventDispatcher(notifier or build_notifier(config.get("NOTIFICATION_PROVIDER", "log")))
    gateway = gateway or build_gateway_client(config)
    advance_rate = config.get("BOOKING_ADVANCE_RATE", ADVANCE_RATE)
    commission_rate = config.get("PLATFORM_COMMISSION_RATE", COMMISSION_RATE)
    processing_fee = config.get("PLATFORM_PROCESSING_FEE", PROCESSING_FEE)

    holds = HoldManager(
        slot_lock,
        dispatcher,
        hold_minutes=hold_minutes,
        advance_rate=advance_rate,
        commission_rate=commission_rate,
        currency=config.get("CURRENCY", "BDT"),
        gateway_name=getattr(gateway, "name", "SSLCOMMERZ"),
    )
    reconciler = PaymentReconciler(
        gateway,
        store_password=config.get("SSLCOMMERZ_STORE_PASSWORD") or "",
        idempotency=IdempotencyStore(scope="payment-confirm"),
        dispatcher=dispatcher,
    )
    cancellations = CancellationService(dispatcher, slot_lock, processing_fee=processing_fee)
    payments = PaymentService(gateway, urls={
        "success_url": config.get("PAYMENT_SUCCESS_URL"),
        "fail_url": config.get("PAYMENT_FAIL_URL"),
        "cancel_url": config.get("PAYMENT_CANCEL_URL"),
        "ipn_url": config.get("PAYMENT_IPN_URL"),
    })
    return Services(slot_lock, dispatcher, gateway, holds, reconciler, cancellations, payments)


def init_app(app, redis_client=None, gateway=None, notifier=None) -> Services:
    if redis_client is None:
        redis_client = _connect_redis(app.config.get("REDIS_URL"))
    services = build_services(app.config, redis_client=redis_client, gateway=gateway, notifier=notifier)
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services() -> Services:
    return current_app.extensions[EXTENSION_KEY]
