"""
Payment gateway boundary (SSLCommerz-style hosted checkout + IPN).

The client is picked once in create_app and injected; nothing below looks at
the environment.
"""
import hashlib
import hmac
import logging
import secrets

import requests

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = frozenset({"VALID", "VALIDATED"})
FAILURE_STATUSES = frozenset({"FAILED", "CANCELLED", "UNATTEMPTED", "EXPIRED"})
KNOWN_STATUSES = SUCCESS_STATUSES | FAILURE_STATUSES

SANDBOX_BASE_URL = "https://sandbox.sslcommerz.com"
LIVE_BASE_URL = "https://securepay.sslcommerz.com"


class GatewayError(Exception):
    """The gateway could not be reached or answered with garbage."""


# ---------- IPN signature ----------

def compute_signature(payload: dict, store_password: str) -> str:
    """md5("k1=v1&k2=v2&...&store_passwd=md5(password)") over the keys listed in verify_key."""
    parts = []
    for key in (payload.get("verify_key") or "").split(","):
        key = key.strip()
        if key and payload.get(key) is not None:
            parts.append(f"{key}={payload[key]}")
    hashed_password = hashlib.md5(store_password.encode("utf-8")).hexdigest()
    parts.append(f"store_passwd={hashed_password}")
    return hashlib.md5("&".join(parts).encode("utf-8")).hexdigest()


def verify_signature(payload: dict, store_password: str) -> bool:
    delivered = payload.get("verify_sign")
    if not delivered or not payload.get("verify_key") or not store_password:
        return False
    expected = compute_signature(payload, store_password)
    return hmac.compare_digest(expected.encode("utf-8"), str(delivered).encode("utf-8"))


def sign_payload(payload: dict, store_password: str, keys=None) -> dict:
    """Attach verify_key/verify_sign the way the gateway does. Used by the sandbox and tests."""
    signed = dict(payload)
    keys = keys or [k for k in ("amount", "currency", "status", "tran_id", "val_id", "value_a", "value_b") if k in signed]
    signed["verify_key"] = ",".join(keys)
    signed["verify_sign"] = compute_signature(signed, store_password)
    return signed


# ---------- clients ----------

class SSLCommerzClient:
    name = "SSLCOMMERZ"

    def __init__(self, store_id: str, store_password: str, live: bool = False, timeout: float = 10,
                 http=None):
        self.store_id = store_id
        self.store_password = store_password
        self.base_url = LIVE_BASE_URL if live else SANDBOX_BASE_URL
        self.timeout = timeout
        self.http = http or requests.Session()

    def validate(self, val_id: str) -> dict:
        """Out-of-band transaction lookup. Raises GatewayError on timeout or transport failure."""
        url = f"{self.base_url}/validator/api/validationserverAPI.php"
        params = {
            "val_id": val_id,
            "store_id": self.store_id,
            "store_passwd": self.store_password,
            "format": "json",
        }
        try:
            resp = self.http.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.Timeout as exc:
            raise GatewayError(f"validation timed out after {self.timeout}s") from exc
        except (requests.exceptions.RequestException, ValueError) as exc:
            raise GatewayError(f"validation failed: {exc}") from exc

        logger.info("gateway_validation", extra={"val_id": val_id, "status": data.get("status")})
        return data

    def create_session(self, intent, reservation, urls: dict) -> dict:
        params = {
            "store_id": self.store_id,
            "store_passwd": self.store_password,
            "total_amount": str(intent.amount),
            "currency": intent.currency,
            "tran_id": intent.gateway_tran_id,
            "success_url": urls.get("success_url"),
            "fail_url": urls.get("fail_url"),
            "cancel_url": urls.get("cancel_url") or urls.get("fail_url"),
            "ipn_url": urls.get("ipn_url"),
            "cus_name": reservation.contact_name or "Player",
            "cus_email": reservation.contact_email or "",
            "cus_phone": reservation.contact_phone or "",
            "cus_country": "Bangladesh",
            "product_name": f"Slot {reservation.reservation_number}",
            "product_category": "Sports Booking",
            "product_profile": "general",
            "shipping_method": "NO",
            "num_of_item": "1",
            "value_a": str(intent.id),
            "value_b": str(reservation.id),
            "value_c": reservation.reservation_number,
        }
        try:
            resp = self.http.post(f"{self.base_url}/gwprocess/v4/api.php", data=params, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.exceptions.RequestException, ValueError) as exc:
            raise GatewayError(f"session creation failed: {exc}") from exc

        if data.get("status") != "SUCCESS":
            raise GatewayError(data.get("failedreason") or "session creation failed")
        return {"session_key": data.get("sessionkey"), "gateway_url": data.get("GatewayPageURL")}


class SandboxGatewayClient:
    """
    Local stand-in: every val_id validates as VALID unless told otherwise.
    Selected with PAYMENT_GATEWAY=sandbox.
    """

    name = "SANDBOX"

    def __init__(self, base_url: str = "http://localhost:5002/sandbox-pay"):
        self.base_url = base_url
        self.outcomes = {}

    def set_outcome(self, val_id: str, status: str, **extra) -> None:
        self.outcomes[val_id] = dict(extra, status=status)

    def validate(self, val_id: str) -> dict:
        return dict(self.outcomes.get(val_id, {"status": "VALID"}), val_id=val_id)

    def create_session(self, intent, reservation, urls: dict) -> dict:
        key = secrets.token_hex(16)
        return {"session_key": key, "gateway_url": f"{self.base_url}/{intent.gateway_tran_id}?session={key}"}


def build_gateway_client(config) -> object:
    if config.get("PAYMENT_GATEWAY", "sandbox") == "sslcommerz":
        return SSLCommerzClient(
            store_id=config.get("SSLCOMMERZ_STORE_ID"),
            store_password=config.get("SSLCOMMERZ_STORE_PASSWORD"),
            live=config.get("SSLCOMMERZ_LIVE", False),
            timeout=config.get("GATEWAY_TIMEOUT_SECONDS", 10),
        )
    return SandboxGatewayClient()
