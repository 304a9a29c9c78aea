"""
Stripe payload builders for tests.

Objects carry only the fields the billing service reads. Signatures use the
real Stripe scheme so verification runs unpatched.
"""

import hashlib
import hmac
import json
import time
from typing import Any

WEBHOOK_SECRET = "whsec_test_secret"
PRICE_PRO_MONTHLY = "price_pro_monthly_test"
PRICE_TEAM_MONTHLY = "price_team_monthly_test"


def sign_payload(
    payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None
) -> str:
    """Stripe-Signature header: t=<ts>,v1=HMAC_SHA256(secret, "<ts>.<payload>")."""
    timestamp = timestamp if timestamp is not None else int(time.time())
    signed_payload = f"{timestamp}.{payload.decode('utf-8')}".encode()
    signature = hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def build_event(
    event_type: str, data_object: dict[str, Any], event_id: str = "evt_test_1"
) -> tuple[bytes, str]:
    """Serialize an event and sign it. Returns (raw_body, signature_header)."""
    payload = json.dumps(
        {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "data": {"object": data_object},
        }
    ).encode()
    return payload, sign_payload(payload)


def subscription_object(
    user_id: str | None = "user_1",
    stripe_subscription_id: str = "sub_test_1",
    price_id: str = PRICE_PRO_MONTHLY,
    status: str = "active",
    metadata: dict[str, str] | None = None,
    **overrides: Any,
) -> dict[str, Any]:
    if metadata is None:
        metadata = {"userId": user_id} if user_id else {}
    obj = {
        "id": stripe_subscription_id,
        "object": "subscription",
        "customer": "cus_test_1",
        "status": status,
        "cancel_at_period_end": False,
        "current_period_start": 1760000000,
        "current_period_end": 1762592000,
        "metadata": metadata,
        "items": {"object": "list", "data": [{"id": "si_1", "price": {"id": price_id}}]},
    }
    obj.update(overrides)
    return obj


def payment_intent_object(
    payment_intent_id: str = "pi_test_1",
    user_id: str | None = "user_1",
    credits: str | None = "175",
    amount: int = 1500,
    purchase_type: str | None = "credit_purchase",
) -> dict[str, Any]:
    metadata: dict[str, str] = {}
    if purchase_type:
        metadata["type"] = purchase_type
    if user_id:
        metadata["userId"] = user_id
        metadata["clerkId"] = f"clerk_{user_id}"
    if credits is not None:
        metadata["credits"] = credits
    return {
        "id": payment_intent_id,
        "object": "payment_intent",
        "amount": amount,
        "amount_received": amount,
        "currency": "usd",
        "status": "succeeded",
        "metadata": metadata,
    }


def auth_headers(user_id: str = "user_1", external_id: str = "clerk_user_1") -> dict[str, str]:
    return {"X-User-Id": user_id, "X-External-Id": external_id}
