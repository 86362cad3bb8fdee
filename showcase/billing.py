"""
Billing & identity webhook.

Signed (svix) events from the identity/billing provider:
  paymentAttempt.updated : paid subscription charge → add plan credits
  user.created/updated   : upsert the users row
  user.deleted           : remove the users row

POST /webhooks/billing
"""

import os
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from svix.webhooks import Webhook, WebhookVerificationError

from . import metrics
from .pipeline.deps import get_ledger
from .pipeline.credits import CreditLedger
from .pipeline.errors import BadRequest, PipelineError

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

BILLING_WEBHOOK_SECRET = os.getenv("BILLING_WEBHOOK_SECRET", "")

PLAN_CREDITS = {
    "pro": 80,
    "premium": 240,
}

PAID_CHARGE_TYPES = {"recurring", "checkout"}

SVIX_HEADERS = ("svix-id", "svix-timestamp", "svix-signature")


def _full_name(data: dict) -> Optional[str]:
    parts = [data.get("first_name"), data.get("last_name")]
    name = " ".join(p for p in parts if p)
    return name or None


def _primary_email(data: dict) -> Optional[str]:
    addresses = data.get("email_addresses") or []
    if not addresses:
        return None
    return addresses[0].get("email_address")


class BillingWebhookHandler:
    def __init__(self, ledger: CreditLedger):
        self.ledger = ledger

    async def handle(self, event: dict) -> str:
        """Apply one verified event. Returns the acknowledgement message."""
        event_type = event.get("type", "")
        data = event.get("data") or {}

        if event_type == "paymentAttempt.updated":
            await self._payment_attempt(data)
        elif event_type in ("user.created", "user.updated"):
            await self.ledger.upsert_user(
                data["id"],
                email=_primary_email(data),
                name=_full_name(data),
                image=data.get("image_url"),
            )
        elif event_type == "user.deleted":
            await self.ledger.delete_user(data["id"])
        else:
            logger.info(f"Ignoring webhook event type {event_type!r}")

        return f"Webhook received: {event_type}"

    async def _payment_attempt(self, data: dict) -> None:
        if data.get("charge_type") not in PAID_CHARGE_TYPES or data.get("status") != "paid":
            return

        items = data.get("subscription_items") or [{}]
        plan = ((items[0] or {}).get("plan") or {}).get("slug")
        if plan not in PLAN_CREDITS:
            logger.warning(f"Payment for unknown plan {plan!r} rejected")
            raise BadRequest("Invalid plan")

        user_id = (data.get("payer") or {}).get("user_id")
        if not user_id:
            raise BadRequest("Missing payer")

        await self.ledger.increment(user_id, PLAN_CREDITS[plan])
        metrics.inc_counter(f"billing.{plan}")
        logger.info(f"Plan {plan} paid by user {user_id}: +{PLAN_CREDITS[plan]} credits")


def get_webhook_secret() -> str:
    return BILLING_WEBHOOK_SECRET


# ═════════════════════════════════════════════════════════════════════════════
# Router
# ═════════════════════════════════════════════════════════════════════════════

billing_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@billing_router.post("/billing")
async def billing_webhook(
    request: Request,
    ledger: CreditLedger = Depends(get_ledger),
    secret: str = Depends(get_webhook_secret),
):
    if not secret:
        logger.error("BILLING_WEBHOOK_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    headers = {name: request.headers.get(name) for name in SVIX_HEADERS}
    if not all(headers.values()):
        raise HTTPException(status_code=400, detail="Missing svix headers")

    payload = await request.body()
    try:
        event = Webhook(secret).verify(payload, headers)
    except WebhookVerificationError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        raise HTTPException(status_code=400, detail="Invalid signature")

    metrics.inc_counter("webhooks.billing")
    try:
        message = await BillingWebhookHandler(ledger).handle(event)
    except PipelineError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Webhook handling failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    return {"message": message}
