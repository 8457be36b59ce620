"""
Stripe webhook event processing.

Each event id moves unseen → {duplicate | processed | ignored | failed}. The
dedup record is written last, in the same transaction as any order the event
creates, so the unique constraint on ``stripe_event_id`` decides which of two
concurrent deliveries wins. Failed events are re-attempted on redelivery.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.errors import (
    CheckoutError,
    InvalidStatusTransitionError,
    MissingUserError,
)
from storefront.models import OrderStatus, WebhookEventRecord, WebhookOutcome
from storefront.services import orders, stripe_gateway, verification

logger = logging.getLogger(__name__)

PAID_SESSION_EVENTS = {
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
}
REFUND_EVENTS = {"charge.refunded"}


@dataclass
class WebhookResult:
    status_code: int
    message: str
    order_id: Optional[str] = None


async def _find_record(db: AsyncSession, event_id: str) -> WebhookEventRecord | None:
    return (
        await db.execute(
            select(WebhookEventRecord).where(
                WebhookEventRecord.stripe_event_id == event_id
            )
        )
    ).scalar_one_or_none()


async def _write_record(
    db: AsyncSession,
    event_id: str,
    event_type: str,
    outcome: WebhookOutcome,
    order_id: str | None = None,
    error: str | None = None,
    retrying: bool = False,
) -> bool:
    """
    Insert the dedup record, or settle a previously failed one, and commit.
    Returns False if another delivery of the same event got there first.
    """
    values = dict(
        event_type=event_type,
        outcome=outcome.value,
        order_id=order_id,
        error=error,
        processed_at=datetime.now(timezone.utc),
    )
    if retrying:
        result = await db.execute(
            update(WebhookEventRecord)
            .where(
                WebhookEventRecord.stripe_event_id == event_id,
                WebhookEventRecord.outcome == WebhookOutcome.FAILED.value,
            )
            .values(**values)
        )
        if result.rowcount == 0:
            await db.rollback()
            return False
    else:
        db.add(WebhookEventRecord(stripe_event_id=event_id, **values))
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            return False

    await db.commit()
    return True


async def _handle_paid_session(
    db: AsyncSession, session_obj: Mapping[str, Any]
) -> Tuple[str | None, WebhookOutcome]:
    session_id = session_obj["id"]
    payment_status = session_obj.get("payment_status")
    if payment_status != "paid":
        logger.info(
            "Checkout session %s not paid (payment_status=%s); nothing to do",
            session_id, payment_status,
        )
        return None, WebhookOutcome.IGNORED

    existing = await orders.find_by_stripe_session(db, session_id)
    if existing is not None:
        logger.info("Order %s already recorded for session %s", existing.id, session_id)
        return existing.id, WebhookOutcome.PROCESSED

    # Re-fetch instead of trusting the (possibly truncated) event payload.
    session = stripe_gateway.parse_session(
        await stripe_gateway.retrieve_session(session_id)
    )
    if not session.user_id:
        raise MissingUserError(f"No user ID found in session {session_id}")

    order = await orders.create_order(
        db, verification.order_from_session(session, session.user_id)
    )
    return order.id, WebhookOutcome.PROCESSED


async def _handle_refund(
    db: AsyncSession, charge: Mapping[str, Any]
) -> Tuple[str | None, WebhookOutcome]:
    payment_intent = charge.get("payment_intent")
    order = (
        await orders.find_by_payment_intent(db, payment_intent)
        if payment_intent
        else None
    )
    if order is None:
        logger.info("Refund for unknown payment_intent=%s ignored", payment_intent)
        return None, WebhookOutcome.IGNORED

    try:
        await orders.update_status(db, order.id, OrderStatus.CANCELED)
    except InvalidStatusTransitionError as exc:
        logger.warning("Refund for order %s not applied: %s", order.id, exc.message)
        return order.id, WebhookOutcome.IGNORED
    return order.id, WebhookOutcome.PROCESSED


async def process_event(db: AsyncSession, event: Mapping[str, Any]) -> WebhookResult:
    """Process a signature-verified Stripe event. Checkout and database errors become a 500 result."""
    try:
        event_id = event["id"]
        event_type = event["type"]
        data_object = event["data"]["object"]
    except (KeyError, TypeError):
        logger.warning("Malformed Stripe event payload")
        return WebhookResult(400, "Malformed event payload")

    logger.info("Stripe event received: id=%s type=%s", event_id, event_type)

    try:
        record = await _find_record(db, event_id)
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Could not look up event %s: %s", event_id, exc)
        return WebhookResult(500, "Error recording webhook event")

    retrying = record is not None and record.outcome == WebhookOutcome.FAILED.value
    if record is not None and not retrying:
        logger.info("Event %s already processed, skipping", event_id)
        return WebhookResult(200, "Event already processed")

    try:
        if event_type in PAID_SESSION_EVENTS:
            order_id, outcome = await _handle_paid_session(db, data_object)
        elif event_type in REFUND_EVENTS:
            order_id, outcome = await _handle_refund(db, data_object)
        else:
            logger.info("Unhandled event type: %s", event_type)
            order_id, outcome = None, WebhookOutcome.IGNORED
    except (KeyError, TypeError):
        await db.rollback()
        logger.warning("Malformed %s payload for event %s", event_type, event_id)
        return WebhookResult(400, "Malformed event payload")
    except (CheckoutError, SQLAlchemyError) as exc:
        await db.rollback()
        error = exc.message if isinstance(exc, CheckoutError) else "Database error"
        logger.error("Error processing event %s (%s): %s", event_id, event_type, exc)
        try:
            await _write_record(
                db, event_id, event_type, WebhookOutcome.FAILED,
                error=error, retrying=retrying,
            )
        except SQLAlchemyError as record_exc:
            await db.rollback()
            logger.error("Could not record failed event %s: %s", event_id, record_exc)
        return WebhookResult(500, f"Error processing order: {error}")

    try:
        recorded = await _write_record(
            db, event_id, event_type, outcome, order_id=order_id, retrying=retrying
        )
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Could not record event %s; order rolled back: %s", event_id, exc)
        return WebhookResult(500, "Error recording webhook event")

    if not recorded:
        logger.info("Event %s was processed by a concurrent delivery", event_id)
        return WebhookResult(200, "Event already processed")

    logger.info(
        "Event %s recorded: outcome=%s order=%s", event_id, outcome.value, order_id
    )
    return WebhookResult(200, "Webhook processed successfully", order_id)
