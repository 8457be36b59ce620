#!/usr/bin/env python3
"""
CLI: inspect orders and Stripe webhook records, and change order status.

Usage:
    # List recent orders (optionally for one user / status)
    python -m cli.orders --list [--user USER_ID] [--status approved]

    # Show one order with its items
    python -m cli.orders --show ORDER_ID

    # Move an order along (pending/approved/shipped/delivered/canceled)
    python -m cli.orders --set-status ORDER_ID shipped

    # Print recent webhook dedup records
    python -m cli.orders --events
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Allow running from project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select

from storefront.database import AsyncSessionLocal, get_db_ctx
from storefront.errors import InvalidStatusTransitionError
from storefront.models import OrderStatus, WebhookEventRecord
from storefront.services import orders


async def cmd_list(user_id: str | None, status: str | None) -> None:
    async with AsyncSessionLocal() as session:
        rows = await orders.list_orders(session, user_id=user_id, status=status)

    if not rows:
        print("No orders found.")
        return

    print(f"\n{'ORDER':<38} {'USER':<38} {'STATUS':<10} {'TOTAL':>10} CREATED")
    print("-" * 120)
    for o in rows:
        print(f"{o.id:<38} {o.user_id:<38} {o.status:<10} {o.total:>10} {o.created_at}")


async def cmd_show(order_id: str) -> None:
    async with AsyncSessionLocal() as session:
        order = await orders.get_order(session, order_id)

    if order is None:
        print(f"ERROR: order {order_id!r} not found", file=sys.stderr)
        sys.exit(1)

    print(f"\nOrder    {order.id}")
    print(f"User     {order.user_id}")
    print(f"Status   {order.status}")
    print(f"Total    {order.total}")
    if order.stripe_session_id:
        print(f"Stripe   session={order.stripe_session_id} intent={order.stripe_payment_intent_id}")
    if order.paypal_order_id:
        print(f"PayPal   order={order.paypal_order_id} capture={order.paypal_capture_id}")
    if order.shipping_name or order.shipping_address:
        print(
            f"Ship to  {order.shipping_name or ''}, {order.shipping_address or ''}, "
            f"{order.shipping_city or ''} {order.shipping_state or ''} {order.shipping_zip or ''}"
        )
    print(f"\n  {'PRODUCT':<40} {'QTY':>5} {'PRICE':>10}")
    for item in order.items:
        print(f"  {item.product_id:<40} {item.quantity:>5} {item.price:>10}")


async def cmd_set_status(order_id: str, status: str) -> None:
    try:
        async with get_db_ctx() as session:
            updated = await orders.update_status(session, order_id, status)
    except InvalidStatusTransitionError as exc:
        print(f"ERROR: {exc.message}", file=sys.stderr)
        sys.exit(1)
    if not updated:
        print(f"ERROR: order {order_id!r} not found", file=sys.stderr)
        sys.exit(1)
    print(f"Order {order_id} is now {status}.")


async def cmd_events() -> None:
    async with AsyncSessionLocal() as session:
        rows = (
            await session.execute(
                select(WebhookEventRecord)
                .order_by(WebhookEventRecord.processed_at.desc())
                .limit(50)
            )
        ).scalars().all()

    if not rows:
        print("No webhook events recorded.")
        return

    print(f"\n{'EVENT':<32} {'TYPE':<40} {'OUTCOME':<10} {'ORDER':<38} PROCESSED")
    print("-" * 140)
    for r in rows:
        print(
            f"{r.stripe_event_id:<32} {r.event_type:<40} {r.outcome:<10} "
            f"{r.order_id or '-':<38} {r.processed_at}"
        )


def main() -> None:
    parser = argparse.ArgumentParser(description="Storefront orders CLI")
    parser.add_argument("--list", action="store_true", help="List recent orders")
    parser.add_argument("--user", metavar="USER_ID", help="Filter --list by user")
    parser.add_argument(
        "--status",
        choices=[s.value for s in OrderStatus],
        help="Filter --list by status",
    )
    parser.add_argument("--show", metavar="ORDER_ID", help="Show one order")
    parser.add_argument(
        "--set-status",
        nargs=2,
        metavar=("ORDER_ID", "STATUS"),
        help="Change an order's status",
    )
    parser.add_argument("--events", action="store_true", help="Print webhook records")
    args = parser.parse_args()

    if args.show:
        asyncio.run(cmd_show(args.show))
    elif args.set_status:
        order_id, status = args.set_status
        if status not in {s.value for s in OrderStatus}:
            parser.error(f"unknown status {status!r}")
        asyncio.run(cmd_set_status(order_id, status))
    elif args.events:
        asyncio.run(cmd_events())
    else:
        asyncio.run(cmd_list(args.user, args.status))


if __name__ == "__main__":
    main()
