"""Sample deployable workflow: processes an order posted to a webhook.

Deploy with:

    temporal-generic-worker deploy --source examples/order_processing \
        --name orderProcessingWorkflow --version v1 \
        --task-queue order-processing-queue \
        --trigger-file examples/order_processing/trigger.json

then POST an order to `/webhooks/orders/process` with the `X-API-Key` header.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

from temporalio import workflow
from temporalio.common import RetryPolicy

_ACTIVITY_OPTIONS: dict[str, Any] = {
    "start_to_close_timeout": timedelta(minutes=1),
    "retry_policy": RetryPolicy(maximum_attempts=3),
}

_STEPS = (
    ("Step 1: Validating order...", 2),
    ("Step 2: Checking inventory...", 2),
    ("Step 3: Processing payment...", 3),
    ("Step 4: Creating shipment...", 2),
    ("Step 5: Sending confirmation...", 1),
)


async def _log(message: str) -> None:
    await workflow.execute_activity("log_message", message, **_ACTIVITY_OPTIONS)


@workflow.defn(name="orderProcessingWorkflow")
class OrderProcessingWorkflow:
    @workflow.run
    async def run(self, payload: dict[str, Any]) -> dict[str, Any]:
        order = payload.get("body") or {}
        order_id = order.get("orderId", "unknown")
        items = order.get("items") or []

        await _log(f"Starting order processing for order {order_id}")
        await _log(f"Customer: {order.get('customerId')}")
        await _log(f"Items: {len(items)}, Total: ${order.get('totalAmount', 0)}")

        for index, (message, seconds) in enumerate(_STEPS):
            await _log(message)
            await asyncio.sleep(seconds)

            if index == 0 and not items:
                await _log("Validation failed: No items in order")
                return {
                    "orderId": order_id,
                    "status": "failed",
                    "processedAt": workflow.now().isoformat(),
                    "message": "Order validation failed: No items",
                }

        await _log(f"Order {order_id} completed successfully!")
        return {
            "orderId": order_id,
            "status": "completed",
            "processedAt": workflow.now().isoformat(),
            "message": f"Order processed successfully. {len(items)} items shipped.",
        }
