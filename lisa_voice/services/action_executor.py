"""
Action Executor - Runs canonical actions against external collaborators.

Store failures degrade to clearly labelled demo results so the dialogue
always has something to describe.
"""
import time
from typing import Any, Optional

import structlog

from lisa_voice.adapters.order_store import Order, OrderStore, demo_orders
from lisa_voice.exceptions import ActionFailed
from lisa_voice.services.response_composer import Action, coerce_order_slots, missing_order_slots
from lisa_voice.services.session_service import SessionStore

logger = structlog.get_logger()

MAX_SEARCH_RESULTS = 10


class ActionExecutor:
    """Dispatches a canonical action and normalizes its result payload."""

    def __init__(self, order_store: Optional[OrderStore], session_store: SessionStore) -> None:
        self.order_store = order_store
        self.session_store = session_store

    async def execute(
        self,
        action: str,
        parameters: Optional[dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Execute an action.

        Never raises; unexpected errors become {"error": "Action failed"}.
        """
        parameters = parameters or {}
        handlers = {
            Action.SEARCH_RESULTS: self._search_orders,
            Action.ORDER_CREATED: self._create_order,
            Action.PDF_REQUESTED: self._request_pdf,
            Action.END_CONVERSATION: self._end_conversation,
        }
        handler = handlers.get(action)
        if handler is None:
            logger.warning("action_unknown", action=action, session_id=session_id)
            return {"error": "Unknown action"}

        start_time = time.time()
        try:
            result = await handler(parameters, session_id)
        except Exception as e:
            logger.error(
                "action_failed",
                action=action,
                session_id=session_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return {"error": "Action failed"}

        logger.info(
            "action_executed",
            action=action,
            session_id=session_id,
            status_code=result.get("statusCode"),
            latency_ms=round((time.time() - start_time) * 1000, 1),
        )
        return result

    async def _search_orders(self, parameters: dict[str, Any], session_id: Optional[str]) -> dict[str, Any]:
        criteria = {
            key: parameters[key]
            for key in ("customer_name", "order_id", "date_range")
            if parameters.get(key)
        }

        try:
            if self.order_store is None:
                raise ActionFailed(Action.SEARCH_RESULTS, "No order store configured")
            orders = await self.order_store.search(criteria)
        except ActionFailed as e:
            logger.warning("order_search_degraded", session_id=session_id, error=e.message)
            return self._orders_payload(demo_orders(), "Orders retrieved successfully (demo mode)", demo=True)

        orders = orders[:MAX_SEARCH_RESULTS]
        message = f"Found {len(orders)} order{'s' if len(orders) != 1 else ''}" if orders else "No orders found"
        return self._orders_payload(orders, message)

    @staticmethod
    def _orders_payload(orders: list[Order], message: str, demo: bool = False) -> dict[str, Any]:
        payload = {
            "orders": [o.to_dict() for o in orders],
            "count": len(orders),
            "totalCost": round(sum(o.total_cost for o in orders), 2),
            "statusCode": 200,
            "message": message,
        }
        if demo:
            payload["demo"] = True
        return payload

    async def _create_order(self, parameters: dict[str, Any], session_id: Optional[str]) -> dict[str, Any]:
        parameters = coerce_order_slots(parameters)
        missing = missing_order_slots(parameters)
        if missing:
            return {
                "message": "Missing required order details",
                "missing": missing,
                "statusCode": 422,
            }

        quantity = int(parameters["quantity"])
        unit_price = float(parameters.get("unit_price", 150.0))
        draft = {
            "customerName": parameters.get("customer_name", ""),
            "glassType": parameters["glass_type"],
            "glassClass": parameters.get("glass_class", "IG_CLASS"),
            "thickness": float(parameters.get("thickness", 6.0)),
            "width": float(parameters.get("width", 1200)),
            "height": float(parameters.get("height", 800)),
            "quantity": quantity,
            "unitPrice": unit_price,
            "totalCost": round(unit_price * quantity, 2),
            "status": "PENDING",
            "priority": parameters.get("priority", "MEDIUM"),
        }

        try:
            if self.order_store is None:
                raise ActionFailed(Action.ORDER_CREATED, "No order store configured")
            order = await self.order_store.create(draft)
        except ActionFailed as e:
            logger.warning("order_create_degraded", session_id=session_id, error=e.message)
            demo = Order.from_dict({**draft, "id": f"ORD-DEMO-{int(time.time() * 1000)}"})
            return {
                "order": demo.to_dict(),
                "message": "Order created successfully (demo mode)",
                "statusCode": 200,
                "demo": True,
            }

        return {
            "order": order.to_dict(),
            "message": f"Order {order.id} created successfully",
            "statusCode": 201,
        }

    async def _request_pdf(self, parameters: dict[str, Any], session_id: Optional[str]) -> dict[str, Any]:
        return {"message": "PDF generation requested", "orderId": parameters.get("order_id")}

    async def _end_conversation(self, parameters: dict[str, Any], session_id: Optional[str]) -> dict[str, Any]:
        if session_id:
            self.session_store.remove(session_id)
        return {
            "message": "Conversation ended successfully",
            "action": Action.END_CONVERSATION,
            "sessionId": session_id,
        }
