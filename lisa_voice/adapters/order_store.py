"""
Order store collaborators used by the action executor.

The engine only needs two operations: search and create. The HTTP store
talks to the order REST API; the in-memory store backs development and
tests.
"""
import itertools
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Optional

import httpx
import structlog

from lisa_voice.config import Settings, get_settings
from lisa_voice.exceptions import ActionFailed

logger = structlog.get_logger()

DAY_SECONDS = 24 * 60 * 60


@dataclass
class Order:
    """A glass order as seen by the voice engine."""
    id: str
    customer_name: str
    glass_type: str
    quantity: int
    width: float = 1200.0
    height: float = 800.0
    glass_class: str = "IG_CLASS"
    thickness: float = 6.0
    unit_price: float = 150.0
    total_cost: float = 0.0
    status: str = "PENDING"
    priority: str = "MEDIUM"
    created_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if not self.total_cost:
            self.total_cost = round(self.unit_price * self.quantity, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "customerName": self.customer_name,
            "glassType": self.glass_type,
            "glassClass": self.glass_class,
            "thickness": self.thickness,
            "width": self.width,
            "height": self.height,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "totalCost": self.total_cost,
            "status": self.status,
            "priority": self.priority,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        """Parse an order from the REST API, accepting camelCase or snake_case keys."""
        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return default

        customer = pick("customer")
        customer_name = pick("customerName", "customer_name", default="")
        if not customer_name and isinstance(customer, dict):
            customer_name = customer.get("name", "")

        return cls(
            id=str(pick("id", "orderNumber", "order_number", default="")),
            customer_name=customer_name,
            glass_type=pick("glassType", "glass_type", default=""),
            quantity=int(pick("quantity", default=1)),
            width=float(pick("width", default=1200.0)),
            height=float(pick("height", default=800.0)),
            glass_class=pick("glassClass", "glass_class", default="IG_CLASS"),
            thickness=float(pick("thickness", default=6.0)),
            unit_price=float(pick("unitPrice", "unit_price", default=150.0)),
            total_cost=float(pick("totalCost", "total_cost", default=0.0)),
            status=pick("status", default="PENDING"),
            priority=pick("priority", default="MEDIUM"),
        )


def demo_orders() -> list[Order]:
    """Sample orders served when the store is unreachable."""
    now = time.time()
    return [
        Order(
            id="ORD-001",
            customer_name="Acme Glass Co",
            glass_type="Tempered",
            quantity=5,
            width=120,
            height=80,
            total_cost=450.0,
            status="PENDING",
            created_at=now - DAY_SECONDS,
        ),
        Order(
            id="ORD-002",
            customer_name="Glass Solutions Ltd",
            glass_type="Laminated",
            quantity=3,
            width=100,
            height=60,
            total_cost=320.0,
            status="DELIVERED",
            created_at=now - 3 * DAY_SECONDS,
        ),
        Order(
            id="ORD-003",
            customer_name="Modern Windows Inc",
            glass_type="Clear",
            quantity=8,
            width=150,
            height=90,
            total_cost=680.0,
            status="PROCESSING",
            created_at=now - 5 * DAY_SECONDS,
        ),
    ]


class OrderStore(ABC):
    """Abstract order/customer store."""

    @abstractmethod
    async def search(self, criteria: dict[str, Any]) -> list[Order]:
        """
        Search orders.

        Criteria keys: customer_name, order_id, date_range (today, week, month).

        Raises:
            ActionFailed: store unreachable or returned an error
        """
        pass

    @abstractmethod
    async def create(self, draft: dict[str, Any]) -> Order:
        """
        Create an order from a draft.

        Raises:
            ActionFailed: store unreachable or rejected the draft
        """
        pass


class InMemoryOrderStore(OrderStore):
    """Process-local order table seeded with the sample orders."""

    def __init__(self, orders: Optional[list[Order]] = None) -> None:
        self._orders: list[Order] = list(orders) if orders is not None else demo_orders()
        self._ids = itertools.count(len(self._orders) + 1)

    async def search(self, criteria: dict[str, Any]) -> list[Order]:
        results = list(self._orders)

        customer = (criteria.get("customer_name") or "").lower()
        if customer:
            results = [o for o in results if customer in o.customer_name.lower()]

        order_id = (criteria.get("order_id") or "").upper()
        if order_id:
            results = [o for o in results if o.id.upper() == order_id]

        window = {"today": 1, "week": 7, "month": 31}.get(criteria.get("date_range") or "")
        if window:
            cutoff = time.time() - window * DAY_SECONDS
            results = [o for o in results if o.created_at >= cutoff]

        return sorted(results, key=lambda o: o.created_at, reverse=True)

    async def create(self, draft: dict[str, Any]) -> Order:
        order = replace(Order.from_dict(draft), id=f"ORD-{next(self._ids):03d}", created_at=time.time())
        self._orders.append(order)
        return order


class HttpOrderStore(OrderStore):
    """Order store backed by the order REST API (GET/POST /orders)."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                response = await self._client.request(method, url, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise ActionFailed(path, f"Order store returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ActionFailed(path, f"Order store unreachable: {e}") from e
        except ValueError as e:
            raise ActionFailed(path, "Order store returned invalid JSON") from e

    @staticmethod
    def _parse_order(action: str, item: Any) -> Order:
        if not isinstance(item, dict):
            raise ActionFailed(action, "Unexpected order payload")
        try:
            return Order.from_dict(item)
        except (TypeError, ValueError) as e:
            raise ActionFailed(action, f"Malformed order from store: {e}") from e

    async def search(self, criteria: dict[str, Any]) -> list[Order]:
        params = {
            key: value
            for key, value in {
                "customerName": criteria.get("customer_name"),
                "orderId": criteria.get("order_id"),
                "dateRange": criteria.get("date_range"),
            }.items()
            if value
        }
        data = await self._request("GET", "/orders", params=params)
        items = data.get("orders", data.get("data", [])) if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise ActionFailed("search_results", "Unexpected order list payload")
        return [self._parse_order("search_results", item) for item in items if isinstance(item, dict)]

    async def create(self, draft: dict[str, Any]) -> Order:
        data = await self._request("POST", "/orders", json=draft)
        if not isinstance(data, dict):
            raise ActionFailed("order_created", "Unexpected order payload")
        return self._parse_order("order_created", data.get("order", data))


def create_order_store(settings: Optional[Settings] = None) -> OrderStore:
    """HTTP store when ORDER_STORE_URL is set, in-memory otherwise."""
    settings = settings or get_settings()
    if settings.order_store_url:
        logger.info("order_store_http", base_url=settings.order_store_url)
        return HttpOrderStore(settings.order_store_url, timeout=settings.order_store_timeout_seconds)
    logger.info("order_store_in_memory")
    return InMemoryOrderStore()
