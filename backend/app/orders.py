from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from .auth_routes import get_current_user
from .errors import UpstreamError
from .logs import log_event
from .shopify import ShopifyClient, get_shopify, numeric_id

router = APIRouter(dependencies=[Depends(get_current_user)])

PAGE_SIZE = 250
# Raw Shopify search syntax; unrelated to the locally derived delivery status.
UPSTREAM_ORDER_FILTER = "fulfillment_status:fulfilled"
DELIVERED = "DELIVERED"
UNFULFILLED = "UNFULFILLED"

PENDING_ORDERS_QUERY = """
query PendingOrders($first: Int!, $after: String, $query: String) {
  orders(first: $first, after: $after, query: $query, sortKey: UPDATED_AT, reverse: true) {
    pageInfo {
      hasNextPage
      endCursor
    }
    edges {
      node {
        id
        name
        displayFulfillmentStatus
        displayFinancialStatus
        totalPriceSet { shopMoney { amount currencyCode } }
        createdAt
        updatedAt
        lineItems(first: 50) {
          edges { node { name quantity } }
        }
        fulfillments(first: 10) {
          status
          displayStatus
          events(first: 10) {
            edges { node { status happenedAt } }
          }
        }
      }
      cursor
    }
  }
}
"""


def _event_statuses(fulfillment: Dict[str, Any]) -> List[str]:
    edges = ((fulfillment or {}).get("events") or {}).get("edges") or []
    return [((e or {}).get("node") or {}).get("status") for e in edges]


def has_delivered_event(order: Dict[str, Any]) -> bool:
    return any(DELIVERED in _event_statuses(f) for f in (order.get("fulfillments") or []))


def effective_delivery_status(order: Dict[str, Any]) -> str:
    """A DELIVERED fulfillment event overrides the declared fulfillment status."""
    if has_delivered_event(order):
        return DELIVERED
    return order.get("displayFulfillmentStatus") or UNFULFILLED


def reconcile_order(order: Dict[str, Any]) -> Dict[str, Any]:
    return {
        **order,
        "orderId": numeric_id(order.get("id") or ""),
        "displayFulfillmentStatus": effective_delivery_status(order),
    }


async def list_pending_orders(client: ShopifyClient, cursor: Optional[str] = None) -> Dict[str, Any]:
    variables: Dict[str, Any] = {"first": PAGE_SIZE, "query": UPSTREAM_ORDER_FILTER}
    if cursor:
        variables["after"] = cursor
    data = await client.graphql(PENDING_ORDERS_QUERY, variables)
    conn = data.get("orders") if isinstance(data, dict) else None
    edges = conn.get("edges") if isinstance(conn, dict) else None
    if not isinstance(edges, list):
        raise UpstreamError("Invalid response structure")

    reconciled = [reconcile_order((e or {}).get("node") or {}) for e in edges]
    orders = [o for o in reconciled if o["displayFulfillmentStatus"] != DELIVERED]
    log_event("orders", event="page", cursor=cursor, fetched=len(edges), pending=len(orders))
    return {"orders": orders, "pageInfo": conn.get("pageInfo")}


@router.get("/api/orders")
async def get_orders(
    cursor: Optional[str] = Query(None, description="Opaque endCursor from a previous page"),
    client: ShopifyClient = Depends(get_shopify),
):
    return await list_pending_orders(client, cursor)
