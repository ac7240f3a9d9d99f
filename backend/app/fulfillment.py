from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from .auth_routes import get_current_user
from .errors import NoOpenFulfillmentOrder, NotFound, PreconditionFailed, ShopifyValidationError, UpstreamError
from .logs import log_event
from .shopify import ShopifyClient, get_shopify, numeric_id, order_gid

router = APIRouter(dependencies=[Depends(get_current_user)])

TRACKING_COMPANY = "Manual"

MARK_PAID_MUTATION = """
mutation orderMarkAsPaid($input: OrderMarkAsPaidInput!) {
  orderMarkAsPaid(input: $input) {
    order { id displayFinancialStatus }
    userErrors { field message }
  }
}
"""

DELIVERY_STATE_QUERY = """
query DeliveryState($id: ID!) {
  order(id: $id) {
    id
    displayFinancialStatus
    fulfillments(first: 10) {
      id
      status
      displayStatus
    }
    fulfillmentOrders(first: 5) {
      edges {
        node {
          id
          status
          lineItems(first: 50) {
            edges { node { id remainingQuantity } }
          }
        }
      }
    }
  }
}
"""

FULFILLMENT_CREATE_MUTATION = """
mutation fulfillmentCreate($fulfillment: FulfillmentInput!) {
  fulfillmentCreate(fulfillment: $fulfillment) {
    fulfillment { id }
    userErrors { field message }
  }
}
"""

FULFILLMENT_EVENT_MUTATION = """
mutation fulfillmentEventCreate($fulfillmentEvent: FulfillmentEventInput!) {
  fulfillmentEventCreate(fulfillmentEvent: $fulfillmentEvent) {
    fulfillmentEvent { id status }
    userErrors { field message }
  }
}
"""


# ---------- Decision ----------
class FulfillmentLineItem(BaseModel):
    id: str
    quantity: int


class AppendToExisting(BaseModel):
    """The order already has a fulfillment: only a DELIVERED event is added."""

    kind: Literal["append"] = "append"
    fulfillment_id: str


class CreateThenDeliver(BaseModel):
    """No fulfillment yet: fulfill the open remainder, then add the event."""

    kind: Literal["create"] = "create"
    fulfillment_order_id: str
    line_items: List[FulfillmentLineItem]


FulfillmentDecision = Union[AppendToExisting, CreateThenDeliver]


def _edges_nodes(conn: Any) -> List[Dict[str, Any]]:
    if not isinstance(conn, dict):
        return []
    edges = conn.get("edges") or []
    return [((e or {}).get("node") or {}) for e in edges]


def decide_fulfillment(order: Dict[str, Any]) -> FulfillmentDecision:
    # Only the first existing fulfillment is used, even when several exist.
    existing = order.get("fulfillments") or []
    if existing:
        return AppendToExisting(fulfillment_id=existing[0]["id"])

    open_fo = next((fo for fo in _edges_nodes(order.get("fulfillmentOrders")) if fo.get("status") == "OPEN"), None)
    if not open_fo:
        raise NoOpenFulfillmentOrder()
    items = [
        FulfillmentLineItem(id=li["id"], quantity=int(li.get("remainingQuantity") or 0))
        for li in _edges_nodes(open_fo.get("lineItems"))
        if int(li.get("remainingQuantity") or 0) > 0
    ]
    return CreateThenDeliver(fulfillment_order_id=open_fo["id"], line_items=items)


def build_fulfillment_input(decision: CreateThenDeliver, order_id: str) -> Dict[str, Any]:
    return {
        "lineItemsByFulfillmentOrder": [{
            "fulfillmentOrderId": decision.fulfillment_order_id,
            "fulfillmentOrderLineItems": [{"id": li.id, "quantity": li.quantity} for li in decision.line_items],
        }],
        "trackingInfo": {
            "company": TRACKING_COMPANY,
            "number": f"DELIVERED-{order_id}",
        },
        "notifyCustomer": True,
    }


# ---------- Shopify calls ----------
def _payload(data: Dict[str, Any], field: str) -> Dict[str, Any]:
    res = data.get(field)
    if not isinstance(res, dict):
        raise UpstreamError("Invalid response structure")
    errs = res.get("userErrors") or []
    if errs:
        raise ShopifyValidationError(errs)
    return res


async def mark_paid(client: ShopifyClient, order_id: str) -> Dict[str, Any]:
    gid = order_gid(order_id)
    data = await client.graphql(MARK_PAID_MUTATION, {"input": {"id": gid}})
    try:
        _payload(data, "orderMarkAsPaid")
    except ShopifyValidationError as e:
        log_event("fulfillment", event="mark_paid_rejected", order=gid, errors=e.user_errors)
        raise
    log_event("fulfillment", event="marked_paid", order=gid)
    return {"success": True, "message": "Order marked as paid"}


async def fetch_delivery_state(client: ShopifyClient, gid: str) -> Dict[str, Any]:
    try:
        data = await client.graphql(DELIVERY_STATE_QUERY, {"id": gid})
    except UpstreamError as e:
        # Malformed ids come back as GraphQL errors next to a null order
        if e.data is not None and not e.data.get("order"):
            raise NotFound("Order not found")
        raise
    order = data.get("order")
    if not order:
        raise NotFound("Order not found")
    return order


async def create_fulfillment(client: ShopifyClient, decision: CreateThenDeliver, order_id: str) -> str:
    data = await client.graphql(FULFILLMENT_CREATE_MUTATION, {"fulfillment": build_fulfillment_input(decision, order_id)})
    res = _payload(data, "fulfillmentCreate")
    fid = (res.get("fulfillment") or {}).get("id")
    if not fid:
        raise UpstreamError("Invalid response structure")
    return fid


async def append_delivered_event(client: ShopifyClient, fulfillment_id: str, *, now: Optional[datetime] = None) -> None:
    happened_at = (now or datetime.now(timezone.utc)).isoformat()
    variables = {"fulfillmentEvent": {"fulfillmentId": fulfillment_id, "status": "DELIVERED", "happenedAt": happened_at}}
    data = await client.graphql(FULFILLMENT_EVENT_MUTATION, variables)
    _payload(data, "fulfillmentEventCreate")


async def mark_delivered(client: ShopifyClient, order_id: str, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    gid = order_gid(order_id)
    oid = numeric_id(gid)
    order = await fetch_delivery_state(client, gid)

    if order.get("displayFinancialStatus") != "PAID":
        raise PreconditionFailed("Order must be paid before delivery")

    decision = decide_fulfillment(order)
    log_event("fulfillment", event="decision", order=gid, decision=decision.model_dump())

    if isinstance(decision, AppendToExisting):
        # No check for an existing DELIVERED event; a repeat call appends another one.
        await append_delivered_event(client, decision.fulfillment_id, now=now)
        log_event("fulfillment", event="delivered", order=gid, fulfillment=decision.fulfillment_id, created=False)
        return {"success": True, "message": "Order marked as delivered", "fulfillmentId": decision.fulfillment_id, "created": False}

    try:
        fid = await create_fulfillment(client, decision, oid)
    except ShopifyValidationError as e:
        log_event("fulfillment", event="create_rejected", order=gid, errors=e.user_errors)
        raise
    # A failure below leaves the new fulfillment in place without the DELIVERED event.
    await append_delivered_event(client, fid, now=now)
    log_event("fulfillment", event="delivered", order=gid, fulfillment=fid, created=True)
    return {"success": True, "message": "Order fulfilled and marked as delivered", "fulfillmentId": fid, "created": True}


# ---------- Routes ----------
@router.post("/api/orders/{order_id:path}/paid")
async def post_paid(order_id: str, client: ShopifyClient = Depends(get_shopify)):
    return await mark_paid(client, order_id)


@router.post("/api/orders/{order_id:path}/delivered")
async def post_delivered(order_id: str, client: ShopifyClient = Depends(get_shopify)):
    return await mark_delivered(client, order_id)
