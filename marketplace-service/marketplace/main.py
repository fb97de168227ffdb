from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from . import addresses, config, db, delivery, menu, orders, payments, restaurants, reviews, schemas
from .auth import CurrentUser, get_current_user, require_role
from .deps import CorrelationIdFilter, get_correlation_id, get_db, new_correlation_id
from .errors import ServiceError, SignatureError
from .lifecycle import Role
from .metrics import (
    ORDER_STATUS_CHANGES,
    ORDERS_CREATED,
    PAYMENTS_VERIFIED,
    REVIEWS_SUBMITTED,
    MetricsMiddleware,
    metrics_endpoint,
)

# ----- Logging -----
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] [marketplace-service] [cid=%(correlation_id)s] %(message)s",
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(CorrelationIdFilter())
logger = logging.getLogger("marketplace-service")

# ----- Init -----
db.init_db()
app = FastAPI(title="marketplace-service", version="v1")
app.add_middleware(MetricsMiddleware, service_name="marketplace-service")

customer_only = require_role(Role.CUSTOMER)
restaurant_only = require_role(Role.RESTAURANT)
partner_only = require_role(Role.DELIVERY_PARTNER)
admin_only = require_role(Role.ADMIN)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    cid = new_correlation_id(request.headers.get("X-Correlation-Id"))
    response = await call_next(request)
    response.headers["X-Correlation-Id"] = cid
    return response


def ok(data=None, message=None, **extra):
    return schemas.Envelope(status="success", message=message, data=data, **extra)


def _error_response(status_code: int, message: str, code: str, cid: str, **extra):
    body = schemas.Envelope(
        status="error",
        message=message,
        error={"code": code, "correlationId": cid, **extra},
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", exclude_none=True),
        headers={"X-Correlation-Id": cid},
    )


# ----- Error handlers -----

@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    cid = get_correlation_id(request.headers.get("X-Correlation-Id"))
    if exc.status_code >= 500:
        logger.error("%s: %s", exc.code, exc.message)
    return _error_response(exc.status_code, exc.message, exc.code, cid)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    cid = get_correlation_id(request.headers.get("X-Correlation-Id"))
    errors = [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]
    return _error_response(400, "Validation failed", "VALIDATION_FAILED", cid, errors=errors)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    cid = get_correlation_id(request.headers.get("X-Correlation-Id"))
    return _error_response(exc.status_code, str(exc.detail), "HTTP_ERROR", cid)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    cid = get_correlation_id(request.headers.get("X-Correlation-Id"))
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_response(500, "Something went wrong", "INTERNAL_ERROR", cid)


# ----- Infra Endpoints -----
@app.get("/health")
def health():
    return {"status": "ok", "service": "marketplace-service"}


@app.get("/metrics")
def metrics():
    return metrics_endpoint()


# ----- API: Orders (customer) -----

@app.post("/orders/create", response_model=schemas.Envelope, response_model_exclude_none=True,
          status_code=201)
def create_order(
    payload: schemas.CreateOrderRequest,
    user: CurrentUser = Depends(customer_only),
    db_sess: Session = Depends(get_db),
):
    created = orders.create_order(db_sess, user.id, payload)
    ORDERS_CREATED.labels(payload.payment_method.value).inc()
    return ok(created, "Order created successfully")


@app.post("/orders/payment/create", response_model=schemas.Envelope, response_model_exclude_none=True)
def create_payment(
    payload: schemas.PaymentCreateRequest,
    user: CurrentUser = Depends(customer_only),
    db_sess: Session = Depends(get_db),
    gateway=Depends(payments.get_gateway),
):
    intent = payments.create_payment_intent(db_sess, gateway, user.id, payload.order_id)
    return ok(intent)


@app.post("/orders/payment/verify", response_model=schemas.Envelope, response_model_exclude_none=True)
def verify_payment(
    payload: schemas.PaymentVerifyRequest,
    user: CurrentUser = Depends(customer_only),
    db_sess: Session = Depends(get_db),
    key_secret: str = Depends(payments.get_key_secret),
):
    try:
        confirmation = payments.verify_payment(db_sess, key_secret, user.id, payload)
    except SignatureError:
        PAYMENTS_VERIFIED.labels("bad_signature").inc()
        raise
    PAYMENTS_VERIFIED.labels("duplicate" if confirmation.already_verified else "success").inc()
    return ok(confirmation, "Payment verified successfully")


@app.get("/orders/my-orders", response_model=schemas.Envelope, response_model_exclude_none=True)
def my_orders(
    status: str = None,
    limit: int = 20,
    offset: int = 0,
    user: CurrentUser = Depends(customer_only),
    db_sess: Session = Depends(get_db),
):
    rows = orders.list_customer_orders(db_sess, user.id, status=status, limit=limit, offset=offset)
    return ok(rows, count=len(rows))


# ----- API: Orders (restaurant) -----

@app.get("/orders/restaurant/orders", response_model=schemas.Envelope, response_model_exclude_none=True)
def restaurant_orders(
    status: str = None,
    limit: int = 50,
    offset: int = 0,
    user: CurrentUser = Depends(restaurant_only),
    db_sess: Session = Depends(get_db),
):
    rows = orders.list_restaurant_orders(db_sess, user.id, status=status, limit=limit, offset=offset)
    return ok(rows, count=len(rows))


@app.get("/orders/{order_id}", response_model=schemas.Envelope, response_model_exclude_none=True)
def get_order(
    order_id: int,
    user: CurrentUser = Depends(get_current_user),
    db_sess: Session = Depends(get_db),
):
    return ok(orders.get_order_detail(db_sess, user, order_id))


@app.patch("/orders/{order_id}/status", response_model=schemas.Envelope, response_model_exclude_none=True)
def update_order_status(
    order_id: int,
    payload: schemas.StatusUpdateRequest,
    user: CurrentUser = Depends(restaurant_only),
    db_sess: Session = Depends(get_db),
):
    order = orders.update_order_status(db_sess, user.id, order_id, payload.status)
    ORDER_STATUS_CHANGES.labels(order.status).inc()
    return ok(schemas.OrderRead.model_validate(order), "Order status updated")


# ----- API: Delivery partner -----

@app.patch("/delivery/toggle-availability", response_model=schemas.Envelope,
           response_model_exclude_none=True)
def toggle_availability(
    user: CurrentUser = Depends(partner_only),
    db_sess: Session = Depends(get_db),
):
    partner = delivery.toggle_availability(db_sess, user.id)
    state = "online" if partner.is_available else "offline"
    return ok(partner, f"You are now {state}")


@app.get("/delivery/available-orders", response_model=schemas.Envelope, response_model_exclude_none=True)
def available_orders(
    user: CurrentUser = Depends(partner_only),
    db_sess: Session = Depends(get_db),
):
    rows, message = delivery.available_orders(db_sess, user.id)
    return ok(rows, message, count=len(rows))


@app.post("/delivery/orders/{order_id}/accept", response_model=schemas.Envelope,
          response_model_exclude_none=True)
def accept_order(
    order_id: int,
    user: CurrentUser = Depends(partner_only),
    db_sess: Session = Depends(get_db),
):
    order = delivery.accept_order(db_sess, user.id, order_id)
    ORDER_STATUS_CHANGES.labels(order.status).inc()
    return ok(schemas.OrderRead.model_validate(order), "Order accepted successfully")


@app.get("/delivery/my-deliveries", response_model=schemas.Envelope, response_model_exclude_none=True)
def my_deliveries(
    user: CurrentUser = Depends(partner_only),
    db_sess: Session = Depends(get_db),
):
    rows = delivery.my_deliveries(db_sess, user.id)
    return ok(rows, count=len(rows))


@app.patch("/delivery/orders/{order_id}/status", response_model=schemas.Envelope,
           response_model_exclude_none=True)
def update_delivery_status(
    order_id: int,
    payload: schemas.DeliveryStatusRequest,
    user: CurrentUser = Depends(partner_only),
    db_sess: Session = Depends(get_db),
):
    order = delivery.update_delivery_status(db_sess, user.id, order_id, payload)
    ORDER_STATUS_CHANGES.labels(order.status).inc()
    return ok(schemas.OrderRead.model_validate(order), "Status updated successfully")


@app.get("/delivery/history", response_model=schemas.Envelope, response_model_exclude_none=True)
def delivery_history(
    limit: int = 50,
    offset: int = 0,
    user: CurrentUser = Depends(partner_only),
    db_sess: Session = Depends(get_db),
):
    rows = delivery.delivery_history(db_sess, user.id, limit=limit, offset=offset)
    return ok(rows, count=len(rows))


@app.get("/delivery/stats", response_model=schemas.Envelope, response_model_exclude_none=True)
def delivery_stats(
    user: CurrentUser = Depends(partner_only),
    db_sess: Session = Depends(get_db),
):
    return ok(delivery.partner_stats(db_sess, user.id))


# ----- API: Reviews -----

@app.post("/reviews", response_model=schemas.Envelope, response_model_exclude_none=True, status_code=201)
def submit_review(
    payload: schemas.ReviewCreateRequest,
    user: CurrentUser = Depends(customer_only),
    db_sess: Session = Depends(get_db),
):
    review = reviews.submit_review(db_sess, user.id, payload)
    REVIEWS_SUBMITTED.inc()
    return ok(review, "Review submitted successfully")


@app.get("/reviews/my-reviews", response_model=schemas.Envelope, response_model_exclude_none=True)
def my_reviews(
    limit: int = 20,
    offset: int = 0,
    user: CurrentUser = Depends(customer_only),
    db_sess: Session = Depends(get_db),
):
    rows = reviews.my_reviews(db_sess, user.id, limit=limit, offset=offset)
    return ok(rows, count=len(rows))


@app.get("/reviews/can-review/{order_id}", response_model=schemas.Envelope,
         response_model_exclude_none=True)
def can_review(
    order_id: int,
    user: CurrentUser = Depends(customer_only),
    db_sess: Session = Depends(get_db),
):
    return ok(reviews.can_review(db_sess, user.id, order_id))


@app.get("/reviews/restaurant/{restaurant_id}", response_model=schemas.Envelope,
         response_model_exclude_none=True)
def restaurant_reviews(
    restaurant_id: int,
    limit: int = 20,
    offset: int = 0,
    db_sess: Session = Depends(get_db),
):
    stats, rows = reviews.restaurant_reviews(db_sess, restaurant_id, limit=limit, offset=offset)
    return ok(rows, stats=stats, count=len(rows))


@app.get("/reviews/delivery-partner/{partner_id}", response_model=schemas.Envelope,
         response_model_exclude_none=True)
def partner_reviews(
    partner_id: int,
    limit: int = 20,
    offset: int = 0,
    db_sess: Session = Depends(get_db),
):
    stats, rows = reviews.partner_reviews(db_sess, partner_id, limit=limit, offset=offset)
    return ok(rows, stats=stats, count=len(rows))


@app.put("/reviews/{review_id}", response_model=schemas.Envelope, response_model_exclude_none=True)
def update_review(
    review_id: int,
    payload: schemas.ReviewUpdateRequest,
    user: CurrentUser = Depends(customer_only),
    db_sess: Session = Depends(get_db),
):
    return ok(reviews.update_review(db_sess, user.id, review_id, payload), "Review updated successfully")


@app.delete("/reviews/{review_id}", response_model=schemas.Envelope, response_model_exclude_none=True)
def delete_review(
    review_id: int,
    user: CurrentUser = Depends(customer_only),
    db_sess: Session = Depends(get_db),
):
    reviews.delete_review(db_sess, user.id, review_id)
    return ok(message="Review deleted successfully")


# ----- API: Restaurants & menu -----

@app.get("/restaurants", response_model=schemas.Envelope, response_model_exclude_none=True)
def list_restaurants(
    city: str = None,
    cuisine: str = None,
    min_rating: float = None,
    search: str = None,
    limit: int = 20,
    offset: int = 0,
    db_sess: Session = Depends(get_db),
):
    rows, total = restaurants.list_restaurants(
        db_sess, city=city, cuisine=cuisine, min_rating=min_rating, search=search,
        limit=limit, offset=offset,
    )
    return ok(rows, count=len(rows), total=total)


@app.get("/restaurants/{restaurant_id}", response_model=schemas.Envelope, response_model_exclude_none=True)
def get_restaurant(restaurant_id: int, db_sess: Session = Depends(get_db)):
    return ok(restaurants.get_restaurant(db_sess, restaurant_id))


@app.get("/menu/restaurant/{restaurant_id}", response_model=schemas.Envelope,
         response_model_exclude_none=True)
def restaurant_menu(
    restaurant_id: int,
    category: str = None,
    is_vegetarian: bool = None,
    is_available: bool = None,
    db_sess: Session = Depends(get_db),
):
    rows = menu.restaurant_menu(db_sess, restaurant_id, category=category,
                                is_vegetarian=is_vegetarian, is_available=is_available)
    return ok(rows, count=len(rows))


@app.get("/menu/my-menu", response_model=schemas.Envelope, response_model_exclude_none=True)
def my_menu(
    user: CurrentUser = Depends(restaurant_only),
    db_sess: Session = Depends(get_db),
):
    rows = menu.restaurant_menu(db_sess, user.id)
    return ok(rows, count=len(rows))


@app.post("/menu", response_model=schemas.Envelope, response_model_exclude_none=True, status_code=201)
def add_menu_item(
    payload: schemas.MenuItemCreate,
    user: CurrentUser = Depends(restaurant_only),
    db_sess: Session = Depends(get_db),
):
    return ok(menu.add_menu_item(db_sess, user.id, payload), "Menu item added successfully")


@app.put("/menu/{item_id}", response_model=schemas.Envelope, response_model_exclude_none=True)
def update_menu_item(
    item_id: int,
    payload: schemas.MenuItemUpdate,
    user: CurrentUser = Depends(restaurant_only),
    db_sess: Session = Depends(get_db),
):
    return ok(menu.update_menu_item(db_sess, user.id, item_id, payload), "Menu item updated successfully")


@app.delete("/menu/{item_id}", response_model=schemas.Envelope, response_model_exclude_none=True)
def delete_menu_item(
    item_id: int,
    user: CurrentUser = Depends(restaurant_only),
    db_sess: Session = Depends(get_db),
):
    menu.delete_menu_item(db_sess, user.id, item_id)
    return ok(message="Menu item deleted successfully")


@app.patch("/menu/{item_id}/toggle-availability", response_model=schemas.Envelope,
           response_model_exclude_none=True)
def toggle_menu_item(
    item_id: int,
    user: CurrentUser = Depends(restaurant_only),
    db_sess: Session = Depends(get_db),
):
    item = menu.toggle_item_availability(db_sess, user.id, item_id)
    return ok(item, f"Item {'enabled' if item.is_available else 'disabled'}")


# ----- API: Addresses (customer) -----

@app.get("/addresses", response_model=schemas.Envelope, response_model_exclude_none=True)
def list_addresses(
    user: CurrentUser = Depends(customer_only),
    db_sess: Session = Depends(get_db),
):
    rows = addresses.list_addresses(db_sess, user.id)
    return ok(rows, count=len(rows))


@app.post("/addresses", response_model=schemas.Envelope, response_model_exclude_none=True, status_code=201)
def add_address(
    payload: schemas.AddressCreate,
    user: CurrentUser = Depends(customer_only),
    db_sess: Session = Depends(get_db),
):
    return ok(addresses.add_address(db_sess, user.id, payload), "Address added successfully")


@app.put("/addresses/{address_id}", response_model=schemas.Envelope, response_model_exclude_none=True)
def update_address(
    address_id: int,
    payload: schemas.AddressUpdate,
    user: CurrentUser = Depends(customer_only),
    db_sess: Session = Depends(get_db),
):
    return ok(addresses.update_address(db_sess, user.id, address_id, payload), "Address updated successfully")


@app.delete("/addresses/{address_id}", response_model=schemas.Envelope, response_model_exclude_none=True)
def delete_address(
    address_id: int,
    user: CurrentUser = Depends(customer_only),
    db_sess: Session = Depends(get_db),
):
    addresses.delete_address(db_sess, user.id, address_id)
    return ok(message="Address deleted successfully")


# ----- API: Admin -----

@app.get("/admin/orders", response_model=schemas.Envelope, response_model_exclude_none=True)
def admin_orders(
    status: str = None,
    limit: int = 50,
    offset: int = 0,
    user: CurrentUser = Depends(admin_only),
    db_sess: Session = Depends(get_db),
):
    rows, total = orders.list_all_orders(db_sess, status=status, limit=limit, offset=offset)
    return ok(rows, count=len(rows), total=total)


if __name__ == "__main__":
    import os
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
