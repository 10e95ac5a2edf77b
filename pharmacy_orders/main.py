"""
FastAPI application exposing the pharmacy order API.

This module wires the order engine into a RESTful API: checkout, order status
tracking, M-Pesa and card payments, prescription review, notification
history and the audit trail.  Authentication is a thin API-key check; the
real identity provider sits in front of this service.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .enterprise.auth import UserContext, require_auth, require_role
from .errors import InvalidTransitionError, NotFoundError, ValidationError
from .models.schemas import (
    AuditLogEntry,
    EntityType,
    NotificationRecord,
    Order,
    OrderCreate,
    OrderFilter,
    OrderStatus,
    PaymentInitiation,
    PaymentOutcome,
    PaymentPoll,
    PaymentRequest,
    PrescriptionDecision,
    PrescriptionFile,
    PrescriptionUpload,
    StatusUpdate,
)
from .services.engine import PharmacyEngine

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

DELIVERY_STATUSES = (OrderStatus.SHIPPED, OrderStatus.DELIVERED)


def get_engine(request: Request) -> PharmacyEngine:
    return request.app.state.engine


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "127.0.0.1"


def _check_owner(user: UserContext, order: Order) -> None:
    if user.role == "customer" and order.user_id != user.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your order")


def create_app(engine: Optional[PharmacyEngine] = None) -> FastAPI:
    app = FastAPI(title="Pharmacy Orders API", version="0.1.0")
    app.state.engine = engine or PharmacyEngine.from_settings()

    # Allow cross-origin requests from the storefront during development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.ENVIRONMENT == "development" else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(InvalidTransitionError)
    async def transition_handler(request: Request, exc: InvalidTransitionError):
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": str(exc)})

    @app.get("/health", tags=["health"])
    def api_health():
        return {"status": "ok", "environment": settings.ENVIRONMENT}

    # -- orders ---------------------------------------------------------------

    @app.post("/orders", response_model=Order, status_code=status.HTTP_201_CREATED)
    def api_create_order(
        order_in: OrderCreate,
        user: UserContext = Depends(require_auth),
        engine: PharmacyEngine = Depends(get_engine),
    ):
        """Submit a checkout.  Customers can only order for themselves."""
        if user.role == "customer" and order_in.user_id != user.user_id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot order for another user")
        return engine.create_order(order_in)

    @app.get("/orders", response_model=List[Order])
    def api_list_orders(
        status_filter: Optional[OrderStatus] = Query(None, alias="status"),
        user_id: Optional[str] = None,
        search: Optional[str] = None,
        user: UserContext = Depends(require_auth),
        engine: PharmacyEngine = Depends(get_engine),
    ):
        """List orders.  Customers only see their own."""
        if user.role == "customer":
            user_id = user.user_id
        return engine.list_orders(OrderFilter(status=status_filter, user_id=user_id, search=search))

    @app.get("/orders/{order_id}", response_model=Order)
    def api_get_order(
        order_id: str,
        user: UserContext = Depends(require_auth),
        engine: PharmacyEngine = Depends(get_engine),
    ):
        """Retrieve an order by its ID."""
        order = engine.get_order(order_id)
        _check_owner(user, order)
        return order

    @app.post("/orders/{order_id}/status", response_model=Order)
    def api_update_order_status(
        order_id: str,
        update: StatusUpdate,
        request: Request,
        user: UserContext = Depends(require_role("admin", "delivery")),
        engine: PharmacyEngine = Depends(get_engine),
    ):
        """Move an order to a new status (e.g. mark it shipped)."""
        if user.role == "delivery" and update.status not in DELIVERY_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Delivery staff can only mark orders shipped or delivered",
            )
        return engine.update_order_status(order_id, update.status, user.as_actor(_client_ip(request)))

    # -- payments -------------------------------------------------------------

    @app.post("/orders/{order_id}/payments", response_model=PaymentInitiation)
    def api_initiate_payment(
        order_id: str,
        payment_in: PaymentRequest,
        user: UserContext = Depends(require_auth),
        engine: PharmacyEngine = Depends(get_engine),
    ):
        """Start an M-Pesa push or create a card payment intent."""
        _check_owner(user, engine.get_order(order_id))
        return engine.initiate_payment(order_id, payment_in)

    @app.post("/payments/status", response_model=PaymentOutcome)
    def api_poll_payment(
        poll: PaymentPoll,
        user: UserContext = Depends(require_auth),
        engine: PharmacyEngine = Depends(get_engine),
    ):
        """Check (M-Pesa) or confirm (card) a payment started earlier."""
        _check_owner(user, engine.get_order(poll.token.order_id))
        return engine.poll_payment_status(poll.token, poll.payment_method_ref)

    # -- prescriptions --------------------------------------------------------

    @app.post(
        "/orders/{order_id}/prescriptions",
        response_model=PrescriptionFile,
        status_code=status.HTTP_201_CREATED,
    )
    def api_upload_prescription(
        order_id: str,
        upload: PrescriptionUpload,
        user: UserContext = Depends(require_auth),
        engine: PharmacyEngine = Depends(get_engine),
    ):
        """Attach an uploaded prescription file to an order."""
        _check_owner(user, engine.get_order(order_id))
        return engine.upload_prescription(order_id, upload.file_name, upload.file_size)

    @app.get("/orders/{order_id}/prescriptions", response_model=List[PrescriptionFile])
    def api_list_order_prescriptions(
        order_id: str,
        user: UserContext = Depends(require_auth),
        engine: PharmacyEngine = Depends(get_engine),
    ):
        _check_owner(user, engine.get_order(order_id))
        return engine.list_prescriptions_for_order(order_id)

    @app.get("/prescriptions/pending", response_model=List[PrescriptionFile])
    def api_pending_prescriptions(
        user: UserContext = Depends(require_role("admin")),
        engine: PharmacyEngine = Depends(get_engine),
    ):
        """Prescriptions waiting for a pharmacist."""
        return engine.list_pending_prescriptions()

    @app.post("/prescriptions/{prescription_id}/validation", response_model=PrescriptionFile)
    def api_validate_prescription(
        prescription_id: str,
        decision: PrescriptionDecision,
        request: Request,
        user: UserContext = Depends(require_role("admin")),
        engine: PharmacyEngine = Depends(get_engine),
    ):
        """Approve or reject a prescription."""
        return engine.validate_prescription(prescription_id, decision, user.as_actor(_client_ip(request)))

    # -- notifications and audit ---------------------------------------------

    @app.get("/notifications", response_model=List[NotificationRecord])
    def api_notifications(
        order_id: Optional[str] = None,
        user: UserContext = Depends(require_role("admin")),
        engine: PharmacyEngine = Depends(get_engine),
    ):
        return engine.notification_history(order_id)

    @app.post("/notifications/{notification_id}/resend", response_model=NotificationRecord)
    def api_resend_notification(
        notification_id: str,
        user: UserContext = Depends(require_role("admin")),
        engine: PharmacyEngine = Depends(get_engine),
    ):
        """Try a notification again; the new attempt is recorded separately."""
        return engine.resend_notification(notification_id)

    @app.get("/audit", response_model=List[AuditLogEntry])
    def api_audit_trail(
        entity_type: EntityType,
        entity_id: Optional[str] = None,
        user: UserContext = Depends(require_role("admin")),
        engine: PharmacyEngine = Depends(get_engine),
    ):
        """Audit entries for an entity type, optionally one entity, oldest first."""
        return engine.get_audit_trail(entity_type, entity_id)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pharmacy_orders.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )
