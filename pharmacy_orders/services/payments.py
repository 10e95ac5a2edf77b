"""
Payment rails and payment orchestration.

Two rails are supported, each a two-phase round trip:

* M-Pesa (mobile money): an STK push is initiated, then its status is
  checked once the customer has had time to enter their PIN.
* Card: a payment intent is created, then confirmed with a payment method.

`PaymentGateway` is the seam to the provider.  `SimulatedPaymentGateway`
stands in for the real providers with randomized outcomes, and
`ScriptedPaymentGateway` returns whatever a test tells it to.  Gateways
report declines as failed results and never raise for them.

`PaymentService` relays gateway results onto the order: a completed payment
confirms a pending order, a failed one leaves the order pending so the
customer can try again.
"""

from __future__ import annotations

import logging
import random
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Set, Tuple

from ..errors import InvalidTransitionError, ValidationError
from ..models.schemas import (
    TERMINAL_ORDER_STATUSES,
    Actor,
    Order,
    OrderStatus,
    PaymentInfo,
    PaymentInitiation,
    PaymentMethod,
    PaymentOutcome,
    PaymentRequest,
    PaymentStatus,
    PaymentToken,
)
from .notifications import NotificationDispatcher
from .orders import OrderService

logger = logging.getLogger(__name__)


@dataclass
class RailResponse:
    """Answer to the first phase (STK push or intent creation)."""
    success: bool
    reference: Optional[str] = None
    client_secret: Optional[str] = None
    response_code: Optional[str] = None
    message: str = ""


@dataclass
class RailResult:
    """Answer to the second phase (status check or confirmation)."""
    status: PaymentStatus
    transaction_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    message: str = ""


class PaymentGateway(ABC):
    @abstractmethod
    def initiate_mobile_money(self, phone: str, amount: Decimal, order_id: str) -> RailResponse:
        ...

    @abstractmethod
    def check_mobile_money_status(self, checkout_request_id: str) -> RailResult:
        ...

    @abstractmethod
    def create_card_intent(self, amount: Decimal, order_id: str) -> RailResponse:
        ...

    @abstractmethod
    def confirm_card_payment(self, payment_intent_id: str, payment_method_ref: str) -> RailResult:
        ...


class SimulatedPaymentGateway(PaymentGateway):
    """Randomized stand-in for the M-Pesa and card providers.

    The default success rates are tuning knobs for demos, not a contract.
    """

    def __init__(
        self,
        mobile_initiate_rate: float = 0.9,
        mobile_complete_rate: float = 0.8,
        card_intent_rate: float = 0.95,
        card_confirm_rate: float = 0.9,
        delay: float = 0.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.mobile_initiate_rate = mobile_initiate_rate
        self.mobile_complete_rate = mobile_complete_rate
        self.card_intent_rate = card_intent_rate
        self.card_confirm_rate = card_confirm_rate
        self.delay = delay
        self.rng = rng or random.Random()
        self._checkout_requests: Set[str] = set()
        self._intents: Set[str] = set()

    def _wait(self) -> None:
        if self.delay:
            time.sleep(self.delay)

    def _suffix(self) -> str:
        return "%d%04d" % (int(time.time() * 1000), self.rng.randrange(10000))

    def initiate_mobile_money(self, phone: str, amount: Decimal, order_id: str) -> RailResponse:
        self._wait()
        if self.rng.random() >= self.mobile_initiate_rate:
            return RailResponse(
                success=False,
                response_code="1",
                message="Payment request failed. Please try again.",
            )
        reference = f"ws_CO_{self._suffix()}"
        self._checkout_requests.add(reference)
        return RailResponse(
            success=True,
            reference=reference,
            response_code="0",
            message=(
                f"A payment request has been sent to {phone}. "
                "Please enter your M-Pesa PIN to complete the transaction."
            ),
        )

    def check_mobile_money_status(self, checkout_request_id: str) -> RailResult:
        self._wait()
        if checkout_request_id not in self._checkout_requests:
            return RailResult(status=PaymentStatus.FAILED, message="Unknown checkout request")
        if self.rng.random() >= self.mobile_complete_rate:
            return RailResult(status=PaymentStatus.FAILED, message="The payment was not completed")
        self._checkout_requests.discard(checkout_request_id)
        return RailResult(
            status=PaymentStatus.COMPLETED,
            transaction_id=f"MP{self._suffix()}",
            paid_at=datetime.utcnow(),
            message="Payment completed",
        )

    def create_card_intent(self, amount: Decimal, order_id: str) -> RailResponse:
        self._wait()
        if self.rng.random() >= self.card_intent_rate:
            return RailResponse(success=False, message="Failed to create payment intent")
        intent_id = f"pi_{self._suffix()}"
        self._intents.add(intent_id)
        return RailResponse(
            success=True,
            reference=intent_id,
            client_secret=f"{intent_id}_secret_{self.rng.getrandbits(36):09x}",
            message="requires_payment_method",
        )

    def confirm_card_payment(self, payment_intent_id: str, payment_method_ref: str) -> RailResult:
        self._wait()
        if payment_intent_id not in self._intents:
            return RailResult(status=PaymentStatus.FAILED, message="Unknown payment intent")
        if self.rng.random() >= self.card_confirm_rate:
            return RailResult(status=PaymentStatus.FAILED, message="Your card was declined")
        self._intents.discard(payment_intent_id)
        return RailResult(
            status=PaymentStatus.COMPLETED,
            payment_intent_id=payment_intent_id,
            paid_at=datetime.utcnow(),
            message="Payment completed",
        )


class ScriptedPaymentGateway(PaymentGateway):
    """Deterministic gateway: outcomes are queued up front.

    `outcomes` are handed out one per status check or confirmation; the last
    one repeats once the queue is down to a single entry.
    """

    def __init__(
        self,
        accept: bool = True,
        outcomes: Iterable[PaymentStatus] = (PaymentStatus.COMPLETED,),
    ) -> None:
        self.accept = accept
        self.outcomes = deque(PaymentStatus(o) for o in outcomes)
        self.calls: List[Tuple[str, str]] = []
        self._counter = 0

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}{self._counter:06d}"

    def _next_status(self) -> PaymentStatus:
        if len(self.outcomes) > 1:
            return self.outcomes.popleft()
        return self.outcomes[0]

    def initiate_mobile_money(self, phone: str, amount: Decimal, order_id: str) -> RailResponse:
        self.calls.append(("initiate_mobile_money", order_id))
        if not self.accept:
            return RailResponse(success=False, response_code="1", message="Request failed")
        return RailResponse(
            success=True, reference=self._next_id("ws_CO_"), response_code="0", message=f"Check {phone}"
        )

    def check_mobile_money_status(self, checkout_request_id: str) -> RailResult:
        self.calls.append(("check_mobile_money_status", checkout_request_id))
        status = self._next_status()
        if status == PaymentStatus.COMPLETED:
            return RailResult(status=status, transaction_id=self._next_id("MP"), paid_at=datetime.utcnow())
        return RailResult(status=status, message=f"Payment {status.value}")

    def create_card_intent(self, amount: Decimal, order_id: str) -> RailResponse:
        self.calls.append(("create_card_intent", order_id))
        if not self.accept:
            return RailResponse(success=False, message="Failed to create payment intent")
        intent_id = self._next_id("pi_")
        return RailResponse(success=True, reference=intent_id, client_secret=f"{intent_id}_secret")

    def confirm_card_payment(self, payment_intent_id: str, payment_method_ref: str) -> RailResult:
        self.calls.append(("confirm_card_payment", payment_intent_id))
        status = self._next_status()
        if status == PaymentStatus.COMPLETED:
            return RailResult(status=status, payment_intent_id=payment_intent_id, paid_at=datetime.utcnow())
        return RailResult(status=status, message=f"Payment {status.value}")


SETTLED_PAYMENT_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED})


def _outcome(order: Order, result: RailResult) -> PaymentOutcome:
    return PaymentOutcome(
        order_id=order.id,
        method=order.payment_info.method,
        status=result.status,
        transaction_id=result.transaction_id,
        payment_intent_id=result.payment_intent_id,
        paid_at=result.paid_at,
        message=result.message,
    )


def _current_reference(info: PaymentInfo) -> Optional[str]:
    if info.method == PaymentMethod.MPESA:
        return info.checkout_request_id
    return info.payment_intent_id


class PaymentService:
    """Runs payment round trips against the gateway and applies them to orders.

    Everything that reads and then writes an order's payment details happens
    under that order's lock, so two polls of the same payment cannot settle it
    twice.  Notifications and the order confirmation follow once the lock is
    released.
    """

    def __init__(
        self,
        orders: OrderService,
        gateway: PaymentGateway,
        notifications: NotificationDispatcher,
        poll_attempts: int = 5,
        poll_interval: float = 10.0,
        poll_backoff: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.orders = orders
        self.gateway = gateway
        self.notifications = notifications
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self.poll_backoff = poll_backoff
        self.sleep = sleep

    def initiate_payment(self, order_id: str, request: PaymentRequest) -> PaymentInitiation:
        """Start a payment round trip on the requested rail.

        Only one attempt may be in flight per order: while a payment is
        processing it has to settle (or time out) before a new one starts.
        A rail that declines the request leaves the order untouched.
        """
        with self.orders.locks.hold(order_id):
            order = self.orders.get_order(order_id)
            if order.status in TERMINAL_ORDER_STATUSES:
                raise ValidationError(f"Order {order_id} is {order.status.value}; it cannot be paid")
            if order.payment_info.status == PaymentStatus.COMPLETED:
                raise ValidationError(f"Order {order_id} has already been paid")
            if order.payment_info.status == PaymentStatus.PROCESSING:
                raise ValidationError(f"A payment for order {order_id} is already in progress")

            if request.method == PaymentMethod.MPESA:
                phone = request.phone or order.payment_info.mpesa_phone or order.shipping_info.phone
                response = self._call(self.gateway.initiate_mobile_money, phone, order.final_total, order.id)
                changes = {"mpesa_phone": phone, "checkout_request_id": response.reference}
            else:
                response = self._call(self.gateway.create_card_intent, order.final_total, order.id)
                changes = {"payment_intent_id": response.reference}

            if not response.success:
                logger.info("Payment initiation for order %s declined: %s", order_id, response.message)
                return PaymentInitiation(accepted=False, message=response.message or "Payment request failed")

            changes.update(method=request.method, status=PaymentStatus.PROCESSING)
            self.orders.update_payment_info(order_id, changes)

        token = PaymentToken(
            order_id=order_id,
            method=request.method,
            reference=response.reference,
            client_secret=response.client_secret,
            message=response.message,
        )
        return PaymentInitiation(accepted=True, message=response.message, token=token)

    def poll_payment_status(
        self,
        token: PaymentToken,
        payment_method_ref: Optional[str] = None,
        actor: Optional[Actor] = None,
    ) -> PaymentOutcome:
        """Run the second phase for `token` and apply the result to the order."""

        def check() -> RailResult:
            if token.method == PaymentMethod.MPESA:
                return self._check(self.gateway.check_mobile_money_status, token.reference)
            if not payment_method_ref:
                raise ValidationError("Card payments need a payment_method_ref to confirm")
            return self._check(self.gateway.confirm_card_payment, token.reference, payment_method_ref)

        return self._settle(token, check, actor)

    def wait_for_payment(
        self,
        token: PaymentToken,
        payment_method_ref: Optional[str] = None,
        actor: Optional[Actor] = None,
        attempts: Optional[int] = None,
        interval: Optional[float] = None,
        backoff: Optional[float] = None,
    ) -> PaymentOutcome:
        """Poll until the payment settles, giving up after `attempts` checks.

        The first check happens after `interval` seconds and every later wait
        is multiplied by `backoff`.  Giving up marks the payment failed, unless
        another poll settled it in the meantime.
        """
        attempts = attempts or self.poll_attempts
        delay = self.poll_interval if interval is None else interval
        backoff = self.poll_backoff if backoff is None else backoff

        for attempt in range(1, attempts + 1):
            self.sleep(delay)
            outcome = self.poll_payment_status(token, payment_method_ref, actor)
            if outcome.status != PaymentStatus.PROCESSING:
                return outcome
            logger.debug("Payment for order %s still processing (attempt %d/%d)", token.order_id, attempt, attempts)
            delay *= backoff

        logger.warning("Payment for order %s timed out after %d checks", token.order_id, attempts)
        return self._settle(token, lambda: RailResult(status=PaymentStatus.FAILED, message="Payment timed out"), actor)

    def _settle(
        self, token: PaymentToken, check: Callable[[], RailResult], actor: Optional[Actor]
    ) -> PaymentOutcome:
        with self.orders.locks.hold(token.order_id):
            order = self.orders.get_order(token.order_id)
            info = order.payment_info
            if token.method != info.method or token.reference != _current_reference(info):
                logger.info("Payment token %s for order %s is no longer current", token.reference, order.id)
                return PaymentOutcome(
                    order_id=order.id,
                    method=token.method,
                    status=PaymentStatus.FAILED,
                    message="This payment attempt was replaced by a newer one",
                )
            if info.status in SETTLED_PAYMENT_STATUSES:
                return PaymentOutcome(
                    order_id=order.id,
                    method=info.method,
                    status=info.status,
                    transaction_id=info.transaction_id,
                    payment_intent_id=info.payment_intent_id,
                    paid_at=info.paid_at,
                    message=f"Payment already {info.status.value}",
                )
            result = check()
            order = self._record(order, result)

        self._after_settle(order, result, actor)
        return _outcome(order, result)

    def _record(self, order: Order, result: RailResult) -> Order:
        if result.status == PaymentStatus.COMPLETED:
            changes = {"status": PaymentStatus.COMPLETED, "paid_at": result.paid_at or datetime.utcnow()}
            if result.transaction_id:
                changes["transaction_id"] = result.transaction_id
            if result.payment_intent_id:
                changes["payment_intent_id"] = result.payment_intent_id
            return self.orders.update_payment_info(order.id, changes)
        if result.status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            return self.orders.update_payment_info(order.id, {"status": result.status})
        return order

    def _after_settle(self, order: Order, result: RailResult, actor: Optional[Actor]) -> None:
        if result.status == PaymentStatus.COMPLETED:
            self._notify(order, PaymentStatus.COMPLETED)
            if order.status == OrderStatus.PENDING:
                try:
                    self.orders.update_order_status(order.id, OrderStatus.CONFIRMED, actor)
                except InvalidTransitionError:
                    logger.warning("Order %s changed status while its payment settled", order.id)
        elif result.status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            self._notify(order, PaymentStatus.FAILED)

    def _notify(self, order: Order, status: PaymentStatus) -> None:
        try:
            self.notifications.notify_payment(order, status)
        except Exception:
            logger.exception("Payment notification for order %s could not be recorded", order.id)

    @staticmethod
    def _call(fn, *args) -> RailResponse:
        try:
            return fn(*args)
        except Exception:
            logger.exception("Payment gateway call %s raised", fn.__name__)
            return RailResponse(success=False, message="Payment provider unavailable. Please try again.")

    @staticmethod
    def _check(fn, *args) -> RailResult:
        try:
            return fn(*args)
        except Exception:
            logger.exception("Payment gateway call %s raised", fn.__name__)
            return RailResult(status=PaymentStatus.FAILED, message="Payment provider unavailable")
