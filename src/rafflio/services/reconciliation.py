"""Payment reconciliation — decide whether a purchase has been paid.

A buyer returning from the gateway (or reopening a purchase link) needs a
definitive answer: approved, rejected, already confirmed, or "we could not
find your payment". Three sources may know the answer and none of them is
authoritative on its own: the purchase record, the gateway's payment
lookup, and the push channel fed by the webhook.

:class:`PaymentReconciler` runs one verification session as an asyncio
state machine::

    verifying_purchase -> verifying_payment -> retrying -> verifying_purchase ...
                                      \\-> approved | rejected | error
    verifying_purchase -> already_confirmed | approved | rejected | not_found
    (attempts exhausted) -> manual_recovery

Polling makes at most ``max_attempts`` verification attempts separated by a
per-second countdown. A push event can end the session at any moment; the
first terminal outcome wins and every later result is dropped. Store and
gateway errors end the session in ``error`` rather than propagating.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from rafflio.core.constants import (
    APPROVED_EVENT_STATUSES,
    FAILED_PAYMENT_STATUSES,
    GATEWAY_APPROVED,
    PAYMENT_RETRY_SECONDS,
    PAYMENT_VERIFICATION_ATTEMPTS,
    PURCHASE_CANCELLED,
    PURCHASE_CONFIRMED,
    PURCHASE_FAILED,
    PURCHASE_PAID,
    PURCHASE_PENDING,
)
from rafflio.services.notifier import PaymentEvent

logger = logging.getLogger(__name__)

MSG_VERIFYING_PURCHASE = "Checking your purchase"
MSG_VERIFYING_PAYMENT = "Checking your payment with MercadoPago"
MSG_APPROVED = "Payment approved. You can now choose your numbers."
MSG_ALREADY_CONFIRMED = "Your numbers are already confirmed"
MSG_REJECTED = "Your payment was rejected or cancelled"
MSG_NOT_FOUND = "Purchase not found"
MSG_ERROR = "Error verifying payment"
MSG_RETRY_OFFERED = "We could not validate your payment. You can retry it from the link below."
MSG_PAYMENT_NOT_LOCATED = "We could not locate your payment"
MSG_CANCELLED = "Verification cancelled"


class ReconciliationState(str, enum.Enum):
    VERIFYING_PURCHASE = "verifying_purchase"
    VERIFYING_PAYMENT = "verifying_payment"
    RETRYING = "retrying"
    APPROVED = "approved"
    ALREADY_CONFIRMED = "already_confirmed"
    REJECTED = "rejected"
    NOT_FOUND = "not_found"
    ERROR = "error"
    MANUAL_RECOVERY = "manual_recovery"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        ReconciliationState.APPROVED,
        ReconciliationState.ALREADY_CONFIRMED,
        ReconciliationState.REJECTED,
        ReconciliationState.NOT_FOUND,
        ReconciliationState.ERROR,
        ReconciliationState.MANUAL_RECOVERY,
        ReconciliationState.CANCELLED,
    }
)


def _clean(value: str | None) -> str | None:
    # The gateway fills missing redirect params with the literal "null"
    if value is None:
        return None
    value = str(value).strip()
    if not value or value.lower() in ("null", "undefined", "none"):
        return None
    return value


@dataclass(frozen=True)
class PaymentRedirect:
    """Query parameters the gateway appends when sending the buyer back."""

    payment_id: str | None = None
    status: str | None = None
    external_reference: str | None = None
    merchant_order_id: str | None = None
    preference_id: str | None = None

    @classmethod
    def from_query(cls, params: Mapping[str, str]) -> PaymentRedirect:
        return cls(
            payment_id=_clean(params.get("payment_id") or params.get("collection_id")),
            status=_clean(params.get("status") or params.get("collection_status")),
            external_reference=_clean(params.get("external_reference")),
            merchant_order_id=_clean(params.get("merchant_order_id")),
            preference_id=_clean(params.get("preference_id")),
        )


@dataclass(frozen=True)
class ReconciliationSnapshot:
    """What the buyer should be shown right now."""

    purchase_id: str
    state: ReconciliationState
    attempt: int = 0
    max_attempts: int = PAYMENT_VERIFICATION_ATTEMPTS
    countdown: int | None = None
    message: str = ""
    ticket_numbers: tuple[int, ...] = ()
    retry_url: str | None = None
    purchase: dict[str, Any] | None = field(default=None, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def to_dict(self) -> dict[str, Any]:
        return {
            "purchase_id": self.purchase_id,
            "state": self.state.value,
            "terminal": self.is_terminal,
            "attempt": self.attempt,
            "max_attempts": self.max_attempts,
            "countdown": self.countdown,
            "message": self.message,
            "ticket_numbers": list(self.ticket_numbers),
            "retry_url": self.retry_url,
            "purchase_status": (self.purchase or {}).get("status"),
        }


SnapshotListener = Callable[[ReconciliationSnapshot], None]


class PaymentReconciler:
    """One verification session for one purchase.

    Collaborators are injected: ``purchases`` (``find_by_id``,
    ``record_payment``, ``transition_status``), ``tickets``
    (``find_by_purchase``), ``gateway`` (``get_payment``,
    ``get_preference``) and the application's ``notifier``. Their blocking
    calls run in worker threads. ``sleep`` is awaited once per countdown
    second and is replaced in tests.
    """

    def __init__(
        self,
        purchase_id: str,
        *,
        purchases: Any,
        tickets: Any,
        gateway: Any,
        notifier: Any,
        redirect: PaymentRedirect | None = None,
        on_change: SnapshotListener | None = None,
        max_attempts: int = PAYMENT_VERIFICATION_ATTEMPTS,
        retry_seconds: int = PAYMENT_RETRY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not purchase_id:
            raise ValueError("purchase_id is required")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.purchase_id = purchase_id
        self.purchases = purchases
        self.tickets = tickets
        self.gateway = gateway
        self.notifier = notifier
        self.redirect = redirect or PaymentRedirect()
        self.on_change = on_change
        self.max_attempts = max_attempts
        self.retry_seconds = retry_seconds
        self._sleep = sleep

        self._snapshot = ReconciliationSnapshot(
            purchase_id=purchase_id,
            state=ReconciliationState.VERIFYING_PURCHASE,
            max_attempts=max_attempts,
            message=MSG_VERIFYING_PURCHASE,
        )
        self._done = False
        self._started = False
        self._task: asyncio.Task[Any] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._unsubscribe: Callable[[], None] | None = None

    # ── public API ──────────────────────────────────────────────────

    @property
    def snapshot(self) -> ReconciliationSnapshot:
        return self._snapshot

    @property
    def state(self) -> ReconciliationState:
        return self._snapshot.state

    @property
    def done(self) -> bool:
        return self._done

    def start(self) -> asyncio.Task[ReconciliationSnapshot]:
        """Run the session in a background task on the running loop."""
        task = asyncio.get_running_loop().create_task(self.run())
        self._task = task
        return task

    async def run(self) -> ReconciliationSnapshot:
        """Drive the session to a terminal state and return the final snapshot."""
        if self._started:
            raise RuntimeError("A reconciler can only be run once")
        self._started = True
        if self._done:
            return self._snapshot

        self._loop = asyncio.get_running_loop()
        if self._task is None:
            self._task = asyncio.current_task()
        self._unsubscribe = self.notifier.subscribe(self.purchase_id, self._on_push)
        try:
            await self._poll()
        except asyncio.CancelledError:
            if self._snapshot.state is ReconciliationState.CANCELLED or not self._done:
                raise
            # Interrupted by a push event that already settled the session
            task = asyncio.current_task()
            if task is not None:
                task.uncancel()
        except Exception:
            logger.exception("Unexpected error reconciling purchase %s", self.purchase_id)
            self._finish(ReconciliationState.ERROR, MSG_ERROR)
        finally:
            self._teardown()
        return self._snapshot

    def cancel(self) -> None:
        """Abandon the session. No snapshot is published after this call."""
        if not self._done:
            self._done = True
            self._snapshot = replace(
                self._snapshot,
                state=ReconciliationState.CANCELLED,
                countdown=None,
                message=MSG_CANCELLED,
            )
            logger.debug("Reconciliation for purchase %s cancelled", self.purchase_id)
        self._teardown()
        self._interrupt()

    def handle_push(self, event: PaymentEvent) -> bool:
        """Apply a push event. Returns True when it ended the session."""
        if self._done or event.purchase_id != self.purchase_id:
            return False
        status = (event.status or "").lower()
        if status in APPROVED_EVENT_STATUSES:
            purchase = dict(self._snapshot.purchase or {})
            if purchase:
                purchase["status"] = PURCHASE_PAID
            logger.info("Push approved purchase %s", self.purchase_id)
            return self._finish(
                ReconciliationState.APPROVED,
                MSG_APPROVED,
                purchase=purchase or None,
            )
        if status in FAILED_PAYMENT_STATUSES:
            logger.info("Push reported %s for purchase %s", status, self.purchase_id)
            return self._finish(ReconciliationState.REJECTED, MSG_REJECTED)
        logger.debug("Ignoring push status %s for purchase %s", status, self.purchase_id)
        return False

    # ── polling ─────────────────────────────────────────────────────

    async def _poll(self) -> None:
        for attempt in range(1, self.max_attempts + 1):
            if self._done:
                return
            settled = await self._attempt(attempt)
            if settled or self._done:
                return
            if attempt < self.max_attempts:
                await self._countdown(attempt)
        if not self._done:
            await self._offer_manual_recovery()

    async def _attempt(self, attempt: int) -> bool:
        """One verification attempt. Returns True when the session ended."""
        self._emit(ReconciliationState.VERIFYING_PURCHASE, MSG_VERIFYING_PURCHASE, attempt=attempt)
        try:
            purchase = await asyncio.to_thread(self.purchases.find_by_id, self.purchase_id)
            if self._done:
                return True
            if purchase is None:
                return self._finish(ReconciliationState.NOT_FOUND, MSG_NOT_FOUND)

            status = purchase.get("status")
            if status == PURCHASE_CONFIRMED:
                return await self._finish_confirmed(purchase)
            if status == PURCHASE_PAID:
                return await self._settle_paid(purchase)
            if status in (PURCHASE_FAILED, PURCHASE_CANCELLED):
                return self._finish(ReconciliationState.REJECTED, MSG_REJECTED, purchase=purchase)

            payment_id = self.redirect.payment_id or purchase.get("payment_id")
            if not payment_id:
                logger.debug("No payment id yet for purchase %s", self.purchase_id)
                self._snapshot = replace(self._snapshot, purchase=purchase)
                return False

            self._emit(
                ReconciliationState.VERIFYING_PAYMENT,
                MSG_VERIFYING_PAYMENT,
                purchase=purchase,
            )
            payment = await asyncio.to_thread(self.gateway.get_payment, str(payment_id))
            if self._done:
                return True
            return await self._apply_payment(purchase, payment)
        except Exception:
            logger.warning(
                "Verification attempt %d failed for purchase %s",
                attempt,
                self.purchase_id,
                exc_info=True,
            )
            return self._finish(ReconciliationState.ERROR, MSG_ERROR)

    async def _apply_payment(self, purchase: dict[str, Any], payment: Any) -> bool:
        reference = payment.external_reference
        if reference and reference != self.purchase_id:
            logger.warning(
                "Payment %s belongs to %s, not purchase %s",
                payment.payment_id,
                reference,
                self.purchase_id,
            )
            return False

        if payment.status == GATEWAY_APPROVED:
            changed = await asyncio.to_thread(
                self.purchases.record_payment,
                self.purchase_id,
                PURCHASE_PAID,
                payment.payment_id,
            )
            if self._done:
                return True
            if not changed:
                # The buyer may have confirmed in another session meanwhile
                latest = await asyncio.to_thread(self.purchases.find_by_id, self.purchase_id)
                if self._done:
                    return True
                if latest is not None and latest.get("status") == PURCHASE_CONFIRMED:
                    return await self._finish_confirmed(latest)
            paid = {**purchase, "status": PURCHASE_PAID, "payment_id": payment.payment_id}
            return self._finish(ReconciliationState.APPROVED, MSG_APPROVED, purchase=paid)

        if payment.status in FAILED_PAYMENT_STATUSES:
            await asyncio.to_thread(
                self.purchases.transition_status,
                self.purchase_id,
                [PURCHASE_PENDING],
                PURCHASE_FAILED,
            )
            if self._done:
                return True
            failed = {**purchase, "status": PURCHASE_FAILED}
            return self._finish(ReconciliationState.REJECTED, MSG_REJECTED, purchase=failed)

        logger.debug("Payment %s still %s", payment.payment_id, payment.status)
        return False

    async def _settle_paid(self, purchase: dict[str, Any]) -> bool:
        """A paid purchase already holding every ticket is promoted to confirmed."""
        numbers = await self._ticket_numbers()
        if self._done:
            return True
        required = int(purchase.get("ticket_count") or 0)
        if required > 0 and len(numbers) == required:
            await asyncio.to_thread(
                self.purchases.transition_status,
                self.purchase_id,
                [PURCHASE_PAID],
                PURCHASE_CONFIRMED,
            )
            if self._done:
                return True
            logger.info("Promoted fully assigned purchase %s to confirmed", self.purchase_id)
            confirmed = {**purchase, "status": PURCHASE_CONFIRMED}
            return self._finish(
                ReconciliationState.ALREADY_CONFIRMED,
                MSG_ALREADY_CONFIRMED,
                purchase=confirmed,
                ticket_numbers=numbers,
            )
        return self._finish(
            ReconciliationState.APPROVED,
            MSG_APPROVED,
            purchase=purchase,
            ticket_numbers=numbers,
        )

    async def _finish_confirmed(self, purchase: dict[str, Any]) -> bool:
        numbers = await self._ticket_numbers()
        if self._done:
            return True
        return self._finish(
            ReconciliationState.ALREADY_CONFIRMED,
            MSG_ALREADY_CONFIRMED,
            purchase=purchase,
            ticket_numbers=numbers,
        )

    async def _ticket_numbers(self) -> tuple[int, ...]:
        rows = await asyncio.to_thread(self.tickets.find_by_purchase, self.purchase_id)
        return tuple(sorted(int(row["ticket_number"]) for row in rows))

    async def _countdown(self, attempt: int) -> None:
        for remaining in range(self.retry_seconds, 0, -1):
            if self._done:
                return
            self._emit(
                ReconciliationState.RETRYING,
                f"Payment not confirmed yet. Retrying in {remaining}s",
                attempt=attempt,
                countdown=remaining,
            )
            await self._sleep(1)

    async def _offer_manual_recovery(self) -> None:
        preference_id = self.redirect.preference_id or (self._snapshot.purchase or {}).get(
            "preference_id"
        )
        retry_url: str | None = None
        if preference_id:
            try:
                preference = await asyncio.to_thread(self.gateway.get_preference, preference_id)
            except Exception:
                logger.warning(
                    "Preference lookup failed for purchase %s",
                    self.purchase_id,
                    exc_info=True,
                )
                preference = None
            if self._done:
                return
            if preference is not None and preference.init_point:
                retry_url = preference.init_point

        logger.info(
            "Payment for purchase %s not validated after %d attempts",
            self.purchase_id,
            self.max_attempts,
        )
        self._finish(
            ReconciliationState.MANUAL_RECOVERY,
            MSG_RETRY_OFFERED if retry_url else MSG_PAYMENT_NOT_LOCATED,
            retry_url=retry_url,
        )

    # ── transitions ─────────────────────────────────────────────────

    def _emit(self, state: ReconciliationState, message: str, **fields: Any) -> None:
        if self._done:
            return
        fields.setdefault("countdown", None)
        self._snapshot = replace(self._snapshot, state=state, message=message, **fields)
        self._notify()

    def _finish(self, state: ReconciliationState, message: str, **fields: Any) -> bool:
        """Enter a terminal state. Only the first call has any effect."""
        if self._done:
            return False
        self._done = True
        if "ticket_numbers" in fields:
            fields["ticket_numbers"] = tuple(fields["ticket_numbers"])
        if fields.get("purchase") is None:
            fields.pop("purchase", None)
        self._snapshot = replace(
            self._snapshot,
            state=state,
            message=message,
            countdown=None,
            **fields,
        )
        self._teardown()
        self._notify()
        self._interrupt()
        return True

    def _notify(self) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(self._snapshot)
        except Exception:
            logger.exception("Reconciliation listener failed for purchase %s", self.purchase_id)

    def _on_push(self, event: PaymentEvent) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self.handle_push(event)
        else:
            loop.call_soon_threadsafe(self.handle_push, event)

    def _interrupt(self) -> None:
        """Cancel the polling task unless we are running inside it."""
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    def _teardown(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
