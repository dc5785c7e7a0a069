"""Tests for the payment reconciliation state machine."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import MagicMock

import pytest

from rafflio.services.gateways.base import GatewayError, PaymentInfo, PreferenceInfo
from rafflio.services.notifier import PaymentEvent, PaymentNotifier
from rafflio.services.reconciliation import (
    PaymentReconciler,
    PaymentRedirect,
    ReconciliationSnapshot,
    ReconciliationState,
)


class InMemoryPurchases:
    def __init__(self, *purchases: dict[str, Any]) -> None:
        self._store = {p["purchase_id"]: dict(p) for p in purchases}
        self.find_calls = 0
        self.payments: list[tuple[str, str, str | None]] = []

    def find_by_id(self, purchase_id: str) -> dict[str, Any] | None:
        self.find_calls += 1
        row = self._store.get(purchase_id)
        return dict(row) if row else None

    def record_payment(self, purchase_id: str, status: str, payment_id: str | None = None) -> int:
        self.payments.append((purchase_id, status, payment_id))
        row = self._store[purchase_id]
        if row["status"] in {"paid", "confirmed"} - {status}:
            return 0
        if row["status"] == status and row.get("payment_id") == payment_id:
            return 0
        row.update(status=status, payment_id=payment_id)
        return 1

    def transition_status(self, purchase_id: str, from_statuses: list[str], to_status: str) -> bool:
        row = self._store[purchase_id]
        if row["status"] not in from_statuses:
            return False
        row["status"] = to_status
        return True

    def status_of(self, purchase_id: str) -> str:
        return self._store[purchase_id]["status"]


class InMemoryTickets:
    def __init__(self, owned: dict[str, list[int]] | None = None) -> None:
        self._owned = owned or {}

    def find_by_purchase(self, purchase_id: str) -> list[dict[str, Any]]:
        return [
            {"ticket_number": n, "purchase_id": purchase_id, "status": "sold"}
            for n in self._owned.get(purchase_id, [])
        ]


class FakeSleep:
    """Records countdown ticks without waiting."""

    def __init__(self, on_call: Any = None) -> None:
        self.calls = 0
        self._on_call = on_call

    async def __call__(self, seconds: float) -> None:
        self.calls += 1
        if self._on_call is not None:
            self._on_call(self.calls)
        await asyncio.sleep(0)


def _gateway(status: str = "pending", reference: str | None = None) -> MagicMock:
    gateway = MagicMock()
    gateway.get_payment.side_effect = lambda pid: PaymentInfo(
        payment_id=pid, status=status, external_reference=reference
    )
    gateway.get_preference.return_value = None
    return gateway


def _pending(purchase_id: str = "P1", **overrides: Any) -> dict[str, Any]:
    row = {
        "purchase_id": purchase_id,
        "raffle_id": "R1",
        "ticket_count": 2,
        "status": "pending",
        "payment_method": "mercadopago",
        "payment_id": "9001",
        "preference_id": None,
    }
    row.update(overrides)
    return row


def _reconciler(purchases: Any, gateway: Any, **kwargs: Any) -> PaymentReconciler:
    kwargs.setdefault("tickets", InMemoryTickets())
    kwargs.setdefault("notifier", PaymentNotifier())
    kwargs.setdefault("sleep", FakeSleep())
    return PaymentReconciler("P1", purchases=purchases, gateway=gateway, **kwargs)


async def _wait_for(predicate: Any, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


# ── Redirect parsing ────────────────────────────────────────────────


class TestPaymentRedirect:
    def test_reads_gateway_params(self) -> None:
        redirect = PaymentRedirect.from_query(
            {
                "payment_id": "123",
                "status": "approved",
                "external_reference": "P1",
                "merchant_order_id": "77",
                "preference_id": "pref-1",
            }
        )
        assert redirect.payment_id == "123"
        assert redirect.status == "approved"
        assert redirect.external_reference == "P1"
        assert redirect.merchant_order_id == "77"
        assert redirect.preference_id == "pref-1"

    def test_collection_aliases(self) -> None:
        redirect = PaymentRedirect.from_query({"collection_id": "55", "collection_status": "pending"})
        assert redirect.payment_id == "55"
        assert redirect.status == "pending"

    def test_literal_null_is_missing(self) -> None:
        redirect = PaymentRedirect.from_query({"payment_id": "null", "merchant_order_id": " "})
        assert redirect.payment_id is None
        assert redirect.merchant_order_id is None


# ── Polling outcomes ────────────────────────────────────────────────


class TestPolling:
    def test_approved_payment_marks_paid(self) -> None:
        purchases = InMemoryPurchases(_pending())
        gateway = _gateway("approved", reference="P1")
        snapshot = asyncio.run(_reconciler(purchases, gateway).run())

        assert snapshot.state is ReconciliationState.APPROVED
        assert purchases.status_of("P1") == "paid"
        assert purchases.payments == [("P1", "paid", "9001")]
        assert purchases.find_calls == 1
        gateway.get_payment.assert_called_once_with("9001")

    def test_confirmed_during_gateway_lookup_is_kept(self) -> None:
        purchases = InMemoryPurchases(_pending())
        gateway = MagicMock()

        def confirm_elsewhere(pid: str) -> PaymentInfo:
            purchases._store["P1"]["status"] = "confirmed"
            return PaymentInfo(payment_id=pid, status="approved", external_reference="P1")

        gateway.get_payment.side_effect = confirm_elsewhere
        reconciler = _reconciler(purchases, gateway, tickets=InMemoryTickets({"P1": [3, 9]}))

        snapshot = asyncio.run(reconciler.run())

        assert purchases.status_of("P1") == "confirmed"
        assert snapshot.state is ReconciliationState.ALREADY_CONFIRMED
        assert snapshot.ticket_numbers == (3, 9)

    def test_already_confirmed_skips_gateway(self) -> None:
        purchases = InMemoryPurchases(_pending("P1", status="confirmed"))
        gateway = _gateway()
        reconciler = _reconciler(purchases, gateway, tickets=InMemoryTickets({"P1": [12, 7]}))

        snapshot = asyncio.run(reconciler.run())

        assert snapshot.state is ReconciliationState.ALREADY_CONFIRMED
        assert snapshot.ticket_numbers == (7, 12)
        gateway.get_payment.assert_not_called()

    def test_bounded_to_three_attempts(self) -> None:
        purchases = InMemoryPurchases(_pending())
        gateway = _gateway("pending")
        sleep = FakeSleep()
        snapshot = asyncio.run(_reconciler(purchases, gateway, sleep=sleep).run())

        assert snapshot.state is ReconciliationState.MANUAL_RECOVERY
        assert purchases.find_calls == 3
        assert gateway.get_payment.call_count == 3
        # Countdown runs between attempts only
        assert sleep.calls == 2 * 10
        assert snapshot.retry_url is None

    def test_manual_recovery_offers_retry_link(self) -> None:
        purchases = InMemoryPurchases(_pending(preference_id="pref-1"))
        gateway = _gateway("in_process")
        gateway.get_preference.return_value = PreferenceInfo(
            preference_id="pref-1", init_point="https://mp/checkout?pref_id=pref-1"
        )
        reconciler = _reconciler(purchases, gateway, max_attempts=2, retry_seconds=1)

        snapshot = asyncio.run(reconciler.run())

        assert snapshot.state is ReconciliationState.MANUAL_RECOVERY
        assert snapshot.retry_url == "https://mp/checkout?pref_id=pref-1"
        gateway.get_preference.assert_called_once_with("pref-1")

    def test_no_payment_id_keeps_polling(self) -> None:
        purchases = InMemoryPurchases(_pending(payment_id=None))
        gateway = _gateway()
        snapshot = asyncio.run(_reconciler(purchases, gateway, retry_seconds=1).run())

        assert snapshot.state is ReconciliationState.MANUAL_RECOVERY
        gateway.get_payment.assert_not_called()

    def test_redirect_payment_id_preferred(self) -> None:
        purchases = InMemoryPurchases(_pending(payment_id=None))
        gateway = _gateway("approved", reference="P1")
        reconciler = _reconciler(
            purchases, gateway, redirect=PaymentRedirect(payment_id="4242")
        )
        snapshot = asyncio.run(reconciler.run())

        assert snapshot.state is ReconciliationState.APPROVED
        gateway.get_payment.assert_called_once_with("4242")

    def test_rejected_payment_marks_failed(self) -> None:
        purchases = InMemoryPurchases(_pending())
        snapshot = asyncio.run(_reconciler(purchases, _gateway("rejected", "P1")).run())

        assert snapshot.state is ReconciliationState.REJECTED
        assert purchases.status_of("P1") == "failed"

    def test_payment_for_other_purchase_not_accepted(self) -> None:
        purchases = InMemoryPurchases(_pending())
        gateway = _gateway("approved", reference="SOMEONE-ELSE")
        snapshot = asyncio.run(_reconciler(purchases, gateway, retry_seconds=1).run())

        assert snapshot.state is ReconciliationState.MANUAL_RECOVERY
        assert purchases.status_of("P1") == "pending"

    def test_unknown_purchase(self) -> None:
        snapshot = asyncio.run(_reconciler(InMemoryPurchases(), _gateway()).run())
        assert snapshot.state is ReconciliationState.NOT_FOUND

    def test_failed_purchase_is_rejected(self) -> None:
        purchases = InMemoryPurchases(_pending(status="failed"))
        gateway = _gateway()
        snapshot = asyncio.run(_reconciler(purchases, gateway).run())
        assert snapshot.state is ReconciliationState.REJECTED
        gateway.get_payment.assert_not_called()

    def test_paid_with_all_tickets_promoted_to_confirmed(self) -> None:
        purchases = InMemoryPurchases(_pending(status="paid"))
        tickets = InMemoryTickets({"P1": [3, 1]})
        snapshot = asyncio.run(_reconciler(purchases, _gateway(), tickets=tickets).run())

        assert snapshot.state is ReconciliationState.ALREADY_CONFIRMED
        assert snapshot.ticket_numbers == (1, 3)
        assert purchases.status_of("P1") == "confirmed"

    def test_paid_with_missing_tickets_stays_paid(self) -> None:
        purchases = InMemoryPurchases(_pending(status="paid"))
        tickets = InMemoryTickets({"P1": [3]})
        snapshot = asyncio.run(_reconciler(purchases, _gateway(), tickets=tickets).run())

        assert snapshot.state is ReconciliationState.APPROVED
        assert purchases.status_of("P1") == "paid"

    def test_gateway_error_is_terminal(self) -> None:
        purchases = InMemoryPurchases(_pending())
        gateway = _gateway()
        gateway.get_payment.side_effect = GatewayError("down")
        snapshot = asyncio.run(_reconciler(purchases, gateway).run())

        assert snapshot.state is ReconciliationState.ERROR
        assert purchases.find_calls == 1

    def test_store_error_is_terminal(self) -> None:
        purchases = MagicMock()
        purchases.find_by_id.side_effect = RuntimeError("db down")
        snapshot = asyncio.run(_reconciler(purchases, _gateway()).run())
        assert snapshot.state is ReconciliationState.ERROR

    def test_runs_only_once(self) -> None:
        reconciler = _reconciler(InMemoryPurchases(), _gateway())
        asyncio.run(reconciler.run())
        with pytest.raises(RuntimeError):
            asyncio.run(reconciler.run())

    def test_rejects_invalid_arguments(self) -> None:
        with pytest.raises(ValueError):
            PaymentReconciler("", purchases=None, tickets=None, gateway=None, notifier=None)
        with pytest.raises(ValueError):
            _reconciler(InMemoryPurchases(), _gateway(), max_attempts=0)


# ── Push channel ────────────────────────────────────────────────────


class TestPushRace:
    def test_push_between_attempts_stops_polling(self) -> None:
        purchases = InMemoryPurchases(_pending())
        gateway = _gateway("pending")
        notifier = PaymentNotifier()
        sleep = FakeSleep(
            on_call=lambda n: n == 1 and notifier.publish(PaymentEvent("P1", "approved", "9001"))
        )
        reconciler = _reconciler(purchases, gateway, notifier=notifier, sleep=sleep)

        snapshot = asyncio.run(reconciler.run())

        assert snapshot.state is ReconciliationState.APPROVED
        assert purchases.find_calls == 1
        assert gateway.get_payment.call_count == 1
        assert sleep.calls == 1
        assert notifier.subscriber_count("P1") == 0

    def test_push_from_other_task_interrupts_countdown(self) -> None:
        async def never_returns(_: float) -> None:
            await asyncio.sleep(3600)

        async def scenario() -> ReconciliationSnapshot:
            notifier = PaymentNotifier()
            purchases = InMemoryPurchases(_pending())
            reconciler = _reconciler(
                purchases, _gateway("pending"), notifier=notifier, sleep=never_returns
            )
            task = reconciler.start()
            await _wait_for(lambda: reconciler.state is ReconciliationState.RETRYING)
            notifier.publish(PaymentEvent("P1", "approved", "9001"))
            snapshot = await asyncio.wait_for(task, timeout=5)
            assert purchases.find_calls == 1
            return snapshot

        snapshot = asyncio.run(scenario())
        assert snapshot.state is ReconciliationState.APPROVED

    def test_rejected_push(self) -> None:
        reconciler = _reconciler(InMemoryPurchases(_pending()), _gateway())
        assert reconciler.handle_push(PaymentEvent("P1", "rejected")) is True
        assert reconciler.state is ReconciliationState.REJECTED

    def test_first_terminal_outcome_wins(self) -> None:
        reconciler = _reconciler(InMemoryPurchases(_pending()), _gateway())
        assert reconciler.handle_push(PaymentEvent("P1", "approved")) is True
        assert reconciler.handle_push(PaymentEvent("P1", "rejected")) is False
        assert reconciler.state is ReconciliationState.APPROVED

    def test_ignores_other_purchases_and_interim_statuses(self) -> None:
        reconciler = _reconciler(InMemoryPurchases(_pending()), _gateway())
        assert reconciler.handle_push(PaymentEvent("P2", "approved")) is False
        assert reconciler.handle_push(PaymentEvent("P1", "in_process")) is False
        assert reconciler.done is False

    def test_push_does_not_write_store(self) -> None:
        purchases = InMemoryPurchases(_pending())
        reconciler = _reconciler(purchases, _gateway())
        reconciler.handle_push(PaymentEvent("P1", "approved"))
        assert purchases.status_of("P1") == "pending"
        assert purchases.payments == []


# ── Teardown ────────────────────────────────────────────────────────


class TestTeardown:
    def test_cancel_mid_flight_silences_callbacks(self) -> None:
        seen: list[ReconciliationSnapshot] = []

        async def never_returns(_: float) -> None:
            await asyncio.sleep(3600)

        async def scenario() -> tuple[PaymentNotifier, int]:
            notifier = PaymentNotifier()
            reconciler = _reconciler(
                InMemoryPurchases(_pending()),
                _gateway("pending"),
                notifier=notifier,
                sleep=never_returns,
                on_change=seen.append,
            )
            task = reconciler.start()
            await _wait_for(lambda: reconciler.state is ReconciliationState.RETRYING)
            before = len(seen)
            reconciler.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            notifier.publish(PaymentEvent("P1", "approved"))
            await asyncio.sleep(0.05)
            assert reconciler.state is ReconciliationState.CANCELLED
            return notifier, before

        notifier, before = asyncio.run(scenario())
        assert len(seen) == before
        assert notifier.subscriber_count() == 0

    def test_cancel_before_run(self) -> None:
        seen: list[ReconciliationSnapshot] = []
        purchases = InMemoryPurchases(_pending())
        reconciler = _reconciler(purchases, _gateway(), on_change=seen.append)
        reconciler.cancel()

        snapshot = asyncio.run(reconciler.run())

        assert snapshot.state is ReconciliationState.CANCELLED
        assert purchases.find_calls == 0
        assert seen == []

    def test_terminal_unsubscribes(self) -> None:
        notifier = PaymentNotifier()
        reconciler = _reconciler(
            InMemoryPurchases(_pending()), _gateway("approved", "P1"), notifier=notifier
        )
        asyncio.run(reconciler.run())
        assert notifier.subscriber_count() == 0

    def test_listener_errors_do_not_break_session(self) -> None:
        def broken(_: ReconciliationSnapshot) -> None:
            raise RuntimeError("ui gone")

        reconciler = _reconciler(
            InMemoryPurchases(_pending()), _gateway("approved", "P1"), on_change=broken
        )
        assert asyncio.run(reconciler.run()).state is ReconciliationState.APPROVED

    def test_snapshot_serialises(self) -> None:
        reconciler = _reconciler(InMemoryPurchases(_pending()), _gateway())
        data = reconciler.snapshot.to_dict()
        assert data["state"] == "verifying_purchase"
        assert data["terminal"] is False
        assert data["max_attempts"] == 3
