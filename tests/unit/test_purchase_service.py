"""Tests for checkout and purchase administration."""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from unittest.mock import MagicMock

import pytest

from rafflio.core.config import Settings
from rafflio.services.gateways.base import GatewayError, PaymentInfo
from rafflio.services.gateways.mercadopago import MercadoPagoGateway
from rafflio.services.purchases import PurchaseError, PurchaseService

TIERS = [
    {"price_tier_id": "t1", "ticket_count": 1, "amount": Decimal("1000")},
    {"price_tier_id": "t3", "ticket_count": 3, "amount": Decimal("2500")},
    {"price_tier_id": "t5", "ticket_count": 5, "amount": Decimal("4000")},
]


def _service(
    *,
    raffle: dict[str, Any] | None = None,
    available: int = 100,
    gateway: Any = None,
    email: Any = None,
    purchase: dict[str, Any] | None = None,
) -> PurchaseService:
    raffle = raffle if raffle is not None else {
        "raffle_id": "r1",
        "title": "Rifa del club",
        "is_active": 1,
        "account_id": "a1",
    }
    raffle_repo = MagicMock()
    raffle_repo.find_by_id.side_effect = lambda rid: raffle if raffle and rid == raffle["raffle_id"] else None
    tier_repo = MagicMock()
    tier_repo.find_by_raffle.return_value = TIERS
    ticket_repo = MagicMock()
    ticket_repo.count.return_value = available
    ticket_repo.find_by_purchase.return_value = []
    purchase_repo = MagicMock()
    purchase_repo.find_by_id.return_value = purchase
    account_repo = MagicMock()
    account_repo.find_by_id.return_value = {"account_id": "a1", "alias": "rifa.club"}
    settings = Settings(app_env="testing", app_base_url="https://rifas.example.com/")
    return PurchaseService(
        purchase_repo,
        raffle_repo,
        tier_repo,
        ticket_repo,
        gateway or MercadoPagoGateway(),
        account_repo=account_repo,
        email_service=email,
        settings=settings,
    )


def _checkout(service: PurchaseService, **overrides: Any) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "raffle_id": "r1",
        "full_name": "Ana Pérez",
        "email": "ana@example.com",
        "payment_method": "mercadopago",
        "price_tier_id": "custom",
        "quantity": 4,
    }
    fields.update(overrides)
    return service.start_checkout(**fields)


class TestCreatePurchase:
    def test_tier_purchase_uses_tier_price(self) -> None:
        purchase = _service().create_purchase(
            raffle_id="r1", full_name="Ana", email="a@b.com", price_tier_id="t3"
        )
        assert purchase["ticket_count"] == 3
        assert purchase["amount"] == Decimal("2500")
        assert purchase["status"] == "pending"
        assert purchase["price_tier_id"] == "t3"

    def test_custom_quantity_priced_greedily(self) -> None:
        purchase = _service().create_purchase(
            raffle_id="r1", full_name="Ana", email="a@b.com", price_tier_id="custom", quantity=4
        )
        assert purchase["price_tier_id"] == "custom"
        assert purchase["ticket_count"] == 4
        assert purchase["amount"] == Decimal("3500.00")

    def test_quantity_matching_a_tier_records_that_tier(self) -> None:
        purchase = _service().create_purchase(
            raffle_id="r1", full_name="Ana", email="a@b.com", quantity=5
        )
        assert purchase["price_tier_id"] == "t5"
        assert purchase["amount"] == Decimal("4000.00")

    def test_not_enough_tickets(self) -> None:
        with pytest.raises(PurchaseError) as exc:
            _service(available=2).create_purchase(
                raffle_id="r1", full_name="Ana", email="a@b.com", price_tier_id="t3"
            )
        assert exc.value.status_code == 409

    def test_inactive_raffle(self) -> None:
        raffle = {"raffle_id": "r1", "title": "x", "is_active": 0}
        with pytest.raises(PurchaseError) as exc:
            _service(raffle=raffle).create_purchase(
                raffle_id="r1", full_name="Ana", email="a@b.com", price_tier_id="t1"
            )
        assert exc.value.status_code == 409

    def test_unknown_tier(self) -> None:
        with pytest.raises(PurchaseError) as exc:
            _service().create_purchase(
                raffle_id="r1", full_name="Ana", email="a@b.com", price_tier_id="zzz"
            )
        assert exc.value.status_code == 404

    @pytest.mark.parametrize("quantity", [None, 0, 1001])
    def test_custom_requires_quantity(self, quantity: int | None) -> None:
        with pytest.raises(PurchaseError) as exc:
            _service().create_purchase(
                raffle_id="r1", full_name="Ana", email="a@b.com", quantity=quantity
            )
        assert exc.value.status_code == 422

    def test_invalid_payment_method(self) -> None:
        with pytest.raises(PurchaseError) as exc:
            _service().create_purchase(
                raffle_id="r1", full_name="Ana", email="a@b.com", payment_method="crypto"
            )
        assert exc.value.status_code == 422


class TestCheckout:
    def test_mercadopago_checkout_returns_payment_link(self) -> None:
        email = MagicMock()
        service = _service(email=email)
        result = _checkout(service)

        purchase_id = result["purchase"]["purchase_id"]
        assert result["preference_id"].startswith("stub-")
        assert "pref_id=" in result["payment_url"]
        service.purchase_repo.set_preference.assert_called_once_with(
            purchase_id, result["preference_id"]
        )
        email.send_purchase_link.assert_called_once_with("ana@example.com", purchase_id)

    def test_preference_payload(self) -> None:
        service = _service()
        purchase = {
            "purchase_id": "p1",
            "price_tier_id": "t3",
            "ticket_count": 3,
            "amount": Decimal("2500"),
            "full_name": "Ana",
            "email": "ana@example.com",
        }
        payload = service.build_preference_payload(purchase, {"title": "Rifa"})

        assert payload["external_reference"] == "p1"
        assert payload["items"][0]["unit_price"] == 2500.0
        assert payload["items"][0]["currency_id"] == "ARS"
        assert payload["notification_url"] == "https://rifas.example.com/api/payment/webhook"
        assert payload["back_urls"]["success"] == (
            "https://rifas.example.com/payment/success?purchase_id=p1"
        )
        assert payload["auto_return"] == "approved"

    def test_bank_transfer_returns_account(self) -> None:
        gateway = MagicMock()
        result = _checkout(_service(gateway=gateway), payment_method="bank_transfer")
        assert result["account"] == {"account_id": "a1", "alias": "rifa.club"}
        assert result["payment_url"] is None
        gateway.create_preference.assert_not_called()

    def test_gateway_failure_marks_purchase_failed(self) -> None:
        gateway = MagicMock()
        gateway.create_preference.side_effect = GatewayError("down")
        service = _service(gateway=gateway)
        with pytest.raises(PurchaseError) as exc:
            _checkout(service)
        assert exc.value.status_code == 502
        assert service.purchase_repo.set_status.call_args.args[1] == "failed"

    def test_email_failure_does_not_break_checkout(self) -> None:
        email = MagicMock()
        email.send_purchase_link.side_effect = RuntimeError("smtp down")
        result = _checkout(_service(email=email))
        assert result["purchase"]["status"] == "pending"


class TestAdmin:
    def test_update_status_is_idempotent(self) -> None:
        service = _service(purchase={"purchase_id": "p1", "status": "paid"})
        result = service.update_status("p1", "paid")
        assert result["changed"] is False
        assert result["purchase"]["status"] == "paid"
        service.purchase_repo.transition_status.assert_not_called()

    def test_bank_transfer_marked_paid(self) -> None:
        service = _service(purchase={"purchase_id": "p1", "status": "pending"})
        service.purchase_repo.transition_status.return_value = True
        result = service.update_status("p1", "paid")
        assert result == {"purchase": {"purchase_id": "p1", "status": "paid"}, "changed": True}
        service.purchase_repo.transition_status.assert_called_once_with("p1", ["pending"], "paid")

    def test_confirm_without_tickets_rejected(self) -> None:
        service = _service(purchase={"purchase_id": "p3", "status": "paid", "ticket_count": 3})
        service.ticket_repo.count_by_purchase.return_value = 0
        with pytest.raises(PurchaseError) as exc:
            service.update_status("p3", "confirmed")
        assert exc.value.status_code == 409
        service.purchase_repo.transition_status.assert_not_called()

    def test_confirm_pending_purchase_rejected(self) -> None:
        service = _service(purchase={"purchase_id": "p3", "status": "pending", "ticket_count": 3})
        service.ticket_repo.count_by_purchase.return_value = 3
        with pytest.raises(PurchaseError) as exc:
            service.update_status("p3", "confirmed")
        assert exc.value.status_code == 409

    def test_confirm_fully_assigned_purchase(self) -> None:
        service = _service(purchase={"purchase_id": "p3", "status": "paid", "ticket_count": 3})
        service.ticket_repo.count_by_purchase.return_value = 3
        service.purchase_repo.transition_status.return_value = True
        result = service.update_status("p3", "confirmed")
        assert result["changed"] is True
        service.purchase_repo.transition_status.assert_called_once_with("p3", ["paid"], "confirmed")

    @pytest.mark.parametrize(
        ("current", "target"),
        [("confirmed", "paid"), ("confirmed", "pending"), ("failed", "paid"), ("paid", "pending")],
    )
    def test_terminal_and_backward_moves_rejected(self, current: str, target: str) -> None:
        service = _service(purchase={"purchase_id": "p1", "status": current, "ticket_count": 1})
        with pytest.raises(PurchaseError) as exc:
            service.update_status("p1", target)
        assert exc.value.status_code == 409
        service.purchase_repo.transition_status.assert_not_called()

    def test_concurrent_status_change_reported(self) -> None:
        service = _service(purchase={"purchase_id": "p1", "status": "pending"})
        service.purchase_repo.transition_status.return_value = False
        with pytest.raises(PurchaseError) as exc:
            service.update_status("p1", "failed")
        assert exc.value.status_code == 409

    def test_new_purchase_id_is_hex_and_passed_to_repo(self) -> None:
        service = _service()
        purchase = service.create_purchase(
            raffle_id="r1", full_name="Ana", email="a@b.com", price_tier_id="t1"
        )
        assert len(purchase["purchase_id"]) == 32
        assert int(purchase["purchase_id"], 16) >= 0
        assert service.purchase_repo.create.call_args.kwargs["new_id"] == purchase["purchase_id"]

    def test_update_status_rejects_unknown(self) -> None:
        with pytest.raises(PurchaseError) as exc:
            _service(purchase={"purchase_id": "p1"}).update_status("p1", "refunded")
        assert exc.value.status_code == 422

    def test_delete_releases_tickets(self) -> None:
        service = _service(purchase={"purchase_id": "p1", "status": "confirmed"})
        service.ticket_repo.find_by_purchase.return_value = [{"ticket_id": "x1"}, {"ticket_id": "x2"}]
        service.ticket_repo.assign_tickets.return_value = True
        service.delete_purchase("p1")
        service.ticket_repo.assign_tickets.assert_called_once_with(None, ["x1", "x2"], owner_id="p1")
        service.purchase_repo.delete.assert_called_once_with("p1")

    def test_search_rejects_bad_status(self) -> None:
        with pytest.raises(PurchaseError):
            _service().search_purchases(status="bogus")

    def test_search_paginates(self) -> None:
        service = _service()
        service.purchase_repo.search.return_value = ([{"purchase_id": "p1"}], 41)
        result = service.search_purchases(status="paid", page=2, limit=20)
        assert result["pagination"]["total_pages"] == 3
        assert service.purchase_repo.search.call_args.kwargs["offset"] == 20

    def test_payment_info_passthrough(self) -> None:
        gateway = MagicMock()
        gateway.get_payment.return_value = PaymentInfo(
            payment_id="9", status="approved", external_reference="p1"
        )
        info = _service(gateway=gateway).get_payment_info("9")
        assert info["id"] == "9"
        assert info["status"] == "approved"

    def test_get_purchase_custom_tier(self) -> None:
        service = _service(purchase={"purchase_id": "p1", "price_tier_id": "custom"})
        result = service.get_purchase("p1")
        assert result["price_tier"] is None
        assert result["tickets"] == []
