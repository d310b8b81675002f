"""
Tests for payment intent creation, confirmation, webhook reconciliation, receipts and stats.
"""

import json
from decimal import Decimal

import pytest
from sqlalchemy import update

from traffic_fines.core.exceptions import (
    ForbiddenError,
    GatewayUnavailableError,
    InvalidStateError,
    PaymentMismatchError,
    PaymentNotCompleteError,
    SignatureInvalidError,
    ValidationFailedError,
)
from traffic_fines.models.fine import Fine, FineStatus, PaymentMethod
from traffic_fines.services import fine_service, payment_service
from traffic_fines.services.payment_gateway import sign_payload

from conftest import WEBHOOK_SECRET


def webhook_body(intent_id: str, fine_pk, event_type: str = "payment_intent.succeeded") -> bytes:
    return json.dumps({
        "id": f"evt_{intent_id}",
        "type": event_type,
        "data": {
            "object": {
                "id": intent_id,
                "status": "succeeded",
                "metadata": {"fineId": str(fine_pk)},
                "latest_charge": {"id": "ch_hook", "receipt_url": "https://pay.example/r/ch_hook"},
            }
        },
    }).encode()


async def deliver(session, gateway, body: bytes, secret: str = WEBHOOK_SECRET):
    event = gateway.construct_event(body, sign_payload(body, secret))
    await payment_service.handle_gateway_event(session, event)


# ============================================
# Payment intents
# ============================================

class TestCreatePaymentIntent:
    async def test_amount_in_minor_units_with_fine_metadata(self, session, gateway, driver, fine):
        result = await payment_service.create_payment_intent(session, gateway, driver, fine.id)

        intent = gateway.created[0]
        assert intent.amount == 150000
        assert intent.currency == "lkr"
        assert intent.metadata["fineId"] == str(fine.id)
        assert intent.metadata["fineNumber"] == fine.fine_id
        assert intent.metadata["licensePlate"] == "WP CAB-1234"
        assert result["client_secret"] == intent.client_secret
        assert result["amount"] == Decimal("1500.00")
        assert result["fine"]["license_plate"] == "WP CAB-1234"

    async def test_overdue_fine_is_payable(self, session, gateway, driver, overdue_fine):
        result = await payment_service.create_payment_intent(session, gateway, driver, overdue_fine.id)
        assert result["payment_intent_id"]

    async def test_foreign_driver_forbidden(self, session, gateway, other_driver, fine):
        with pytest.raises(ForbiddenError):
            await payment_service.create_payment_intent(session, gateway, other_driver, fine.id)
        assert gateway.created == []

    async def test_not_payable_statuses(self, session, gateway, admin, driver, fine):
        await fine_service.change_status(session, admin, fine.id, FineStatus.CANCELLED)
        with pytest.raises(InvalidStateError):
            await payment_service.create_payment_intent(session, gateway, driver, fine.id)

    async def test_gateway_outage_surfaces(self, session, gateway, driver, fine):
        gateway.fail_with = GatewayUnavailableError("Payment gateway timed out")
        with pytest.raises(GatewayUnavailableError):
            await payment_service.create_payment_intent(session, gateway, driver, fine.id)
        await session.refresh(fine)
        assert fine.status == FineStatus.PENDING


# ============================================
# Confirmation
# ============================================

class TestConfirmPayment:
    async def test_successful_confirmation(self, session, gateway, driver, fine):
        created = await payment_service.create_payment_intent(session, gateway, driver, fine.id)
        gateway.succeed(created["payment_intent_id"], charge_id="ch_42")

        result = await payment_service.confirm_payment(session, gateway, driver, fine.id, created["payment_intent_id"])

        assert result["status"] == FineStatus.PAID
        assert result["already_paid"] is False
        assert result["transaction_id"] == "ch_42"
        await session.refresh(fine)
        assert fine.payment_id == created["payment_intent_id"]
        assert fine.payment_method == PaymentMethod.STRIPE
        assert fine.receipt_url == "https://pay.example/r/ch_42"
        notes = await fine_service.list_notes(session, fine.id)
        assert notes[-1].content == f"Payment completed via Stripe. Payment Intent: {created['payment_intent_id']}"
        assert notes[-1].added_by == driver.id

    async def test_incomplete_payment(self, session, gateway, driver, fine):
        gateway.add_intent("pi_pending", fine.id, status="requires_payment_method")
        with pytest.raises(PaymentNotCompleteError) as exc:
            await payment_service.confirm_payment(session, gateway, driver, fine.id, "pi_pending")
        assert exc.value.payment_status == "requires_payment_method"
        await session.refresh(fine)
        assert fine.status == FineStatus.PENDING

    async def test_intent_for_other_fine_is_mismatch(self, session, gateway, driver, fine, issue_fine):
        other = await issue_fine()
        gateway.add_intent("pi_other", other.id)
        with pytest.raises(PaymentMismatchError):
            await payment_service.confirm_payment(session, gateway, driver, fine.id, "pi_other")
        await session.refresh(fine)
        assert fine.status == FineStatus.PENDING

    async def test_repeat_confirmation_is_idempotent(self, session, gateway, driver, fine):
        gateway.add_intent("pi_once", fine.id)
        first = await payment_service.confirm_payment(session, gateway, driver, fine.id, "pi_once")
        second = await payment_service.confirm_payment(session, gateway, driver, fine.id, "pi_once")

        assert first["already_paid"] is False
        assert second["already_paid"] is True
        assert second["paid_at"] == first["paid_at"]
        notes = await fine_service.list_notes(session, fine.id)
        assert len([n for n in notes if "pi_once" in n.content]) == 1

    async def test_different_intent_after_payment_rejected(self, session, gateway, driver, fine):
        gateway.add_intent("pi_first", fine.id)
        gateway.add_intent("pi_second", fine.id)
        await payment_service.confirm_payment(session, gateway, driver, fine.id, "pi_first")
        with pytest.raises(InvalidStateError):
            await payment_service.confirm_payment(session, gateway, driver, fine.id, "pi_second")

    async def test_lost_race_to_same_intent_reports_already_paid(self, session, gateway, driver, fine):
        gateway.add_intent("pi_race", fine.id)
        # the webhook lands between this request's read and its write
        await session.execute(
            update(Fine).where(Fine.id == fine.id)
            .values(status=FineStatus.PAID, payment_id="pi_race", payment_method=PaymentMethod.STRIPE)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        assert fine.status == FineStatus.PENDING

        result = await payment_service.confirm_payment(session, gateway, driver, fine.id, "pi_race")
        assert result["already_paid"] is True
        notes = await fine_service.list_notes(session, fine.id)
        assert notes == []

    async def test_lost_race_to_other_writer_is_invalid_state(self, session, gateway, driver, fine):
        gateway.add_intent("pi_late", fine.id)
        await session.execute(
            update(Fine).where(Fine.id == fine.id)
            .values(status=FineStatus.PAID, payment_id="MANUAL-CASH")
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        with pytest.raises(InvalidStateError):
            await payment_service.confirm_payment(session, gateway, driver, fine.id, "pi_late")

    async def test_foreign_driver_forbidden(self, session, gateway, other_driver, fine):
        gateway.add_intent("pi_x", fine.id)
        with pytest.raises(ForbiddenError):
            await payment_service.confirm_payment(session, gateway, other_driver, fine.id, "pi_x")


# ============================================
# Webhook
# ============================================

class TestWebhook:
    async def test_succeeded_event_marks_fine_paid(self, session, gateway, fine):
        await deliver(session, gateway, webhook_body("pi_hook", fine.id))

        await session.refresh(fine)
        assert fine.status == FineStatus.PAID
        assert fine.payment_id == "pi_hook"
        assert fine.transaction_id == "ch_hook"
        notes = await fine_service.list_notes(session, fine.id)
        assert notes[-1].added_by is None
        assert "webhook" in notes[-1].content

    async def test_redelivery_is_noop(self, session, gateway, fine):
        body = webhook_body("pi_hook", fine.id)
        await deliver(session, gateway, body)
        await session.refresh(fine)
        paid_at = fine.paid_at

        await deliver(session, gateway, body)
        await session.refresh(fine)
        assert fine.paid_at == paid_at
        assert len(await fine_service.list_notes(session, fine.id)) == 1

    async def test_confirm_after_webhook_is_already_paid(self, session, gateway, driver, fine):
        gateway.add_intent("pi_hook", fine.id)
        await deliver(session, gateway, webhook_body("pi_hook", fine.id))
        result = await payment_service.confirm_payment(session, gateway, driver, fine.id, "pi_hook")
        assert result["already_paid"] is True

    async def test_bad_signature_changes_nothing(self, session, gateway, fine):
        body = webhook_body("pi_forged", fine.id)
        with pytest.raises(SignatureInvalidError):
            gateway.construct_event(body, sign_payload(body, "whsec_wrong"))
        await session.refresh(fine)
        assert fine.status == FineStatus.PENDING

    async def test_unknown_event_acknowledged(self, session, gateway, fine):
        await deliver(session, gateway, webhook_body("pi_x", fine.id, event_type="charge.refunded"))
        await deliver(session, gateway, webhook_body("pi_x", fine.id, event_type="payment_intent.payment_failed"))
        await session.refresh(fine)
        assert fine.status == FineStatus.PENDING

    async def test_failed_payment_is_noted_once(self, session, gateway, fine):
        body = json.dumps({
            "id": "evt_fail",
            "type": "payment_intent.payment_failed",
            "data": {"object": {
                "id": "pi_declined",
                "metadata": {"fineId": str(fine.id)},
                "last_payment_error": {"message": "Your card was declined."},
            }},
        }).encode()
        await deliver(session, gateway, body)
        await deliver(session, gateway, body)

        await session.refresh(fine)
        assert fine.status == FineStatus.PENDING
        notes = await fine_service.list_notes(session, fine.id)
        assert [n.content for n in notes] == [
            "Payment failed via Stripe webhook. Payment Intent: pi_declined: Your card was declined."
        ]
        assert notes[0].added_by is None

    async def test_event_for_unknown_fine_ignored(self, session, gateway):
        await deliver(session, gateway, webhook_body("pi_ghost", 99999))
        await deliver(session, gateway, webhook_body("pi_ghost", "not-a-number"))

    async def test_cancelled_fine_not_paid_by_webhook(self, session, gateway, admin, fine):
        await fine_service.change_status(session, admin, fine.id, FineStatus.CANCELLED)
        await deliver(session, gateway, webhook_body("pi_late", fine.id))
        await session.refresh(fine)
        assert fine.status == FineStatus.CANCELLED


# ============================================
# Receipts & stats
# ============================================

class TestReceipt:
    async def test_receipt_for_paid_fine(self, session, gateway, driver, officer, fine):
        gateway.add_intent("pi_rcpt", fine.id)
        await payment_service.confirm_payment(session, gateway, driver, fine.id, "pi_rcpt")

        receipt = await payment_service.get_receipt(session, driver, fine.id)
        assert receipt["receipt_number"] == f"RCP-{fine.fine_id[-8:].upper()}"
        assert receipt["amount"] == Decimal("1500.00")
        assert receipt["driver"]["name"] == "Saman Fernando"
        assert receipt["issued_by"]["badge_number"] == "PO001"
        assert receipt["violation"]["code"] == "SP001"

    async def test_receipt_requires_payment(self, session, driver, fine):
        with pytest.raises(InvalidStateError):
            await payment_service.get_receipt(session, driver, fine.id)

    async def test_receipt_ownership(self, session, admin, other_driver, fine):
        await fine_service.change_status(session, admin, fine.id, FineStatus.PAID)
        with pytest.raises(ForbiddenError):
            await payment_service.get_receipt(session, other_driver, fine.id)


class TestPaymentStats:
    async def test_breakdown_by_method(self, session, gateway, admin, driver, issue_fine):
        card = await issue_fine()
        cash = await issue_fine(custom_fine_amount=Decimal("500"))
        await issue_fine()
        gateway.add_intent("pi_card", card.id)
        await payment_service.confirm_payment(session, gateway, driver, card.id, "pi_card")
        await fine_service.change_status(session, admin, cash.id, FineStatus.PAID)

        stats = await payment_service.payment_stats(session, admin, "today")
        assert stats["total_payments"] == 2
        assert stats["total_amount"] == Decimal("2000.00")
        assert stats["average_amount"] == Decimal("1000.00")
        methods = {m["method"]: m["count"] for m in stats["payment_methods"]}
        assert methods == {PaymentMethod.STRIPE: 1, PaymentMethod.CASH: 1}

    async def test_driver_scope(self, session, admin, other_driver, fine):
        await fine_service.change_status(session, admin, fine.id, FineStatus.PAID)
        stats = await payment_service.payment_stats(session, other_driver)
        assert stats["total_payments"] == 0
        assert stats["average_amount"] == Decimal("0.00")

    async def test_unknown_period(self, session, admin):
        with pytest.raises(ValidationFailedError):
            await payment_service.payment_stats(session, admin, "decade")
