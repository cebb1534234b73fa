import asyncio
from unittest.mock import patch
from dataclasses import replace

import httpx
import pytest

from storefront.errors import GatewayError, InvalidCallback, OrderNotFound, SignatureError
from storefront.payments.models import Ambiguous, Approved, Declined
from storefront.payments.paytabs_client import PayTabsClient
from storefront.payments.reconciliation import ReconciliationEngine
from tests.fakes import SERVER_KEY, signed_payload


@pytest.fixture()
def order(db):
    return db.seed("orders", {
        "id": "o-1", "user_id": "user-1", "status": "awaiting_payment", "payment_status": "unpaid",
        "payment_method": "online", "payment_provider": "paytabs", "tran_ref": "TST1", "paid_at": None, "total": 31.0,
    })[0]


def _webhook(engine, fields):
    return asyncio.run(engine.handle_webhook(fields))


def test_signed_approved_webhook_confirms_order(engine, db, order):
    result = _webhook(engine, signed_payload({"tranRef": "TST1", "cartId": "o-1", "respStatus": "A"}, SERVER_KEY))

    assert result["ok"] is True
    assert result["action"] == "applied"
    row = db.find("orders", id="o-1")
    assert (row["status"], row["payment_status"], row["tran_ref"]) == ("confirmed", "paid", "TST1")
    assert row["paid_at"]


def test_replayed_webhook_is_a_no_op(engine, db, order):
    payload = signed_payload({"tranRef": "TST1", "cartId": "o-1", "respStatus": "A"}, SERVER_KEY)
    _webhook(engine, payload)
    paid_at = db.find("orders", id="o-1")["paid_at"]

    again = _webhook(engine, payload)

    assert again["action"] == "already_paid"
    row = db.find("orders", id="o-1")
    assert (row["status"], row["payment_status"], row["paid_at"]) == ("confirmed", "paid", paid_at)


def test_bad_signature_leaves_order_untouched(engine, db, order):
    payload = signed_payload({"tranRef": "TST1", "cartId": "o-1"}, SERVER_KEY)
    payload["respStatus"] = "A"
    with pytest.raises(SignatureError):
        _webhook(engine, payload)
    with pytest.raises(SignatureError):
        _webhook(engine, signed_payload({"tranRef": "TST1", "cartId": "o-1", "respStatus": "A"}, "wrong-key"))
    assert db.find("orders", id="o-1")["payment_status"] == "unpaid"
    assert db.writes("orders") == []


def test_unsigned_webhook_rejected_by_default(engine, db, order):
    with pytest.raises(SignatureError):
        _webhook(engine, {"tranRef": "TST1", "cartId": "o-1", "respStatus": "A"})
    assert db.writes("orders") == []


def test_unsigned_webhook_when_allowed_trusts_only_the_gateway(gateway_config, paytabs, db, order):
    client = PayTabsClient(replace(gateway_config, allow_unsigned_webhooks=True), transport=paytabs.transport())
    engine = ReconciliationEngine(client=client)
    paytabs.statuses["TST1"] = "D"
    paytabs.carts["TST1"] = "o-1"

    _webhook(engine, {"tranRef": "TST1", "cartId": "o-1", "respStatus": "A"})

    row = db.find("orders", id="o-1")
    assert (row["status"], row["payment_status"]) == ("payment_failed", "failed")
    assert paytabs.query_count() == 1


def test_signed_webhook_without_status_queries_gateway(engine, paytabs, db, order):
    paytabs.statuses["TST1"] = "A"
    _webhook(engine, signed_payload({"tran_ref": "TST1", "cart_id": "o-1"}, SERVER_KEY))
    assert db.find("orders", id="o-1")["payment_status"] == "paid"
    assert paytabs.query_count() == 1


def test_nested_payment_result_status_is_read(engine, db, order):
    fields = {"tran_ref": "TST1", "cart_id": "o-1", "payment_result": {"response_status": "D", "response_message": "Declined"}}
    _webhook(engine, signed_payload(fields, SERVER_KEY))
    assert db.find("orders", id="o-1")["status"] == "payment_failed"


def test_lookup_by_tran_ref_when_cart_id_missing(engine, db, order):
    _webhook(engine, signed_payload({"tranRef": "TST1", "respStatus": "A"}, SERVER_KEY))
    assert db.find("orders", id="o-1")["payment_status"] == "paid"


def test_declined_then_approved_converges_to_paid(engine, db, order):
    engine.apply_result(Declined(tran_ref="TST1", cart_id="o-1", code="D"))
    assert db.find("orders", id="o-1")["status"] == "payment_failed"

    outcome = engine.apply_result(Approved(tran_ref="TST1", cart_id="o-1"))

    assert outcome.action == "applied"
    row = db.find("orders", id="o-1")
    assert (row["status"], row["payment_status"]) == ("confirmed", "paid")


def test_stale_decline_never_overwrites_paid(engine, db, order):
    engine.apply_result(Approved(tran_ref="TST1", cart_id="o-1"))
    outcome = engine.apply_result(Declined(tran_ref="TST1", cart_id="o-1", code="D"))
    assert outcome.action == "already_paid"
    row = db.find("orders", id="o-1")
    assert (row["status"], row["payment_status"]) == ("confirmed", "paid")


def test_signal_for_previous_transaction_is_ignored(engine, db, order):
    db.find("orders", id="o-1")["tran_ref"] = "TST2"
    outcome = engine.apply_result(Declined(tran_ref="TST1", cart_id="o-1", code="D"))
    assert outcome.action == "stale"
    assert db.find("orders", id="o-1")["status"] == "awaiting_payment"


def test_approval_for_another_tran_ref_is_flagged_not_applied(engine, db, order, caplog):
    db.find("orders", id="o-1")["tran_ref"] = "TST2"

    with caplog.at_level("ERROR", logger="storefront.payments.reconciliation"):
        outcome = engine.apply_result(Approved(tran_ref="TST1", cart_id="o-1"))

    assert (outcome.action, outcome.status, outcome.payment_status) == ("stale", "awaiting_payment", "unpaid")
    row = db.find("orders", id="o-1")
    assert (row["status"], row["payment_status"], row["tran_ref"], row["paid_at"]) == ("awaiting_payment", "unpaid", "TST2", None)
    assert "refund may be needed" in caplog.text


def test_approval_on_cancelled_order_records_payment_only(engine, db, order):
    db.find("orders", id="o-1")["status"] = "cancelled"
    outcome = engine.apply_result(Approved(tran_ref="TST1", cart_id="o-1"))
    assert outcome.action == "paid_late"
    row = db.find("orders", id="o-1")
    assert (row["status"], row["payment_status"]) == ("cancelled", "paid")


def test_unknown_order_is_an_error(engine, db, order):
    with pytest.raises(OrderNotFound):
        engine.apply_result(Approved(tran_ref="TST9", cart_id="o-missing"))


def test_ambiguous_result_writes_nothing(engine, db, order):
    with pytest.raises(InvalidCallback) as exc:
        engine.apply_result(Ambiguous(tran_ref="TST1", cart_id="o-1", reason="statut absent"))
    assert exc.value.status_code == 502
    assert db.writes("orders") == []


def test_paid_order_products_leave_the_cart(engine, db, order):
    db.seed("order_items", {"order_id": "o-1", "product_id": "p1", "quantity": 2})
    db.seed(
        "cart_items",
        {"user_id": "user-1", "product_id": "p1", "quantity": 2},
        {"user_id": "user-1", "product_id": "p3", "quantity": 1},
    )
    engine.apply_result(Approved(tran_ref="TST1", cart_id="o-1"))
    assert [r["product_id"] for r in db.rows("cart_items")] == ["p3"]


def test_verify_is_read_only(engine, paytabs, db, order):
    paytabs.statuses["TST1"] = "A"
    paytabs.carts["TST1"] = "o-1"

    result = asyncio.run(engine.verify("TST1"))

    assert result == {"ok": True, "status": "A", "tran_ref": "TST1", "cart_id": "o-1"}
    assert db.find("orders", id="o-1")["payment_status"] == "unpaid"
    assert db.writes("orders") == []


def test_verify_gateway_timeout_is_retryable_not_failed(engine, paytabs, db, order):
    paytabs.fail_with = httpx.ReadTimeout("timed out")
    with pytest.raises(GatewayError) as exc:
        asyncio.run(engine.verify("TST1"))
    assert exc.value.retryable is True
    assert db.find("orders", id="o-1")["payment_status"] == "unpaid"


def test_verify_checks_order_owner(engine, paytabs, order):
    paytabs.statuses["TST1"] = "A"
    with pytest.raises(OrderNotFound):
        asyncio.run(engine.verify("TST1", user={"id": "intruder", "role": "customer"}))
    assert asyncio.run(engine.verify("TST1", user={"id": "user-1", "role": "customer"}))["status"] == "A"


def test_return_redirect_applies_gateway_result(engine, paytabs, db, order):
    paytabs.statuses["TST1"] = "A"
    paytabs.carts["TST1"] = "o-1"

    url = asyncio.run(engine.handle_return({"tranRef": "TST1", "respStatus": "D"}))

    assert "order_id=o-1" in url
    assert "payment=paid" in url
    assert db.find("orders", id="o-1")["payment_status"] == "paid"


def test_return_redirect_when_gateway_down_is_pending(engine, paytabs, db, order):
    paytabs.fail_with = httpx.ConnectError("refused")
    url = asyncio.run(engine.handle_return({"tranRef": "TST1"}))
    assert url.endswith("payment=pending")
    assert db.find("orders", id="o-1")["payment_status"] == "unpaid"


def test_reconcile_by_order_id_uses_stored_tran_ref(engine, paytabs, db, order):
    paytabs.statuses["TST1"] = "D"
    outcome = asyncio.run(engine.reconcile_by_query(order_id="o-1"))
    assert outcome.to_dict() == {"order_id": "o-1", "action": "applied", "status": "payment_failed", "payment_status": "failed"}


def test_cart_cleanup_failure_keeps_payment(engine, db, order):
    with patch("storefront.cart.service.clear_purchased_products", side_effect=RuntimeError("boom")) as cleanup:
        outcome = engine.apply_result(Approved(tran_ref="TST1", cart_id="o-1"))
    assert cleanup.called
    assert outcome.action == "applied"
    assert db.find("orders", id="o-1")["payment_status"] == "paid"
