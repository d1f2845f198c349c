"""Tests for structured logging and request_id propagation."""

import json
import logging

from backend.core.logging import JsonFormatter, LOGGER_NAME, log_event, redact, request_id_ctx_var


def test_request_id_in_response_and_logs(client, caplog):
    with caplog.at_level(logging.INFO, logger=LOGGER_NAME):
        response = client.post(
            "/api/process-payment",
            json={"amount": 5.0, "currency": "usd", "userId": "user_1", "paymentMethodRef": "pm_x"},
        )
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    messages = {r.getMessage() for r in records}
    assert "payment.completed" in messages
    assert "request.complete" in messages


def test_request_id_in_error_response(client):
    response = client.post("/api/notify", json={"to": "a@b.com", "type": "bogus"}, headers={"X-Request-Id": "rid-42"})
    assert response.status_code == 400
    assert response.headers.get("x-request-id") == "rid-42"
    assert response.json()["request_id"] == "rid-42"


def test_log_event_carries_structured_fields(caplog):
    token = request_id_ctx_var.set("ctx-rid")
    try:
        with caplog.at_level(logging.INFO, logger=LOGGER_NAME):
            log_event("warning", "webhook.mismatch", user_id="u1", event_type="payment_intent.succeeded", extra={"amount": "x" * 600})
    finally:
        request_id_ctx_var.reset(token)

    record = [r for r in caplog.records if r.getMessage() == "webhook.mismatch"][-1]
    assert record.levelno == logging.WARNING
    assert record.request_id == "ctx-rid"
    assert record.user_id == "u1"
    assert record.amount.endswith("...<truncated>")


def test_redact_masks_secrets_and_emails():
    text = redact("key=sk_live_abc123XYZ secret=whsec_9f8e7d contact=alice@example.com")

    assert "abc123XYZ" not in text
    assert "9f8e7d" not in text
    assert "alice@" not in text
    assert "a***@example.com" in text


def test_log_event_redacts_extra_values(caplog):
    with caplog.at_level(logging.INFO, logger=LOGGER_NAME):
        log_event("info", "notification.sent", extra={"to": "bob@example.com"})

    record = [r for r in caplog.records if r.getMessage() == "notification.sent"][-1]
    assert record.to == "b***@example.com"


def test_json_formatter_output():
    record = logging.LogRecord(LOGGER_NAME, logging.INFO, __file__, 1, "payment.completed", None, None)
    record.request_id = "rid-1"
    record.user_id = "u1"
    record.transaction_id = "sim_1"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "payment.completed"
    assert payload["request_id"] == "rid-1"
    assert payload["user_id"] == "u1"
    assert payload["transaction_id"] == "sim_1"
    assert "error_code" not in payload
