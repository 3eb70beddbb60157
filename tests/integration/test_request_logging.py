"""Integration tests for request IDs and the request completion log line."""

import json
import logging
import time

import pytest
from libs.common.logging import RequestContextFilter
from libs.common.middleware import logger as middleware_logger
from services.referral_service.services.stripe_webhook import compute_stripe_signature

WEBHOOK_SECRET = "whsec_test"


class _Collector(logging.Handler):
    def __init__(self):
        super().__init__()
        self.addFilter(RequestContextFilter())
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def completion_lines():
    handler = _Collector()
    middleware_logger.addHandler(handler)
    yield lambda: [r for r in handler.records if r.getMessage() == "Request completed"]
    middleware_logger.removeHandler(handler)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_request_id_is_echoed(referral_client):
    """A caller-supplied X-Request-ID comes back unchanged."""
    response = await referral_client.get(
        "/referrals/verify/nobody", headers={"X-Request-ID": "checkout-42"}
    )

    assert response.status_code == 404
    assert response.headers["X-Request-ID"] == "checkout-42"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_request_id_is_generated_when_missing(referral_client):
    response = await referral_client.get("/referrals/verify/nobody")

    assert len(response.headers["X-Request-ID"]) == 32


@pytest.mark.asyncio
@pytest.mark.integration
async def test_completion_line_carries_referral_code(referral_client, completion_lines):
    """The code looked up by the handler is logged with the request outcome."""
    await referral_client.get(
        "/referrals/verify/corgi",
        headers={"X-Request-ID": "landing-1", "X-Forwarded-For": "198.51.100.7"},
    )

    [record] = completion_lines()
    assert record.request_id == "landing-1"
    assert record.levelno == logging.WARNING
    assert record.extra_fields["status_code"] == 404
    assert record.log_context["referral_code"] == "corgi"
    assert record.log_context["client_ip"] == "198.51.100.7"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_completion_line_carries_webhook_order(referral_client, completion_lines):
    """Webhook deliveries log the Stripe event and the order they touched."""
    event = {
        "id": "evt_pi_logged",
        "type": "payment_intent.succeeded",
        "data": {
            "object": {
                "id": "pi_logged",
                "amount": 4500,
                "currency": "gbp",
                "metadata": {"customerEmail": "guest@example.com"},
            }
        },
    }
    body = json.dumps(event).encode("utf-8")
    timestamp = int(time.time())
    signature = compute_stripe_signature(body, timestamp, WEBHOOK_SECRET)

    response = await referral_client.post(
        "/webhooks/stripe",
        content=body,
        headers={
            "stripe-signature": f"t={timestamp},v1={signature}",
            "content-type": "application/json",
        },
    )

    assert response.status_code == 200
    [record] = completion_lines()
    assert record.log_context["stripe_event_id"] == "evt_pi_logged"
    assert record.log_context["payment_intent_id"] == "pi_logged"
    assert record.log_context["order_id"] == response.json()["order_id"]
