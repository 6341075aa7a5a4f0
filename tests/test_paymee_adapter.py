import hashlib
import json
from urllib.parse import urlencode

import pytest
import requests

from app.models.gateways import GatewayConfig, GatewayPaymentRequest
from app.services.errors import GatewayError, SignatureInvalidError
from app.services.payments import paymee
from app.services.payments.paymee import PaymeeAdapter, format_phone_number

API_KEY = "paymee-key"


class FakeResponse:
    def __init__(self, data=None, status_code=200, text=None):
        self._data = data
        self.status_code = status_code
        self.ok = status_code < 400
        self.text = text if text is not None else json.dumps(data)

    def json(self):
        if self._data is None:
            raise ValueError("No JSON object could be decoded")
        return self._data

    def raise_for_status(self):
        if not self.ok:
            raise requests.HTTPError(f"{self.status_code} error")


@pytest.fixture
def adapter() -> PaymeeAdapter:
    return PaymeeAdapter(
        GatewayConfig(
            name="paymee",
            api_base_url="https://sandbox.paymee.tn/api/v2",
            auth_token=API_KEY,
            default_currency="TND",
            success_url="https://app.example.com/success",
            cancel_url="https://app.example.com/cancel",
            webhook_url="https://api.example.com/payments/webhooks/paymee",
            timeout_seconds=5,
        )
    )


@pytest.fixture
def payment_request() -> GatewayPaymentRequest:
    return GatewayPaymentRequest(
        amount_minor=45500,
        currency="TND",
        order_id="pay-1",
        first_name="Amira",
        last_name="Ben Salah",
        email="amira@example.com",
        phone="22 123 456",
        note="Python basics",
    )


def capture_post(monkeypatch, response):
    calls = []

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(paymee.requests, "post", fake_post)
    return calls


def checksum(token: str, paid: bool) -> str:
    return hashlib.md5(f"{token}{'1' if paid else '0'}{API_KEY}".encode()).hexdigest()


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("22123456", "+21622123456"),
        ("022123456", "+21622123456"),
        ("21622123456", "+21622123456"),
        ("0021622123456", "+21622123456"),
        ("+216 22 123 456", "+21622123456"),
    ],
)
def test_format_phone_number(raw, expected):
    assert format_phone_number(raw) == expected


class TestInitiatePayment:
    async def test_sends_tnd_decimal_amount(self, adapter, payment_request, monkeypatch):
        calls = capture_post(
            monkeypatch,
            FakeResponse(
                {
                    "status": True,
                    "code": 50,
                    "data": {"token": "tok_1", "payment_url": "https://paymee/pay/tok_1"},
                }
            ),
        )

        initiated = await adapter.initiate_payment(payment_request)

        body = calls[0]["json"]
        assert calls[0]["url"] == "https://sandbox.paymee.tn/api/v2/payments/create"
        assert calls[0]["headers"]["Authorization"] == f"Token {API_KEY}"
        assert calls[0]["timeout"] == 5
        assert body["amount"] == 45.5
        assert body["phone"] == "+21622123456"
        assert body["order_id"] == "pay-1"
        assert body["webhook_url"].endswith("/payments/webhooks/paymee")
        assert initiated.provider_reference_id == "tok_1"
        assert initiated.checkout_url == "https://paymee/pay/tok_1"
        assert initiated.amount_minor == 45500

    async def test_rejects_foreign_currency(self, adapter, payment_request):
        request = payment_request.model_copy(update={"currency": "USD"})
        with pytest.raises(GatewayError) as exc_info:
            await adapter.initiate_payment(request)
        assert not exc_info.value.retryable

    async def test_requires_phone(self, adapter, payment_request):
        with pytest.raises(GatewayError, match="phone"):
            await adapter.initiate_payment(payment_request.model_copy(update={"phone": None}))

    async def test_provider_rejection_is_not_retryable(self, adapter, payment_request, monkeypatch):
        capture_post(
            monkeypatch,
            FakeResponse({"status": False, "code": 51, "message": "Invalid vendor"}),
        )
        with pytest.raises(GatewayError, match="Invalid vendor") as exc_info:
            await adapter.initiate_payment(payment_request)
        assert not exc_info.value.retryable
        assert not exc_info.value.timed_out

    async def test_timeout_is_flagged(self, adapter, payment_request, monkeypatch):
        capture_post(monkeypatch, requests.Timeout("read timed out"))
        with pytest.raises(GatewayError) as exc_info:
            await adapter.initiate_payment(payment_request)
        assert exc_info.value.timed_out
        assert exc_info.value.retryable

    async def test_server_error_is_retryable(self, adapter, payment_request, monkeypatch):
        capture_post(monkeypatch, FakeResponse(None, status_code=503, text="unavailable"))
        with pytest.raises(GatewayError) as exc_info:
            await adapter.initiate_payment(payment_request)
        assert exc_info.value.retryable


class TestVerifyPayment:
    async def test_paid(self, adapter, monkeypatch):
        calls = capture_post(
            monkeypatch,
            FakeResponse(
                {
                    "status": True,
                    "data": {
                        "payment_status": True,
                        "amount": "45.500",
                        "order_id": "pay-1",
                        "transaction_id": 9876,
                    },
                }
            ),
        )

        result = await adapter.verify_payment("tok_1")

        assert calls[0]["json"]["payment_token"] == "tok_1"
        assert result.success
        assert result.status == "completed"
        assert result.amount_minor == 45500
        assert result.currency == "TND"
        assert result.transaction_id == "9876"

    async def test_not_yet_paid_is_pending(self, adapter, monkeypatch):
        capture_post(monkeypatch, FakeResponse({"status": True, "data": {"payment_status": False}}))
        result = await adapter.verify_payment("tok_1")
        assert result.status == "pending"
        assert not result.success

    async def test_transport_failure_is_inconclusive(self, adapter, monkeypatch):
        capture_post(monkeypatch, requests.ConnectionError("connection refused"))
        result = await adapter.verify_payment("tok_1")
        assert result.status == "error"
        assert not result.is_conclusive


class TestWebhook:
    def payload(self, paid=True, **overrides):
        data = {
            "token": "tok_1",
            "payment_status": paid,
            "order_id": "pay-1",
            "amount": "45.500",
            "transaction_id": "777",
            "check_sum": checksum("tok_1", paid),
        }
        data.update(overrides)
        return data

    def test_valid_checksum(self, adapter):
        assert adapter.validate_webhook_signature(self.payload())

    def test_tampered_status_fails_checksum(self, adapter):
        assert not adapter.validate_webhook_signature(
            self.payload(check_sum=checksum("tok_1", False))
        )

    def test_completed_event_from_json_bytes(self, adapter):
        event = adapter.process_webhook(json.dumps(self.payload()).encode())

        assert event.status == "completed"
        assert event.event_type == "payment.completed"
        assert event.order_id == "pay-1"
        assert event.provider_reference_id == "tok_1"
        assert event.amount_minor == 45500

    def test_declined_event_from_form_body(self, adapter):
        form = urlencode({**self.payload(paid=False), "payment_status": "False"})
        event = adapter.process_webhook(form)

        assert event.status == "failed"
        assert event.failure_reason

    def test_bad_checksum_is_rejected(self, adapter):
        with pytest.raises(SignatureInvalidError):
            adapter.process_webhook(self.payload(check_sum="0" * 32))

    def test_missing_checksum_is_rejected(self, adapter):
        data = self.payload()
        del data["check_sum"]
        with pytest.raises(SignatureInvalidError):
            adapter.process_webhook(data)

    def test_undecodable_body_fails_closed(self, adapter):
        body = b"\xff\xfe token=x"

        assert adapter.validate_webhook_signature(body) is False
        with pytest.raises(SignatureInvalidError):
            adapter.process_webhook(body)
