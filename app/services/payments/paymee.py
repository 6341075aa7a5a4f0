"""
Paymee Gateway Adapter

Tunisian-market payment gateway (https://www.paymee.tn). Paymee speaks TND
decimals on the wire; this adapter exchanges millimes with the rest of the
system.

Webhook trust: Paymee signs deliveries with an in-payload ``check_sum`` equal
to md5(token + "1"|"0" + api_key). It is verified and fails closed, but it is
not an HMAC and carries no timestamp, so it offers no replay protection.
"""

import hashlib
import hmac
import json
import logging
import re
from traceback import format_exc
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl

import requests

from app.models.gateways import (
    VERIFICATION_ERROR,
    GatewayConfig,
    GatewayEvent,
    GatewayPaymentRequest,
    InitiatedPayment,
    VerificationResult,
)
from app.models.payments import PaymentStatus
from app.services.errors import GatewayError, SignatureInvalidError
from app.services.payments.gateway import WebhookPayload
from app.utils.dates import parse_datetime
from app.utils.money import D, from_minor_units, to_minor_units

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Paymee's "request accepted" response code
PAYMEE_SUCCESS_CODE = 50


def _as_bool(value) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if value is None:
        return None
    text = str(value).strip().lower()
    if text in ("true", "1"):
        return True
    if text in ("false", "0"):
        return False
    return None


def format_phone_number(phone: str) -> str:
    """Normalize a Tunisian phone number to +216XXXXXXXX."""
    cleaned = re.sub(r"[^\d+]", "", phone)
    if cleaned.startswith("00216"):
        return "+216" + cleaned[5:]
    if cleaned.startswith("216"):
        return "+" + cleaned
    if cleaned.startswith("0"):
        return "+216" + cleaned[1:]
    if not cleaned.startswith("+"):
        return "+216" + cleaned
    return cleaned


class PaymeeAdapter:
    """Paymee API interactions behind the PaymentGatewayAdapter contract."""

    def __init__(self, config: GatewayConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json;charset=utf-8",
            "Authorization": f"Token {self.config.auth_token}",
        }

    def _post(self, path: str, body: Dict[str, Any]) -> requests.Response:
        return requests.post(
            f"{self.config.api_base_url}{path}",
            json=body,
            headers=self._headers(),
            timeout=self.config.timeout_seconds,
        )

    def _amount_minor(self, amount) -> Optional[int]:
        if amount in (None, ""):
            return None
        return to_minor_units(D(amount), self.config.default_currency)

    async def initiate_payment(self, request: GatewayPaymentRequest) -> InitiatedPayment:
        """
        Create a Paymee payment.

        Args:
            request: Payment request with amount in millimes

        Returns:
            InitiatedPayment with the Paymee token and gateway URL

        Raises:
            GatewayError: Missing fields, provider rejection or transport failure
        """
        if request.currency.upper() != self.config.default_currency:
            raise GatewayError(
                f"Paymee only accepts {self.config.default_currency}, got {request.currency}",
                provider=self.name,
            )
        if not request.phone:
            raise GatewayError("Missing required payment fields: phone", provider=self.name)

        body = {
            "amount": float(from_minor_units(request.amount_minor, request.currency)),
            "note": request.note or "Course Purchase",
            "first_name": request.first_name,
            "last_name": request.last_name,
            "email": request.email,
            "phone": format_phone_number(request.phone),
            "return_url": request.success_url or self.config.success_url,
            "cancel_url": request.cancel_url or self.config.cancel_url,
            "webhook_url": self.config.webhook_url,
            "order_id": request.order_id,
        }

        try:
            response = self._post("/payments/create", body)
        except requests.Timeout as e:
            logger.error(f"Paymee initiation timed out for order {request.order_id}: {str(e)}")
            raise GatewayError(
                "Payment gateway timed out. Please try again later.",
                provider=self.name,
                timed_out=True,
            )
        except requests.RequestException as e:
            logger.error(f"Paymee initiation error: {str(e)}\n{format_exc()}")
            raise GatewayError(
                "Unable to connect to payment gateway. Please try again later.",
                provider=self.name,
                retryable=True,
            )

        if not response.ok:
            logger.error(f"Paymee server error ({response.status_code}): {response.text}")
            raise GatewayError(
                f"Paymee server returned {response.status_code}",
                provider=self.name,
                retryable=response.status_code >= 500,
            )

        try:
            data = response.json()
        except ValueError:
            logger.error(f"Invalid JSON response from Paymee: {response.text}")
            raise GatewayError("Invalid response from Paymee", provider=self.name)

        if not data.get("status") or data.get("code") != PAYMEE_SUCCESS_CODE:
            logger.error(f"Paymee rejected payment {request.order_id}: {data}")
            raise GatewayError(
                data.get("message") or "Failed to initiate Paymee payment",
                provider=self.name,
            )

        payload = data.get("data") or {}
        logger.info(
            f"Initiated Paymee payment {payload.get('token')} for order {request.order_id}"
        )

        return InitiatedPayment(
            provider=self.name,
            provider_reference_id=payload["token"],
            checkout_url=payload["payment_url"],
            amount_minor=request.amount_minor,
            currency=request.currency,
            # Paymee echoes the order id; ours is authoritative
            order_id=request.order_id,
        )

    async def verify_payment(self, reference: str) -> VerificationResult:
        """
        Check a Paymee payment by token.

        Paymee reports payment_status=false until the buyer pays, so a false
        status on a check call maps to pending, not failed.
        """
        try:
            response = self._post(
                "/payments/check",
                {"vendor": self.config.auth_token, "payment_token": reference},
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Paymee verification error: {str(e)}\n{format_exc()}")
            return VerificationResult(
                success=False,
                status=VERIFICATION_ERROR,
                message=str(e) or "Failed to verify payment",
            )

        if not data.get("status"):
            return VerificationResult(
                success=False,
                status=PaymentStatus.FAILED.value,
                message=data.get("message") or "Payment verification failed",
                raw=data,
            )

        payload = data.get("data") or {}
        paid = _as_bool(payload.get("payment_status"))
        if paid is True:
            status = PaymentStatus.COMPLETED
        elif paid is False:
            status = PaymentStatus.PENDING
        else:
            status = PaymentStatus.UNKNOWN

        return VerificationResult(
            success=paid is True,
            status=status.value,
            amount_minor=self._amount_minor(payload.get("amount")),
            currency=self.config.default_currency,
            order_id=payload.get("order_id"),
            transaction_id=_str_or_none(payload.get("transaction_id")),
            payment_date=parse_datetime(payload.get("payment_date")),
            raw=payload,
        )

    @staticmethod
    def _parse_payload(payload: WebhookPayload) -> Dict[str, Any]:
        if isinstance(payload, dict):
            return payload
        try:
            text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError:
            raise SignatureInvalidError("Paymee webhook payload is not valid UTF-8")
        try:
            parsed = json.loads(text)
        except ValueError:
            # Paymee posts form-encoded bodies
            parsed = dict(parse_qsl(text))
        if not isinstance(parsed, dict):
            raise SignatureInvalidError("Invalid Paymee webhook payload")
        return parsed

    def _expected_checksum(self, token: str, paid: bool) -> str:
        status_value = "1" if paid else "0"
        return hashlib.md5(
            f"{token}{status_value}{self.config.auth_token}".encode("utf-8")
        ).hexdigest()

    def validate_webhook_signature(
        self, payload: WebhookPayload, signature: Optional[str] = None
    ) -> bool:
        """
        Verify the Paymee check_sum.

        Args:
            payload: Webhook body (dict, JSON or form-encoded)
            signature: Optional checksum overriding the payload's check_sum field

        Returns:
            True if the checksum matches
        """
        try:
            data = self._parse_payload(payload)
        except SignatureInvalidError:
            return False

        token = data.get("token")
        paid = _as_bool(data.get("payment_status"))
        checksum = signature or data.get("check_sum")
        if not token or paid is None or not checksum or not self.config.auth_token:
            return False

        return hmac.compare_digest(self._expected_checksum(token, paid), str(checksum))

    def process_webhook(
        self, payload: WebhookPayload, signature: Optional[str] = None
    ) -> GatewayEvent:
        """
        Authenticate and normalize a Paymee webhook.

        Raises:
            SignatureInvalidError: If the checksum does not match
        """
        data = self._parse_payload(payload)

        if not self.validate_webhook_signature(data, signature):
            if not self.config.allow_unsigned_webhooks:
                raise SignatureInvalidError("Invalid Paymee webhook checksum")
            logger.warning(
                f"Accepting unverified Paymee webhook for token {data.get('token')} "
                "(insecure mode)"
            )

        paid = _as_bool(data.get("payment_status"))
        if paid is True:
            status, event_type = PaymentStatus.COMPLETED, "payment.completed"
        elif paid is False:
            status, event_type = PaymentStatus.FAILED, "payment.failed"
        else:
            status, event_type = PaymentStatus.UNKNOWN, "payment.unknown"

        return GatewayEvent(
            provider=self.name,
            event_type=event_type,
            status=status.value,
            order_id=_str_or_none(data.get("order_id")),
            provider_reference_id=data.get("token"),
            transaction_id=_str_or_none(data.get("transaction_id")),
            amount_minor=self._amount_minor(data.get("amount")),
            currency=self.config.default_currency,
            payment_date=parse_datetime(data.get("payment_date")),
            failure_reason="Payment declined by Paymee" if paid is False else None,
            customer_email=data.get("email"),
            raw=data,
        )


def _str_or_none(value) -> Optional[str]:
    return None if value in (None, "") else str(value)
