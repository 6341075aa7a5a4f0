"""
Gateway Registry

Builds one adapter per configured gateway from explicit GatewayConfig
objects and resolves adapters by name.
"""

import logging
from typing import Dict, List, Optional

import stripe

import config
from app.models.gateways import GatewayConfig
from app.models.payments import GatewayName
from app.services.errors import InvalidStateError
from app.services.payments.gateway import PaymentGatewayAdapter
from app.services.payments.paymee import PaymeeAdapter
from app.services.payments.stripe import StripeAdapter

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ADAPTER_CLASSES = {
    GatewayName.PAYMEE.value: PaymeeAdapter,
    GatewayName.STRIPE.value: StripeAdapter,
}


def build_gateway_configs() -> List[GatewayConfig]:
    """Turn the environment settings in config.py into adapter configs."""
    is_test = config.ENV == "d"
    return [
        GatewayConfig(
            name=GatewayName.PAYMEE.value,
            api_base_url=config.PAYMEE_API_URL,
            auth_token=config.PAYMEE_API_KEY,
            default_currency=config.PAYMEE_CURRENCY,
            success_url=config.PAYMEE_SUCCESS_URL,
            cancel_url=config.PAYMEE_CANCEL_URL,
            webhook_url=config.PAYMEE_WEBHOOK_URL,
            timeout_seconds=config.GATEWAY_TIMEOUT_SECONDS,
            is_test=is_test,
        ),
        GatewayConfig(
            name=GatewayName.STRIPE.value,
            auth_token=config.STRIPE_SECRET_KEY,
            default_currency=config.STRIPE_CURRENCY,
            success_url=config.STRIPE_SUCCESS_URL,
            cancel_url=config.STRIPE_CANCEL_URL,
            webhook_secret=config.STRIPE_WEBHOOK_SECRET,
            allow_unsigned_webhooks=config.STRIPE_ALLOW_UNSIGNED_WEBHOOKS,
            timeout_seconds=config.GATEWAY_TIMEOUT_SECONDS,
            is_test=is_test,
        ),
    ]


class GatewayRegistry:
    """Adapters keyed by gateway name."""

    def __init__(self, adapters: List[PaymentGatewayAdapter]):
        self._adapters: Dict[str, PaymentGatewayAdapter] = {
            adapter.name: adapter for adapter in adapters
        }

    @classmethod
    def from_configs(cls, configs: List[GatewayConfig]) -> "GatewayRegistry":
        adapters = []
        for gateway_config in configs:
            adapter_class = ADAPTER_CLASSES.get(gateway_config.name)
            if adapter_class is None:
                logger.warning(f"No adapter for configured gateway {gateway_config.name}")
                continue
            if not gateway_config.auth_token:
                logger.warning(
                    f"Gateway {gateway_config.name} has no credentials configured"
                )
            adapters.append(adapter_class(gateway_config))
        return cls(adapters)

    def get(self, name) -> PaymentGatewayAdapter:
        """
        Resolve an adapter by gateway name.

        Raises:
            InvalidStateError: If the gateway is not configured
        """
        key = name.value if isinstance(name, GatewayName) else str(name)
        adapter = self._adapters.get(key)
        if adapter is None:
            raise InvalidStateError(f"Unsupported payment gateway: {key}")
        return adapter

    def find(self, name) -> Optional[PaymentGatewayAdapter]:
        key = name.value if isinstance(name, GatewayName) else str(name)
        return self._adapters.get(key)

    @property
    def names(self) -> List[str]:
        return list(self._adapters)


# Global registry instance
_gateway_registry = None


def get_gateway_registry() -> GatewayRegistry:
    """Get a singleton GatewayRegistry built from config.py."""
    global _gateway_registry
    if _gateway_registry is None:
        # Bound every Stripe API call by the gateway timeout
        stripe.default_http_client = stripe.RequestsClient(
            timeout=config.GATEWAY_TIMEOUT_SECONDS
        )
        _gateway_registry = GatewayRegistry.from_configs(build_gateway_configs())
    return _gateway_registry
