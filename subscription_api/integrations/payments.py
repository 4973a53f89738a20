from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import stripe

from subscription_api.config import Settings
from subscription_api.core.exceptions import PaymentProxyError

logger = logging.getLogger(__name__)

NO_PROXY_MESSAGE = "no payer proxy provided"


class PayerProxy(ABC):
    """Operations the service needs from a payment processor."""

    @abstractmethod
    def create_customer(self, user_id: str, email: str, payment_token: str) -> str:
        """Register a customer and return the processor's customer id."""

    @abstractmethod
    def create(self, customer_id: str, plan: str, payment_token: str) -> str:
        """Subscribe a customer to ``plan`` and return the subscription id."""

    @abstractmethod
    def update(self, subscription_id: str, plan: str, payment_token: str) -> str:
        """Move a subscription to ``plan`` and return its (possibly new) id."""

    @abstractmethod
    def delete(self, subscription_id: str) -> None:
        """Cancel a subscription."""


class ErrorProxy(PayerProxy):
    """Fails every call; bound until a real processor is configured."""

    def create_customer(self, user_id: str, email: str, payment_token: str) -> str:
        raise PaymentProxyError(NO_PROXY_MESSAGE)

    def create(self, customer_id: str, plan: str, payment_token: str) -> str:
        raise PaymentProxyError(NO_PROXY_MESSAGE)

    def update(self, subscription_id: str, plan: str, payment_token: str) -> str:
        raise PaymentProxyError(NO_PROXY_MESSAGE)

    def delete(self, subscription_id: str) -> None:
        raise PaymentProxyError(NO_PROXY_MESSAGE)


class StripeProxy(PayerProxy):
    """Stripe billing through the official SDK."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.stripe.com",
        timeout: float = 30.0,
        client: Optional[stripe.StripeClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.client = client or stripe.StripeClient(
            api_key,
            base_addresses={"api": self.base_url},
            max_network_retries=0,
            http_client=stripe.HTTPXClient(timeout=timeout, allow_sync_methods=True),
        )

    @contextmanager
    def _call(self, action: str) -> Iterator[None]:
        try:
            yield
        except stripe.APIConnectionError as exc:
            logger.error("Stripe %s failed: %s", action, exc)
            raise PaymentProxyError(f"unable to reach payment processor: {exc.user_message or exc}") from exc
        except stripe.StripeError as exc:
            message = exc.user_message or str(exc)
            logger.info("Stripe %s rejected: %s", action, message)
            raise PaymentProxyError(message) from exc

    @staticmethod
    def _require_id(obj: Any, what: str) -> str:
        remote_id = str((obj or {}).get("id") or "").strip()
        if not remote_id:
            raise PaymentProxyError(f"payment processor returned no {what} id")
        return remote_id

    def create_customer(self, user_id: str, email: str, payment_token: str) -> str:
        with self._call("create customer"):
            customer = self.client.customers.create(
                params={"email": email, "source": payment_token, "metadata": {"user_id": user_id}}
            )
        return self._require_id(customer, "customer")

    def create(self, customer_id: str, plan: str, payment_token: str) -> str:
        with self._call("create subscription"):
            subscription = self.client.subscriptions.create(
                params={"customer": customer_id, "items": [{"plan": plan}]}
            )
        return self._require_id(subscription, "subscription")

    def update(self, subscription_id: str, plan: str, payment_token: str) -> str:
        with self._call("update subscription"):
            current = self.client.subscriptions.retrieve(subscription_id)
            items = (current.get("items") or {}).get("data") or []
            item: dict[str, Any] = {"plan": plan}
            if items and items[0].get("id"):
                item["id"] = items[0]["id"]
            subscription = self.client.subscriptions.update(subscription_id, params={"items": [item]})
        return self._require_id(subscription, "subscription")

    def delete(self, subscription_id: str) -> None:
        with self._call("cancel subscription"):
            self.client.subscriptions.cancel(subscription_id)


def build_payer_proxy(settings: Settings) -> PayerProxy:
    api_key = settings.stripe_key.get_secret_value()
    if not api_key:
        logger.warning("No STRIPE_KEY configured; billing operations will fail")
        return ErrorProxy()
    logger.info("Configuring stripe access")
    return StripeProxy(api_key, base_url=settings.stripe_api_base, timeout=settings.stripe_timeout)
