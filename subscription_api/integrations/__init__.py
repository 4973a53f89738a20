"""External integration adapters."""

from .payments import ErrorProxy, PayerProxy, StripeProxy, build_payer_proxy

__all__ = [
    "ErrorProxy",
    "PayerProxy",
    "StripeProxy",
    "build_payer_proxy",
]
