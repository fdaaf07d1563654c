"""Payment adapters for billing and subscription management."""

from .stripe_adapter import StripeAdapter, create_stripe_adapter

__all__ = [
    "StripeAdapter",
    "create_stripe_adapter",
]
