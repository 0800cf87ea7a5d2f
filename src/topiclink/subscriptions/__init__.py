"""Subscription membership that persists across sessions."""

from .registry import SubscriptionRegistry

__all__ = ["SubscriptionRegistry"]
