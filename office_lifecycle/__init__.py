"""Registered office subscription lifecycle and payment-event service."""

__version__ = "0.1.0"
