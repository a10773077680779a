"""Realtime conversation and price-negotiation core for the vehicle marketplace."""

__version__ = "0.1.0"
