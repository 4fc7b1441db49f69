"""Storefront API: catalogue, cart and order service on Flask and SQLAlchemy."""

__version__ = "1.0.0"
