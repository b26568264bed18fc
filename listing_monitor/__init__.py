"""Listing monitor: watches real-estate listing pages and reports new listings."""

__version__ = "1.0.0"
