"""Demo listing site for testing."""

from .app import create_app, create_mock_site, render_listing_page

__all__ = ["create_app", "create_mock_site", "render_listing_page"]
