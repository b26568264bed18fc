"""Unit tests for the demo listing site."""

import pytest
from fastapi.testclient import TestClient

from listing_monitor.fetcher.extraction import extract_listings
from listing_monitor.mock_servers import create_app, create_mock_site


class TestMockSite:

    @pytest.fixture
    def client(self):
        return TestClient(create_mock_site(name="test-site", failures_before_success=2))

    def test_health_endpoint(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "server": "test-site"}

    def test_listing_page_is_extractable(self, client):
        page = extract_listings(client.get("/listings").text)
        assert len(page.listings) == 3
        assert page.listings[0].location == "広島市中区"

    def test_new_listing_appears_first(self, client):
        response = client.post("/admin/listings", json={"title": "新着 土地", "price": "980万円"})
        assert response.json() == {"count": 4}

        page = extract_listings(client.get("/listings").text)
        assert page.listings[0].title == "新着 土地"

    def test_banner_changes_markup_only(self, client):
        before = client.get("/listings").text
        client.post("/admin/banner", json={"text": "キャンペーン中"})
        after = client.get("/listings").text

        assert before != after
        assert extract_listings(before).content_hash == extract_listings(after).content_hash

    def test_flaky_route(self, client):
        assert client.get("/flaky").status_code == 503
        assert client.get("/flaky").status_code == 503
        assert client.get("/flaky").status_code == 200

    def test_challenge_and_empty_routes(self, client):
        assert "認証にご協力ください" in client.get("/challenge").text
        assert "athome-search-result-list-item" not in client.get("/empty").text

    def test_create_app_reads_environment(self, monkeypatch):
        monkeypatch.setenv("SERVER_NAME", "env-site")
        client = TestClient(create_app())
        assert client.get("/health").json()["server"] == "env-site"
