"""FastAPI demo listing site for local runs and integration tests."""

import os
from html import escape
from typing import Dict, List, Optional

from fastapi import FastAPI
from fastapi.responses import HTMLResponse, Response
from pydantic import BaseModel


class ListingIn(BaseModel):
    """Listing posted to the demo site."""
    title: str
    price: str
    location: str = ""


DEFAULT_LISTINGS: List[Dict[str, str]] = [
    {"title": "中区 3LDK マンション", "price": "2,980万円", "location": "広島市中区"},
    {"title": "南区 土地 120坪", "price": "1,500万円", "location": "広島市南区"},
    {"title": "西区 中古戸建", "price": "3,200万円", "location": "広島市西区"},
]

CHALLENGE_HTML = """<!DOCTYPE html>
<html><head><title>認証にご協力ください</title></head>
<body><h1>認証にご協力ください</h1><p>ロボットではないことを確認してください。</p></body></html>"""


def render_listing_page(listings: List[Dict[str, str]], banner: str = "") -> str:
    """Render listings as athome-style web components, newest first."""
    cards = "\n".join(
        f"""<athome-search-result-list-item>
  <h2 class="property-title">{escape(item["title"])}</h2>
  <span class="property-price">{escape(item["price"])}</span>
  <span class="property-address">{escape(item.get("location", ""))}</span>
</athome-search-result-list-item>"""
        for item in listings
    )
    return f"""<!DOCTYPE html>
<html><head><title>物件一覧</title></head>
<body>
<div class="banner">{escape(banner)}</div>
<main>
{cards}
</main>
</body></html>"""


def create_mock_site(
    name: str = "demo-listings",
    listings: Optional[List[Dict[str, str]]] = None,
    failures_before_success: int = 0
) -> FastAPI:
    """
    Create the demo listing site.

    Routes:
        GET  /listings        listing page (newest first)
        GET  /challenge       verification page
        GET  /empty           page without any listing markup
        GET  /flaky           503 for the first ``failures_before_success`` calls
        POST /admin/listings  publish a new listing
        POST /admin/banner    change page chrome without touching listings
        GET  /health          health check

    Args:
        name: Server name
        listings: Initial listings (defaults to three sample listings)
        failures_before_success: Number of 503 responses served by /flaky
    """
    app = FastAPI(title=f"Mock listing site - {name}")
    state = {
        "listings": [dict(item) for item in (listings if listings is not None else DEFAULT_LISTINGS)],
        "banner": "",
        "flaky_calls": 0,
    }

    @app.get("/listings", response_class=HTMLResponse)
    async def listing_page():
        return HTMLResponse(render_listing_page(state["listings"], state["banner"]))

    @app.get("/challenge", response_class=HTMLResponse)
    async def challenge_page():
        return HTMLResponse(CHALLENGE_HTML)

    @app.get("/empty", response_class=HTMLResponse)
    async def empty_page():
        return HTMLResponse("<html><head><title>物件一覧</title></head><body><p>該当物件はありません</p></body></html>")

    @app.get("/flaky", response_class=HTMLResponse)
    async def flaky_page():
        state["flaky_calls"] += 1
        if state["flaky_calls"] <= failures_before_success:
            return Response(status_code=503)
        return HTMLResponse(render_listing_page(state["listings"]))

    @app.post("/admin/listings")
    async def add_listing(listing: ListingIn):
        state["listings"].insert(0, listing.model_dump())
        return {"count": len(state["listings"])}

    @app.post("/admin/banner")
    async def set_banner(banner: Dict[str, str]):
        state["banner"] = banner.get("text", "")
        return {"banner": state["banner"]}

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "server": name}

    return app


def create_app() -> FastAPI:
    """Factory function for uvicorn --factory."""
    return create_mock_site(
        name=os.getenv("SERVER_NAME", "demo-listings"),
        failures_before_success=int(os.getenv("FLAKY_FAILURES", 0)),
    )


def run(host: str = "127.0.0.1", port: int = 8001) -> None:
    """Serve the demo site with uvicorn."""
    import uvicorn

    uvicorn.run(create_app, host=host, port=port, factory=True)


if __name__ == "__main__":
    run(port=int(os.getenv("PORT", 8001)))
