"""Integration tests for host-based tenant serving and the resolve diagnostic."""

import pytest
from httpx import AsyncClient

from pagehost.core.config import settings
from pagehost.services import domain_service, landing_page_service


@pytest.fixture()
def primary_domain(monkeypatch):
    monkeypatch.setattr(settings, "PRIMARY_DOMAIN", "example.com")
    return "example.com"


async def bind(db, domain, subdomain=None, **kwargs):
    return await landing_page_service.create_landing_page(
        db, domain, name=kwargs.pop("name", "Spring Offer"),
        affiliate_url="https://offer.test/click?a=1&b=2", subdomain=subdomain, **kwargs
    )


class TestTenantServing:
    @pytest.mark.asyncio
    async def test_serves_stored_html(self, client: AsyncClient, db, provider_domain):
        await bind(db, provider_domain, "app", html_content="<h1>App page</h1>")

        resp = await client.get("/", headers={"Host": "app.example.com"})

        assert resp.status_code == 200
        assert resp.text == "<h1>App page</h1>"
        assert resp.headers["content-type"].startswith("text/html")
        assert resp.headers["cache-control"] == "no-store"
        assert resp.headers["x-content-type-options"] == "nosniff"

    @pytest.mark.asyncio
    async def test_renders_default_page(self, client: AsyncClient, db, external_domain):
        await bind(db, external_domain, name="<Deals>")

        resp = await client.get("/any/path", headers={"Host": "www.external.org:443"})

        assert resp.status_code == 200
        assert "&lt;Deals&gt;" in resp.text
        assert 'href="https://offer.test/click?a=1&amp;b=2"' in resp.text
        assert "<footer>external.org</footer>" in resp.text

    @pytest.mark.asyncio
    async def test_unknown_host(self, client: AsyncClient):
        resp = await client.get("/", headers={"Host": "nobody.net"})
        assert resp.status_code == 404
        assert resp.text == "No site is configured for nobody.net"
        assert resp.headers["cache-control"] == "no-store"

    @pytest.mark.asyncio
    async def test_unbound_subdomain(self, client: AsyncClient, db, provider_domain):
        await bind(db, provider_domain, "app")
        resp = await client.get("/", headers={"Host": "admin.example.com"})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_inactive_domain_is_not_served(self, client: AsyncClient, db, provider_domain):
        await bind(db, provider_domain, "app")
        provider_domain.is_active = False
        await db.commit()
        resp = await client.get("/", headers={"Host": "app.example.com"})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["shop.brand.com", "example.co.uk"])
    async def test_serves_multi_label_domain_root(self, client: AsyncClient, db, name):
        domain = await domain_service.create_domain(db, name, "external")
        await bind(db, domain, html_content="<h1>Shop</h1>")

        for host in (name, f"www.{name}"):
            resp = await client.get("/", headers={"Host": host})
            assert resp.status_code == 200
            assert resp.text == "<h1>Shop</h1>"

    @pytest.mark.asyncio
    async def test_head_request(self, client: AsyncClient, db, provider_domain):
        await bind(db, provider_domain, "app")
        resp = await client.head("/", headers={"Host": "app.example.com"})
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_local_host_uses_path_hint(self, client: AsyncClient, db, provider_domain, primary_domain):
        await bind(db, provider_domain, "app", html_content="app via hint")

        resp = await client.get("http://localhost:8000/app")
        assert resp.status_code == 200
        assert resp.text == "app via hint"

        resp = await client.get("http://localhost:8000/", params={"subdomain": "app"})
        assert resp.text == "app via hint"

    @pytest.mark.asyncio
    async def test_api_routes_are_not_shadowed(self, client: AsyncClient):
        resp = await client.get("/api/v1/domains", headers={"Host": "app.example.com"})
        assert resp.status_code == 200
        assert resp.json() == []


class TestResolveDiagnostic:
    @pytest.mark.asyncio
    async def test_resolve_bound_host(self, client: AsyncClient, db, provider_domain):
        page = await bind(db, provider_domain, "app")

        resp = await client.get("/api/v1/diagnostics/resolve", params={"host": "APP.example.com:8080"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["subdomain"] == "app"
        assert data["domain_name"] == "example.com"
        assert data["is_recognized_prefix"] is True
        assert data["domain_id"] == provider_domain.id
        assert data["landing_page_id"] == page.id

    @pytest.mark.asyncio
    async def test_resolve_garbage(self, client: AsyncClient):
        resp = await client.get("/api/v1/diagnostics/resolve", params={"host": "..."})
        assert resp.status_code == 200
        data = resp.json()
        assert data["is_tld_only"] is True
        assert data["issues"]
        assert data["landing_page_id"] is None
