from __future__ import annotations

from datetime import datetime, timezone

from conftest import SHIPBOB_INVENTORY_URL, SHIPBOB_URL, FakeHttp, FakeResponse, shipbob_rows
import pytest

from synchub.core.config import settings
from synchub.integrations.generic import ConfigurationError, InvalidResponseError
from synchub.integrations.providers import ProviderRegistry
from synchub.integrations.providers.amazon import AmazonFBAAdapter, region_base_url
from synchub.integrations.providers.shipbob import ShipBobAdapter
from synchub.services.errors import ProviderNotConfigured


AMAZON_TOKEN_URL = "https://api.amazon.com/auth/o2/token"
AMAZON_SUMMARIES = "https://sellingpartnerapi-na.amazon.com/fba/inventory/v1/summaries"
MARKETPLACE = "ATVPDKIKX0DER"


# ---------- ShipBob ----------
def test_shipbob_maps_inventory_rows(fake_http: FakeHttp, shipbob: ShipBobAdapter) -> None:
    rows = shipbob_rows(("A1", 5))
    rows.append({
        "id": 99,
        "reference_id": "B2",
        "total_fulfillable_quantity": "12",
        "fulfillable_quantity_by_fulfillment_center": [{"id": 1, "name": "x"}, {"id": 2, "name": "y"}],
    })
    rows.append({"total_fulfillable_quantity": 1})          # 没有任何标识，跳过
    fake_http.on("GET", SHIPBOB_INVENTORY_URL, FakeResponse(200, rows))

    levels = shipbob.get_inventory_levels()

    assert [(lvl.sku, lvl.quantity, lvl.warehouse_id, lvl.location) for lvl in levels] == [
        ("A1", 5, "7", "Cicero (IL)"),
        ("B2", 12, None, None),
    ]
    assert fake_http.calls[0]["headers"]["Authorization"] == "Bearer sb-token"


def test_shipbob_rejects_non_list_payload(fake_http: FakeHttp, shipbob: ShipBobAdapter) -> None:
    fake_http.on("GET", SHIPBOB_INVENTORY_URL, FakeResponse(200, {"items": []}))
    with pytest.raises(InvalidResponseError):
        shipbob.get_inventory_levels()


def test_shipbob_create_product_payload(fake_http: FakeHttp, shipbob: ShipBobAdapter) -> None:
    fake_http.on("POST", SHIPBOB_URL + "/1.0/product", FakeResponse(201, {"id": 3001, "name": "Mug"}))

    created = shipbob.create_product({"name": "Mug", "sku": "MUG-1", "quantity": 4})

    assert created["id"] == 3001
    assert fake_http.calls[0]["json"] == {
        "reference_id": "MUG-1",
        "name": "Mug",
        "inventory": {"quantity": 4, "location": None},
    }


# ---------- Amazon ----------
def _amazon(fake_http: FakeHttp) -> AmazonFBAAdapter:
    return AmazonFBAAdapter.create(refresh_token="rt", client_id="cid", client_secret="cs",
                                   session=fake_http, sleep=lambda _s: None)


def test_amazon_refreshes_token_then_pages_through_summaries(fake_http: FakeHttp) -> None:
    fake_http.on("POST", AMAZON_TOKEN_URL, FakeResponse(200, {"access_token": "lwa-1", "expires_in": 3600}))
    fake_http.on(
        "GET", AMAZON_SUMMARIES,
        FakeResponse(200, {
            "payload": {"inventorySummaries": [
                {"sellerSku": "A1", "fnSku": "X001", "totalQuantity": 9,
                 "inventoryDetails": {"fulfillableQuantity": 7}, "lastUpdatedTime": "2026-10-19T08:00:00Z"},
                {"fnSku": "X-no-sku", "totalQuantity": 1},
            ]},
            "pagination": {"nextToken": "page-2"},
        }),
        FakeResponse(200, {"payload": {"inventorySummaries": [{"sellerSku": "B2", "totalQuantity": 3}]}}),
    )

    levels = _amazon(fake_http).get_inventory_levels()

    # warehouse_id 是汇总粒度（marketplace），不是 fnSku
    assert [(lvl.sku, lvl.quantity, lvl.warehouse_id) for lvl in levels] == [
        ("A1", 7, MARKETPLACE), ("B2", 3, MARKETPLACE),
    ]
    assert levels[0].last_updated == datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)

    assert len(fake_http.calls_to(AMAZON_TOKEN_URL, "POST")) == 1
    pages = fake_http.calls_to(AMAZON_SUMMARIES)
    assert "nextToken" not in pages[0]["params"]
    assert pages[1]["params"]["nextToken"] == "page-2"
    assert pages[1]["params"]["marketplaceIds"] == MARKETPLACE
    assert all(p["headers"]["Authorization"] == "Bearer lwa-1" for p in pages)


def test_amazon_missing_payload_is_invalid(fake_http: FakeHttp) -> None:
    fake_http.on("POST", AMAZON_TOKEN_URL, FakeResponse(200, {"access_token": "lwa-1"}))
    fake_http.on("GET", AMAZON_SUMMARIES, FakeResponse(200, {"errors": [{"code": "Unauthorized"}]}))
    with pytest.raises(InvalidResponseError):
        _amazon(fake_http).get_inventory_levels()


def test_amazon_does_not_support_product_creation(fake_http: FakeHttp) -> None:
    with pytest.raises(ConfigurationError) as exc:
        _amazon(fake_http).create_product({"name": "Mug"})
    assert exc.value.code == "CONFIG_ERROR"
    assert fake_http.calls == []


def test_region_base_url() -> None:
    assert region_base_url("eu") == "https://sellingpartnerapi-eu.amazon.com"
    assert region_base_url("FE", sandbox=True) == "https://sandbox.sellingpartnerapi-fe.amazon.com"
    with pytest.raises(ValueError):
        region_base_url("mars")


# ---------- 注册表 ----------
def test_registry_require_unknown_provider(shipbob: ShipBobAdapter) -> None:
    registry = ProviderRegistry([shipbob])
    assert registry.require("shipbob") is shipbob
    assert "shipbob" in registry
    with pytest.raises(ProviderNotConfigured) as exc:
        registry.require("amazon")
    assert exc.value.message == "Fulfillment provider amazon not configured"


def test_registry_from_settings_only_registers_configured_providers(fake_http: FakeHttp) -> None:
    bare = settings.model_copy(update={"SHIPBOB_API_KEY": None, "AMAZON_REFRESH_TOKEN": None})
    assert ProviderRegistry.from_settings(bare, session=fake_http).names() == []

    full = settings.model_copy(update={
        "SHIPBOB_API_KEY": "sb",
        "AMAZON_REFRESH_TOKEN": "rt",
        "AMAZON_CLIENT_ID": "cid",
        "AMAZON_CLIENT_SECRET": "cs",
    })
    assert ProviderRegistry.from_settings(full, session=fake_http).names() == ["amazon", "shipbob"]

    bad_region = full.model_copy(update={"AMAZON_REGION": "mars"})
    assert ProviderRegistry.from_settings(bad_region, session=fake_http).names() == ["shipbob"]
