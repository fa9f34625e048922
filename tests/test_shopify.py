import base64
import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from loyalty_points.services.errors import ExternalProvisioningError, LedgerUnavailable, ShopifyAPIError
from loyalty_points.services.loyalty.discount_provisioner import ShopifyDiscountProvisioner, rule_title
from loyalty_points.services.loyalty.points_ledger import PointsLedger
from loyalty_points.services.shopify_client import ShopifyClient
from loyalty_points.services.shopify_webhooks import verify_webhook

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _client(handler) -> ShopifyClient:
    client = ShopifyClient(
        "Test-Shop.myshopify.com",
        "shpat_token",
        transport=httpx.MockTransport(handler),
    )
    client.RETRY_BACKOFF_SECONDS = 0
    return client


# -----------------------------
# Client
# -----------------------------
@pytest.mark.asyncio
async def test_client_sends_token_and_version():
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    client = _client(handler)
    payload, _ = await client.get("/shop.json")
    await client.aclose()

    assert payload == {"ok": True}
    assert str(seen[0].url) == "https://test-shop.myshopify.com/admin/api/2023-10/shop.json"
    assert seen[0].headers["X-Shopify-Access-Token"] == "shpat_token"


@pytest.mark.asyncio
async def test_client_honours_retry_after():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(429, headers={"Retry-After": "0"})
        return httpx.Response(201, json={"price_rule": {"id": 1}})

    client = _client(handler)
    payload, _ = await client.post("/price_rules.json", json={})
    assert payload["price_rule"]["id"] == 1
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_client_does_not_retry_post_transport_errors():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    client = _client(handler)
    with pytest.raises(ShopifyAPIError):
        await client.post("/price_rules.json", json={})
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_client_retries_get_on_server_error():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(502)
        return httpx.Response(200, json={"metafields": []})

    client = _client(handler)
    payload, _ = await client.get("/customers/1/metafields.json")
    assert payload == {"metafields": []}
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_client_raises_with_status():
    client = _client(lambda request: httpx.Response(404, text="Not Found"))
    with pytest.raises(ShopifyAPIError) as exc:
        await client.delete("/price_rules/1.json")
    assert exc.value.status_code == 404


def test_client_requires_credentials():
    with pytest.raises(ValueError):
        ShopifyClient("", "token")


# -----------------------------
# Webhook signatures
# -----------------------------
def test_verify_webhook():
    body = b'{"id": 1}'
    sig = base64.b64encode(hmac.new(b"secret", body, hashlib.sha256).digest()).decode()
    assert verify_webhook(body, sig, "secret")
    assert not verify_webhook(body, sig, "other")
    assert not verify_webhook(body, None, "secret")


# -----------------------------
# Points ledger
# -----------------------------
@pytest.mark.asyncio
async def test_ledger_reads_points_metafield():
    def handler(request):
        return httpx.Response(
            200,
            json={
                "metafields": [
                    {"id": 1, "namespace": "custom", "key": "points", "value": "5"},
                    {"id": 2, "namespace": "loyalty", "key": "points", "value": "1000"},
                ]
            },
        )

    balance = await PointsLedger(_client(handler)).get_balance("42")
    assert balance.points == 1000
    assert balance.metafield_id == "2"


@pytest.mark.asyncio
async def test_ledger_missing_metafield_and_404():
    empty = PointsLedger(_client(lambda r: httpx.Response(200, json={"metafields": []})))
    assert await empty.get_balance("42") is None

    gone = PointsLedger(_client(lambda r: httpx.Response(404)))
    assert await gone.get_balance("42") is None


@pytest.mark.asyncio
async def test_ledger_unavailable_on_server_error():
    ledger = PointsLedger(_client(lambda r: httpx.Response(500)))
    with pytest.raises(LedgerUnavailable):
        await ledger.get_balance("42")


@pytest.mark.asyncio
async def test_ledger_writes():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"metafield": {"id": 9}})

    ledger = PointsLedger(_client(handler))
    assert await ledger.set_balance("42", 900, metafield_id="9") == 900
    assert await ledger.set_balance("77", -5) == 0

    put, post = requests
    assert put.method == "PUT"
    assert put.url.path.endswith("/metafields/9.json")
    assert json.loads(put.content)["metafield"]["value"] == "900"
    assert post.method == "POST"
    assert post.url.path.endswith("/customers/77/metafields.json")
    assert json.loads(post.content)["metafield"]["type"] == "number_integer"


# -----------------------------
# Discount provisioner
# -----------------------------
@pytest.mark.asyncio
async def test_provisioner_creates_rule_then_code():
    requests = []

    def handler(request):
        requests.append(request)
        if request.url.path.endswith("/price_rules.json"):
            return httpx.Response(201, json={"price_rule": {"id": 777}})
        return httpx.Response(201, json={"discount_code": {"id": 1}})

    provisioner = ShopifyDiscountProvisioner(_client(handler), min_subtotal=2000)
    out = await provisioner.create("42", "cart-1", 100, NOW + timedelta(minutes=15), code="PSKLTYX", starts_at=NOW)

    assert out.rule_id == "777"
    assert out.code == "PSKLTYX"

    rule = json.loads(requests[0].content)["price_rule"]
    assert rule["title"] == rule_title("42", "cart-1", 100)
    assert rule["value"] == "-100"
    assert rule["value_type"] == "fixed_amount"
    assert rule["usage_limit"] == 1
    assert rule["prerequisite_customer_ids"] == [42]
    assert rule["ends_at"] == (NOW + timedelta(minutes=15)).isoformat()
    assert json.loads(requests[1].content) == {"discount_code": {"code": "PSKLTYX"}}


@pytest.mark.asyncio
async def test_provisioner_cleans_up_when_code_step_fails():
    methods = []

    def handler(request):
        methods.append((request.method, request.url.path))
        if request.method == "DELETE":
            return httpx.Response(200)
        if request.url.path.endswith("/discount_codes.json"):
            return httpx.Response(422, json={"errors": {"code": ["must be unique"]}})
        return httpx.Response(201, json={"price_rule": {"id": 777}})

    provisioner = ShopifyDiscountProvisioner(_client(handler))
    with pytest.raises(ExternalProvisioningError):
        await provisioner.create("42", "cart", 100, NOW, code="PSKLTYX", starts_at=NOW)
    assert methods[-1] == ("DELETE", "/admin/api/2023-10/price_rules/777.json")


@pytest.mark.asyncio
async def test_provisioner_create_failure():
    provisioner = ShopifyDiscountProvisioner(_client(lambda r: httpx.Response(422)))
    with pytest.raises(ExternalProvisioningError):
        await provisioner.create("42", "cart", 100, NOW, code="PSKLTYX", starts_at=NOW)


@pytest.mark.asyncio
async def test_provisioner_delete_treats_404_as_gone():
    assert await ShopifyDiscountProvisioner(_client(lambda r: httpx.Response(404))).delete("1") is True
    assert await ShopifyDiscountProvisioner(_client(lambda r: httpx.Response(403))).delete("1") is False


@pytest.mark.asyncio
async def test_provisioner_lists_live_rules_for_customer():
    rules = [
        {"id": 1, "title": rule_title("42", "a", 10), "starts_at": "2024-05-01T11:55:00Z", "ends_at": "2024-05-01T12:10:00Z"},
        {"id": 2, "title": rule_title("42", "b", 10), "starts_at": "2024-05-01T11:00:00Z", "ends_at": "2024-05-01T11:15:00Z"},
        {"id": 3, "title": rule_title("420", "c", 10), "starts_at": "2024-05-01T11:55:00Z", "ends_at": "2024-05-01T12:10:00Z"},
        {"id": 4, "title": "Summer sale", "starts_at": "2024-05-01T11:55:00Z", "ends_at": None},
    ]
    provisioner = ShopifyDiscountProvisioner(_client(lambda r: httpx.Response(200, json={"price_rules": rules})))
    live = await provisioner.list_active_rules("42", NOW)
    assert [r["id"] for r in live] == [1]
