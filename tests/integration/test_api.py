"""透過 HTTP API 的端到端測試"""

from decimal import Decimal

import pytest
from httpx import AsyncClient


async def create_portfolio(client: AsyncClient, headers, name="美股帳戶") -> str:
    resp = await client.post("/api/portfolio/", headers=headers, json={"name": name})
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]["id"]


async def buy(client: AsyncClient, headers, portfolio_id, **overrides) -> dict:
    body = {
        "portfolio_id": portfolio_id,
        "symbol": "AAPL",
        "name": "Apple Inc.",
        "quantity": "10",
        "purchase_price": "100",
        "transaction_date": "2024-01-02T00:00:00Z",
    }
    body.update(overrides)
    resp = await client.post("/api/positions/", headers=headers, json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


@pytest.mark.integration
class TestHealthAndAuth:
    """健康檢查與認證"""

    async def test_health(self, async_client):
        resp = await async_client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    async def test_missing_token(self, async_client):
        resp = await async_client.get("/api/portfolio/")
        assert resp.status_code == 401

    async def test_invalid_token(self, async_client):
        resp = await async_client.get(
            "/api/portfolio/", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert resp.status_code == 401

    async def test_valid_token(self, async_client, auth_headers):
        resp = await async_client.get("/api/portfolio/", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "data": [], "message": "OK"}


@pytest.mark.integration
class TestPortfolioApi:
    """投資組合 API"""

    async def test_crud(self, async_client, auth_headers):
        portfolio_id = await create_portfolio(async_client, auth_headers)

        resp = await async_client.put(
            f"/api/portfolio/{portfolio_id}",
            headers=auth_headers,
            json={"description": "長期持有"},
        )
        assert resp.json()["data"]["description"] == "長期持有"

        resp = await async_client.get(f"/api/portfolio/{portfolio_id}", headers=auth_headers)
        assert resp.json()["data"]["currency"] == "USD"

        resp = await async_client.delete(f"/api/portfolio/{portfolio_id}", headers=auth_headers)
        assert resp.status_code == 200

        resp = await async_client.get(f"/api/portfolio/{portfolio_id}", headers=auth_headers)
        assert resp.status_code == 404
        assert resp.json()["success"] is False
        assert resp.json()["error"] == "NotFound"

    async def test_duplicate_name(self, async_client, auth_headers):
        await create_portfolio(async_client, auth_headers, "Growth")
        resp = await async_client.post(
            "/api/portfolio/", headers=auth_headers, json={"name": "GROWTH"}
        )
        assert resp.status_code == 409
        assert resp.json()["error"] == "DuplicatePortfolioName"

    async def test_other_user_cannot_read(self, async_client, auth_headers, other_headers):
        portfolio_id = await create_portfolio(async_client, auth_headers)
        resp = await async_client.get(
            f"/api/portfolio/{portfolio_id}/positions", headers=other_headers
        )
        assert resp.status_code == 404

    async def test_summaries_and_positions(self, async_client, auth_headers):
        portfolio_id = await create_portfolio(async_client, auth_headers)
        await buy(async_client, auth_headers, portfolio_id, current_price="125")

        resp = await async_client.get("/api/portfolio/summaries", headers=auth_headers)
        [summary] = resp.json()["data"]
        assert summary["total_positions"] == 1
        assert Decimal(summary["total_invested"]) == Decimal("1000")
        assert Decimal(summary["unrealized_gain_loss"]) == Decimal("250")

        resp = await async_client.get(
            f"/api/portfolio/{portfolio_id}/positions", headers=auth_headers
        )
        [position] = resp.json()["data"]
        assert Decimal(position["current_value"]) == Decimal("1250")
        assert Decimal(position["unrealized_gain_loss_percentage"]) == Decimal("25")

    async def test_symbol_exists_and_count(
        self, async_client, auth_headers, other_headers
    ):
        portfolio_id = await create_portfolio(async_client, auth_headers)
        created = await buy(async_client, auth_headers, portfolio_id)
        url = f"/api/portfolio/{portfolio_id}/positions"

        resp = await async_client.get(
            f"{url}/exists", headers=auth_headers, params={"symbol": "aapl"}
        )
        assert resp.json()["data"] is True

        resp = await async_client.get(
            f"{url}/exists",
            headers=auth_headers,
            params={"symbol": "AAPL", "exclude_position_id": created["position"]["id"]},
        )
        assert resp.json()["data"] is False

        resp = await async_client.get(f"{url}/count", headers=auth_headers)
        assert resp.json()["data"] == 1

        resp = await async_client.get(f"{url}/count", headers=other_headers)
        assert resp.status_code == 404


@pytest.mark.integration
class TestPositionApi:
    """持倉 API"""

    async def test_buy_merge_and_sell(self, async_client, auth_headers):
        portfolio_id = await create_portfolio(async_client, auth_headers)

        created = await buy(async_client, auth_headers, portfolio_id)
        assert created["outcome"] == "created"
        assert created["transaction"]["type"] == "BUY"

        merged = await buy(
            async_client, auth_headers, portfolio_id,
            symbol="aapl", purchase_price="120",
            transaction_date="2024-01-03T00:00:00Z",
        )
        assert merged["outcome"] == "merged"
        position = merged["position"]
        assert position["id"] == created["position"]["id"]
        assert Decimal(position["quantity"]) == Decimal("20")
        assert Decimal(position["average_cost"]) == Decimal("110")
        assert Decimal(position["total_invested"]) == Decimal("2200")

        resp = await async_client.post(
            f"/api/positions/{position['id']}/sell",
            headers=auth_headers,
            json={"quantity": "5", "price": "150"},
        )
        assert resp.status_code == 200
        sold = resp.json()["data"]
        assert sold["outcome"] == "reduced"
        assert Decimal(sold["position"]["quantity"]) == Decimal("15")
        assert Decimal(sold["position"]["average_cost"]) == Decimal("110")
        assert Decimal(sold["transaction"]["price"]) == Decimal("150")

        resp = await async_client.get(
            f"/api/positions/{position['id']}/transactions", headers=auth_headers
        )
        assert [tx["type"] for tx in resp.json()["data"]] == ["SELL", "BUY", "BUY"]

    async def test_oversell(self, async_client, auth_headers):
        portfolio_id = await create_portfolio(async_client, auth_headers)
        created = await buy(async_client, auth_headers, portfolio_id)

        resp = await async_client.post(
            f"/api/positions/{created['position']['id']}/sell",
            headers=auth_headers,
            json={"quantity": "11", "price": "150"},
        )
        assert resp.status_code == 422
        assert resp.json()["error"] == "InvalidQuantity"

        resp = await async_client.get(
            f"/api/positions/{created['position']['id']}", headers=auth_headers
        )
        assert Decimal(resp.json()["data"]["quantity"]) == Decimal("10")

    async def test_more_than_eight_decimals_rejected(self, async_client, auth_headers):
        portfolio_id = await create_portfolio(async_client, auth_headers)
        resp = await async_client.post(
            "/api/positions/",
            headers=auth_headers,
            json={
                "portfolio_id": portfolio_id,
                "symbol": "BTC",
                "name": "Bitcoin",
                "quantity": "0.000000001",
                "purchase_price": "60000",
            },
        )
        assert resp.status_code == 422

        created = await buy(async_client, auth_headers, portfolio_id)
        resp = await async_client.post(
            f"/api/positions/{created['position']['id']}/sell",
            headers=auth_headers,
            json={"quantity": "0.000000001", "price": "150"},
        )
        assert resp.status_code == 422

        resp = await async_client.get(
            f"/api/portfolio/{portfolio_id}/positions/count", headers=auth_headers
        )
        assert resp.json()["data"] == 1

    async def test_transaction_count(self, async_client, auth_headers, other_headers):
        portfolio_id = await create_portfolio(async_client, auth_headers)
        created = await buy(async_client, auth_headers, portfolio_id)
        position_id = created["position"]["id"]
        await async_client.post(
            f"/api/positions/{position_id}/sell",
            headers=auth_headers,
            json={"quantity": "5", "price": "150"},
        )

        url = f"/api/positions/{position_id}/transactions/count"
        resp = await async_client.get(url, headers=auth_headers)
        assert resp.json()["data"] == 2

        resp = await async_client.get(url, headers=other_headers)
        assert resp.status_code == 404

    async def test_invalid_symbol_rejected(self, async_client, auth_headers):
        portfolio_id = await create_portfolio(async_client, auth_headers)
        resp = await async_client.post(
            "/api/positions/",
            headers=auth_headers,
            json={
                "portfolio_id": portfolio_id,
                "symbol": "BRK.B",
                "name": "Berkshire",
                "quantity": "1",
                "purchase_price": "1",
            },
        )
        assert resp.status_code == 422

    async def test_edit(self, async_client, auth_headers):
        portfolio_id = await create_portfolio(async_client, auth_headers)
        created = await buy(async_client, auth_headers, portfolio_id)
        position_id = created["position"]["id"]

        resp = await async_client.patch(
            f"/api/positions/{position_id}",
            headers=auth_headers,
            json={"quantity": "15"},
        )
        assert resp.status_code == 422
        assert resp.json()["error"] == "MissingPrice"

        resp = await async_client.patch(
            f"/api/positions/{position_id}",
            headers=auth_headers,
            json={"quantity": "15", "purchase_price": "130", "expected_version": 1},
        )
        assert resp.status_code == 200
        edited = resp.json()["data"]
        assert edited["outcome"] == "updated"
        assert Decimal(edited["position"]["average_cost"]) == Decimal("110")
        assert edited["position"]["version"] == 2

        resp = await async_client.patch(
            f"/api/positions/{position_id}",
            headers=auth_headers,
            json={"name": "Apple", "expected_version": 1},
        )
        assert resp.status_code == 409
        assert resp.json()["error"] == "ConcurrentModification"

    async def test_edit_requires_a_field(self, async_client, auth_headers):
        portfolio_id = await create_portfolio(async_client, auth_headers)
        created = await buy(async_client, auth_headers, portfolio_id)
        resp = await async_client.patch(
            f"/api/positions/{created['position']['id']}",
            headers=auth_headers,
            json={"expected_version": 1},
        )
        assert resp.status_code == 422

    async def test_delete(self, async_client, auth_headers):
        portfolio_id = await create_portfolio(async_client, auth_headers)
        created = await buy(async_client, auth_headers, portfolio_id)
        position_id = created["position"]["id"]
        tx_id = created["transaction"]["id"]

        resp = await async_client.delete(f"/api/positions/{position_id}", headers=auth_headers)
        assert resp.status_code == 200

        resp = await async_client.get(f"/api/positions/{position_id}", headers=auth_headers)
        assert resp.status_code == 404
        resp = await async_client.get(f"/api/transactions/{tx_id}", headers=auth_headers)
        assert resp.status_code == 404


@pytest.mark.integration
class TestTransactionApi:
    """交易 API 與帳本修復"""

    async def test_delete_transaction_then_reconcile(self, async_client, auth_headers):
        portfolio_id = await create_portfolio(async_client, auth_headers)
        first = await buy(async_client, auth_headers, portfolio_id)
        second = await buy(
            async_client, auth_headers, portfolio_id,
            purchase_price="120", transaction_date="2024-01-03T00:00:00Z",
        )
        position_id = first["position"]["id"]

        resp = await async_client.delete(
            f"/api/transactions/{second['transaction']['id']}", headers=auth_headers
        )
        assert resp.status_code == 200

        resp = await async_client.get(
            f"/api/positions/{position_id}/reconcile", headers=auth_headers
        )
        report = resp.json()["data"]
        assert report["status"] == "drift"
        assert Decimal(report["ledger_quantity"]) == Decimal("10")

        resp = await async_client.get(
            f"/api/portfolio/{portfolio_id}/reconcile", headers=auth_headers
        )
        assert [r["status"] for r in resp.json()["data"]] == ["drift"]

        resp = await async_client.post(
            f"/api/positions/{position_id}/reconcile", headers=auth_headers
        )
        assert resp.json()["data"]["repaired"] is True

        resp = await async_client.get(f"/api/positions/{position_id}", headers=auth_headers)
        position = resp.json()["data"]
        assert Decimal(position["quantity"]) == Decimal("10")
        assert Decimal(position["average_cost"]) == Decimal("100")

    async def test_paged_recent_and_stats(self, async_client, auth_headers):
        portfolio_id = await create_portfolio(async_client, auth_headers)
        await buy(async_client, auth_headers, portfolio_id)
        await buy(async_client, auth_headers, portfolio_id, symbol="MSFT", name="Microsoft")
        await buy(async_client, auth_headers, portfolio_id, symbol="NVDA", name="NVIDIA")

        resp = await async_client.get(
            f"/api/transactions/portfolio/{portfolio_id}",
            headers=auth_headers,
            params={"page": 1, "page_size": 2},
        )
        page = resp.json()["data"]
        assert page["total"] == 3
        assert page["total_pages"] == 2
        assert page["has_next"] is True
        assert len(page["items"]) == 2

        resp = await async_client.get(
            "/api/transactions/recent", headers=auth_headers, params={"limit": 5}
        )
        assert len(resp.json()["data"]) == 3

        resp = await async_client.get("/api/transactions/stats", headers=auth_headers)
        stats = resp.json()["data"]
        assert stats["total_transactions"] == 3
        assert stats["total_buy_transactions"] == 3
        assert Decimal(stats["total_buy_volume"]) == Decimal("3000")

    async def test_filtered_listing(self, async_client, auth_headers):
        portfolio_id = await create_portfolio(async_client, auth_headers)
        created = await buy(async_client, auth_headers, portfolio_id)
        await buy(
            async_client, auth_headers, portfolio_id,
            symbol="MSFT", name="Microsoft", purchase_price="300",
        )
        await async_client.post(
            f"/api/positions/{created['position']['id']}/sell",
            headers=auth_headers,
            json={"quantity": "5", "price": "150"},
        )
        url = f"/api/transactions/portfolio/{portfolio_id}"

        resp = await async_client.get(
            url, headers=auth_headers, params={"transaction_type": "SELL"}
        )
        page = resp.json()["data"]
        assert page["total"] == 1
        assert page["items"][0]["type"] == "SELL"

        resp = await async_client.get(
            url, headers=auth_headers, params={"search": "micro"}
        )
        assert [tx["symbol"] for tx in resp.json()["data"]["items"]] == ["MSFT"]

        resp = await async_client.get(
            url, headers=auth_headers,
            params={"sort_by": "price", "sort_order": "asc"},
        )
        prices = [Decimal(tx["price"]) for tx in resp.json()["data"]["items"]]
        assert prices == [Decimal("100"), Decimal("150"), Decimal("300")]

        resp = await async_client.get(
            url, headers=auth_headers, params={"sort_by": "name"}
        )
        assert resp.status_code == 422

    async def test_reconcile_all_requires_admin(
        self, async_client, auth_headers, admin_headers
    ):
        resp = await async_client.post(
            "/api/transactions/reconcile/all", headers=auth_headers
        )
        assert resp.status_code == 403

        portfolio_id = await create_portfolio(async_client, auth_headers)
        await buy(async_client, auth_headers, portfolio_id)

        resp = await async_client.post(
            "/api/transactions/reconcile/all", headers=admin_headers
        )
        assert resp.status_code == 200
        result = resp.json()["data"]
        assert result["checked"] == 1
        assert result["matched"] == 1
