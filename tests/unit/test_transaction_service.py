"""交易查詢、統計與帳本修復測試"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from portfolio_tracker.exceptions import (
    PortfolioNotFoundError,
    PositionNotFoundError,
    TransactionNotFoundError,
)
from portfolio_tracker.models.transaction import Transaction, TransactionType
from portfolio_tracker.schemas.position import PositionSell
from portfolio_tracker.schemas.transaction import TransactionFilter
from portfolio_tracker.services.ledger import LedgerService
from portfolio_tracker.services.position_service import PositionService
from portfolio_tracker.services.transaction_service import TransactionService


@pytest.fixture
def positions(db_session, settings) -> PositionService:
    return PositionService(db_session, settings)


@pytest.fixture
def service(db_session, settings) -> TransactionService:
    return TransactionService(db_session, settings)


@pytest.fixture
async def history(positions, user, portfolio, make_purchase):
    """AAPL 買 10 @100、買 10 @120、賣 5 @150；MSFT 買 2 @300"""
    first = await positions.record_purchase(user.id, make_purchase(portfolio.id))
    await positions.record_purchase(
        user.id,
        make_purchase(
            portfolio.id,
            purchase_price=Decimal("120"),
            transaction_date=datetime(2024, 1, 3, tzinfo=timezone.utc),
        ),
    )
    await positions.record_sale(
        user.id, first.position.id,
        PositionSell(
            quantity=Decimal("5"),
            price=Decimal("150"),
            transaction_date=datetime(2024, 1, 4, tzinfo=timezone.utc),
        ),
    )
    msft = await positions.record_purchase(
        user.id,
        make_purchase(
            portfolio.id,
            symbol="MSFT",
            name="Microsoft",
            quantity=Decimal("2"),
            purchase_price=Decimal("300"),
            transaction_date=datetime(2024, 1, 5, tzinfo=timezone.utc),
        ),
    )
    return first.position, msft.position


@pytest.mark.unit
class TestTransactionQueries:
    """交易查詢"""

    async def test_list_by_position_newest_first(self, service, user, history):
        aapl, _ = history
        transactions = await service.list_by_position(user.id, aapl.id)

        assert [tx.type for tx in transactions] == [
            TransactionType.SELL, TransactionType.BUY, TransactionType.BUY,
        ]
        assert transactions[-1].price == Decimal("100")

    async def test_list_by_position_other_user(self, service, other_user, history):
        aapl, _ = history
        with pytest.raises(PositionNotFoundError):
            await service.list_by_position(other_user.id, aapl.id)

    async def test_list_by_portfolio_paged(self, service, user, portfolio, history):
        items, total = await service.list_by_portfolio(
            user.id, portfolio.id, page=1, page_size=3
        )
        assert total == 4
        assert [tx.symbol for tx in items] == ["MSFT", "AAPL", "AAPL"]

        items, total = await service.list_by_portfolio(
            user.id, portfolio.id, page=2, page_size=3
        )
        assert total == 4
        assert len(items) == 1
        assert items[0].price == Decimal("100")

    async def test_list_by_portfolio_other_user(
        self, service, other_user, portfolio, history
    ):
        with pytest.raises(PortfolioNotFoundError):
            await service.list_by_portfolio(other_user.id, portfolio.id)

    async def test_list_recent(self, service, user, portfolio, history):
        items = await service.list_recent(user.id, limit=2)
        assert len(items) == 2
        assert items[0].symbol == "MSFT"
        assert items[0].name == "Microsoft"
        assert items[0].portfolio_id == portfolio.id

    async def test_list_recent_other_user_empty(self, service, other_user, history):
        assert await service.list_recent(other_user.id) == []

    async def test_get_transaction(self, service, user, history):
        _, msft = history
        [tx] = await service.list_by_position(user.id, msft.id)

        detail = await service.get_transaction(user.id, tx.id)
        assert detail.symbol == "MSFT"
        assert detail.quantity == Decimal("2")

    async def test_get_transaction_other_user(self, service, user, other_user, history):
        _, msft = history
        [tx] = await service.list_by_position(user.id, msft.id)
        with pytest.raises(TransactionNotFoundError):
            await service.get_transaction(other_user.id, tx.id)


@pytest.mark.unit
class TestTransactionFilters:
    """投資組合交易篩選與排序"""

    async def query(self, service, user, portfolio, **filters):
        return await service.list_by_portfolio(
            user.id, portfolio.id, filters=TransactionFilter(**filters)
        )

    async def test_by_type(self, service, user, portfolio, history):
        items, total = await self.query(
            service, user, portfolio, transaction_type=TransactionType.SELL
        )
        assert total == 1
        assert items[0].price == Decimal("150")

    async def test_symbol_partial_match(self, service, user, portfolio, history):
        items, total = await self.query(service, user, portfolio, symbol="aap")
        assert total == 3
        assert {tx.symbol for tx in items} == {"AAPL"}

    async def test_search_matches_name_or_symbol(self, service, user, portfolio, history):
        items, total = await self.query(service, user, portfolio, search="micro")
        assert total == 1
        assert items[0].symbol == "MSFT"

        _, total = await self.query(service, user, portfolio, search="aapl")
        assert total == 3

    async def test_date_range_inclusive(self, service, user, portfolio, history):
        items, total = await self.query(
            service, user, portfolio,
            start_date=datetime(2024, 1, 3, tzinfo=timezone.utc),
            end_date=datetime(2024, 1, 4, tzinfo=timezone.utc),
        )
        assert total == 2
        assert [tx.price for tx in items] == [Decimal("150"), Decimal("120")]

    async def test_sort_by_price_ascending(self, service, user, portfolio, history):
        items, _ = await self.query(
            service, user, portfolio, sort_by="price", sort_order="asc"
        )
        assert [tx.price for tx in items] == [
            Decimal("100"), Decimal("120"), Decimal("150"), Decimal("300"),
        ]

    async def test_filters_with_paging(self, service, user, portfolio, history):
        items, total = await service.list_by_portfolio(
            user.id, portfolio.id, page=1, page_size=2,
            filters=TransactionFilter(symbol="AAPL", sort_order="asc"),
        )
        assert total == 3
        assert [tx.price for tx in items] == [Decimal("100"), Decimal("120")]

    async def test_no_match(self, service, user, portfolio, history):
        items, total = await self.query(service, user, portfolio, symbol="NVDA")
        assert items == []
        assert total == 0


@pytest.mark.unit
class TestTransactionStats:
    """交易統計"""

    async def test_stats(self, service, user, history):
        stats = await service.get_stats(user.id)

        assert stats.total_transactions == 4
        assert stats.total_buy_transactions == 3
        assert stats.total_sell_transactions == 1
        # 10×100 + 10×120 + 2×300
        assert stats.total_buy_volume == Decimal("2800.00")
        assert stats.total_sell_volume == Decimal("750.00")
        # created_at 為系統時間，全部在近期內
        assert stats.recent_activity_count == 4

    async def test_old_activity_not_recent(self, db_session, service, user, history):
        aapl, _ = history
        old = Transaction(
            position_id=aapl.id,
            type=TransactionType.BUY,
            quantity=Decimal("1"),
            price=Decimal("1"),
            transaction_date=datetime(2020, 1, 1, tzinfo=timezone.utc),
            created_at=datetime.now(timezone.utc) - timedelta(days=30),
        )
        db_session.add(old)
        await db_session.flush()

        stats = await service.get_stats(user.id)
        assert stats.total_transactions == 5
        assert stats.recent_activity_count == 4

    async def test_no_transactions(self, service, user):
        stats = await service.get_stats(user.id)
        assert stats.total_transactions == 0
        assert stats.total_buy_volume == Decimal("0")


@pytest.mark.unit
class TestDeleteAndRepair:
    """刪除交易造成偏差，再由帳本修復"""

    async def test_delete_leaves_drift_then_repair(
        self, db_session, settings, service, user, history
    ):
        aapl, _ = history
        ledger = LedgerService(db_session, settings)
        assert (await ledger.check_position(aapl.id, user.id)).status == "matched"

        # 刪除第二筆買入（10 @120）
        transactions = await service.list_by_position(user.id, aapl.id)
        second_buy = next(tx for tx in transactions if tx.price == Decimal("120"))
        await service.delete_transaction(user.id, second_buy.id)

        # 持倉不會自動調整
        assert aapl.quantity == Decimal("15")
        report = await ledger.check_position(aapl.id, user.id)
        assert report.status == "drift"
        assert report.ledger_quantity == Decimal("5")

        repaired = await ledger.repair_position(aapl.id, user.id)
        assert repaired.repaired is True
        assert aapl.quantity == Decimal("5")
        assert aapl.average_cost == Decimal("100")
        assert aapl.total_invested == Decimal("500.00")
        assert (await ledger.check_position(aapl.id, user.id)).status == "matched"

    async def test_invalid_ledger_is_reported_not_repaired(
        self, db_session, settings, service, user, history
    ):
        aapl, _ = history
        transactions = await service.list_by_position(user.id, aapl.id)
        for tx in transactions:
            if tx.type == TransactionType.BUY:
                await service.delete_transaction(user.id, tx.id)

        ledger = LedgerService(db_session, settings)
        report = await ledger.repair_position(aapl.id, user.id)
        assert report.status == "invalid_ledger"
        assert report.repaired is False
        assert aapl.quantity == Decimal("15")

    async def test_repair_all(
        self, db_session, settings, service, user, history
    ):
        aapl, msft = history
        [msft_tx] = await service.list_by_position(user.id, msft.id)
        await service.delete_transaction(user.id, msft_tx.id)

        result = await LedgerService(db_session, settings).repair_all()
        assert result.checked == 2
        assert result.matched == 1
        assert result.repaired == 1
        assert result.invalid == 0
        assert msft.quantity == Decimal("0")
        assert msft.total_invested == Decimal("0.00")
        # 帳本為空時保留原平均成本
        assert msft.average_cost == Decimal("300")

    async def test_delete_unknown_transaction(self, service, user):
        with pytest.raises(TransactionNotFoundError):
            await service.delete_transaction(user.id, "missing")
