"""
持倉成本計算

加權平均成本法的純函式：買入時重算平均成本、賣出時平均成本不變、
以市價計算未實現損益，以及直接編輯持倉數量時的成本影響。
不存取資料庫、不持有狀態，可在任何執行緒重複呼叫。

精度規則：
- 數量、平均成本：8 位小數
- 金額、百分比：2 位小數
皆使用 ROUND_HALF_UP。平均成本與總投入金額由同一個總額各自四捨五入，
不保證兩者相乘後完全相等。
"""

from dataclasses import asdict, dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Protocol

from portfolio_tracker.exceptions import (
    InvalidPriceError,
    InvalidQuantityError,
    MissingPriceError,
)

QUANTITY_PLACES = Decimal("0.00000001")
MONEY_PLACES = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


class HasCostBasis(Protocol):
    """具備持倉成本欄位的物件（ORM Position 或測試用替身）"""
    quantity: Decimal
    average_cost: Decimal
    total_invested: Decimal


def to_decimal(value: Any) -> Decimal:
    """int / float / str 一律經由字串轉為 Decimal，避免二進位浮點誤差"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_quantity(value: Decimal) -> Decimal:
    return value.quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)


def round_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class BuyResult:
    """買入後的成本"""
    average_cost: Decimal
    total_invested: Decimal


@dataclass(frozen=True)
class SaleResult:
    """賣出後剩餘持倉的成本"""
    remaining_quantity: Decimal
    average_cost: Decimal
    total_invested: Decimal


@dataclass(frozen=True)
class PositionMetrics:
    """
    市價衍生指標

    市價未知時所有欄位為 None，代表「未知」而非「零」。
    """
    current_value: Decimal | None = None
    unrealized_gain_loss: Decimal | None = None
    unrealized_gain_loss_percentage: Decimal | None = None

    def as_dict(self) -> dict[str, Decimal]:
        """只保留有值的欄位；市價未知時回傳空 dict"""
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class UpdateImpact:
    """直接編輯持倉數量對成本的影響"""
    new_average_cost: Decimal
    new_total_invested: Decimal
    quantity_change: Decimal
    value_change: Decimal


def compute_average_cost_on_buy(
    existing_qty: Any,
    existing_avg_cost: Any,
    added_qty: Any,
    added_price: Any,
) -> BuyResult:
    """
    買入（或加碼）後的加權平均成本

    平均成本 = (原數量 × 原成本 + 買入數量 × 買入價) / (原數量 + 買入數量)

    這是單步累加器：多筆買入必須依序帶入前一步的結果。

    Raises:
        InvalidQuantityError: 原數量 < 0 或買入數量 <= 0
        InvalidPriceError: 原成本 < 0 或買入價 <= 0
    """
    existing_qty = to_decimal(existing_qty)
    existing_avg_cost = to_decimal(existing_avg_cost)
    added_qty = to_decimal(added_qty)
    added_price = to_decimal(added_price)

    if existing_qty < 0 or added_qty <= 0:
        raise InvalidQuantityError("數量必須為正數")
    if existing_avg_cost < 0 or added_price <= 0:
        raise InvalidPriceError("價格必須為正數")

    total_value = existing_qty * existing_avg_cost + added_qty * added_price
    total_qty = existing_qty + added_qty

    return BuyResult(
        average_cost=round_quantity(total_value / total_qty),
        # 總投入取自同一個 total_value，而非 數量 × 已四捨五入的平均成本
        total_invested=round_money(total_value),
    )


def compute_cost_basis_after_sale(
    current_qty: Any,
    current_avg_cost: Any,
    sold_qty: Any,
) -> SaleResult:
    """
    賣出後剩餘持倉的成本

    加權平均成本法下，賣出不改變剩餘部位的平均成本。
    已實現損益 = 賣出數量 × (賣價 - 平均成本)，此處不計算。

    Raises:
        InvalidQuantityError: 數量 <= 0 或賣超
        InvalidPriceError: 平均成本 <= 0
    """
    current_qty = to_decimal(current_qty)
    current_avg_cost = to_decimal(current_avg_cost)
    sold_qty = to_decimal(sold_qty)

    if current_qty <= 0 or sold_qty <= 0:
        raise InvalidQuantityError("數量必須為正數")
    if sold_qty > current_qty:
        raise InvalidQuantityError(
            f"無法賣出 {sold_qty} 單位，目前僅持有 {current_qty} 單位"
        )
    if current_avg_cost <= 0:
        raise InvalidPriceError("平均成本必須為正數")

    remaining = current_qty - sold_qty
    return SaleResult(
        remaining_quantity=round_quantity(remaining),
        average_cost=current_avg_cost,
        total_invested=round_money(remaining * current_avg_cost),
    )


def compute_metrics(
    position: HasCostBasis, current_price: Any = None
) -> PositionMetrics:
    """
    以市價計算現值與未實現損益

    市價缺少或 <= 0 時不拋錯，回傳全部為 None 的指標。
    """
    if current_price is None:
        return PositionMetrics()
    price = to_decimal(current_price)
    if price <= 0:
        return PositionMetrics()

    quantity = to_decimal(position.quantity)
    total_invested = to_decimal(position.total_invested)

    current_value = quantity * price
    gain_loss = current_value - total_invested
    pct = gain_loss / total_invested * HUNDRED if total_invested > 0 else ZERO

    return PositionMetrics(
        current_value=round_money(current_value),
        unrealized_gain_loss=round_money(gain_loss),
        unrealized_gain_loss_percentage=round_money(pct),
    )


def validate_position_update(
    position: HasCostBasis, new_quantity: Any, new_price: Any = None
) -> None:
    """
    編輯持倉前的前置檢查

    減少的數量不可能超過原數量（new_quantity >= 0 已保證），故不另外檢查。
    """
    if to_decimal(new_quantity) < 0:
        raise InvalidQuantityError("數量不可為負數")
    if new_price is not None and round_quantity(to_decimal(new_price)) <= 0:
        raise InvalidPriceError("價格必須為正數，且至少為 0.00000001")


def compute_update_impact(
    position: HasCostBasis, new_quantity: Any, new_price: Any = None
) -> UpdateImpact:
    """
    直接編輯持倉數量時的成本影響

    - 數量不變：原值回傳
    - 數量增加：視為以 new_price 買入差額，未提供價格時拋出 MissingPriceError
    - 數量減少：視為以目前平均成本賣出差額，new_price 不影響剩餘成本
    """
    current_qty = to_decimal(position.quantity)
    current_avg_cost = to_decimal(position.average_cost)
    new_quantity = to_decimal(new_quantity)
    quantity_change = new_quantity - current_qty

    if quantity_change == 0:
        return UpdateImpact(
            new_average_cost=current_avg_cost,
            new_total_invested=to_decimal(position.total_invested),
            quantity_change=ZERO,
            value_change=ZERO,
        )

    if quantity_change > 0:
        if new_price is None or to_decimal(new_price) <= 0:
            raise MissingPriceError("增加持倉數量時必須提供買入價格")
        price = to_decimal(new_price)
        bought = compute_average_cost_on_buy(
            current_qty, current_avg_cost, quantity_change, price
        )
        return UpdateImpact(
            new_average_cost=bought.average_cost,
            new_total_invested=bought.total_invested,
            quantity_change=quantity_change,
            value_change=quantity_change * price,
        )

    sold_qty = -quantity_change
    sold = compute_cost_basis_after_sale(current_qty, current_avg_cost, sold_qty)
    return UpdateImpact(
        new_average_cost=sold.average_cost,
        new_total_invested=sold.total_invested,
        quantity_change=quantity_change,
        value_change=-(sold_qty * current_avg_cost),
    )


def validate_buy(quantity: Any, price: Any) -> None:
    """
    買入表單檢查

    以儲存精度（8 位小數）判斷，四捨五入後為 0 的數量或價格一律拒絕。
    """
    if round_quantity(to_decimal(quantity)) <= 0:
        raise InvalidQuantityError("買入數量必須為正數，且至少為 0.00000001")
    if round_quantity(to_decimal(price)) <= 0:
        raise InvalidPriceError("買入價格必須為正數，且至少為 0.00000001")


def validate_sell(current_quantity: Any, sell_quantity: Any) -> None:
    """賣出表單檢查"""
    current_quantity = to_decimal(current_quantity)
    sell_quantity = to_decimal(sell_quantity)
    if round_quantity(sell_quantity) <= 0:
        raise InvalidQuantityError("賣出數量必須為正數，且至少為 0.00000001")
    if sell_quantity > current_quantity:
        raise InvalidQuantityError(
            f"無法賣出 {sell_quantity} 單位，目前僅持有 {current_quantity} 單位"
        )
