"""
業務例外定義

每個例外類別帶有對應的 HTTP 狀態碼，由 main.py 的全域處理器統一轉換為
ErrorResponse。所有驗證類錯誤都在寫入資料庫前同步拋出，不做自動重試。
"""


class PortfolioTrackerError(Exception):
    """所有業務例外的基礎類別"""

    status_code: int = 400
    error: str = "Bad Request"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# === 成本計算 ===

class CostBasisError(PortfolioTrackerError):
    """成本計算前置條件不成立"""

    status_code = 422
    error = "Invalid Cost Basis Input"


class InvalidQuantityError(CostBasisError):
    """數量為零、負數，或賣出數量超過持有數量"""

    error = "InvalidQuantity"


class InvalidPriceError(CostBasisError):
    """價格為零或負數"""

    error = "InvalidPrice"


class MissingPriceError(CostBasisError):
    """增加持倉數量時未提供買入價格"""

    error = "MissingPrice"


class OversellError(CostBasisError):
    """帳本回放時賣出數量超過累計持有數量"""

    error = "OversellError"


# === 查無資料 ===

class NotFoundError(PortfolioTrackerError):
    """資料不存在，或不屬於目前用戶"""

    status_code = 404
    error = "NotFound"


class PortfolioNotFoundError(NotFoundError):
    pass


class PositionNotFoundError(NotFoundError):
    pass


class TransactionNotFoundError(NotFoundError):
    pass


# === 衝突 ===

class ConflictError(PortfolioTrackerError):
    """與現有資料衝突"""

    status_code = 409
    error = "Conflict"


class DuplicateSymbolError(ConflictError):
    """同一投資組合內已存在相同代碼的持倉"""

    error = "DuplicateSymbol"


class DuplicatePortfolioNameError(ConflictError):
    """同一用戶已存在相同名稱的投資組合"""

    error = "DuplicatePortfolioName"


class ConcurrentModificationError(ConflictError):
    """持倉已被其他請求修改，需重新讀取後再試"""

    error = "ConcurrentModification"
