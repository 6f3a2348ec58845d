import enum
from pydantic import BaseModel
from typing import Optional, List

from storefront.schemas.inventory import InventoryListItem

class DashboardPeriod(enum.Enum):
    WEEK = "7d"
    MONTH = "30d"
    QUARTER = "quarter"

class Granularity(enum.Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"

class Trend(BaseModel):
    direction: str
    percentage: Optional[float] = None
    change: Optional[int] = None

class TotalSales(BaseModel):
    value: float
    currency: str
    trend: Trend
    period: str

class CountWithTrend(BaseModel):
    count: int
    trend: Trend

class LowStockSKUs(CountWithTrend):
    has_alert: bool

class DashboardStats(BaseModel):
    total_sales: TotalSales
    pending_orders: CountWithTrend
    low_stock_skus: LowStockSKUs
    active_customers: CountWithTrend

class SalesChartPoint(BaseModel):
    date: str
    sales: float
    orders: int

class SalesChart(BaseModel):
    period: str
    granularity: str
    data_points: List[SalesChartPoint]
    total_sales: float
    total_orders: int

class InventoryAlerts(BaseModel):
    alerts: List[InventoryListItem]
    total_alerts: int
