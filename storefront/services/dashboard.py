from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from storefront.config import get_settings
from storefront.models.orders import Order, OrderStatus
from storefront.repositories.inventory import InventoryRepository
from storefront.schemas.dashboard import (
    CountWithTrend, DashboardPeriod, DashboardStats, Granularity, InventoryAlerts, LowStockSKUs,
    SalesChart, SalesChartPoint, TotalSales, Trend,
)

PERIOD_DAYS = {
    DashboardPeriod.WEEK: 7,
    DashboardPeriod.MONTH: 30,
    DashboardPeriod.QUARTER: 90,
}


def period_bounds(period: DashboardPeriod, now: Optional[datetime] = None) -> Tuple[datetime, datetime, datetime]:
    """Return (previous_start, start, end); the previous window has the same length."""
    end = now or datetime.utcnow()
    length = timedelta(days=PERIOD_DAYS[period])
    start = end - length
    return start - length, start, end


def percent_trend(current: float, previous: float) -> Trend:
    if previous > 0:
        change = (current - previous) / previous * 100
    else:
        change = 100.0 if current > 0 else 0.0
    return Trend(direction="up" if change >= 0 else "down", percentage=round(abs(change), 1))


def count_trend(current: int, previous: int) -> Trend:
    change = current - previous
    return Trend(direction="up" if change >= 0 else "down", change=abs(change))


def bucket_key(moment: datetime, granularity: Granularity) -> str:
    if granularity == Granularity.MONTH:
        return moment.strftime("%Y-%m")
    if granularity == Granularity.WEEK:
        # Weeks start on Sunday
        week_start = moment - timedelta(days=(moment.weekday() + 1) % 7)
        return week_start.strftime("%Y-%m-%d")
    return moment.strftime("%Y-%m-%d")


class DashboardService:
    def __init__(self, db: Session):
        self.db = db

    def _window(self, start: datetime, end: datetime):
        return self.db.query(Order).filter(
            Order.created_at >= start,
            Order.created_at < end,
            Order.status != OrderStatus.CANCELLED,
        )

    def _sales(self, start: datetime, end: datetime) -> float:
        value = self._window(start, end).with_entities(func.sum(Order.total)).scalar()
        return round(float(value or 0), 2)

    def _pending(self, start: datetime, end: datetime) -> int:
        return self._window(start, end).filter(Order.status == OrderStatus.PENDING).count()

    def _customers(self, start: datetime, end: datetime) -> int:
        return self._window(start, end).with_entities(
            func.count(func.distinct(Order.user_id))
        ).scalar() or 0

    def get_stats(self, period: DashboardPeriod = DashboardPeriod.MONTH, now: Optional[datetime] = None) -> DashboardStats:
        previous_start, start, end = period_bounds(period, now)

        sales = self._sales(start, end)
        pending = self._pending(start, end)
        customers = self._customers(start, end)
        stock = InventoryRepository(self.db).get_inventory_stats()
        low_stock = stock.low_stock_count + stock.out_of_stock_count

        return DashboardStats(
            total_sales=TotalSales(
                value=sales,
                currency=get_settings().STORE_CURRENCY,
                trend=percent_trend(sales, self._sales(previous_start, start)),
                period=period.value,
            ),
            pending_orders=CountWithTrend(
                count=pending, trend=count_trend(pending, self._pending(previous_start, start))
            ),
            # Stock has no history, so its trend is always flat
            low_stock_skus=LowStockSKUs(
                count=low_stock, trend=count_trend(low_stock, low_stock), has_alert=low_stock > 0
            ),
            active_customers=CountWithTrend(
                count=customers, trend=percent_trend(customers, self._customers(previous_start, start))
            ),
        )

    def get_sales_chart(
        self,
        period: DashboardPeriod = DashboardPeriod.MONTH,
        granularity: Granularity = Granularity.DAY,
        now: Optional[datetime] = None,
    ) -> SalesChart:
        _, start, end = period_bounds(period, now)
        orders = self._window(start, end).with_entities(Order.created_at, Order.total).order_by(
            Order.created_at
        ).all()

        buckets = {}
        for created_at, total in orders:
            key = bucket_key(created_at, granularity)
            sales, count = buckets.get(key, (0.0, 0))
            buckets[key] = (sales + (total or 0), count + 1)

        points = [
            SalesChartPoint(date=key, sales=round(sales, 2), orders=count)
            for key, (sales, count) in sorted(buckets.items())
        ]
        return SalesChart(
            period=period.value,
            granularity=granularity.value,
            data_points=points,
            total_sales=round(sum(p.sales for p in points), 2),
            total_orders=sum(p.orders for p in points),
        )

    def get_inventory_alerts(self, limit: int = 10) -> InventoryAlerts:
        repository = InventoryRepository(self.db)
        stats = repository.get_inventory_stats()
        return InventoryAlerts(
            alerts=repository.find_alerts(limit),
            total_alerts=stats.low_stock_count + stats.out_of_stock_count,
        )
