"""
Derived Aggregates Module
"""
from .seller_metrics import (
    SellerMetricsSnapshot,
    compute_seller_metrics,
    refresh_seller_metrics,
    rebuild_all_seller_metrics,
)
from .daily_sales import sales_day, record_daily_sale, rebuild_daily_sales

__all__ = [
    "SellerMetricsSnapshot",
    "compute_seller_metrics",
    "refresh_seller_metrics",
    "rebuild_all_seller_metrics",
    "sales_day",
    "record_daily_sale",
    "rebuild_daily_sales",
]
