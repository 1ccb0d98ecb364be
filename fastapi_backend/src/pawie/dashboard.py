"""Admin dashboard figures."""
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from src.pawie import config, db
from src.pawie.orders import REVENUE_STATUSES


def stat_windows(today: date) -> Dict[str, datetime]:
    """UTC start instants of the reporting windows: today, the last 7 days, this month."""
    start_of_day = datetime(today.year, today.month, today.day, tzinfo=timezone.utc)
    return {
        "today": start_of_day,
        "week": start_of_day - timedelta(days=6),
        "month": start_of_day.replace(day=1),
    }


# PUBLIC_INTERFACE
def get_dashboard_stats(today: Optional[date] = None) -> Dict[str, int]:
    """Order, revenue, stock and autoship counters for the dashboard cards."""
    today = today or datetime.now(timezone.utc).date()
    windows = stat_windows(today)
    revenue = list(REVENUE_STATUSES)

    orders = db.fetch_one(
        """
        SELECT COUNT(*) FILTER (WHERE created_at >= %(today)s) AS orders_today,
               COUNT(*) FILTER (WHERE created_at >= %(week)s) AS orders_week,
               COUNT(*) FILTER (WHERE created_at >= %(month)s) AS orders_month,
               COALESCE(SUM(total_idr) FILTER (WHERE created_at >= %(today)s AND status = ANY(%(revenue)s)), 0)
                   AS revenue_today,
               COALESCE(SUM(total_idr) FILTER (WHERE created_at >= %(week)s AND status = ANY(%(revenue)s)), 0)
                   AS revenue_week,
               COALESCE(SUM(total_idr) FILTER (WHERE created_at >= %(month)s AND status = ANY(%(revenue)s)), 0)
                   AS revenue_month,
               COUNT(*) FILTER (WHERE status='pending') AS pending_orders,
               COUNT(*) FILTER (WHERE status='paid') AS paid_orders,
               COUNT(*) FILTER (WHERE status='processing') AS processing_orders,
               COUNT(*) FILTER (WHERE status='shipped') AS shipped_orders
        FROM orders
        """,
        dict(windows, revenue=revenue),
    )
    stock = db.fetch_one(
        """
        SELECT COUNT(*) FILTER (WHERE stock_quantity <= 0) AS out_of_stock,
               COUNT(*) FILTER (WHERE stock_quantity > 0
                                AND stock_quantity <= COALESCE(low_stock_threshold, %s)) AS low_stock
        FROM inventory
        """,
        [config.LOW_STOCK_DEFAULT_THRESHOLD],
    )
    autoships = db.fetch_one(
        """
        SELECT COUNT(*) FILTER (WHERE status='active') AS active_autoships,
               COUNT(*) FILTER (WHERE status='active' AND (next_run_at AT TIME ZONE 'UTC')::date = %s)
                   AS autoships_due_today
        FROM autoships
        """,
        [today],
    )

    stats: Dict[str, int] = {}
    for row in (orders, stock, autoships):
        stats.update({k: int(v or 0) for k, v in (row or {}).items()})
    return stats


# PUBLIC_INTERFACE
def get_recent_orders(limit: int = 10) -> List[Dict[str, Any]]:
    return db.fetch_all(
        """
        SELECT o.id, o.status, o.source, o.total_idr, o.created_at,
               pr.email AS customer_email, pr.full_name AS customer_name
        FROM orders o
        LEFT JOIN profiles pr ON pr.id = o.user_id
        ORDER BY o.created_at DESC
        LIMIT %s
        """,
        [limit],
    )
