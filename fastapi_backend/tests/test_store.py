"""Tests for the SQL the Store sends, using a cursor that records statements."""
from datetime import date, datetime, timezone
from uuid import uuid4

import pytest

from src.pawie.store import Store


class RecordingCursor:
    """Stands in for a psycopg2 RealDictCursor; rows are queued per call."""

    def __init__(self, rows=None):
        self.executed = []
        self.rows = list(rows or [])
        self.rowcount = 1

    def execute(self, query, params=None):
        self.executed.append((" ".join(query.split()), params))

    def fetchone(self):
        return self.rows.pop(0) if self.rows else None

    def fetchall(self):
        return self.rows.pop(0) if self.rows else []

    @property
    def statements(self):
        return [q for q, _ in self.executed]


@pytest.fixture
def cur():
    return RecordingCursor()


class TestSavepoint:
    def test_released_when_block_succeeds(self, cur):
        store = Store(cur)

        with store.savepoint():
            store.set_stock(uuid4(), 3)

        assert cur.statements[0] == "SAVEPOINT sp_1"
        assert cur.statements[-1] == "RELEASE SAVEPOINT sp_1"

    def test_rolled_back_and_reraised_on_error(self, cur):
        store = Store(cur)

        with pytest.raises(RuntimeError):
            with store.savepoint():
                store.set_stock(uuid4(), 3)
                raise RuntimeError("order failed")

        assert cur.statements[-1] == "ROLLBACK TO SAVEPOINT sp_1"
        assert "RELEASE SAVEPOINT sp_1" not in cur.statements

    def test_nested_savepoints_have_distinct_names(self, cur):
        store = Store(cur)

        with store.savepoint():
            with store.savepoint():
                pass

        assert cur.statements == ["SAVEPOINT sp_1", "SAVEPOINT sp_2", "RELEASE SAVEPOINT sp_2", "RELEASE SAVEPOINT sp_1"]


class TestColumnWhitelists:
    def test_update_autoship_rejects_unknown_columns(self, cur):
        with pytest.raises(ValueError, match="user_id"):
            Store(cur).update_autoship(uuid4(), user_id=uuid4())

        assert cur.executed == []

    def test_update_run_rejects_unknown_columns(self, cur):
        with pytest.raises(ValueError, match="autoship_id"):
            Store(cur).update_run(uuid4(), autoship_id=uuid4())

        assert cur.executed == []

    def test_update_autoship_sets_given_columns(self, cur):
        autoship_id = uuid4()
        when = datetime(2024, 3, 15, tzinfo=timezone.utc)

        Store(cur).update_autoship(autoship_id, status="paused", next_run_at=when)

        [(query, params)] = cur.executed
        assert query == "UPDATE autoships SET status=%s, next_run_at=%s, updated_at=NOW() WHERE id=%s"
        assert params == ["paused", when, autoship_id]


class TestQueries:
    def test_tag_filter_counts_distinct_tags(self, cur):
        a, b = uuid4(), uuid4()

        Store(cur).filter_products_by_tags([a, b, a], limit=20, offset=40)

        [(query, params)] = cur.executed
        assert "HAVING COUNT(DISTINCT pta.tag_id) = %s" in query
        assert params == [[a, b, a], 2, 20, 40]

    def test_tag_filter_without_tags_lists_published(self, cur):
        Store(cur).filter_products_by_tags([], limit=10, offset=0)

        [(query, params)] = cur.executed
        assert "published=TRUE" in query
        assert "product_tag_assignments" not in query
        assert params == [10, 0]

    def test_run_lookup_compares_utc_dates(self, cur):
        autoship_id = uuid4()

        assert Store(cur).get_run_for_date(autoship_id, date(2024, 3, 1)) is None

        [(query, params)] = cur.executed
        assert "(scheduled_at AT TIME ZONE 'UTC')::date = %s" in query
        assert params == [autoship_id, date(2024, 3, 1)]

    def test_create_inventory_upserts_then_locks(self):
        product_id = uuid4()
        cur = RecordingCursor(rows=[{"product_id": product_id, "stock_quantity": 0}])

        row = Store(cur).create_inventory(product_id)

        assert row == {"product_id": product_id, "stock_quantity": 0}
        insert, lock = cur.statements
        assert insert.startswith("INSERT INTO inventory")
        assert "ON CONFLICT (product_id) DO NOTHING" in insert
        assert lock.endswith("FOR UPDATE")

    def test_lock_autoship_takes_row_lock(self, cur):
        Store(cur).lock_autoship(uuid4())

        assert cur.statements == ["SELECT * FROM autoships WHERE id=%s FOR UPDATE"]

    def test_usage_increment_skips_empty_list(self, cur):
        Store(cur).increment_discount_usage([])

        assert cur.executed == []

    def test_discount_lookup_without_targets_stops_early(self, cur):
        assert Store(cur).list_discounts_with_targets(uuid4()) == ([], [])
        assert len(cur.executed) == 1
