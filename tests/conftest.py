"""
Shared fixtures: an in-memory stand-in for the Supabase query builder.

FakeSupabase implements the subset of the postgrest builder the engine
uses (select/eq/neq/in_/gte/gt/lt/lte/is_/not_/order/limit plus
upsert/update/insert) over plain dict rows, so analyzers run end to end and
upsert keys / guarded updates are observable. Dates are stored as ISO
strings, which compare correctly as strings.
"""

import copy
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import logfire
import pytest


@pytest.fixture(scope="session", autouse=True)
def _local_logfire():
    logfire.configure(send_to_logfire=False, console=False)


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.operation = "select"
        self.payload: Any = None
        self.on_conflict: Optional[str] = None
        self.ignore_duplicates = False
        self.filters: List = []
        self._negate_next = False
        self.order_by: Optional[tuple] = None
        self.limit_count: Optional[int] = None

    # -- operations --------------------------------------------------------

    def select(self, columns: str = "*"):
        self.operation = "select"
        return self

    def upsert(self, rows, on_conflict: str = "id", ignore_duplicates: bool = False):
        self.operation = "upsert"
        self.payload = rows
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def update(self, values: Dict[str, Any]):
        self.operation = "update"
        self.payload = values
        return self

    def insert(self, rows):
        self.operation = "insert"
        self.payload = rows
        return self

    # -- filters -----------------------------------------------------------

    @property
    def not_(self):
        self._negate_next = True
        return self

    def _add(self, predicate):
        negate, self._negate_next = self._negate_next, False
        self.filters.append((lambda row: not predicate(row)) if negate else predicate)
        return self

    def eq(self, column, value):
        return self._add(lambda row: row.get(column) is not None and row.get(column) == value)

    def neq(self, column, value):
        return self._add(lambda row: row.get(column) is not None and row.get(column) != value)

    def in_(self, column, values):
        values = list(values)
        return self._add(lambda row: row.get(column) in values)

    def gte(self, column, value):
        return self._add(lambda row: row.get(column) is not None and row.get(column) >= value)

    def gt(self, column, value):
        return self._add(lambda row: row.get(column) is not None and row.get(column) > value)

    def lt(self, column, value):
        return self._add(lambda row: row.get(column) is not None and row.get(column) < value)

    def lte(self, column, value):
        return self._add(lambda row: row.get(column) is not None and row.get(column) <= value)

    def is_(self, column, value):
        assert value == "null"
        return self._add(lambda row: row.get(column) is None)

    def order(self, column, desc: bool = False):
        self.order_by = (column, desc)
        return self

    def limit(self, count: int):
        self.limit_count = count
        return self

    # -- execution ---------------------------------------------------------

    def _matching(self) -> List[Dict[str, Any]]:
        return [row for row in self.db.rows(self.table_name) if all(f(row) for f in self.filters)]

    def execute(self):
        self.db.calls.append((self.table_name, self.operation, copy.deepcopy(self.payload)))
        if (self.table_name, self.operation) in self.db.fail_on:
            raise RuntimeError(f"simulated {self.operation} failure on {self.table_name}")

        if self.operation == "select":
            rows = self._matching()
            if self.order_by:
                column, desc = self.order_by
                rows.sort(key=lambda row: row.get(column) or "", reverse=desc)
            if self.limit_count is not None:
                rows = rows[:self.limit_count]
            return SimpleNamespace(data=copy.deepcopy(rows), count=len(rows))

        if self.operation == "update":
            updated = self._matching()
            for row in updated:
                row.update(copy.deepcopy(self.payload))
            return SimpleNamespace(data=copy.deepcopy(updated), count=len(updated))

        rows = self.payload if isinstance(self.payload, list) else [self.payload]
        if self.operation == "insert":
            self.db.rows(self.table_name).extend(copy.deepcopy(rows))
            return SimpleNamespace(data=copy.deepcopy(rows), count=len(rows))

        return SimpleNamespace(data=self.db.upsert(self.table_name, rows, self.on_conflict, self.ignore_duplicates))


class FakeSupabase:
    """In-memory tables keyed by name; `calls` records every executed query."""

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = copy.deepcopy(tables or {})
        self.calls: List = []
        self.fail_on = set()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(name, [])

    def upsert(self, table: str, rows, on_conflict: str, ignore_duplicates: bool):
        keys = [k.strip() for k in (on_conflict or "id").split(",")]
        written = []
        for row in rows:
            existing = next(
                (r for r in self.rows(table) if all(r.get(k) == row.get(k) for k in keys)),
                None,
            )
            if existing is not None:
                if ignore_duplicates:
                    continue
                existing.update(copy.deepcopy(row))
            else:
                self.rows(table).append(copy.deepcopy(row))
            written.append(copy.deepcopy(row))
        return written

    def calls_for(self, table: str, operation: str) -> List:
        return [payload for t, op, payload in self.calls if t == table and op == operation]


@pytest.fixture
def fake_db():
    return FakeSupabase()


# ============================================================================
# Row builders
# ============================================================================

def make_ad_row(ad_id: str, competitor_id: str, launch_date: str, **overrides) -> Dict[str, Any]:
    """An ads row with engine defaults (active=False, not flagged)."""
    row = {
        "id": ad_id,
        "competitor_id": competitor_id,
        "competitor_name": None,
        "competitor_track": None,
        "launch_date": launch_date,
        "days_active": 0,
        "is_active": False,
        "is_video": False,
        "video_duration": None,
        "signal_strength": 50,
        "cohort_week": None,
        "is_breakout": False,
        "breakout_detected_at": None,
        "is_cash_cow": False,
        "cash_cow_detected_at": None,
        "client_brand_id": None,
        "is_client_ad": False,
        "tagging_status": "tagged",
    }
    row.update(overrides)
    return row


def make_tag_row(ad_id: str, **tags) -> Dict[str, Any]:
    return {"ad_id": ad_id, **tags}


@pytest.fixture
def ad_row():
    return make_ad_row


@pytest.fixture
def tag_row():
    return make_tag_row
