import os
from datetime import date

import pytest

from plancal.db import configure_db, get_all_models, get_db, migrate_tables
from plancal.errors import TransportError
from plancal.transport import FetchResult, PostResult, Transport

USER = "ann@example.com"


@pytest.fixture(autouse=True)
def reset_user_context():
    """Sign out before every test.

    Tests that sign in set the ContextVars on the main thread; without this
    reset the identity leaks into subsequent tests (same thread).
    """
    from plancal.user_context import set_access_token, set_user_identity

    set_user_identity(None)
    set_access_token(None)


@pytest.fixture
def signed_in():
    from plancal.user_context import set_access_token, set_user_identity

    set_user_identity(USER)
    set_access_token("secret-token")
    return USER


@pytest.fixture(scope="session", autouse=True)
def test_db():
    test_db_path = "test.sqlite3"
    configure_db(test_db_path)
    db = get_db()
    # Rebind all models to the test DB
    for model in get_all_models():
        model._meta.set_database(db)
    db.connect(reuse_if_open=True)
    migrate_tables(get_all_models())
    yield
    db.close()
    if os.path.exists(test_db_path):
        os.remove(test_db_path)


# ---------------------------------------------------------------------------
# In-memory planner server
# ---------------------------------------------------------------------------


class FakeTransport(Transport):
    """Serves ``records`` the way the planner endpoint filters them.

    ``filter_date`` selects one day, ``start_date``/``end_date`` an inclusive
    range.  A GET carrying the current ``etag`` gets a 304.  ``get_errors``
    are raised by the next GETs in order; ``post_results`` answer the next
    POSTs in order (success once exhausted).  An accepted POST moves the
    records it names when ``apply_moves`` is set.
    """

    def __init__(self, records=None, etag=None):
        self.records = list(records or [])
        self.etag = etag
        self.fail_range = False
        self.fail_days = False
        self.get_errors = []
        self.post_results = []
        self.apply_moves = True
        self.gets = []
        self.posts = []

    @staticmethod
    def _day(record) -> str:
        return (record.get("date") or "")[:10]

    def fetch_json(self, url, params=None, etag=None):
        params = dict(params or {})
        self.gets.append((url, params, etag))
        if self.get_errors:
            raise self.get_errors.pop(0)

        if "filter_date" in params:
            if self.fail_days:
                raise TransportError("day endpoint down", url=url, status=503)
            body = [r for r in self.records if self._day(r) == params["filter_date"]]
        else:
            if self.fail_range:
                raise TransportError("range endpoint down", url=url, status=503)
            start, end = params.get("start_date", ""), params.get("end_date", "9999-12-31")
            body = [r for r in self.records if start <= self._day(r) <= end]

        if etag is not None and etag == self.etag:
            return FetchResult(payload=None, etag=etag, status=304)
        return FetchResult(payload=body, etag=self.etag)

    def post_json(self, url, body):
        self.posts.append((url, body))
        result = self.post_results.pop(0) if self.post_results else PostResult(ok=True, status=200)
        if result.ok and self.apply_moves:
            for item in body:
                for record in self.records:
                    if record.get("workout_uuid") == item["base_id"]:
                        record["date"] = item["date"][:10]
        return result


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def plancal_config(tmp_path):
    return {
        "api_base_url": "https://planner.example.com/api",
        "cache_dir": str(tmp_path / "months"),
        "http_cache_dir": str(tmp_path / "http"),
        "http_cache_ttl": 60,
        "http_cache_max_memory_bytes": 2 * 1024 * 1024,
        "request_timeout": 5,
        "home_timezone": "UTC",
        "debug": False,
    }


@pytest.fixture
def make_plancal(plancal_config, fake_transport):
    """Build a ``Plancal`` on the fake server with today pinned to 2025-03-31."""
    from plancal.core import Plancal

    created = []

    def _make(today=date(2025, 3, 31)):
        pc = Plancal(config=plancal_config, transport=fake_transport, sleep=lambda s: None, today_provider=lambda: today)
        created.append(pc)
        return pc

    yield _make
    for pc in created:
        pc.scheduler.shutdown(wait=True)
