"""Core plancal wiring: configuration in, a ready calendar state out."""

import logging
import time
from typing import Any

from .appconfig import get_db_path_from_env, load_config
from .calendar import today
from .db import configure_db, get_db, migrate_tables
from .http_cache import RevalidationCache
from .month_cache import MonthCacheStore, MonthLocks
from .move_log import MoveLogRecorder
from .moves import CacheSync, MoveSubmitter
from .planner import OfflineRepository, PlannerClient, PlannerRoutes, PlannerService
from .state import CalendarState
from .transport import CachedClient, RequestsTransport, Transport
from .user_context import current_access_token, current_user_identity
from .verify import PostMoveVerifier, VerificationScheduler

log = logging.getLogger(__name__)


class Plancal:
    """Builds every component from configuration and hands them to each other.

    Pass *config* to skip the database-backed configuration entirely (tests,
    embedding); pass *transport* to replace the ``requests`` transport and
    *today_provider* to pin the current date.
    """

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        transport: Transport | None = None,
        sleep=time.sleep,
        today_provider=None,
    ):
        if config is None:
            configure_db(get_db_path_from_env())
            migrate_tables()
            config = load_config()
        self.config = config
        self.home_timezone = config.get("home_timezone", "UTC")
        self._today_provider = today_provider

        self.store = MonthCacheStore(config["cache_dir"])
        self.locks = MonthLocks()
        self.http_cache = RevalidationCache(
            config.get("http_cache_dir"),
            max_memory_bytes=int(config.get("http_cache_max_memory_bytes", 2 * 1024 * 1024)),
        )
        accept_language = config.get("accept_language") or None
        self.transport = transport or RequestsTransport(
            token_provider=current_access_token,
            timeout=float(config.get("request_timeout", 30)),
            accept_language=accept_language,
        )
        self.cached_client = CachedClient(
            self.transport,
            self.http_cache,
            float(config.get("http_cache_ttl", 60)),
            headers={"Accept-Language": accept_language} if accept_language else None,
        )
        self.routes = PlannerRoutes(config["api_base_url"])

        self.client = PlannerClient(
            self.transport,
            self.cached_client,
            self.routes,
            identity_provider=current_user_identity,
            home_timezone=self.home_timezone,
            today_provider=self.today,
        )
        self.repository = OfflineRepository(self.client, self.store, self.locks)
        self.planner = PlannerService(self.client, self.repository)
        self.submitter = MoveSubmitter(self.transport, self.routes, current_user_identity)
        self.cache_sync = CacheSync(self.store, self.locks)
        self.verifier = PostMoveVerifier(self.client, sleep=sleep)
        self.scheduler = VerificationScheduler()
        self.state = CalendarState(
            self.planner,
            self.submitter,
            self.cache_sync,
            self.verifier,
            self.scheduler,
            cached_client=self.cached_client,
            recorder=MoveLogRecorder(),
            today_provider=self.today,
        )

    def today(self):
        if self._today_provider is not None:
            return self._today_provider()
        return today(self.home_timezone)

    def clear_cache(self) -> int:
        """Drop every month envelope and every cached response."""
        removed = self.store.clear_all()
        self.http_cache.invalidate_all()
        log.info("Cleared %d cached month(s)", removed)
        return removed

    def cleanup(self):
        """Wait for background verifications, then release connections."""
        self.scheduler.shutdown(wait=True)
        close = getattr(self.transport, "close", None)
        if close is not None:
            close()
        try:
            database = get_db()
            if not database.is_closed():
                database.close()
        except RuntimeError:
            # Database not configured, nothing to close
            pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.cleanup()
