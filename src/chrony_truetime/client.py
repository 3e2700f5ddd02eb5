"""
TrueTimeClient - the library surface.

Bundles a transport Session, an IntervalClock and the consistency
primitives behind one object:

    with TrueTimeClient.open() as tt:
        reading = tt.get()
        ts = tt.consistent_operation(prepare, commit)

Readings taken inside a commit-wait go through get(), so they are
counted in `stats` like any other.

Each client owns one socket; use one client per thread.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from .consistency.primitives import CommitFunc, PrepareFunc, consistent_operation, wait_until_after
from .interfaces.tracking import Reading, TrackingResponse
from .protocol.candm import DEFAULT_CANDM_HOST, DEFAULT_CANDM_PORT
from .timing.interval_clock import IntervalClock
from .transport.session import (
    DEFAULT_SYNC_ATTEMPTS,
    DEFAULT_SYNC_RETRY_INTERVAL,
    DEFAULT_TIMEOUT,
    Session,
)

logger = logging.getLogger(__name__)


class TrueTimeClient:
    """TrueTime-style clock backed by a local chronyd."""

    def __init__(self, session: Session, time_source: Callable[[], int] = time.time_ns):
        self.session = session
        self.clock = IntervalClock(session, time_source=time_source)
        self.stats: Dict[str, Any] = {
            'start_time': time.time(),
            'readings': 0,
            'waits': 0,
            'operations': 0,
            'errors': 0,
        }

    @classmethod
    def open(
        cls,
        host: str = DEFAULT_CANDM_HOST,
        port: int = DEFAULT_CANDM_PORT,
        timeout: float = DEFAULT_TIMEOUT,
        wait_for_sync: bool = True,
        sync_attempts: int = DEFAULT_SYNC_ATTEMPTS,
        max_sync_uncertainty_ms: float = 20.0,
        sync_retry_interval: float = DEFAULT_SYNC_RETRY_INTERVAL,
        rng=None,
    ) -> "TrueTimeClient":
        """
        Open a session with chronyd, optionally gated on synchronisation.

        Raises:
            ConnectError: the socket could not be set up
            SyncNotAchievedError: wait_for_sync gave up
            TransportError: a sync query failed
        """
        session = Session.open(host, port, timeout=timeout, rng=rng)
        try:
            if wait_for_sync:
                session.wait_for_sync(
                    max_attempts=sync_attempts,
                    max_uncertainty_ns=int(max_sync_uncertainty_ms * 1_000_000),
                    retry_interval=sync_retry_interval,
                )
        except Exception:
            session.close()
            raise
        return cls(session)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "TrueTimeClient":
        """Open a client from a configuration dictionary (see main.load_config)."""
        daemon = config.get('daemon', {})
        sync = config.get('sync', {})
        return cls.open(
            host=daemon.get('host', DEFAULT_CANDM_HOST),
            port=daemon.get('port', DEFAULT_CANDM_PORT),
            timeout=daemon.get('timeout', DEFAULT_TIMEOUT),
            wait_for_sync=sync.get('wait_for_sync', True),
            sync_attempts=sync.get('max_attempts', DEFAULT_SYNC_ATTEMPTS),
            max_sync_uncertainty_ms=sync.get('max_uncertainty_ms', 20.0),
            sync_retry_interval=sync.get('retry_interval', DEFAULT_SYNC_RETRY_INTERVAL),
        )

    @property
    def last_reading(self) -> Optional[Reading]:
        return self.clock.last_reading

    @property
    def last_tracking(self) -> Optional[TrackingResponse]:
        return self.clock.last_tracking

    def tracking(self) -> TrackingResponse:
        """Raw tracking reply, as `chronyc tracking` would show it."""
        return self.session.query()

    def local_now_ns(self) -> int:
        return self.clock.local_now_ns()

    def get(self) -> Reading:
        try:
            reading = self.clock.get()
        except Exception:
            self.stats['errors'] += 1
            raise
        self.stats['readings'] += 1
        return reading

    def wait_until_after(
        self,
        target_ns: int,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> Reading:
        self.stats['waits'] += 1
        return wait_until_after(self, target_ns, cancel=cancel, timeout=timeout)

    def consistent_operation(
        self,
        prepare: PrepareFunc,
        commit: CommitFunc,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> int:
        ts = consistent_operation(self, prepare, commit, cancel=cancel, timeout=timeout)
        self.stats['operations'] += 1
        return ts

    def close(self):
        self.session.close()

    def __enter__(self) -> "TrueTimeClient":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
