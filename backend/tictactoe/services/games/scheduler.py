from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from tictactoe import socketio


def run_in_background(app, label: str, fn: Callable, *args) -> None:
    """Run ``fn`` inside an app context on a Socket.IO background task.

    In TESTING mode the work runs inline for determinism. Failures are
    logged under ``label`` and never escape the task.
    """
    def _worker():
        with app.app_context():
            try:
                result = fn(*args)
                app.logger.info(f"[task-done] task={label} result={result}")
            except Exception:
                app.logger.exception(f"[task-failed] task={label}")

    if app.config.get('TESTING'):
        _worker()
    else:
        socketio.start_background_task(_worker)


class RoomSweeper:
    """Periodically evicts idle rooms and purges sessions nobody played in."""

    def __init__(self, app, coordinator, reconciler, interval: int = 300):
        self.app = app
        self.coordinator = coordinator
        self.reconciler = reconciler
        self.interval = interval
        self._running = False

    def sweep_once(self, now: Optional[datetime] = None):
        now = now or datetime.now(timezone.utc)
        # Session timestamps are naive UTC
        cutoff = now.astimezone(timezone.utc).replace(tzinfo=None) - timedelta(
            seconds=self.coordinator.idle_timeout_sec
        )
        with self.app.app_context():
            evicted = self.coordinator.evict_idle(now)
            purged = self.reconciler.purge_empty_sessions(
                keep=self.coordinator.registry.linked_session_ids(),
                created_before=cutoff,
            )
            self.app.logger.info(
                f"[sweep] evicted={len(evicted)} purged={purged} live_rooms={len(self.coordinator.registry)}"
            )
        return evicted, purged

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self.app.logger.info(f"[sweep-start] interval={self.interval}s")
        socketio.start_background_task(self._loop)

    def _loop(self) -> None:
        while self._running:
            socketio.sleep(self.interval)
            if not self._running:
                break
            try:
                self.sweep_once()
            except Exception:
                self.app.logger.exception("[sweep-failed]")

    def stop(self) -> None:
        self._running = False
