"""
TAT External Service Integrations
=================================

External services for TAT monitoring:
- YAML policy file watcher
- APScheduler for the periodic deadline check
"""

import threading
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from commhub.config import settings
from commhub.core.exceptions import ConfigurationException
from commhub.shared.infrastructure.logging import get_logger
from commhub.tat.application.services import ITATPolicyProvider
from commhub.tat.domain import TATPolicy

logger = get_logger(__name__)


class PolicyFileHandler(FileSystemEventHandler):
    """Watchdog event handler for TAT policy file changes."""

    def __init__(self, policy_manager: "TATPolicyManager", policy_path: Path):
        self.policy_manager = policy_manager
        self.policy_path = policy_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.policy_path.resolve():
            logger.info("TAT policy file changed", extra={"path": str(event.src_path)})
            self.policy_manager.reload()


class TATPolicyManager(ITATPolicyProvider):
    """
    Thread-safe TAT policy manager with hot-reload support.

    A missing file means the default policy. A broken file on reload keeps
    the last good policy.
    """

    def __init__(self):
        self._policy: Optional[TATPolicy] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Optional[Path] = None) -> TATPolicy:
        """
        Initial policy load.

        Raises:
            ConfigurationException: If the file exists but is not a valid policy
        """
        self._path = Path(path or settings.tat_policy_path)
        policy = self._load_from_file(self._path)
        with self._lock:
            self._policy = policy
        return policy

    def _load_from_file(self, path: Path) -> TATPolicy:
        if not path.exists():
            logger.warning("TAT policy file not found, using defaults", extra={"path": str(path)})
            return TATPolicy()

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            return TATPolicy.model_validate(data)
        except (yaml.YAMLError, ValidationError) as e:
            raise ConfigurationException(f"Invalid TAT policy file {path}: {e}")

    def reload(self) -> bool:
        """Reload policy from file."""
        if self._path is None:
            return False

        try:
            new_policy = self._load_from_file(self._path)
        except (ConfigurationException, OSError) as e:
            logger.error("Failed to reload TAT policy", extra={"path": str(self._path), "error": str(e)})
            return False

        with self._lock:
            self._policy = new_policy
        logger.info("TAT policy reloaded successfully", extra={"path": str(self._path)})
        return True

    def start_watching(self) -> None:
        """
        Start watching the policy file for changes.

        Skipped when the file does not exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("Policy file doesn't exist, skipping file watch", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            self._observer.schedule(
                PolicyFileHandler(self, self._path),
                str(self._path.parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Started watching policy file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static policy", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def policy(self) -> TATPolicy:
        with self._lock:
            if self._policy is None:
                raise RuntimeError("TAT policy not loaded")
            return self._policy

    def get_policy(self) -> TATPolicy:
        return self.policy


class TATScheduler:
    """
    Runs the TAT check on an interval with APScheduler.

    At most one check runs at a time; a check that is still running when the
    next tick fires makes that tick skip.
    """

    def __init__(
        self,
        interval_seconds: Optional[int] = None,
        scheduler: Optional[AsyncIOScheduler] = None
    ):
        self.interval_seconds = interval_seconds or settings.tat_check_interval_seconds
        self._scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[Any]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("TAT scheduler already running")
            return

        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="tat_deadline_check",
            name="TAT Deadline Check",
            misfire_grace_time=self.interval_seconds,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        if not self._scheduler.running:
            self._scheduler.start()
        self._running = True

        logger.info("TAT scheduler started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._owns_scheduler:
            self._scheduler.shutdown(wait=True)
        else:
            self._scheduler.remove_job("tat_deadline_check")

        self._running = False
        logger.info("TAT scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
