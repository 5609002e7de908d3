"""Goalify Sync - Main entry point."""

import argparse
import getpass
import logging
import os
import signal
import sys
import threading
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from . import __version__
from .auth import KeychainManager, StoredCredentials
from .config import Config, setup_logging
from .focus import FocusTimerStateMachine, SchedulerCadence
from .notifications import notify_focus_complete
from .storage import RecordStore, SQLiteKeyValueStore
from .sync import ConnectivityMonitor, GoalifyClient, SyncEngine, SyncStateStore, SyncStats

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "sync_job"
FOCUS_WAKE_JOB_ID = "focus_wake_job"
FOCUS_WAKE_INTERVAL = 60  # seconds


class SyncCoordinator:
    """Owns the background scheduler for periodic sync and focus wake-ups."""

    def __init__(
        self,
        config: Config,
        sync_engine: SyncEngine,
        focus: Optional[FocusTimerStateMachine] = None,
        scheduler: Optional[BackgroundScheduler] = None,
        on_sync_complete: Optional[Callable[[SyncStats], None]] = None,
    ) -> None:
        self.config = config
        self.sync_engine = sync_engine
        self.focus = focus
        self.scheduler = scheduler or BackgroundScheduler()
        self._on_sync_complete = on_sync_complete
        self.last_stats: Optional[SyncStats] = None

    def start(self) -> None:
        """Run the initial sync and start the periodic jobs."""
        self._do_sync()

        self.scheduler.add_job(
            self._do_sync,
            trigger=IntervalTrigger(seconds=self.config.sync.interval_seconds),
            id=SYNC_JOB_ID,
            replace_existing=True,
            max_instances=1,
        )
        if self.focus is not None:
            self.scheduler.add_job(
                self._wake_focus,
                trigger=IntervalTrigger(seconds=FOCUS_WAKE_INTERVAL),
                id=FOCUS_WAKE_JOB_ID,
                replace_existing=True,
            )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(f"Sync loop started (interval: {self.config.sync.interval_seconds}s)")

    def stop(self) -> None:
        """Cancel in-flight sync work and shut down the scheduler if running."""
        self.sync_engine.cancel()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def reschedule(self, interval_seconds: int) -> None:
        """Change the sync interval on the fly."""
        self.config.sync.interval_seconds = interval_seconds
        if self.scheduler.running:
            self.scheduler.reschedule_job(SYNC_JOB_ID, trigger=IntervalTrigger(seconds=interval_seconds))

    def trigger_sync(self, job_id: str = "immediate_sync") -> None:
        """Schedule a one-off sync (e.g. after wake or network change)."""
        if self.scheduler.running:
            self.scheduler.add_job(self._do_sync, id=job_id, replace_existing=True)

    # -- internal ---------------------------------------------------------

    def _do_sync(self) -> None:
        """Perform a sync cycle."""
        try:
            stats = self.sync_engine.sync()
        except Exception as e:
            logger.exception(f"Sync error: {e}")
            return

        self.last_stats = stats
        if stats.success:
            merged = stats.merge.applied if stats.merge else 0
            logger.info(f"Sync complete: {merged} records merged, {stats.pushed} pushed")
        else:
            logger.warning(f"Sync finished with errors: {'; '.join(stats.errors)}")

        if self._on_sync_complete:
            self._on_sync_complete(stats)

    def _wake_focus(self) -> None:
        try:
            self.focus.resume_from_background()
        except Exception as e:
            logger.exception(f"Focus wake-up failed: {e}")


class GoalifySyncApp:
    """Wires the stores, the sync engine and the focus timer together."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config.load()
        setup_logging(self.config.debug_mode)

        logger.info(f"Goalify Sync {__version__} starting...")
        logger.info(f"Using API URL: {self.config.sync.api_url}")

        self.keychain = KeychainManager()
        self.client = GoalifyClient(
            api_url=self.config.sync.api_url,
            token_provider=self.keychain.token,
            timeout=self.config.sync.timeout_seconds,
            probe_timeout=self.config.sync.probe_timeout_seconds,
        )
        self.kv = SQLiteKeyValueStore()
        self.records = RecordStore()
        self.connectivity = ConnectivityMonitor(
            self.client.ping,
            ttl_seconds=self.config.sync.reachability_ttl_seconds,
        )
        self.sync_engine = SyncEngine(
            client=self.client,
            records=self.records,
            state=SyncStateStore(self.kv),
            connectivity=self.connectivity,
            debounce_seconds=self.config.sync.fetch_debounce_seconds,
        )

        self.scheduler = BackgroundScheduler()
        self.focus = FocusTimerStateMachine(
            self.kv,
            cadence=SchedulerCadence(self.scheduler),
            notifier=notify_focus_complete if self.config.focus.notify_on_complete else None,
            tick_interval=self.config.focus.tick_interval_seconds,
            default_duration=self.config.focus.default_duration_seconds,
        )
        self.coordinator = SyncCoordinator(
            config=self.config,
            sync_engine=self.sync_engine,
            focus=self.focus,
            scheduler=self.scheduler,
        )

        self._shutdown_done = False
        self._shutdown_event = threading.Event()

    def run(self) -> None:
        """Run until interrupted."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        if self.focus.restore_from_persisted_state():
            logger.info(f"Resumed focus session ({self.focus.formatted_time()})")

        if not self.keychain.has_credentials():
            logger.warning("No stored auth token; run `goalify-sync login` to store one")

        self.coordinator.start()
        logger.info("Goalify Sync running")
        try:
            self._shutdown_event.wait()
        finally:
            self._shutdown()

    def _signal_handler(self, signum, frame) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}")
        self._shutdown_event.set()

    def _shutdown(self) -> None:
        """Shutdown the application. Safe to call multiple times."""
        if self._shutdown_done:
            return
        self._shutdown_done = True
        logger.info("Shutting down...")

        # The focus snapshot stays on disk for the next start.
        self.focus.close()
        self.coordinator.stop()
        self.client.close()
        self.records.close()
        self.kv.close()

        logger.info("Shutdown complete")

    def __enter__(self) -> "GoalifySyncApp":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._shutdown()


class SingleInstanceLock:
    """File-based single-instance lock using advisory locking.

    The local stores assume a single writer process.
    """

    def __init__(self, path: Optional[str] = None):
        self._file = None
        self._path = path or os.path.join(Config.get_config_dir(), ".goalify-sync.lock")

    def acquire(self) -> bool:
        """Try to acquire the lock. Returns True on success."""
        os.makedirs(os.path.dirname(self._path), exist_ok=True)
        self._file = open(self._path, "a+")  # noqa: SIM115
        try:
            if sys.platform == "win32":
                import msvcrt

                msvcrt.locking(self._file.fileno(), msvcrt.LK_NBLCK, 1)
            else:
                import fcntl

                fcntl.flock(self._file, fcntl.LOCK_EX | fcntl.LOCK_NB)
            self._file.seek(0)
            self._file.truncate(0)
            self._file.write(str(os.getpid()))
            self._file.flush()
            return True
        except OSError:
            self._file.close()
            self._file = None
            return False

    def release(self) -> None:
        """Release the lock and clean up."""
        if self._file:
            try:
                if sys.platform == "win32":
                    import msvcrt

                    try:
                        msvcrt.locking(self._file.fileno(), msvcrt.LK_UNLCK, 1)
                    except OSError:
                        pass
                else:
                    import fcntl

                    fcntl.flock(self._file, fcntl.LOCK_UN)
                self._file.close()
                os.unlink(self._path)
            except OSError:
                pass
            self._file = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="goalify-sync", description="Goalify sync agent and focus timer")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Run the agent when omitted")
    login_parser = subparsers.add_parser("login", help="Store the API auth token in the system keychain")
    login_parser.add_argument("--token", "-t", help="Auth token (prompted for when omitted)")
    login_parser.add_argument("--user-id", help="User id to store alongside the token")
    subparsers.add_parser("logout", help="Remove the stored auth token")

    return parser.parse_args(argv)


def login(token: str, user_id: Optional[str] = None, keychain: Optional[KeychainManager] = None) -> bool:
    """Store an auth token for the sync client."""
    token = token.strip()
    if not token:
        print("No token given.")
        return False
    keychain = keychain or KeychainManager()
    if not keychain.store(StoredCredentials(auth_token=token, user_id=user_id)):
        print("Failed to store the token in the system keychain.")
        return False
    print("Token stored.")
    return True


def logout(keychain: Optional[KeychainManager] = None) -> bool:
    """Remove the stored auth token."""
    keychain = keychain or KeychainManager()
    if not keychain.delete():
        print("Failed to remove the token from the system keychain.")
        return False
    print("Token removed.")
    return True


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)

    if args.command == "login":
        token = args.token if args.token is not None else getpass.getpass("Auth token: ")
        sys.exit(0 if login(token, args.user_id) else 1)
    if args.command == "logout":
        sys.exit(0 if logout() else 1)

    instance_lock = SingleInstanceLock()
    if not instance_lock.acquire():
        print("Goalify Sync is already running.")
        sys.exit(0)

    try:
        with GoalifySyncApp() as app:
            app.run()
    finally:
        instance_lock.release()


if __name__ == "__main__":
    main()
