"""
Bootstrap supervisor owning the queue consumer's lifetime.

State machine:

    stopped -> starting -> running -> stopping -> stopped
    starting -> stopped   (all connection attempts failed)

Only the connection is retried here; individual message failures are the
consumer's business. A failed start leaves the service stopped without
raising, so the host process keeps serving and can start it again later.
"""

import signal
import sys
import threading
import time
from enum import Enum
from typing import Any, Callable

from claim_routing.core.audit import error_entry
from claim_routing.core.ports import AuditSink
from claim_routing.ingestion.consumer import ClaimQueueConsumer
from claim_routing.observability.logger import get_logger
from claim_routing.observability.metrics import (
    bootstrap_attempts_total,
    increment_counter,
    set_supervisor_state,
)

logger = get_logger(__name__)

SERVICE_NAME = "bootstrap_supervisor"


class SupervisorState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


_ALL_STATES = [state.value for state in SupervisorState]


class BootstrapSupervisor:
    """
    Starts and stops the claim consumer with bounded retry.

    The consumer loop runs on a worker thread; ``stop`` performs the
    ordered shutdown: stop consuming, drain the in-flight message, close
    the connection.
    """

    def __init__(
        self,
        consumer: ClaimQueueConsumer,
        audit: AuditSink | None = None,
        max_retries: int = 3,
        retry_delay: float = 10.0,
        drain_timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            consumer: Queue consumer to supervise
            audit: Audit trail for failed attempts
            max_retries: Connection attempts per start
            retry_delay: Fixed delay between attempts, in seconds
            drain_timeout: Maximum wait for the in-flight message on shutdown
            sleep: Delay function
        """
        self.consumer = consumer
        self.audit = audit
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.drain_timeout = drain_timeout
        self._sleep = sleep

        self._state = SupervisorState.STOPPED
        self._lock = threading.RLock()
        self._worker: threading.Thread | None = None
        self._shutdown = threading.Event()
        self.attempts = 0
        self.last_error: str | None = None
        set_supervisor_state(self._state.value, _ALL_STATES)

    @property
    def state(self) -> SupervisorState:
        return self._state

    def _set_state(self, state: SupervisorState) -> None:
        previous, self._state = self._state, state
        set_supervisor_state(state.value, _ALL_STATES)
        logger.info(f"Supervisor state: {previous.value} -> {state.value}")

    # =======================
    # START / STOP
    # =======================

    def start(self) -> bool:
        """
        Connect the consumer and start the consumption thread.

        Makes up to ``max_retries`` attempts separated by ``retry_delay``.
        Each failure is logged and audited.

        Returns:
            True if running, False if all attempts failed (state is stopped)
        """
        with self._lock:
            if self._state in (SupervisorState.RUNNING, SupervisorState.STARTING):
                logger.info(f"Start ignored: supervisor is {self._state.value}")
                return self._state == SupervisorState.RUNNING
            self._set_state(SupervisorState.STARTING)
            self._shutdown.clear()
            self.attempts = 0

            for attempt in range(1, self.max_retries + 1):
                if self._shutdown.is_set():
                    logger.info("Start aborted by shutdown request")
                    break
                self.attempts = attempt
                try:
                    self.consumer.connect()
                except Exception as e:  # noqa: BLE001 - a failed start must not crash the host
                    self._record_failure(attempt, e)
                    if attempt < self.max_retries:
                        self._sleep(self.retry_delay)
                    continue

                increment_counter(bootstrap_attempts_total, result="success")
                self.last_error = None
                self._worker = threading.Thread(
                    target=self._consume,
                    name="claim-consumer",
                    daemon=True,
                )
                self._set_state(SupervisorState.RUNNING)
                self._worker.start()
                logger.info(f"Claim consumer started after {attempt} attempt(s)")
                return True

            self._set_state(SupervisorState.STOPPED)
            logger.error(
                f"Claim consumer not started: {self.max_retries} connection attempts failed; "
                "start it manually once the queue is reachable"
            )
            return False

    def stop(self) -> None:
        """Stop consuming, drain the in-flight message and close the connection."""
        if self._state == SupervisorState.STARTING:
            # Abort the retry loop; start() ends in stopped
            self._shutdown.set()
            return
        with self._lock:
            if self._state in (SupervisorState.STOPPED, SupervisorState.STOPPING):
                return
            self._set_state(SupervisorState.STOPPING)

            self.consumer.stop()
            if not self.consumer.wait_for_drain(self.drain_timeout):
                logger.warning(
                    f"In-flight message not drained within {self.drain_timeout}s; "
                    "its offset stays uncommitted and will be redelivered"
                )
            worker = self._worker
            if worker is not None and worker is not threading.current_thread():
                worker.join(self.drain_timeout)
            self.consumer.close()
            self._worker = None
            self._set_state(SupervisorState.STOPPED)
            self._shutdown.set()

    def _consume(self) -> None:
        try:
            self.consumer.run()
        except Exception as e:  # noqa: BLE001 - reported below, then the supervisor stops
            self.last_error = f"{type(e).__name__}: {e}"
            logger.error(f"Claim consumer crashed: {self.last_error}", exc_info=True)
            self._audit(error_entry(e, service=SERVICE_NAME, action="consumer_crashed"))
            threading.Thread(target=self.stop, name="claim-consumer-stop", daemon=True).start()

    def _record_failure(self, attempt: int, error: Exception) -> None:
        self.last_error = f"{type(error).__name__}: {error}"
        increment_counter(bootstrap_attempts_total, result="failure")
        logger.warning(f"Queue connection attempt {attempt}/{self.max_retries} failed: {self.last_error}")
        self._audit(error_entry(
            error,
            service=SERVICE_NAME,
            action="bootstrap_failed",
            payload={"attempt": attempt, "max_retries": self.max_retries, "retry_delay": self.retry_delay},
        ))

    def _audit(self, entry) -> None:
        if self.audit is None:
            return
        try:
            self.audit.record(entry)
        except Exception as e:  # noqa: BLE001 - the audit store may be what is down
            logger.error(f"Could not persist supervisor audit entry ({entry.action}): {e}")

    # =======================
    # PROCESS INTEGRATION
    # =======================

    def install_signal_handlers(self) -> None:
        """
        Route SIGTERM/SIGINT and uncaught errors to an ordered shutdown.

        Must be called from the main thread.
        """
        def handle_signal(signum, frame):
            logger.info(f"Received signal {signal.Signals(signum).name}, shutting down")
            self.stop()

        def handle_uncaught(exc_type, exc_value, exc_tb):
            logger.critical(
                f"Uncaught exception: {exc_type.__name__}: {exc_value}",
                exc_info=(exc_type, exc_value, exc_tb),
            )
            self.stop()

        def handle_thread_exception(args):
            logger.critical(
                f"Uncaught exception in thread {args.thread.name if args.thread else '?'}: "
                f"{args.exc_type.__name__}: {args.exc_value}",
                exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
            )
            self.stop()

        signal.signal(signal.SIGTERM, handle_signal)
        signal.signal(signal.SIGINT, handle_signal)
        sys.excepthook = handle_uncaught
        threading.excepthook = handle_thread_exception

    def wait(self, timeout: float | None = None) -> bool:
        """
        Block until the supervisor has shut down.

        Returns:
            True if shut down within the timeout
        """
        return self._shutdown.wait(timeout)

    def run_forever(self, poll_interval: float = 1.0) -> bool:
        """
        Start the consumer and block until an ordered shutdown completes.

        Returns:
            False if the consumer never started, True after shutdown
        """
        if not self.start():
            return False
        while not self.wait(poll_interval):
            pass
        return True

    def status(self) -> dict[str, Any]:
        """State, attempts and consumer connectivity."""
        return {
            "state": self._state.value,
            "isRunning": self._state == SupervisorState.RUNNING,
            "attempts": self.attempts,
            "maxRetries": self.max_retries,
            "retryDelay": self.retry_delay,
            "lastError": self.last_error,
            "consumer": self.consumer.status(),
        }
