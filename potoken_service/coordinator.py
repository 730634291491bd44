import asyncio
import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Set, Tuple

from potoken_service.errors import AttemptInProgress, ExtractionFailed, ExtractionTimeout
from potoken_service.schemas import MIN_TOKEN_LENGTH, TokenRecord

logger = logging.getLogger(__name__)

# Upper bound on a whole attempt, covers a browser that never starts
ATTEMPT_HARD_TIMEOUT = 600


class RefreshOutcome(enum.Enum):
    ACCEPTED = "accepted"
    ALREADY_PENDING = "already_pending"


class CoordinatorState(enum.Enum):
    IDLE = "idle"
    REFRESH_PENDING = "refresh_pending"
    IN_FLIGHT = "in_flight"


class UpdateState:
    """
    Lock-guarded state machine behind the coordinator.

    A pending refresh is only cleared by ``begin_attempt``, and ``begin_attempt``
    succeeds for at most one caller until ``finish_attempt`` runs.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._state = CoordinatorState.IDLE

    @property
    def current(self) -> CoordinatorState:
        return self._state

    @property
    def in_flight(self) -> bool:
        return self._state is CoordinatorState.IN_FLIGHT

    @property
    def refresh_pending(self) -> bool:
        return self._state is CoordinatorState.REFRESH_PENDING

    def request_refresh(self) -> RefreshOutcome:
        with self._lock:
            if self._state is CoordinatorState.IDLE:
                self._state = CoordinatorState.REFRESH_PENDING
                return RefreshOutcome.ACCEPTED
            return RefreshOutcome.ALREADY_PENDING

    def begin_attempt(self) -> Tuple[bool, bool]:
        """Returns (started, consumed_pending_refresh)."""
        with self._lock:
            if self._state is CoordinatorState.IN_FLIGHT:
                return False, False
            forced = self._state is CoordinatorState.REFRESH_PENDING
            self._state = CoordinatorState.IN_FLIGHT
            return True, forced

    def finish_attempt(self) -> None:
        with self._lock:
            self._state = CoordinatorState.IDLE


@dataclass(frozen=True)
class AttemptOutcome:
    trigger: str
    started_at: float
    finished_at: float
    record: Optional[TokenRecord] = None
    error: Optional[BaseException] = None
    skipped: bool = False

    @property
    def succeeded(self) -> bool:
        return self.record is not None


class UpdateCoordinator:
    """
    Owns the cached TokenRecord and decides when the browser driver runs.

    At most one attempt is in flight at a time. Forced refresh requests merge
    into a single pending flag, and readers always get the last good record
    without waiting on a running attempt.
    """

    def __init__(
        self,
        driver,
        min_token_length: int = MIN_TOKEN_LENGTH,
        attempt_timeout: float = ATTEMPT_HARD_TIMEOUT,
        listeners: Iterable = (),
        clock: Callable[[], float] = time.time,
        log: Optional[logging.Logger] = None,
    ):
        self._driver = driver
        self.min_token_length = min_token_length
        self.attempt_timeout = attempt_timeout
        self._listeners = list(listeners)
        self._clock = clock
        self._log = log or logger

        self._state = UpdateState()
        self._current: Optional[TokenRecord] = None
        self._attempt_tasks: Set[asyncio.Task] = set()
        self._schedule_task: Optional[asyncio.Task] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def state(self) -> CoordinatorState:
        return self._state.current

    @property
    def is_scheduled(self) -> bool:
        return self._schedule_task is not None and not self._schedule_task.done()

    def read(self) -> Optional[TokenRecord]:
        return self._current

    def request_refresh(self) -> RefreshOutcome:
        """Ask for a new token as soon as possible."""
        if self._state.in_flight:
            self._log.info("Update process is already running")
            return RefreshOutcome.ALREADY_PENDING

        outcome = self._state.request_refresh()
        if outcome is RefreshOutcome.ALREADY_PENDING:
            self._log.info("Forced update has already been requested")
            return outcome

        self._log.info("Forced update requested")
        if self._loop is not None and self._wakeup is not None:
            self._loop.call_soon_threadsafe(self._wakeup.set)
        return outcome

    async def run_once(self) -> TokenRecord:
        """
        Run a single attempt and wait for it.

        Raises:
            AttemptInProgress: another attempt was already running.
            ExtractionFailed: the attempt ended without a token.
        """
        outcome = await self._spawn_attempt("on-demand")
        if outcome.skipped:
            raise AttemptInProgress("an update is already in progress")
        if outcome.error is not None:
            raise outcome.error
        return outcome.record

    def start_periodic_schedule(self, interval: float) -> asyncio.Task:
        if self.is_scheduled:
            raise RuntimeError("periodic schedule is already running")
        if interval <= 0:
            raise ValueError("interval must be positive")

        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        self._schedule_task = asyncio.create_task(self._schedule(interval, self._wakeup))
        return self._schedule_task

    def stop(self) -> None:
        """Cancel future ticks. An attempt already running is left to finish."""
        if self._schedule_task is not None:
            self._schedule_task.cancel()
            self._schedule_task = None
            self._wakeup = None
            self._loop = None
            self._log.info("Periodic schedule stopped")

    async def drain(self) -> None:
        """Wait for any in-flight attempt to finish."""
        if self._attempt_tasks:
            await asyncio.gather(*self._attempt_tasks, return_exceptions=True)

    async def _schedule(self, interval: float, wakeup: asyncio.Event) -> None:
        self._log.info(f"Starting periodic updates every {interval}s")
        loop = asyncio.get_running_loop()
        await self._spawn_attempt("scheduled")
        while True:
            deadline = loop.time() + interval
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    await asyncio.wait_for(wakeup.wait(), timeout=remaining)
                except asyncio.TimeoutError:
                    break
                wakeup.clear()
                # A wakeup whose refresh was already consumed by an attempt is stale
                if self._state.refresh_pending:
                    break
            await self._spawn_attempt("scheduled")

    async def _spawn_attempt(self, trigger: str) -> AttemptOutcome:
        # Shielded so cancelling the caller (e.g. stop()) never cancels the attempt
        task = asyncio.ensure_future(self._attempt(trigger))
        self._attempt_tasks.add(task)
        task.add_done_callback(self._attempt_tasks.discard)
        return await asyncio.shield(task)

    async def _attempt(self, trigger: str) -> AttemptOutcome:
        now = self._clock()
        started, forced = self._state.begin_attempt()
        if not started:
            self._log.info("Update is already in progress")
            return AttemptOutcome(trigger=trigger, started_at=now, finished_at=now, skipped=True)

        if forced:
            trigger = "forced"
        self._log.info(f"Initiating {trigger} update")

        record = None
        error = None
        try:
            record = await self._extract()
        except ExtractionTimeout as e:
            self._log.warning(f"Update failed: {e}")
            error = e
        except ExtractionFailed as e:
            self._log.error(f"Update failed: {e}")
            error = e
        except Exception as e:
            self._log.exception("Update failed with an unexpected error")
            error = ExtractionFailed(f"unexpected error: {type(e).__name__}: {e}")
            error.__cause__ = e
        finally:
            self._state.finish_attempt()

        if record is not None:
            self._current = record
            self._log.info(f"New token: {record.to_json()}")
            if not record.is_plausible(self.min_token_length):
                self._log.warning(
                    f"Token is only {len(record.credential_token)} characters long "
                    f"(expected at least {self.min_token_length}), it may not be accepted"
                )

        outcome = AttemptOutcome(
            trigger=trigger,
            started_at=now,
            finished_at=self._clock(),
            record=record,
            error=error,
        )
        await self._notify(outcome)
        return outcome

    async def _extract(self) -> TokenRecord:
        try:
            credentials = await asyncio.wait_for(self._driver.extract_once(), timeout=self.attempt_timeout)
        except asyncio.TimeoutError:
            raise ExtractionTimeout(
                f"hard limit of {self.attempt_timeout}s exceeded, the browser may be failing to start"
            ) from None
        if credentials is None:
            raise ExtractionFailed("browser session returned no token")
        return TokenRecord(
            captured_at=int(self._clock()),
            credential_token=credentials.credential_token,
            session_id=credentials.session_id,
        )

    async def _notify(self, outcome: AttemptOutcome) -> None:
        for listener in self._listeners:
            try:
                await listener.attempt_finished(outcome)
            except Exception:
                self._log.exception(f"Attempt listener {listener!r} failed")
