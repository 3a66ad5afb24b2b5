"""Ordered execution of deployment steps across the local and remote shells."""

from __future__ import annotations

import logging as py_logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from gcdeploy.errors import GcDeployError
from gcdeploy.loop.timers import Scheduler, TimerHandle
from gcdeploy.models import DeploymentStep, Target

logger = py_logging.getLogger(__name__)

DEFAULT_REMOTE_SETTLE_SECONDS = 2.0
DEFAULT_STEP_GAP_SECONDS = 0.5


class SequencerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    ABORTED = "aborted"


class StepEventKind(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class DeploymentCursor:
    current_index: int = 0
    running: bool = False
    complete: bool = False


@dataclass(frozen=True)
class StepEvent:
    kind: StepEventKind
    index: int
    total: int
    step: DeploymentStep | None = None
    detail: str = ""


Dispatch = Callable[[str], None]


class DeploymentSequencer:
    """Drive a plan one step at a time.

    Local steps wait for ``local_finished``/``local_failed``. Remote steps are
    considered done once ``remote_settle_seconds`` have passed after the write,
    because the shell gives no completion signal. All waiting is done with
    scheduler timers so the loop thread never sleeps.
    """

    def __init__(
        self,
        steps: Sequence[DeploymentStep],
        *,
        dispatch_local: Dispatch,
        dispatch_remote: Dispatch,
        scheduler: Scheduler,
        remote_settle_seconds: float = DEFAULT_REMOTE_SETTLE_SECONDS,
        step_gap_seconds: float = DEFAULT_STEP_GAP_SECONDS,
        on_event: Callable[[StepEvent], None] | None = None,
    ) -> None:
        self.steps = tuple(steps)
        self.cursor = DeploymentCursor()
        self.state = SequencerState.IDLE
        self.error = ""
        self.dispatched: list[int] = []
        self.remote_settle_seconds = remote_settle_seconds
        self.step_gap_seconds = step_gap_seconds
        self._dispatch_local = dispatch_local
        self._dispatch_remote = dispatch_remote
        self._scheduler = scheduler
        self._on_event = on_event
        self._started = False
        self._awaiting_local = False
        self._timer: TimerHandle | None = None

    @property
    def total(self) -> int:
        return len(self.steps)

    @property
    def running(self) -> bool:
        return self.state is SequencerState.RUNNING

    @property
    def finished(self) -> bool:
        return self.state in (SequencerState.COMPLETE, SequencerState.ABORTED)

    @property
    def awaiting_local(self) -> bool:
        return self._awaiting_local

    def start(self) -> bool:
        if self._started:
            logger.debug("Deployment already started; ignoring start state=%s", self.state.value)
            return False
        self._started = True
        if not self.steps:
            self._complete()
            return True
        logger.info("Deployment started steps=%s", self.total)
        self.state = SequencerState.RUNNING
        self._dispatch(0)
        return True

    def local_finished(self, returncode: int = 0) -> bool:
        """Report completion of the local step; returns False if none was pending."""
        if not self._awaiting_local or not self.running:
            return False
        self._awaiting_local = False
        if returncode != 0:
            self._abort(f"exit status {returncode}")
            return True
        self.cursor.running = False
        self._timer = self._scheduler.call_later(
            self.step_gap_seconds,
            self._advance,
            label=f"step-gap index={self.cursor.current_index}",
        )
        return True

    def local_failed(self, error: str) -> bool:
        if not self._awaiting_local or not self.running:
            return False
        self._awaiting_local = False
        self._abort(error)
        return True

    def _dispatch(self, index: int) -> None:
        step = self.steps[index]
        self.cursor.current_index = index
        self.cursor.running = True
        self.dispatched.append(index)
        self._emit(StepEventKind.STARTED, step=step)
        logger.debug("Dispatching step index=%s target=%s", index, step.target.value)
        try:
            if step.target is Target.LOCAL:
                self._awaiting_local = True
                self._dispatch_local(step.command)
                return
            self._dispatch_remote(step.command + "\n")
        except GcDeployError as exc:
            self._awaiting_local = False
            self._abort(exc.message)
            return
        self._timer = self._scheduler.call_later(
            self.remote_settle_seconds,
            self._advance,
            label=f"remote-settle index={index}",
        )

    def _advance(self) -> None:
        self._timer = None
        if not self.running:
            return
        next_index = self.cursor.current_index + 1
        if next_index >= self.total:
            self._complete()
            return
        self._dispatch(next_index)

    def _complete(self) -> None:
        self.state = SequencerState.COMPLETE
        self.cursor.current_index = self.total
        self.cursor.running = False
        self.cursor.complete = True
        logger.info("Deployment complete steps=%s", self.total)
        self._emit(StepEventKind.COMPLETED)

    def _abort(self, reason: str) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.state = SequencerState.ABORTED
        self.cursor.running = False
        self.error = reason
        logger.warning("Deployment aborted index=%s error=%s", self.cursor.current_index, reason)
        self._emit(StepEventKind.ABORTED, step=self.steps[self.cursor.current_index], detail=reason)

    def _emit(self, kind: StepEventKind, *, step: DeploymentStep | None = None, detail: str = "") -> None:
        if self._on_event is None:
            return
        self._on_event(
            StepEvent(
                kind=kind,
                index=self.cursor.current_index,
                total=self.total,
                step=step,
                detail=detail,
            )
        )
