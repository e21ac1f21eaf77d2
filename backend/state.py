# backend/state.py
import logging
from enum import Enum
from typing import Optional

from .errors import InvalidTransition
from .model import Mode

logger = logging.getLogger(__name__)


class GenerationState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"
    TIMEOUT = "timeout"


class GenerationStateMachine:
    """
    What the studio is doing right now.

        idle --begin--> loading --succeed--> idle
                        loading --fail--> error
                        loading --time_out--> timeout
        error/timeout --begin (retry)--> loading
        error/timeout --dismiss--> idle

    The loading state doubles as the per-session submit mutex.
    """

    def __init__(self):
        self.state = GenerationState.IDLE
        self.message: Optional[str] = None
        self.mode: Optional[Mode] = None
        self.job_id: Optional[str] = None

    @property
    def is_loading(self) -> bool:
        return self.state == GenerationState.LOADING

    @property
    def is_settled_with_problem(self) -> bool:
        return self.state in (GenerationState.ERROR, GenerationState.TIMEOUT)

    def _move(self, allowed, target: GenerationState, message: Optional[str] = None) -> None:
        if self.state not in allowed:
            raise InvalidTransition(f"Cannot go from {self.state.value} to {target.value}")
        logger.debug("Generation state %s -> %s (job %s)", self.state.value, target.value, self.job_id)
        self.state = target
        self.message = message

    def begin(self, mode: Mode, job_id: str) -> None:
        self._move((GenerationState.IDLE, GenerationState.ERROR, GenerationState.TIMEOUT), GenerationState.LOADING)
        self.mode = mode
        self.job_id = job_id

    def succeed(self) -> None:
        # success is transient: side effects already ran, so land straight in idle
        self._move((GenerationState.LOADING,), GenerationState.IDLE)
        self.mode = None

    def fail(self, message: str) -> None:
        self._move((GenerationState.LOADING,), GenerationState.ERROR, message)

    def time_out(self, message: str) -> None:
        self._move((GenerationState.LOADING,), GenerationState.TIMEOUT, message)

    def dismiss(self) -> None:
        self._move((GenerationState.ERROR, GenerationState.TIMEOUT), GenerationState.IDLE)
        self.mode = None
        self.job_id = None

    def locks_mode_switch(self, target: Mode) -> bool:
        """A running video job pins the studio to video mode."""
        return self.is_loading and self.mode == "video" and target == "photo"
