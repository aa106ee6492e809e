"""Pipeline event system and run-level cancellation.

Provides a lightweight callback mechanism that the pipeline emits events
through, and a cancellation token that is passed explicitly down the call
chain to stop scheduling new transcription requests.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class PipelineEvent:
    """A progress event emitted during pipeline execution.

    Attributes:
        stage: Pipeline stage name (parse, audio, segment, transcribe, align).
        progress: Progress within this stage, 0.0 to 1.0.
        message: Human-readable status message.
        data: Optional payload (e.g. segment index, counts).
    """

    stage: str
    progress: float
    message: str
    data: dict | None = field(default=None)


EventCallback = Callable[[PipelineEvent], None]


class CancellationToken:
    """Run-level cancellation signal shared by all workers of a run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True if cancelled meanwhile."""
        return self._event.wait(timeout)
