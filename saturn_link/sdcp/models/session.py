"""Print session bookkeeping and progress estimation."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from saturn_link.sdcp.const import LOGGER

from .enums import SemanticState

if TYPE_CHECKING:
    from saturn_link.sdcp.translator import StatusTranslation

    from .status import PrinterStatus

CALCULATING = "Calculating..."


@dataclass(frozen=True)
class PrintSessionSnapshot:
    """Immutable view of a print session at one point in time."""

    semantic_state: SemanticState
    raw_status_code: int | None
    current_layer: int
    total_layers: int | None
    filename: str
    start_timestamp: float | None
    last_progress_timestamp: float | None
    percent_complete: float | None
    estimated_remaining: timedelta | None

    @property
    def percent_label(self) -> str:
        """Percent complete for display."""
        if self.percent_complete is None:
            return CALCULATING
        return f"{self.percent_complete:.0f}%"

    @property
    def eta_label(self) -> str:
        """Remaining time for display as H:MM:SS."""
        if self.estimated_remaining is None:
            return CALCULATING
        seconds = int(self.estimated_remaining.total_seconds())
        hours, rest = divmod(seconds, 3600)
        minutes, seconds = divmod(rest, 60)
        return f"{hours}:{minutes:02d}:{seconds:02d}"


class PrintSession:
    """
    Tracks one print job from the printer's telemetry.

    The printer is the source of truth: every translated state is accepted,
    including unusual jumps. ERROR holds until reset(); COMPLETE holds against
    the printer dropping back to ready until the session is acknowledged.

    Attributes:
        raw_status_code (int | None): Last raw status code received.
        semantic_state (SemanticState): Current translated state.
        current_layer (int): Current layer, clamped to total_layers.
        total_layers (int | None): Layer count, None until reported.
        start_timestamp (float | None): Clock time the print started.
        last_progress_timestamp (float | None): Clock time of the last layer change.
        filename (str): File being printed.
        tick_count (int): Telemetry ticks applied since the session started.

    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        logger: Any = LOGGER,
    ) -> None:
        """Initialize an idle session."""
        self._clock = clock
        self.logger = logger
        self.reset()

    def reset(self) -> None:
        """Return to IDLE and forget all progress."""
        self.raw_status_code: int | None = None
        self.semantic_state: SemanticState = SemanticState.IDLE
        self.current_layer: int = 0
        self.total_layers: int | None = None
        self.start_timestamp: float | None = None
        self.last_progress_timestamp: float | None = None
        self.filename: str = ""
        self.tick_count: int = 0

    @property
    def is_terminal(self) -> bool:
        """Return True if the session waits for acknowledgement."""
        return self.semantic_state in (SemanticState.COMPLETE, SemanticState.ERROR)

    def update(
        self,
        translation: StatusTranslation,
        status: PrinterStatus,
        now: float | None = None,
    ) -> bool:
        """
        Apply one telemetry tick.

        Arguments:
            translation: The translated state of the tick.
            status: The parsed tick the translation came from.
            now: Clock time of the tick, defaults to the session clock.

        Returns:
            True if the semantic state or the current layer changed.

        """
        now = self._clock() if now is None else now
        if self.semantic_state is SemanticState.ERROR:
            self.tick_count += 1
            self.raw_status_code = translation.raw_code
            self.logger.debug(
                "Session in error, ignoring %s until reset", translation.state
            )
            return False

        state = translation.state
        if state in (SemanticState.RECEIVING_FILE, SemanticState.PROCESSING_FILE):
            state = SemanticState.IDLE
        if (
            self.semantic_state is SemanticState.IDLE
            and state.is_print_state
            and self.start_timestamp is not None
        ):
            # A stopped print leaves its timing behind
            self.logger.info("New print started after the printer went idle")
            self.reset()
        self.tick_count += 1
        self.raw_status_code = translation.raw_code
        if self.semantic_state is SemanticState.COMPLETE and state is SemanticState.IDLE:
            return False
        if self.semantic_state is SemanticState.IDLE and state is SemanticState.COMPLETE:
            self.logger.debug("Printer reported completion without layer progress")

        info = status.print_info
        if info.filename:
            self.filename = info.filename
        if info.total_layers > 0:
            self.total_layers = info.total_layers

        layer = info.current_layer
        if state is SemanticState.COMPLETE and self.total_layers is not None:
            layer = self.total_layers
        if self.total_layers is not None:
            layer = min(layer, self.total_layers)

        if state.is_print_state and self.start_timestamp is None:
            elapsed = (info.current_ticks or 0) / 1000
            self.start_timestamp = now - max(0.0, elapsed)

        changed = state is not self.semantic_state or layer != self.current_layer
        if layer != self.current_layer:
            self.last_progress_timestamp = now
        self.current_layer = layer
        self.semantic_state = state
        return changed

    def percent_complete(self) -> float | None:
        """Return the percent of layers done, or None while calculating."""
        if self.semantic_state is SemanticState.COMPLETE:
            return 100.0
        if not self.total_layers or self.current_layer <= 0:
            return None
        return self.current_layer / self.total_layers * 100

    def estimated_remaining(self, now: float | None = None) -> timedelta | None:
        """
        Return the estimated time left, or None while calculating.

        The layer rate uses the total elapsed time since the print started,
        so a stalled layer slows the estimate instead of dividing by zero.
        """
        if self.semantic_state is SemanticState.COMPLETE:
            return timedelta(0)
        if (
            self.tick_count <= 1
            or not self.total_layers
            or self.current_layer <= 0
            or self.start_timestamp is None
        ):
            return None
        now = self._clock() if now is None else now
        elapsed = now - self.start_timestamp
        if elapsed <= 0:
            return None
        rate = self.current_layer / elapsed
        return timedelta(seconds=(self.total_layers - self.current_layer) / rate)

    def snapshot(self, now: float | None = None) -> PrintSessionSnapshot:
        """Return an immutable copy with derived metrics."""
        return PrintSessionSnapshot(
            semantic_state=self.semantic_state,
            raw_status_code=self.raw_status_code,
            current_layer=self.current_layer,
            total_layers=self.total_layers,
            filename=self.filename,
            start_timestamp=self.start_timestamp,
            last_progress_timestamp=self.last_progress_timestamp,
            percent_complete=self.percent_complete(),
            estimated_remaining=self.estimated_remaining(now),
        )
