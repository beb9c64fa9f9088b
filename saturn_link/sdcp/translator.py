"""Translate raw Saturn status telemetry into semantic states and labels."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .const import (
    PRINT_STATUS_COMPLETE,
    PRINT_STATUS_EXPOSURE,
    PRINT_STATUS_LOWERING,
    PRINT_STATUS_RETRACTING,
)
from .models.enums import FileTransferStatus, MachineStatus, SemanticState
from .models.status import PrinterStatus


class StatusLabel(Enum):
    """
    Human-facing status label templates.

    The value is the default English template; ``%1``, ``%2`` ... are filled
    from the translation arguments. Presentation layers can key their own
    localized strings on the member name instead.
    """

    READY = "Ready"
    EXPOSING_LAYER = "Exposing Layer"
    RETRACTING = "Retracting"
    LOWERING = "Lowering"
    COMPLETE_OR_PAUSED = "Complete / Paused"
    PRINTING_WITH_CODE = "Printing (Code %1)"
    RECEIVING_FILE = "Receiving file (%1%)..."
    PROCESSING_FILE = "Processing file..."
    TRANSFER_ERROR = "Error in last transfer"
    PRINT_ERROR = "Print error (Code %1)"
    UNKNOWN = "Unknown"

    def render(self, *args: object) -> str:
        """Fill the template placeholders with args."""
        text = self.value
        # Highest index first so %1 does not clobber %10
        for index in range(len(args), 0, -1):
            text = text.replace(f"%{index}", str(args[index - 1]))
        return text


_LAYER_CYCLE = {
    PRINT_STATUS_EXPOSURE: (SemanticState.EXPOSING_LAYER, StatusLabel.EXPOSING_LAYER),
    PRINT_STATUS_RETRACTING: (SemanticState.RETRACTING, StatusLabel.RETRACTING),
    PRINT_STATUS_LOWERING: (SemanticState.LOWERING, StatusLabel.LOWERING),
}


@dataclass(frozen=True)
class StatusTranslation:
    """Result of translating one telemetry tick."""

    state: SemanticState
    label: StatusLabel
    args: tuple[object, ...] = ()
    raw_code: int | None = None

    @property
    def text(self) -> str:
        """The rendered default label."""
        return self.label.render(*self.args)


def _complete_or_paused(status: PrinterStatus) -> SemanticState:
    info = status.print_info
    # The printer zeroes the layer counter once a job finishes
    if info.current_layer == 0 or (
        info.total_layers > 0 and info.current_layer >= info.total_layers
    ):
        return SemanticState.COMPLETE
    return SemanticState.PAUSED


def _translate_printing(status: PrinterStatus, code: int) -> StatusTranslation:
    info = status.print_info
    if info.error_number:
        return StatusTranslation(
            SemanticState.ERROR, StatusLabel.PRINT_ERROR, (info.error_number,), code
        )
    if code in _LAYER_CYCLE:
        state, label = _LAYER_CYCLE[code]
        return StatusTranslation(state, label, (), code)
    if code == PRINT_STATUS_COMPLETE:
        return StatusTranslation(
            _complete_or_paused(status), StatusLabel.COMPLETE_OR_PAUSED, (), code
        )
    return StatusTranslation(
        SemanticState.PRINTING, StatusLabel.PRINTING_WITH_CODE, (code,), code
    )


def translate(status: PrinterStatus) -> StatusTranslation:
    """
    Map one status tick to a semantic state and a label.

    Never raises: anything that cannot be interpreted becomes UNKNOWN.

    Arguments:
        status: The parsed telemetry tick.

    Returns:
        The translation of the tick.

    """
    machine = status.machine_status
    print_code = status.print_info.status
    transfer = status.file_transfer_info

    if machine is MachineStatus.BUSY:
        if print_code is not None and print_code > 0:
            return _translate_printing(status, print_code)

        transfer_status = transfer.transfer_status
        if transfer_status is FileTransferStatus.DOWNLOADING or (
            transfer.download_offset > 0
        ):
            percent = transfer.percent
            if percent is not None and transfer.download_offset < (
                transfer.file_total_size
            ):
                return StatusTranslation(
                    SemanticState.RECEIVING_FILE,
                    StatusLabel.RECEIVING_FILE,
                    (percent,),
                    status.current_status,
                )
            return StatusTranslation(
                SemanticState.PROCESSING_FILE,
                StatusLabel.PROCESSING_FILE,
                (),
                status.current_status,
            )

        if print_code is not None:
            return _translate_printing(status, print_code)

    elif machine is MachineStatus.READY:
        if transfer.transfer_status is FileTransferStatus.FAILED:
            return StatusTranslation(
                SemanticState.IDLE, StatusLabel.TRANSFER_ERROR, (), status.current_status
            )
        return StatusTranslation(
            SemanticState.IDLE, StatusLabel.READY, (), status.current_status
        )

    return StatusTranslation(
        SemanticState.UNKNOWN, StatusLabel.UNKNOWN, (), status.current_status
    )
