"""Tests for the status translator."""

import pytest

from saturn_link.sdcp.models.enums import SemanticState
from saturn_link.sdcp.models.status import PrinterStatus
from saturn_link.sdcp.translator import StatusLabel, translate

# ruff: noqa: PLR2004  # Magic values in tests are expected


def _status(
    current: object = 1,
    print_info: dict | None = None,
    transfer: dict | None = None,
) -> PrinterStatus:
    status: dict = {"CurrentStatus": current}
    if print_info is not None:
        status["PrintInfo"] = print_info
    if transfer is not None:
        status["FileTransferInfo"] = transfer
    return PrinterStatus({"Data": {"Status": status}})


@pytest.mark.parametrize(
    ("code", "state", "label"),
    [
        (2, SemanticState.EXPOSING_LAYER, "Exposing Layer"),
        (3, SemanticState.RETRACTING, "Retracting"),
        (4, SemanticState.LOWERING, "Lowering"),
    ],
)
def test_layer_cycle_codes(code: int, state: SemanticState, label: str) -> None:
    """Test the exposure/retract/lower triad."""
    result = translate(_status(1, {"Status": code, "CurrentLayer": 5, "TotalLayer": 100}))
    assert result.state is state
    assert result.text == label
    assert result.raw_code == code


def test_code_16_at_last_layer_is_complete() -> None:
    """Test that code 16 with all layers done means the print finished."""
    result = translate(
        _status(1, {"Status": 16, "CurrentLayer": 100, "TotalLayer": 100})
    )
    assert result.state is SemanticState.COMPLETE
    assert result.label is StatusLabel.COMPLETE_OR_PAUSED
    assert result.text == "Complete / Paused"


def test_code_16_with_zeroed_layer_is_complete() -> None:
    """Test that the printer zeroing the layer counter means complete."""
    result = translate(_status(1, {"Status": 16, "CurrentLayer": 0, "TotalLayer": 100}))
    assert result.state is SemanticState.COMPLETE


def test_code_16_midway_is_paused() -> None:
    """Test that code 16 with layers left means paused."""
    result = translate(_status(1, {"Status": 16, "CurrentLayer": 40, "TotalLayer": 100}))
    assert result.state is SemanticState.PAUSED
    assert result.text == "Complete / Paused"


def test_unlisted_code_is_printing_with_code() -> None:
    """Test the generic printing label with the raw code."""
    result = translate(_status(1, {"Status": 7}))
    assert result.state is SemanticState.PRINTING
    assert result.text == "Printing (Code 7)"
    assert result.args == (7,)


def test_busy_with_code_zero_and_no_transfer() -> None:
    """Test that busy without a sub-status still reports printing."""
    result = translate(_status([1], {"Status": 0}))
    assert result.state is SemanticState.PRINTING
    assert result.text == "Printing (Code 0)"


def test_error_number_while_busy() -> None:
    """Test that a print error wins over the sub-status."""
    result = translate(_status(1, {"Status": 2, "ErrorNumber": 4}))
    assert result.state is SemanticState.ERROR
    assert result.text == "Print error (Code 4)"


def test_receiving_file_percent() -> None:
    """Test the receiving label while the printer downloads."""
    result = translate(
        _status(
            1,
            {"Status": 0},
            {"Status": 1, "DownloadOffset": 250, "FileTotalSize": 1000},
        )
    )
    assert result.state is SemanticState.RECEIVING_FILE
    assert result.text == "Receiving file (25%)..."


def test_processing_file_after_download() -> None:
    """Test the processing label once all bytes arrived."""
    result = translate(
        _status(
            1,
            {"Status": 0},
            {"Status": 1, "DownloadOffset": 1000, "FileTotalSize": 1000},
        )
    )
    assert result.state is SemanticState.PROCESSING_FILE
    assert result.text == "Processing file..."


def test_print_code_beats_transfer_activity() -> None:
    """Test that a running print is reported over transfer fields."""
    result = translate(
        _status(
            1,
            {"Status": 2},
            {"Status": 1, "DownloadOffset": 10, "FileTotalSize": 1000},
        )
    )
    assert result.state is SemanticState.EXPOSING_LAYER


def test_ready() -> None:
    """Test the idle printer."""
    result = translate(_status(0, {"Status": 0}))
    assert result.state is SemanticState.IDLE
    assert result.text == "Ready"


def test_ready_after_failed_transfer() -> None:
    """Test the idle printer reporting a failed transfer."""
    result = translate(_status(0, transfer={"Status": 3}))
    assert result.state is SemanticState.IDLE
    assert result.text == "Error in last transfer"


@pytest.mark.parametrize("current", [None, "busy", 9, [1, 0], {}])
def test_unrecognized_machine_status(current: object) -> None:
    """Test that anything unexpected becomes UNKNOWN without raising."""
    result = translate(_status(current, {"Status": 2}))
    assert result.state is SemanticState.UNKNOWN
    assert result.text == "Unknown"


def test_busy_without_print_info_is_unknown() -> None:
    """Test a busy tick carrying nothing to interpret."""
    assert translate(_status(1)).state is SemanticState.UNKNOWN


def test_empty_payload() -> None:
    """Test that an empty tick translates."""
    assert translate(PrinterStatus.from_json("not json")).state is SemanticState.UNKNOWN


def test_render_replaces_highest_index_first() -> None:
    """Test that %1 does not clobber %10."""
    assert StatusLabel.PRINTING_WITH_CODE.render(12) == "Printing (Code 12)"
    assert StatusLabel.READY.render() == "Ready"
