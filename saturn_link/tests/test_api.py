"""Tests for the SaturnApiClient facade."""

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest

from saturn_link.api import SaturnApiClient
from saturn_link.sdcp.exceptions import (
    CommandTimeoutError,
    NotConnectedError,
    TransportError,
    UnsupportedFileTypeError,
)
from saturn_link.sdcp.models.enums import SemanticState, UploadState
from saturn_link.sdcp.models.events import (
    FileReadyToPrint,
    SessionStateChanged,
    TerminalError,
)
from saturn_link.sdcp.models.status import PrinterStatus
from saturn_link.sdcp.models.upload import UploadProgressEvent

# ruff: noqa: PLR2004  # Magic values in tests are expected


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 500.0

    def __call__(self) -> float:
        return self.now


def printing(code: int, layer: int, total: int = 100, **extra: object) -> PrinterStatus:
    """Build a busy tick with PrintInfo."""
    info = {"Status": code, "CurrentLayer": layer, "TotalLayer": total, **extra}
    return PrinterStatus({"Status": {"CurrentStatus": 1, "PrintInfo": info}})


def ready(transfer: dict | None = None) -> PrinterStatus:
    """Build an idle tick, optionally with FileTransferInfo."""
    status: dict = {"CurrentStatus": 0}
    if transfer is not None:
        status["FileTransferInfo"] = transfer
    return PrinterStatus({"Status": status})


def mock_connection() -> Mock:
    connection = Mock()
    connection.is_connected = True
    connection.connect = AsyncMock()
    connection.disconnect = AsyncMock()
    connection.start_print = AsyncMock()
    connection.print_pause = AsyncMock()
    connection.print_resume = AsyncMock()
    connection.print_stop = AsyncMock()
    return connection


@pytest.fixture
def connection() -> Iterator[Mock]:
    """Replace PrinterConnection with a mock."""
    instance = mock_connection()
    with patch("saturn_link.api.PrinterConnection", return_value=instance):
        yield instance


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
async def client(connection: Mock, events: list) -> SaturnApiClient:
    """Create a client connected to the mocked printer."""
    api = SaturnApiClient(logger=Mock(), clock=FakeClock())
    api.add_listener(events.append)
    await api.connect("10.0.0.5")
    return api


def of_type(events: list, kind: type) -> list:
    return [e for e in events if isinstance(e, kind)]


@pytest.mark.anyio
async def test_connect_wires_listeners(client: SaturnApiClient, connection: Mock) -> None:
    """Test that connect registers the connection callbacks."""
    connection.connect.assert_awaited_once()
    connection.add_state_listener.assert_called_once()
    connection.add_status_listener.assert_called_once()
    connection.add_model_listener.assert_called_once()
    assert client.is_connected
    assert client.uploads is not None


@pytest.mark.anyio
async def test_connect_failure_reports_terminal_error(
    connection: Mock, events: list
) -> None:
    """Test that a failed connect raises and emits TerminalError."""
    connection.connect.side_effect = TransportError("Printer did not connect")
    api = SaturnApiClient(logger=Mock())
    api.add_listener(events.append)

    with pytest.raises(TransportError):
        await api.connect("10.0.0.5")

    errors = of_type(events, TerminalError)
    assert len(errors) == 1
    assert errors[0].operation == "connect"
    assert errors[0].message == "Printer did not connect"
    assert api.connection is None
    connection.disconnect.assert_awaited_once()
    assert not api.is_connected


@pytest.mark.anyio
async def test_session_follows_layer_ticks(
    client: SaturnApiClient, events: list
) -> None:
    """Test that a print tick creates a session and every tick is reported."""
    client._on_status(ready())  # noqa: SLF001
    assert client.get_session_state() is None

    client._on_status(printing(2, 10, Filename="cube.goo"))  # noqa: SLF001
    snapshot = client.get_session_state()
    assert snapshot is not None
    assert snapshot.semantic_state is SemanticState.EXPOSING_LAYER
    assert snapshot.current_layer == 10
    assert snapshot.total_layers == 100
    assert snapshot.filename == "cube.goo"

    changes = of_type(events, SessionStateChanged)
    assert len(changes) == 2
    assert changes[0].session is None
    assert changes[0].translation.state is SemanticState.IDLE
    assert changes[1].session == snapshot


@pytest.mark.anyio
async def test_completed_session_is_replaced_by_new_print(
    client: SaturnApiClient,
) -> None:
    """Test that a new layer cycle after COMPLETE starts a fresh session."""
    client._on_status(printing(2, 99))  # noqa: SLF001
    client._on_status(printing(16, 100))  # noqa: SLF001
    finished = client.session
    assert finished is not None
    assert finished.semantic_state is SemanticState.COMPLETE

    # Dropping back to ready keeps the result visible
    client._on_status(ready())  # noqa: SLF001
    assert client.session is finished
    assert finished.semantic_state is SemanticState.COMPLETE

    client._on_status(printing(2, 1, total=50))  # noqa: SLF001
    assert client.session is not finished
    snapshot = client.get_session_state()
    assert snapshot is not None
    assert snapshot.current_layer == 1
    assert snapshot.total_layers == 50


@pytest.mark.anyio
async def test_error_session_waits_for_acknowledge(
    client: SaturnApiClient, events: list
) -> None:
    """Test that ERROR is not replaced until acknowledged."""
    client._on_status(printing(2, 5, ErrorNumber=1))  # noqa: SLF001
    failed = client.session
    assert failed is not None
    assert failed.semantic_state is SemanticState.ERROR

    client._on_status(printing(2, 6))  # noqa: SLF001
    assert client.session is failed
    assert failed.semantic_state is SemanticState.ERROR

    events.clear()
    client.acknowledge_session()
    assert client.get_session_state() is None
    assert events == [SessionStateChanged(events[0].translation, None)]

    client._on_status(printing(2, 7))  # noqa: SLF001
    snapshot = client.get_session_state()
    assert snapshot is not None
    assert snapshot.semantic_state is SemanticState.EXPOSING_LAYER


@pytest.mark.anyio
async def test_file_ready_is_reported_once(
    client: SaturnApiClient, connection: Mock, events: list
) -> None:
    """Test FileReadyToPrint de-duplication and the default print file."""
    done = {"Status": 2, "DownloadOffset": 10, "FileTotalSize": 10, "Filename": "a.goo"}
    client._on_status(ready(done))  # noqa: SLF001
    client._on_status(ready(done))  # noqa: SLF001
    assert of_type(events, FileReadyToPrint) == [FileReadyToPrint("a.goo")]

    # A new download of the same file reports it again
    client._on_status(ready({**done, "Status": 1}))  # noqa: SLF001
    client._on_status(ready(done))  # noqa: SLF001
    assert len(of_type(events, FileReadyToPrint)) == 2

    await client.start_print()
    connection.start_print.assert_awaited_once_with("a.goo")


@pytest.mark.anyio
async def test_start_print_needs_a_file(client: SaturnApiClient) -> None:
    """Test start_print with nothing uploaded."""
    with pytest.raises(ValueError, match="No file"):
        await client.start_print()


@pytest.mark.anyio
async def test_command_failure_reports_terminal_error(
    client: SaturnApiClient, connection: Mock, events: list
) -> None:
    """Test that print control errors raise and are reported."""
    connection.print_pause.side_effect = CommandTimeoutError("no response")

    with pytest.raises(CommandTimeoutError):
        await client.pause_print()

    errors = of_type(events, TerminalError)
    assert [e.operation for e in errors] == ["pause_print"]

    await client.resume_print()
    await client.stop_print()
    connection.print_resume.assert_awaited_once()
    connection.print_stop.assert_awaited_once()


@pytest.mark.anyio
async def test_commands_need_connection(events: list) -> None:
    """Test every command before connect."""
    api = SaturnApiClient(logger=Mock())
    with pytest.raises(NotConnectedError):
        await api.pause_print()
    with pytest.raises(NotConnectedError):
        await api.start_print("cube.goo")
    with pytest.raises(NotConnectedError):
        await api.upload_file("cube.goo")


@pytest.mark.anyio
async def test_upload_failure_emits_failed_progress(
    client: SaturnApiClient, events: list, tmp_path: Path
) -> None:
    """Test that a rejected upload ends with a FAILED event and TerminalError."""
    path = tmp_path / "model.stl"
    path.write_bytes(b"solid")

    with pytest.raises(UnsupportedFileTypeError):
        await client.upload_file(str(path))

    progress = of_type(events, UploadProgressEvent)
    assert progress[-1].state is UploadState.FAILED
    errors = of_type(events, TerminalError)
    assert len(errors) == 1
    assert errors[0].operation == "upload"


@pytest.mark.anyio
async def test_listener_exception_is_logged(client: SaturnApiClient, events: list) -> None:
    """Test that a failing listener does not stop delivery."""
    client.add_listener(Mock(side_effect=RuntimeError("boom")))
    later: list = []
    remove = client.add_listener(later.append)

    client._on_status(ready())  # noqa: SLF001

    assert len(later) == 1
    client._logger.exception.assert_called_once()  # type: ignore[attr-defined]  # noqa: SLF001
    remove()
    client._on_status(ready())  # noqa: SLF001
    assert len(later) == 1


@pytest.mark.anyio
async def test_disconnect_forgets_session(
    client: SaturnApiClient, connection: Mock
) -> None:
    """Test that disconnect closes the link and clears state."""
    client._on_status(printing(2, 3))  # noqa: SLF001
    await client.disconnect()

    connection.disconnect.assert_awaited_once()
    assert client.connection is None
    assert client.get_session_state() is None


@pytest.mark.anyio
async def test_cancel_upload_reaches_manager(client: SaturnApiClient) -> None:
    """Test that cancel_upload asks the upload manager to stop."""
    uploads = Mock()
    client.uploads = uploads
    client.cancel_upload()
    uploads.cancel.assert_called_once()


@pytest.mark.anyio
async def test_print_after_stop_recalculates(client: SaturnApiClient) -> None:
    """Test that a stopped print's timing is not used for the next print."""
    clock = client._clock  # noqa: SLF001
    client._on_status(printing(2, 1, total=10))  # noqa: SLF001
    clock.now += 10  # type: ignore[attr-defined]
    client._on_status(printing(2, 5, total=10))  # noqa: SLF001
    client._on_status(ready())  # noqa: SLF001

    clock.now += 100_000  # type: ignore[attr-defined]
    client._on_status(printing(2, 1, total=10))  # noqa: SLF001

    snapshot = client.get_session_state()
    assert snapshot is not None
    assert snapshot.eta_label == "Calculating..."
    assert snapshot.start_timestamp == clock.now  # type: ignore[attr-defined]
