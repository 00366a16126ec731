"""
Tests for the archive update flow of UpdateOrchestrator.

Tests cover:
- Input validation and version gating
- Transport failures and empty transfers
- Activation failures
- Version and metadata commit after activation
- Callback ordering and restart scheduling
- Bundle management helpers
"""

from __future__ import annotations

import asyncio
import io
import math
import zipfile
from unittest.mock import MagicMock

import httpx
import pytest
from fakes import FakeActivationService, FakeArchiveTransport, MemoryVersionStore

from ota_hotupdate.activation import SymlinkActivationService
from ota_hotupdate.config import AppConfig
from ota_hotupdate.errors import TransportError, UpdateErrorKind
from ota_hotupdate.models import UpdateOptions, UpdateStage
from ota_hotupdate.orchestrator import UpdateOrchestrator, coerce_version
from ota_hotupdate.restart import SystemdRestarter
from ota_hotupdate.store import FileVersionStore
from ota_hotupdate.transports import GitCliTransport, HttpArchiveTransport


def make_options(**kwargs) -> tuple[UpdateOptions, MagicMock, MagicMock]:
    success = MagicMock()
    fail = MagicMock()
    options = UpdateOptions(update_success=success, update_fail=fail, **kwargs)
    return options, success, fail


# =============================================================================
# Happy Path Tests
# =============================================================================


class TestArchiveUpdateSuccess:
    """Tests for a committed archive update."""

    @pytest.mark.asyncio
    async def test_newer_version_is_installed_and_stored(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test current 3, declared 5: bundle activated and version stored."""
        orchestrator = UpdateOrchestrator(store, activation)
        options, success, fail = make_options()

        outcome = await orchestrator.apply_archive_update(
            archive_transport, "https://example.com/b.zip", 5, options
        )

        assert outcome.ok is True
        assert outcome.error is None
        assert outcome.stage == UpdateStage.COMPLETED
        assert outcome.version == 5
        assert outcome.restart_scheduled is False
        assert outcome.warnings == []
        assert activation.installed == [("/tmp/b.zip", None)]
        assert store.version == "5"
        success.assert_called_once_with()
        fail.assert_not_called()
        assert activation.restarts == 0
        assert orchestrator.pending_restarts == 0

    @pytest.mark.asyncio
    async def test_headers_and_format_hint_are_forwarded(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test headers reach the transport and the hint reaches activation."""
        orchestrator = UpdateOrchestrator(store, activation)
        options, _, _ = make_options(
            headers={"Authorization": "Bearer abc"}, extension_bundle=".jsbundle"
        )

        await orchestrator.apply_archive_update(
            archive_transport, "https://example.com/b.zip", 4, options
        )

        assert archive_transport.calls == [
            ("https://example.com/b.zip", {"Authorization": "Bearer abc"})
        ]
        assert activation.installed == [("/tmp/b.zip", ".jsbundle")]

    @pytest.mark.asyncio
    async def test_progress_is_forwarded(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
    ) -> None:
        """Test transport progress reaches the progress callback."""
        transport = FakeArchiveTransport(progress=[("10", "100"), ("100", "100")])
        progress = MagicMock()
        orchestrator = UpdateOrchestrator(store, activation)

        await orchestrator.apply_archive_update(
            transport,
            "https://example.com/b.zip",
            None,
            UpdateOptions(progress=progress),
        )

        assert [c.args for c in progress.call_args_list] == [
            ("10", "100"),
            ("100", "100"),
        ]

    @pytest.mark.asyncio
    async def test_no_declared_version_skips_gate_and_version_write(
        self,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test an update without a version is installed and the version kept."""
        store = MemoryVersionStore(version="7")
        orchestrator = UpdateOrchestrator(store, activation)
        options, success, _ = make_options()

        outcome = await orchestrator.apply_archive_update(
            archive_transport, "https://example.com/b.zip", None, options
        )

        assert outcome.ok is True
        assert outcome.version is None
        assert store.version_writes == []
        assert store.version == "7"
        success.assert_called_once()

    @pytest.mark.asyncio
    async def test_metadata_is_stored_as_json(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test metadata is serialized and readable afterwards."""
        orchestrator = UpdateOrchestrator(store, activation)
        options, _, _ = make_options(metadata={"notes": "fix", "build": 12})

        outcome = await orchestrator.apply_archive_update(
            archive_transport, "https://example.com/b.zip", 5, options
        )

        assert outcome.ok is True
        assert len(store.metadata_writes) == 1
        assert await orchestrator.get_update_metadata() == {
            "notes": "fix",
            "build": 12,
        }

    @pytest.mark.asyncio
    async def test_falsy_metadata_is_still_stored(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test 0 is a supplied metadata value, unlike None."""
        orchestrator = UpdateOrchestrator(store, activation)

        await orchestrator.apply_archive_update(
            archive_transport,
            "https://example.com/b.zip",
            5,
            UpdateOptions(metadata=0),
        )

        assert store.metadata_writes == ["0"]

    @pytest.mark.asyncio
    async def test_no_metadata_leaves_store_untouched(
        self,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test absent metadata does not overwrite stored metadata."""
        store = MemoryVersionStore(version="1", metadata='{"old": true}')
        orchestrator = UpdateOrchestrator(store, activation)

        await orchestrator.apply_archive_update(
            archive_transport, "https://example.com/b.zip", 2, UpdateOptions()
        )

        assert store.metadata_writes == []
        assert await orchestrator.get_update_metadata() == {"old": True}

    @pytest.mark.asyncio
    async def test_default_transport_is_used(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test the orchestrator's transport is used when none is passed."""
        orchestrator = UpdateOrchestrator(
            store, activation, archive_transport=archive_transport
        )

        outcome = await orchestrator.apply_archive_update(
            None, "https://example.com/b.zip", 5
        )

        assert outcome.ok is True
        assert len(archive_transport.calls) == 1


# =============================================================================
# Validation and Version Gate Tests
# =============================================================================


class TestArchiveUpdateValidation:
    """Tests for rejections before any transfer."""

    @pytest.mark.asyncio
    async def test_empty_uri_is_invalid_input(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test an empty URI fails without touching collaborators."""
        orchestrator = UpdateOrchestrator(store, activation)
        options, success, fail = make_options()

        outcome = await orchestrator.apply_archive_update(
            archive_transport, "", 5, options
        )

        assert outcome.ok is False
        assert outcome.error == UpdateErrorKind.INVALID_INPUT
        assert outcome.stage == UpdateStage.VALIDATING
        assert archive_transport.calls == []
        assert activation.installed == []
        fail.assert_called_once_with("Please give a valid URL!")
        success.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_transport_is_invalid_input(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
    ) -> None:
        """Test no transport at all is reported as invalid input."""
        orchestrator = UpdateOrchestrator(store, activation)
        options, _, fail = make_options()

        outcome = await orchestrator.apply_archive_update(
            None, "https://example.com/b.zip", 5, options
        )

        assert outcome.error == UpdateErrorKind.INVALID_INPUT
        fail.assert_called_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("declared", [3, 2, 0])
    async def test_version_not_greater_is_rejected(
        self,
        declared: int,
        store: MemoryVersionStore,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test declared <= current is rejected before transfer."""
        orchestrator = UpdateOrchestrator(store, activation)
        options, success, fail = make_options()

        outcome = await orchestrator.apply_archive_update(
            archive_transport, "https://example.com/b.zip", declared, options
        )

        assert outcome.ok is False
        assert outcome.error == UpdateErrorKind.VERSION_REJECTED
        assert archive_transport.calls == []
        assert activation.installed == []
        assert store.version_writes == []
        fail.assert_called_once()
        assert "3" in fail.call_args.args[0]
        success.assert_not_called()

    @pytest.mark.asyncio
    async def test_first_install_accepts_any_positive_version(
        self,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test an empty store behaves like version 0."""
        store = MemoryVersionStore(version="")
        orchestrator = UpdateOrchestrator(store, activation)

        outcome = await orchestrator.apply_archive_update(
            archive_transport, "https://example.com/b.zip", 1
        )

        assert outcome.ok is True
        assert store.version == "1"

    @pytest.mark.asyncio
    async def test_corrupted_version_disables_gate(
        self,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test a non-numeric stored version lets any update through."""
        store = MemoryVersionStore(version="garbage")
        orchestrator = UpdateOrchestrator(store, activation)

        outcome = await orchestrator.apply_archive_update(
            archive_transport, "https://example.com/b.zip", 1
        )

        assert outcome.ok is True
        assert store.version == "1"

    @pytest.mark.asyncio
    async def test_store_read_failure_rejects_update(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test an unreadable store rejects a versioned update."""
        store.fail_reads = True
        orchestrator = UpdateOrchestrator(store, activation)
        options, _, fail = make_options()

        outcome = await orchestrator.apply_archive_update(
            archive_transport, "https://example.com/b.zip", 9, options
        )

        assert outcome.error == UpdateErrorKind.VERSION_REJECTED
        assert archive_transport.calls == []
        fail.assert_called_once()


# =============================================================================
# Transfer and Activation Failure Tests
# =============================================================================


class TestArchiveUpdateFailures:
    """Tests for failures after validation."""

    @pytest.mark.asyncio
    async def test_transport_error_is_reported(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
    ) -> None:
        """Test a TransportError passes through with its message."""
        transport = FakeArchiveTransport(
            error=TransportError("Download failed with HTTP 404")
        )
        orchestrator = UpdateOrchestrator(store, activation)
        options, success, fail = make_options()

        outcome = await orchestrator.apply_archive_update(
            transport, "https://example.com/b.zip", 5, options
        )

        assert outcome.ok is False
        assert outcome.error == UpdateErrorKind.TRANSPORT_ERROR
        assert outcome.stage == UpdateStage.TRANSFERRING
        assert outcome.detail == "Download failed with HTTP 404"
        fail.assert_called_once_with("Download failed with HTTP 404")
        success.assert_not_called()
        assert activation.installed == []
        assert store.version == "3"

    @pytest.mark.asyncio
    async def test_unexpected_transport_exception_is_transport_error(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
    ) -> None:
        """Test arbitrary transport exceptions are wrapped."""
        transport = FakeArchiveTransport(error=ConnectionResetError("reset"))
        orchestrator = UpdateOrchestrator(store, activation)

        outcome = await orchestrator.apply_archive_update(
            transport, "https://example.com/b.zip", 5
        )

        assert outcome.error == UpdateErrorKind.TRANSPORT_ERROR
        assert "reset" in (outcome.detail or "")

    @pytest.mark.asyncio
    async def test_empty_path_is_transfer_failed(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
    ) -> None:
        """Test an empty transfer result never reaches activation."""
        transport = FakeArchiveTransport(path="")
        orchestrator = UpdateOrchestrator(store, activation)
        options, success, fail = make_options()

        outcome = await orchestrator.apply_archive_update(
            transport, "https://example.com/b.zip", 5, options
        )

        assert outcome.error == UpdateErrorKind.TRANSFER_FAILED
        assert activation.installed == []
        fail.assert_called_once()
        success.assert_not_called()

    @pytest.mark.asyncio
    async def test_activation_failure_keeps_version(
        self,
        store: MemoryVersionStore,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test a rejected activation stores nothing."""
        activation = FakeActivationService(result=False)
        orchestrator = UpdateOrchestrator(store, activation)
        options, success, fail = make_options(
            metadata={"a": 1}, restart_after_install=True
        )

        outcome = await orchestrator.apply_archive_update(
            archive_transport, "https://example.com/b.zip", 5, options
        )

        assert outcome.ok is False
        assert outcome.error == UpdateErrorKind.ACTIVATION_FAILED
        assert outcome.stage == UpdateStage.ACTIVATING
        assert outcome.restart_scheduled is False
        assert store.version_writes == []
        assert store.metadata_writes == []
        assert orchestrator.pending_restarts == 0
        fail.assert_called_once_with("Bundle activation failed")
        success.assert_not_called()

    @pytest.mark.asyncio
    async def test_activation_exception_is_activation_failed(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test an activation exception does not escape the flow."""
        activation.raise_on_install = OSError("disk full")
        orchestrator = UpdateOrchestrator(store, activation)

        outcome = await orchestrator.apply_archive_update(
            archive_transport, "https://example.com/b.zip", 5
        )

        assert outcome.error == UpdateErrorKind.ACTIVATION_FAILED
        assert store.version == "3"

    @pytest.mark.asyncio
    async def test_failing_fail_callback_does_not_raise(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test an exception inside update_fail is contained."""
        orchestrator = UpdateOrchestrator(store, activation)
        options = UpdateOptions(update_fail=MagicMock(side_effect=RuntimeError("boom")))

        outcome = await orchestrator.apply_archive_update(
            archive_transport, "", 5, options
        )

        assert outcome.ok is False


# =============================================================================
# Commit Warning Tests
# =============================================================================


class TestArchiveUpdateWarnings:
    """Tests for problems after the bundle was activated."""

    @pytest.mark.asyncio
    async def test_unserializable_metadata_is_a_warning(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test bad metadata does not undo the committed version."""
        orchestrator = UpdateOrchestrator(store, activation)
        options, success, fail = make_options(metadata={"value": math.nan})

        outcome = await orchestrator.apply_archive_update(
            archive_transport, "https://example.com/b.zip", 5, options
        )

        assert outcome.ok is True
        assert store.version == "5"
        assert store.metadata_writes == []
        assert [w.kind for w in outcome.warnings] == ["metadata_serialization_failed"]
        success.assert_called_once()
        fail.assert_not_called()

    @pytest.mark.asyncio
    async def test_version_write_failure_is_a_warning(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test a failed version write keeps the activated bundle."""
        store.fail_version_writes = True
        orchestrator = UpdateOrchestrator(store, activation)
        options, success, _ = make_options()

        outcome = await orchestrator.apply_archive_update(
            archive_transport, "https://example.com/b.zip", 5, options
        )

        assert outcome.ok is True
        assert [w.kind for w in outcome.warnings] == ["version_persistence_failed"]
        assert activation.rollbacks == 0
        success.assert_called_once()

    @pytest.mark.asyncio
    async def test_metadata_write_failure_is_a_warning(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test a failed metadata write is reported as a warning."""
        store.fail_metadata_writes = True
        orchestrator = UpdateOrchestrator(store, activation)

        outcome = await orchestrator.apply_archive_update(
            archive_transport,
            "https://example.com/b.zip",
            5,
            UpdateOptions(metadata=["a"]),
        )

        assert outcome.ok is True
        assert [w.kind for w in outcome.warnings] == ["metadata_persistence_failed"]


# =============================================================================
# Restart Tests
# =============================================================================


class TestArchiveUpdateRestart:
    """Tests for restart scheduling after an archive update."""

    @pytest.mark.asyncio
    async def test_restart_is_scheduled_after_success(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test the restart fires after the flow returned."""
        orchestrator = UpdateOrchestrator(store, activation)
        events: list[str] = []
        options = UpdateOptions(
            restart_after_install=True,
            restart_delay=1,
            update_success=lambda: events.append("success"),
        )

        outcome = await orchestrator.apply_archive_update(
            archive_transport, "https://example.com/b.zip", 5, options
        )

        assert outcome.restart_scheduled is True
        assert events == ["success"]
        assert activation.restarts == 0
        assert orchestrator.pending_restarts == 1

        await asyncio.sleep(0.05)

        assert activation.restarts == 1
        assert orchestrator.pending_restarts == 0

    @pytest.mark.asyncio
    async def test_default_delay_is_used(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test the restart waits for the orchestrator delay."""
        orchestrator = UpdateOrchestrator(store, activation, restart_delay_ms=300)

        await orchestrator.apply_archive_update(
            archive_transport,
            "https://example.com/b.zip",
            5,
            UpdateOptions(restart_after_install=True),
        )
        await asyncio.sleep(0.05)

        assert activation.restarts == 0
        assert orchestrator.cancel_pending_restarts() == 1
        assert orchestrator.pending_restarts == 0

    @pytest.mark.asyncio
    async def test_zero_delay_falls_back_to_default(
        self,
        store: MemoryVersionStore,
        activation: FakeActivationService,
        archive_transport: FakeArchiveTransport,
    ) -> None:
        """Test a restart_delay of 0 uses the orchestrator delay."""
        orchestrator = UpdateOrchestrator(store, activation, restart_delay_ms=300)

        await orchestrator.apply_archive_update(
            archive_transport,
            "https://example.com/b.zip",
            5,
            UpdateOptions(restart_after_install=True, restart_delay=0),
        )
        await asyncio.sleep(0.05)

        assert activation.restarts == 0
        assert orchestrator.cancel_pending_restarts() == 1

    @pytest.mark.asyncio
    async def test_restart_failure_is_logged(
        self,
        store: MemoryVersionStore,
        archive_transport: FakeArchiveTransport,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Test a failing restart does not surface as an exception."""
        activation = FakeActivationService()

        async def failing_restart() -> None:
            raise RuntimeError("systemctl missing")

        activation.restart = failing_restart  # type: ignore[method-assign]
        orchestrator = UpdateOrchestrator(store, activation)

        await orchestrator.apply_archive_update(
            archive_transport,
            "https://example.com/b.zip",
            5,
            UpdateOptions(restart_after_install=True, restart_delay=1),
        )
        await asyncio.sleep(0.05)

        assert "Application restart failed" in caplog.text


# =============================================================================
# Version and Bundle Management Tests
# =============================================================================


class TestCoerceVersion:
    """Tests for coerce_version function."""

    def test_empty_is_zero(self) -> None:
        """Test empty and missing versions are 0."""
        assert coerce_version("") == 0
        assert coerce_version(None) == 0

    def test_integer(self) -> None:
        """Test integer text."""
        assert coerce_version("12") == 12
        assert coerce_version(" 4 ") == 4

    def test_float(self) -> None:
        """Test float text."""
        assert coerce_version("2.0") == 2
        assert coerce_version("2.5") == 2.5

    def test_non_numeric_is_nan(self) -> None:
        """Test corrupted versions are NaN."""
        assert math.isnan(coerce_version("abc"))


class TestBundleManagement:
    """Tests for bundle and version helpers."""

    @pytest.mark.asyncio
    async def test_get_version_as_number(
        self, store: MemoryVersionStore, activation: FakeActivationService
    ) -> None:
        """Test the stored version is read as a number."""
        orchestrator = UpdateOrchestrator(store, activation)
        assert await orchestrator.get_version_as_number() == 3

    @pytest.mark.asyncio
    async def test_set_current_version(
        self, store: MemoryVersionStore, activation: FakeActivationService
    ) -> None:
        """Test set_current_version stores the string form."""
        orchestrator = UpdateOrchestrator(store, activation)
        assert await orchestrator.set_current_version(8) is True
        assert store.version == "8"

    @pytest.mark.asyncio
    async def test_remove_bundle_resets_version(
        self, store: MemoryVersionStore, activation: FakeActivationService
    ) -> None:
        """Test a deleted bundle resets the version to 0."""
        orchestrator = UpdateOrchestrator(store, activation)

        assert await orchestrator.remove_bundle() is True

        assert activation.deleted == 1
        assert store.version == "0"
        assert orchestrator.pending_restarts == 0

    @pytest.mark.asyncio
    async def test_remove_bundle_with_restart(
        self, store: MemoryVersionStore, activation: FakeActivationService
    ) -> None:
        """Test restart_after schedules a restart after deletion."""
        orchestrator = UpdateOrchestrator(store, activation, restart_delay_ms=0)

        await orchestrator.remove_bundle(restart_after=True)
        await asyncio.sleep(0.05)

        assert activation.restarts == 1

    @pytest.mark.asyncio
    async def test_remove_bundle_failure_changes_nothing(
        self, store: MemoryVersionStore, activation: FakeActivationService
    ) -> None:
        """Test a failed deletion keeps the version and skips the restart."""
        activation.delete_result = False
        orchestrator = UpdateOrchestrator(store, activation, restart_delay_ms=0)

        assert await orchestrator.remove_bundle(restart_after=True) is False

        assert store.version == "3"
        assert orchestrator.pending_restarts == 0

    @pytest.mark.asyncio
    async def test_bundle_path_helpers_delegate(
        self, store: MemoryVersionStore, activation: FakeActivationService
    ) -> None:
        """Test bundle path helpers call the activation service."""
        orchestrator = UpdateOrchestrator(store, activation)

        assert await orchestrator.set_up_bundle_path("/tmp/x.zip", ".bundle")
        assert await orchestrator.set_exact_bundle_path("/opt/main.bundle")
        assert await orchestrator.rollback_to_previous_bundle()

        assert activation.installed == [("/tmp/x.zip", ".bundle")]
        assert activation.exact_installed == ["/opt/main.bundle"]
        assert activation.rollbacks == 1

    @pytest.mark.asyncio
    async def test_metadata_helpers(
        self, store: MemoryVersionStore, activation: FakeActivationService
    ) -> None:
        """Test metadata can be stored and read back."""
        orchestrator = UpdateOrchestrator(store, activation)

        assert await orchestrator.get_update_metadata() is None
        assert await orchestrator.set_update_metadata({"k": [1, 2]}) is True
        assert await orchestrator.get_update_metadata() == {"k": [1, 2]}


class TestFromConfig:
    """Tests for UpdateOrchestrator.from_config."""

    def test_default_collaborators(self, tmp_path) -> None:
        """Test configuration wires the file, symlink, http and git defaults."""
        config = AppConfig(
            storage={"version_file": str(tmp_path / "version.json")},
            activation={"bundles_dir": str(tmp_path / "bundles")},
            archive={"download_dir": str(tmp_path / "downloads")},
            git={"base_dir": str(tmp_path / "git")},
            restart={"service_name": "app.service", "delay_ms": 50},
        )

        orchestrator = UpdateOrchestrator.from_config(config)

        assert isinstance(orchestrator.store, FileVersionStore)
        assert isinstance(orchestrator.activation, SymlinkActivationService)
        assert isinstance(orchestrator._archive_transport, HttpArchiveTransport)
        assert isinstance(orchestrator._git_transport, GitCliTransport)
        assert isinstance(orchestrator.activation._restarter, SystemdRestarter)
        assert orchestrator.restart_delay_ms == 50

    @pytest.mark.asyncio
    async def test_end_to_end_with_file_store(self, tmp_path) -> None:
        """Test a zipped bundle served over HTTP is activated and recorded."""
        archive = io.BytesIO()
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("dist/main.bundle", "v5")
        payload = archive.getvalue()

        config = AppConfig(
            storage={"version_file": str(tmp_path / "version.json")},
            activation={"bundles_dir": str(tmp_path / "bundles")},
            archive={"download_dir": str(tmp_path / "downloads")},
            git={"base_dir": str(tmp_path / "git")},
        )
        orchestrator = UpdateOrchestrator.from_config(config)
        orchestrator._archive_transport = HttpArchiveTransport(
            tmp_path / "downloads",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, content=payload)
            ),
        )

        outcome = await orchestrator.apply_archive_update(
            None,
            "https://example.com/update.zip",
            5,
            UpdateOptions(metadata={"notes": "first"}),
        )

        assert outcome.ok is True
        assert (tmp_path / "bundles" / "current").read_text() == "v5"
        assert await orchestrator.get_version_as_number() == 5
        assert await orchestrator.get_update_metadata() == {"notes": "first"}
        assert list((tmp_path / "downloads").iterdir()) == []
