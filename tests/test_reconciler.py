"""Unit tests for reconciler.py - Hostname reconciliation pass."""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from errors import (
    AddressResolutionError,
    CredentialResolutionError,
    ProviderError,
    StatusPersistenceError,
)
from providers.base import ProviderKind
from reconciler import HostnameReconciler, ReconcileResult, requeue_after_seconds

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_provider(up_to_date=False, update_error=None, initialize_error=None):
    """Create a mock DNS provider."""
    provider = MagicMock()
    provider.name = "Dyn"
    provider.initialize = AsyncMock(side_effect=initialize_error)
    provider.is_up_to_date = AsyncMock(return_value=up_to_date)
    provider.update = AsyncMock(side_effect=update_error)
    return provider


def make_registry(provider):
    """Create a mock registry whose strategies all build provider."""
    registry = MagicMock()
    registry.get_provider_class.return_value = MagicMock(return_value=provider)
    return registry


class TestRequeueAfterSeconds:
    """Tests for requeue_after_seconds helper."""

    @pytest.mark.parametrize("minutes", [None, 0, -1])
    def test_no_requeue(self, minutes):
        """Test absent, zero and negative intervals do not reschedule."""
        assert requeue_after_seconds(minutes) is None

    @pytest.mark.parametrize("minutes,seconds", [(1, 60), (5, 300), (1440, 86400)])
    def test_requeue_in_seconds(self, minutes, seconds):
        """Test positive intervals convert to seconds."""
        assert requeue_after_seconds(minutes) == seconds


class TestReconcileResult:
    """Tests for ReconcileResult dataclass."""

    def test_default_values(self):
        """Test default values."""
        result = ReconcileResult()
        assert result.requeue_after is None
        assert result.generation is None
        assert result.message == ""


@pytest.mark.asyncio
class TestHostnameReconciler:
    """Tests for HostnameReconciler.reconcile()."""

    @pytest.fixture
    def mock_db(self, sample_hostname):
        """Create a mock database manager."""
        db = AsyncMock()
        db.get_hostname = AsyncMock(return_value=sample_hostname)
        db.get_secret = AsyncMock(return_value={"authToken": b"user:pass\n"})
        db.patch_hostname_status = AsyncMock(return_value=True)
        return db

    @pytest.fixture
    def ip_detector(self):
        """Create a mock public IP detector."""
        detector = MagicMock()
        detector.detect = AsyncMock(return_value="203.0.113.7")
        return detector

    @pytest.fixture
    def provider(self):
        return make_provider()

    @pytest.fixture
    def reconciler(self, mock_db, ip_detector, provider):
        """Create a reconciler wired to mocks."""
        return HostnameReconciler(
            db=mock_db,
            registry=make_registry(provider),
            ip_detector=ip_detector,
            clock=lambda: NOW,
        )

    def patched_status(self, mock_db):
        """Return the (original, modified) statuses passed to the patch."""
        args = mock_db.patch_hostname_status.call_args[0]
        return args[1], args[2]

    async def test_update_succeeds(self, reconciler, mock_db, provider):
        """Test detected address is pushed and recorded, requeue after interval."""
        result = await reconciler.reconcile(1)

        provider.initialize.assert_awaited_once_with("user:pass")
        provider.is_up_to_date.assert_awaited_once_with(
            "home.example.com", "203.0.113.7"
        )
        provider.update.assert_awaited_once_with("home.example.com", "203.0.113.7")

        original, modified = self.patched_status(mock_db)
        assert original == {}
        assert modified == {
            "lastUpdate": {
                "scheduledAt": "2024-01-01T12:00:00Z",
                "failed": False,
                "hostname": "home.example.com",
                "address": "203.0.113.7",
            }
        }
        assert result.requeue_after == 300
        assert result.generation == 1

    async def test_update_fails(self, mock_db, ip_detector):
        """Test provider failure is recorded and not raised."""
        provider = make_provider(update_error=ProviderError("nohost"))
        reconciler = HostnameReconciler(
            db=mock_db,
            registry=make_registry(provider),
            ip_detector=ip_detector,
            clock=lambda: NOW,
        )

        result = await reconciler.reconcile(1)

        _, modified = self.patched_status(mock_db)
        assert modified["lastUpdate"]["failed"] is True
        assert modified["lastUpdate"]["hostname"] == "home.example.com"
        assert modified["lastUpdate"]["address"] == "203.0.113.7"
        assert result.requeue_after == 300
        assert "failed" in result.message

    async def test_up_to_date_skips_update(self, mock_db, ip_detector):
        """Test no update is sent when the record already matches."""
        provider = make_provider(up_to_date=True)
        reconciler = HostnameReconciler(
            db=mock_db,
            registry=make_registry(provider),
            ip_detector=ip_detector,
            clock=lambda: NOW,
        )

        result = await reconciler.reconcile(1)

        provider.update.assert_not_awaited()
        _, modified = self.patched_status(mock_db)
        assert modified["lastUpdate"]["failed"] is False
        assert "up to date" in result.message

    async def test_success_clears_previous_failure(
        self, reconciler, mock_db, sample_hostname
    ):
        """Test a successful pass resets failed from a previous pass."""
        sample_hostname["status"] = {
            "lastUpdate": {
                "scheduledAt": "2023-12-31T12:00:00Z",
                "failed": True,
                "hostname": "home.example.com",
                "address": "203.0.113.1",
            }
        }

        await reconciler.reconcile(1)

        original, modified = self.patched_status(mock_db)
        assert original["lastUpdate"]["failed"] is True
        assert modified["lastUpdate"]["failed"] is False
        assert modified["lastUpdate"]["address"] == "203.0.113.7"

    async def test_initialize_error_marks_failed(self, mock_db, ip_detector):
        """Test an initialize failure counts as a provider failure."""
        provider = make_provider(initialize_error=ProviderError("bad token"))
        reconciler = HostnameReconciler(
            db=mock_db,
            registry=make_registry(provider),
            ip_detector=ip_detector,
            clock=lambda: NOW,
        )

        await reconciler.reconcile(1)

        provider.is_up_to_date.assert_not_awaited()
        provider.update.assert_not_awaited()
        _, modified = self.patched_status(mock_db)
        assert modified["lastUpdate"]["failed"] is True

    async def test_construction_error_marks_failed(
        self, mock_db, ip_detector, sample_hostname
    ):
        """Test a provider that cannot be built fails before any override."""
        sample_hostname["spec"]["ddnsService"]["endpoint"] = "https://ddns.example.net"
        registry = MagicMock()
        registry.get_provider_class.return_value = MagicMock(
            side_effect=RuntimeError("boom")
        )
        reconciler = HostnameReconciler(
            db=mock_db, registry=registry, ip_detector=ip_detector, clock=lambda: NOW
        )

        result = await reconciler.reconcile(1)

        _, modified = self.patched_status(mock_db)
        assert modified["lastUpdate"]["failed"] is True
        assert result.requeue_after == 300

    async def test_custom_endpoint_sets_override(
        self, reconciler, provider, sample_hostname
    ):
        """Test an unknown endpoint is used as the provider API URL."""
        sample_hostname["spec"]["ddnsService"]["endpoint"] = (
            "https://ddns.example.net/nic/update"
        )

        await reconciler.reconcile(1)

        reconciler.registry.get_provider_class.assert_called_once_with(
            ProviderKind.CUSTOM
        )
        provider.set_api_endpoint.assert_called_once_with(
            "https://ddns.example.net/nic/update"
        )
        provider.update.assert_awaited_once()

    async def test_known_endpoint_has_no_override(self, reconciler, provider):
        """Test well-known providers keep their own endpoint."""
        await reconciler.reconcile(1)

        reconciler.registry.get_provider_class.assert_called_once_with(
            ProviderKind.DYN
        )
        provider.set_api_endpoint.assert_not_called()

    async def test_not_found_is_noop(self, reconciler, mock_db, ip_detector):
        """Test a deleted hostname returns without error or requeue."""
        mock_db.get_hostname.return_value = None

        result = await reconciler.reconcile(1)

        assert result.requeue_after is None
        assert result.generation is None
        mock_db.get_secret.assert_not_awaited()
        ip_detector.detect.assert_not_awaited()
        mock_db.patch_hostname_status.assert_not_awaited()

    async def test_missing_secret_raises(self, reconciler, mock_db, ip_detector):
        """Test a missing secret fails the pass without touching status."""
        mock_db.get_secret.return_value = None

        with pytest.raises(CredentialResolutionError) as exc_info:
            await reconciler.reconcile(1)

        assert "default/dyn-credentials" in exc_info.value.message
        ip_detector.detect.assert_not_awaited()
        mock_db.patch_hostname_status.assert_not_awaited()

    async def test_missing_auth_token_key_raises(self, reconciler, mock_db):
        """Test a secret without authToken fails the pass."""
        mock_db.get_secret.return_value = {"password": b"x"}

        with pytest.raises(CredentialResolutionError) as exc_info:
            await reconciler.reconcile(1)

        assert "authToken" in exc_info.value.message
        mock_db.patch_hostname_status.assert_not_awaited()

    async def test_secret_read_error_raises(self, reconciler, mock_db):
        """Test a failed secret read fails the pass."""
        mock_db.get_secret.side_effect = ConnectionError("db down")

        with pytest.raises(CredentialResolutionError):
            await reconciler.reconcile(1)

        mock_db.patch_hostname_status.assert_not_awaited()

    async def test_secret_namespace_defaults_to_hostname(
        self, reconciler, mock_db, sample_hostname
    ):
        """Test the secret is looked up in the hostname's namespace by default."""
        sample_hostname["namespace"] = "home-net"

        await reconciler.reconcile(1)

        mock_db.get_secret.assert_awaited_once_with("dyn-credentials", "home-net")

    async def test_secret_namespace_from_reference(
        self, reconciler, mock_db, sample_hostname
    ):
        """Test an explicit secret namespace is honoured."""
        sample_hostname["spec"]["ddnsService"]["authSecretRef"]["namespace"] = "vault"

        await reconciler.reconcile(1)

        mock_db.get_secret.assert_awaited_once_with("dyn-credentials", "vault")

    async def test_address_detection_error_raises(
        self, reconciler, mock_db, ip_detector, provider
    ):
        """Test a failed public IP lookup fails the pass without touching status."""
        ip_detector.detect.side_effect = AddressResolutionError("timeout")

        with pytest.raises(AddressResolutionError):
            await reconciler.reconcile(1)

        provider.initialize.assert_not_awaited()
        mock_db.patch_hostname_status.assert_not_awaited()

    async def test_unexpected_detection_error_is_wrapped(self, reconciler, ip_detector):
        """Test arbitrary detector errors surface as AddressResolutionError."""
        ip_detector.detect.side_effect = OSError("network unreachable")

        with pytest.raises(AddressResolutionError):
            await reconciler.reconcile(1)

    async def test_explicit_address_skips_detection(
        self, reconciler, mock_db, ip_detector, provider, sample_hostname
    ):
        """Test a declared address is used verbatim."""
        sample_hostname["spec"]["address"] = "2001:db8::1"

        await reconciler.reconcile(1)

        ip_detector.detect.assert_not_awaited()
        provider.update.assert_awaited_once_with("home.example.com", "2001:db8::1")

    async def test_patch_rejected_raises(self, reconciler, mock_db):
        """Test a vanished hostname at patch time fails the pass."""
        mock_db.patch_hostname_status.return_value = False

        with pytest.raises(StatusPersistenceError):
            await reconciler.reconcile(1)

    async def test_patch_error_raises(self, reconciler, mock_db):
        """Test a failed status write fails the pass."""
        mock_db.patch_hostname_status.side_effect = ConnectionError("db down")

        with pytest.raises(StatusPersistenceError) as exc_info:
            await reconciler.reconcile(1)

        assert "default/home" in exc_info.value.message

    @pytest.mark.parametrize("interval", [None, 0])
    async def test_one_shot_interval(
        self, reconciler, sample_hostname, interval
    ):
        """Test zero or absent interval never reschedules."""
        if interval is None:
            del sample_hostname["spec"]["checkIntervalMinutes"]
        else:
            sample_hostname["spec"]["checkIntervalMinutes"] = interval

        result = await reconciler.reconcile(1)

        assert result.requeue_after is None
        assert result.generation == 1

    async def test_interval_independent_of_provider_outcome(
        self, mock_db, ip_detector, sample_hostname
    ):
        """Test requeue follows the interval even when the update fails."""
        sample_hostname["spec"]["checkIntervalMinutes"] = 30
        provider = make_provider(update_error=ProviderError("911"))
        reconciler = HostnameReconciler(
            db=mock_db,
            registry=make_registry(provider),
            ip_detector=ip_detector,
            clock=lambda: NOW,
        )

        result = await reconciler.reconcile(1)

        assert result.requeue_after == 1800

    async def test_conditions_are_left_alone(
        self, reconciler, mock_db, sample_hostname
    ):
        """Test conditions written by others are not part of the patch."""
        condition = {
            "type": "Ready",
            "status": "True",
            "reason": "External",
            "message": "",
            "lastTransitionTime": "2024-01-01T00:00:00Z",
        }
        sample_hostname["status"] = {"conditions": [condition]}

        await reconciler.reconcile(1)

        original, modified = self.patched_status(mock_db)
        assert original["conditions"] == [condition]
        assert modified["conditions"] == [condition]

    async def test_reports_generation_read(self, reconciler, sample_hostname):
        """Test the result carries the generation the pass acted on."""
        sample_hostname["generation"] = 7

        result = await reconciler.reconcile(1)

        assert result.generation == 7
