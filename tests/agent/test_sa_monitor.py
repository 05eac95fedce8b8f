# tests/agent/test_sa_monitor.py
"""
Unit Tests for the SA Monitor
Reconciliation of charon SAs against the cluster hosts
"""

from unittest.mock import MagicMock, Mock, call

import pytest
from vici.exception import DeserializationException

from ipsec_agent.errors import DaemonUnavailableError, InitiateError, SnapshotFetchError
from ipsec_agent.ipsec.charon import CharonClient, CharonSession, SecurityAssociation
from ipsec_agent.metadata.client import MetadataClient
from ipsec_agent.metadata.models import Host, Service
from ipsec_agent.monitor import SAMonitor, build_hosts_map, child_sa_name

SELF_HOST = Host(uuid="host-1", agent_ip="192.168.0.1")
HOSTS = [
    SELF_HOST,
    Host(uuid="host-2", agent_ip="192.168.0.2"),
    Host(uuid="host-3", agent_ip="192.168.0.3"),
    Host(uuid="host-4", agent_ip="192.168.0.4"),
]


@pytest.fixture
def metadata():
    client = Mock(spec=MetadataClient)
    client.get_self_service.return_value = Service(name="ipsec", state="active")
    client.get_hosts.return_value = HOSTS
    client.get_self_host.return_value = SELF_HOST
    return client


@pytest.fixture
def session():
    charon_session = MagicMock()
    charon_session.list_sas.return_value = [
        SecurityAssociation(name="conn-192.168.0.2", remote_host="192.168.0.2", state="ESTABLISHED"),
        SecurityAssociation(name="conn-192.168.0.3", remote_host="192.168.0.3", state="ESTABLISHED"),
    ]
    return charon_session


@pytest.fixture
def charon(session):
    client = Mock(spec=CharonClient)
    client.connect_with_retry.return_value = session
    return client


@pytest.fixture
def monitor(metadata, charon):
    return SAMonitor(metadata, charon, sleep=Mock())


class TestHelpers:
    """Pure helpers"""

    def test_build_hosts_map_excludes_self(self):
        """Every host but self, all not found"""
        assert build_hosts_map(HOSTS, SELF_HOST) == {
            "192.168.0.2": False,
            "192.168.0.3": False,
            "192.168.0.4": False,
        }

    def test_child_sa_name(self):
        """CHILD_SA names are derived from the host address"""
        assert child_sa_name("192.168.0.4") == "child-192.168.0.4"


class TestTick:
    """One reconciliation pass"""

    def test_initiates_only_missing_host(self, monitor, session):
        """Three expected hosts, two SAs: exactly one initiate"""
        result = monitor.tick()

        session.initiate.assert_called_once_with("child-192.168.0.4", host="192.168.0.4")
        assert result.initiated == ["child-192.168.0.4"]
        assert result.missing == ["192.168.0.4"]
        assert result.failures == []
        assert result.skipped is None

    def test_session_closed(self, monitor, session):
        """The charon session is closed after each tick"""
        monitor.tick()

        session.__exit__.assert_called_once()

    def test_all_present(self, monitor, session):
        """Nothing to do when every host has an SA"""
        session.list_sas.return_value.append(
            SecurityAssociation(name="conn-192.168.0.4", remote_host="192.168.0.4")
        )

        result = monitor.tick()

        session.initiate.assert_not_called()
        assert result.missing == []

    def test_unknown_remote_ignored(self, monitor, session):
        """SAs to hosts outside the cluster don't count"""
        session.list_sas.return_value = [SecurityAssociation(name="stale", remote_host="10.9.9.9")]

        result = monitor.tick()

        assert "10.9.9.9" not in result.expected
        assert session.initiate.call_count == 3

    def test_inactive_service_skips(self, monitor, metadata, charon):
        """No daemon calls unless the service is active"""
        metadata.get_self_service.return_value = Service(name="ipsec", state="upgrading")

        result = monitor.tick()

        assert result.skipped == "service state upgrading"
        charon.connect_with_retry.assert_not_called()
        metadata.get_hosts.assert_not_called()

    def test_metadata_failure_skips(self, monitor, metadata, charon):
        """A metadata outage skips the tick"""
        metadata.get_self_service.side_effect = SnapshotFetchError("down", path="/self/service")

        result = monitor.tick()

        assert result.skipped
        charon.connect_with_retry.assert_not_called()

    def test_hosts_failure_skips(self, monitor, metadata, charon):
        """Failing to list hosts skips the tick"""
        metadata.get_hosts.side_effect = SnapshotFetchError("down", path="/hosts")

        result = monitor.tick()

        assert result.skipped
        charon.connect_with_retry.assert_not_called()

    def test_daemon_unavailable_skips(self, monitor, charon):
        """charon unreachable: log and skip, no escalation"""
        charon.connect_with_retry.side_effect = DaemonUnavailableError("no socket", attempts=3)

        result = monitor.tick()

        assert result.skipped.startswith("charon unavailable")
        assert result.initiated == []

    def test_list_failure_skips(self, monitor, session):
        """A failed SA listing initiates nothing"""
        session.list_sas.side_effect = DaemonUnavailableError("broken pipe")

        result = monitor.tick()

        assert result.skipped
        session.initiate.assert_not_called()
        session.__exit__.assert_called_once()

    def test_initiate_failure_continues(self, monitor, session):
        """One failing host doesn't block the others"""
        session.list_sas.return_value = []
        failure = InitiateError("child-192.168.0.2", "no config", host="192.168.0.2")
        session.initiate.side_effect = [failure, None, None]

        result = monitor.tick()

        assert session.initiate.call_count == 3
        assert result.failures == [failure]
        assert result.initiated == ["child-192.168.0.3", "child-192.168.0.4"]


class TestRun:
    """Timed loop"""

    def test_start_delay_then_interval(self, metadata, charon):
        """Sleeps the start delay once, then the interval before each tick"""
        sleep = Mock()
        monitor = SAMonitor(metadata, charon, interval=5, start_delay=60, sleep=sleep)
        remaining = iter([True, True, False])

        monitor.run(should_continue=lambda: next(remaining))

        assert sleep.call_args_list == [call(60), call(5), call(5)]
        assert metadata.get_self_service.call_count == 2

    def test_ticks_are_independent(self, metadata, charon, session):
        """Every tick reconnects and re-initiates from scratch"""
        monitor = SAMonitor(metadata, charon, sleep=Mock())
        remaining = iter([True, True, False])

        monitor.run(should_continue=lambda: next(remaining))

        assert charon.connect_with_retry.call_count == 2
        assert session.initiate.call_args_list == [
            call("child-192.168.0.4", host="192.168.0.4"),
            call("child-192.168.0.4", host="192.168.0.4"),
        ]

    def test_malformed_daemon_reply_skips_tick(self, metadata, charon):
        """An undecodable SA listing skips the tick and the loop keeps going"""
        vici_session = Mock()
        vici_session.list_sas.side_effect = DeserializationException("bad frame")
        charon.connect_with_retry.side_effect = lambda: CharonSession(vici_session)
        monitor = SAMonitor(metadata, charon, sleep=Mock())
        remaining = iter([True, True, False])

        monitor.run(should_continue=lambda: next(remaining))

        assert vici_session.list_sas.call_count == 2
        vici_session.initiate.assert_not_called()

    def test_unexpected_tick_error_logged(self, metadata, charon, caplog):
        """An unexpected error in one tick doesn't end the loop"""
        metadata.get_self_service.side_effect = [KeyError("state"), Service(name="ipsec", state="active")]
        monitor = SAMonitor(metadata, charon, sleep=Mock())
        remaining = iter([True, True, False])

        monitor.run(should_continue=lambda: next(remaining))

        assert "tick failed" in caplog.text
        assert charon.connect_with_retry.call_count == 1
