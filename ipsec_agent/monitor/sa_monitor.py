# ipsec_agent/monitor/sa_monitor.py
"""
SA Monitor

Level-triggered reconciliation of IPSec SAs: every tick compares the hosts
of the cluster with the SAs charon reports and initiates the CHILD_SA of
every host that has none. A missed event (charon restart, transient error)
heals on the next tick.
"""

import time
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..errors import DaemonUnavailableError, InitiateError, SnapshotFetchError
from ..ipsec.charon import CharonClient
from ..metadata.client import MetadataClient
from ..metadata.models import Host

logger = logging.getLogger('ipsec-agent.samonitor')

START_DELAY = 60
MONITOR_SAS_INTERVAL = 5
ACTIVE_STATE = "active"


def child_sa_name(host_ip: str) -> str:
    return f"child-{host_ip}"


def build_hosts_map(hosts: List[Host], self_host: Host) -> Dict[str, bool]:
    """Agent IP of every host except self, all marked not found"""
    return {host.agent_ip: False for host in hosts if host.uuid != self_host.uuid}


@dataclass
class ReconcileResult:
    """Outcome of one tick; skipped carries the reason when nothing was reconciled"""
    skipped: Optional[str] = None
    expected: Dict[str, bool] = field(default_factory=dict)
    initiated: List[str] = field(default_factory=list)
    failures: List[InitiateError] = field(default_factory=list)

    @property
    def missing(self) -> List[str]:
        return [host for host, found in self.expected.items() if not found]


class SAMonitor:
    """
    Watches charon's SAs and initiates the missing tunnels
    """

    def __init__(
        self,
        metadata: MetadataClient,
        charon: CharonClient,
        interval: float = MONITOR_SAS_INTERVAL,
        start_delay: float = START_DELAY,
        sleep: Callable[[float], Any] = time.sleep,
    ):
        self.metadata = metadata
        self.charon = charon
        self.interval = interval
        self.start_delay = start_delay
        self._sleep = sleep

    def tick(self) -> ReconcileResult:
        try:
            self_service = self.metadata.get_self_service()
        except SnapshotFetchError as e:
            logger.error(f"samonitor: error fetching self service: {e}")
            return ReconcileResult(skipped=f"self service unavailable: {e}")

        if self_service.state != ACTIVE_STATE:
            logger.info(f"samonitor: skipping as service is not active but in {self_service.state} state")
            return ReconcileResult(skipped=f"service state {self_service.state}")

        try:
            hosts = self.metadata.get_hosts()
            self_host = self.metadata.get_self_host()
        except SnapshotFetchError as e:
            logger.error(f"samonitor: error fetching hosts: {e}")
            return ReconcileResult(skipped=f"hosts unavailable: {e}")

        result = ReconcileResult(expected=build_hosts_map(hosts, self_host))
        logger.debug(f"samonitor: hostsMap: {result.expected}")

        try:
            session = self.charon.connect_with_retry()
        except DaemonUnavailableError as e:
            logger.error(f"samonitor: error getting charon client: {e}")
            result.skipped = f"charon unavailable: {e}"
            return result

        with session:
            try:
                sas = session.list_sas()
            except DaemonUnavailableError as e:
                logger.error(f"samonitor: {e}")
                result.skipped = str(e)
                return result

            for sa in sas:
                logger.debug(f"samonitor: sa: {sa}")
                if sa.remote_host in result.expected:
                    result.expected[sa.remote_host] = True

            for host in result.missing:
                logger.info(f"samonitor: expected SA for host: {host}, but not found.")
                child = child_sa_name(host)
                try:
                    session.initiate(child, host=host)
                except InitiateError as e:
                    logger.error(f"samonitor: error initiating missing SA {child}: {e}")
                    result.failures.append(e)
                    continue
                result.initiated.append(child)

        return result

    def run(self, should_continue: Callable[[], bool] = lambda: True):
        """Sleep the start delay, then tick forever"""
        logger.info(f"samonitor: sleeping initially for {self.start_delay}s")
        self._sleep(self.start_delay)
        logger.info("samonitor: started monitoring IPSec SAs")
        while should_continue():
            self._sleep(self.interval)
            try:
                self.tick()
            except Exception as e:
                logger.error(f"samonitor: tick failed: {e}")
