# ipsec_agent/metadata/client.py
"""
Metadata Client
Read-only HTTP client for the cluster metadata service
"""

import time
import logging
from typing import Any, Callable, List, Optional, Type, TypeVar

import requests
from pydantic import BaseModel, TypeAdapter, ValidationError

from ..errors import SnapshotFetchError
from .models import ClusterSnapshot, Container, Environment, Host, Network, Service

logger = logging.getLogger('ipsec-agent.metadata')

T = TypeVar("T", bound=BaseModel)


class MetadataClient:
    """
    Client for the metadata service

    Every fetch failure (transport, HTTP status, undecodable body) surfaces
    as SnapshotFetchError carrying the requested path.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    def _get(self, path: str) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise SnapshotFetchError(f"GET {path} failed: {e}", path=path) from e
        return response

    def _get_text(self, path: str) -> str:
        # Scalar values are served as plain text
        response = self._get(path)
        return response.text.strip()

    def _get_model(self, path: str, model: Type[T]) -> T:
        response = self._get(path)
        try:
            return model.model_validate_json(response.content)
        except ValidationError as e:
            raise SnapshotFetchError(f"couldn't decode {path}: {e}", path=path) from e

    def _get_list(self, path: str, model: Type[T]) -> List[T]:
        response = self._get(path)
        try:
            return TypeAdapter(List[model]).validate_json(response.content)
        except ValidationError as e:
            raise SnapshotFetchError(f"couldn't decode {path}: {e}", path=path) from e

    def get_version(self) -> str:
        return self._get_text("/version")

    def get_self_container(self) -> Container:
        return self._get_model("/self/container", Container)

    def get_self_host(self) -> Host:
        return self._get_model("/self/host", Host)

    def get_self_service(self) -> Service:
        return self._get_model("/self/service", Service)

    def get_hosts(self) -> List[Host]:
        return self._get_list("/hosts", Host)

    def get_containers(self) -> List[Container]:
        return self._get_list("/containers", Container)

    def get_services(self) -> List[Service]:
        return self._get_list("/services", Service)

    def get_networks(self) -> List[Network]:
        return self._get_list("/networks", Network)

    def get_region_name(self) -> str:
        return self._get_text("/self/region/name")

    def get_environments(self) -> List[Environment]:
        return self._get_list("/environments", Environment)

    def fetch_snapshot(self) -> ClusterSnapshot:
        """
        Fetch everything a topology refresh needs

        Raises:
            SnapshotFetchError: if any of the mandatory documents is unavailable
        """
        self_container = self.get_self_container()
        self_host = self.get_self_host()

        try:
            region = self.get_region_name()
        except SnapshotFetchError as e:
            logger.debug(f"couldn't get region name from metadata: {e}")
            region = ""
        logger.debug(f"region: {region}")

        hosts = self.get_hosts()
        containers = self.get_containers()
        self_service = self.get_self_service()
        services = self.get_services()
        networks = self.get_networks()

        environments: List[Environment] = []
        if region:
            try:
                environments = self.get_environments()
            except SnapshotFetchError as e:
                logger.error(f"error fetching environments from metadata: {e}")
            logger.debug(f"environments: {[env.name for env in environments]}")

        return ClusterSnapshot(
            self_container=self_container,
            self_host=self_host,
            self_service=self_service,
            hosts=hosts,
            containers=containers,
            services=services,
            networks=networks,
            region=region or None,
            environments=environments,
        )

    def wait_until_ready(self, interval: float = 1.0, sleep: Callable[[float], Any] = time.sleep) -> str:
        """Block until the metadata service answers, returns its version"""
        while True:
            try:
                return self.get_version()
            except SnapshotFetchError as e:
                logger.info(f"Waiting for metadata: {e}")
                sleep(interval)

    def on_change(
        self,
        interval: float,
        callback: Callable[[str], Any],
        sleep: Callable[[float], Any] = time.sleep,
        should_continue: Callable[[], bool] = lambda: True,
    ):
        """
        Poll the metadata version and call callback(version) whenever it changes

        Runs until should_continue() returns False. Poll errors are logged and
        retried on the next interval.
        """
        last_version = None
        while should_continue():
            try:
                version = self.get_version()
            except SnapshotFetchError as e:
                logger.error(f"Error reading metadata version: {e}")
                sleep(interval)
                continue

            if version != last_version:
                last_version = version
                callback(version)

            sleep(interval)
