# tests/agent/conftest.py
"""
Pytest fixtures for Agent tests
Shared cluster builders and mock objects
"""

import logging
from typing import Dict, List, Optional

import pytest

from ipsec_agent.metadata.models import (
    ClusterSnapshot,
    Container,
    Environment,
    Host,
    Network,
    Service,
)

SELF_HOST_IP = "192.168.0.1"


def cni_metadata(subnet_prefix: str = "/16", bridge_subnet: str = "10.42.0.1/16", bridge: str = "docker0") -> dict:
    return {
        "cniConfig": {
            "10-rancher.conf": {
                "type": "rancher-bridge",
                "bridge": bridge,
                "bridgeSubnet": bridge_subnet,
                "ipam": {
                    "type": "rancher-cni-ipam",
                    "subnetPrefixSize": subnet_prefix,
                },
            }
        }
    }


class ClusterBuilder:
    """
    Builds ClusterSnapshot objects for tests

    Default cluster: three hosts, one managed network, the ipsec service
    with its container on host-1 (self).
    """

    def __init__(self):
        self.network = Network(uuid="net-1", name="managed", metadata=cni_metadata())
        self.networks: List[Network] = [self.network]
        self.hosts: List[Host] = [
            Host(uuid="host-1", name="host-1", agent_ip=SELF_HOST_IP),
            Host(uuid="host-2", name="host-2", agent_ip="192.168.0.2"),
            Host(uuid="host-3", name="host-3", agent_ip="192.168.0.3"),
        ]
        self.self_host = self.hosts[0]
        self.self_container = self.container("10.42.0.2", "host-1", service_name="ipsec", name="ipsec-1")
        self.containers: List[Container] = [self.self_container]
        self.self_service_containers: List[Container] = [self.self_container]
        self.self_service_links: Dict[str, str] = {}
        self.self_service_state = "active"
        self.services: List[Service] = []
        self.region: Optional[str] = None
        self.environments: List[Environment] = []

    def container(
        self,
        ip: str,
        host_uuid: str,
        state: str = "running",
        network_uuid: str = "net-1",
        service_name: str = "web",
        **kwargs,
    ) -> Container:
        return Container(
            uuid=kwargs.pop("uuid", f"c-{ip}-{host_uuid}"),
            primary_ip=ip,
            host_uuid=host_uuid,
            state=state,
            network_uuid=network_uuid,
            service_name=service_name,
            **kwargs,
        )

    def add(self, ip: str, host_uuid: str, **kwargs) -> Container:
        container = self.container(ip, host_uuid, **kwargs)
        self.containers.append(container)
        return container

    def self_service(self) -> Service:
        return Service(
            uuid="svc-ipsec",
            name="ipsec",
            stack_name="network",
            kind="service",
            system=True,
            state=self.self_service_state,
            links=self.self_service_links,
            containers=self.self_service_containers,
        )

    def snapshot(self) -> ClusterSnapshot:
        return ClusterSnapshot(
            self_container=self.self_container,
            self_host=self.self_host,
            self_service=self.self_service(),
            hosts=self.hosts,
            containers=self.containers,
            services=[self.self_service()] + self.services,
            networks=self.networks,
            region=self.region,
            environments=self.environments,
        )


@pytest.fixture
def cluster():
    """Fresh ClusterBuilder with the default three-host cluster"""
    return ClusterBuilder()


@pytest.fixture
def restore_log_level():
    """Put the root logger level back after a test changes it"""
    root = logging.getLogger()
    level = root.level
    yield
    root.setLevel(level)
