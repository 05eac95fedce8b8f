# ipsec_agent/store/topology.py
"""
Topology Store

Turns a cluster snapshot into a classification of every known container
address as local, remote, peer or remote-non-peer.

Classification is a total function of the snapshot: every refresh rebuilds
all maps from scratch and swaps them in as one immutable TopologySnapshot.
Readers (ARP responder, SA monitor, control surface) always see either the
old or the new snapshot, never a mix.

Candidate order is part of the contract because the first container seen
for a bare IP wins: local-environment containers first, then region peer
containers, then region non-peer containers.
"""

import ipaddress
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Set, Tuple

from ..errors import SnapshotFetchError
from ..metadata.models import ClusterSnapshot, Container, Environment, Host, Network, Service
from .models import Entry, TopologySnapshot, bare_ip
from .network import get_bridge_info, get_subnet_prefix, is_container_considered_running

logger = logging.getLogger('ipsec-agent.store')

# Region containers are only picked up once they are past "stopping"
REGION_RUNNING_STATES = ("running", "starting")


@dataclass
class RegionInfo:
    """Per-refresh scratch data collected from linked environments"""
    peer_networks: Set[str] = field(default_factory=set)
    peer_containers: List[Container] = field(default_factory=list)
    non_peer_containers: List[Container] = field(default_factory=list)
    hosts: List[Host] = field(default_factory=list)


def get_services_map_by_name(services: List[Service], self_service: Service) -> Dict[str, List[Service]]:
    """
    Index system services by "stack/service", excluding the self service

    Names are not unique, hence a list per key.
    """
    services_map: Dict[str, List[Service]] = {}
    for service in services:
        if not service.system or service.uuid == self_service.uuid:
            continue
        services_map.setdefault(service.full_name, []).append(service)
    return services_map


class TopologyBuilder:
    """
    Single-use classifier for one snapshot

    build() returns a fresh TopologySnapshot and never touches shared state.
    """

    def __init__(self, snapshot: ClusterSnapshot):
        self.snapshot = snapshot
        self.self_container = snapshot.self_container
        self.self_host = snapshot.self_host
        self.self_service = snapshot.self_service
        self.networks_map: Dict[str, Network] = {n.uuid: n for n in snapshot.networks}

        self_network = self.networks_map.get(self.self_container.network_uuid)
        if self_network is None:
            raise SnapshotFetchError(
                f"couldn't find self network {self.self_container.network_uuid!r} in metadata"
            )
        self.self_network = self_network
        self.subnet_prefix = get_subnet_prefix(self_network)
        self.services_map_by_name = get_services_map_by_name(snapshot.services, self.self_service)
        self.hosts_map: Dict[str, Host] = {}

    def entry_from_container(self, container: Container, is_peer: bool = False) -> Entry:
        host = self.hosts_map.get(container.host_uuid)
        host_ip = host.agent_ip if host else ""
        entry = Entry(
            ip_address=container.primary_ip + self.subnet_prefix,
            host_ip_address=host_ip,
            is_self=container.primary_ip == self.self_container.primary_ip,
            is_peer=is_peer,
        )
        if not host_ip:
            logger.debug(f"couldn't find host IP for entry: {entry}")
        return entry

    def _linked_from_services(self) -> List[Service]:
        """System services declaring a link to the self service"""
        linked_to = self.self_service.full_name
        linked_from: List[Service] = []
        for service in self.snapshot.services:
            if not service.system:
                continue
            if linked_to in service.links:
                linked_from.extend(self.services_map_by_name.get(service.full_name, []))

        logger.debug(f"linkedFromServices: {[s.full_name for s in linked_from]}")
        return linked_from

    def linked_peers(self) -> Tuple[Set[str], List[Container]]:
        """
        Networks and containers reachable through service links

        Uses the self service's own links, or when it declares none, the
        services linking to it. Only containers on a network named like the
        self network count.
        """
        if self.self_service.links:
            linked_services: List[Service] = []
            for name in self.self_service.links:
                found = self.services_map_by_name.get(name)
                if not found:
                    logger.error(f"Current service is linked to service: {name}, but cannot find it in services")
                    continue
                linked_services.extend(found)
        else:
            linked_services = self._linked_from_services()

        networks: Set[str] = set()
        containers: List[Container] = []
        for service in linked_services:
            for container in service.containers:
                if not is_container_considered_running(container):
                    continue
                network = self.networks_map.get(container.network_uuid)
                if network is None or network.name != self.self_network.name:
                    continue
                containers.append(container)
                networks.add(container.network_uuid)

        logger.debug(f"linked peer networks: {sorted(networks)}")
        logger.debug(f"linked peer containers: {[c.primary_ip for c in containers]}")
        return networks, containers

    def region_info(self, environments: List[Environment]) -> RegionInfo:
        info = RegionInfo()
        for environment in environments:
            info.hosts.extend(environment.hosts)

            peer_network: Optional[Network] = None
            for network in environment.networks:
                if network.name == self.self_network.name:
                    peer_network = network
                    info.peer_networks.add(network.uuid)
                    break

            if peer_network is None:
                logger.debug(f"environment {environment.name} has no network named {self.self_network.name}")
                continue

            for container in environment.containers:
                if container.state not in REGION_RUNNING_STATES:
                    continue
                if (container.network_uuid != peer_network.uuid or
                        not container.primary_ip or
                        container.network_from_container_uuid):
                    continue

                if container.service_name == self.self_service.name:
                    info.peer_containers.append(container)
                else:
                    info.non_peer_containers.append(container)

        logger.debug(f"region peer networks: {sorted(info.peer_networks)}")
        logger.debug(f"region peer containers: {[c.primary_ip for c in info.peer_containers]}")
        logger.debug(f"region non-peer containers: {[c.primary_ip for c in info.non_peer_containers]}")
        return info

    def build(self) -> TopologySnapshot:
        peer_networks, peer_containers = self.linked_peers()
        peer_networks.add(self.self_container.network_uuid)

        all_hosts = list(self.snapshot.hosts)
        candidates = list(self.snapshot.containers)

        if self.snapshot.region:
            region = self.region_info(self.snapshot.environments)
            all_hosts.extend(region.hosts)
            peer_containers.extend(region.peer_containers)
            peer_networks.update(region.peer_networks)
            candidates.extend(region.peer_containers)
            candidates.extend(region.non_peer_containers)

        self.hosts_map = {h.uuid: h for h in all_hosts}
        self_entry = self.entry_from_container(self.self_container)

        for container in self.self_service.containers:
            if is_container_considered_running(container):
                peer_containers.append(container)

        # Last writer wins for peers
        peers: Dict[str, Entry] = {}
        for container in peer_containers:
            entry = self.entry_from_container(container, is_peer=True)
            peers[entry.bare_ip] = entry

        entries: List[Entry] = []
        local: Dict[str, Entry] = {}
        remote: Dict[str, Entry] = {}
        remote_non_peers: Dict[str, Entry] = {}
        seen: Set[str] = set()

        # First seen wins for classification
        for container in candidates:
            if not is_container_considered_running(container):
                continue
            if (container.network_uuid not in peer_networks or
                    not container.primary_ip or
                    container.network_from_container_uuid):
                continue

            ip = bare_ip(container.primary_ip)
            if ip in seen:
                continue
            seen.add(ip)

            entry = self.entry_from_container(container, is_peer=ip in peers)

            if entry.host_ip_address == self_entry.host_ip_address:
                local[ip] = entry
            else:
                remote[ip] = entry
                if not entry.is_peer:
                    remote_non_peers[ip] = entry

            logger.debug(f"entry: {entry}")
            entries.append(entry)

        # Peers that never made it through the candidate filters have no route
        dropped = [ip for ip in peers if ip not in local and ip not in remote]
        for ip in dropped:
            logger.debug(f"peer {ip} is not on a peer network, ignoring")
            del peers[ip]

        _, local_subnet = get_bridge_info(self.self_network, self.self_host)

        logger.debug(f"local: {sorted(local)}")
        logger.debug(f"remote: {sorted(remote)}")
        logger.debug(f"peers: {sorted(peers)}")
        logger.debug(f"remote non-peers: {sorted(remote_non_peers)}")

        return TopologySnapshot.build(
            self_entry=self_entry,
            entries=entries,
            local=local,
            remote=remote,
            peers=peers,
            remote_non_peers=remote_non_peers,
            local_subnet=local_subnet,
        )


def build_topology(snapshot: ClusterSnapshot) -> TopologySnapshot:
    return TopologyBuilder(snapshot).build()


class TopologyStore:
    """
    Holds the current TopologySnapshot

    Only refresh()/reload() write; the swap is guarded by a lock held just
    for the assignment, never during classification.
    """

    def __init__(self, client=None):
        self.client = client
        self._lock = threading.Lock()
        self._topology = TopologySnapshot()

    @property
    def topology(self) -> TopologySnapshot:
        return self._topology

    def refresh(self, snapshot: ClusterSnapshot) -> TopologySnapshot:
        """
        Rebuild the classification from a snapshot

        Raises:
            SnapshotFetchError: if the snapshot is inconsistent (no self
                network); the previous topology is kept
        """
        topology = build_topology(snapshot)
        with self._lock:
            self._topology = topology
        logger.info(
            f"Topology refreshed: {len(topology.local)} local, {len(topology.remote)} remote, "
            f"{len(topology.peers)} peers"
        )
        return topology

    def reload(self) -> TopologySnapshot:
        """Fetch a snapshot from the metadata client and refresh"""
        if self.client is None:
            raise SnapshotFetchError("no metadata client configured")

        logger.debug("Reloading ...")
        try:
            snapshot = self.client.fetch_snapshot()
        except SnapshotFetchError as e:
            logger.error(f"couldn't fetch cluster snapshot, keeping previous topology: {e}")
            raise
        return self.refresh(snapshot)

    def is_remote(self, ip_address: str) -> bool:
        """True if the address lives on another host"""
        topology = self._topology
        if ip_address in topology.local:
            logger.debug(f"Local: {ip_address}")
            return False

        if ip_address in topology.remote:
            logger.debug(f"Remote: {ip_address}")
            return True
        return False

    def entries(self) -> Tuple[Entry, ...]:
        return self._topology.entries

    def local_map(self) -> Mapping[str, Entry]:
        return self._topology.local

    def remote_map(self) -> Mapping[str, Entry]:
        return self._topology.remote

    def peer_map(self) -> Mapping[str, Entry]:
        return self._topology.peers

    def remote_non_peer_map(self) -> Mapping[str, Entry]:
        return self._topology.remote_non_peers

    def local_subnet(self) -> str:
        return self._topology.local_subnet

    def local_host_ip_address(self) -> str:
        return self._topology.self_entry.host_ip_address

    def local_ip_address(self) -> str:
        """Bare IP of the agent's own container, empty if unknown"""
        address = self._topology.self_entry.ip_address
        try:
            return str(ipaddress.ip_interface(address).ip)
        except ValueError as e:
            logger.error(f"error parsing self address {address!r}: {e}")
            return ""
