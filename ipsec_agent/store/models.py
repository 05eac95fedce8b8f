# ipsec_agent/store/models.py
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Tuple


@dataclass(frozen=True)
class Entry:
    """One routable address known to the cluster"""
    ip_address: str         # with prefix, e.g. "10.42.0.5/16"
    host_ip_address: str    # agent IP of the owning host
    is_self: bool = False
    is_peer: bool = False

    @property
    def bare_ip(self) -> str:
        return bare_ip(self.ip_address)


def bare_ip(address: str) -> str:
    """Strip the prefix length from an address"""
    return address.split("/", 1)[0]


def _frozen(mapping=None) -> Mapping[str, Entry]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class TopologySnapshot:
    """
    Classified view of the cluster, rebuilt wholesale on every refresh

    All maps are keyed by bare IP and read-only. local and remote are
    disjoint; remote_non_peers is exactly remote minus peers.
    """
    self_entry: Entry = Entry("", "")
    entries: Tuple[Entry, ...] = ()
    local: Mapping[str, Entry] = field(default_factory=_frozen)
    remote: Mapping[str, Entry] = field(default_factory=_frozen)
    peers: Mapping[str, Entry] = field(default_factory=_frozen)
    remote_non_peers: Mapping[str, Entry] = field(default_factory=_frozen)
    local_subnet: str = ""

    @classmethod
    def build(cls, self_entry, entries, local, remote, peers, remote_non_peers, local_subnet) -> "TopologySnapshot":
        return cls(
            self_entry=self_entry,
            entries=tuple(entries),
            local=_frozen(local),
            remote=_frozen(remote),
            peers=_frozen(peers),
            remote_non_peers=_frozen(remote_non_peers),
            local_subnet=local_subnet,
        )
