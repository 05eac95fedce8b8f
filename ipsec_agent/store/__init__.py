"""
Topology Store Module

Classified view of cluster addresses:
- Entry / TopologySnapshot value types
- TopologyStore with atomic refresh
- CNI network config helpers
"""

from .models import Entry, TopologySnapshot, bare_ip
from .topology import TopologyStore, build_topology

__all__ = ["Entry", "TopologySnapshot", "TopologyStore", "bare_ip", "build_topology"]
