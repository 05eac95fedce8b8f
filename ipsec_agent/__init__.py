"""
IPSec Overlay Agent

Per-host agent that keeps the IPSec overlay network of a container cluster
in shape:
- Classifies every cluster address as local, remote, peer or remote-non-peer
- Answers ARP requests for remote addresses (proxy ARP)
- Re-initiates CHILD_SAs that have silently disappeared from charon
- Validates and fingerprints the base IKE/CHILD_SA templates
"""

__version__ = "1.0.0"
__all__ = ["TopologyStore", "Templates", "SAMonitor", "ArpProxy"]

from .store import TopologyStore
from .ipsec.templates import Templates
from .monitor import SAMonitor
from .arp import ArpProxy
