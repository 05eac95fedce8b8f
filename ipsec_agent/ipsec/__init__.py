"""
IPSec Module

- Base IKE/CHILD_SA templates
- charon VICI client
- Overlay reload backend
"""

from .templates import ChildSAConf, IKEConf, Templates
from .charon import CharonClient, CharonSession, SecurityAssociation
from .overlay import ConnectionBuilder, Overlay

__all__ = [
    "ChildSAConf",
    "IKEConf",
    "Templates",
    "CharonClient",
    "CharonSession",
    "SecurityAssociation",
    "ConnectionBuilder",
    "Overlay",
]
