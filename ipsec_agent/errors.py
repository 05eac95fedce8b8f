# ipsec_agent/errors.py
"""
Error taxonomy for the IPSec agent

Transient errors (snapshot fetch, daemon connect, per-host initiate) are
logged and retried by the owning loop on its next cycle. TransportError is
fatal to the ARP responder and ends the process.
"""

from typing import Optional


class IPSecAgentError(Exception):
    """Base class for all agent errors"""


class SnapshotFetchError(IPSecAgentError):
    """Cluster metadata could not be fetched or decoded"""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


MetadataFetchError = SnapshotFetchError


class InvalidTemplateError(IPSecAgentError):
    """A tunnel configuration template failed validation"""

    def __init__(self, name: str, raw: bytes, reason: str):
        super().__init__(f"invalid template {name}: {reason}")
        self.name = name
        self.raw = raw
        self.reason = reason


class DaemonUnavailableError(IPSecAgentError):
    """The tunnel daemon control socket could not be reached"""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class TransportError(IPSecAgentError):
    """Raw socket read/write failure in the ARP responder"""


class InitiateError(IPSecAgentError):
    """The tunnel daemon refused to initiate a CHILD_SA"""

    def __init__(self, child: str, reason: str, host: Optional[str] = None):
        super().__init__(f"failed to initiate {child}: {reason}")
        self.child = child
        self.host = host
        self.reason = reason
