# ipsec_agent/ipsec/overlay.py
"""
IPSec Overlay backend

Entry point for every reload (startup, metadata change, control surface):
refresh the topology, reload the templates, then let the connection builder
program charon from both.
"""

import logging
import threading
from typing import Optional, Protocol

from ..store import TopologyStore
from .templates import Templates

logger = logging.getLogger('ipsec-agent.overlay')


class ConnectionBuilder(Protocol):
    """Programs per-peer IKE/CHILD_SA connections into the tunnel daemon"""

    def apply(self, store: TopologyStore, templates: Templates, templates_changed: bool) -> None: ...


class Overlay:
    """
    Backend reloaded by the metadata change handler and the control surface
    """

    def __init__(self, store: TopologyStore, templates: Templates, builder: Optional[ConnectionBuilder] = None):
        self.store = store
        self.templates = templates
        self.builder = builder
        self._applied_revision = ""
        # Reloads come from several threads
        self._reload_lock = threading.Lock()

    def reload(self):
        """
        Raises:
            SnapshotFetchError, InvalidTemplateError, OSError: the failing
                step's error; earlier state stays in effect
        """
        with self._reload_lock:
            self.store.reload()
            revision = self.templates.reload()

            templates_changed = revision != self._applied_revision
            if templates_changed:
                logger.info(f"Template revision changed: {self._applied_revision[:12] or '-'} -> {revision[:12]}")

            if self.builder is not None:
                self.builder.apply(self.store, self.templates, templates_changed)
            self._applied_revision = revision
