# ipsec_agent/metadata/change_handler.py
import logging
from typing import Protocol

from .client import MetadataClient

logger = logging.getLogger('ipsec-agent.mdchandler')

DEFAULT_CHANGE_CHECK_INTERVAL = 2


class Backend(Protocol):
    def reload(self) -> None: ...


class MetadataChangeHandler:
    """
    Listens for metadata version changes and reloads the backend
    """

    def __init__(self, client: MetadataClient, backend: Backend, interval: float = DEFAULT_CHANGE_CHECK_INTERVAL):
        self.client = client
        self.backend = backend
        self.interval = interval

    def on_change(self, version: str) -> bool:
        """Callback for a new metadata version, returns True if the reload succeeded"""
        logger.info(f"Metadata OnChange received, version: {version}")
        try:
            self.backend.reload()
        except Exception as e:
            logger.error(f"Error reloading backend after receiving the metadata change: {e}")
            return False

        logger.debug("Reload successful")
        return True

    def start(self):
        """Blocks, polling the metadata version forever"""
        logger.debug("Starting the MetadataChangeHandler")
        self.client.on_change(self.interval, self.on_change)
