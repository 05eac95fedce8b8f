#!/usr/bin/env python3
# ipsec_agent/agent.py
"""
IPSec Overlay Agent Daemon
Runs on each container host to keep the IPSec overlay in sync with the cluster
"""

import sys
import queue
import logging
import argparse
import threading
from typing import Any, Callable, List, Optional, Tuple

from . import __version__
from .arp.proxy import listen_and_serve as arp_listen_and_serve
from .config import Settings
from .errors import DaemonUnavailableError, IPSecAgentError
from .ipsec.charon import CharonClient
from .ipsec.overlay import ConnectionBuilder, Overlay
from .ipsec.templates import Templates
from .metadata.change_handler import MetadataChangeHandler
from .metadata.client import MetadataClient
from .monitor.sa_monitor import SAMonitor
from .server.web import listen_and_serve as http_listen_and_serve
from .store import TopologyStore

logger = logging.getLogger('ipsec-agent')


class IPSecAgent:
    """
    IPSec Agent - Main daemon class

    Responsibilities:
    1. Build the topology from metadata and keep it refreshed on change
    2. Answer ARP requests for remote addresses
    3. Re-initiate missing SAs
    4. Serve the control surface (ping, reload, loglevel)

    Each long-running loop gets its own thread. The first loop to end,
    cleanly or not, ends the agent.
    """

    def __init__(self, settings: Settings, builder: Optional[ConnectionBuilder] = None):
        self.settings = settings

        # Initialize components
        self.metadata = MetadataClient(settings.metadata_url)
        self.charon = CharonClient(settings.charon_socket)
        self.store = TopologyStore(self.metadata)
        self.templates = Templates(settings.ipsec_config_dir)
        self.overlay = Overlay(self.store, self.templates, builder)
        self.change_handler = MetadataChangeHandler(
            self.metadata, self.overlay, interval=settings.change_check_interval
        )
        self.sa_monitor = SAMonitor(
            self.metadata,
            self.charon,
            interval=settings.sa_monitor_interval,
            start_delay=settings.sa_monitor_start_delay,
        )

        self._done: "queue.Queue[Tuple[str, Optional[BaseException]]]" = queue.Queue()
        self.threads: List[threading.Thread] = []

    def _spawn(self, name: str, target: Callable[..., Any], *args):
        def runner():
            try:
                target(*args)
            except Exception as e:
                logger.error(f"{name} stopped with error: {e}")
                self._done.put((name, e))
            else:
                logger.info(f"{name} stopped")
                self._done.put((name, None))

        thread = threading.Thread(target=runner, name=name, daemon=True)
        thread.start()
        self.threads.append(thread)

    def start(self):
        """Initial load and thread start-up; raises on unrecoverable startup failures"""
        logger.info("Reading info from metadata")
        self.metadata.wait_until_ready()
        self.store.reload()

        self._spawn("arp", arp_listen_and_serve, self.store, self.settings.arp_interface)

        host, port = self.settings.listen_host_port
        logger.debug(f"About to start server and listen on {host}:{port}")
        self._spawn("server", http_listen_and_serve, self.overlay, host, port)

        self.overlay.reload()

        self._spawn("mdchandler", self.change_handler.start)
        self._spawn("samonitor", self.sa_monitor.run)

    def wait(self) -> Optional[BaseException]:
        """Block until the first loop ends, returns its error if any"""
        name, error = self._done.get()
        logger.info(f"Agent shutting down after {name} ended")
        return error

    def run(self) -> int:
        """Main daemon entry, returns the process exit status"""
        logger.info(f"Starting IPSec Agent {__version__}")
        try:
            self.start()
        except (IPSecAgentError, OSError) as e:
            logger.error(f"error: {e}")
            return 1

        return 1 if self.wait() is not None else 0


def check_charon(client: CharonClient) -> int:
    try:
        version = client.check()
    except DaemonUnavailableError as e:
        logger.error(f"Failed to talk to charon: {e}")
        return 1
    logger.info(f"charon {version.get('daemon', '')} {version.get('version', '')} is reachable")
    return 0


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="IPSec Overlay Agent")
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "-c", "--ipsec-config",
        default=settings.ipsec_config_dir,
        help="Configuration directory holding ike.conf and childsa.conf",
    )
    parser.add_argument(
        "--listen",
        default=settings.listen,
        help="Control surface listen address",
    )
    parser.add_argument(
        "--metadata-address",
        default=settings.metadata_address,
        help="Metadata address to use",
    )
    parser.add_argument(
        "--interface",
        default=settings.arp_interface,
        help="Interface to answer ARP requests on",
    )
    parser.add_argument(
        "--charon-socket",
        default=settings.charon_socket,
        help="charon VICI socket",
    )
    parser.add_argument("--debug", action="store_true", default=settings.debug, help="Enable debug logging")
    parser.add_argument("--test-charon", action="store_true", help="Check that charon is reachable and exit")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    settings = Settings()
    args = build_parser(settings).parse_args(argv)

    settings = settings.model_copy(update={
        "ipsec_config_dir": args.ipsec_config,
        "listen": args.listen,
        "metadata_address": args.metadata_address,
        "arp_interface": args.interface,
        "charon_socket": args.charon_socket,
        "debug": args.debug,
    })

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()],
    )
    if settings.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.test_charon:
        return check_charon(CharonClient(settings.charon_socket))

    return IPSecAgent(settings).run()


if __name__ == "__main__":
    sys.exit(main())
