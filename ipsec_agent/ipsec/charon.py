# ipsec_agent/ipsec/charon.py
"""
charon (strongSwan) control client

Thin wrapper over the VICI protocol: list the live SAs and initiate
CHILD_SAs. A connection is opened per use and closed afterwards.
"""

import time
import socket
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import vici
from vici.exception import CommandException, DeserializationException, SessionException

from ..errors import DaemonUnavailableError, InitiateError

logger = logging.getLogger('ipsec-agent.charon')

DEFAULT_VICI_SOCKET = "/var/run/charon.vici"
CONNECT_ATTEMPTS = 3
CONNECT_RETRY_DELAY = 1.0
# Upper bound charon waits for a negotiation before answering initiate, in ms
INITIATE_TIMEOUT_MS = 5000

VICI_ERRORS = (SessionException, CommandException, DeserializationException, OSError)


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    return "" if value is None else str(value)


@dataclass(frozen=True)
class SecurityAssociation:
    name: str
    remote_host: str
    state: str = ""


class CharonSession:
    """One open VICI connection, usable as a context manager"""

    def __init__(self, session: vici.Session, sock: Optional[socket.socket] = None):
        self.session = session
        self._sock = sock

    def __enter__(self) -> "CharonSession":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def version(self) -> Dict[str, str]:
        try:
            info = self.session.version()
        except VICI_ERRORS as e:
            raise DaemonUnavailableError(f"couldn't query charon version: {e}") from e
        return {_text(k): _text(v) for k, v in info.items()}

    def list_sas(self) -> List[SecurityAssociation]:
        """
        All IKE_SAs known to charon

        Raises:
            DaemonUnavailableError: if the listing fails
        """
        sas = []
        try:
            for record in self.session.list_sas():
                for name, details in record.items():
                    sas.append(SecurityAssociation(
                        name=_text(name),
                        remote_host=_text(details.get("remote-host")),
                        state=_text(details.get("state")),
                    ))
        except VICI_ERRORS as e:
            raise DaemonUnavailableError(f"error getting list of sas from charon: {e}") from e
        return sas

    def initiate(self, child: str, host: Optional[str] = None, timeout: int = INITIATE_TIMEOUT_MS):
        """
        Initiate a CHILD_SA by name, draining charon's log stream

        charon answers after at most timeout ms so one unreachable peer
        cannot stall the caller.

        Raises:
            InitiateError: if charon refuses or the connection breaks
        """
        try:
            for log in self.session.initiate({"child": child, "timeout": str(timeout)}):
                logger.debug(f"charon: {_text(log.get('msg'))}")
        except VICI_ERRORS as e:
            raise InitiateError(child, str(e), host=host) from e


class CharonClient:
    """
    Opens VICI sessions to charon

    Args:
        socket_path: charon's VICI UNIX socket
        attempts: connection attempts before giving up
        delay: pause between attempts in seconds
    """

    def __init__(
        self,
        socket_path: str = DEFAULT_VICI_SOCKET,
        attempts: int = CONNECT_ATTEMPTS,
        delay: float = CONNECT_RETRY_DELAY,
        sleep: Callable[[float], Any] = time.sleep,
    ):
        self.socket_path = socket_path
        self.attempts = attempts
        self.delay = delay
        self._sleep = sleep

    def connect(self) -> CharonSession:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(self.socket_path)
        except OSError as e:
            sock.close()
            raise DaemonUnavailableError(f"couldn't connect to charon at {self.socket_path}: {e}") from e
        return CharonSession(vici.Session(sock), sock)

    def connect_with_retry(self) -> CharonSession:
        """
        Connect, retrying a fixed number of times

        Raises:
            DaemonUnavailableError: after the last failed attempt
        """
        last_error: Optional[DaemonUnavailableError] = None
        for attempt in range(1, self.attempts + 1):
            try:
                return self.connect()
            except DaemonUnavailableError as e:
                last_error = e
                if attempt > 1:
                    logger.error(f"Failed to connect to charon (attempt {attempt}/{self.attempts}): {e}")
                if attempt < self.attempts:
                    self._sleep(self.delay)

        raise DaemonUnavailableError(str(last_error), attempts=self.attempts)

    def check(self) -> Dict[str, str]:
        """Connect once and return charon's version info"""
        with self.connect_with_retry() as session:
            return session.version()
