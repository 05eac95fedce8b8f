# ipsec_agent/arp/proxy.py
"""
ARP Proxy Responder

Answers ARP requests for addresses classified as remote so that L2 traffic
towards them is captured by this host and routed into the tunnel. Only
requests sent to broadcast or to the listening interface itself are
considered.
"""

import logging
import socket
from typing import Optional, Protocol

from ..errors import TransportError
from .packet import (
    BROADCAST,
    ETH_P_ARP,
    EthernetFrame,
    InvalidPacketError,
    Operation,
    build_reply,
    format_mac,
    parse_frame,
)

logger = logging.getLogger('ipsec-agent.arp')

_RECV_SIZE = 1514


class RemoteLookup(Protocol):
    def is_remote(self, ip_address: str) -> bool: ...


class ArpClient(Protocol):
    hardware_addr: bytes

    def read(self) -> EthernetFrame: ...

    def write(self, frame: EthernetFrame) -> None: ...


class RawArpSocket:
    """
    AF_PACKET socket bound to one interface, receiving ARP frames only
    """

    def __init__(self, interface: str):
        self.interface = interface
        try:
            self._sock = socket.socket(socket.AF_PACKET, socket.SOCK_RAW, socket.htons(ETH_P_ARP))
            self._sock.bind((interface, ETH_P_ARP))
        except OSError as e:
            raise TransportError(f"couldn't open raw ARP socket on {interface}: {e}") from e

        # (ifname, proto, pkttype, hatype, addr)
        self.hardware_addr: bytes = self._sock.getsockname()[4]

    def read(self) -> EthernetFrame:
        """Block until a valid ARP frame arrives; malformed frames are skipped"""
        while True:
            try:
                data = self._sock.recv(_RECV_SIZE)
            except OSError as e:
                raise TransportError(f"read on {self.interface} failed: {e}") from e

            try:
                return parse_frame(data)
            except InvalidPacketError as e:
                logger.debug(f"Skipping invalid frame on {self.interface}: {e}")

    def write(self, frame: EthernetFrame):
        try:
            self._sock.send(frame.marshal())
        except OSError as e:
            raise TransportError(f"write on {self.interface} failed: {e}") from e

    def close(self):
        self._sock.close()


class ArpProxy:
    """
    Proxy ARP responder driven by the Topology Store's remote classification
    """

    def __init__(self, store: RemoteLookup, client: ArpClient):
        self.store = store
        self.client = client

    def handle(self, frame: EthernetFrame) -> Optional[EthernetFrame]:
        """Return the reply for a frame, or None if it must be ignored"""
        request = frame.packet
        if request.operation != Operation.REQUEST:
            return None
        if frame.destination not in (BROADCAST, self.client.hardware_addr):
            return None

        target_ip = str(request.target_ip)
        logger.debug(f"Arp request for {target_ip}")
        if not self.store.is_remote(target_ip):
            return None

        logger.debug(f"Sending arp reply for {target_ip} to {format_mac(request.sender_hardware_addr)}")
        return build_reply(request, self.client.hardware_addr)

    def serve_forever(self):
        """
        Read and answer requests until the transport fails

        Raises:
            TransportError: on any read or write failure
        """
        while True:
            frame = self.client.read()
            reply = self.handle(frame)
            if reply is not None:
                self.client.write(reply)


def listen_and_serve(store: RemoteLookup, interface: str = "eth0"):
    """Open a raw socket on interface and serve proxy ARP forever"""
    client = RawArpSocket(interface)
    logger.info(f"Listening for ARP requests on {interface} ({format_mac(client.hardware_addr)})")
    try:
        ArpProxy(store, client).serve_forever()
    finally:
        client.close()
