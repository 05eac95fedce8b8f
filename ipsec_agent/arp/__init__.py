"""
ARP Proxy Module

- Ethernet/ARP frame codec
- Raw socket listener
- Proxy responder for remote addresses
"""

from .packet import ArpPacket, EthernetFrame, Operation, build_reply, build_request, parse_frame
from .proxy import ArpProxy, RawArpSocket, listen_and_serve

__all__ = [
    "ArpPacket",
    "EthernetFrame",
    "Operation",
    "build_reply",
    "build_request",
    "parse_frame",
    "ArpProxy",
    "RawArpSocket",
    "listen_and_serve",
]
