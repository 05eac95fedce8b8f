# ipsec_agent/arp/packet.py
"""
ARP over Ethernet frame codec (IPv4 only)
"""

import ipaddress
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

ETH_P_ARP = 0x0806
ETH_P_IP = 0x0800
HTYPE_ETHERNET = 1

BROADCAST = b"\xff" * 6

_ETH_HEADER = struct.Struct("!6s6sH")
_ARP_PACKET = struct.Struct("!HHBBH6s4s6s4s")
_MIN_FRAME_LEN = 60


class Operation(IntEnum):
    REQUEST = 1
    REPLY = 2


class InvalidPacketError(ValueError):
    """Frame is not an Ethernet/IPv4 ARP packet"""


def format_mac(addr: bytes) -> str:
    return ":".join(f"{b:02x}" for b in addr)


@dataclass(frozen=True)
class ArpPacket:
    operation: int
    sender_hardware_addr: bytes
    sender_ip: ipaddress.IPv4Address
    target_hardware_addr: bytes
    target_ip: ipaddress.IPv4Address

    def marshal(self) -> bytes:
        return _ARP_PACKET.pack(
            HTYPE_ETHERNET,
            ETH_P_IP,
            6,
            4,
            self.operation,
            self.sender_hardware_addr,
            self.sender_ip.packed,
            self.target_hardware_addr,
            self.target_ip.packed,
        )


@dataclass(frozen=True)
class EthernetFrame:
    destination: bytes
    source: bytes
    packet: ArpPacket

    def marshal(self) -> bytes:
        frame = _ETH_HEADER.pack(self.destination, self.source, ETH_P_ARP) + self.packet.marshal()
        # Pad to the minimum Ethernet frame size
        return frame.ljust(_MIN_FRAME_LEN, b"\x00")


def parse_frame(data: bytes) -> EthernetFrame:
    """
    Decode an Ethernet frame carrying an ARP packet

    Raises:
        InvalidPacketError: for anything but Ethernet/IPv4 ARP
    """
    if len(data) < _ETH_HEADER.size + _ARP_PACKET.size:
        raise InvalidPacketError(f"frame too short: {len(data)} bytes")

    destination, source, ethertype = _ETH_HEADER.unpack_from(data)
    if ethertype != ETH_P_ARP:
        raise InvalidPacketError(f"unexpected ethertype 0x{ethertype:04x}")

    (htype, ptype, hlen, plen, operation,
     sha, spa, tha, tpa) = _ARP_PACKET.unpack_from(data, _ETH_HEADER.size)
    if htype != HTYPE_ETHERNET or ptype != ETH_P_IP or hlen != 6 or plen != 4:
        raise InvalidPacketError(f"unsupported ARP hardware/protocol {htype}/0x{ptype:04x}")

    packet = ArpPacket(
        operation=operation,
        sender_hardware_addr=sha,
        sender_ip=ipaddress.IPv4Address(spa),
        target_hardware_addr=tha,
        target_ip=ipaddress.IPv4Address(tpa),
    )
    return EthernetFrame(destination=destination, source=source, packet=packet)


def build_request(
    sender_hw: bytes,
    sender_ip: str,
    target_ip: str,
    destination: bytes = BROADCAST,
    operation: int = Operation.REQUEST,
) -> EthernetFrame:
    """Build a who-has frame, mostly useful for probing and tests"""
    packet = ArpPacket(
        operation=operation,
        sender_hardware_addr=sender_hw,
        sender_ip=ipaddress.IPv4Address(sender_ip),
        target_hardware_addr=b"\x00" * 6,
        target_ip=ipaddress.IPv4Address(target_ip),
    )
    return EthernetFrame(destination=destination, source=sender_hw, packet=packet)


def build_reply(request: ArpPacket, hardware_addr: bytes, ip: Optional[ipaddress.IPv4Address] = None) -> EthernetFrame:
    """
    Answer a request with hardware_addr bound to ip (default: the requested target)

    The reply goes back to the requester's hardware address.
    """
    packet = ArpPacket(
        operation=Operation.REPLY,
        sender_hardware_addr=hardware_addr,
        sender_ip=ip if ip is not None else request.target_ip,
        target_hardware_addr=request.sender_hardware_addr,
        target_ip=request.sender_ip,
    )
    return EthernetFrame(destination=request.sender_hardware_addr, source=hardware_addr, packet=packet)
