"""Scan targets and the requests generated from them."""

from __future__ import annotations

from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv4Network, IPv6Address, IPv6Network
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from netsweep.ipnet import Interface

IPAddress = Union[IPv4Address, IPv6Address]
IPNetwork = Union[IPv4Network, IPv6Network]


@dataclass(frozen=True)
class PortRange:
    """An inclusive range of ports."""

    start_port: int
    end_port: int


@dataclass
class ScanRange:
    """What to scan and where to send packets from."""

    interface: Optional["Interface"] = None
    dst_subnet: Optional[IPNetwork] = None
    src_ip: Optional[IPAddress] = None
    src_mac: Optional[bytes] = None
    ports: list[PortRange] = field(default_factory=list)


@dataclass
class Request:
    """A single scan request for one destination."""

    dst_ip: Optional[IPAddress] = None
    dst_port: int = 0
    src_ip: Optional[IPAddress] = None
    src_mac: Optional[bytes] = None
    dst_mac: Optional[bytes] = None
    err: Optional[Exception] = None