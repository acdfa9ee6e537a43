"""IP subnet parsing and discovery of local interfaces and routes."""

from __future__ import annotations

import ipaddress
import socket
import sys
from dataclasses import dataclass
from typing import Iterable, Optional, Union

import psutil

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
IPInterface = Union[ipaddress.IPv4Interface, ipaddress.IPv6Interface]

_ROUTE_TABLE = "/proc/net/route"


class InvalidAddressError(ValueError):
    """Raised when text is neither an IP subnet nor a host address."""

    def __init__(self, text: str = "") -> None:
        super().__init__("invalid IP subnet/host")
        self.text = text


@dataclass(frozen=True)
class Interface:
    """A network interface with its hardware and IP addresses."""

    name: str
    index: int = 0
    hardware_addr: Optional[bytes] = None
    addresses: tuple[IPInterface, ...] = ()


def parse_ip_net(subnet: str) -> IPNetwork:
    """Parse CIDR notation or a single host address into a network."""
    if "/" in subnet:
        _, _, prefix = subnet.partition("/")
        if prefix.isascii() and prefix.isdigit():
            try:
                return ipaddress.ip_network(subnet, strict=False)
            except ValueError:
                pass
    try:
        addr = ipaddress.ip_address(subnet)
    except ValueError:
        raise InvalidAddressError(subnet) from None
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    return ipaddress.ip_network(addr)


def _parse_mac(text: str) -> Optional[bytes]:
    try:
        raw = bytes.fromhex(text.replace(":", "").replace("-", ""))
    except ValueError:
        return None
    # An all-zero address means the link has no hardware address.
    return raw if any(raw) else None


def _to_ip_interface(address: str, netmask: Optional[str]) -> IPInterface:
    addr = address.split("%", 1)[0]
    ip = ipaddress.ip_address(addr)
    if netmask:
        prefix = bin(int(ipaddress.ip_address(netmask.split("%", 1)[0]))).count("1")
    else:
        prefix = ip.max_prefixlen
    return ipaddress.ip_interface(f"{addr}/{prefix}")


def _interface_index(name: str) -> int:
    try:
        return socket.if_nametoindex(name)
    except (OSError, AttributeError):
        return 0


def list_interfaces() -> list[Interface]:
    """Return the host's network interfaces ordered by index."""
    result = []
    for name, addrs in psutil.net_if_addrs().items():
        mac = None
        ips = []
        for a in addrs:
            if a.family == psutil.AF_LINK:
                mac = _parse_mac(a.address)
            elif a.family in (socket.AF_INET, socket.AF_INET6):
                try:
                    ips.append(_to_ip_interface(a.address, a.netmask))
                except ValueError:
                    continue
        result.append(Interface(name, _interface_index(name), mac, tuple(ips)))
    result.sort(key=lambda iface: (iface.index, iface.name))
    return result


def interface_by_name(name: str) -> Interface:
    """Look up an interface by name."""
    for iface in list_interfaces():
        if iface.name == name:
            return iface
    raise LookupError(f"no such network interface: {name}")


def get_interface_ip(iface: Interface) -> Optional[IPAddress]:
    """Return the first IP address of the interface, if any."""
    if not iface.addresses:
        return None
    return iface.addresses[0].ip


def get_local_subnet_interface(
    dst_subnet: IPNetwork,
) -> tuple[Optional[Interface], Optional[IPAddress]]:
    """Find an interface directly connected to the destination subnet."""
    for iface in list_interfaces():
        ip = get_local_subnet_interface_ip(iface, dst_subnet)
        if ip is not None:
            return iface, ip
    return None, None


def get_local_subnet_interface_ip(
    iface: Interface, dst_subnet: IPNetwork
) -> Optional[IPAddress]:
    """Return the interface address whose network holds the subnet's base address."""
    base = dst_subnet.network_address
    for addr in iface.addresses:
        if addr.version == base.version and base in addr.network:
            return addr.ip
    return None


@dataclass(frozen=True)
class _Route:
    iface: str
    destination: int
    gateway: int
    metric: int
    mask: int

    @property
    def is_default(self) -> bool:
        return self.destination == 0 and self.mask == 0

    @property
    def gateway_ip(self) -> Optional[ipaddress.IPv4Address]:
        if self.gateway == 0:
            return None
        return ipaddress.IPv4Address(self.gateway.to_bytes(4, sys.byteorder))


def _parse_route_table(lines: Iterable[str]) -> list[_Route]:
    routes = []
    for line in lines:
        fields = line.split()
        if len(fields) < 8 or fields[0] == "Iface":
            continue
        try:
            routes.append(
                _Route(
                    iface=fields[0],
                    destination=int(fields[1], 16),
                    gateway=int(fields[2], 16),
                    metric=int(fields[6]),
                    mask=int(fields[7], 16),
                )
            )
        except ValueError:
            continue
    return routes


def _best_default_route(
    routes: Iterable[_Route], iface_name: Optional[str] = None
) -> Optional[_Route]:
    best = None
    for route in routes:
        if not route.is_default:
            continue
        if iface_name is not None and route.iface != iface_name:
            continue
        if best is None or route.metric < best.metric:
            best = route
    return best


def _read_routes() -> list[_Route]:
    if not sys.platform.startswith("linux"):
        raise OSError("OS platform is not supported")
    with open(_ROUTE_TABLE, encoding="ascii") as f:
        return _parse_route_table(f)


def get_default_interface() -> tuple[Optional[Interface], Optional[IPAddress]]:
    """Return the interface of the default gateway and its first address."""
    route = _best_default_route(_read_routes())
    if route is None:
        return None, None
    iface = interface_by_name(route.iface)
    return iface, get_interface_ip(iface)


def get_default_gateway_ip(iface: Interface) -> Optional[ipaddress.IPv4Address]:
    """Return the default gateway reachable through the interface."""
    route = _best_default_route(_read_routes(), iface.name)
    return route.gateway_ip if route is not None else None