"""Options shared by the scan commands and their conversion into scan settings."""

from __future__ import annotations

import argparse
import contextlib
import ipaddress
import os
import stat
import sys
from dataclasses import dataclass, field, fields
from typing import ContextManager, Iterable, Optional, Sequence, TextIO, Union

from netsweep.arp import Cache, fill_cache
from netsweep.arp import _parse_mac as parse_mac
from netsweep.ipnet import (
    Interface,
    get_default_gateway_ip,
    get_default_interface,
    get_interface_ip,
    get_local_subnet_interface,
    get_local_subnet_interface_ip,
    interface_by_name,
    parse_ip_net,
)
from netsweep.log import JSONResultWriter, Logger
from netsweep.parsing import (
    IPSet,
    parse_duration,
    parse_exclude_file,
    parse_port_ranges,
    parse_ports_file,
    parse_rate_limit,
)
from netsweep.ranges import PortRange, ScanRange

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

DEFAULT_WORKER_COUNT = 100
DEFAULT_TIMEOUT = 5.0
DEFAULT_EXIT_DELAY = 0.3
FLUSH_INTERVAL = 1.0

ERR_SRC_IP = "invalid source IP"
ERR_SRC_INTERFACE = "invalid source interface"
ERR_ARP_CACHE_STDIN = "ARP cache is expected from file or stdin pipe"
ERR_NO_DST_IP = "requires one ip subnet argument or file with ip/port pairs"
ERR_ARP_STDIN = "ARP cache and IP file can not be read from stdin at the same time"
ERR_WORKERS = "invalid workers count"

_EXCLUDE_HELP = (
    "set file with IPs or subnets in CIDR notation to exclude, one-per line.\n"
    "It is useful to exclude RFC 1918 addresses, multicast, IANA reserved space, "
    "and other IANA special-purpose addresses."
)


class OptionsError(ValueError):
    """Raised when command options are invalid or inconsistent."""


def _ip_arg(text: str) -> IPAddress:
    addr = ipaddress.ip_address(text)
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


def _to_ipv4(ip: Optional[IPAddress]) -> Optional[ipaddress.IPv4Address]:
    if isinstance(ip, ipaddress.IPv4Address):
        return ip
    if isinstance(ip, ipaddress.IPv6Address):
        return ip.ipv4_mapped
    return None


def _parse_mac_option(text: str) -> bytes:
    try:
        return parse_mac(text)
    except ValueError as exc:
        raise OptionsError(str(exc)) from exc


def _opener(path: str):
    return lambda: open(path, encoding="utf-8")


def _from_namespace(cls, namespace: argparse.Namespace):
    values = {
        f.name: getattr(namespace, f.name)
        for f in fields(cls)
        if f.init and hasattr(namespace, f.name)
    }
    return cls(**values)


def _add_common_arguments(parser: argparse.ArgumentParser, what: str) -> None:
    parser.add_argument("--json", action="store_true", help="enable JSON output")
    parser.add_argument(
        "--exclude", dest="raw_exclude_file", default="", help=_EXCLUDE_HELP
    )
    parser.add_argument(
        "-r",
        "--rate",
        dest="raw_rate_limit",
        default="",
        help=(
            f"set rate limit for generated {what}\n"
            'format: "rateCount/rateWindow"\n'
            f"where rateCount is a number of {what}, rateWindow is the time interval\n"
            "e.g. 1000/s -- 1000 per second\n500/7s -- 500 per 7 seconds"
        ),
    )
    parser.add_argument(
        "--exit-delay",
        dest="exit_delay",
        type=parse_duration,
        default=DEFAULT_EXIT_DELAY,
        help="set exit delay to wait for last responses, e.g. 300ms or 10s",
    )


def _new_logger(json_output: bool, name: str, stream: TextIO) -> Logger:
    writer = JSONResultWriter() if json_output else None
    return Logger(stream, name, writer=writer, flush_interval=FLUSH_INTERVAL)


def _parse_dst_subnet(ip_file: str, args: Sequence[str]) -> Optional[IPNetwork]:
    if not args and not ip_file:
        raise OptionsError(ERR_NO_DST_IP)
    if not args:
        return None
    return parse_ip_net(args[0])


@dataclass
class PacketScanOptions:
    """Options of scans that craft raw packets on a network interface."""

    json: bool = False
    iface: Optional[Interface] = None
    src_ip: Optional[IPAddress] = None
    src_mac: Optional[bytes] = None
    rate_count: int = 0
    rate_window: float = 0.0
    exit_delay: float = DEFAULT_EXIT_DELAY
    exclude_ips: Optional[IPSet] = None

    raw_interface: str = ""
    raw_src_mac: str = ""
    raw_rate_limit: str = ""
    raw_exclude_file: str = ""

    @classmethod
    def add_arguments(cls, parser: argparse.ArgumentParser) -> None:
        """Register the command-line flags of these options."""
        _add_common_arguments(parser, "packets")
        parser.add_argument(
            "-i",
            "--iface",
            dest="raw_interface",
            default="",
            help="set interface to send/receive packets",
        )
        parser.add_argument(
            "--srcip",
            dest="src_ip",
            type=_ip_arg,
            default=None,
            help="set source IP address for generated packets",
        )
        parser.add_argument(
            "--srcmac",
            dest="raw_src_mac",
            default="",
            help="set source MAC address for generated packets",
        )

    @classmethod
    def from_namespace(cls, namespace: argparse.Namespace):
        """Build options from parsed command-line arguments."""
        return _from_namespace(cls, namespace)

    def parse_raw_options(self) -> None:
        """Turn the raw flag values into interface, MAC, rate and exclusions."""
        if self.raw_interface:
            self.iface = interface_by_name(self.raw_interface)
        if self.raw_src_mac:
            self.src_mac = _parse_mac_option(self.raw_src_mac)
        if self.raw_rate_limit:
            self.rate_count, self.rate_window = parse_rate_limit(self.raw_rate_limit)
        if self.raw_exclude_file:
            self.exclude_ips = parse_exclude_file(_opener(self.raw_exclude_file))

    def get_scan_range(self, dst_subnet: Optional[IPNetwork]) -> ScanRange:
        """Choose interface and source addresses for scanning the subnet."""
        iface, src_ip = self._get_interface(dst_subnet)
        if iface is None:
            raise OptionsError(ERR_SRC_INTERFACE)
        if self.src_ip is not None:
            src_ip = self.src_ip
        if src_ip is None:
            raise OptionsError(ERR_SRC_IP)
        src_mac = self.src_mac if self.src_mac is not None else iface.hardware_addr
        return ScanRange(
            interface=iface,
            dst_subnet=dst_subnet,
            src_ip=_to_ipv4(src_ip),
            src_mac=src_mac,
        )

    def _get_interface(
        self, dst_subnet: Optional[IPNetwork]
    ) -> tuple[Optional[Interface], Optional[IPAddress]]:
        if dst_subnet is not None:
            # a directly connected interface is preferred
            iface, iface_ip = self._get_local_subnet_interface(dst_subnet)
            if iface is not None and iface_ip is not None:
                return iface, iface_ip
        if self.iface is not None:
            return self.iface, get_interface_ip(self.iface)
        return get_default_interface()

    def _get_local_subnet_interface(
        self, dst_subnet: IPNetwork
    ) -> tuple[Optional[Interface], Optional[IPAddress]]:
        if self.iface is None:
            return get_local_subnet_interface(dst_subnet)
        return self.iface, get_local_subnet_interface_ip(self.iface, dst_subnet)

    def make_logger(self, name: str, stream: TextIO) -> Logger:
        """A result logger writing plain text or JSON lines to the stream."""
        return _new_logger(self.json, name, stream)


@dataclass
class IPScanOptions(PacketScanOptions):
    """Packet scan options for scans of IP hosts through a gateway."""

    ip_file: str = ""
    arp_cache_file: str = ""
    gateway_mac: Optional[bytes] = None
    vpn_mode: bool = False

    logger: Optional[Logger] = None
    scan_range: Optional[ScanRange] = None
    cache: Optional[Cache] = None

    raw_gateway_mac: str = ""

    @classmethod
    def add_arguments(cls, parser: argparse.ArgumentParser) -> None:
        super().add_arguments(parser)
        parser.add_argument(
            "--gwmac",
            dest="raw_gateway_mac",
            default="",
            help="set gateway MAC address to send generated packets to",
        )
        parser.add_argument(
            "-f", "--file", dest="ip_file", default="", help="set JSONL file with IPs to scan"
        )
        parser.add_argument(
            "-a",
            "--arp-cache",
            dest="arp_cache_file",
            default="",
            help="set ARP cache file\nreads from stdin by default",
        )

    def parse_raw_options(self) -> None:
        super().parse_raw_options()
        if self.raw_gateway_mac:
            self.gateway_mac = _parse_mac_option(self.raw_gateway_mac)

    def parse_options(
        self, scan_name: str, args: Sequence[str], stream: Optional[TextIO] = None
    ) -> None:
        """Resolve scan range, logger, ARP cache and gateway MAC."""
        dst_subnet = self.parse_dst_subnet(args)
        self.scan_range = self.get_scan_range(dst_subnet)
        if self.scan_range.src_mac is None:
            self.vpn_mode = True
        self.logger = self.make_logger(scan_name, stream if stream is not None else sys.stdout)
        # no link layer in VPN mode, so no ARP cache either
        if self.vpn_mode:
            return
        self.validate_arp_stdin()
        self.cache = self.parse_arp_cache()
        self.gateway_mac = self.get_gateway_mac(self.scan_range.interface, self.cache)

    def validate_arp_stdin(self) -> None:
        """Refuse to read both the ARP cache and the IP file from stdin."""
        if self.is_arp_cache_from_stdin() and self.ip_file == "-":
            raise OptionsError(ERR_ARP_STDIN)

    def parse_dst_subnet(self, args: Sequence[str]) -> Optional[IPNetwork]:
        """The subnet given as argument, or None when an IP file is used."""
        return _parse_dst_subnet(self.ip_file, args)

    def is_arp_cache_from_stdin(self) -> bool:
        return not self.arp_cache_file or self.arp_cache_file == "-"

    def _open_arp_cache(self) -> ContextManager[Iterable[str]]:
        if not self.is_arp_cache_from_stdin():
            return open(self.arp_cache_file, encoding="utf-8")
        mode = os.fstat(sys.stdin.fileno()).st_mode
        # only data piped to stdin is accepted, not a terminal
        if stat.S_ISCHR(mode):
            raise OptionsError(ERR_ARP_CACHE_STDIN)
        return contextlib.nullcontext(sys.stdin)

    def parse_arp_cache(self) -> Cache:
        """Load the ARP cache from its file or from piped stdin."""
        with self._open_arp_cache() as lines:
            cache = Cache()
            fill_cache(cache, lines)
        return cache

    def get_gateway_mac(self, iface: Interface, cache: Cache) -> Optional[bytes]:
        """The configured gateway MAC, else the cached MAC of the default gateway."""
        if self.gateway_mac is not None:
            return self.gateway_mac
        gateway_ip = get_default_gateway_ip(iface)
        if gateway_ip is None:
            return None
        return cache.get(gateway_ip)


@dataclass
class IPPortScanOptions(IPScanOptions):
    """IP scan options with ports to scan."""

    port_file: str = ""
    port_ranges: list[PortRange] = field(default_factory=list)

    raw_port_ranges: str = ""

    @classmethod
    def add_arguments(cls, parser: argparse.ArgumentParser) -> None:
        super().add_arguments(parser)
        parser.add_argument(
            "-p", "--ports", dest="raw_port_ranges", default="", help="set ports to scan"
        )
        parser.add_argument(
            "--ports-file",
            dest="port_file",
            default="",
            help="set file with ports or port ranges to scan, one-per line",
        )

    def parse_raw_options(self) -> None:
        super().parse_raw_options()
        if self.raw_port_ranges:
            self.port_ranges = parse_port_ranges(self.raw_port_ranges)
        if self.port_file:
            self.port_ranges = self.port_ranges + parse_ports_file(_opener(self.port_file))

    def parse_options(
        self, scan_name: str, args: Sequence[str], stream: Optional[TextIO] = None
    ) -> None:
        super().parse_options(scan_name, args, stream)
        self.scan_range.ports = self.port_ranges


@dataclass
class GenericScanOptions:
    """Options of scans that connect to services with ordinary sockets."""

    json: bool = False
    ip_file: str = ""
    port_file: str = ""
    port_ranges: list[PortRange] = field(default_factory=list)
    workers: int = DEFAULT_WORKER_COUNT
    rate_count: int = 0
    rate_window: float = 0.0
    exit_delay: float = DEFAULT_EXIT_DELAY
    exclude_ips: Optional[IPSet] = None

    raw_port_ranges: str = ""
    raw_rate_limit: str = ""
    raw_exclude_file: str = ""

    @classmethod
    def add_arguments(cls, parser: argparse.ArgumentParser) -> None:
        """Register the command-line flags of these options."""
        _add_common_arguments(parser, "scan requests")
        parser.add_argument(
            "-p", "--ports", dest="raw_port_ranges", default="", help="set ports to scan"
        )
        parser.add_argument(
            "--ports-file",
            dest="port_file",
            default="",
            help="set file with ports or port ranges to scan, one-per line",
        )
        parser.add_argument(
            "-f",
            "--file",
            dest="ip_file",
            default="",
            help="set JSONL file with ip/port pairs to scan",
        )
        parser.add_argument(
            "-w",
            "--workers",
            dest="workers",
            type=int,
            default=DEFAULT_WORKER_COUNT,
            help="set workers count",
        )

    @classmethod
    def from_namespace(cls, namespace: argparse.Namespace):
        """Build options from parsed command-line arguments."""
        return _from_namespace(cls, namespace)

    def parse_raw_options(self) -> None:
        """Turn the raw flag values into ports, rate and exclusions."""
        if self.raw_port_ranges:
            self.port_ranges = parse_port_ranges(self.raw_port_ranges)
        if self.port_file:
            self.port_ranges = self.port_ranges + parse_ports_file(_opener(self.port_file))
        if self.raw_rate_limit:
            self.rate_count, self.rate_window = parse_rate_limit(self.raw_rate_limit)
        if self.raw_exclude_file:
            self.exclude_ips = parse_exclude_file(_opener(self.raw_exclude_file))
        if self.workers <= 0:
            raise OptionsError(ERR_WORKERS)

    def parse_scan_range(self, args: Sequence[str]) -> ScanRange:
        return ScanRange(dst_subnet=self.parse_dst_subnet(args), ports=list(self.port_ranges))

    def parse_dst_subnet(self, args: Sequence[str]) -> Optional[IPNetwork]:
        """The subnet given as argument, or None when an IP file is used."""
        return _parse_dst_subnet(self.ip_file, args)

    def make_logger(self, name: str, stream: TextIO) -> Logger:
        """A result logger writing plain text or JSON lines to the stream."""
        return _new_logger(self.json, name, stream)