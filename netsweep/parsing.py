"""Parsing of command-line values: ports, rate limits, payloads, flags and files."""

from __future__ import annotations

import bisect
import enum
import ipaddress
from typing import Callable, ContextManager, Iterable, Iterator, Union

from netsweep.ipnet import parse_ip_net
from netsweep.ranges import PortRange

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

OpenFile = Callable[[], ContextManager[Iterable[str]]]

_MAX_PORT = 0xFFFF
_MAX_INT32 = 2**31 - 1
_MIN_INT32 = -(2**31)

TCP_FLAG_NAMES = ("syn", "ack", "fin", "rst", "psh", "urg", "ece", "cwr", "ns")


class ParseError(ValueError):
    """Raised when a command-line value cannot be parsed."""


class IPFlag(enum.IntFlag):
    """Bits of the IPv4 header Flags field."""

    MORE_FRAGMENTS = 1 << 0
    DONT_FRAGMENT = 1 << 1
    EVIL = 1 << 2


_IP_FLAG_NAMES = {
    "df": IPFlag.DONT_FRAGMENT,
    "evil": IPFlag.EVIL,
    "mf": IPFlag.MORE_FRAGMENTS,
}


def _normalize_ip(ip: Union[IPAddress, str]) -> IPAddress:
    addr = ipaddress.ip_address(ip) if isinstance(ip, str) else ip
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


class IPSet:
    """A set of IP networks answering membership queries for addresses."""

    def __init__(self, networks: Iterable[Union[IPNetwork, str]] = ()) -> None:
        self._spans: dict[int, list[tuple[int, int]]] = {4: [], 6: []}
        self._starts: dict[int, list[int]] = {4: [], 6: []}
        self._dirty = False
        for network in networks:
            self.add(network)

    def add(self, network: Union[IPNetwork, str]) -> None:
        """Add a network, given as an object or in CIDR or host notation."""
        if isinstance(network, str):
            network = parse_ip_net(network)
        start = int(network.network_address)
        end = int(network.broadcast_address)
        self._spans[network.version].append((start, end))
        self._dirty = True

    def _merge(self) -> None:
        for version, spans in self._spans.items():
            merged: list[tuple[int, int]] = []
            for start, end in sorted(spans):
                if merged and start <= merged[-1][1] + 1:
                    if end > merged[-1][1]:
                        merged[-1] = (merged[-1][0], end)
                else:
                    merged.append((start, end))
            self._spans[version] = merged
            self._starts[version] = [start for start, _ in merged]
        self._dirty = False

    def contains(self, ip: Union[IPAddress, str]) -> bool:
        """True if the address lies in one of the networks."""
        addr = _normalize_ip(ip)
        if self._dirty:
            self._merge()
        value = int(addr)
        spans = self._spans[addr.version]
        pos = bisect.bisect_right(self._starts[addr.version], value) - 1
        return pos >= 0 and value <= spans[pos][1]

    def __contains__(self, ip: object) -> bool:
        if not isinstance(ip, (str, ipaddress.IPv4Address, ipaddress.IPv6Address)):
            return False
        return self.contains(ip)


def _parse_port(text: str) -> int:
    if not (text.isascii() and text.isdigit()):
        raise ParseError(f"invalid port: {text!r}")
    port = int(text)
    if port > _MAX_PORT:
        raise ParseError(f"port out of range: {text!r}")
    return port


def parse_port_range(ports_range: str) -> PortRange:
    """Parse a single port or a "start-end" port range."""
    ports = ports_range.split("-")
    start = _parse_port(ports[0])
    if len(ports) < 2:
        return PortRange(start, start)
    return PortRange(start, _parse_port(ports[1]))


def parse_port_ranges(ports_ranges: str) -> list[PortRange]:
    """Parse a comma separated list of ports and port ranges."""
    return [parse_port_range(part) for part in ports_ranges.split(",")]


_DURATION_UNITS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}


def parse_duration(text: str) -> float:
    """Parse a duration such as "300ms", "1.5h" or "2h45m" into seconds."""
    error = ParseError(f"invalid duration {text!r}")
    s = text
    negative = False
    if s[:1] in ("-", "+"):
        negative = s[0] == "-"
        s = s[1:]
    if s == "0":
        return 0.0
    if not s:
        raise error
    total = 0
    i = 0
    n = len(s)
    while i < n:
        if not (s[i] == "." or "0" <= s[i] <= "9"):
            raise error
        j = i
        while j < n and "0" <= s[j] <= "9":
            j += 1
        whole = s[i:j]
        frac = ""
        if j < n and s[j] == ".":
            k = j + 1
            while k < n and "0" <= s[k] <= "9":
                k += 1
            frac = s[j + 1 : k]
            j = k
        if not whole and not frac:
            raise error
        k = j
        while k < n and s[k] != "." and not ("0" <= s[k] <= "9"):
            k += 1
        unit_name = s[j:k]
        if not unit_name:
            raise ParseError(f"missing unit in duration {text!r}")
        unit = _DURATION_UNITS.get(unit_name)
        if unit is None:
            raise ParseError(f"unknown unit {unit_name!r} in duration {text!r}")
        total += int(whole or "0") * unit
        if frac:
            total += int(frac) * unit // 10 ** len(frac)
        if total > 1 << 63:
            raise error
        i = k
    if not negative and total > (1 << 63) - 1:
        raise error
    return (-total if negative else total) / 1e9


def _parse_int32(text: str) -> int:
    digits = text[1:] if text[:1] in ("+", "-") else text
    if not (digits.isascii() and digits.isdigit()):
        raise ValueError(text)
    value = int(text)
    if not _MIN_INT32 <= value <= _MAX_INT32:
        raise ValueError(text)
    return value


def parse_rate_limit(rate_limit: str) -> tuple[int, float]:
    """Parse "count/window" into a packet count and a window in seconds."""
    error = ParseError("invalid ratelimit")
    parts = rate_limit.split("/")
    if len(parts) > 2:
        raise error
    try:
        rate_count = _parse_int32(parts[0])
    except ValueError:
        raise error from None
    if rate_count < 0:
        raise error
    if len(parts) < 2:
        return rate_count, 1.0
    window = parts[1]
    if window and not ("0" <= window[0] <= "9"):
        window = "1" + window
    try:
        rate_window = parse_duration(window)
    except ParseError:
        raise error from None
    if rate_window < 0:
        raise error
    return rate_count, rate_window


_SIMPLE_ESCAPES = {
    "a": 0x07,
    "b": 0x08,
    "f": 0x0C,
    "n": 0x0A,
    "r": 0x0D,
    "t": 0x09,
    "v": 0x0B,
    "\\": 0x5C,
    '"': 0x22,
}

_HEX_WIDTHS = {"x": 2, "u": 4, "U": 8}
_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")
_OCT_DIGITS = frozenset("01234567")


def _encode_char(char: str) -> bytes:
    try:
        return char.encode("utf-8", "surrogateescape")
    except UnicodeEncodeError:
        raise ParseError(f"invalid character in payload: {char!r}") from None


def parse_packet_payload(payload: str) -> bytes:
    """Decode a payload written with double-quoted string escapes into bytes."""
    out = bytearray()
    i = 0
    n = len(payload)
    while i < n:
        char = payload[i]
        if char in ('"', "\n"):
            raise ParseError("invalid payload syntax")
        if char != "\\":
            out += _encode_char(char)
            i += 1
            continue
        if i + 1 >= n:
            raise ParseError("invalid payload syntax")
        esc = payload[i + 1]
        i += 2
        if esc in _SIMPLE_ESCAPES:
            out.append(_SIMPLE_ESCAPES[esc])
        elif esc in _HEX_WIDTHS:
            width = _HEX_WIDTHS[esc]
            digits = payload[i : i + width]
            if len(digits) != width or not set(digits) <= _HEX_DIGITS:
                raise ParseError("invalid payload syntax")
            value = int(digits, 16)
            i += width
            if esc == "x":
                out.append(value)
            else:
                if value > 0x10FFFF or 0xD800 <= value <= 0xDFFF:
                    raise ParseError("invalid payload syntax")
                out += chr(value).encode("utf-8")
        elif esc in _OCT_DIGITS:
            digits = payload[i - 1 : i + 2]
            if len(digits) != 3 or not set(digits) <= _OCT_DIGITS:
                raise ParseError("invalid payload syntax")
            value = int(digits, 8)
            if value > 0xFF:
                raise ParseError("invalid payload syntax")
            out.append(value)
            i += 2
        else:
            raise ParseError("invalid payload syntax")
    return bytes(out)


def parse_ip_flags(input_flags: str) -> int:
    """Parse comma separated IP flag names (df, evil, mf) into a bit mask."""
    result = IPFlag(0)
    if not input_flags:
        return int(result)
    for flag in input_flags.lower().split(","):
        try:
            result |= _IP_FLAG_NAMES[flag]
        except KeyError:
            raise ParseError("invalid ip flags") from None
    return int(result)


def _content_lines(open_file: OpenFile) -> Iterator[str]:
    """Yield non-empty lines with comments and surrounding spaces removed."""
    with open_file() as stream:
        for raw in stream:
            line = raw.rstrip("\n")
            if line.endswith("\r"):
                line = line[:-1]
            line = line.split("#", 1)[0].strip(" ")
            if line:
                yield line


def parse_exclude_file(open_file: OpenFile) -> IPSet:
    """Read IPs and subnets, one per line, into a set of excluded addresses."""
    excluded = IPSet()
    for line in _content_lines(open_file):
        excluded.add(parse_ip_net(line))
    return excluded


def parse_ports_file(open_file: OpenFile) -> list[PortRange]:
    """Read ports and port ranges, one per line."""
    return [parse_port_range(line) for line in _content_lines(open_file)]


def parse_tcp_flags(tcp_flags: str) -> list[str]:
    """Parse comma separated TCP flag names into lower-case names."""
    if not tcp_flags:
        return []
    result = []
    for flag in tcp_flags.split(","):
        flag = flag.lower()
        if flag not in TCP_FLAG_NAMES:
            raise ParseError("invalid TCP packet flag")
        result.append(flag)
    return result