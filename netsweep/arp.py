"""ARP scanning: request packets, reply decoding, results and the ARP cache."""

from __future__ import annotations

import ipaddress
import json
import queue
import string
import struct
import threading
from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping, Optional, Union

from netsweep.packet import CaptureInfo
from netsweep.ranges import Request, ScanRange

# Ethernet header (14 bytes) + ARP packet (28 bytes) + FCS (4 bytes) = 46 bytes,
# which is below the minimum Ethernet frame size of 64 bytes.
MAX_PACKET_LENGTH = 64

_ETHERNET_HEADER_LEN = 14
_ETHERTYPE_ARP = 0x0806
_ETHERTYPE_IPV4 = 0x0800
_LINKTYPE_ETHERNET = 1
_ARP_REQUEST = 1
_BROADCAST_MAC = b"\xff" * 6
_ZERO_MAC = b"\x00" * 6

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPLike = Union[IPAddress, str]

_JSON_HTML_ESCAPES = {"<": "\\u003c", ">": "\\u003e", "&": "\\u0026"}


def _json_string(value: str) -> str:
    encoded = json.dumps(value, ensure_ascii=False)
    for char, escape in _JSON_HTML_ESCAPES.items():
        encoded = encoded.replace(char, escape)
    return encoded


@dataclass
class ScanResult:
    """A host that answered an ARP request."""

    ip: str = ""
    mac: str = ""
    vendor: str = ""

    def __str__(self) -> str:
        return f"{self.ip:<20} {self.mac:<20} {self.vendor}"

    def id(self) -> str:
        """Identity used to tell results apart."""
        return self.ip

    def to_json(self) -> str:
        """Serialize to a compact JSON object."""
        return (
            f'{{"ip":{_json_string(self.ip)},'
            f'"mac":{_json_string(self.mac)},'
            f'"vendor":{_json_string(self.vendor)}}}'
        )

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "ScanResult":
        """Parse a JSON object; unknown keys and null values are ignored."""
        try:
            obj = json.loads(data)
        except (ValueError, UnicodeDecodeError) as exc:
            raise ValueError(f"invalid ARP result JSON: {exc}") from exc
        result = cls()
        if obj is None:
            return result
        if not isinstance(obj, dict):
            raise ValueError("invalid ARP result JSON: object expected")
        for key in ("ip", "mac", "vendor"):
            value = obj.get(key)
            if value is None:
                continue
            if not isinstance(value, str):
                raise ValueError(f"invalid ARP result JSON: {key} must be a string")
            setattr(result, key, value)
        return result


def _normalize_ip(ip: IPLike) -> IPAddress:
    addr = ipaddress.ip_address(ip) if isinstance(ip, str) else ip
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


def _format_mac(mac: bytes) -> str:
    return ":".join(f"{b:02x}" for b in mac)


def _format_ip(raw: bytes) -> str:
    if len(raw) in (4, 16):
        return str(_normalize_ip(ipaddress.ip_address(raw)))
    return "?" + raw.hex()


def _parse_hex_groups(groups: list[str], width: int) -> bytes:
    out = bytearray()
    for group in groups:
        if len(group) != width or any(c not in string.hexdigits for c in group):
            raise ValueError("invalid MAC address")
        out += bytes.fromhex(group)
    return bytes(out)


def _parse_mac(text: str) -> bytes:
    """Parse a 6, 8 or 20 byte hardware address in colon, hyphen or dot form."""
    error = ValueError(f"invalid MAC address: {text}")
    if len(text) < 14:
        raise error
    try:
        if text[2] in ":-":
            if (len(text) + 1) % 3 != 0:
                raise error
            n = (len(text) + 1) // 3
            if n not in (6, 8, 20):
                raise error
            mac = _parse_hex_groups(text.split(text[2]), 2)
        elif text[4] == ".":
            if (len(text) + 1) % 5 != 0:
                raise error
            n = 2 * (len(text) + 1) // 5
            if n not in (6, 8, 20):
                raise error
            mac = _parse_hex_groups(text.split("."), 4)
        else:
            raise error
    except ValueError:
        raise error from None
    if len(mac) != n:
        raise error
    return mac


class Cache:
    """Thread-safe mapping of IP addresses to hardware addresses."""

    def __init__(self) -> None:
        self._entries: dict[str, bytes] = {}
        self._lock = threading.RLock()

    def put(self, ip: IPLike, mac: bytes) -> None:
        with self._lock:
            self._entries[str(_normalize_ip(ip))] = bytes(mac)

    def get(self, ip: IPLike) -> Optional[bytes]:
        with self._lock:
            return self._entries.get(str(_normalize_ip(ip)))

    def delete(self, ip: IPLike) -> None:
        with self._lock:
            self._entries.pop(str(_normalize_ip(ip)), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def fill_cache(cache: Cache, lines: Iterable[Union[str, bytes]]) -> None:
    """Fill the cache from JSON lines of ARP scan results."""
    for line in lines:
        if isinstance(line, bytes):
            line = line.decode("utf-8")
        line = line.rstrip("\n").rstrip("\r")
        entry = ScanResult.from_json(line)
        try:
            ip = ipaddress.ip_address(entry.ip)
        except ValueError:
            raise ValueError("invalid IP") from None
        cache.put(ip, _parse_mac(entry.mac))


def cache_requests(
    requests: Iterable[Request], gateway_mac: Optional[bytes], cache: Cache
) -> Iterator[Request]:
    """Set each request's destination MAC from the cache, else the gateway's."""
    for request in requests:
        mac = cache.get(request.dst_ip) if request.dst_ip is not None else None
        if mac is None:
            mac = gateway_mac
        if mac is not None:
            request.dst_mac = mac
        else:
            request.err = LookupError(
                f"no destination MAC address for {request.dst_ip}"
            )
        yield request


def bpf_filter(scan_range: ScanRange) -> tuple[str, int]:
    """Capture filter for ARP replies and the snapshot length to use."""
    if scan_range.dst_subnet is None:
        return "arp", MAX_PACKET_LENGTH
    return f"arp src net {scan_range.dst_subnet}", MAX_PACKET_LENGTH


class PacketFiller:
    """Builds broadcast ARP who-has requests."""

    def fill(self, request: Request) -> bytes:
        if request.src_mac is None or len(request.src_mac) != 6:
            raise ValueError("invalid source MAC")
        if request.src_ip is None or request.dst_ip is None:
            raise ValueError("source and destination IP are required")
        src_ip = _normalize_ip(request.src_ip)
        dst_ip = _normalize_ip(request.dst_ip)
        if src_ip.version != 4 or dst_ip.version != 4:
            raise ValueError("ARP requires IPv4 addresses")
        eth = _BROADCAST_MAC + request.src_mac + struct.pack("!H", _ETHERTYPE_ARP)
        arp = (
            struct.pack(
                "!HHBBH", _LINKTYPE_ETHERNET, _ETHERTYPE_IPV4, 6, 4, _ARP_REQUEST
            )
            + request.src_mac
            + src_ip.packed
            + _ZERO_MAC
            + dst_ip.packed
        )
        return eth + arp


_CLOSED = object()


class ScanMethod:
    """Decodes ARP packets and collects the senders as results."""

    def __init__(
        self,
        packet_source=None,
        *,
        vendors: Optional[Mapping[bytes, str]] = None,
        max_results: int = 1000,
    ) -> None:
        self.packet_source = packet_source
        self._vendors = dict(vendors or {})
        self._results: queue.Queue = queue.Queue(maxsize=max_results)
        self._closed = False

    def process_packet_data(self, data: bytes, ci: Optional[CaptureInfo] = None) -> None:
        """Decode one frame; ARP frames produce a result, others are ignored."""
        if len(data) < _ETHERNET_HEADER_LEN:
            raise ValueError("Ethernet packet too small")
        (ethertype,) = struct.unpack_from("!H", data, 12)
        if ethertype != _ETHERTYPE_ARP:
            return
        payload = data[_ETHERNET_HEADER_LEN:]
        if len(payload) < 8:
            raise ValueError("ARP length 8 too short")
        hw_size, prot_size = payload[4], payload[5]
        need = 8 + 2 * hw_size + 2 * prot_size
        if len(payload) < need:
            raise ValueError(f"ARP length {len(payload)} too short, {need} expected")
        src_hw = payload[8 : 8 + hw_size]
        src_prot = payload[8 + hw_size : 8 + hw_size + prot_size]
        vendor = self._vendors.get(bytes(src_hw[:3]), "")
        self._results.put(
            ScanResult(ip=_format_ip(src_prot), mac=_format_mac(src_hw), vendor=vendor)
        )

    def close(self) -> None:
        """Mark the end of results."""
        if not self._closed:
            self._closed = True
            self._results.put(_CLOSED)

    def results(self) -> Iterator[ScanResult]:
        """Yield results until the method is closed."""
        while True:
            item = self._results.get()
            if item is _CLOSED:
                self._results.put(_CLOSED)
                return
            yield item