# netsweep

Building blocks for network scanning: parsing of scan targets, ports, rate
limits and flags; discovery of local interfaces, the default route and the
gateway; ARP request building, ARP reply decoding and an ARP cache; loops that
send and receive raw packets through a reader/writer you supply; result
loggers writing plain text or JSON lines; and scanners for exposed Docker and
Elasticsearch HTTP APIs.

Results of an ARP scan are written as JSON lines, and the same lines can be
loaded back as an ARP cache for later scans.

## Modules

| Module | What it holds |
| --- | --- |
| `netsweep.ipnet` | `parse_ip_net`, `Interface`, `list_interfaces`, `interface_by_name`, `get_interface_ip`, `get_local_subnet_interface`, `get_local_subnet_interface_ip`, `get_default_interface`, `get_default_gateway_ip`, `InvalidAddressError` |
| `netsweep.ranges` | `PortRange`, `ScanRange` and `Request` dataclasses |
| `netsweep.parsing` | `parse_port_range`, `parse_port_ranges`, `parse_duration`, `parse_rate_limit`, `parse_packet_payload`, `parse_ip_flags`, `parse_tcp_flags`, `parse_exclude_file`, `parse_ports_file`, `IPSet`, `ParseError` |
| `netsweep.packet` | `Receiver`, `Sender`, `RateLimiter`, `RateLimitReadWriter`, `BufferData`, `CaptureInfo`, `is_temporary_error`, `is_unrecoverable_error` |
| `netsweep.arp` | `PacketFiller`, `ScanMethod`, `ScanResult`, `Cache`, `fill_cache`, `cache_requests`, `bpf_filter` |
| `netsweep.log` | `Logger`, `UniqueLogger`, `PlainResultWriter`, `JSONResultWriter`, `unique_results` |
| `netsweep.docker` | Docker Engine API `Scanner` and its `ScanResult` |
| `netsweep.elastic` | Elasticsearch `Scanner`, `ElasticClient` and `ScanResult` |
| `netsweep.options` | `PacketScanOptions`, `IPScanOptions`, `IPPortScanOptions`, `GenericScanOptions`, `OptionsError` |
| `netsweep.version` | `build_version` |

## Targets, ports and rates

```python
from netsweep.ipnet import parse_ip_net
from netsweep.parsing import parse_port_ranges, parse_rate_limit, parse_ip_flags

subnet = parse_ip_net("192.168.0.1/24")     # IPv4Network('192.168.0.0/24')
host = parse_ip_net("10.0.0.1")             # IPv4Network('10.0.0.1/32')
ports = parse_port_ranges("22,80-443")      # [PortRange(22, 22), PortRange(80, 443)]
count, window = parse_rate_limit("500/7s")  # (500, 7.0)
flags = parse_ip_flags("df,mf")             # bit mask of the IPv4 Flags field
```

A rate limit is written `count/window`. The window takes the same units as
`parse_duration` (`ns`, `us`, `ms`, `s`, `m`, `h`); a window without a number,
such as `/s`, means one of that unit, and a bare count is per second. Invalid
values raise `ParseError`; an address that is neither a subnet nor a host
raises `InvalidAddressError`.

`parse_exclude_file` and `parse_ports_file` take a function that opens the
file. Each non-empty line holds one entry; `#` starts a comment:

```text
# reserved ranges
10.0.0.0/8
192.168.0.0/16   # private
```

```python
from netsweep.parsing import parse_exclude_file

excluded = parse_exclude_file(lambda: open("exclude.txt", encoding="utf-8"))
"10.1.2.3" in excluded   # True
```

## ARP

`PacketFiller().fill(request)` builds a broadcast who-has frame from a
`Request` carrying `src_mac`, `src_ip` and `dst_ip`. `ScanMethod` decodes
Ethernet frames passed to `process_packet_data`, turns each ARP frame into a
`ScanResult` (IP, MAC and, when a vendor table of MAC prefixes was given, the
vendor) and hands them out from `results()` until `close()` is called.
`bpf_filter(scan_range)` returns the capture filter and snapshot length for
ARP replies.

The cache is filled from JSON lines:

```python
import io

from netsweep.arp import Cache, fill_cache, cache_requests

cache = Cache()
fill_cache(cache, io.StringIO('{"ip":"192.168.0.2","mac":"00:00:5e:00:53:01","vendor":""}\n'))
cache.get("192.168.0.2")   # b'\x00\x00^\x00S\x01'
```

`cache_requests(requests, gateway_mac, cache)` sets each request's
destination MAC from the cache, falling back to the gateway's MAC; when
neither is known the request's `err` is set instead.

## Sending, receiving and logging

`Receiver(reader, processor).receive_packets(stop)` reads packets and passes
them to the processor, retrying at once on temporary errors, ending on
end-of-file and closed-source errors, and yielding any other error.
`Sender(writer).send_packets(packets, stop)` writes each `BufferData` and
yields the errors it meets. Both stop when the optional `threading.Event` is
set. `RateLimitReadWriter` wraps a reader/writer so that writes wait on a
`RateLimiter`.

`Logger(stream, label)` writes results with `PlainResultWriter` by default,
or with `JSONResultWriter` when given `writer=JSONResultWriter()`, flushing the
stream about once per `flush_interval` seconds; errors go to the standard
`logging` module under the `netsweep` logger. `UniqueLogger` writes only the
first result seen for each id.

## Docker and Elasticsearch

```python
import ipaddress

from netsweep.elastic import Scanner
from netsweep.ranges import Request

scanner = Scanner("http", data_timeout=5.0)
result = scanner.scan(Request(dst_ip=ipaddress.ip_address("192.0.2.10"), dst_port=9200))
print(result)            # proto://host cluster_name index_count
print(result.to_json())
```

The Elasticsearch scanner fetches `/` and `/_aliases`; the Docker scanner
negotiates the API version and fetches `info` and `version`. Certificates are
not checked. A failure of the first request raises; the second is optional
and left empty when it fails.

## Options

`PacketScanOptions`, `IPScanOptions`, `IPPortScanOptions` and
`GenericScanOptions` register their flags on an `argparse.ArgumentParser`
with `add_arguments`, are built with `from_namespace`, and turn raw values
into ports, rate limits, MAC addresses, interfaces and exclusions with
`parse_raw_options`. `get_scan_range` chooses the interface and source
addresses for a subnet, and `make_logger` builds the result logger.

## What it does not do

There is no command-line program: the option classes can fill an `argparse`
parser, but no scan command is wired up. The package builds only ARP packets;
it has no ICMP, UDP or TCP packet builders, no SOCKS scanner, and no raw
socket packet source or BPF compiler — `Receiver` and `Sender` work with the
reader and writer objects you give them. Route and gateway discovery read
`/proc/net/route` and so work only on Linux.

## Requirements

Python 3.10 or later, with `psutil` and `requests`.