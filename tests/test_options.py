import argparse
import io
import ipaddress

import pytest

from netsweep.arp import ScanResult
from netsweep.ipnet import Interface, InvalidAddressError, parse_ip_net
from netsweep.options import (
    GenericScanOptions,
    IPPortScanOptions,
    IPScanOptions,
    OptionsError,
    PacketScanOptions,
)
from netsweep.parsing import ParseError
from netsweep.ranges import PortRange, ScanRange

PACKET_FLAGS = (
    "--json -i eth0 --srcip 192.168.0.1 --srcmac 00:11:22:33:44:55 "
    "-r 500/7s --exit-delay 10s --exclude ips.txt"
)
IP_FLAGS = "--gwmac 11:22:33:44:55:66 -f ip_file.jsonl -a arp.cache"

IFACE_MAC = b"\x02\x00\x00\x00\x00\x01"


def make_iface(mac=IFACE_MAC, addresses=("192.168.0.10/24",)):
    return Interface(
        "eth0", 2, mac, tuple(ipaddress.ip_interface(a) for a in addresses)
    )


def test_packet_scan_options_cli_flags():
    parser = argparse.ArgumentParser()
    PacketScanOptions.add_arguments(parser)
    opts = PacketScanOptions.from_namespace(parser.parse_args(PACKET_FLAGS.split(" ")))
    assert opts.json is True
    assert opts.raw_interface == "eth0"
    assert opts.src_ip == ipaddress.IPv4Address("192.168.0.1")
    assert opts.raw_src_mac == "00:11:22:33:44:55"
    assert opts.raw_rate_limit == "500/7s"
    assert opts.exit_delay == 10.0
    assert opts.raw_exclude_file == "ips.txt"


def test_packet_scan_options_defaults():
    parser = argparse.ArgumentParser()
    PacketScanOptions.add_arguments(parser)
    opts = PacketScanOptions.from_namespace(parser.parse_args(["--json"]))
    assert opts.exit_delay == 0.3
    assert opts.src_ip is None
    assert opts.raw_rate_limit == ""


def test_packet_scan_options_parse_raw_options():
    opts = PacketScanOptions(raw_src_mac="00:11:22:33:44:55", raw_rate_limit="500/7s")
    opts.parse_raw_options()
    assert opts.src_mac == bytes([0x00, 0x11, 0x22, 0x33, 0x44, 0x55])
    assert opts.rate_count == 500
    assert opts.rate_window == 7.0


def test_packet_scan_options_invalid_mac():
    opts = PacketScanOptions(raw_src_mac="00:11:22")
    with pytest.raises(OptionsError):
        opts.parse_raw_options()


def test_packet_scan_options_invalid_rate():
    opts = PacketScanOptions(raw_rate_limit="1000//s")
    with pytest.raises(ParseError):
        opts.parse_raw_options()


def test_packet_scan_options_exclude_file(tmp_path):
    path = tmp_path / "ips.txt"
    path.write_text("# private\n10.0.1.0/30\n10.3.0.0/16 # more\n")
    opts = PacketScanOptions(raw_exclude_file=str(path))
    opts.parse_raw_options()
    assert opts.exclude_ips.contains("10.0.1.2")
    assert opts.exclude_ips.contains("10.3.5.5")
    assert not opts.exclude_ips.contains("10.0.1.4")


def test_ip_scan_options_cli_flags():
    parser = argparse.ArgumentParser()
    IPScanOptions.add_arguments(parser)
    opts = IPScanOptions.from_namespace(
        parser.parse_args(f"{PACKET_FLAGS} {IP_FLAGS}".split(" "))
    )
    assert opts.json is True
    assert opts.raw_interface == "eth0"
    assert opts.src_ip == ipaddress.IPv4Address("192.168.0.1")
    assert opts.raw_src_mac == "00:11:22:33:44:55"
    assert opts.raw_rate_limit == "500/7s"
    assert opts.exit_delay == 10.0
    assert opts.raw_exclude_file == "ips.txt"
    assert opts.raw_gateway_mac == "11:22:33:44:55:66"
    assert opts.ip_file == "ip_file.jsonl"
    assert opts.arp_cache_file == "arp.cache"


def test_ip_scan_options_parse_raw_options():
    opts = IPScanOptions(
        raw_src_mac="00:11:22:33:44:55",
        raw_rate_limit="500/7s",
        raw_gateway_mac="11:22:33:44:55:66",
    )
    opts.parse_raw_options()
    assert opts.src_mac == bytes([0x00, 0x11, 0x22, 0x33, 0x44, 0x55])
    assert opts.rate_count == 500
    assert opts.rate_window == 7.0
    assert opts.gateway_mac == bytes([0x11, 0x22, 0x33, 0x44, 0x55, 0x66])


def test_ip_port_scan_options_cli_flags():
    parser = argparse.ArgumentParser()
    IPPortScanOptions.add_arguments(parser)
    text = f"{PACKET_FLAGS} {IP_FLAGS} --ports-file ports.txt -p 23-57,71-2733"
    opts = IPPortScanOptions.from_namespace(parser.parse_args(text.split(" ")))
    assert opts.json is True
    assert opts.raw_interface == "eth0"
    assert opts.src_ip == ipaddress.IPv4Address("192.168.0.1")
    assert opts.raw_src_mac == "00:11:22:33:44:55"
    assert opts.raw_rate_limit == "500/7s"
    assert opts.exit_delay == 10.0
    assert opts.raw_exclude_file == "ips.txt"
    assert opts.raw_gateway_mac == "11:22:33:44:55:66"
    assert opts.ip_file == "ip_file.jsonl"
    assert opts.arp_cache_file == "arp.cache"
    assert opts.raw_port_ranges == "23-57,71-2733"
    assert opts.port_file == "ports.txt"


def test_ip_port_scan_options_parse_raw_options():
    opts = IPPortScanOptions(
        raw_src_mac="00:11:22:33:44:55",
        raw_rate_limit="500/7s",
        raw_gateway_mac="11:22:33:44:55:66",
        raw_port_ranges="23-57,71-2733",
    )
    opts.parse_raw_options()
    assert opts.src_mac == bytes([0x00, 0x11, 0x22, 0x33, 0x44, 0x55])
    assert opts.rate_count == 500
    assert opts.rate_window == 7.0
    assert opts.gateway_mac == bytes([0x11, 0x22, 0x33, 0x44, 0x55, 0x66])
    assert opts.port_ranges == [PortRange(23, 57), PortRange(71, 2733)]


def test_ip_port_scan_options_ports_file_appended(tmp_path):
    path = tmp_path / "ports.txt"
    path.write_text("80\n1123-1679\n")
    opts = IPPortScanOptions(raw_port_ranges="22", port_file=str(path))
    opts.parse_raw_options()
    assert opts.port_ranges == [PortRange(22, 22), PortRange(80, 80), PortRange(1123, 1679)]


def test_generic_scan_options_cli_flags():
    parser = argparse.ArgumentParser()
    GenericScanOptions.add_arguments(parser)
    text = (
        "--json -p 23-57,71-2733 -f ip_file.jsonl -w 300 -r 500/7s "
        "--exit-delay 10s --exclude ips.txt --ports-file ports.txt"
    )
    opts = GenericScanOptions.from_namespace(parser.parse_args(text.split(" ")))
    assert opts.json is True
    assert opts.raw_port_ranges == "23-57,71-2733"
    assert opts.port_file == "ports.txt"
    assert opts.ip_file == "ip_file.jsonl"
    assert opts.workers == 300
    assert opts.raw_rate_limit == "500/7s"
    assert opts.exit_delay == 10.0
    assert opts.raw_exclude_file == "ips.txt"


def test_generic_scan_options_parse_raw_options():
    opts = GenericScanOptions(
        raw_port_ranges="23-57,71-2733", raw_rate_limit="500/7s", workers=300
    )
    opts.parse_raw_options()
    assert opts.port_ranges == [PortRange(23, 57), PortRange(71, 2733)]
    assert opts.rate_count == 500
    assert opts.rate_window == 7.0


@pytest.mark.parametrize("workers", [0, -5])
def test_generic_scan_options_invalid_workers(workers):
    opts = GenericScanOptions(workers=workers)
    with pytest.raises(OptionsError, match="workers"):
        opts.parse_raw_options()


@pytest.mark.parametrize(
    "arp_cache_file, expected",
    [("arp.cache", False), ("", True), ("-", True)],
)
def test_is_arp_cache_from_stdin(arp_cache_file, expected):
    opts = IPScanOptions(arp_cache_file=arp_cache_file)
    assert opts.is_arp_cache_from_stdin() is expected


@pytest.mark.parametrize(
    "arp_cache_file, ip_file, should_err",
    [
        ("", "", False),
        ("", "ip_file", False),
        ("", "-", True),
        ("-", "", False),
        ("-", "ip_file", False),
        ("-", "-", True),
        ("arp.cache", "", False),
        ("arp.cache", "ip_file", False),
        ("arp.cache", "-", False),
    ],
)
def test_validate_arp_stdin(arp_cache_file, ip_file, should_err):
    opts = IPScanOptions(arp_cache_file=arp_cache_file, ip_file=ip_file)
    if should_err:
        with pytest.raises(OptionsError):
            opts.validate_arp_stdin()
    else:
        assert opts.validate_arp_stdin() is None


@pytest.mark.parametrize("cls", [IPScanOptions, GenericScanOptions])
@pytest.mark.parametrize(
    "args, expected",
    [
        (["192.168.0.1"], ipaddress.ip_network("192.168.0.1/32")),
        (["10.0.0.1/16"], ipaddress.ip_network("10.0.0.0/16")),
    ],
)
def test_parse_dst_subnet(cls, args, expected):
    assert cls().parse_dst_subnet(args) == expected


@pytest.mark.parametrize("cls", [IPScanOptions, GenericScanOptions])
def test_parse_dst_subnet_ip_file(cls):
    assert cls(ip_file="ip_file").parse_dst_subnet([]) is None


@pytest.mark.parametrize("cls", [IPScanOptions, GenericScanOptions])
def test_parse_dst_subnet_no_hosts(cls):
    with pytest.raises(OptionsError):
        cls(ip_file="").parse_dst_subnet([])


@pytest.mark.parametrize("cls", [IPScanOptions, GenericScanOptions])
def test_parse_dst_subnet_invalid(cls):
    with pytest.raises(InvalidAddressError):
        cls().parse_dst_subnet(["invalid_ip_address"])


@pytest.mark.parametrize(
    "ip_file, args, expected_subnet",
    [
        ("", ["192.168.0.1"], ipaddress.ip_network("192.168.0.1/32")),
        ("", ["10.0.0.1/16"], ipaddress.ip_network("10.0.0.0/16")),
        ("ip_file", [], None),
    ],
)
def test_generic_parse_scan_range(ip_file, args, expected_subnet):
    opts = GenericScanOptions(ip_file=ip_file, port_ranges=[PortRange(22, 100)])
    result = opts.parse_scan_range(args)
    assert result == ScanRange(dst_subnet=expected_subnet, ports=[PortRange(22, 100)])


def test_generic_parse_scan_range_no_hosts():
    with pytest.raises(OptionsError):
        GenericScanOptions(ip_file="").parse_scan_range([])


def test_get_scan_range_local_subnet():
    opts = PacketScanOptions(iface=make_iface())
    dst = parse_ip_net("192.168.0.0/24")
    result = opts.get_scan_range(dst)
    assert result.interface.name == "eth0"
    assert result.dst_subnet == dst
    assert result.src_ip == ipaddress.IPv4Address("192.168.0.10")
    assert result.src_mac == IFACE_MAC


def test_get_scan_range_overrides_source():
    src_mac = b"\x02\x00\x00\x00\x00\x09"
    opts = PacketScanOptions(
        iface=make_iface(), src_ip=ipaddress.IPv4Address("192.168.0.77"), src_mac=src_mac
    )
    result = opts.get_scan_range(parse_ip_net("10.0.0.0/8"))
    assert result.src_ip == ipaddress.IPv4Address("192.168.0.77")
    assert result.src_mac == src_mac


def test_get_scan_range_remote_subnet_uses_first_interface_ip():
    opts = PacketScanOptions(iface=make_iface(addresses=("172.16.0.5/16", "192.168.0.10/24")))
    result = opts.get_scan_range(parse_ip_net("10.0.0.0/8"))
    assert result.src_ip == ipaddress.IPv4Address("172.16.0.5")


def test_get_scan_range_without_source_ip():
    opts = PacketScanOptions(iface=make_iface(addresses=()))
    with pytest.raises(OptionsError, match="source IP"):
        opts.get_scan_range(parse_ip_net("10.0.0.0/8"))


def test_make_logger_json_output():
    stream = io.StringIO()
    logger = PacketScanOptions(json=True).make_logger("arp", stream)
    result = ScanResult(ip="192.168.0.3", mac="02:00:00:00:00:01", vendor="Acme")
    logger.log_results([result])
    assert stream.getvalue() == result.to_json() + "\n"


def test_make_logger_plain_output():
    stream = io.StringIO()
    logger = GenericScanOptions().make_logger("socks", stream)
    result = ScanResult(ip="192.168.0.3", mac="02:00:00:00:00:01", vendor="Acme")
    logger.log_results([result])
    assert stream.getvalue() == str(result) + "\n"
    assert logger.label == "socks"


def test_parse_arp_cache_from_file(tmp_path):
    path = tmp_path / "arp.cache"
    path.write_text(
        '{"ip":"192.168.0.2","mac":"02:00:00:00:00:0a"}\n'
        '{"ip":"192.168.0.3","mac":"02:00:00:00:00:0b"}\n'
    )
    cache = IPScanOptions(arp_cache_file=str(path)).parse_arp_cache()
    assert cache.get("192.168.0.2") == b"\x02\x00\x00\x00\x00\x0a"
    assert cache.get("192.168.0.3") == b"\x02\x00\x00\x00\x00\x0b"
    assert len(cache) == 2


def test_parse_arp_cache_invalid_entry(tmp_path):
    path = tmp_path / "arp.cache"
    path.write_text('{"ip":"192.168.0.2","mac":"02:00:00"}\n')
    with pytest.raises(ValueError):
        IPScanOptions(arp_cache_file=str(path)).parse_arp_cache()


def test_get_gateway_mac_prefers_configured(tmp_path):
    gateway_mac = b"\x02\x00\x00\x00\x00\x0c"
    opts = IPScanOptions(gateway_mac=gateway_mac)
    path = tmp_path / "arp.cache"
    path.write_text('{"ip":"192.168.0.1","mac":"02:00:00:00:00:0d"}\n')
    cache = IPScanOptions(arp_cache_file=str(path)).parse_arp_cache()
    assert opts.get_gateway_mac(make_iface(), cache) == gateway_mac


def test_parse_options_vpn_mode():
    opts = IPPortScanOptions(iface=make_iface(mac=None), port_ranges=[PortRange(22, 23)])
    stream = io.StringIO()
    opts.parse_options("udp", ["192.168.0.0/24"], stream)
    assert opts.vpn_mode is True
    assert opts.cache is None
    assert opts.logger.label == "udp"
    assert opts.scan_range.ports == [PortRange(22, 23)]
    assert opts.scan_range.src_ip == ipaddress.IPv4Address("192.168.0.10")


def test_parse_options_with_arp_cache(tmp_path):
    path = tmp_path / "arp.cache"
    path.write_text('{"ip":"192.168.0.20","mac":"02:00:00:00:00:0e"}\n')
    gateway_mac = b"\x02\x00\x00\x00\x00\x0f"
    opts = IPScanOptions(
        iface=make_iface(), arp_cache_file=str(path), gateway_mac=gateway_mac
    )
    opts.parse_options("icmp", ["192.168.0.0/24"], io.StringIO())
    assert opts.vpn_mode is False
    assert opts.cache.get("192.168.0.20") == b"\x02\x00\x00\x00\x00\x0e"
    assert opts.gateway_mac == gateway_mac
    assert opts.scan_range.src_mac == IFACE_MAC


def test_parse_options_arp_and_ip_file_from_stdin():
    opts = IPScanOptions(iface=make_iface(), ip_file="-")
    with pytest.raises(OptionsError, match="stdin"):
        opts.parse_options("icmp", [], io.StringIO())