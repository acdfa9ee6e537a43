import ipaddress
import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests

from netsweep import docker
from netsweep.ranges import Request

LOCALHOST = ipaddress.IPv4Address("127.0.0.1")

INFO = {
    "Name": "node",
    "OperatingSystem": "Linux",
    "KernelVersion": "5.4",
    "Architecture": "x86_64",
}
VERSION = {"Version": "20.10.7", "ApiVersion": "1.40"}


@pytest.fixture
def serve():
    servers = []

    def start(routes):
        paths = []

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self):
                paths.append(self.path)
                status, headers, body = routes.get(self.path, (404, {}, b"not found"))
                self.send_response(status)
                for key, value in headers.items():
                    self.send_header(key, value)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, *args):
                pass

        server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return server.server_address[1], paths

    yield start
    for server in servers:
        server.shutdown()
        server.server_close()


def routes_for(api, ping_headers):
    return {
        "/_ping": (200, ping_headers, b"OK"),
        f"/v{api}/info": (200, {}, json.dumps(INFO).encode()),
        f"/v{api}/version": (200, {}, json.dumps(VERSION).encode()),
    }


def test_scan_negotiates_older_server_version(serve):
    port, paths = serve(routes_for("1.40", {"API-Version": "1.40"}))
    result = docker.Scanner("http").scan(Request(dst_ip=LOCALHOST, dst_port=port))
    assert result.info == INFO
    assert result.version == VERSION
    assert result.host == f"tcp://127.0.0.1:{port}"
    assert result.scan_type == docker.SCAN_TYPE
    assert paths == ["/_ping", "/v1.40/info", "/v1.40/version"]


def test_scan_caps_version_at_client_version(serve):
    port, paths = serve(routes_for("1.41", {"API-Version": "1.43"}))
    result = docker.Scanner("http").scan(Request(dst_ip=LOCALHOST, dst_port=port))
    assert result.info == INFO
    assert "/v1.41/info" in paths


def test_scan_falls_back_without_version_header(serve):
    port, paths = serve(routes_for("1.24", {}))
    result = docker.Scanner("http").scan(Request(dst_ip=LOCALHOST, dst_port=port))
    assert result.info == INFO
    assert "/v1.24/info" in paths


def test_scan_ignores_version_errors(serve):
    routes = routes_for("1.40", {"API-Version": "1.40"})
    del routes["/v1.40/version"]
    port, _ = serve(routes)
    result = docker.Scanner("http").scan(Request(dst_ip=LOCALHOST, dst_port=port))
    assert result.info == INFO
    assert result.version == {}


def test_scan_fails_on_info_error(serve):
    routes = routes_for("1.40", {"API-Version": "1.40"})
    routes["/v1.40/info"] = (500, {}, b'{"message":"boom"}')
    port, _ = serve(routes)
    with pytest.raises(requests.HTTPError):
        docker.Scanner("http").scan(Request(dst_ip=LOCALHOST, dst_port=port))


def test_str_and_id():
    result = docker.ScanResult(proto="http", host="tcp://h:1", info=dict(INFO))
    assert str(result) == "http tcp://h:1 node Linux 5.4 x86_64"
    assert result.id() == "tcp://h:1"


def test_to_json_round_trip_and_field_order():
    result = docker.ScanResult(
        proto="https", host="tcp://10.0.0.1:2375", info=dict(INFO), version=dict(VERSION)
    )
    decoded = json.loads(result.to_json())
    assert list(decoded) == ["scan", "proto", "host", "info", "version"]
    assert decoded == {
        "scan": "docker",
        "proto": "https",
        "host": "tcp://10.0.0.1:2375",
        "info": INFO,
        "version": VERSION,
    }


def test_to_json_escapes_html():
    result = docker.ScanResult(proto="http", host="a&b")
    data = result.to_json()
    assert "&" not in data
    assert json.loads(data)["host"] == "a&b"