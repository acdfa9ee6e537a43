"""Elasticsearch scanning: cluster information and index aliases."""

from __future__ import annotations

import json
import warnings
from dataclasses import dataclass
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter

from netsweep.ranges import Request

SCAN_TYPE = "elastic"

DEFAULT_DATA_TIMEOUT = 5.0

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _sort_maps(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _sort_maps(value[k]) for k in sorted(value)}
    if isinstance(value, list):
        return [_sort_maps(v) for v in value]
    return value


def _marshal(value: Any) -> str:
    text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    for char, escape in _HTML_ESCAPES.items():
        text = text.replace(char, escape)
    return text


def _decode_object(body: bytes) -> Optional[dict]:
    """Decode the first JSON value of a body, which must be an object or null."""
    text = body.decode("utf-8", errors="replace").lstrip(" \t\r\n")
    if not text:
        raise ValueError("unexpected end of JSON input")
    value, _ = json.JSONDecoder().raw_decode(text)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValueError("JSON object expected")
    return value


def new_session() -> requests.Session:
    """An HTTP session with one connection per host and no certificate checks."""
    warnings.filterwarnings("ignore", message="Unverified HTTPS request")
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=1, pool_maxsize=1)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers["Connection"] = "close"
    session.verify = False
    return session


@dataclass
class ScanResult:
    """An Elasticsearch node that answered."""

    scan_type: str = SCAN_TYPE
    proto: str = ""
    host: str = ""
    info: Optional[dict] = None
    indexes: Optional[dict] = None

    def __str__(self) -> str:
        cluster = (self.info or {}).get("cluster_name", "")
        return f"{self.proto}://{self.host} {cluster} {len(self.indexes or {})}"

    def id(self) -> str:
        return self.host

    def to_json(self) -> str:
        return _marshal(
            {
                "scan": self.scan_type,
                "proto": self.proto,
                "host": self.host,
                "info": _sort_maps(self.info),
                "indexes": _sort_maps(self.indexes),
            }
        )


class ElasticClient:
    """Minimal Elasticsearch HTTP client."""

    def __init__(
        self,
        proto: str,
        data_timeout: float = DEFAULT_DATA_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.proto = proto
        self.data_timeout = data_timeout
        self.session = session if session is not None else new_session()

    def get_info(self, host: str) -> Optional[dict]:
        return self.get(f"{self.proto}://{host}/")

    def get_indexes(self, host: str) -> Optional[dict]:
        return self.get(f"{self.proto}://{host}/_aliases")

    def get(self, url: str) -> Optional[dict]:
        """GET a URL and decode its JSON object body, whatever the status."""
        with self.session.get(url, timeout=self.data_timeout) as resp:
            return _decode_object(resp.content)


class Scanner:
    """Scans hosts for open Elasticsearch APIs."""

    def __init__(
        self,
        proto: str,
        *,
        data_timeout: float = DEFAULT_DATA_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.proto = proto
        self.client = ElasticClient(proto, data_timeout, session)

    def scan(self, request: Request) -> ScanResult:
        host = f"{request.dst_ip}:{request.dst_port}"
        info = self.client.get_info(host)
        # index aliases are optional: failures are ignored
        try:
            indexes = self.client.get_indexes(host)
        except (requests.RequestException, ValueError):
            indexes = None
        return ScanResult(
            scan_type=SCAN_TYPE,
            proto=self.proto,
            host=host,
            info=info,
            indexes=indexes,
        )