"""Docker Engine API scanning."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Optional

import requests

from netsweep.elastic import new_session
from netsweep.ranges import Request

SCAN_TYPE = "docker"

DEFAULT_DATA_TIMEOUT = 10.0

_CLIENT_API_VERSION = "1.41"
_FALLBACK_API_VERSION = "1.24"

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _version_key(version: str) -> tuple[int, ...]:
    return tuple(int(p) if p.isdigit() else 0 for p in version.split("."))


@dataclass
class ScanResult:
    """A Docker daemon that answered."""

    scan_type: str = SCAN_TYPE
    proto: str = ""
    host: str = ""
    info: dict = field(default_factory=dict)
    version: dict = field(default_factory=dict)

    def __str__(self) -> str:
        return " ".join(
            [
                self.proto,
                self.host,
                str(self.info.get("Name", "")),
                str(self.info.get("OperatingSystem", "")),
                str(self.info.get("KernelVersion", "")),
                str(self.info.get("Architecture", "")),
            ]
        )

    def id(self) -> str:
        return self.host

    def to_json(self) -> str:
        text = json.dumps(
            {
                "scan": self.scan_type,
                "proto": self.proto,
                "host": self.host,
                "info": self.info,
                "version": self.version,
            },
            ensure_ascii=False,
            separators=(",", ":"),
        )
        for char, escape in _HTML_ESCAPES.items():
            text = text.replace(char, escape)
        return text


class Scanner:
    """Scans hosts for exposed Docker Engine APIs."""

    def __init__(
        self,
        proto: str,
        *,
        data_timeout: float = DEFAULT_DATA_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.proto = proto
        self.data_timeout = data_timeout
        self.session = session if session is not None else new_session()

    @staticmethod
    def _remaining(deadline: float) -> float:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TimeoutError("docker scan deadline exceeded")
        return remaining

    def _negotiate_version(self, base_url: str, deadline: float) -> str:
        try:
            with self.session.get(
                f"{base_url}/_ping", timeout=self._remaining(deadline)
            ) as resp:
                server = resp.headers.get("API-Version") or _FALLBACK_API_VERSION
        except requests.RequestException:
            server = _FALLBACK_API_VERSION
        if _version_key(server) < _version_key(_CLIENT_API_VERSION):
            return server
        return _CLIENT_API_VERSION

    def _get_json(self, url: str, deadline: float) -> dict:
        with self.session.get(url, timeout=self._remaining(deadline)) as resp:
            resp.raise_for_status()
            value = resp.json()
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValueError("JSON object expected")
        return value

    def scan(self, request: Request) -> ScanResult:
        deadline = time.monotonic() + self.data_timeout
        address = f"{request.dst_ip}:{request.dst_port}"
        host = f"tcp://{address}"
        base_url = f"{self.proto}://{address}"
        api = self._negotiate_version(base_url, deadline)
        info = self._get_json(f"{base_url}/v{api}/info", deadline)
        # the server version is optional: failures are ignored
        try:
            version = self._get_json(f"{base_url}/v{api}/version", deadline)
        except (requests.RequestException, ValueError, TimeoutError):
            version = {}
        return ScanResult(
            scan_type=SCAN_TYPE,
            proto=self.proto,
            host=host,
            info=info,
            version=version,
        )