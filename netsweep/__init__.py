"""Building blocks for network scans: ARP, packet loops, parsing, logging, Docker and Elasticsearch scanners."""

__version__ = "0.1.0"