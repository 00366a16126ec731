"""
Transport providers that obtain bundle bytes for the orchestrator.

- ArchiveTransport: download an archive to a local file
- GitTransport: clone or pull a git working tree
"""

from ota_hotupdate.transports.base import ArchiveTransport, GitTransport
from ota_hotupdate.transports.git import GitCliTransport
from ota_hotupdate.transports.http import HttpArchiveTransport

__all__ = [
    "ArchiveTransport",
    "GitTransport",
    "GitCliTransport",
    "HttpArchiveTransport",
]
