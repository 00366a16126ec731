"""
OTA hot update - over-the-air bundle update orchestration.

This package fetches application bundles (downloaded archives or git working
trees), gates them on a declared version, activates them atomically and
optionally restarts the host application.
"""

__version__ = "0.1.0"
