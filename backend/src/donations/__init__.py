"""Donation and gala ticket payment orchestration over the CyberSource REST API."""

__version__ = "0.1.0"
