"""Prometheus exporter for the Monero daemon RPC interface."""

__version__ = "0.1.0"
