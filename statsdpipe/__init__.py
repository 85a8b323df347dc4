"""Parsing and receiving StatsD metrics and events, with metric types and a health-check server."""

__version__ = "0.1.0"