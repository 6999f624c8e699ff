"""opsmon: alert lifecycle management for the operations monitoring stack."""

__version__ = "0.4.0"
