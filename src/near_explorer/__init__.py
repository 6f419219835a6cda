"""Resilient multi-provider NEAR RPC access layer for a block explorer."""

__version__ = "0.1.0"
