"""Token ledger state storage, addresses, and a JSON-RPC query service and client."""

__version__ = "0.0.1"

__all__ = ["addresses", "storage", "server", "client"]