"""
Block explorer backends.
"""

from sparkbot.backends.mempool import ChainDataClient, ExplorerEndpoint, compute_confirmations

__all__ = ["ChainDataClient", "ExplorerEndpoint", "compute_confirmations"]
