"""Protocol interfaces for the DeLex client."""
from .chain import ChainClient
from .wallet import ACCOUNTS_CHANGED, CHAIN_CHANGED, WalletProvider

__all__ = ["ChainClient", "WalletProvider", "ACCOUNTS_CHANGED", "CHAIN_CHANGED"]
