"""EVM chain support."""
from .client import EvmClient
from .wallet import RpcWallet

__all__ = ["EvmClient", "RpcWallet"]
