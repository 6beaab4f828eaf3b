"""Service modules"""
from .session import ProviderSession, SessionEvent, SessionEventKind, Subscription
from .registry import PoolRegistry
from .positions import PositionAggregator
from .orchestrator import TransactionOrchestrator, build_intent
from .client import DelexClient, SwapQuote

__all__ = [
    "ProviderSession",
    "SessionEvent",
    "SessionEventKind",
    "Subscription",
    "PoolRegistry",
    "PositionAggregator",
    "TransactionOrchestrator",
    "build_intent",
    "DelexClient",
    "SwapQuote",
]
