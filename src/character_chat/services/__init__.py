"""Top-level services package.

Services encapsulate the chat orchestration: the message ledger, branch
management, context assembly and the billing collaborator.
"""

from .billing import BillingService, InMemoryPointsBilling, UnlimitedBilling, create_billing
from .branch_manager import BranchInfo, BranchManager, MessageNode
from .context_builder import ContextBuilder
from .message_ledger import ExchangeResult, MessageLedger, RoomState, RoomStateRegistry

__all__ = [
    "BillingService",
    "InMemoryPointsBilling",
    "UnlimitedBilling",
    "create_billing",
    "BranchInfo",
    "BranchManager",
    "MessageNode",
    "ContextBuilder",
    "ExchangeResult",
    "MessageLedger",
    "RoomState",
    "RoomStateRegistry",
]
