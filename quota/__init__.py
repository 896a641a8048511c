"""Daily quota accounting and anonymous-to-user linking."""

from .counter_store import CounterStore, SQLiteCounterStore
from .ledger import QuotaLedger, QuotaPolicy
from .linker import IdentityLinker

__all__ = [
    "CounterStore",
    "SQLiteCounterStore",
    "QuotaLedger",
    "QuotaPolicy",
    "IdentityLinker",
]
