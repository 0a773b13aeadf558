"""
Ledger collaborator: versioned accounts, balances, logs, events, addresses.
"""

from .addresses import (derive_address, escrow_address, nonce_address,
                        pool_address, position_address, reward_vault_address,
                        task_address, treasury_address, vault_address)
from .clock import Clock, ManualClock, system_clock
from .events import EventBus, EventFilter, Subscription
from .store import (FAULT_MODES, Ledger, MemoryLedger, Receipt, Transaction,
                    Versioned, submit, with_cas)

__all__ = [
    "derive_address",
    "task_address",
    "nonce_address",
    "pool_address",
    "position_address",
    "escrow_address",
    "vault_address",
    "reward_vault_address",
    "treasury_address",
    "Clock",
    "ManualClock",
    "system_clock",
    "EventBus",
    "EventFilter",
    "Subscription",
    "Ledger",
    "MemoryLedger",
    "Receipt",
    "Transaction",
    "Versioned",
    "FAULT_MODES",
    "submit",
    "with_cas",
]
