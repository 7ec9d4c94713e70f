"""Pure logic engines for RiseUp.

Nothing in this package imports Home Assistant; the integration wires these
engines to HA-backed stores in __init__.py.

Submodules:
    - document_store: Store contracts, value objects, sentinels, error taxonomy
    - retry_queue: In-memory FIFO of deferred remote writes
    - connectivity_observer: Online/offline status with transition events
    - state_store: Observable state cell
    - sync_engine: Offline-resilient Entity Sync Service
    - statistics_engine: Daily records and derived statistics
    - economy_engine: Coin ledger arithmetic
    - character_engine: Character progression
"""

from .character_engine import CharacterEngine
from .connectivity_observer import ConnectivityObserver
from .economy_engine import EconomyEngine, InsufficientCoinsError, PurchaseError
from .retry_queue import QueuedOperation, RetryQueue
from .state_store import ObservableState
from .statistics_engine import StatisticsEngine
from .sync_engine import EntitySyncService, InvalidExportPayloadError

__all__ = [
    "CharacterEngine",
    "ConnectivityObserver",
    "EconomyEngine",
    "EntitySyncService",
    "InsufficientCoinsError",
    "InvalidExportPayloadError",
    "ObservableState",
    "PurchaseError",
    "QueuedOperation",
    "RetryQueue",
    "StatisticsEngine",
]
