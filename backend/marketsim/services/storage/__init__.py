from marketsim.services.storage.upserter import BatchUpserter, UpsertResult
from marketsim.services.storage.store import StoragePolicy, TableState, TimeSeriesStore

__all__ = [
    "BatchUpserter",
    "UpsertResult",
    "StoragePolicy",
    "TableState",
    "TimeSeriesStore",
]
