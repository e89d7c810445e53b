from careconnect.core.sync.filters import Filter, Where, content_id, subscription_key, tag_records
from careconnect.core.sync.memory import MemoryPartitionStore
from careconnect.core.sync.rest import RestPartitionSource
from careconnect.core.sync.sources import PartitionSource, Record
from careconnect.core.sync.synchronizer import LiveQuerySynchronizer, SubscriptionHandle, SubscriptionSnapshot

__all__ = [
    "Filter",
    "Where",
    "content_id",
    "subscription_key",
    "tag_records",
    "MemoryPartitionStore",
    "RestPartitionSource",
    "PartitionSource",
    "Record",
    "LiveQuerySynchronizer",
    "SubscriptionHandle",
    "SubscriptionSnapshot",
]
