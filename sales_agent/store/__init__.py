from .base import LineItemRecord, LocationRecord, OrderRecord, SalesStore
from .memory import InMemorySalesStore
from .supabase import SupabaseRestClient, SupabaseSalesStore

__all__ = [
    "InMemorySalesStore",
    "LineItemRecord",
    "LocationRecord",
    "OrderRecord",
    "SalesStore",
    "SupabaseRestClient",
    "SupabaseSalesStore",
]
