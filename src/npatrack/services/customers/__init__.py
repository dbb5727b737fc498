"""Customer record models and the bulk upsert engine.

The engine lives in :mod:`npatrack.services.customers.bulk`; it is not imported
here because the stores depend on these models.
"""

from .models import BulkUpsertResult, CustomerPayload, CustomerRecord, FailedEntry, GeoPoint, Owner, Role

__all__ = [
    "BulkUpsertResult",
    "CustomerPayload",
    "CustomerRecord",
    "FailedEntry",
    "GeoPoint",
    "Owner",
    "Role",
]
