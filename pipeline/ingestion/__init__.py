"""
Source Adapters

Fetch raw catalyst records from external sources:
- openFDA drug adverse events (regulatory)
- SEC-API.io filings
- Polygon.io earnings, or a static earnings calendar
"""

from .base import AdapterResult, SourceAdapter
from .earnings import EarningsAdapter, StaticEarningsAdapter
from .filings import FilingsAdapter
from .regulatory import RegulatoryAdapter

__all__ = [
    "AdapterResult",
    "SourceAdapter",
    "RegulatoryAdapter",
    "FilingsAdapter",
    "EarningsAdapter",
    "StaticEarningsAdapter",
]


ADAPTERS = {
    "regulatory": RegulatoryAdapter,
    "filings": FilingsAdapter,
    "earnings": EarningsAdapter,
}
