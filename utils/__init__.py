"""
Utility modules for the catalyst pipeline.
"""

from .datetime_utils import utc_now, parse_datetime, days_until, days_since
from .json_utils import NumpyJSONEncoder, dump_json

__all__ = [
    "utc_now",
    "parse_datetime",
    "days_until",
    "days_since",
    "NumpyJSONEncoder",
    "dump_json",
]
