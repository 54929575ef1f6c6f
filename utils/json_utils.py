"""
JSON utilities for handling numpy and other special types.
"""

import json
from datetime import datetime
from typing import Any

import numpy as np


class NumpyJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy types and datetimes."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.bool_):
            return bool(obj)

        if isinstance(obj, datetime):
            return obj.isoformat()

        return super().default(obj)


def dump_json(obj: Any, fp, **kwargs) -> None:
    """Wrapper for json.dump that uses NumpyJSONEncoder by default."""
    kwargs.setdefault('cls', NumpyJSONEncoder)
    kwargs.setdefault('indent', 2)
    kwargs.setdefault('ensure_ascii', False)
    json.dump(obj, fp, **kwargs)
