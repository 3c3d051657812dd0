from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum


def convert_json_types(obj):
    """Convert stage metrics to JSON serializable types before they hit a JSON column.

    Never raises: values with no JSON form are stored as their ``str()``.
    """
    if obj is None or isinstance(obj, (bool, int, str)):
        return obj
    if isinstance(obj, float):
        # NaN/inf are not valid JSON
        return obj if obj == obj and obj not in (float("inf"), float("-inf")) else None
    if isinstance(obj, Enum):
        return convert_json_types(obj.value)
    if isinstance(obj, Decimal):
        return convert_json_types(float(obj))
    if isinstance(obj, (datetime, date, time)):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(key): convert_json_types(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [convert_json_types(item) for item in obj]
    return str(obj)
