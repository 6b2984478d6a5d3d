UNSET = object()
"""Marker for values that should not override lower config layers."""


def recursive_merge(*dictionaries: dict | None) -> dict:
    """Merge dictionaries left to right; nested dicts are merged, ``UNSET`` values are skipped."""
    result: dict = {}
    for d in dictionaries:
        if d is None:
            continue
        for key, value in d.items():
            if value is UNSET:
                continue
            if isinstance(value, dict):
                base = result[key] if isinstance(result.get(key), dict) else {}
                result[key] = recursive_merge(base, value)
            else:
                result[key] = value
    return result
