"""
Common utilities shared across the library
"""

# Standard
from typing import Any, Optional
import datetime

# Local
from . import constants

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"

## Dicts #######################################################################


def merge_configs(base, overrides) -> dict:
    """Helper to perform a deep merge of the overrides into the base. The merge
    is done in place, but the resulting dict is also returned for convenience.

    The merge follows JSON merge-patch rules: if both the base and overrides
    have a key and both values are dicts, recursively merge. An override value
    of None removes the key. Otherwise the base value is replaced.

    Args:
        base:  dict
            The base config that will be updated with the overrides
        overrides:  dict
            The override config

    Returns:
        merged:  dict
            The merged results of overrides merged onto base
    """
    for key, value in overrides.items():
        if value is None:
            base.pop(key, None)
        elif (
            key not in base
            or not isinstance(base[key], dict)
            or not isinstance(value, dict)
        ):
            base[key] = value
        else:
            base[key] = merge_configs(base[key], value)

    return base


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict to read from
        key:  str
            Key that may contain '.' notation indicating dict nesting

    Returns:
        val:  Any
            Whatever is found at the given key or dflt if the key is not found.
            This includes missing intermediate dicts.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(
                f"Intermediate key {constants.NESTED_DICT_DELIM.join(parts[:i])} "
                "is not a dict"
            )
    return dct.get(parts[-1], dflt)


## Manifests ###################################################################


def get_labels(manifest: dict) -> dict:
    """Get the labels of a manifest, tolerating explicit nulls"""
    return (manifest.get("metadata") or {}).get("labels") or {}


def get_class_label(manifest: dict) -> Optional[str]:
    """Get the value of the class membership label, or None if it is unset or
    empty
    """
    return get_labels(manifest).get(constants.CLASS_LABEL_NAME) or None


## Time ########################################################################


def now_timestamp() -> str:
    """Current time formatted the way kubernetes serializes metav1.Time"""
    return datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
