"""
Common utilities shared across components in the library
"""

# Standard
from typing import Any, List, Optional, Tuple
import datetime

# First Party
import alog

# Local
from . import constants

log = alog.use_channel("MPUTL")

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"

# Format used for all condition timestamps
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

## Dicts #######################################################################


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict to read from
        key:  str
            Key that may contain '.' notation indicating dict nesting
        dflt:  Any
            Value returned when the key (or an intermediate dict) is missing

    Returns:
        val:  Any
            Whatever is found at the given key or dflt
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__ or dct is None:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(
                f"Intermediate key {constants.NESTED_DICT_DELIM.join(parts[:i + 1])} "
                "is not a dict"
            )
    return dct.get(parts[-1], dflt)


## Kubernetes Objects ##########################################################


def split_api_version(api_version: str) -> Tuple[str, str]:
    """Split an apiVersion into (group, version). The core group is ""."""
    if "/" in api_version:
        group, version = api_version.split("/", 1)
        return group, version
    return "", api_version


def join_api_version(group: str, version: str) -> str:
    """Inverse of split_api_version"""
    return f"{group}/{version}" if group else version


def get_metadata(obj: dict) -> dict:
    """Get the metadata dict of an object, creating it if needed"""
    metadata = obj.get("metadata")
    if metadata is None:
        metadata = {}
        obj["metadata"] = metadata
    return metadata


def set_label(obj: dict, key: str, value: str):
    get_metadata(obj).setdefault("labels", {})
    obj["metadata"]["labels"] = obj["metadata"]["labels"] or {}
    obj["metadata"]["labels"][key] = value


def set_annotation(obj: dict, key: str, value: str):
    get_metadata(obj).setdefault("annotations", {})
    obj["metadata"]["annotations"] = obj["metadata"]["annotations"] or {}
    obj["metadata"]["annotations"][key] = value


def get_finalizers(obj: dict) -> List[str]:
    return list(obj.get("metadata", {}).get("finalizers") or [])


def add_finalizer(obj: dict, finalizer: str) -> bool:
    """Add a finalizer to the object's metadata in place

    Args:
        obj:  dict
            The object to modify
        finalizer:  str
            The finalizer to add

    Returns:
        added:  bool
            False if the finalizer was already present
    """
    finalizers = get_finalizers(obj)
    if finalizer in finalizers:
        return False
    log.debug("Adding finalizer: %s", finalizer)
    finalizers.append(finalizer)
    get_metadata(obj)["finalizers"] = finalizers
    return True


def remove_finalizer(obj: dict, finalizer: str) -> bool:
    """Remove a finalizer from the object's metadata in place

    Returns:
        removed:  bool
            False if the finalizer was not present
    """
    finalizers = get_finalizers(obj)
    if finalizer not in finalizers:
        return False
    log.debug("Removing finalizer: %s", finalizer)
    finalizers.remove(finalizer)
    get_metadata(obj)["finalizers"] = finalizers
    return True


def is_being_deleted(obj: dict) -> bool:
    return bool(obj.get("metadata", {}).get("deletionTimestamp"))


## Time ########################################################################


def now_timestamp(now: Optional[datetime.datetime] = None) -> str:
    """Current UTC time in the kubernetes timestamp format"""
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return now.strftime(TIMESTAMP_FORMAT)
