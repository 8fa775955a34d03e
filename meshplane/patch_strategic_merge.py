"""
Strategic merge of one object dict onto another, following the semantics in:

* kubernetes: https://github.com/kubernetes/community/blob/master/contributors/devel/sig-api-machinery/strategic-merge-patch.md

Lists are merged element by element when a merge key is registered for their
position (Kind.path.to.list), and overwritten otherwise. A None value removes a
key and the "$patch" directive controls list elements.
"""  # pylint: disable=line-too-long

# Standard
from collections import OrderedDict
from typing import Any, Dict, Optional
import copy

# Third Party
from openshift.dynamic.apply import STRATEGIC_MERGE_PATCH_KEYS

# First Party
import alog

# Local
from .exceptions import PatchError

log = alog.use_channel("SMRGE")

## Public ######################################################################

DIRECTIVE_KEY = "$patch"
DIRECTIVE_REPLACE = "replace"
DIRECTIVE_MERGE = "merge"
DIRECTIVE_DELETE = "delete"


def get_merge_key(
    position: str,
    merge_patch_keys: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """Look up the merge key for the list at the given position"""
    if merge_patch_keys is None:
        merge_patch_keys = STRATEGIC_MERGE_PATCH_KEYS
    return merge_patch_keys.get(position)


def patch_strategic_merge(
    resource_definition: dict,
    patch: dict,
    merge_patch_keys: Optional[Dict[str, str]] = None,
) -> dict:
    """Apply a strategic merge patch to a resource. Neither input is modified.

    Args:
        resource_definition:  dict
            The dict representation of the kubernetes resource
        patch:  dict
            The partial object to merge onto the resource
        merge_patch_keys:  Optional[Dict[str, str]]
            The mapping from positions to the key used to align list elements.
            Defaults to the well known kubernetes merge keys.

    Returns:
        patched_resource_definition:  dict
            The merged resource

    Raises:
        PatchError if the patch cannot be applied to the resource
    """
    if merge_patch_keys is None:
        merge_patch_keys = STRATEGIC_MERGE_PATCH_KEYS
    return _merge(
        copy.deepcopy(resource_definition),
        copy.deepcopy(patch),
        resource_definition.get("kind", ""),
        merge_patch_keys,
    )


## Implementation ##############################################################


def _merge(current: Any, patch: Any, position: str, merge_patch_keys: dict) -> Any:
    if isinstance(patch, dict) and isinstance(current, dict):
        return _merge_dict(current, patch, position, merge_patch_keys)
    if isinstance(patch, list) and isinstance(current, list):
        return _merge_list(current, patch, position, merge_patch_keys)
    log.debug4("Overwriting at [%s]", position)
    return patch


def _merge_dict(current: dict, patch: dict, position: str, merge_patch_keys: dict):
    for key, val in patch.items():
        if val is None:
            current.pop(key, None)
        elif key not in current:
            current[key] = val
        else:
            current[key] = _merge(
                current[key], val, f"{position}.{key}", merge_patch_keys
            )
    return current


def _merge_list(current: list, patch: list, position: str, merge_patch_keys: dict):
    merge_key = merge_patch_keys.get(position)
    log.debug4("Merging list at [%s]. Merge key: %s", position, merge_key)
    if not merge_key:
        return [
            itm for itm in patch if not (isinstance(itm, dict) and DIRECTIVE_KEY in itm)
        ]

    for name, items in [("Current", current), ("Patch", patch)]:
        if not all(isinstance(itm, dict) and merge_key in itm for itm in items):
            raise PatchError(
                f"{name} list at [{position}] contains elements without [{merge_key}]"
            )

    merged = OrderedDict((itm[merge_key], itm) for itm in current)
    for item in patch:
        item_key = item[merge_key]
        directive = item.pop(DIRECTIVE_KEY, DIRECTIVE_MERGE)
        if directive not in [DIRECTIVE_DELETE, DIRECTIVE_REPLACE, DIRECTIVE_MERGE]:
            raise PatchError(f"Invalid directive [{directive}] at [{position}]")
        if directive == DIRECTIVE_DELETE:
            # Deleting an element that is already gone is a no-op
            merged.pop(item_key, None)
        elif directive == DIRECTIVE_REPLACE or item_key not in merged:
            merged[item_key] = item
        else:
            # NOTE: list nesting is not represented in the position
            merged[item_key] = _merge(
                merged[item_key], item, position, merge_patch_keys
            )
    return list(merged.values())
