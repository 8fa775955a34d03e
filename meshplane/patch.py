"""
This module decides whether a live object needs to change to match a desired
object and builds the mutation that makes it so.

The comparison is a three-way merge:

1. Anything present in the last applied configuration (stored in an annotation
   on the live object) but absent from the desired object is removed.
2. The desired object is strategically merged onto the live object, so fields
   defaulted by the server are kept.
3. The merged result is compared to the live object with server managed fields
   ignored. No difference means no patch.
"""

# Standard
from typing import List, Optional
import copy
import json

# Third Party
from openshift.dynamic.apply import recursive_diff
import jsonpatch

# First Party
import alog

# Local
from .constants import LAST_APPLIED_CONFIG_ANNOTATION
from .exceptions import PatchError
from .patch_strategic_merge import (
    DIRECTIVE_DELETE,
    DIRECTIVE_KEY,
    get_merge_key,
    patch_strategic_merge,
)
from .status import ResourceKey

log = alog.use_channel("PATCH")

# Metadata fields that are owned by the server
SERVER_METADATA_FIELDS = [
    "resourceVersion",
    "generation",
    "uid",
    "creationTimestamp",
    "managedFields",
    "selfLink",
]

## Public ######################################################################


class Patch:
    """A computed change to a single live object. Nothing is sent to the
    cluster until apply() is called.
    """

    def __init__(self, client, current: dict, patched: dict):
        """
        Args:
            client:  ClusterClientBase
                The client used to send the update
            current:  dict
                The live object the patch was computed against
            patched:  dict
                The full desired state of the object after the patch
        """
        self._client = client
        self.current = current
        self.patched = patched

    @property
    def key(self) -> ResourceKey:
        return ResourceKey.from_object(self.current)

    @property
    def operations(self) -> List[dict]:
        """The RFC 6902 operations that turn the live object into the patched
        object, ignoring server managed fields
        """
        return jsonpatch.make_patch(
            clean_object(self.current), clean_object(self.patched)
        ).patch

    def apply(self) -> dict:
        """Send the patched object to the cluster. The update carries the
        resourceVersion of the live object, so a concurrent modification results
        in a ConflictError.

        Returns:
            updated:  dict
                The object as returned by the cluster
        """
        obj = copy.deepcopy(self.patched)
        resource_version = self.current.get("metadata", {}).get("resourceVersion")
        if resource_version:
            obj["metadata"]["resourceVersion"] = resource_version
        log.debug2("Applying patch to %s", self.key)
        log.debug4("Patch operations: %s", self.operations)
        return self._client.update(obj)

    def __str__(self) -> str:
        return f"Patch({self.key})"


class PatchFactory:
    """Computes patches between live and desired objects"""

    def __init__(self, client, merge_patch_keys: Optional[dict] = None):
        """
        Args:
            client:  ClusterClientBase
                The client that created patches will be applied with
            merge_patch_keys:  Optional[dict]
                Override for the strategic merge keys by position
        """
        self._client = client
        self._merge_patch_keys = merge_patch_keys

    def create_patch(self, current: dict, desired: dict) -> Optional[Patch]:
        """Compute the patch needed to bring the live object to the desired
        state

        Args:
            current:  dict
                The live object
            desired:  dict
                The desired object

        Returns:
            patch:  Optional[Patch]
                None if the live object already matches the desired state

        Raises:
            PatchError if the objects do not identify the same object or cannot
            be merged
        """
        if not isinstance(current, dict) or not isinstance(desired, dict):
            raise PatchError("Cannot patch non-dict objects")
        self._check_same_object(current, desired)

        desired = copy.deepcopy(desired)
        desired.pop("status", None)
        for metadata_field in SERVER_METADATA_FIELDS:
            desired.get("metadata", {}).pop(metadata_field, None)

        position = desired.get("kind", "")
        last_applied = get_last_applied(current)
        deletions = self._get_deletions(last_applied, desired, current, position)
        log.debug3("Deletions for %s: %s", ResourceKey.from_object(current), deletions)

        patched = current
        if deletions:
            patched = patch_strategic_merge(patched, deletions, self._merge_patch_keys)
        patched = patch_strategic_merge(patched, desired, self._merge_patch_keys)
        patched.pop("status", None)

        diff = recursive_diff(clean_object(current), clean_object(patched))
        if not diff:
            log.debug2("No patch needed for %s", ResourceKey.from_object(current))
            return None
        log.debug3("Found diff for %s: %s", ResourceKey.from_object(current), diff)
        return Patch(self._client, current, patched)

    ## Implementation ##########################################################

    @staticmethod
    def _check_same_object(current: dict, desired: dict):
        current_key = ResourceKey.from_object(current)
        desired_key = ResourceKey.from_object(desired)
        for attr in ["group", "kind", "namespace", "name"]:
            if getattr(current_key, attr) != getattr(desired_key, attr):
                raise PatchError(
                    f"Cannot patch {current_key} to {desired_key}: {attr} differs"
                )

    def _get_deletions(
        self,
        last_applied: dict,
        desired: dict,
        current: dict,
        position: str,
    ) -> dict:
        """Build a patch that removes everything that was applied before but is
        no longer desired. Only fields still present on the live object are
        removed.
        """
        deletions = {}
        for key, last_val in last_applied.items():
            if key not in current:
                continue
            if key not in desired:
                deletions[key] = None
                continue

            desired_val = desired[key]
            current_val = current[key]
            next_position = f"{position}.{key}"
            values = [last_val, desired_val, current_val]
            if all(isinstance(val, dict) for val in values):
                nested = self._get_deletions(
                    last_val, desired_val, current_val, next_position
                )
                if nested:
                    deletions[key] = nested
            elif all(isinstance(val, list) for val in values):
                merge_key = get_merge_key(next_position, self._merge_patch_keys)
                if merge_key:
                    items = self._get_list_deletions(
                        last_val, desired_val, current_val, next_position, merge_key
                    )
                    if items:
                        deletions[key] = items
        return deletions

    def _get_list_deletions(  # pylint: disable=too-many-arguments
        self,
        last_applied: list,
        desired: list,
        current: list,
        position: str,
        merge_key: str,
    ) -> List[dict]:
        desired_items = _index_by(desired, merge_key)
        current_items = _index_by(current, merge_key)
        deletions = []
        for item_key, last_item in _index_by(last_applied, merge_key).items():
            if item_key not in current_items:
                continue
            if item_key not in desired_items:
                deletions.append({merge_key: item_key, DIRECTIVE_KEY: DIRECTIVE_DELETE})
                continue
            nested = self._get_deletions(
                last_item, desired_items[item_key], current_items[item_key], position
            )
            if nested:
                nested[merge_key] = item_key
                deletions.append(nested)
        return deletions


def get_last_applied(obj: dict) -> dict:
    """Read the last applied configuration from an object's annotation. A
    missing or unreadable annotation reads as empty.
    """
    raw = (
        (obj.get("metadata") or {})
        .get("annotations", {})
        .get(LAST_APPLIED_CONFIG_ANNOTATION)
    )
    if not raw:
        return {}
    try:
        last_applied = json.loads(raw)
    except ValueError:
        log.warning("Ignoring unreadable last applied configuration: %s", raw)
        return {}
    return last_applied if isinstance(last_applied, dict) else {}


def set_last_applied(obj: dict):
    """Stamp the object's own configuration (without the annotation itself) on
    the object. The serialization is stable so an unchanged object gets an
    unchanged annotation.
    """
    config = copy.deepcopy(obj)
    config.pop("status", None)
    annotations = config.get("metadata", {}).get("annotations") or {}
    annotations.pop(LAST_APPLIED_CONFIG_ANNOTATION, None)
    if not annotations and "annotations" in config.get("metadata", {}):
        del config["metadata"]["annotations"]
    obj.setdefault("metadata", {}).setdefault("annotations", {})
    obj["metadata"]["annotations"] = obj["metadata"]["annotations"] or {}
    obj["metadata"]["annotations"][LAST_APPLIED_CONFIG_ANNOTATION] = json.dumps(
        config, sort_keys=True, separators=(",", ":")
    )


def clean_object(obj: dict) -> dict:
    """Copy of the object with status and server managed metadata removed"""
    obj = copy.deepcopy(obj)
    obj.pop("status", None)
    metadata = obj.get("metadata") or {}
    for metadata_field in SERVER_METADATA_FIELDS:
        metadata.pop(metadata_field, None)
    return obj


## Implementation ##############################################################


def _index_by(items: list, merge_key: str) -> dict:
    return {
        itm[merge_key]: itm
        for itm in items
        if isinstance(itm, dict) and merge_key in itm
    }
