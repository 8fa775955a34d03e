"""
This module holds the functionality to manage ownerReferences from a control
plane to the objects created for it
"""

# First Party
import alog

# Local
from ..exceptions import assert_config

log = alog.use_channel("OWNRF")


def add_owner_reference(owner_cr: dict, child_obj: dict) -> bool:
    """Add a reference to the owner into the child object if the two live in
    the same namespace. Cross namespace and cluster scoped objects cannot carry
    an owner reference.

    Args:
        owner_cr:  dict
            The full manifest of the owning control plane
        child_obj:  dict
            The object to modify in place

    Returns:
        added:  bool
            True if a new reference was added
    """
    _validate_object_struct(owner_cr)
    _validate_object_struct(child_obj)

    owner_metadata = owner_cr["metadata"]
    child_metadata = child_obj["metadata"]
    owner_uid = owner_metadata.get("uid")

    if child_metadata.get("uid") and child_metadata.get("uid") == owner_uid:
        log.debug2("Owner is same as child; Not adding owner ref")
        return False

    if child_metadata.get("namespace") != owner_metadata.get("namespace"):
        log.debug3(
            "Not adding owner ref to %s/%s outside of %s",
            child_obj["kind"],
            child_metadata["name"],
            owner_metadata.get("namespace"),
        )
        return False

    owner_refs = list(child_metadata.get("ownerReferences") or [])
    if owner_uid in [ref.get("uid") for ref in owner_refs]:
        return False

    log.debug2(
        "Adding owner reference for %s.%s/%s",
        child_obj["apiVersion"],
        child_obj["kind"],
        child_metadata["name"],
    )
    owner_refs.append(make_owner_reference(owner_cr))
    child_metadata["ownerReferences"] = owner_refs
    return True


def make_owner_reference(owner_cr: dict) -> dict:
    """Make an owner reference for the given control plane instance

    Args:
        owner_cr:  dict
            The full manifest for the owning resource

    Returns:
        owner_reference:  dict
            The entry for the `metadata.ownerReferences` list of the owned
            object
    """
    # NOTE: controller is not set. Only one owner may be the controller and it
    #   is only used for adoption, not garbage collection.
    metadata = owner_cr.get("metadata", {})
    return {
        "apiVersion": owner_cr.get("apiVersion"),
        "kind": owner_cr.get("kind"),
        "name": metadata.get("name"),
        "uid": metadata.get("uid"),
        # The owner will not be deleted until this object completes its
        # deletion
        "blockOwnerDeletion": True,
    }


## Implementation Details ######################################################


def _validate_object_struct(obj: dict):
    """Ensure that kind, apiVersion and metadata.name are present"""
    assert_config("kind" in obj, "Got object without 'kind'")
    assert_config("apiVersion" in obj, "Got object without 'apiVersion'")
    metadata = obj.get("metadata")
    assert_config(isinstance(metadata, dict), "Got object with non-dict 'metadata'")
    assert_config("name" in metadata, "Got object without 'metadata.name'")
