"""
Tests for the owner reference functionality
"""

# Standard
import copy

# Third Party
import pytest

# First Party
import alog

# Local
from meshplane.cluster.owner_references import (
    add_owner_reference,
    make_owner_reference,
)
from meshplane.exceptions import ConfigError
from meshplane.test_helpers.helpers import SOME_OTHER_NAMESPACE, TEST_NAMESPACE

## Helpers #####################################################################

log = alog.use_channel("TEST")

SAMPLE_OWNER = {
    "kind": "ServiceMeshControlPlane",
    "apiVersion": "maistra.io/v1",
    "metadata": {
        "name": "basic-install",
        "namespace": TEST_NAMESPACE,
        "uid": "12345",
    },
}


def sample_object(namespace=TEST_NAMESPACE):
    metadata = {"name": "child", "uid": "54321"}
    if namespace:
        metadata["namespace"] = namespace
    return {
        "kind": "ServiceAccount",
        "apiVersion": "v1",
        "metadata": metadata,
    }


## Happy Path ##################################################################


def test_add_new_owner_ref():
    """Test that adding a ref to an object with none present adds as expected"""
    obj = sample_object()
    assert add_owner_reference(SAMPLE_OWNER, obj)
    assert obj["metadata"]["ownerReferences"] == [make_owner_reference(SAMPLE_OWNER)]


def test_owner_ref_content():
    """Test that the reference points at the owner and blocks its deletion"""
    assert make_owner_reference(SAMPLE_OWNER) == {
        "apiVersion": "maistra.io/v1",
        "kind": "ServiceMeshControlPlane",
        "name": "basic-install",
        "uid": "12345",
        "blockOwnerDeletion": True,
    }


@pytest.mark.parametrize("namespace", [SOME_OTHER_NAMESPACE, None])
def test_no_owner_ref_outside_namespace(namespace):
    """Test that cross namespace and cluster scoped objects get no reference"""
    obj = sample_object(namespace=namespace)
    assert not add_owner_reference(SAMPLE_OWNER, obj)
    assert "ownerReferences" not in obj["metadata"]


def test_no_duplicate():
    """Test that an object with an existing ref for the owner does not
    duplicate the existing ref
    """
    obj = sample_object()
    obj["metadata"]["ownerReferences"] = [make_owner_reference(SAMPLE_OWNER)]
    before = copy.deepcopy(obj)
    assert not add_owner_reference(SAMPLE_OWNER, obj)
    assert obj == before


def test_keeps_other_owners():
    """Test that existing references to other owners are kept"""
    other_ref = {"apiVersion": "v1", "kind": "Other", "name": "o", "uid": "999"}
    obj = sample_object()
    obj["metadata"]["ownerReferences"] = [other_ref]
    assert add_owner_reference(SAMPLE_OWNER, obj)
    assert obj["metadata"]["ownerReferences"] == [
        other_ref,
        make_owner_reference(SAMPLE_OWNER),
    ]


def test_no_self_reference():
    """Test that the owner never references itself"""
    owner = copy.deepcopy(SAMPLE_OWNER)
    assert not add_owner_reference(SAMPLE_OWNER, owner)
    assert "ownerReferences" not in owner["metadata"]


## Error Cases #################################################################


@pytest.mark.parametrize(
    "bad_object",
    [
        {"apiVersion": "v1", "metadata": {"name": "foo"}},
        {"kind": "Foo", "metadata": {"name": "foo"}},
        {"kind": "Foo", "apiVersion": "v1", "metadata": "not a dict"},
        {"kind": "Foo", "apiVersion": "v1", "metadata": {}},
    ],
)
def test_bad_child(bad_object):
    """Test that malformed objects raise ConfigError"""
    with pytest.raises(ConfigError):
        add_owner_reference(SAMPLE_OWNER, bad_object)
