"""
Tests for the common utilities
"""

# Standard
import datetime

# Third Party
import pytest

# Local
from meshplane import utils

################
## nested_get ##
################


def test_nested_get():
    """Make sure nested values are found and missing ones give the default"""
    dct = {"a": {"b": {"c": 1}}, "x": None}
    assert utils.nested_get(dct, "a.b.c") == 1
    assert utils.nested_get(dct, "a.b.d") is None
    assert utils.nested_get(dct, "a.z.c", "dflt") == "dflt"
    assert utils.nested_get(dct, "x.y", "dflt") == "dflt"
    with pytest.raises(TypeError):
        utils.nested_get({"a": 1}, "a.b")


########################
## Kubernetes Objects ##
########################


def test_split_join_api_version():
    """Make sure apiVersions split into group and version"""
    assert utils.split_api_version("apps/v1") == ("apps", "v1")
    assert utils.split_api_version("v1") == ("", "v1")
    assert utils.join_api_version("apps", "v1") == "apps/v1"
    assert utils.join_api_version("", "v1") == "v1"


def test_set_label_and_annotation():
    """Make sure labels and annotations are set even when the maps are null"""
    obj = {"metadata": {"labels": None}}
    utils.set_label(obj, "foo", "bar")
    utils.set_annotation(obj, "baz", "bat")
    assert obj["metadata"]["labels"] == {"foo": "bar"}
    assert obj["metadata"]["annotations"] == {"baz": "bat"}


def test_finalizers():
    """Make sure finalizers are added once and removed"""
    obj = {"metadata": {"name": "foo"}}
    assert utils.add_finalizer(obj, "fin")
    assert not utils.add_finalizer(obj, "fin")
    assert utils.get_finalizers(obj) == ["fin"]
    assert utils.remove_finalizer(obj, "fin")
    assert not utils.remove_finalizer(obj, "fin")
    assert utils.get_finalizers(obj) == []


def test_is_being_deleted():
    """Make sure the deletion timestamp marks deletion"""
    assert not utils.is_being_deleted({"metadata": {}})
    assert utils.is_being_deleted(
        {"metadata": {"deletionTimestamp": "2020-01-01T00:00:00Z"}}
    )


##########
## Time ##
##########


def test_now_timestamp():
    """Make sure timestamps use the kubernetes format"""
    now = datetime.datetime(2020, 1, 2, 3, 4, 5, tzinfo=datetime.timezone.utc)
    assert utils.now_timestamp(now) == "2020-01-02T03:04:05Z"
    assert utils.now_timestamp().endswith("Z")
