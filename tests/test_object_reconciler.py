"""
Tests for reconciling single objects
"""

# Standard
from unittest import mock

# Third Party
import pytest

# First Party
import alog

# Local
from meshplane import config
from meshplane.constants import (
    KUBERNETES_APP_COMPONENT_KEY,
    KUBERNETES_APP_INSTANCE_KEY,
    KUBERNETES_APP_MANAGED_BY_KEY,
    KUBERNETES_APP_NAME_KEY,
    KUBERNETES_APP_PART_OF_KEY,
    KUBERNETES_APP_VERSION_KEY,
    MESH_GENERATION_KEY,
    OWNER_KEY,
)
from meshplane.exceptions import (
    AggregateError,
    ConflictError,
    HookError,
    InvalidError,
)
from meshplane.hooks import HookRegistry
from meshplane.object_reconciler import ObjectReconciler, get_mesh_generation
from meshplane.status import (
    ComponentStatus,
    ConditionReason,
    ConditionStatus,
    ConditionType,
    ResourceKey,
)
from meshplane.test_helpers.helpers import (
    SOME_OTHER_NAMESPACE,
    TEST_INSTANCE_UID,
    TEST_NAMESPACE,
    FailFor,
    MockClusterClient,
    library_config,
    make_config_map,
    make_object,
    setup_cr,
)

log = alog.use_channel("TEST")

COMPONENT = "istio/charts/pilot"

## Helpers #####################################################################


def run(reconciler, obj, old_status=None):
    """Reconcile one object into a fresh component status and capture the
    error instead of raising it
    """
    processed = set()
    new_status = ComponentStatus(resource=COMPONENT)
    error = None
    try:
        reconciler.reconcile_object(obj, processed, old_status, new_status)
    except Exception as err:  # pylint: disable=broad-except
        error = err
    return new_status, processed, error


def condition(status, condition_type):
    cond = status.get_condition(condition_type)
    return cond.status, cond.reason


def live_cm(client, name="test-cm", namespace=TEST_NAMESPACE):
    return client.get_obj("ConfigMap", name, namespace)


## Create ######################################################################


def test_create_new_object():
    """Test that a missing object is created and tracked as installed"""
    client = MockClusterClient()
    instance = setup_cr()
    new_status, processed, error = run(
        ObjectReconciler(client, instance), make_config_map()
    )

    assert error is None
    key = ResourceKey.from_object(make_config_map())
    assert processed == {key}
    assert [status.resource for status in new_status.resources] == [key]
    status = new_status.resources[0]
    assert condition(status, ConditionType.INSTALLED) == (
        ConditionStatus.TRUE,
        ConditionReason.INSTALL_SUCCESSFUL,
    )
    assert status.observed_generation == 1
    assert client.create.call_count == 1
    assert live_cm(client) is not None


def test_create_stamps_object():
    """Test that the ownership labels, annotation and owner reference are added
    to objects in the control plane namespace
    """
    client = MockClusterClient()
    instance = setup_cr()
    run(ObjectReconciler(client, instance), make_config_map())

    obj = live_cm(client)
    mesh_generation = get_mesh_generation(instance, config.operator_version)
    labels = obj["metadata"]["labels"]
    assert labels[KUBERNETES_APP_NAME_KEY] == COMPONENT
    assert labels[KUBERNETES_APP_COMPONENT_KEY] == COMPONENT
    assert labels[KUBERNETES_APP_INSTANCE_KEY] == TEST_NAMESPACE
    assert labels[KUBERNETES_APP_VERSION_KEY] == mesh_generation
    assert labels[KUBERNETES_APP_PART_OF_KEY] == config.app_part_of
    assert labels[KUBERNETES_APP_MANAGED_BY_KEY] == config.app_managed_by
    assert labels[OWNER_KEY] == TEST_NAMESPACE
    assert obj["metadata"]["annotations"][MESH_GENERATION_KEY] == mesh_generation
    assert [ref["uid"] for ref in obj["metadata"]["ownerReferences"]] == [
        TEST_INSTANCE_UID
    ]


def test_create_other_namespace_no_owner_ref():
    """Test that objects outside the control plane namespace are only
    labeled
    """
    client = MockClusterClient()
    run(
        ObjectReconciler(client, setup_cr()),
        make_config_map(namespace=SOME_OTHER_NAMESPACE),
    )
    obj = live_cm(client, namespace=SOME_OTHER_NAMESPACE)
    assert "ownerReferences" not in obj["metadata"]
    assert obj["metadata"]["labels"][OWNER_KEY] == TEST_NAMESPACE


def test_get_mesh_generation():
    """Test the format of the mesh generation"""
    assert get_mesh_generation(setup_cr(generation=3), "2.0") == "2.0-3"
    assert get_mesh_generation({}, "2.0") == "2.0-0"


def test_create_failure():
    """Test that a failed create is raised and recorded on a tracked status"""
    client = MockClusterClient(create_fail=ConflictError("boom"))
    new_status, processed, error = run(
        ObjectReconciler(client, setup_cr()), make_config_map()
    )
    assert isinstance(error, ConflictError)
    assert len(new_status.resources) == 1
    assert processed
    assert condition(new_status.resources[0], ConditionType.INSTALLED) == (
        ConditionStatus.FALSE,
        ConditionReason.INSTALL_ERROR,
    )


## Update ######################################################################


def test_unchanged_object_not_updated():
    """Test that reconciling the same object twice does not write again"""
    client = MockClusterClient()
    reconciler = ObjectReconciler(client, setup_cr())
    first_status, _, _ = run(reconciler, make_config_map())
    client.reset_mocks()

    second_status, _, error = run(reconciler, make_config_map(), first_status)
    assert error is None
    client.create.assert_not_called()
    client.update.assert_not_called()
    client.delete.assert_not_called()
    status = second_status.resources[0]
    assert condition(status, ConditionType.RECONCILED) == (
        ConditionStatus.TRUE,
        ConditionReason.RECONCILE_SUCCESSFUL,
    )
    assert status.observed_generation == 1


def test_changed_object_updated():
    """Test that a changed object is patched and its generation tracked"""
    client = MockClusterClient()
    reconciler = ObjectReconciler(client, setup_cr())
    first_status, _, _ = run(reconciler, make_config_map(data={"a": "1"}))

    second_status, _, error = run(
        reconciler, make_config_map(data={"a": "2"}), first_status
    )
    assert error is None
    assert client.update.call_count == 1
    assert live_cm(client)["data"] == {"a": "2"}
    assert second_status.resources[0].observed_generation == 2


def test_update_failure_keeps_installed():
    """Test that a failed update flips Reconciled but leaves Installed"""
    client = MockClusterClient()
    reconciler = ObjectReconciler(client, setup_cr())
    first_status, _, _ = run(reconciler, make_config_map(data={"a": "1"}))

    client.update.side_effect = ConflictError("stale")
    second_status, _, error = run(
        reconciler, make_config_map(data={"a": "2"}), first_status
    )
    assert isinstance(error, ConflictError)
    status = second_status.resources[0]
    assert condition(status, ConditionType.INSTALLED)[0] == ConditionStatus.TRUE
    assert condition(status, ConditionType.RECONCILED) == (
        ConditionStatus.FALSE,
        ConditionReason.RECONCILE_ERROR,
    )


def test_invalid_patch_recreates():
    """Test that an object whose patch is rejected is deleted and created"""
    client = MockClusterClient()
    reconciler = ObjectReconciler(client, setup_cr())
    first_status, _, _ = run(reconciler, make_config_map(data={"a": "1"}))

    client.reset_mocks()
    client.update.side_effect = InvalidError("immutable")
    second_status, _, error = run(
        reconciler, make_config_map(data={"a": "2"}), first_status
    )
    assert error is None
    assert client.delete.call_count == 1
    assert client.create.call_count == 1
    assert live_cm(client)["data"] == {"a": "2"}
    assert second_status.resources[0].observed_generation == 1


def test_invalid_patch_no_recreate():
    """Test that recreating on invalid patches can be disabled"""
    client = MockClusterClient()
    with library_config(recreate_on_invalid_patch=False):
        reconciler = ObjectReconciler(client, setup_cr())
        first_status, _, _ = run(reconciler, make_config_map(data={"a": "1"}))
        client.update.side_effect = InvalidError("immutable")
        _, _, error = run(reconciler, make_config_map(data={"a": "2"}), first_status)
    assert isinstance(error, InvalidError)
    client.delete.assert_not_called()


## Lists #######################################################################


def test_list_items_reconciled():
    """Test that every item of a List is reconciled and item errors are
    aggregated without stopping the other items
    """
    client = MockClusterClient(
        create_fail=FailFor(
            ConflictError("bad item"),
            lambda obj: obj["metadata"]["name"] == "bad",
        )
    )
    obj_list = make_object(
        "List",
        "",
        namespace=None,
        items=[
            make_config_map(name="bad"),
            make_config_map(name="good"),
        ],
    )
    new_status, processed, error = run(ObjectReconciler(client, setup_cr()), obj_list)
    assert isinstance(error, AggregateError)
    assert len(error) == 1
    assert len(processed) == 2
    assert [status.resource.name for status in new_status.resources] == [
        "bad",
        "good",
    ]
    assert live_cm(client, name="good") is not None
    assert live_cm(client, name="bad") is None


## Hooks #######################################################################


def test_preprocess_hook_modifies_object():
    """Test that preprocess hooks run on the object before it is sent"""
    hooks = HookRegistry()

    def add_key(obj, instance):
        obj["data"]["instance"] = instance["metadata"]["name"]

    hooks.register_preprocess("", "ConfigMap", add_key)
    client = MockClusterClient()
    instance = setup_cr()
    reconciler = ObjectReconciler(client, instance, hooks=hooks)
    _, _, error = run(reconciler, make_config_map())
    assert error is None
    assert live_cm(client)["data"]["instance"] == instance["metadata"]["name"]


def test_preprocess_hook_failure():
    """Test that a failing preprocess hook fails the object"""
    hooks = HookRegistry()
    hooks.register_preprocess(
        "", "ConfigMap", mock.Mock(side_effect=ValueError("bad hook"))
    )
    client = MockClusterClient()
    new_status, _, error = run(
        ObjectReconciler(client, setup_cr(), hooks=hooks), make_config_map()
    )
    assert isinstance(error, HookError)
    client.create.assert_not_called()
    assert condition(new_status.resources[0], ConditionType.INSTALLED)[0] == (
        ConditionStatus.FALSE
    )


def test_post_create_hook():
    """Test that post-create hooks get the created object and their failures
    do not fail the object
    """
    hook = mock.Mock(side_effect=ValueError("post create"))
    hooks = HookRegistry()
    hooks.register_post_create("", "ConfigMap", hook)
    client = MockClusterClient()
    instance = setup_cr()
    new_status, _, error = run(
        ObjectReconciler(client, instance, hooks=hooks), make_config_map()
    )
    assert error is None
    hook.assert_called_once()
    created, hook_instance = hook.call_args[0]
    assert created["metadata"]["uid"]
    assert hook_instance is instance
    assert new_status.resources[0].is_true(ConditionType.INSTALLED)


@pytest.mark.parametrize("kind", ["ConfigMap", "Secret"])
def test_post_create_not_run_on_update(kind):
    """Test that post-create hooks only run for creates"""
    hook = mock.Mock()
    hooks = HookRegistry()
    hooks.register_post_create("", kind, hook)
    client = MockClusterClient()
    reconciler = ObjectReconciler(client, setup_cr(), hooks=hooks)
    first_status, _, _ = run(reconciler, make_object(kind, "foo", data={"a": "1"}))
    run(reconciler, make_object(kind, "foo", data={"a": "2"}), first_status)
    assert hook.call_count == 1
