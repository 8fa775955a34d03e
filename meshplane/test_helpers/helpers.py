"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from unittest import mock
import copy
import inspect
import os

# Third Party
import yaml

# First Party
import alog

# Local
from meshplane.cluster import DryRunClusterClient
from meshplane.config import library_config as config_detail_dict
from meshplane.manifest import Manifest

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_INSTANCE_NAME = "test_instance"
TEST_INSTANCE_UID = "12345678-1234-1234-1234-123456789012"
TEST_NAMESPACE = "test"
SOME_OTHER_NAMESPACE = "somewhere"

CONTROL_PLANE_KIND = "ServiceMeshControlPlane"
CONTROL_PLANE_API_VERSION = "maistra.io/v1"


def setup_cr(
    kind=CONTROL_PLANE_KIND,
    api_version=CONTROL_PLANE_API_VERSION,
    spec=None,
    name=TEST_INSTANCE_NAME,
    namespace=TEST_NAMESPACE,
    generation=1,
    finalizers=None,
    **kwargs,
):
    """Build a control plane resource"""
    cr_dict = kwargs or {}
    cr_dict.setdefault("kind", kind)
    cr_dict.setdefault("apiVersion", api_version)
    metadata = cr_dict.setdefault("metadata", {})
    metadata.setdefault("name", name)
    metadata.setdefault("namespace", namespace)
    metadata.setdefault("uid", TEST_INSTANCE_UID)
    metadata.setdefault("generation", generation)
    if finalizers is not None:
        metadata["finalizers"] = list(finalizers)
    cr_dict.setdefault("spec", {}).update(copy.deepcopy(spec or {}))
    return cr_dict


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion
    """
    # Override the configs and hang onto the old values
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        config_detail_dict[key] = val

    # Yield to the context
    try:
        yield
    finally:
        # Revert to the old values
        for key in config_overrides:
            if key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


def get_failable_method(fail_flag, method, failure_return=False):
    log.debug4(
        "Setting up failable mock of [%s] with fail flag: %s", str(method), fail_flag
    )

    def failable_method(*args, **kwargs):
        log.debug4(
            "Running failable mock of [%s] with fail flag: %s", str(method), fail_flag
        )
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        elif callable(fail_flag):
            log.debug4("Calling callable fail flag")
            res = fail_flag(*args, **kwargs)
            if res is not None:
                return res
        elif fail_flag == "assert":
            log.debug4("Asserting in failable mock")
            raise AssertionError(f"You told me to fail {method}!")
        elif fail_flag:
            log.debug4("Returning %s", failure_return)
            return failure_return
        log.debug4("Passing through (%s, **%s)", args, kwargs)
        res = method(*args, **kwargs)
        log.debug4("Passthrough res: %s", res)
        return res

    return failable_method


class FailOnce:
    """Helper callable that will fail once on the N'th call"""

    def __init__(self, fail_val, fail_number=1):
        self.call_count = 0
        self.fail_number = fail_number
        self.fail_val = fail_val

    def __call__(self, *_, **__):
        self.call_count += 1
        if self.call_count == self.fail_number:
            log.debug("Failing on call %d with %s", self.call_count, self.fail_val)
            if isinstance(self.fail_val, type) and issubclass(self.fail_val, Exception):
                raise self.fail_val("Raising!")
            if isinstance(self.fail_val, Exception):
                raise self.fail_val
            return self.fail_val
        log.debug("Not failing on call %d", self.call_count)
        return


class FailFor:
    """Helper callable that raises for objects matching a predicate"""

    def __init__(self, fail_val, predicate):
        self.fail_val = fail_val
        self.predicate = predicate

    def __call__(self, *args, **kwargs):
        if self.predicate(*args, **kwargs):
            raise self.fail_val
        return


class MockClusterClient(DryRunClusterClient):
    """The MockClusterClient wraps a standard DryRunClusterClient and adds
    configuration options to simulate failures in each of its operations.
    Each fail flag may be an exception (class or instance) to raise, a
    callable run before the real operation, or "assert".
    """

    def __init__(
        self,
        get_fail=False,
        list_fail=False,
        create_fail=False,
        update_fail=False,
        patch_fail=False,
        delete_fail=False,
        update_status_fail=False,
        auto_enable=True,
        resources=None,
    ):
        resources = copy.deepcopy(resources or [])
        for resource in resources:
            resource.setdefault("apiVersion", "v1")
        super().__init__(resources)

        self.get_fail = get_fail
        self.list_fail = list_fail
        self.create_fail = create_fail
        self.update_fail = update_fail
        self.patch_fail = patch_fail
        self.delete_fail = delete_fail
        self.update_status_fail = update_status_fail

        # If auto-enabling, turn the mocks on now
        if auto_enable:
            self.enable_mocks()

    #######################
    ## Helpers for Tests ##
    #######################

    def enable_mocks(self):
        """Turn the mocks on"""
        self.get = mock.Mock(
            side_effect=get_failable_method(self.get_fail, super().get, None)
        )
        self.list = mock.Mock(
            side_effect=get_failable_method(self.list_fail, super().list, [])
        )
        self.create = mock.Mock(
            side_effect=get_failable_method(self.create_fail, super().create)
        )
        self.update = mock.Mock(
            side_effect=get_failable_method(self.update_fail, super().update)
        )
        self.patch = mock.Mock(
            side_effect=get_failable_method(self.patch_fail, super().patch)
        )
        self.delete = mock.Mock(
            side_effect=get_failable_method(self.delete_fail, super().delete)
        )
        self.update_status = mock.Mock(
            side_effect=get_failable_method(
                self.update_status_fail, super().update_status
            )
        )

    def reset_mocks(self):
        """Reset the call records of every mocked operation"""
        for operation in [
            self.get,
            self.list,
            self.create,
            self.update,
            self.patch,
            self.delete,
            self.update_status,
        ]:
            operation.reset_mock()

    def get_obj(self, kind, name, namespace=None, api_version="v1"):
        return DryRunClusterClient.get(self, api_version, kind, name, namespace)

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None


## Manifests ###################################################################


def make_object(kind, name, namespace=TEST_NAMESPACE, api_version="v1", **kwargs):
    """Build a minimal object dict"""
    obj = {
        "apiVersion": api_version,
        "kind": kind,
        "metadata": {"name": name},
    }
    if namespace:
        obj["metadata"]["namespace"] = namespace
    obj.update(kwargs)
    return obj


def make_service_account(name="test-sa", namespace=TEST_NAMESPACE):
    return make_object("ServiceAccount", name, namespace)


def make_config_map(name="test-cm", namespace=TEST_NAMESPACE, data=None):
    return make_object("ConfigMap", name, namespace, data=data or {"foo": "bar"})


def make_manifest(name, *objects):
    """Build a manifest holding the given objects as separate documents"""
    content = "---\n".join(yaml.safe_dump(obj) for obj in objects)
    return Manifest(name=name, content=content)
