"""
Tests for the ControlPlaneController entry point
"""

# Standard
from unittest import mock

# Third Party
import pytest

# First Party
import aconfig
import alog

# Local
from meshplane import config, constants
from meshplane.cluster import DryRunClusterClient
from meshplane.controller import ControlPlaneController
from meshplane.hooks import HookRegistry
from meshplane.log_format import MeshplaneJsonFormatter
from meshplane.manifest import StaticRenderer
from meshplane.test_helpers.helpers import (
    CONTROL_PLANE_API_VERSION,
    CONTROL_PLANE_KIND,
    TEST_INSTANCE_NAME,
    TEST_NAMESPACE,
    MockClusterClient,
    library_config,
    make_manifest,
    make_service_account,
    setup_cr,
)

log = alog.use_channel("TEST")

## Helpers #####################################################################


class AlogConfigureMock:
    def __init__(self):
        self.kwargs = None

    def __call__(self, **kwargs):
        self.kwargs = kwargs


def make_renderer():
    return StaticRenderer({"A": [make_manifest("sa.yaml", make_service_account("a"))]})


def make_controller(client=None, renderer=None):
    return ControlPlaneController(
        renderer or make_renderer(),
        client=client,
        hooks=HookRegistry(),
        component_order=["A"],
    )


def finalized_client():
    cr = setup_cr(finalizers=[config.finalizer_name])
    return MockClusterClient(resources=[cr])


def get_instance(client):
    return client.get_obj(
        CONTROL_PLANE_KIND,
        TEST_INSTANCE_NAME,
        TEST_NAMESPACE,
        api_version=CONTROL_PLANE_API_VERSION,
    )


####################
## parse_manifest ##
####################


@pytest.mark.parametrize(
    ["resource", "raises"],
    [
        [{"metadata": {"name": "foo"}}, False],
        [aconfig.Config({"spec": {"a": 1}}, override_env_vars=False), False],
        ["not a dict", True],
    ],
)
def test_parse_manifest(resource, raises):
    """Make sure the controller can parse a manifest"""
    if raises:
        with pytest.raises(ValueError):
            ControlPlaneController.parse_manifest(resource)
    else:
        manifest = ControlPlaneController.parse_manifest(resource)
        assert manifest == resource


#######################
## configure_logging ##
#######################


def test_configure_logging_no_annotations():
    """Make sure that the default logging configuration is applied"""
    alog_mock = AlogConfigureMock()
    cr = aconfig.Config({}, override_env_vars=False)
    with mock.patch("alog.configure", alog_mock):
        ControlPlaneController.configure_logging(cr, "id")

    assert alog_mock.kwargs is not None
    assert alog_mock.kwargs.get("default_level") == "info"
    assert alog_mock.kwargs.get("filters") == ""
    assert alog_mock.kwargs.get("formatter") == "pretty"
    assert alog_mock.kwargs.get("thread_id") is False


def test_configure_logging_with_annotations():
    """Make sure that annotations on the resource override the logging
    config
    """
    alog_mock = AlogConfigureMock()
    annos = {
        constants.LOG_DEFAULT_LEVEL_NAME: "debug3",
        constants.LOG_FILTERS_NAME: "RECON:debug",
        constants.LOG_JSON_NAME: "false",
        constants.LOG_THREAD_ID_NAME: "true",
    }
    cr = aconfig.Config({"metadata": {"annotations": annos}}, override_env_vars=False)
    with mock.patch("alog.configure", alog_mock):
        ControlPlaneController.configure_logging(cr, "id")

    assert alog_mock.kwargs.get("default_level") == "debug3"
    assert alog_mock.kwargs.get("filters") == "RECON:debug"
    assert alog_mock.kwargs.get("formatter") == "pretty"
    assert alog_mock.kwargs.get("thread_id") is True


def test_configure_logging_json():
    """Make sure that json logging uses the custom formatter"""
    alog_mock = AlogConfigureMock()
    cr = aconfig.Config(
        {"metadata": {"annotations": {constants.LOG_JSON_NAME: "true"}}},
        override_env_vars=False,
    )
    with mock.patch("alog.configure", alog_mock):
        ControlPlaneController.configure_logging(cr, "id")
    assert isinstance(alog_mock.kwargs.get("formatter"), MeshplaneJsonFormatter)


#################
## generate_id ##
#################


def test_generate_id():
    """Make sure that reconcile ids are short and unique"""
    reconcile_id = ControlPlaneController.generate_id()
    assert len(reconcile_id) == 22
    assert reconcile_id != ControlPlaneController.generate_id()


##################
## setup_client ##
##################


def test_setup_client_given():
    """Make sure a given client is used as is"""
    client = MockClusterClient()
    assert make_controller(client).setup_client() is client


def test_setup_client_dry_run():
    """Make sure dry run creates an in-memory client once"""
    controller = make_controller()
    with library_config(dry_run=True):
        client = controller.setup_client()
    assert isinstance(client, DryRunClusterClient)
    assert controller.setup_client() is client


###############
## reconcile ##
###############


def test_reconcile():
    """Make sure a reconcile installs the rendered components"""
    client = finalized_client()
    controller = make_controller(client)
    with mock.patch("alog.configure"):
        result = controller.reconcile(get_instance(client))
    assert not result.requeue
    assert result.exception is None
    assert client.has_obj("ServiceAccount", "a", TEST_NAMESPACE)
    assert get_instance(client)["status"]["observedGeneration"] == 1


def test_reconcile_default_hooks():
    """Make sure the default hooks are built when none are given"""
    client = finalized_client()
    controller = ControlPlaneController(
        make_renderer(), client=client, component_order=["A"]
    )
    with mock.patch("alog.configure"), mock.patch(
        "meshplane.controller.default_hooks", return_value=HookRegistry()
    ) as hooks_mock:
        controller.reconcile(get_instance(client))
    hooks_mock.assert_called_once_with(client)


def test_safe_reconcile_requeues_errors():
    """Make sure an unexpected error becomes a requeue"""
    client = finalized_client()
    controller = make_controller(client)
    with mock.patch("alog.configure"), mock.patch(
        "meshplane.controller.ControlPlaneReconciler.reconcile",
        side_effect=RuntimeError("boom"),
    ):
        result = controller.safe_reconcile(get_instance(client))
    assert result.requeue
    assert isinstance(result.exception, RuntimeError)
