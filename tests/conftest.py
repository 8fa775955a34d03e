"""
Shared test config
"""
# Standard
from unittest import mock

# Third Party
import pytest

# Local
from meshplane.test_helpers.helpers import configure_logging

configure_logging()


@pytest.fixture(autouse=True)
def no_local_kubeconfig():
    """This fixture makes sure the tests run as if KUBECONFIG is not exported in
    the environment, even if it is
    """
    with mock.patch(
        "kubernetes.config.new_client_from_config", side_effect=RuntimeError
    ):
        yield


@pytest.fixture(autouse=True)
def no_sleep():
    """Readiness waits never really sleep in tests"""
    with mock.patch("meshplane.readiness.time.sleep"):
        yield
