"""
Tests for granting SecurityContextConstraints to ServiceAccounts
"""

# Third Party
import pytest

# First Party
import alog

# Local
from meshplane.exceptions import NotFoundError
from meshplane.scc import (
    SCC_API_VERSION,
    SCC_KIND,
    CapabilityGrants,
    add_users_to_scc,
    make_service_account_username,
    remove_users_from_scc,
)
from meshplane.test_helpers.helpers import (
    TEST_NAMESPACE,
    MockClusterClient,
    make_object,
    make_service_account,
)

log = alog.use_channel("TEST")

## Helpers #####################################################################


def scc_client(users=None):
    scc = make_object(
        SCC_KIND,
        "anyuid",
        namespace=None,
        api_version=SCC_API_VERSION,
        users=list(users or []),
    )
    return MockClusterClient(resources=[scc])


def scc_users(client, name="anyuid"):
    return client.get_obj(SCC_KIND, name, None, SCC_API_VERSION).get("users")


## Users #######################################################################


def test_make_service_account_username():
    """Test the user name format of a service account"""
    assert make_service_account_username("ns", "sa") == "system:serviceaccount:ns:sa"


def test_add_users():
    """Test that only new users are appended"""
    client = scc_client(["a"])
    assert add_users_to_scc(client, "anyuid", ["a", "b"]) == ["b"]
    assert scc_users(client) == ["a", "b"]


def test_add_existing_users_no_update():
    """Test that adding users already present does not write the SCC"""
    client = scc_client(["a"])
    client.reset_mocks()
    assert add_users_to_scc(client, "anyuid", ["a"]) == []
    client.update.assert_not_called()


def test_remove_users():
    """Test that only present users are removed"""
    client = scc_client(["a", "b", "c"])
    assert remove_users_from_scc(client, "anyuid", ["b", "x"]) == ["b"]
    assert scc_users(client) == ["a", "c"]


def test_remove_missing_users_no_update():
    """Test that removing absent users does not write the SCC"""
    client = scc_client(["a"])
    client.reset_mocks()
    assert remove_users_from_scc(client, "anyuid", ["x"]) == []
    client.update.assert_not_called()


@pytest.mark.parametrize("modify", [add_users_to_scc, remove_users_from_scc])
def test_missing_scc(modify):
    """Test that a missing SCC is an error"""
    with pytest.raises(NotFoundError):
        modify(MockClusterClient(), "anyuid", ["a"])


## CapabilityGrants ############################################################


def test_grant_and_revoke():
    """Test that a configured account is granted and revoked its SCC"""
    client = scc_client()
    grants = CapabilityGrants(client, {"test-sa": "anyuid"})
    username = make_service_account_username(TEST_NAMESPACE, "test-sa")

    grants.grant(make_service_account())
    assert scc_users(client) == [username]
    grants.revoke(make_service_account())
    assert scc_users(client) == []


def test_unconfigured_account():
    """Test that accounts without a grant do not touch any SCC"""
    client = MockClusterClient()
    grants = CapabilityGrants(client, {"other": "anyuid"})
    grants.grant(make_service_account())
    grants.revoke(make_service_account())
    client.get.assert_not_called()
    client.update.assert_not_called()


def test_scc_for():
    """Test the lookup of the SCC for an account"""
    grants = CapabilityGrants(MockClusterClient(), {"test-sa": "privileged"})
    assert grants.scc_for(make_service_account()) == "privileged"
    assert grants.scc_for(make_service_account("other")) is None
