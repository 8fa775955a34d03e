"""
Grant and revoke of cluster security capabilities for ServiceAccounts. On
OpenShift a capability is a SecurityContextConstraints object and an account is
granted it by adding the account's user name to the object's users list.
"""

# Standard
from typing import Dict, Iterable, List, Optional

# First Party
import alog

# Local
from .cluster import ClusterClientBase
from .exceptions import NotFoundError

log = alog.use_channel("SCC")

SCC_API_VERSION = "security.openshift.io/v1"
SCC_KIND = "SecurityContextConstraints"


def make_service_account_username(namespace: str, name: str) -> str:
    """The user name the API server uses for a ServiceAccount"""
    return f"system:serviceaccount:{namespace}:{name}"


def add_users_to_scc(
    client: ClusterClientBase,
    scc_name: str,
    users: Iterable[str],
) -> List[str]:
    """Add users to the users list of a SecurityContextConstraints

    Args:
        client:  ClusterClientBase
            The client to read and update the SCC with
        scc_name:  str
            The name of the (cluster scoped) SCC
        users:  Iterable[str]
            The user names to add

    Returns:
        added:  List[str]
            The users that were not already present
    """
    scc = _get_scc(client, scc_name)
    existing = list(scc.get("users") or [])
    added = [user for user in users if user not in existing]
    if added:
        for user in added:
            log.info("Adding [%s] to SecurityContextConstraints [%s]", user, scc_name)
        scc["users"] = existing + added
        client.update(scc)
    return added


def remove_users_from_scc(
    client: ClusterClientBase,
    scc_name: str,
    users: Iterable[str],
) -> List[str]:
    """Remove users from the users list of a SecurityContextConstraints

    Returns:
        removed:  List[str]
            The users that were present and removed
    """
    scc = _get_scc(client, scc_name)
    existing = list(scc.get("users") or [])
    removed = [user for user in users if user in existing]
    if removed:
        for user in removed:
            log.info(
                "Removing [%s] from SecurityContextConstraints [%s]", user, scc_name
            )
        scc["users"] = [user for user in existing if user not in removed]
        client.update(scc)
    return removed


class CapabilityGrants:
    """Grants the configured SCC to a ServiceAccount when it is created and
    revokes it when the account is deleted
    """

    def __init__(self, client: ClusterClientBase, grants: Dict[str, str]):
        """
        Args:
            client:  ClusterClientBase
                The client to modify SCCs with
            grants:  Dict[str, str]
                Mapping from ServiceAccount name to SCC name
        """
        self._client = client
        self._grants = dict(grants or {})

    def scc_for(self, service_account: dict) -> Optional[str]:
        return self._grants.get(service_account.get("metadata", {}).get("name"))

    def grant(self, service_account: dict, _instance: Optional[dict] = None):
        """Post-create hook for ServiceAccounts"""
        scc_name = self.scc_for(service_account)
        if scc_name:
            add_users_to_scc(self._client, scc_name, [self._username(service_account)])

    def revoke(self, service_account: dict, _instance: Optional[dict] = None):
        """Post-delete hook for ServiceAccounts"""
        scc_name = self.scc_for(service_account)
        if scc_name:
            remove_users_from_scc(
                self._client, scc_name, [self._username(service_account)]
            )

    @staticmethod
    def _username(service_account: dict) -> str:
        metadata = service_account.get("metadata", {})
        return make_service_account_username(
            metadata.get("namespace", ""), metadata.get("name", "")
        )


## Implementation ##############################################################


def _get_scc(client: ClusterClientBase, scc_name: str) -> dict:
    scc = client.get(api_version=SCC_API_VERSION, kind=SCC_KIND, name=scc_name)
    if scc is None:
        raise NotFoundError(f"{SCC_KIND} {scc_name} not found")
    return scc
