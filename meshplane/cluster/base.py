"""
This defines the base class for all cluster clients. A cluster client performs
the basic verbs against arbitrary apiVersion/kind pairs using plain dicts.

Failures are raised as ClusterApiError subclasses (NotFoundError, ConflictError,
GoneError, InvalidError) so callers can branch on the outcome without knowing
the underlying client library.
"""

# Standard
from typing import List, Optional
import abc

# Local
from ..status import ResourceKey


class ClusterClientBase(abc.ABC):
    """
    Base class for clients that carry out the cluster operations of a
    reconcile
    """

    @abc.abstractmethod
    def get(
        self,
        api_version: str,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
    ) -> Optional[dict]:
        """Fetch the current state of a single object

        Args:
            api_version:  str
                The apiVersion of the object
            kind:  str
                The kind of the object
            name:  str
                The name of the object
            namespace:  Optional[str]
                The namespace of the object or None for cluster scoped kinds

        Returns:
            current_state:  Optional[dict]
                The dict representation of the object or None if not present
        """

    @abc.abstractmethod
    def list(
        self,
        api_version: str,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> List[dict]:
        """List the objects of a kind, optionally filtered by labels"""

    @abc.abstractmethod
    def create(self, obj: dict) -> dict:
        """Create an object. Raises ConflictError if it already exists.

        Returns:
            created:  dict
                The object as stored by the cluster
        """

    @abc.abstractmethod
    def update(self, obj: dict) -> dict:
        """Replace an existing object. If metadata.resourceVersion is set and
        does not match the stored object, ConflictError is raised.

        Returns:
            updated:  dict
                The object as stored by the cluster
        """

    @abc.abstractmethod
    def patch(
        self,
        api_version: str,
        kind: str,
        name: str,
        patch: dict,
        namespace: Optional[str] = None,
    ) -> dict:
        """Apply a JSON merge patch (RFC 7386) to an existing object

        Returns:
            patched:  dict
                The object as stored by the cluster
        """

    @abc.abstractmethod
    def delete(
        self,
        api_version: str,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        propagation_policy: Optional[str] = None,
    ):
        """Delete an object. Raises NotFoundError if it does not exist."""

    @abc.abstractmethod
    def update_status(self, obj: dict) -> dict:
        """Replace the status subresource of an object with obj["status"]

        Returns:
            updated:  dict
                The object as stored by the cluster
        """

    ## Shared Helpers ##########################################################

    def get_by_key(self, key: ResourceKey) -> Optional[dict]:
        """Fetch the object identified by a ResourceKey"""
        return self.get(
            api_version=key.api_version,
            kind=key.kind,
            name=key.name,
            namespace=key.namespace or None,
        )

    def delete_by_key(
        self,
        key: ResourceKey,
        propagation_policy: Optional[str] = None,
    ):
        """Delete the object identified by a ResourceKey"""
        self.delete(
            api_version=key.api_version,
            kind=key.kind,
            name=key.name,
            namespace=key.namespace or None,
            propagation_policy=propagation_policy,
        )

    def get_current(self, obj: dict) -> Optional[dict]:
        """Fetch the live version of the given object"""
        return self.get_by_key(ResourceKey.from_object(obj))
