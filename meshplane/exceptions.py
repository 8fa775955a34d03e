"""
This module implements custom exceptions
"""

# Standard
from typing import Iterable, List, Optional

## Base Error ##################################################################


class MeshplaneError(Exception):
    """Base class for all meshplane exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error should be considered
        unrecoverable without a change to the input
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class MeshplaneFatalError(MeshplaneError):
    """A MeshplaneFatalError is one that indicates an unexpected, and likely
    unrecoverable, failure during a reconciliation.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class ConfigError(MeshplaneFatalError):
    """Exception caused during usage of user-provided configuration"""


class ManifestDecodeError(MeshplaneFatalError):
    """Exception caused when a rendered manifest document cannot be decoded
    into a kubernetes object
    """


class PatchError(MeshplaneFatalError):
    """Exception caused when a patch cannot be computed between the live and
    the desired version of an object
    """


## Expected Errors #############################################################


class MeshplaneExpectedError(MeshplaneError):
    """A MeshplaneExpectedError is one that indicates an expected failure
    condition that should cause a reconciliation to be retried and is expected
    to resolve in a subsequent reconciliation.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class ClusterError(MeshplaneExpectedError):
    """Exception caused when a cluster operation fails in an unexpected way"""


class RenderError(MeshplaneExpectedError):
    """Exception caused when the manifests for a control plane could not be
    rendered
    """


class HookError(MeshplaneExpectedError):
    """Exception caused when a pre/post processing hook fails"""


## Cluster API Errors ##########################################################


class ClusterApiError(ClusterError):
    """A failed call against the cluster API. The status code mirrors the HTTP
    status returned by the API server.
    """

    status_code: Optional[int] = None

    def __init__(self, message: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(ClusterApiError):
    """The requested object (or kind) does not exist"""

    status_code = 404


class ConflictError(ClusterApiError):
    """The object was modified since it was read (resourceVersion mismatch) or
    already exists
    """

    status_code = 409


class GoneError(ClusterApiError):
    """The object is gone from the cluster"""

    status_code = 410


class InvalidError(ClusterApiError):
    """The API server rejected the object as invalid"""

    status_code = 422


def is_not_found(err: Optional[Exception]) -> bool:
    """True if the error indicates a missing object"""
    return isinstance(err, ClusterApiError) and err.status_code == 404


def is_conflict(err: Optional[Exception]) -> bool:
    """True if the error indicates a resourceVersion conflict"""
    return isinstance(err, ClusterApiError) and err.status_code == 409


def is_gone(err: Optional[Exception]) -> bool:
    """True if the error indicates the object is gone"""
    return isinstance(err, ClusterApiError) and err.status_code == 410


def is_invalid(err: Optional[Exception]) -> bool:
    """True if the error indicates the object was rejected as invalid"""
    return isinstance(err, ClusterApiError) and err.status_code == 422


## Aggregate Errors ############################################################


class AggregateError(MeshplaneError):
    """A single error value representing one or more underlying failures that
    were collected during a reconcile pass
    """

    def __init__(self, errors: List[Exception]):
        assert errors, "Programming Error: AggregateError requires errors"
        self.errors = list(errors)
        super().__init__(
            message=self._make_message(self.errors),
            is_fatal_error=all(
                getattr(err, "is_fatal_error", False) for err in self.errors
            ),
        )

    def __iter__(self):
        return iter(self.errors)

    def __len__(self):
        return len(self.errors)

    @staticmethod
    def _make_message(errors: List[Exception]) -> str:
        if len(errors) == 1:
            return str(errors[0])
        return "[" + ", ".join(str(err) for err in errors) + "]"


def aggregate(errors: Iterable[Optional[Exception]]) -> Optional[AggregateError]:
    """Combine a collection of errors into a single AggregateError. None entries
    are ignored and nested aggregates are flattened.

    Args:
        errors:  Iterable[Optional[Exception]]
            The errors to combine

    Returns:
        aggregate_error:  Optional[AggregateError]
            None if there were no errors, the combined error otherwise
    """
    flat = []
    for err in errors:
        if err is None:
            continue
        if isinstance(err, AggregateError):
            flat.extend(err.errors)
        else:
            flat.append(err)
    if not flat:
        return None
    return AggregateError(flat)


## Assertions ##################################################################


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used when validating library config or controller construction arguments.
    """
    if not condition:
        raise ConfigError(message)


def assert_cluster(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ClusterError. This should
    be used when an operation in the cluster (such as fetching a handle for a
    resource kind) does not succeed.
    """
    if not condition:
        raise ClusterError(message)
