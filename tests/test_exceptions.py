"""
Test the custom exceptions, the error aggregation and the assert functions
"""

# Third Party
import pytest

# Local
from meshplane import exceptions


def test_assert_config_pass():
    """Make sure that no exception is throw by assert_config when it
    passes
    """
    exceptions.assert_config(True)


def test_assert_config_fail():
    """Make sure the right exception is thrown by assert_config when it
    fails
    """
    exception_msg = "error mesage"
    with pytest.raises(exceptions.ConfigError, match=exception_msg):
        exceptions.assert_config(False, exception_msg)


def test_assert_cluster_pass():
    """Make sure that no exception is throw by assert_cluster when it
    passes
    """
    exceptions.assert_cluster(True)


def test_assert_cluster_fail():
    """Make sure the right exception is thrown by assert_cluster when it
    fails
    """
    exception_msg = "error mesage"
    with pytest.raises(exceptions.ClusterError, match=exception_msg):
        exceptions.assert_cluster(False, exception_msg)


def test_exception_derived_from_base():
    """Make sure every exception derives from the base class"""
    for exc_type in [
        exceptions.ConfigError,
        exceptions.ManifestDecodeError,
        exceptions.PatchError,
        exceptions.ClusterError,
        exceptions.RenderError,
        exceptions.HookError,
        exceptions.NotFoundError,
        exceptions.ConflictError,
        exceptions.GoneError,
        exceptions.InvalidError,
    ]:
        assert isinstance(exc_type(), exceptions.MeshplaneError)


def test_fatal_flags():
    """Make sure fatal and expected errors carry the right flag"""
    assert exceptions.ConfigError().is_fatal_error
    assert exceptions.ManifestDecodeError().is_fatal_error
    assert not exceptions.ConflictError().is_fatal_error
    assert not exceptions.HookError().is_fatal_error


def test_status_code_predicates():
    """Make sure the predicates match on status code, not just type"""
    assert exceptions.is_not_found(exceptions.NotFoundError())
    assert exceptions.is_not_found(exceptions.ClusterApiError(status_code=404))
    assert not exceptions.is_not_found(exceptions.ConflictError())
    assert not exceptions.is_not_found(ValueError())
    assert not exceptions.is_not_found(None)
    assert exceptions.is_conflict(exceptions.ConflictError())
    assert exceptions.is_gone(exceptions.GoneError())
    assert exceptions.is_invalid(exceptions.InvalidError())
    assert exceptions.is_invalid(exceptions.ClusterApiError(status_code=422))


def test_cluster_api_error_status_code():
    """Make sure an explicit status code overrides the class default"""
    assert exceptions.ClusterApiError().status_code is None
    assert exceptions.ClusterApiError(status_code=500).status_code == 500
    assert exceptions.NotFoundError().status_code == 404


###############
## aggregate ##
###############


def test_aggregate_no_errors():
    """Make sure that no errors (or only None) aggregate to None"""
    assert exceptions.aggregate([]) is None
    assert exceptions.aggregate([None, None]) is None


def test_aggregate_single_error():
    """Make sure a single error keeps its message"""
    err = exceptions.aggregate([None, ValueError("oops")])
    assert isinstance(err, exceptions.AggregateError)
    assert len(err) == 1
    assert str(err) == "oops"


def test_aggregate_multiple_errors():
    """Make sure multiple errors are all kept in order"""
    first = ValueError("one")
    second = exceptions.ConflictError("two")
    err = exceptions.aggregate([first, second])
    assert list(err) == [first, second]
    assert str(err) == "[one, two]"


def test_aggregate_flattens():
    """Make sure nested aggregates are flattened"""
    first = ValueError("one")
    second = ValueError("two")
    third = ValueError("three")
    inner = exceptions.aggregate([first, second])
    err = exceptions.aggregate([inner, third])
    assert err.errors == [first, second, third]


def test_aggregate_fatal():
    """Make sure an aggregate is only fatal if every error is fatal"""
    assert exceptions.aggregate(
        [exceptions.ConfigError("a"), exceptions.PatchError("b")]
    ).is_fatal_error
    assert not exceptions.aggregate(
        [exceptions.ConfigError("a"), exceptions.ConflictError("b")]
    ).is_fatal_error
    assert not exceptions.aggregate([ValueError("a")]).is_fatal_error


def test_aggregate_error_requires_errors():
    """Make sure an empty AggregateError is a programming error"""
    with pytest.raises(AssertionError):
        exceptions.AggregateError([])
