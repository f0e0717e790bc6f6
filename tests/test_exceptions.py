"""
Test the custom exceptions and assert functions
"""

# Third Party
import pytest

# Local
from nsclass import exceptions


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


@pytest.mark.parametrize(
    ["exception_type", "is_fatal"],
    [
        (exceptions.ConfigError, True),
        (exceptions.ClusterError, False),
        (exceptions.NotFoundError, False),
        (exceptions.ConflictError, False),
        (exceptions.AlreadyExistsError, False),
        (exceptions.ReconcileCanceledError, False),
    ],
)
def test_is_fatal_error(exception_type, is_fatal):
    """Make sure that only configuration errors are fatal"""
    err = exception_type("oops")
    assert isinstance(err, exceptions.NsClassError)
    assert err.is_fatal_error is is_fatal


def test_store_errors_are_cluster_errors():
    """Make sure the store specific errors can be handled as ClusterErrors"""
    for exception_type in [
        exceptions.NotFoundError,
        exceptions.ConflictError,
        exceptions.AlreadyExistsError,
    ]:
        assert issubclass(exception_type, exceptions.ClusterError)
