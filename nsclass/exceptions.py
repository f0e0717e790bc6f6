"""
This module implements custom exceptions
"""

## Base Error ##################################################################


class NsClassError(Exception):
    """Base class for all nsclass exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error should stop the
        operator rather than be retried
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class NsClassFatalError(NsClassError):
    """An NsClassFatalError is one that indicates an unexpected, and likely
    unrecoverable, failure outside of a single reconciliation.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class ConfigError(NsClassFatalError):
    """Exception caused during usage of user-provided configuration"""


## Expected Errors #############################################################


class NsClassExpectedError(NsClassError):
    """An NsClassExpectedError is one that indicates an expected failure
    condition that should cause a reconciliation to terminate, but is expected
    to resolve in a subsequent reconciliation.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class ClusterError(NsClassExpectedError):
    """Exception caused when a cluster operation fails in an unexpected way
    (store unavailable, forbidden, rejected body, ...)
    """


class NotFoundError(ClusterError):
    """The addressed object (or its namespace) does not exist"""


class ConflictError(ClusterError):
    """A compare-and-swap write carried a stale resourceVersion"""


class AlreadyExistsError(ClusterError):
    """A create targeted a name that is already taken"""


class ReconcileCanceledError(NsClassExpectedError):
    """The cancellation token of a running reconciliation was set"""


## Assertions ##################################################################


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used when validating the library config or command line arguments.
    """
    if not condition:
        raise ConfigError(message)


def assert_cluster(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ClusterError. This should
    be used when an operation in the cluster (such as listing namespaces) must
    succeed for the reconciliation to continue.
    """
    if not condition:
        raise ClusterError(message)
