"""
Exceptions used throughout the deposit services.

All exceptions raised intentionally by this package derive from :py:class:`DepositException`.
"""

class DepositException(Exception):
    """
    a base class for exceptions raised by the deposit services.  An instance can optionally
    carry the underlying exception that caused it (via ``cause``) and an object describing
    the subsystem it was raised from (via ``sys``).
    """

    def __init__(self, message=None, cause=None, sys=None):
        """
        create the exception

        :param str    message:  a description of the problem; if not provided, one is
                                derived from the cause.
        :param Exception cause: the underlying exception that triggered this one (optional)
        :param sys:             a SystemInfoMixin describing the subsystem that raised it
        """
        if not message:
            if cause:
                message = str(cause)
            else:
                message = "Unknown deposit services failure"
        super(DepositException, self).__init__(message)
        self.cause = cause
        self._sys = sys

    @property
    def system(self):
        """
        the subsystem that raised this exception, or None if unknown
        """
        return self._sys

class ConfigurationException(DepositException):
    """
    an exception indicating missing or illegal configuration data.  This is normally raised
    when a component is constructed (not while it is handling a request).
    """
    pass

class StateException(DepositException):
    """
    an exception indicating that an object was used while in a state that does not allow
    the requested operation.
    """
    pass

class ObjectNotFound(DepositException):
    """
    an exception indicating that a requested entity (a Submission or Deposit) does not
    exist in the entity store.
    """

    def __init__(self, kind, id, message=None, cause=None):
        if not message:
            message = "%s not found: %s" % (kind, id)
        super(ObjectNotFound, self).__init__(message, cause)
        self.kind = kind
        self.id = id

class ConflictError(DepositException):
    """
    an exception indicating that an update to an entity was refused because the entity
    changed since it was read (i.e. its version no longer matches the expected one).
    """

    def __init__(self, kind, id, expected=None, found=None, message=None):
        if not message:
            message = "%s %s was modified concurrently" % (kind, id)
            if expected is not None:
                message += " (expected version %s, found %s)" % (expected, found)
        super(ConflictError, self).__init__(message)
        self.kind = kind
        self.id = id
        self.expected = expected
        self.found = found

class RepositoryNotFound(DepositException):
    """
    an exception indicating that no configuration is registered for a repository key
    """

    def __init__(self, key, message=None):
        if not message:
            message = "No configuration registered for repository: " + str(key)
        super(RepositoryNotFound, self).__init__(message)
        self.key = key

class AttemptCancelled(DepositException):
    """
    an exception indicating that a dispatch attempt was cancelled (e.g. because the service
    is shutting down) before it could complete.
    """

    def __init__(self, message=None, id=None):
        if not message:
            message = "Dispatch attempt cancelled"
            if id:
                message += ": " + str(id)
        super(AttemptCancelled, self).__init__(message)
        self.id = id

class MalformedMessage(DepositException):
    """
    an exception indicating that an inbound message could not be interpreted
    """

    def __init__(self, message=None, payload=None, cause=None):
        if not message:
            message = "Unprocessable message payload"
        super(MalformedMessage, self).__init__(message, cause)
        self.payload = payload
