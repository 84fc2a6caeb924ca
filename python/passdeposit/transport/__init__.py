"""
Support for transmitting assembled deposit packages to external repositories.

Each repository is reached through a :py:class:`ProtocolBinding`, selected by name (e.g.
"sword" or "ftp") in the repository's transport configuration.  A binding either returns a
:py:class:`Receipt` or raises a :py:class:`TransportError` whose :py:attr:`~TransportError.kind`
tells the caller how to react:

``auth_failure``
    the repository refused the configured credentials; retrying will not help.
``connection_failure``
    the repository could not be reached (e.g. refused connection, DNS failure); the package
    was certainly not delivered.
``remote_rejected``
    the repository received the package and refused it.
``timeout``
    the connection to the repository could not be established in time; the package was not
    delivered.
``unknown_outcome``
    the connection failed after the package was (at least partially) sent; the repository
    may or may not have accepted it.
"""
from abc import ABCMeta, abstractmethod

from ..exceptions import DepositException, ConfigurationException
from .. import DepositSystem

system = DepositSystem("Package Transport", "xport")

AUTH_FAILURE       = "auth_failure"
CONNECTION_FAILURE = "connection_failure"
REMOTE_REJECTED    = "remote_rejected"
TIMEOUT            = "timeout"
UNKNOWN_OUTCOME    = "unknown_outcome"
_kinds = (AUTH_FAILURE, CONNECTION_FAILURE, REMOTE_REJECTED, TIMEOUT, UNKNOWN_OUTCOME)
RETRYABLE_KINDS = frozenset([CONNECTION_FAILURE, TIMEOUT, UNKNOWN_OUTCOME])

DEF_TIMEOUT = 60.0    # seconds

class TransportError(DepositException):
    """
    an exception indicating that a package could not be (or may not have been) delivered to a
    repository.
    """

    def __init__(self, kind, message=None, protocol=None, endpoint=None, response=None,
                 cause=None):
        """
        :param str     kind:  the kind of failure (one of the module's kind constants)
        :param str  message:  a description of the failure
        :param str protocol:  the name of the protocol binding that failed
        :param str endpoint:  the URL or address of the repository
        :param str response:  the body of the repository's response, if there was one
        :param Exception cause: the underlying exception
        """
        if kind not in _kinds:
            raise ValueError("TransportError: unrecognized kind: " + str(kind))
        if not message:
            message = "%s transport failure (%s)" % (protocol or "unknown", kind)
            if endpoint:
                message += " for " + endpoint
        super(TransportError, self).__init__(message, cause, sys=system)
        self.kind = kind
        self.protocol = protocol
        self.endpoint = endpoint
        self.response = response

    @property
    def retryable(self):
        """
        True if the failure is transient and the transmission may succeed if attempted again
        """
        return self.kind in RETRYABLE_KINDS

class Receipt(object):
    """
    the acknowledgement of a successful delivery
    """

    def __init__(self, location, protocol, status_code=None, details=None, status_ref=None):
        """
        :param str    location:  the URL or path identifying the deposited package in the
                                 repository
        :param str    protocol:  the name of the protocol the package was delivered with
        :param int status_code:  the protocol-level status code of the final response
        :param details:          other protocol-specific information about the delivery
        :param str  status_ref:  the URL where the repository reports the deposit's progress
                                 through its own workflow, if it provided one
        """
        self.location = location
        self.protocol = protocol
        self.status_code = status_code
        self.details = details
        self.status_ref = status_ref

    def __repr__(self):
        return "Receipt(%r, %s)" % (self.location, self.protocol)

class ProtocolBinding(object, metaclass=ABCMeta):
    """
    an interface for transmitting a package to a repository using a particular protocol.
    Bindings hold no per-transmission state, so one instance can be shared across threads;
    the transport configuration is passed in with each call.
    """

    protocol = None

    @abstractmethod
    def submit(self, package, transport_config, timeout: float=None) -> Receipt:
        """
        transmit the given package to the repository described by the transport configuration.
        The package is consumed by this call.

        :param PackageStream package:   the package to send
        :param TransportConfig transport_config:  the repository's endpoint, credentials, and
                                        protocol options
        :param float timeout:  the maximum time in seconds to wait on any single network
                               operation (default: the configuration's timeout)
        :raises TransportError:  if the package could not be delivered or its delivery could
                                 not be confirmed
        """
        raise NotImplementedError()

    @abstractmethod
    def verify(self, package_name: str, transport_config, timeout: float=None):
        """
        determine whether a package with the given name was previously delivered to the
        repository.  This is used to resolve an ``unknown_outcome`` failure.

        :return: True if the package is known to have been delivered, False if it is known not
                 to have been, or None if this cannot be determined.
        """
        raise NotImplementedError()

    def check_config(self, transport_config):
        """
        confirm that the given transport configuration can be used with this binding.  This
        is called when a repository configuration is loaded, so that a misconfigured
        repository is detected at start-up rather than during a deposit attempt.

        :raises ConfigurationException:  if the configuration cannot be used with this binding
        """
        pass

_bindings = {}

def register_binding(selector: str, binding: ProtocolBinding):
    """
    make a binding available under the given selector name
    """
    _bindings[selector.lower()] = binding

def binding_for(selector: str) -> ProtocolBinding:
    """
    return the protocol binding registered under the given selector name
    :raises ConfigurationException:  if no binding is registered with that name
    """
    if not selector:
        raise ConfigurationException("No transport protocol binding specified")
    try:
        return _bindings[selector.lower()]
    except KeyError:
        raise ConfigurationException("Unsupported transport protocol binding: " + selector)

def binding_names():
    """
    return the selector names of the available bindings
    """
    return frozenset(_bindings.keys())

from .http import SwordHttpBinding
from .ftp import FtpBinding

register_binding("sword", SwordHttpBinding())
register_binding("swordv2", SwordHttpBinding())
register_binding("http", SwordHttpBinding())
register_binding("ftp", FtpBinding())
