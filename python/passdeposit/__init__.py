"""
Services for depositing scholarly-work content into external repositories.

This package assembles repository-specific packages from a submission's files and metadata
(:py:mod:`~passdeposit.package`), transmits them over a repository's native protocol
(:py:mod:`~passdeposit.transport`), and tracks each resulting deposit through its status
lifecycle (:py:mod:`~passdeposit.status`, :py:mod:`~passdeposit.dispatch`).
"""
from .exceptions import (DepositException, ConfigurationException, StateException,
                         ObjectNotFound, ConflictError, RepositoryNotFound, MalformedMessage,
                         AttemptCancelled)

try:
    from .version import __version__
except ImportError:
    __version__ = "(unset)"

_DEPSYSNAME = "PASS Deposit Services"
_DEPSYSABBREV = "Deposit"

class SystemInfoMixin(object):
    """
    a mixin that provides identifying information about the system (and subsystem) that
    a class is part of.
    """

    def __init__(self, sysname, sysabbrev, subsysname, subsysabbrev, version):
        self._sysname = sysname
        self._sysabbrev = sysabbrev
        self._subname = subsysname
        self._subabbrev = subsysabbrev
        self._sysver = version

    @property
    def system_name(self):
        return self._sysname

    @property
    def system_abbrev(self):
        return self._sysabbrev

    @property
    def subsystem_name(self):
        return self._subname

    @property
    def subsystem_abbrev(self):
        return self._subabbrev

    @property
    def system_version(self):
        return self._sysver

class DepositSystem(SystemInfoMixin):
    """
    A SystemInfoMixin representing the overall deposit services system.
    """
    def __init__(self, subsysname="", subsysabbrev=""):
        super(DepositSystem, self).__init__(_DEPSYSNAME, _DEPSYSABBREV, subsysname, subsysabbrev,
                                            __version__)

system = DepositSystem()
