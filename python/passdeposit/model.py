"""
Representations of the entities that the deposit services operate on: submissions (with their
custodial files) and deposits.  These are snapshots of records owned by an external entity
store (see :py:mod:`passdeposit.store`); the deposit services read submissions and write only
deposit (and aggregated submission) status.
"""
import os, io
from collections.abc import Mapping
from copy import deepcopy
from typing import List, Union, Callable

from .status import (DepositStatus, AggregatedDepositStatus, to_deposit_status,
                     to_aggregated_status)

SUBMISSION = "submission"
DEPOSIT    = "deposit"
ENTITY_KINDS = (SUBMISSION, DEPOSIT)

DEF_CONTENT_TYPE = "application/octet-stream"

class CustodialFile(object):
    """
    a description of one file to be included in a deposit package.  The file's content can be
    provided in one of three ways:

    * as a path to a file on local disk,
    * as ``bytes``, or
    * as a callable (taking no arguments) that returns an open binary stream.
    """

    def __init__(self, name: str, source: Union[str, bytes, Callable], content_type: str=None,
                 size: int=None):
        """
        :param str          name:  the relative path the file should have within the package
        :param source:             the source of the file's bytes
        :param str  content_type:  the file's MIME type (default: application/octet-stream)
        :param int          size:  the number of bytes in the file, if known.  This is
                                   determined automatically for the path and bytes forms.
        """
        if not name:
            raise ValueError("CustodialFile: name must be non-empty")
        self.name = name
        self.source = source
        self.content_type = content_type or DEF_CONTENT_TYPE
        self._size = size

    @property
    def size(self):
        """
        the size of the file in bytes, or None if it cannot be determined before reading it
        """
        if self._size is not None:
            return self._size
        if isinstance(self.source, (bytes, bytearray)):
            return len(self.source)
        if isinstance(self.source, str):
            return os.stat(self.source).st_size
        return None

    def open(self):
        """
        return a new readable binary stream for the file's contents.  The caller is
        responsible for closing it.
        :raises OSError:  if the source content cannot be opened
        """
        if isinstance(self.source, (bytes, bytearray)):
            return io.BytesIO(self.source)
        if isinstance(self.source, str):
            return open(self.source, 'rb')
        if callable(self.source):
            return self.source()
        raise TypeError("CustodialFile %s: unsupported source type: %s" %
                        (self.name, type(self.source).__name__))

    def __repr__(self):
        return "CustodialFile(%r, content_type=%r)" % (self.name, self.content_type)

class Submission(object):
    """
    a read-only snapshot of a submission: a set of custodial files plus metadata to be
    deposited into one or more repositories.
    """

    def __init__(self, id: str, files: List[CustodialFile]=None, metadata: Mapping=None,
                 aggregated_status=AggregatedDepositStatus.NOT_STARTED, deposits: List[str]=None,
                 version: int=0):
        if not id:
            raise ValueError("Submission: id must be non-empty")
        self.id = id
        self.files = list(files or [])
        self.metadata = deepcopy(metadata) if metadata else {}
        self.aggregated_status = to_aggregated_status(aggregated_status)
        self.deposits = list(deposits or [])
        self.version = version

    @property
    def status(self):
        """
        the submission's aggregated deposit status
        """
        return self.aggregated_status

    def __repr__(self):
        return "Submission(%r, files=%d, status=%s)" % (self.id, len(self.files),
                                                        self.aggregated_status.value)

class Deposit(object):
    """
    a snapshot of a deposit record: one attempt to transmit a submission's package to one
    repository.
    """

    def __init__(self, id: str, submission: str, repository: str,
                 status=DepositStatus.SUBMITTED, receipt: str=None, version: int=0,
                 message: str=None, status_ref: str=None):
        """
        :param str        id:  the deposit's identifier
        :param str submission: the identifier of the submission being deposited
        :param str repository: the key of the repository to deposit to
        :param        status:  the current DepositStatus
        :param str   receipt:  the location/identifier returned by the repository on success
        :param int   version:  the record version, used for optimistic concurrency
        :param str   message:  a description of the last status change
        :param str status_ref: the URL where the repository reports its decision on the
                               delivered package, if it provides one
        """
        if not id:
            raise ValueError("Deposit: id must be non-empty")
        self.id = id
        self.submission = submission
        self.repository = repository
        self.status = to_deposit_status(status)
        self.receipt = receipt
        self.version = version
        self.message = message
        self.status_ref = status_ref

    @property
    def awaiting_decision(self):
        """
        True if the deposit's package was delivered and the repository's decision on it
        can be (and still needs to be) looked up via :py:attr:`status_ref`
        """
        return self.status == DepositStatus.SUBMITTED and bool(self.status_ref)

    def __repr__(self):
        return "Deposit(%r, repository=%r, status=%s)" % (self.id, self.repository, self.status.value)
