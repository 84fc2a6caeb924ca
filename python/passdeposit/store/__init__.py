"""
The interface to the store of the entities (submissions and deposits) that the deposit
services operate on.

The entity store is owned by an external system; the deposit services read submissions and
deposits from it and write back only status values (plus a deposit's receipt and status
reference).  Every update can be made conditional on the entity's current ``version``
(optimistic concurrency): if the entity was changed by someone else since it was read, the
update is refused with a
:py:class:`~passdeposit.exceptions.ConflictError`.
"""
from abc import ABCMeta, abstractmethod
from typing import List, Union

from ..exceptions import ObjectNotFound, ConflictError
from ..model import Submission, Deposit, SUBMISSION, DEPOSIT, ENTITY_KINDS

class EntityStore(object, metaclass=ABCMeta):
    """
    an abstract interface to the entity store.  Implementations must be safe to use from
    multiple threads.
    """

    @abstractmethod
    def get_object(self, kind: str, id: str) -> Union[Submission, Deposit]:
        """
        return a snapshot of the entity of the given kind with the given identifier

        :param str kind:  the entity kind, either "submission" or "deposit"
        :param str   id:  the entity's identifier
        :raises ObjectNotFound:  if no such entity exists
        """
        raise NotImplementedError()

    @abstractmethod
    def update_status(self, kind: str, id: str, status, receipt: str=None,
                      expected_version: int=None, message: str=None,
                      status_ref: str=None) -> Union[Submission, Deposit]:
        """
        set the status of an entity.  For a deposit, ``status`` is a
        :py:class:`~passdeposit.status.DepositStatus`; for a submission, an
        :py:class:`~passdeposit.status.AggregatedDepositStatus`.

        :param str kind:  the entity kind, either "submission" or "deposit"
        :param str   id:  the entity's identifier
        :param   status:  the new status
        :param str receipt:  the repository's receipt for a deposit (ignored for submissions)
        :param int expected_version:  if not None, update only if this is the entity's current
                          version
        :param str message:  a description of the reason for the change
        :param str status_ref:  for a deposit, the URL where the repository reports its
                          decision on the package; if not None, it replaces the current value
                          (an empty string clears it).
        :return: a snapshot of the updated entity
        :raises ObjectNotFound:  if no such entity exists
        :raises ConflictError:   if ``expected_version`` is not the entity's current version
        """
        raise NotImplementedError()

    @abstractmethod
    def select_deposits(self, submission: str=None, status=None) -> List[Deposit]:
        """
        return snapshots of the deposits that match the given criteria

        :param str submission:  if given, only return deposits of this submission
        :param       status:    if given, only return deposits with this DepositStatus
        """
        raise NotImplementedError()
