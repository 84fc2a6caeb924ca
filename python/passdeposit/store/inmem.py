"""
An implementation of the :py:class:`~passdeposit.store.EntityStore` interface that keeps its
entities in memory.  It is used for testing and for local, single-process runs.
"""
import threading, logging
from collections.abc import Mapping
from copy import copy
from typing import List, Union

from . import EntityStore
from ..exceptions import ObjectNotFound, ConflictError, ConfigurationException
from ..model import Submission, Deposit, CustodialFile, SUBMISSION, DEPOSIT, ENTITY_KINDS
from ..status import to_deposit_status, to_aggregated_status
from .. import system as _sys

def _snapshot(ent):
    out = copy(ent)
    if isinstance(ent, Submission):
        out.files = list(ent.files)
        out.deposits = list(ent.deposits)
    return out

class InMemoryEntityStore(EntityStore):
    """
    a thread-safe, dictionary-backed entity store.  Each successful status update increments
    the entity's version and is recorded in :py:attr:`history` as a
    ``(kind, id, status, version)`` tuple.
    """

    def __init__(self, submissions=(), deposits=(), log: logging.Logger=None):
        self._lock = threading.Lock()
        self._ents = { SUBMISSION: {}, DEPOSIT: {} }
        self.history = []
        if not log:
            log = logging.getLogger(_sys.system_abbrev).getChild("store")
        self.log = log
        for sub in submissions:
            self.add_submission(sub)
        for dep in deposits:
            self.add_deposit(dep)

    @classmethod
    def from_dict(cls, data: Mapping, log: logging.Logger=None):
        """
        create a store containing the entities described in a dictionary of the form::

           { "submissions": [ { "id": ..., "files": [ { "name": ..., "path": ... } ],
                                "metadata": { ... } } ],
             "deposits":    [ { "id": ..., "submission": ..., "repository": ...,
                                "status": "submitted" } ] }

        A file description can provide its content with ``path`` (a local file) or
        ``content`` (a string).
        :raises ConfigurationException:  if the data is malformed
        """
        try:
            subs = []
            for s in data.get('submissions', []):
                files = []
                for f in s.get('files', []):
                    src = f.get('path')
                    if src is None:
                        src = f.get('content', "").encode('utf-8')
                    files.append(CustodialFile(f['name'], src, f.get('content_type'), f.get('size')))
                subs.append(Submission(s['id'], files, s.get('metadata'),
                                       s.get('aggregated_status', "not-started")))
            deps = [Deposit(d['id'], d['submission'], d['repository'], d.get('status', "submitted"),
                            d.get('receipt'), status_ref=d.get('status_ref'))
                    for d in data.get('deposits', [])]
        except (KeyError, TypeError, ValueError, AttributeError) as ex:
            raise ConfigurationException("Malformed entity data: " + str(ex), cause=ex)
        return cls(subs, deps, log)

    def add_submission(self, submission: Submission):
        with self._lock:
            self._ents[SUBMISSION][submission.id] = _snapshot(submission)

    def add_deposit(self, deposit: Deposit):
        """
        add a deposit to the store; if its submission is present, the deposit is added to
        the submission's list of deposits.
        """
        with self._lock:
            self._ents[DEPOSIT][deposit.id] = _snapshot(deposit)
            sub = self._ents[SUBMISSION].get(deposit.submission)
            if sub and deposit.id not in sub.deposits:
                sub.deposits.append(deposit.id)

    def _get(self, kind, id):
        if kind not in ENTITY_KINDS:
            raise ValueError("Not a recognized entity kind: " + str(kind))
        try:
            return self._ents[kind][id]
        except KeyError:
            raise ObjectNotFound(kind, id)

    def get_object(self, kind: str, id: str) -> Union[Submission, Deposit]:
        with self._lock:
            return _snapshot(self._get(kind, id))

    def update_status(self, kind: str, id: str, status, receipt: str=None,
                      expected_version: int=None, message: str=None,
                      status_ref: str=None) -> Union[Submission, Deposit]:
        with self._lock:
            ent = self._get(kind, id)
            if expected_version is not None and expected_version != ent.version:
                raise ConflictError(kind, id, expected_version, ent.version)

            if kind == DEPOSIT:
                ent.status = to_deposit_status(status)
                if receipt is not None:
                    ent.receipt = receipt
                if status_ref is not None:
                    ent.status_ref = status_ref or None
                ent.message = message
            else:
                ent.aggregated_status = to_aggregated_status(status)
            ent.version += 1
            self.history.append((kind, id, status, ent.version))
            self.log.debug("%s %s status set to %s (version %d)", kind, id,
                           getattr(status, 'value', status), ent.version)
            return _snapshot(ent)

    def select_deposits(self, submission: str=None, status=None) -> List[Deposit]:
        if status is not None:
            status = to_deposit_status(status)
        with self._lock:
            return [_snapshot(d) for d in self._ents[DEPOSIT].values()
                    if (submission is None or d.submission == submission) and
                       (status is None or d.status == status)]
