"""
Batch operations for recovering from failures and catching up with repositories: requeueing
failed deposits, looking up the decisions on delivered deposits, and bringing the aggregated
statuses of submissions up to date.
"""
import json, logging
from typing import Callable, Iterable, List

from .. import system as _sys
from ..exceptions import DepositException, ObjectNotFound, ConflictError
from ..model import SUBMISSION, DEPOSIT
from ..status import DepositStatus, aggregate_status

def _deflog():
    return logging.getLogger(_sys.system_abbrev).getChild("runner")

def retry_failed_deposits(store, publish: Callable, ids: Iterable[str]=None,
                          log: logging.Logger=None) -> List[str]:
    """
    reset failed deposits so that they will be attempted again, and publish a deposit message
    for each one.

    :param EntityStore store:  the store holding the deposits
    :param publish:        a function that accepts a message payload (e.g.
                           :py:meth:`LocalMessageQueue.publish
                           <passdeposit.dispatch.messages.LocalMessageQueue.publish>`)
    :param list ids:       the identifiers of the deposits to retry; if not given, every
                           deposit with the FAILED status is retried.  Deposits not in the FAILED
                           status are skipped.
    :param Logger log:     the logger to send messages to
    :return:  the identifiers of the deposits that were requeued
    """
    if not log:
        log = _deflog()
    if ids is None:
        deps = store.select_deposits(status=DepositStatus.FAILED)
    else:
        deps = []
        for id in ids:
            try:
                deps.append(store.get_object(DEPOSIT, id))
            except ObjectNotFound:
                log.warning("Deposit to retry not found: %s", id)

    out = []
    for dep in deps:
        if dep.status != DepositStatus.FAILED:
            log.info("Deposit %s is %s, not failed; not retrying", dep.id, dep.status.value)
            continue
        try:
            store.update_status(DEPOSIT, dep.id, DepositStatus.SUBMITTED,
                                expected_version=dep.version, message="resubmitted for retry")
        except ConflictError as ex:
            log.warning("Deposit %s changed while being reset; not retrying: %s", dep.id, str(ex))
            continue
        publish(json.dumps({"type": DEPOSIT, "id": dep.id}))
        log.info("Requeued failed deposit %s", dep.id)
        out.append(dep.id)

    update_aggregated_statuses(store, set(d.submission for d in deps if d.id in out), log)
    return out

def update_aggregated_statuses(store, submission_ids: Iterable[str], log: logging.Logger=None):
    """
    recompute and record the aggregated status of each of the given submissions.  A failure to
    update one submission is logged and does not prevent the others from being updated.

    :return:  a dictionary mapping each successfully updated submission id to its aggregated
              status
    """
    if not log:
        log = _deflog()
    out = {}
    for id in submission_ids:
        try:
            sub = store.get_object(SUBMISSION, id)
            agg = aggregate_status(d.status for d in store.select_deposits(submission=id))
            if agg != sub.aggregated_status:
                store.update_status(SUBMISSION, id, agg, expected_version=sub.version)
                log.info("Submission %s aggregated status updated to %s", id, agg.value)
            out[id] = agg
        except (ObjectNotFound, ConflictError) as ex:
            log.warning("Unable to update aggregated status of submission %s: %s", id, str(ex))
        except Exception as ex:
            log.exception("Unexpected failure updating submission %s: %s", id, str(ex))
    return out

def resolve_deposit_statuses(store, registry, ids: Iterable[str]=None,
                             log: logging.Logger=None) -> dict:
    """
    look up the repository's decision on each delivered deposit that is awaiting one (i.e. that
    is SUBMITTED with a ``status_ref``) and record it.

    :param EntityStore store:  the store holding the deposits
    :param RepositoryConfigRegistry registry:  the repository configurations, which provide
                           the status resolvers
    :param list ids:       the identifiers of the deposits to check; if not given, every
                           deposit awaiting a decision is checked
    :param Logger log:     the logger to send messages to
    :return:  a dictionary mapping the identifier of each deposit that was decided to its new
              status
    """
    if not log:
        log = _deflog()
    if ids is None:
        deps = store.select_deposits(status=DepositStatus.SUBMITTED)
    else:
        deps = []
        for id in ids:
            try:
                deps.append(store.get_object(DEPOSIT, id))
            except ObjectNotFound:
                log.warning("Deposit to check not found: %s", id)

    out = {}
    for dep in deps:
        if not dep.awaiting_decision:
            if ids is not None:
                log.info("Deposit %s is not awaiting a decision; skipping", dep.id)
            continue
        cfg = registry.find_config(dep.repository)
        if cfg is None or not cfg.status_resolver:
            log.warning("Deposit %s: no way to look up decisions from %s", dep.id, dep.repository)
            continue

        try:
            status = cfg.status_resolver.resolve(dep.status_ref, cfg.transport)
        except DepositException as ex:
            log.warning("Unable to look up the status of deposit %s: %s", dep.id, str(ex))
            continue
        if status is None:
            log.debug("Deposit %s still awaits a decision from %s", dep.id, cfg.key)
            continue

        try:
            store.update_status(DEPOSIT, dep.id, status, expected_version=dep.version,
                                message="%s by %s" % (status.value, cfg.key))
        except ConflictError as ex:
            log.warning("Deposit %s changed while being updated: %s", dep.id, str(ex))
            continue
        log.info("Deposit %s %s by %s", dep.id, status.value, cfg.key)
        out[dep.id] = status

    update_aggregated_statuses(store, set(d.submission for d in deps if d.id in out), log)
    return out
