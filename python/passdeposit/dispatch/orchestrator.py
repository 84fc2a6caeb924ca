"""
The dispatcher that turns an inbound message into a deposit attempt and records its outcome.

A :py:class:`DispatchOrchestrator` handles one :py:class:`~passdeposit.dispatch.messages.Delivery`
at a time (per thread).  For a deposit message, it:

1. loads the deposit and skips it if its status is already terminal;
2. marks the deposit as in flight (deferring the message if another worker holds the mark);
3. records the ASSEMBLING status, assembles the package for the deposit's repository, records
   that transmission is starting, and transmits the package with the repository's protocol
   binding;
4. records the outcome (ACCEPTED, RETRYING, UNVERIFIED, or FAILED) and recomputes the
   submission's aggregated status; and
5. acknowledges the message, or rejects it if it must be redelivered.

A deposit found with an unverified delivery, or one whose transmission was interrupted after it
started, is never sent blindly again: its delivery is first checked with the binding.

If the repository is configured with a status resolver and its receipt links to a statement,
the delivered deposit is left SUBMITTED (with its ``status_ref`` set) until the repository
decides to accept or reject it; later messages for the deposit look up that decision instead of
depositing again.

A submission message processes each of the submission's non-terminal deposits in turn.

The outcome of each call to :py:meth:`~DispatchOrchestrator.handle` is one of the ``OUTCOME_*``
constants defined here.
"""
import threading, logging
from collections.abc import Mapping
from typing import Callable

from .. import system as _sys
from ..exceptions import (DepositException, ConfigurationException, ObjectNotFound,
                          ConflictError, RepositoryNotFound, MalformedMessage, AttemptCancelled)
from ..model import SUBMISSION, DEPOSIT, Deposit
from ..status import (DepositStatus, is_terminal_deposit_status,
                      is_terminal_aggregated_status)
from ..package import PackagingError, PackageAssembler
from ..package.assembler import package_name_for
from ..transport import TransportError, Receipt, UNKNOWN_OUTCOME
from ..utils.logging import logged
from .messages import parse_message, Delivery
from .inflight import InFlightMarkers
from .runner import update_aggregated_statuses

OUTCOME_ACCEPTED   = "accepted"     # the deposit was accepted (or verified as delivered)
OUTCOME_FAILED     = "failed"       # the deposit failed terminally
OUTCOME_RETRY      = "retry"        # a transient failure occurred; redelivery requested
OUTCOME_UNVERIFIED = "unverified"   # delivery could not be confirmed; redelivery requested
OUTCOME_SKIPPED    = "skipped"      # the entity was already in a terminal state
OUTCOME_DEFERRED   = "deferred"     # the entity is being processed by another worker
OUTCOME_CONFLICT   = "conflict"     # the entity changed underneath us; processing abandoned
OUTCOME_REDELIVER  = "redeliver"    # the outcome could not be recorded; redelivery requested
OUTCOME_CANCELLED  = "cancelled"    # the attempt was cancelled by a shutdown
OUTCOME_MALFORMED  = "malformed"    # the message could not be interpreted
OUTCOME_NOT_FOUND  = "not_found"    # the named entity does not exist
OUTCOME_COMPLETED  = "completed"    # all of a submission's deposits reached a decision
OUTCOME_INCOMPLETE = "incomplete"   # some of a submission's deposits need redelivery
OUTCOME_REJECTED   = "rejected"     # the repository decided against the deposit
OUTCOME_AWAITING   = "awaiting"     # delivered; the repository has not yet decided

ACK_OUTCOMES = frozenset([OUTCOME_ACCEPTED, OUTCOME_FAILED, OUTCOME_SKIPPED, OUTCOME_CONFLICT,
                          OUTCOME_MALFORMED, OUTCOME_NOT_FOUND, OUTCOME_COMPLETED,
                          OUTCOME_REJECTED, OUTCOME_AWAITING])

# status messages recorded with the ASSEMBLING status; the second marks that the package may
# have reached the repository
ASSEMBLING_MESSAGE   = "assembling package for "
TRANSMITTING_MESSAGE = "transmitting package to "
INTERRUPTED_MESSAGE  = "transmission interrupted before completion: "

DEF_MAX_ATTEMPTS = 3
DEF_TRANSPORT_TIMEOUT = 60.0
DEF_REDELIVERY_DELAY = 0

class _StoreWriteFailed(Exception):
    # a status write failed for a reason other than a version conflict
    def __init__(self, cause):
        super(_StoreWriteFailed, self).__init__(str(cause))
        self.cause = cause

def in_transmission(dep: Deposit) -> bool:
    """
    return True if the given deposit's last recorded attempt was interrupted after its package
    began to be sent to the repository
    """
    return dep.status == DepositStatus.ASSEMBLING and \
           (dep.message or "").startswith(TRANSMITTING_MESSAGE)

class AttemptCounter(object):
    """
    a thread-safe count of the transmission attempts made for each deposit
    """

    def __init__(self):
        self._counts = {}
        self._lock = threading.Lock()

    def increment(self, id: str) -> int:
        """
        add one to the attempt count for the given deposit and return the new count
        """
        with self._lock:
            self._counts[id] = self._counts.get(id, 0) + 1
            return self._counts[id]

    def get(self, id: str) -> int:
        with self._lock:
            return self._counts.get(id, 0)

    def clear(self, id: str):
        with self._lock:
            self._counts.pop(id, None)

    def __len__(self):
        with self._lock:
            return len(self._counts)

class DispatchOrchestrator(object):
    """
    the handler of inbound submission and deposit messages.  A single instance can be shared by
    multiple worker threads.

    This class looks for the following configuration parameters:

    ``max_attempts``
        (*int*) the number of transient failures a deposit may suffer before it is marked
        FAILED (default: 3)
    ``transport_timeout``
        (*float*) the time limit, in seconds, on network operations for repositories that do
        not configure their own (default: 60)
    ``redelivery_delay``
        (*float*) the number of seconds to wait before a rejected message is redelivered
        (default: 0)
    ``assembler``
        (*dict*) the configuration for the default
        :py:class:`~passdeposit.package.PackageAssembler`
    """

    def __init__(self, store, registry, config: Mapping=None, assembler: PackageAssembler=None,
                 inflight: InFlightMarkers=None, alert: Callable=None, log: logging.Logger=None):
        """
        :param EntityStore store:   the store to read entities from and write statuses to
        :param RepositoryConfigRegistry registry:  the repository configurations
        :param dict         config: the configuration parameters (see above)
        :param PackageAssembler assembler:  the assembler to use to create packages
        :param InFlightMarkers inflight:  the markers of entities currently being processed;
                                    pass a shared instance to coordinate with other dispatchers
        :param function      alert: a function, ``alert(deposit, repository_key, error)``, that
                                    is called when a deposit fails terminally
        :param Logger          log: the logger to send messages to
        """
        if config is None:
            config = {}
        self.cfg = config
        if not log:
            log = logging.getLogger(_sys.system_abbrev).getChild("dispatch")
        self.log = log

        self.max_attempts = self._cfg_number('max_attempts', DEF_MAX_ATTEMPTS, int, 1)
        self.transport_timeout = self._cfg_number('transport_timeout', DEF_TRANSPORT_TIMEOUT,
                                                  float, 0, False)
        self.redelivery_delay = self._cfg_number('redelivery_delay', DEF_REDELIVERY_DELAY, float, 0)

        self.store = store
        self.registry = registry
        if not assembler:
            assembler = PackageAssembler(self.cfg.get('assembler', {}), self.log.getChild("pkg"))
        self.assembler = assembler
        if inflight is None:
            inflight = InFlightMarkers()
        self.inflight = inflight
        if not alert:
            alert = self._log_alert
        self.alert = alert

        self.attempts = AttemptCounter()
        self.shutdown = threading.Event()

    def _cfg_number(self, name, defval, cast, minval, inclusive=True):
        val = self.cfg.get(name, defval)
        try:
            val = cast(val)
        except (TypeError, ValueError):
            raise ConfigurationException("%s: not a number: %s" % (name, val))
        if val < minval or (not inclusive and val == minval):
            raise ConfigurationException("%s: value out of range: %s" % (name, val))
        return val

    def _log_alert(self, deposit: Deposit, repository_key: str, error: Exception):
        self.log.error("Deposit %s to %s failed: %s", deposit.id, repository_key, str(error))

    def cancelled(self) -> bool:
        """
        return True if in-progress attempts should be abandoned
        """
        return self.shutdown.is_set()

    def handle(self, delivery: Delivery) -> str:
        """
        process a delivered message and settle it (i.e. acknowledge it or reject it for
        redelivery).  This method does not raise exceptions for failures of the attempt.

        :return:  the outcome of the processing, one of the module's ``OUTCOME_*`` values
        """
        try:
            msg = parse_message(delivery.payload)
        except MalformedMessage as ex:
            self.log.error("Discarding unprocessable message: %s", str(ex))
            delivery.ack()
            return OUTCOME_MALFORMED

        try:
            if msg.kind == DEPOSIT:
                outcome = self.process_deposit(msg.id)
            else:
                outcome = self.process_submission(msg.id)
        except Exception as ex:
            self.log.exception("Unexpected failure while processing %s %s: %s",
                               msg.kind, msg.id, str(ex))
            outcome = OUTCOME_REDELIVER

        self._settle(delivery, outcome, msg)
        return outcome

    def _settle(self, delivery, outcome, msg):
        if outcome in ACK_OUTCOMES:
            self.log.debug("Acknowledging %s %s message (%s)", msg.kind, msg.id, outcome)
            delivery.ack()
        elif outcome == OUTCOME_CANCELLED:
            delivery.nack()
        else:
            self.log.debug("Requesting redelivery of %s %s message (%s)", msg.kind, msg.id, outcome)
            delivery.nack(self.redelivery_delay)

    def process_submission(self, id: str) -> str:
        """
        attempt every non-terminal deposit of the given submission
        :return:  the outcome, one of the module's ``OUTCOME_*`` values
        """
        try:
            sub = self.store.get_object(SUBMISSION, id)
        except ObjectNotFound as ex:
            self.log.warning("Submission not found: %s", id)
            return OUTCOME_NOT_FOUND

        if is_terminal_aggregated_status(sub.aggregated_status):
            self.log.info("Submission %s is already %s; skipping", id, sub.aggregated_status.value)
            return OUTCOME_SKIPPED

        with self.inflight.marked(SUBMISSION, id) as acquired:
            if not acquired:
                self.log.info("Submission %s is already being processed; deferring", id)
                return OUTCOME_DEFERRED

            outcomes = {}
            for dep in self.store.select_deposits(submission=id):
                if is_terminal_deposit_status(dep.status):
                    continue
                if self.cancelled():
                    outcomes[dep.id] = OUTCOME_CANCELLED
                    break
                outcomes[dep.id] = self.process_deposit(dep.id)

            self.update_aggregated_status(id)

        if OUTCOME_CANCELLED in outcomes.values():
            return OUTCOME_CANCELLED
        pending = [d for d, o in outcomes.items() if o not in ACK_OUTCOMES]
        if pending:
            self.log.info("Submission %s: deposits awaiting redelivery: %s", id, ", ".join(pending))
            return OUTCOME_INCOMPLETE
        return OUTCOME_COMPLETED

    def process_deposit(self, id: str) -> str:
        """
        make an attempt to complete the given deposit
        :return:  the outcome, one of the module's ``OUTCOME_*`` values
        """
        try:
            dep = self.store.get_object(DEPOSIT, id)
        except ObjectNotFound:
            self.log.warning("Deposit not found: %s", id)
            return OUTCOME_NOT_FOUND

        if is_terminal_deposit_status(dep.status):
            self.log.info("Deposit %s is already %s; skipping", id, dep.status.value)
            return OUTCOME_SKIPPED

        with self.inflight.marked(DEPOSIT, id) as acquired:
            if not acquired:
                self.log.info("Deposit %s is already being processed; deferring", id)
                return OUTCOME_DEFERRED

            try:
                # reread now that we hold the mark
                dep = self.store.get_object(DEPOSIT, id)
                if is_terminal_deposit_status(dep.status):
                    return OUTCOME_SKIPPED
                if dep.awaiting_decision:
                    return self._check_decision(dep)
                return self._attempt(dep)

            except ObjectNotFound as ex:
                self.log.warning("%s disappeared during processing", str(ex))
                return OUTCOME_NOT_FOUND
            except ConflictError as ex:
                self.log.warning("Abandoning attempt on deposit %s: %s", id, str(ex))
                return OUTCOME_CONFLICT
            except _StoreWriteFailed as ex:
                self.log.error("Failed to record status of deposit %s: %s", id, str(ex))
                return OUTCOME_REDELIVER
            except AttemptCancelled as ex:
                self.log.warning("Attempt on deposit %s cancelled", id)
                return OUTCOME_CANCELLED

    def _write(self, dep, status, receipt=None, message=None, status_ref=None):
        try:
            return self.store.update_status(DEPOSIT, dep.id, status, receipt,
                                            expected_version=dep.version, message=message,
                                            status_ref=status_ref)
        except (ConflictError, ObjectNotFound):
            raise
        except Exception as ex:
            raise _StoreWriteFailed(ex)

    def _attempt(self, dep):
        cfg = self.registry.find_config(dep.repository)
        if cfg is None:
            return self._fail(dep, dep.repository, RepositoryNotFound(dep.repository))
        try:
            sub = self.store.get_object(SUBMISSION, dep.submission)
        except ObjectNotFound as ex:
            return self._fail(dep, cfg.key, ex)

        options = cfg.assembler.options
        tc = cfg.transport
        timeout = tc.timeout or self.transport_timeout
        try:
            pkgname = package_name_for(sub.id, options, sub.files[0].name if sub.files else None)
        except ValueError:
            pkgname = None

        if dep.status == DepositStatus.UNVERIFIED or in_transmission(dep):
            # an earlier attempt may have delivered the package
            try:
                delivered = self._verify(dep, cfg, pkgname, timeout)
            except ConfigurationException as ex:
                return self._fail(dep, cfg.key, ex)
            if delivered:
                return self._succeed(dep, cfg, Receipt(pkgname, tc.protocol))
            if delivered is None:
                return self._count_failure(dep, cfg, "delivery to %s still unverified" % cfg.key,
                                           DepositStatus.UNVERIFIED)

        dep = self._write(dep, DepositStatus.ASSEMBLING, message=ASSEMBLING_MESSAGE + cfg.key)

        def assemble_and_submit():
            nonlocal dep
            pkg = self.assembler.assemble(sub, options, cancelled=self.cancelled)
            with pkg:
                if self.cancelled():
                    raise AttemptCancelled(id=dep.id)
                dep = self._write(dep, DepositStatus.ASSEMBLING,
                                  message=TRANSMITTING_MESSAGE + cfg.key)
                return tc.binding.submit(pkg, tc, timeout)

        unknown = None
        try:
            receipt = logged(self.log, "deposit", deposit=dep.id, repository=cfg.key,
                             protocol=tc.protocol)(assemble_and_submit)()

        except (ConflictError, ObjectNotFound, _StoreWriteFailed):
            raise

        except AttemptCancelled:
            if in_transmission(dep):
                # the package was not sent in full, so it cannot have been accepted
                self._write(dep, DepositStatus.ASSEMBLING, message=INTERRUPTED_MESSAGE + cfg.key)
            raise

        except PackagingError as ex:
            if ex.retryable:
                return self._count_failure(dep, cfg, ex)
            return self._fail(dep, cfg.key, ex)

        except TransportError as ex:
            if ex.kind != UNKNOWN_OUTCOME:
                if ex.retryable:
                    return self._count_failure(dep, cfg, ex)
                return self._fail(dep, cfg.key, ex)
            unknown = ex

        except ConfigurationException as ex:
            return self._fail(dep, cfg.key, ex)

        except Exception as ex:
            self.log.exception("Unexpected error while depositing %s to %s: %s", dep.id, cfg.key,
                               str(ex))
            status = DepositStatus.UNVERIFIED if in_transmission(dep) else DepositStatus.RETRYING
            return self._count_failure(dep, cfg, ex, status)

        if unknown:
            try:
                delivered = self._verify(dep, cfg, pkgname, timeout)
            except ConfigurationException as ex:
                return self._fail(dep, cfg.key, ex)
            if delivered:
                return self._succeed(dep, cfg, Receipt(pkgname, tc.protocol))
            status = DepositStatus.UNVERIFIED if delivered is None else DepositStatus.RETRYING
            return self._count_failure(dep, cfg, unknown, status)

        return self._succeed(dep, cfg, receipt)

    def _verify(self, dep, cfg, pkgname, timeout):
        if not pkgname:
            return None
        tc = cfg.transport
        try:
            out = tc.binding.verify(pkgname, tc, timeout)
        except TransportError as ex:
            self.log.warning("Unable to verify delivery of %s to %s: %s", pkgname, cfg.key, str(ex))
            return None
        except ConfigurationException:
            raise
        except Exception as ex:
            self.log.exception("Unexpected error verifying delivery of %s to %s: %s", pkgname,
                               cfg.key, str(ex))
            return None
        self.log.info("Delivery of %s for deposit %s to %s verified: %s", pkgname, dep.id,
                      cfg.key, {True: "yes", False: "no", None: "unknown"}.get(out, out))
        return out

    def _succeed(self, dep, cfg, receipt):
        if receipt.status_ref and cfg.status_resolver:
            decision = self._resolve(dep, cfg, receipt.status_ref)
            if decision is None:
                self._write(dep, DepositStatus.SUBMITTED, receipt.location,
                            "delivered to %s; awaiting its decision" % cfg.key, receipt.status_ref)
                self.attempts.clear(dep.id)
                self.log.info("Deposit %s delivered to %s; awaiting its decision", dep.id, cfg.key)
                self.update_aggregated_status(dep.submission)
                return OUTCOME_AWAITING
            return self._decide(dep, cfg, decision, receipt.location, receipt.status_ref)

        self._write(dep, DepositStatus.ACCEPTED, receipt.location,
                    "accepted by %s (%s)" % (cfg.key, receipt.protocol), receipt.status_ref)
        self.attempts.clear(dep.id)
        self.log.info("Deposit %s accepted by %s", dep.id, cfg.key)
        self.update_aggregated_status(dep.submission)
        return OUTCOME_ACCEPTED

    def _check_decision(self, dep):
        cfg = self.registry.find_config(dep.repository)
        if cfg is None or not cfg.status_resolver:
            self.log.warning("Deposit %s awaits a decision from %s that cannot be looked up",
                             dep.id, dep.repository)
            return OUTCOME_AWAITING
        decision = self._resolve(dep, cfg, dep.status_ref)
        if decision is None:
            self.log.info("Deposit %s still awaits a decision from %s", dep.id, cfg.key)
            return OUTCOME_AWAITING
        return self._decide(dep, cfg, decision, dep.receipt, dep.status_ref)

    def _resolve(self, dep, cfg, status_ref):
        try:
            return cfg.status_resolver.resolve(status_ref, cfg.transport)
        except DepositException as ex:
            self.log.warning("Unable to look up the status of deposit %s at %s: %s", dep.id,
                             cfg.key, str(ex))
            return None

    def _decide(self, dep, cfg, status, receipt, status_ref):
        self._write(dep, status, receipt, "%s by %s" % (status.value, cfg.key), status_ref)
        self.attempts.clear(dep.id)
        self.update_aggregated_status(dep.submission)
        if status == DepositStatus.REJECTED:
            self.log.warning("Deposit %s rejected by %s", dep.id, cfg.key)
            return OUTCOME_REJECTED
        self.log.info("Deposit %s accepted by %s", dep.id, cfg.key)
        return OUTCOME_ACCEPTED

    def _count_failure(self, dep, cfg, error, status=DepositStatus.RETRYING):
        n = self.attempts.increment(dep.id)
        if n >= self.max_attempts:
            return self._fail(dep, cfg.key, error, n)

        self.log.warning("Deposit %s to %s: attempt %d of %d failed: %s", dep.id, cfg.key, n,
                         self.max_attempts, str(error))
        self._write(dep, status, message="attempt %d failed: %s" % (n, str(error)))
        self.update_aggregated_status(dep.submission)
        return OUTCOME_UNVERIFIED if status == DepositStatus.UNVERIFIED else OUTCOME_RETRY

    def _fail(self, dep, repokey, error, attempts=None):
        msg = str(error)
        if attempts:
            msg = "failed after %d attempts: %s" % (attempts, msg)
        self._write(dep, DepositStatus.FAILED, message=msg)
        self.attempts.clear(dep.id)
        try:
            self.alert(dep, repokey, error)
        except Exception as ex:
            self.log.exception("Failure alert for deposit %s raised an error: %s", dep.id, str(ex))
        self.update_aggregated_status(dep.submission)
        return OUTCOME_FAILED

    def update_aggregated_status(self, submission_id: str):
        """
        recompute the aggregated status of the given submission from the statuses of its
        deposits and record it if it changed.  Failures are logged but not raised.
        :return:  the new aggregated status, or None if it could not be updated
        """
        return update_aggregated_statuses(self.store, [submission_id], self.log).get(submission_id)
