"""
This module defines the status values that deposits and submissions move through and the
policy that classifies each value as *terminal* (no further processing will occur) or
*intermediate* (further processing--a retry or a poll--is expected).

Two independent status domains are defined:

:py:class:`DepositStatus`
    the state of a single deposit of a submission's package into one repository
:py:class:`AggregatedDepositStatus`
    the combined state of all of a submission's deposits

Each domain is partitioned into exactly two disjoint sets, ``DEPOSIT_TERMINAL`` and
``DEPOSIT_INTERMEDIATE`` (and ``AGGREGATED_TERMINAL`` and ``AGGREGATED_INTERMEDIATE``).  The
classification functions are pure and may be called from any thread.
"""
from enum import Enum
from typing import Iterable, Union

class DepositStatus(Enum):
    SUBMITTED  = "submitted"   # the deposit was created and awaits processing
    ASSEMBLING = "assembling"  # a package is being assembled and transmitted
    RETRYING   = "retrying"    # a transient failure occurred; the deposit will be retried
    UNVERIFIED = "unverified"  # the last transmission's outcome is unknown and must be verified
    ACCEPTED   = "accepted"    # the repository accepted the package
    REJECTED   = "rejected"    # the repository reviewed and rejected the deposit
    FAILED     = "failed"      # the deposit could not be completed

class AggregatedDepositStatus(Enum):
    NOT_STARTED = "not-started"   # none of the submission's deposits have been processed
    IN_PROGRESS = "in-progress"   # at least one deposit is still being processed
    ACCEPTED    = "accepted"      # all deposits were accepted
    REJECTED    = "rejected"      # at least one deposit was rejected
    FAILED      = "failed"        # at least one deposit failed (and none were rejected)

DEPOSIT_TERMINAL = frozenset([ DepositStatus.ACCEPTED, DepositStatus.REJECTED, DepositStatus.FAILED ])
DEPOSIT_INTERMEDIATE = frozenset(DepositStatus) - DEPOSIT_TERMINAL

AGGREGATED_TERMINAL = frozenset([ AggregatedDepositStatus.ACCEPTED, AggregatedDepositStatus.REJECTED,
                                  AggregatedDepositStatus.FAILED ])
AGGREGATED_INTERMEDIATE = frozenset(AggregatedDepositStatus) - AGGREGATED_TERMINAL

user_message = {
    DepositStatus.SUBMITTED:   "Deposit is waiting to be processed",
    DepositStatus.ASSEMBLING:  "Deposit package is being assembled and transmitted",
    DepositStatus.RETRYING:    "Deposit failed due to a transient problem and will be retried",
    DepositStatus.UNVERIFIED:  "Outcome of the last transmission is unknown; awaiting verification",
    DepositStatus.ACCEPTED:    "Deposit was accepted by the repository",
    DepositStatus.REJECTED:    "Deposit was rejected by the repository",
    DepositStatus.FAILED:      "Deposit could not be completed",

    AggregatedDepositStatus.NOT_STARTED:  "No deposits have been started",
    AggregatedDepositStatus.IN_PROGRESS:  "Deposits are in progress",
    AggregatedDepositStatus.ACCEPTED:     "All deposits were accepted",
    AggregatedDepositStatus.REJECTED:     "At least one deposit was rejected",
    AggregatedDepositStatus.FAILED:       "At least one deposit failed"
}

def to_deposit_status(value: Union[DepositStatus, str]) -> DepositStatus:
    """
    convert a status value (or its string form) to a :py:class:`DepositStatus`
    :raises ValueError:  if the value is None or not a recognized deposit status
    """
    if value is None:
        raise ValueError("Deposit status must not be None")
    if isinstance(value, DepositStatus):
        return value
    return DepositStatus(value)

def to_aggregated_status(value: Union[AggregatedDepositStatus, str]) -> AggregatedDepositStatus:
    """
    convert a status value (or its string form) to an :py:class:`AggregatedDepositStatus`
    :raises ValueError:  if the value is None or not a recognized aggregated status
    """
    if value is None:
        raise ValueError("Aggregated deposit status must not be None")
    if isinstance(value, AggregatedDepositStatus):
        return value
    return AggregatedDepositStatus(value)

def is_terminal_deposit_status(status: Union[DepositStatus, str]) -> bool:
    return to_deposit_status(status) in DEPOSIT_TERMINAL

def is_intermediate_deposit_status(status: Union[DepositStatus, str]) -> bool:
    return to_deposit_status(status) in DEPOSIT_INTERMEDIATE

def is_terminal_aggregated_status(status: Union[AggregatedDepositStatus, str]) -> bool:
    return to_aggregated_status(status) in AGGREGATED_TERMINAL

def is_intermediate_aggregated_status(status: Union[AggregatedDepositStatus, str]) -> bool:
    return to_aggregated_status(status) in AGGREGATED_INTERMEDIATE

def is_terminal(status: Union[DepositStatus, AggregatedDepositStatus, str]) -> bool:
    """
    return True if the given status value is terminal within its domain.  The value may be
    a member of either :py:class:`DepositStatus` or :py:class:`AggregatedDepositStatus` or
    the string form of one.  (A string shared by both domains, like "accepted", is
    classified the same way in each.)
    :raises ValueError:  if the value is None or not a recognized status value
    """
    if isinstance(status, DepositStatus):
        return status in DEPOSIT_TERMINAL
    if isinstance(status, AggregatedDepositStatus):
        return status in AGGREGATED_TERMINAL
    if isinstance(status, str):
        try:
            return to_deposit_status(status) in DEPOSIT_TERMINAL
        except ValueError:
            pass
        try:
            return to_aggregated_status(status) in AGGREGATED_TERMINAL
        except ValueError:
            pass
    raise ValueError("Not a recognized status value: " + repr(status))

def is_intermediate(status: Union[DepositStatus, AggregatedDepositStatus, str]) -> bool:
    """
    return True if the given status value is intermediate within its domain.  This is
    always the logical complement of :py:func:`is_terminal`.
    :raises ValueError:  if the value is None or not a recognized status value
    """
    return not is_terminal(status)

def aggregate_status(statuses: Iterable[Union[DepositStatus, str]]) -> AggregatedDepositStatus:
    """
    compute the aggregated status of a submission from the statuses of its deposits.

    :param statuses:  the current statuses of all of a submission's deposits
    :rtype: AggregatedDepositStatus
    """
    statuses = [to_deposit_status(s) for s in statuses]
    if all(s == DepositStatus.SUBMITTED for s in statuses):
        # also covers the no-deposits case
        return AggregatedDepositStatus.NOT_STARTED
    if any(s in DEPOSIT_INTERMEDIATE for s in statuses):
        return AggregatedDepositStatus.IN_PROGRESS
    if all(s == DepositStatus.ACCEPTED for s in statuses):
        return AggregatedDepositStatus.ACCEPTED
    if DepositStatus.REJECTED in statuses:
        return AggregatedDepositStatus.REJECTED
    return AggregatedDepositStatus.FAILED
