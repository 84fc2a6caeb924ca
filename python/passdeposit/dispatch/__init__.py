"""
The processing of inbound messages into deposit attempts.

Messages naming submissions or deposits are pulled from a message source by a
:py:class:`~passdeposit.dispatch.pool.DispatchWorkerPool` and handled by a
:py:class:`~passdeposit.dispatch.orchestrator.DispatchOrchestrator`, which assembles and
transmits packages and records the resulting deposit statuses.
"""
from .messages import EntityMessage, parse_message, Delivery, LocalMessageQueue
from .inflight import InFlightMarkers
from .orchestrator import DispatchOrchestrator, AttemptCounter
from .pool import DispatchWorkerPool
from .runner import retry_failed_deposits, update_aggregated_statuses, resolve_deposit_statuses
