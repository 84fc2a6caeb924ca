"""
A pool of worker threads that feed deliveries from a message source to a
:py:class:`~passdeposit.dispatch.orchestrator.DispatchOrchestrator`.
"""
import threading, logging
from collections.abc import Mapping

from ..exceptions import ConfigurationException, StateException
from .orchestrator import DispatchOrchestrator

DEF_WORKERS = 4
DEF_POLL_TIMEOUT = 1.0

class DispatchWorkerPool(object):
    """
    a fixed-size set of threads, each of which repeatedly takes the next delivery from a
    message source and hands it to an orchestrator.  The number of threads bounds the number of
    deposit attempts in progress at once.

    The message source must provide a ``get(timeout)`` method that returns the next
    :py:class:`~passdeposit.dispatch.messages.Delivery` or None if none arrived in time (as
    :py:class:`~passdeposit.dispatch.messages.LocalMessageQueue` does).

    This class looks for the following configuration parameters:

    ``workers``
        (*int*) the number of worker threads (default: 4)
    ``poll_timeout``
        (*float*) the number of seconds a worker waits for a message before checking whether
        it should stop (default: 1)
    """

    def __init__(self, orchestrator: DispatchOrchestrator, source, config: Mapping=None,
                 log: logging.Logger=None):
        if config is None:
            config = {}
        self.cfg = config
        self.orchestrator = orchestrator
        self.source = source
        if not log:
            log = orchestrator.log.getChild("pool")
        self.log = log

        try:
            self.nworkers = int(self.cfg.get('workers', DEF_WORKERS))
            self.poll_timeout = float(self.cfg.get('poll_timeout', DEF_POLL_TIMEOUT))
        except (TypeError, ValueError) as ex:
            raise ConfigurationException("Bad worker pool configuration: " + str(ex), cause=ex)
        if self.nworkers < 1:
            raise ConfigurationException("workers: value must be at least 1")

        self._threads = []
        self._lock = threading.Lock()
        self.processed = 0
        self.outcomes = {}

    @property
    def running(self):
        """
        True if any of the worker threads are still running
        """
        return any(t.is_alive() for t in self._threads)

    def start(self):
        """
        start the worker threads
        :raises StateException:  if the pool is already running
        """
        if self.running:
            raise StateException("Worker pool is already running")
        self.orchestrator.shutdown.clear()
        self._threads = [threading.Thread(target=self._work, name="dispatch-worker-%d" % i,
                                          daemon=True)
                         for i in range(self.nworkers)]
        for t in self._threads:
            t.start()
        self.log.info("Started %d dispatch workers", self.nworkers)

    def stop(self, wait: bool=True, timeout: float=None):
        """
        signal the worker threads to stop.  Attempts in progress are cancelled at their next
        opportunity; their messages are not acknowledged and so will be redelivered.

        :param bool    wait:  if True, wait for the threads to exit
        :param float timeout: the maximum number of seconds to wait for each thread
        """
        self.orchestrator.shutdown.set()
        if wait:
            for t in self._threads:
                t.join(timeout)
        self.log.info("Dispatch workers stopped (%d messages processed)", self.processed)

    def _work(self):
        while not self.orchestrator.shutdown.is_set():
            try:
                delivery = self.source.get(self.poll_timeout)
            except Exception as ex:
                self.log.exception("Failed to get message from source: %s", str(ex))
                self.orchestrator.shutdown.wait(self.poll_timeout)
                continue
            if delivery is None:
                continue

            try:
                outcome = self.orchestrator.handle(delivery)
            except Exception as ex:
                # e.g. settling the delivery failed
                self.log.exception("Unexpected failure handling message: %s", str(ex))
                outcome = "error"

            with self._lock:
                self.processed += 1
                self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1
