"""
Inbound messages and their delivery.

A message names a single entity (a submission or a deposit) that is ready for processing.
Messages arrive wrapped in a :py:class:`Delivery` which must be settled exactly once: either
acknowledged (processing is complete; the message will not be seen again) or negatively
acknowledged (the message should be redelivered later).  Because delivery is at-least-once,
the same message can be handled more than once, possibly concurrently.

This module also provides :py:class:`LocalMessageQueue`, an in-process message source used for
testing and local runs.
"""
import json, queue, threading, logging
from abc import ABCMeta, abstractmethod
from collections.abc import Mapping
from typing import Union

from ..exceptions import MalformedMessage, StateException
from ..model import SUBMISSION, DEPOSIT
from .. import system as _sys

_type_names = {
    "submission":      SUBMISSION,
    "submissionready": SUBMISSION,
    "deposit":         DEPOSIT,
    "depositstatus":   DEPOSIT
}
_id_props = { SUBMISSION: "submissionId", DEPOSIT: "depositId" }

DEF_KEEP_ACKED = 100

class EntityMessage(object):
    """
    a parsed message naming an entity to process
    """

    def __init__(self, kind: str, id: str):
        self.kind = kind
        self.id = id

    def __eq__(self, other):
        return isinstance(other, EntityMessage) and (self.kind, self.id) == (other.kind, other.id)

    def __hash__(self):
        return hash((self.kind, self.id))

    def __repr__(self):
        return "EntityMessage(%s, %r)" % (self.kind, self.id)

def parse_message(payload: Union[Mapping, str, bytes]) -> EntityMessage:
    """
    interpret a message payload.  The payload is a JSON object (or its serialization) with a
    ``type`` property--either "submission" or "deposit" (or, equivalently, "SubmissionReady" or
    "DepositStatus")--and an ``id`` property giving the entity's identifier (which can instead
    be given as ``submissionId`` or ``depositId``, respectively).

    :raises MalformedMessage:  if the payload cannot be interpreted
    """
    data = payload
    if isinstance(data, (bytes, bytearray)):
        try:
            data = data.decode('utf-8')
        except UnicodeDecodeError as ex:
            raise MalformedMessage("Message payload is not UTF-8 text", payload, ex)
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except ValueError as ex:
            raise MalformedMessage("Message payload is not valid JSON: " + str(ex), payload, ex)
    if not isinstance(data, Mapping):
        raise MalformedMessage("Message payload is not a JSON object", payload)

    mtype = data.get('type')
    if not isinstance(mtype, str) or mtype.lower() not in _type_names:
        raise MalformedMessage("Unrecognized message type: " + repr(mtype), payload)
    kind = _type_names[mtype.lower()]

    id = data.get('id', data.get(_id_props[kind]))
    if not isinstance(id, str) or not id:
        raise MalformedMessage("Message is missing an entity identifier", payload)
    return EntityMessage(kind, id)

class Delivery(object, metaclass=ABCMeta):
    """
    a message as delivered by a message source
    """

    @property
    @abstractmethod
    def payload(self):
        """
        the raw message content
        """
        raise NotImplementedError()

    @property
    @abstractmethod
    def delivery_count(self) -> int:
        """
        the number of times this message has been delivered (1 on first delivery)
        """
        raise NotImplementedError()

    @abstractmethod
    def ack(self):
        """
        acknowledge the message: processing is complete, and it should not be redelivered
        """
        raise NotImplementedError()

    @abstractmethod
    def nack(self, delay: float=None):
        """
        reject the message so that it is redelivered

        :param float delay:  the minimum number of seconds to wait before redelivering
        """
        raise NotImplementedError()

class _LocalDelivery(Delivery):

    def __init__(self, source, payload, count):
        self._src = source
        self._payload = payload
        self._count = count
        self._settled = False

    @property
    def payload(self):
        return self._payload

    @property
    def delivery_count(self):
        return self._count

    @property
    def settled(self):
        return self._settled

    def _settle(self):
        if self._settled:
            raise StateException("Message was already acknowledged or rejected")
        self._settled = True

    def ack(self):
        self._settle()
        self._src._acked(self)

    def nack(self, delay: float=None):
        self._settle()
        self._src._redeliver(self, delay)

class LocalMessageQueue(object):
    """
    an in-process, at-least-once message source.  Messages added with :py:meth:`publish` are
    handed out by :py:meth:`get`; a message that is negatively acknowledged is put back on
    the queue (after an optional delay) with its delivery count incremented.

    The payloads of the most recently acknowledged messages are kept in :py:attr:`acked`
    (oldest first); :py:attr:`acked_count` gives the total number acknowledged.
    """

    def __init__(self, log: logging.Logger=None, keep_acked: int=DEF_KEEP_ACKED):
        """
        :param Logger     log:  the logger to send messages to
        :param int keep_acked:  the number of acknowledged payloads to remember in
                                :py:attr:`acked`; 0 disables the record.
        """
        self._q = queue.Queue()
        self._lock = threading.Lock()
        self._unacked = 0
        self._timers = set()
        self._keep = max(int(keep_acked), 0)
        self.acked = []
        self.acked_count = 0
        if not log:
            log = logging.getLogger(_sys.system_abbrev).getChild("queue")
        self.log = log

    def publish(self, payload):
        """
        add a message to the queue
        """
        self._q.put((payload, 1))

    def get(self, timeout: float=None) -> Delivery:
        """
        return the next message, waiting up to ``timeout`` seconds for one to become available
        (or indefinitely if ``timeout`` is None).  None is returned if no message arrives in time.
        """
        try:
            payload, count = self._q.get(timeout=timeout)
        except queue.Empty:
            return None
        with self._lock:
            self._unacked += 1
        return _LocalDelivery(self, payload, count)

    @property
    def pending(self):
        """
        the number of messages waiting to be delivered (not counting delayed redeliveries)
        """
        return self._q.qsize()

    @property
    def unacked(self):
        """
        the number of delivered messages that have not yet been settled
        """
        with self._lock:
            return self._unacked

    @property
    def delayed(self):
        """
        the number of rejected messages waiting out their redelivery delay
        """
        with self._lock:
            return len(self._timers)

    def _acked(self, delivery):
        with self._lock:
            self._unacked -= 1
            self.acked_count += 1
            if self._keep:
                self.acked.append(delivery.payload)
                if len(self.acked) > self._keep:
                    del self.acked[0]

    def _redeliver(self, delivery, delay):
        item = (delivery.payload, delivery.delivery_count + 1)
        with self._lock:
            self._unacked -= 1
            if delay and delay > 0:
                timer = threading.Timer(delay, self._requeue, (item,))
                timer.daemon = True
                self._timers.add(timer)
                timer.start()
                return
        self._q.put(item)

    def _requeue(self, item):
        with self._lock:
            self._timers.discard(threading.current_thread())
        self._q.put(item)

    def close(self):
        """
        cancel any delayed redeliveries
        """
        with self._lock:
            timers = list(self._timers)
            self._timers.clear()
        for t in timers:
            t.cancel()
