"""
Markers for the entities that are currently being processed.

Since a message can be delivered more than once, two workers may be handed the same entity at
the same time.  Before processing an entity, a worker marks it as in flight; a worker that
fails to set the mark defers its message instead of processing the entity concurrently.
"""
from contextlib import contextmanager

from ..utils.cache import KeyedSets

class InFlightMarkers(object):
    """
    a thread-safe set of (kind, id) markers.  The markers are kept in a
    :py:class:`~passdeposit.utils.cache.KeyedSets` keyed by entity kind; one can be passed in
    to share markers among several dispatchers.
    """

    def __init__(self, keyed_sets: KeyedSets=None):
        if keyed_sets is None:
            keyed_sets = KeyedSets()
        self._sets = keyed_sets

    def try_mark(self, kind: str, id: str) -> bool:
        """
        mark the given entity as in flight
        :return: True if the mark was set, or False if the entity was already marked
        """
        return self._sets.add_if_absent(kind, id)

    def clear(self, kind: str, id: str):
        """
        remove the in-flight mark from the given entity (if it is set)
        """
        self._sets.discard(kind, id)

    def is_marked(self, kind: str, id: str) -> bool:
        return self._sets.contains(kind, id)

    def count(self, kind: str=None) -> int:
        """
        return the number of entities (of the given kind, or of all kinds) currently marked
        """
        kinds = [kind] if kind else self._sets.keys()
        return sum(len(self._sets.get(k) or ()) for k in kinds)

    @contextmanager
    def marked(self, kind: str, id: str):
        """
        a context manager that holds the in-flight mark for an entity while its block
        executes.  The value of the ``with`` statement is True if the mark was acquired (in
        which case it is cleared on exit) or False if another holder already had it.
        """
        acquired = self.try_mark(kind, id)
        try:
            yield acquired
        finally:
            if acquired:
                self.clear(kind, id)
