"""
A thread-safe mapping of keys to sets of values.
"""
import threading
from typing import Iterable, Set

class KeyedSets(object):
    """
    a thread-safe map from string keys to sets of string values.  An instance is meant to be
    owned by the component that needs it and passed explicitly to whatever else must share it.

    Values returned by :py:meth:`get` are copies; changing them does not affect the map.
    """

    def __init__(self):
        self._data = {}
        self._lock = threading.RLock()

    def add(self, key: str, value: str) -> None:
        """
        add a value to the set for the given key, creating the set if necessary
        """
        with self._lock:
            self._data.setdefault(key, set()).add(value)

    def add_if_absent(self, key: str, value: str) -> bool:
        """
        add a value to the set for the given key only if it is not already there.
        :return:  True if the value was added, False if it was already present
        """
        with self._lock:
            vals = self._data.setdefault(key, set())
            if value in vals:
                return False
            vals.add(value)
            return True

    def put(self, key: str, values: Iterable[str]) -> None:
        """
        replace the set of values for the given key
        """
        with self._lock:
            self._data[key] = set(values)

    def get(self, key: str) -> Set[str]:
        """
        return a copy of the set of values for the given key or None if the key is not set
        """
        with self._lock:
            vals = self._data.get(key)
            return set(vals) if vals is not None else None

    def contains(self, key: str, value: str) -> bool:
        with self._lock:
            return value in self._data.get(key, ())

    def discard(self, key: str, value: str) -> None:
        """
        remove a single value from the set for the given key; the key is dropped when its
        set becomes empty.
        """
        with self._lock:
            vals = self._data.get(key)
            if vals is None:
                return
            vals.discard(value)
            if not vals:
                del self._data[key]

    def remove(self, key: str) -> None:
        """
        remove the key and its set of values
        """
        with self._lock:
            self._data.pop(key, None)

    def size(self) -> int:
        """
        the number of keys currently set
        """
        with self._lock:
            return len(self._data)

    def keys(self) -> Set[str]:
        """
        return the keys that currently have values
        """
        with self._lock:
            return set(self._data.keys())

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self):
        return self.size()
