# dungeon_server/scheduler.py - Delayed callbacks keyed by name
import heapq
import itertools
import time


class Scheduler:
    """Min-heap of pending callbacks ordered by monotonic due time.

    Every timer has a key; scheduling a key that is already pending
    replaces the old entry. Nothing runs on its own: the owner calls
    `run_due()` and the callbacks run on the caller's stack, so a timer
    firing goes through the same single-threaded path as client input.
    Tests pass a fake `clock` and move it forward by hand.
    """

    def __init__(self, clock=time.monotonic):
        self.clock = clock
        self._heap = []
        self._entries = {}
        self._seq = itertools.count()

    def schedule(self, key, delay, callback, *args):
        self.cancel(key)
        due = self.clock() + max(0.0, delay)
        entry = [due, next(self._seq), key, callback, args, True]
        self._entries[key] = entry
        heapq.heappush(self._heap, entry)
        return due

    def cancel(self, key):
        entry = self._entries.pop(key, None)
        if entry is not None:
            entry[5] = False
            return True
        return False

    def cancel_all(self):
        for entry in self._entries.values():
            entry[5] = False
        self._entries.clear()
        self._heap = []

    def is_pending(self, key):
        return key in self._entries

    def due_at(self, key):
        entry = self._entries.get(key)
        return entry[0] if entry else None

    def next_due(self):
        while self._heap and not self._heap[0][5]:
            heapq.heappop(self._heap)
        return self._heap[0][0] if self._heap else None

    def run_due(self):
        """Fire every callback whose time has come, in due order.

        Returns the callbacks' results (lists are concatenated). Timers
        scheduled by a callback wait for the next call, even when due.
        """
        results = []
        now = self.clock()
        # Entries numbered above this were armed during this call
        horizon = next(self._seq)
        while True:
            due = self.next_due()
            if due is None or due > now:
                break
            if self._heap[0][1] > horizon:
                break
            entry = heapq.heappop(self._heap)
            _, _, key, callback, args, _ = entry
            if self._entries.get(key) is entry:
                del self._entries[key]
            entry[5] = False
            out = callback(*args)
            if isinstance(out, list):
                results.extend(out)
            elif out is not None:
                results.append(out)
        return results

    def __len__(self):
        return len(self._entries)
