"""Per-thread send shards and the aggregation of their counters."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

log = logging.getLogger("iterator")

_MAX_INDEX = 0xFFFFFFFF


@dataclass
class ShardState:
    """Counters kept by one sending thread."""

    thread_id: int = 0
    packets_sent: int = 0
    hosts_scanned: int = 0
    hosts_blocklisted: int = 0
    hosts_allowlisted: int = 0
    packets_failed: int = 0
    first_scanned: int = 0
    iterations: int = 0


@dataclass
class SendState:
    """Scan-wide sending state, filled in as shards complete."""

    start: float = 0.0
    finish: float = 0.0
    complete: bool = False
    packets_sent: int = 0
    hosts_scanned: int = 0
    blocklisted: int = 0
    allowlisted: int = 0
    sendto_failures: int = 0
    first_scanned: int = 0
    max_targets: int = 0
    max_index: int = 0


class Iterator:
    """Owns one shard per sending thread and folds their results into a SendState."""

    def __init__(
        self,
        num_threads: int,
        send_state: Optional[SendState] = None,
        num_addrs: int = 0,
        shard: int = 0,
        num_shards: int = 1,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if num_threads < 1:
            raise ValueError("at least one send thread is required")
        self.send_state = send_state if send_state is not None else SendState()
        self.num_threads = num_threads
        self.shard = shard
        self.num_shards = num_shards
        self._clock = clock
        self._lock = threading.Lock()
        self._curr_threads = num_threads
        self.completed = [False] * num_threads
        self.shards = [ShardState(thread_id=i) for i in range(num_threads)]
        if num_addrs > (1 << 32):
            self.send_state.max_index = _MAX_INDEX
        else:
            self.send_state.max_index = num_addrs & _MAX_INDEX
        log.debug("max index %u", self.send_state.max_index)

    def _check_thread(self, thread_id: int) -> None:
        if not 0 <= thread_id < self.num_threads:
            raise IndexError(f"thread id {thread_id} out of range")

    def shard_complete(self, thread_id: int) -> None:
        """Record that a thread finished and add its counters to the send state."""
        self._check_thread(thread_id)
        with self._lock:
            self.completed[thread_id] = True
            self._curr_threads -= 1
            shard = self.shards[thread_id]
            state = self.send_state
            state.packets_sent += shard.packets_sent
            state.hosts_scanned += shard.hosts_scanned
            state.blocklisted += shard.hosts_blocklisted
            state.allowlisted += shard.hosts_allowlisted
            state.sendto_failures += shard.packets_failed
            if all(self.completed):
                state.finish = self._clock()
                state.complete = True
                state.first_scanned = self.shards[0].first_scanned

    def total_sent(self) -> int:
        return sum(s.packets_sent for s in self.shards)

    def total_iterations(self) -> int:
        return sum(s.iterations for s in self.shards)

    def total_failures(self) -> int:
        return sum(s.packets_failed for s in self.shards)

    def current_send_threads(self) -> int:
        return self._curr_threads

    def get_shard(self, thread_id: int) -> ShardState:
        self._check_thread(thread_id)
        return self.shards[thread_id]