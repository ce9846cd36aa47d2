"""Periodic on-screen and CSV status updates while a scan runs."""

from __future__ import annotations

import dataclasses
import logging
import math
import sys
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import IO, Callable, ContextManager, Optional, Union

from .iterator import Iterator, SendState

log = logging.getLogger("monitor")

UPDATE_INTERVAL = 1  # seconds
WARMUP_PERIOD = 5
MIN_HITRATE_TIME_WINDOW = 5  # seconds
_UINT32_MAX = 0xFFFFFFFF

STATUS_CSV_HEADER = (
    "real-time,time-elapsed,time-remaining,"
    "percent-complete,hit-rate,active-send-threads,"
    "sent-total,sent-last-one-sec,sent-avg-per-sec,"
    "recv-success-total,recv-success-last-one-sec,recv-success-avg-per-sec,"
    "recv-total,recv-total-last-one-sec,recv-total-avg-per-sec,"
    "pcap-drop-total,drop-last-one-sec,drop-avg-per-sec,"
    "sendto-fail-total,sendto-fail-last-one-sec,sendto-fail-avg-per-sec"
)


class MonitorAbort(RuntimeError):
    """Raised when the scan must stop: hit rate too low or too many send failures."""


@dataclass
class MonitorConfig:
    """Scanner settings that the monitor reads."""

    total_shards: int = 1
    packet_streams: int = 1
    cooldown_secs: float = 0.0
    max_runtime: float = 0.0
    max_results: int = 0
    min_hitrate: float = 0.0
    max_sendto_failures: int = -1
    quiet: bool = False
    app_success_index: int = -1
    status_updates_file: Optional[str] = None
    list_of_ips: bool = False


@dataclass
class ReceiveState:
    """Counters kept by the receiving side of the scan."""

    pcap_recv: int = 0
    filter_success: int = 0
    app_success_unique: int = 0
    pcap_drop: int = 0
    pcap_ifdrop: int = 0
    complete: bool = False


@dataclass
class ExportStatus:
    """Status figures computed on each update."""

    total_sent: int = 0
    total_tried_sent: int = 0
    recv_success_unique: int = 0
    app_recv_success_unique: int = 0
    total_recv: int = 0
    complete: bool = False
    send_threads: int = 0
    percent_complete: float = 0.0
    hitrate: float = 0.0
    app_hitrate: float = 0.0
    send_rate: float = 0.0
    send_rate_str: str = ""
    send_rate_avg: float = 0.0
    send_rate_avg_str: str = ""
    recv_rate: float = 0.0
    recv_rate_str: str = ""
    recv_avg: float = 0.0
    recv_avg_str: str = ""
    recv_total_rate: float = 0.0
    recv_total_avg: float = 0.0
    app_success_rate: float = 0.0
    app_success_rate_str: str = ""
    app_success_avg: float = 0.0
    app_success_avg_str: str = ""
    pcap_drop: int = 0
    pcap_ifdrop: int = 0
    pcap_drop_total: int = 0
    pcap_drop_total_str: str = ""
    pcap_drop_last: float = 0.0
    pcap_drop_last_str: str = ""
    pcap_drop_avg: float = 0.0
    pcap_drop_avg_str: str = ""
    time_remaining: int = 0
    time_remaining_str: str = ""
    time_past: int = 0
    time_past_str: str = ""
    fail_total: int = 0
    fail_avg: float = 0.0
    fail_last: float = 0.0
    seconds_under_min_hitrate: float = 0.0


@dataclass
class _InternalStatus:
    last_now: float = 0.0
    last_sent: int = 0
    last_send_failures: int = 0
    last_recv_net_success: int = 0
    last_recv_app_success: int = 0
    last_recv_total: int = 0
    last_pcap_drop: int = 0
    min_hitrate_start: float = 0.0


def _div(a: float, b: float) -> float:
    """Floating division that yields inf or nan instead of raising on zero."""
    if b != 0:
        return a / b
    if a == 0 or math.isnan(a):
        return math.nan
    return math.copysign(math.inf, a)


def _ceil(x: float) -> float:
    return float(math.ceil(x)) if math.isfinite(x) else x


def _to_uint32(x: float) -> int:
    if math.isnan(x):
        return 0
    if x == math.inf:
        return _UINT32_MAX
    return int(min(max(x, 0), _UINT32_MAX))


def _number_string(n: float) -> str:
    if not math.isfinite(n):
        return str(n)
    magnitude = abs(n)
    for limit, suffix in ((1e9, "G"), (1e6, "M"), (1e3, "K")):
        if magnitude >= limit:
            return f"{n / limit:.2f} {suffix}"
    return f"{n:.0f} "


def _time_string(seconds: float) -> str:
    if not math.isfinite(seconds):
        return "?"
    total = max(int(seconds), 0)
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    if days:
        return f"{days}d{hours:02d}:{minutes:02d}:{secs:02d}"
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def compute_remaining_time(
    config: MonitorConfig,
    send_state: SendState,
    recv_state: ReceiveState,
    age: float,
    packets_sent: int,
    iterations: int,
    current_time: float,
) -> float:
    """Estimate the seconds left in the scan from whichever limit ends it first."""
    if send_state.complete:
        return config.cooldown_secs - (current_time - send_state.finish)

    estimates = []
    if config.list_of_ips:
        done = _div(iterations, _UINT32_MAX // config.total_shards)
        estimates.append((1.0 - done) * _div(age, done) + config.cooldown_secs)
    if send_state.max_targets:
        target = (send_state.max_targets * config.packet_streams) // config.total_shards
        done = _div(packets_sent, target)
        estimates.append((1.0 - done) * _div(age, done) + config.cooldown_secs)
    if config.max_runtime:
        estimates.append((config.max_runtime - age) + config.cooldown_secs)
    if config.max_results:
        done = _div(recv_state.filter_success, config.max_results)
        estimates.append((1.0 - done) * _div(age, done))
    if send_state.max_index:
        target = (send_state.max_index * config.packet_streams) // config.total_shards
        done = _div(packets_sent, target)
        estimates.append((1.0 - done) * _div(age, done) + config.cooldown_secs)
    return min((v for v in estimates if not math.isnan(v)), default=math.inf)


class Monitor:
    """Computes scan statistics once per interval and reports them."""

    def __init__(
        self,
        iterator: Iterator,
        config: Optional[MonitorConfig] = None,
        recv_state: Optional[ReceiveState] = None,
        stream: Optional[IO[str]] = None,
        status_file: Optional[IO[str]] = None,
        clock: Callable[[], float] = time.time,
        update_stats: Optional[Callable[[], None]] = None,
        lock: Optional[ContextManager] = None,
    ) -> None:
        self.iterator = iterator
        self.config = config if config is not None else MonitorConfig()
        self.recv_state = recv_state if recv_state is not None else ReceiveState()
        self.send_state: SendState = iterator.send_state
        self._stream = stream
        self._clock = clock
        self._update_stats = update_stats
        self._lock = lock if lock is not None else threading.Lock()
        self._internal = _InternalStatus()
        self._status = ExportStatus()
        self._owns_status_file = False
        self._status_file = status_file
        if self._status_file is None and self.config.status_updates_file:
            self._status_file = self._open_status_file(self.config.status_updates_file)
            self._owns_status_file = True
        elif self._status_file is not None:
            self._write_status_header(self._status_file)

    @property
    def stream(self) -> IO[str]:
        return self._stream if self._stream is not None else sys.stderr

    def _open_status_file(self, path: str) -> IO[str]:
        try:
            f = open(path, "w", encoding="utf-8")
        except OSError as exc:
            raise MonitorAbort(
                f"could not open status updates file ({path}): {exc.strerror}"
            ) from exc
        log.debug("status updates CSV will be saved to %s", path)
        self._write_status_header(f)
        return f

    @staticmethod
    def _write_status_header(f: IO[str]) -> None:
        f.write(STATUS_CSV_HEADER + "\n")
        f.flush()

    def export_stats(self, current_time: Optional[float] = None) -> ExportStatus:
        """Recompute the status figures and return a snapshot of them."""
        it = self.iterator
        config = self.config
        send = self.send_state
        recv = self.recv_state
        intrnl = self._internal
        exp = self._status

        total_sent = it.total_sent()
        total_iterations = it.total_iterations()
        total_fail = it.total_failures()
        total_recv = recv.pcap_recv
        recv_success = recv.filter_success
        app_success = recv.app_success_unique
        cur_time = self._clock() if current_time is None else current_time
        age = cur_time - send.start
        delta = cur_time - intrnl.last_now
        remaining_secs = compute_remaining_time(
            config, send, recv, age, total_sent, total_iterations, cur_time
        )

        if age < WARMUP_PERIOD:
            exp.time_remaining_str = ""
        else:
            exp.time_remaining_str = f" ({_time_string(_ceil(remaining_secs))} left)"
        exp.time_past = _to_uint32(age)
        exp.time_remaining = _to_uint32(remaining_secs)
        exp.time_past_str = _time_string(age)

        exp.recv_rate = _ceil(_div(recv_success - intrnl.last_recv_net_success, delta))
        exp.recv_rate_str = _number_string(exp.recv_rate)
        exp.recv_avg = _div(recv_success, age)
        exp.recv_avg_str = _number_string(exp.recv_avg)
        exp.recv_total_rate = _div(total_recv - intrnl.last_recv_total, delta)
        exp.recv_total_avg = _div(total_recv, age)

        if config.app_success_index >= 0:
            exp.app_success_rate = _div(app_success - intrnl.last_recv_app_success, delta)
            exp.app_success_rate_str = _number_string(exp.app_success_rate)
            exp.app_success_avg = _div(app_success, age)
            exp.app_success_avg_str = _number_string(exp.app_success_avg)

        if not total_sent:
            exp.hitrate = 0.0
            exp.app_hitrate = 0.0
        else:
            exp.hitrate = recv_success * 100.0 / total_sent
            exp.app_hitrate = app_success * 100.0 / total_sent

        if age > WARMUP_PERIOD and exp.hitrate < config.min_hitrate:
            if abs(intrnl.min_hitrate_start) < 0.00001:
                intrnl.min_hitrate_start = cur_time
        else:
            intrnl.min_hitrate_start = 0.0
        if abs(intrnl.min_hitrate_start) < 0.00001:
            exp.seconds_under_min_hitrate = 0.0
        else:
            exp.seconds_under_min_hitrate = cur_time - intrnl.min_hitrate_start

        if not send.complete:
            exp.send_rate = _ceil(_div(total_sent - intrnl.last_sent, delta))
            exp.send_rate_str = _number_string(exp.send_rate)
            exp.send_rate_avg = _div(total_sent, age)
        else:
            exp.send_rate_avg = _div(total_sent, send.finish - send.start)
        exp.send_rate_avg_str = _number_string(exp.send_rate_avg)

        exp.total_sent = total_sent
        exp.total_tried_sent = total_iterations
        exp.percent_complete = _div(100.0 * age, age + remaining_secs)
        exp.recv_success_unique = recv_success
        exp.app_recv_success_unique = app_success
        exp.total_recv = total_recv
        exp.complete = send.complete

        exp.pcap_drop = recv.pcap_drop
        exp.pcap_ifdrop = recv.pcap_ifdrop
        exp.pcap_drop_total = exp.pcap_drop + exp.pcap_ifdrop
        exp.pcap_drop_last = _div(exp.pcap_drop_total - intrnl.last_pcap_drop, delta)
        exp.pcap_drop_avg = _div(exp.pcap_drop_total, age)
        exp.pcap_drop_total_str = _number_string(exp.pcap_drop_total)
        exp.pcap_drop_last_str = _number_string(exp.pcap_drop_last)
        exp.pcap_drop_avg_str = _number_string(exp.pcap_drop_avg)

        send.sendto_failures = total_fail
        exp.fail_total = total_fail
        exp.fail_last = _div(exp.fail_total - intrnl.last_send_failures, delta)
        exp.fail_avg = _div(exp.fail_total, age)

        exp.send_threads = it.current_send_threads()

        intrnl.last_now = cur_time
        intrnl.last_sent = exp.total_sent
        intrnl.last_recv_net_success = exp.recv_success_unique
        intrnl.last_recv_app_success = exp.app_recv_success_unique
        intrnl.last_pcap_drop = exp.pcap_drop_total
        intrnl.last_send_failures = exp.fail_total
        intrnl.last_recv_total = exp.total_recv
        return dataclasses.replace(exp)

    def drop_warnings(self, status: ExportStatus) -> list[str]:
        """Log and return warnings about dropped packets and send failures."""
        warnings = []
        if _div(status.pcap_drop_last, status.recv_rate) > 0.05:
            warnings.append(
                f"Dropped {status.pcap_drop_last:.0f} packets in the last second, "
                f"({status.pcap_drop_total} total dropped "
                f"(pcap: {status.pcap_drop} + iface: {status.pcap_ifdrop}))"
            )
        if _div(status.fail_last, status.send_rate) > 0.01:
            warnings.append(
                f"Failed to send {status.fail_last:.0f} packets/sec "
                f"({status.fail_total} total failures)"
            )
        for message in warnings:
            log.warning(message)
        return warnings

    def check_limits(self, status: ExportStatus) -> None:
        """Raise MonitorAbort if the hit rate or send-failure limit is violated."""
        if status.seconds_under_min_hitrate >= MIN_HITRATE_TIME_WINDOW:
            raise MonitorAbort(
                f"hitrate below {self.config.min_hitrate:.0f} for "
                f"{status.seconds_under_min_hitrate:.0f} seconds. aborting scan."
            )
        limit = self.config.max_sendto_failures
        if limit >= 0 and status.fail_total > limit:
            raise MonitorAbort(f"maximum number of sendto failures ({limit}) exceeded")

    def format_status_line(self, status: ExportStatus) -> str:
        """The one-line progress report shown on screen."""
        head = (
            f"{status.time_past_str:>5} {status.percent_complete:.0f}%"
            f"{status.time_remaining_str}; "
        )
        app = self.config.app_success_index >= 0
        verb = "sent" if app else "send"
        if not status.complete:
            sent = (
                f"{verb}: {status.total_sent} {status.send_rate_str}p/s "
                f"({status.send_rate_avg_str}p/s avg); "
            )
        else:
            sent = f"{verb}: {status.total_sent} done ({status.send_rate_avg_str}p/s avg); "
        recv = (
            f"recv: {status.recv_success_unique} {status.recv_rate_str}p/s "
            f"({status.recv_avg_str}p/s avg); "
        )
        app_part = ""
        if app:
            app_part = (
                f"app success: {status.app_recv_success_unique} "
                f"{status.app_success_rate_str}p/s ({status.app_success_avg_str}p/s avg); "
            )
        drops = f"drops: {status.pcap_drop_last_str}p/s ({status.pcap_drop_avg_str}p/s avg); "
        tail = f"hitrate: {status.hitrate:.2f}%"
        if app:
            tail += f" app hitrate: {status.app_hitrate:.2f}%"
        return head + sent + recv + app_part + drops + tail

    def status_csv_row(self, status: ExportStatus, timestamp: Union[datetime, str]) -> str:
        """One line of the status-updates CSV file, without the newline."""
        if isinstance(timestamp, datetime):
            timestamp = timestamp.strftime("%Y-%m-%d %H:%M:%S")
        cells = [
            timestamp,
            str(status.time_past),
            str(status.time_remaining),
            f"{status.percent_complete:f}",
            f"{status.hitrate:f}",
            str(status.send_threads),
            str(status.total_sent),
            f"{status.send_rate:.0f}",
            f"{status.send_rate_avg:.0f}",
            str(status.recv_success_unique),
            f"{status.recv_rate:.0f}",
            f"{status.recv_avg:.0f}",
            str(status.total_recv),
            f"{status.recv_total_rate:.0f}",
            f"{status.recv_total_avg:.0f}",
            str(status.pcap_drop_total),
            f"{status.pcap_drop_last:.0f}",
            f"{status.pcap_drop_avg:.0f}",
            str(status.fail_total),
            f"{status.fail_last:.0f}",
            f"{status.fail_avg:.0f}",
        ]
        return ",".join(cells)

    def run(self, sleep: Callable[[float], None] = time.sleep) -> None:
        """Report status every interval until sending and receiving are both done."""
        try:
            while not (self.send_state.complete and self.recv_state.complete):
                if self._update_stats is not None:
                    with self._lock:
                        self._update_stats()
                status = self.export_stats()
                self.drop_warnings(status)
                self.check_limits(status)
                if not self.config.quiet:
                    self.stream.write(self.format_status_line(status) + "\n")
                    self.stream.flush()
                if self._status_file is not None:
                    stamp = datetime.fromtimestamp(self._clock())
                    self._status_file.write(self.status_csv_row(status, stamp) + "\n")
                    self._status_file.flush()
                sleep(UPDATE_INTERVAL)
            if not self.config.quiet:
                self.stream.flush()
        finally:
            if self._status_file is not None:
                self._status_file.flush()
                if self._owns_status_file:
                    self._status_file.close()
                    self._status_file = None