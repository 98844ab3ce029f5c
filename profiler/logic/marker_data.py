"""
Marker Processor

Turns a thread's RawMarkerTable into the list of derived Marker records that
marker tables, charts and tooltips consume.

Raw markers come in four phases (instant, interval, interval start, interval
end). Start/end rows are paired per name with stack discipline; rows left
unpaired at either end of the recording are clamped to the thread range and
flagged incomplete. Network, CompositorScreenshot and IPC payloads get their
own pairing rules, and IPC markers are correlated across threads before
derivation.
"""

import re
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Optional, Union

from ..logging_utils import get_logger
from ..marker_types import GenericPayload, Marker, parse_marker_payload
from ..profile_types import Category, MarkerPhase, RawMarkerTable, SamplesTable, Thread
from .profile_data import split_search_string

logger = get_logger(__name__)

NETWORK_STATUS_START = 'STATUS_START'
SCREENSHOT_WINDOW_DESTROYED = 'CompositorScreenshotWindowDestroyed'

# "Bailout_MonitorTypes after add on line 1013 of self-hosted:1008"
#          type      afterAt    where            bailoutLine  script functionLine
BAILOUT_RE = re.compile(r'^Bailout_(\w+) (after|at) ([\w _-]+) on line (\d+) of (.*):(\d+)$')
# "Invalidate resource://foo.js -> resource://bar.js:3662", "Invalidate self-hosted:4032"
INVALIDATE_RE = re.compile(r'^Invalidate (.*):(\d+)$')

Tid = Union[int, str]


# ============================================================================
# Marker Names Carrying Payloads
# ============================================================================

def extract_marker_data_from_name(thread: Thread) -> Thread:
    """
    Turn `Bailout_...` and `Invalidate ...` text markers into Bailout and
    Invalidation payloads. Names that start with those prefixes but do not
    match the expected grammar stay plain text markers.
    """
    markers = thread.markers
    string_table = thread.string_table
    new_names = list(markers.name)
    new_data = list(markers.data)
    new_string_table = None

    for index in range(markers.length):
        name = string_table.get_string(markers.name[index])
        time = markers.start_time[index]
        payload = None
        if name.startswith('Bailout_'):
            match = BAILOUT_RE.match(name)
            if match is None:
                logger.warning("Could not parse bailout marker: %r", name)
                continue
            bailout_type, after_at, where, bailout_line, script, function_line = match.groups()
            payload = {
                'type': 'Bailout',
                'bailoutType': bailout_type,
                'where': f"{after_at} {where}",
                'script': script,
                'bailoutLine': int(bailout_line),
                'functionLine': int(function_line),
                'startTime': time,
                'endTime': time,
            }
            new_name = 'Bailout'
        elif name.startswith('Invalidate '):
            match = INVALIDATE_RE.match(name)
            if match is None:
                logger.warning("Could not parse invalidation marker: %r", name)
                continue
            url, line = match.groups()
            payload = {'type': 'Invalidation', 'url': url, 'line': int(line), 'startTime': time, 'endTime': time}
            new_name = 'Invalidate'
        else:
            continue

        if markers.data[index] is not None:
            logger.warning("Marker %r already had a payload; replacing it with the one parsed from its name", name)
        if new_string_table is None:
            new_string_table = string_table.copy()
        new_names[index] = new_string_table.index_for_string(new_name)
        new_data[index] = payload

    if new_string_table is None:
        return thread
    new_markers = markers.copy()
    new_markers.name = new_names
    new_markers.data = new_data
    return replace(thread, markers=new_markers, string_table=new_string_table)


# ============================================================================
# IPC Correlation
# ============================================================================

class IPCMarkerCorrelations:
    """Shared IPC message data, keyed by thread id and raw marker index."""

    def __init__(self):
        self._correlations: dict[Tid, dict[int, dict[str, Any]]] = {}

    def set(self, tid: Tid, index: int, data: dict[str, Any]) -> None:
        self._correlations.setdefault(tid, {})[index] = data

    def get(self, tid: Tid, index: int) -> Optional[dict[str, Any]]:
        return self._correlations.get(tid, {}).get(index)

    def __len__(self) -> int:
        return sum(len(markers) for markers in self._correlations.values())


def _ipc_message_id(thread: Thread, data: dict[str, Any]) -> str:
    if data.get('direction') == 'sending':
        pids = f"{thread.pid},{data.get('otherPid')}"
    else:
        pids = f"{data.get('otherPid')},{thread.pid}"
    return f"{pids},{data.get('messageSeqno')},{data.get('messageType')}"


def _ipc_phase_index(data: dict[str, Any]) -> int:
    """
    Position of a marker among the five markers of one IPC message:
    send endpoint, send transferStart, send transferEnd, receive transferEnd,
    receive endpoint. Older profiles have no phase; those are endpoints.
    """
    phase = data.get('phase')
    if data.get('direction') == 'sending':
        indexes = {None: 0, 'endpoint': 0, 'transferStart': 1, 'transferEnd': 2}
    else:
        if phase == 'transferStart':
            raise ValueError('Unexpected "transferStart" phase found on receiving side.')
        indexes = {None: 4, 'endpoint': 4, 'transferEnd': 3}
    if phase not in indexes:
        raise ValueError(f"Unhandled IPC phase type: {phase!r}")
    return indexes[phase]


def get_friendly_thread_name(thread: Thread) -> str:
    if thread.name == 'GeckoMain' and thread.process_name:
        return thread.process_name
    return thread.name


def correlate_ipc_markers(threads: Iterable[Thread]) -> IPCMarkerCorrelations:
    """
    Match the sender and receiver sides of IPC messages across threads.

    Every marker of a message gets the same shared record with the five phase
    times, both thread ids and both thread names. The endpoint markers are
    always registered; the I/O thread markers are registered only when an
    endpoint is missing, at most once per thread.
    """
    threads = list(threads)
    correlations = IPCMarkerCorrelations()
    if not any(_has_ipc_payload(thread) for thread in threads):
        return correlations

    markers_by_key: dict[str, list[Optional[tuple[Tid, int, dict[str, Any]]]]] = {}
    thread_names: dict[Tid, str] = {}
    for thread in threads:
        if thread.tid is None:
            continue
        tid = thread.tid
        thread_names[tid] = get_friendly_thread_name(thread)
        for index, data in enumerate(thread.markers.data):
            if not isinstance(data, dict) or data.get('type') != 'IPC':
                continue
            key = _ipc_message_id(thread, data)
            phase_markers = markers_by_key.setdefault(key, [None] * 5)
            phase_index = _ipc_phase_index(data)
            if phase_markers[phase_index] is None:
                phase_markers[phase_index] = (tid, index, data)
            else:
                logger.warning("Duplicate IPC marker found for key %s", key)

    def format_thread_name(tid: Optional[Tid]) -> Optional[str]:
        if tid is None or tid not in thread_names:
            return None
        return f"{thread_names[tid]} (Thread ID: {tid})"

    def phase_time(marker) -> Optional[float]:
        return marker[2].get('startTime') if marker is not None else None

    missing_counterparts = 0
    for phase_markers in markers_by_key.values():
        start_endpoint, end_endpoint = phase_markers[0], phase_markers[4]
        send_tid = start_endpoint[0] if start_endpoint else None
        recv_tid = end_endpoint[0] if end_endpoint else None
        shared_data = {
            'startTime': phase_time(start_endpoint),
            'sendStartTime': phase_time(phase_markers[1]),
            'sendEndTime': phase_time(phase_markers[2]),
            'recvEndTime': phase_time(phase_markers[3]),
            'endTime': phase_time(end_endpoint),
            'sendTid': send_tid,
            'recvTid': recv_tid,
            'sendThreadName': format_thread_name(send_tid),
            'recvThreadName': format_thread_name(recv_tid),
        }

        added_tids = set()
        for endpoint in (start_endpoint, end_endpoint):
            if endpoint is not None:
                added_tids.add(endpoint[0])
                correlations.set(endpoint[0], endpoint[1], shared_data)

        if start_endpoint is None or end_endpoint is None:
            missing_counterparts += 1
            for marker in phase_markers[1:4]:
                if marker is not None and marker[0] not in added_tids:
                    correlations.set(marker[0], marker[1], shared_data)
                    added_tids.add(marker[0])

    if missing_counterparts:
        logger.warning("%d IPC message(s) have no counterpart marker in the profiled threads",
                       missing_counterparts)
    return correlations


def _has_ipc_payload(thread: Thread) -> bool:
    return any(isinstance(data, dict) and data.get('type') == 'IPC' for data in thread.markers.data)


# ============================================================================
# Marker Derivation
# ============================================================================

@dataclass
class DerivedMarkerInfo:
    """Derived markers plus, for each, the raw marker rows it was built from."""
    markers: list[Marker] = field(default_factory=list)
    marker_index_to_raw_marker_indexes: list[list[int]] = field(default_factory=list)

    def add(self, raw_indexes: list[int], marker: Marker) -> None:
        self.marker_index_to_raw_marker_indexes.append(raw_indexes)
        self.markers.append(marker)


def _merge_interval_data(start_data: Optional[dict], end_data: Optional[dict]) -> Optional[dict]:
    if start_data is None:
        return end_data
    if end_data is None:
        return start_data
    return {**start_data, **end_data}


def _effective_phase(raw_markers: RawMarkerTable, index: int) -> int:
    """Legacy tracing payloads mark interval starts and ends in their data."""
    data = raw_markers.data[index]
    phase = raw_markers.phase[index]
    if phase == MarkerPhase.INSTANT and isinstance(data, dict) and data.get('type') == 'tracing':
        interval = data.get('interval')
        if interval == 'start':
            return MarkerPhase.INTERVAL_START
        if interval == 'end':
            return MarkerPhase.INTERVAL_END
    return phase


def _require(value: Optional[float], message: str) -> float:
    if value is None:
        raise ValueError(message)
    return value


def derive_markers_from_raw_marker_table(
    raw_markers: RawMarkerTable,
    string_table,
    thread_id: Optional[Tid],
    thread_range: tuple[float, float],
    ipc_correlations: Optional[IPCMarkerCorrelations] = None,
) -> DerivedMarkerInfo:
    """
    Build derived markers from raw rows.

    Args:
        raw_markers: Raw marker table of one thread
        string_table: The thread's string table
        thread_id: The thread's tid, used to look up IPC correlations
        thread_range: (start, end) used to clamp unpaired interval rows
        ipc_correlations: Result of correlate_ipc_markers over all threads

    Returns:
        DerivedMarkerInfo with markers in derivation order

    Raises:
        ValueError: If a row lacks the time its phase requires
    """
    if ipc_correlations is None:
        ipc_correlations = IPCMarkerCorrelations()
    range_start, range_end = thread_range
    info = DerivedMarkerInfo()
    open_interval_markers: dict[int, list[int]] = {}
    open_network_markers: dict[Any, int] = {}
    previous_screenshot_markers: dict[str, int] = {}

    def thread_id_at(index: int) -> Optional[int]:
        return raw_markers.thread_id[index]

    def add(raw_indexes: list[int], start: float, end: Optional[float], name: str,
            category: int, data: Optional[dict], incomplete: bool = False) -> None:
        info.add(raw_indexes, Marker(
            start=start,
            end=end,
            name=name,
            category=category,
            data=parse_marker_payload(data),
            thread_id=thread_id_at(raw_indexes[-1]),
            incomplete=incomplete,
        ))

    for index in range(raw_markers.length):
        name_index = raw_markers.name[index]
        name = string_table.get_string(name_index)
        start_time = raw_markers.start_time[index]
        end_time = raw_markers.end_time[index]
        data = raw_markers.data[index]
        category = raw_markers.category[index]
        data_type = data.get('type') if isinstance(data, dict) else None

        if data_type == 'Network':
            if data.get('status') == NETWORK_STATUS_START:
                open_network_markers[data.get('id')] = index
                continue
            start_index = open_network_markers.pop(data.get('id'), None)
            end_end = _require(end_time, "Network markers are assumed to have a start and end time.")
            if start_index is not None:
                start_data = raw_markers.data[start_index]
                start_start = _require(raw_markers.start_time[start_index],
                                       "Network markers are assumed to have a start and end time.")
                add([start_index, index], start_start, end_end, name, category, {
                    **data,
                    'startTime': start_start,
                    'fetchStart': _require(start_time, "Network markers are assumed to have a start time."),
                    'cause': start_data.get('cause') or data.get('cause'),
                })
            else:
                # The load started before the recording.
                start = min(range_start, _require(start_time, "Network markers are assumed to have a start time."))
                add([index], start, end_end, name, category, {
                    **data,
                    'startTime': start,
                    'fetchStart': data.get('startTime'),
                    'cause': data.get('cause'),
                }, incomplete=True)
            continue

        if data_type == 'CompositorScreenshot':
            window_id = data.get('windowID')
            previous = previous_screenshot_markers.pop(window_id, None)
            if previous is not None:
                add([previous],
                    _require(raw_markers.start_time[previous], "Expected a start time for a screenshot marker."),
                    _require(start_time, "The CompositorScreenshot is assumed to have a start time."),
                    'CompositorScreenshot', category, raw_markers.data[previous])
            if name != SCREENSHOT_WINDOW_DESTROYED:
                previous_screenshot_markers[window_id] = index
                continue
            # A destroyed window closes the previous screenshot and is kept as a regular marker.

        elif data_type == 'IPC':
            shared_data = ipc_correlations.get(thread_id if thread_id is not None else 0, index)
            if shared_data is None:
                # Another marker of this message on this thread is shown instead.
                continue
            if (data.get('direction') == 'sending' and data.get('phase') == 'transferEnd'
                    and shared_data.get('sendStartTime') is not None):
                continue
            ipc_name = 'IPCOut' if data.get('direction') == 'sending' else 'IPCIn'
            if data.get('sync'):
                ipc_name = 'Sync' + ipc_name
            start = _require(data.get('startTime'), "Expected IPC startTime to exist in the payload.")
            end = start
            incomplete = True
            if shared_data.get('startTime') is not None and shared_data.get('endTime') is not None:
                start = shared_data['startTime']
                end = shared_data['endTime']
                incomplete = False
            if data.get('direction') == 'sending':
                nice_direction = f"sent to {shared_data.get('recvThreadName') or data.get('otherPid')}"
            else:
                nice_direction = f"received from {shared_data.get('sendThreadName') or data.get('otherPid')}"
            shared_fields = {key: value for key, value in shared_data.items() if value is not None}
            add([index], start, end, ipc_name, category,
                {**data, **shared_fields, 'niceDirection': nice_direction}, incomplete=incomplete)
            continue

        phase = _effective_phase(raw_markers, index)
        if phase == MarkerPhase.INSTANT:
            add([index], _require(start_time, "An Instant marker did not have a startTime."),
                None, name, category, data)
        elif phase == MarkerPhase.INTERVAL:
            add([index], _require(start_time, "An Interval marker did not have a startTime."),
                _require(end_time, "An Interval marker did not have an endTime."), name, category, data)
        elif phase == MarkerPhase.INTERVAL_START:
            open_interval_markers.setdefault(name_index, []).append(index)
        elif phase == MarkerPhase.INTERVAL_END:
            open_for_name = open_interval_markers.get(name_index)
            start_index = open_for_name.pop() if open_for_name else None
            # Legacy tracing end rows only carry their time in start_time.
            end = _require(end_time if end_time is not None else start_time,
                           "An IntervalEnd marker did not have an endTime")
            if start_index is not None:
                add([start_index, index],
                    _require(raw_markers.start_time[start_index], "An IntervalStart marker did not have a startTime"),
                    end, name, category, _merge_interval_data(raw_markers.data[start_index], data))
            else:
                # Started before the recording; clamp to the thread start.
                add([index], min(end, range_start), end, name, category, data, incomplete=True)
        else:
            raise ValueError(f"Unhandled marker phase type: {phase!r}")

    for start_indexes in open_interval_markers.values():
        for start_index in start_indexes:
            start = _require(raw_markers.start_time[start_index], "Encountered a marker without a startTime.")
            add([start_index], start, max(range_end, start),
                string_table.get_string(raw_markers.name[start_index]),
                raw_markers.category[start_index], raw_markers.data[start_index], incomplete=True)

    for start_index in open_network_markers.values():
        start = _require(raw_markers.start_time[start_index], "Network markers are assumed to have a start time.")
        add([start_index], start, max(range_end, start),
            string_table.get_string(raw_markers.name[start_index]),
            raw_markers.category[start_index], raw_markers.data[start_index], incomplete=True)

    for previous in previous_screenshot_markers.values():
        start = _require(raw_markers.start_time[previous], "Expected a start time for a screenshot marker.")
        add([previous], start, max(range_end, start), 'CompositorScreenshot',
            raw_markers.category[previous], raw_markers.data[previous])

    return info


# ============================================================================
# Jank
# ============================================================================

def derive_jank_markers(samples: SamplesTable, threshold_ms: float, other_category: int) -> list[Marker]:
    """
    Find event-loop jank from the responsiveness column.

    Responsiveness grows while one runnable keeps the event loop busy and
    drops when it finishes. Each time it drops from a value at or above the
    threshold, a Jank marker covering the busy period is emitted.
    """
    jank_markers: list[Marker] = []
    last_responsiveness = 0.0
    last_timestamp = 0.0

    def add_marker():
        jank_markers.append(Marker(
            start=last_timestamp - last_responsiveness,
            end=last_timestamp,
            name='Jank',
            category=other_category,
            data=GenericPayload(type='Jank'),
        ))

    for index, responsiveness in enumerate(samples.responsiveness):
        if responsiveness is None:
            continue
        if responsiveness < last_responsiveness and last_responsiveness >= threshold_ms:
            add_marker()
        last_responsiveness = responsiveness
        last_timestamp = samples.time[index]
    if last_responsiveness >= threshold_ms:
        add_marker()
    return jank_markers


# ============================================================================
# Marker Filtering
# ============================================================================

def marker_overlaps_range(marker: Marker, range_start: float, range_end: float) -> bool:
    if marker.end is None:
        return range_start <= marker.start < range_end
    return marker.start < range_end and marker.end >= range_start


def filter_markers_to_range(markers: list[Marker], range_start: float, range_end: float) -> list[Marker]:
    """Instants inside [range_start, range_end) and intervals overlapping it."""
    return [marker for marker in markers if marker_overlaps_range(marker, range_start, range_end)]


def filter_raw_marker_table_to_range(
    raw_markers: RawMarkerTable,
    derived: DerivedMarkerInfo,
    range_start: float,
    range_end: float,
) -> RawMarkerTable:
    """Keep the raw rows that contribute to a derived marker overlapping the range."""
    in_range = set()
    for marker, raw_indexes in zip(derived.markers, derived.marker_index_to_raw_marker_indexes):
        if marker_overlaps_range(marker, range_start, range_end):
            in_range.update(raw_indexes)
    new_markers = RawMarkerTable()
    for index in sorted(in_range):
        new_markers.append_row(**{name: getattr(raw_markers, name)[index]
                                  for name in RawMarkerTable.column_names()})
    return new_markers


def _marker_search_fields(marker: Marker, categories: Optional[list[Category]]) -> list[str]:
    values = [marker.name]
    if categories and 0 <= marker.category < len(categories):
        values.append(categories[marker.category].name)
    if marker.data is not None:
        values.append(marker.data.type)
        for key in ('name', 'category'):
            value = getattr(marker.data, key, None)
            if isinstance(value, str):
                values.append(value)
    return values


def filter_markers_by_search(markers: list[Marker], search_string: str,
                             categories: Optional[list[Category]] = None) -> list[Marker]:
    """
    Keep markers whose name, category name, payload type, or payload
    name/category contains any comma-separated search term (case-insensitive).
    """
    terms = [term.lower() for term in split_search_string(search_string)]
    if not terms:
        return markers
    return [
        marker for marker in markers
        if any(term in value.lower() for value in _marker_search_fields(marker, categories) for term in terms)
    ]
