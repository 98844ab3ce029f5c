"""
Profile Query Adapter

A small command surface over a loaded profile, meant for scripted or
LLM-driven exploration:

- timestamp names: short, hierarchical names for points in time that can be
  quoted back in range tokens
- a view range stack: push "<start>,<end>", pop, clear
- summaries: profile_info(), thread_samples(), thread_markers()

Range token values:
    2.5        seconds from the root range start
    2500ms     milliseconds from the root range start
    25%        percentage of the root range
    ts-K       a timestamp name previously returned by the querier

Results are pydantic models; dump them with model_dump(by_alias=True) for the
camelCase wire shape.
"""

import math
import re
from bisect import bisect_right
from pathlib import Path
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .config import ProfilerSettings, get_settings
from .logging_utils import get_logger
from .logic.call_tree import CallTree
from .logic.marker_data import get_friendly_thread_name
from .logic.profile_data import get_time_range_including_all_threads
from .logic.selectors import ThreadSelectors
from .profile_loader import load_profile
from .profile_types import Profile, Thread

logger = get_logger(__name__)


class RangeParseError(Exception):
    """A range token or view range operation could not be applied."""
    pass


# ============================================================================
# Timestamp Names
# ============================================================================

def _make_chars() -> list[str]:
    """0-9, then lower and upper case letters interleaved: a A b B ... z Z."""
    chars = [str(digit) for digit in range(10)]
    for offset in range(26):
        chars.append(chr(ord('a') + offset))
        chars.append(chr(ord('A') + offset))
    return chars


CHARS = _make_chars()
MARKS_PER_LEVEL = len(CHARS)


class _TimestampMark:
    """
    One named point in time. Children subdivide the span up to the next mark
    and are created only when a timestamp between two marks is requested.
    """

    def __init__(self, index: int, timestamp: float):
        self.index = index
        self.timestamp = timestamp
        self._children: Optional[list['_TimestampMark']] = None

    def name_for_timestamp(self, ts: float, end: float, prefix: str) -> str:
        start = self.timestamp
        if ts < start or ts > end:
            raise ValueError(f"Timestamp {ts} outside [{start}, {end}]")
        if ts == start:
            return prefix
        if ts == end:
            return prefix + CHARS[MARKS_PER_LEVEL - 1]
        if self._children is None:
            self._children = [_TimestampMark(0, start), _TimestampMark(MARKS_PER_LEVEL - 1, end)]

        i = bisect_right([child.timestamp for child in self._children], ts) - 1
        left = self._children[i]
        right = self._children[i + 1]
        if ts == left.timestamp:
            return prefix + CHARS[left.index]
        index_delta = right.index - left.index
        if index_delta == 1:
            # No free index between the two marks: drill into the left one.
            return left.name_for_timestamp(ts, right.timestamp, prefix + CHARS[left.index])

        relative = (ts - left.timestamp) / (right.timestamp - left.timestamp)
        item_index = left.index + 1 + math.floor(relative * (index_delta - 1))
        self._children.insert(i + 1, _TimestampMark(item_index, ts))
        return prefix + CHARS[item_index]


class TimestampManager:
    """
    Mints compact names for timestamps and resolves them back.

    For a root range [1000, 2000]:
        1000 -> ts-0, 2000 -> ts-Z, 1500 -> ts-K
        500  -> ts<0K (first bucket before the range)
        2500 -> ts>0K (first bucket after the range)

    Bucket n before the range covers [start - 2^n * length, start - 2^(n-1) * length]
    (bucket 0 ends at start); buckets after the range mirror that.
    """

    def __init__(self, root_range: tuple[float, float]):
        self.root_start, self.root_end = root_range
        # A zero-length root range still needs a unit for the buckets.
        self.root_length = (self.root_end - self.root_start) or 1.0
        self._main_tree = _TimestampMark(0, self.root_start)
        self._before_buckets: dict[int, _TimestampMark] = {}
        self._after_buckets: dict[int, _TimestampMark] = {}
        self._name_to_timestamp: dict[str, float] = {}

    def name_for_timestamp(self, ts: float) -> str:
        for name, cached in self._name_to_timestamp.items():
            if cached == ts:
                return name

        if ts == self.root_start:
            name = 'ts-0'
        elif ts == self.root_end:
            name = 'ts-Z'
        elif ts < self.root_start:
            bucket_number = self._bucket_number(self.root_start - ts)
            bucket = self._before_buckets.get(bucket_number)
            if bucket is None:
                bucket_start = self.root_start - 2 ** bucket_number * self.root_length
                bucket = self._before_buckets[bucket_number] = _TimestampMark(0, bucket_start)
            bucket_end = (
                self.root_start if bucket_number == 0
                else self.root_start - 2 ** (bucket_number - 1) * self.root_length
            )
            name = bucket.name_for_timestamp(ts, bucket_end, f"ts<{bucket_number}")
        elif ts > self.root_end:
            bucket_number = self._bucket_number(ts - self.root_end)
            bucket = self._after_buckets.get(bucket_number)
            if bucket is None:
                bucket_start = (
                    self.root_end if bucket_number == 0
                    else self.root_end + 2 ** (bucket_number - 1) * self.root_length
                )
                bucket = self._after_buckets[bucket_number] = _TimestampMark(0, bucket_start)
            bucket_end = self.root_end + 2 ** bucket_number * self.root_length
            name = bucket.name_for_timestamp(ts, bucket_end, f"ts>{bucket_number}")
        else:
            name = self._main_tree.name_for_timestamp(ts, self.root_end, 'ts-')

        self._name_to_timestamp[name] = ts
        return name

    def timestamp_for_name(self, name: str) -> Optional[float]:
        """Only names handed out by name_for_timestamp resolve."""
        return self._name_to_timestamp.get(name)

    def timestamp_string(self, ts: float) -> str:
        return format_milliseconds(ts - self.root_start)

    def _bucket_number(self, distance: float) -> int:
        ratio = distance / self.root_length
        if ratio <= 1:
            return 0
        return math.ceil(math.log2(ratio))


def format_milliseconds(ms: float) -> str:
    if abs(ms) >= 1000:
        return f"{ms / 1000:.3f}".rstrip('0').rstrip('.') + 's'
    return f"{ms:.3f}".rstrip('0').rstrip('.') + 'ms'


# ============================================================================
# Range Tokens
# ============================================================================

TIME_VALUE_RE = re.compile(r'^(-?\d+(?:\.\d+)?|-?\.\d+)(ms|%|s)?$')


def parse_time_value(token: str, root_range: tuple[float, float]) -> Optional[float]:
    """
    Parse one side of a range token into an absolute timestamp.

    Returns:
        The timestamp, or None when the token is a timestamp name that the
        caller has to look up.

    Raises:
        RangeParseError: Token is neither a number with a known unit nor a
            timestamp name
    """
    token = token.strip()
    if token.startswith('ts'):
        return None
    match = TIME_VALUE_RE.match(token)
    if not match:
        raise RangeParseError(f"Invalid time value: {token!r}")
    value = float(match.group(1))
    unit = match.group(2) or 's'
    start, end = root_range
    if unit == 'ms':
        return start + value
    if unit == '%':
        return start + (end - start) * value / 100
    return start + value * 1000


# ============================================================================
# Result Models
# ============================================================================

class _Result(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class NamedRange(_Result):
    start: float
    start_name: str = Field(alias='startName')
    end: float
    end_name: str = Field(alias='endName')


class SessionContext(_Result):
    selected_thread_handle: str = Field(alias='selectedThreadHandle')
    selected_thread_name: str = Field(alias='selectedThreadName')
    current_view_range: Optional[NamedRange] = Field(default=None, alias='currentViewRange')
    root_range: tuple[float, float] = Field(alias='rootRange')


class ViewRangeResult(_Result):
    type: Literal['view-range'] = 'view-range'
    action: Literal['push', 'pop']
    range: NamedRange
    message: str
    duration: Optional[float] = None
    zoom_depth: int = Field(alias='zoomDepth')


class FunctionSummary(_Result):
    function_index: int = Field(alias='functionIndex')
    name: str
    name_with_library: str = Field(alias='nameWithLibrary')
    total_samples: float = Field(alias='totalSamples')
    total_percentage: float = Field(alias='totalPercentage')
    self_samples: float = Field(alias='selfSamples')
    self_percentage: float = Field(alias='selfPercentage')


class HeaviestStack(_Result):
    self_samples: float = Field(default=0, alias='selfSamples')
    frame_count: int = Field(default=0, alias='frameCount')
    frames: list[FunctionSummary] = Field(default_factory=list)


class ThreadSamplesResult(_Result):
    type: Literal['thread-samples'] = 'thread-samples'
    thread_handle: str = Field(alias='threadHandle')
    friendly_thread_name: str = Field(alias='friendlyThreadName')
    top_functions_by_total: list[FunctionSummary] = Field(alias='topFunctionsByTotal')
    top_functions_by_self: list[FunctionSummary] = Field(alias='topFunctionsBySelf')
    heaviest_stack: HeaviestStack = Field(alias='heaviestStack')
    context: SessionContext


class ThreadSummary(_Result):
    thread_index: int = Field(alias='threadIndex')
    thread_handle: str = Field(alias='threadHandle')
    name: str
    cpu_ms: float = Field(alias='cpuMs')


class ProcessSummary(_Result):
    pid: str
    name: str
    cpu_ms: float = Field(alias='cpuMs')
    start_time: Optional[float] = Field(default=None, alias='startTime')
    start_time_name: Optional[str] = Field(default=None, alias='startTimeName')
    end_time: Optional[float] = Field(default=None, alias='endTime')
    end_time_name: Optional[str] = Field(default=None, alias='endTimeName')
    threads: list[ThreadSummary] = Field(default_factory=list)


class ProfileInfoResult(_Result):
    type: Literal['profile-info'] = 'profile-info'
    name: str
    thread_count: int = Field(alias='threadCount')
    process_count: int = Field(alias='processCount')
    processes: list[ProcessSummary]
    context: SessionContext


class MarkerGroup(_Result):
    name: str
    count: int
    total_duration: float = Field(alias='totalDuration')
    max_duration: float = Field(alias='maxDuration')


class ThreadMarkersResult(_Result):
    type: Literal['thread-markers'] = 'thread-markers'
    thread_handle: str = Field(alias='threadHandle')
    total_count: int = Field(alias='totalCount')
    groups: list[MarkerGroup]
    context: SessionContext


# ============================================================================
# Querier
# ============================================================================

class ProfileQuerier:
    """
    Stateful query session over one profile.

    The view range stack is shared by all threads; the selected thread
    decides which thread the sample and marker summaries describe.
    """

    def __init__(self, profile: Profile, settings: Optional[ProfilerSettings] = None):
        if not profile.threads:
            raise ValueError("Profile has no threads")
        self.profile = profile
        self.settings = settings or get_settings()
        self.root_range = get_time_range_including_all_threads(profile)
        self.timestamps = TimestampManager(self.root_range)
        self._committed_ranges: list[tuple[float, float]] = []
        self._selectors: dict[int, ThreadSelectors] = {}
        self.selected_thread_index = next(
            (index for index, thread in enumerate(profile.threads) if thread.is_main_thread), 0
        )

    @classmethod
    def load(cls, path: Union[str, Path], settings: Optional[ProfilerSettings] = None) -> 'ProfileQuerier':
        return cls(load_profile(path), settings)

    # ------------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------------

    def _thread_index_for(self, thread: Union[None, int, str]) -> int:
        if thread is None:
            return self.selected_thread_index
        if isinstance(thread, str):
            match = re.fullmatch(r't-(\d+)', thread.strip())
            if not match:
                raise ValueError(f"Invalid thread handle: {thread!r}")
            thread = int(match.group(1))
        if not 0 <= thread < len(self.profile.threads):
            raise ValueError(f"Unknown thread {thread}")
        return thread

    def selectors_for(self, thread: Union[None, int, str] = None) -> ThreadSelectors:
        thread_index = self._thread_index_for(thread)
        selectors = self._selectors.get(thread_index)
        if selectors is None:
            selectors = ThreadSelectors(self.profile, thread_index, self.settings)
            self._selectors[thread_index] = selectors
        selectors.committed_ranges = self._committed_ranges
        return selectors

    def select_thread(self, thread: Union[int, str]) -> str:
        thread_index = self._thread_index_for(thread)
        self.selected_thread_index = thread_index
        return f"Selected thread: t-{thread_index} ({self.profile.threads[thread_index].name})"

    # ------------------------------------------------------------------------
    # View Ranges
    # ------------------------------------------------------------------------

    def _named_range(self, start: float, end: float) -> NamedRange:
        return NamedRange(
            start=start,
            start_name=self.timestamps.name_for_timestamp(start),
            end=end,
            end_name=self.timestamps.name_for_timestamp(end),
        )

    def _resolve_time(self, token: str) -> float:
        value = parse_time_value(token, self.root_range)
        if value is not None:
            return value
        value = self.timestamps.timestamp_for_name(token.strip())
        if value is None:
            raise RangeParseError(f"Unknown timestamp name: {token.strip()!r}")
        return value

    def _describe(self, named: NamedRange) -> str:
        return (f"{named.start_name} ({self.timestamps.timestamp_string(named.start)}) to "
                f"{named.end_name} ({self.timestamps.timestamp_string(named.end)})")

    def push_view_range(self, range_token: str) -> ViewRangeResult:
        """
        Commit a range given as "<start>,<end>".

        Raises:
            RangeParseError: Malformed token, unknown timestamp name or an
                end before the start
        """
        parts = [part.strip() for part in range_token.split(',')]
        if len(parts) != 2:
            raise RangeParseError(
                f"Invalid range format: {range_token!r}. Expected two comma-separated values, e.g. '2.7,3.1' or 'ts-6,ts-7'"
            )
        start = self._resolve_time(parts[0])
        end = self._resolve_time(parts[1])
        if end < start:
            raise RangeParseError(f"Range end {parts[1]!r} is before its start {parts[0]!r}")

        self._committed_ranges.append((start, end))
        named = self._named_range(start, end)
        logger.debug("Pushed view range %s", named)
        return ViewRangeResult(
            action='push',
            range=named,
            message=f"Pushed view range: {self._describe(named)}",
            duration=end - start,
            zoom_depth=len(self._committed_ranges),
        )

    def pop_view_range(self) -> ViewRangeResult:
        if not self._committed_ranges:
            raise RangeParseError("No view ranges to pop")
        start, end = self._committed_ranges.pop()
        named = self._named_range(start, end)
        return ViewRangeResult(
            action='pop',
            range=named,
            message=f"Popped view range: {self._describe(named)}",
            zoom_depth=len(self._committed_ranges),
        )

    def clear_view_range(self) -> ViewRangeResult:
        if not self._committed_ranges:
            raise RangeParseError("No view ranges to clear")
        self._committed_ranges.clear()
        named = self._named_range(*self.root_range)
        return ViewRangeResult(
            action='pop',
            range=named,
            message=f"Cleared all view ranges, returned to full profile: {self._describe(named)}",
            zoom_depth=0,
        )

    def context(self) -> SessionContext:
        current = None
        if self._committed_ranges:
            current = self._named_range(*self._committed_ranges[-1])
        return SessionContext(
            selected_thread_handle=f"t-{self.selected_thread_index}",
            selected_thread_name=self.profile.threads[self.selected_thread_index].name,
            current_view_range=current,
            root_range=self.root_range,
        )

    # ------------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------------

    def _func_display_name(self, thread: Thread, func_index: int) -> tuple[str, str]:
        name = thread.string_table.get_string(thread.func_table.name[func_index])
        resource = thread.func_table.resource[func_index]
        if resource is not None and 0 <= resource < thread.resource_table.length:
            lib_index = thread.resource_table.lib[resource]
            libs = thread.libs or self.profile.libs
            if lib_index is not None and 0 <= lib_index < len(libs):
                return name, f"{libs[lib_index].name}!{name}"
        return name, name

    def _function_summary(self, thread: Thread, func_index: int, total: float, self_time: float,
                          root_total: float) -> FunctionSummary:
        name, name_with_library = self._func_display_name(thread, func_index)
        return FunctionSummary(
            function_index=func_index,
            name=name,
            name_with_library=name_with_library,
            total_samples=total,
            total_percentage=total / root_total * 100 if root_total else 0.0,
            self_samples=self_time,
            self_percentage=self_time / root_total * 100 if root_total else 0.0,
        )

    def _heaviest_stack(self, call_tree: CallTree) -> HeaviestStack:
        roots = call_tree.get_roots()
        if not roots:
            return HeaviestStack()
        path = call_tree.find_heaviest_path(roots[0])
        info = call_tree.call_node_info
        frames = []
        for depth in range(len(path)):
            node = info.get_call_node_index_from_path(path[:depth + 1])
            data = call_tree.get_node_data(node)
            frames.append(self._function_summary(
                call_tree.thread, path[depth], data.total, data.self_time, call_tree.timings.root_total
            ))
        return HeaviestStack(
            self_samples=frames[-1].self_samples if frames else 0,
            frame_count=len(frames),
            frames=frames,
        )

    def thread_samples(self, thread: Union[None, int, str] = None) -> ThreadSamplesResult:
        """Top functions by total and self time plus the heaviest stack of the thread."""
        selectors = self.selectors_for(thread)
        filtered = selectors.get_preview_filtered_thread()
        timings = selectors.get_function_list_timings()
        limit = self.settings.top_functions_limit

        functions = [
            self._function_summary(filtered, func, timings.total[func], timings.self_time[func], timings.root_total)
            for func in range(filtered.func_table.length)
            if timings.total[func] or timings.self_time[func]
        ]
        by_total = sorted(functions, key=lambda f: -f.total_samples)[:limit]
        by_self = sorted(functions, key=lambda f: -f.self_samples)[:limit]

        return ThreadSamplesResult(
            thread_handle=f"t-{selectors.thread_index}",
            friendly_thread_name=get_friendly_thread_name(selectors.thread),
            top_functions_by_total=by_total,
            top_functions_by_self=by_self,
            heaviest_stack=self._heaviest_stack(selectors.get_call_tree()),
            context=self.context(),
        )

    def thread_markers(self, thread: Union[None, int, str] = None, search: str = '') -> ThreadMarkersResult:
        """Markers in the current view range grouped by name, most frequent first."""
        selectors = self.selectors_for(thread)
        selectors.set_marker_search(search)
        markers = selectors.get_searched_markers()

        groups: dict[str, MarkerGroup] = {}
        for marker in markers:
            duration = marker.duration or 0.0
            group = groups.get(marker.name)
            if group is None:
                groups[marker.name] = MarkerGroup(
                    name=marker.name, count=1, total_duration=duration, max_duration=duration
                )
            else:
                group.count += 1
                group.total_duration += duration
                group.max_duration = max(group.max_duration, duration)

        return ThreadMarkersResult(
            thread_handle=f"t-{selectors.thread_index}",
            total_count=len(markers),
            groups=sorted(groups.values(), key=lambda g: (-g.count, g.name)),
            context=self.context(),
        )

    def _thread_cpu_ms(self, thread: Thread) -> float:
        samples = thread.samples
        if samples.weight_type != 'samples':
            return 0.0
        return sum(samples.weight_for(index) for index in range(samples.length)) * self.profile.meta.interval

    def profile_info(self) -> ProfileInfoResult:
        """Processes and their threads, in order of first appearance."""
        processes: dict[str, ProcessSummary] = {}
        for thread_index, thread in enumerate(self.profile.threads):
            pid = str(thread.pid)
            process = processes.get(pid)
            if process is None:
                shutdown = thread.process_shutdown_time
                process = processes[pid] = ProcessSummary(
                    pid=pid,
                    name=thread.process_name or thread.process_type or 'unknown',
                    cpu_ms=0.0,
                    start_time=thread.process_startup_time,
                    start_time_name=self.timestamps.name_for_timestamp(thread.process_startup_time),
                    end_time=shutdown,
                    end_time_name=self.timestamps.name_for_timestamp(shutdown) if shutdown is not None else None,
                )
            cpu_ms = self._thread_cpu_ms(thread)
            process.cpu_ms += cpu_ms
            process.threads.append(ThreadSummary(
                thread_index=thread_index,
                thread_handle=f"t-{thread_index}",
                name=thread.name,
                cpu_ms=cpu_ms,
            ))

        return ProfileInfoResult(
            name=self.profile.meta.product or 'Unknown Profile',
            thread_count=len(self.profile.threads),
            process_count=len(processes),
            processes=list(processes.values()),
            context=self.context(),
        )
