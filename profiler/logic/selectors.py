"""
Thread Selectors

Derived per-thread state, each step memoized on its full input tuple:

    thread
      -> committed range filter
      -> transform stack
      -> implementation filter
      -> search filter
      -> preview selection filter
      -> call node info / call tree / function list / line and address timings

Markers are derived once per thread and then filtered by the committed range,
the preview selection and the marker search.

A memoized step keeps only its most recent result. It is recomputed when any
input changed: objects (threads, tables) are compared by identity, plain
values (ranges, strings, transform tuples) by equality.
"""

from functools import wraps
from typing import Any, Callable, Optional

from ..config import ImplementationFilter, ProfilerSettings, get_settings
from ..logging_utils import get_logger
from ..marker_types import Marker
from ..profile_types import Profile, Thread, get_default_category
from .address_timings import (
    AddressTimings,
    get_address_timings,
    get_stack_address_info,
    get_stack_address_info_for_call_node,
)
from .call_tree import (
    CallNodeInfo,
    CallTree,
    FunctionListTimings,
    build_call_tree,
    compute_function_list_timings,
)
from .line_timings import (
    LineTimings,
    get_line_timings,
    get_stack_line_info,
    get_stack_line_info_for_call_node,
)
from .marker_data import (
    IPCMarkerCorrelations,
    correlate_ipc_markers,
    derive_jank_markers,
    derive_markers_from_raw_marker_table,
    extract_marker_data_from_name,
    filter_markers_by_search,
    filter_markers_to_range,
)
from .profile_data import (
    filter_thread_by_implementation,
    filter_thread_samples_to_range,
    filter_thread_to_search_strings,
    get_time_range_for_thread,
    get_time_range_including_all_threads,
    split_search_string,
)
from .transforms import (
    Transform,
    TransformStack,
    apply_transform_to_call_node_path,
    apply_transforms,
    get_transform_labels,
)

logger = get_logger(__name__)

_VALUE_TYPES = (str, int, float, bool, tuple, frozenset, type(None))


def _same_input(a: Any, b: Any) -> bool:
    if a is b:
        return True
    return type(a) is type(b) and isinstance(a, _VALUE_TYPES) and a == b


def memoize_last(func: Callable) -> Callable:
    """Cache the most recent call; any changed argument recomputes the whole result."""
    cache: dict[str, Any] = {}

    @wraps(func)
    def wrapper(*args):
        last_args = cache.get('args')
        if (last_args is not None and len(last_args) == len(args)
                and all(_same_input(a, b) for a, b in zip(args, last_args))):
            return cache['result']
        result = func(*args)
        cache['args'] = args
        cache['result'] = result
        return result

    wrapper.cache_clear = cache.clear
    return wrapper


class ThreadSelectors:
    """
    View state of one thread of a profile plus the memoized derivations over it.

    State: committed range stack, preview selection, transform stack,
    implementation filter, call tree search, marker search, inversion and the
    selected call node path. Changing state never mutates derived results;
    the next getter call recomputes what depends on the change.
    """

    def __init__(self, profile: Profile, thread_index: int, settings: Optional[ProfilerSettings] = None):
        if not 0 <= thread_index < len(profile.threads):
            raise IndexError(f"Profile has no thread {thread_index}")
        self.profile = profile
        self.thread_index = thread_index
        self.settings = settings or get_settings()

        self.committed_ranges: list[tuple[float, float]] = []
        self.preview_selection: Optional[tuple[float, float]] = None
        self.transforms: TransformStack = ()
        self.implementation: ImplementationFilter = self.settings.default_implementation
        self.search_string = ''
        self.marker_search_string = ''
        self.inverted = False
        self.selected_call_node_path: Optional[tuple[int, ...]] = None

        self._range_filter = memoize_last(filter_thread_samples_to_range)
        self._apply_transforms = memoize_last(apply_transforms)
        self._filter_implementation = memoize_last(filter_thread_by_implementation)
        self._filter_search = memoize_last(
            lambda thread, search: filter_thread_to_search_strings(thread, split_search_string(search))
        )
        self._preview_filter = memoize_last(self._filter_preview)
        self._call_tree = memoize_last(build_call_tree)
        self._function_list = memoize_last(compute_function_list_timings)
        self._line_timings = memoize_last(self._compute_line_timings)
        self._address_timings = memoize_last(self._compute_address_timings)
        self._derived_markers = memoize_last(self._derive_markers)
        self._range_markers = memoize_last(filter_markers_to_range)
        self._searched_markers = memoize_last(self._search_markers)

    # ------------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------------

    @property
    def thread(self) -> Thread:
        return self.profile.threads[self.thread_index]

    @property
    def categories(self):
        return self.profile.categories

    @property
    def default_category(self) -> int:
        return get_default_category(self.categories)

    def get_profile_root_range(self) -> tuple[float, float]:
        return get_time_range_including_all_threads(self.profile)

    def get_committed_range(self) -> tuple[float, float]:
        if self.committed_ranges:
            return self.committed_ranges[-1]
        return self.get_profile_root_range()

    def get_preview_range(self) -> tuple[float, float]:
        return self.preview_selection or self.get_committed_range()

    # ------------------------------------------------------------------------
    # State Changes
    # ------------------------------------------------------------------------

    def commit_range(self, start: float, end: float) -> None:
        """Push a committed range; the preview selection is cleared."""
        if end < start:
            raise ValueError(f"Range end {end} is before its start {start}")
        self.committed_ranges.append((start, end))
        self.preview_selection = None

    def pop_committed_ranges(self, first_popped: int) -> None:
        """Drop committed range first_popped and everything above it."""
        del self.committed_ranges[first_popped:]
        self.preview_selection = None

    def set_preview_selection(self, selection: Optional[tuple[float, float]]) -> None:
        self.preview_selection = selection

    def push_transform(self, transform: Transform) -> None:
        """Add a transform and carry the selected call node over to the new tree."""
        call_node_info = self.get_call_node_info()
        self.transforms = self.transforms + (transform,)
        if self.selected_call_node_path is not None:
            new_path = apply_transform_to_call_node_path(
                list(self.selected_call_node_path), transform, self.get_transformed_thread(), call_node_info
            )
            self.selected_call_node_path = tuple(new_path) if new_path else None

    def pop_transforms(self, first_popped: int) -> None:
        """Drop transform first_popped and everything after it."""
        self.transforms = self.transforms[:first_popped]
        self.selected_call_node_path = None

    def set_implementation(self, implementation: ImplementationFilter) -> None:
        self.implementation = implementation

    def set_search(self, search_string: str) -> None:
        self.search_string = search_string

    def set_marker_search(self, search_string: str) -> None:
        self.marker_search_string = search_string

    def set_inverted(self, inverted: bool) -> None:
        if inverted != self.inverted:
            self.inverted = inverted
            self.selected_call_node_path = None

    def select_call_node(self, path: Optional[list[int]]) -> None:
        self.selected_call_node_path = tuple(path) if path else None

    # ------------------------------------------------------------------------
    # Samples Pipeline
    # ------------------------------------------------------------------------

    def get_range_filtered_thread(self) -> Thread:
        start, end = self.get_committed_range()
        return self._range_filter(self.thread, start, end)

    def get_transformed_thread(self) -> Thread:
        return self._apply_transforms(self.get_range_filtered_thread(), self.transforms, self.default_category,
                                      self.categories)

    def get_filtered_thread(self) -> Thread:
        """Transformed, implementation filtered and search filtered."""
        thread = self._filter_implementation(self.get_transformed_thread(), self.implementation)
        return self._filter_search(thread, self.search_string)

    def _filter_preview(self, thread: Thread, selection: Optional[tuple[float, float]]) -> Thread:
        if selection is None:
            return thread
        return filter_thread_samples_to_range(thread, selection[0], selection[1])

    def get_preview_filtered_thread(self) -> Thread:
        return self._preview_filter(self.get_filtered_thread(), self.preview_selection)

    def get_call_tree(self) -> CallTree:
        return self._call_tree(self.get_preview_filtered_thread(), self.categories, self.default_category,
                               self.inverted)

    def get_call_node_info(self) -> CallNodeInfo:
        return self.get_call_tree().call_node_info

    def get_selected_call_node(self) -> Optional[int]:
        if self.selected_call_node_path is None:
            return None
        return self.get_call_node_info().get_call_node_index_from_path(list(self.selected_call_node_path))

    def get_function_list_timings(self) -> FunctionListTimings:
        return self._function_list(self.get_preview_filtered_thread())

    def get_transform_labels(self) -> list[str]:
        return get_transform_labels(self.get_range_filtered_thread(), self.transforms, self.categories)

    # ------------------------------------------------------------------------
    # Source And Assembly Views
    # ------------------------------------------------------------------------

    def _compute_line_timings(self, thread: Thread, file_name: str, call_node: Optional[int],
                              call_node_info: CallNodeInfo) -> LineTimings:
        if call_node is not None:
            info = get_stack_line_info_for_call_node(thread.stack_table, thread.frame_table, call_node, call_node_info)
        elif thread.string_table.has_string(file_name):
            info = get_stack_line_info(thread.stack_table, thread.frame_table, thread.func_table,
                                       thread.string_table.index_for_string(file_name))
        else:
            info = None
        return get_line_timings(info, thread.samples)

    def get_line_timings(self, file_name: str, for_selected_call_node: bool = False) -> LineTimings:
        """Line hits for a source file, over the whole thread or only inside the selected call node."""
        call_node = self.get_selected_call_node() if for_selected_call_node else None
        return self._line_timings(self.get_preview_filtered_thread(), file_name, call_node,
                                  self.get_call_node_info())

    def _compute_address_timings(self, thread: Thread, native_symbol: int, call_node: Optional[int],
                                 call_node_info: CallNodeInfo) -> AddressTimings:
        if call_node is not None:
            info = get_stack_address_info_for_call_node(
                thread.stack_table, thread.frame_table, call_node, call_node_info, native_symbol
            )
        else:
            info = get_stack_address_info(thread.stack_table, thread.frame_table, thread.func_table, native_symbol)
        return get_address_timings(info, thread.samples)

    def get_address_timings(self, native_symbol: int, for_selected_call_node: bool = False) -> AddressTimings:
        call_node = self.get_selected_call_node() if for_selected_call_node else None
        return self._address_timings(self.get_preview_filtered_thread(), native_symbol, call_node,
                                     self.get_call_node_info())

    # ------------------------------------------------------------------------
    # Markers
    # ------------------------------------------------------------------------

    def get_ipc_correlations(self) -> IPCMarkerCorrelations:
        return _correlations_for_threads(tuple(self.profile.threads))

    def _derive_markers(self, thread: Thread, correlations: IPCMarkerCorrelations,
                        interval: float) -> list[Marker]:
        thread = extract_marker_data_from_name(thread)
        thread_range = get_time_range_for_thread(thread, interval)
        derived = derive_markers_from_raw_marker_table(
            thread.markers, thread.string_table, thread.tid, thread_range, correlations
        )
        jank = derive_jank_markers(thread.samples, self.settings.jank_threshold_ms, self.default_category)
        return sorted(derived.markers + jank, key=lambda marker: marker.start)

    def get_full_marker_list(self) -> list[Marker]:
        return self._derived_markers(self.thread, self.get_ipc_correlations(), self.profile.meta.interval)

    def get_committed_range_markers(self) -> list[Marker]:
        start, end = self.get_committed_range()
        return self._range_markers(self.get_full_marker_list(), start, end)

    def _search_markers(self, markers: list[Marker], search_string: str) -> list[Marker]:
        return filter_markers_by_search(markers, search_string, self.categories)

    def get_searched_markers(self) -> list[Marker]:
        markers = self.get_committed_range_markers()
        if self.preview_selection is not None:
            markers = filter_markers_to_range(markers, *self.preview_selection)
        return self._searched_markers(markers, self.marker_search_string)


@memoize_last
def _correlations_for_threads(threads: tuple[Thread, ...]) -> IPCMarkerCorrelations:
    return correlate_ipc_markers(threads)
