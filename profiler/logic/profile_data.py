"""
Thread Data Helpers

Operations over a Thread's tables shared by the call tree, the transforms and
the selectors: rewriting sample stacks, implementation filtering, search
filtering, range filtering, recursion checks and native allocation views.

All functions are pure: they return new tables or threads and never modify
their inputs.
"""

from bisect import bisect_left
from dataclasses import replace
from typing import Callable, Iterable, Optional

from ..config import ImplementationFilter
from ..profile_types import NativeAllocationsTable, Profile, SamplesTable, StackTable, Thread

StackUpdater = Callable[[Optional[int]], Optional[int]]


# ============================================================================
# Stack Rewriting
# ============================================================================

def update_thread_stacks(thread: Thread, new_stack_table: StackTable, convert_stack: StackUpdater) -> Thread:
    """
    Swap in a new stack table and remap every stack reference.

    Args:
        thread: Source thread
        new_stack_table: Stack table the converted indexes point into
        convert_stack: Maps an old stack index (or None) to a new one (or None)

    Returns:
        New Thread; samples and marker cause stacks are remapped
    """
    samples = replace(
        thread.samples.copy(),
        stack=[convert_stack(stack) for stack in thread.samples.stack],
    )

    markers = thread.markers
    if any(_cause_stack(data) is not None for data in markers.data):
        new_data = []
        for data in markers.data:
            old_stack = _cause_stack(data)
            if old_stack is None:
                new_data.append(data)
            else:
                new_data.append({**data, 'cause': {**data['cause'], 'stack': convert_stack(old_stack)}})
        markers = replace(markers.copy(), data=new_data)

    return replace(thread, stack_table=new_stack_table, samples=samples, markers=markers)


def _cause_stack(data) -> Optional[int]:
    if isinstance(data, dict):
        cause = data.get('cause')
        if isinstance(cause, dict):
            return cause.get('stack')
    return None


def get_map_stack_updater(old_stack_to_new_stack: dict[Optional[int], Optional[int]]) -> StackUpdater:
    """Stack updater backed by a dict; stacks missing from the dict become None."""
    def convert(stack: Optional[int]) -> Optional[int]:
        if stack is None:
            return None
        return old_stack_to_new_stack.get(stack)
    return convert


# ============================================================================
# Implementation Filter
# ============================================================================

def func_matches_implementation(thread: Thread, func_index: int, implementation: ImplementationFilter) -> bool:
    """
    combined: every function.
    js: JS functions and the native functions marked relevant for JS.
    cpp: native functions, except unsymbolicated JIT addresses (no resource
    and a name starting with 0x).
    """
    if implementation == 'combined':
        return True
    func_table = thread.func_table
    if implementation == 'js':
        return func_table.is_js[func_index] or func_table.relevant_for_js[func_index]
    if implementation == 'cpp':
        if func_table.is_js[func_index]:
            return False
        name = thread.string_table.get_string(func_table.name[func_index])
        return not (func_table.resource[func_index] == -1 and name.startswith('0x'))
    raise ValueError(f"Unknown implementation filter: {implementation!r}")


def filter_thread_by_implementation(thread: Thread, implementation: ImplementationFilter) -> Thread:
    """Remove the frames of functions that do not match the implementation filter."""
    if implementation == 'combined':
        return thread
    return _filter_thread_by_func(
        thread, lambda func: func_matches_implementation(thread, func, implementation)
    )


def _filter_thread_by_func(thread: Thread, keep_func: Callable[[int], bool]) -> Thread:
    stack_table = thread.stack_table
    frame_func = thread.frame_table.func
    new_stack_table = StackTable()
    old_stack_to_new_stack: dict[Optional[int], Optional[int]] = {None: None}
    existing: dict[tuple[Optional[int], int], int] = {}

    for stack_index in range(stack_table.length):
        prefix = stack_table.prefix[stack_index]
        frame = stack_table.frame[stack_index]
        new_prefix = old_stack_to_new_stack[prefix]
        if keep_func(frame_func[frame]):
            key = (new_prefix, frame)
            new_stack = existing.get(key)
            if new_stack is None:
                new_stack = new_stack_table.append_row(
                    frame=frame,
                    prefix=new_prefix,
                    category=stack_table.category[stack_index],
                    subcategory=stack_table.subcategory[stack_index],
                )
                existing[key] = new_stack
            old_stack_to_new_stack[stack_index] = new_stack
        else:
            old_stack_to_new_stack[stack_index] = new_prefix

    return update_thread_stacks(thread, new_stack_table, get_map_stack_updater(old_stack_to_new_stack))


# ============================================================================
# Search Filter
# ============================================================================

def compute_func_matches_search(thread: Thread, search_string: str) -> list[bool]:
    """Case-insensitive substring match on function name, file name or resource name."""
    needle = search_string.lower()
    func_table = thread.func_table
    strings = thread.string_table
    matches = []
    for func in range(func_table.length):
        if needle in strings.get_string(func_table.name[func]).lower():
            matches.append(True)
            continue
        file_name = func_table.file_name[func]
        if file_name is not None and needle in strings.get_string(file_name).lower():
            matches.append(True)
            continue
        resource = func_table.resource[func]
        if resource >= 0:
            resource_name = strings.get_string(thread.resource_table.name[resource])
            if needle in resource_name.lower():
                matches.append(True)
                continue
        matches.append(False)
    return matches


def filter_thread_to_search_string(thread: Thread, search_string: str) -> Thread:
    """Drop every sample whose stack has no function matching the search string."""
    if not search_string:
        return thread
    func_matches = compute_func_matches_search(thread, search_string)
    stack_table = thread.stack_table
    frame_func = thread.frame_table.func
    stack_matches: list[bool] = []
    for stack_index in range(stack_table.length):
        prefix = stack_table.prefix[stack_index]
        matched = func_matches[frame_func[stack_table.frame[stack_index]]] or (
            prefix is not None and stack_matches[prefix]
        )
        stack_matches.append(matched)

    samples = replace(
        thread.samples.copy(),
        stack=[stack if stack is not None and stack_matches[stack] else None
               for stack in thread.samples.stack],
    )
    return replace(thread, samples=samples)


def filter_thread_to_search_strings(thread: Thread, search_strings: Optional[Iterable[str]]) -> Thread:
    """Apply several search strings in sequence; a sample must match all of them."""
    if not search_strings:
        return thread
    for search_string in search_strings:
        thread = filter_thread_to_search_string(thread, search_string)
    return thread


def split_search_string(search_string: str) -> list[str]:
    """Split a comma-separated search box value into its non-empty terms."""
    return [term.strip() for term in search_string.split(',') if term.strip()]


# ============================================================================
# Range Filter
# ============================================================================

def get_sample_index_range(samples: SamplesTable, range_start: float, range_end: float) -> tuple[int, int]:
    """Half-open index range of the samples with range_start <= time < range_end."""
    return bisect_left(samples.time, range_start), bisect_left(samples.time, range_end)


def filter_thread_samples_to_range(thread: Thread, range_start: float, range_end: float) -> Thread:
    """
    Keep the samples with range_start <= time < range_end.

    Markers are not touched here; derived markers are filtered by overlap in
    marker_data.filter_markers_to_range, after start/end pairing.
    """
    begin, end = get_sample_index_range(thread.samples, range_start, range_end)
    samples = thread.samples
    new_samples = replace(
        samples,
        stack=samples.stack[begin:end],
        time=samples.time[begin:end],
        responsiveness=samples.responsiveness[begin:end],
        weight=samples.weight[begin:end] if samples.weight is not None else None,
    )
    return replace(thread, samples=new_samples)


def get_time_range_for_thread(thread: Thread, interval: float) -> tuple[float, float]:
    """
    Start and end of the thread's recorded data.

    Samples count until one interval after the last sample. Marker times
    extend the range. An empty thread yields (0, 0).
    """
    start = float('inf')
    end = float('-inf')
    times = thread.samples.time
    if times:
        start = times[0]
        end = times[-1] + interval
    for marker_time in list(thread.markers.start_time) + list(thread.markers.end_time):
        if marker_time is None:
            continue
        start = min(start, marker_time)
        end = max(end, marker_time)
    if start == float('inf'):
        return 0.0, 0.0
    return start, end


def get_time_range_including_all_threads(profile: Profile) -> tuple[float, float]:
    start = float('inf')
    end = float('-inf')
    for thread in profile.threads:
        if not thread.samples.time and thread.markers.length == 0:
            continue
        thread_start, thread_end = get_time_range_for_thread(thread, profile.meta.interval)
        start = min(start, thread_start)
        end = max(end, thread_end)
    if start == float('inf'):
        return 0.0, 0.0
    return start, end


# ============================================================================
# Recursion Checks
# ============================================================================

def func_has_recursive_call(thread: Thread, func_index: int) -> bool:
    """True when some stack calls func_index while func_index is already on it."""
    stack_table = thread.stack_table
    frame_func = thread.frame_table.func
    contains_func: list[bool] = []
    for stack_index in range(stack_table.length):
        prefix = stack_table.prefix[stack_index]
        prefix_contains = prefix is not None and contains_func[prefix]
        is_func = frame_func[stack_table.frame[stack_index]] == func_index
        if is_func and prefix_contains:
            return True
        contains_func.append(is_func or prefix_contains)
    return False


def func_has_direct_recursive_call(
    thread: Thread,
    func_index: int,
    implementation: ImplementationFilter = 'combined',
) -> bool:
    """
    True when func_index directly calls itself. Frames that do not match the
    implementation filter are skipped, so Ajs -> Xcpp -> Ajs is direct under js.
    """
    stack_table = thread.stack_table
    frame_func = thread.frame_table.func
    # Nearest function on each stack that matches the implementation filter.
    nearest_func: list[Optional[int]] = []
    for stack_index in range(stack_table.length):
        prefix = stack_table.prefix[stack_index]
        func = frame_func[stack_table.frame[stack_index]]
        parent_func = nearest_func[prefix] if prefix is not None else None
        if func_matches_implementation(thread, func, implementation):
            if func == func_index and parent_func == func_index:
                return True
            nearest_func.append(func)
        else:
            nearest_func.append(parent_func)
    return False


# ============================================================================
# Native Allocations
# ============================================================================

class UnbalancedAllocationsError(Exception):
    """Raised when retained memory is requested for allocations without memory addresses."""
    pass


def filter_to_allocations(native_allocations: NativeAllocationsTable) -> NativeAllocationsTable:
    """Keep only allocation rows (positive weight); deallocations lose their stack."""
    return replace(
        native_allocations.copy(),
        stack=[stack if weight > 0 else None
               for stack, weight in zip(native_allocations.stack, native_allocations.weight)],
    )


def filter_to_deallocations(native_allocations: NativeAllocationsTable) -> NativeAllocationsTable:
    """Keep only deallocation rows (negative weight)."""
    return replace(
        native_allocations.copy(),
        stack=[stack if weight < 0 else None
               for stack, weight in zip(native_allocations.stack, native_allocations.weight)],
    )


def filter_to_retained_allocations(native_allocations: NativeAllocationsTable) -> NativeAllocationsTable:
    """
    Keep only allocations that were never freed.

    A deallocation cancels the latest allocation at the same memory address;
    both rows lose their stack.

    Raises:
        UnbalancedAllocationsError: If the table has no memory addresses
    """
    if not native_allocations.is_balanced:
        raise UnbalancedAllocationsError(
            "Retained memory needs balanced allocations with memory addresses"
        )
    stacks = list(native_allocations.stack)
    live_allocation_at_address: dict[int, int] = {}
    for index, (weight, address) in enumerate(zip(native_allocations.weight, native_allocations.memory_address)):
        if weight >= 0:
            live_allocation_at_address[address] = index
            continue
        stacks[index] = None
        allocation = live_allocation_at_address.pop(address, None)
        if allocation is not None:
            stacks[allocation] = None
    return replace(native_allocations.copy(), stack=stacks)


def thread_with_allocations_as_samples(thread: Thread, native_allocations: NativeAllocationsTable) -> Thread:
    """Replace the thread's samples by allocation rows weighted in bytes, for building call trees."""
    samples = SamplesTable(
        stack=list(native_allocations.stack),
        time=list(native_allocations.time),
        responsiveness=[None] * native_allocations.length,
        weight=list(native_allocations.weight),
        weight_type='bytes',
    )
    return replace(thread, samples=samples)
