"""
Profile Merging and Comparison

Merges the tables of several threads, possibly from different profiles, into
one consolidated table set. Each input thread gets a TranslationMaps record
mapping its old row indexes to the merged ones, and every foreign key of the
dependent tables is rewritten through those maps:

    Category -> by name (subcategories by name within a category)
    Lib      -> by name + debug name
    Resource -> by lib + name + host + type
    Func     -> by name + resource + file name
    Frame    -> by func + category + subcategory + implementation, plus the
                frame's own address, inline depth, native symbol, line, column
    Stack    -> by prefix + frame

merge_profiles_for_diffing builds a comparison profile from two (or more)
profiles; merge_threads unifies threads of one profile.
"""

from dataclasses import dataclass, field, replace
from typing import Optional, Sequence

from ..logging_utils import get_logger
from ..profile_types import (
    Category,
    FrameTable,
    FuncTable,
    Lib,
    NativeSymbolTable,
    Profile,
    ProfileMeta,
    RawMarkerTable,
    ResourceTable,
    SamplesTable,
    StackTable,
    Thread,
)
from ..string_table import StringTable
from .marker_data import correlate_ipc_markers, derive_markers_from_raw_marker_table, filter_raw_marker_table_to_range
from .profile_data import (
    filter_thread_samples_to_range,
    get_time_range_for_thread,
    get_time_range_including_all_threads,
)

logger = get_logger(__name__)

COMPARISON_THREAD_NAME = 'Diff between 1 and 2'
MERGED_THREAD_NAME = 'Merged thread'


# ============================================================================
# Translation Maps
# ============================================================================

@dataclass
class TranslationMaps:
    """Old index -> merged index, per table, for one source thread."""
    categories: list[int] = field(default_factory=list)
    # subcategories[old_category][old_subcategory] -> merged subcategory
    subcategories: list[list[int]] = field(default_factory=list)
    strings: list[int] = field(default_factory=list)
    libs: list[int] = field(default_factory=list)
    resources: list[int] = field(default_factory=list)
    native_symbols: list[int] = field(default_factory=list)
    funcs: list[int] = field(default_factory=list)
    frames: list[int] = field(default_factory=list)
    stacks: list[int] = field(default_factory=list)

    def category(self, old: Optional[int]) -> Optional[int]:
        if old is None or not self.categories:
            return old
        return self.categories[old]

    def subcategory(self, old_category: Optional[int], old: Optional[int]) -> Optional[int]:
        if old is None or old_category is None or not self.subcategories:
            return old
        subcategories = self.subcategories[old_category]
        return subcategories[old] if 0 <= old < len(subcategories) else 0

    def stack(self, old: Optional[int]) -> Optional[int]:
        return None if old is None else self.stacks[old]


def merge_categories(
    categories_per_profile: Sequence[Optional[list[Category]]],
) -> tuple[list[Category], list[tuple[list[int], list[list[int]]]]]:
    """
    Merge category lists by name.

    Subcategories of same-named categories are merged by name too; unknown
    ones are appended to the merged category.

    Returns:
        (merged categories, [(category map, subcategory maps)] per input list)
    """
    merged: list[Category] = []
    index_by_name: dict[str, int] = {}
    maps = []
    for categories in categories_per_profile:
        if not categories:
            maps.append(([], []))
            continue
        category_map = []
        subcategory_maps = []
        for category in categories:
            new_index = index_by_name.get(category.name)
            if new_index is None:
                new_index = len(merged)
                merged.append(category.model_copy(deep=True))
                index_by_name[category.name] = new_index
            target = merged[new_index]
            subcategory_map = []
            for subcategory in category.subcategories:
                if subcategory not in target.subcategories:
                    target.subcategories.append(subcategory)
                subcategory_map.append(target.subcategories.index(subcategory))
            category_map.append(new_index)
            subcategory_maps.append(subcategory_map)
        maps.append((category_map, subcategory_maps))
    return merged, maps


# ============================================================================
# Table Merger
# ============================================================================

class TableMerger:
    """
    Accumulates the merged table set. add_thread() folds one thread's tables
    in and returns its TranslationMaps.
    """

    def __init__(self):
        self.string_table = StringTable()
        self.libs: list[Lib] = []
        self.resource_table = ResourceTable()
        self.native_symbols = NativeSymbolTable()
        self.func_table = FuncTable()
        self.frame_table = FrameTable()
        self.stack_table = StackTable()
        self._lib_keys: dict[tuple, int] = {}
        self._resource_keys: dict[tuple, int] = {}
        self._native_symbol_keys: dict[tuple, int] = {}
        self._func_keys: dict[tuple, int] = {}
        self._frame_keys: dict[tuple, int] = {}
        self._stack_keys: dict[tuple, int] = {}

    def add_thread(
        self,
        thread: Thread,
        category_map: Optional[list[int]] = None,
        subcategory_maps: Optional[list[list[int]]] = None,
    ) -> TranslationMaps:
        maps = TranslationMaps(categories=category_map or [], subcategories=subcategory_maps or [])
        maps.strings = [self.string_table.index_for_string(s) for s in thread.string_table]
        maps.libs = [self._add_lib(lib) for lib in thread.libs]
        self._merge_resources(thread, maps)
        self._merge_native_symbols(thread, maps)
        self._merge_funcs(thread, maps)
        self._merge_frames(thread, maps)
        self._merge_stacks(thread, maps)
        return maps

    def _string(self, maps: TranslationMaps, old: Optional[int]) -> Optional[int]:
        return None if old is None else maps.strings[old]

    def _add_lib(self, lib: Lib) -> int:
        key = (lib.name, lib.debug_name)
        index = self._lib_keys.get(key)
        if index is None:
            index = len(self.libs)
            self.libs.append(lib)
            self._lib_keys[key] = index
        return index

    def _merge_resources(self, thread: Thread, maps: TranslationMaps) -> None:
        resources = thread.resource_table
        for old in range(resources.length):
            lib = resources.lib[old]
            new_lib = maps.libs[lib] if lib is not None and 0 <= lib < len(maps.libs) else None
            row = dict(
                name=maps.strings[resources.name[old]],
                lib=new_lib,
                host=self._string(maps, resources.host[old]),
                type=resources.type[old],
            )
            key = (row['lib'], row['name'], row['host'], row['type'])
            maps.resources.append(self._dedupe(self.resource_table, self._resource_keys, key, row))

    def _merge_native_symbols(self, thread: Thread, maps: TranslationMaps) -> None:
        symbols = thread.native_symbols
        for old in range(symbols.length):
            lib = symbols.lib_index[old]
            row = dict(
                name=maps.strings[symbols.name[old]],
                lib_index=maps.libs[lib] if 0 <= lib < len(maps.libs) else -1,
                address=symbols.address[old],
                function_size=symbols.function_size[old],
            )
            key = (row['lib_index'], row['name'], row['address'])
            maps.native_symbols.append(self._dedupe(self.native_symbols, self._native_symbol_keys, key, row))

    def _merge_funcs(self, thread: Thread, maps: TranslationMaps) -> None:
        funcs = thread.func_table
        for old in range(funcs.length):
            resource = funcs.resource[old]
            row = dict(
                name=maps.strings[funcs.name[old]],
                is_js=funcs.is_js[old],
                relevant_for_js=funcs.relevant_for_js[old],
                resource=maps.resources[resource] if resource >= 0 else -1,
                file_name=self._string(maps, funcs.file_name[old]),
                line_number=funcs.line_number[old],
                column_number=funcs.column_number[old],
                address=funcs.address[old],
            )
            key = (row['name'], row['resource'], row['file_name'])
            maps.funcs.append(self._dedupe(self.func_table, self._func_keys, key, row))

    def _merge_frames(self, thread: Thread, maps: TranslationMaps) -> None:
        frames = thread.frame_table
        for old in range(frames.length):
            category = frames.category[old]
            native_symbol = frames.native_symbol[old]
            row = dict(
                func=maps.funcs[frames.func[old]],
                address=frames.address[old],
                inline_depth=frames.inline_depth[old],
                category=maps.category(category),
                subcategory=maps.subcategory(category, frames.subcategory[old]),
                native_symbol=None if native_symbol is None else maps.native_symbols[native_symbol],
                inner_window_id=frames.inner_window_id[old],
                implementation=self._string(maps, frames.implementation[old]),
                line=frames.line[old],
                column=frames.column[old],
            )
            key = (row['func'], row['category'], row['subcategory'], row['implementation'],
                   row['address'], row['inline_depth'], row['native_symbol'], row['line'], row['column'])
            maps.frames.append(self._dedupe(self.frame_table, self._frame_keys, key, row))

    def _merge_stacks(self, thread: Thread, maps: TranslationMaps) -> None:
        stacks = thread.stack_table
        for old in range(stacks.length):
            prefix = stacks.prefix[old]
            category = stacks.category[old]
            row = dict(
                frame=maps.frames[stacks.frame[old]],
                prefix=None if prefix is None else maps.stacks[prefix],
                category=maps.category(category),
                subcategory=maps.subcategory(category, stacks.subcategory[old]),
            )
            key = (row['prefix'], row['frame'])
            maps.stacks.append(self._dedupe(self.stack_table, self._stack_keys, key, row))

    @staticmethod
    def _dedupe(table, keys: dict[tuple, int], key: tuple, row: dict) -> int:
        index = keys.get(key)
        if index is None:
            index = table.append_row(**row)
            keys[key] = index
        return index

    def make_thread(self, source: Thread, maps: TranslationMaps, **overrides) -> Thread:
        """A thread over the merged tables carrying source's samples and markers, translated."""
        samples = replace(source.samples.copy(), stack=[maps.stack(stack) for stack in source.samples.stack])
        markers = translate_raw_markers(source.markers, maps)
        thread = replace(
            source,
            string_table=self.string_table,
            samples=samples,
            stack_table=self.stack_table,
            frame_table=self.frame_table,
            func_table=self.func_table,
            resource_table=self.resource_table,
            native_symbols=self.native_symbols,
            markers=markers,
            libs=self.libs,
            native_allocations=None,
        )
        return replace(thread, **overrides) if overrides else thread


def translate_raw_markers(markers: RawMarkerTable, maps: TranslationMaps) -> RawMarkerTable:
    """Rewrite marker names, categories and cause stacks into the merged tables."""
    data = []
    for payload in markers.data:
        cause = payload.get('cause') if isinstance(payload, dict) else None
        if isinstance(cause, dict) and cause.get('stack') is not None:
            payload = {**payload, 'cause': {**cause, 'stack': maps.stack(cause['stack'])}}
        data.append(payload)
    return replace(
        markers.copy(),
        name=[maps.strings[name] for name in markers.name],
        category=[maps.category(category) for category in markers.category],
        data=data,
    )


# ============================================================================
# Comparison Profiles
# ============================================================================

@dataclass
class MergeResult:
    profile: Profile
    translation_maps: list[TranslationMaps]
    # Sampling interval of each source profile, for weighting comparison samples.
    source_intervals: list[float]


def _merge_meta(profiles: Sequence[Profile], categories: list[Category]) -> ProfileMeta:
    """Keep meta fields that all profiles agree on; interval is the finest one."""
    first = profiles[0].meta.model_dump()
    agreed = {
        key: value for key, value in first.items()
        if all(profile.meta.model_dump().get(key) == value for profile in profiles[1:])
    }
    agreed['interval'] = min(profile.meta.interval for profile in profiles)
    agreed['categories'] = categories
    if all(profile.meta.symbolicated is None for profile in profiles):
        agreed['symbolicated'] = None
    else:
        agreed['symbolicated'] = all(profile.meta.symbolicated for profile in profiles)
    return ProfileMeta.model_validate(agreed)


def merge_profiles(profiles: Sequence[Profile], threads: Optional[Sequence[Thread]] = None) -> MergeResult:
    """
    Structural merge of one thread per profile.

    Args:
        profiles: Source profiles
        threads: The thread to take from each profile; defaults to each first thread

    Returns:
        MergeResult whose profile holds one translated thread per input and, for
        exactly two inputs, an empty comparison thread to be filled by
        compute_comparison_samples

    Raises:
        ValueError: With no profiles, or a profile with no threads
    """
    if not profiles:
        raise ValueError('There are no profiles to merge.')
    if threads is None:
        if any(not profile.threads for profile in profiles):
            raise ValueError('Every profile needs at least one thread to merge.')
        threads = [profile.threads[0] for profile in profiles]
    if len(threads) != len(profiles):
        raise ValueError('Expected one thread per profile.')

    categories, category_maps = merge_categories([profile.categories for profile in profiles])
    merger = TableMerger()
    all_maps = [
        merger.add_thread(thread, category_map, subcategory_maps)
        for thread, (category_map, subcategory_maps) in zip(threads, category_maps)
    ]

    merged_threads = [merger.make_thread(thread, maps) for thread, maps in zip(threads, all_maps)]
    if len(threads) == 2:
        merged_threads.append(Thread(
            name=COMPARISON_THREAD_NAME,
            string_table=merger.string_table,
            samples=SamplesTable(stack=[], time=[], weight=[], weight_type='tracing-ms'),
            stack_table=StackTable(),
            frame_table=merger.frame_table,
            func_table=merger.func_table,
            resource_table=merger.resource_table,
            native_symbols=merger.native_symbols,
            markers=RawMarkerTable(),
            libs=merger.libs,
            process_type='comparison',
            pid=COMPARISON_THREAD_NAME,
            tid=COMPARISON_THREAD_NAME,
            is_main_thread=True,
            register_time=min(thread.register_time for thread in threads),
            unregister_time=max((thread.unregister_time or 0) for thread in threads) or None,
            process_startup_time=min(thread.process_startup_time for thread in threads),
            process_shutdown_time=max((thread.process_shutdown_time or 0) for thread in threads) or None,
        ))

    profile = Profile(
        meta=_merge_meta(profiles, categories),
        threads=merged_threads,
        libs=merger.libs,
        pages=[page for profile in profiles for page in profile.pages],
    )
    return MergeResult(profile, all_maps, [profile.meta.interval for profile in profiles])


def compute_comparison_samples(result: MergeResult) -> MergeResult:
    """
    Fill the comparison thread: the merged stack table plus both threads'
    samples interleaved by time, profile 1 weighted -interval1 and profile 2
    +interval2, so the tree shows the difference in milliseconds.
    """
    threads = result.profile.threads
    if len(threads) != 3 or threads[2].process_type != 'comparison':
        raise ValueError('Comparison samples need a merge of exactly two profiles.')
    first, second, comparison = threads
    samples1, samples2 = first.samples, second.samples
    interval1, interval2 = result.source_intervals

    stack, time, weight = [], [], []
    i = j = 0
    while i < samples1.length or j < samples2.length:
        if i < samples1.length and (j >= samples2.length or samples1.time[i] < samples2.time[j]):
            stack.append(samples1.stack[i])
            time.append(samples1.time[i])
            weight.append(-interval1 * samples1.weight_for(i))
            i += 1
        else:
            stack.append(samples2.stack[j])
            time.append(samples2.time[j])
            weight.append(interval2 * samples2.weight_for(j))
            j += 1

    samples = SamplesTable(stack=stack, time=time, responsiveness=[None] * len(stack),
                           weight=weight, weight_type='tracing-ms')
    filled = replace(comparison, stack_table=first.stack_table, samples=samples)
    profile = replace(result.profile, threads=[first, second, filled])
    return replace(result, profile=profile)


def _shift_thread_times(thread: Thread, delta: float) -> Thread:
    samples = replace(thread.samples.copy(), time=[t + delta for t in thread.samples.time])
    markers = replace(
        thread.markers.copy(),
        start_time=[None if t is None else t + delta for t in thread.markers.start_time],
        end_time=[None if t is None else t + delta for t in thread.markers.end_time],
    )
    return replace(
        thread,
        samples=samples,
        markers=markers,
        register_time=thread.register_time + delta,
        process_startup_time=thread.process_startup_time + delta,
        unregister_time=None if thread.unregister_time is None else thread.unregister_time + delta,
        process_shutdown_time=None if thread.process_shutdown_time is None else thread.process_shutdown_time + delta,
    )


def _prepare_thread_for_diffing(
    profile: Profile,
    profile_number: int,
    thread_index: int,
    committed_range: Optional[tuple[float, float]],
    profile_name: Optional[str],
) -> Thread:
    thread = profile.threads[thread_index]

    if committed_range is not None:
        # Committed ranges are relative to the profile's zero.
        zero_at = get_time_range_including_all_threads(profile)[0]
        range_start, range_end = committed_range[0] + zero_at, committed_range[1] + zero_at
        derived = derive_markers_from_raw_marker_table(
            thread.markers, thread.string_table, thread.tid,
            (range_start, range_end), correlate_ipc_markers(profile.threads),
        )
        thread = filter_thread_samples_to_range(thread, range_start, range_end)
        thread = replace(thread, markers=filter_raw_marker_table_to_range(
            thread.markers, derived, range_start, range_end
        ))

    start_adjustment = 0.0
    if thread.samples.length:
        start_adjustment = -thread.samples.time[0]
    else:
        first_marker_time = next((t for t in thread.markers.start_time if t is not None), None)
        if first_marker_time is not None:
            start_adjustment = -first_marker_time
    thread = _shift_thread_times(thread, start_adjustment)

    if thread.process_shutdown_time is None and thread.unregister_time is None:
        thread = replace(thread, unregister_time=get_time_range_for_thread(thread, profile.meta.interval)[1])

    return replace(
        thread,
        pid=f"{thread.pid} from profile {profile_number}",
        tid=f"{thread.tid} from profile {profile_number}",
        is_main_thread=True,
        process_name=f"{profile_name or f'Profile {profile_number}'}: {thread.process_name or thread.name}",
    )


def merge_profiles_for_diffing(
    profiles: Sequence[Profile],
    thread_indexes: Optional[Sequence[int]] = None,
    committed_ranges: Optional[Sequence[Optional[tuple[float, float]]]] = None,
    profile_names: Optional[Sequence[Optional[str]]] = None,
) -> MergeResult:
    """
    Build a comparison profile.

    Each profile contributes one thread (the first by default), optionally
    cut to a committed range and shifted so its first sample is at time 0.
    With exactly two profiles, the comparison thread is filled.

    Args:
        profiles: Profiles to compare
        thread_indexes: Thread to take from each profile
        committed_ranges: (start, end) per profile relative to its zero, or None
        profile_names: Display name per profile; "Profile N" when missing

    Returns:
        MergeResult with the merged profile and per-thread translation maps
    """
    if not profiles:
        raise ValueError('There are no profiles to merge.')
    count = len(profiles)
    thread_indexes = list(thread_indexes) if thread_indexes is not None else [0] * count
    committed_ranges = list(committed_ranges) if committed_ranges is not None else [None] * count
    profile_names = list(profile_names) if profile_names is not None else [None] * count
    if not len(thread_indexes) == len(committed_ranges) == len(profile_names) == count:
        raise ValueError('Expected one thread index, range and name per profile.')

    threads = [
        _prepare_thread_for_diffing(profile, number, thread_index, committed_range, name)
        for number, (profile, thread_index, committed_range, name)
        in enumerate(zip(profiles, thread_indexes, committed_ranges, profile_names), start=1)
    ]
    result = merge_profiles(profiles, threads)
    if count == 2:
        result = compute_comparison_samples(result)
    logger.debug("Merged %d profiles for diffing, interval %s", count, result.profile.meta.interval)
    return result


# ============================================================================
# Merging Threads of One Profile
# ============================================================================

def merge_threads(threads: Sequence[Thread]) -> Thread:
    """
    Merge threads of the same profile into one "Merged thread".

    Samples of all threads are interleaved in time order with their own
    (positive) weights; raw markers are concatenated and ordered by time.
    Categories are shared within a profile and are kept as they are.
    """
    if not threads:
        raise ValueError('There are no threads to merge.')
    merger = TableMerger()
    all_maps = [merger.add_thread(thread) for thread in threads]

    entries = []
    for thread_number, (thread, maps) in enumerate(zip(threads, all_maps)):
        samples = thread.samples
        for index in range(samples.length):
            entries.append((samples.time[index], thread_number, index,
                            maps.stack(samples.stack[index]), samples.weight_for(index),
                            samples.responsiveness[index]))
    entries.sort(key=lambda entry: (entry[0], entry[1], entry[2]))
    has_weights = any(thread.samples.weight is not None for thread in threads)
    samples = SamplesTable(
        stack=[entry[3] for entry in entries],
        time=[entry[0] for entry in entries],
        responsiveness=[None] * len(entries),
        weight=[entry[4] for entry in entries] if has_weights else None,
        weight_type=threads[0].samples.weight_type,
    )

    marker_rows = []
    for thread_number, (thread, maps) in enumerate(zip(threads, all_maps)):
        translated = translate_raw_markers(thread.markers, maps)
        for index in range(translated.length):
            row = {name: getattr(translated, name)[index] for name in RawMarkerTable.column_names()}
            if row['thread_id'] is None and isinstance(thread.tid, int):
                row['thread_id'] = thread.tid
            time = row['start_time'] if row['start_time'] is not None else row['end_time']
            marker_rows.append((time if time is not None else 0.0, thread_number, index, row))
    marker_rows.sort(key=lambda entry: entry[:3])
    markers = RawMarkerTable()
    for *_, row in marker_rows:
        markers.append_row(**row)

    shutdown_times = [thread.process_shutdown_time for thread in threads]
    unregister_times = [thread.unregister_time for thread in threads]
    return Thread(
        name=MERGED_THREAD_NAME,
        string_table=merger.string_table,
        samples=samples,
        stack_table=merger.stack_table,
        frame_table=merger.frame_table,
        func_table=merger.func_table,
        resource_table=merger.resource_table,
        native_symbols=merger.native_symbols,
        markers=markers,
        libs=merger.libs,
        process_type='merged',
        pid=MERGED_THREAD_NAME,
        tid=MERGED_THREAD_NAME,
        is_main_thread=True,
        register_time=min(thread.register_time for thread in threads),
        unregister_time=None if None in unregister_times else max(unregister_times),
        process_startup_time=min(thread.process_startup_time for thread in threads),
        process_shutdown_time=None if None in shutdown_times else max(shutdown_times),
    )
