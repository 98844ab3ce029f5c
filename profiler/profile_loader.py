"""
Processed Profile Loader

Converts processed-profile JSON (the `meta` / `threads[]` / `libs[]` / `pages[]`
document written by the profiler front-end) into Profile and Thread tables,
and validates every cross-table reference on the way in.

Anything malformed is fatal for the whole profile: ProfileLoadError is raised
and nothing is returned. The rest of the engine relies on this validation and
treats out-of-range indexes as programming errors.
"""

import json
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError

from .config import get_default_categories
from .logging_utils import get_logger
from .profile_types import (
    Category,
    FrameTable,
    FuncTable,
    Lib,
    NativeAllocationsTable,
    NativeSymbolTable,
    Page,
    Profile,
    ProfileMeta,
    RawMarkerTable,
    ResourceTable,
    SamplesTable,
    StackTable,
    Thread,
    get_default_category,
)
from .string_table import StringTable

logger = get_logger(__name__)


class ProfileLoadError(Exception):
    """Raised when a profile document cannot be turned into valid tables."""
    pass


def load_profile(path: Union[str, Path]) -> Profile:
    """
    Read and process a profile JSON file.

    Raises:
        ProfileLoadError: If the file cannot be read, is not JSON, or fails validation
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ProfileLoadError(f"Failed to read profile from {path}: {e}") from e
    return process_profile(data)


def process_profile(data: dict[str, Any]) -> Profile:
    """
    Build a Profile from an already-parsed processed-profile document.

    Args:
        data: Dict with 'meta', 'threads' and optionally 'libs', 'pages', 'shared'

    Returns:
        Profile with one Thread per entry of data['threads']

    Raises:
        ProfileLoadError: On any schema or reference error
    """
    if not isinstance(data, dict):
        raise ProfileLoadError("Profile must be a JSON object")
    if 'meta' not in data:
        raise ProfileLoadError("Profile is missing 'meta'")
    if not isinstance(data.get('threads'), list):
        raise ProfileLoadError("Profile is missing the 'threads' array")

    try:
        meta = ProfileMeta.model_validate(data['meta'])
        libs = [Lib.model_validate(lib) for lib in data.get('libs', [])]
        pages = [Page.model_validate(page) for page in data.get('pages', []) or []]
    except ValidationError as e:
        raise ProfileLoadError(f"Invalid profile metadata: {e}") from e

    if not meta.categories:
        meta.categories = get_default_categories()

    shared_strings = (data.get('shared') or {}).get('stringArray')
    default_category = get_default_category(meta.categories)

    threads = []
    for thread_index, raw_thread in enumerate(data['threads']):
        try:
            thread = _process_thread(raw_thread, shared_strings, libs, meta.categories, default_category)
        except ProfileLoadError as e:
            raise ProfileLoadError(f"Thread {thread_index}: {e}") from e
        except (KeyError, TypeError, ValueError, IndexError) as e:
            raise ProfileLoadError(f"Thread {thread_index}: malformed table data ({e})") from e
        threads.append(thread)

    logger.debug("Loaded profile with %d threads, interval %sms", len(threads), meta.interval)
    return Profile(meta=meta, threads=threads, libs=libs, pages=pages)


# ============================================================================
# Thread Tables
# ============================================================================

def _column(table: dict[str, Any], key: str, length: int, default: Any = None) -> list:
    values = table.get(key)
    if values is None:
        return [default] * length
    if len(values) != length:
        raise ProfileLoadError(f"Column '{key}' has {len(values)} rows, expected {length}")
    return list(values)


def _table_length(table: dict[str, Any], first_column: str) -> int:
    if 'length' in table:
        return int(table['length'])
    return len(table.get(first_column, []))


def _process_thread(
    raw: dict[str, Any],
    shared_strings: Optional[list[str]],
    libs: list[Lib],
    categories: list[Category],
    default_category: int,
) -> Thread:
    strings = raw.get('stringArray') or raw.get('stringTable') or shared_strings or []
    string_table = StringTable(strings)

    func_table = _process_func_table(raw.get('funcTable', {}))
    frame_table = _process_frame_table(raw.get('frameTable', {}))
    stack_table = _process_stack_table(raw.get('stackTable', {}), frame_table, categories, default_category)
    samples = _process_samples(raw.get('samples', {}))
    markers = _process_markers(raw.get('markers', {}))
    resource_table = _process_resource_table(raw.get('resourceTable', {}))
    native_symbols = _process_native_symbols(raw.get('nativeSymbols', {}))
    native_allocations = _process_native_allocations(raw['nativeAllocations']) if 'nativeAllocations' in raw else None

    thread = Thread(
        name=raw.get('name', ''),
        string_table=string_table,
        samples=samples,
        stack_table=stack_table,
        frame_table=frame_table,
        func_table=func_table,
        resource_table=resource_table,
        native_symbols=native_symbols,
        markers=markers,
        native_allocations=native_allocations,
        libs=[Lib.model_validate(lib) for lib in raw['libs']] if 'libs' in raw else libs,
        process_type=raw.get('processType', 'default'),
        process_name=raw.get('processName'),
        pid=raw.get('pid', '0'),
        tid=raw.get('tid'),
        is_main_thread=bool(raw.get('isMainThread', False)),
        register_time=raw.get('registerTime', 0.0) or 0.0,
        unregister_time=raw.get('unregisterTime'),
        process_startup_time=raw.get('processStartupTime', 0.0) or 0.0,
        process_shutdown_time=raw.get('processShutdownTime'),
    )
    validate_thread(thread, len(categories))
    return thread


def _process_func_table(raw: dict[str, Any]) -> FuncTable:
    length = _table_length(raw, 'name')
    return FuncTable(
        name=_column(raw, 'name', length),
        is_js=[bool(v) for v in _column(raw, 'isJS', length, False)],
        relevant_for_js=[bool(v) for v in _column(raw, 'relevantForJS', length, False)],
        resource=[-1 if v is None else v for v in _column(raw, 'resource', length, -1)],
        file_name=_column(raw, 'fileName', length),
        line_number=_column(raw, 'lineNumber', length),
        column_number=_column(raw, 'columnNumber', length),
        address=_column(raw, 'address', length, -1),
    )


def _process_frame_table(raw: dict[str, Any]) -> FrameTable:
    length = _table_length(raw, 'func')
    return FrameTable(
        func=_column(raw, 'func', length),
        address=[-1 if v is None else v for v in _column(raw, 'address', length, -1)],
        inline_depth=_column(raw, 'inlineDepth', length, 0),
        category=_column(raw, 'category', length),
        subcategory=_column(raw, 'subcategory', length),
        native_symbol=_column(raw, 'nativeSymbol', length),
        inner_window_id=_column(raw, 'innerWindowID', length),
        implementation=_column(raw, 'implementation', length),
        line=_column(raw, 'line', length),
        column=_column(raw, 'column', length),
    )


def _process_stack_table(
    raw: dict[str, Any],
    frame_table: FrameTable,
    categories: list[Category],
    default_category: int,
) -> StackTable:
    length = _table_length(raw, 'frame')
    frames = _column(raw, 'frame', length)
    prefixes = _column(raw, 'prefix', length)
    stack_table = StackTable(frame=frames, prefix=prefixes)

    raw_categories = raw.get('category')
    raw_subcategories = raw.get('subcategory')
    for stack_index in range(length):
        prefix = prefixes[stack_index]
        if prefix is not None and not (0 <= prefix < stack_index):
            raise ProfileLoadError(
                f"Stack {stack_index} has prefix {prefix}; prefixes must point to earlier stacks"
            )
        frame = frames[stack_index]
        if not (0 <= frame < frame_table.length):
            raise ProfileLoadError(f"Stack {stack_index} references missing frame {frame}")

        if raw_categories is not None:
            category = raw_categories[stack_index]
            subcategory = raw_subcategories[stack_index] if raw_subcategories is not None else 0
        else:
            category, subcategory = _inherit_category(stack_table, frame_table, prefix, frame, default_category)
        if not (0 <= category < len(categories)):
            raise ProfileLoadError(f"Stack {stack_index} has unknown category {category}")
        stack_table.category.append(category)
        stack_table.subcategory.append(subcategory)
    return stack_table


def _inherit_category(
    stack_table: StackTable,
    frame_table: FrameTable,
    prefix: Optional[int],
    frame: int,
    default_category: int,
) -> tuple[int, int]:
    """The frame's category when it has one, otherwise the prefix stack's."""
    frame_category = frame_table.category[frame]
    if frame_category is not None:
        frame_subcategory = frame_table.subcategory[frame]
        return frame_category, frame_subcategory if frame_subcategory is not None else 0
    if prefix is not None:
        return stack_table.category[prefix], stack_table.subcategory[prefix]
    return default_category, 0


def _process_samples(raw: dict[str, Any]) -> SamplesTable:
    length = _table_length(raw, 'stack')
    if 'time' in raw:
        times = _column(raw, 'time', length)
    elif 'timeDeltas' in raw:
        times = []
        current = 0.0
        for delta in _column(raw, 'timeDeltas', length):
            current += delta
            times.append(current)
    else:
        raise ProfileLoadError("Samples table has neither 'time' nor 'timeDeltas'")

    responsiveness_key = 'responsiveness' if 'responsiveness' in raw else 'eventDelay'
    weight = raw.get('weight')
    if weight is not None and len(weight) != length:
        raise ProfileLoadError(f"Column 'weight' has {len(weight)} rows, expected {length}")
    return SamplesTable(
        stack=_column(raw, 'stack', length),
        time=times,
        responsiveness=_column(raw, responsiveness_key, length),
        weight=list(weight) if weight is not None else None,
        weight_type=raw.get('weightType') or 'samples',
    )


def _process_markers(raw: dict[str, Any]) -> RawMarkerTable:
    length = _table_length(raw, 'name')
    start_key = 'startTime' if 'startTime' in raw else 'time'
    return RawMarkerTable(
        name=_column(raw, 'name', length),
        start_time=_column(raw, start_key, length),
        end_time=_column(raw, 'endTime', length),
        phase=_column(raw, 'phase', length, 0),
        category=_column(raw, 'category', length, 0),
        data=_column(raw, 'data', length),
        thread_id=_column(raw, 'threadId', length),
    )


def _process_native_allocations(raw: dict[str, Any]) -> NativeAllocationsTable:
    length = _table_length(raw, 'stack')
    memory_address = raw.get('memoryAddress')
    return NativeAllocationsTable(
        time=_column(raw, 'time', length),
        stack=_column(raw, 'stack', length),
        weight=_column(raw, 'weight', length, 0),
        memory_address=list(memory_address) if memory_address is not None else None,
    )


def _process_resource_table(raw: dict[str, Any]) -> ResourceTable:
    length = _table_length(raw, 'name')
    return ResourceTable(
        name=_column(raw, 'name', length),
        lib=_column(raw, 'lib', length),
        host=_column(raw, 'host', length),
        type=_column(raw, 'type', length, 0),
    )


def _process_native_symbols(raw: dict[str, Any]) -> NativeSymbolTable:
    length = _table_length(raw, 'name')
    return NativeSymbolTable(
        name=_column(raw, 'name', length),
        lib_index=_column(raw, 'libIndex', length, -1),
        address=_column(raw, 'address', length, 0),
        function_size=_column(raw, 'functionSize', length),
    )


# ============================================================================
# Validation
# ============================================================================

def validate_thread(thread: Thread, category_count: int) -> None:
    """
    Check every foreign key of a thread.

    Raises:
        ProfileLoadError: On the first reference that points outside its table
    """
    string_count = len(thread.string_table)

    def check(condition: bool, message: str) -> None:
        if not condition:
            raise ProfileLoadError(message)

    tables = [thread.func_table, thread.frame_table, thread.stack_table, thread.samples,
              thread.markers, thread.resource_table, thread.native_symbols]
    if thread.native_allocations is not None:
        tables.append(thread.native_allocations)
    for table in tables:
        try:
            table.validate()
        except ValueError as e:
            raise ProfileLoadError(str(e)) from e

    func_table = thread.func_table
    for func in range(func_table.length):
        check(0 <= func_table.name[func] < string_count, f"Func {func} has an invalid name index")
        resource = func_table.resource[func]
        check(resource == -1 or 0 <= resource < thread.resource_table.length,
              f"Func {func} references missing resource {resource}")
        file_name = func_table.file_name[func]
        check(file_name is None or 0 <= file_name < string_count, f"Func {func} has an invalid file name index")

    frame_table = thread.frame_table
    for frame in range(frame_table.length):
        check(0 <= frame_table.func[frame] < func_table.length,
              f"Frame {frame} references missing func {frame_table.func[frame]}")
        category = frame_table.category[frame]
        check(category is None or 0 <= category < category_count, f"Frame {frame} has unknown category {category}")
        native_symbol = frame_table.native_symbol[frame]
        check(native_symbol is None or 0 <= native_symbol < thread.native_symbols.length,
              f"Frame {frame} references missing native symbol {native_symbol}")

    for sample, stack in enumerate(thread.samples.stack):
        check(stack is None or 0 <= stack < thread.stack_table.length,
              f"Sample {sample} references missing stack {stack}")

    for marker, name in enumerate(thread.markers.name):
        check(0 <= name < string_count, f"Marker {marker} has an invalid name index")

    for resource in range(thread.resource_table.length):
        check(0 <= thread.resource_table.name[resource] < string_count,
              f"Resource {resource} has an invalid name index")
