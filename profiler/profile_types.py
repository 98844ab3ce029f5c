"""
Profile Types

Columnar tables for a processed profile plus the pydantic models for the
profile-level JSON metadata.

Every table is a structure of arrays: parallel lists indexed by a shared row
index. Rows reference other tables by integer index (-1 or None for "no row"),
never by object reference. Tables are append-only while being built and are
treated as immutable afterwards; transforms build new tables instead of
editing existing ones.
"""

from dataclasses import dataclass, field, fields, replace
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .string_table import StringTable


# ============================================================================
# Constants
# ============================================================================

class ResourceType:
    """Values of ResourceTable.type."""
    UNKNOWN = 0
    LIBRARY = 1
    ADDON = 2
    WEBHOST = 3
    OTHERHOST = 4
    URL = 5


class MarkerPhase:
    """Values of RawMarkerTable.phase."""
    INSTANT = 0
    INTERVAL = 1
    INTERVAL_START = 2
    INTERVAL_END = 3


_REQUIRED = object()


def column(row_default: Any = _REQUIRED):
    """Declare a table column; row_default is used by append_row when a value is omitted."""
    return field(default_factory=list, metadata={'row_default': row_default})


# ============================================================================
# Columnar Tables
# ============================================================================

@dataclass
class ColumnTable:
    """Shared behaviour for the structure-of-arrays tables."""

    @classmethod
    def column_names(cls) -> list[str]:
        return [f.name for f in fields(cls) if 'row_default' in f.metadata]

    @property
    def length(self) -> int:
        return len(getattr(self, self.column_names()[0]))

    def __len__(self) -> int:
        return self.length

    def append_row(self, **values: Any) -> int:
        """
        Append one row and return its index.

        Raises:
            TypeError: If a required column is missing or an unknown column is given
        """
        unknown = set(values) - set(self.column_names())
        if unknown:
            raise TypeError(f"{type(self).__name__} has no columns {sorted(unknown)}")
        index = self.length
        for f in fields(self):
            if 'row_default' not in f.metadata:
                continue
            if f.name in values:
                value = values[f.name]
            elif f.metadata['row_default'] is _REQUIRED:
                raise TypeError(f"{type(self).__name__}.append_row() requires '{f.name}'")
            else:
                value = f.metadata['row_default']
            getattr(self, f.name).append(value)
        return index

    def copy(self):
        """Copy with fresh column lists, so the copy can be appended to safely."""
        return replace(self, **{name: list(getattr(self, name)) for name in self.column_names()})

    def validate(self) -> None:
        """
        Check that all columns have the same length.

        Raises:
            ValueError: If a column length differs from the first column
        """
        expected = self.length
        for name in self.column_names():
            actual = len(getattr(self, name))
            if actual != expected:
                raise ValueError(
                    f"{type(self).__name__}.{name} has {actual} rows, expected {expected}"
                )


@dataclass
class FuncTable(ColumnTable):
    """One row per distinct function."""
    name: list[int] = column()
    is_js: list[bool] = column(False)
    relevant_for_js: list[bool] = column(False)
    resource: list[int] = column(-1)
    file_name: list[Optional[int]] = column(None)
    line_number: list[Optional[int]] = column(None)
    column_number: list[Optional[int]] = column(None)
    address: list[int] = column(-1)


@dataclass
class FrameTable(ColumnTable):
    """One row per distinct (func, category, implementation, line, address, inlining) combination."""
    func: list[int] = column()
    address: list[int] = column(-1)
    inline_depth: list[int] = column(0)
    category: list[Optional[int]] = column(None)
    subcategory: list[Optional[int]] = column(None)
    native_symbol: list[Optional[int]] = column(None)
    inner_window_id: list[Optional[int]] = column(None)
    implementation: list[Optional[int]] = column(None)
    line: list[Optional[int]] = column(None)
    column: list[Optional[int]] = column(None)


@dataclass
class StackTable(ColumnTable):
    """
    Prefix tree over call stacks.

    A row's prefix is always a smaller row index (or None for a root), so a
    single forward pass sees every prefix before its children. Category and
    subcategory are already resolved: the frame's own category if it has one,
    otherwise the prefix stack's.
    """
    frame: list[int] = column()
    prefix: list[Optional[int]] = column(None)
    category: list[int] = column(0)
    subcategory: list[int] = column(0)


@dataclass
class ResourceTable(ColumnTable):
    """Libraries, add-ons and web hosts that functions belong to."""
    name: list[int] = column()
    lib: list[Optional[int]] = column(None)
    host: list[Optional[int]] = column(None)
    type: list[int] = column(ResourceType.UNKNOWN)


@dataclass
class NativeSymbolTable(ColumnTable):
    """Machine-code symbols spanning an address range inside a lib."""
    name: list[int] = column()
    lib_index: list[int] = column(-1)
    address: list[int] = column(0)
    function_size: list[Optional[int]] = column(None)


@dataclass
class SamplesTable(ColumnTable):
    """
    One row per captured sample, in non-decreasing time order.

    weight is an optional column; when it is None every sample weighs 1.
    """
    stack: list[Optional[int]] = column()
    time: list[float] = column()
    responsiveness: list[Optional[float]] = column(None)
    weight: Optional[list[float]] = None
    weight_type: str = 'samples'

    def weight_for(self, sample_index: int) -> float:
        return 1 if self.weight is None else self.weight[sample_index]

    def copy(self):
        copied = super().copy()
        if self.weight is not None:
            copied.weight = list(self.weight)
        return copied


@dataclass
class NativeAllocationsTable(ColumnTable):
    """
    Native allocations and deallocations, one row each. Deallocations carry a
    negative weight. memory_address is None for unbalanced tables, where
    deallocations cannot be matched to their allocations.
    """
    time: list[float] = column()
    stack: list[Optional[int]] = column(None)
    weight: list[float] = column(0)
    memory_address: Optional[list[int]] = None

    @property
    def is_balanced(self) -> bool:
        return self.memory_address is not None

    def copy(self):
        copied = super().copy()
        if self.memory_address is not None:
            copied.memory_address = list(self.memory_address)
        return copied


@dataclass
class RawMarkerTable(ColumnTable):
    """Markers as recorded: instants, complete intervals, or separate start/end rows."""
    name: list[int] = column()
    start_time: list[Optional[float]] = column(None)
    end_time: list[Optional[float]] = column(None)
    phase: list[int] = column(MarkerPhase.INSTANT)
    category: list[int] = column(0)
    data: list[Optional[dict[str, Any]]] = column(None)
    thread_id: list[Optional[int]] = column(None)


# ============================================================================
# Profile-level Models
# ============================================================================

class Category(BaseModel):
    """A category with its colour and subcategory names."""
    name: str = Field(description="Category name, unique within a profile")
    color: str = Field(default='grey', description="Display colour")
    subcategories: list[str] = Field(default_factory=lambda: ['Other'], description="Subcategory names")


class Lib(BaseModel):
    """A shared library loaded in the profiled process."""
    model_config = ConfigDict(populate_by_name=True, extra='allow')

    name: str = Field(description="Library file name")
    debug_name: str = Field(default='', alias='debugName', description="Name used for symbol lookup")
    path: str = Field(default='', description="Path on disk")
    debug_path: str = Field(default='', alias='debugPath', description="Path of the debug file")
    breakpad_id: str = Field(default='', alias='breakpadId', description="Breakpad identifier")
    arch: Optional[str] = Field(default=None, description="CPU architecture")
    code_id: Optional[str] = Field(default=None, alias='codeId', description="Code identifier")


class Page(BaseModel):
    """A browsing context (tab or iframe) referenced by frames and markers."""
    model_config = ConfigDict(populate_by_name=True, extra='allow')

    tab_id: Optional[int] = Field(default=None, alias='tabID')
    inner_window_id: int = Field(alias='innerWindowID')
    url: str = ''
    embedder_inner_window_id: Optional[int] = Field(default=None, alias='embedderInnerWindowID')


class ProfileMeta(BaseModel):
    """The profile's `meta` object."""
    model_config = ConfigDict(populate_by_name=True, extra='allow')

    interval: float = Field(gt=0, description="Sampling interval in milliseconds")
    start_time: float = Field(default=0.0, alias='startTime', description="Wall-clock start of the profile")
    categories: Optional[list[Category]] = Field(default=None, description="Category list; defaults apply when missing")
    product: str = Field(default='', description="Name of the profiled product")
    symbolicated: Optional[bool] = Field(default=None, description="True when all addresses are resolved")
    version: Optional[int] = Field(default=None, description="Gecko profile format version")
    preprocessed_profile_version: Optional[int] = Field(default=None, alias='preprocessedProfileVersion')


# ============================================================================
# Aggregates
# ============================================================================

Pid = Union[str, int]


@dataclass
class Thread:
    """
    All the tables captured for one thread.

    Treated as an immutable snapshot: transforms return a new Thread built with
    dataclasses.replace and share every table they did not rewrite.
    """
    name: str
    string_table: StringTable
    samples: SamplesTable
    stack_table: StackTable
    frame_table: FrameTable
    func_table: FuncTable
    resource_table: ResourceTable = field(default_factory=ResourceTable)
    native_symbols: NativeSymbolTable = field(default_factory=NativeSymbolTable)
    markers: RawMarkerTable = field(default_factory=RawMarkerTable)
    native_allocations: Optional[NativeAllocationsTable] = None
    libs: list[Lib] = field(default_factory=list)
    process_type: str = 'default'
    process_name: Optional[str] = None
    pid: Pid = '0'
    tid: Optional[Union[int, str]] = None
    is_main_thread: bool = False
    register_time: float = 0.0
    unregister_time: Optional[float] = None
    process_startup_time: float = 0.0
    process_shutdown_time: Optional[float] = None


@dataclass
class Profile:
    meta: ProfileMeta
    threads: list[Thread] = field(default_factory=list)
    libs: list[Lib] = field(default_factory=list)
    pages: list[Page] = field(default_factory=list)

    @property
    def categories(self) -> list[Category]:
        return self.meta.categories or []


def get_default_category(categories: list[Category]) -> int:
    """The category used for frames without one: the first grey category, else 0."""
    for index, category in enumerate(categories):
        if category.color == 'grey':
            return index
    return 0


def get_func_name(thread: Thread, func_index: int) -> str:
    return thread.string_table.get_string(thread.func_table.name[func_index])


def get_origin_annotation_for_func(thread: Thread, func_index: int) -> str:
    """
    Describe where a function comes from: its file (with line/column) or its
    resource/library name. Returns '' when nothing is known.
    """
    func_table = thread.func_table
    file_name_index = func_table.file_name[func_index]
    if file_name_index is not None:
        origin = thread.string_table.get_string(file_name_index)
        line = func_table.line_number[func_index]
        if line is not None:
            origin += f":{line}"
            column_number = func_table.column_number[func_index]
            if column_number is not None:
                origin += f":{column_number}"
        return origin
    resource_index = func_table.resource[func_index]
    if resource_index is not None and resource_index >= 0:
        return thread.string_table.get_string(thread.resource_table.name[resource_index])
    return ''
