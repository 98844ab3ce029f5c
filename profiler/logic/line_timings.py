"""
Line Timings

Per-line hit counts for one source file, as shown in the source view.

Computed in two steps: a StackLineInfo that says, for every stack, which
lines of the file the stack hits (total) and which line it is executing
(self); then get_line_timings sums the sample weights over those sets. A
sample hits each line at most once, however deep the recursion.
"""

from dataclasses import dataclass, field
from typing import Optional

from ..profile_types import FrameTable, FuncTable, SamplesTable, StackTable
from .call_tree import CallNodeInfo, get_matching_ancestor_stack_for_inverted_call_node


@dataclass
class StackLineInfo:
    self_line: list[Optional[int]]
    stack_lines: list[Optional[frozenset[int]]]


@dataclass
class LineTimings:
    total_line_hits: dict[int, float] = field(default_factory=dict)
    self_line_hits: dict[int, float] = field(default_factory=dict)


def get_stack_line_info(
    stack_table: StackTable,
    frame_table: FrameTable,
    func_table: FuncTable,
    file_name_index: int,
) -> StackLineInfo:
    """
    Lines of the file hit anywhere on each stack.

    self_line is the stack's own frame line when its func belongs to the file.
    stack_lines is the prefix's set plus self_line; sets are shared between a
    stack and its prefix when nothing is added.
    """
    self_lines: list[Optional[int]] = []
    stack_lines: list[Optional[frozenset[int]]] = []

    for stack_index in range(stack_table.length):
        frame = stack_table.frame[stack_index]
        prefix = stack_table.prefix[stack_index]
        func = frame_table.func[frame]

        self_line = None
        total_lines = stack_lines[prefix] if prefix is not None else None
        if func_table.file_name[func] == file_name_index:
            self_line = frame_table.line[frame]
            if self_line is not None:
                if total_lines is None:
                    total_lines = frozenset((self_line,))
                elif self_line not in total_lines:
                    total_lines = total_lines | {self_line}

        self_lines.append(self_line)
        stack_lines.append(total_lines)
    return StackLineInfo(self_lines, stack_lines)


def get_stack_line_info_for_call_node(
    stack_table: StackTable,
    frame_table: FrameTable,
    call_node_index: int,
    call_node_info: CallNodeInfo,
) -> StackLineInfo:
    """
    Lines hit inside one call node only, in the file of the node's func.

    Every stack hits at most one line here: the line of its ancestor stack
    that maps to the call node.
    """
    if call_node_info.is_inverted():
        return _get_stack_line_info_for_inverted_call_node(
            stack_table, frame_table, call_node_index, call_node_info
        )

    stack_to_call_node = call_node_info.stack_index_to_call_node_index
    self_lines: list[Optional[int]] = []
    stack_lines: list[Optional[frozenset[int]]] = []
    for stack_index in range(stack_table.length):
        self_line = None
        total_lines = None
        if stack_to_call_node[stack_index] == call_node_index:
            self_line = frame_table.line[stack_table.frame[stack_index]]
            if self_line is not None:
                total_lines = frozenset((self_line,))
        else:
            prefix = stack_table.prefix[stack_index]
            total_lines = stack_lines[prefix] if prefix is not None else None
        self_lines.append(self_line)
        stack_lines.append(total_lines)
    return StackLineInfo(self_lines, stack_lines)


def _get_stack_line_info_for_inverted_call_node(
    stack_table: StackTable,
    frame_table: FrameTable,
    call_node_index: int,
    call_node_info: CallNodeInfo,
) -> StackLineInfo:
    # Self time of an inverted tree sits on its roots only.
    is_root = call_node_info.is_root(call_node_index)
    inverted_path = call_node_info.get_call_node_path(call_node_index)
    self_lines: list[Optional[int]] = []
    stack_lines: list[Optional[frozenset[int]]] = []

    for stack_index in range(stack_table.length):
        self_line = None
        total_lines = None
        stack_for_call_node = get_matching_ancestor_stack_for_inverted_call_node(
            stack_table, frame_table, stack_index, inverted_path
        )
        if stack_for_call_node is not None:
            line = frame_table.line[stack_table.frame[stack_for_call_node]]
            if line is not None:
                total_lines = frozenset((line,))
                if is_root:
                    self_line = line
        self_lines.append(self_line)
        stack_lines.append(total_lines)
    return StackLineInfo(self_lines, stack_lines)


def get_line_timings(stack_line_info: Optional[StackLineInfo], samples: SamplesTable) -> LineTimings:
    """Sum sample weights per line; no stack line info means no hits."""
    timings = LineTimings()
    if stack_line_info is None:
        return timings
    total_hits = timings.total_line_hits
    self_hits = timings.self_line_hits

    for sample_index, stack in enumerate(samples.stack):
        if stack is None:
            continue
        weight = samples.weight_for(sample_index)
        lines = stack_line_info.stack_lines[stack]
        if lines is not None:
            for line in lines:
                total_hits[line] = total_hits.get(line, 0) + weight
        self_line = stack_line_info.self_line[stack]
        if self_line is not None:
            self_hits[self_line] = self_hits.get(self_line, 0) + weight
    return timings
