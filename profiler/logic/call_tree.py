"""
Call Tree

Builds call node tables from a thread's stack table and aggregates sample
weights into self/total time per call node, for both the regular tree and the
inverted (bottom-up) tree.

A call node is identified by (parent call node, func), not by stack index:
stacks that differ only in frame details (line, address, subcategory) but call
the same functions in the same order share one call node.

Ordering: children are sorted by descending absolute total, ties broken by
call node index (i.e. first-seen order). A node's category is the category
with the largest absolute time among the stacks that map to it; ties go to the
lowest category index.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterator, Optional

import networkx as nx

from ..profile_types import (
    Category,
    FrameTable,
    SamplesTable,
    StackTable,
    Thread,
    get_default_category,
    get_func_name,
    get_origin_annotation_for_func,
)

ROOT = -1


# ============================================================================
# Call Node Table
# ============================================================================

@dataclass
class CallNodeTable:
    """Structure of arrays, one row per call node. prefix is -1 for roots."""
    func: list[int] = field(default_factory=list)
    prefix: list[int] = field(default_factory=list)
    depth: list[int] = field(default_factory=list)
    category: list[int] = field(default_factory=list)
    subcategory: list[int] = field(default_factory=list)

    @property
    def length(self) -> int:
        return len(self.func)

    def append(self, func: int, prefix: int, category: int, subcategory: int) -> int:
        index = len(self.func)
        self.func.append(func)
        self.prefix.append(prefix)
        self.depth.append(0 if prefix == ROOT else self.depth[prefix] + 1)
        self.category.append(category)
        self.subcategory.append(subcategory)
        return index


class CallNodeInfo:
    """
    A call node table plus the lookups around it.

    For an inverted tree, `non_inverted` points at the regular tree the
    inverted one was derived from, and stack_index_to_call_node_index still
    refers to the non-inverted call nodes.
    """

    def __init__(
        self,
        call_node_table: CallNodeTable,
        stack_index_to_call_node_index: list[int],
        non_inverted: Optional['CallNodeInfo'] = None,
    ):
        self.call_node_table = call_node_table
        self.stack_index_to_call_node_index = stack_index_to_call_node_index
        self.non_inverted = non_inverted
        self._index_for_parent_and_func: dict[tuple[int, int], int] = {}
        for index in range(call_node_table.length):
            key = (call_node_table.prefix[index], call_node_table.func[index])
            self._index_for_parent_and_func[key] = index

    def is_inverted(self) -> bool:
        return self.non_inverted is not None

    def get_call_node_index_from_parent_and_func(self, parent: int, func: int) -> Optional[int]:
        return self._index_for_parent_and_func.get((parent, func))

    def get_call_node_index_from_path(self, path: list[int]) -> Optional[int]:
        """Walk a func path from a root; None when any step does not exist."""
        index = ROOT
        for func in path:
            child = self._index_for_parent_and_func.get((index, func))
            if child is None:
                return None
            index = child
        return None if index == ROOT else index

    def get_call_node_path(self, call_node_index: int) -> list[int]:
        """Func indexes from the root down to call_node_index."""
        path = []
        index = call_node_index
        while index != ROOT:
            path.append(self.call_node_table.func[index])
            index = self.call_node_table.prefix[index]
        path.reverse()
        return path

    def func_for_node(self, call_node_index: int) -> int:
        return self.call_node_table.func[call_node_index]

    def prefix_for_node(self, call_node_index: int) -> int:
        return self.call_node_table.prefix[call_node_index]

    def depth_for_node(self, call_node_index: int) -> int:
        return self.call_node_table.depth[call_node_index]

    def category_for_node(self, call_node_index: int) -> int:
        return self.call_node_table.category[call_node_index]

    def subcategory_for_node(self, call_node_index: int) -> int:
        return self.call_node_table.subcategory[call_node_index]

    def is_root(self, call_node_index: int) -> bool:
        return self.call_node_table.prefix[call_node_index] == ROOT


def compute_call_node_info(stack_table: StackTable, frame_table: FrameTable) -> CallNodeInfo:
    """
    Build the non-inverted call node table.

    Stacks are visited in index order; since a prefix always precedes its
    stack, the parent call node exists by the time a stack is reached.

    Raises:
        ValueError: If a prefix does not point to an earlier stack
        IndexError: If a stack references a frame outside the frame table
    """
    call_node_table = CallNodeTable()
    stack_index_to_call_node_index: list[int] = []
    index_for_parent_and_func: dict[tuple[int, int], int] = {}

    for stack_index in range(stack_table.length):
        prefix_stack = stack_table.prefix[stack_index]
        if prefix_stack is None:
            parent = ROOT
        elif 0 <= prefix_stack < stack_index:
            parent = stack_index_to_call_node_index[prefix_stack]
        else:
            raise ValueError(f"Stack {stack_index} has prefix {prefix_stack}, which is not an earlier stack")

        func = frame_table.func[stack_table.frame[stack_index]]
        if func is None:
            raise ValueError(f"Frame {stack_table.frame[stack_index]} has no func")

        key = (parent, func)
        call_node_index = index_for_parent_and_func.get(key)
        if call_node_index is None:
            call_node_index = call_node_table.append(
                func, parent, stack_table.category[stack_index], stack_table.subcategory[stack_index]
            )
            index_for_parent_and_func[key] = call_node_index
        stack_index_to_call_node_index.append(call_node_index)

    return CallNodeInfo(call_node_table, stack_index_to_call_node_index)


# ============================================================================
# Timings
# ============================================================================

def compute_stack_self(stack_table: StackTable, samples: SamplesTable) -> list[float]:
    """
    Summed sample weight per stack.

    Raises:
        IndexError: If a sample references a stack outside the stack table
    """
    stack_self = [0.0] * stack_table.length
    for sample_index, stack in enumerate(samples.stack):
        if stack is None:
            continue
        if not 0 <= stack < stack_table.length:
            raise IndexError(f"Sample {sample_index} references stack {stack} outside the stack table")
        stack_self[stack] += samples.weight_for(sample_index)
    return stack_self


def compute_call_node_self(call_node_info: CallNodeInfo, stack_self: list[float]) -> list[float]:
    call_node_self = [0.0] * call_node_info.call_node_table.length
    for stack_index, weight in enumerate(stack_self):
        if weight:
            call_node_self[call_node_info.stack_index_to_call_node_index[stack_index]] += weight
    return call_node_self


def _argmax_category(category_time: dict[tuple[int, int], float]) -> tuple[int, int]:
    """Dominant category, then dominant subcategory within it; ties go to the lowest index."""
    per_category: dict[int, float] = defaultdict(float)
    for (category, _subcategory), time in category_time.items():
        per_category[category] += time
    category = min(per_category, key=lambda c: (-per_category[c], c))
    subcategory = min(
        (sub for (cat, sub) in category_time if cat == category),
        key=lambda s: (-category_time[(category, s)], s),
    )
    return category, subcategory


def apply_dominant_categories(
    call_node_info: CallNodeInfo,
    stack_table: StackTable,
    stack_self: list[float],
) -> None:
    """
    Set each call node's category to the one with the most time across the
    stacks mapping to it. Nodes without time keep their first stack's category.
    """
    stack_total = [abs(weight) for weight in stack_self]
    for stack_index in range(stack_table.length - 1, -1, -1):
        prefix = stack_table.prefix[stack_index]
        if prefix is not None:
            stack_total[prefix] += stack_total[stack_index]

    category_time: dict[int, dict[tuple[int, int], float]] = defaultdict(lambda: defaultdict(float))
    for stack_index, total in enumerate(stack_total):
        if total:
            call_node = call_node_info.stack_index_to_call_node_index[stack_index]
            key = (stack_table.category[stack_index], stack_table.subcategory[stack_index])
            category_time[call_node][key] += total

    table = call_node_info.call_node_table
    for call_node, times in category_time.items():
        table.category[call_node], table.subcategory[call_node] = _argmax_category(times)


def compute_inverted_call_node_info(
    call_node_info: CallNodeInfo,
    call_node_self: list[float],
) -> tuple[CallNodeInfo, list[float], list[float]]:
    """
    Build the inverted tree from the non-inverted one.

    Every non-inverted node with self time contributes its reversed path: the
    node's own func becomes an inverted root, its callers become children.
    Self time lands on the inverted root only; every node on the reversed
    path gets the weight added to its total.

    Returns:
        (inverted CallNodeInfo, self time per inverted call node,
        total time per inverted call node)
    """
    table = call_node_info.call_node_table
    inverted_table = CallNodeTable()
    inverted_self: list[float] = []
    inverted_total: list[float] = []
    index_for_parent_and_func: dict[tuple[int, int], int] = {}
    category_time: dict[int, dict[tuple[int, int], float]] = defaultdict(lambda: defaultdict(float))

    for call_node in range(table.length):
        weight = call_node_self[call_node]
        if not weight:
            continue
        parent = ROOT
        node = call_node
        while node != ROOT:
            func = table.func[node]
            key = (parent, func)
            inverted_node = index_for_parent_and_func.get(key)
            if inverted_node is None:
                inverted_node = inverted_table.append(func, parent, table.category[node], table.subcategory[node])
                inverted_self.append(0.0)
                inverted_total.append(0.0)
                index_for_parent_and_func[key] = inverted_node
            if parent == ROOT:
                inverted_self[inverted_node] += weight
            inverted_total[inverted_node] += weight
            category_time[inverted_node][(table.category[node], table.subcategory[node])] += abs(weight)
            parent = inverted_node
            node = table.prefix[node]

    for inverted_node, times in category_time.items():
        inverted_table.category[inverted_node], inverted_table.subcategory[inverted_node] = _argmax_category(times)

    inverted_info = CallNodeInfo(
        inverted_table, call_node_info.stack_index_to_call_node_index, non_inverted=call_node_info
    )
    return inverted_info, inverted_self, inverted_total


def get_matching_ancestor_stack_for_inverted_call_node(
    stack_table: StackTable,
    frame_table: FrameTable,
    stack_index: int,
    inverted_path: list[int],
) -> Optional[int]:
    """
    Find the stack that a sample with leaf stack_index contributes to an
    inverted call node.

    The inverted path lists funcs from the leaf towards the root. The sample
    contributes when its stack ends with that chain; the returned stack is the
    one at the far end of the chain, i.e. the frame the inverted node stands for.
    Returns None when the stack does not end with the chain.
    """
    stack: Optional[int] = stack_index
    last = len(inverted_path) - 1
    for depth, func in enumerate(inverted_path):
        if stack is None or frame_table.func[stack_table.frame[stack]] != func:
            return None
        if depth == last:
            return stack
        stack = stack_table.prefix[stack]
    return None


@dataclass
class CallTreeTimings:
    self_time: list[float]
    total: list[float]
    root_total: float
    children: list[list[int]]
    roots: list[int]


def compute_call_tree_timings(
    call_node_info: CallNodeInfo,
    call_node_self: list[float],
    call_node_total: Optional[list[float]] = None,
) -> CallTreeTimings:
    """
    Accumulate self time into totals and order the visible children.

    Children are visited in reverse index order so every child is folded into
    its parent before the parent is folded into the grandparent. A node is
    hidden when its whole subtree carries no time.

    Inverted trees pass call_node_total: their self time sits on the roots, so
    totals cannot be folded up from the children and are taken as given.
    """
    table = call_node_info.call_node_table
    if call_node_total is not None:
        total = list(call_node_total)
        has_time = [weight != 0 for weight in total]
    else:
        total = list(call_node_self)
        has_time = [weight != 0 for weight in call_node_self]
        for call_node in range(table.length - 1, -1, -1):
            prefix = table.prefix[call_node]
            if prefix != ROOT:
                total[prefix] += total[call_node]
                has_time[prefix] = has_time[prefix] or has_time[call_node]

    children: list[list[int]] = [[] for _ in range(table.length)]
    roots: list[int] = []
    for call_node in range(table.length):
        if not has_time[call_node]:
            continue
        prefix = table.prefix[call_node]
        (roots if prefix == ROOT else children[prefix]).append(call_node)

    def sort_key(node: int):
        return (-abs(total[node]), node)

    roots.sort(key=sort_key)
    for child_list in children:
        child_list.sort(key=sort_key)

    root_total = sum(abs(weight) for weight in call_node_self)
    return CallTreeTimings(call_node_self, total, root_total, children, roots)


# ============================================================================
# Call Tree
# ============================================================================

@dataclass
class CallNodeData:
    func_name: str
    total: float
    total_relative: float
    self_time: float
    self_relative: float


@dataclass
class CallNodeDisplayData:
    name: str
    total: float
    total_percent: str
    self_time: float
    origin: str
    category_name: str
    subcategory_name: str
    category_color: str
    is_js: bool
    weight_type: str


class CallTree:
    """Read API over the call node table and its timings."""

    def __init__(
        self,
        thread: Thread,
        call_node_info: CallNodeInfo,
        timings: CallTreeTimings,
        categories: list[Category],
    ):
        self.thread = thread
        self.call_node_info = call_node_info
        self.timings = timings
        self.categories = categories

    def is_inverted(self) -> bool:
        return self.call_node_info.is_inverted()

    def get_roots(self) -> list[int]:
        return self.timings.roots

    def get_children(self, call_node_index: int) -> list[int]:
        return self.timings.children[call_node_index]

    def has_children(self, call_node_index: int) -> bool:
        return bool(self.timings.children[call_node_index])

    def get_node_data(self, call_node_index: int) -> CallNodeData:
        func = self.call_node_info.func_for_node(call_node_index)
        total = self.timings.total[call_node_index]
        self_time = self.timings.self_time[call_node_index]
        root_total = self.timings.root_total
        return CallNodeData(
            func_name=get_func_name(self.thread, func),
            total=total,
            total_relative=total / root_total if root_total else 0.0,
            self_time=self_time,
            self_relative=self_time / root_total if root_total else 0.0,
        )

    def get_display_data(self, call_node_index: int) -> CallNodeDisplayData:
        node_data = self.get_node_data(call_node_index)
        func = self.call_node_info.func_for_node(call_node_index)
        category = self.categories[self.call_node_info.category_for_node(call_node_index)]
        subcategory_index = self.call_node_info.subcategory_for_node(call_node_index)
        subcategory_name = (
            category.subcategories[subcategory_index]
            if 0 <= subcategory_index < len(category.subcategories) else ''
        )
        return CallNodeDisplayData(
            name=node_data.func_name,
            total=node_data.total,
            total_percent=f"{round(node_data.total_relative * 100)}%",
            self_time=node_data.self_time,
            origin=get_origin_annotation_for_func(self.thread, func),
            category_name=category.name,
            subcategory_name=subcategory_name,
            category_color=category.color,
            is_js=self.thread.func_table.is_js[func],
            weight_type=self.thread.samples.weight_type,
        )

    def get_call_node_path(self, call_node_index: int) -> list[int]:
        return self.call_node_info.get_call_node_path(call_node_index)

    def find_heaviest_path(self, call_node_index: Optional[int] = None) -> list[int]:
        """Follow the heaviest child from a node (default: the heaviest root) to a leaf."""
        if call_node_index is None:
            if not self.timings.roots:
                return []
            call_node_index = self.timings.roots[0]
        node = call_node_index
        while self.timings.children[node]:
            node = self.timings.children[node][0]
        return self.get_call_node_path(node)

    def iter_visible_nodes(self) -> Iterator[int]:
        """Depth-first pre-order over visible nodes, in display order."""
        pending = list(reversed(self.timings.roots))
        while pending:
            node = pending.pop()
            yield node
            pending.extend(reversed(self.timings.children[node]))


def build_call_tree(
    thread: Thread,
    categories: list[Category],
    default_category: Optional[int] = None,
    is_inverted: bool = False,
) -> CallTree:
    """
    Build the call tree for a thread's stack, frame, func and samples tables.

    Args:
        thread: Thread whose tables to aggregate (already transformed/filtered)
        categories: Profile category list
        default_category: Category for nodes with no time; defaults to the grey one
        is_inverted: Build the bottom-up tree instead

    Returns:
        CallTree over the thread
    """
    if default_category is None:
        default_category = get_default_category(categories)
    call_node_info = compute_call_node_info(thread.stack_table, thread.frame_table)
    stack_self = compute_stack_self(thread.stack_table, thread.samples)
    apply_dominant_categories(call_node_info, thread.stack_table, stack_self)
    call_node_self = compute_call_node_self(call_node_info, stack_self)

    call_node_total = None
    if is_inverted:
        call_node_info, call_node_self, call_node_total = compute_inverted_call_node_info(
            call_node_info, call_node_self
        )

    timings = compute_call_tree_timings(call_node_info, call_node_self, call_node_total)
    table = call_node_info.call_node_table
    for call_node in range(table.length):
        if not 0 <= table.category[call_node] < len(categories):
            table.category[call_node] = default_category
            table.subcategory[call_node] = 0
    return CallTree(thread, call_node_info, timings, categories)


# ============================================================================
# Function List
# ============================================================================

@dataclass
class FunctionListTimings:
    """Per-function totals where each sample counts once per function."""
    total: list[float]
    self_time: list[float]
    root_total: float


def compute_function_list_timings(thread: Thread) -> FunctionListTimings:
    """
    Total counts a sample once for every distinct function on its stack, so
    recursion does not inflate it; self counts the sample's leaf function.
    """
    func_count = thread.func_table.length
    total = [0.0] * func_count
    self_time = [0.0] * func_count
    call_node_info = compute_call_node_info(thread.stack_table, thread.frame_table)
    stack_self = compute_stack_self(thread.stack_table, thread.samples)
    call_node_self = compute_call_node_self(call_node_info, stack_self)
    table = call_node_info.call_node_table

    for call_node, weight in enumerate(call_node_self):
        if not weight:
            continue
        self_time[table.func[call_node]] += weight
        seen: set[int] = set()
        node = call_node
        while node != ROOT:
            func = table.func[node]
            if func not in seen:
                seen.add(func)
                total[func] += weight
            node = table.prefix[node]

    root_total = sum(abs(weight) for weight in call_node_self)
    return FunctionListTimings(total, self_time, root_total)


# ============================================================================
# Graph Export
# ============================================================================

def call_tree_to_networkx(call_tree: CallTree) -> nx.DiGraph:
    """
    Export the visible call tree as a NetworkX DiGraph.

    Node keys are call node indexes. Node attributes: func, name, total,
    self_time, category, depth. Edges point from caller to callee (from callee
    to caller for an inverted tree).
    """
    G = nx.DiGraph()
    info = call_tree.call_node_info
    for call_node in call_tree.iter_visible_nodes():
        node_data = call_tree.get_node_data(call_node)
        G.add_node(
            call_node,
            func=info.func_for_node(call_node),
            name=node_data.func_name,
            total=node_data.total,
            self_time=node_data.self_time,
            category=info.category_for_node(call_node),
            depth=info.depth_for_node(call_node),
        )
        prefix = info.prefix_for_node(call_node)
        if prefix != ROOT:
            G.add_edge(prefix, call_node)
    return G
