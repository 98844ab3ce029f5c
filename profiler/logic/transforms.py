"""
Call Tree Transforms

Each transform is a small frozen dataclass; applying one is a pure function
from Thread to Thread that rewrites the stack table (and, for
collapse-resource, the frame and func tables) and remaps the sample stacks.
A thread's displayed state is the reduce of apply_transform over its
transform stack, recomputed in full whenever the stack changes.

Transforms that reference a function, resource, category or call node path
that does not exist in the thread are no-ops.

Transforms available:
    focus-subtree              keep only the subtree under a call node path
    focus-function             keep only the subtrees rooted at a function
    focus-category             keep only frames of one category
    merge-call-node            remove one call node, giving its time to its parent
    merge-function             remove a function everywhere
    drop-function              drop every sample that has a function on its stack
    collapse-resource          replace a library's functions by one node per call path
    collapse-direct-recursion  flatten f -> f -> f into f
    collapse-recursion         flatten f -> ... -> f into f
    collapse-function-subtree  give the time of a function's callees to the function
"""

from dataclasses import dataclass, replace
from functools import reduce
from typing import ClassVar, Optional, Union

from ..config import ImplementationFilter, get_settings
from ..logging_utils import get_logger
from ..profile_types import Category, StackTable, Thread, get_func_name
from .call_tree import (
    CallNodeInfo,
    compute_call_node_info,
    compute_call_node_self,
    compute_inverted_call_node_info,
    compute_stack_self,
)
from .profile_data import (
    filter_thread_by_implementation,
    func_matches_implementation,
    get_map_stack_updater,
    update_thread_stacks,
)

logger = get_logger(__name__)

CallNodePath = tuple[int, ...]


# ============================================================================
# Transform Types
# ============================================================================

@dataclass(frozen=True)
class FocusSubtree:
    call_node_path: CallNodePath
    implementation: ImplementationFilter = 'combined'
    inverted: bool = False
    type: ClassVar[str] = 'focus-subtree'


@dataclass(frozen=True)
class FocusFunction:
    func_index: int
    type: ClassVar[str] = 'focus-function'


@dataclass(frozen=True)
class FocusCategory:
    category: int
    type: ClassVar[str] = 'focus-category'


@dataclass(frozen=True)
class MergeCallNode:
    call_node_path: CallNodePath
    implementation: ImplementationFilter = 'combined'
    type: ClassVar[str] = 'merge-call-node'


@dataclass(frozen=True)
class MergeFunction:
    func_index: int
    type: ClassVar[str] = 'merge-function'


@dataclass(frozen=True)
class DropFunction:
    func_index: int
    type: ClassVar[str] = 'drop-function'


@dataclass(frozen=True)
class CollapseResource:
    resource_index: int
    implementation: ImplementationFilter = 'combined'
    # Index the synthetic func gets in the transformed thread; see
    # make_collapse_resource().
    collapsed_func_index: Optional[int] = None
    type: ClassVar[str] = 'collapse-resource'


@dataclass(frozen=True)
class CollapseDirectRecursion:
    func_index: int
    implementation: ImplementationFilter = 'combined'
    type: ClassVar[str] = 'collapse-direct-recursion'


@dataclass(frozen=True)
class CollapseRecursion:
    func_index: int
    type: ClassVar[str] = 'collapse-recursion'


@dataclass(frozen=True)
class CollapseFunctionSubtree:
    func_index: int
    type: ClassVar[str] = 'collapse-function-subtree'


Transform = Union[
    FocusSubtree,
    FocusFunction,
    FocusCategory,
    MergeCallNode,
    MergeFunction,
    DropFunction,
    CollapseResource,
    CollapseDirectRecursion,
    CollapseRecursion,
    CollapseFunctionSubtree,
]

TransformStack = tuple[Transform, ...]


def make_collapse_resource(thread: Thread, resource_index: int,
                           implementation: ImplementationFilter = 'combined') -> CollapseResource:
    """Create a collapse-resource transform that knows its synthetic func index for this thread."""
    return CollapseResource(resource_index, implementation, collapsed_func_index=thread.func_table.length)


# ============================================================================
# Applying Transforms
# ============================================================================

def apply_transform(
    thread: Thread,
    transform: Transform,
    default_category: int = 0,
    categories: Optional[list[Category]] = None,
) -> Thread:
    """
    Apply one transform.

    Args:
        thread: Thread snapshot to transform
        transform: Any of the transform dataclasses
        default_category: Category given to collapsed stacks whose sources disagree
        categories: Profile category list bounding FocusCategory; defaults to
            the configured default categories

    Returns:
        New Thread, or the same thread when the transform does not apply
    """
    if not _is_applicable(thread, transform, categories):
        logger.debug("Transform %s does not apply to thread %r, skipping", transform, thread.name)
        return thread

    if isinstance(transform, FocusSubtree):
        if transform.inverted:
            return focus_inverted_subtree(thread, transform.call_node_path, transform.implementation)
        return focus_subtree(thread, transform.call_node_path, transform.implementation)
    if isinstance(transform, FocusFunction):
        return focus_function(thread, transform.func_index)
    if isinstance(transform, FocusCategory):
        return focus_category(thread, transform.category)
    if isinstance(transform, MergeCallNode):
        return merge_call_node(thread, transform.call_node_path, transform.implementation)
    if isinstance(transform, MergeFunction):
        return merge_function(thread, transform.func_index)
    if isinstance(transform, DropFunction):
        return drop_function(thread, transform.func_index)
    if isinstance(transform, CollapseResource):
        return collapse_resource(thread, transform.resource_index, transform.implementation, default_category)
    if isinstance(transform, CollapseDirectRecursion):
        return collapse_direct_recursion(thread, transform.func_index, transform.implementation)
    if isinstance(transform, CollapseRecursion):
        return collapse_recursion(thread, transform.func_index)
    if isinstance(transform, CollapseFunctionSubtree):
        return collapse_function_subtree(thread, transform.func_index)
    raise TypeError(f"Unknown transform: {transform!r}")


def apply_transforms(thread: Thread, transforms: TransformStack, default_category: int = 0,
                     categories: Optional[list[Category]] = None) -> Thread:
    """Apply a whole transform stack in order."""
    return reduce(lambda current, transform: apply_transform(current, transform, default_category, categories),
                  transforms, thread)


def _is_applicable(thread: Thread, transform: Transform, categories: Optional[list[Category]]) -> bool:
    func_count = thread.func_table.length
    if isinstance(transform, (FocusSubtree, MergeCallNode)):
        path = transform.call_node_path
        if not path or any(not 0 <= func < func_count for func in path):
            return False
        return _call_node_path_exists(thread, transform)
    if isinstance(transform, FocusCategory):
        if categories is None:
            categories = get_settings().default_categories
        return 0 <= transform.category < len(categories)
    if isinstance(transform, CollapseResource):
        return 0 <= transform.resource_index < thread.resource_table.length
    return 0 <= transform.func_index < func_count


def _call_node_path_exists(thread: Thread, transform: Union[FocusSubtree, MergeCallNode]) -> bool:
    filtered = filter_thread_by_implementation(thread, transform.implementation)
    call_node_info = compute_call_node_info(filtered.stack_table, filtered.frame_table)
    if isinstance(transform, FocusSubtree) and transform.inverted:
        call_node_self = compute_call_node_self(
            call_node_info, compute_stack_self(filtered.stack_table, filtered.samples)
        )
        call_node_info, _, _ = compute_inverted_call_node_info(call_node_info, call_node_self)
    return call_node_info.get_call_node_index_from_path(list(transform.call_node_path)) is not None


def _func_of_stack(thread: Thread, stack_index: int) -> int:
    return thread.frame_table.func[thread.stack_table.frame[stack_index]]


def _copy_stack_row(new_stack_table: StackTable, stack_table: StackTable, stack_index: int,
                    prefix: Optional[int], frame: Optional[int] = None) -> int:
    return new_stack_table.append_row(
        frame=stack_table.frame[stack_index] if frame is None else frame,
        prefix=prefix,
        category=stack_table.category[stack_index],
        subcategory=stack_table.subcategory[stack_index],
    )


def focus_subtree(thread: Thread, call_node_path: CallNodePath, implementation: ImplementationFilter) -> Thread:
    """
    Keep only stacks that start with call_node_path; the path's last function
    becomes the root. Frames outside the implementation filter are skipped
    while matching.
    """
    stack_table = thread.stack_table
    prefix_depth = len(call_node_path)
    # -1: does not match; otherwise how many path funcs matched so far.
    stack_matches: list[int] = []
    old_stack_to_new_stack: dict[Optional[int], Optional[int]] = {None: None}
    new_stack_table = StackTable()

    for stack_index in range(stack_table.length):
        prefix = stack_table.prefix[stack_index]
        prefix_matches_up_to = stack_matches[prefix] if prefix is not None else 0
        matches_up_to = -1
        if prefix_matches_up_to != -1:
            if prefix_matches_up_to == prefix_depth:
                matches_up_to = prefix_depth
            else:
                func = _func_of_stack(thread, stack_index)
                if func == call_node_path[prefix_matches_up_to]:
                    matches_up_to = prefix_matches_up_to + 1
                elif not func_matches_implementation(thread, func, implementation):
                    matches_up_to = prefix_matches_up_to
            if matches_up_to == prefix_depth:
                new_prefix = old_stack_to_new_stack.get(prefix)
                old_stack_to_new_stack[stack_index] = _copy_stack_row(
                    new_stack_table, stack_table, stack_index, new_prefix
                )
        stack_matches.append(matches_up_to)

    def convert(stack: Optional[int]) -> Optional[int]:
        if stack is None or stack_matches[stack] != prefix_depth:
            return None
        return old_stack_to_new_stack[stack]

    return update_thread_stacks(thread, new_stack_table, convert)


def focus_inverted_subtree(thread: Thread, postfix_path: CallNodePath,
                           implementation: ImplementationFilter) -> Thread:
    """
    Keep only samples whose stack ends with the reversed postfix_path (the
    path as shown in the inverted tree); each sample is cut back to the stack
    of the path's last function.
    """
    stack_table = thread.stack_table
    postfix_depth = len(postfix_path)
    converted: dict[int, Optional[int]] = {}

    def convert_stack(leaf: int) -> Optional[int]:
        matched = 0
        stack = leaf
        while stack is not None:
            func = _func_of_stack(thread, stack)
            if func == postfix_path[matched]:
                matched += 1
                if matched == postfix_depth:
                    return stack
            elif func_matches_implementation(thread, func, implementation):
                return None
            stack = stack_table.prefix[stack]
        return None

    def convert(stack: Optional[int]) -> Optional[int]:
        if stack is None:
            return None
        if stack not in converted:
            converted[stack] = convert_stack(stack)
        return converted[stack]

    return update_thread_stacks(thread, stack_table, convert)


def focus_function(thread: Thread, func_index: int) -> Thread:
    """Keep only stacks below the first call of func_index, which becomes the root."""
    stack_table = thread.stack_table
    old_stack_to_new_stack: dict[Optional[int], Optional[int]] = {None: None}
    new_stack_table = StackTable()

    for stack_index in range(stack_table.length):
        prefix = stack_table.prefix[stack_index]
        new_prefix = old_stack_to_new_stack.get(prefix) if prefix is not None else None
        if new_prefix is not None or _func_of_stack(thread, stack_index) == func_index:
            old_stack_to_new_stack[stack_index] = _copy_stack_row(
                new_stack_table, stack_table, stack_index, new_prefix
            )

    return update_thread_stacks(thread, new_stack_table, get_map_stack_updater(old_stack_to_new_stack))


def focus_category(thread: Thread, category: int) -> Thread:
    """
    Remove every stack frame outside the category. Samples with no frame in
    the category are dropped.
    """
    stack_table = thread.stack_table
    old_stack_to_new_stack: dict[Optional[int], Optional[int]] = {None: None}
    new_stack_table = StackTable()

    for stack_index in range(stack_table.length):
        new_prefix = old_stack_to_new_stack[stack_table.prefix[stack_index]]
        if stack_table.category[stack_index] != category:
            old_stack_to_new_stack[stack_index] = new_prefix
            continue
        old_stack_to_new_stack[stack_index] = _copy_stack_row(
            new_stack_table, stack_table, stack_index, new_prefix
        )

    return update_thread_stacks(thread, new_stack_table, get_map_stack_updater(old_stack_to_new_stack))


def merge_call_node(thread: Thread, call_node_path: CallNodePath, implementation: ImplementationFilter) -> Thread:
    """
    Remove the single call node at call_node_path; its self time goes to its
    parent and its children are reattached to the parent.
    """
    stack_table = thread.stack_table
    depth_at_leaf = len(call_node_path) - 1
    old_stack_to_new_stack: dict[Optional[int], Optional[int]] = {None: None}
    new_stack_table = StackTable()
    stack_depths: list[int] = []
    stack_matches: list[bool] = []

    for stack_index in range(stack_table.length):
        prefix = stack_table.prefix[stack_index]
        func = _func_of_stack(thread, stack_index)
        prefix_matches = True if prefix is None else stack_matches[prefix]
        stack_depth = -1 if prefix is None else stack_depths[prefix]

        do_merge = False
        if prefix_matches and stack_depth < depth_at_leaf:
            if call_node_path[stack_depth + 1] == func:
                matches = True
                if stack_depth + 1 == depth_at_leaf:
                    do_merge = True
                else:
                    stack_depth += 1
            elif not func_matches_implementation(thread, func, implementation):
                matches = True
            else:
                matches = False
        else:
            matches = False
        stack_matches.append(matches)
        stack_depths.append(stack_depth)

        new_prefix = old_stack_to_new_stack.get(prefix)
        if do_merge:
            old_stack_to_new_stack[stack_index] = new_prefix
        else:
            old_stack_to_new_stack[stack_index] = _copy_stack_row(
                new_stack_table, stack_table, stack_index, new_prefix
            )

    return update_thread_stacks(thread, new_stack_table, get_map_stack_updater(old_stack_to_new_stack))


def merge_function(thread: Thread, func_index: int) -> Thread:
    """
    Remove func_index from every call path. Stacks of the function map to the
    closest ancestor that is not the function; the skipped rows stay in the
    table, unreferenced.
    """
    stack_table = thread.stack_table
    old_stack_to_new_stack: list[Optional[int]] = []
    new_prefixes: list[Optional[int]] = []

    for stack_index in range(stack_table.length):
        old_prefix = stack_table.prefix[stack_index]
        new_prefix = None if old_prefix is None else old_stack_to_new_stack[old_prefix]
        if _func_of_stack(thread, stack_index) == func_index:
            old_stack_to_new_stack.append(new_prefix)
        else:
            old_stack_to_new_stack.append(stack_index)
        new_prefixes.append(new_prefix)

    new_stack_table = replace(stack_table.copy(), prefix=new_prefixes)
    return update_thread_stacks(
        thread, new_stack_table,
        lambda stack: None if stack is None else old_stack_to_new_stack[stack],
    )


def drop_function(thread: Thread, func_index: int) -> Thread:
    """Drop every sample whose stack contains func_index."""
    stack_table = thread.stack_table
    contains_func: list[bool] = []
    for stack_index in range(stack_table.length):
        prefix = stack_table.prefix[stack_index]
        contains_func.append(
            _func_of_stack(thread, stack_index) == func_index
            or (prefix is not None and contains_func[prefix])
        )

    return update_thread_stacks(
        thread, stack_table,
        lambda stack: None if stack is None or contains_func[stack] else stack,
    )


def collapse_resource(thread: Thread, resource_index: int, implementation: ImplementationFilter,
                      default_category: int = 0) -> Thread:
    """
    Replace each run of functions from resource_index by a single frame of a
    new func named after the resource. Sibling stacks of the same resource
    share one collapsed stack; if their categories disagree it gets the
    default category.
    """
    stack_table = thread.stack_table
    func_table = thread.func_table
    frame_table = thread.frame_table

    string_table = thread.string_table.copy()
    new_func_table = func_table.copy()
    resource_name = thread.resource_table.name[resource_index]
    collapsed_func_index = new_func_table.append_row(
        name=string_table.index_for_string(string_table.get_string(resource_name)),
        resource=resource_index,
    )

    new_frame_table = frame_table.copy()
    new_stack_table = StackTable()
    old_stack_to_new_stack: dict[Optional[int], Optional[int]] = {None: None}
    prefix_stack_to_collapsed_stack: dict[Optional[int], int] = {}
    collapsed_stacks: set[int] = set()
    collapsed_frame_index: Optional[int] = None

    for stack_index in range(stack_table.length):
        prefix = stack_table.prefix[stack_index]
        frame = stack_table.frame[stack_index]
        category = stack_table.category[stack_index]
        subcategory = stack_table.subcategory[stack_index]
        func = frame_table.func[frame]
        new_prefix = old_stack_to_new_stack[prefix]

        if func_table.resource[func] == resource_index:
            if new_prefix in collapsed_stacks:
                # Already inside a collapsed run.
                old_stack_to_new_stack[stack_index] = new_prefix
                continue
            existing = prefix_stack_to_collapsed_stack.get(prefix)
            if existing is None:
                if collapsed_frame_index is None:
                    collapsed_frame_index = new_frame_table.append_row(
                        func=collapsed_func_index,
                        address=frame_table.address[frame],
                        inline_depth=frame_table.inline_depth[frame],
                        category=frame_table.category[frame],
                        subcategory=frame_table.subcategory[frame],
                        native_symbol=frame_table.native_symbol[frame],
                        inner_window_id=frame_table.inner_window_id[frame],
                        line=frame_table.line[frame],
                        column=frame_table.column[frame],
                    )
                new_stack = new_stack_table.append_row(
                    frame=collapsed_frame_index, prefix=new_prefix,
                    category=category, subcategory=subcategory,
                )
                collapsed_stacks.add(new_stack)
                prefix_stack_to_collapsed_stack[prefix] = new_stack
                old_stack_to_new_stack[stack_index] = new_stack
            else:
                old_stack_to_new_stack[stack_index] = existing
                if new_stack_table.category[existing] != category:
                    new_stack_table.category[existing] = default_category
                    new_stack_table.subcategory[existing] = 0
                elif new_stack_table.subcategory[existing] != subcategory:
                    new_stack_table.subcategory[existing] = 0
            continue

        if new_prefix is not None and not func_matches_implementation(thread, func, implementation):
            prefix_func = new_frame_table.func[new_stack_table.frame[new_prefix]]
            if prefix_func == collapsed_func_index:
                # Filtered-out frame called from the collapsed run stays hidden in it.
                old_stack_to_new_stack[stack_index] = new_prefix
                continue
        old_stack_to_new_stack[stack_index] = _copy_stack_row(
            new_stack_table, stack_table, stack_index, new_prefix
        )

    new_thread = replace(
        thread, string_table=string_table, func_table=new_func_table, frame_table=new_frame_table
    )
    return update_thread_stacks(new_thread, new_stack_table, get_map_stack_updater(old_stack_to_new_stack))


def collapse_direct_recursion(thread: Thread, func_index: int, implementation: ImplementationFilter) -> Thread:
    """
    Reparent the inner calls of f -> f -> f to the outermost call's parent.
    Frames outside the implementation filter do not break the chain.
    Stack indexes are unchanged; only the prefix column is rewritten.
    """
    stack_table = thread.stack_table
    chain_prefix_for_stack: dict[int, Optional[int]] = {}
    new_prefixes = list(stack_table.prefix)

    for stack_index in range(stack_table.length):
        prefix = stack_table.prefix[stack_index]
        func = _func_of_stack(thread, stack_index)
        in_chain = prefix is not None and prefix in chain_prefix_for_stack
        if not in_chain:
            if func == func_index:
                chain_prefix_for_stack[stack_index] = prefix
            continue
        chain_prefix = chain_prefix_for_stack[prefix]
        if func_matches_implementation(thread, func, implementation):
            if func == func_index:
                chain_prefix_for_stack[stack_index] = chain_prefix
                new_prefixes[stack_index] = chain_prefix
        else:
            chain_prefix_for_stack[stack_index] = chain_prefix

    return replace(thread, stack_table=replace(stack_table.copy(), prefix=new_prefixes))


def collapse_recursion(thread: Thread, func_index: int) -> Thread:
    """
    Reparent every inner call of func_index inside a func_index subtree to
    the parent of the outermost call, whatever lies between them.
    """
    stack_table = thread.stack_table
    subtree_prefix_for_stack: dict[int, Optional[int]] = {}
    new_prefixes = list(stack_table.prefix)

    for stack_index in range(stack_table.length):
        prefix = stack_table.prefix[stack_index]
        func = _func_of_stack(thread, stack_index)
        if prefix is None or prefix not in subtree_prefix_for_stack:
            if func == func_index:
                subtree_prefix_for_stack[stack_index] = prefix
            continue
        subtree_prefix = subtree_prefix_for_stack[prefix]
        subtree_prefix_for_stack[stack_index] = subtree_prefix
        if func == func_index:
            new_prefixes[stack_index] = subtree_prefix

    return replace(thread, stack_table=replace(stack_table.copy(), prefix=new_prefixes))


def collapse_function_subtree(thread: Thread, func_index: int) -> Thread:
    """Map every stack below func_index to the func_index stack, making callee time self time."""
    stack_table = thread.stack_table
    old_stack_to_new_stack: list[int] = []
    in_collapsed_subtree: list[bool] = []

    for stack_index in range(stack_table.length):
        prefix = stack_table.prefix[stack_index]
        if prefix is not None and in_collapsed_subtree[prefix]:
            old_stack_to_new_stack.append(old_stack_to_new_stack[prefix])
            in_collapsed_subtree.append(True)
        else:
            old_stack_to_new_stack.append(stack_index)
            in_collapsed_subtree.append(_func_of_stack(thread, stack_index) == func_index)

    return update_thread_stacks(
        thread, stack_table,
        lambda stack: None if stack is None else old_stack_to_new_stack[stack],
    )


# ============================================================================
# Call Node Paths Across Transforms
# ============================================================================

def _path_has_prefix(prefix_path: CallNodePath, path: list[int]) -> bool:
    return len(prefix_path) <= len(path) and all(func == path[i] for i, func in enumerate(prefix_path))


def apply_transform_to_call_node_path(
    call_node_path: list[int],
    transform: Transform,
    transformed_thread: Thread,
    call_node_info: Optional[CallNodeInfo] = None,
) -> list[int]:
    """
    Translate a selected call node path into the tree produced by a transform.

    An empty list means the selection no longer exists.

    Args:
        call_node_path: Path in the tree before the transform
        transform: Transform being pushed
        transformed_thread: Thread after the transform
        call_node_info: Call node info before the transform (needed for focus-category)
    """
    path = list(call_node_path)
    if isinstance(transform, FocusSubtree):
        prefix = transform.call_node_path
        return path[len(prefix) - 1:] if _path_has_prefix(prefix, path) else []
    if isinstance(transform, FocusFunction):
        if transform.func_index not in path:
            return []
        return path[path.index(transform.func_index):]
    if isinstance(transform, FocusCategory):
        if call_node_info is None:
            raise ValueError("focus-category needs the call node info of the untransformed tree")
        new_path = []
        parent = -1
        for func in path:
            node = call_node_info.get_call_node_index_from_parent_and_func(parent, func)
            if node is None:
                return []
            if call_node_info.category_for_node(node) == transform.category:
                new_path.append(func)
            parent = node
        return new_path
    if isinstance(transform, MergeCallNode):
        prefix = transform.call_node_path
        if _path_has_prefix(prefix, path):
            return [func for i, func in enumerate(path) if i != len(prefix) - 1]
        return path
    if isinstance(transform, MergeFunction):
        return [func for func in path if func != transform.func_index]
    if isinstance(transform, DropFunction):
        return [] if transform.func_index in path else path
    if isinstance(transform, CollapseResource):
        collapsed = transform.collapsed_func_index
        if collapsed is None:
            collapsed = transformed_thread.func_table.length - 1
        resources = transformed_thread.func_table.resource
        mapped = [collapsed if resources[func] == transform.resource_index else func for func in path]
        return [func for i, func in enumerate(mapped)
                if i == 0 or func != mapped[i - 1] or func != collapsed]
    if isinstance(transform, CollapseDirectRecursion):
        new_path = []
        previous = None
        for func in path:
            if func != transform.func_index or func != previous:
                new_path.append(func)
            previous = func
        return new_path
    if isinstance(transform, CollapseRecursion):
        if transform.func_index not in path:
            return path
        first = path.index(transform.func_index)
        last = len(path) - 1 - path[::-1].index(transform.func_index)
        return path[:first] + path[last:]
    if isinstance(transform, CollapseFunctionSubtree):
        if transform.func_index not in path:
            return path
        return path[:path.index(transform.func_index) + 1]
    raise TypeError(f"Unknown transform: {transform!r}")


# ============================================================================
# Labels
# ============================================================================

def get_transform_label(thread: Thread, transform: Transform, categories: Optional[list[Category]] = None) -> str:
    """Short human-readable description of a transform, e.g. "Merge: foo"."""
    def func_name(func_index: int) -> str:
        if 0 <= func_index < thread.func_table.length:
            return get_func_name(thread, func_index)
        return f"func {func_index}"

    if isinstance(transform, CollapseResource):
        if 0 <= transform.resource_index < thread.resource_table.length:
            name = thread.string_table.get_string(thread.resource_table.name[transform.resource_index])
        else:
            name = f"resource {transform.resource_index}"
        return f"Collapse: {name}"
    if isinstance(transform, FocusCategory):
        if categories and 0 <= transform.category < len(categories):
            return f"Focus category: {categories[transform.category].name}"
        return f"Focus category: {transform.category}"
    if isinstance(transform, (FocusSubtree, MergeCallNode)):
        last = func_name(transform.call_node_path[-1]) if transform.call_node_path else ''
        return f"Focus Node: {last}" if isinstance(transform, FocusSubtree) else f"Merge Node: {last}"

    prefixes = {
        FocusFunction: 'Focus',
        MergeFunction: 'Merge',
        DropFunction: 'Drop',
        CollapseRecursion: 'Collapse recursion',
        CollapseDirectRecursion: 'Collapse direct recursion only',
        CollapseFunctionSubtree: 'Collapse',
    }
    return f"{prefixes[type(transform)]}: {func_name(transform.func_index)}"


def get_transform_labels(thread: Thread, transforms: TransformStack,
                         categories: Optional[list[Category]] = None) -> list[str]:
    """Breadcrumb labels: the untransformed thread followed by one label per transform."""
    return [f"Complete '{thread.name}'"] + [
        get_transform_label(thread, transform, categories) for transform in transforms
    ]
