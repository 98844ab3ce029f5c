"""
Profile Computation

Pure functions over Thread tables. Nothing here mutates its input.
"""

from .call_tree import (
    CallNodeInfo,
    CallTree,
    build_call_tree,
    call_tree_to_networkx,
    compute_function_list_timings,
)
from .transforms import (
    Transform,
    TransformStack,
    apply_transform,
    apply_transforms,
    apply_transform_to_call_node_path,
    get_transform_label,
)
from .marker_data import (
    derive_markers_from_raw_marker_table,
    derive_jank_markers,
    filter_markers_by_search,
    filter_markers_to_range,
)
from .line_timings import get_line_timings, get_stack_line_info
from .address_timings import get_address_timings, get_stack_address_info
from .merge_compare import (
    compute_comparison_samples,
    merge_profiles,
    merge_profiles_for_diffing,
    merge_threads,
)
from .selectors import ThreadSelectors, memoize_last

__all__ = [
    # Call tree
    'CallNodeInfo',
    'CallTree',
    'build_call_tree',
    'call_tree_to_networkx',
    'compute_function_list_timings',
    # Transforms
    'Transform',
    'TransformStack',
    'apply_transform',
    'apply_transforms',
    'apply_transform_to_call_node_path',
    'get_transform_label',
    # Markers
    'derive_markers_from_raw_marker_table',
    'derive_jank_markers',
    'filter_markers_by_search',
    'filter_markers_to_range',
    # Timings
    'get_line_timings',
    'get_stack_line_info',
    'get_address_timings',
    'get_stack_address_info',
    # Merging
    'compute_comparison_samples',
    'merge_profiles',
    'merge_profiles_for_diffing',
    'merge_threads',
    # Selectors
    'ThreadSelectors',
    'memoize_last',
]
