"""Helpers for asserting on call trees."""

from profiler.logic.call_tree import build_call_tree


def format_tree(call_tree, include_category=False):
    """Visible nodes as '- Name (total:self)' lines, indented by depth."""
    lines = []
    info = call_tree.call_node_info
    for node in call_tree.iter_visible_nodes():
        data = call_tree.get_node_data(node)
        line = '  ' * info.depth_for_node(node) + f"- {data.func_name} ({data.total:g}:{data.self_time:g})"
        if include_category:
            line += f" [{call_tree.categories[info.category_for_node(node)].name}]"
        lines.append(line)
    return lines


def format_thread(profile, thread, inverted=False):
    return format_tree(build_call_tree(thread, profile.categories, is_inverted=inverted))
