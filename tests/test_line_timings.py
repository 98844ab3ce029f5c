"""Tests for per-line hit counts of one source file."""

from fixtures.profiles import call_node_path, func_index, get_thread_from_text_samples, text_from_columns
from profiler.logic.call_tree import (
    compute_call_node_info,
    compute_call_node_self,
    compute_inverted_call_node_info,
    compute_stack_self,
)
from profiler.logic.line_timings import (
    get_line_timings,
    get_stack_line_info,
    get_stack_line_info_for_call_node,
)

SAMPLES = text_from_columns(
    ['A[file:a.js][line:10]', 'B[file:a.js][line:20]', 'A[file:a.js][line:12]'],
    ['A[file:a.js][line:10]', 'C[file:b.js][line:30]'],
    ['A[file:a.js][line:11]'],
)


def file_index(thread, file_name):
    return thread.string_table.to_list().index(file_name)


def inverted_info(thread):
    info = compute_call_node_info(thread.stack_table, thread.frame_table)
    call_node_self = compute_call_node_self(info, compute_stack_self(thread.stack_table, thread.samples))
    inverted, _, _ = compute_inverted_call_node_info(info, call_node_self)
    return inverted


class TestFileLineTimings:

    def test_lines_of_a_file(self):
        thread, _, _ = get_thread_from_text_samples(SAMPLES)
        info = get_stack_line_info(thread.stack_table, thread.frame_table, thread.func_table,
                                   file_index(thread, 'a.js'))
        timings = get_line_timings(info, thread.samples)

        assert timings.total_line_hits == {10: 2, 20: 1, 12: 1, 11: 1}
        assert timings.self_line_hits == {12: 1, 11: 1}

    def test_other_file(self):
        thread, _, _ = get_thread_from_text_samples(SAMPLES)
        info = get_stack_line_info(thread.stack_table, thread.frame_table, thread.func_table,
                                   file_index(thread, 'b.js'))
        timings = get_line_timings(info, thread.samples)

        assert timings.total_line_hits == {30: 1}
        assert timings.self_line_hits == {30: 1}

    def test_recursion_counts_each_line_once(self):
        thread, _, _ = get_thread_from_text_samples(text_from_columns(
            ['A[file:a.js][line:10]', 'A[file:a.js][line:10]', 'A[file:a.js][line:10]'],
        ))
        info = get_stack_line_info(thread.stack_table, thread.frame_table, thread.func_table,
                                   file_index(thread, 'a.js'))
        timings = get_line_timings(info, thread.samples)

        assert timings.total_line_hits == {10: 1}
        assert timings.self_line_hits == {10: 1}

    def test_weights(self):
        thread, _, _ = get_thread_from_text_samples(SAMPLES)
        thread.samples.weight = [2, 3, 5]
        info = get_stack_line_info(thread.stack_table, thread.frame_table, thread.func_table,
                                   file_index(thread, 'a.js'))

        assert get_line_timings(info, thread.samples).total_line_hits[10] == 5

    def test_no_info(self):
        thread, _, _ = get_thread_from_text_samples(SAMPLES)
        timings = get_line_timings(None, thread.samples)

        assert timings.total_line_hits == {}
        assert timings.self_line_hits == {}


class TestCallNodeLineTimings:

    def test_call_node(self):
        thread, _, _ = get_thread_from_text_samples(SAMPLES)
        call_node_info = compute_call_node_info(thread.stack_table, thread.frame_table)
        node = call_node_info.get_call_node_index_from_path(call_node_path(thread, 'A'))
        info = get_stack_line_info_for_call_node(thread.stack_table, thread.frame_table, node, call_node_info)
        timings = get_line_timings(info, thread.samples)

        # The recursive A under B is a different call node.
        assert timings.total_line_hits == {10: 2, 11: 1}
        assert timings.self_line_hits == {11: 1}

    def test_inverted_root(self):
        thread, _, _ = get_thread_from_text_samples(SAMPLES)
        call_node_info = inverted_info(thread)
        node = call_node_info.get_call_node_index_from_path([func_index(thread, 'A')])
        info = get_stack_line_info_for_call_node(thread.stack_table, thread.frame_table, node, call_node_info)
        timings = get_line_timings(info, thread.samples)

        assert timings.total_line_hits == {12: 1, 11: 1}
        assert timings.self_line_hits == {12: 1, 11: 1}

    def test_inverted_non_root_has_no_self_hits(self):
        thread, _, _ = get_thread_from_text_samples(SAMPLES)
        call_node_info = inverted_info(thread)
        node = call_node_info.get_call_node_index_from_path(call_node_path(thread, 'C', 'A'))
        info = get_stack_line_info_for_call_node(thread.stack_table, thread.frame_table, node, call_node_info)
        timings = get_line_timings(info, thread.samples)

        assert timings.total_line_hits == {10: 1}
        assert timings.self_line_hits == {}
