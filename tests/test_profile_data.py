"""Tests for the thread data helpers: filters, recursion checks and native allocations."""

import pytest

from fixtures.profiles import func_index, get_thread_from_text_samples
from fixtures.utils import format_thread
from profiler.logic.profile_data import (
    UnbalancedAllocationsError,
    filter_thread_by_implementation,
    filter_thread_samples_to_range,
    filter_thread_to_search_string,
    filter_thread_to_search_strings,
    filter_to_allocations,
    filter_to_deallocations,
    filter_to_retained_allocations,
    func_has_direct_recursive_call,
    func_has_recursive_call,
    get_time_range_for_thread,
    split_search_string,
    thread_with_allocations_as_samples,
)
from profiler.profile_types import NativeAllocationsTable


class TestImplementationFilter:

    def test_js_only(self):
        thread, _, profile = get_thread_from_text_samples("""
            A      A
            Bjs    Bjs
            C      Djs
            Ejs
        """)
        filtered = filter_thread_by_implementation(thread, 'js')

        assert format_thread(profile, filtered) == [
            '- Bjs (2:0)',
            '  - Ejs (1:1)',
            '  - Djs (1:1)',
        ]

    def test_cpp_hides_jit_addresses(self):
        thread, _, profile = get_thread_from_text_samples("""
            A
            0x10
            Bjs
            C
        """)
        filtered = filter_thread_by_implementation(thread, 'cpp')

        assert format_thread(profile, filtered) == [
            '- A (1:0)',
            '  - C (1:1)',
        ]

    def test_combined_is_identity(self):
        thread, _, _ = get_thread_from_text_samples('A  B')
        assert filter_thread_by_implementation(thread, 'combined') is thread

    def test_unknown_filter(self):
        thread, _, _ = get_thread_from_text_samples('A  B')
        with pytest.raises(ValueError):
            filter_thread_by_implementation(thread, 'rust')


class TestSearchFilter:

    def test_search_drops_non_matching_samples(self):
        thread, _, _ = get_thread_from_text_samples("""
            A               A
            Bjs[file:x.js]  C
        """)
        filtered = filter_thread_to_search_string(thread, 'X.JS')

        assert filtered.samples.stack[0] is not None
        assert filtered.samples.stack[1] is None

    def test_search_matches_resource(self):
        thread, _, _ = get_thread_from_text_samples("""
            A                 A
            B[lib:libxul.so]  C
        """)
        filtered = filter_thread_to_search_string(thread, 'xul')

        assert [s is not None for s in filtered.samples.stack] == [True, False]

    def test_all_terms_must_match(self):
        thread, _, _ = get_thread_from_text_samples("""
            A  A
            B  C
        """)
        filtered = filter_thread_to_search_strings(thread, split_search_string('a, c'))

        assert [s is not None for s in filtered.samples.stack] == [False, True]

    def test_split_search_string(self):
        assert split_search_string(' foo, ,bar ') == ['foo', 'bar']
        assert split_search_string('') == []


class TestRangeFilter:

    def test_half_open_range(self):
        thread, _, _ = get_thread_from_text_samples("""
            0  1  2  3
            A  A  A  A
        """)
        filtered = filter_thread_samples_to_range(thread, 1, 3)

        assert filtered.samples.time == [1, 2]

    def test_thread_range_includes_one_interval(self):
        thread, _, _ = get_thread_from_text_samples("""
            0  5
            A  A
        """)
        assert get_time_range_for_thread(thread, 1) == (0, 6)


class TestRecursionChecks:

    def test_recursive_and_direct(self):
        thread, _, _ = get_thread_from_text_samples("""
            A  A
            B  C
            B  D
               A
        """)

        assert func_has_direct_recursive_call(thread, func_index(thread, 'B'))
        assert not func_has_direct_recursive_call(thread, func_index(thread, 'A'))
        assert func_has_recursive_call(thread, func_index(thread, 'A'))
        assert not func_has_recursive_call(thread, func_index(thread, 'C'))

    def test_direct_recursion_through_filtered_frames(self):
        thread, _, _ = get_thread_from_text_samples("""
            Ajs
            X
            Ajs
        """)
        a = func_index(thread, 'Ajs')

        assert func_has_direct_recursive_call(thread, a, 'js')
        assert not func_has_direct_recursive_call(thread, a, 'combined')


class TestNativeAllocations:

    def allocations(self, memory_address=(0x1, 0x2, 0x1)):
        return NativeAllocationsTable(
            time=[0, 1, 2],
            stack=[0, 1, 1],
            weight=[100, 50, -100],
            memory_address=list(memory_address) if memory_address is not None else None,
        )

    def test_allocations_and_deallocations(self):
        table = self.allocations()

        assert filter_to_allocations(table).stack == [0, 1, None]
        assert filter_to_deallocations(table).stack == [None, None, 1]

    def test_retained(self):
        retained = filter_to_retained_allocations(self.allocations())

        # The first allocation was freed by the third row.
        assert retained.stack == [None, 1, None]

    def test_retained_needs_memory_addresses(self):
        with pytest.raises(UnbalancedAllocationsError):
            filter_to_retained_allocations(self.allocations(memory_address=None))

    def test_allocations_as_samples(self):
        thread, _, _ = get_thread_from_text_samples("""
            A
            B
        """)
        as_samples = thread_with_allocations_as_samples(thread, self.allocations())

        assert as_samples.samples.weight == [100, 50, -100]
        assert as_samples.samples.weight_type == 'bytes'
        assert as_samples.samples.time == [0, 1, 2]
