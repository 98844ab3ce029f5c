"""
Tests for the query adapter: timestamp names, range tokens, the view range
stack and the JSON-ready summaries.
"""

from dataclasses import replace

import pytest

from fixtures.profiles import get_profile_from_text_samples, with_markers
from profiler.config import ProfilerSettings
from profiler.profile_query import (
    ProfileQuerier,
    RangeParseError,
    TimestampManager,
    format_milliseconds,
    parse_time_value,
)


class TestTimestampNames:

    def test_root_range_names(self):
        manager = TimestampManager((1000, 2000))

        assert manager.name_for_timestamp(1000) == 'ts-0'
        assert manager.name_for_timestamp(2000) == 'ts-Z'
        assert manager.name_for_timestamp(1500) == 'ts-K'

    def test_buckets_outside_the_root_range(self):
        manager = TimestampManager((1000, 2000))

        assert manager.name_for_timestamp(500) == 'ts<0K'
        assert manager.name_for_timestamp(2500) == 'ts>0K'
        assert manager.name_for_timestamp(0) == 'ts<0'

    def test_names_resolve_back(self):
        manager = TimestampManager((1000, 2000))
        name = manager.name_for_timestamp(1500)

        assert manager.timestamp_for_name(name) == 1500
        assert manager.name_for_timestamp(1500) == name
        assert manager.timestamp_for_name('ts-5') is None

    def test_names_get_longer_between_adjacent_marks(self):
        manager = TimestampManager((0, 610))

        assert manager.name_for_timestamp(10) == 'ts-1'
        # ts-0 and ts-1 are adjacent, so 5 is named inside ts-0.
        assert manager.name_for_timestamp(5) == 'ts-0K'

    def test_zero_length_root_range(self):
        manager = TimestampManager((5, 5))

        assert manager.root_length == 1.0
        assert manager.name_for_timestamp(5) == 'ts-0'
        assert manager.name_for_timestamp(5.5).startswith('ts>0')

    def test_timestamp_string_is_relative(self):
        manager = TimestampManager((1000, 5000))
        assert manager.timestamp_string(3500) == '2.5s'


class TestFormatting:

    @pytest.mark.parametrize("ms,expected", [
        (2, '2ms'),
        (12.3456, '12.346ms'),
        (1000, '1s'),
        (1500, '1.5s'),
        (-1500, '-1.5s'),
    ])
    def test_format_milliseconds(self, ms, expected):
        assert format_milliseconds(ms) == expected


class TestParseTimeValue:

    @pytest.mark.parametrize("token,expected", [
        ('2.5', 3500),
        ('.5', 1500),
        ('250ms', 1250),
        ('25%', 1250),
        (' 100% ', 2000),
    ])
    def test_units(self, token, expected):
        assert parse_time_value(token, (1000, 2000)) == expected

    def test_timestamp_names_are_left_to_the_caller(self):
        assert parse_time_value('ts-K', (1000, 2000)) is None

    @pytest.mark.parametrize("token", ['abc', '2.5h', '', '1,2'])
    def test_invalid(self, token):
        with pytest.raises(RangeParseError):
            parse_time_value(token, (1000, 2000))


@pytest.fixture
def querier():
    profile, _ = get_profile_from_text_samples("""
        A  A  A
        B  B  C
    """)
    return ProfileQuerier(profile)


class TestViewRanges:

    def test_push_and_pop(self, querier):
        assert querier.root_range == (0, 3)

        pushed = querier.push_view_range('1ms,2ms')
        assert pushed.action == 'push'
        assert (pushed.range.start, pushed.range.end) == (1, 2)
        assert pushed.duration == 1
        assert pushed.zoom_depth == 1
        assert pushed.message.startswith('Pushed view range: ')
        assert querier.context().current_view_range.start == 1

        popped = querier.pop_view_range()
        assert popped.action == 'pop'
        assert (popped.range.start, popped.range.end) == (1, 2)
        assert popped.zoom_depth == 0
        assert querier.context().current_view_range is None

    def test_returned_names_can_be_pushed(self, querier):
        first = querier.push_view_range('1ms,2ms')
        querier.pop_view_range()

        again = querier.push_view_range(f"{first.range.start_name},{first.range.end_name}")
        assert (again.range.start, again.range.end) == (1, 2)

    def test_nested_ranges_are_absolute(self, querier):
        querier.push_view_range('0ms,2ms')
        nested = querier.push_view_range('50%,100%')

        assert (nested.range.start, nested.range.end) == (1.5, 3)
        assert nested.zoom_depth == 2

    def test_clear(self, querier):
        querier.push_view_range('0ms,2ms')
        querier.push_view_range('1ms,2ms')
        cleared = querier.clear_view_range()

        assert cleared.zoom_depth == 0
        assert (cleared.range.start, cleared.range.end) == (0, 3)
        assert cleared.message.startswith('Cleared all view ranges')

    @pytest.mark.parametrize("token", ['1ms', '1ms,2ms,3ms', '2ms,1ms', 'ts-9,ts-Z', 'x,1ms'])
    def test_invalid_push(self, querier, token):
        with pytest.raises(RangeParseError):
            querier.push_view_range(token)
        assert querier.context().current_view_range is None

    def test_pop_and_clear_on_empty_stack(self, querier):
        with pytest.raises(RangeParseError):
            querier.pop_view_range()
        with pytest.raises(RangeParseError):
            querier.clear_view_range()


class TestThreadSelection:

    def test_defaults_to_the_main_thread(self):
        profile, _ = get_profile_from_text_samples('A', 'B')
        profile.threads[0] = replace(profile.threads[0], is_main_thread=False)
        profile.threads[1] = replace(profile.threads[1], is_main_thread=True)

        assert ProfileQuerier(profile).selected_thread_index == 1

    def test_falls_back_to_the_first_thread(self):
        profile, _ = get_profile_from_text_samples('A', 'B')
        profile.threads[0] = replace(profile.threads[0], is_main_thread=False)

        assert ProfileQuerier(profile).selected_thread_index == 0

    def test_select_by_handle_or_index(self):
        profile, _ = get_profile_from_text_samples('A', 'B')
        querier = ProfileQuerier(profile)

        assert querier.select_thread('t-1') == 'Selected thread: t-1 (Empty)'
        assert querier.context().selected_thread_handle == 't-1'
        querier.select_thread(0)
        assert querier.context().selected_thread_name == 'GeckoMain'

    @pytest.mark.parametrize("thread", ['thread-1', 't-5', 7, -1])
    def test_unknown_thread(self, querier, thread):
        with pytest.raises(ValueError):
            querier.select_thread(thread)

    def test_selectors_are_reused(self, querier):
        assert querier.selectors_for() is querier.selectors_for('t-0')


class TestThreadSamples:

    def test_top_functions(self, querier):
        result = querier.thread_samples()

        assert result.thread_handle == 't-0'
        assert [(f.name, f.total_samples) for f in result.top_functions_by_total] == [
            ('A', 3), ('B', 2), ('C', 1),
        ]
        assert [(f.name, f.self_samples) for f in result.top_functions_by_self] == [
            ('B', 2), ('C', 1), ('A', 0),
        ]
        assert result.top_functions_by_total[0].total_percentage == 100

    def test_heaviest_stack(self, querier):
        stack = querier.thread_samples().heaviest_stack

        assert stack.frame_count == 2
        assert [frame.name for frame in stack.frames] == ['A', 'B']
        assert stack.self_samples == 2

    def test_inverted_heaviest_stack_lists_callers(self, querier):
        querier.selectors_for().set_inverted(True)
        stack = querier.thread_samples().heaviest_stack

        assert [frame.name for frame in stack.frames] == ['B', 'A']
        assert [frame.total_samples for frame in stack.frames] == [2, 2]
        assert stack.self_samples == 0

    def test_view_range_applies(self, querier):
        querier.push_view_range('2ms,3ms')
        result = querier.thread_samples()

        assert [f.name for f in result.top_functions_by_total] == ['A', 'C']
        assert result.context.current_view_range.end == 3

    def test_limit_from_settings(self):
        profile, _ = get_profile_from_text_samples("""
            A  A  A
            B  B  C
        """)
        querier = ProfileQuerier(profile, ProfilerSettings(top_functions_limit=1))

        assert [f.name for f in querier.thread_samples().top_functions_by_total] == ['A']

    def test_library_names(self):
        profile, _ = get_profile_from_text_samples("""
            A
            B[lib:libxul.so]
        """)
        frames = ProfileQuerier(profile).thread_samples().heaviest_stack.frames

        assert [frame.name_with_library for frame in frames] == ['A', 'libxul.so!B']

    def test_wire_shape(self, querier):
        dumped = querier.thread_samples().model_dump(by_alias=True)

        assert dumped['type'] == 'thread-samples'
        assert 'topFunctionsByTotal' in dumped
        assert dumped['context']['selectedThreadHandle'] == 't-0'


class TestThreadMarkers:

    def markers_querier(self):
        profile, _ = get_profile_from_text_samples('A  A  A')
        profile.threads[0] = with_markers(profile.threads[0], [
            ('DOMEvent', 0.5, None),
            ('Paint', 1, 2),
            ('DOMEvent', 1.5, None),
            ('Paint', 2, 2.5),
        ])
        return ProfileQuerier(profile)

    def test_groups(self):
        result = self.markers_querier().thread_markers()

        assert result.total_count == 4
        assert [(g.name, g.count) for g in result.groups] == [('DOMEvent', 2), ('Paint', 2)]
        paint = result.groups[1]
        assert paint.total_duration == 1.5
        assert paint.max_duration == 1

    def test_search(self):
        result = self.markers_querier().thread_markers(search='paint')

        assert [g.name for g in result.groups] == ['Paint']

    def test_view_range(self):
        querier = self.markers_querier()
        querier.push_view_range('0ms,1ms')

        assert [g.name for g in querier.thread_markers().groups] == ['DOMEvent']


class TestProfileInfo:

    def test_processes_and_threads(self):
        profile, _ = get_profile_from_text_samples('A  A', 'B', interval=5)
        info = ProfileQuerier(profile).profile_info()

        assert info.name == 'Firefox'
        assert info.thread_count == 2
        assert info.process_count == 2
        first = info.processes[0]
        assert first.pid == '0'
        assert first.cpu_ms == 10
        assert first.start_time_name == 'ts-0'
        assert first.end_time is None
        assert [t.thread_handle for t in first.threads] == ['t-0']
        assert info.processes[1].cpu_ms == 5

    def test_threads_of_one_process(self):
        profile, _ = get_profile_from_text_samples('A', 'B')
        profile.threads[1] = replace(profile.threads[1], pid='0')
        info = ProfileQuerier(profile).profile_info()

        assert info.process_count == 1
        assert [t.name for t in info.processes[0].threads] == ['GeckoMain', 'Empty']
        assert info.processes[0].cpu_ms == 2

    def test_weighted_samples(self):
        profile, _ = get_profile_from_text_samples('A  A')
        profile.threads[0].samples.weight = [3, 4]
        info = ProfileQuerier(profile).profile_info()

        assert info.processes[0].cpu_ms == 7

    def test_empty_profile(self):
        profile, _ = get_profile_from_text_samples('A')
        profile.threads.clear()
        with pytest.raises(ValueError):
            ProfileQuerier(profile)
