"""
Tests for deriving markers from raw marker rows.

Raw markers are built with fixtures.profiles.with_markers; rows are
(name, start, end[, data[, phase]]).
"""

import pytest

from fixtures.profiles import get_profile_from_text_samples, get_thread_with_markers, with_markers
from profiler.config import get_default_categories
from profiler.logic.marker_data import (
    correlate_ipc_markers,
    derive_jank_markers,
    derive_markers_from_raw_marker_table,
    extract_marker_data_from_name,
    filter_markers_by_search,
    filter_markers_to_range,
    filter_raw_marker_table_to_range,
)
from profiler.marker_types import (
    BailoutPayload,
    CompositorScreenshotPayload,
    InvalidationPayload,
    IPCPayload,
    Marker,
    NetworkPayload,
)
from profiler.profile_types import MarkerPhase, SamplesTable

START = MarkerPhase.INTERVAL_START
END = MarkerPhase.INTERVAL_END


def derive(thread, thread_range=(0, 10), correlations=None):
    return derive_markers_from_raw_marker_table(
        thread.markers, thread.string_table, thread.tid, thread_range, correlations
    )


def spans(info):
    return [(m.name, m.start, m.end) for m in info.markers]


class TestIntervalPairing:
    """Instants, complete intervals and start/end pairs."""

    def test_instant_and_interval(self):
        thread = get_thread_with_markers([
            ('DOMEvent', 1, None),
            ('Reflow', 2, 4),
        ])
        info = derive(thread)

        assert spans(info) == [('DOMEvent', 1, None), ('Reflow', 2, 4)]
        assert info.markers[0].duration is None
        assert info.markers[1].duration == 2

    def test_start_end_pair(self):
        thread = get_thread_with_markers([
            ('Paint', 2, None, {'type': 'tracing', 'category': 'Paint'}, START),
            ('Paint', None, 5, {'type': 'tracing', 'category': 'Paint'}, END),
        ])
        info = derive(thread)

        assert spans(info) == [('Paint', 2, 5)]
        assert info.marker_index_to_raw_marker_indexes == [[0, 1]]
        assert not info.markers[0].incomplete

    def test_nested_pairs_use_stack_order(self):
        thread = get_thread_with_markers([
            ('Paint', 1, None, None, START),
            ('Paint', 2, None, None, START),
            ('Paint', None, 3, None, END),
            ('Paint', None, 4, None, END),
        ])

        assert spans(derive(thread)) == [('Paint', 2, 3), ('Paint', 1, 4)]

    def test_unmatched_end_starts_at_thread_start(self):
        thread = get_thread_with_markers([('Rasterize', None, 1, None, END)])
        marker = derive(thread, thread_range=(0, 10)).markers[0]

        assert (marker.start, marker.end) == (0, 1)
        assert marker.incomplete

    def test_unmatched_start_ends_at_thread_end(self):
        thread = get_thread_with_markers([('Reflow', 3, None, None, START)])
        marker = derive(thread, thread_range=(0, 10)).markers[0]

        assert (marker.start, marker.end) == (3, 10)
        assert marker.incomplete

    def test_legacy_tracing_intervals(self):
        thread = get_thread_with_markers([
            ('Paint', 1, None, {'type': 'tracing', 'category': 'Paint', 'interval': 'start'}),
            ('Paint', 4, None, {'type': 'tracing', 'category': 'Paint', 'interval': 'end'}),
        ])

        assert spans(derive(thread)) == [('Paint', 1, 4)]

    def test_instant_without_start_time(self):
        thread = get_thread_with_markers([('Broken', None, None, None, MarkerPhase.INSTANT)])

        with pytest.raises(ValueError):
            derive(thread)


class TestNetworkMarkers:

    def test_start_and_stop_are_merged(self):
        thread = get_thread_with_markers([
            ('Load 1: https://example.com', 1, 2,
             {'type': 'Network', 'id': 1, 'status': 'STATUS_START', 'startTime': 1, 'endTime': 2}),
            ('Load 1: https://example.com', 2, 5,
             {'type': 'Network', 'id': 1, 'status': 'STATUS_STOP', 'startTime': 2, 'endTime': 5,
              'URI': 'https://example.com'}),
        ])
        info = derive(thread)

        assert len(info.markers) == 1
        marker = info.markers[0]
        assert (marker.start, marker.end) == (1, 5)
        assert isinstance(marker.data, NetworkPayload)
        assert marker.data.fetch_start == 2
        assert marker.data.uri == 'https://example.com'
        assert info.marker_index_to_raw_marker_indexes == [[0, 1]]

    def test_stop_without_start(self):
        thread = get_thread_with_markers([
            ('Load 2', 2, 5, {'type': 'Network', 'id': 2, 'status': 'STATUS_STOP', 'startTime': 2, 'endTime': 5}),
        ])
        marker = derive(thread, thread_range=(0, 10)).markers[0]

        assert (marker.start, marker.end) == (0, 5)
        assert marker.incomplete

    def test_start_without_stop(self):
        thread = get_thread_with_markers([
            ('Load 3', 4, 6, {'type': 'Network', 'id': 3, 'status': 'STATUS_START', 'startTime': 4, 'endTime': 6}),
        ])
        marker = derive(thread, thread_range=(0, 10)).markers[0]

        assert (marker.start, marker.end) == (4, 10)
        assert marker.incomplete


class TestScreenshots:

    def test_screenshots_last_until_the_next_one(self):
        data = {'type': 'CompositorScreenshot', 'windowID': 'w1', 'url': 0}
        thread = get_thread_with_markers([
            ('CompositorScreenshot', 1, None, data),
            ('CompositorScreenshot', 3, None, data),
        ])
        info = derive(thread, thread_range=(0, 10))

        assert spans(info) == [('CompositorScreenshot', 1, 3), ('CompositorScreenshot', 3, 10)]
        assert isinstance(info.markers[0].data, CompositorScreenshotPayload)

    def test_window_destroyed_closes_screenshot(self):
        data = {'type': 'CompositorScreenshot', 'windowID': 'w1', 'url': 0}
        thread = get_thread_with_markers([
            ('CompositorScreenshot', 1, None, data),
            ('CompositorScreenshotWindowDestroyed', 4, None, data),
        ])

        assert spans(derive(thread)) == [
            ('CompositorScreenshot', 1, 4),
            ('CompositorScreenshotWindowDestroyed', 4, None),
        ]


def ipc_data(direction, start, other_pid):
    return {
        'type': 'IPC',
        'startTime': start,
        'otherPid': other_pid,
        'messageSeqno': 7,
        'messageType': 'PContent::Msg_Ping',
        'side': 'parent',
        'direction': direction,
        'phase': 'endpoint',
        'sync': False,
    }


class TestIPCMarkers:

    def two_threads(self):
        profile, _ = get_profile_from_text_samples('A  A', 'B  B')
        sender = with_markers(profile.threads[0], [('IPC', 1, None, ipc_data('sending', 1, '1'))])
        receiver = with_markers(profile.threads[1], [('IPC', 3, None, ipc_data('receiving', 3, '0'))])
        return sender, receiver

    def test_correlated_message(self):
        sender, receiver = self.two_threads()
        correlations = correlate_ipc_markers([sender, receiver])

        assert len(correlations) == 2
        sent = derive(sender, correlations=correlations).markers[0]
        received = derive(receiver, correlations=correlations).markers[0]

        assert sent.name == 'IPCOut'
        assert received.name == 'IPCIn'
        assert (sent.start, sent.end) == (1, 3)
        assert (received.start, received.end) == (1, 3)
        assert not sent.incomplete
        assert isinstance(sent.data, IPCPayload)
        assert sent.data.nice_direction == 'sent to Empty (Thread ID: 1)'
        assert received.data.nice_direction == 'received from GeckoMain (Thread ID: 0)'

    def test_missing_counterpart(self, caplog):
        sender, _ = self.two_threads()
        correlations = correlate_ipc_markers([sender])
        marker = derive(sender, correlations=correlations).markers[0]

        assert (marker.start, marker.end) == (1, 1)
        assert marker.incomplete
        assert 'no counterpart' in caplog.text

    def test_no_ipc_markers(self):
        profile, _ = get_profile_from_text_samples('A  A')
        assert len(correlate_ipc_markers(profile.threads)) == 0

    def test_transfer_start_on_receiving_side(self):
        profile, _ = get_profile_from_text_samples('A  A')
        data = {**ipc_data('receiving', 3, '0'), 'phase': 'transferStart'}
        thread = with_markers(profile.threads[0], [('IPC', 3, None, data)])

        with pytest.raises(ValueError, match="transferStart"):
            correlate_ipc_markers([thread])


class TestMarkersFromNames:

    def test_bailout(self):
        thread = get_thread_with_markers([
            ('Bailout_MonitorTypes after add on line 1013 of self-hosted:1008', 2, None),
        ])
        thread = extract_marker_data_from_name(thread)
        marker = derive(thread).markers[0]

        assert marker.name == 'Bailout'
        assert isinstance(marker.data, BailoutPayload)
        assert marker.data.bailout_type == 'MonitorTypes'
        assert marker.data.where == 'after add'
        assert marker.data.script == 'self-hosted'
        assert marker.data.bailout_line == 1013
        assert marker.data.function_line == 1008

    def test_invalidation(self):
        thread = get_thread_with_markers([('Invalidate resource://foo.js:3662', 2, None)])
        marker = derive(extract_marker_data_from_name(thread)).markers[0]

        assert marker.name == 'Invalidate'
        assert isinstance(marker.data, InvalidationPayload)
        assert marker.data.url == 'resource://foo.js'
        assert marker.data.line == 3662

    def test_unparsable_names_are_kept(self):
        thread = get_thread_with_markers([('Bailout_garbage', 2, None), ('Other', 3, None)])

        assert extract_marker_data_from_name(thread) is thread


class TestJank:

    def samples(self, responsiveness):
        return SamplesTable(
            stack=[None] * len(responsiveness),
            time=[i * 10 for i in range(len(responsiveness))],
            responsiveness=responsiveness,
        )

    def test_jank_when_responsiveness_drops(self):
        markers = derive_jank_markers(self.samples([0, 20, 60, 5, 0]), 50, 0)

        assert [(m.start, m.end) for m in markers] == [(-40, 20)]
        assert markers[0].name == 'Jank'
        assert markers[0].data.type == 'Jank'

    def test_jank_at_end_of_recording(self):
        markers = derive_jank_markers(self.samples([0, 30, 70]), 50, 0)

        assert [(m.start, m.end) for m in markers] == [(-50, 20)]

    def test_below_threshold(self):
        assert derive_jank_markers(self.samples([0, 30, 49, 0]), 50, 0) == []

    def test_missing_responsiveness(self):
        assert derive_jank_markers(self.samples([None, None]), 50, 0) == []


class TestFiltering:

    def markers(self):
        return [
            Marker(start=1, end=None, name='DOMEvent', category=7),
            Marker(start=2, end=6, name='Paint', category=6),
            Marker(start=8, end=9, name='Network load', category=5),
        ]

    def test_filter_to_range(self):
        names = [m.name for m in filter_markers_to_range(self.markers(), 3, 8)]
        assert names == ['Paint']

    def test_instant_on_range_end_is_excluded(self):
        names = [m.name for m in filter_markers_to_range(self.markers(), 0, 1)]
        assert names == []

    def test_search_by_name(self):
        names = [m.name for m in filter_markers_by_search(self.markers(), 'paint, NETWORK')]
        assert names == ['Paint', 'Network load']

    def test_search_by_category(self):
        result = filter_markers_by_search(self.markers(), 'graphics', get_default_categories())
        assert [m.name for m in result] == ['Paint']

    def test_empty_search_keeps_everything(self):
        markers = self.markers()
        assert filter_markers_by_search(markers, ' , ') is markers

    def test_filter_raw_table_keeps_both_rows_of_a_pair(self):
        thread = get_thread_with_markers([
            ('Early', 0, None),
            ('Paint', 2, None, None, START),
            ('Paint', None, 5, None, END),
        ])
        info = derive(thread)
        filtered = filter_raw_marker_table_to_range(thread.markers, info, 3, 4)

        assert filtered.length == 2
        assert filtered.phase == [START, END]
