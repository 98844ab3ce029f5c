"""
Tests for loading processed profiles.

Covers the happy path (defaults, time deltas, category inheritance) and the
reference errors that must make the whole profile fail.
"""

import copy
import json

import pytest

from profiler.profile_loader import ProfileLoadError, load_profile, process_profile
from profiler.profile_types import MarkerPhase


def minimal_profile():
    """Two funcs, two frames, a two-deep stack and two samples."""
    return {
        'meta': {'interval': 1, 'startTime': 1000, 'product': 'Firefox'},
        'libs': [],
        'threads': [{
            'name': 'GeckoMain',
            'processType': 'default',
            'isMainThread': True,
            'pid': '123',
            'tid': 123,
            'stringArray': ['main', 'child', 'DOMEvent'],
            'funcTable': {
                'name': [0, 1],
                'isJS': [False, True],
                'relevantForJS': [False, False],
                'resource': [-1, -1],
                'fileName': [None, None],
                'lineNumber': [None, 10],
                'columnNumber': [None, None],
            },
            'frameTable': {
                'func': [0, 1],
                'address': [-1, -1],
                'inlineDepth': [0, 0],
                'category': [7, None],
                'subcategory': [0, None],
                'nativeSymbol': [None, None],
                'line': [None, 12],
            },
            'stackTable': {'frame': [0, 1], 'prefix': [None, 0]},
            'samples': {'stack': [0, 1], 'time': [0, 1]},
            'markers': {
                'name': [2],
                'startTime': [0.5],
                'endTime': [None],
                'phase': [MarkerPhase.INSTANT],
                'category': [0],
                'data': [None],
            },
        }],
    }


class TestProcessProfile:
    """Valid documents."""

    def test_minimal_profile(self):
        profile = process_profile(minimal_profile())
        thread = profile.threads[0]

        assert profile.meta.interval == 1
        assert profile.meta.start_time == 1000
        assert thread.name == 'GeckoMain'
        assert thread.is_main_thread
        assert thread.stack_table.length == 2
        assert thread.samples.weight is None
        assert thread.samples.weight_type == 'samples'
        assert thread.markers.length == 1

    def test_missing_categories_use_defaults(self):
        profile = process_profile(minimal_profile())
        names = [category.name for category in profile.categories]
        assert names[:4] == ['Other', 'Idle', 'Layout', 'JavaScript']

    def test_stack_category_inherits_from_prefix(self):
        profile = process_profile(minimal_profile())
        stack_table = profile.threads[0].stack_table

        # Frame 1 has no category, so stack 1 takes stack 0's (DOM).
        assert stack_table.category == [7, 7]
        assert stack_table.subcategory == [0, 0]

    def test_root_frame_without_category_gets_default(self):
        data = minimal_profile()
        data['threads'][0]['frameTable']['category'] = [None, None]
        profile = process_profile(data)

        assert profile.threads[0].stack_table.category == [0, 0]

    def test_time_deltas(self):
        data = minimal_profile()
        samples = data['threads'][0]['samples']
        del samples['time']
        samples['timeDeltas'] = [5, 2]
        profile = process_profile(data)

        assert profile.threads[0].samples.time == [5, 7]

    def test_weights(self):
        data = minimal_profile()
        data['threads'][0]['samples'].update({'weight': [2, 3], 'weightType': 'tracing-ms'})
        samples = process_profile(data).threads[0].samples

        assert samples.weight_for(0) == 2
        assert samples.weight_type == 'tracing-ms'

    def test_shared_string_array(self):
        data = minimal_profile()
        strings = data['threads'][0].pop('stringArray')
        data['shared'] = {'stringArray': strings}
        thread = process_profile(data).threads[0]

        assert thread.string_table.get_string(0) == 'main'

    def test_native_allocations(self):
        data = minimal_profile()
        data['threads'][0]['nativeAllocations'] = {
            'time': [0, 1],
            'stack': [1, 1],
            'weight': [10, -10],
            'memoryAddress': [0x10, 0x10],
        }
        allocations = process_profile(data).threads[0].native_allocations

        assert allocations.is_balanced
        assert allocations.weight == [10, -10]


class TestProcessProfileErrors:
    """Anything malformed fails the whole profile."""

    def test_not_an_object(self):
        with pytest.raises(ProfileLoadError):
            process_profile([])

    def test_missing_meta(self):
        data = minimal_profile()
        del data['meta']
        with pytest.raises(ProfileLoadError, match="meta"):
            process_profile(data)

    def test_missing_threads(self):
        data = minimal_profile()
        del data['threads']
        with pytest.raises(ProfileLoadError, match="threads"):
            process_profile(data)

    def test_non_positive_interval(self):
        data = minimal_profile()
        data['meta']['interval'] = 0
        with pytest.raises(ProfileLoadError, match="metadata"):
            process_profile(data)

    @pytest.mark.parametrize('mutate, message', [
        (lambda t: t['stackTable'].update(prefix=[None, 1]), 'prefix'),
        (lambda t: t['stackTable'].update(frame=[0, 5]), 'missing frame'),
        (lambda t: t['frameTable'].update(func=[0, 9]), 'missing func'),
        (lambda t: t['frameTable'].update(category=[42, None]), 'unknown category'),
        (lambda t: t['funcTable'].update(name=[0, 99]), 'name index'),
        (lambda t: t['funcTable'].update(resource=[0, -1]), 'missing resource'),
        (lambda t: t['samples'].update(stack=[0, 4]), 'missing stack'),
        (lambda t: t['samples'].update(weight=[1]), 'weight'),
        (lambda t: t['markers'].update(name=[17]), 'Marker 0'),
    ])
    def test_bad_references(self, mutate, message):
        data = copy.deepcopy(minimal_profile())
        mutate(data['threads'][0])

        with pytest.raises(ProfileLoadError, match=message):
            process_profile(data)

    def test_error_names_the_thread(self):
        data = minimal_profile()
        data['threads'].append(copy.deepcopy(data['threads'][0]))
        data['threads'][1]['stackTable']['frame'] = [0, 5]

        with pytest.raises(ProfileLoadError, match="Thread 1"):
            process_profile(data)

    def test_samples_without_times(self):
        data = minimal_profile()
        del data['threads'][0]['samples']['time']
        with pytest.raises(ProfileLoadError, match="timeDeltas"):
            process_profile(data)


class TestLoadProfile:
    """Reading from disk."""

    def test_load_from_file(self, tmp_path):
        path = tmp_path / 'profile.json'
        path.write_text(json.dumps(minimal_profile()))

        profile = load_profile(path)
        assert len(profile.threads) == 1

    def test_invalid_json(self, tmp_path):
        path = tmp_path / 'broken.json'
        path.write_text('{not json')

        with pytest.raises(ProfileLoadError, match="Failed to read"):
            load_profile(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ProfileLoadError):
            load_profile(tmp_path / 'nope.json')
