"""Tests for the profiler-query command line."""

import json
import logging

import pytest

from profiler.cli import build_parser, main
from profiler.logging_utils import get_logger, set_log_level
from profiler.profile_types import MarkerPhase


def profile_document():
    return {
        'meta': {'interval': 1, 'startTime': 0, 'product': 'Firefox'},
        'libs': [],
        'threads': [{
            'name': 'GeckoMain',
            'processType': 'default',
            'processName': 'Parent Process',
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
                'lineNumber': [None, None],
                'columnNumber': [None, None],
            },
            'frameTable': {
                'func': [0, 1],
                'address': [-1, -1],
                'inlineDepth': [0, 0],
                'category': [0, 0],
                'subcategory': [0, 0],
                'nativeSymbol': [None, None],
                'line': [None, None],
            },
            'stackTable': {'frame': [0, 1], 'prefix': [None, 0]},
            'samples': {'stack': [1, 1, 0], 'time': [0, 1, 2]},
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


@pytest.fixture
def profile_path(tmp_path):
    path = tmp_path / 'profile.json'
    path.write_text(json.dumps(profile_document()))
    return str(path)


def run(capsys, *argv):
    exit_code = main(list(argv))
    captured = capsys.readouterr()
    return exit_code, captured


class TestParser:

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_repeated_ranges(self):
        args = build_parser().parse_args(['samples', 'p.json', '--range', '1,2', '--range', '10%,20%'])

        assert args.range == ['1,2', '10%,20%']
        assert args.thread is None
        assert not args.inverted


class TestCommands:

    def test_info(self, capsys, profile_path):
        exit_code, captured = run(capsys, 'info', profile_path)

        assert exit_code == 0
        output = json.loads(captured.out)
        assert output['type'] == 'profile-info'
        assert output['threadCount'] == 1
        assert output['processes'][0]['name'] == 'Parent Process'
        assert output['processes'][0]['cpuMs'] == 3
        assert output['context']['rootRange'] == [0, 3]

    def test_samples(self, capsys, profile_path):
        exit_code, captured = run(capsys, 'samples', profile_path)

        assert exit_code == 0
        output = json.loads(captured.out)
        assert output['friendlyThreadName'] == 'Parent Process'
        assert [f['name'] for f in output['topFunctionsByTotal']] == ['main', 'child']
        assert [f['name'] for f in output['heaviestStack']['frames']] == ['main', 'child']

    def test_samples_in_a_range(self, capsys, profile_path):
        exit_code, captured = run(capsys, 'samples', profile_path, '--range', '2ms,3ms')

        assert exit_code == 0
        output = json.loads(captured.out)
        assert [f['name'] for f in output['topFunctionsByTotal']] == ['main']
        assert output['context']['currentViewRange']['start'] == 2

    def test_samples_search(self, capsys, profile_path):
        exit_code, captured = run(capsys, 'samples', profile_path, '--search', 'child')

        assert exit_code == 0
        output = json.loads(captured.out)
        assert output['topFunctionsByTotal'][0]['totalSamples'] == 2

    def test_markers(self, capsys, profile_path):
        exit_code, captured = run(capsys, 'markers', profile_path)

        assert exit_code == 0
        output = json.loads(captured.out)
        assert output['totalCount'] == 1
        assert output['groups'][0]['name'] == 'DOMEvent'

    def test_compare(self, capsys, profile_path):
        exit_code, captured = run(capsys, 'compare', profile_path, profile_path)

        assert exit_code == 0
        output = json.loads(captured.out)
        assert output['threadHandle'] == 't-2'

    def test_log_level_flag(self, capsys, profile_path, monkeypatch):
        monkeypatch.delenv('PROFILER_LOG_LEVEL', raising=False)
        try:
            exit_code, _ = run(capsys, '--log-level', 'DEBUG', 'info', profile_path)
            assert exit_code == 0
            assert get_logger('profiler.cli').level == logging.DEBUG
        finally:
            set_log_level('WARNING')


class TestErrors:

    def test_missing_file(self, capsys, tmp_path):
        exit_code, captured = run(capsys, 'info', str(tmp_path / 'missing.json'))

        assert exit_code == 1
        assert 'error: Failed to read profile' in captured.err
        assert captured.out == ''

    def test_bad_range(self, capsys, profile_path):
        exit_code, captured = run(capsys, 'samples', profile_path, '--range', 'soon,later')

        assert exit_code == 1
        assert 'Invalid time value' in captured.err

    def test_unknown_thread(self, capsys, profile_path):
        exit_code, captured = run(capsys, 'markers', profile_path, '--thread', 't-9')

        assert exit_code == 1
        assert 'Unknown thread' in captured.err
