"""Tests for settings loading and the logging helpers."""

import logging

from profiler.config import ProfilerSettings, get_default_categories, get_settings, load_settings
from profiler.logging_utils import get_logger, set_log_level


class TestSettings:

    def test_packaged_defaults(self):
        settings = get_settings()
        assert settings.jank_threshold_ms == 50
        assert settings.top_functions_limit == 50
        assert settings.default_implementation == 'combined'
        assert [c.name for c in settings.default_categories][-1] == 'DOM'

    def test_default_categories_are_copies(self):
        first = get_default_categories()
        first[0].name = 'Changed'
        assert get_default_categories()[0].name == 'Other'

    def test_custom_file(self, tmp_path):
        path = tmp_path / 'settings.yaml'
        path.write_text('jank_threshold_ms: 20\ntop_functions_limit: 5\n')

        settings = load_settings(path)
        assert settings.jank_threshold_ms == 20
        assert settings.top_functions_limit == 5
        assert len(settings.default_categories) == 8

    def test_missing_file_falls_back(self, tmp_path):
        assert load_settings(tmp_path / 'missing.yaml') == ProfilerSettings()

    def test_invalid_values_fall_back(self, tmp_path):
        path = tmp_path / 'settings.yaml'
        path.write_text('jank_threshold_ms: -1\n')

        assert load_settings(path).jank_threshold_ms == 50

    def test_invalid_yaml_falls_back(self, tmp_path):
        path = tmp_path / 'settings.yaml'
        path.write_text('jank_threshold_ms: [unclosed\n')

        assert load_settings(path) == ProfilerSettings()


class TestLogging:

    def test_logger_is_cached(self):
        assert get_logger('profiler.test_config') is get_logger('profiler.test_config')

    def test_set_log_level(self, monkeypatch):
        monkeypatch.delenv('PROFILER_LOG_LEVEL', raising=False)
        logger = get_logger('profiler.test_config.level')
        try:
            set_log_level('debug')
            assert logger.level == logging.DEBUG
        finally:
            set_log_level('WARNING')
        assert logger.level == logging.WARNING

    def test_env_var_wins(self, monkeypatch):
        logger = get_logger('profiler.test_config.env')
        monkeypatch.setenv('PROFILER_LOG_LEVEL', 'ERROR')
        try:
            set_log_level('DEBUG')
            assert logger.level == logging.ERROR
        finally:
            monkeypatch.delenv('PROFILER_LOG_LEVEL')
            set_log_level('WARNING')
