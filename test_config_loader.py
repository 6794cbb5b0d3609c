"""
Unit tests for configuration loader module.
"""

import logging
from unittest.mock import patch

import pytest

from form_engine import config_loader
from form_engine.config_loader import (
    FormsSettings,
    configure_logging,
    deep_merge,
    get_config_value,
    get_default_config,
    get_logging_level,
    load_config,
    reload_config,
)
from test_fixtures import config_file  # noqa: F401


class TestDeepMerge:
    """Test cases for deep_merge function."""

    def test_deep_merge_simple_dicts(self):
        base = {'a': 1, 'b': 2}
        update = {'b': 3, 'c': 4}

        result = deep_merge(base, update)

        assert result == {'a': 1, 'b': 3, 'c': 4}
        # Ensure original dicts are not modified
        assert base == {'a': 1, 'b': 2}
        assert update == {'b': 3, 'c': 4}

    def test_deep_merge_nested_dicts(self):
        base = {'forms': {'name_max_length': 120, 'default_language': 'en'}}
        update = {'forms': {'default_language': 'es'}, 'uploads': {'media_upload_url': '/u'}}

        result = deep_merge(base, update)

        assert result == {
            'forms': {'name_max_length': 120, 'default_language': 'es'},
            'uploads': {'media_upload_url': '/u'},
        }

    def test_lists_are_replaced(self):
        result = deep_merge({'languages': [{'code': 'en'}]}, {'languages': [{'code': 'de'}]})
        assert result == {'languages': [{'code': 'de'}]}


class TestLoadConfig:
    """Test cases for load_config function."""

    def test_missing_file_uses_defaults(self, tmp_path):
        assert load_config(tmp_path / 'missing.yaml') == get_default_config()

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('', encoding='utf-8')
        assert load_config(path) == get_default_config()

    def test_non_dict_file_uses_defaults(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('- just\n- a list\n', encoding='utf-8')
        assert load_config(path) == get_default_config()

    def test_invalid_yaml_uses_defaults(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('forms: [unclosed\n', encoding='utf-8')
        assert load_config(path) == get_default_config()

    def test_user_values_merged_over_defaults(self, config_file):  # noqa: F811
        config = load_config(config_file)
        assert config['forms']['auto_execute_debounce_ms'] == 500
        assert config['forms']['name_max_length'] == 120
        assert config['logging']['level'] == 'DEBUG'
        assert [lang['code'] for lang in config['languages']] == ['en', 'de']


class TestCachedConfig:
    """Test the cached accessors."""

    def test_get_config_value(self, config_file):  # noqa: F811
        with patch.object(config_loader, 'CONFIG_FILE', config_file):
            reload_config()
            try:
                assert get_config_value('forms', 'auto_execute_debounce_ms') == 500
                assert get_config_value('forms', 'missing', 'fallback') == 'fallback'
                assert get_config_value('languages', 'code', 'x') == 'x'
                assert get_config_value('nope', 'key') is None
            finally:
                config_loader._config_cache = None

    def test_reload_picks_up_changes(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text('forms:\n  name_max_length: 50\n', encoding='utf-8')
        with patch.object(config_loader, 'CONFIG_FILE', path):
            try:
                assert reload_config()['forms']['name_max_length'] == 50
                path.write_text('forms:\n  name_max_length: 60\n', encoding='utf-8')
                assert config_loader.get_config()['forms']['name_max_length'] == 50
                assert reload_config()['forms']['name_max_length'] == 60
            finally:
                config_loader._config_cache = None


class TestLogging:

    @pytest.mark.parametrize('level_str,expected', [
        ('DEBUG', logging.DEBUG),
        ('info', logging.INFO),
        ('WARNING', logging.WARNING),
        ('ERROR', logging.ERROR),
        ('CRITICAL', logging.CRITICAL),
        ('VERBOSE', logging.INFO),
        (None, logging.INFO),
    ])
    def test_get_logging_level(self, level_str, expected):
        assert get_logging_level(level_str) == expected

    @patch('logging.basicConfig')
    def test_configure_logging(self, mock_basic_config):
        level = configure_logging({'logging': {'level': 'WARNING'}})
        assert level == logging.WARNING
        kwargs = mock_basic_config.call_args.kwargs
        assert kwargs['level'] == logging.WARNING
        assert kwargs['format'] == get_default_config()['logging']['format']


class TestFormsSettings:

    def test_defaults(self):
        settings = FormsSettings.from_config({})
        assert settings.auto_execute_debounce_ms == 1000
        assert settings.auto_execute_loading_ms == 1000
        assert settings.name_max_length == 120
        assert settings.media_upload_url == '/media/upload'
        assert [lang['code'] for lang in settings.languages] == ['en']

    def test_from_file(self, config_file, tmp_path):  # noqa: F811
        settings = FormsSettings.from_config(load_config(config_file))
        assert settings.auto_execute_debounce_ms == 500
        assert settings.storage_dir == str(tmp_path / 'data')
        assert len(settings.languages) == 2

    def test_invalid_languages_fall_back(self):
        settings = FormsSettings.from_config({'languages': 'en'})
        assert settings.languages == get_default_config()['languages']
