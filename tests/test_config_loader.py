#!/usr/bin/env python3
"""
Tests for TOML configuration loading and validation.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import tomllib
import pytest

from speakup.config_loader import ConfigLoader, SpeakUpConfig


def write_config(tmp_path, content):
    path = tmp_path / "config.toml"
    path.write_text(content)
    return path


class TestDefaults:
    """Test default configuration handling"""

    def test_missing_file_creates_default(self, tmp_path, capsys):
        path = tmp_path / "nested" / "config.toml"

        config = ConfigLoader(path).load()

        assert path.exists()
        assert config == SpeakUpConfig()
        assert "Created default config" in capsys.readouterr().out

    def test_default_file_is_valid_toml(self, tmp_path):
        path = tmp_path / "config.toml"
        ConfigLoader(path).load()

        with open(path, 'rb') as f:
            data = tomllib.load(f)

        assert data['live']['window_seconds'] == 15.0
        assert data['feedback']['show_realtime_feedback'] is True

    def test_reload_default_file(self, tmp_path):
        path = tmp_path / "config.toml"
        ConfigLoader(path).load()

        config = ConfigLoader(path).load()

        assert config.live.window_seconds == 15.0
        assert config.scoring.ideal_wpm_min == 130.0

    def test_empty_file_uses_defaults(self, tmp_path):
        config = ConfigLoader(write_config(tmp_path, "")).load()
        assert config == SpeakUpConfig()


class TestCustomValues:
    """Test loading overridden values"""

    def test_custom_sections(self, tmp_path):
        path = write_config(tmp_path, """
[live]
window_seconds = 30
speaking_threshold_db = -35.0

[scoring]
ideal_wpm_min = 120.0
ideal_wpm_max = 160.0

[scoring.weights]
pause_quality = 2.0

[drills]
marker_count = 4

[storage]
database_path = "/tmp/custom.db"

[feedback]
show_realtime_feedback = false
""")

        config = ConfigLoader(path).load()

        assert config.live.window_seconds == 30.0
        assert config.live.speaking_threshold_db == -35.0
        assert config.scoring.ideal_wpm_min == 120.0
        assert config.scoring.weights.pause_quality == 2.0
        assert config.scoring.weights.clarity == 1.0
        assert config.drills.marker_count == 4
        assert config.storage.database_path == "/tmp/custom.db"
        assert config.feedback.show_realtime_feedback is False


class TestValidation:
    """Test invalid configuration exits with an error"""

    @pytest.mark.parametrize("content", [
        "[live]\nwindow_seconds = 0.5\n",
        "[live]\nwindow_seconds = 500\n",
        "[live]\nspeaking_threshold_db = 10\n",
        "[live]\nwindow_seconds = \"fast\"\n",
        "[scoring]\nideal_wpm_min = 180\n",
        "[scoring]\ngood_pause_min_seconds = 2.0\n",
        "[scoring.weights]\nclarity = -1\n",
        "[scoring.weights]\nclarity = 0\npace = 0\nfiller_usage = 0\npause_quality = 0\n",
        "[drills]\ntarget_wpm_max = 100\n",
        "[drills]\nmarker_count = 0\n",
    ])
    def test_invalid_values_exit(self, tmp_path, content):
        with pytest.raises(SystemExit):
            ConfigLoader(write_config(tmp_path, content)).load()

    def test_invalid_toml_exits(self, tmp_path, capsys):
        path = write_config(tmp_path, "[live\nwindow_seconds = ")

        with pytest.raises(SystemExit):
            ConfigLoader(path).load()

        assert "Invalid TOML" in capsys.readouterr().err
