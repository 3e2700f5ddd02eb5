"""
Tests for configuration loading and report formatting.
"""

from chrony_truetime.interfaces.tracking import Reading
from chrony_truetime.main import default_config, format_reading, format_tracking, load_config
from chrony_truetime.protocol.candm import decode_response


class TestLoadConfig:
    """Test TOML configuration loading."""

    def test_defaults_without_path(self):
        config = load_config(None)
        assert config == default_config()
        assert config['daemon'] == {'host': '127.0.0.1', 'port': 323, 'timeout': 1.0}
        assert config['sync']['max_attempts'] == 3
        assert config['sync']['max_uncertainty_ms'] == 20.0

    def test_missing_file_uses_defaults(self, tmp_path):
        assert load_config(str(tmp_path / 'absent.toml')) == default_config()

    def test_file_overrides_merge_with_defaults(self, tmp_path):
        path = tmp_path / 'config.toml'
        path.write_text(
            '[daemon]\n'
            'port = 10323\n'
            '\n'
            '[sync]\n'
            'wait_for_sync = false\n'
        )

        config = load_config(str(path))

        assert config['daemon']['port'] == 10323
        assert config['daemon']['host'] == '127.0.0.1'
        assert config['sync']['wait_for_sync'] is False
        assert config['sync']['max_attempts'] == 3
        assert config['monitor']['poll_interval'] == 1.0


class TestFormatting:
    """Test human-readable output."""

    def test_tracking_report_matches_chronyc(self, captured_reply):
        report = format_tracking(decode_response(captured_reply))

        assert "Reference ID    : CE6C0084 (206.108.0.132)" in report
        assert "Stratum         : 2" in report
        assert "Ref time (UTC)  : Tue Apr 28 23:01:19 2020" in report
        assert "System time     : 0.000448087 seconds slow of NTP time" in report
        assert "Frequency       : 14.480 ppm fast" in report
        assert "Root delay      : 0.012432915 seconds" in report
        assert "Root dispersion : 0.001648686 seconds" in report
        assert "Update interval : 1033.3 seconds" in report
        assert "Leap status     : Normal" in report

    def test_reading_line(self):
        reading = Reading(now_ns=1_588_114_879_500_000_000, uncertainty_ns=2_000_000)
        line = format_reading(reading)

        assert line.startswith("2020-04-28T23:01:19.500000+00:00")
        assert "±2.000ms" in line
