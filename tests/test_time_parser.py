import pytest

from duel_bot.cogs.admin import parse_setting
from duel_bot.utils.time_parser import format_duration, parse_duration


class TestParseDuration:
    @pytest.mark.parametrize("text,seconds", [
        ("6h", 21600),
        ("90m", 5400),
        ("1h30m", 5400),
        ("1h 30m", 5400),
        ("2d", 172800),
        ("45s", 45),
        ("3600", 3600),
        ("  12H ", 43200),
    ])
    def test_valid(self, text, seconds):
        assert parse_duration(text) == seconds

    @pytest.mark.parametrize("text", ["", "abc", "5x", "h", "0", "0m", "1h-5m"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)


class TestFormatDuration:
    @pytest.mark.parametrize("seconds,text", [
        (0, "0s"),
        (45, "45s"),
        (5400, "1h 30m"),
        (21600, "6h"),
        (90061, "1d 1h 1m 1s"),
    ])
    def test_format(self, seconds, text):
        assert format_duration(seconds) == text

    def test_negative(self):
        with pytest.raises(ValueError):
            format_duration(-1)


class TestParseSetting:
    def test_durations(self):
        assert parse_setting('duel_interval', '90m') == 5400

    def test_switches(self):
        assert parse_setting('balanced_matchmaking', 'Off') is False
        assert parse_setting('smart_retirement', 'yes') is True
        with pytest.raises(ValueError):
            parse_setting('smart_retirement', 'maybe')

    def test_ratios(self):
        assert parse_setting('wildcard_chance', '5%') == pytest.approx(0.05)
        assert parse_setting('upset_bonus', '0.25') == pytest.approx(0.25)

    def test_numbers_and_text(self):
        assert parse_setting('k_factor', ' 24 ') == 24
        assert parse_setting('rating_mode', 'SIMPLE') == 'simple'
        with pytest.raises(ValueError):
            parse_setting('min_votes', 'three')
