"""Tests for the rating calculations."""

import pytest

from duel_bot.utils.elo import EloCalculator


class TestExpectedScore:
    def test_equal_ratings(self):
        assert EloCalculator.calculate_expected_score(1000, 1000) == pytest.approx(0.5)

    def test_scores_sum_to_one(self):
        a = EloCalculator.calculate_expected_score(1234, 987)
        b = EloCalculator.calculate_expected_score(987, 1234)
        assert a + b == pytest.approx(1.0)

    def test_400_point_gap(self):
        assert EloCalculator.calculate_expected_score(1400, 1000) == pytest.approx(10 / 11)


class TestSimpleMode:
    def test_equal_ratings(self):
        change = EloCalculator.calculate_duel_result(1000, 1000, 32)
        assert change.winner_new_rating == 1016
        assert change.loser_new_rating == 984
        assert change.winner_change == 16
        assert change.loser_change == -16

    def test_favourite_gains_less(self):
        change = EloCalculator.calculate_duel_result(1200, 1000, 32)
        assert 0 < change.winner_change < 16

    def test_loser_floored_at_zero(self):
        change = EloCalculator.calculate_duel_result(10, 10, 32)
        assert change.loser_new_rating == 0
        assert change.loser_change == -10


class TestBonusMode:
    def test_first_win_is_plain_elo(self):
        change = EloCalculator.calculate_bonus_duel_result(
            1000, 1000, 32, winner_streak=1, streak_bonus_2=0.1, streak_bonus_3=0.2, upset_bonus=0.25
        )
        assert (change.winner_new_rating, change.loser_new_rating) == (1016, 984)

    @pytest.mark.parametrize("streak,expected_gain", [(1, 16), (2, 18), (3, 19), (7, 19)])
    def test_streak_tiers(self, streak, expected_gain):
        change = EloCalculator.calculate_bonus_duel_result(
            1000, 1000, 32, winner_streak=streak, streak_bonus_2=0.1, streak_bonus_3=0.2
        )
        assert change.winner_change == expected_gain
        # The loser's side never gets streak bonuses
        assert change.loser_change == -16

    def test_full_upset(self):
        change = EloCalculator.calculate_bonus_duel_result(1000, 1200, 32, winner_streak=1, upset_bonus=0.25)
        assert change.winner_change == 30
        assert change.loser_change == -24
        assert change.winner_new_rating == 1030
        assert change.loser_new_rating == 1176

    def test_upset_scales_with_gap(self):
        assert EloCalculator.calculate_upset_multiplier(1000, 1100, 0.25) == pytest.approx(1.125)
        assert EloCalculator.calculate_upset_multiplier(1000, 1600, 0.25) == pytest.approx(1.25)
        assert EloCalculator.calculate_upset_multiplier(1100, 1000, 0.25) == 1.0

    def test_wildcard_scales_both_sides(self):
        change = EloCalculator.calculate_bonus_duel_result(1000, 1000, 32, winner_streak=1, is_wildcard=True)
        assert change.winner_change == 24
        assert change.loser_change == -24

    def test_loser_change_is_never_positive(self):
        change = EloCalculator.calculate_bonus_duel_result(1000, 1000, 0, winner_streak=1)
        assert change.loser_change == 0
        assert change.winner_change == 0

    def test_ratings_floored_at_zero(self):
        change = EloCalculator.calculate_bonus_duel_result(5, 5, 32, winner_streak=1)
        assert change.loser_new_rating == 0


class TestHelpers:
    def test_soft_reset(self):
        assert EloCalculator.soft_reset(1200, 1000) == 1100
        assert EloCalculator.soft_reset(900, 1000) == 950

    def test_win_rate(self):
        assert EloCalculator.calculate_win_rate(0, 0) == 0.0
        assert EloCalculator.calculate_win_rate(3, 1) == 75.0

    def test_rank_names(self):
        assert EloCalculator.get_rank_name(1450) == 'Master'
        assert EloCalculator.get_rank_name(1000) == 'Silver'
        assert EloCalculator.get_rank_name(999) == 'Bronze'

    def test_format_change(self):
        assert EloCalculator.format_elo_change(12) == "+12"
        assert EloCalculator.format_elo_change(-7) == "-7"
        assert EloCalculator.format_elo_change(0) == "±0"
