import pytest

from game import Die, HelpTableGenerator, ProbabilityCalculator
from helpers import classic_dice


def test_identical_dice_are_even():
    dice = [Die((1, 2, 3, 4, 5, 6)) for _ in range(4)]
    for i, first in enumerate(dice):
        for j, second in enumerate(dice):
            if i != j:
                assert ProbabilityCalculator.win_probability(first, second) == 0.5


def test_classic_dice_beat_each_other_in_a_cycle():
    a, b, c = classic_dice()

    assert ProbabilityCalculator.win_probability(a, b) == pytest.approx(5 / 9)
    assert ProbabilityCalculator.win_probability(b, c) == pytest.approx(5 / 9)
    assert ProbabilityCalculator.win_probability(c, a) == pytest.approx(5 / 9)
    assert ProbabilityCalculator.win_probability(b, a) == pytest.approx(4 / 9)


def test_count_outcomes_ignores_ties():
    wins, losses = ProbabilityCalculator.count_outcomes(Die((1, 2, 3, 4, 5, 6)), Die((1, 2, 3, 4, 5, 6)))

    assert (wins, losses) == (15, 15)


def test_dice_that_always_tie_are_even():
    ones = Die((1, 1, 1, 1, 1, 1))

    assert ProbabilityCalculator.win_probability(ones, Die((1, 1, 1, 1, 1, 1))) == 0.5


def test_help_table_layout():
    dice = [Die((1, 2, 3, 4, 5, 6)) for _ in range(4)]
    table = HelpTableGenerator.generate_table(dice)

    assert "Win Probability Table" in table
    assert table.count("0.5000") == 12
    assert table.count("| -") == 4
    assert "+====" in table
    assert "1,2,3,4,5,6" in table


def test_help_table_uses_given_calculator():
    class FixedCalculator:
        @staticmethod
        def win_probability(die1, die2):
            return 0.25

    table = HelpTableGenerator.generate_table(classic_dice(), FixedCalculator)

    assert table.count("0.2500") == 6


def test_help_table_says_ties_are_left_out():
    table = HelpTableGenerator.generate_table(classic_dice())

    assert "ties are left out: each cell is wins / (wins + losses)" in table
