"""Tests for stats helpers — levels, accuracy, answer distribution and leaderboards."""

import pytest

from app.models import QuestionAttempt
from app.stats import (
    build_leaderboard,
    calculate_accuracy,
    calculate_user_level,
    category_breakdown,
    format_duration,
    format_response_time,
    get_answer_percentages,
    get_level_progress,
    get_performance_rating,
    normalize_category_rows,
    normalize_stats,
    update_answer_statistics,
)
from tests.conftest import make_question


class TestLevels:
    @pytest.mark.parametrize("points,level", [(0, 1), (99, 1), (100, 2), (299, 2), (300, 3), (409500, 13), (10 ** 9, 13)])
    def test_level_thresholds(self, points, level):
        assert calculate_user_level(points) == level

    def test_progress_within_level(self):
        progress = get_level_progress(200)
        assert (progress.level, progress.progress, progress.needed, progress.percentage) == (2, 100, 200, 50)

    def test_progress_past_the_table(self):
        progress = get_level_progress(409500)
        assert progress.level == 13
        assert progress.needed == 409600


class TestSessionMath:
    def test_accuracy_rounds_and_handles_zero(self):
        assert calculate_accuracy(2, 3) == 67
        assert calculate_accuracy(0, 0) == 0

    def test_category_breakdown(self):
        attempts = [
            QuestionAttempt.resolve(make_question(1, 2, category="역사"), 0, 100),
            QuestionAttempt.resolve(make_question(2, 2, category="역사"), 1, 100),
            QuestionAttempt.resolve(make_question(3, 1), 0, 100),
        ]
        breakdown = category_breakdown(attempts)
        assert (breakdown["역사"].total, breakdown["역사"].correct, breakdown["역사"].points) == (2, 1, 20)
        assert breakdown["과학"].correct == 1

    def test_rating_bands(self):
        assert get_performance_rating(80).emoji == '🏆'
        assert get_performance_rating(19).emoji == '💪'

    def test_format_duration(self):
        assert format_duration(45) == "45초"
        assert format_duration(125) == "2분 5초"

    def test_format_response_time(self):
        assert format_response_time(850) == "850ms"
        assert format_response_time(1500) == "1.5초"


class TestAnswerDistribution:
    def test_timeout_goes_to_the_extra_bucket(self):
        q = update_answer_statistics(make_question(1), None)
        assert q.total_count == 1
        assert q.answer_counts == [0, 0, 0, 0, 1]

    def test_percentages_exclude_timeouts(self):
        q = make_question(1)
        for selected in (0, 0, 1, None):
            q = update_answer_statistics(q, selected)
        assert get_answer_percentages(q) == [67, 33, 0, 0]

    def test_input_question_is_untouched(self):
        q = make_question(1)
        update_answer_statistics(q, 2)
        assert q.total_count is None


class TestNormalize:
    def test_missing_payload_gives_zeroed_shape(self):
        stats = normalize_stats(None)
        assert stats.basic_stats.total_sessions == 0
        assert stats.engagement_stats.level == 1
        assert stats.category_performance == []

    def test_partial_payload_is_filled_in(self):
        stats = normalize_stats({
            "basic_stats": {"total_sessions": 2, "highest_score": 90},
            "category_performance": [{"category": "지리", "accuracy": 50}],
        })
        assert stats.basic_stats.highest_score == 90
        assert stats.engagement_stats.total_points == 0
        assert stats.category_performance[0].emoji == '🌍'

    def test_category_rows_fall_back_to_attempt_counts(self):
        rows = normalize_category_rows([{"category": "과학", "total_attempts": 4, "correct_attempts": 3}])
        assert (rows[0].questions_answered, rows[0].correct_answers, rows[0].accuracy) == (4, 3, 75)


class TestLeaderboard:
    engagement = [
        {"user_id": "u1", "total_points": 300, "current_streak": 2},
        {"user_id": "u2", "total_points": 900, "current_streak": 5},
    ]
    sessions = [
        {"user_id": "u1", "correct_answers": 9, "total_questions": 10},
        {"user_id": "u2", "correct_answers": 5, "total_questions": 10},
        {"user_id": "u3", "correct_answers": 1, "total_questions": 10},
        {"user_id": "u3", "correct_answers": 1, "total_questions": 10},
    ]

    def test_rank_by_points(self):
        board = build_leaderboard(self.engagement, self.sessions, metric="points", current_user_id="u1")
        assert [e.user_id for e in board][:2] == ["u2", "u1"]
        assert board[0].rank == 1
        assert [e.is_current_user for e in board] == [False, True, False]

    def test_rank_by_accuracy_and_recent(self):
        assert build_leaderboard(self.engagement, self.sessions, metric="accuracy")[0].user_id == "u1"
        assert build_leaderboard(self.engagement, self.sessions, metric="recent")[0].user_id == "u3"

    def test_unknown_metric(self):
        with pytest.raises(ValueError):
            build_leaderboard([], [], metric="speed")
