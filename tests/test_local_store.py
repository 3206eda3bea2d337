"""Tests for LocalStore — the per-device JSON mirror."""

import json

import pytest

from app.local_store import LocalStore
from tests.conftest import make_question


@pytest.fixture
def local(tmp_path):
    return LocalStore(tmp_path / "mirror" / "local.json")


class TestGameStats:
    def test_defaults_for_every_mode(self, local):
        stats = local.load_game_stats()
        assert set(stats) == {"classic", "timed", "challenge"}
        assert stats["timed"].total_games == 0

    def test_update_accumulates(self, local):
        local.update_game_stats("timed", 7, 10, 120)
        stats = local.update_game_stats("timed", 5, 10, 80)["timed"]
        assert (stats.total_games, stats.total_correct, stats.total_questions) == (2, 12, 20)
        assert (stats.best_score, stats.last_score) == (120, 80)
        assert stats.last_played is not None

    def test_saved_with_camel_case_keys(self, local):
        local.update_game_stats("classic", 1, 1, 10)
        assert local.get("quizGameStats")["classic"]["bestScore"] == 10

    def test_unknown_mode(self, local):
        with pytest.raises(ValueError):
            local.update_game_stats("endless", 1, 1, 1)

    def test_reset(self, local):
        local.update_game_stats("classic", 1, 1, 10)
        local.reset_game_stats()
        assert local.load_game_stats()["classic"].total_games == 0


class TestPreferences:
    def test_theme_defaults_to_light(self, local):
        assert local.get_theme() == "light"
        local.set_theme("dark")
        assert local.get_theme() == "dark"

    def test_bad_theme(self, local):
        with pytest.raises(ValueError):
            local.set_theme("sepia")

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "local.json"
        path.write_text("{not json", encoding="utf-8")
        assert LocalStore(path).get_theme() == "light"


class TestQuestionStats:
    def test_counts_overlay_fresh_questions(self, local):
        counted = make_question(1).model_copy(update={"total_count": 3, "answer_counts": [1, 1, 0, 0, 1]})
        local.save_question_stats([counted])
        merged = local.load_question_stats([make_question(1), make_question(2)])
        assert merged[0].total_count == 3
        assert merged[0].answer_counts == [1, 1, 0, 0, 1]
        assert merged[1].total_count == 0


class TestMalformedMirror:
    """Valid JSON with the wrong shape reads as defaults instead of raising."""

    def write(self, tmp_path, payload):
        path = tmp_path / "local.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return LocalStore(path)

    def test_stats_that_are_not_a_mapping(self, tmp_path):
        local = self.write(tmp_path, {"quizGameStats": ["not", "a", "dict"]})
        assert local.load_game_stats()["timed"].total_games == 0

    def test_one_bad_mode_keeps_the_others(self, tmp_path):
        local = self.write(tmp_path, {"quizGameStats": {
            "timed": {"totalGames": "lots"},
            "classic": {"totalGames": 4},
            "challenge": 7,
        }})
        stats = local.load_game_stats()
        assert stats["timed"].total_games == 0
        assert stats["classic"].total_games == 4
        assert stats["challenge"].total_games == 0

    def test_update_recovers_from_bad_stats(self, tmp_path):
        local = self.write(tmp_path, {"quizGameStats": ["broken"]})
        stats = local.update_game_stats("timed", 3, 3, 60)
        assert stats["timed"].total_games == 1
        assert local.load_game_stats()["timed"].best_score == 60

    def test_bad_question_counts_give_zeros(self, tmp_path):
        local = self.write(tmp_path, {"quizStatistics": [
            {"id": 1, "totalCount": "many", "answerCounts": [1, 2]},
        ]})
        merged = local.load_question_stats([make_question(1)])
        assert merged[0].total_count == 0
        assert merged[0].answer_counts == [0, 0, 0, 0, 0]

    def test_question_stats_that_are_not_a_list(self, tmp_path):
        local = self.write(tmp_path, {"quizStatistics": {"1": 5}})
        assert local.load_question_stats([make_question(1)])[0].total_count == 0

    def test_questions_with_counts_are_kept(self, tmp_path):
        local = self.write(tmp_path, {"quizStatistics": [
            {"id": 1, "totalCount": 9, "answerCounts": [9, 0, 0, 0, 0]},
        ]})
        fetched = make_question(1).model_copy(update={"total_count": 2, "answer_counts": [1, 1, 0, 0, 0]})
        assert local.load_question_stats([fetched])[0].total_count == 2
