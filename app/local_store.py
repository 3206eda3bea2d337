"""JSON-file mirror for non-authoritative display data.

Holds per-device game stats per mode, the theme preference and a copy of the
per-question answer counts. It is never the source of truth for scoring; any
read or write problem is logged and the defaults are used instead.
"""
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List

from app.logger import quiz_logger
from app.models import OPTION_COUNT, GameStats, Question

GAME_MODES = ("classic", "timed", "challenge")
STATS_KEY = "quizGameStats"
THEME_KEY = "theme"
QUESTION_STATS_KEY = "quizStatistics"
THEMES = ("light", "dark")


def _valid_counts(counts) -> bool:
    return isinstance(counts, list) and len(counts) == OPTION_COUNT + 1 and all(isinstance(c, int) for c in counts)


class LocalStore:
    def __init__(self, path):
        self.path = Path(path)

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (OSError, ValueError) as e:
            quiz_logger.error(f"Failed to read local store {self.path}: {e}")
            return {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._read_all().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def remove(self, key: str) -> None:
        data = self._read_all()
        if key in data:
            del data[key]
            self._write_all(data)

    def _write_all(self, data: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
        except OSError as e:
            quiz_logger.error(f"Failed to write local store {self.path}: {e}")

    # ---- game stats per mode ----

    def load_game_stats(self) -> Dict[str, GameStats]:
        saved = self.get(STATS_KEY) or {}
        if not isinstance(saved, dict):
            quiz_logger.error(f"Ignoring malformed {STATS_KEY} in {self.path}")
            saved = {}
        stats = {}
        for mode in GAME_MODES:
            merged = GameStats().model_dump(by_alias=True)
            try:
                merged.update(saved.get(mode) or {})
                stats[mode] = GameStats.model_validate(merged)
            except (TypeError, ValueError) as e:
                quiz_logger.error(f"Ignoring malformed {mode} stats in {self.path}: {e}")
                stats[mode] = GameStats()
        return stats

    def save_game_stats(self, stats: Dict[str, GameStats]) -> None:
        self.set(STATS_KEY, {mode: s.model_dump(by_alias=True) for mode, s in stats.items()})

    def update_game_stats(self, mode: str, correct_answers: int, total_questions: int, score: int) -> Dict[str, GameStats]:
        if mode not in GAME_MODES:
            raise ValueError(f"Unknown game mode: {mode}")
        stats = self.load_game_stats()
        current = stats[mode]
        stats[mode] = GameStats(
            total_games=current.total_games + 1,
            total_correct=current.total_correct + correct_answers,
            total_questions=current.total_questions + total_questions,
            best_score=max(current.best_score, score),
            last_score=score,
            last_played=datetime.now(timezone.utc).isoformat(),
        )
        self.save_game_stats(stats)
        return stats

    def reset_game_stats(self) -> None:
        self.remove(STATS_KEY)

    # ---- theme ----

    def get_theme(self) -> str:
        theme = self.get(THEME_KEY)
        return theme if theme in THEMES else "light"

    def set_theme(self, theme: str) -> None:
        if theme not in THEMES:
            raise ValueError(f"Unknown theme: {theme}")
        self.set(THEME_KEY, theme)

    # ---- per-question answer counts ----

    def save_question_stats(self, questions: Iterable[Question]) -> None:
        self.set(QUESTION_STATS_KEY, [
            {"id": q.id, "totalCount": q.total_count or 0, "answerCounts": q.answer_counts or [0] * (OPTION_COUNT + 1)}
            for q in questions
        ])

    def load_question_stats(self, questions: Iterable[Question]) -> List[Question]:
        """Fill in answer counts the question source did not provide.

        Questions that already carry counts are kept as they are; a missing or
        malformed saved entry gives zeros.
        """
        raw = self.get(QUESTION_STATS_KEY)
        saved = {item.get("id"): item for item in (raw if isinstance(raw, list) else []) if isinstance(item, dict)}
        merged = []
        for q in questions:
            if q.total_count is not None and q.answer_counts:
                merged.append(q)
                continue
            item = saved.get(q.id, {})
            total = item.get("totalCount")
            counts = item.get("answerCounts")
            if not (isinstance(total, int) and _valid_counts(counts)):
                total, counts = 0, [0] * (OPTION_COUNT + 1)
            merged.append(q.model_copy(update={"total_count": total, "answer_counts": list(counts)}))
        return merged
