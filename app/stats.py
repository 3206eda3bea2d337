"""Formatting and small calculations over quiz results and aggregate stats.

Aggregates are computed server-side; nothing here recomputes them from raw
attempts except the per-session summaries the engine produces itself.
"""
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import ValidationError

from app.logger import quiz_logger
from app.models import (
    OPTION_COUNT,
    UNANSWERED_BUCKET,
    CategoryPerformance,
    CategoryTally,
    LeaderboardEntry,
    LevelProgress,
    PerformanceRating,
    Question,
    QuestionAttempt,
    QuizStats,
)

LEVEL_THRESHOLDS = [0, 100, 300, 700, 1500, 3100, 6300, 12700, 25500, 51100, 102300, 204700, 409500]
# Step used to keep doubling past the last table entry
LEVEL_OVERFLOW_STEP = 409600

CATEGORY_EMOJIS = {
    '과학': '🔬',
    '역사': '🏛️',
    '지리': '🌍',
    '문학': '📖',
    '스포츠': '⚽',
    '예술': '🎭',
}
DEFAULT_CATEGORY_EMOJI = '📚'

LEADERBOARD_METRICS = ("points", "accuracy", "streaks", "recent")


def calculate_user_level(total_points: int) -> int:
    for i in range(len(LEVEL_THRESHOLDS) - 1, -1, -1):
        if total_points >= LEVEL_THRESHOLDS[i]:
            return i + 1
    return 1


def _level_start(level: int) -> int:
    if level <= len(LEVEL_THRESHOLDS):
        return LEVEL_THRESHOLDS[level - 1]
    above = level - len(LEVEL_THRESHOLDS)
    return LEVEL_THRESHOLDS[-1] + (2 ** above - 1) * LEVEL_OVERFLOW_STEP


def get_level_progress(total_points: int) -> LevelProgress:
    """Level plus how far the user is toward the next one.

    The table only goes up to level 13; beyond it each level needs twice the
    points of the previous one. The level itself never exceeds 13 because
    ``calculate_user_level`` only knows the table.
    """
    level = calculate_user_level(total_points)
    current = _level_start(level)
    following = _level_start(level + 1)
    progress = total_points - current
    needed = following - current
    return LevelProgress(
        level=level,
        progress=progress,
        needed=needed,
        percentage=round(progress / needed * 100),
    )


def calculate_accuracy(correct_answers: int, total_questions: int) -> int:
    if total_questions == 0:
        return 0
    return round(correct_answers / total_questions * 100)


def average_response_time(response_times: Sequence[int]) -> int:
    if not response_times:
        return 0
    return round(sum(response_times) / len(response_times))


def category_breakdown(attempts: Iterable[QuestionAttempt]) -> Dict[str, CategoryTally]:
    breakdown: Dict[str, CategoryTally] = {}
    for attempt in attempts:
        tally = breakdown.setdefault(attempt.question.category, CategoryTally())
        tally.total += 1
        if attempt.is_correct:
            tally.correct += 1
            tally.points += attempt.question.points
    return breakdown


def get_performance_rating(score: int) -> PerformanceRating:
    if score >= 80:
        return PerformanceRating(rating='우수', emoji='🏆')
    if score >= 60:
        return PerformanceRating(rating='양호', emoji='👍')
    if score >= 40:
        return PerformanceRating(rating='보통', emoji='👌')
    if score >= 20:
        return PerformanceRating(rating='미흡', emoji='📈')
    return PerformanceRating(rating='부족', emoji='💪')


def get_category_emoji(category: str) -> str:
    return CATEGORY_EMOJIS.get(category, DEFAULT_CATEGORY_EMOJI)


def format_duration(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds}초"
    minutes, rest = divmod(seconds, 60)
    return f"{minutes}분 {rest}초"


def format_response_time(ms: int) -> str:
    if ms < 1000:
        return f"{ms}ms"
    return f"{ms / 1000:.1f}초"


# ---- answer distribution ----

def calculate_percentage(count: int, total: int) -> int:
    if total == 0:
        return 0
    return round(count / total * 100)


def _counts(question: Question) -> List[int]:
    counts = list(question.answer_counts or [])
    return (counts + [0] * (OPTION_COUNT + 1))[:OPTION_COUNT + 1]


def update_answer_statistics(question: Question, selected_answer: Optional[int]) -> Question:
    """Return a copy of ``question`` with one more answer counted."""
    counts = _counts(question)
    counts[UNANSWERED_BUCKET if selected_answer is None else selected_answer] += 1
    return question.model_copy(update={
        "total_count": (question.total_count or 0) + 1,
        "answer_counts": counts,
    })


def get_answer_percentages(question: Question) -> List[int]:
    """Share of each option among answered (not timed-out) responses."""
    counts = _counts(question)
    answered = (question.total_count or 0) - counts[UNANSWERED_BUCKET]
    if answered <= 0:
        return [0] * OPTION_COUNT
    return [calculate_percentage(c, answered) for c in counts[:OPTION_COUNT]]


# ---- aggregate payload ----

def empty_stats() -> QuizStats:
    return QuizStats()


def normalize_stats(payload: Optional[Dict[str, Any]]) -> QuizStats:
    """Parse the ``get_user_quiz_stats`` payload into the versioned schema.

    Missing sections and fields take their zero defaults; a user with no
    sessions, or a payload that does not validate, gets the empty shape.
    """
    if not payload or not (payload.get('basic_stats') or {}).get('total_sessions'):
        return empty_stats()
    try:
        stats = QuizStats.model_validate(payload)
    except ValidationError as e:
        quiz_logger.error(f"Malformed stats payload, using empty stats: {e}")
        return empty_stats()
    for category in stats.category_performance:
        category.emoji = category.emoji or get_category_emoji(category.category)
    return stats


def normalize_category_rows(rows: Iterable[Dict[str, Any]]) -> List[CategoryPerformance]:
    result = []
    for row in rows:
        item = CategoryPerformance.model_validate(row)
        if not item.questions_answered:
            item.questions_answered = item.total_attempts
        if not item.correct_answers:
            item.correct_answers = item.correct_attempts
        if not item.accuracy:
            item.accuracy = calculate_accuracy(item.correct_answers, item.questions_answered)
        item.emoji = get_category_emoji(item.category)
        result.append(item)
    return result


def build_leaderboard(
    engagement_rows: Iterable[Dict[str, Any]],
    session_rows: Iterable[Dict[str, Any]],
    metric: str = "points",
    current_user_id: Optional[str] = None,
    nicknames: Optional[Dict[str, str]] = None,
    limit: int = 10,
) -> List[LeaderboardEntry]:
    """Rank users by one metric.

    ``engagement_rows`` carry points and streaks; ``session_rows`` (recent
    completed sessions) give accuracy and activity counts.
    """
    if metric not in LEADERBOARD_METRICS:
        raise ValueError(f"Unknown leaderboard metric: {metric}")
    nicknames = nicknames or {}

    correct = defaultdict(int)
    answered = defaultdict(int)
    sessions = defaultdict(int)
    for row in session_rows:
        uid = row['user_id']
        correct[uid] += row.get('correct_answers') or 0
        answered[uid] += row.get('total_questions') or 0
        sessions[uid] += 1

    entries = []
    seen = set()
    for row in engagement_rows:
        uid = row['user_id']
        seen.add(uid)
        entries.append(dict(
            user_id=uid,
            points=row.get('total_points') or 0,
            streak=row.get('current_streak') or 0,
        ))
    for uid in sessions:
        if uid not in seen:
            entries.append(dict(user_id=uid, points=0, streak=0))
    for e in entries:
        uid = e['user_id']
        e['accuracy'] = calculate_accuracy(correct[uid], answered[uid])
        e['recent_sessions'] = sessions[uid]

    sort_field = {"points": "points", "accuracy": "accuracy", "streaks": "streak", "recent": "recent_sessions"}[metric]
    entries.sort(key=lambda e: e[sort_field], reverse=True)
    return [
        LeaderboardEntry(
            rank=i + 1,
            nickname=nicknames.get(e['user_id']),
            is_current_user=e['user_id'] == current_user_id,
            **e,
        )
        for i, e in enumerate(entries[:limit])
    ]
