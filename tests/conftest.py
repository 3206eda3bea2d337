"""Shared fixtures: an in-memory stand-in for the Supabase store and question builders."""

from collections import Counter

import pytest

from app.config import Settings
from app.models import Question


def make_question(qid, difficulty=1, correct_answer=0, category="과학"):
    return Question(
        id=qid,
        category=category,
        difficulty=difficulty,
        question=f"Question {qid}?",
        options=["A", "B", "C", "D"],
        correct_answer=correct_answer,
        explanation=f"Because of {qid}.",
    )


class FakeStore:
    """Synchronous store with call counters and switchable failures."""

    def __init__(self, questions=None):
        self.questions = list(questions if questions is not None else [make_question(i, 1 + i % 3) for i in range(1, 21)])
        self.calls = Counter()
        self.failing = set()
        self.roles = {}
        self.nicknames = {}
        self.stats = {}
        self.sessions = {}
        self.attempts = []
        self.increments = []

    def _enter(self, name):
        self.calls[name] += 1
        if name in self.failing:
            raise ConnectionError(f"{name} unavailable")

    def fetch_random_questions(self, count, max_question_id):
        self._enter("fetch_random_questions")
        return list(self.questions[:count])

    def increment_question_stats(self, question_id, selected_answer):
        self._enter("increment_question_stats")
        self.increments.append((question_id, selected_answer))

    def start_session(self, session_id, user_id):
        self._enter("start_session")
        self.sessions[session_id] = {"id": session_id, "user_id": user_id, "completed": False}

    def record_question_attempt(self, session_id, user_id, question, selected_answer, response_time_ms):
        self._enter("record_question_attempt")
        self.attempts.append((session_id, user_id, question.id, selected_answer))

    def complete_session(self, session_id, summary):
        self._enter("complete_session")
        row = {"id": session_id, "user_id": summary.user_id, "score": summary.score, "completed": True}
        self.sessions[session_id] = row
        basic = self.stats.setdefault(summary.user_id, {"basic_stats": {"total_sessions": 0}})["basic_stats"]
        basic["total_sessions"] += 1
        basic["highest_score"] = max(basic.get("highest_score", 0), summary.score)
        return row

    def get_recent_sessions(self, user_id, limit=10):
        self._enter("get_recent_sessions")
        return [s for s in self.sessions.values() if s["user_id"] == user_id][:limit]

    def get_quiz_trends(self, user_id, days=30):
        self._enter("get_quiz_trends")
        return []

    def get_user_role(self, user_id):
        self._enter("get_user_role")
        return self.roles.get(user_id)

    def create_default_user_role(self, user_id):
        self._enter("create_default_user_role")
        self.roles.setdefault(user_id, "user")

    def upsert_user_role(self, target_user_id, role, assigned_by):
        self._enter("upsert_user_role")
        self.roles[target_user_id] = role

    def get_users_with_roles(self):
        self._enter("get_users_with_roles")
        return [{"user_id": uid, "role": role, "nickname": self.nicknames.get(uid)} for uid, role in self.roles.items()]

    def get_user_quiz_stats(self, user_id):
        self._enter("get_user_quiz_stats")
        return self.stats.get(user_id)

    def get_category_performance(self, user_id):
        self._enter("get_category_performance")
        return [{"category": "과학", "total_attempts": 4, "correct_attempts": 3}]

    def get_engagement_rows(self, limit=100):
        self._enter("get_engagement_rows")
        return [
            {"user_id": "u1", "total_points": 300, "current_streak": 2},
            {"user_id": "u2", "total_points": 900, "current_streak": 5},
        ]

    def get_completed_sessions_since(self, days=30):
        self._enter("get_completed_sessions_since")
        return [
            {"user_id": "u1", "correct_answers": 9, "total_questions": 10},
            {"user_id": "u2", "correct_answers": 5, "total_questions": 10},
        ]

    def sign_up(self, email, password, nickname=None):
        self._enter("sign_up")
        return "new-user"

    def sign_out(self):
        self._enter("sign_out")


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def settings(tmp_path):
    s = Settings()
    s.QUESTION_TIME_LIMIT_SECONDS = 5
    s.ANSWER_PAUSE_SECONDS = 0
    s.QUIZ_QUESTION_COUNT = 3
    s.QUESTION_POOL_SIZE = 3
    s.RECORDER_RETRY_DELAYS = [0, 0]
    s.DEBOUNCE_MS = 10
    s.LOCAL_STORE_PATH = str(tmp_path / "local.json")
    return s
