"""Supabase-backed reads and writes.

All methods are synchronous, like the supabase client itself. Async callers
go through ``run_in_threadpool``. Errors raised by the client propagate; the
service layer decides which ones are fatal.
"""
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from app.logger import quiz_logger
from app.models import UNANSWERED_BUCKET, Question, SessionSummary


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseQuizStore:
    def __init__(self, client):
        self.client = client

    # ---- questions ----

    def fetch_random_questions(self, count: int, max_question_id: int) -> List[Question]:
        """Pick ``count`` distinct random ids and load those rows in shuffled order."""
        wanted = min(count, max_question_id)
        random_ids = random.sample(range(1, max_question_id + 1), wanted)
        rows = self.client.table('questions').select('*').in_('id', random_ids).execute().data or []
        if not rows:
            quiz_logger.warning("No questions found in database")
            return []
        random.shuffle(rows)
        return [Question.model_validate(row) for row in rows]

    def increment_question_stats(self, question_id: int, selected_answer: Optional[int]) -> None:
        answer_index = UNANSWERED_BUCKET
        if selected_answer is not None and 0 <= selected_answer < UNANSWERED_BUCKET:
            answer_index = selected_answer
        self.client.rpc('increment_question_stats', {
            'question_id': question_id,
            'answer_index': answer_index,
        }).execute()

    # ---- sessions and attempts ----

    def start_session(self, session_id: str, user_id: str) -> None:
        self.client.table('quiz_sessions').insert({
            'id': session_id,
            'user_id': user_id,
            'start_time': _now_iso(),
            'completed': False,
        }).execute()

    def record_question_attempt(
        self,
        session_id: str,
        user_id: str,
        question: Question,
        selected_answer: Optional[int],
        response_time_ms: int,
    ) -> Any:
        return self.client.rpc('record_question_attempt', {
            'p_session_id': session_id,
            'p_user_id': user_id,
            'p_question_id': question.id,
            'p_category': question.category,
            'p_subcategory': question.subcategory or '',
            'p_difficulty': question.difficulty,
            'p_selected_answer': selected_answer,
            'p_correct_answer': question.correct_answer,
            'p_response_time_ms': response_time_ms,
        }).execute().data

    def complete_session(self, session_id: str, summary: SessionSummary) -> Optional[Dict[str, Any]]:
        result = self.client.table('quiz_sessions').update({
            'score': summary.score,
            'correct_answers': summary.correct_answers,
            'questions_attempted': summary.total_questions,
            'total_questions': summary.total_questions,
            'end_time': summary.end_time.isoformat(),
            'duration_seconds': summary.duration_seconds,
            'completed': True,
            'best_streak': summary.best_streak,
            'average_response_time_ms': summary.average_response_time_ms,
        }).eq('id', session_id).execute()
        return result.data[0] if result.data else None

    def get_recent_sessions(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        return self.client.table('quiz_sessions').select('*').eq(
            'user_id', user_id
        ).eq('completed', True).order('created_at', desc=True).limit(limit).execute().data or []

    def get_quiz_trends(self, user_id: str, days: int = 30) -> List[Dict[str, Any]]:
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        return self.client.table('quiz_sessions').select(
            'score, correct_answers, total_questions, created_at'
        ).eq('user_id', user_id).eq('completed', True).gte(
            'created_at', since
        ).order('created_at').execute().data or []

    # ---- roles ----

    def get_user_role(self, user_id: str) -> Optional[str]:
        result = self.client.table('user_roles').select('role').eq('user_id', user_id).maybe_single().execute()
        # maybe_single() yields no response at all when the row is missing
        if result is None or not result.data:
            return None
        return result.data['role']

    def create_default_user_role(self, user_id: str) -> None:
        self.client.table('user_roles').insert([{'user_id': user_id, 'role': 'user'}]).execute()

    def upsert_user_role(self, target_user_id: str, role: str, assigned_by: str) -> None:
        self.client.table('user_roles').upsert([{
            'user_id': target_user_id,
            'role': role,
            'assigned_by': assigned_by,
            'updated_at': _now_iso(),
        }], on_conflict='user_id').execute()

    def get_users_with_roles(self) -> List[Dict[str, Any]]:
        return self.client.rpc('get_users_with_roles', {}).execute().data or []

    # ---- aggregates ----

    def get_user_quiz_stats(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.client.rpc('get_user_quiz_stats', {'target_user_id': user_id}).execute().data

    def get_category_performance(self, user_id: str) -> List[Dict[str, Any]]:
        return self.client.table('category_performance').select('*').eq(
            'user_id', user_id
        ).order('total_points', desc=True).execute().data or []

    def get_engagement_rows(self, limit: int = 100) -> List[Dict[str, Any]]:
        return self.client.table('user_engagement_stats').select(
            'user_id, total_points, current_streak, longest_streak'
        ).order('total_points', desc=True).limit(limit).execute().data or []

    def get_completed_sessions_since(self, days: int = 30) -> List[Dict[str, Any]]:
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        return self.client.table('quiz_sessions').select(
            'user_id, correct_answers, total_questions'
        ).eq('completed', True).gte('created_at', since).execute().data or []

    # ---- auth (hosted provider) ----

    def sign_up(self, email: str, password: str, nickname: Optional[str] = None) -> Optional[str]:
        options = {'data': {'nickname': nickname}} if nickname else {}
        response = self.client.auth.sign_up({'email': email, 'password': password, 'options': options})
        return response.user.id if response.user else None

    def sign_out(self) -> None:
        self.client.auth.sign_out()
