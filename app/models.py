from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

OPTION_COUNT = 4
# answer_counts has one extra bucket for timeouts
UNANSWERED_BUCKET = 4
STATS_SCHEMA_VERSION = 1


class Question(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    id: int
    category: str
    subcategory: str = ""
    difficulty: int = Field(ge=1, le=5)
    question: str
    options: List[str] = Field(min_length=OPTION_COUNT, max_length=OPTION_COUNT)
    correct_answer: int = Field(alias="correctAnswer", ge=0, lt=OPTION_COUNT)
    explanation: Optional[str] = None
    reflection: Optional[str] = None
    total_count: Optional[int] = Field(default=None, alias="totalCount")
    answer_counts: Optional[List[int]] = Field(default=None, alias="answerCounts")

    @property
    def points(self) -> int:
        return self.difficulty * 10


class QuestionView(BaseModel):
    """A question as shown while it can still be answered (no answer key)."""
    id: int
    category: str
    subcategory: str
    difficulty: int
    question: str
    options: List[str]

    @classmethod
    def from_question(cls, question: Question) -> "QuestionView":
        return cls(
            id=question.id,
            category=question.category,
            subcategory=question.subcategory,
            difficulty=question.difficulty,
            question=question.question,
            options=list(question.options),
        )


class QuestionAttempt(BaseModel):
    model_config = ConfigDict(frozen=True)

    question: Question
    # None means the countdown ran out
    selected_answer: Optional[int] = None
    is_correct: bool
    response_time_ms: int

    @classmethod
    def resolve(cls, question: Question, selected_answer: Optional[int], response_time_ms: int) -> "QuestionAttempt":
        return cls(
            question=question,
            selected_answer=selected_answer,
            is_correct=selected_answer is not None and selected_answer == question.correct_answer,
            response_time_ms=max(0, int(response_time_ms)),
        )


class AnswerFeedback(BaseModel):
    question_id: int
    selected_answer: Optional[int] = None
    is_correct: bool
    correct_answer: int
    correct_option: str
    explanation: Optional[str] = None
    reflection: Optional[str] = None
    total_count: int = 0
    answer_percentages: List[int] = Field(default_factory=lambda: [0] * OPTION_COUNT)
    points_earned: int = 0


class SessionSummary(BaseModel):
    """Payload sent to the session recorder when a play-through ends."""
    session_id: str
    user_id: Optional[str] = None
    score: int
    correct_answers: int
    total_questions: int
    start_time: datetime
    end_time: datetime
    duration_seconds: int
    best_streak: int
    average_response_time_ms: int
    completed: bool = True


class CategoryTally(BaseModel):
    total: int = 0
    correct: int = 0
    points: int = 0


class QuizResults(BaseModel):
    summary: SessionSummary
    accuracy: int
    response_times: List[int]
    attempts: List[QuestionAttempt]
    category_breakdown: Dict[str, CategoryTally]


class QuizSessionRecord(BaseModel):
    """A row of the quiz_sessions table."""
    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: Optional[str] = None
    score: Optional[int] = None
    correct_answers: Optional[int] = None
    total_questions: Optional[int] = None
    duration_seconds: Optional[int] = None
    best_streak: Optional[int] = None
    average_response_time_ms: Optional[int] = None
    completed: bool = False
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    created_at: Optional[datetime] = None


class SessionSnapshot(BaseModel):
    session_id: str
    state: str
    user_id: Optional[str] = None
    question_index: int = 0
    total_questions: int = 0
    current_question: Optional[QuestionView] = None
    time_left_seconds: Optional[float] = None
    score: int = 0
    correct_answers: int = 0
    current_streak: int = 0
    best_streak: int = 0
    last_feedback: Optional[AnswerFeedback] = None
    error: Optional[str] = None
    retryable: bool = False
    results: Optional[QuizResults] = None


# ---- aggregate statistics payload (get_user_quiz_stats) ----

class _StatsPart(BaseModel):
    model_config = ConfigDict(extra="ignore")


class BasicStats(_StatsPart):
    total_sessions: int = 0
    completed_sessions: int = 0
    highest_score: int = 0
    average_score: float = 0
    overall_accuracy: float = 0
    average_duration_minutes: float = 0
    last_played: Optional[datetime] = None


class EngagementStats(_StatsPart):
    current_streak: int = 0
    longest_streak: int = 0
    total_study_time_minutes: float = 0
    level: int = 1
    total_points: int = 0
    achievements: List[str] = Field(default_factory=list)


class TimePerformance(_StatsPart):
    best_performance_hour: Optional[int] = None
    average_response_time_ms: Optional[float] = None
    questions_by_difficulty: Dict[str, Any] = Field(default_factory=dict)


class CategoryPerformance(_StatsPart):
    category: str
    questions_answered: int = 0
    correct_answers: int = 0
    accuracy: float = 0
    total_attempts: int = 0
    correct_attempts: int = 0
    total_points: int = 0
    best_streak: int = 0
    average_difficulty: Optional[float] = None
    last_attempt_date: Optional[datetime] = None
    emoji: str = ""


class Achievements(_StatsPart):
    perfect_sessions: int = 0
    questions_mastered: int = 0
    difficulty_breakdown: Dict[str, Any] = Field(default_factory=dict)


class QuizStats(_StatsPart):
    schema_version: int = STATS_SCHEMA_VERSION
    basic_stats: BasicStats = Field(default_factory=BasicStats)
    engagement_stats: EngagementStats = Field(default_factory=EngagementStats)
    time_performance: TimePerformance = Field(default_factory=TimePerformance)
    category_performance: List[CategoryPerformance] = Field(default_factory=list)
    achievements: Achievements = Field(default_factory=Achievements)


class StatsResponse(BaseModel):
    stats: QuizStats
    # True when a read failure was replaced by the zeroed shape
    degraded: bool = False


class LevelProgress(BaseModel):
    level: int
    progress: int
    needed: int
    percentage: int


class PerformanceRating(BaseModel):
    rating: str
    emoji: str


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    nickname: Optional[str] = None
    points: int = 0
    accuracy: float = 0
    streak: int = 0
    recent_sessions: int = 0
    is_current_user: bool = False


class GameStats(BaseModel):
    """Per-mode stats kept in the local mirror (camelCase on disk)."""
    model_config = ConfigDict(populate_by_name=True)

    total_games: int = Field(default=0, alias="totalGames")
    total_correct: int = Field(default=0, alias="totalCorrect")
    total_questions: int = Field(default=0, alias="totalQuestions")
    best_score: int = Field(default=0, alias="bestScore")
    last_score: int = Field(default=0, alias="lastScore")
    last_played: Optional[str] = Field(default=None, alias="lastPlayed")


GameMode = Literal["classic", "timed", "challenge"]
Role = Literal["admin", "user"]


# ---- request bodies ----

class StartSessionRequest(BaseModel):
    user_id: Optional[str] = None
    count: Optional[int] = Field(default=None, ge=1, le=50)


class AnswerRequest(BaseModel):
    selected_answer: int = Field(ge=0, lt=OPTION_COUNT)


class RoleUpdate(BaseModel):
    role: Role
    admin_user_id: str


class SignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    confirm_password: str
    nickname: Optional[str] = None

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match.")
        return self


class SignOutRequest(BaseModel):
    user_id: Optional[str] = None
