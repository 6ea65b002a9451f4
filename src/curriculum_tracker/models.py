"""Data classes for the curriculum and progress domain model."""
from dataclasses import dataclass, field
from typing import Optional

ACTIVITY_TYPES = ("reading", "video", "coding", "challenge", "quiz")
RESOURCE_TYPES = ("book", "video", "article", "tool", "github")

NOT_STARTED = "not_started"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
REDO = "redo"
STATUSES = (NOT_STARTED, IN_PROGRESS, COMPLETED, REDO)

SKILL_LEVELS = ("beginner", "intermediate", "advanced")


@dataclass
class Activity:
    activity_type: str
    title: str
    description: str = ""
    duration: int = 0
    is_optional: bool = False
    resource_url: Optional[str] = None


@dataclass
class Resource:
    resource_type: str
    title: str
    url: str
    description: str = ""


@dataclass
class QuizQuestion:
    question: str
    options: list[str]
    correct_answer: int
    explanation: str = ""


@dataclass
class Quiz:
    questions: list[QuizQuestion] = field(default_factory=list)


@dataclass
class Lesson:
    phase_id: str
    day: int
    hour: int
    title: str
    description: str = ""
    time_allocation: int = 60
    activities: list[Activity] = field(default_factory=list)
    learning_objectives: list[str] = field(default_factory=list)
    prerequisites: list[str] = field(default_factory=list)
    quiz: Optional[Quiz] = None
    resources: list[Resource] = field(default_factory=list)

    @property
    def activity_titles(self) -> list[str]:
        return [a.title for a in self.activities]


@dataclass
class Milestone:
    title: str
    description: str = ""
    required_lessons: list[int] = field(default_factory=list)  # lesson days
    badge: str = ""


@dataclass
class Phase:
    phase_id: str
    title: str
    phase_order: int
    description: str = ""
    estimated_days: int = 0
    lessons: list[Lesson] = field(default_factory=list)
    milestones: list[Milestone] = field(default_factory=list)


@dataclass
class ProgressRecord:
    learner_id: str
    phase_id: str
    day: int
    hour: int
    status: str = NOT_STARTED
    completed_activities: list[str] = field(default_factory=list)
    time_spent: int = 0
    notes: str = ""
    quiz_score: Optional[float] = None
    completed_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class ProgressUpdate:
    """Partial update accepted by the progress write endpoint."""
    toggle_activities: list[str] = field(default_factory=list)
    completed_activities: Optional[list[str]] = None
    notes: Optional[str] = None
    time_delta: int = 0
    quiz_score: Optional[float] = None
    status: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class StudySession:
    start_time: str  # HH:MM
    end_time: str
    activity: str
    description: str
    resource_url: Optional[str] = None
    completed: bool = False
    time_spent: int = 0
    notes: Optional[str] = None


@dataclass
class DailyPlan:
    learner_id: str
    plan_date: str  # ISO date
    sessions: list[StudySession] = field(default_factory=list)
    total_hours: Optional[float] = None
    updated_at: Optional[str] = None


@dataclass
class ChallengeCounters:
    challenges_solved: int = 0
    challenges_attempted: int = 0
    projects_submitted: int = 0


@dataclass
class PhaseStatus:
    phase_id: str
    title: str
    phase_order: int
    completed: int
    total: int
    fraction: float
    is_complete: bool
    is_unlocked: bool


@dataclass
class SeriesPoint:
    date: str
    hours: float
    lessons: int


@dataclass
class AnalyticsSnapshot:
    total_hours: float
    lessons_completed: int
    total_lessons: int
    weekly_hours: float
    challenges_solved: int
    challenges_attempted: int
    projects_submitted: int
    completion_rate: float
    overall_progress: float
    current_phase: Optional[str]
    weekly_goal_hours: float = 0.0
    weekly_goal_progress: float = 0.0
    daily_average: float = 0.0
    streak: int = 0


@dataclass
class LearnerPreferences:
    dark_mode: bool = True
    pomodoro_length: int = 25
    daily_goal_hours: float = 5
    notifications: bool = True


@dataclass
class LearnerProfile:
    skill_level: str = "beginner"
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    bio: Optional[str] = None
    github_username: Optional[str] = None
    twitter_handle: Optional[str] = None
    ctf_team: Optional[str] = None
