"""Per-learner settings, preferences and analytics configuration."""
import json
from dataclasses import asdict, dataclass, fields

from curriculum_tracker.db import get_connection
from curriculum_tracker.errors import ValidationError
from curriculum_tracker.models import SKILL_LEVELS, LearnerPreferences, LearnerProfile

PREFERENCES_KEY = "preferences"
PROFILE_KEY = "profile"
ANALYTICS_KEY = "analytics"


@dataclass
class AnalyticsConfig:
    rate_precision: int = 1
    hours_precision: int = 2


def get_setting(db_path: str, learner_id: str, key: str, default: str = None) -> str | None:
    conn = get_connection(db_path)
    row = conn.execute(
        "SELECT value FROM learner_settings WHERE learner_id = ? AND key = ?",
        (learner_id, key),
    ).fetchone()
    conn.close()
    return row["value"] if row else default


def set_setting(db_path: str, learner_id: str, key: str, value: str) -> None:
    conn = get_connection(db_path)
    conn.execute(
        """INSERT INTO learner_settings (learner_id, key, value) VALUES (?, ?, ?)
        ON CONFLICT(learner_id, key) DO UPDATE SET value=excluded.value""",
        (learner_id, key, value),
    )
    conn.commit()
    conn.close()


def _check_fields(record_type, data: dict) -> None:
    known = {f.name for f in fields(record_type)}
    unknown = set(data) - known
    if unknown:
        raise ValidationError(f"Unknown {record_type.__name__} field(s): {', '.join(sorted(unknown))}")


def parse_preferences(data: dict) -> LearnerPreferences:
    """Validate a raw preferences payload, filling defaults for missing keys."""
    _check_fields(LearnerPreferences, data)
    prefs = LearnerPreferences(**data)
    for name in ("dark_mode", "notifications"):
        if not isinstance(getattr(prefs, name), bool):
            raise ValidationError(f"{name} must be true or false")
    if isinstance(prefs.pomodoro_length, bool) or not isinstance(prefs.pomodoro_length, int) \
            or not 1 <= prefs.pomodoro_length <= 180:
        raise ValidationError("pomodoro_length must be a whole number of minutes between 1 and 180")
    if isinstance(prefs.daily_goal_hours, bool) or not isinstance(prefs.daily_goal_hours, (int, float)) \
            or not 0 <= prefs.daily_goal_hours <= 24:
        raise ValidationError("daily_goal_hours must be between 0 and 24")
    return prefs


def parse_profile(data: dict) -> LearnerProfile:
    _check_fields(LearnerProfile, data)
    profile = LearnerProfile(**data)
    if profile.skill_level not in SKILL_LEVELS:
        raise ValidationError(f"skill_level must be one of {', '.join(SKILL_LEVELS)}")
    for f in fields(LearnerProfile):
        value = getattr(profile, f.name)
        if f.name != "skill_level" and value is not None and not isinstance(value, str):
            raise ValidationError(f"{f.name} must be text")
    return profile


def get_preferences(db_path: str, learner_id: str) -> LearnerPreferences:
    raw = get_setting(db_path, learner_id, PREFERENCES_KEY)
    return parse_preferences(json.loads(raw)) if raw else LearnerPreferences()


def save_preferences(db_path: str, learner_id: str, data: dict) -> LearnerPreferences:
    """Merge ``data`` over the stored preferences and persist the validated result."""
    merged = {**asdict(get_preferences(db_path, learner_id)), **data}
    prefs = parse_preferences(merged)
    set_setting(db_path, learner_id, PREFERENCES_KEY, json.dumps(asdict(prefs)))
    return prefs


def get_profile(db_path: str, learner_id: str) -> LearnerProfile:
    raw = get_setting(db_path, learner_id, PROFILE_KEY)
    return parse_profile(json.loads(raw)) if raw else LearnerProfile()


def save_profile(db_path: str, learner_id: str, data: dict) -> LearnerProfile:
    merged = {**asdict(get_profile(db_path, learner_id)), **data}
    profile = parse_profile(merged)
    set_setting(db_path, learner_id, PROFILE_KEY, json.dumps(asdict(profile)))
    return profile


def load_analytics_config(db_path: str, learner_id: str) -> AnalyticsConfig:
    raw = get_setting(db_path, learner_id, ANALYTICS_KEY)
    if not raw:
        return AnalyticsConfig()
    data = json.loads(raw)
    _check_fields(AnalyticsConfig, data)
    return AnalyticsConfig(**data)


def save_analytics_config(db_path: str, learner_id: str, config: AnalyticsConfig) -> None:
    for name in ("rate_precision", "hours_precision"):
        value = getattr(config, name)
        if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= 6:
            raise ValidationError(f"{name} must be a whole number between 0 and 6")
    set_setting(db_path, learner_id, ANALYTICS_KEY, json.dumps(asdict(config)))
