"""Temporal context enricher.

A pure function of wall-clock time plus a lightweight session tracker.
No external I/O, so its baseline confidence is the highest of all
enrichers.
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from agent_context.config.models import (
    EnricherConfig,
    EnrichmentPriority,
    EnrichmentStage,
    TemporalEnricherOptions,
)
from agent_context.enrichers.base import BaseContextEnricher
from agent_context.enrichment.types import EnrichmentRequest
from agent_context.utils.exceptions import ConfigurationError

TEMPORAL_CONTEXT_KEY = "temporal_context"

TIME_OF_DAY_CONTEXT = {
    "morning": {
        "energy": "rising",
        "focus": "high",
        "mood": "fresh",
        "common_activities": ["planning", "learning", "starting tasks"],
    },
    "afternoon": {
        "energy": "peak",
        "focus": "high",
        "mood": "productive",
        "common_activities": ["meetings", "collaboration", "deep work"],
    },
    "evening": {
        "energy": "declining",
        "focus": "moderate",
        "mood": "reflective",
        "common_activities": ["reviewing", "socializing", "winding down"],
    },
    "night": {
        "energy": "low",
        "focus": "low",
        "mood": "relaxed",
        "common_activities": ["leisure", "personal time", "rest"],
    },
}

LONG_SESSION = timedelta(minutes=30)
VERY_LONG_SESSION = timedelta(minutes=45)
IDLE_SESSION = timedelta(minutes=5)
IDLE_REENGAGEMENT = timedelta(minutes=10)
NEW_CONVERSATION = timedelta(minutes=2)


def default_temporal_config() -> EnricherConfig:
    # Session tracking is stateful, so results are not memoized
    return EnricherConfig(
        priority=EnrichmentPriority.LOW,
        stage=EnrichmentStage.PRE_PROCESSING,
        timeout_ms=500,
        max_retries=2,
        cache_enabled=False,
        cache_ttl_seconds=30,
    )


@dataclass
class SessionData:
    """Activity of one tracked session."""

    session_id: str
    start_time: datetime
    last_activity: datetime
    interaction_count: int = 0
    is_first_session: bool = True


class TemporalContextEnricher(BaseContextEnricher):
    """Adds time-of-day, calendar, session and recommendation context."""

    def __init__(
        self,
        config: Optional[EnricherConfig] = None,
        options: Optional[TemporalEnricherOptions] = None,
        enricher_id: str = "temporal",
        clock=None,
    ):
        """Initialize the temporal enricher.

        Args:
            config: Enricher policy
            options: Business hours, timezone and session tracking options
            enricher_id: Registry id
            clock: Zero-argument callable returning an aware datetime
        """
        super().__init__(
            enricher_id=enricher_id,
            name="Temporal Context Enricher",
            config=config or default_temporal_config(),
        )
        self.options = options or TemporalEnricherOptions()
        self._clock = clock
        self._tz: Optional[ZoneInfo] = None
        self.sessions: Dict[str, SessionData] = {}
        self.user_session_history: Dict[str, List[datetime]] = {}

    def get_provided_keys(self) -> List[str]:
        return [TEMPORAL_CONTEXT_KEY]

    async def _do_initialize(self) -> None:
        try:
            self._tz = ZoneInfo(self.options.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(
                f"Unknown timezone '{self.options.timezone}'",
                details={"enricher_id": self.enricher_id},
            ) from e
        self.logger.debug(
            f"Temporal enricher using timezone {self.options.timezone}, "
            f"session tracking {'on' if self.options.session_tracking_enabled else 'off'}"
        )

    def now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        return datetime.now(self._tz or ZoneInfo("UTC"))

    async def _do_enrich(self, request: EnrichmentRequest) -> Dict[str, Any]:
        now = self.now()
        context = request.context
        session = self._get_or_create_session(context, now)

        time_of_day = get_time_of_day(now.hour)
        is_weekend = now.isoweekday() >= 6

        if self.options.include_relative_time:
            relative_time = self._relative_time(session, context, now)
        else:
            relative_time = {
                "session_duration_seconds": 0.0,
                "time_since_last_interaction_seconds": 0.0,
                "conversation_age_seconds": 0.0,
            }

        if self.options.include_chronological_markers:
            markers = self._chronological_markers(session, now)
        else:
            markers = {
                "is_first_interaction": False,
                "is_new_session": False,
                "is_returning_user": False,
            }

        if session is not None:
            session.last_activity = now
            session.interaction_count += 1

        temporal = {
            "current_timestamp": now.isoformat(),
            "timezone": self.options.timezone,
            "time_of_day": time_of_day,
            "day_of_week": now.strftime("%A"),
            "is_weekend": is_weekend,
            "seasonal_context": (
                get_seasonal_context(now) if self.options.include_seasonal_context else None
            ),
            "relative_time": relative_time,
            "chronological_markers": markers,
            "session_id": session.session_id if session else None,
        }
        temporal["insights"] = {
            "business_hours": self._business_hours(now),
            "session_analysis": _session_analysis(relative_time),
            "temporal_patterns": {
                "time_of_day_context": TIME_OF_DAY_CONTEXT[time_of_day],
                "weekday_context": _weekday_context(is_weekend),
                "expected_activity_level": _expected_activity_level(time_of_day, is_weekend),
            },
            "recommendations": _recommendations(temporal),
        }
        return {TEMPORAL_CONTEXT_KEY: temporal}

    # Sessions

    def extract_session_id(self, context: Mapping[str, Any], now: datetime) -> Optional[str]:
        """Explicit session or conversation id, else a hash of user id and hour."""
        for key in ("session_id", "conversation_id"):
            value = context.get(key)
            if isinstance(value, str) and value:
                return value
        user_id = context.get("user_id")
        if isinstance(user_id, str) and user_id:
            digest = hashlib.sha1(
                f"{user_id}:{now.strftime('%Y-%m-%dT%H')}".encode("utf-8")
            ).hexdigest()
            return f"{user_id}-{digest[:12]}"
        return None

    def _get_or_create_session(
        self, context: Mapping[str, Any], now: datetime
    ) -> Optional[SessionData]:
        if not self.options.session_tracking_enabled:
            return None
        session_id = self.extract_session_id(context, now)
        if session_id is None:
            return None

        session = self.sessions.get(session_id)
        if session is None:
            user_id = context.get("user_id") or "unknown"
            history = self.user_session_history.setdefault(str(user_id), [])
            session = SessionData(
                session_id=session_id,
                start_time=now,
                last_activity=now,
                is_first_session=not history,
            )
            self.sessions[session_id] = session
            history.append(now)
        return session

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Forget sessions idle longer than the retention period.

        Returns:
            Number of sessions removed
        """
        now = now or self.now()
        retention = timedelta(seconds=self.options.session_retention_seconds)
        stale = [
            sid for sid, s in self.sessions.items() if now - s.last_activity > retention
        ]
        for session_id in stale:
            del self.sessions[session_id]

        for user_id in list(self.user_session_history):
            kept = [t for t in self.user_session_history[user_id] if now - t <= retention]
            if kept:
                self.user_session_history[user_id] = kept
            else:
                del self.user_session_history[user_id]

        if stale:
            self.logger.debug(f"Swept {len(stale)} idle sessions")
        return len(stale)

    def _relative_time(
        self, session: Optional[SessionData], context: Mapping[str, Any], now: datetime
    ) -> Dict[str, float]:
        session_duration = 0.0
        since_last = 0.0
        if session is not None:
            session_duration = (now - session.start_time).total_seconds()
            since_last = (now - session.last_activity).total_seconds()

        started = context.get("conversation_start_time") or context.get("timestamp")
        if isinstance(started, datetime):
            if started.tzinfo is None and now.tzinfo is not None:
                started = started.replace(tzinfo=now.tzinfo)
            conversation_age = max(0.0, (now - started).total_seconds())
        else:
            conversation_age = session_duration

        return {
            "session_duration_seconds": session_duration,
            "time_since_last_interaction_seconds": since_last,
            "conversation_age_seconds": conversation_age,
        }

    def _chronological_markers(
        self, session: Optional[SessionData], now: datetime
    ) -> Dict[str, bool]:
        if session is None:
            return {
                "is_first_interaction": False,
                "is_new_session": False,
                "is_returning_user": False,
            }
        age = (now - session.start_time).total_seconds()
        return {
            "is_first_interaction": session.interaction_count == 0,
            "is_new_session": age < self.options.new_session_threshold_seconds,
            "is_returning_user": not session.is_first_session,
        }

    def _business_hours(self, now: datetime) -> Dict[str, Any]:
        current = now.strftime("%H:%M")
        start = self.options.business_hours_start
        end = self.options.business_hours_end
        is_business_day = now.isoweekday() in self.options.business_days
        is_business_hours = is_business_day and start <= current <= end

        minutes_until_start = None
        if is_business_day and not is_business_hours:
            start_at = _at_clock_time(now, start)
            if start_at <= now:
                start_at += timedelta(days=1)
            minutes_until_start = int((start_at - now).total_seconds() // 60)

        minutes_until_end = None
        if is_business_hours:
            minutes_until_end = int((_at_clock_time(now, end) - now).total_seconds() // 60)

        return {
            "is_business_hours": is_business_hours,
            "is_business_day": is_business_day,
            "current_time": current,
            "business_start": start,
            "business_end": end,
            "minutes_until_business_start": minutes_until_start,
            "minutes_until_business_end": minutes_until_end,
        }

    def calculate_confidence(
        self, context: Mapping[str, Any], enriched: Mapping[str, Any]
    ) -> float:
        temporal = enriched.get(TEMPORAL_CONTEXT_KEY)
        if not temporal:
            return 0.1
        score = 0.8
        if temporal["relative_time"]["session_duration_seconds"] > 0:
            score += 0.1
        if any(temporal["chronological_markers"].values()):
            score += 0.1
        return min(0.95, score)

    async def _do_health_check(self) -> Dict[str, Any]:
        return {
            "healthy": True,
            "timezone": self.options.timezone,
            "active_sessions": len(self.sessions),
            "tracked_users": len(self.user_session_history),
        }

    async def _do_dispose(self) -> None:
        self.sessions.clear()
        self.user_session_history.clear()


def get_time_of_day(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def get_seasonal_context(now: datetime) -> Dict[str, Any]:
    """Northern-hemisphere season, month name and quarter."""
    month = now.month
    if 3 <= month <= 5:
        season = "spring"
    elif 6 <= month <= 8:
        season = "summer"
    elif 9 <= month <= 11:
        season = "fall"
    else:
        season = "winter"
    return {"season": season, "month": now.strftime("%B"), "quarter": (month - 1) // 3 + 1}


def _at_clock_time(now: datetime, clock_time: str) -> datetime:
    hours, minutes = (int(part) for part in clock_time.split(":"))
    return now.replace(hour=hours, minute=minutes, second=0, microsecond=0)


def _session_analysis(relative_time: Dict[str, float]) -> Dict[str, Any]:
    duration = relative_time["session_duration_seconds"]
    idle = relative_time["time_since_last_interaction_seconds"]
    age = relative_time["conversation_age_seconds"]
    return {
        "session_duration_minutes": int(duration // 60),
        "time_since_last_interaction_seconds": int(idle),
        "conversation_age_minutes": int(age // 60),
        "is_long_session": duration > LONG_SESSION.total_seconds(),
        "is_idle_session": idle > IDLE_SESSION.total_seconds(),
        "is_new_conversation": age < NEW_CONVERSATION.total_seconds(),
    }


def _weekday_context(is_weekend: bool) -> Dict[str, str]:
    return {
        "day_type": "weekend" if is_weekend else "weekday",
        "expected_pace": "relaxed" if is_weekend else "active",
        "expected_formality": "casual" if is_weekend else "professional",
        "common_mood": "leisurely" if is_weekend else "focused",
    }


def _expected_activity_level(time_of_day: str, is_weekend: bool) -> str:
    if not is_weekend and time_of_day in ("morning", "afternoon"):
        return "high"
    if time_of_day == "evening" or is_weekend:
        return "medium"
    return "low"


def _recommendations(temporal: Dict[str, Any]) -> List[Dict[str, str]]:
    relative = temporal["relative_time"]
    recommendations = []

    if relative["session_duration_seconds"] > VERY_LONG_SESSION.total_seconds():
        recommendations.append(
            {
                "type": "session_length",
                "message": "Long session detected - consider break or summary",
                "priority": "medium",
            }
        )
    if temporal["time_of_day"] == "night":
        recommendations.append(
            {
                "type": "time_awareness",
                "message": "Late night interaction - use gentler, more supportive tone",
                "priority": "low",
            }
        )
    if temporal["chronological_markers"]["is_first_interaction"]:
        recommendations.append(
            {
                "type": "first_interaction",
                "message": "First interaction - provide welcoming introduction",
                "priority": "high",
            }
        )
    if temporal["is_weekend"]:
        recommendations.append(
            {
                "type": "weekend_context",
                "message": "Weekend interaction - adopt more casual communication style",
                "priority": "low",
            }
        )
    if relative["time_since_last_interaction_seconds"] > IDLE_REENGAGEMENT.total_seconds():
        recommendations.append(
            {
                "type": "idle_session",
                "message": "Session has been idle - provide gentle re-engagement",
                "priority": "medium",
            }
        )
    return recommendations
