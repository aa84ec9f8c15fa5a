# src/agentloop/autonomous/context.py
"""
Situational context tracking.

The ``ContextTracker`` holds the agent's current view of its situation
(user preferences, environment, location, connection quality ...) as a
plain dict, and

- records every change as a ``ContextChange`` inside a bounded snapshot
  history (oldest snapshot evicted first);
- learns change patterns keyed by ``(field, reason)``;
- predicts likely upcoming changes from those patterns and from
  time-of-day heuristics;
- applies high-confidence predictions during a periodic sweep;
- serves static cultural adaptation data and per-user voice settings.

Example:
    tracker = ContextTracker({"user_preferences": {"language": "en"}})
    tracker.update_context({"environment": "mobile"}, reason="location_change")
    for prediction in tracker.predict_context_changes():
        print(prediction.field, prediction.predicted_value, prediction.confidence)
"""

from __future__ import annotations

import copy
import json
import logging
import uuid
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from .goals import utcnow

logger = logging.getLogger(__name__)

AUTOMATIC_PREDICTION = "automatic_prediction"
MIN_PREDICTION_TIMEFRAME = timedelta(minutes=5)

# (first hour, last hour, environment, confidence, timeframe)
TIME_OF_DAY_RULES: List[Tuple[int, int, str, float, timedelta]] = [
    (8, 17, "work", 0.7, timedelta(hours=1)),
    (18, 22, "home", 0.8, timedelta(minutes=30)),
]

CULTURAL_TABLE: Dict[str, Dict[str, Any]] = {
    "en": {
        "region": "Global",
        "customs": [],
        "communication_style": "direct",
        "preferences": {},
    },
    "tagalog": {
        "region": "Philippines",
        "customs": ["respect for elders", "hospitality", "family-centered"],
        "communication_style": "indirect, respectful",
        "preferences": {
            "formal_address": True,
            "family_importance": "high",
            "time_orientation": "flexible",
        },
    },
    "filipino": {
        "region": "Philippines",
        "customs": ["bayanihan spirit", "respect for authority", "harmony"],
        "communication_style": "context-dependent, polite",
        "preferences": {
            "conflict_avoidance": True,
            "group_harmony": "high",
            "respect_for_age": "high",
        },
    },
}

DEFAULT_VOICE_CONTEXT: Dict[str, Any] = {
    "emotion": "neutral",
    "tone": "conversational",
    "speed": 1.0,
    "pitch": 1.0,
    "language": "en",
}


def _value_key(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class ContextChange:
    field: str
    old_value: Any
    new_value: Any
    reason: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ContextSnapshot:
    id: str
    timestamp: datetime
    context: Dict[str, Any]
    trigger: str
    changes: List[ContextChange] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
            "trigger": self.trigger,
            "changes": [c.to_dict() for c in self.changes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ContextSnapshot:
        return cls(
            id=data["id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            context=data.get("context", {}),
            trigger=data.get("trigger", ""),
            changes=[
                ContextChange(
                    field=c["field"],
                    old_value=c.get("old_value"),
                    new_value=c.get("new_value"),
                    reason=c.get("reason", ""),
                    timestamp=datetime.fromisoformat(c["timestamp"]),
                )
                for c in data.get("changes", [])
            ],
        )


@dataclass
class ContextPattern:
    """How often a field changed for a given reason, and to what."""

    field: str
    reason: str
    frequency: int = 0
    values: List[Any] = field(default_factory=list)
    occurrences: List[datetime] = field(default_factory=list)

    @property
    def confidence(self) -> float:
        return min(self.frequency / 10, 1.0)

    def most_common_value(self) -> Any:
        counts = Counter(_value_key(v) for v in self.values)
        key, _ = counts.most_common(1)[0]
        for value in reversed(self.values):
            if _value_key(value) == key:
                return value
        return None

    def average_interval(self) -> Optional[timedelta]:
        if len(self.occurrences) < 2:
            return None
        gaps = [b - a for a, b in zip(self.occurrences, self.occurrences[1:])]
        return sum(gaps, timedelta()) / len(gaps)


@dataclass
class ContextPrediction:
    field: str
    predicted_value: Any
    confidence: float
    reasoning: str
    timeframe: timedelta
    expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "predicted_value": self.predicted_value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "timeframe_seconds": self.timeframe.total_seconds(),
            "expires_at": self.expires_at.isoformat(),
        }


# =============================================================================
# ContextTracker
# =============================================================================


class ContextTracker:
    """
    Current situational context plus its history, patterns and predictions.

    Args:
        initial: Starting context.
        history_capacity: Maximum retained snapshots.
        pattern_min_frequency: Patterns must be seen more often than this
            to predict.
        pattern_min_confidence: Patterns need a confidence above this to
            predict.
        auto_apply_confidence: Sweep applies predictions above this.
        time_heuristics: Emit time-of-day environment predictions.
        clock: Source of the current time.
    """

    def __init__(
        self,
        initial: Optional[Dict[str, Any]] = None,
        history_capacity: int = 100,
        pattern_min_frequency: int = 3,
        pattern_min_confidence: float = 0.7,
        auto_apply_confidence: float = 0.9,
        time_heuristics: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._clock = clock
        self._context: Dict[str, Any] = copy.deepcopy(initial or {})
        self._context.setdefault("user_preferences", {})
        self._history: Deque[ContextSnapshot] = deque(maxlen=history_capacity)
        self._patterns: Dict[Tuple[str, str], ContextPattern] = {}
        self._cultural_cache: Dict[str, Dict[str, Any]] = {}
        self._voice_contexts: Dict[str, Dict[str, Any]] = {}
        self.pattern_min_frequency = pattern_min_frequency
        self.pattern_min_confidence = pattern_min_confidence
        self.auto_apply_confidence = auto_apply_confidence
        self.time_heuristics = time_heuristics
        self._capture_snapshot("initialization", [])

    @property
    def history_capacity(self) -> int:
        return self._history.maxlen or 0

    def get_current_context(self) -> Dict[str, Any]:
        """A deep copy of the current context."""
        return copy.deepcopy(self._context)

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def update_context(self, updates: Dict[str, Any], reason: str = "manual_update") -> List[ContextChange]:
        """
        Merge ``updates`` into the context.

        Only fields whose value actually changes are recorded; when at
        least one changed, a snapshot is captured and the pattern table is
        updated.

        Returns:
            The recorded changes.
        """
        now = self._clock()
        changes = []
        for key, new_value in updates.items():
            old_value = self._context.get(key)
            if old_value != new_value:
                changes.append(
                    ContextChange(
                        field=key,
                        old_value=copy.deepcopy(old_value),
                        new_value=copy.deepcopy(new_value),
                        reason=reason,
                        timestamp=now,
                    )
                )
                self._context[key] = copy.deepcopy(new_value)

        if changes:
            self._capture_snapshot(reason, changes)
            self._learn_patterns(changes)
            logger.debug("Context updated (%s): %s", reason, [c.field for c in changes])
        return changes

    def refresh(self) -> List[ContextChange]:
        """Update temporal fields; called once per orchestration cycle."""
        now = self._clock()
        hour = now.hour
        if 5 <= hour < 12:
            time_of_day = "morning"
        elif 12 <= hour < 17:
            time_of_day = "afternoon"
        elif 17 <= hour < 22:
            time_of_day = "evening"
        else:
            time_of_day = "night"
        return self.update_context({"time_of_day": time_of_day}, reason="temporal_refresh")

    def enrich_context(self, additional: Optional[Dict[str, Any]] = None) -> List[ContextChange]:
        """Attach cultural data for the preferred language plus any extra fields."""
        enrichments: Dict[str, Any] = dict(additional or {})
        language = self._context.get("user_preferences", {}).get("language")
        if language:
            cultural = self.get_cultural_context(language)
            if cultural is not None:
                metadata = dict(self._context.get("metadata", {}))
                metadata["cultural_context"] = cultural
                enrichments["metadata"] = metadata
        return self.update_context(enrichments, reason="context_enrichment") if enrichments else []

    def adapt_to_user_behavior(self, behavior: Dict[str, Any]) -> List[ContextChange]:
        """
        Adjust user preferences from observed behavior.

        Recognized keys: ``response_time`` (seconds; slow responders get
        enhanced responses), ``interaction_style`` (formal/detailed vs
        casual) and ``language_usage`` (``code_switching``,
        ``cultural_references``).
        """
        preferences = dict(self._context.get("user_preferences", {}))
        if behavior.get("response_time", 0) > 30:
            preferences["enhanced_responses"] = True

        style = str(behavior.get("interaction_style", "")).lower()
        if "formal" in style or "detailed" in style:
            preferences["enhanced_responses"] = True
        if "casual" in style:
            preferences["enhanced_responses"] = False

        usage = behavior.get("language_usage") or {}
        if usage.get("code_switching"):
            preferences["enable_voice_analysis"] = True
        if usage.get("cultural_references"):
            preferences["enhanced_responses"] = True

        return self.update_context({"user_preferences": preferences}, reason="behavior_adaptation")

    def _capture_snapshot(self, trigger: str, changes: List[ContextChange]) -> None:
        self._history.append(
            ContextSnapshot(
                id=f"ctx_{uuid.uuid4().hex[:12]}",
                timestamp=self._clock(),
                context=copy.deepcopy(self._context),
                trigger=trigger,
                changes=changes,
            )
        )

    def _learn_patterns(self, changes: List[ContextChange]) -> None:
        for change in changes:
            key = (change.field, change.reason)
            pattern = self._patterns.get(key)
            if pattern is None:
                pattern = self._patterns[key] = ContextPattern(field=change.field, reason=change.reason)
            pattern.frequency += 1
            pattern.values.append(change.new_value)
            pattern.occurrences.append(change.timestamp)
            del pattern.values[:-50]
            del pattern.occurrences[:-50]

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def predict_context_changes(self) -> List[ContextPrediction]:
        """Pattern-based and time-of-day predictions, most confident first."""
        now = self._clock()
        predictions = []
        for pattern in self._patterns.values():
            if pattern.reason == AUTOMATIC_PREDICTION:
                continue
            if pattern.frequency > self.pattern_min_frequency and pattern.confidence > self.pattern_min_confidence:
                interval = pattern.average_interval()
                timeframe = max(interval * 0.8, MIN_PREDICTION_TIMEFRAME) if interval else MIN_PREDICTION_TIMEFRAME
                predictions.append(
                    ContextPrediction(
                        field=pattern.field,
                        predicted_value=pattern.most_common_value(),
                        confidence=pattern.confidence,
                        reasoning=f"Pattern observed {pattern.frequency} times for reason '{pattern.reason}'",
                        timeframe=timeframe,
                        expires_at=now + timeframe,
                    )
                )

        if self.time_heuristics:
            for first, last, environment, confidence, timeframe in TIME_OF_DAY_RULES:
                if first <= now.hour <= last and self._context.get("environment") != environment:
                    predictions.append(
                        ContextPrediction(
                            field="environment",
                            predicted_value=environment,
                            confidence=confidence,
                            reasoning=f"Time of day ({now.hour}:00) suggests {environment} environment",
                            timeframe=timeframe,
                            expires_at=now + timeframe,
                        )
                    )

        predictions.sort(key=lambda p: p.confidence, reverse=True)
        return predictions

    def sweep(self) -> List[ContextChange]:
        """Apply predictions above ``auto_apply_confidence``."""
        applied: List[ContextChange] = []
        for prediction in self.predict_context_changes():
            if prediction.confidence > self.auto_apply_confidence:
                applied.extend(
                    self.update_context({prediction.field: prediction.predicted_value}, reason=AUTOMATIC_PREDICTION)
                )
        if applied:
            logger.info("Context sweep applied %d predicted change(s)", len(applied))
        return applied

    # ------------------------------------------------------------------
    # Cultural and voice context
    # ------------------------------------------------------------------

    def get_cultural_context(self, language: str) -> Optional[Dict[str, Any]]:
        """Cultural adaptation data for a language, built once and cached."""
        key = language.lower()
        cached = self._cultural_cache.get(key)
        if cached is None:
            mapping = CULTURAL_TABLE.get(key)
            if mapping is None:
                return None
            cached = self._cultural_cache[key] = {"language": language, **copy.deepcopy(mapping)}
        return copy.deepcopy(cached)

    def update_voice_context(self, user_id: str, voice: Dict[str, Any]) -> Dict[str, Any]:
        current = self._voice_contexts.get(user_id, dict(DEFAULT_VOICE_CONTEXT))
        updated = {**current, **voice}
        self._voice_contexts[user_id] = updated
        if user_id == self._context.get("user_id"):
            metadata = dict(self._context.get("metadata", {}))
            metadata["voice_context"] = dict(updated)
            self.update_context({"metadata": metadata}, reason="voice_context_update")
        return dict(updated)

    def get_voice_context(self, user_id: str) -> Optional[Dict[str, Any]]:
        voice = self._voice_contexts.get(user_id)
        return dict(voice) if voice is not None else None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_context_history(self, limit: Optional[int] = None) -> List[ContextSnapshot]:
        history = list(self._history)
        return history[-limit:] if limit else history

    def snapshot_tail(self, count: int = 10) -> List[Dict[str, Any]]:
        return [s.to_dict() for s in list(self._history)[-count:]]

    def restore(self, context: Dict[str, Any], snapshots: List[Dict[str, Any]]) -> None:
        """Reinstate persisted context and recent snapshots."""
        self._context = copy.deepcopy(context)
        self._context.setdefault("user_preferences", {})
        self._history.clear()
        for data in snapshots:
            self._history.append(ContextSnapshot.from_dict(data))

    def get_context_patterns(self) -> List[ContextPattern]:
        return list(self._patterns.values())

    def get_context_stats(self) -> Dict[str, Any]:
        return {
            "history_size": len(self._history),
            "history_capacity": self.history_capacity,
            "pattern_count": len(self._patterns),
            "cultural_adaptations": len(self._cultural_cache),
            "voice_contexts": len(self._voice_contexts),
            "current_context": self.get_current_context(),
        }
