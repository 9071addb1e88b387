"""gRPC servicer: the entry point for all inbound calls from the briefing backend.

Messages are ``google.protobuf.Struct`` documents, so the service needs no
generated stubs. Every method takes a Struct and returns a Struct.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import grpc
from google.protobuf import json_format
from google.protobuf.struct_pb2 import Struct
from google.protobuf.timestamp_pb2 import Timestamp

from personalization.engine import PersonalizationEngine
from personalization.errors import InvalidParameter, ProfileNotFound, VersionConflict
from personalization.models import (
    BriefingStats,
    CandidateItem,
    FeedbackEvent,
    FeedbackType,
    InterestProfile,
    ReadingPattern,
)
from personalization.profile import profile_completeness, satisfaction_score
from personalization.store import ProfileStore

logger = logging.getLogger(__name__)

SERVICE_NAME = "personalization.PersonalizationService"

_SELECTION_WARN_THRESHOLD_MS = 200


class PersonalizationServicer:
    """Implements ``PersonalizationService`` on top of the engine and store.

    Writes go through :meth:`ProfileStore.update` so concurrent events for
    the same user are serialised by version checks. Selection reads a
    snapshot and never writes.

    Args:
        engine: The :class:`~personalization.engine.PersonalizationEngine`.
        store: The :class:`~personalization.store.ProfileStore`.
    """

    def __init__(self, engine: PersonalizationEngine, store: ProfileStore) -> None:
        self._engine = engine
        self._store = store

    # ------------------------------------------------------------------
    # Profile updates
    # ------------------------------------------------------------------

    def RecordFeedback(self, request: Struct, context: Any) -> Struct:
        """Learn from one card reaction and return the updated profile."""

        def handle(payload: dict[str, Any]) -> Struct:
            user_id = _require_str(payload, "user_id")
            event = _parse_feedback(payload)
            updated = self._store.update(
                user_id, lambda profile: self._engine.apply_feedback(profile, event)
            )
            return _to_struct(self._profile_payload(updated))

        return self._invoke("RecordFeedback", request, context, handle)

    def RecordEngagement(self, request: Struct, context: Any) -> Struct:
        """Fold one finished briefing into the user's engagement averages."""

        def handle(payload: dict[str, Any]) -> Struct:
            user_id = _require_str(payload, "user_id")
            rating = payload.get("rating")
            stats = BriefingStats(
                cards_shown=_require_int(payload, "cards_shown"),
                cards_read=_require_int(payload, "cards_read"),
                reading_time=_require_float(payload, "reading_time"),
                rating=None if rating is None else _as_int(rating, "rating"),
            )
            updated = self._store.update(
                user_id, lambda profile: self._engine.record_engagement(profile, stats)
            )
            return _to_struct(self._profile_payload(updated))

        return self._invoke("RecordEngagement", request, context, handle)

    def RecordReading(self, request: Struct, context: Any) -> Struct:
        """Store one implicit reading observation."""

        def handle(payload: dict[str, Any]) -> Struct:
            user_id = _require_str(payload, "user_id")
            pattern = ReadingPattern(
                time_of_day=_require_str(payload, "time_of_day"),
                day_of_week=_require_str(payload, "day_of_week"),
                topics=_optional_str_list(payload, "topics"),
                reading_time=_require_float(payload, "reading_time"),
                completed=_optional_bool(payload, "completed", default=False),
            )
            updated = self._store.update(
                user_id, lambda profile: self._engine.record_reading(profile, pattern)
            )
            return _to_struct(self._profile_payload(updated))

        return self._invoke("RecordReading", request, context, handle)

    def BlockSource(self, request: Struct, context: Any) -> Struct:
        """Stop ranking items from one source for this user."""

        def handle(payload: dict[str, Any]) -> Struct:
            user_id = _require_str(payload, "user_id")
            source_id = _require_str(payload, "source_id")
            updated = self._store.update(
                user_id, lambda profile: self._engine.block_source(profile, source_id)
            )
            return _to_struct(self._profile_payload(updated))

        return self._invoke("BlockSource", request, context, handle)

    def UnblockSource(self, request: Struct, context: Any) -> Struct:
        """Lift a block placed by BlockSource or a hide/report event."""

        def handle(payload: dict[str, Any]) -> Struct:
            user_id = _require_str(payload, "user_id")
            source_id = _require_str(payload, "source_id")
            updated = self._store.update(
                user_id, lambda profile: self._engine.unblock_source(profile, source_id)
            )
            return _to_struct(self._profile_payload(updated))

        return self._invoke("UnblockSource", request, context, handle)

    def EraseProfile(self, request: Struct, context: Any) -> Struct:
        """Delete the user's profile (account erasure)."""

        def handle(payload: dict[str, Any]) -> Struct:
            self._store.erase(_require_str(payload, "user_id"))
            return Struct()

        return self._invoke("EraseProfile", request, context, handle)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def GetProfile(self, request: Struct, context: Any) -> Struct:
        """Return the stored profile with its derived metrics."""

        def handle(payload: dict[str, Any]) -> Struct:
            profile = self._store.get(_require_str(payload, "user_id"))
            time_of_day = _optional_str(payload, "time_of_day")
            return _to_struct(self._profile_payload(profile, time_of_day))

        return self._invoke("GetProfile", request, context, handle)

    def SelectItems(self, request: Struct, context: Any) -> Struct:
        """Rank the supplied candidates and return the chosen item IDs."""

        def handle(payload: dict[str, Any]) -> Struct:
            user_id = _require_str(payload, "user_id")
            n = _require_int(payload, "n")
            candidates = [_parse_candidate(c) for c in payload.get("candidates", [])]
            profile = self._store.get_or_create(user_id)

            start_ms = time.monotonic() * 1000
            picks = self._engine.select_top_n(profile, candidates, n)
            elapsed_ms = time.monotonic() * 1000 - start_ms
            if elapsed_ms > _SELECTION_WARN_THRESHOLD_MS:
                logger.warning(
                    "SelectItems for user=%r over %d candidates took %.1fms",
                    user_id,
                    len(candidates),
                    elapsed_ms,
                )
            return _to_struct({"item_ids": [item.item_id for item in picks]})

        return self._invoke("SelectItems", request, context, handle)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _profile_payload(
        self, profile: InterestProfile, time_of_day: str | None = None
    ) -> dict[str, Any]:
        history = profile.engagement_history
        interactions = profile.topic_interactions
        sources = profile.source_affinity
        return {
            "user_id": profile.user_id,
            "topic_weights": dict(profile.topic_weights),
            "engagement_history": {
                "total_briefings": history.total_briefings,
                "average_cards_per_briefing": history.average_cards_per_briefing,
                "average_reading_time": history.average_reading_time,
                "completion_rate": history.completion_rate,
                "feedback_score": history.feedback_score,
            },
            "topic_interactions": {
                "positive": dict(interactions.positive),
                "negative": dict(interactions.negative),
                "neutral": dict(interactions.neutral),
                "total": dict(interactions.total),
            },
            "topic_affinity": {
                topic: self._engine.topic_affinity(profile, topic)
                for topic in interactions.total
            },
            "source_affinity": {
                "positive": dict(sources.positive),
                "negative": dict(sources.negative),
                "blocked": sorted(sources.blocked),
            },
            "reading_patterns": [
                {
                    "time_of_day": p.time_of_day,
                    "day_of_week": p.day_of_week,
                    "topics": list(p.topics),
                    "reading_time": p.reading_time,
                    "completed": p.completed,
                }
                for p in profile.reading_patterns
            ],
            "preferred_topics": self._engine.preferred_topics(profile, time_of_day),
            "feedback_count": profile.feedback_count,
            "training_iterations": profile.training_iterations,
            "profile_completeness": profile_completeness(profile),
            "satisfaction_score": satisfaction_score(profile),
            "is_profile_sufficient": self._engine.is_profile_sufficient(profile),
        }

    @staticmethod
    def _invoke(
        method: str,
        request: Struct,
        context: Any,
        handle: Callable[[dict[str, Any]], Struct],
    ) -> Struct:
        """Run *handle* on the decoded request, mapping errors to status codes."""
        payload = json_format.MessageToDict(request)
        try:
            return handle(payload)
        except ValueError as exc:
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details(str(exc))
        except ProfileNotFound as exc:
            context.set_code(grpc.StatusCode.NOT_FOUND)
            context.set_details(str(exc))
        except VersionConflict as exc:
            logger.warning("%s for user=%r aborted: %s", method, payload.get("user_id"), exc)
            context.set_code(grpc.StatusCode.ABORTED)
            context.set_details(str(exc))
        except Exception:
            logger.exception("Unexpected error in %s for user=%r", method, payload.get("user_id"))
            context.set_code(grpc.StatusCode.INTERNAL)
            context.set_details(f"Internal error in {method}.")
        return Struct()


def add_servicer_to_server(servicer: PersonalizationServicer, server: grpc.Server) -> None:
    """Register every servicer method on *server* as a unary-unary RPC."""
    methods = (
        "RecordFeedback",
        "RecordEngagement",
        "RecordReading",
        "BlockSource",
        "UnblockSource",
        "EraseProfile",
        "GetProfile",
        "SelectItems",
    )
    handlers = {
        name: grpc.unary_unary_rpc_method_handler(
            getattr(servicer, name),
            request_deserializer=Struct.FromString,
            response_serializer=Struct.SerializeToString,
        )
        for name in methods
    }
    server.add_generic_rpc_handlers(
        (grpc.method_handlers_generic_handler(SERVICE_NAME, handlers),)
    )


# ---------------------------------------------------------------------------
# Request decoding
# ---------------------------------------------------------------------------


def _parse_feedback(payload: dict[str, Any]) -> FeedbackEvent:
    rating = payload.get("rating")
    duration = None
    if payload.get("duration_seconds") is not None:
        duration = _require_float(payload, "duration_seconds")
    return FeedbackEvent(
        type=FeedbackType.parse(_require_str(payload, "type")),
        topic=_require_str(payload, "topic"),
        timestamp=_parse_timestamp(_optional_str(payload, "timestamp")),
        source_id=_optional_str(payload, "source_id"),
        rating=None if rating is None else _as_int(rating, "rating"),
        block_source=_optional_bool(payload, "block_source", default=False),
        duration_seconds=duration,
        completed=_optional_bool(payload, "completed"),
    )


def _parse_candidate(raw: Any) -> CandidateItem:
    if not isinstance(raw, dict):
        raise InvalidParameter(f"Candidate must be an object, got {raw!r}")
    return CandidateItem(
        item_id=_require_str(raw, "item_id"),
        category=_require_str(raw, "category"),
        source_id=_require_str(raw, "source_id"),
        quality_score=_require_float(raw, "quality_score"),
        freshness_score=_require_float(raw, "freshness_score"),
        relevance_score=_require_float(raw, "relevance_score"),
    )


def _parse_timestamp(value: str | None) -> datetime:
    """Parse an RFC 3339 string; a missing timestamp means "now"."""
    if not value:
        return datetime.now(timezone.utc)
    ts = Timestamp()
    try:
        ts.FromJsonString(value)
    except ValueError as exc:
        raise InvalidParameter(f"Invalid timestamp {value!r}") from exc
    return ts.ToDatetime(tzinfo=timezone.utc)


def _require(payload: dict[str, Any], key: str) -> Any:
    if key not in payload:
        raise InvalidParameter(f"{key} is required")
    return payload[key]


def _require_str(payload: dict[str, Any], key: str) -> str:
    value = _require(payload, key)
    if not isinstance(value, str) or not value:
        raise InvalidParameter(f"{key} must be a non-empty string")
    return value


def _require_float(payload: dict[str, Any], key: str) -> float:
    value = _require(payload, key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidParameter(f"{key} must be a number, got {value!r}")
    return float(value)


def _require_int(payload: dict[str, Any], key: str) -> int:
    return _as_int(_require(payload, key), key)


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    # A JSON null decodes to None, same as an absent key.
    if payload.get(key) is None:
        return None
    return _require_str(payload, key)


def _optional_bool(
    payload: dict[str, Any], key: str, default: bool | None = None
) -> bool | None:
    value = payload.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise InvalidParameter(f"{key} must be true or false, got {value!r}")
    return value


def _optional_str_list(payload: dict[str, Any], key: str) -> list[str]:
    value = payload.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
        raise InvalidParameter(f"{key} must be a list of non-empty strings, got {value!r}")
    return list(value)


def _as_int(value: Any, key: str) -> int:
    # Struct carries every number as a double.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidParameter(f"{key} must be a whole number, got {value!r}")
    if not float(value).is_integer():
        raise InvalidParameter(f"{key} must be a whole number, got {value!r}")
    return int(value)


# ---------------------------------------------------------------------------
# Response encoding
# ---------------------------------------------------------------------------


def _to_struct(payload: dict[str, Any]) -> Struct:
    message = Struct()
    message.update(payload)
    return message
