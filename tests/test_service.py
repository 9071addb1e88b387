"""Tests for PersonalizationServicer (gRPC service layer)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock

import grpc
import pytest
from google.protobuf import json_format
from google.protobuf.struct_pb2 import Struct

from personalization.engine import PersonalizationEngine
from personalization.errors import VersionConflict
from personalization.service import (
    SERVICE_NAME,
    PersonalizationServicer,
    _parse_timestamp,
    add_servicer_to_server,
)
from personalization.store import InMemoryProfileRepository, ProfileStore


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _request(**fields: Any) -> Struct:
    message = Struct()
    message.update(fields)
    return message


def _decode(message: Struct) -> dict[str, Any]:
    return json_format.MessageToDict(message)


def _make_context() -> MagicMock:
    """Return a mock gRPC context."""
    ctx = MagicMock()
    ctx.set_code = MagicMock()
    ctx.set_details = MagicMock()
    return ctx


def _make_servicer() -> PersonalizationServicer:
    engine = PersonalizationEngine()
    store = ProfileStore(InMemoryProfileRepository(), engine.create_profile)
    return PersonalizationServicer(engine=engine, store=store)


def _candidate(item_id: str, category: str, freshness: float = 0.5) -> dict[str, Any]:
    return {
        "item_id": item_id,
        "category": category,
        "source_id": "reuters",
        "quality_score": 0.5,
        "freshness_score": freshness,
        "relevance_score": 0.5,
    }


# ---------------------------------------------------------------------------
# RecordFeedback
# ---------------------------------------------------------------------------


class TestRecordFeedback:
    def test_returns_updated_profile(self) -> None:
        servicer = _make_servicer()
        ctx = _make_context()
        response = _decode(servicer.RecordFeedback(
            _request(user_id="u1", type="like", topic="ai_tech", source_id="wired"), ctx
        ))
        ctx.set_code.assert_not_called()
        assert response["user_id"] == "u1"
        assert response["feedback_count"] == 1
        assert response["topic_interactions"]["positive"] == {"ai_tech": 1}
        assert response["source_affinity"]["positive"] == {"wired": 1}
        assert sum(response["topic_weights"].values()) == pytest.approx(1.0)

    def test_persists_between_calls(self) -> None:
        servicer = _make_servicer()
        servicer.RecordFeedback(_request(user_id="u1", type="like", topic="ai_tech"), _make_context())
        servicer.RecordFeedback(_request(user_id="u1", type="save", topic="ai_tech"), _make_context())
        profile = _decode(servicer.GetProfile(_request(user_id="u1"), _make_context()))
        assert profile["feedback_count"] == 2

    def test_accepts_legacy_type_and_timestamp(self) -> None:
        servicer = _make_servicer()
        ctx = _make_context()
        response = _decode(servicer.RecordFeedback(
            _request(
                user_id="u1", type="thumbs_down", topic="crypto_market",
                timestamp="2024-06-01T12:00:00Z",
            ),
            ctx,
        ))
        ctx.set_code.assert_not_called()
        assert response["topic_interactions"]["negative"] == {"crypto_market": 1}

    def test_hide_can_block_source(self) -> None:
        servicer = _make_servicer()
        response = _decode(servicer.RecordFeedback(
            _request(user_id="u1", type="hide", topic="ai_tech",
                     source_id="tabloid", block_source=True),
            _make_context(),
        ))
        assert response["source_affinity"]["blocked"] == ["tabloid"]

    @pytest.mark.parametrize("fields", [
        {"user_id": "u1", "type": "love", "topic": "ai_tech"},
        {"type": "like", "topic": "ai_tech"},
        {"user_id": "u1", "type": "like"},
        {"user_id": "u1", "type": "rating", "topic": "ai_tech", "rating": 9},
        {"user_id": "u1", "type": "rating", "topic": "ai_tech", "rating": 4.5},
        {"user_id": "u1", "type": "like", "topic": "ai_tech", "timestamp": "yesterday"},
        {"user_id": "u1", "type": "like", "topic": "ai_tech", "source_id": 7},
        {"user_id": "u1", "type": "hide", "topic": "ai_tech", "source_id": "tabloid",
         "block_source": "false"},
        {"user_id": "u1", "type": "like", "topic": "ai_tech", "completed": "yes"},
        {"user_id": "u1", "type": "like", "topic": "ai_tech", "duration_seconds": "long"},
    ])
    def test_bad_request_sets_invalid_argument(self, fields: dict[str, Any]) -> None:
        servicer = _make_servicer()
        ctx = _make_context()
        response = servicer.RecordFeedback(_request(**fields), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)
        assert _decode(response) == {}

    def test_rejected_feedback_stores_nothing(self) -> None:
        servicer = _make_servicer()
        ctx = _make_context()
        servicer.RecordFeedback(
            _request(user_id="u1", type="like", topic="ai_tech", source_id=7), ctx
        )
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)

        ctx = _make_context()
        servicer.GetProfile(_request(user_id="u1"), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.NOT_FOUND)

    def test_null_source_id_is_absent(self) -> None:
        servicer = _make_servicer()
        ctx = _make_context()
        response = _decode(servicer.RecordFeedback(
            _request(user_id="u1", type="like", topic="ai_tech", source_id=None), ctx
        ))
        ctx.set_code.assert_not_called()
        assert response["source_affinity"]["positive"] == {}

    def test_store_error_sets_internal_status(self) -> None:
        store = MagicMock()
        store.update.side_effect = RuntimeError("db error")
        servicer = PersonalizationServicer(engine=PersonalizationEngine(), store=store)
        ctx = _make_context()
        servicer.RecordFeedback(_request(user_id="u1", type="like", topic="ai_tech"), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INTERNAL)

    def test_version_conflict_sets_aborted(self) -> None:
        store = MagicMock()
        store.update.side_effect = VersionConflict("u1", 3, 4)
        servicer = PersonalizationServicer(engine=PersonalizationEngine(), store=store)
        ctx = _make_context()
        servicer.RecordFeedback(_request(user_id="u1", type="like", topic="ai_tech"), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.ABORTED)


# ---------------------------------------------------------------------------
# RecordEngagement / RecordReading
# ---------------------------------------------------------------------------


class TestRecordEngagement:
    def test_first_briefing_averages(self) -> None:
        servicer = _make_servicer()
        ctx = _make_context()
        response = _decode(servicer.RecordEngagement(
            _request(user_id="u1", cards_shown=5, cards_read=3, reading_time=120), ctx
        ))
        ctx.set_code.assert_not_called()
        history = response["engagement_history"]
        assert history["total_briefings"] == 1
        assert history["average_cards_per_briefing"] == pytest.approx(3)
        assert history["completion_rate"] == pytest.approx(60)
        assert history["average_reading_time"] == pytest.approx(120)

    @pytest.mark.parametrize("fields", [
        {"user_id": "u1", "cards_shown": 0, "cards_read": 0, "reading_time": 10},
        {"user_id": "u1", "cards_shown": 5, "cards_read": 2.5, "reading_time": 10},
        {"user_id": "u1", "cards_shown": 5, "reading_time": 10},
        {"user_id": "u1", "cards_shown": 5, "cards_read": 3, "reading_time": "long"},
    ])
    def test_bad_request_sets_invalid_argument(self, fields: dict[str, Any]) -> None:
        servicer = _make_servicer()
        ctx = _make_context()
        servicer.RecordEngagement(_request(**fields), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)


class TestRecordReading:
    def test_records_pattern(self) -> None:
        servicer = _make_servicer()
        ctx = _make_context()
        response = _decode(servicer.RecordReading(
            _request(user_id="u1", time_of_day="morning", day_of_week="monday",
                     topics=["ai_tech"], reading_time=45, completed=True),
            ctx,
        ))
        ctx.set_code.assert_not_called()
        assert response["profile_completeness"] == pytest.approx(0.2)
        assert response["reading_patterns"] == [{
            "time_of_day": "morning",
            "day_of_week": "monday",
            "topics": ["ai_tech"],
            "reading_time": 45.0,
            "completed": True,
        }]
        assert response["preferred_topics"] == ["ai_tech"]

    @pytest.mark.parametrize("fields", [
        {"topics": "ai_tech"},
        {"topics": ["ai_tech", 3]},
        {"completed": "false"},
    ])
    def test_bad_request_sets_invalid_argument(self, fields: dict[str, Any]) -> None:
        servicer = _make_servicer()
        ctx = _make_context()
        servicer.RecordReading(
            _request(user_id="u1", time_of_day="morning", day_of_week="monday",
                     reading_time=45, **fields),
            ctx,
        )
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)


class TestBlockSource:
    def test_block_then_unblock(self) -> None:
        servicer = _make_servicer()
        ctx = _make_context()
        response = _decode(servicer.BlockSource(
            _request(user_id="u1", source_id="tabloid"), ctx
        ))
        ctx.set_code.assert_not_called()
        assert response["source_affinity"]["blocked"] == ["tabloid"]

        ctx = _make_context()
        response = _decode(servicer.UnblockSource(
            _request(user_id="u1", source_id="tabloid"), ctx
        ))
        ctx.set_code.assert_not_called()
        assert response["source_affinity"]["blocked"] == []

    def test_blocked_source_ranked_last(self) -> None:
        servicer = _make_servicer()
        servicer.BlockSource(_request(user_id="u1", source_id="reuters"), _make_context())
        candidates = [
            _candidate("a", "ai_tech", freshness=0.9),
            {**_candidate("b", "ai_tech", freshness=0.1), "source_id": "wired"},
        ]
        response = _decode(servicer.SelectItems(
            _request(user_id="u1", n=1, candidates=candidates), _make_context()
        ))
        assert response["item_ids"] == ["b"]

    @pytest.mark.parametrize("method", ["BlockSource", "UnblockSource"])
    def test_missing_source_invalid_argument(self, method: str) -> None:
        servicer = _make_servicer()
        ctx = _make_context()
        getattr(servicer, method)(_request(user_id="u1"), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)


# ---------------------------------------------------------------------------
# Reads and erasure
# ---------------------------------------------------------------------------


class TestGetProfile:
    def test_includes_derived_views(self) -> None:
        servicer = _make_servicer()
        servicer.RecordFeedback(_request(user_id="u1", type="like", topic="ai_tech"), _make_context())
        servicer.RecordFeedback(_request(user_id="u1", type="dislike", topic="ai_tech"), _make_context())
        servicer.RecordReading(
            _request(user_id="u1", time_of_day="evening", day_of_week="friday",
                     topics=["crypto_market"], reading_time=30),
            _make_context(),
        )
        ctx = _make_context()
        profile = _decode(servicer.GetProfile(_request(user_id="u1"), ctx))
        ctx.set_code.assert_not_called()
        assert profile["topic_affinity"] == {"ai_tech": pytest.approx(0.5)}
        assert profile["preferred_topics"] == ["crypto_market"]
        assert profile["is_profile_sufficient"] is False

        morning = _decode(servicer.GetProfile(
            _request(user_id="u1", time_of_day="morning"), _make_context()
        ))
        # No morning readings, so every weighted topic is listed.
        assert sorted(morning["preferred_topics"]) == sorted(profile["topic_weights"])

    def test_unknown_user_not_found(self) -> None:
        servicer = _make_servicer()
        ctx = _make_context()
        servicer.GetProfile(_request(user_id="ghost"), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.NOT_FOUND)


class TestEraseProfile:
    def test_erases_profile(self) -> None:
        servicer = _make_servicer()
        servicer.RecordFeedback(_request(user_id="u1", type="like", topic="ai_tech"), _make_context())
        ctx = _make_context()
        servicer.EraseProfile(_request(user_id="u1"), ctx)
        ctx.set_code.assert_not_called()

        ctx = _make_context()
        servicer.GetProfile(_request(user_id="u1"), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.NOT_FOUND)

    def test_unknown_user_not_found(self) -> None:
        servicer = _make_servicer()
        ctx = _make_context()
        servicer.EraseProfile(_request(user_id="ghost"), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.NOT_FOUND)


class TestSelectItems:
    def test_returns_ranked_ids(self) -> None:
        servicer = _make_servicer()
        ctx = _make_context()
        candidates = [
            _candidate("a", "ai_tech", freshness=0.2),
            _candidate("b", "ai_tech", freshness=0.9),
            _candidate("c", "crypto_market", freshness=0.5),
        ]
        response = _decode(servicer.SelectItems(
            _request(user_id="new_user", n=2, candidates=candidates), ctx
        ))
        ctx.set_code.assert_not_called()
        # A new profile weights both categories equally, so freshness decides.
        assert response["item_ids"] == ["b", "c"]

    def test_does_not_create_profile(self) -> None:
        servicer = _make_servicer()
        servicer.SelectItems(_request(user_id="u1", n=2, candidates=[]), _make_context())
        ctx = _make_context()
        servicer.GetProfile(_request(user_id="u1"), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.NOT_FOUND)

    def test_empty_candidates(self) -> None:
        servicer = _make_servicer()
        response = servicer.SelectItems(
            _request(user_id="u1", n=3, candidates=[]), _make_context()
        )
        assert list(response.fields["item_ids"].list_value.values) == []

    def test_malformed_candidate_invalid_argument(self) -> None:
        servicer = _make_servicer()
        ctx = _make_context()
        servicer.SelectItems(
            _request(user_id="u1", n=2, candidates=[{"item_id": "a"}]), ctx
        )
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)


# ---------------------------------------------------------------------------
# Registration and helpers
# ---------------------------------------------------------------------------


def test_add_servicer_registers_generic_handler() -> None:
    server = MagicMock()
    add_servicer_to_server(_make_servicer(), server)
    server.add_generic_rpc_handlers.assert_called_once()
    (handlers,), _ = server.add_generic_rpc_handlers.call_args
    assert handlers[0].service_name() == SERVICE_NAME


class TestParseTimestamp:
    def test_rfc3339(self) -> None:
        parsed = _parse_timestamp("2024-06-01T12:30:00Z")
        assert parsed == datetime(2024, 6, 1, 12, 30, tzinfo=timezone.utc)

    def test_missing_means_now(self) -> None:
        before = datetime.now(timezone.utc)
        parsed = _parse_timestamp(None)
        assert parsed.tzinfo is not None
        assert parsed >= before
