"""Application configuration driven by environment variables.

All settings have sensible defaults for local development.
Export any of the variables below to override its default.
"""

import json
import os

# ---------------------------------------------------------------------------
# Python gRPC server (the briefing backend connects to us on this address)
# ---------------------------------------------------------------------------

GRPC_SERVER_HOST: str = os.getenv("GRPC_SERVER_HOST", "0.0.0.0")
GRPC_SERVER_PORT: int = int(os.getenv("GRPC_SERVER_PORT", "50051"))

# Thread pool size for the gRPC server.  Each concurrent RPC occupies one
# thread, so this caps concurrent request handling.
GRPC_MAX_WORKERS: int = int(os.getenv("GRPC_MAX_WORKERS", "10"))

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# ---------------------------------------------------------------------------
# Interest learning
# ---------------------------------------------------------------------------

PERSONALIZATION_LEARNING_RATE: float = float(
    os.getenv("PERSONALIZATION_LEARNING_RATE", "0.1")
)

# Starting weights for a new profile; normalised on creation.
DEFAULT_INTEREST_WEIGHTS: dict[str, float] = json.loads(
    os.getenv(
        "DEFAULT_INTEREST_WEIGHTS",
        '{"crypto_market": 0.3, "ai_tech": 0.3, "political_narrative": 0.2,'
        ' "daily_focus": 0.1, "wildcard": 0.1}',
    )
)

# Reading observations kept per profile (oldest dropped first).
MAX_READING_PATTERNS: int = int(os.getenv("MAX_READING_PATTERNS", "100"))

# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------

SCORE_WEIGHT_TOPIC: float = float(os.getenv("SCORE_WEIGHT_TOPIC", "0.40"))
SCORE_WEIGHT_QUALITY: float = float(os.getenv("SCORE_WEIGHT_QUALITY", "0.25"))
SCORE_WEIGHT_FRESHNESS: float = float(os.getenv("SCORE_WEIGHT_FRESHNESS", "0.15"))
SCORE_WEIGHT_RELEVANCE: float = float(os.getenv("SCORE_WEIGHT_RELEVANCE", "0.15"))
SCORE_WEIGHT_SOURCE: float = float(os.getenv("SCORE_WEIGHT_SOURCE", "0.05"))

# Per-category cap is ceil(n / categories_present) + this.
DIVERSITY_EXTRA_PER_CATEGORY: int = int(os.getenv("DIVERSITY_EXTRA_PER_CATEGORY", "1"))

# ---------------------------------------------------------------------------
# Profile persistence
# ---------------------------------------------------------------------------

# Read-modify-write attempts before a version conflict is surfaced.
PROFILE_UPDATE_MAX_RETRIES: int = int(os.getenv("PROFILE_UPDATE_MAX_RETRIES", "3"))
