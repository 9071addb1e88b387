"""Entry point: wires all components and starts the gRPC server."""

from __future__ import annotations

import logging
import signal
import sys
from concurrent import futures

import grpc

import config
from personalization.diversity import ShareCapConstraint
from personalization.engine import PersonalizationEngine
from personalization.scoring import ScoringWeights
from personalization.service import PersonalizationServicer, add_servicer_to_server
from personalization.store import InMemoryProfileRepository, ProfileStore

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_engine() -> PersonalizationEngine:
    """Construct the engine from the values in :mod:`config`."""
    return PersonalizationEngine(
        learning_rate=config.PERSONALIZATION_LEARNING_RATE,
        default_weights=config.DEFAULT_INTEREST_WEIGHTS,
        scoring_weights=ScoringWeights(
            topic=config.SCORE_WEIGHT_TOPIC,
            quality=config.SCORE_WEIGHT_QUALITY,
            freshness=config.SCORE_WEIGHT_FRESHNESS,
            relevance=config.SCORE_WEIGHT_RELEVANCE,
            source=config.SCORE_WEIGHT_SOURCE,
        ),
        diversity=ShareCapConstraint(extra=config.DIVERSITY_EXTRA_PER_CATEGORY),
        max_reading_patterns=config.MAX_READING_PATTERNS,
    )


def build_server(engine: PersonalizationEngine, store: ProfileStore) -> grpc.Server:
    """Construct and configure the gRPC server with all dependencies wired.

    Args:
        engine: The configured :class:`~personalization.engine.PersonalizationEngine`.
        store: The :class:`~personalization.store.ProfileStore` holding profiles.

    Returns:
        A configured but not-yet-started :class:`grpc.Server`.
    """
    servicer = PersonalizationServicer(engine=engine, store=store)
    server = grpc.server(
        futures.ThreadPoolExecutor(max_workers=config.GRPC_MAX_WORKERS)
    )
    add_servicer_to_server(servicer, server)
    server.add_insecure_port(f"{config.GRPC_SERVER_HOST}:{config.GRPC_SERVER_PORT}")
    return server


def main() -> None:
    """Initialise all components and start the gRPC server.

    Startup sequence:
    1. Build the engine from configuration.
    2. Create the profile store over the in-memory repository.
    3. Register ``SIGTERM``/``SIGINT`` shutdown handlers.
    4. Build and start the gRPC server and block until it stops.
    """
    engine = build_engine()
    store = ProfileStore(
        repository=InMemoryProfileRepository(),
        factory=engine.create_profile,
        max_retries=config.PROFILE_UPDATE_MAX_RETRIES,
    )
    server = build_server(engine, store)

    def handle_shutdown(signum: int, frame: object) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("Received %s; shutting down.", sig_name)
        server.stop(grace=5)
        sys.exit(0)

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    server.start()
    logger.info(
        "Personalization service listening on %s:%d (learning_rate=%.3f)",
        config.GRPC_SERVER_HOST,
        config.GRPC_SERVER_PORT,
        engine.learning_rate,
    )
    server.wait_for_termination()


if __name__ == "__main__":
    main()
