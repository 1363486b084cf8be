"""
Main entry point for the Collegium platform.
"""

import argparse
import logging
import threading
import time
from typing import Optional

import pydantic
from fastapi import FastAPI

from .api.rest_api import CollegiumRestAPI
from .config import Settings, get_settings
from .core.exceptions import ConfigurationError
from .observability import setup_logging
from .persistence import EntityStore, StoreFactory
from .services import (
    AuditService, ConcurrencyManager, EnrollmentService, GradingService, MetricsService,
    SchedulerService, StatusTransitionEngine,
)

logger = logging.getLogger(__name__)


def load_settings() -> Settings:
    """Load settings, turning invalid values into ConfigurationError."""
    try:
        return get_settings()
    except pydantic.ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


class CollegiumPlatform:
    """Main platform class that wires the store, lock manager and services."""

    def __init__(self, settings: Optional[Settings] = None, store: Optional[EntityStore] = None):
        self._settings = settings or load_settings()
        self._store = store
        self._concurrency_manager = None
        self._enrollment_service = None
        self._scheduler_service = None
        self._metrics_service = None
        self._audit_service = None
        self._status_engine = None
        self._grading_service = None
        self._rest_api = None
        self._rest_thread = None
        self._rest_server = None
        self._running = False

        self._initialize_platform()

    def _initialize_platform(self):
        """Initialize the platform with all services."""
        settings = self._settings

        if self._store is None:
            self._store = StoreFactory.create_store(
                settings.store_backend,
                database_path=settings.database_path,
                timeout=settings.store_timeout_seconds,
            )
        logger.info("Entity store initialized: %s", type(self._store).__name__)

        self._concurrency_manager = ConcurrencyManager(
            default_timeout=settings.lock_timeout_seconds,
            max_retries=settings.max_retries,
            backoff_factor=settings.retry_backoff_seconds,
        )

        lock_timeout = settings.lock_timeout_seconds
        self._enrollment_service = EnrollmentService(self._store, self._concurrency_manager, lock_timeout)
        self._scheduler_service = SchedulerService(self._store, self._concurrency_manager, lock_timeout)
        self._metrics_service = MetricsService(self._store, settings.hot_section_threshold_pct)
        self._audit_service = AuditService(self._store, self._concurrency_manager, lock_timeout)
        self._status_engine = StatusTransitionEngine(
            self._store, self._concurrency_manager, settings.passing_score, lock_timeout,
        )
        self._grading_service = GradingService(
            self._store, self._concurrency_manager, self._status_engine, lock_timeout,
        )

        self._rest_api = CollegiumRestAPI(
            self._enrollment_service,
            self._scheduler_service,
            self._metrics_service,
            self._audit_service,
            self._grading_service,
            self._status_engine,
            cors_origins=settings.cors_origins,
        )
        logger.info("Collegium platform initialized")

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def store(self) -> EntityStore:
        return self._store

    @property
    def concurrency_manager(self) -> ConcurrencyManager:
        return self._concurrency_manager

    @property
    def enrollment(self) -> EnrollmentService:
        return self._enrollment_service

    @property
    def scheduler(self) -> SchedulerService:
        return self._scheduler_service

    @property
    def metrics(self) -> MetricsService:
        return self._metrics_service

    @property
    def audit(self) -> AuditService:
        return self._audit_service

    @property
    def status_engine(self) -> StatusTransitionEngine:
        return self._status_engine

    @property
    def grading(self) -> GradingService:
        return self._grading_service

    @property
    def app(self) -> FastAPI:
        return self._rest_api.app

    def start_rest_server(self, host: str = "0.0.0.0", port: int = 8000):
        """Start the REST server in a background thread."""
        if self._rest_thread is not None:
            logger.warning("REST server already running")
            return

        import uvicorn

        config = uvicorn.Config(self.app, host=host, port=port, log_level=self._settings.log_level.lower())
        self._rest_server = uvicorn.Server(config)
        self._rest_thread = threading.Thread(target=self._rest_server.run, daemon=True)
        self._rest_thread.start()
        self._running = True
        logger.info("REST server started on %s:%d", host, port)

    def stop_platform(self):
        """Stop the REST server and release the store."""
        if self._rest_server is not None:
            self._rest_server.should_exit = True
            self._rest_thread.join(timeout=10.0)
            self._rest_server = None
            self._rest_thread = None
        self._store.close()
        self._running = False
        logger.info("Collegium platform stopped")


def create_app() -> FastAPI:
    """Application factory for ``uvicorn --factory collegium.main:create_app``."""
    settings = load_settings()
    setup_logging(settings.log_level, settings.log_format)
    return CollegiumPlatform(settings).app


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Collegium academic records rule engine")
    parser.add_argument("--host", type=str, default="0.0.0.0", help="REST server host")
    parser.add_argument("--port", type=int, default=8000, help="REST server port")
    args = parser.parse_args()

    settings = load_settings()
    setup_logging(settings.log_level, settings.log_format)
    platform = CollegiumPlatform(settings)

    try:
        platform.start_rest_server(args.host, args.port)
        logger.info("Platform is running. Press Ctrl+C to stop.")
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
        platform.stop_platform()


if __name__ == "__main__":
    main()
