"""
Network Engine

Batch entry points shared by the Celery tasks and the HTTP layer. Each entry
point holds the per-account lock, runs one service over a fresh unit of work
and reports through a ``BatchResult``. Entry points never raise: a lock
conflict or an unexpected failure is recorded in ``result.errors``.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from lib.account_lock import AccountLockRegistry
from lib.exceptions import ConflictError, EngineException
from models.domain import BatchResult
from repositories.base import NotificationSink, UnitOfWork
from services.contact_scoring import ContactScoringService
from services.notification_policy import NotificationDispatcher
from services.opportunity_generator import OpportunityGenerator
from services.relationship_discovery import RelationshipDiscoveryService
from services.success_tracking import Adjustment, SuccessTrackingService
from services.weights import EngineConfig

logger = logging.getLogger(__name__)


class NetworkEngine:
    """Runs discovery, scoring, generation and notification batches per account"""

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        lock=None,
        config: Optional[EngineConfig] = None,
        summarize: Optional[Callable[[str], str]] = None,
        sink: Optional[NotificationSink] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Initialize the engine

        Args:
            uow_factory: Builds a fresh unit of work per batch
            lock: Object with ``hold(account_id, operation)``; defaults to an in-process registry
            config: Weights and thresholds for accounts without a stored config version
            summarize: Optional narrative hook for generated suggestions
            sink: Notification delivery target
            clock: Source of "now"
        """
        self.uow_factory = uow_factory
        self.lock = lock or AccountLockRegistry()
        self.config = config or EngineConfig()
        self.summarize = summarize
        self.sink = sink
        self.clock = clock

    def config_for(self, uow: UnitOfWork, account_id: Optional[str]) -> EngineConfig:
        """Latest stored config version for the account, else the engine default"""
        payload = uow.configs.latest(account_id) if account_id else None
        if payload is None:
            return self.config
        return EngineConfig.model_validate(payload)

    def current_config(self, account_id: Optional[str] = None) -> EngineConfig:
        uow = self.uow_factory()
        try:
            return self.config_for(uow, account_id)
        finally:
            _close(uow)

    def _run(self, operation: str, account_id: str, work: Callable[[UnitOfWork], BatchResult]) -> BatchResult:
        logger.info(f"Starting {operation} for account {account_id}")
        try:
            with self.lock.hold(account_id, operation):
                uow = self.uow_factory()
                try:
                    result = work(uow)
                finally:
                    _close(uow)
        except ConflictError as e:
            logger.warning(f"{operation} skipped for account {account_id}: {e.message}")
            result = BatchResult(operation=operation, account_id=account_id)
            result.errors.append(e.to_dict())
            return result
        except Exception as e:
            logger.error(
                f"{operation} failed for account {account_id}: {e}",
                extra={"account_id": account_id, "operation": operation},
                exc_info=True,
            )
            result = BatchResult(operation=operation, account_id=account_id)
            error = e.to_dict() if isinstance(e, EngineException) else {
                "error_type": type(e).__name__,
                "message": str(e),
                "details": {},
            }
            result.errors.append(error)
            return result

        logger.info(
            f"Finished {operation} for account {account_id}: processed={result.processed}, "
            f"created={result.created}, failed={result.failed}"
        )
        return result

    def run_discovery_batch(self, account_id: str) -> BatchResult:
        return self._run(
            "relationship_discovery",
            account_id,
            lambda uow: RelationshipDiscoveryService(
                uow, self.config_for(uow, account_id), self.clock
            ).discover_batch(account_id),
        )

    def run_scoring_batch(self, account_id: str) -> BatchResult:
        return self._run(
            "contact_scoring",
            account_id,
            lambda uow: ContactScoringService(
                uow, self.config_for(uow, account_id), self.clock
            ).score_account(account_id),
        )

    def run_opportunity_generation(self, account_id: str) -> BatchResult:
        return self._run(
            "opportunity_generation",
            account_id,
            lambda uow: OpportunityGenerator(
                uow, self.config_for(uow, account_id), self.clock, summarize=self.summarize
            ).generate(account_id),
        )

    def send_daily_digest(self, account_id: str) -> BatchResult:
        def work(uow: UnitOfWork) -> BatchResult:
            result = BatchResult(operation="daily_digest", account_id=account_id)
            sent = NotificationDispatcher(uow, self.sink, self.clock).send_daily_digest(account_id)
            result.processed = result.succeeded = result.created = sent
            return result

        return self._run("daily_digest", account_id, work)

    def process_new_opportunities(self, account_id: str) -> BatchResult:
        def work(uow: UnitOfWork) -> BatchResult:
            result = BatchResult(operation="opportunity_notifications", account_id=account_id)
            sent = NotificationDispatcher(uow, self.sink, self.clock).process_new_opportunities(account_id)
            result.processed = result.succeeded = result.created = sent
            return result

        return self._run("opportunity_notifications", account_id, work)

    def recalibrate(self, account_id: str, window_days: int = 90) -> Tuple[EngineConfig, List[Adjustment]]:
        """
        Compute success metrics and apply the resulting adjustments

        A changed config is stored as the account's next version, so every
        engine that later runs a batch for the account picks it up. Earlier
        versions stay in the history for audit.
        """
        uow = self.uow_factory()
        try:
            current = self.config_for(uow, account_id)
            tracker = SuccessTrackingService(uow, self.clock)
            metrics = tracker.compute_metrics(account_id, window_days)
            adjustments = tracker.recommend_adjustments(metrics, current)

            new_config = SuccessTrackingService.apply_adjustments(current, adjustments)
            if new_config is not current:
                with uow.transaction():
                    uow.configs.append(account_id, new_config.version, new_config.model_dump(mode="json"))
                logger.info(
                    f"Recalibrated engine config for account {account_id}: "
                    f"version {current.version} -> {new_config.version}"
                )
        finally:
            _close(uow)
        return new_config, adjustments


def _close(uow: UnitOfWork) -> None:
    close = getattr(uow, "close", None)
    if close is not None:
        close()
