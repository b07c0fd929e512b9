"""
Wires the sync pipeline together from settings and runs it.
"""

import logging
from typing import Optional

import uvicorn
from prometheus_client import CollectorRegistry

from snapsync.api import create_app
from snapsync.config import SyncSettings
from snapsync.monitoring.metrics import MetricsCollector
from snapsync.queue import InMemorySyncQueue, PostgresSyncQueue, SyncQueue
from snapsync.reconciliation import DataDiffer, Reconciler
from snapsync.storage import AuditLog, Database, SnapshotStore, SourceReader
from snapsync.sync import ChangeDetector, PayloadValidator, Poller, RetryPolicy, SyncConsumer, SyncService

logger = logging.getLogger(__name__)


class SyncRuntime:
    """
    All pipeline components for one process.

    The storage objects and the queue can be replaced (tests, embedding);
    everything else is built from them and the settings.
    """

    def __init__(
        self,
        settings: SyncSettings,
        source,
        snapshots,
        audit,
        queue: SyncQueue,
        metrics: MetricsCollector,
        database: Optional[Database] = None
    ):
        self.settings = settings
        self.database = database
        self.source = source
        self.snapshots = snapshots
        self.audit = audit
        self.queue = queue
        self.metrics = metrics

        differ = DataDiffer()
        self.detector = ChangeDetector(
            source,
            snapshots,
            differ=differ,
            key_field=settings.key_field,
            ignore_fields=settings.ignore_fields,
        )
        self.poller = Poller(
            self.detector,
            queue,
            interval_seconds=settings.poll_interval_seconds,
            metrics=metrics.poller,
        )
        self.consumer = SyncConsumer(
            snapshots,
            audit,
            queue,
            retry_policy=RetryPolicy(
                max_retries=settings.max_retries,
                base_delay_seconds=settings.retry_base_delay_seconds,
                max_delay_seconds=settings.retry_max_delay_seconds,
            ),
            validator=PayloadValidator(settings.required_fields, key_field=settings.key_field),
            metrics=metrics.consumer,
            retry_validation_errors=settings.retry_validation_errors,
            batch_size=settings.batch_size,
            wait_seconds=settings.queue_wait_seconds,
        )
        self.reconciler = Reconciler(
            source,
            snapshots,
            differ=differ,
            key_field=settings.key_field,
            ignore_fields=settings.ignore_fields,
            metrics=metrics.reconciliation,
        )
        self.service = SyncService(
            source,
            snapshots,
            audit,
            queue,
            self.poller,
            self.reconciler,
            key_field=settings.key_field,
            comparer=differ.comparer,
        )
        self.app = create_app(self.service)

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings,
        registry: Optional[CollectorRegistry] = None,
        database: Optional[Database] = None
    ) -> "SyncRuntime":
        """
        Build a runtime backed by PostgreSQL.

        Args:
            settings: Pipeline settings (Vault credentials are resolved here)
            registry: Prometheus registry (default registry if omitted)
            database: Existing database to use instead of opening a pool
        """
        if database is None:
            settings = settings.with_vault_credentials()
            database = Database(settings.database_url, connect_kwargs=settings.db_credentials)

        if settings.queue_backend == "memory":
            queue = InMemorySyncQueue(visibility_timeout=settings.visibility_timeout_seconds)
        else:
            queue = PostgresSyncQueue(
                database,
                table=settings.queue_table,
                visibility_timeout=settings.visibility_timeout_seconds,
            )

        return cls(
            settings,
            source=SourceReader(database, settings.source_table, settings.key_field),
            snapshots=SnapshotStore(database, settings.snapshot_table),
            audit=AuditLog(database, settings.audit_table),
            queue=queue,
            metrics=MetricsCollector(port=settings.metrics_port, registry=registry),
            database=database,
        )

    def init_schema(self, with_source: bool = False) -> None:
        """Create the snapshot, audit and (for the postgres backend) queue tables."""
        if self.database is None:
            raise RuntimeError("No database configured")

        self.database.create_schema(
            snapshot_table=self.settings.snapshot_table,
            audit_table=self.settings.audit_table,
            queue_table=self.settings.queue_table if self.settings.queue_backend == "postgres" else None,
            source_table=self.settings.source_table if with_source else None,
        )

    async def run(self) -> None:
        """
        Serve the API with the poller and consumer running until interrupted.
        """
        self.metrics.start_server()
        await self.poller.start()
        await self.consumer.start()

        config = uvicorn.Config(
            self.app,
            host=self.settings.api_host,
            port=self.settings.api_port,
            log_level=self.settings.log_level.lower(),
        )
        server = uvicorn.Server(config)
        logger.info(f"snapsync API listening on {self.settings.api_host}:{self.settings.api_port}")

        try:
            await server.serve()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Stop background loops and release connections."""
        await self.poller.stop()
        await self.consumer.stop()
        await self.queue.close()
        if self.database is not None:
            self.database.close()
        logger.info("snapsync stopped")
