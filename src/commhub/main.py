"""
CommHub Workflows - Service Entry Point
=======================================

Runs the workflow engine and the TAT monitor as one long-lived process.

STARTUP:
1. Setup structured logging
2. Initialize database and create tables
3. Load TAT policy and start watching it
4. Build repositories, channel adapters and the workflow engine
5. Start the resume scheduler and recover overdue DELAY resumes
6. Start the TAT check scheduler

SHUTDOWN (SIGINT/SIGTERM):
1. Stop schedulers
2. Stop policy watcher
3. Close channel clients and the database
"""

import asyncio
import signal
from contextlib import suppress

from commhub.config import settings
from commhub.infrastructure.database import (
    close_database, create_tables, get_session_maker, init_database
)
from commhub.shared.infrastructure.logging import get_logger, setup_logging
from commhub.tat.application import DeadlineMonitor, EscalationDispatcher
from commhub.tat.infrastructure import (
    SQLAlchemyExtensionRepository,
    SQLAlchemyNotificationLedger,
    SQLAlchemyNotificationRepository,
    SQLAlchemyTrackedEntityRepository,
    TATPolicyManager,
    TATScheduler,
)
from commhub.tat.services import SLACheckWorker
from commhub.workflow.application import (
    NotificationFanOut, WorkflowEngine, build_default_registry
)
from commhub.workflow.infrastructure import (
    APSchedulerResumeScheduler,
    LoggingEventPublisher,
    SQLAlchemyDefinitionRepository,
    SQLAlchemyEntityContextProvider,
    SQLAlchemyInstanceRepository,
    SQLAlchemyRecipientDirectory,
    SQLAlchemyTaskSink,
    WebhookChannelAdapter,
    build_channel_adapters,
)

logger = get_logger(__name__)


async def run(stop_event: asyncio.Event) -> None:
    """Start all services, wait for `stop_event`, then shut down."""
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting CommHub workflow service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()
    await create_tables()
    session_maker = get_session_maker()

    logger.info("Loading TAT policy")
    policy_manager = TATPolicyManager()
    policy_manager.load(settings.tat_policy_path)
    policy_manager.start_watching()

    channels = build_channel_adapters()
    recipients = SQLAlchemyRecipientDirectory(session_maker)
    definitions = SQLAlchemyDefinitionRepository(session_maker)
    instances = SQLAlchemyInstanceRepository(session_maker)
    event_publisher = LoggingEventPublisher()

    engine = WorkflowEngine(
        definitions=definitions,
        instances=instances,
        registry=build_default_registry(channels, SQLAlchemyTaskSink(session_maker), recipients),
        context_provider=SQLAlchemyEntityContextProvider(session_maker),
        event_publisher=event_publisher,
    )
    resume_scheduler = APSchedulerResumeScheduler(engine.resume_workflow)
    engine.set_resume_scheduler(resume_scheduler)
    await resume_scheduler.start()

    resumed = await engine.resume_due_workflows()
    if resumed:
        logger.info("Recovered overdue workflow resumes", extra={"count": len(resumed)})

    worker = SLACheckWorker(
        monitor=DeadlineMonitor(instances, definitions),
        dispatcher=EscalationDispatcher(
            tracked_entities=SQLAlchemyTrackedEntityRepository(session_maker),
            notifications=SQLAlchemyNotificationRepository(session_maker),
            extensions=SQLAlchemyExtensionRepository(session_maker),
            fan_out=NotificationFanOut(channels, recipients),
            engine=engine,
            policy_provider=policy_manager,
            event_publisher=event_publisher,
            ledger=SQLAlchemyNotificationLedger(session_maker),
        ),
        event_publisher=event_publisher,
    )
    tat_scheduler = TATScheduler(settings.tat_check_interval_seconds)
    await tat_scheduler.start(worker.run)

    logger.info("CommHub workflow service started successfully")

    await stop_event.wait()

    # === SHUTDOWN ===
    logger.info("Shutting down CommHub workflow service")

    await tat_scheduler.stop()
    await resume_scheduler.stop()
    policy_manager.stop_watching()

    for adapter in channels.values():
        if isinstance(adapter, WebhookChannelAdapter):
            await adapter.close()

    await close_database()
    logger.info("CommHub workflow service shutdown complete")


def main() -> None:
    """Console entry point."""
    async def _serve() -> None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with suppress(NotImplementedError):
                loop.add_signal_handler(sig, stop_event.set)
        await run(stop_event)

    asyncio.run(_serve())


if __name__ == "__main__":
    main()
