"""Main application entry point for the Device Relay."""

import asyncio
import os
import signal
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI

from device_relay import __version__
from device_relay.config import load_config
from device_relay.routers import health_router, metrics_router
from device_relay.services import (
    AmqpClient,
    HealthMetricsService,
    RelayConsumerService,
    build_source_address,
    build_tls_config,
    create_dispatcher,
)
from device_relay.services.errors import is_fatal
from device_relay.utils import RelayStateTracker, configure_logging, get_logger, set_correlation_id


def _request_shutdown(error: Optional[BaseException]) -> None:
    """Stop the process when the relay loop ends on its own."""
    if error is None:
        return
    logger = get_logger(__name__)
    logger.error(
        "Relay run ended, shutting down process",
        error=str(error),
        fatal=is_fatal(error),
    )
    os.kill(os.getpid(), signal.SIGTERM)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Connect to the broker, run the relay loop, and tear everything down."""
    config = load_config()
    configure_logging(config.log_level, json_output=config.log_json)
    logger = get_logger(__name__)
    set_correlation_id()

    # Configuration errors abort startup
    tls_config = build_tls_config(config.tls_config, config.tls_cert)

    # The inbound connection is only ever used from this single worker thread
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="relay_worker")
    loop = asyncio.get_running_loop()

    state = RelayStateTracker()
    amqp_client = AmqpClient(config, tls_config)
    dispatcher = create_dispatcher(config, amqp_client, tls_config, state)
    relay_consumer = RelayConsumerService(config, amqp_client, dispatcher, state, executor)
    health_metrics = HealthMetricsService(
        config,
        amqp_client,
        state,
        build_source_address(config.message_type, config.tenant),
        dispatcher,
    )

    try:
        logger.info(
            "Starting relay...",
            source=relay_consumer.source_address,
            sink=config.sink,
            forward_queue_size=config.forward_queue_size,
        )
        await loop.run_in_executor(executor, amqp_client.connect)
        await loop.run_in_executor(None, dispatcher.start)

        relay_consumer.add_exit_callback(_request_shutdown)
        relay_consumer.start()

        app.state.health_metrics = health_metrics
        logger.info("Relay is running.")

        yield

    finally:
        logger.info("Shutting down relay...")
        relay_consumer.stop()

        executor.shutdown(wait=True)
        dispatcher.stop(timeout=config.send_timeout * config.forward_retry_attempts)
        amqp_client.disconnect()
        if tls_config is not None:
            tls_config.close()
        logger.info("Relay stopped.")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Device Relay",
        description="Relays tenant telemetry and events to per-device AMQP sinks",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(health_router)
    app.include_router(metrics_router)
    return app


app = create_app()


def run() -> None:
    """Console entry point."""
    import uvicorn

    config = load_config()
    uvicorn.run(app, host=config.server_host, port=config.server_port)


if __name__ == "__main__":
    run()
