"""
Job registry initialization.

Registers the built-in job handlers with a handler registry.
"""

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import Settings, settings as default_settings
from jobqueue.v1.core.registries import HandlerRegistry, job_registry
from jobqueue.v1.jobs.handlers import EchoHandler, PruneJobsHandler

logger = get_logger(__name__)

BUILTIN_JOB_TYPES = ("maintenance.prune_jobs", "system.echo")


def register_job_handlers(
    registry: HandlerRegistry | None = None, settings: Settings | None = None
) -> HandlerRegistry:
    """Register the built-in handlers; already registered names are skipped."""
    registry = registry if registry is not None else job_registry
    settings = settings or default_settings

    logger.info("Registering job handlers")

    # Maintenance job handlers
    if "maintenance.prune_jobs" not in registry:
        registry.register("maintenance.prune_jobs", PruneJobsHandler(settings))

    if "system.echo" not in registry:
        registry.register("system.echo", EchoHandler())

    logger.info("Job handlers registered", registered_handlers=sorted(registry))
    return registry
