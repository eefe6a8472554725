"""
Handler registry: the mapping from job type to the code that runs it.

Job types are plain strings (``"maintenance.prune_jobs"``) rather than a
closed enum, so deployments plug in handlers at process start without
touching the queue engine. Producers are validated against the same
registry the workers dispatch from.
"""

from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import Any, Protocol

from jobqueue.v1.core.exceptions import HandlerNotFound


class JobHandler(Protocol):
    """Object-style handler for one job type."""

    async def handle(
        self,
        ctx: Any,  # JobContext
        payload: dict[str, Any],
    ) -> dict[str, Any] | None:
        """
        Execute one attempt of a job.

        Args:
            ctx: Job context with the job id, attempt number and a log sink
            payload: The JSON object submitted by the producer

        Returns:
            Optional result to store on the completed job. Raising marks the
            attempt as failed and schedules a retry while any remain.
        """
        ...


# Plain callables ``(ctx, payload) -> result`` work too; sync ones run in a
# thread so they cannot stall the worker's event loop
Handler = JobHandler | Callable[[Any, dict[str, Any]], Any]


class HandlerRegistry:
    """Job type to handler lookup, optionally frozen after startup."""

    def __init__(self):
        self._handlers: dict[str, Handler] = {}
        self._frozen = False

    def register(self, job_type: str, handler: Handler) -> None:
        if self._frozen:
            raise RuntimeError(
                f"Cannot register job type '{job_type}': "
                "registry is frozen outside development"
            )
        if not isinstance(job_type, str) or not job_type.strip():
            raise ValueError("Job type name cannot be empty")
        if not callable(getattr(handler, "handle", handler)):
            raise TypeError(f"Handler for '{job_type}' is not callable")
        self._handlers[job_type] = handler

    def get(self, job_type: str) -> Handler:
        try:
            return self._handlers[job_type]
        except KeyError:
            raise HandlerNotFound(job_type) from None

    def list_types(self) -> set[str]:
        """Job types accepted by producers."""
        return set(self._handlers)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._handlers

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._handlers))

    def __len__(self) -> int:
        return len(self._handlers)


def build_handler_registry(
    handlers: Mapping[str, Handler] | Iterable[tuple[str, Handler]],
) -> HandlerRegistry:
    """Build a registry from a static ``{type: handler}`` table."""
    registry = HandlerRegistry()
    pairs = handlers.items() if isinstance(handlers, Mapping) else handlers
    for job_type, handler in pairs:
        registry.register(job_type, handler)
    return registry


# Process-wide registry populated by registry_init at startup
job_registry = HandlerRegistry()
