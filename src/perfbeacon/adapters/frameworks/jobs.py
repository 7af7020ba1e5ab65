"""Background job hooks.

Any job runner can report its jobs by wrapping the job body::

    @track_job(agent, queue_name="mailers")
    def deliver_welcome_email(user_id): ...

or by running it inside :func:`job_execution`.
"""

import functools
import inspect
import uuid
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, TypeVar

from perfbeacon.core import notifications

if TYPE_CHECKING:
    from perfbeacon.agent import Agent

F = TypeVar("F", bound=Callable[..., Any])


@contextmanager
def job_execution(
    agent: "Agent",
    job_class: str,
    job_id: str | None = None,
    queue_name: str | None = None,
    arguments: Any = None,
) -> Generator[dict[str, Any]]:
    """Report the enclosed block as one job execution.

    Emits ``job.start`` on entry and ``job.finish`` on exit. An exception
    raised by the block is attached to the finish notification and then
    propagates unchanged.

    Yields:
        The mutable finish payload.
    """
    hub = agent.notifications
    data: dict[str, Any] = {
        "job_class": job_class,
        "job_id": job_id or uuid.uuid4().hex,
        "queue_name": queue_name or "default",
        "arguments": arguments if arguments is not None else [],
    }
    hub.emit(notifications.JOB_START, dict(data))
    with hub.instrument(notifications.JOB_FINISH, data) as payload:
        yield payload


def _arguments(args: tuple[Any, ...], kwargs: dict[str, Any]) -> list[Any]:
    return [*args, kwargs] if kwargs else list(args)


def _job_name(fn: Callable[..., Any]) -> str:
    return f"{fn.__module__}.{fn.__qualname__}"


def track_job(
    agent: "Agent", job_class: str | None = None, queue_name: str | None = None
) -> Callable[[F], F]:
    """Decorator reporting every call of a sync or async job function.

    Args:
        agent: Agent receiving the notifications.
        job_class: Reported job name (default: the function's dotted name).
        queue_name: Reported queue name.
    """

    def decorator(fn: F) -> F:
        name = job_class or _job_name(fn)

        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                with job_execution(
                    agent, name, queue_name=queue_name, arguments=_arguments(args, kwargs)
                ):
                    return await fn(*args, **kwargs)

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with job_execution(
                agent, name, queue_name=queue_name, arguments=_arguments(args, kwargs)
            ):
                return fn(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator
