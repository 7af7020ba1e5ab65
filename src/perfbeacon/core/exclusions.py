"""Name-pattern rules deciding which executions are tracked.

Patterns use shell-style wildcards (``*``, ``?``, ``[...]``), matched
case-sensitively. A controller pattern containing ``#`` is matched against
``"Controller#action"``; any other controller pattern is matched against
the controller name alone.

Examples:
    ``Admin::*`` matches ``Admin::UsersController``.
    ``Admin::*#*`` matches every action of every controller under Admin.
    ``HealthController#show`` matches exactly one action.
"""

import fnmatch
from collections.abc import Iterable

from perfbeacon.core.config import ApmConfig


def _matches_any(name: str, patterns: Iterable[str]) -> bool:
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in patterns)


def controller_matches(pattern: str, controller: str, action: str | None = None) -> bool:
    """Check one controller pattern against a controller/action pair."""
    if "#" in pattern:
        if action is None:
            return False
        return fnmatch.fnmatchcase(f"{controller}#{action}", pattern)
    return fnmatch.fnmatchcase(controller, pattern)


def _controller_in(
    patterns: Iterable[str], controller: str, action: str | None
) -> bool:
    return any(controller_matches(p, controller, action) for p in patterns)


def excluded_controller(
    config: ApmConfig, controller: str | None, action: str | None = None
) -> bool:
    """Return True if a controller/action should not be tracked.

    When ``include_controllers`` is non-empty, anything not matching it is
    excluded; ``exclude_controllers`` is applied afterwards.
    """
    if not controller:
        return False
    if config.include_controllers and not _controller_in(
        config.include_controllers, controller, action
    ):
        return True
    return _controller_in(config.exclude_controllers, controller, action)


def excluded_job(config: ApmConfig, job_class: str | None) -> bool:
    """Return True if a job class should not be tracked."""
    if not job_class:
        return False
    if config.include_jobs and not _matches_any(job_class, config.include_jobs):
        return True
    return _matches_any(job_class, config.exclude_jobs)
