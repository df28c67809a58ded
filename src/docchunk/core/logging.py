import logging
import os
import sys
from typing import Any, Literal

import structlog

LogFormat = Literal["json", "plain", "auto"]

_CI_VARS = ("CI", "CONTINUOUS_INTEGRATION", "GITHUB_ACTIONS", "JENKINS_URL")


def _should_use_json_format() -> bool:
    if any(os.environ.get(var) for var in _CI_VARS):
        return True
    # Redirected stderr means a log collector, not a person
    return not sys.stderr.isatty()


def setup_logging(
    format_type: LogFormat = "auto",
    level: str = "INFO",
    no_color: bool = False,
) -> None:
    """
    Configure structlog for the CLI.

    Logs go to stderr so that chunk rows written to stdout stay parseable.
    Values bound with ``structlog.contextvars.bind_contextvars`` (the CLI
    binds ``run_id``) are merged into every event.

    Args:
        format_type: "json", "plain", or "auto" (JSON in CI or when stderr
            is not a terminal).
        level: Minimum level name to emit.
        no_color: Disable ANSI colors in plain output.
    """
    use_json = format_type == "json" or (
        format_type == "auto" and _should_use_json_format()
    )

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if use_json:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=not no_color))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


log = structlog.get_logger()
