"""Structured logging with per-run context using structlog and contextvars.

Engine modules log through ``logging.getLogger(__name__)``; their records go
through structlog's ``ProcessorFormatter`` so they carry the same ``run_id``
and ``recipe_id`` as structlog loggers bound with ``bind_run_context``.
"""

import logging
from contextvars import ContextVar

import structlog
from structlog.typing import Processor

# Context variables for the current replay run
current_run_id: ContextVar[str | None] = ContextVar("current_run_id", default=None)
current_recipe_id: ContextVar[str | None] = ContextVar("current_recipe_id", default=None)

_configured = False


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def setup_structured_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Route structlog and stdlib logging to stderr with run context attached.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: Render JSON lines instead of console output
    """
    global _configured
    if _configured:
        return

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False)
    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_processors(),
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    # no-op when the root logger already has handlers (e.g. under pytest)
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), handlers=[handler])

    _configured = True


def bind_run_context(run_id: str, recipe_id: str) -> None:
    """Bind run context for all subsequent logs in this async context.

    Args:
        run_id: Unique identifier of the replay run
        recipe_id: Recipe being replayed
    """
    current_run_id.set(run_id)
    current_recipe_id.set(recipe_id)
    structlog.contextvars.bind_contextvars(run_id=run_id, recipe_id=recipe_id)


def clear_run_context() -> None:
    current_run_id.set(None)
    current_recipe_id.set(None)
    structlog.contextvars.clear_contextvars()


def get_run_logger(name: str = "recipe_replay") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
