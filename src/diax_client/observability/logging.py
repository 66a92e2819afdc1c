"""structlog setup for cache events.

Cache events carry the full request URL under ``key`` (or ``url``). Those are
shortened to the API-relative path so log lines stay readable, and the
signed-in user, once bound, is attached to every event.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, merge_contextvars

if TYPE_CHECKING:
    from collections.abc import MutableMapping

    from diax_core.config.settings import Settings

_URL_FIELDS = ("key", "url")
_QUIET_LOGGERS = ("httpx", "httpcore")


def configure_logging(settings: Settings) -> None:
    """Route structlog and stdlib logging through one cache-aware pipeline."""
    level = _resolve_level(settings.log_level)
    pre_chain = _shared_processors(settings.api_base_url)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer: structlog.types.Processor
    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer()
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )
    _install_root_handler(formatter, level)


def relative_cache_keys(base_url: str) -> structlog.types.Processor:
    """Build a processor that strips ``base_url`` from URL-valued event fields."""
    prefix = base_url.rstrip("/")

    def processor(
        _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        for field in _URL_FIELDS:
            value = event_dict.get(field)
            if not isinstance(value, str) or not value.startswith(prefix):
                continue
            rest = value[len(prefix):]
            if rest[:1] in ("", "/", "?"):
                event_dict[field] = rest or "/"
        return event_dict

    return processor


def bind_session_context(user_id: str | int) -> None:
    """Attach the signed-in user to every later cache event."""
    bind_contextvars(user_id=str(user_id))


def clear_session_context() -> None:
    """Drop the bound user (on logout, alongside CacheManager.clear_all)."""
    clear_contextvars()


def _shared_processors(base_url: str) -> list[structlog.types.Processor]:
    return [
        merge_contextvars,
        relative_cache_keys(base_url),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]


def _install_root_handler(formatter: logging.Formatter, level: int) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def _resolve_level(level_name: str) -> int:
    """Map a level name onto its logging constant, defaulting to INFO."""
    level = logging.getLevelNamesMapping().get(level_name.upper())
    return level if level is not None else logging.INFO
