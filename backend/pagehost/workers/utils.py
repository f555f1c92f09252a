"""Shared utilities for background deployment work."""

import logging
from collections.abc import Awaitable, Callable

LogSink = Callable[[str, str], Awaitable[None]]

RUN_PREFIXED = {"run_prefixed": True}


class RunLogger:
    """Context-aware logger for deployment runs.

    Prefixes all log messages with [run_id] and the domain for easy
    correlation in process logs, and mirrors every line into the run's
    persistent log through ``sink(level, message)``.

    Usage:
        rlog = RunLogger(run_id="abc123", domain="example.com", sink=journal.append)
        await rlog.info("Attached %s", host)
        await rlog.warning("Hosting attach failed: %s", err)
    """

    def __init__(
        self,
        run_id: str,
        *,
        domain: str | None = None,
        sink: LogSink | None = None,
    ):
        self.run_id = run_id
        self._sink = sink
        self._logger = logging.getLogger("pagehost.workers.runs")

        parts = [f"run={run_id[:12]}"]
        if domain is not None:
            parts.append(f"domain={domain}")
        self._prefix = "[" + " ".join(parts) + "]"

    async def _emit(self, level: str, msg: str, args: tuple) -> None:
        message = msg % args if args else msg
        self._logger.log(
            getattr(logging, level.upper()), "%s %s", self._prefix, message, extra=RUN_PREFIXED
        )
        if self._sink is not None:
            await self._sink(level, message)

    async def info(self, msg: str, *args) -> None:
        await self._emit("info", msg, args)

    async def warning(self, msg: str, *args) -> None:
        await self._emit("warning", msg, args)

    async def error(self, msg: str, *args) -> None:
        await self._emit("error", msg, args)

    def debug(self, msg: str, *args) -> None:
        # Process log only, never persisted
        self._logger.debug(f"{self._prefix} {msg}", *args, extra=RUN_PREFIXED)
