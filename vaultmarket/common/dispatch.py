"""Fire-and-forget dispatch of best-effort side effects (email, notifications).

A dispatched callable never reports back to the request that submitted it:
failures are logged and counted here and go no further.
"""

from concurrent.futures import ThreadPoolExecutor
from contextvars import copy_context
from typing import Callable, Protocol

from vaultmarket.common.config import settings
from vaultmarket.common.logging import logger
from vaultmarket.common.metrics import side_effect_failures_total


class Dispatcher(Protocol):
    def submit(self, effect: str, fn: Callable, *args, **kwargs) -> None: ...


def run_effect(effect: str, fn: Callable, *args, **kwargs) -> None:
    """Run one side effect, swallowing and recording any failure."""

    try:
        fn(*args, **kwargs)
    except Exception as exc:
        side_effect_failures_total.labels(service=settings.service_name, effect=effect).inc()
        logger.exception("side_effect_failed effect=%s error=%s", effect, exc)


class BackgroundDispatcher:
    """Runs side effects on a small thread pool; the caller never waits."""

    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="side-effect")

    def submit(self, effect: str, fn: Callable, *args, **kwargs) -> None:
        # Carry trace/order context vars into the worker for log correlation.
        ctx = copy_context()
        try:
            self._executor.submit(ctx.run, run_effect, effect, fn, *args, **kwargs)
        except RuntimeError as exc:
            # Executor already shut down; dropping the effect is acceptable.
            logger.warning("side_effect_dropped effect=%s error=%s", effect, exc)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class InlineDispatcher:
    """Runs side effects immediately in the calling thread (scripts, tests)."""

    def submit(self, effect: str, fn: Callable, *args, **kwargs) -> None:
        run_effect(effect, fn, *args, **kwargs)
