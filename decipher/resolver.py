"""Debounced, supersedable term explanations for the reader."""

import asyncio
import inspect
import logging
from enum import Enum

from .config import EXPLAIN_DEBOUNCE, EXPLAIN_FALLBACK
from .models import ExplanationLevel

logger = logging.getLogger(__name__)


class ResolutionState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"


class TermResolver:
    """Maps (fragment, context, level) to an explanation, one target at a time.

    Each accepted request bumps ``generation``. The call to ``explain`` is
    only dispatched after ``debounce`` seconds without a newer request, and a
    result is applied only if its generation is still the latest, so a slow
    response for an old fragment can never overwrite a newer one.

    Args:
        explain: callable(fragment, context, level) -> str; may be a
            coroutine function, otherwise it runs in a worker thread
        debounce: quiet period in seconds before dispatching
        on_change: optional callback(snapshot dict) on every state change
        fallback: text shown when an explanation fails
    """

    def __init__(self, explain, *, debounce=EXPLAIN_DEBOUNCE, on_change=None,
                 fallback=EXPLAIN_FALLBACK, level=ExplanationLevel.BEGINNER):
        self.explain = explain
        self.debounce = debounce
        self.on_change = on_change
        self.fallback = fallback

        self.state = ResolutionState.IDLE
        self.fragment = None
        self.context = ""
        self.level = ExplanationLevel(level)
        self.explanation = ""
        self.generation = 0

        self._timer = None
        self._tasks = set()

    def snapshot(self):
        return {
            "state": self.state.value,
            "fragment": self.fragment,
            "level": self.level.value,
            "explanation": self.explanation,
            "generation": self.generation,
        }

    def request(self, fragment, context, level=None, *, force=False):
        """Ask for an explanation of ``fragment``.

        Returns False when the request was coalesced into the current one
        (same fragment, context and level, already pending or resolved),
        True when a new resolution was scheduled. ``force`` re-resolves
        regardless, as for an explicit re-selection.
        """
        level = self.level if level is None else ExplanationLevel(level)
        if (not force and fragment == self.fragment and level == self.level
                and context == self.context
                and self.state in (ResolutionState.PENDING, ResolutionState.RESOLVED)):
            logger.debug("Coalesced request for %r", fragment[:40])
            return False

        self.generation += 1
        self.fragment = fragment
        self.context = context
        self.level = level
        self.state = ResolutionState.PENDING
        self.explanation = ""
        self._schedule(self.generation)
        self._changed()
        return True

    def set_level(self, level):
        """Change the audience level, re-resolving the active fragment."""
        level = ExplanationLevel(level)
        if self.fragment is None:
            self.level = level
            self._changed()
            return False
        return self.request(self.fragment, self.context, level)

    def _schedule(self, generation):
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce, self._fire, generation)

    def _fire(self, generation):
        self._timer = None
        if generation != self.generation:
            return
        task = asyncio.ensure_future(
            self._dispatch(generation, self.fragment, self.context, self.level)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _call(self, fragment, context, level):
        if inspect.iscoroutinefunction(self.explain):
            return await self.explain(fragment, context, level)
        return await asyncio.to_thread(self.explain, fragment, context, level)

    async def _dispatch(self, generation, fragment, context, level):
        try:
            text = await self._call(fragment, context, level)
            failed = not text
        except Exception as e:
            logger.warning("Explanation failed for %r: %s", fragment[:40], e)
            text, failed = "", True

        if generation != self.generation:
            logger.debug("Discarded stale explanation for %r", fragment[:40])
            return

        if failed:
            self.state = ResolutionState.FAILED
            self.explanation = self.fallback
        else:
            self.state = ResolutionState.RESOLVED
            self.explanation = text
        self._changed()

    def _changed(self):
        if self.on_change is not None:
            self.on_change(self.snapshot())

    async def drain(self):
        """Wait until no debounce timer or dispatched call is outstanding."""
        while self._timer is not None or self._tasks:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(self.debounce / 2 or 0.001)

    def close(self):
        """Cancel the debounce timer and any explanation calls in flight."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for task in list(self._tasks):
            task.cancel()
