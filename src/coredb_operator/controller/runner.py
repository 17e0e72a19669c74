"""Runs reconcile passes for the kopf handlers.

kopf may call several handlers for the same CoreDB at once (a spec
change, the periodic timer and owned-object events). Passes for one key
are serialised, and a trigger arriving while another one is already
waiting is folded into it.
"""

import asyncio
import logging

import kopf

from coredb_operator.errors import FinalizerError

logger = logging.getLogger(__name__)


class PassRunner:
    def __init__(self, reconciler, backoff_base=1.0, backoff_max=300.0):
        self.reconciler = reconciler
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._locks = {}
        self._pending = set()

    def backoff(self, retry):
        """Delay before retry number ``retry``; the first retry is immediate."""
        if retry <= 0:
            return 0
        return min(self.backoff_base * 2 ** (retry - 1), self.backoff_max)

    async def run(self, namespace, name):
        """Run one pass and return its ``Action``, or None if folded into a waiting pass."""
        key = (namespace, name)
        if key in self._pending:
            logger.debug(f"Pass for {namespace}/{name} already waiting")
            return None
        self._pending.add(key)
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            self._pending.discard(key)
            return await asyncio.to_thread(self.reconciler.reconcile, namespace, name)

    def raise_for(self, action, retry):
        """Turn a failed ``Action`` into the kopf error that schedules the next attempt."""
        if action.retry:
            raise kopf.TemporaryError(action.message, delay=self.backoff(retry))
        if action.permanent:
            raise kopf.PermanentError(action.message)

    async def cleanup(self, body, retry):
        namespace = body["metadata"]["namespace"]
        name = body["metadata"]["name"]
        key = (namespace, name)
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            try:
                await asyncio.to_thread(self.reconciler.cleanup, body)
            except FinalizerError as e:
                raise kopf.TemporaryError(str(e), delay=self.backoff(retry))
        self._locks.pop(key, None)
