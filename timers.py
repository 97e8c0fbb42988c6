# -*- coding: utf-8 -*-
# timers.py - Delayed passive acknowledgements (emoji reactions) for admins

import asyncio
import logging
from typing import Dict, List

from transport import MessageKey, TransportError

logger = logging.getLogger(__name__)


class SuppressionTimers:
    """
    Registry of scheduled reactions, keyed by the target message.

    Each schedule() call is independent: nothing is coalesced, a failed send is
    logged and dropped, and nothing is retried. cancel() is available but the
    router never uses it.
    """

    def __init__(self, transport):
        self.transport = transport
        self._pending: Dict[str, List[asyncio.Task]] = {}

    def schedule(self, delay: float, admin_chat_id: str, target: MessageKey, emoji: str) -> asyncio.Task:
        """Must be called from inside the running event loop."""
        task = asyncio.get_running_loop().create_task(
            self._fire(delay, admin_chat_id, target, emoji)
        )
        self._pending.setdefault(target.ref, []).append(task)
        task.add_done_callback(lambda t: self._forget(target.ref, t))
        logger.info(f"[DELAY] Scheduled '{emoji}' on {target.ref} in {delay:.0f}s")
        return task

    async def _fire(self, delay: float, admin_chat_id: str, target: MessageKey, emoji: str) -> None:
        await asyncio.sleep(delay)
        try:
            await self.transport.send_reaction(admin_chat_id, target, emoji)
            logger.info(f"[DELAY] Sent '{emoji}' reaction to admin on {target.ref}")
        except TransportError as e:
            logger.error(f"Delayed reaction error on {target.ref}: {e}")
        except Exception as e:
            logger.error(f"Unexpected delayed reaction error on {target.ref}: {e}")

    def _forget(self, key: str, task: asyncio.Task) -> None:
        tasks = self._pending.get(key)
        if not tasks:
            return
        if task in tasks:
            tasks.remove(task)
        if not tasks:
            del self._pending[key]

    def pending(self, target: MessageKey) -> int:
        return len(self._pending.get(target.ref, []))

    def cancel(self, target: MessageKey) -> int:
        """Cancel every pending reaction for ``target``; returns how many were cancelled."""
        tasks = self._pending.pop(target.ref, [])
        for task in tasks:
            task.cancel()
        return len(tasks)
