#!/usr/bin/env python

"""
    Live notification hub for SIMPUS.

    The hub owns its registry of connected clients and is driven through a
    mailbox: register, unregister and send only enqueue a message, which a
    single task drains. That makes `send` safe to call from the worker
    threads FastAPI runs sync endpoints on.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import asyncio
import logging
from contextlib import suppress

logger = logging.getLogger(__name__)

REGISTER = "register"
UNREGISTER = "unregister"
SEND = "send"


class NotificationHub:

    def __init__(self):
        self._clients = {}
        self._loop = None
        self._mailbox = None
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def is_connected(self, user_id) -> bool:
        return user_id in self._clients

    async def start(self):
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._mailbox = asyncio.Queue()
        self._task = asyncio.create_task(self._run())
        logger.info("Notification hub started")

    async def stop(self):
        if not self.running:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        self._clients.clear()
        logger.info("Notification hub stopped")

    async def drain(self):
        """Waits until every queued message has been handled."""
        if self.running:
            # Let pending call_soon_threadsafe posts land in the mailbox first
            await asyncio.sleep(0)
            await self._mailbox.join()

    def register(self, user_id, connection):
        return self._post(REGISTER, user_id, connection)

    def unregister(self, user_id, connection):
        return self._post(UNREGISTER, user_id, connection)

    def send(self, user_id, message) -> bool:
        """Best-effort delivery; False when the hub is not running."""
        return self._post(SEND, user_id, message)

    def _post(self, action, *args) -> bool:
        if not self.running:
            return False
        self._loop.call_soon_threadsafe(self._mailbox.put_nowait, (action, args))
        return True

    async def _run(self):
        while True:
            action, args = await self._mailbox.get()
            try:
                await self._handle(action, *args)
            finally:
                self._mailbox.task_done()

    async def _handle(self, action, user_id, payload):
        if action == REGISTER:
            self._clients[user_id] = payload
        elif action == UNREGISTER:
            if self._clients.get(user_id) is payload:
                del self._clients[user_id]
        elif action == SEND:
            connection = self._clients.get(user_id)
            if connection is None:
                return
            try:
                await connection.send_json({"user_id": user_id, "content": payload})
            except Exception as e:
                logger.info(f"Dropping live connection for user {user_id}: {e}")
                if self._clients.get(user_id) is connection:
                    del self._clients[user_id]
