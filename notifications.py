"""
Unread notification polling.
"""
import asyncio
import logging
from typing import Awaitable, Callable

import click

from api_client import ApiClient, Result
from core import NOTIFICATION_POLL_SECONDS
from endpoints import Notifications
from exceptions import ApiError

logger = logging.getLogger(__name__)


class UnreadCountPoller:
    """
    Polls an unread-count call on a fixed interval inside the running loop.

    `on_change` is called with the new count whenever it differs from the
    last one seen (the first successful poll always counts as a change).
    A failed poll keeps the previous count; a 401 stops the poller since the
    token will not come back by itself.

        async with UnreadCountPoller(api.notifications.unread_count, 30, print):
            ...
    """

    def __init__(self, fetch: Callable[[], Awaitable[Result]], interval: float = NOTIFICATION_POLL_SECONDS,
                 on_change: Callable[[int], None] | None = None):
        self.fetch = fetch
        self.interval = interval
        self.on_change = on_change
        self.count: int | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Unread notification polling started every %ss", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Unread notification polling stopped")

    async def poll_once(self) -> int | None:
        result = await self.fetch()
        if not result.ok:
            if result.error.is_unauthorized:
                raise result.error
            logger.warning("Unread count poll failed: %r", result.error)
            return self.count
        if result.value != self.count:
            self.count = result.value
            if self.on_change is not None:
                self.on_change(self.count)
        return self.count

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except ApiError:
                logger.error("Unread count poll unauthorized, stopping")
                return
            except Exception:
                logger.exception("Unread count poll crashed")
            await asyncio.sleep(self.interval)

    async def __aenter__(self) -> "UnreadCountPoller":
        self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()


async def watch_unread(client: ApiClient, interval: float, duration: float | None = None) -> None:
    notifications = Notifications(client)
    poller = UnreadCountPoller(notifications.unread_count, interval,
                               lambda count: click.echo(f"Unread notifications: {count}"))
    async with poller:
        if duration is None:
            # until cancelled (Ctrl+C) or the token expires
            while poller.running:
                await asyncio.sleep(interval)
        else:
            await asyncio.sleep(duration)


def register_cli(app) -> None:
    @app.cli.command("watch-notifications")
    @click.option("--token", envvar="BOOKVERSE_TOKEN", required=True, help="Bearer token of the user to watch.")
    @click.option("--interval", default=NOTIFICATION_POLL_SECONDS, show_default=True, type=float)
    @click.option("--duration", default=None, type=float, help="Stop after this many seconds.")
    def watch_notifications(token, interval, duration):
        """Print the unread notification count whenever it changes."""
        client = ApiClient(app.config["BOOKVERSE_API_URL"], token=token,
                           timeout=app.config["BOOKVERSE_API_TIMEOUT"])
        try:
            asyncio.run(watch_unread(client, interval, duration))
        except KeyboardInterrupt:
            click.echo("Stopped.")
