"""Connection level middleware."""

import asyncio
import logging
from typing import Optional

from starlette.types import ASGIApp, Message, Receive, Scope, Send


class TimeoutMiddleware:
    """Abort clients that are too slow to send a request or accept a response.

    While the request body is still arriving, each read waits at most
    ``read_timeout`` seconds; a client that stays silent longer is treated as
    disconnected. Each response write may block for at most ``write_timeout``
    seconds before the connection is aborted. A timeout of 0 disables the check.
    """

    def __init__(
        self,
        app: ASGIApp,
        read_timeout: float,
        write_timeout: float,
        logger: Optional[logging.Logger] = None,
    ):
        self.app = app
        self.read_timeout = read_timeout or None
        self.write_timeout = write_timeout or None
        self.logger = logger or logging.getLogger(__name__)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        path = scope.get("path", "")
        body_complete = False

        async def receive_with_timeout() -> Message:
            nonlocal body_complete
            # Once the body is in, receive() only waits for the disconnect
            if body_complete:
                return await receive()
            try:
                message = await asyncio.wait_for(receive(), self.read_timeout)
            except asyncio.TimeoutError:
                self.logger.warning(f"read timeout after {self.read_timeout}s for {path}")
                body_complete = True
                return {"type": "http.disconnect"}
            if message["type"] != "http.request" or not message.get("more_body", False):
                body_complete = True
            return message

        async def send_with_timeout(message: Message) -> None:
            try:
                await asyncio.wait_for(send(message), self.write_timeout)
            except asyncio.TimeoutError:
                self.logger.warning(f"write timeout after {self.write_timeout}s for {path}")
                raise

        await self.app(scope, receive_with_timeout, send_with_timeout)
