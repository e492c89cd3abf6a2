import asyncio

import pytest

from fileshare.middleware import TimeoutMiddleware


async def noop_send(message):
    pass


async def empty_receive():
    return {"type": "http.request", "body": b"", "more_body": False}


@pytest.mark.asyncio
async def test_silent_client_is_disconnected():
    """A client that sends nothing within the read timeout looks disconnected."""
    received = []

    async def app(scope, receive, send):
        received.append(await receive())

    async def never_receive():
        await asyncio.Event().wait()

    middleware = TimeoutMiddleware(app, read_timeout=0.05, write_timeout=1)
    await middleware({"type": "http", "path": "/upload"}, never_receive, noop_send)
    assert received == [{"type": "http.disconnect"}]


@pytest.mark.asyncio
async def test_no_read_timeout_after_body():
    """Waiting after the full body arrived isn't limited by the read timeout."""
    messages = [
        {"type": "http.request", "body": b"data", "more_body": False},
        {"type": "http.disconnect"},
    ]
    received = []

    async def app(scope, receive, send):
        received.append(await receive())
        received.append(await receive())

    async def slow_receive():
        if received:
            await asyncio.sleep(0.1)
        return messages[len(received)]

    middleware = TimeoutMiddleware(app, read_timeout=0.01, write_timeout=1)
    await middleware({"type": "http", "path": "/download/a.txt"}, slow_receive, noop_send)
    assert received == messages


@pytest.mark.asyncio
async def test_blocked_write_times_out():
    async def app(scope, receive, send):
        await send({"type": "http.response.start", "status": 200, "headers": []})

    async def blocked_send(message):
        await asyncio.Event().wait()

    middleware = TimeoutMiddleware(app, read_timeout=1, write_timeout=0.05)
    with pytest.raises(asyncio.TimeoutError):
        await middleware({"type": "http", "path": "/download/a.txt"}, empty_receive, blocked_send)


@pytest.mark.asyncio
async def test_zero_disables_timeouts():
    received = []

    async def app(scope, receive, send):
        received.append(await receive())

    async def slow_receive():
        await asyncio.sleep(0.05)
        return {"type": "http.request", "body": b"", "more_body": False}

    middleware = TimeoutMiddleware(app, read_timeout=0, write_timeout=0)
    await middleware({"type": "http", "path": "/upload"}, slow_receive, noop_send)
    assert received == [{"type": "http.request", "body": b"", "more_body": False}]
