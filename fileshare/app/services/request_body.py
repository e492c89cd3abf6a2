from typing import AsyncIterator, Iterator, Tuple

from python_multipart.exceptions import FormParserError
from starlette.datastructures import FormData, Headers, UploadFile
from starlette.formparsers import MultiPartException, MultiPartParser
from starlette.requests import ClientDisconnect, Request


class MultipartError(MultiPartException):
    """The request body could not be parsed as a multipart form."""


class BodyTooLargeError(MultipartError):
    """The request body exceeded the upload size limit."""


class ClientGoneError(MultipartError):
    """The client disconnected before the whole body was read."""


class LimitedBody:
    """Async byte stream that fails once more than ``limit`` bytes were read.

    The error is raised while reading, so nothing past the limit is ever
    buffered. Wraps ``Request.stream()``.
    """

    def __init__(self, stream: AsyncIterator[bytes], limit: int):
        self._stream = stream.__aiter__()
        self.limit = limit
        self.consumed = 0
        self.exceeded = False
        self.disconnected = False
        self.finished = False

    def __aiter__(self) -> "LimitedBody":
        return self

    async def __anext__(self) -> bytes:
        if self.exceeded:
            raise BodyTooLargeError(f"request body too large (limit {self.limit} bytes)")
        try:
            chunk = await self._stream.__anext__()
        except StopAsyncIteration:
            self.finished = True
            raise
        except ClientDisconnect:
            self.disconnected = True
            raise ClientGoneError("client disconnected before the body was read")

        self.consumed += len(chunk)
        if self.consumed > self.limit:
            self.exceeded = True
            raise BodyTooLargeError(f"request body too large (limit {self.limit} bytes)")
        return chunk

    async def drain(self) -> None:
        """Read and discard what is left of the body so the connection can be reused.

        Draining counts against the limit too: it stops as soon as the limit is
        passed or the client goes away, since such a connection won't carry
        another request.
        """
        if self.finished or self.exceeded or self.disconnected:
            return
        try:
            async for _ in self:
                pass
        except (BodyTooLargeError, ClientGoneError):
            # Recorded in exceeded / disconnected
            pass


async def drain_request(request: Request) -> None:
    """Discard the unread body of a request that doesn't use it."""
    try:
        async for _ in request.stream():
            pass
    except ClientDisconnect:
        pass


async def parse_multipart(headers: Headers, body: LimitedBody, max_memory: int) -> FormData:
    """Parse a multipart/form-data body.

    File parts larger than ``max_memory`` bytes are spooled to temporary files
    instead of being kept in memory. Any failure raises MultipartError.
    """
    content_type = headers.get("content-type", "")
    if not content_type.lower().startswith("multipart/form-data"):
        raise MultipartError(f"request Content-Type isn't multipart/form-data: '{content_type}'")

    parser = MultiPartParser(headers, body)
    parser.spool_max_size = max_memory
    try:
        return await parser.parse()
    except MultipartError:
        raise
    except (MultiPartException, FormParserError) as e:
        raise MultipartError(str(e)) from e


def iter_uploads(form: FormData) -> Iterator[Tuple[str, UploadFile]]:
    """Yield ``(field_name, file)`` for every file in the form.

    Fields come in the order they first appeared in the body, and files of a
    field in the order they were submitted. Plain text fields are skipped, and so
    are file parts with an empty filename, which browsers send for a file input
    left empty.
    """
    for field_name in form.keys():
        for value in form.getlist(field_name):
            if isinstance(value, UploadFile) and value.filename:
                yield field_name, value
