import logging
import os
from typing import AsyncIterator, Optional
from urllib.parse import quote

import aiofiles.os
from aiofiles.threadpool.binary import AsyncBufferedReader
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from starlette.datastructures import FormData, UploadFile

from fileshare.app.services.request_body import (
    LimitedBody,
    MultipartError,
    drain_request,
    iter_uploads,
    parse_multipart,
)
from fileshare.app.services.storage_root import StorageRoot, ensure_storage_dir
from fileshare.config import UploaderConfig

DOWNLOAD_PREFIX = "/download/"
LIST_FILE_NAME = "list.txt"
LIST_HEADER = "Files currently available:\n"
UPLOAD_SUCCESS_MESSAGE = "All files uploaded successfully\n"

# Buffer used to stream one upload into storage
COPY_BUFFER_SIZE = 1 << 20  # 1MB
DOWNLOAD_CHUNK_SIZE = 64 * 1024


def content_disposition(file_name: str) -> str:
    """Build an attachment Content-Disposition header for ``file_name``.

    Only the base name is used so a crafted name can't smuggle path
    components into the header. Names that aren't plain printable ASCII are
    sent percent-encoded as ``filename*``.
    """
    base_name = os.path.basename(file_name)
    if base_name.isascii() and base_name.isprintable():
        return f"attachment; filename={base_name}"
    return f"attachment; filename*=utf-8''{quote(base_name, safe='')}"


class FileHandlers:
    """Request handlers for uploading, downloading and listing stored files.

    The handlers keep no state of their own: every request resolves names
    against the storage directory from ``uploader``.
    """

    def __init__(self, uploader: UploaderConfig, logger: logging.Logger):
        self.uploader = uploader
        self.logger = logger

    def _log_request(self, request: Request) -> None:
        client = request.client
        remote = f"{client.host}:{client.port}" if client else "unknown"
        self.logger.info(f"received request from {remote} for {request.url.path}")

    def _internal_error(self) -> HTTPException:
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="internal error")

    async def upload(self, request: Request) -> Response:
        """Store every file of a multipart/form-data POST in the storage directory."""
        self._log_request(request)
        body = LimitedBody(request.stream(), self.uploader.max_upload_size)
        try:
            if request.method != "POST":
                raise HTTPException(status_code=status.HTTP_405_METHOD_NOT_ALLOWED, detail="method must be POST")

            try:
                form = await parse_multipart(request.headers, body, self.uploader.max_form_mem_size)
            except MultipartError as e:
                self.logger.error(f"error multipart parsing: {e}")
                raise self._internal_error()

            try:
                return await self._store_files(form)
            finally:
                await form.close()
        finally:
            await body.drain()

    async def _store_files(self, form: FormData) -> Response:
        try:
            await ensure_storage_dir(self.uploader.storage_dir)
        except OSError as e:
            self.logger.error(f"error creating file directory: {e}")
            raise self._internal_error()

        try:
            root = await StorageRoot.open_dir(self.uploader.storage_dir, self.logger)
        except OSError as e:
            self.logger.error(f"error opening storage root: {e}")
            raise self._internal_error()

        upload_errors = []
        with root:
            for field_name, upload in iter_uploads(form):
                error = await self._store_file(root, field_name, upload)
                if error:
                    upload_errors.append(error)

        if upload_errors:
            return JSONResponse(content=upload_errors, status_code=status.HTTP_207_MULTI_STATUS)
        return PlainTextResponse(UPLOAD_SUCCESS_MESSAGE, status_code=status.HTTP_200_OK)

    async def _store_file(self, root: StorageRoot, field_name: str, upload: UploadFile) -> Optional[str]:
        """Copy one uploaded file into storage. Returns an error message on failure."""
        file_name = upload.filename or ""

        # Rewinding fails if the spooled temporary file is already gone
        try:
            await upload.seek(0)
        except (OSError, ValueError) as e:
            msg = f"error getting file '{file_name}' from field '{field_name}'"
            self.logger.error(f"{msg}: {e}")
            return msg

        try:
            dst = await root.create(file_name)
        except OSError as e:
            msg = f"error creating file '{file_name}'"
            self.logger.error(f"{msg}: {e}")
            await upload.close()
            return msg

        try:
            while chunk := await upload.read(COPY_BUFFER_SIZE):
                await dst.write(chunk)
            await dst.close()
        except (OSError, ValueError) as e:
            msg = f"error writing file '{file_name}'"
            self.logger.error(f"{msg}: {e}")
            await upload.close()
            await self._close_quietly(dst)
            try:
                await root.remove(file_name)
            except OSError as remove_error:
                self.logger.warning(f"failed to remove partial file '{file_name}': {remove_error}")
            return msg

        # Closed right away, a single request may carry many files
        await upload.close()
        return None

    async def _close_quietly(self, handle) -> None:
        try:
            await handle.close()
        except OSError as e:
            self.logger.warning(f"error closing file: {e}")

    async def download(self, request: Request, name: str) -> Response:
        """Serve a single stored file as an attachment."""
        self._log_request(request)
        try:
            return await self._download(request, name)
        finally:
            await drain_request(request)

    async def _download(self, request: Request, name: str) -> Response:
        if request.method != "GET":
            raise HTTPException(status_code=status.HTTP_405_METHOD_NOT_ALLOWED, detail="method must be GET")
        if not name:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="file name is not indicated")

        try:
            root = await StorageRoot.open_dir(self.uploader.storage_dir, self.logger)
        except OSError as e:
            self.logger.error(f"error opening storage root: {e}")
            raise self._internal_error()

        with root:
            try:
                handle = await root.open(name)
            except OSError as e:
                # Missing, unreadable and out-of-root names all look the same to the client
                self.logger.info(f"file '{name}' could not be opened: {e}")
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="file is not found")

        try:
            stat = await aiofiles.os.stat(handle.fileno())
        except OSError as e:
            self.logger.error(f"error getting file info for '{name}': {e}")
            await self._close_quietly(handle)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="unable to access file")

        headers = {
            "Content-Length": str(stat.st_size),
            "Content-Disposition": content_disposition(name),
        }
        return StreamingResponse(
            self._iter_file(handle, name),
            status_code=status.HTTP_200_OK,
            media_type="application/octet-stream",
            headers=headers,
        )

    async def _iter_file(self, handle: AsyncBufferedReader, name: str) -> AsyncIterator[bytes]:
        # Headers are already sent by now, errors can only be logged
        try:
            while chunk := await handle.read(DOWNLOAD_CHUNK_SIZE):
                yield chunk
        except OSError as e:
            self.logger.error(f"Error transferring file {name}: {e}")
        finally:
            await self._close_quietly(handle)

    async def list_files(self, request: Request) -> Response:
        """Return a plain text document naming every entry of the storage directory."""
        self._log_request(request)
        try:
            if request.method != "GET":
                raise HTTPException(status_code=status.HTTP_405_METHOD_NOT_ALLOWED, detail="method must be GET")

            try:
                names = await aiofiles.os.listdir(self.uploader.storage_dir)
            except OSError as e:
                self.logger.error(f"error reading storage directory: {e}")
                raise self._internal_error()

            file_list = LIST_HEADER + "".join(f"{entry}\n" for entry in names)
            return PlainTextResponse(
                file_list,
                status_code=status.HTTP_200_OK,
                headers={"Content-Disposition": f"attachment; filename={LIST_FILE_NAME}"},
            )
        finally:
            await drain_request(request)
