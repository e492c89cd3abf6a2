import errno
import logging
import os
from pathlib import Path
from typing import Optional, Union

import aiofiles
import aiofiles.os
from aiofiles.threadpool.binary import AsyncBufferedIOBase, AsyncBufferedReader

# Permissions of newly created files, before the umask
FILE_MODE = 0o666
DIR_MODE = 0o755


class SandboxEscapeError(FileNotFoundError):
    """A name resolved to a location outside the storage root.

    Subclasses FileNotFoundError so callers cannot tell a rejected name from a
    missing file.
    """

    def __init__(self, name: str):
        super().__init__(errno.ENOENT, os.strerror(errno.ENOENT), name)


async def ensure_storage_dir(path: Union[str, Path]) -> None:
    """Create the storage directory and its parents if they don't exist."""
    await aiofiles.os.makedirs(path, mode=DIR_MODE, exist_ok=True)


# Blocking path calls, run in the aiofiles thread pool
_realpath = aiofiles.os.wrap(os.path.realpath)
_open_fd = aiofiles.os.wrap(os.open)


class StorageRoot:
    """File access confined to a single directory.

    Every name is resolved against the root (following ``..`` and symlinks)
    and rejected if it lands outside of it. On platforms that support it the
    root directory is held open and files are opened relative to that
    descriptor. Get one with ``await StorageRoot.open_dir(path)`` and use it as
    a context manager so the directory handle is released.
    """

    def __init__(self, path: str, fd: Optional[int], logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger(__name__)
        self._path = path
        self._fd = fd
        self._closed = False

    @classmethod
    async def open_dir(cls, path: Union[str, Path], logger: Optional[logging.Logger] = None) -> "StorageRoot":
        """Open the directory at ``path`` as a storage root."""
        resolved = await _realpath(path)
        if os.open in os.supports_dir_fd:
            fd = await _open_fd(resolved, os.O_RDONLY | getattr(os, "O_DIRECTORY", 0))
            return cls(resolved, fd, logger)
        if not await aiofiles.os.path.isdir(resolved):
            raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), str(path))
        return cls(resolved, None, logger)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None
        self._closed = True

    def __enter__(self) -> "StorageRoot":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    async def _resolve(self, name: str) -> str:
        """Return ``name`` as a path relative to the root, or raise SandboxEscapeError."""
        if self._closed:
            raise ValueError("storage root is closed")
        if not name or "\x00" in name or os.path.isabs(name):
            self._reject(name)

        target = await _realpath(os.path.join(self._path, name))
        if target == self._path or os.path.commonpath([self._path, target]) != self._path:
            self._reject(name)

        return os.path.relpath(target, self._path)

    def _reject(self, name: str) -> None:
        self._logger.warning(f"rejected path '{name}' outside of storage root {self._path}")
        raise SandboxEscapeError(name)

    def _opener(self, path: str, flags: int) -> int:
        if self._fd is not None:
            return os.open(path, flags, FILE_MODE, dir_fd=self._fd)
        return os.open(os.path.join(self._path, path), flags, FILE_MODE)

    async def open(self, name: str) -> AsyncBufferedReader:
        """Open an existing file inside the root for reading."""
        relative = await self._resolve(name)
        return await aiofiles.open(relative, "rb", opener=self._opener)

    async def create(self, name: str) -> AsyncBufferedIOBase:
        """Create (or truncate) a file inside the root for writing."""
        relative = await self._resolve(name)
        return await aiofiles.open(relative, "wb", opener=self._opener)

    async def remove(self, name: str) -> None:
        relative = await self._resolve(name)
        if self._fd is not None:
            await aiofiles.os.remove(relative, dir_fd=self._fd)
        else:
            await aiofiles.os.remove(os.path.join(self._path, relative))
