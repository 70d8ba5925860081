"""Artefact downloads: stream an accepted response body to disk with a digest.

:class:`ArtefactWriter` is a write-through sink that appends bytes to a file
while counting them and feeding a :mod:`hashlib` digest, so a download never
needs to hold the body in memory.  :func:`download_artefact` glues it to a
guarded execution and backs :meth:`RestGuard.do_download`.
"""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Optional, Union

import httpx

from .errors import FileIOError, InvalidResponse, TransportError
from .network.policy import DOWNLOAD_CHUNK_SIZE
from .specs import RestArtefact, RestTicket

if TYPE_CHECKING:  # pragma: no cover
    from .guard import RestGuard

__all__ = ["ArtefactWriter", "download_artefact", "DEFAULT_DIGEST_ALGORITHM"]

logger = logging.getLogger(__name__)

DEFAULT_DIGEST_ALGORITHM = "md5"


class ArtefactWriter:
    """Write-through file sink that tracks the byte count and a hex digest.

    The file is created (or truncated) on construction.  Every :meth:`write`
    appends to the file first, then updates the counter, then feeds the
    digest, so the three always describe the same bytes.

    Args:
        path: Destination file.
        algorithm: Any :func:`hashlib.new` algorithm name.

    Raises:
        FileIOError: The file cannot be created.
        ValueError: ``algorithm`` is not supported by :mod:`hashlib`.
    """

    def __init__(self, path: Union[str, "os.PathLike[str]"], algorithm: str = DEFAULT_DIGEST_ALGORITHM) -> None:
        self._path = Path(path)
        self._algorithm = algorithm.lower()
        try:
            self._hasher = hashlib.new(self._algorithm, usedforsecurity=False)
        except ValueError as exc:
            raise ValueError(f"unsupported digest algorithm '{algorithm}'") from exc
        try:
            self._handle: BinaryIO = self._path.open("wb")
        except OSError as exc:
            raise FileIOError(f"error on create file {self._path}: {exc}", path=str(self._path)) from exc
        self._count = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def algorithm(self) -> str:
        return self._algorithm

    @property
    def count(self) -> int:
        return self._count

    @property
    def closed(self) -> bool:
        return self._handle.closed

    @property
    def digest(self) -> str:
        return self._hasher.hexdigest()

    def md5(self) -> str:
        return self.digest

    def write(self, data: bytes) -> int:
        """Append ``data`` to the file and account for it.

        Raises:
            FileIOError: The file is closed or the write failed.
        """
        if self._handle.closed:
            raise FileIOError(f"write to closed file {self._path}", path=str(self._path))
        try:
            written = self._handle.write(data)
        except OSError as exc:
            raise FileIOError(f"error on write file {self._path}: {exc}", path=str(self._path)) from exc
        self._count += written
        self._hasher.update(data[:written])
        return written

    def close(self) -> None:
        if self._handle.closed:
            return
        try:
            self._handle.close()
        except OSError as exc:
            raise FileIOError(f"error on close file {self._path}: {exc}", path=str(self._path)) from exc

    def to_artefact(self) -> RestArtefact:
        return RestArtefact(
            path=str(self._path),
            size=self._count,
            digest=self.digest,
            algorithm=self._algorithm,
        )

    def __enter__(self) -> "ArtefactWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _remove_partial(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("failed to remove partial download", extra={"path": str(path), "error": str(exc)})


def download_artefact(
    guard: "RestGuard",
    ticket: RestTicket,
    destination: Union[str, "os.PathLike[str]"],
    *,
    algorithm: str = DEFAULT_DIGEST_ALGORITHM,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> RestArtefact:
    """Execute ``ticket`` through ``guard`` and stream the body to ``destination``.

    The destination is created before any network activity.  Only a ``200``
    response is accepted.  Failures while reading the body or writing the file
    abort the download without retrying, and the partial file is removed.

    Returns:
        The :class:`RestArtefact` describing the written file.

    Raises:
        FileIOError: The destination could not be created or written.
        InvalidResponse: No response, or a status other than 200.
        TransportError: The request failed, or the body could not be read.
        ValidationFailed: Every attempt was rejected by the service validator.
    """
    writer = ArtefactWriter(destination, algorithm=algorithm)
    completed = False
    try:
        with writer:
            guard.do(ticket)
            response: Optional[httpx.Response] = ticket.response
            if response is None:
                raise InvalidResponse("invalid response received")
            if response.status_code != 200:
                raise InvalidResponse(
                    f"received response code {response.status_code}",
                    status_code=response.status_code,
                )
            try:
                for chunk in response.iter_bytes(chunk_size):
                    writer.write(chunk)
            except httpx.TransportError as exc:
                raise TransportError(f"error reading body from {response.url}: {exc}") from exc
        completed = True
    finally:
        if not completed:
            _remove_partial(writer.path)

    artefact = writer.to_artefact()
    logger.info(
        "artefact downloaded",
        extra={
            "ticket": ticket.id,
            "service": ticket.service_name,
            "path": artefact.path,
            "size": artefact.size,
            "algorithm": artefact.algorithm,
            "digest": artefact.digest,
        },
    )
    return artefact
