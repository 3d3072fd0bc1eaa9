from __future__ import annotations

import base64
import logging
import mimetypes
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from .error_codes import ErrorCode

logger = logging.getLogger(__name__)

MAX_IMAGES_PER_MESSAGE = 20  # provider limit per message
ACCEPTED_IMAGE_SUBTYPES = ("png", "jpeg", "webp")

_DECODE_WORKERS = 4


class AttachmentDecodeError(RuntimeError):
    def __init__(self, message: str, *, source: str | None = None) -> None:
        super().__init__(message)
        self.source = source
        self.code = ErrorCode.ATTACHMENT_DECODE_FAILED


@dataclass(frozen=True, slots=True)
class PastedItem:
    mime: str
    data: bytes | None = None
    path: Path | None = None

    @property
    def is_accepted_image(self) -> bool:
        major, _, minor = self.mime.lower().partition("/")
        return major == "image" and minor in ACCEPTED_IMAGE_SUBTYPES

    @property
    def source(self) -> str:
        return str(self.path) if self.path is not None else f"<{self.mime} clipboard item>"


def stage_attachments(existing: Sequence[str], new: Iterable[str], *, cap: int = MAX_IMAGES_PER_MESSAGE) -> list[str]:
    """Append `new` after `existing`, keeping only the earliest `cap` references."""

    return [*existing, *new][: max(0, cap)]


def to_data_url(item: PastedItem) -> str:
    payload = item.data
    if payload is None:
        if item.path is None:
            raise AttachmentDecodeError("item has neither data nor path", source=item.source)
        try:
            payload = item.path.read_bytes()
        except OSError as e:
            raise AttachmentDecodeError(f"failed to read image: {e}", source=item.source) from e
    if not payload:
        raise AttachmentDecodeError("image is empty", source=item.source)
    encoded = base64.b64encode(payload).decode("ascii")
    return f"data:{item.mime.lower()};base64,{encoded}"


def _decode_one(item: PastedItem) -> str | None:
    try:
        return to_data_url(item)
    except AttachmentDecodeError as e:
        logger.warning("%s: dropping attachment %s: %s", e.code.value, e.source, e)
        return None


def decode_pasted_images(items: Iterable[PastedItem]) -> list[str]:
    """
    Decode a paste batch into data URLs.

    Non-image items are ignored. Each image is decoded on a worker thread; a
    failed item is dropped without affecting the rest. Arrival order is kept.
    """

    images = [item for item in items if item.is_accepted_image]
    if not images:
        return []
    with ThreadPoolExecutor(max_workers=min(_DECODE_WORKERS, len(images))) as pool:
        decoded = list(pool.map(_decode_one, images))
    out = [url for url in decoded if url is not None]
    if not out:
        logger.warning("No valid images were processed")
    return out


def items_from_paths(paths: Iterable[str | Path]) -> list[PastedItem]:
    out: list[PastedItem] = []
    for raw in paths:
        path = Path(raw).expanduser()
        mime, _ = mimetypes.guess_type(path.name)
        out.append(PastedItem(mime=mime or "application/octet-stream", path=path))
    return out
