from __future__ import annotations

import asyncio
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

DEFAULT_MIME_TYPE = "application/pdf"
DEFAULT_FILE_NAME = "document.pdf"
ACCEPTED_MIME_PREFIXES = ("application/pdf", "image/")


@dataclass(frozen=True, slots=True)
class PickedFile:
    name: str
    size: int
    mime_type: str
    data: bytes


@dataclass(frozen=True, slots=True)
class PickResult:
    success: bool
    file: PickedFile | None = None
    error: str | None = None
    canceled: bool = False


class DocumentPicker(Protocol):
    async def pick(self) -> PickResult: ...


class LocalFilePicker:
    """Picks a document from the local filesystem; no path means the user canceled."""

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path) if path is not None else None

    async def pick(self) -> PickResult:
        if self.path is None:
            return PickResult(success=False, canceled=True)

        mime_type = guess_mime_type(self.path)
        if not mime_type.startswith(ACCEPTED_MIME_PREFIXES):
            return PickResult(
                success=False, error=f"Unsupported document type: {mime_type}"
            )

        try:
            data = await asyncio.to_thread(self.path.read_bytes)
        except OSError as error:
            return PickResult(success=False, error=str(error))

        return PickResult(
            success=True,
            file=PickedFile(
                name=self.path.name or DEFAULT_FILE_NAME,
                size=len(data),
                mime_type=mime_type,
                data=data,
            ),
        )


def guess_mime_type(path: Path) -> str:
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or DEFAULT_MIME_TYPE
