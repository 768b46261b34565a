# treelab/services/attachment_service.py
"""
Private per-user attachment storage under <DATA_DIR>/users/<owner>/attachments.

All path handling goes through AttachmentStore.resolve(), which rejects
traversal markers up front and then checks the fully resolved path
(symlinks followed) against the resolved owner root.
"""
import asyncio
import logging
import mimetypes
import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

from treelab.errors import ClientInputError, AuthorizationError, NotFoundError, UnexpectedError

logger = logging.getLogger("treelab.attachments")

DEFAULT_CONTENT_TYPE = "application/octet-stream"
CACHE_CONTROL = "private, max-age=31536000, immutable"


@dataclass(frozen=True)
class AttachmentRef:
    owner_id: str
    stored_file_name: str
    original_file_name: str
    content_type: str

    @property
    def server_path(self) -> str:
        return f"/attachments/{self.owner_id}/{self.stored_file_name}"


def _is_bad_segment(segment: str) -> bool:
    return (
        not segment
        or segment == "."
        or ".." in segment
        or "\x00" in segment
        or "/" in segment
        or "\\" in segment
    )


def split_slug(slug: str) -> List[str]:
    return slug.split("/") if slug else []


def check_slug(slug: List[str]) -> None:
    """Cheap early reject: empty slugs, missing file name, traversal markers."""
    if not slug or len(slug) < 2:
        raise ClientInputError("Invalid file path")
    if any(_is_bad_segment(part) for part in slug):
        raise ClientInputError("Invalid file path")


def guess_content_type(file_name: str) -> str:
    content_type, _ = mimetypes.guess_type(file_name, strict=False)
    return content_type or DEFAULT_CONTENT_TYPE


def _display_name(name: str) -> str:
    # cosmetic only; strip anything that could break out of the header value
    cleaned = "".join(
        ch for ch in name
        if ch not in '"\\' and unicodedata.category(ch)[0] != "C"
    ).strip()
    return cleaned or "download"


def content_disposition(content_type: str, original_file_name: str) -> str:
    disposition = "inline" if content_type.startswith("image/") else "attachment"
    name = _display_name(original_file_name)
    if not name.isascii():
        ascii_fallback = name.encode("ascii", "replace").decode("ascii").replace("?", "_")
        return f"{disposition}; filename=\"{ascii_fallback}\"; filename*=utf-8''{quote(name, safe='')}"
    return f'{disposition}; filename="{name}"'


class AttachmentStore:
    def __init__(self, users_dir: Path):
        self.users_dir = Path(users_dir)

    def owner_root(self, owner_id: str) -> Path:
        return self.users_dir / owner_id / "attachments"

    def resolve(self, slug: List[str]) -> Path:
        """
        Map a URL slug [owner, ..., stored_name] to an absolute file path.

        Raises ClientInputError for empty or traversal-looking slugs and
        AuthorizationError when the resolved path leaves the owner root.
        """
        check_slug(slug)
        owner_id, file_name = slug[0], slug[-1]

        root = self.owner_root(owner_id).resolve()
        users_root = self.users_dir.resolve()
        if users_root not in root.parents:
            raise AuthorizationError()

        target = (root / file_name).resolve()
        if root not in target.parents:
            logger.warning(f"Blocked attachment path escaping owner root for owner '{owner_id}'")
            raise AuthorizationError()
        return target

    async def read(self, slug: List[str]) -> bytes:
        path = self.resolve(slug)
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, path.read_bytes)
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise NotFoundError("Attachment not found")
        except OSError:
            logger.error(f"Failed to serve attachment {'/'.join(slug)}", exc_info=True)
            raise UnexpectedError()

    async def save(self, owner_id: str, stored_file_name: str, content: bytes,
                   original_file_name: Optional[str] = None) -> AttachmentRef:
        if _is_bad_segment(stored_file_name):
            raise ClientInputError("Invalid file name")
        path = self.resolve([owner_id, stored_file_name])

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)

        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(None, _write)
        except OSError:
            logger.error(f"Failed to save attachment for user {owner_id}", exc_info=True)
            raise UnexpectedError()

        ref = AttachmentRef(
            owner_id=owner_id,
            stored_file_name=stored_file_name,
            original_file_name=original_file_name or stored_file_name,
            content_type=guess_content_type(stored_file_name),
        )
        logger.info(f"Saved attachment for user {owner_id} at {ref.server_path}")
        return ref
