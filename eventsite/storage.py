"""Local filesystem storage for user avatars and their resized variants."""

import io
import shutil
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from .config import settings
from .logger import logger

ORIGINAL = "original"
THUMB = "thumb"
VARIANTS = (ORIGINAL, THUMB)

FORMAT_EXTENSIONS = {"PNG": "png", "JPEG": "jpg", "GIF": "gif", "WEBP": "webp"}


class InvalidImageError(ValueError):
    """Upload is not an image format we accept, or exceeds the size limit."""


class AvatarStorage:
    """One avatar per user, stored as ``<root>/avatars/<user_id>/<variant>.<ext>``.

    The thumb variant fits within AVATAR_THUMB_SIZE x AVATAR_THUMB_SIZE,
    keeping the aspect ratio.
    """

    def __init__(self, root: str | Path | None = None):
        self.root = Path(root or settings.MEDIA_ROOT) / "avatars"

    def _user_dir(self, user_id: int) -> Path:
        return self.root / str(user_id)

    def path_for(self, user_id: int, filename: str, variant: str = ORIGINAL) -> Path:
        if variant not in VARIANTS:
            raise ValueError(f"unknown avatar variant '{variant}'")
        extension = Path(filename).suffix
        return self._user_dir(user_id) / f"{variant}{extension}"

    def save(self, user_id: int, data: bytes) -> tuple[str, str]:
        """Store the original and thumb variants, replacing any previous avatar.

        Returns:
            (stored filename, content type)

        Raises:
            InvalidImageError: data is too large or not a supported image
        """
        if len(data) > settings.AVATAR_MAX_BYTES:
            raise InvalidImageError(
                f"avatar exceeds {settings.AVATAR_MAX_BYTES} bytes"
            )
        try:
            with Image.open(io.BytesIO(data)) as probe:
                probe.verify()
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise InvalidImageError("upload is not a readable image") from e

        extension = FORMAT_EXTENSIONS.get(image.format or "")
        if extension is None:
            raise InvalidImageError(f"unsupported image format '{image.format}'")

        self.delete(user_id)
        user_dir = self._user_dir(user_id)
        user_dir.mkdir(parents=True, exist_ok=True)

        filename = f"avatar.{extension}"
        original_path = self.path_for(user_id, filename, ORIGINAL)
        original_path.write_bytes(data)

        thumb = image.copy()
        size = settings.AVATAR_THUMB_SIZE
        thumb.thumbnail((size, size))
        thumb.save(self.path_for(user_id, filename, THUMB), format=image.format)

        logger.debug(f"Stored avatar for user id={user_id} ({image.format}, {image.size})")
        return filename, Image.MIME.get(image.format, "application/octet-stream")

    def open_path(self, user_id: int, filename: str, variant: str = ORIGINAL) -> Path | None:
        path = self.path_for(user_id, filename, variant)
        return path if path.exists() else None

    def delete(self, user_id: int) -> None:
        user_dir = self._user_dir(user_id)
        if user_dir.exists():
            shutil.rmtree(user_dir)
            logger.debug(f"Removed avatar files for user id={user_id}")


avatar_storage = AvatarStorage()
