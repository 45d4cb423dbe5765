import io
import logging

import cloudinary.uploader
from starlette.concurrency import run_in_threadpool

from config import AVATAR_FOLDER, AVATAR_SIZE


logger = logging.getLogger(__name__)

MAX_AVATAR_BYTES = 5 * 1024 * 1024


class AvatarStorageError(Exception):
    pass


async def upload_avatar(data: bytes):
    """Upload an image, stored as a square PNG. Returns (url, public_id)."""
    result = await run_in_threadpool(
        cloudinary.uploader.upload,
        io.BytesIO(data),
        folder=AVATAR_FOLDER,
        resource_type="image",
        format="png",
        transformation=[{"width": AVATAR_SIZE, "height": AVATAR_SIZE, "crop": "fill"}],
    )
    if "secure_url" not in result:
        raise AvatarStorageError(result.get("error", "Avatar upload failed"))
    return result["secure_url"], result["public_id"]


async def delete_avatar(public_id: str):
    if not public_id:
        return
    result = await run_in_threadpool(cloudinary.uploader.destroy, public_id, resource_type="image")
    if result.get("result") not in ("ok", "not found"):
        logger.warning("Could not delete avatar %s: %s", public_id, result)
