import logging
import os
import posixpath
import uuid

from django.core.files.storage import default_storage

from common.exceptions import StorageUnavailableError

logger = logging.getLogger(__name__)


def store_image(upload, prefix):
    """Save an already-validated image upload under `prefix` and return its storage name.

    Any storage failure surfaces as `StorageUnavailableError` so callers can abort
    before writing rows that would reference a missing file.
    """
    extension = os.path.splitext(getattr(upload, "name", "") or "")[1].lower() or ".jpg"
    name = posixpath.join(prefix, f"{uuid.uuid4().hex}{extension}")
    try:
        return default_storage.save(name, upload)
    except OSError as exc:
        logger.exception("image_upload_failed prefix=%s", prefix)
        raise StorageUnavailableError(details={"image": ["Image upload failed."]}) from exc


def discard_image(name):
    if not name:
        return
    try:
        default_storage.delete(name)
    except OSError:
        logger.warning("image_cleanup_failed name=%s", name)


def image_url(name, request=None):
    if not name:
        return ""
    url = default_storage.url(name)
    if request is None:
        return url
    return request.build_absolute_uri(url)
