"""Image proxy: serves stored photo bytes from the object store under a stable app URL."""

import os

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from app.api.uploads import IMAGE_FORMATS
from app.core.dependencies import get_object_store

router = APIRouter()

CONTENT_TYPES = {ext: content_type for ext, content_type in IMAGE_FORMATS.values()}
CONTENT_TYPES["jpeg"] = "image/jpeg"
DEFAULT_CONTENT_TYPE = "image/jpeg"
IMAGE_CACHE_CONTROL = "public, max-age=31536000, immutable"


def content_type_for(key: str) -> str:
    extension = os.path.splitext(key)[1].lstrip(".").lower()
    return CONTENT_TYPES.get(extension, DEFAULT_CONTENT_TYPE)


@router.get("/image/{path:path}")
def image_proxy(path: str, store=Depends(get_object_store)):
    # ObjectNotFound maps to 404, other storage failures to 500
    data = store.get(path)
    # Keys are never overwritten, so the bytes can be cached for good
    headers = {"Cache-Control": IMAGE_CACHE_CONTROL}
    return Response(content=data, media_type=content_type_for(path), headers=headers)
