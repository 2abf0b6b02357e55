"""Request helpers shared by the routers."""

from __future__ import annotations

from typing import Any, TypeVar

from fastapi import HTTPException, Request, UploadFile

from ..documents import Upload
from ..errors import Permission

T = TypeVar("T")


def remote_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def ensure(permission: Permission[T]) -> T:
    """Unwrap a permission result or answer 403."""
    if not permission:
        raise HTTPException(status_code=403, detail="not permitted")
    return permission.subject  # type: ignore[return-value]


def bracket_params(request: Request, name: str) -> dict[str, Any]:
    """
    Collect ``name[key]=value`` query parameters into a dict.
    ``name[key][]`` repeats are gathered into lists.
    """
    prefix = f"{name}["
    found: dict[str, Any] = {}
    for key in request.query_params.keys():
        if not key.startswith(prefix) or not key.endswith("]"):
            continue
        inner = key[len(prefix) : -1]
        if inner.endswith("]["):
            found[inner[:-2]] = request.query_params.getlist(key)
        else:
            found[inner] = request.query_params.get(key)
    return found


async def read_upload(file: UploadFile) -> Upload:
    data = await file.read()
    return Upload(
        filename=file.filename or "upload",
        content_type=file.content_type or "application/octet-stream",
        data=data,
    )
