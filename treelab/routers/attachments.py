# treelab/routers/attachments.py
from typing import Optional
from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile
from treelab.deps import get_attachment_store, get_optional_identity, get_current_user
from treelab.errors import ClientInputError, AuthenticationError, AuthorizationError
from treelab.models.user import User
from treelab.services.session_service import SessionIdentity
from treelab.services.attachment_service import (
    AttachmentStore,
    CACHE_CONTROL,
    check_slug,
    content_disposition,
    guess_content_type,
    split_slug,
)
import logging

router = APIRouter(tags=["attachments"])
logger = logging.getLogger("treelab.attachments_router")


@router.get("/attachments/{slug:path}")
async def serve_attachment(
    slug: str,
    name: Optional[str] = Query(None),
    identity: Optional[SessionIdentity] = Depends(get_optional_identity),
    store: AttachmentStore = Depends(get_attachment_store),
):
    """
    Serve a file from the owner's private attachments directory.
    Only the owner's own session may read it.
    """
    parts = split_slug(slug)
    check_slug(parts)

    if identity is None:
        raise AuthenticationError()
    if parts[0] != identity.user_id:
        logger.warning(f"User {identity.user_id} requested an attachment owned by '{parts[0]}'")
        raise AuthorizationError()

    content = await store.read(parts)

    stored_name = parts[-1]
    content_type = guess_content_type(stored_name)
    headers = {
        "Content-Disposition": content_disposition(content_type, name or stored_name),
        "Cache-Control": CACHE_CONTROL,
    }
    return Response(content=content, media_type=content_type, headers=headers)


@router.post("/api/upload/attachment")
async def upload_attachment(
    file: Optional[UploadFile] = File(None),
    unique_file_name: Optional[str] = Form(None),
    file_name: Optional[str] = Form(None),
    current_user: User = Depends(get_current_user),
    store: AttachmentStore = Depends(get_attachment_store),
):
    if file is None or not unique_file_name or not file_name:
        raise ClientInputError("Missing required fields")

    content = await file.read()
    ref = await store.save(current_user.id, unique_file_name, content, original_file_name=file_name)
    return {
        "attachment_info": {
            "path": ref.server_path,
            "name": ref.original_file_name,
            "mime_type": ref.content_type,
        }
    }
