"""Template import, update and delete endpoints."""

import logging

from fastapi import APIRouter, Request

from backend import storage
from backend.identity import resolve_client_ip
from movie_games.errors import Forbidden
from movie_games.ingest import ingest
from movie_games.quota import authorize_owner

from .models import DeleteBody, ImportBody, UpdateBody

logger = logging.getLogger(__name__)

router = APIRouter()


def _owned_record(request_id: str, ip: str, require_success: bool = True) -> dict:
    record = storage.get_request(request_id)
    authorize_owner(record["clientIp"] if record else None, ip)
    if require_success and record["status"] != storage.STATUS_SUCCESS:
        raise Forbidden("Game generation not successful")
    return record


@router.post("/template/import")
def import_template(body: ImportBody, request: Request):
    """Validate a user-supplied template file and store it as a new record."""
    state = request.app.state
    ip = resolve_client_ip(request)
    payload = state.sanitizer.check_payload(body.to_json(), exclude=("template",))

    result = ingest(
        body.template,
        language=body.language or "zh-CN",
        sanitizer=state.sanitizer,
        strict_characters=storage.get_config()["strict_characters"],
    )
    # validated first so broken files do not use up the caller's quota
    state.gate.admit_creation(ip)

    request_id = storage.create_imported_request(ip, payload, result.template.to_json())
    result.template.request_id = request_id
    storage.replace_template(request_id, result.template.to_json())
    return {"id": request_id, **result.to_json()}


@router.post("/template/update")
def update_template(body: UpdateBody, request: Request):
    """Revalidate an edited template and replace the stored copy wholesale."""
    state = request.app.state
    ip = resolve_client_ip(request)
    _owned_record(body.id, ip)

    result = ingest(
        body.template,
        sanitizer=state.sanitizer,
        strict_characters=storage.get_config()["strict_characters"],
    )
    result.template.request_id = body.id
    source = storage.SOURCE_IMPORT if (body.source or "").strip().lower() == "import" else None
    storage.replace_template(body.id, result.template.to_json(), source=source)
    return {"id": body.id, **result.to_json()}


@router.post("/template/delete")
def delete_template(body: DeleteBody, request: Request):
    ip = resolve_client_ip(request)
    _owned_record(body.id, ip, require_success=False)
    storage.delete_record(body.id)
    return {"deleted": True}
