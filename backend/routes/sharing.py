"""Sharing, play and record-listing endpoints."""

from fastapi import APIRouter, Request

from backend import storage
from backend.identity import resolve_client_ip
from movie_games.errors import Forbidden, MalformedInput, NotFound
from movie_games.quota import LOOPBACK, authorize_owner, same_identity

from .models import RecordsBody, ShareBody

router = APIRouter()

MAX_RECORD_IDS = 200


@router.post("/share")
def share(body: ShareBody, request: Request):
    """Turn sharing of an owned, successfully generated record on or off."""
    ip = resolve_client_ip(request)
    record = storage.get_request(body.id)
    authorize_owner(record["clientIp"] if record else None, ip)
    if record["status"] != storage.STATUS_SUCCESS:
        raise Forbidden("Game generation not successful, cannot share")

    if body.shared:
        request.app.state.gate.admit_share(ip)
    share_id = storage.set_shared(body.id, body.shared, ip, request.headers.get("user-agent"))
    return {"sharedRecordId": share_id, "shared": body.shared}


@router.get("/play/{request_id}")
def play(request_id: str, request: Request):
    """Template of a shared record, or of the caller's own record."""
    ip = resolve_client_ip(request)
    record = storage.get_request(request_id)
    if record is None:
        raise NotFound("Game not found")
    if not record["shared"] and not same_identity(record["clientIp"], ip):
        # indistinguishable from a missing record
        raise NotFound("Game not found")
    template = storage.get_template(request_id)
    if template is None:
        raise NotFound("Game not found")
    storage.record_visit(request_id, ip, request.headers.get("user-agent"))
    return template


@router.post("/records")
def list_records(body: RecordsBody, request: Request):
    """The caller's records among the given ids, with share state and play counts."""
    if len(body.ids) > MAX_RECORD_IDS:
        raise MalformedInput(f"At most {MAX_RECORD_IDS} ids per request", path="ids")
    ip = resolve_client_ip(request)
    owner_ips = sorted(LOOPBACK) if ip in LOOPBACK else [ip]
    return storage.list_records(body.ids, owner_ips)


@router.get("/records/meta/{request_id}")
def record_meta(request_id: str, request: Request):
    """Share state of a record; the share id is only revealed to the owner."""
    ip = resolve_client_ip(request)
    meta = storage.get_share_meta(request_id)
    if meta is None:
        raise NotFound("Record not found")
    is_owner = same_identity(meta.pop("ownerIp"), ip)
    if not is_owner:
        meta["sharedRecordId"] = None
    return {**meta, "isOwner": is_owner}
