"""Request records: one row per generate/import call, holding its template.

A record's `client_ip` is the owner identity. The template is written only
once the whole ingestion pipeline has succeeded; failed and cancelled calls
keep their row for auditing but never a template.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from .core import connect, transaction

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_SUCCESS = "success"
STATUS_ERROR = "error"
STATUS_CANCEL = "cancel"

SOURCE_GENERATE = "generate"
SOURCE_IMPORT = "import"

# Never stored, never logged.
SECRET_KEYS = frozenset({"apiKey"})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _strip_secrets(payload: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in payload.items() if k not in SECRET_KEYS}


def _dump(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Creation and completion
# ---------------------------------------------------------------------------

def create_request(client_ip: str, route: str, payload: dict[str, Any], prompt: str | None = None) -> str:
    """Insert a pending request row and return its id."""
    request_id = str(uuid.uuid4())
    now = _now()
    with transaction() as con:
        con.execute(
            "INSERT INTO requests (id, created_at, updated_at, client_ip, route, status, request_payload, prompt)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (request_id, now, now, client_ip, route, STATUS_PENDING, _dump(_strip_secrets(payload)), prompt),
        )
    logger.debug("created request %s route=%s", request_id, route)
    return request_id


def finish_request(
    request_id: str,
    status: str,
    *,
    response: str | None = None,
    error_text: str | None = None,
    response_time_ms: int | None = None,
    template: dict[str, Any] | None = None,
) -> None:
    with transaction() as con:
        con.execute(
            "UPDATE requests SET status = ?, updated_at = ?, response = ?, error_text = ?,"
            " response_time_ms = ?, template = ?, template_source = ? WHERE id = ?",
            (
                status, _now(), response, error_text, response_time_ms, _dump(template),
                SOURCE_GENERATE if template is not None else None, request_id,
            ),
        )
    logger.info("request %s finished with status %s", request_id, status)


def create_imported_request(client_ip: str, payload: dict[str, Any], template: dict[str, Any]) -> str:
    """Persist an already validated imported template as a successful request."""
    request_id = str(uuid.uuid4())
    now = _now()
    with transaction() as con:
        con.execute(
            "INSERT INTO requests (id, created_at, updated_at, client_ip, route, status, request_payload,"
            " template, template_source) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                request_id, now, now, client_ip, "/template/import", STATUS_SUCCESS,
                _dump(_strip_secrets(payload)), _dump(template), SOURCE_IMPORT,
            ),
        )
    logger.info("imported template as request %s", request_id)
    return request_id


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_request(request_id: str) -> dict[str, Any] | None:
    """Return {id, clientIp, status, shared, route, templateSource, createdAt} or None."""
    with connect() as con:
        row = con.execute(
            "SELECT id, client_ip, status, shared, route, template_source, created_at"
            " FROM requests WHERE id = ?",
            (request_id,),
        ).fetchone()
    if row is None:
        return None
    return {
        "id": row["id"],
        "clientIp": row["client_ip"],
        "status": row["status"],
        "shared": bool(row["shared"]),
        "route": row["route"],
        "templateSource": row["template_source"],
        "createdAt": row["created_at"],
    }


def get_template(request_id: str) -> dict[str, Any] | None:
    with connect() as con:
        row = con.execute("SELECT template FROM requests WHERE id = ?", (request_id,)).fetchone()
    if row is None or row["template"] is None:
        return None
    return json.loads(row["template"])


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------

def replace_template(request_id: str, template: dict[str, Any], source: str | None = None) -> None:
    """Wholesale replace the stored template (after revalidation)."""
    with transaction() as con:
        con.execute(
            "UPDATE requests SET template = ?, updated_at = ? WHERE id = ?",
            (_dump(template), _now(), request_id),
        )
        if source:
            con.execute(
                "UPDATE requests SET template_source = ? WHERE id = ?", (source, request_id)
            )
    logger.info("replaced template of request %s", request_id)


def delete_record(request_id: str) -> bool:
    with transaction() as con:
        con.execute("DELETE FROM visits WHERE request_id = ?", (request_id,))
        cur = con.execute("DELETE FROM requests WHERE id = ?", (request_id,))
    deleted = cur.rowcount > 0
    if deleted:
        logger.info("deleted request %s", request_id)
    return deleted


# ---------------------------------------------------------------------------
# Sharing and visits
# ---------------------------------------------------------------------------

def set_shared(request_id: str, shared: bool, client_ip: str, user_agent: str | None) -> str | None:
    """Turn sharing on or off; returns the share record id (kept when switched off)."""
    with transaction(immediate=True) as con:
        row = con.execute(
            "SELECT id FROM shared_records WHERE request_id = ?", (request_id,)
        ).fetchone()
        share_id = row["id"] if row else None
        if shared:
            if share_id is None:
                share_id = str(uuid.uuid4())
                con.execute(
                    "INSERT INTO shared_records (id, request_id, shared_at, shared_ip, shared_user_agent)"
                    " VALUES (?, ?, ?, ?, ?)",
                    (share_id, request_id, _now(), client_ip, user_agent),
                )
            else:
                con.execute(
                    "UPDATE shared_records SET shared_at = ?, shared_ip = ?, shared_user_agent = ?"
                    " WHERE id = ?",
                    (_now(), client_ip, user_agent, share_id),
                )
        con.execute(
            "UPDATE requests SET shared = ?, updated_at = ? WHERE id = ?",
            (1 if shared else 0, _now(), request_id),
        )
    logger.info("request %s shared=%s", request_id, shared)
    return share_id


def record_visit(request_id: str, client_ip: str, user_agent: str | None) -> None:
    with transaction() as con:
        con.execute(
            "INSERT INTO visits (request_id, visited_at, client_ip, user_agent) VALUES (?, ?, ?, ?)",
            (request_id, _now(), client_ip, user_agent),
        )


def get_share_meta(request_id: str) -> dict[str, Any] | None:
    """Share state of a record: {sharedRecordId, requestId, shared, sharedAt, ownerIp}."""
    with connect() as con:
        row = con.execute(
            "SELECT r.client_ip, r.shared, s.id AS share_id, s.shared_at"
            " FROM requests r LEFT JOIN shared_records s ON s.request_id = r.id"
            " WHERE r.id = ?",
            (request_id,),
        ).fetchone()
    if row is None:
        return None
    return {
        "sharedRecordId": row["share_id"],
        "requestId": request_id,
        "shared": bool(row["shared"]),
        "sharedAt": row["shared_at"],
        "ownerIp": row["client_ip"],
    }


def list_records(request_ids: list[str], owner_ips: list[str]) -> list[dict[str, Any]]:
    """Records among `request_ids` created from one of `owner_ips`, newest first."""
    if not request_ids or not owner_ips:
        return []
    id_marks = ",".join("?" * len(request_ids))
    ip_marks = ",".join("?" * len(owner_ips))
    with connect() as con:
        rows = con.execute(
            "SELECT r.id, r.created_at, r.status, r.shared, r.template, r.template_source,"
            " s.id AS share_id, s.shared_at,"
            " (SELECT COUNT(*) FROM visits v WHERE v.request_id = r.id) AS play_count"
            " FROM requests r LEFT JOIN shared_records s ON s.request_id = r.id"
            f" WHERE r.id IN ({id_marks}) AND r.client_ip IN ({ip_marks})"
            " ORDER BY r.created_at DESC",
            (*request_ids, *owner_ips),
        ).fetchall()

    items = []
    for row in rows:
        template = json.loads(row["template"]) if row["template"] else {}
        meta = template.get("meta") or {}
        items.append({
            "requestId": row["id"],
            "sharedRecordId": row["share_id"],
            "title": template.get("title") or "Untitled",
            "createdAt": row["created_at"],
            "sharedAt": row["shared_at"],
            "shared": bool(row["shared"]),
            "status": row["status"],
            "source": row["template_source"],
            "synopsis": meta.get("synopsis", ""),
            "genre": meta.get("genre", ""),
            "language": meta.get("language", ""),
            "playCount": row["play_count"],
        })
    return items
