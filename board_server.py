#!/usr/bin/env python3
"""
Board Server
------------
JSON API for a personal board: sticky notes, kanban tasks and calendar
entries, persisted per user in SQLite.

Usage:
    export BOARD_SECRET=$(openssl rand -hex 32)
    python board_server.py --port 3000 --db ~/.local/share/board/board.db

API (all but auth and /health need "Authorization: Bearer <token>"):
    POST   /api/auth/register            { username, email, password }
    POST   /api/auth/login               { email, password }

    GET    /api/sticky-notes             → notes sorted by order
    POST   /api/sticky-notes             { text?, color? } → appended note (201)
    PUT    /api/sticky-notes/reorder     { orderedIds: [...] } → full list
    PUT    /api/sticky-notes/<id>        { text?, color? }
    DELETE /api/sticky-notes/<id>

    GET    /api/tasks[?status=]          → tasks grouped by column, by order
    GET    /api/tasks/<id>
    POST   /api/tasks                    { title, description?, priority?, due_date?, status? }
    PUT    /api/tasks/reorder            { status, orderedIds: [...] } → column list
    PUT    /api/tasks/<id>               { content..., status?, position? }
    DELETE /api/tasks/<id>

    GET/POST       /api/calendar-tasks
    PUT/DELETE     /api/calendar-tasks/<id>

    GET    /api/stats                    → per-column task counts
    GET    /health

Errors are always { message } with status 400, 401, 404 or 500.
"""

import logging
import os
from functools import wraps
from pathlib import Path

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from pkg.board import auth
from pkg.board.config import BoardConfig
from pkg.board.errors import BoardError, StorageUnavailable, ValidationFailure
from pkg.board.schema import TaskStatus
from pkg.board.store import CalendarStore, NoteStore, TaskStore, UserStore
from pkg.board.validation import (
    CALENDAR_CREATE,
    CALENDAR_PATCH,
    LOGIN,
    NOTE_CREATE,
    NOTE_PATCH,
    REGISTER,
    TASK_CREATE,
    TASK_PATCH,
    parse_ordered_ids,
    validate,
)

app = Flask(__name__)
logger = logging.getLogger("board_server")

# ── Config ───────────────────────────────────────────────────────────────────

_config = None


def get_config() -> BoardConfig:
    global _config
    if _config is None:
        _config = BoardConfig.load()
    return _config


def get_db_path() -> Path:
    env = os.environ.get("BOARD_DB")
    if env:
        return Path(env)
    return Path(get_config().db_path)


def get_token_secret() -> str:
    secret = get_config().token_secret
    if not secret:
        raise BoardError(f"{get_config().token_secret_env} not set")
    return secret


def _json_body():
    return request.get_json(force=True, silent=True) or {}


def _parse_status(value) -> TaskStatus:
    try:
        return TaskStatus.from_str(value)
    except ValueError:
        raise ValidationFailure(
            f"Invalid status: {value!r}. Allowed: {', '.join(TaskStatus.values())}"
        )


# ── Auth ─────────────────────────────────────────────────────────────────────


def require_auth(f):
    """Decorator: resolve the bearer token to ``g.principal`` or reject."""
    @wraps(f)
    def decorated(*args, **kwargs):
        header = request.headers.get("Authorization", "")
        token = ""
        if header.startswith("Bearer "):
            token = header[len("Bearer "):].strip()
        g.principal = auth.authenticate(
            token, get_token_secret(), UserStore(str(get_db_path()))
        )
        return f(*args, **kwargs)
    return decorated


@app.route("/api/auth/register", methods=["POST"])
def api_register():
    data = validate(_json_body(), REGISTER)
    users = UserStore(str(get_db_path()))
    user = users.create(data["username"], data["email"], auth.hash_password(data["password"]))
    token = auth.issue_token(user.user_id, get_token_secret(), get_config().token_ttl_hours)
    return jsonify({"token": token, "user": user.to_dict()}), 201


@app.route("/api/auth/login", methods=["POST"])
def api_login():
    data = validate(_json_body(), LOGIN)
    user = auth.login(data["email"], data["password"], UserStore(str(get_db_path())))
    token = auth.issue_token(user.user_id, get_token_secret(), get_config().token_ttl_hours)
    return jsonify({"token": token, "user": user.to_dict()})


# ── Errors ───────────────────────────────────────────────────────────────────


@app.errorhandler(BoardError)
def handle_board_error(e: BoardError):
    if isinstance(e, StorageUnavailable) or e.status_code >= 500:
        app.logger.error(f"{e.status_code} {request.method} {request.path}: {e.message}")
    else:
        app.logger.warning(f"{e.status_code} {request.method} {request.path}: {e.message}")
    return jsonify({"message": e.message}), e.status_code


@app.errorhandler(HTTPException)
def handle_http_error(e: HTTPException):
    return jsonify({"message": e.description or e.name}), e.code


@app.errorhandler(Exception)
def handle_unexpected(e: Exception):
    app.logger.error(f"Unhandled error on {request.method} {request.path}", exc_info=e)
    return jsonify({"message": "Internal server error"}), 500


# ── Sticky notes ─────────────────────────────────────────────────────────────


@app.route("/api/sticky-notes", methods=["GET"])
@require_auth
def api_list_notes():
    notes = NoteStore(str(get_db_path())).list(g.principal)
    return jsonify([n.to_dict() for n in notes])


@app.route("/api/sticky-notes", methods=["POST"])
@require_auth
def api_create_note():
    data = validate(_json_body(), NOTE_CREATE)
    note = NoteStore(str(get_db_path())).create(g.principal, data["text"], data["color"])
    return jsonify(note.to_dict()), 201


@app.route("/api/sticky-notes/reorder", methods=["PUT"])
@require_auth
def api_reorder_notes():
    ordered_ids = parse_ordered_ids(_json_body())
    notes = NoteStore(str(get_db_path())).reorder(g.principal, ordered_ids)
    return jsonify([n.to_dict() for n in notes])


@app.route("/api/sticky-notes/<note_id>", methods=["PUT"])
@require_auth
def api_update_note(note_id):
    patch = validate(_json_body(), NOTE_PATCH, partial=True)
    note = NoteStore(str(get_db_path())).update(g.principal, note_id, patch)
    return jsonify(note.to_dict())


@app.route("/api/sticky-notes/<note_id>", methods=["DELETE"])
@require_auth
def api_delete_note(note_id):
    NoteStore(str(get_db_path())).delete(g.principal, note_id)
    return jsonify({"message": "Sticky note successfully deleted"})


# ── Tasks ────────────────────────────────────────────────────────────────────


@app.route("/api/tasks", methods=["GET"])
@require_auth
def api_list_tasks():
    status = request.args.get("status")
    store = TaskStore(str(get_db_path()))
    tasks = store.list(g.principal, _parse_status(status) if status else None)
    return jsonify([t.to_dict() for t in tasks])


@app.route("/api/tasks/<task_id>", methods=["GET"])
@require_auth
def api_get_task(task_id):
    task = TaskStore(str(get_db_path())).get(g.principal, task_id)
    return jsonify(task.to_dict())


@app.route("/api/tasks", methods=["POST"])
@require_auth
def api_create_task():
    data = validate(_json_body(), TASK_CREATE)
    task = TaskStore(str(get_db_path())).create(
        g.principal,
        title=data["title"].strip(),
        description=data["description"],
        priority=data["priority"],
        due_date=data.get("due_date"),
        status=_parse_status(data["status"]),
    )
    return jsonify(task.to_dict()), 201


@app.route("/api/tasks/reorder", methods=["PUT"])
@require_auth
def api_reorder_tasks():
    data = _json_body()
    ordered_ids = parse_ordered_ids(data)
    if not data.get("status"):
        raise ValidationFailure("status is required")
    status = _parse_status(data["status"])
    tasks = TaskStore(str(get_db_path())).reorder(g.principal, status, ordered_ids)
    return jsonify([t.to_dict() for t in tasks])


@app.route("/api/tasks/<task_id>", methods=["PUT"])
@require_auth
def api_update_task(task_id):
    """Content edit, or a move when status/position is present."""
    patch = validate(_json_body(), TASK_PATCH, partial=True)
    status = patch.pop("status", None)
    position = patch.pop("position", None)
    store = TaskStore(str(get_db_path()))

    if status is None and position is None:
        task = store.update(g.principal, task_id, patch)
    else:
        task = store.move(
            g.principal,
            task_id,
            _parse_status(status) if status else None,
            position,
            fields=patch,
        )
    return jsonify(task.to_dict())


@app.route("/api/tasks/<task_id>", methods=["DELETE"])
@require_auth
def api_delete_task(task_id):
    TaskStore(str(get_db_path())).delete(g.principal, task_id)
    return jsonify({"message": "Task successfully deleted"})


# ── Calendar ─────────────────────────────────────────────────────────────────


@app.route("/api/calendar-tasks", methods=["GET"])
@require_auth
def api_list_calendar():
    entries = CalendarStore(str(get_db_path())).list(g.principal)
    return jsonify([e.to_dict() for e in entries])


@app.route("/api/calendar-tasks", methods=["POST"])
@require_auth
def api_create_calendar():
    data = validate(_json_body(), CALENDAR_CREATE)
    entry = CalendarStore(str(get_db_path())).create(
        g.principal, data["title"], data["date"], data["time"], data["description"]
    )
    return jsonify(entry.to_dict()), 201


@app.route("/api/calendar-tasks/<entry_id>", methods=["PUT"])
@require_auth
def api_update_calendar(entry_id):
    patch = validate(_json_body(), CALENDAR_PATCH, partial=True)
    entry = CalendarStore(str(get_db_path())).update(g.principal, entry_id, patch)
    return jsonify(entry.to_dict())


@app.route("/api/calendar-tasks/<entry_id>", methods=["DELETE"])
@require_auth
def api_delete_calendar(entry_id):
    CalendarStore(str(get_db_path())).delete(g.principal, entry_id)
    return jsonify({"message": "Calendar task successfully deleted"})


# ── Stats ────────────────────────────────────────────────────────────────────


@app.route("/api/stats")
@require_auth
def api_stats():
    by_status = TaskStore(str(get_db_path())).count_by_status(g.principal)
    total = sum(by_status.values())
    done = by_status.get(TaskStatus.COMPLETED.value, 0)
    return jsonify({
        "total": total,
        "by_status": by_status,
        "completion": round(done / total, 3) if total else 0.0,
    })


@app.route("/health")
def health():
    return jsonify({"status": "ok", "db": str(get_db_path())})


# ── Main ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Board Server")
    parser.add_argument("--host", help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int)
    parser.add_argument("--db", help="Path to board.db (overrides BOARD_DB env var)")
    parser.add_argument("--config", help="Path to board.yaml (overrides BOARD_CONFIG)")
    args = parser.parse_args()

    _config = BoardConfig.load(args.config)
    if args.db:
        os.environ["BOARD_DB"] = args.db
    host = args.host or _config.host
    port = args.port or _config.port

    logging.basicConfig(
        level=getattr(logging, str(_config.log_level).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if not _config.token_secret:
        logger.warning(f"{_config.token_secret_env} is not set; auth endpoints will fail")

    print(f"""
╔═══════════════════════════════════════╗
║  Board Server                         ║
╠═══════════════════════════════════════╣
║  URL:  http://{host}:{port:<20}║
║  DB:   {str(get_db_path()):<31}║
╚═══════════════════════════════════════╝
""")

    app.run(host=host, port=port, debug=False, threaded=True)
