from __future__ import annotations
"""Small request parsing helpers shared by the blueprints (400 on malformed input)."""
from typing import Optional
from flask import request, abort
from repairdesk.config.pagination import normalize_pagination


def json_payload() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def int_arg(name: str) -> Optional[int]:
    raw = request.args.get(name)
    if raw is None or raw == '':
        return None
    try:
        return int(raw)
    except ValueError:
        abort(400, description=f'{name} must be int')


def required_int(data: dict, key: str) -> int:
    raw = data.get(key)
    if raw is None or isinstance(raw, bool):
        abort(400, description=f'{key} required')
    try:
        return int(raw)
    except (TypeError, ValueError):
        abort(400, description=f'{key} must be int')


def pagination_args():
    try:
        return normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))
