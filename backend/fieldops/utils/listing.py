from __future__ import annotations
from typing import Iterable, Optional, Tuple
from flask import request, abort, make_response
from sqlalchemy.orm import Query
from fieldops.config.pagination import normalize_pagination
import hashlib


def apply_pagination(q: Query) -> Tuple[Query, int, int, int]:
    try:
        limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))
    total = q.count()
    return q.offset(offset).limit(limit), total, limit, offset


def compute_etag(rows: Iterable[dict], total: int, limit: int, offset: int) -> str:
    """Ticket rows carry their version, so any committed change moves the tag."""
    seed = '|'.join(f"{r.get('id')}:{r.get('version', '')}" for r in rows)
    seed = f"{seed}|{total}|{limit}|{offset}"
    return hashlib.sha256(seed.encode()).hexdigest()[:32]


def build_list_payload(rows: list, total: int, limit: int, offset: int, extra: Optional[dict] = None):
    body = {
        'data': rows,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows)
        }
    }
    if extra:
        body.update(extra)
    return body


def make_list_response(rows: list, total: int, limit: int, offset: int, extra: Optional[dict] = None):
    """List body plus ETag; answers 304 when If-None-Match already holds it."""
    etag = compute_etag(rows, total, limit, offset)
    inm = request.headers.get('If-None-Match')
    if inm and inm.strip('"') == etag:
        resp = make_response('', 304)
    else:
        resp = make_response(build_list_payload(rows, total, limit, offset, extra))
    resp.headers['ETag'] = etag
    return resp
