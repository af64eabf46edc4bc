"""
Audit log routes - list, stats and clear.
"""

from datetime import timedelta

from flask import Blueprint, jsonify, request

from volbackup.audit import query_events, event_stats, clear_events, LEVELS, CATEGORIES
from volbackup.auth import api_auth_required
from volbackup.utils.clock import utcnow


bp = Blueprint('logs', __name__, url_prefix='/api/logs')


@bp.route('/', methods=['GET'])
@api_auth_required
def list_logs():
    """
    Get audit entries newest first.

    Query params:
        - level, category, volume_id: filters (optional)
        - limit: default 100, max 1000
        - offset: default 0
    """
    level = request.args.get('level')
    category = request.args.get('category')

    if level and level not in LEVELS:
        return jsonify({'error': f'Invalid level. Valid options: {list(LEVELS)}'}), 400
    if category and category not in CATEGORIES:
        return jsonify({'error': f'Invalid category. Valid options: {list(CATEGORIES)}'}), 400

    limit = min(request.args.get('limit', 100, type=int), 1000)
    offset = request.args.get('offset', 0, type=int)

    entries = query_events(
        level=level,
        category=category,
        volume_id=request.args.get('volume_id', type=int),
        limit=limit,
        offset=offset
    )
    return jsonify([entry.to_dict() for entry in entries])


@bp.route('/stats', methods=['GET'])
@api_auth_required
def log_stats():
    """Entries per level over the last 24 hours."""
    return jsonify(event_stats(hours=24))


@bp.route('/', methods=['DELETE'])
@api_auth_required
def clear_logs():
    """
    Clear audit entries.

    Query params:
        - older_than_days: only delete entries older than this (optional)
    """
    days = request.args.get('older_than_days', type=int)
    older_than = utcnow() - timedelta(days=days) if days is not None else None
    deleted = clear_events(older_than)
    return jsonify({'deleted': deleted})
