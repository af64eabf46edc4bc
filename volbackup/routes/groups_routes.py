"""
Schedule group routes - ordered volume sets, their runs and manual execution.
"""

from flask import Blueprint, jsonify, request

from volbackup import db
from volbackup.audit import record_event
from volbackup.auth import api_auth_required, acting_user_id
from volbackup.backup.groups import trigger_group_run, list_group_runs
from volbackup.catalog import atomic, get_group, replace_group_members
from volbackup.models import ScheduleGroup
from volbackup.routes.schedules_routes import validate_recurrence


bp = Blueprint('schedule_groups', __name__, url_prefix='/api/schedule-groups')


def _volume_ids(data):
    volume_ids = data.get('volume_ids')
    if not isinstance(volume_ids, list) or not all(isinstance(v, int) for v in volume_ids):
        raise ValueError('volume_ids must be a list of volume IDs')
    return volume_ids


@bp.route('/', methods=['GET'])
@api_auth_required
def list_groups():
    """
    Get all schedule groups with their members in execution order.
    """
    groups = ScheduleGroup.query.order_by(ScheduleGroup.name.asc()).all()
    return jsonify([group.to_dict() for group in groups])


@bp.route('/<int:group_id>', methods=['GET'])
@api_auth_required
def get_group_route(group_id):
    return jsonify(get_group(group_id).to_dict())


@bp.route('/', methods=['POST'])
@api_auth_required
def create_group():
    """
    Create a schedule group.

    Request body:
        - name: Group name (required)
        - description: optional
        - frequency, time: recurrence (required)
        - enabled: default true
        - volume_ids: volumes in execution order (required)
    """
    data = request.get_json() or {}
    name = (data.get('name') or '').strip()

    if not name:
        return jsonify({'error': 'Group name is required'}), 400

    error = validate_recurrence(data.get('frequency'), data.get('time'))
    if error:
        return jsonify({'error': error}), 400

    volume_ids = _volume_ids(data)

    with atomic():
        group = ScheduleGroup(
            name=name,
            description=data.get('description', ''),
            frequency=data['frequency'],
            time=data['time'],
            enabled=bool(data.get('enabled', True))
        )
        db.session.add(group)
        db.session.flush()
        replace_group_members(group, volume_ids)

    record_event(
        'info', 'schedule', f"Schedule group {name} created",
        details={'volumeIds': volume_ids}, group_id=group.id, user_id=acting_user_id()
    )
    return jsonify(group.to_dict()), 201


@bp.route('/<int:group_id>', methods=['PUT'])
@api_auth_required
def update_group(group_id):
    """
    Update group fields and/or replace the member list in one transaction.
    """
    group = get_group(group_id)
    data = request.get_json() or {}

    frequency = data.get('frequency', group.frequency)
    time_of_day = data.get('time', group.time)
    error = validate_recurrence(frequency, time_of_day)
    if error:
        return jsonify({'error': error}), 400

    if 'name' in data and not (data['name'] or '').strip():
        return jsonify({'error': 'Group name cannot be empty'}), 400

    volume_ids = _volume_ids(data) if 'volume_ids' in data else None

    with atomic():
        if 'name' in data:
            group.name = data['name'].strip()
        if 'description' in data:
            group.description = data['description'] or ''
        if 'enabled' in data:
            group.enabled = bool(data['enabled'])
        group.frequency = frequency
        group.time = time_of_day
        if volume_ids is not None:
            replace_group_members(group, volume_ids)

    return jsonify(group.to_dict())


@bp.route('/<int:group_id>', methods=['DELETE'])
@api_auth_required
def delete_group(group_id):
    group = get_group(group_id)
    name = group.name

    with atomic():
        db.session.delete(group)

    record_event('info', 'schedule', f"Schedule group {name} deleted", user_id=acting_user_id())
    return jsonify({'message': f'Schedule group {name} deleted successfully'})


@bp.route('/<int:group_id>/runs', methods=['GET'])
@api_auth_required
def group_runs(group_id):
    """Last 50 runs, newest first."""
    runs = list_group_runs(group_id, limit=50)
    return jsonify([run.to_dict() for run in runs])


@bp.route('/<int:group_id>/run', methods=['POST'])
@api_auth_required
def run_group(group_id):
    """
    Run a group now.

    Returns:
        202 with the in-progress run
    """
    run = trigger_group_run(group_id)
    return jsonify(run.to_dict()), 202
