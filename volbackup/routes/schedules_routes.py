"""
Schedule routes - per-volume recurrence definitions.
"""

from flask import Blueprint, jsonify, request

from volbackup import db
from volbackup.audit import record_event
from volbackup.auth import api_auth_required, acting_user_id
from volbackup.catalog import get_schedule, get_volume
from volbackup.models import Schedule, FREQUENCIES
from volbackup.recurrence import parse_time_of_day


bp = Blueprint('schedules', __name__, url_prefix='/api/schedules')


def validate_recurrence(frequency, time_of_day):
    """
    Validate a frequency/time pair shared by schedules and groups.

    Returns:
        Error message or None
    """
    if frequency not in FREQUENCIES:
        return f'Invalid frequency. Valid options: {list(FREQUENCIES)}'
    try:
        parse_time_of_day(time_of_day)
    except ValueError as e:
        return str(e)
    return None


@bp.route('/', methods=['GET'])
@api_auth_required
def list_schedules():
    """
    Get all schedules with their volume name and path.
    """
    schedules = Schedule.query.order_by(Schedule.created_at.desc()).all()
    return jsonify([schedule.to_dict() for schedule in schedules])


@bp.route('/<int:schedule_id>', methods=['GET'])
@api_auth_required
def get_schedule_route(schedule_id):
    return jsonify(get_schedule(schedule_id).to_dict())


@bp.route('/', methods=['POST'])
@api_auth_required
def create_schedule():
    """
    Create a schedule.

    Request body:
        - volume_id: Volume to back up (required)
        - frequency: hourly, daily, weekly or monthly (required)
        - time: 'HH:MM' in UTC (required)
        - enabled: default true
    """
    data = request.get_json() or {}

    if not data.get('volume_id'):
        return jsonify({'error': 'volume_id is required'}), 400

    volume = get_volume(data['volume_id'])

    error = validate_recurrence(data.get('frequency'), data.get('time'))
    if error:
        return jsonify({'error': error}), 400

    schedule = Schedule(
        volume_id=volume.id,
        frequency=data['frequency'],
        time=data['time'],
        enabled=bool(data.get('enabled', True))
    )
    db.session.add(schedule)
    db.session.commit()

    record_event(
        'info', 'schedule', f"Schedule created for volume {volume.name}",
        details={'frequency': schedule.frequency, 'time': schedule.time},
        volume_id=volume.id, user_id=acting_user_id()
    )
    return jsonify(schedule.to_dict()), 201


@bp.route('/<int:schedule_id>', methods=['PUT'])
@api_auth_required
def update_schedule(schedule_id):
    """
    Update frequency, time and/or enabled.
    """
    schedule = get_schedule(schedule_id)
    data = request.get_json() or {}

    frequency = data.get('frequency', schedule.frequency)
    time_of_day = data.get('time', schedule.time)
    error = validate_recurrence(frequency, time_of_day)
    if error:
        return jsonify({'error': error}), 400

    schedule.frequency = frequency
    schedule.time = time_of_day
    if 'enabled' in data:
        schedule.enabled = bool(data['enabled'])
    db.session.commit()

    return jsonify(schedule.to_dict())


@bp.route('/<int:schedule_id>', methods=['DELETE'])
@api_auth_required
def delete_schedule(schedule_id):
    schedule = get_schedule(schedule_id)
    volume_id = schedule.volume_id
    db.session.delete(schedule)
    db.session.commit()

    record_event('info', 'schedule', "Schedule deleted", volume_id=volume_id, user_id=acting_user_id())
    return jsonify({'message': 'Schedule deleted successfully'})
