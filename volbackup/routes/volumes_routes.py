"""
Volume routes - CRUD operations for tracked source directories.
"""

from flask import Blueprint, jsonify, request

from volbackup import db
from volbackup.audit import record_event
from volbackup.auth import api_auth_required, acting_user_id
from volbackup.catalog import atomic, get_volume
from volbackup.models import Volume


bp = Blueprint('volumes', __name__, url_prefix='/api/volumes')


@bp.route('/', methods=['GET'])
@api_auth_required
def list_volumes():
    """
    Get list of all volumes.

    Returns:
        JSON array of volumes
    """
    volumes = Volume.query.order_by(Volume.name.asc()).all()
    return jsonify([volume.to_dict() for volume in volumes])


@bp.route('/<int:volume_id>', methods=['GET'])
@api_auth_required
def get_volume_route(volume_id):
    return jsonify(get_volume(volume_id).to_dict())


@bp.route('/', methods=['POST'])
@api_auth_required
def create_volume():
    """
    Create a new volume.

    Request body:
        - name: Volume name (required)
        - path: Source directory (required)

    Returns:
        JSON with created volume details
    """
    data = request.get_json() or {}
    name = (data.get('name') or '').strip()
    path = (data.get('path') or '').strip()

    if not name:
        return jsonify({'error': 'Volume name is required'}), 400

    if not path:
        return jsonify({'error': 'Volume path is required'}), 400

    volume = Volume(name=name, path=path)
    db.session.add(volume)
    db.session.commit()

    record_event(
        'info', 'general', f"Volume {name} created",
        details={'path': path}, volume_id=volume.id, user_id=acting_user_id()
    )
    return jsonify(volume.to_dict()), 201


@bp.route('/<int:volume_id>', methods=['PUT'])
@api_auth_required
def update_volume(volume_id):
    """
    Update a volume's name and/or path.
    """
    volume = get_volume(volume_id)
    data = request.get_json() or {}

    if 'name' in data:
        if not (data['name'] or '').strip():
            return jsonify({'error': 'Volume name cannot be empty'}), 400
        volume.name = data['name'].strip()

    if 'path' in data:
        if not (data['path'] or '').strip():
            return jsonify({'error': 'Volume path cannot be empty'}), 400
        volume.path = data['path'].strip()

    db.session.commit()
    return jsonify(volume.to_dict())


@bp.route('/<int:volume_id>', methods=['DELETE'])
@api_auth_required
def delete_volume(volume_id):
    """
    Delete a volume together with its schedules, group memberships and backup records.

    Archive files are left in the storage root.
    """
    volume = get_volume(volume_id)
    name = volume.name

    with atomic():
        db.session.delete(volume)

    record_event('warning', 'general', f"Volume {name} deleted", user_id=acting_user_id())
    return jsonify({'message': f'Volume {name} deleted successfully'})
