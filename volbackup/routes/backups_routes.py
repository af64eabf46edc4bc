"""
Backup routes - the trigger surface: trigger, list, delete, contents and restore.
"""

from flask import Blueprint, jsonify, request

from volbackup.auth import api_auth_required
from volbackup.backup.executor import (
    trigger_backup, list_backups, delete_backup, get_backup_contents, restore_backup
)
from volbackup.catalog import get_backup


bp = Blueprint('backups', __name__, url_prefix='/api/backups')


@bp.route('/', methods=['GET'])
@api_auth_required
def list_backups_route():
    """
    Get backups newest first.

    Query params:
        - volume_id: Restrict to one volume (optional)
    """
    volume_id = request.args.get('volume_id', type=int)
    backups = list_backups(volume_id)
    return jsonify([backup.to_dict() for backup in backups])


@bp.route('/<int:backup_id>', methods=['GET'])
@api_auth_required
def get_backup_route(backup_id):
    return jsonify(get_backup(backup_id).to_dict())


@bp.route('/trigger/<int:volume_id>', methods=['POST'])
@api_auth_required
def trigger_backup_route(volume_id):
    """
    Start a backup of a volume.

    Returns:
        202 with the in-progress backup record
    """
    backup = trigger_backup(volume_id)
    return jsonify(backup.to_dict()), 202


@bp.route('/<int:backup_id>', methods=['DELETE'])
@api_auth_required
def delete_backup_route(backup_id):
    delete_backup(backup_id)
    return jsonify({'message': 'Backup deleted successfully'})


@bp.route('/<int:backup_id>/contents', methods=['GET'])
@api_auth_required
def backup_contents(backup_id):
    """
    List archive entries of a completed backup.

    Returns:
        JSON array of {name, path, is_directory, size}
    """
    return jsonify(get_backup_contents(backup_id))


@bp.route('/<int:backup_id>/restore', methods=['POST'])
@api_auth_required
def restore_backup_route(backup_id):
    """
    Restore a backup.

    Request body:
        - mode: 'full' (default) or 'selective'
        - custom_path: Destination instead of the volume path (optional)
        - paths: Entry paths to restore (selective mode)

    Returns:
        202 once the restore has been validated and started
    """
    data = request.get_json() or {}
    options = {
        'custom_path': data.get('custom_path'),
        'paths': data.get('paths') or [],
    }
    result = restore_backup(backup_id, mode=data.get('mode', 'full'), options=options)
    return jsonify(result), 202
