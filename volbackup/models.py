from flask_login import UserMixin
from volbackup import db
from volbackup.utils.clock import utcnow


# Status values shared by backups and group runs
STATUS_PENDING = 'pending'
STATUS_IN_PROGRESS = 'in_progress'
STATUS_COMPLETED = 'completed'
STATUS_FAILED = 'failed'

TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)

FREQUENCIES = ('hourly', 'daily', 'weekly', 'monthly')


class User(UserMixin, db.Model):
    """User model for authentication"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), default='admin', nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f'<User {self.username}>'


class Volume(db.Model):
    """A named source directory tracked for backup"""
    __tablename__ = 'volumes'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    path = db.Column(db.String(1024), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    backups = db.relationship('Backup', back_populates='volume', cascade='all, delete-orphan', lazy='dynamic')
    schedules = db.relationship('Schedule', back_populates='volume', cascade='all, delete-orphan', lazy='dynamic')
    memberships = db.relationship('ScheduleGroupMember', back_populates='volume', cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'path': self.path,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f'<Volume {self.name} path={self.path}>'


class Backup(db.Model):
    """One archival attempt of a volume and its outcome"""
    __tablename__ = 'backups'

    id = db.Column(db.Integer, primary_key=True)
    volume_id = db.Column(db.Integer, db.ForeignKey('volumes.id', ondelete='CASCADE'), nullable=False, index=True)
    archive_path = db.Column(db.String(1024), nullable=False, index=True)
    size_bytes = db.Column(db.BigInteger, default=0, nullable=False)
    status = db.Column(db.String(20), default=STATUS_PENDING, nullable=False, index=True)
    error_message = db.Column(db.Text)
    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    volume = db.relationship('Volume', back_populates='backups')

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self, include_volume: bool = True):
        data = {
            'id': self.id,
            'volume_id': self.volume_id,
            'archive_path': self.archive_path,
            'size_bytes': self.size_bytes or 0,
            'status': self.status,
            'error_message': self.error_message,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
        if include_volume and self.volume is not None:
            data['volume'] = {'name': self.volume.name, 'path': self.volume.path}
        return data

    def __repr__(self):
        return f'<Backup volume_id={self.volume_id} status={self.status}>'


class Schedule(db.Model):
    """Per-volume recurrence definition"""
    __tablename__ = 'schedules'

    id = db.Column(db.Integer, primary_key=True)
    volume_id = db.Column(db.Integer, db.ForeignKey('volumes.id', ondelete='CASCADE'), nullable=False, index=True)
    frequency = db.Column(db.String(20), nullable=False)  # hourly, daily, weekly, monthly
    time = db.Column(db.String(5), nullable=False)  # HH:MM (UTC)
    enabled = db.Column(db.Boolean, default=True, nullable=False, index=True)
    last_run = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    volume = db.relationship('Volume', back_populates='schedules')

    def to_dict(self):
        return {
            'id': self.id,
            'volume_id': self.volume_id,
            'frequency': self.frequency,
            'time': self.time,
            'enabled': self.enabled,
            'last_run': self.last_run.isoformat() if self.last_run else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'volume': {'name': self.volume.name, 'path': self.volume.path} if self.volume else None,
        }

    def __repr__(self):
        return f'<Schedule volume_id={self.volume_id} {self.frequency}@{self.time} enabled={self.enabled}>'


class ScheduleGroup(db.Model):
    """A named, ordered set of volumes sharing one recurrence definition"""
    __tablename__ = 'schedule_groups'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default='')
    frequency = db.Column(db.String(20), nullable=False)
    time = db.Column(db.String(5), nullable=False)
    enabled = db.Column(db.Boolean, default=True, nullable=False, index=True)
    last_run = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    members = db.relationship(
        'ScheduleGroupMember',
        back_populates='group',
        cascade='all, delete-orphan',
        order_by='ScheduleGroupMember.execution_order'
    )
    runs = db.relationship('ScheduleGroupRun', back_populates='group', cascade='all, delete-orphan', lazy='dynamic')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description or '',
            'frequency': self.frequency,
            'time': self.time,
            'enabled': self.enabled,
            'last_run': self.last_run.isoformat() if self.last_run else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'volumes': [member.to_dict() for member in self.members],
        }

    def __repr__(self):
        return f'<ScheduleGroup {self.name} {self.frequency}@{self.time} enabled={self.enabled}>'


class ScheduleGroupMember(db.Model):
    """Membership of a volume in a group at a given execution position"""
    __tablename__ = 'schedule_group_volumes'
    __table_args__ = (
        db.UniqueConstraint('group_id', 'execution_order', name='uq_group_execution_order'),
    )

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('schedule_groups.id', ondelete='CASCADE'), nullable=False, index=True)
    volume_id = db.Column(db.Integer, db.ForeignKey('volumes.id', ondelete='CASCADE'), nullable=False)
    execution_order = db.Column(db.Integer, nullable=False)

    group = db.relationship('ScheduleGroup', back_populates='members')
    volume = db.relationship('Volume', back_populates='memberships')

    def to_dict(self):
        return {
            'id': self.id,
            'volume_id': self.volume_id,
            'volume_name': self.volume.name if self.volume else None,
            'volume_path': self.volume.path if self.volume else None,
            'execution_order': self.execution_order,
        }

    def __repr__(self):
        return f'<ScheduleGroupMember group_id={self.group_id} volume_id={self.volume_id} order={self.execution_order}>'


class ScheduleGroupRun(db.Model):
    """One execution of a schedule group, tracking sequential progress"""
    __tablename__ = 'schedule_group_runs'

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('schedule_groups.id', ondelete='CASCADE'), nullable=False, index=True)
    status = db.Column(db.String(20), default=STATUS_PENDING, nullable=False)
    current_volume_index = db.Column(db.Integer, default=0, nullable=False)
    total_volumes = db.Column(db.Integer, default=0, nullable=False)
    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    error_message = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    group = db.relationship('ScheduleGroup', back_populates='runs')

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self):
        return {
            'id': self.id,
            'group_id': self.group_id,
            'status': self.status,
            'current_volume_index': self.current_volume_index,
            'total_volumes': self.total_volumes,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'error_message': self.error_message,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return (
            f'<ScheduleGroupRun group_id={self.group_id} status={self.status} '
            f'{self.current_volume_index}/{self.total_volumes}>'
        )


class AuditLog(db.Model):
    """Operator-facing audit trail"""
    __tablename__ = 'logs'

    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    level = db.Column(db.String(20), nullable=False)  # info, success, warning, error
    category = db.Column(db.String(20), nullable=False)
    message = db.Column(db.Text, nullable=False)
    details = db.Column(db.JSON)
    volume_id = db.Column(db.Integer, index=True)
    backup_id = db.Column(db.Integer)
    group_id = db.Column(db.Integer)
    user_id = db.Column(db.String(80))

    def to_dict(self):
        return {
            'id': self.id,
            'timestamp': self.timestamp.isoformat(),
            'level': self.level,
            'category': self.category,
            'message': self.message,
            'details': self.details or {},
            'volume_id': self.volume_id,
            'backup_id': self.backup_id,
            'group_id': self.group_id,
            'user_id': self.user_id,
        }

    def __repr__(self):
        return f'<AuditLog {self.level}/{self.category}: {self.message[:40]}>'
