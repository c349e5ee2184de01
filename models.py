from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime

db = SQLAlchemy()


def _iso(value):
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    pin_hash = db.Column(db.String(200), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    tasks = db.relationship('Task', backref='owner', lazy=True, cascade="all, delete-orphan")
    events = db.relationship('CalendarEvent', backref='owner', lazy=True, cascade="all, delete-orphan")
    goals = db.relationship('Goal', backref='owner', lazy=True, cascade="all, delete-orphan")
    reminders = db.relationship('Reminder', backref='owner', lazy=True, cascade="all, delete-orphan")
    time_blocks = db.relationship('TimeBlock', backref='owner', lazy=True, cascade="all, delete-orphan")

    def set_pin(self, pin):
        pin = str(pin or '').strip()
        if len(pin) != 4 or not pin.isdigit():
            raise ValueError('PIN must be exactly 4 digits')
        self.pin_hash = generate_password_hash(pin)

    def check_pin(self, pin):
        if not self.pin_hash:
            return False
        return check_password_hash(self.pin_hash, str(pin or '').strip())

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'created_at': _iso(self.created_at),
        }


class Task(db.Model):
    """
    A to-do with an optional due datetime. Overdue incomplete tasks are moved
    forward by auto-rollover when rollover_enabled is set.
    """
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    project = db.Column(db.String(100), nullable=True)
    priority = db.Column(db.String(10), default='medium')  # low | medium | high
    status = db.Column(db.String(20), default='todo')  # todo | in_progress | completed
    due_date = db.Column(db.DateTime, nullable=True)
    estimated_minutes = db.Column(db.Integer, nullable=True)
    rollover_enabled = db.Column(db.Boolean, default=True)
    is_auto_rolled = db.Column(db.Boolean, default=False)
    rolled_from = db.Column(db.DateTime, nullable=True)  # due date before the last rollover
    recurrence_id = db.Column(db.Integer, db.ForeignKey('recurrence_rule.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'description': self.description,
            'project': self.project,
            'priority': self.priority,
            'status': self.status,
            'due_date': _iso(self.due_date),
            'estimated_minutes': self.estimated_minutes,
            'rollover_enabled': self.rollover_enabled,
            'is_auto_rolled': self.is_auto_rolled,
            'rolled_from': _iso(self.rolled_from),
            'recurrence_id': self.recurrence_id,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class CalendarEvent(db.Model):
    """Timed or all-day appointment. All datetimes are naive server-local values."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    project = db.Column(db.String(100), nullable=True)
    location = db.Column(db.String(200), nullable=True)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=True)
    all_day = db.Column(db.Boolean, default=False)
    color = db.Column(db.String(20), nullable=True)
    recurrence_id = db.Column(db.Integer, db.ForeignKey('recurrence_rule.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'description': self.description,
            'project': self.project,
            'location': self.location,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'all_day': self.all_day,
            'color': self.color,
            'recurrence_id': self.recurrence_id,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Goal(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    project = db.Column(db.String(100), nullable=True)
    target_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(20), default='active')  # active | completed | abandoned
    progress = db.Column(db.Integer, default=0)  # 0-100
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'description': self.description,
            'project': self.project,
            'target_date': _iso(self.target_date),
            'status': self.status,
            'progress': self.progress,
            'created_at': _iso(self.created_at),
        }


class Reminder(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    remind_at = db.Column(db.DateTime, nullable=False)
    completed = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'notes': self.notes,
            'remind_at': _iso(self.remind_at),
            'completed': self.completed,
            'created_at': _iso(self.created_at),
        }


class TimeBlock(db.Model):
    """
    A reserved slot of time, optionally dedicated to one task, event, goal or
    reminder (linked_type + linked_id).
    """
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    project = db.Column(db.String(100), nullable=True)
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)
    color = db.Column(db.String(20), nullable=True)
    linked_type = db.Column(db.String(20), nullable=True)  # task | event | goal | reminder
    linked_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'title': self.title,
            'description': self.description,
            'project': self.project,
            'start_time': _iso(self.start_time),
            'end_time': _iso(self.end_time),
            'color': self.color,
            'linked_type': self.linked_type,
            'linked_id': self.linked_id,
            'created_at': _iso(self.created_at),
        }


class RecurrenceRule(db.Model):
    """Template that materializes task or event instances on matching days."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    entity_type = db.Column(db.String(10), nullable=False, default='event')  # task | event
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    project = db.Column(db.String(100), nullable=True)
    priority = db.Column(db.String(10), default='medium')
    start_day = db.Column(db.Date, nullable=False)
    end_day = db.Column(db.Date, nullable=True)
    start_time = db.Column(db.Time, nullable=True)
    duration_minutes = db.Column(db.Integer, nullable=True)
    frequency = db.Column(db.String(20), nullable=False)  # daily | weekly | biweekly | monthly | monthly_weekday | yearly | custom
    interval = db.Column(db.Integer, default=1)
    interval_unit = db.Column(db.String(10), nullable=True)  # days | weeks | months | years
    days_of_week = db.Column(db.String(50), nullable=True)  # comma-separated 0=Mon .. 6=Sun
    day_of_month = db.Column(db.Integer, nullable=True)
    month_of_year = db.Column(db.Integer, nullable=True)
    week_of_month = db.Column(db.Integer, nullable=True)
    weekday_of_month = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    exceptions = db.relationship('RecurrenceException', backref='rule', lazy=True, cascade="all, delete-orphan")

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'entity_type': self.entity_type,
            'title': self.title,
            'description': self.description,
            'project': self.project,
            'priority': self.priority,
            'start_day': _iso(self.start_day),
            'end_day': _iso(self.end_day),
            'start_time': self.start_time.strftime('%H:%M') if self.start_time else None,
            'duration_minutes': self.duration_minutes,
            'frequency': self.frequency,
            'interval': self.interval,
            'interval_unit': self.interval_unit,
            'days_of_week': [int(d) for d in self.days_of_week.split(',')] if self.days_of_week else [],
            'day_of_month': self.day_of_month,
            'month_of_year': self.month_of_year,
            'week_of_month': self.week_of_month,
            'weekday_of_month': self.weekday_of_month,
        }


class RecurrenceException(db.Model):
    """A day on which a recurrence rule must not produce an instance."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    recurrence_id = db.Column(db.Integer, db.ForeignKey('recurrence_rule.id'), nullable=False)
    day = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('recurrence_id', 'day', name='uq_recurrence_exception_day'),
    )


class JobLock(db.Model):
    """Cross-worker lock so a scheduled job runs once at a time."""
    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False)
    locked_at = db.Column(db.DateTime, nullable=False)
    locked_by = db.Column(db.String(100), nullable=True)
