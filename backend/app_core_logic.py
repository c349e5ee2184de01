"""Core non-route application logic: record loading, rollover and background jobs."""

import os
from datetime import datetime, timedelta

import pytz
from apscheduler.schedulers.background import BackgroundScheduler
from flask import current_app, jsonify, request, session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from backend.calendar_helpers import auto_rollover_tasks, convert_to_calendar_items
from backend.recurrence import detach_if_moved
from models import db, User, Task, CalendarEvent, Goal, Reminder, TimeBlock, JobLock

ITEM_MODELS = {
    'task': Task,
    'event': CalendarEvent,
    'goal': Goal,
    'reminder': Reminder,
    'timeblock': TimeBlock,
}

ROLLOVER_JOB = 'calendar_rollover'
JOB_LOCK_STALE_AFTER = timedelta(minutes=5)

scheduler = None


def get_current_user():
    """Resolve the current user from a shared API key + user id header, else fall back to session."""
    # Header-based auth for service callers
    api_key = request.headers.get('X-API-Key')
    api_user_id = request.headers.get('X-User-Id')
    shared_key = current_app.config.get('API_SHARED_KEY')
    if shared_key and api_key and api_user_id:
        try:
            api_uid_int = int(api_user_id)
        except (TypeError, ValueError):
            api_uid_int = None
        if api_uid_int and api_key == shared_key:
            user = db.session.get(User, api_uid_int)
            if user:
                return user

    # Session-based auth for browser users
    user_id = session.get('user_id')
    if user_id:
        return db.session.get(User, user_id)
    return None


def _now_local(app=None):
    app = app or current_app
    tz = pytz.timezone(app.config.get('DEFAULT_TIMEZONE', 'America/New_York'))
    return datetime.now(tz).replace(tzinfo=None)


def local_timezone(app=None):
    app = app or current_app
    return pytz.timezone(app.config.get('DEFAULT_TIMEZONE', 'America/New_York'))


def range_bounds(start_day, end_day):
    start = datetime.combine(start_day, datetime.min.time()) if start_day else None
    end = datetime.combine(end_day + timedelta(days=1), datetime.min.time()) if end_day else None
    return start, end


def _in_range(query, column, start, end):
    if start is not None:
        query = query.filter(column >= start)
    if end is not None:
        query = query.filter(column < end)
    return query


def load_calendar_items(user_id, start_day=None, end_day=None):
    """Calendar items for a user, optionally limited to an inclusive day range."""
    start, end = range_bounds(start_day, end_day)

    tasks = _in_range(
        Task.query.filter(Task.user_id == user_id, Task.due_date.isnot(None)),
        Task.due_date, start, end
    ).all()
    events = _in_range(
        CalendarEvent.query.filter(CalendarEvent.user_id == user_id),
        CalendarEvent.start_date, start, end
    ).all()
    goal_query = Goal.query.filter(Goal.user_id == user_id, Goal.target_date.isnot(None))
    if start_day:
        goal_query = goal_query.filter(Goal.target_date >= start_day)
    if end_day:
        goal_query = goal_query.filter(Goal.target_date <= end_day)
    goals = goal_query.all()
    reminders = _in_range(
        Reminder.query.filter(Reminder.user_id == user_id),
        Reminder.remind_at, start, end
    ).all()
    time_blocks = _in_range(
        TimeBlock.query.filter(TimeBlock.user_id == user_id),
        TimeBlock.start_time, start, end
    ).all()

    return convert_to_calendar_items(tasks, events, goals, reminders, time_blocks)


def find_record(item_type, item_id, user_id):
    model = ITEM_MODELS.get(item_type)
    if model is None:
        return None
    return model.query.filter_by(id=item_id, user_id=user_id).first()


def apply_updates(record, updates):
    for field_name, value in updates.items():
        setattr(record, field_name, value)
    return record


def commit_or_error(error_message):
    """
    Commit the session. On failure roll back so stored state is unchanged and
    return a (response, status) error pair for the route to hand back.
    """
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"{error_message}: {exc}")
        return jsonify({'error': error_message}), 500
    return None


def apply_auto_rollover(user_id, today):
    """Move the user's overdue tasks onto `today`. Returns the number of tasks moved."""
    candidates = Task.query.filter(
        Task.user_id == user_id,
        Task.due_date.isnot(None),
        Task.due_date < datetime.combine(today, datetime.min.time()),
        Task.status != 'completed'
    ).all()
    changes = auto_rollover_tasks(candidates, today)
    if not changes:
        return 0

    by_id = {task.id: task for task in candidates}
    try:
        for change in changes:
            task = by_id[change.task_id]
            task.rolled_from = change.previous_due
            task.due_date = change.due_date
            task.is_auto_rolled = True
            # A rolled recurring instance leaves its rule; its old day stays empty
            detach_if_moved(task, change.previous_due.date())
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"Auto-rollover failed for user {user_id}: {exc}")
        raise
    current_app.logger.info(f"Auto-rolled {len(changes)} overdue task(s) for user {user_id}")
    return len(changes)


def _acquire_job_lock(app, job_name, owner):
    """Claim a named job lock. A lock older than JOB_LOCK_STALE_AFTER is taken over."""
    now = _now_local(app)
    try:
        db.session.add(JobLock(job_name=job_name, locked_at=now, locked_by=owner))
        db.session.commit()
        return True
    except IntegrityError:
        db.session.rollback()

    lock = JobLock.query.filter_by(job_name=job_name).first()
    if lock and now - lock.locked_at >= JOB_LOCK_STALE_AFTER:
        lock.locked_at = now
        lock.locked_by = owner
        db.session.commit()
        return True
    if lock:
        app.logger.info(f"{job_name} already running (locked by {lock.locked_by}), skipping")
    else:
        app.logger.info(f"{job_name} lock acquisition failed (missing lock), skipping")
    return False


def _release_job_lock(app, job_name, owner):
    try:
        lock = JobLock.query.filter_by(job_name=job_name).first()
        if lock and lock.locked_by == owner:
            db.session.delete(lock)
            db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        app.logger.error(f"Error releasing {job_name} lock: {exc}")


def _rollover_all_users(app):
    """Nightly job: apply auto-rollover for every user, one worker at a time."""
    with app.app_context():
        owner = str(os.getpid())
        try:
            acquired = _acquire_job_lock(app, ROLLOVER_JOB, owner)
        except SQLAlchemyError as exc:
            db.session.rollback()
            app.logger.info(f"Rollover lock acquisition failed (worker {owner}), skipping: {exc}")
            return 0
        if not acquired:
            return 0

        try:
            today = _now_local(app).date()
            moved = 0
            for uid in [u.id for u in User.query.all()]:
                try:
                    moved += apply_auto_rollover(uid, today)
                except SQLAlchemyError:
                    continue
            app.logger.info(f"Nightly rollover completed, {moved} task(s) moved")
            return moved
        finally:
            _release_job_lock(app, ROLLOVER_JOB, owner)


def _start_scheduler(app):
    """Start background scheduler for the nightly rollover."""
    global scheduler
    if not app.config.get('ENABLE_CALENDAR_JOBS', True):
        return None
    if scheduler and scheduler.running:
        return scheduler
    # Avoid double-start in Flask debug reloader
    if app.debug and os.environ.get('WERKZEUG_RUN_MAIN') != 'true':
        return None
    scheduler = BackgroundScheduler(timezone=local_timezone(app))
    scheduler.add_job(
        _rollover_all_users,
        'cron',
        args=[app],
        hour=app.config.get('ROLLOVER_HOUR', 0),
        minute=app.config.get('ROLLOVER_MINUTE', 10),
        id=ROLLOVER_JOB,
        replace_existing=True,
    )
    scheduler.start()
    app.logger.info("Calendar scheduler started")
    return scheduler
