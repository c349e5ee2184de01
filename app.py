import os

from dotenv import load_dotenv
from flask import Flask

load_dotenv()

from models import db
from backend.app_core_logic import _start_scheduler
from services.validation_service import parse_bool, parse_int
from services import (
    calendar_routes,
    event_routes,
    goal_routes,
    recurrence_routes,
    reminder_routes,
    task_routes,
    timeblock_routes,
    user_routes,
)

app = Flask(__name__)
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///calendar.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
app.config['PERMANENT_SESSION_LIFETIME'] = 365 * 24 * 60 * 60  # 1 year in seconds
app.config['API_SHARED_KEY'] = os.environ.get('API_SHARED_KEY')  # Optional shared key for API callers
app.config['DEFAULT_TIMEZONE'] = os.environ.get('DEFAULT_TIMEZONE', 'America/New_York')
app.config['CALENDAR_WEEK_START'] = (os.environ.get('CALENDAR_WEEK_START') or 'sunday').lower()
app.config['ENABLE_CALENDAR_JOBS'] = parse_bool(os.environ.get('ENABLE_CALENDAR_JOBS'), default=True)
app.config['ROLLOVER_HOUR'] = parse_int(os.environ.get('ROLLOVER_HOUR'), default=0, minimum=0, maximum=23)
app.config['ROLLOVER_MINUTE'] = parse_int(os.environ.get('ROLLOVER_MINUTE'), default=10, minimum=0, maximum=59)

db.init_app(app)

with app.app_context():
    db.create_all()

_jobs_bootstrapped = False


@app.before_request
def _bootstrap_background_jobs():
    global _jobs_bootstrapped
    if _jobs_bootstrapped:
        return
    _start_scheduler(app)
    _jobs_bootstrapped = True


# User selection
app.add_url_rule('/api/users', view_func=user_routes.list_users, methods=['GET'])
app.add_url_rule('/api/create-user', view_func=user_routes.create_user, methods=['POST'])
app.add_url_rule('/api/set-user/<int:user_id>', view_func=user_routes.set_user, methods=['POST'])
app.add_url_rule('/api/current-user', view_func=user_routes.current_user_info, methods=['GET'])
app.add_url_rule('/api/logout', view_func=user_routes.logout_user, methods=['POST'])

# Store collections
app.add_url_rule('/api/tasks', view_func=task_routes.handle_tasks, methods=['GET', 'POST'])
app.add_url_rule('/api/tasks/<int:task_id>', view_func=task_routes.handle_task, methods=['GET', 'PUT', 'PATCH', 'DELETE'])
app.add_url_rule('/api/events', view_func=event_routes.handle_events, methods=['GET', 'POST'])
app.add_url_rule('/api/events/<int:event_id>', view_func=event_routes.handle_event, methods=['GET', 'PUT', 'PATCH', 'DELETE'])
app.add_url_rule('/api/goals', view_func=goal_routes.handle_goals, methods=['GET', 'POST'])
app.add_url_rule('/api/goals/<int:goal_id>', view_func=goal_routes.handle_goal, methods=['GET', 'PUT', 'PATCH', 'DELETE'])
app.add_url_rule('/api/reminders', view_func=reminder_routes.handle_reminders, methods=['GET', 'POST'])
app.add_url_rule('/api/reminders/<int:reminder_id>', view_func=reminder_routes.handle_reminder, methods=['GET', 'PUT', 'PATCH', 'DELETE'])
app.add_url_rule('/api/time-blocks', view_func=timeblock_routes.handle_time_blocks, methods=['GET', 'POST'])
app.add_url_rule('/api/time-blocks/<int:block_id>', view_func=timeblock_routes.handle_time_block, methods=['GET', 'PUT', 'PATCH', 'DELETE'])
app.add_url_rule('/api/recurrence-rules', view_func=recurrence_routes.handle_rules, methods=['GET', 'POST'])
app.add_url_rule('/api/recurrence-rules/<int:rule_id>', view_func=recurrence_routes.handle_rule, methods=['GET', 'PUT', 'PATCH', 'DELETE'])

# Calendar page
app.add_url_rule('/api/calendar', view_func=calendar_routes.calendar_page_data, methods=['GET'])
app.add_url_rule('/api/calendar/navigate', view_func=calendar_routes.navigate_period, methods=['GET'])
app.add_url_rule('/api/calendar/items', view_func=calendar_routes.calendar_items, methods=['GET'])
app.add_url_rule(
    '/api/calendar/items/<item_type>/<int:item_id>',
    view_func=calendar_routes.update_calendar_item,
    methods=['PATCH', 'PUT'],
)
app.add_url_rule(
    '/api/calendar/items/<item_type>/<int:item_id>/reschedule',
    view_func=calendar_routes.reschedule_item,
    methods=['POST'],
)
app.add_url_rule('/api/calendar/focus', view_func=calendar_routes.focus_mode_items, methods=['GET'])
app.add_url_rule('/api/calendar/rollover-now', view_func=calendar_routes.manual_rollover, methods=['POST'])


if __name__ == '__main__':
    app.run(host='0.0.0.0', debug=True)
