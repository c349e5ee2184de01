from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app_core_logic import _now_local
from models import db, CalendarEvent, Task


def create(client, path, payload):
    resp = client.post(path, json=payload)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


@pytest.fixture
def today(app):
    return _now_local(app).date()


def test_calendar_requires_a_user(anon_client):
    assert anon_client.get('/api/calendar').status_code == 401
    assert anon_client.post('/api/calendar/rollover-now').status_code == 401


def test_api_key_headers_resolve_the_user(anon_client, user):
    resp = anon_client.get('/api/calendar', headers={'X-API-Key': 'shared-test-key', 'X-User-Id': str(user.id)})
    assert resp.status_code == 200
    resp = anon_client.get('/api/calendar', headers={'X-API-Key': 'wrong', 'X-User-Id': str(user.id)})
    assert resp.status_code == 401


def test_month_view_payload_with_filters(client, today):
    day = today + timedelta(days=1)
    create(client, '/api/events', {
        'title': 'Team sync', 'project': 'Work',
        'start_date': f"{day.isoformat()}T10:00", 'end_date': f"{day.isoformat()}T11:00",
    })
    create(client, '/api/tasks', {
        'title': 'Buy groceries', 'project': 'Home', 'due_date': f"{day.isoformat()}T18:00",
    })

    resp = client.get(f'/api/calendar?view=month&date={day.isoformat()}&workload=1&project=Work')
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['projects'] == ['Home', 'Work']
    assert data['filters'] == {'search': '', 'project': 'Work', 'type': 'all'}
    cells = [c for week in data['data']['weeks'] for c in week]
    cell = next(c for c in cells if c['date'] == day.isoformat())
    assert [i['title'] for i in cell['items']] == ['Team sync']
    assert cell['workload_label'] == '1h'

    resp = client.get('/api/calendar?view=list&q=GROCER')
    titles = [i['title'] for i in resp.get_json()['data']['items']]
    assert titles == ['Buy groceries']


def test_calendar_rejects_bad_parameters(client):
    assert client.get('/api/calendar?view=year').status_code == 400
    assert client.get('/api/calendar?date=tomorrow').status_code == 400
    assert client.get('/api/calendar?type=note').status_code == 400


def test_page_load_rolls_overdue_tasks_to_today(client, today):
    overdue = today - timedelta(days=2)
    task = create(client, '/api/tasks', {'title': 'Overdue', 'due_date': f"{overdue.isoformat()}T14:30"})
    done = create(client, '/api/tasks', {'title': 'Done', 'status': 'completed', 'due_date': f"{overdue.isoformat()}T09:00"})

    data = client.get('/api/calendar').get_json()
    assert data['rolled_over'] == 1
    assert data['stats']['today_items'] == 1

    moved = client.get(f"/api/tasks/{task['id']}").get_json()
    assert moved['due_date'] == f"{today.isoformat()}T14:30:00"
    assert moved['is_auto_rolled'] is True
    assert moved['rolled_from'] == f"{overdue.isoformat()}T14:30:00"
    untouched = client.get(f"/api/tasks/{done['id']}").get_json()
    assert untouched['due_date'] == f"{overdue.isoformat()}T09:00:00"

    assert client.post('/api/calendar/rollover-now').get_json() == {'status': 'ok', 'rolled': 0}


def test_navigate_endpoint(client, today):
    resp = client.get('/api/calendar/navigate?view=week&date=2026-10-17&direction=next')
    assert resp.get_json()['date'] == '2026-10-24'
    resp = client.get('/api/calendar/navigate?view=month&date=2026-10-17&direction=today')
    assert resp.get_json()['date'] == today.isoformat()
    assert resp.get_json()['selected'] == today.isoformat()
    assert client.get('/api/calendar/navigate?view=week&direction=up').status_code == 400


def test_drop_event_moves_date_and_keeps_duration(client):
    event = create(client, '/api/events', {
        'title': 'Workshop', 'start_date': '2099-05-04T09:15', 'end_date': '2099-05-04T11:45',
    })
    other = create(client, '/api/events', {'title': 'Other', 'start_date': '2099-05-04T13:00'})

    resp = client.post(f"/api/calendar/items/event/{event['id']}/reschedule", json={'date': '2099-05-07'})
    assert resp.status_code == 200
    item = resp.get_json()['item']
    assert item['start_time'] == '2099-05-07T09:15:00'
    assert item['end_time'] == '2099-05-07T11:45:00'
    assert item['duration'] == 150

    untouched = client.get(f"/api/events/{other['id']}").get_json()
    assert untouched['start_date'] == '2099-05-04T13:00:00'


def test_drop_undated_task_and_time_block(client):
    task = create(client, '/api/tasks', {'title': 'Someday'})
    resp = client.post(f"/api/calendar/items/task/{task['id']}/reschedule", json={'date': '2099-01-02'})
    assert resp.get_json()['item']['date'] == '2099-01-02'

    block = create(client, '/api/time-blocks', {
        'title': 'Focus', 'start_time': '2099-01-02T08:00', 'end_time': '2099-01-02T09:30',
    })
    client.post(f"/api/calendar/items/timeblock/{block['id']}/reschedule", json={'date': '2099-01-05'})
    stored = client.get(f"/api/time-blocks/{block['id']}").get_json()
    assert stored['start_time'] == '2099-01-05T08:00:00'
    assert stored['end_time'] == '2099-01-05T09:30:00'


def test_drop_rejects_bad_input(client):
    assert client.post('/api/calendar/items/note/1/reschedule', json={'date': '2099-01-01'}).status_code == 404
    assert client.post('/api/calendar/items/task/999/reschedule', json={'date': '2099-01-01'}).status_code == 404
    task = create(client, '/api/tasks', {'title': 'x'})
    assert client.post(f"/api/calendar/items/task/{task['id']}/reschedule", json={'date': 'soon'}).status_code == 400


def test_failed_drop_reports_error_and_keeps_state(client, monkeypatch):
    event = create(client, '/api/events', {'title': 'Fixed', 'start_date': '2099-05-04T09:00'})

    def broken_commit(self):
        raise SQLAlchemyError('database is locked')

    monkeypatch.setattr(Session, 'commit', broken_commit)
    resp = client.post(f"/api/calendar/items/event/{event['id']}/reschedule", json={'date': '2099-05-09'})
    assert resp.status_code == 500
    assert resp.get_json() == {'error': 'Could not reschedule item'}
    monkeypatch.undo()

    stored = db.session.get(CalendarEvent, event['id'])
    assert stored.start_date == datetime(2099, 5, 4, 9, 0)


def test_update_calendar_item_dispatches_by_type(client):
    reminder = create(client, '/api/reminders', {'title': 'Call mom', 'remind_at': '2099-02-01T19:00'})
    resp = client.patch(f"/api/calendar/items/reminder/{reminder['id']}", json={'status': 'completed'})
    assert resp.status_code == 200
    assert resp.get_json()['item']['status'] == 'completed'
    assert resp.get_json()['record']['completed'] is True

    task = create(client, '/api/tasks', {'title': 'Draft', 'due_date': '2099-02-01T10:00'})
    resp = client.patch(f"/api/calendar/items/task/{task['id']}", json={'status': 'bogus'})
    assert resp.status_code == 400
    assert db.session.get(Task, task['id']).status == 'todo'

    assert client.patch('/api/calendar/items/goal/404', json={}).status_code == 404


def test_focus_mode_queue(client, today):
    stamp = today.isoformat()
    create(client, '/api/tasks', {'title': 'Low', 'priority': 'low', 'due_date': f"{stamp}T08:00"})
    create(client, '/api/tasks', {'title': 'High', 'priority': 'high', 'due_date': f"{stamp}T15:00", 'estimated_minutes': 60})
    create(client, '/api/tasks', {'title': 'Finished', 'status': 'completed', 'due_date': f"{stamp}T09:00"})

    data = client.get(f'/api/calendar/focus?date={stamp}').get_json()
    assert [i['title'] for i in data['items']] == ['High', 'Low']
    assert data['remaining_minutes'] == 90
    assert data['remaining_time'] == '1h 30m'


def test_recurring_events_materialize_once_and_respect_deletions(client):
    create(client, '/api/recurrence-rules', {
        'entity_type': 'event', 'title': 'Standup', 'frequency': 'daily',
        'start_day': '2099-03-02', 'end_day': '2099-03-06',
        'start_time': '09:00', 'duration_minutes': 15,
    })

    url = '/api/calendar/items?start=2099-03-01&end=2099-03-08&type=event'
    first = client.get(url).get_json()['items']
    second = client.get(url).get_json()['items']
    assert len(first) == 5
    assert [i['key'] for i in second] == [i['key'] for i in first]
    assert first[0]['start_time'] == '2099-03-02T09:00:00'
    assert first[0]['duration'] == 15

    assert client.delete(f"/api/events/{first[2]['id']}").status_code == 204
    remaining = client.get(url).get_json()['items']
    assert [i['date'] for i in remaining] == ['2099-03-02', '2099-03-03', '2099-03-05', '2099-03-06']


def test_editing_a_rule_prunes_instances(client):
    rule = create(client, '/api/recurrence-rules', {
        'entity_type': 'task', 'title': 'Water plants', 'frequency': 'daily',
        'start_day': '2099-03-02', 'end_day': '2099-03-08',
    })
    url = '/api/calendar/items?start=2099-03-02&end=2099-03-08&type=task'
    assert len(client.get(url).get_json()['items']) == 7

    resp = client.put(f"/api/recurrence-rules/{rule['id']}", json={'frequency': 'weekly'})
    assert resp.status_code == 200
    items = client.get(url).get_json()['items']
    assert [i['date'] for i in items] == ['2099-03-02']


def test_dropped_recurring_instance_does_not_come_back(client):
    rule = create(client, '/api/recurrence-rules', {
        'entity_type': 'event', 'title': 'Standup', 'frequency': 'daily',
        'start_day': '2099-03-02', 'end_day': '2099-03-06',
        'start_time': '09:00', 'duration_minutes': 15,
    })
    url = '/api/calendar/items?start=2099-03-01&end=2099-03-31&type=event'
    moved = client.get(url).get_json()['items'][1]
    assert moved['date'] == '2099-03-03'

    resp = client.post(f"/api/calendar/items/event/{moved['id']}/reschedule", json={'date': '2099-03-20'})
    assert resp.status_code == 200
    expected = ['2099-03-02', '2099-03-04', '2099-03-05', '2099-03-06', '2099-03-20']
    assert [i['date'] for i in client.get(url).get_json()['items']] == expected
    assert client.get(f"/api/events/{moved['id']}").get_json()['recurrence_id'] is None

    # editing the rule leaves the moved instance and its empty day alone
    assert client.put(f"/api/recurrence-rules/{rule['id']}", json={'title': 'Daily standup'}).status_code == 200
    assert [i['date'] for i in client.get(url).get_json()['items']] == expected


def test_updating_a_recurring_task_onto_another_day_detaches_it(client):
    rule = create(client, '/api/recurrence-rules', {
        'entity_type': 'task', 'title': 'Stretch', 'frequency': 'daily',
        'start_day': '2099-04-01', 'end_day': '2099-04-03', 'start_time': '08:00',
    })
    url = '/api/calendar/items?start=2099-04-01&end=2099-04-10&type=task'
    first, second, third = client.get(url).get_json()['items']

    resp = client.patch(f"/api/calendar/items/task/{first['id']}", json={'start_time': '2099-04-08T08:00'})
    assert resp.status_code == 200
    assert resp.get_json()['record']['recurrence_id'] is None
    assert client.patch(f"/api/tasks/{second['id']}", json={'due_date': '2099-04-09T08:00'}).status_code == 200

    # a new time on the same day keeps the instance on its rule
    resp = client.patch(f"/api/tasks/{third['id']}", json={'due_date': '2099-04-03T10:00'})
    assert resp.get_json()['recurrence_id'] == rule['id']

    assert [i['date'] for i in client.get(url).get_json()['items']] == ['2099-04-03', '2099-04-08', '2099-04-09']


def test_rolled_recurring_tasks_are_not_recreated_on_reload(client, today):
    start = today - timedelta(days=3)
    rule = create(client, '/api/recurrence-rules', {
        'entity_type': 'task', 'title': 'Journal', 'frequency': 'daily',
        'start_day': start.isoformat(), 'end_day': today.isoformat(),
    })

    def journal():
        return [t for t in client.get('/api/tasks').get_json() if t['title'] == 'Journal']

    client.get(f'/api/calendar/items?start={start.isoformat()}&end={today.isoformat()}')
    assert len(journal()) == 4

    for _ in range(4):
        assert client.get('/api/calendar?view=week').status_code == 200
        assert len(journal()) == 4

    tasks = journal()
    assert {t['due_date'][:10] for t in tasks} == {today.isoformat()}
    rolled = [t for t in tasks if t['is_auto_rolled']]
    assert len(rolled) == 3
    assert all(t['recurrence_id'] is None for t in rolled)

    assert client.put(f"/api/recurrence-rules/{rule['id']}", json={'title': 'Journal'}).status_code == 200
    assert len(journal()) == 4


def test_typed_update_accepts_calendar_item_fields(client):
    event = create(client, '/api/events', {
        'title': 'Review', 'start_date': '2099-01-01T09:00', 'end_date': '2099-01-01T10:00',
    })
    url = f"/api/calendar/items/event/{event['id']}"

    resp = client.patch(url, json={
        'key': f"event:{event['id']}", 'title': 'Design review',
        'start_time': '2099-01-02T09:00', 'end_time': '2099-01-02T10:30',
    })
    assert resp.status_code == 200
    item = resp.get_json()['item']
    assert item['title'] == 'Design review'
    assert item['start_time'] == '2099-01-02T09:00:00'
    assert item['duration'] == 90

    item = client.patch(url, json={'date': '2099-01-05'}).get_json()['item']
    assert item['start_time'] == '2099-01-05T09:00:00'
    assert item['end_time'] == '2099-01-05T10:30:00'

    reminder = create(client, '/api/reminders', {'title': 'Party', 'remind_at': '2099-02-01T19:00'})
    resp = client.patch(f"/api/calendar/items/reminder/{reminder['id']}", json={
        'description': 'bring cake', 'start_time': '2099-02-01T18:00',
    })
    assert resp.get_json()['record']['notes'] == 'bring cake'
    assert resp.get_json()['record']['remind_at'] == '2099-02-01T18:00:00'


def test_typed_update_rejects_fields_the_item_does_not_have(client):
    event = create(client, '/api/events', {'title': 'Review', 'start_date': '2099-01-01T09:00'})
    resp = client.patch(f"/api/calendar/items/event/{event['id']}", json={'color': '#ffffff', 'duration': 30})
    assert resp.status_code == 400
    assert resp.get_json() == {'error': 'Unknown field(s) for event: duration'}
    assert client.get(f"/api/events/{event['id']}").get_json()['color'] is None

    resp = client.patch(f"/api/calendar/items/event/{event['id']}", json={'date': 'later'})
    assert resp.status_code == 400
