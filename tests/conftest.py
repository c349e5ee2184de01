import os

os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
os.environ['ENABLE_CALENDAR_JOBS'] = '0'
os.environ['SECRET_KEY'] = 'test-secret'
os.environ['API_SHARED_KEY'] = 'shared-test-key'

import pytest

from app import app as flask_app
from models import db, User


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True, DEFAULT_TIMEZONE='UTC', CALENDAR_WEEK_START='sunday')
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def user(app):
    u = User(username='alice')
    u.set_pin('1234')
    db.session.add(u)
    db.session.commit()
    return u


@pytest.fixture
def client(app, user):
    test_client = app.test_client()
    with test_client.session_transaction() as sess:
        sess['user_id'] = user.id
    return test_client


@pytest.fixture
def anon_client(app):
    return app.test_client()
