import pytest

from app import create_app
from app.extensions import db
from app.models import Rsvp, RsvpStatus
from tests.fakes import FakeCamera


@pytest.fixture()
def app():
    app = create_app('testing')
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def make_rsvp(app):
    def _make(token='tok-ana', name='Ana', email='a@x.com', phone='+1 5551234567',
              coming=True, status=RsvpStatus.INVITED):
        record = Rsvp(token=token, name=name, email=email, phone=phone, coming=coming, status=status)
        db.session.add(record)
        db.session.commit()
        return record

    return _make


@pytest.fixture()
def fake_camera():
    return FakeCamera()
