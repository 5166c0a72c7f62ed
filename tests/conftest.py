import pytest

from app import create_app
from config import TestConfig
from models import db, Group, GroupMember, User


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def users(app):
    people = {
        "alice": User(name="Alice", email="alice@example.com", upi_id="alice@okbank"),
        "bob": User(name="Bob", email="bob@example.com"),
        "carol": User(name="Carol", email="carol@example.com"),
        "dave": User(name="Dave", email="dave@example.com"),
    }
    db.session.add_all(people.values())
    db.session.commit()
    return people


@pytest.fixture
def group(users):
    """Alice, Bob and Carol share a trip; Dave is not in it."""
    trip = Group(name="Goa Trip", currency="INR", created_by=users["alice"].id)
    db.session.add(trip)
    db.session.flush()
    for name in ("alice", "bob", "carol"):
        db.session.add(GroupMember(group_id=trip.id, user_id=users[name].id))
    db.session.commit()
    return trip


def login(client, user):
    with client.session_transaction() as sess:
        sess["user_id"] = user.id
