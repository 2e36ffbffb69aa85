"""Shared fixtures: an in-memory database per test and recording fakes for side channels"""

import itertools
import unittest
from datetime import datetime

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rmv_fabrication.database import Base
from rmv_fabrication.models import User
from rmv_fabrication.shared.access import CallerContext
from rmv_fabrication.shared.schemas import ContentReference, SiteAddress

MARCH_FIRST_10AM = datetime(2024, 3, 1, 10, 0)

SITE = SiteAddress(street="12 Mabini St", barangay="San Roque", city="Marikina", province="Metro Manila")


def file_ref(name: str) -> ContentReference:
    return ContentReference(key=f"uploads/{name}", url=f"https://files.example.com/uploads/{name}", original_name=name)


def make_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, event_name, recipient_email, template_data):
        self.sent.append((event_name, recipient_email, template_data))

    def events(self):
        return [event for event, _, _ in self.sent]


class FailingNotifier:
    def notify(self, event_name, recipient_email, template_data):
        raise RuntimeError("mail server down")


class RecordingAudit:
    def __init__(self):
        self.records = []

    def append(self, record):
        self.records.append(record)

    def actions(self):
        return [record.action for record in self.records]


class FailingAudit:
    def append(self, record):
        raise RuntimeError("audit store unavailable")


class WorkflowTestCase(unittest.TestCase):
    """Fresh database, notifier and audit sink for every test"""

    def setUp(self):
        self.engine = make_engine()
        self.Session = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.db = self.Session()
        self.notifier = RecordingNotifier()
        self.audit = RecordingAudit()
        self._sequence = itertools.count(1)

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def make_user(self, role: str, first_name: str = "Test", is_active: bool = True) -> User:
        n = next(self._sequence)
        user = User(
            email=f"{role}{n}@example.com",
            first_name=first_name,
            last_name=f"User{n}",
            role=role,
            is_active=is_active,
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    @staticmethod
    def caller(user: User) -> CallerContext:
        return CallerContext(caller_id=user.id, role=user.role)

    @staticmethod
    def statuses(record) -> list[str]:
        return [entry["status"] for entry in record.status_history]
