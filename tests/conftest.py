import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["RETRY_BASE_DELAY_MS"] = "0"
os.environ["SAVE_MAX_ATTEMPTS"] = "3"
os.environ["CORS_ORIGINS"] = "http://localhost:3000"

import itertools
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from auth import hash_password
from main import app, get_store
from models.main_models import CompanyRecord, QuestionnaireAnswers, UserRecord
from storage import new_id

PASSWORDS = {"admin": "admin123", "user": "user123", "other": "other123"}
ROLES = {"admin": "admin", "user": "user", "other": "user"}
# bcrypt is slow; hash the fixture passwords once per session
HASHES = {name: hash_password(password) for name, password in PASSWORDS.items()}


class InMemoryStore:
    """
    Dict-backed stand-in for PostgresStore.

    `save_errors` holds exceptions raised, in order, by the next
    questionnaire saves before they start succeeding.
    """

    def __init__(self):
        self.users = {}
        self.companies = {}
        self.save_errors = []
        self.save_calls = 0
        self._seq = itertools.count()

    # users
    def find_user_by_username(self, username):
        return next((u for u in self.users.values() if u.username == username), None)

    def find_user(self, user_id):
        return self.users.get(user_id)

    def list_users(self):
        return list(self.users.values())

    def insert_user(self, username, password_hash, role):
        now = datetime.now(timezone.utc)
        user = UserRecord(id=new_id(), username=username, password_hash=password_hash,
                          role=role, created_at=now, updated_at=now)
        self.users[user.id] = user
        return user

    def update_user(self, user_id, fields):
        user = self.users.get(user_id)
        if user is None:
            return None
        updated = user.model_copy(update={**fields, "updated_at": datetime.now(timezone.utc)})
        self.users[user_id] = updated
        return updated

    def delete_user(self, user_id):
        return self.users.pop(user_id, None) is not None

    # companies
    def list_companies(self, created_by=None):
        rows = [c for _, c in sorted(self.companies.values(), key=lambda e: e[0], reverse=True)]
        if created_by is not None:
            rows = [c for c in rows if c.created_by == created_by]
        return rows

    def insert_company(self, name, created_by, data=None):
        company = CompanyRecord(id=new_id(), name=name, created_by=created_by,
                                data=data or {}, created_at=datetime.now(timezone.utc))
        self.companies[company.id] = (next(self._seq), company)
        return company

    def find_company(self, company_id):
        entry = self.companies.get(company_id)
        return entry[1] if entry else None

    def _replace(self, company_id, **update):
        entry = self.companies.get(company_id)
        if entry is None:
            return None
        company = entry[1].model_copy(update=update)
        self.companies[company_id] = (entry[0], company)
        return company

    def rename_company(self, company_id, name):
        return self._replace(company_id, name=name)

    def save_company_data(self, company_id, data):
        return self._replace(company_id, data=data) is not None

    def save_questionnaire(self, company_id, answers):
        self.save_calls += 1
        if self.save_errors:
            raise self.save_errors.pop(0)
        questionnaire = QuestionnaireAnswers(answers=answers)
        return self._replace(company_id, questionnaire=questionnaire) is not None

    def delete_company(self, company_id):
        return self.companies.pop(company_id, None) is not None

    def delete_all_companies(self):
        count = len(self.companies)
        self.companies.clear()
        return count


@pytest.fixture
def store():
    db = InMemoryStore()
    for name in PASSWORDS:
        db.insert_user(name, HASHES[name], ROLES[name])
    return db


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def login(client, username):
    response = client.post(
        "/auth-login", json={"username": username, "password": PASSWORDS[username]}
    )
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def admin_headers(client):
    return login(client, "admin")


@pytest.fixture
def user_headers(client):
    return login(client, "user")


@pytest.fixture
def other_headers(client):
    return login(client, "other")
