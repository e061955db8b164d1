import pytest
from decimal import Decimal
from fastapi.testclient import TestClient

from backend.app.core.security import create_access_token
from backend.app.core.settings import reset_settings
from backend.app.db.base import Base
from backend.app.db.session import SessionLocal, engine
from backend.app.main import app
from backend.app.models.customer import Customer
from backend.app.models.invoice import Invoice
from backend.app.models.service import Service
from backend.app.models.user import User

client = TestClient(app)


@pytest.fixture(autouse=True)
def setup_db(monkeypatch):
    monkeypatch.setenv("MAIL_HOST", "")
    reset_settings()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    reset_settings()


def _auth(user_id):
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


def _create_admin():
    db = SessionLocal()
    try:
        admin = User(email="admin@example.com", hashed_password="x", is_admin=True)
        db.add(admin)
        db.commit()
        db.refresh(admin)
        return admin.id
    finally:
        db.close()


def _create_billable_customer(name="Acme Corp", email="ops@acme.example"):
    db = SessionLocal()
    try:
        customer = Customer(name=name, email="ap@acme.example", contact_name="Pat Doe")
        db.add(customer)
        db.commit()
        user = User(email=email, hashed_password="x", customer_id=customer.id)
        db.add(user)
        db.commit()
        db.add(Service(user_id=user.id, name="Cabinet A12", type="colocation", location="MIA1", monthly_price=Decimal("39.99")))
        db.commit()
        return user.id
    finally:
        db.close()


def test_billing_run_requires_token():
    response = client.post("/admin/billing/run", json={"reference_date": "2026-03-15"})
    assert response.status_code in (401, 403)


def test_billing_run_requires_admin():
    user_id = _create_billable_customer()
    response = client.post("/admin/billing/run", json={"reference_date": "2026-03-15"}, headers=_auth(user_id))
    assert response.status_code == 403


def test_admin_can_run_billing():
    admin_id = _create_admin()
    owner_id = _create_billable_customer()

    response = client.post("/admin/billing/run", json={"reference_date": "2026-03-15"}, headers=_auth(admin_id))

    assert response.status_code == 200
    data = response.json()
    assert data["period"] == "2026-03"
    assert data["generated_count"] == 1
    assert data["errors"] == []
    assert data["cancelled"] is False
    assert data["invoices"][0]["owner_id"] == owner_id
    assert data["invoices"][0]["total"] == "39.99"
    assert data["invoices"][0]["issue_date"] == "2026-03-01"

    again = client.post("/admin/billing/run", json={"reference_date": "2026-03-20"}, headers=_auth(admin_id))
    assert again.json()["generated_count"] == 0
    assert again.json()["skipped_count"] == 1

    db = SessionLocal()
    try:
        assert db.query(Invoice).count() == 1
    finally:
        db.close()


def test_email_check_without_smtp_host():
    admin_id = _create_admin()
    response = client.get("/admin/billing/email-check", headers=_auth(admin_id))
    assert response.status_code == 200
    assert response.json() == {"connected": True}


def test_invalid_token_rejected():
    response = client.get("/admin/billing/email-check", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401
