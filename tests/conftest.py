import pytest
import os
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import backoffice.models  # noqa: F401
from backoffice.core.config import settings
from backoffice.core.deps import get_db
from backoffice.core.security import create_access_token
from backoffice.db.base import Base
from backoffice.main import app


@pytest.fixture()
def test_context():
    original_secret = settings.secret_key
    original_negative_stock = settings.allow_negative_stock
    original_partial_payments = settings.report_partial_payments
    settings.secret_key = "test-secret-key"

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
    settings.secret_key = original_secret
    settings.allow_negative_stock = original_negative_stock
    settings.report_partial_payments = original_partial_payments


@pytest.fixture()
def staff_headers(test_context) -> dict[str, str]:
    token = create_access_token("user-sales-1", role="salesperson")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_headers(test_context) -> dict[str, str]:
    token = create_access_token("user-admin-1", role="admin")
    return {"Authorization": f"Bearer {token}"}
