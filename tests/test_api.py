"""
HTTP tests for the JSON API (Flask test client).
"""

from datetime import datetime
from io import BytesIO
from unittest.mock import patch

import pytest
from sqlalchemy import select

import app as app_module
from app import create_app
from core.exceptions import DispatchError
from models.entities import Account, PrintJob
from models.order import Identity
from services.ledger_service import period_tags


# Fixtures

@pytest.fixture
def app(tmp_path, backend):
    app = create_app(
        "config.TestingConfig",
        overrides={
            "DATABASE_URL": f"sqlite:///{tmp_path / 'api.db'}",
            "UPLOAD_FOLDER": str(tmp_path / "uploads"),
            "PRINT_BACKEND": backend,
        },
    )
    yield app
    app.config["STORE"].dispose()


@pytest.fixture
def account(app):
    """Create an account through the store and return its id."""

    def _make(username="alice", role="user", **fields):
        values = {"balance_cents": 500}
        values.update(fields)
        with app.config["STORE"].transaction() as session:
            row = Account(username=username, role=role, **values)
            session.add(row)
            session.flush()
            return row.id

    return _make


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    def _login(user_id, username="alice", role="user"):
        with client.session_transaction() as sess:
            sess["user_id"] = user_id
            sess["username"] = username
            sess["role"] = role

    return _login


def _pdf_bytes(pdf_factory, pages=5):
    return pdf_factory(f"upload-{pages}.pdf", pages).read_bytes()


def _jobs(app):
    with app.config["STORE"].transaction(read_only=True) as session:
        return list(session.scalars(select(PrintJob)))


class TestAuthentication:
    """Every API route requires an identity."""

    @pytest.mark.parametrize("method,path", [
        ("post", "/api/estimate"),
        ("post", "/api/print"),
        ("post", "/api/convert"),
        ("get", "/api/me"),
        ("get", "/api/print-records"),
        ("get", "/api/printers"),
    ])
    def test_requires_identity(self, client, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 401
        assert response.get_json()["reason"] == "unauthorized"

    def test_identity_provider_callable(self, app, account, client):
        user_id = account("carol")
        app.config["IDENTITY_PROVIDER"] = lambda request: Identity(user_id, "carol")

        response = client.get("/api/me")
        assert response.status_code == 200
        assert response.get_json()["username"] == "carol"


class TestEstimateEndpoint:
    """POST /api/estimate"""

    def test_estimate(self, client, account, login, pdf_factory, app):
        user_id = account(balance_cents=20)
        login(user_id)

        response = client.post(
            "/api/estimate",
            data={"file": (BytesIO(_pdf_bytes(pdf_factory)), "five.pdf"), "color": "false"},
            content_type="multipart/form-data",
        )

        assert response.status_code == 200
        body = response.get_json()
        assert body["pages"] == 5
        assert body["costCents"] == 50
        assert body["insufficientBalance"] is True
        assert body["wouldExceedMonthly"] is False
        assert body["estimated"] is False
        assert _jobs(app) == []

    def test_missing_file(self, client, account, login):
        login(account())
        response = client.post("/api/estimate", data={}, content_type="multipart/form-data")
        assert response.status_code == 400


class TestPrintEndpoint:
    """POST /api/print"""

    def _post(self, client, pdf_factory, **fields):
        data = {"file": (BytesIO(_pdf_bytes(pdf_factory)), "five.pdf"), "printer": "office"}
        data.update(fields)
        return client.post("/api/print", data=data, content_type="multipart/form-data")

    def test_prints_and_debits(self, client, account, login, pdf_factory, backend, app):
        login(account(balance_cents=500))

        response = self._post(client, pdf_factory, duplex="true", copies="2")

        assert response.status_code == 200
        body = response.get_json()
        assert body == {
            "jobId": "office-1",
            "recordId": body["recordId"],
            "ok": True,
            "pages": 5,
            "costCents": 50,
            "balanceCents": 450,
            "monthSpentCents": 50,
            "yearSpentCents": 50,
            "isDuplex": True,
            "isColor": False,
        }
        assert backend.requests[0].sides == "two-sided-long-edge"
        assert backend.requests[0].copies == 2
        assert _jobs(app)[0].status == "printed"

    @pytest.mark.parametrize("copies", ["0", "101", "many"])
    def test_bad_copies_rejected_before_upload(self, client, account, login, pdf_factory, app, tmp_path, copies):
        login(account())

        response = self._post(client, pdf_factory, copies=copies)

        assert response.status_code == 400
        assert response.get_json()["reason"] == "invalid_print_options"
        assert list((tmp_path / "uploads").rglob("*.pdf")) == []

    def test_missing_printer(self, client, account, login, pdf_factory):
        login(account())
        response = self._post(client, pdf_factory, printer="")
        assert response.status_code == 400

    def test_printer_name_is_sanitized(self, client, account, login, pdf_factory, backend):
        login(account())
        response = self._post(client, pdf_factory, printer="<b>office</b>")
        assert response.status_code == 200
        assert backend.requests[0].printer == "office"

    def test_insufficient_balance(self, client, account, login, pdf_factory, app):
        login(account(balance_cents=20))

        response = self._post(client, pdf_factory)

        assert response.status_code == 402
        assert response.get_json()["reason"] == "insufficient_balance"
        assert _jobs(app) == []

    def test_stale_month_counter_rolls_over(self, client, account, login, pdf_factory):
        # Blank periods belong to no month, so the spend resets before the check
        login(account(monthly_limit_cents=100, month_spent_cents=80))
        response = self._post(client, pdf_factory)
        assert response.status_code == 200

    def test_monthly_limit(self, client, account, login, pdf_factory, app):
        month, year = period_tags(datetime.now())
        login(account(monthly_limit_cents=100, month_spent_cents=80, month_period=month, year_period=year))

        response = self._post(client, pdf_factory)

        assert response.status_code == 403
        assert response.get_json()["reason"] == "monthly_limit_exceeded"
        assert _jobs(app) == []

    def test_dispatch_failure_is_refunded(self, client, account, login, pdf_factory, backend, app):
        backend.fail_with = DispatchError("lp failed (rc=1): printer offline", printer="office")
        user_id = account(balance_cents=500)
        login(user_id)

        response = self._post(client, pdf_factory)

        assert response.status_code == 502
        body = response.get_json()
        assert body["reason"] == "dispatch_failed"
        assert "offline" not in body["error"]
        assert _jobs(app)[0].status == "failed"
        with app.config["STORE"].transaction(read_only=True) as session:
            assert session.get(Account, user_id).balance_cents == 500


class TestAccountEndpoints:
    """GET /api/me, /api/print-records, /api/printers"""

    def test_me(self, client, account, login):
        login(account(balance_cents=321, yearly_limit_cents=5000))
        body = client.get("/api/me").get_json()
        assert body["balanceCents"] == 321
        assert body["yearlyLimitCents"] == 5000
        assert body["perPageCents"] == 10

    def test_me_unknown_account(self, client, login):
        login(777)
        assert client.get("/api/me").status_code == 404

    def test_print_records(self, client, account, login, pdf_factory):
        login(account())
        client.post(
            "/api/print",
            data={"file": (BytesIO(_pdf_bytes(pdf_factory)), "five.pdf"), "printer": "office"},
            content_type="multipart/form-data",
        )

        records = client.get("/api/print-records").get_json()
        assert len(records) == 1
        assert records[0]["filename"] == "five.pdf"
        assert records[0]["jobId"] == "office-1"

        assert client.get("/api/print-records?start=2000-01-01&end=2000-01-31").get_json() == []
        assert client.get("/api/print-records?start=yesterday").status_code == 400

    def test_record_file_owner_only(self, client, account, login, pdf_factory, app):
        owner = account("alice")
        other = account("mallory")
        login(owner)
        client.post(
            "/api/print",
            data={"file": (BytesIO(_pdf_bytes(pdf_factory)), "five.pdf"), "printer": "office"},
            content_type="multipart/form-data",
        )
        job_id = _jobs(app)[0].id

        response = client.get(f"/api/print-records/{job_id}/file")
        assert response.status_code == 200
        assert response.data.startswith(b"%PDF")

        login(other, username="mallory")
        assert client.get(f"/api/print-records/{job_id}/file").status_code == 403

        login(other, username="mallory", role="admin")
        assert client.get(f"/api/print-records/{job_id}/file").status_code == 200

    def test_printers(self, client, account, login):
        login(account())
        assert client.get("/api/printers").get_json() == ["office", "color-lab"]


class TestConvertEndpoint:
    """POST /api/convert"""

    def test_text_to_pdf_download(self, client, account, login):
        login(account())

        response = client.post(
            "/api/convert",
            data={"file": (BytesIO(b"hello\nworld\n"), "notes.txt")},
            content_type="multipart/form-data",
        )

        assert response.status_code == 200
        assert response.mimetype == "application/pdf"
        assert response.data.startswith(b"%PDF")
        assert "notes.pdf" in response.headers["Content-Disposition"]

    def test_unknown_type_rejected(self, client, account, login):
        login(account())
        response = client.post(
            "/api/convert",
            data={"file": (BytesIO(b"\x00\x01\x02"), "model.stl")},
            content_type="multipart/form-data",
        )
        assert response.status_code == 400

    def test_fake_pdf_is_not_served_as_pdf(self, client, account, login):
        login(account())
        response = client.post(
            "/api/convert",
            data={"file": (BytesIO(b"this is not a pdf at all"), "report.pdf")},
            content_type="multipart/form-data",
        )
        assert response.status_code == 400
        assert response.get_json()["reason"] == "invalid_request"


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json()["database"] == "ok"


class TestAppLifecycle:
    """Shutdown cleanup is registered once per process, not per app."""

    def _create(self, tmp_path, name, backend):
        return create_app(
            "config.TestingConfig",
            overrides={
                "DATABASE_URL": f"sqlite:///{tmp_path / name}",
                "UPLOAD_FOLDER": str(tmp_path / "uploads"),
                "PRINT_BACKEND": backend,
            },
        )

    def test_single_exit_hook_for_many_apps(self, tmp_path, backend, monkeypatch):
        monkeypatch.setattr(app_module, "_shutdown_registered", False)

        with patch("app.atexit.register") as register:
            first = self._create(tmp_path, "one.db", backend)
            second = self._create(tmp_path, "two.db", backend)

        register.assert_called_once_with(app_module._dispose_open_stores)
        for created in (first, second):
            created.config["STORE"].dispose()

    def test_exit_hook_disposes_open_stores_once(self, tmp_path, backend):
        created = self._create(tmp_path, "three.db", backend)
        store = created.config["STORE"]

        app_module._dispose_open_stores()
        assert store.disposed is True

        # Repeat disposal is a no-op
        store.dispose()
        app_module._dispose_open_stores()
        assert store.disposed is True
