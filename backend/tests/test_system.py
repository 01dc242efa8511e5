"""
System endpoint and CLI tests.

Verifies:
- /health reports database and session checks
- /version exposes no secrets
- CLI groups bootstrap users, provision tags and run maintenance
"""

from datetime import timedelta

from app.extensions import db
from app.models import NfcTag, RateLimitBucket, SecurityEvent, User
from app.time_utils import utcnow


class TestHealth:

    def test_healthy(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["session_service"]["status"] == "healthy"
        assert body["checks"]["rate_limits"]["status"] == "healthy"

    def test_failing_check_is_503(self, client, db_session, monkeypatch):
        from app.routes import system

        def boom():
            raise RuntimeError("sessions table missing")

        monkeypatch.setattr(system, "_session_store_details", boom)
        resp = client.get("/health")
        assert resp.status_code == 503
        body = resp.get_json()
        assert body["status"] == "unhealthy"
        assert body["checks"]["session_service"]["status"] == "unhealthy"
        assert body["checks"]["database"]["status"] == "healthy"

    def test_version(self, client):
        body = client.get("/version").get_json()
        assert body["api_version"]
        assert "SECRET_KEY" not in str(body)


class TestCli:

    def test_system_init_creates_admin(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["system", "init", "--admin-email", "root@example.com"])
        assert "PASS Created admin" in result.output

        user = db.session.query(User).filter_by(email="root@example.com").one()
        assert user.is_admin

        result = runner.invoke(args=["system", "init", "--admin-email", "root@example.com"])
        assert "Using existing admin" in result.output

    def test_users_create_and_promote(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "users", "create", "--email", "eve@example.com", "--password", "Password123!",
        ])
        assert "PASS Created user" in result.output

        result = runner.invoke(args=["users", "promote", "eve@example.com"])
        assert "is now an admin" in result.output
        db.session.expire_all()
        assert db.session.query(User).filter_by(email="eve@example.com").one().role == "admin"

    def test_users_create_weak_password(self, app, db_session):
        result = app.test_cli_runner().invoke(args=[
            "users", "create", "--email", "eve@example.com", "--password", "weak",
        ])
        assert "FAIL Password validation failed" in result.output

    def test_tags_provisioning(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["tags", "create-batch", "--slug", "store-9", "--name", "Store 9"])
        assert "PASS Created batch store-9" in result.output

        result = runner.invoke(args=["tags", "generate", "store-9", "--count", "2", "--label", "Bakery"])
        assert "PASS Generated 2 tags in store-9" in result.output
        assert result.output.count("/t/store-9/") == 2
        assert db.session.query(NfcTag).count() == 2

        result = runner.invoke(args=["tags", "list", "--batch", "store-9"])
        assert result.output.count("taps=0") == 2

    def test_generate_unknown_batch(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["tags", "generate", "missing"])
        assert "FAIL" in result.output

    def test_maintenance(self, app, db_session):
        db_session.add(RateLimitBucket(key="old", count=3, reset_at=utcnow() - timedelta(minutes=1)))
        db_session.add(SecurityEvent(
            event_type="LOGIN_FAILED",
            success=False,
            occurred_at=utcnow() - timedelta(days=120),
        ))
        db_session.commit()

        runner = app.test_cli_runner()
        assert "Deleted 1 expired rate-limit buckets" in runner.invoke(
            args=["maintenance", "cleanup-rate-limits"]
        ).output
        assert "Deleted 1 security events" in runner.invoke(
            args=["maintenance", "cleanup-security-events"]
        ).output
        assert "Deleted 0 expired or revoked sessions" in runner.invoke(
            args=["maintenance", "cleanup-sessions"]
        ).output
