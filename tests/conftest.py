"""Shared pytest fixtures for control-plane tests."""
import os
import shutil
import sys
import pytest

# Add project root to path
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _PROJECT_ROOT)

# ---------------------------------------------------------------------------
# Deterministic test environment, set BEFORE any settings are loaded.
# TESTING bypasses the daemon-token requirement; a template config path is
# needed for bootstrap requests to be accepted at all.
# ---------------------------------------------------------------------------
os.environ.setdefault('TESTING', 'true')
os.environ.setdefault('PROVISION_TEMPLATE_CONFIG_PATH', '/opt/openclaw/templates/openclaw.json')
os.environ.setdefault('PROVISION_RUNNER_HOST', 'test-runner')
os.environ.setdefault('LOG_FORMAT', 'text')


# =============================================================================
# Singleton reset
# =============================================================================

@pytest.fixture(autouse=True)
def _reset_singletons():
    """Reset settings, DB and service singletons between tests for isolation."""
    yield
    from config.settings import get_settings
    from core.audit import audit_logger, clear_audit_log
    from core.db import DatabaseManager
    from core.provisioning import reset_provisioning_service

    reset_provisioning_service()
    DatabaseManager.reset()
    get_settings.cache_clear()
    clear_audit_log()
    audit_logger.set_sink(None)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def _template_db(tmp_path_factory):
    """Run Alembic migrations once per session to create a template DB.

    Other fixtures copy this template instead of re-running migrations.
    """
    template_dir = tmp_path_factory.mktemp("template")
    template_path = template_dir / "template.db"

    from alembic.config import Config
    from alembic import command

    alembic_cfg = Config(os.path.join(_PROJECT_ROOT, "alembic.ini"))
    alembic_cfg.set_main_option(
        "sqlalchemy.url", f"sqlite:///{template_path}"
    )
    alembic_cfg.set_main_option(
        "script_location", os.path.join(_PROJECT_ROOT, "alembic")
    )
    command.upgrade(alembic_cfg, "head")

    return template_path


@pytest.fixture
def consolidated_db(tmp_path, _template_db):
    """Per-test DB: copy the template and wire up DatabaseManager.

    Yields the temp DB path.
    """
    db_path = tmp_path / "test_tenantops.db"
    shutil.copy2(_template_db, db_path)

    from core.db import DatabaseManager
    DatabaseManager.reset()
    DatabaseManager.get_instance(db_path=db_path)

    yield db_path


@pytest.fixture
def dm(consolidated_db):
    from core.db import DatabaseManager
    return DatabaseManager.get_instance()


# =============================================================================
# Provisioning Fixtures
# =============================================================================

class FakeBackend:
    """StepBackend double: records dispatched steps, fails on request."""

    name = "fake"

    def __init__(self, fail_on=None, code=1, stderr="boom", raises=None):
        self.fail_on = fail_on
        self.code = code
        self.stderr = stderr
        self.raises = raises
        self.calls = []

    async def run(self, step):
        from core.provisioning.models import CommandResult

        self.calls.append(step.key)
        if step.key == self.fail_on:
            if self.raises is not None:
                raise self.raises
            return CommandResult(code=self.code, stderr=self.stderr)
        return CommandResult(code=0, stdout=f"{step.key} ok")


@pytest.fixture
def backend_factory():
    """FakeBackend constructor, for tests that need a failing step."""
    return FakeBackend


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def make_service(consolidated_db, tmp_path):
    """Factory for ProvisioningService with an injected backend and kill switch."""
    from config.settings import get_settings
    from core.db import DatabaseManager
    from core.provisioning import ExecutionMode, ExecutionPolicy, ProvisioningService

    def _make(backend=None, execution_enabled=True, mode=ExecutionMode.DIRECT):
        settings = get_settings()
        settings.provisioning.artifact_root = tmp_path / "artifacts"
        return ProvisioningService(
            settings=settings,
            dm=DatabaseManager.get_instance(),
            policy=ExecutionPolicy(mode=mode, execution_enabled=execution_enabled),
            backend=backend or FakeBackend(),
        )

    return _make


@pytest.fixture
def service(make_service, fake_backend):
    return make_service(backend=fake_backend)


@pytest.fixture
def acme_request():
    return {
        "slug": "acme",
        "display_name": "Acme Corp",
        "gateway_port": 19001,
        "dashboard_port": 19002,
    }


# =============================================================================
# Flask API Test Client Fixtures
# =============================================================================

@pytest.fixture
def app(consolidated_db, tmp_path, monkeypatch):
    """Create Flask app for testing via the application factory.

    Depends on consolidated_db so that DatabaseManager is wired to a temp DB
    (created by Alembic) before the Flask app starts.
    """
    from config.settings import get_settings
    from dashboard.app import create_app

    monkeypatch.setenv('PROVISION_ARTIFACT_ROOT', str(tmp_path / 'artifacts'))
    get_settings.cache_clear()

    flask_app = create_app(config={
        'TESTING': True,
    })
    return flask_app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()


@pytest.fixture
def actor_headers():
    """Headers the upstream auth proxy would set for a given identity."""
    def _headers(user):
        return {'X-Remote-User': user}
    return _headers
