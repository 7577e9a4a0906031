"""Shared fixtures: an app built from test settings over a throwaway SQLite file."""

import pytest
from dental_auth.config.config import Settings
from dental_auth.core.roles import Role
from dental_auth.core.security import RequestContext
from dental_auth.db.session import initialize_database
from dental_auth.main import create_app
from httpx import ASGITransport, AsyncClient

DOC_EMAIL = "doc@example.com"
DOC_PASSWORD = "Sec#9True!"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "Adm1n#Clinic"


@pytest.fixture
def settings_factory(tmp_path):
    def factory(**overrides) -> Settings:
        values = {
            "DATABASE_URL_ASYNC": f"sqlite+aiosqlite:///{tmp_path / 'auth.db'}",
            "SECRET_KEY": "test-secret-key-with-enough-length-for-hs256",
            "BCRYPT_ROUNDS": 4,
            "RATE_LIMIT_ENABLED": False,
            "EMAIL_ENABLED": False,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return factory


@pytest.fixture
def settings(settings_factory) -> Settings:
    return settings_factory()


@pytest.fixture
async def app(settings):
    app = create_app(settings)
    await initialize_database(app.state.engine)
    yield app
    await app.state.audit.flush()
    await app.state.rate_limiter.close()
    await app.state.engine.dispose()


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def auth(app):
    return app.state.auth_service


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext(ip_address="127.0.0.1", user_agent="pytest")


@pytest.fixture
def create_user(auth, ctx):
    async def _create(
        email=DOC_EMAIL,
        password=DOC_PASSWORD,
        roles=(Role.DENTIST,),
        email_verified=True,
        full_name=None,
    ):
        return await auth.register_user(
            email,
            password,
            roles=roles,
            full_name=full_name,
            email_verified=email_verified,
            ctx=ctx,
        )

    return _create


@pytest.fixture
def login_as(client):
    async def _login(email, password):
        response = await client.post("/api/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return response.json()

    return _login


@pytest.fixture
async def admin_headers(create_user, login_as):
    await create_user(ADMIN_EMAIL, ADMIN_PASSWORD, roles=(Role.ADMIN,))
    body = await login_as(ADMIN_EMAIL, ADMIN_PASSWORD)
    return {"Authorization": f"Bearer {body['accessToken']}"}
