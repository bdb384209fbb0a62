import asyncio
import inspect
import os
import sys
from pathlib import Path
from unittest.mock import AsyncMock

# Environment must be in place before any import that builds settings or the runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("NODE_ENV", "test")
os.environ.setdefault("SESSION_SECRET", "test-session-secret-do-not-use")
os.environ.setdefault("APP_DOMAIN", "http://auth.test")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from sessionauth.service.auth import AuthService  # noqa: E402
from sessionauth.service.email import EmailService  # noqa: E402
from sessionauth.service.passwords import PasswordHashing  # noqa: E402
from sessionauth.service.runtime import reset_runtime_for_tests  # noqa: E402
from sessionauth.service.sessions import SessionRegistry  # noqa: E402
from sessionauth.service.users import UserService  # noqa: E402
from sessionauth.service.verification import VerificationTokenManager  # noqa: E402
from sessionauth.storage.memory import MemoryStore  # noqa: E402
from sessionauth.storage.models import NewUser  # noqa: E402
from sessionauth.storage.redis_cache import MemoryCache  # noqa: E402


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture(scope="session")
def passwords():
    return PasswordHashing()


@pytest.fixture
def tokens(cache, memory_store):
    return VerificationTokenManager(cache, memory_store.find_user_by_identifier)


@pytest.fixture
def registry(cache):
    return SessionRegistry(cache)


@pytest.fixture
def auth_service(memory_store, tokens, registry, passwords):
    return AuthService(memory_store, tokens, registry, passwords)


@pytest.fixture
def email_service():
    email = EmailService()
    email.send_mail = AsyncMock(return_value=True)
    return email


@pytest.fixture
def user_service(memory_store, tokens, registry, email_service, passwords):
    return UserService(
        memory_store,
        tokens,
        registry,
        email_service,
        passwords,
        app_base_url="http://auth.test",
    )


@pytest.fixture
def make_user(memory_store, passwords):
    """Create a user directly in the store and return its stored record."""

    def _make(
        email="alice@example.com",
        *,
        name="Alice",
        username=None,
        password="correct-horse",
        verified=True,
    ):
        user_id = memory_store.create_user(
            NewUser(
                email=email,
                name=name,
                username=username,
                password_hash=passwords.hash(password) if password else "",
                is_verified=verified,
            )
        )
        return memory_store.get_user(user_id)

    return _make


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
