import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from profilestack.identity import Identity
from profilestack.local_session import JsonFileLocalStore, LocalSession
from profilestack.remote import RemoteProfileService
from profilestack.session import SessionContext, SessionController
from profilestack.sync import SyncResolver


def claims_for(sub="google-oauth2|1001", email="ada@example.com", name="Ada Lovelace", **extra):
    claims = {"is_logged_in": True, "sub": sub, "email": email, "name": name}
    claims.update(extra)
    return claims


@pytest.fixture
def engine():
    # one shared in-memory connection per test
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture
def remote(engine):
    return RemoteProfileService(engine=engine)


@pytest.fixture
def local_path(tmp_path):
    return str(tmp_path / "guest_profile.json")


@pytest.fixture
def local_session(local_path):
    return LocalSession(JsonFileLocalStore(local_path))


@pytest.fixture
def controller(local_session, remote):
    return SessionController(SessionContext(), local_session, remote)


@pytest.fixture
def resolver(remote, controller):
    return SyncResolver(remote, controller)


@pytest.fixture
def ada_claims():
    return claims_for()


@pytest.fixture
def ada(ada_claims):
    return Identity(subject_id=ada_claims["sub"], email=ada_claims["email"], display_name=ada_claims["name"])
