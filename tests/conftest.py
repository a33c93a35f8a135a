import pytest
from httpx import AsyncClient, ASGITransport
from mongomock_motor import AsyncMongoMockClient

from main import app
from guidance_portal.core.auth import create_access_token
from guidance_portal.db.mongodb import db, create_indexes
from guidance_portal.schemas.user import Capability
from guidance_portal.services.user_service import create_user


@pytest.fixture(autouse=True)
async def mongo():
    """Fresh in-memory database per test, with the production indexes."""
    db.client = AsyncMongoMockClient()
    db.db = db.client["guidance_portal_test"]
    await create_indexes()
    yield db.db
    db.client = None
    db.db = None


@pytest.fixture
async def student():
    return await create_user(
        "ana.reyes@school.edu", "Ana Reyes", [Capability.STUDENT], student_id="2021-00123"
    )


@pytest.fixture
async def other_student():
    return await create_user(
        "ben.cruz@school.edu", "Ben Cruz", [Capability.STUDENT], student_id="2021-00456"
    )


@pytest.fixture
async def counselors():
    return [
        await create_user("guidance.one@school.edu", "Ms. Santos", [Capability.COUNSELOR]),
        await create_user("guidance.two@school.edu", "Mr. Lim", [Capability.COUNSELOR]),
    ]


@pytest.fixture
def counselor(counselors):
    return counselors[0]


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_headers():
    def headers_for(account):
        return {"Authorization": f"Bearer {create_access_token({'sub': account.uid})}"}
    return headers_for
