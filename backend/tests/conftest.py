"""
CSI Portal - Test Configuration and Fixtures
"""
import os
from datetime import datetime, timedelta
from typing import AsyncGenerator, Dict

import pytest
import pytest_asyncio
from faker import Faker
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Set testing environment before the settings object is created
os.environ['ENVIRONMENT'] = 'testing'
os.environ['DATABASE_URL'] = 'sqlite+aiosqlite:///./test_csi_portal.db'
os.environ['JWT_SECRET_KEY'] = 'test-jwt-secret-key-for-testing-only'
os.environ['BCRYPT_ROUNDS'] = '4'
os.environ['RATE_LIMIT_ENABLED'] = 'false'
os.environ['SCHEDULER_ENABLED'] = 'false'
os.environ['SMTP_HOST'] = ''
os.environ['SAP_API_URL'] = ''
os.environ['LOG_FILE'] = ''

from csi_portal.main import app
from csi_portal.core.database import get_db
from csi_portal.db.tables import metadata
from csi_portal.services.auth_service import auth_service
from csi_portal.services.business_unit_service import business_unit_service
from csi_portal.services.department_service import department_service
from csi_portal.services.division_service import division_service
from csi_portal.services.survey_service import survey_service
from csi_portal.services.user_service import user_service

fake = Faker()

TEST_PASSWORD = 'Password123!'

# Test database setup
TEST_DATABASE_URL = 'sqlite+aiosqlite:///./test_csi_portal.db'
test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
TestSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest_asyncio.fixture
async def tables() -> AsyncGenerator[None, None]:
    """Create every table for one test and drop them afterwards"""
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


@pytest_asyncio.fixture
async def db_session(tables) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test"""
    async with TestSessionLocal() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database override"""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as ac:
        yield ac

    app.dependency_overrides.clear()


async def create_user(db: AsyncSession, role: str, **overrides) -> Dict:
    data = {
        'username': fake.unique.user_name()[:40],
        'display_name': fake.name(),
        'email': fake.unique.email(),
        'role': role,
        'use_ldap': False,
        'password': TEST_PASSWORD,
    }
    data.update(overrides)
    return await user_service.create_user(db, data)


async def login_headers(db: AsyncSession, user: Dict) -> Dict[str, str]:
    result = await auth_service.login(db, user['username'], TEST_PASSWORD)
    assert result.success, result.error_message
    return {'Authorization': f'Bearer {result.token}'}


@pytest_asyncio.fixture
async def super_admin(db_session: AsyncSession) -> Dict:
    return await create_user(db_session, 'SuperAdmin')


@pytest_asyncio.fixture
async def admin_event(db_session: AsyncSession) -> Dict:
    return await create_user(db_session, 'AdminEvent')


@pytest_asyncio.fixture
async def it_lead(db_session: AsyncSession) -> Dict:
    return await create_user(db_session, 'ITLead')


@pytest_asyncio.fixture
async def super_admin_headers(db_session: AsyncSession, super_admin: Dict) -> Dict[str, str]:
    return await login_headers(db_session, super_admin)


@pytest_asyncio.fixture
async def admin_headers(db_session: AsyncSession, admin_event: Dict) -> Dict[str, str]:
    return await login_headers(db_session, admin_event)


@pytest_asyncio.fixture
async def it_lead_headers(db_session: AsyncSession, it_lead: Dict) -> Dict[str, str]:
    return await login_headers(db_session, it_lead)


@pytest_asyncio.fixture
async def org(db_session: AsyncSession) -> Dict:
    """A business unit / division / department chain"""
    bu = await business_unit_service.create(db_session, {'code': 'BU-HO', 'name': 'Head Office'})
    division = await division_service.create(db_session, {
        'code': 'DIV-IT', 'name': 'Information Technology', 'business_unit_id': bu['business_unit_id'],
    })
    department = await department_service.create(db_session, {
        'code': 'DEPT-APP', 'name': 'Application Development', 'division_id': division['division_id'],
    })
    return {'business_unit': bu, 'division': division, 'department': department}


@pytest_asyncio.fixture
async def active_survey(db_session: AsyncSession, admin_event: Dict) -> Dict:
    """An Active survey that opened yesterday and closes in a week"""
    now = datetime.utcnow()
    survey = await survey_service.create_survey(db_session, {
        'title': 'Application Satisfaction 2026',
        'description': fake.sentence(),
        'start_date': (now - timedelta(days=1)).isoformat(),
        'end_date': (now + timedelta(days=7)).isoformat(),
    }, created_by=admin_event['user_id'])
    return await survey_service.update_survey(db_session, survey['survey_id'], {'status': 'Active'})


@pytest.fixture
def make_user():
    """Factory for users with a given role"""
    return create_user


@pytest.fixture
def login():
    """Bearer headers for a user created with TEST_PASSWORD"""
    return login_headers


@pytest.fixture
def session_factory(tables):
    """Session factory for code that opens and commits its own sessions"""
    return TestSessionLocal
