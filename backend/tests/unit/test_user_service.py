"""
Unit Tests for UserService
"""
import pytest

from csi_portal.core.exceptions import ConflictError, NotFoundError, ValidationError
from csi_portal.core.security import verify_password
from csi_portal.services.user_service import user_service, validate_username


def user_data(**overrides):
    data = {
        'username': 'jdoe',
        'display_name': 'John Doe',
        'email': 'jdoe@example.com',
        'role': 'AdminEvent',
        'use_ldap': False,
        'password': 'Password123!',
    }
    data.update(overrides)
    return data


class TestUsernameRules:

    @pytest.mark.parametrize('username', ['abc', 'john.doe', 'j_doe-01'])
    def test_valid(self, username):
        assert validate_username(username)

    @pytest.mark.parametrize('username', ['ab', 'john doe', 'x' * 51, None])
    def test_invalid(self, username):
        assert not validate_username(username)


class TestCreateUser:

    @pytest.mark.asyncio
    async def test_local_user_gets_hashed_password(self, db_session):
        created = await user_service.create_user(db_session, user_data())

        assert 'password_hash' not in created
        row = await user_service.repository(db_session).find_by_id(created['user_id'])
        assert verify_password('Password123!', row['password_hash'])

    @pytest.mark.asyncio
    async def test_ldap_is_default(self, db_session):
        data = user_data()
        data.pop('use_ldap')
        data.pop('password')

        created = await user_service.create_user(db_session, data)

        assert created['use_ldap'] is True

    @pytest.mark.asyncio
    async def test_local_user_requires_password(self, db_session):
        with pytest.raises(ValidationError, match='Password is required for non-LDAP users'):
            await user_service.create_user(db_session, user_data(password=None))

    @pytest.mark.asyncio
    async def test_short_password_rejected(self, db_session):
        with pytest.raises(ValidationError, match='at least 8 characters'):
            await user_service.create_user(db_session, user_data(password='short'))

    @pytest.mark.asyncio
    async def test_invalid_role_rejected(self, db_session):
        with pytest.raises(ValidationError, match='Role must be one of'):
            await user_service.create_user(db_session, user_data(role='Guest'))

    @pytest.mark.asyncio
    async def test_invalid_email_rejected(self, db_session):
        with pytest.raises(ValidationError, match='Invalid email format'):
            await user_service.create_user(db_session, user_data(email='not-an-email'))

    @pytest.mark.asyncio
    async def test_duplicate_username_conflicts(self, db_session):
        await user_service.create_user(db_session, user_data())

        with pytest.raises(ConflictError, match="Username 'jdoe' already exists"):
            await user_service.create_user(db_session, user_data(email='other@example.com'))

    @pytest.mark.asyncio
    async def test_partial_org_placement_rejected(self, db_session, org):
        with pytest.raises(ValidationError, match='must be filled together'):
            await user_service.create_user(
                db_session, user_data(business_unit_id=org['business_unit']['business_unit_id'])
            )

    @pytest.mark.asyncio
    async def test_full_org_placement_accepted(self, db_session, org):
        created = await user_service.create_user(db_session, user_data(
            business_unit_id=org['business_unit']['business_unit_id'],
            division_id=org['division']['division_id'],
            department_id=org['department']['department_id'],
        ))

        detail = await user_service.get_user(db_session, created['user_id'])
        assert detail['department_name'] == 'Application Development'


class TestUpdateUser:

    @pytest.mark.asyncio
    async def test_update_display_name(self, db_session):
        created = await user_service.create_user(db_session, user_data())

        updated = await user_service.update_user(db_session, created['user_id'], {'display_name': 'Jane Doe'})

        assert updated['display_name'] == 'Jane Doe'

    @pytest.mark.asyncio
    async def test_update_missing_user(self, db_session):
        with pytest.raises(NotFoundError):
            await user_service.update_user(
                db_session, '00000000-0000-0000-0000-000000000000', {'display_name': 'X'}
            )

    @pytest.mark.asyncio
    async def test_email_taken_by_other_user(self, db_session):
        await user_service.create_user(db_session, user_data())
        other = await user_service.create_user(
            db_session, user_data(username='asmith', email='asmith@example.com')
        )

        with pytest.raises(ConflictError):
            await user_service.update_user(db_session, other['user_id'], {'email': 'jdoe@example.com'})

    @pytest.mark.asyncio
    async def test_deactivate_hides_user_from_default_list(self, db_session):
        created = await user_service.create_user(db_session, user_data())

        await user_service.deactivate_user(db_session, created['user_id'])

        assert await user_service.list_users(db_session) == []
        assert len(await user_service.list_users(db_session, include_inactive=True)) == 1


class TestLdapToggleAndPassword:

    @pytest.mark.asyncio
    async def test_cannot_disable_ldap_without_password(self, db_session):
        data = user_data(use_ldap=True)
        data.pop('password')
        created = await user_service.create_user(db_session, data)

        with pytest.raises(ValidationError, match='Set a password first'):
            await user_service.toggle_ldap(db_session, created['user_id'], False)

    @pytest.mark.asyncio
    async def test_disable_ldap_after_setting_password(self, db_session):
        data = user_data(use_ldap=True)
        data.pop('password')
        created = await user_service.create_user(db_session, data)

        await user_service.set_password(db_session, created['user_id'], 'NewPassword1')
        updated = await user_service.toggle_ldap(db_session, created['user_id'], False)

        assert updated['use_ldap'] is False

    @pytest.mark.asyncio
    async def test_toggle_requires_boolean(self, db_session):
        created = await user_service.create_user(db_session, user_data())

        with pytest.raises(ValidationError, match='useLDAP must be boolean'):
            await user_service.toggle_ldap(db_session, created['user_id'], 'false')

    @pytest.mark.asyncio
    async def test_set_password_length(self, db_session):
        created = await user_service.create_user(db_session, user_data())

        with pytest.raises(ValidationError):
            await user_service.set_password(db_session, created['user_id'], 'short')
