"""
Unit Tests for LDAPService

The directory bind is replaced at ``_authenticate_once`` so retry and
error mapping can be checked without a server.
"""
from unittest.mock import MagicMock, patch

import pytest
from ldap3.core.exceptions import LDAPBindError, LDAPSocketOpenError

from csi_portal.services.ldap_service import LDAPService, LDAPUserNotFoundError

DIRECTORY_USER = {'username': 'jdoe', 'display_name': 'John Doe', 'email': 'jdoe@corp.local', 'dn': 'uid=jdoe'}


@pytest.fixture
def ldap():
    service = LDAPService()
    service.retry_delay = 0
    service.max_retries = 3
    return service


class TestAuthenticate:

    @pytest.mark.asyncio
    async def test_success(self, ldap):
        with patch.object(ldap, '_authenticate_once', return_value=DIRECTORY_USER) as bind:
            result = await ldap.authenticate('jdoe', 'secret')

        assert result == {'success': True, 'user': DIRECTORY_USER, 'error_message': None}
        bind.assert_called_once_with('jdoe', 'secret')

    @pytest.mark.asyncio
    async def test_missing_credentials(self, ldap):
        result = await ldap.authenticate('jdoe', '')

        assert result['error_message'] == 'Username and password are required'

    @pytest.mark.asyncio
    async def test_bad_password_is_not_retried(self, ldap):
        with patch.object(ldap, '_authenticate_once', side_effect=LDAPBindError('invalidCredentials')) as bind:
            result = await ldap.authenticate('jdoe', 'wrong')

        assert result['error_message'] == 'Invalid username or password'
        assert bind.call_count == 1

    @pytest.mark.asyncio
    async def test_unknown_user(self, ldap):
        with patch.object(ldap, '_authenticate_once', side_effect=LDAPUserNotFoundError('User not found')):
            result = await ldap.authenticate('ghost', 'secret')

        assert result['error_message'] == 'User not found'

    @pytest.mark.asyncio
    async def test_unreachable_server_retries_then_fails(self, ldap):
        with patch.object(ldap, '_authenticate_once', side_effect=LDAPSocketOpenError('refused')) as bind:
            result = await ldap.authenticate('jdoe', 'secret')

        assert result['success'] is False
        assert result['error_message'] == 'LDAP server unavailable, please try again later'
        assert bind.call_count == 3

    @pytest.mark.asyncio
    async def test_recovers_after_transient_error(self, ldap):
        with patch.object(
            ldap, '_authenticate_once', side_effect=[LDAPSocketOpenError('refused'), DIRECTORY_USER]
        ) as bind:
            result = await ldap.authenticate('jdoe', 'secret')

        assert result['success'] is True
        assert bind.call_count == 2


class TestDirectoryEntries:

    def test_normalize_prefers_display_name_and_mail(self):
        entry = {'dn': 'uid=jdoe,dc=corp', 'uid': ['jdoe'], 'cn': ['J. Doe'], 'displayName': ['John Doe'],
                 'mail': ['jdoe@corp.local']}

        assert LDAPService._normalize('jdoe', entry) == {
            'username': 'jdoe', 'display_name': 'John Doe', 'email': 'jdoe@corp.local', 'dn': 'uid=jdoe,dc=corp',
        }

    def test_normalize_falls_back(self):
        entry = {'dn': 'uid=x', 'cn': ['Common Name']}

        normalized = LDAPService._normalize('x', entry)

        assert normalized['display_name'] == 'Common Name'
        assert normalized['username'] == 'x'
        assert normalized['email'] == ''

    def test_search_escapes_filter(self, ldap):
        conn = MagicMock()
        conn.entries = []

        with patch.object(ldap, '_connect', return_value=conn):
            with pytest.raises(LDAPUserNotFoundError):
                ldap._search_user('j*doe')

        assert conn.search.call_args.args[1] == '(uid=j\\2adoe)'
        conn.unbind.assert_called_once()

    @pytest.mark.asyncio
    async def test_user_attributes(self, ldap):
        entry = {'dn': 'uid=jdoe,dc=corp', 'uid': ['jdoe'], 'cn': ['J. Doe'], 'email': ['jdoe@corp.local']}

        with patch.object(ldap, '_search_user', return_value=entry):
            attributes = await ldap.get_user_attributes('jdoe')

        assert attributes['display_name'] == 'J. Doe'
        assert attributes['email'] == 'jdoe@corp.local'

    @pytest.mark.asyncio
    async def test_connection_check(self, ldap):
        with patch.object(ldap, '_connect', side_effect=LDAPSocketOpenError('refused')):
            result = await ldap.test_connection()

        assert result == {'success': False, 'message': 'LDAP server unavailable, please try again later'}
