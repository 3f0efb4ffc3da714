"""
Unit Tests for the SAP client and organizational sync

HTTP traffic is served by an in-process httpx.MockTransport.
"""
import httpx
import pytest

from csi_portal.services.business_unit_service import business_unit_service
from csi_portal.services.department_service import department_service
from csi_portal.services.division_service import division_service
from csi_portal.services.sap_client import SAPClient
from csi_portal.services.sap_sync_service import SAPSyncService

SAP_DATA = {
    '/health': {'status': 'ok'},
    '/business-units': {'businessUnits': [{'code': 'BU-HO', 'name': 'Head Office'}]},
    '/divisions': {'divisions': [
        {'code': 'DIV-IT', 'name': 'IT Division', 'businessUnitCode': 'BU-HO'},
        {'code': 'DIV-XX', 'name': 'Orphan', 'businessUnitCode': 'BU-NONE'},
    ]},
    '/departments': [
        {'Code': 'DEPT-APP', 'Name': 'Apps', 'DivisionCode': 'DIV-IT'},
    ],
}


def sap_transport(data=None, status_code=200):
    data = SAP_DATA if data is None else data

    def handler(request: httpx.Request) -> httpx.Response:
        if status_code != 200:
            return httpx.Response(status_code, json={'message': 'SAP is down'})
        return httpx.Response(200, json=data[request.url.path])

    return httpx.MockTransport(handler)


def make_client(**kwargs):
    kwargs.setdefault('transport', sap_transport())
    return SAPClient(base_url='http://sap.test', api_key='key', retry_delay=0, max_retries=2, **kwargs)


class TestSAPClient:

    @pytest.mark.asyncio
    async def test_fetch_sends_bearer_key(self):
        seen = {}

        def handler(request):
            seen['auth'] = request.headers.get('Authorization')
            return httpx.Response(200, json=SAP_DATA['/business-units'])

        client = make_client(transport=httpx.MockTransport(handler))
        result = await client.fetch_business_units()

        assert result['success'] is True
        assert result['data']['businessUnits'][0]['code'] == 'BU-HO'
        assert seen['auth'] == 'Bearer key'

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={'status': 'ok'})

        result = await make_client(transport=httpx.MockTransport(handler)).test_connection()

        assert result['success'] is True
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, json={'message': 'No such resource'})

        result = await make_client(transport=httpx.MockTransport(handler)).fetch_divisions('BU-HO')

        assert result == {'success': False, 'data': None, 'error': 'No such resource'}
        assert len(calls) == 1
        assert calls[0].url.params['businessUnit'] == 'BU-HO'

    @pytest.mark.asyncio
    async def test_network_error_message(self):
        def handler(request):
            raise httpx.ConnectError('refused', request=request)

        result = await make_client(transport=httpx.MockTransport(handler)).test_connection()

        assert result['error'] == 'No response from SAP server'

    @pytest.mark.asyncio
    async def test_organizational_data_endpoints(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json={'businessUnits': []})

        client = make_client(transport=httpx.MockTransport(handler))
        assert (await client.fetch_organizational_data())['success'] is True
        assert (await client.fetch_all_organizational_data())['success'] is True

        assert paths == ['/organizational-data', '/organizational-data/all']

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        result = await SAPClient(base_url='').fetch_departments()

        assert result['error'] == 'SAP API URL is not configured'


class TestSAPSync:

    @pytest.mark.asyncio
    async def test_full_sync_creates_hierarchy(self, db_session):
        service = SAPSyncService(make_client())

        result = await service.sync_organizational_data(db_session)

        stats = result['statistics']
        assert stats['business_units']['added'] == 1
        assert stats['divisions']['added'] == 1
        assert stats['divisions']['errors'] == 1
        assert stats['departments']['added'] == 1
        assert result['success'] is False
        assert any('Business Unit BU-NONE not found' in e for e in result['errors'])

        departments = await department_service.list(db_session)
        assert departments[0]['code'] == 'DEPT-APP'

        last = await service.get_last_sync_status(db_session)
        assert last['status'] == 'Completed with errors'
        assert last['records_added'] == 3

    @pytest.mark.asyncio
    async def test_sync_updates_and_deactivates(self, db_session):
        await business_unit_service.create(db_session, {'code': 'BU-HO', 'name': 'Old Name'})
        stale = await business_unit_service.create(db_session, {'code': 'BU-OLD', 'name': 'Closed'})
        data = {**SAP_DATA, '/divisions': [], '/departments': []}

        result = await SAPSyncService(make_client(transport=sap_transport(data))).sync_organizational_data(db_session)

        assert result['success'] is True
        assert result['statistics']['business_units'] == {'added': 0, 'updated': 1, 'deactivated': 1, 'errors': 0}
        assert (await business_unit_service.get(db_session, stale['business_unit_id']))['is_active'] is False

    @pytest.mark.asyncio
    async def test_moved_division_changes_parent(self, db_session, org):
        other = await business_unit_service.create(db_session, {'code': 'BU-BR', 'name': 'Branch'})
        data = {
            '/health': {},
            '/business-units': [{'code': 'BU-HO', 'name': 'Head Office'}, {'code': 'BU-BR', 'name': 'Branch'}],
            '/divisions': [{'code': 'DIV-IT', 'name': 'Information Technology', 'businessUnitCode': 'BU-BR'}],
            '/departments': [{'code': 'DEPT-APP', 'name': 'Application Development', 'divisionCode': 'DIV-IT'}],
        }

        result = await SAPSyncService(make_client(transport=sap_transport(data))).sync_organizational_data(db_session)

        assert result['statistics']['divisions']['updated'] == 1
        division = await division_service.get(db_session, org['division']['division_id'])
        assert division['business_unit_id'] == other['business_unit_id']

    @pytest.mark.asyncio
    async def test_connection_failure_is_logged(self, db_session):
        service = SAPSyncService(make_client(transport=sap_transport(status_code=401)))

        result = await service.sync_organizational_data(db_session)

        assert result['success'] is False
        assert 'SAP connection failed' in result['errors'][0]
        history = await service.get_sync_history(db_session)
        assert history[0]['status'] == 'Failed'

    @pytest.mark.asyncio
    async def test_unexpected_payload_keeps_local_records(self, db_session):
        existing = await business_unit_service.create(db_session, {'code': 'BU-HO', 'name': 'Head Office'})
        data = {
            **SAP_DATA,
            '/business-units': {'items': [{'code': 'BU-HO', 'name': 'Head Office'}]},
            '/divisions': [],
            '/departments': [],
        }

        result = await SAPSyncService(make_client(transport=sap_transport(data))).sync_organizational_data(db_session)

        assert result['success'] is False
        assert result['statistics']['business_units'] == {'added': 0, 'updated': 0, 'deactivated': 0, 'errors': 1}
        assert 'unexpected response format' in result['errors'][0]
        assert (await business_unit_service.get(db_session, existing['business_unit_id']))['is_active'] is True
