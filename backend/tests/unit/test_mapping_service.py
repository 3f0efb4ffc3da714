"""
Unit Tests for MappingService
"""
import pytest
import pytest_asyncio

from csi_portal.core.exceptions import ConflictError, NotFoundError
from csi_portal.services.application_service import application_service
from csi_portal.services.function_service import function_service
from csi_portal.services.mapping_service import build_csv, mapping_service


@pytest_asyncio.fixture
async def catalog(db_session):
    fn = await function_service.create(db_session, {'code': 'FN-FIN', 'name': 'Finance'})
    erp = await application_service.create(db_session, {'code': 'APP-ERP', 'name': 'ERP System'})
    crm = await application_service.create(db_session, {'code': 'APP-CRM', 'name': 'CRM, Sales'})
    return {'function': fn, 'erp': erp, 'crm': crm}


class TestCsv:

    def test_quotes_only_when_needed(self):
        text = build_csv(['A', 'B'], [['plain', 'with, comma'], ['say "hi"', None]])

        assert text.splitlines() == ['A,B', 'plain,"with, comma"', '"say ""hi""",']


class TestFunctionApplication:

    @pytest.mark.asyncio
    async def test_create_and_group_by_function(self, db_session, catalog):
        fid = catalog['function']['function_id']
        await mapping_service.create_function_app_mapping(db_session, fid, catalog['erp']['application_id'])
        await mapping_service.create_function_app_mapping(db_session, fid, catalog['crm']['application_id'])

        grouped = await mapping_service.get_function_app_mappings_with_details(db_session)

        assert len(grouped) == 1
        assert grouped[0]['function_code'] == 'FN-FIN'
        assert [a['application_code'] for a in grouped[0]['applications']] == ['APP-CRM', 'APP-ERP']

    @pytest.mark.asyncio
    async def test_duplicate_pair_conflicts(self, db_session, catalog):
        fid = catalog['function']['function_id']
        aid = catalog['erp']['application_id']
        await mapping_service.create_function_app_mapping(db_session, fid, aid)

        with pytest.raises(ConflictError, match='Function-Application pair'):
            await mapping_service.create_function_app_mapping(db_session, fid, aid)

    @pytest.mark.asyncio
    async def test_inactive_application_rejected(self, db_session, catalog):
        await application_service.update(db_session, catalog['erp']['application_id'], {'is_active': False})

        with pytest.raises(NotFoundError, match='Application not found or inactive'):
            await mapping_service.create_function_app_mapping(
                db_session, catalog['function']['function_id'], catalog['erp']['application_id']
            )

    @pytest.mark.asyncio
    async def test_multiple_skips_duplicates_and_unknown(self, db_session, catalog):
        fid = catalog['function']['function_id']
        erp = catalog['erp']['application_id']
        await mapping_service.create_function_app_mapping(db_session, fid, erp)

        result = await mapping_service.create_multiple_function_app_mappings(
            db_session, fid, [erp, catalog['crm']['application_id'], '00000000-0000-0000-0000-000000000000'],
        )

        assert len(result['created']) == 1
        reasons = {s['application_id']: s['reason'] for s in result['skipped']}
        assert reasons[erp] == 'Already exists'
        assert 'not found or inactive' in reasons['00000000-0000-0000-0000-000000000000']

    @pytest.mark.asyncio
    async def test_delete_by_pair(self, db_session, catalog):
        fid = catalog['function']['function_id']
        aid = catalog['erp']['application_id']
        await mapping_service.create_function_app_mapping(db_session, fid, aid)

        assert await mapping_service.delete_function_app_mapping_by_entities(db_session, fid, aid)
        with pytest.raises(NotFoundError):
            await mapping_service.delete_function_app_mapping_by_entities(db_session, fid, aid)

    @pytest.mark.asyncio
    async def test_lookup_both_directions(self, db_session, catalog):
        fid = catalog['function']['function_id']
        aid = catalog['erp']['application_id']
        await mapping_service.create_function_app_mapping(db_session, fid, aid)

        apps = await mapping_service.get_applications_by_function(db_session, fid)
        fns = await mapping_service.get_functions_by_application(db_session, aid)

        assert [a['code'] for a in apps] == ['APP-ERP']
        assert [f['code'] for f in fns] == ['FN-FIN']

    @pytest.mark.asyncio
    async def test_csv_export(self, db_session, catalog):
        fid = catalog['function']['function_id']
        await mapping_service.create_function_app_mapping(db_session, fid, catalog['crm']['application_id'])

        lines = (await mapping_service.export_function_app_mappings_csv(db_session)).splitlines()

        assert lines[0] == 'Function Code,Function Name,Application Code,Application Name,Created At'
        assert lines[1].startswith('FN-FIN,Finance,APP-CRM,"CRM, Sales",')


class TestApplicationDepartment:

    @pytest.mark.asyncio
    async def test_hierarchical_view(self, db_session, catalog, org):
        did = org['department']['department_id']
        await mapping_service.create_multiple_app_dept_mappings(
            db_session, did, [catalog['erp']['application_id'], catalog['crm']['application_id']]
        )

        tree = await mapping_service.get_app_dept_mappings_hierarchical(db_session)

        assert tree[0]['business_unit_code'] == 'BU-HO'
        department = tree[0]['divisions'][0]['departments'][0]
        assert department['department_code'] == 'DEPT-APP'
        assert len(department['applications']) == 2

    @pytest.mark.asyncio
    async def test_departments_by_application_include_parents(self, db_session, catalog, org):
        aid = catalog['erp']['application_id']
        await mapping_service.create_app_dept_mapping(db_session, aid, org['department']['department_id'])

        rows = await mapping_service.get_departments_by_application(db_session, aid)

        assert rows[0]['division_name'] == 'Information Technology'
        assert rows[0]['business_unit_name'] == 'Head Office'

    @pytest.mark.asyncio
    async def test_duplicate_pair_conflicts(self, db_session, catalog, org):
        aid = catalog['erp']['application_id']
        did = org['department']['department_id']
        await mapping_service.create_app_dept_mapping(db_session, aid, did)

        with pytest.raises(ConflictError):
            await mapping_service.create_app_dept_mapping(db_session, aid, did)

    @pytest.mark.asyncio
    async def test_csv_header(self, db_session):
        text = await mapping_service.export_app_dept_mappings_csv(db_session)

        assert text.startswith('Business Unit Code,Business Unit Name,Division Code')
