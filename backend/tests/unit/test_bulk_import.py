"""
Unit Tests for Excel template parsing and bulk import
"""
from io import BytesIO

import pytest
from openpyxl import Workbook, load_workbook

from csi_portal.core.exceptions import ValidationError
from csi_portal.core.security import verify_password
from csi_portal.services.business_unit_service import business_unit_service
from csi_portal.services.bulk_import_service import bulk_import_service
from csi_portal.services.division_service import division_service
from csi_portal.services.mapping_service import mapping_service
from csi_portal.services.template_parser import (
    COLUMN_MAPPINGS,
    cell_text,
    normalize_entity_type,
    template_parser,
)
from csi_portal.services.user_service import user_service


def workbook_bytes(headers, rows):
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(headers)
    for row in rows:
        sheet.append(row)
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class TestTemplateParser:

    def test_entity_type_aliases(self):
        assert normalize_entity_type('users') == 'User'
        with pytest.raises(ValidationError, match='Unknown entity type'):
            normalize_entity_type('Planet')

    def test_cell_normalization(self):
        assert cell_text(' ERP ') == 'ERP'
        assert cell_text(100234.0) == '100234'
        assert cell_text(True) is True
        assert cell_text(None) is None

    def test_valid_and_invalid_rows(self):
        content = workbook_bytes(['Code', 'Name'], [
            ['BU-01', 'Retail'],
            ['B', 'Too short code'],
            [None, None],
            ['BU-02', None],
        ])

        parsed = template_parser.parse_excel_file(content, 'BusinessUnit')

        assert parsed['total_rows'] == 3
        assert parsed['summary'] == {'valid': 1, 'invalid': 2, 'total': 3}
        assert parsed['valid_records'][0] == {'row': 2, 'data': {'code': 'BU-01', 'name': 'Retail'}}
        assert parsed['errors'][1]['row'] == 5
        assert parsed['errors'][1]['errors'] == ['Name is required']

    def test_missing_columns(self):
        content = workbook_bytes(['Code'], [['DIV-01']])

        with pytest.raises(ValidationError, match='Missing required columns: Name, Business Unit Code'):
            template_parser.parse_excel_file(content, 'Division')

    def test_not_a_workbook(self):
        with pytest.raises(ValidationError, match='Failed to parse Excel file'):
            template_parser.parse_excel_file(b'plain text', 'BusinessUnit')

    def test_user_rules(self):
        headers = list(COLUMN_MAPPINGS['User'])
        content = workbook_bytes(headers, [
            ['jdoe', '1', 'John', 'jdoe@example.com', 'AdminEvent', 'true', 'false', 'short'],
            ['asmith', '2', 'Ann', 'bad-email', 'Guest', 'true', 'true', None],
        ])

        parsed = template_parser.parse_excel_file(content, 'User')

        assert parsed['errors'][0]['errors'] == ['Password must be at least 8 characters for non-LDAP users']
        assert parsed['errors'][1]['errors'] == [
            'Invalid email format', 'Role must be SuperAdmin, AdminEvent, ITLead, or DepartmentHead',
        ]

    def test_error_report(self):
        report = template_parser.generate_error_report([
            {'row': 3, 'data': {'code': 'B'}, 'errors': ['Code is required']},
        ])

        assert report.startswith('Found 1 error(s):')
        assert 'Error 1 (Row 3):' in report
        assert template_parser.generate_error_report([]) == 'No errors'


class TestTemplates:

    @pytest.mark.parametrize('entity_type', list(COLUMN_MAPPINGS))
    def test_template_headers_match_parser(self, entity_type):
        content = bulk_import_service.generate_template(entity_type)

        sheet = load_workbook(BytesIO(content)).active
        assert [c.value for c in sheet[1]] == list(COLUMN_MAPPINGS[entity_type])

    @pytest.mark.parametrize('entity_type', ['BusinessUnit', 'Function', 'Application'])
    def test_sample_row_is_valid(self, entity_type):
        parsed = template_parser.parse_excel_file(bulk_import_service.generate_template(entity_type), entity_type)

        assert parsed['summary']['invalid'] == 0


class TestBulkImport:

    @pytest.mark.asyncio
    async def test_import_hierarchy_by_code(self, db_session):
        await bulk_import_service.import_data(
            db_session, workbook_bytes(['Code', 'Name'], [['BU-HO', 'Head Office']]), 'BusinessUnit'
        )

        result = await bulk_import_service.import_data(
            db_session,
            workbook_bytes(['Code', 'Name', 'Business Unit Code'], [['DIV-IT', 'IT', 'BU-HO']]),
            'Division',
        )

        assert result['success'] is True
        assert result['imported'] == 1
        divisions = await division_service.list(db_session)
        assert divisions[0]['business_unit_code'] == 'BU-HO'

    @pytest.mark.asyncio
    async def test_unknown_parent_fails_whole_import(self, db_session):
        content = workbook_bytes(['Code', 'Name', 'Business Unit Code'], [['DIV-IT', 'IT', 'BU-NONE']])

        with pytest.raises(ValidationError, match="Business Unit with code 'BU-NONE' not found"):
            await bulk_import_service.import_data(db_session, content, 'Division')

    @pytest.mark.asyncio
    async def test_invalid_rows_abort_without_skip(self, db_session):
        content = workbook_bytes(['Code', 'Name'], [['BU-01', 'Ok'], ['B', 'Bad']])

        with pytest.raises(ValidationError, match='Validation failed for 1 record'):
            await bulk_import_service.import_data(db_session, content, 'BusinessUnit')
        assert await business_unit_service.list(db_session, include_inactive=True) == []

    @pytest.mark.asyncio
    async def test_skip_duplicates(self, db_session):
        await business_unit_service.create(db_session, {'code': 'BU-01', 'name': 'Existing'})
        content = workbook_bytes(['Code', 'Name'], [['BU-01', 'Dup'], ['BU-02', 'New'], ['B', 'Bad']])

        result = await bulk_import_service.import_data(db_session, content, 'BusinessUnit', skip_duplicates=True)

        assert (result['imported'], result['skipped'], result['failed']) == (1, 1, 1)
        report = bulk_import_service.generate_report(result)
        assert 'Status: SUCCESS' in report
        assert 'Skipped: 1' in report

    @pytest.mark.asyncio
    async def test_update_existing(self, db_session):
        bu = await business_unit_service.create(db_session, {'code': 'BU-01', 'name': 'Old'})
        content = workbook_bytes(['Code', 'Name'], [['BU-01', 'Renamed']])

        result = await bulk_import_service.import_data(db_session, content, 'BusinessUnit', update_existing=True)

        assert result['updated'] == 1
        assert (await business_unit_service.get(db_session, bu['business_unit_id']))['name'] == 'Renamed'

    @pytest.mark.asyncio
    async def test_mapping_import(self, db_session, org):
        await bulk_import_service.import_data(
            db_session, workbook_bytes(['Code', 'Name', 'Description'], [['APP-ERP', 'ERP', None]]), 'Application'
        )
        content = workbook_bytes(['Application Code', 'Department Code'], [['APP-ERP', 'DEPT-APP']] * 2)

        result = await bulk_import_service.import_data(db_session, content, 'AppDeptMapping', skip_duplicates=True)

        assert (result['imported'], result['skipped']) == (1, 1)
        apps = await mapping_service.get_applications_by_department(db_session, org['department']['department_id'])
        assert [a['code'] for a in apps] == ['APP-ERP']

    @pytest.mark.asyncio
    async def test_user_import_hashes_password(self, db_session):
        content = workbook_bytes(list(COLUMN_MAPPINGS['User']), [
            ['jdoe', 100234, 'John Doe', 'jdoe@example.com', 'AdminEvent', True, False, 'changeme123'],
        ])

        result = await bulk_import_service.import_data(db_session, content, 'users')

        assert result['imported'] == 1
        user = await user_service.repository(db_session).find_one({'username': 'jdoe'})
        assert user['npk'] == '100234'
        assert user['use_ldap'] is False
        assert verify_password('changeme123', user['password_hash'])
