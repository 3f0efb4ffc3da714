"""
Unit Tests for the organizational master-data services

Covers code/name validation, parent checks, duplicate codes, update rules
and the delete guards of every level.
"""
import pytest

from csi_portal.core.exceptions import ConflictError, NotFoundError, ValidationError
from csi_portal.services.application_service import application_service
from csi_portal.services.business_unit_service import business_unit_service
from csi_portal.services.department_service import department_service
from csi_portal.services.division_service import division_service
from csi_portal.services.entity_base import CODE_MESSAGE, validate_code, validate_name
from csi_portal.services.function_service import function_service
from csi_portal.services.mapping_service import mapping_service


class TestCodeAndNameRules:
    """Pure validation helpers"""

    @pytest.mark.parametrize('code', ['AB', 'BU-01', 'a1-b2-c3', 'X' * 20])
    def test_valid_codes(self, code):
        assert validate_code(code)

    @pytest.mark.parametrize('code', ['A', 'X' * 21, 'BU_01', 'BU 01', '', None, 12])
    def test_invalid_codes(self, code):
        assert not validate_code(code)

    def test_name_rules(self):
        assert validate_name('Head Office')
        assert not validate_name('   ')
        assert not validate_name('N' * 201)
        assert not validate_name(None)


class TestBusinessUnitService:

    @pytest.mark.asyncio
    async def test_create_and_get(self, db_session):
        created = await business_unit_service.create(db_session, {'code': 'BU-01', 'name': '  Retail  '})

        assert created['code'] == 'BU-01'
        assert created['name'] == 'Retail'
        assert created['is_active'] is True

        fetched = await business_unit_service.get(db_session, created['business_unit_id'])
        assert fetched['business_unit_id'] == created['business_unit_id']

    @pytest.mark.asyncio
    async def test_invalid_code_rejected(self, db_session):
        with pytest.raises(ValidationError) as exc:
            await business_unit_service.create(db_session, {'code': 'B', 'name': 'Retail'})
        assert exc.value.message == CODE_MESSAGE

    @pytest.mark.asyncio
    async def test_duplicate_code_conflicts(self, db_session):
        await business_unit_service.create(db_session, {'code': 'BU-01', 'name': 'Retail'})

        with pytest.raises(ConflictError) as exc:
            await business_unit_service.create(db_session, {'code': 'BU-01', 'name': 'Other'})
        assert "Business Unit with code 'BU-01' already exists" in exc.value.message

    @pytest.mark.asyncio
    async def test_get_missing_raises_not_found(self, db_session):
        with pytest.raises(NotFoundError):
            await business_unit_service.get(db_session, '00000000-0000-0000-0000-000000000000')

    @pytest.mark.asyncio
    async def test_list_hides_inactive_by_default(self, db_session):
        active = await business_unit_service.create(db_session, {'code': 'BU-01', 'name': 'Active'})
        inactive = await business_unit_service.create(db_session, {'code': 'BU-02', 'name': 'Inactive'})
        await business_unit_service.update(db_session, inactive['business_unit_id'], {'is_active': False})

        visible = await business_unit_service.list(db_session)
        everything = await business_unit_service.list(db_session, include_inactive=True)

        assert [r['business_unit_id'] for r in visible] == [active['business_unit_id']]
        assert len(everything) == 2

    @pytest.mark.asyncio
    async def test_update_requires_fields(self, db_session):
        bu = await business_unit_service.create(db_session, {'code': 'BU-01', 'name': 'Retail'})

        with pytest.raises(ValidationError, match='No fields to update'):
            await business_unit_service.update(db_session, bu['business_unit_id'], {})

    @pytest.mark.asyncio
    async def test_update_rejects_non_boolean_active_flag(self, db_session):
        bu = await business_unit_service.create(db_session, {'code': 'BU-01', 'name': 'Retail'})

        with pytest.raises(ValidationError, match='isActive must be boolean'):
            await business_unit_service.update(db_session, bu['business_unit_id'], {'is_active': 'yes'})

    @pytest.mark.asyncio
    async def test_update_code_conflict(self, db_session):
        await business_unit_service.create(db_session, {'code': 'BU-01', 'name': 'Retail'})
        other = await business_unit_service.create(db_session, {'code': 'BU-02', 'name': 'Wholesale'})

        with pytest.raises(ConflictError):
            await business_unit_service.update(db_session, other['business_unit_id'], {'code': 'BU-01'})

    @pytest.mark.asyncio
    async def test_delete_blocked_by_divisions(self, db_session, org):
        bu_id = org['business_unit']['business_unit_id']

        with pytest.raises(ValidationError, match='associated Divisions exist'):
            await business_unit_service.delete(db_session, bu_id)


class TestHierarchy:

    @pytest.mark.asyncio
    async def test_division_requires_business_unit(self, db_session):
        with pytest.raises(ValidationError, match='Business Unit ID is required'):
            await division_service.create(db_session, {'code': 'DIV-01', 'name': 'IT'})

    @pytest.mark.asyncio
    async def test_division_parent_must_be_active(self, db_session):
        bu = await business_unit_service.create(db_session, {'code': 'BU-01', 'name': 'Retail'})
        await business_unit_service.update(db_session, bu['business_unit_id'], {'is_active': False})

        with pytest.raises(ValidationError, match='Parent Business Unit does not exist or is inactive'):
            await division_service.create(db_session, {
                'code': 'DIV-01', 'name': 'IT', 'business_unit_id': bu['business_unit_id'],
            })

    @pytest.mark.asyncio
    async def test_division_list_includes_business_unit(self, db_session, org):
        rows = await division_service.list(db_session)

        assert rows[0]['business_unit_code'] == 'BU-HO'
        assert rows[0]['business_unit_name'] == 'Head Office'

    @pytest.mark.asyncio
    async def test_divisions_by_business_unit(self, db_session, org):
        rows = await division_service.get_by_business_unit(db_session, org['business_unit']['business_unit_id'])

        assert [r['code'] for r in rows] == ['DIV-IT']

    @pytest.mark.asyncio
    async def test_department_hierarchy(self, db_session, org):
        hierarchy = await department_service.verify_hierarchy(db_session, org['department']['department_id'])

        assert hierarchy['division_id'] == org['division']['division_id']
        assert hierarchy['business_unit_id'] == org['business_unit']['business_unit_id']

    @pytest.mark.asyncio
    async def test_division_delete_blocked_by_departments(self, db_session, org):
        with pytest.raises(ValidationError, match='associated Departments exist'):
            await division_service.delete(db_session, org['division']['division_id'])

    @pytest.mark.asyncio
    async def test_leaf_department_can_be_deleted(self, db_session, org):
        assert await department_service.delete(db_session, org['department']['department_id'])


class TestFunctionsAndApplications:

    @pytest.mark.asyncio
    async def test_application_description_limit(self, db_session):
        with pytest.raises(ValidationError, match='500 characters or less'):
            await application_service.create(db_session, {
                'code': 'APP-01', 'name': 'ERP', 'description': 'd' * 501,
            })

    @pytest.mark.asyncio
    async def test_function_delete_blocked_by_mapping(self, db_session):
        fn = await function_service.create(db_session, {'code': 'FN-01', 'name': 'Finance'})
        app = await application_service.create(db_session, {'code': 'APP-01', 'name': 'ERP'})
        await mapping_service.create_function_app_mapping(db_session, fn['function_id'], app['application_id'])

        with pytest.raises(ValidationError, match='active Application mappings exist'):
            await function_service.delete(db_session, fn['function_id'])

    @pytest.mark.asyncio
    async def test_function_delete_blocked_by_it_lead(self, db_session, it_lead):
        fn = await function_service.create(db_session, {
            'code': 'FN-01', 'name': 'Finance', 'it_dept_head_user_id': it_lead['user_id'],
        })

        with pytest.raises(ValidationError, match='IT Lead assignments exist'):
            await function_service.delete(db_session, fn['function_id'])

    @pytest.mark.asyncio
    async def test_application_delete_blocked_by_department_mapping(self, db_session, org):
        app = await application_service.create(db_session, {'code': 'APP-01', 'name': 'ERP'})
        await mapping_service.create_app_dept_mapping(
            db_session, app['application_id'], org['department']['department_id']
        )

        with pytest.raises(ValidationError, match='active Department mappings exist'):
            await application_service.delete(db_session, app['application_id'])
