"""
Integration Tests for the HTTP API

Requests go through the ASGI app with the database dependency bound to
the per-test session.
"""
from io import BytesIO

import pytest
from openpyxl import Workbook, load_workbook

API = '/api/v1'
PASSWORD = 'Password123!'


def xlsx(headers, rows):
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(headers)
    for row in rows:
        sheet.append(row)
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get('/health')

        assert response.status_code == 200
        body = response.json()
        assert body['status'] == 'healthy'
        assert body['scheduler']['is_running'] is False

    @pytest.mark.asyncio
    async def test_security_headers(self, client):
        response = await client.get('/')

        assert response.headers['X-Content-Type-Options'] == 'nosniff'
        assert response.headers['X-Frame-Options'] == 'DENY'
        assert 'X-Request-ID' in response.headers

    @pytest.mark.asyncio
    async def test_survey_pages_can_be_framed(self, client, active_survey):
        response = await client.get(f"{API}/responses/survey/{active_survey['survey_id']}/form")

        assert response.headers['Content-Security-Policy'] == 'frame-ancestors *'
        assert 'X-Frame-Options' not in response.headers

    @pytest.mark.asyncio
    async def test_oversized_json_body(self, client):
        response = await client.post(
            f'{API}/auth/login', content=b'x' * (2 * 1024 * 1024), headers={'Content-Type': 'application/json'}
        )

        assert response.status_code == 413
        assert response.json()['error']['code'] == 'PAYLOAD_TOO_LARGE'


class TestAuthEndpoints:

    @pytest.mark.asyncio
    async def test_login_me_logout(self, client, admin_event):
        login = await client.post(f'{API}/auth/login', json={'username': admin_event['username'], 'password': PASSWORD})

        assert login.status_code == 200
        body = login.json()
        assert body['success'] is True
        headers = {'Authorization': f"Bearer {body['token']}"}

        me = await client.get(f'{API}/auth/me', headers=headers)
        assert me.status_code == 200
        assert me.json()['data']['username'] == admin_event['username']

        logout = await client.post(f'{API}/auth/logout', headers=headers)
        assert logout.status_code == 200

        after = await client.get(f'{API}/auth/me', headers=headers)
        assert after.status_code == 401
        assert after.json()['error']['message'] == 'Session has been invalidated'

    @pytest.mark.asyncio
    async def test_bad_credentials(self, client, admin_event):
        response = await client.post(f'{API}/auth/login', json={'username': admin_event['username'], 'password': 'nope'})

        assert response.status_code == 401
        body = response.json()
        assert body['success'] is False
        assert body['error']['code'] == 'AUTH_FAILED'

    @pytest.mark.asyncio
    async def test_missing_credentials(self, client):
        response = await client.post(f'{API}/auth/login', json={'username': 'someone'})

        assert response.status_code == 400
        assert response.json()['error']['message'] == 'Username and password are required'

    @pytest.mark.asyncio
    async def test_refresh(self, client, admin_event):
        login = (await client.post(
            f'{API}/auth/login', json={'username': admin_event['username'], 'password': PASSWORD}
        )).json()

        response = await client.post(f'{API}/auth/refresh', json={'refreshToken': login['refresh_token']})

        assert response.status_code == 200
        assert response.json()['token'] != login['token']

    @pytest.mark.asyncio
    async def test_no_token(self, client):
        response = await client.get(f'{API}/auth/validate')

        assert response.status_code == 401
        assert response.json()['error']['message'] == 'No authentication token provided'


class TestPermissions:

    @pytest.mark.asyncio
    async def test_super_admin_manages_users(self, client, super_admin_headers):
        response = await client.post(f'{API}/users', headers=super_admin_headers, json={
            'username': 'new.user', 'displayName': 'New User', 'email': 'new.user@example.com',
            'role': 'ITLead', 'useLDAP': False, 'password': 'LongEnough1',
        })

        assert response.status_code == 201
        assert 'password_hash' not in response.json()['data']

    @pytest.mark.asyncio
    async def test_admin_event_cannot_manage_users(self, client, admin_headers):
        response = await client.get(f'{API}/users', headers=admin_headers)

        assert response.status_code == 403
        assert response.json()['error']['message'] == 'Insufficient permissions'

    @pytest.mark.asyncio
    async def test_super_admin_reads_but_cannot_write_master_data(self, client, super_admin_headers):
        assert (await client.get(f'{API}/business-units', headers=super_admin_headers)).status_code == 200

        response = await client.post(
            f'{API}/business-units', headers=super_admin_headers, json={'code': 'BU-01', 'name': 'X'}
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_it_lead_reads_surveys_only(self, client, it_lead_headers):
        assert (await client.get(f'{API}/surveys', headers=it_lead_headers)).status_code == 200
        response = await client.post(f'{API}/surveys', headers=it_lead_headers, json={'title': 'x'})
        assert response.status_code == 403


class TestMasterData:

    @pytest.mark.asyncio
    async def test_crud_flow(self, client, admin_headers):
        created = await client.post(
            f'{API}/business-units', headers=admin_headers, json={'code': 'BU-01', 'name': 'Retail'}
        )
        assert created.status_code == 201
        bu_id = created.json()['data']['business_unit_id']

        division = await client.post(f'{API}/divisions', headers=admin_headers, json={
            'code': 'DIV-01', 'name': 'Sales', 'businessUnitId': bu_id,
        })
        assert division.status_code == 201

        by_bu = await client.get(f'{API}/divisions/business-unit/{bu_id}', headers=admin_headers)
        assert [d['code'] for d in by_bu.json()['data']] == ['DIV-01']

        blocked = await client.delete(f'{API}/business-units/{bu_id}', headers=admin_headers)
        assert blocked.status_code == 400
        assert 'associated Divisions exist' in blocked.json()['error']['message']

        renamed = await client.put(f'{API}/business-units/{bu_id}', headers=admin_headers, json={'name': 'Retail Group'})
        assert renamed.json()['data']['name'] == 'Retail Group'

    @pytest.mark.asyncio
    async def test_duplicate_code_is_409(self, client, admin_headers):
        await client.post(f'{API}/functions', headers=admin_headers, json={'code': 'FN-01', 'name': 'Finance'})

        response = await client.post(f'{API}/functions', headers=admin_headers, json={'code': 'FN-01', 'name': 'Again'})

        assert response.status_code == 409
        assert response.json()['error']['code'] == 'CONFLICT'

    @pytest.mark.asyncio
    async def test_unknown_id_is_404(self, client, admin_headers):
        response = await client.get(
            f'{API}/applications/00000000-0000-0000-0000-000000000000', headers=admin_headers
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_mapping_and_csv_export(self, client, admin_headers):
        fn = (await client.post(f'{API}/functions', headers=admin_headers, json={'code': 'FN-01', 'name': 'Finance'})).json()['data']
        app = (await client.post(f'{API}/applications', headers=admin_headers, json={'code': 'APP-01', 'name': 'ERP'})).json()['data']

        created = await client.post(f'{API}/mappings/function-application', headers=admin_headers, json={
            'functionId': fn['function_id'], 'applicationIds': [app['application_id']],
        })
        assert created.status_code == 201

        export = await client.get(f'{API}/mappings/function-application/export/csv', headers=admin_headers)
        assert export.headers['content-type'].startswith('text/csv')
        assert 'attachment' in export.headers['content-disposition']
        assert 'FN-01,Finance,APP-01,ERP' in export.text


class TestSurveysFlow:

    @pytest.mark.asyncio
    async def test_author_and_publish(self, client, admin_headers):
        created = await client.post(f'{API}/surveys', headers=admin_headers, json={
            'title': 'CSI 2026', 'startDate': '2026-01-01T00:00:00', 'endDate': '2099-12-31T00:00:00',
            'configuration': {'primaryColor': '#123456'},
        })
        assert created.status_code == 201
        survey = created.json()['data']
        sid = survey['survey_id']
        assert survey['status'] == 'Draft'
        assert survey['configuration']['primary_color'] == '#123456'

        question = await client.post(f'{API}/questions', headers=admin_headers, json={
            'surveyId': sid, 'type': 'Rating', 'promptText': 'Overall satisfaction', 'isMandatory': True,
        })
        assert question.status_code == 201

        link = await client.post(f'{API}/surveys/{sid}/link', headers=admin_headers, json={'shortenUrl': True})
        assert link.json()['data']['shortened_link']

        qr = await client.post(f'{API}/surveys/{sid}/qrcode', headers=admin_headers)
        assert qr.json()['data']['qr_code_data_url'].startswith('data:image/png;base64,')

        published = await client.put(f'{API}/events/{sid}', headers=admin_headers, json={'status': 'Active'})
        assert published.json()['data']['status'] == 'Active'

        preview = await client.get(f'{API}/events/{sid}/preview', headers=admin_headers)
        assert preview.json()['data']['questions'][0]['prompt_text'] == 'Overall satisfaction'

    @pytest.mark.asyncio
    async def test_invalid_dates(self, client, admin_headers):
        response = await client.post(f'{API}/surveys', headers=admin_headers, json={
            'title': 'Bad', 'startDate': '2026-02-01', 'endDate': '2026-01-01',
        })

        assert response.status_code == 400
        assert response.json()['error']['message'] == 'End date must be after start date'

    @pytest.mark.asyncio
    async def test_schedule_and_cancel(self, client, admin_headers, active_survey):
        sid = active_survey['survey_id']

        scheduled = await client.post(f'{API}/surveys/{sid}/schedule-reminder', headers=admin_headers, json={
            'scheduledDate': '2099-01-05', 'scheduledTime': '08:00', 'frequency': 'weekly',
            'dayOfWeek': 1, 'emailTemplate': '<p>{{survey_link}}</p>',
        })
        assert scheduled.status_code == 201
        operation_id = scheduled.json()['data']['operation_id']

        listed = await client.get(f'{API}/surveys/{sid}/scheduled-operations', headers=admin_headers)
        assert [o['operation_id'] for o in listed.json()['data']] == [operation_id]

        cancelled = await client.delete(f'{API}/surveys/scheduled-operations/{operation_id}', headers=admin_headers)
        assert cancelled.status_code == 200

        again = await client.delete(f'{API}/surveys/scheduled-operations/{operation_id}', headers=admin_headers)
        assert again.status_code == 409


class TestPublicResponses:

    @pytest.mark.asyncio
    async def test_submit_and_duplicate(self, client, admin_headers, it_lead_headers, org, active_survey):
        sid = active_survey['survey_id']
        question = (await client.post(f'{API}/questions', headers=admin_headers, json={
            'surveyId': sid, 'type': 'Text', 'promptText': 'Comments', 'isMandatory': True,
        })).json()['data']
        app = (await client.post(f'{API}/applications', headers=admin_headers, json={
            'code': 'APP-01', 'name': 'ERP',
        })).json()['data']
        did = org['department']['department_id']
        await client.post(f'{API}/mappings/application-department', headers=admin_headers, json={
            'applicationId': app['application_id'], 'departmentId': did,
        })

        form = await client.get(f'{API}/responses/survey/{sid}/form')
        assert form.status_code == 200
        apps = await client.get(f'{API}/responses/survey/{sid}/applications', params={'departmentId': did})
        assert [a['code'] for a in apps.json()['data']] == ['APP-01']

        payload = {
            'surveyId': sid,
            'respondent': {
                'name': 'Rina', 'email': 'rina@example.com',
                'businessUnitId': org['business_unit']['business_unit_id'],
                'divisionId': org['division']['division_id'],
                'departmentId': did,
            },
            'selectedApplicationIds': [app['application_id']],
            'responses': [{'questionId': question['question_id'], 'value': {'textValue': 'Great'}}],
        }
        submitted = await client.post(f'{API}/responses', json=payload)
        assert submitted.status_code == 201
        assert len(submitted.json()['data']['response_ids']) == 1

        duplicate = await client.post(f'{API}/responses', json=payload)
        assert duplicate.status_code == 409

        check = await client.post(f'{API}/responses/check-duplicate', json={
            'surveyId': sid, 'email': 'RINA@example.com', 'applicationId': app['application_id'],
        })
        assert check.json()['data']['is_duplicate'] is True

        listed = await client.get(f'{API}/responses', headers=it_lead_headers, params={'surveyId': sid})
        assert listed.json()['count'] == 1

    @pytest.mark.asyncio
    async def test_listing_requires_auth(self, client):
        assert (await client.get(f'{API}/responses')).status_code == 401


class TestBulkImportEndpoints:

    @pytest.mark.asyncio
    async def test_template_download(self, client, admin_headers):
        response = await client.get(f'{API}/bulk-import/templates/Department', headers=admin_headers)

        assert response.status_code == 200
        sheet = load_workbook(BytesIO(response.content)).active
        assert [c.value for c in sheet[1]] == ['Code', 'Name', 'Division Code']

    @pytest.mark.asyncio
    async def test_upload(self, client, admin_headers):
        content = xlsx(['Code', 'Name'], [['FN-01', 'Finance'], ['FN-02', 'Legal']])

        response = await client.post(
            f'{API}/bulk-import/Function',
            headers=admin_headers,
            files={'file': ('functions.xlsx', content, 'application/octet-stream')},
        )

        assert response.status_code == 200
        data = response.json()['data']
        assert data['imported'] == 2
        assert 'Imported: 2' in data['report']

    @pytest.mark.asyncio
    async def test_validate_only(self, client, admin_headers):
        content = xlsx(['Code', 'Name'], [['B', 'Bad code']])

        response = await client.post(
            f'{API}/bulk-import/BusinessUnit/validate',
            headers=admin_headers,
            files={'file': ('units.xlsx', content, 'application/octet-stream')},
        )

        assert response.json()['data']['summary'] == {'valid': 0, 'invalid': 1, 'total': 1}

    @pytest.mark.asyncio
    async def test_rejects_non_excel(self, client, admin_headers):
        response = await client.post(
            f'{API}/bulk-import/Function',
            headers=admin_headers,
            files={'file': ('functions.csv', b'Code,Name', 'text/csv')},
        )

        assert response.status_code == 400
        assert response.json()['error']['message'] == 'Only Excel files (.xlsx) are allowed'

    @pytest.mark.asyncio
    async def test_user_import_needs_super_admin(self, client, admin_headers):
        response = await client.get(f'{API}/bulk-import/templates/User', headers=admin_headers)

        assert response.status_code == 403


class TestAudit:

    @pytest.mark.asyncio
    async def test_changes_are_audited(self, client, admin_headers, super_admin_headers):
        created = (await client.post(
            f'{API}/applications', headers=admin_headers, json={'code': 'APP-01', 'name': 'ERP'}
        )).json()['data']

        history = await client.get(
            f"{API}/audit/entity-history/Application/{created['application_id']}", headers=super_admin_headers
        )
        assert [h['action'] for h in history.json()['data']] == ['Create']

        logs = await client.get(
            f'{API}/audit', headers=super_admin_headers, params={'action': 'Create', 'entityType': 'Application'}
        )
        assert logs.json()['data']['total'] == 1

    @pytest.mark.asyncio
    async def test_failed_login_is_audited(self, client, admin_event, super_admin_headers):
        await client.post(f'{API}/auth/login', json={'username': admin_event['username'], 'password': 'wrong'})

        logs = await client.get(f'{API}/audit', headers=super_admin_headers, params={'action': 'LoginFailed'})

        assert logs.json()['data']['items'][0]['username'] == admin_event['username']
