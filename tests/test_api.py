import re
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from crimereport.db import init_db, make_engine
from crimereport.main import create_app
from crimereport.services.emergencies import EmergencyService
from crimereport.services.media import LocalUploader

REPORT = {
    'type': 'THEFT',
    'description': 'bike stolen',
    'location': 'Main St',
    'latitude': '40.0',
    'longitude': '-75.0',
}


class FlakyUploader:
    def upload(self, staged):
        if 'broken' in staged.filename:
            raise RuntimeError('upload refused')
        return f'https://media.example/{staged.filename}'


def setup_app(tmp_path, uploader=None, debug=False):
    engine = make_engine('sqlite://')
    init_db(engine)
    upload_dir = tmp_path / 'uploads'
    app = create_app(
        engine=engine,
        uploader=uploader or LocalUploader(upload_dir),
        staging_dir=tmp_path / 'staging',
        upload_dir=upload_dir,
        debug=debug,
    )
    return app, TestClient(app, raise_server_exceptions=False)


def staging_files(tmp_path):
    staging = tmp_path / 'staging'
    return list(staging.iterdir()) if staging.exists() else []


def submit(client, **changes):
    res = client.post('/api/reports', data=dict(REPORT, **changes))
    assert res.status_code == 201, res.text
    return res.json()


def test_submit_report_without_files(tmp_path):
    _, client = setup_app(tmp_path)
    res = client.post('/api/reports', data=REPORT)
    assert res.status_code == 201
    body = res.json()
    assert body['success'] is True
    data = body['data']
    assert re.fullmatch(r'CR\d{2}\d{2}-\d{4}', data['trackingNumber'])
    assert data['status'] == 'SUBMITTED'
    assert data['evidence'] == []
    assert data['skippedFiles'] == 0

    res = client.get(f"/api/reports/{data['trackingNumber']}")
    assert res.status_code == 200
    report = res.json()['data']
    assert report['trackingNumber'] == data['trackingNumber']
    assert report['type'] == 'THEFT'
    assert report['location'] == 'Main St'
    assert report['latitude'] == 40.0
    assert report['evidence'] == []
    assert [u['status'] for u in report['statusUpdates']] == ['SUBMITTED']


def test_submit_report_with_evidence(tmp_path):
    _, client = setup_app(tmp_path)
    res = client.post(
        '/api/reports',
        data=dict(REPORT, detailedAddress='12 Main St', contactPhone='555-0100'),
        files=[
            ('evidence', ('photo.jpg', b'jpeg-bytes', 'image/jpeg')),
            ('evidence', ('clip.mp4', b'mp4-bytes', 'video/mp4')),
        ],
    )
    assert res.status_code == 201
    evidence = res.json()['data']['evidence']
    assert [e['fileType'] for e in evidence] == ['image/jpeg', 'video/mp4']
    assert all(e['fileUrl'].startswith('/uploads/') for e in evidence)

    served = client.get(evidence[0]['fileUrl'])
    assert served.status_code == 200
    assert served.content == b'jpeg-bytes'
    assert staging_files(tmp_path) == []


def test_failed_upload_is_reported_as_skipped(tmp_path):
    _, client = setup_app(tmp_path, uploader=FlakyUploader())
    res = client.post(
        '/api/reports',
        data=REPORT,
        files=[
            ('evidence', ('broken.jpg', b'x', 'image/jpeg')),
            ('evidence', ('fine.jpg', b'y', 'image/jpeg')),
        ],
    )
    assert res.status_code == 201
    data = res.json()['data']
    assert data['skippedFiles'] == 1
    assert [e['fileUrl'] for e in data['evidence']] == ['https://media.example/fine.jpg']
    assert staging_files(tmp_path) == []


def test_missing_latitude_is_rejected(tmp_path):
    _, client = setup_app(tmp_path)
    payload = dict(REPORT)
    del payload['latitude']
    res = client.post(
        '/api/reports',
        data=payload,
        files=[('evidence', ('photo.jpg', b'jpeg-bytes', 'image/jpeg'))],
    )
    assert res.status_code == 400
    assert res.json() == {'success': False, 'message': 'Missing required fields.'}
    assert staging_files(tmp_path) == []
    assert not list((tmp_path / 'uploads').iterdir())
    assert client.get('/api/reports').json()['data'] == []


def test_too_many_files_is_rejected(tmp_path):
    _, client = setup_app(tmp_path)
    files = [('evidence', (f'{i}.jpg', b'x', 'image/jpeg')) for i in range(6)]
    res = client.post('/api/reports', data=REPORT, files=files)
    assert res.status_code == 400
    assert res.json()['success'] is False
    assert staging_files(tmp_path) == []


def test_unknown_tracking_number(tmp_path):
    _, client = setup_app(tmp_path)
    res = client.get('/api/reports/CR99-9999')
    assert res.status_code == 404
    assert res.json() == {'success': False, 'message': 'Report not found'}


def test_nearby_reports(tmp_path):
    _, client = setup_app(tmp_path)
    here = submit(client)['data']['trackingNumber']
    close = submit(client, latitude='40.02', description='close by')['data']['trackingNumber']
    submit(client, latitude='42.0', description='far away')

    res = client.get('/api/reports/nearby', params={'latitude': 40.0, 'longitude': -75.0, 'radius': 5})
    assert res.status_code == 200
    data = res.json()['data']
    assert [r['trackingNumber'] for r in data] == [here, close]
    assert data[0]['distance'] < 0.001
    assert 2.0 < data[1]['distance'] < 2.5
    assert data[0]['evidence'] == []

    # default radius is 5 km
    res = client.get('/api/reports/nearby', params={'latitude': 40.0, 'longitude': -75.0})
    assert len(res.json()['data']) == 2

    res = client.get('/api/reports/nearby', params={'latitude': 40.0, 'longitude': -75.0, 'radius': 0})
    assert res.json() == {'success': True, 'data': []}


def test_nearby_rejects_invalid_coordinates(tmp_path):
    _, client = setup_app(tmp_path)
    res = client.get('/api/reports/nearby', params={'latitude': 'x', 'longitude': -75.0})
    assert res.status_code == 400
    assert res.json() == {'success': False, 'message': 'Invalid latitude or longitude'}
    res = client.get('/api/reports/nearby')
    assert res.status_code == 400


def test_update_report_status(tmp_path):
    _, client = setup_app(tmp_path)
    number = submit(client)['data']['trackingNumber']

    res = client.patch(f'/api/reports/{number}/status', json={'status': 'INVESTIGATING', 'comment': 'officer assigned'})
    assert res.status_code == 200
    data = res.json()['data']
    assert data['trackingNumber'] == number
    assert data['status'] == 'INVESTIGATING'
    assert data['latestUpdate']['status'] == 'INVESTIGATING'
    assert data['latestUpdate']['comment'] == 'officer assigned'

    history = client.get(f'/api/reports/{number}').json()['data']['statusUpdates']
    assert [u['status'] for u in history] == ['INVESTIGATING', 'SUBMITTED']

    res = client.patch(f'/api/reports/{number}/status', json={'status': 'SUBMITTED'})
    assert res.status_code == 400
    assert res.json() == {'success': False, 'message': 'Invalid status value'}

    res = client.patch('/api/reports/CR99-9999/status', json={'status': 'RESOLVED'})
    assert res.status_code == 404


def test_list_reports_with_status_filter(tmp_path):
    _, client = setup_app(tmp_path)
    first = submit(client, description='first')['data']['trackingNumber']
    submit(client, description='second')
    client.patch(f'/api/reports/{first}/status', json={'status': 'RESOLVED'})

    data = client.get('/api/reports').json()['data']
    assert [r['description'] for r in data] == ['second', 'first']

    data = client.get('/api/reports', params={'status': 'RESOLVED'}).json()['data']
    assert [r['trackingNumber'] for r in data] == [first]

    assert client.get('/api/reports', params={'status': 'NOPE'}).status_code == 400


def test_emergency_lifecycle(tmp_path):
    _, client = setup_app(tmp_path)
    res = client.post('/api/emergency', json={'description': 'fire'})
    assert res.status_code == 201
    data = res.json()['data']
    assert data['status'] == 'PENDING'
    assert data['message'] == 'Emergency report created successfully.'
    emergency_id = data['id']

    res = client.patch(f'/api/emergency/{emergency_id}/status', json={'status': 'RESPONDED'})
    assert res.status_code == 200
    assert res.json() == {'success': True, 'data': {'id': emergency_id, 'status': 'RESPONDED'}}

    listed = client.get('/api/emergency').json()['data']
    assert [(e['id'], e['status']) for e in listed] == [(emergency_id, 'RESPONDED')]
    assert client.get('/api/emergency', params={'status': 'PENDING'}).json()['data'] == []


def test_emergency_errors(tmp_path):
    _, client = setup_app(tmp_path)
    res = client.post('/api/emergency', json={})
    assert res.status_code == 400
    assert res.json()['message'] == 'Description is required for emergency reports.'

    emergency_id = client.post('/api/emergency', json={'description': 'fire'}).json()['data']['id']
    res = client.patch(f'/api/emergency/{emergency_id}/status', json={'status': 'PENDING'})
    assert res.status_code == 400
    assert res.json()['success'] is False

    assert client.patch('/api/emergency/999/status', json={'status': 'RESOLVED'}).status_code == 404
    assert client.patch('/api/emergency/abc/status', json={'status': 'RESOLVED'}).status_code == 400


def test_unknown_route(tmp_path):
    _, client = setup_app(tmp_path)
    res = client.get('/api/nothing-here')
    assert res.status_code == 404
    assert res.json() == {'success': False, 'message': 'Route not found'}


def test_health(tmp_path):
    _, client = setup_app(tmp_path)
    assert client.get('/api/health').json()['success'] is True


def test_unexpected_errors_are_hidden_outside_development(tmp_path, monkeypatch):
    def boom(self, status=None):
        raise RuntimeError('database on fire')

    monkeypatch.setattr(EmergencyService, 'list_all', boom)

    _, client = setup_app(tmp_path)
    res = client.get('/api/emergency')
    assert res.status_code == 500
    assert res.json() == {'success': False, 'message': 'Internal Server Error'}

    _, client = setup_app(tmp_path, debug=True)
    res = client.get('/api/emergency')
    assert res.status_code == 500
    assert res.json()['error'] == 'database on fire'


def test_timestamps_carry_utc_offset(tmp_path):
    _, client = setup_app(tmp_path)
    before = datetime.now(timezone.utc) - timedelta(seconds=5)
    number = submit(client)['data']['trackingNumber']
    report = client.get(f'/api/reports/{number}').json()['data']

    created = datetime.fromisoformat(report['createdAt'])
    assert created.utcoffset() == timedelta(0)
    assert before <= created <= datetime.now(timezone.utc) + timedelta(seconds=5)
    assert datetime.fromisoformat(report['statusUpdates'][0]['createdAt']).utcoffset() == timedelta(0)

    emergency_id = client.post('/api/emergency', json={'description': 'fire'}).json()['data']['id']
    listed = client.get('/api/emergency').json()['data']
    assert listed[0]['id'] == emergency_id
    assert datetime.fromisoformat(listed[0]['createdAt']).utcoffset() == timedelta(0)


def test_server_errors_keep_cors_headers(tmp_path, monkeypatch):
    def boom(self, status=None):
        raise RuntimeError('database on fire')

    monkeypatch.setattr(EmergencyService, 'list_all', boom)

    _, client = setup_app(tmp_path)
    res = client.get('/api/emergency', headers={'Origin': 'http://dashboard.example'})
    assert res.status_code == 500
    assert res.headers['access-control-allow-origin'] == '*'
    assert res.json() == {'success': False, 'message': 'Internal Server Error'}


def test_cors_preflight_allows_only_used_methods(tmp_path):
    _, client = setup_app(tmp_path)
    headers = {'Origin': 'http://dashboard.example', 'Access-Control-Request-Method': 'PATCH'}
    res = client.options('/api/reports/CR2610-0001/status', headers=headers)
    assert res.status_code == 200
    allowed = res.headers['access-control-allow-methods']
    assert 'PATCH' in allowed
    assert 'PUT' not in allowed
    assert 'DELETE' not in allowed

    headers['Access-Control-Request-Method'] = 'DELETE'
    res = client.options('/api/reports/CR2610-0001', headers=headers)
    assert res.status_code == 400
