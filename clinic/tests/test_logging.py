import json
import logging

import pytest

from clinic.log_format import JSONFormatter, request_id_var

pytestmark = pytest.mark.django_db


def test_request_id_is_echoed(api):
    r = api.get('/healthz', HTTP_X_REQUEST_ID='abc123')
    assert r['X-Request-ID'] == 'abc123'


def test_request_id_is_generated(api):
    r = api.get('/healthz')
    assert len(r['X-Request-ID']) == 32


def test_json_formatter_carries_request_id_and_extra():
    record = logging.LogRecord('clinic.services.billing', logging.INFO, __file__, 1,
                               'payment %s recorded', ('P1',), None)
    record.invoice = 'INV26010001'
    token = request_id_var.set('req-1')
    try:
        line = JSONFormatter().format(record)
    finally:
        request_id_var.reset(token)
    data = json.loads(line)
    assert data['level'] == 'INFO'
    assert data['logger'] == 'clinic.services.billing'
    assert data['message'] == 'payment P1 recorded'
    assert data['request_id'] == 'req-1'
    assert data['extra'] == {'invoice': 'INV26010001'}
    assert data['timestamp'].endswith('Z')
