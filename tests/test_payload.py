import json

import pytest

from app.services.payload import (
    CheckInRequest, PayloadClass, PayloadError, classify, deserialize, serialize
)

RECORD = {
    'token': 'abc123XYZ0000000',
    'name': 'Ana',
    'email': 'a@x.com',
    'phone': '+1 5551234567',
    'coming': True,
}


def test_serialize_is_compact_tagged_json():
    text = serialize(RECORD)
    assert ' ' not in text.replace('+1 5551234567', '')
    assert json.loads(text) == {'t': 'rsvp', **RECORD}


def test_deserialize_returns_serialized_fields():
    payload = deserialize(serialize(RECORD))
    assert payload.kind == 'rsvp'
    assert payload.token == RECORD['token']
    assert payload.name == 'Ana'
    assert payload.email == 'a@x.com'
    assert payload.phone == '+1 5551234567'
    assert payload.coming is True


def test_serialize_accepts_model_like_objects(make_rsvp):
    record = make_rsvp(token='tok-model')
    assert deserialize(serialize(record)).token == 'tok-model'


@pytest.mark.parametrize('text', ['hello world', '', '[1, 2]', '"rsvp"', '42'])
def test_non_object_text_is_foreign(text):
    scan = classify(text)
    assert scan.classification == PayloadClass.FOREIGN
    assert scan.raw_text == text
    assert scan.payload is None


@pytest.mark.parametrize('data', [
    {'t': 'ticket', 'token': 'abc'},
    {'token': 'abc'},
    {'t': 'rsvp'},
    {'t': 'rsvp', 'token': ''},
    {'t': 'rsvp', 'token': 12345},
])
def test_wrong_kind_or_token_is_invalid(data):
    with pytest.raises(PayloadError) as excinfo:
        deserialize(json.dumps(data))
    assert excinfo.value.classification == PayloadClass.INVALID


def test_extra_fields_do_not_affect_the_request():
    text = json.dumps({'t': 'rsvp', 'token': 'tok-1', 'name': 42, 'admin': True})
    scan = classify(text)
    assert scan.is_valid
    assert scan.payload.name == ''
    assert CheckInRequest.from_payload(scan.payload) == CheckInRequest(token='tok-1')


def test_deeply_nested_json_is_foreign():
    text = '[' * 5000
    scan = classify(text)
    assert scan.classification == PayloadClass.FOREIGN
    assert scan.raw_text == text
