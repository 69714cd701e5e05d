import json

import pytest

from plato.discov import Discovery, Endpoint, Service


def make_endpoint():
    return Endpoint(server_name="test", ip="127.0.0.1", port=9557, weight=100, enable=True)


def test_endpoint_json_keys():
    assert json.loads(make_endpoint().to_json()) == {
        "server_name": "test",
        "ip": "127.0.0.1",
        "port": 9557,
        "weight": 100,
        "enable": True,
    }


def test_endpoint_round_trip():
    ep = make_endpoint()
    assert Endpoint.from_json(ep.to_json()) == ep


def test_endpoint_missing_fields_are_zero():
    assert Endpoint.from_json('{"ip": "127.0.0.1"}') == Endpoint(ip="127.0.0.1")


def test_endpoint_keys_match_case_insensitively():
    assert Endpoint.from_json(b'{"IP": "127.0.0.1", "Port": 9557}') == Endpoint(ip="127.0.0.1", port=9557)


def test_endpoint_rejects_bad_input():
    with pytest.raises(ValueError):
        Endpoint.from_json("[1, 2]")
    with pytest.raises(ValueError):
        Endpoint.from_json('{"port": "9557"}')
    with pytest.raises(ValueError):
        Endpoint.from_json("not json")


def test_service_round_trip():
    service = Service(name="test", endpoints=[make_endpoint()])
    assert Service.from_json(service.to_json()) == service


def test_service_null_endpoints():
    assert Service.from_json('{"name": "test", "endpoints": null}') == Service(name="test")


def test_service_json_shape():
    body = json.loads(Service(name="test", endpoints=[make_endpoint()]).to_json())
    assert body["name"] == "test"
    assert body["endpoints"][0]["port"] == 9557


def test_discovery_is_abstract():
    with pytest.raises(TypeError):
        Discovery()

    class Partial(Discovery):
        def name(self):
            return "partial"

    with pytest.raises(TypeError):
        Partial()