"""Tests for the REST client and entity services."""

import json
import pytest
import requests
from unittest.mock import patch, MagicMock

from src.data.errors import NetworkError
from src.data.models import EntityType
from src.remote.client import ApiClient, EntityService


def _response(status_code=200, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.ok = status_code < 400
    resp.content = json.dumps(body).encode() if body is not None else b""
    resp.json.return_value = body
    return resp


@pytest.fixture
def client():
    api = ApiClient("https://backend.example/api/", token="secret", timeout=3)
    yield api
    api.close()


class TestApiClient:
    def test_session_headers(self, client):
        session = client._get_session()
        assert session.headers["Authorization"] == "Bearer secret"
        assert session.headers["Accept"] == "application/json"
        assert client._get_session() is session

    def test_url_for(self, client):
        assert client.url_for("/providers") == "https://backend.example/api/providers"
        assert client.url_for("clients/1") == "https://backend.example/api/clients/1"

    def test_get_passes_timeout(self, client):
        with patch.object(requests.Session, "request", return_value=_response(body={"ok": True})) as mock_req:
            assert client.get("/providers", params={"page": 2}) == {"ok": True}
        args, kwargs = mock_req.call_args
        assert args == ("GET", "https://backend.example/api/providers")
        assert kwargs["timeout"] == 3
        assert kwargs["params"] == {"page": 2}

    def test_unauthorized(self, client):
        with patch.object(requests.Session, "request", return_value=_response(401, {"message": "nope"})):
            with pytest.raises(NetworkError) as exc_info:
                client.get("/providers")
        assert exc_info.value.status_code == 401
        assert "Session expired" in str(exc_info.value)

    def test_error_message_from_body(self, client):
        with patch.object(requests.Session, "request", return_value=_response(422, {"message": "Invalid email"})):
            with pytest.raises(NetworkError) as exc_info:
                client.post("/clients", {"email": "bad"})
        assert exc_info.value.status_code == 422
        assert "Invalid email" in str(exc_info.value)

    def test_timeout(self, client):
        with patch.object(requests.Session, "request", side_effect=requests.exceptions.Timeout("slow")):
            with pytest.raises(NetworkError) as exc_info:
                client.get("/providers")
        assert "timed out after 3s" in str(exc_info.value)
        assert isinstance(exc_info.value.cause, requests.exceptions.Timeout)

    def test_connection_error(self, client):
        with patch.object(requests.Session, "request", side_effect=requests.exceptions.ConnectionError("refused")):
            with pytest.raises(NetworkError):
                client.delete("/providers/1")

    def test_empty_body(self, client):
        with patch.object(requests.Session, "request", return_value=_response(204)):
            assert client.delete("/providers/1") is None

    def test_invalid_json(self, client):
        resp = _response(200, {"x": 1})
        resp.json.side_effect = ValueError("bad json")
        with patch.object(requests.Session, "request", return_value=resp):
            with pytest.raises(NetworkError):
                client.get("/providers")

    def test_is_available(self, client):
        with patch.object(requests.Session, "head", return_value=_response(404)):
            assert client.is_available() is True
        with patch.object(requests.Session, "head", return_value=_response(503)):
            assert client.is_available() is False
        with patch.object(requests.Session, "head", side_effect=requests.exceptions.ConnectionError()):
            assert client.is_available() is False


class TestEntityService:
    def test_names(self):
        service = EntityService(MagicMock(), EntityType.PROVIDER)
        assert service.name == "providers"
        assert service.display_name == "Providers"

    def test_fetch_all_walks_pages(self):
        api = MagicMock()
        api.get.side_effect = [
            {"data": [{"id": "1"}, {"id": "2"}], "meta": {"totalPages": 2}},
            {"data": [{"id": "3"}], "meta": {"totalPages": 2}},
        ]
        service = EntityService(api, EntityType.PROVIDER)

        assert [e["id"] for e in service.fetch_all()] == ["1", "2", "3"]
        api.get.assert_any_call("/providers", params={"page": 1})
        api.get.assert_any_call("/providers", params={"page": 2})
        assert api.get.call_count == 2

    def test_fetch_all_plain_list(self):
        api = MagicMock()
        api.get.return_value = [{"id": "c1"}]
        service = EntityService(api, EntityType.CLIENT)
        assert service.fetch_all() == [{"id": "c1"}]
        assert api.get.call_count == 1

    def test_fetch_all_respects_max_pages(self):
        api = MagicMock()
        api.get.return_value = {"data": [{"id": "x"}], "meta": {"totalPages": 100}}
        service = EntityService(api, EntityType.CLIENT, max_pages=3)
        assert len(service.fetch_all()) == 3

    def test_fetch_all_propagates_network_error(self):
        api = MagicMock()
        api.get.side_effect = NetworkError("providers", "down")
        with pytest.raises(NetworkError):
            EntityService(api, EntityType.PROVIDER).fetch_all()

    @pytest.mark.parametrize("body", [
        {"data": [{"id": "p1"}], "meta": {"totalPages": "n/a"}},
        {"data": [{"id": "p1"}], "meta": [2]},
        {"data": {"id": "p1"}, "meta": {"totalPages": 1}},
    ])
    def test_malformed_page_raises_network_error(self, body):
        api = MagicMock()
        api.get.return_value = body
        with pytest.raises(NetworkError) as exc_info:
            EntityService(api, EntityType.PROVIDER).fetch_all()
        assert "Malformed page 1" in str(exc_info.value)

    def test_unwraps_nested_entity(self):
        api = MagicMock()
        api.post.return_value = {"client": {"id": "c9", "name": "Nested"}}
        api.put.return_value = {"data": {"id": "c9", "name": "Data"}}
        api.get.return_value = {"id": "c9", "name": "Flat"}
        service = EntityService(api, EntityType.CLIENT)

        assert service.create({"name": "Nested"})["name"] == "Nested"
        assert service.update("c9", {"name": "Data"})["name"] == "Data"
        assert service.get("c9")["name"] == "Flat"
        api.put.assert_called_once_with("/clients/c9", {"name": "Data"})
