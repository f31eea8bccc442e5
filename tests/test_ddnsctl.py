"""Unit tests for ddnsctl.py - command line client."""

import json

import pytest
import requests
from click.testing import CliRunner
from unittest.mock import MagicMock, patch

from ddnsctl import DDNSOperatorCLI, cli, format_last_update, load_documents

SERVER = "http://operator.test/api/v1"

HOSTNAME = {
    "id": 1,
    "name": "home",
    "namespace": "default",
    "spec": {
        "hostname": "home.example.com",
        "checkIntervalMinutes": 5,
        "ddnsService": {"endpoint": "Dyn", "authSecretRef": {"name": "dyn"}},
    },
    "status": {
        "lastUpdate": {
            "scheduledAt": "2024-05-01T10:00:00Z",
            "failed": False,
            "hostname": "home.example.com",
            "address": "203.0.113.7",
        }
    },
    "generation": 2,
    "observed_generation": 2,
    "next_reconcile_time": "2024-05-01T10:05:00Z",
}


def make_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.content = b"" if body is None else json.dumps(body).encode()
    response.json.return_value = body
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            f"{status_code} Error", response=response
        )
    return response


def invoke(*args, input=None):
    return CliRunner().invoke(cli, ["--server", SERVER, *args], input=input)


class TestHelpers:
    def test_format_last_update(self):
        assert format_last_update(HOSTNAME["status"]) == (
            "203.0.113.7",
            "OK",
            "2024-05-01T10:00:00Z",
        )

    def test_format_last_update_failed(self):
        status = {"lastUpdate": {"failed": True, "address": "203.0.113.7"}}
        assert format_last_update(status)[1] == "Failed"

    def test_format_last_update_empty(self):
        assert format_last_update({}) == ("-", "-", "-")

    def test_load_yaml_documents(self, tmp_path):
        path = tmp_path / "home.yaml"
        path.write_text("kind: Secret\n---\nkind: Hostname\n---\n")
        assert [d["kind"] for d in load_documents(str(path))] == ["Secret", "Hostname"]

    def test_load_json_document(self, tmp_path):
        path = tmp_path / "home.json"
        path.write_text('{"kind": "Hostname"}')
        assert load_documents(str(path)) == [{"kind": "Hostname"}]


class TestMakeRequest:
    def test_success(self):
        client = DDNSOperatorCLI(SERVER + "/")
        with patch("ddnsctl.requests.request", return_value=make_response(body=[])) as r:
            assert client._make_request("GET", "/hostnames") == []
        r.assert_called_once_with("GET", SERVER + "/hostnames", timeout=30)

    def test_no_content(self):
        client = DDNSOperatorCLI(SERVER)
        with patch("ddnsctl.requests.request", return_value=make_response(204)):
            assert client._make_request("DELETE", "/hostnames/1") == {}

    def test_quiet_404(self):
        client = DDNSOperatorCLI(SERVER)
        response = make_response(404, {"detail": "Hostname not found"})
        with patch("ddnsctl.requests.request", return_value=response):
            assert client.find_hostname("home", "default", quiet_404=True) is None

    def test_connection_error(self):
        client = DDNSOperatorCLI(SERVER)
        with patch(
            "ddnsctl.requests.request",
            side_effect=requests.exceptions.ConnectionError("refused"),
        ):
            assert client._make_request("GET", "/hostnames") is None


class TestGetHostnames:
    def test_table(self):
        with patch("ddnsctl.requests.request", return_value=make_response(body=[HOSTNAME])):
            result = invoke("get", "hostnames")

        assert result.exit_code == 0
        assert "home.example.com" in result.output
        assert "203.0.113.7" in result.output
        assert "OK" in result.output

    def test_wide(self):
        with patch("ddnsctl.requests.request", return_value=make_response(body=[HOSTNAME])):
            result = invoke("get", "hostnames", "-o", "wide")

        assert result.exit_code == 0
        assert "ENDPOINT" in result.output
        assert "2/2" in result.output

    def test_namespace_filter(self):
        with patch(
            "ddnsctl.requests.request", return_value=make_response(body=[])
        ) as mock_request:
            invoke("get", "hostnames", "-n", "lab")

        assert mock_request.call_args.kwargs["params"] == {"namespace": "lab"}

    def test_error_exits_nonzero(self):
        with patch(
            "ddnsctl.requests.request",
            side_effect=requests.exceptions.ConnectionError("refused"),
        ):
            result = invoke("get", "hostnames")
        assert result.exit_code == 1


class TestApply:
    @pytest.fixture
    def manifest(self, tmp_path):
        path = tmp_path / "home.yaml"
        path.write_text(
            """
kind: Secret
metadata:
  name: dyn
stringData:
  authToken: user:pass
---
kind: Hostname
metadata:
  name: home
spec:
  hostname: home.example.com
  ddnsService:
    endpoint: Dyn
    authSecretRef:
      name: dyn
"""
        )
        return str(path)

    def test_creates_resources(self, manifest):
        responses = [
            make_response(201, {"name": "dyn", "namespace": "default", "keys": ["authToken"]}),
            make_response(404, {"detail": "Hostname not found"}),
            make_response(201, dict(HOSTNAME, generation=1)),
        ]
        with patch("ddnsctl.requests.request", side_effect=responses) as mock_request:
            result = invoke("apply", "-f", manifest)

        assert result.exit_code == 0, result.output
        assert "secret/default/dyn configured" in result.output
        assert "hostname/default/home created (ID 1)" in result.output
        post = mock_request.call_args_list[2]
        assert post.args[0] == "POST"
        assert post.kwargs["json"]["spec"]["hostname"] == "home.example.com"

    def test_updates_existing_hostname(self, manifest):
        responses = [
            make_response(201, {"name": "dyn", "namespace": "default", "keys": ["authToken"]}),
            make_response(200, HOSTNAME),
            make_response(200, dict(HOSTNAME, generation=3)),
        ]
        with patch("ddnsctl.requests.request", side_effect=responses) as mock_request:
            result = invoke("apply", "-f", manifest)

        assert result.exit_code == 0, result.output
        assert "configured (generation 3)" in result.output
        assert mock_request.call_args_list[2].args[:2] == (
            "PUT",
            SERVER + "/hostnames/1",
        )

    def test_unknown_kind(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text('{"kind": "Zone"}')

        result = invoke("apply", "-f", str(path))

        assert result.exit_code == 1


class TestHostnameCommands:
    def test_describe(self):
        with patch("ddnsctl.requests.request", return_value=make_response(body=HOSTNAME)):
            result = invoke("describe", "home")

        assert result.exit_code == 0
        assert "hostname: home.example.com" in result.output

    def test_delete(self):
        responses = [make_response(body=HOSTNAME), make_response(204)]
        with patch("ddnsctl.requests.request", side_effect=responses) as mock_request:
            result = invoke("delete", "home", "--yes")

        assert result.exit_code == 0
        assert "hostname/default/home deleted" in result.output
        assert mock_request.call_args.args == ("DELETE", SERVER + "/hostnames/1")

    def test_reconcile(self):
        responses = [
            make_response(body=HOSTNAME),
            make_response(202, {"message": "Reconciliation triggered", "hostname_id": 1}),
        ]
        with patch("ddnsctl.requests.request", side_effect=responses):
            result = invoke("reconcile", "home")

        assert result.exit_code == 0
        assert "Reconciliation triggered" in result.output

    def test_history(self):
        entry = {
            "id": 9,
            "generation": 2,
            "success": False,
            "trigger_reason": "retry",
            "duration_seconds": 0.25,
            "error_message": "Reconciliation error: secret missing",
            "reconcile_time": "2024-05-01T10:00:00Z",
        }
        responses = [make_response(body=HOSTNAME), make_response(body=[entry])]
        with patch("ddnsctl.requests.request", side_effect=responses):
            result = invoke("history", "home", "-l", "5")

        assert result.exit_code == 0
        assert "secret missing" in result.output
        assert "0.25s" in result.output


class TestCreateSecret:
    def test_create_secret(self):
        body = {"name": "dyn", "namespace": "default", "keys": ["authToken"]}
        with patch(
            "ddnsctl.requests.request", return_value=make_response(201, body)
        ) as mock_request:
            result = invoke("create-secret", "dyn", "--from-literal", "authToken=u:p=x")

        assert result.exit_code == 0
        assert mock_request.call_args.kwargs["json"]["stringData"] == {
            "authToken": "u:p=x"
        }

    def test_malformed_literal(self):
        result = invoke("create-secret", "dyn", "--from-literal", "authToken")
        assert result.exit_code == 2


class TestProviders:
    def test_providers(self):
        body = {"providers": ["Cloudflare", "Dyn", "NoIP", "DDNS"], "default": "Dyn"}
        with patch("ddnsctl.requests.request", return_value=make_response(body=body)):
            result = invoke("providers")

        assert result.exit_code == 0
        assert "Cloudflare" in result.output
        assert "dyndns2 API URL" in result.output
