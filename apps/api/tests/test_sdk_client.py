"""Tests for the Python SDK client."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from attest_sdk import AttestClient


@pytest.fixture
def client():
    client = AttestClient(base_url="http://attest.local/", timeout=5)
    response = MagicMock()
    response.json.return_value = {"ok": True}
    with patch.object(client.session, "request", return_value=response) as request:
        client.mock_request = request
        client.mock_response = response
        yield client


def test_record_proof_posts_payload(client):
    client.record_proof("42", "pdf", hash="sha256:abc", path="exports/42.pdf")
    method, url = client.mock_request.call_args.args
    assert method == "POST"
    assert url == "http://attest.local/v1/subjects/42/proofs"
    assert client.mock_request.call_args.kwargs["json"] == {
        "kind": "pdf",
        "actor": "ai",
        "meta": {},
        "hash": "sha256:abc",
        "path": "exports/42.pdf",
    }
    assert client.mock_request.call_args.kwargs["timeout"] == 5


def test_timeline_drops_unset_filters(client):
    client.mock_response.json.return_value = {"subjectId": "42", "entries": [{"id": 1}]}
    assert client.timeline("42", action="ai:action", from_ts=10) == [{"id": 1}]
    assert client.mock_request.call_args.kwargs["params"] == {"action": "ai:action", "from": 10}


def test_errors_raise(client):
    client.mock_response.raise_for_status.side_effect = requests.HTTPError("503")
    with pytest.raises(requests.HTTPError):
        client.record_provenance("42", "rename", actor="human")
