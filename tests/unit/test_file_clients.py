# tests/unit/test_file_clients.py

from __future__ import annotations
import json
import sys
from pathlib import Path

import httpx
import pytest

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

import paperllm.files.resumable as resumable
from paperllm.config_loader import load_provider_config
from paperllm.core.errors import DecodingFailure, HTTPStatusError, InvalidRequest, RemoteError, UploadTimeout
from paperllm.files.direct import anthropic_file_client, openai_file_client
from paperllm.files.noop import NoopFileClient
from paperllm.files.resumable import ResumableUploadFileClient, normalize_state, resource_name


class StaticKey:
    def load_credential(self):
        return "key-123"


def http_with(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def pdf(tmp_path):
    path = tmp_path / "paper.pdf"
    path.write_bytes(b"%PDF-1.4 fake")
    return path


# --- direct upload ---------------------------------------------------------

def test_existing_id_is_returned_without_network():
    seen = []
    client = openai_file_client(
        load_provider_config("openai", environ={}),
        credentials=StaticKey(),
        http_client=http_with(lambda r: seen.append(r) or httpx.Response(500)),
    )
    assert client.ensure_file_id(existing_file_id="file-1", file_path="/nope.pdf") == "file-1"
    assert client.ensure_file_id() is None
    assert client.ensure_file_id(existing_file_id="  ", file_path="") is None
    assert seen == []


def test_openai_upload_sends_multipart_with_purpose(pdf):
    seen = []

    def handler(request):
        request.read()
        seen.append(request)
        return httpx.Response(200, json={"id": "file-xyz", "object": "file", "purpose": "user_data"})

    client = openai_file_client(
        load_provider_config("openai", environ={}), credentials=StaticKey(), http_client=http_with(handler)
    )
    assert client.ensure_file_id(file_path=str(pdf)) == "file-xyz"

    (request,) = seen
    assert request.method == "POST"
    assert str(request.url) == "https://api.openai.com/v1/files"
    assert request.headers["authorization"] == "Bearer key-123"
    assert request.headers["content-type"].startswith("multipart/form-data")
    assert b'name="purpose"' in request.content
    assert b"user_data" in request.content
    assert b'filename="paper.pdf"' in request.content
    assert b"%PDF-1.4 fake" in request.content


def test_anthropic_upload_uses_beta_headers_and_no_purpose(pdf):
    seen = []

    def handler(request):
        request.read()
        seen.append(request)
        return httpx.Response(200, json={"id": "file_011", "type": "file"})

    client = anthropic_file_client(
        load_provider_config("anthropic", environ={}), credentials=StaticKey(), http_client=http_with(handler)
    )
    assert client.ensure_file_id(file_path=str(pdf)) == "file_011"

    (request,) = seen
    assert request.headers["x-api-key"] == "key-123"
    assert request.headers["anthropic-version"] == "2023-06-01"
    assert request.headers["anthropic-beta"] == "files-api-2025-04-14"
    assert b'name="purpose"' not in request.content


def test_missing_local_file_is_invalid_request(tmp_path):
    client = openai_file_client(
        load_provider_config("openai", environ={}),
        credentials=StaticKey(),
        http_client=http_with(lambda r: httpx.Response(200, json={"id": "x"})),
    )
    with pytest.raises(InvalidRequest):
        client.ensure_file_id(file_path=str(tmp_path / "missing.pdf"))


def test_upload_error_status_is_raised(pdf):
    client = openai_file_client(
        load_provider_config("openai", environ={}),
        credentials=StaticKey(),
        http_client=http_with(lambda r: httpx.Response(413, json={"error": {"message": "File too large"}})),
    )
    with pytest.raises(HTTPStatusError) as exc:
        client.ensure_file_id(file_path=str(pdf))
    assert exc.value.status_code == 413
    assert exc.value.message == "File too large"


def test_direct_delete():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"id": "file-1", "deleted": True})

    client = openai_file_client(
        load_provider_config("openai", environ={}), credentials=StaticKey(), http_client=http_with(handler)
    )
    client.delete_file_if_needed(None)
    client.delete_file_if_needed("   ")
    assert seen == []

    client.delete_file_if_needed("file-1")
    (request,) = seen
    assert request.method == "DELETE"
    assert str(request.url) == "https://api.openai.com/v1/files/file-1"


def test_direct_delete_not_found_is_ok_but_other_errors_raise():
    client = openai_file_client(
        load_provider_config("openai", environ={}),
        credentials=StaticKey(),
        http_client=http_with(lambda r: httpx.Response(404)),
    )
    client.delete_file_if_needed("file-gone")

    client = openai_file_client(
        load_provider_config("openai", environ={}),
        credentials=StaticKey(),
        http_client=http_with(lambda r: httpx.Response(500, text="oops")),
    )
    with pytest.raises(HTTPStatusError):
        client.delete_file_if_needed("file-1")


# --- resumable upload ------------------------------------------------------

SESSION_URL = "https://generativelanguage.googleapis.com/upload/v1beta/files?upload_id=u1"


def resumable_handler(states, seen):
    """Answers start/finalize, then serves one state per poll."""
    polls = iter(states)

    def handler(request):
        seen.append(request)
        if request.method == "POST" and request.headers.get("x-goog-upload-command") == "start":
            return httpx.Response(200, headers={"x-goog-upload-url": SESSION_URL})
        if request.method == "POST":
            return httpx.Response(200, json={"file": {"name": "files/abc", "state": "PROCESSING"}})
        if request.method == "GET":
            return httpx.Response(200, json={"name": "files/abc", "state": next(polls)})
        return httpx.Response(200, json={})

    return handler


def make_resumable(handler, **cfg):
    config = load_provider_config("gemini", cfg, environ={})
    return ResumableUploadFileClient(config, credentials=StaticKey(), http_client=http_with(handler))


def test_resumable_upload_polls_until_active(pdf, monkeypatch):
    sleeps = []
    monkeypatch.setattr(resumable.time, "sleep", lambda s: sleeps.append(s))
    seen = []
    client = make_resumable(resumable_handler(["PROCESSING", "PROCESSING", "ACTIVE"], seen))

    uri = client.ensure_file_id(file_path=str(pdf))

    assert uri == "https://generativelanguage.googleapis.com/v1beta/files/abc"
    assert [r.method for r in seen] == ["POST", "POST", "GET", "GET", "GET"]
    assert sleeps == [2.0, 2.0]

    start, finalize = seen[0], seen[1]
    assert str(start.url) == "https://generativelanguage.googleapis.com/upload/v1beta/files"
    assert start.headers["x-goog-upload-protocol"] == "resumable"
    assert start.headers["x-goog-upload-header-content-length"] == str(len(b"%PDF-1.4 fake"))
    assert start.headers["x-goog-upload-header-content-type"] == "application/pdf"
    assert json.loads(start.content) == {"file": {"display_name": "paper.pdf"}}

    assert str(finalize.url) == SESSION_URL
    assert finalize.headers["x-goog-upload-command"] == "upload, finalize"
    assert finalize.headers["x-goog-upload-offset"] == "0"
    assert finalize.content == b"%PDF-1.4 fake"

    assert str(seen[2].url) == uri
    assert all(r.headers["x-goog-api-key"] == "key-123" for r in seen)


def test_resumable_upload_accepts_enum_style_state(pdf, monkeypatch):
    monkeypatch.setattr(resumable.time, "sleep", lambda s: None)
    client = make_resumable(resumable_handler(["State.ACTIVE"], []))
    assert client.ensure_file_id(file_path=str(pdf)).endswith("/files/abc")


def test_resumable_upload_times_out(pdf, monkeypatch):
    sleeps = []
    monkeypatch.setattr(resumable.time, "sleep", lambda s: sleeps.append(s))
    seen = []
    client = make_resumable(resumable_handler(["PROCESSING"] * 10, seen), poll_max_attempts=3)

    with pytest.raises(UploadTimeout) as exc:
        client.ensure_file_id(file_path=str(pdf))

    assert exc.value.timed_out
    assert isinstance(exc.value, RemoteError)
    assert len([r for r in seen if r.method == "GET"]) == 3
    assert len(sleeps) == 2


def test_resumable_upload_failed_state(pdf, monkeypatch):
    monkeypatch.setattr(resumable.time, "sleep", lambda s: None)
    client = make_resumable(resumable_handler(["PROCESSING", "FAILED"], []))
    with pytest.raises(RemoteError) as exc:
        client.ensure_file_id(file_path=str(pdf))
    assert not exc.value.timed_out


def test_missing_session_header_is_remote_error(pdf):
    client = make_resumable(lambda r: httpx.Response(200, json={}))
    with pytest.raises(RemoteError):
        client.ensure_file_id(file_path=str(pdf))


def test_malformed_session_url_is_remote_error(pdf):
    def handler(request):
        return httpx.Response(200, headers={"x-goog-upload-url": "https://host:notaport/x"})

    client = make_resumable(handler)
    with pytest.raises(RemoteError) as exc:
        client.ensure_file_id(file_path=str(pdf))
    assert not exc.value.timed_out


def test_corrupt_response_body_is_decoding_failure(pdf):
    def handler(request):
        return httpx.Response(
            200,
            content=b"not-gzip-at-all",
            headers={"content-type": "application/json", "content-encoding": "gzip"},
        )

    client = openai_file_client(
        load_provider_config("openai", environ={}), credentials=StaticKey(), http_client=http_with(handler)
    )
    with pytest.raises(DecodingFailure):
        client.ensure_file_id(file_path=str(pdf))


def test_resumable_delete_by_uri():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={})

    client = make_resumable(handler)
    client.delete_file_if_needed("")
    assert seen == []

    client.delete_file_if_needed("https://generativelanguage.googleapis.com/v1beta/files/abc")
    (request,) = seen
    assert request.method == "DELETE"
    assert str(request.url) == "https://generativelanguage.googleapis.com/v1beta/files/abc"


def test_resumable_delete_not_found_is_ok():
    client = make_resumable(lambda r: httpx.Response(404, json={"error": {"message": "not found"}}))
    client.delete_file_if_needed("files/abc")


def test_normalize_state_and_resource_name():
    assert normalize_state("State.ACTIVE") == "ACTIVE"
    assert normalize_state("active") == "ACTIVE"
    assert normalize_state(None) == ""
    assert resource_name("https://generativelanguage.googleapis.com/v1beta/files/abc") == "files/abc"
    assert resource_name("files/abc") == "files/abc"
    assert resource_name("abc") == "files/abc"


def test_noop_client():
    client = NoopFileClient()
    assert client.ensure_file_id("file-1", "/tmp/x.pdf") is None
    assert client.delete_file_if_needed("file-1") is None
