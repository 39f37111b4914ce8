from types import SimpleNamespace

import pytest

from ocrflow.utils import secrets as secrets_mod
from ocrflow.utils.secrets import SecretResolutionError, resolve_secret


class _FakeClient:
    def __init__(self):
        self.calls = []

    def access_secret_version(self, name):
        self.calls.append(name)
        return SimpleNamespace(payload=SimpleNamespace(data=b"resolved-value"))


def _install(monkeypatch, client):
    monkeypatch.setattr(secrets_mod, "secretmanager", SimpleNamespace(SecretManagerServiceClient=lambda: client))


def test_plain_value_is_returned_unchanged():
    assert resolve_secret("plain-value", project_id="proj") == "plain-value"
    assert resolve_secret(None) is None


def test_shorthand_reference(monkeypatch):
    client = _FakeClient()
    _install(monkeypatch, client)
    assert resolve_secret("sm://ocr-webhook", project_id="proj") == "resolved-value"
    assert client.calls == ["projects/proj/secrets/ocr-webhook/versions/latest"]


def test_shorthand_reference_with_version(monkeypatch):
    client = _FakeClient()
    _install(monkeypatch, client)
    resolve_secret("sm://ocr-webhook:3", project_id="proj")
    assert client.calls == ["projects/proj/secrets/ocr-webhook/versions/3"]


def test_full_path_reference(monkeypatch):
    client = _FakeClient()
    _install(monkeypatch, client)
    resolve_secret("sm://projects/demo/secrets/monitoring-token", project_id=None)
    assert client.calls == ["projects/demo/secrets/monitoring-token/versions/latest"]


def test_resolved_values_are_cached(monkeypatch):
    client = _FakeClient()
    _install(monkeypatch, client)
    resolve_secret("sm://ocr-webhook", project_id="proj")
    resolve_secret("sm://ocr-webhook", project_id="proj")
    assert len(client.calls) == 1


def test_shorthand_without_project_raises(monkeypatch):
    _install(monkeypatch, _FakeClient())
    with pytest.raises(SecretResolutionError):
        resolve_secret("sm://token")


def test_empty_payload_raises(monkeypatch):
    class _Empty:
        def access_secret_version(self, name):
            return SimpleNamespace(payload=SimpleNamespace(data=None))

    _install(monkeypatch, _Empty())
    with pytest.raises(SecretResolutionError):
        resolve_secret("sm://token", project_id="proj")


def test_parse_reference_accepts_full_version_path():
    ref = secrets_mod.parse_reference("sm://projects/demo/secrets/token/versions/7")
    assert (ref.project, ref.secret, ref.version) == ("demo", "token", "7")
    assert ref.path == "projects/demo/secrets/token/versions/7"


@pytest.mark.parametrize("reference", ["sm://", "sm://projects/demo/token", "sm://:3"])
def test_parse_reference_rejects_malformed_values(reference):
    with pytest.raises(SecretResolutionError):
        secrets_mod.parse_reference(reference, project_id="proj")


def test_explicit_client_is_used(monkeypatch):
    client = _FakeClient()
    _install(monkeypatch, None)
    assert resolve_secret("sm://ocr-webhook", project_id="proj", client=client) == "resolved-value"
    assert client.calls == ["projects/proj/secrets/ocr-webhook/versions/latest"]
