"""Secret Manager lookups for ``sm://`` values in configuration.

Two reference shapes are accepted::

    sm://ocr-webhook            -> projects/<project_id>/secrets/ocr-webhook/versions/latest
    sm://ocr-webhook:3          -> projects/<project_id>/secrets/ocr-webhook/versions/3
    sm://projects/p/secrets/s   -> projects/p/secrets/s/versions/latest

Resolved values are cached per reference for the life of the process.
"""

from __future__ import annotations

from typing import Any, NamedTuple

from google.cloud import secretmanager  # type: ignore

SM_PREFIX = "sm://"
_SECRET_CACHE: dict[str, str] = {}


class SecretResolutionError(RuntimeError):
    """A ``sm://`` reference could not be turned into a secret value."""


class SecretRef(NamedTuple):
    project: str
    secret: str
    version: str = "latest"

    @property
    def path(self) -> str:
        return f"projects/{self.project}/secrets/{self.secret}/versions/{self.version}"


def parse_reference(reference: str, project_id: str | None = None) -> SecretRef:
    body = reference.strip()
    if body.startswith(SM_PREFIX):
        body = body[len(SM_PREFIX):]
    if not body:
        raise SecretResolutionError("Empty secret reference")

    if body.startswith("projects/"):
        parts = body.rstrip("/").split("/")
        # projects/<p>/secrets/<s>[/versions/<v>]
        if len(parts) not in (4, 6) or parts[2] != "secrets" or (len(parts) == 6 and parts[4] != "versions"):
            raise SecretResolutionError(f"Malformed secret path: {body}")
        return SecretRef(parts[1], parts[3], parts[5] if len(parts) == 6 else "latest")

    if not project_id:
        raise SecretResolutionError("project_id is required for shorthand sm:// references")
    name, _, version = body.partition(":")
    if not name.strip():
        raise SecretResolutionError("Secret identifier missing in sm:// reference")
    return SecretRef(project_id, name.strip(), version.strip() or "latest")


def _fetch(ref: SecretRef, client: Any) -> str:
    try:
        response = client.access_secret_version(name=ref.path)
    except Exception as exc:  # pragma: no cover - surfaced as SecretResolutionError
        raise SecretResolutionError(f"Failed to access secret {ref.path}: {exc}") from exc
    data = getattr(getattr(response, "payload", None), "data", None)
    if data is None:
        raise SecretResolutionError(f"Secret {ref.path} returned no payload data")
    return data.decode("utf-8")


def resolve_secret(value: str | None, *, project_id: str | None = None, client: Any = None) -> str | None:
    """Return ``value`` as-is unless it is an ``sm://`` reference."""
    if not isinstance(value, str) or not value.strip().startswith(SM_PREFIX):
        return value
    key = value.strip()
    if key not in _SECRET_CACHE:
        ref = parse_reference(key, project_id)
        _SECRET_CACHE[key] = _fetch(ref, client or secretmanager.SecretManagerServiceClient())
    return _SECRET_CACHE[key]


def clear_secret_cache() -> None:
    _SECRET_CACHE.clear()


__all__ = [
    "SecretRef",
    "SecretResolutionError",
    "clear_secret_cache",
    "parse_reference",
    "resolve_secret",
]
