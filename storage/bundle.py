"""Versioned export/import envelopes.

Both offline adapters export their whole corpus in one of these formats.
Imports validate the full envelope before any existing data is touched.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from storage.errors import IncompatibleBundleError
from storage.models import HistoryEntry

GIT_BUNDLE_VERSION = 2
LOCAL_BACKUP_VERSION = 1


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class BundleFile(BaseModel):
    path: str = Field(..., min_length=1)
    content: str
    version_token: str | None = None


class BundleHistoryEntry(BaseModel):
    id: str
    message: str = ""
    author: str = ""
    timestamp: str
    parent_id: str | None = None
    email: str | None = None
    action: str | None = None
    path: str | None = None

    @classmethod
    def from_entry(cls, entry: HistoryEntry, path: str | None = None) -> "BundleHistoryEntry":
        return cls(
            id=entry.id,
            message=entry.message,
            author=entry.author,
            timestamp=entry.timestamp,
            parent_id=entry.parent_id,
            email=entry.email,
            action=entry.action,
            path=path,
        )


class BundleAuthor(BaseModel):
    name: str
    email: str


class GitBundle(BaseModel):
    """Portable export of the embedded repository: files, history, branches."""

    version: Literal[2] = GIT_BUNDLE_VERSION
    type: Literal["git-bundle"] = "git-bundle"
    export_date: str = Field(default_factory=_now_iso, alias="exportDate")
    files: list[BundleFile] = Field(default_factory=list)
    history: list[BundleHistoryEntry] = Field(default_factory=list)
    branches: list[str] = Field(default_factory=list)
    author: BundleAuthor | None = None

    model_config = {"populate_by_name": True}


class LocalBackup(BaseModel):
    """Full-corpus backup of the local store."""

    version: Literal[1] = LOCAL_BACKUP_VERSION
    type: Literal["local-backup"] = "local-backup"
    export_date: str = Field(default_factory=_now_iso, alias="exportDate")
    files: list[BundleFile] = Field(default_factory=list)
    history: list[BundleHistoryEntry] = Field(default_factory=list)
    config: dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


def parse_envelope(data: Any, model: type[BaseModel]) -> Any:
    """Validate ``data`` against ``model`` or raise IncompatibleBundleError.

    Accepts an already-built model instance, a dict, or a JSON string.
    """
    if isinstance(data, model):
        return data
    expected_version = model.model_fields["version"].default
    expected_type = model.model_fields["type"].default
    try:
        if isinstance(data, (str, bytes)):
            return model.model_validate_json(data)
        if isinstance(data, dict):
            # @@@envelope-marker-first - check the version marker before field-level validation so the error names the real problem.
            if data.get("version") != expected_version or data.get("type", expected_type) != expected_type:
                raise IncompatibleBundleError(
                    f"Incompatible bundle format: expected version={expected_version} type={expected_type}, "
                    f"got version={data.get('version')!r} type={data.get('type')!r}"
                )
            return model.model_validate({**data, "type": data.get("type", expected_type)})
    except ValidationError as exc:
        raise IncompatibleBundleError(f"Malformed {expected_type} envelope: {exc}") from exc
    raise IncompatibleBundleError(f"Unsupported bundle payload type: {type(data).__name__}")


def dump_envelope(envelope: BaseModel) -> dict[str, Any]:
    return envelope.model_dump(by_alias=True)
