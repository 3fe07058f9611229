"""In-memory fake of the GitHub contents API for unit tests.

Serves through ``httpx.MockTransport``. Supports: repo probe, contents
GET/PUT/DELETE (sha-checked), commits listing, refs, code search.
"""

from __future__ import annotations

import base64
import hashlib
import json
from datetime import datetime, timedelta, timezone

import httpx

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def blob_sha(content: bytes) -> str:
    header = f"blob {len(content)}\0".encode()
    return hashlib.sha1(header + content).hexdigest()


def _wrap_base64(raw: bytes) -> str:
    encoded = base64.b64encode(raw).decode("ascii")
    # The real API wraps base64 payloads at 60 columns.
    return "\n".join(encoded[i : i + 60] for i in range(0, len(encoded), 60)) + "\n"


class FakeGitHub:
    def __init__(self, owner: str = "octo", repo: str = "notes", branch: str = "main", token: str = "t0ken"):
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.token = token
        self.files: dict[str, bytes] = {}
        self.commits: list[dict] = []  # newest first
        self.snapshots: dict[str, dict[str, bytes]] = {}
        self.refs: dict[str, str] = {}
        self.requests: list[tuple[str, str, dict | None]] = []
        self.headers: list[httpx.Headers] = []
        self.always_conflict = False
        self.fail_with: int | None = None
        self._commit(None, "Initial commit")

    # ==================== Test helpers ====================

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def current_sha(self, path: str) -> str | None:
        data = self.files.get(path)
        return blob_sha(data) if data is not None else None

    def edit_out_of_band(self, path: str, content: str) -> str:
        """Simulate a write made by another device."""
        self.files[path] = content.encode("utf-8")
        self._commit(path, f"Remote edit {path}")
        return blob_sha(self.files[path])

    def writes(self) -> list[tuple[str, str, dict | None]]:
        return [r for r in self.requests if r[0] in {"PUT", "DELETE"}]

    # ==================== Transport ====================

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body))
        self.headers.append(request.headers)

        if request.headers.get("Authorization") != f"Bearer {self.token}":
            return self._error(401, "Bad credentials")
        if self.fail_with is not None:
            return self._error(self.fail_with, "Server Error")

        prefix = f"/repos/{self.owner}/{self.repo}"
        path = request.url.path
        if path == "/search/code":
            return self._search(request)
        if not path.startswith(prefix):
            return self._error(404, "Not Found")
        rest = path[len(prefix):]

        if rest == "" and request.method == "GET":
            return httpx.Response(200, json={"full_name": f"{self.owner}/{self.repo}"})
        if rest == "/commits":
            return self._list_commits(request)
        if rest.startswith("/git/ref/heads/"):
            name = rest[len("/git/ref/heads/"):]
            if name != self.branch and name not in self.refs:
                return self._error(404, "Not Found")
            return httpx.Response(200, json={"object": {"sha": self.refs.get(name, self._head())}})
        if rest == "/git/refs" and request.method == "POST":
            ref = body["ref"].removeprefix("refs/heads/")
            if ref in self.refs or ref == self.branch:
                return self._error(422, "Reference already exists")
            self.refs[ref] = body["sha"]
            return httpx.Response(201, json={"ref": body["ref"], "object": {"sha": body["sha"]}})
        if rest == "/contents" or rest.startswith("/contents/"):
            file_path = rest[len("/contents/"):] if rest.startswith("/contents/") else ""
            if request.method == "GET":
                return self._get_contents(file_path, request.url.params.get("ref", self.branch))
            if request.method == "PUT":
                return self._put_contents(file_path, body)
            if request.method == "DELETE":
                return self._delete_contents(file_path, body)
        return self._error(404, "Not Found")

    def _get_contents(self, path: str, ref: str) -> httpx.Response:
        files = self.files if ref == self.branch else self.snapshots.get(ref)
        if files is None:
            return self._error(404, "No commit found for the ref")
        if path in files:
            raw = files[path]
            return httpx.Response(
                200,
                json={
                    "type": "file",
                    "path": path,
                    "name": path.rsplit("/", 1)[-1],
                    "sha": blob_sha(raw),
                    "size": len(raw),
                    "encoding": "base64",
                    "content": _wrap_base64(raw),
                },
            )
        prefix = f"{path}/" if path else ""
        children: dict[str, dict] = {}
        for name, raw in files.items():
            if not name.startswith(prefix):
                continue
            head, sep, _ = name[len(prefix):].partition("/")
            child = prefix + head
            if sep:
                children.setdefault(child, {"type": "dir", "path": child, "name": head, "sha": "0" * 40})
            else:
                children[child] = {"type": "file", "path": child, "name": head, "sha": blob_sha(raw)}
        if not children:
            return self._error(404, "Not Found")
        return httpx.Response(200, json=[children[key] for key in sorted(children)])

    def _put_contents(self, path: str, body: dict) -> httpx.Response:
        current = self.current_sha(path)
        supplied = body.get("sha")
        if self.always_conflict:
            return self._error(409, f"{path} does not match {supplied or ''}".strip())
        if current is not None and supplied is None:
            return self._error(422, 'Invalid request.\n\n"sha" wasn\'t supplied.')
        if supplied is not None and supplied != current:
            return self._error(409, f"{path} does not match {supplied}")
        raw = base64.b64decode(body["content"])
        self.files[path] = raw
        commit = self._commit(path, body["message"])
        return httpx.Response(
            201 if current is None else 200,
            json={"content": {"path": path, "sha": blob_sha(raw)}, "commit": {"sha": commit}},
        )

    def _delete_contents(self, path: str, body: dict) -> httpx.Response:
        current = self.current_sha(path)
        if current is None:
            return self._error(404, "Not Found")
        if body.get("sha") != current:
            return self._error(409, f"{path} does not match {body.get('sha')}")
        del self.files[path]
        commit = self._commit(path, body["message"])
        return httpx.Response(200, json={"content": None, "commit": {"sha": commit}})

    def _list_commits(self, request: httpx.Request) -> httpx.Response:
        path = request.url.params.get("path")
        per_page = int(request.url.params.get("per_page", 30))
        commits = [c for c in self.commits if path is None or path in c["_paths"]]
        return httpx.Response(200, json=[{k: v for k, v in c.items() if not k.startswith("_")} for c in commits[:per_page]])

    def _search(self, request: httpx.Request) -> httpx.Response:
        query = request.url.params.get("q", "").split(" repo:")[0]
        items = [
            {"path": name, "name": name.rsplit("/", 1)[-1], "sha": blob_sha(raw)}
            for name, raw in sorted(self.files.items())
            if query in raw.decode("utf-8", errors="replace")
        ]
        return httpx.Response(200, json={"total_count": len(items), "items": items})

    # ==================== Internals ====================

    def _head(self) -> str:
        return self.commits[0]["sha"]

    def _commit(self, path: str | None, message: str) -> str:
        index = len(self.commits)
        sha = hashlib.sha1(f"commit-{index}-{message}".encode()).hexdigest()
        parents = [{"sha": self.commits[0]["sha"]}] if self.commits else []
        self.commits.insert(
            0,
            {
                "sha": sha,
                "commit": {
                    "message": message,
                    "author": {
                        "name": "Fake Author",
                        "email": "fake@example.com",
                        "date": (_EPOCH + timedelta(minutes=index)).strftime("%Y-%m-%dT%H:%M:%SZ"),
                    },
                },
                "parents": parents,
                "_paths": {path} if path else set(),
            },
        )
        self.snapshots[sha] = dict(self.files)
        return sha

    @staticmethod
    def _error(status: int, message: str) -> httpx.Response:
        return httpx.Response(status, json={"message": message})
