"""
In-memory GitHub for tests.

Implements the parts of the REST API Lockbox uses (user, repositories,
contents with blob SHAs, commits per path, refs) behind an
httpx.MockTransport. Every request is recorded so tests can assert which
endpoints were hit.
"""

import json
import base64
import hashlib
import itertools
from typing import Callable, Optional
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import httpx


def git_blob_sha(content: bytes) -> str:
    """SHA-1 of a git blob object, as GitHub reports for file contents."""
    return hashlib.sha1(b"blob %d\0" % len(content) + content).hexdigest()


@dataclass
class Commit:
    sha: str
    date: str
    message: str
    path: str
    snapshot: dict[str, bytes]


@dataclass
class Repo:
    name: str
    private: bool = True
    files: dict[str, bytes] = field(default_factory=dict)
    commits: list[Commit] = field(default_factory=list)


def _json(status: int, body) -> httpx.Response:
    return httpx.Response(status, json=body)


class FakeGitHub:
    """A single-user GitHub with any number of repositories."""

    def __init__(self, login: str = "octocat", token: str = "gho_test_token"):
        self.login = login
        self.token = token
        self.repos: dict[str, Repo] = {}
        self.requests: list[httpx.Request] = []
        # Return a response (or raise) to short-circuit a request.
        self.interceptor: Optional[Callable[[httpx.Request], Optional[httpx.Response]]] = None
        self._counter = itertools.count(1)
        self._now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def create_repo(self, name: str) -> Repo:
        self.repos[name] = Repo(name=name)
        return self.repos[name]

    def write(self, repo: str, path: str, content: bytes, message: str = "external edit") -> str:
        """Change a file behind Lockbox's back."""
        return self._commit(self.repos[repo], path, content, message)

    def count(self, method: str, path_part: str = "") -> int:
        return sum(
            1 for r in self.requests
            if r.method == method and path_part in r.url.path
        )

    @property
    def write_count(self) -> int:
        return self.count("PUT") + self.count("DELETE")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _commit(self, repo: Repo, path: str, content: Optional[bytes], message: str) -> str:
        if content is None:
            repo.files.pop(path, None)
        else:
            repo.files[path] = content
        n = next(self._counter)
        self._now += timedelta(minutes=1)
        repo.commits.append(Commit(
            sha=hashlib.sha1(f"commit-{n}".encode()).hexdigest(),
            date=self._now.strftime("%Y-%m-%dT%H:%M:%SZ"),
            message=message,
            path=path,
            snapshot=dict(repo.files),
        ))
        return repo.commits[-1].sha

    def _snapshot(self, repo: Repo, ref: Optional[str]) -> Optional[dict[str, bytes]]:
        if not ref:
            return repo.files
        for commit in repo.commits:
            if commit.sha == ref:
                return commit.snapshot
        return None

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.interceptor is not None:
            response = self.interceptor(request)
            if response is not None:
                return response

        if request.headers.get("Authorization") != f"Bearer {self.token}":
            return _json(401, {"message": "Bad credentials"})

        parts = request.url.path.strip("/").split("/")
        if parts == ["user"] and request.method == "GET":
            return _json(200, {"login": self.login})
        if parts == ["user", "repos"] and request.method == "POST":
            body = json.loads(request.content)
            if body["name"] in self.repos:
                return _json(422, {"message": "Repository creation failed."})
            repo = self.create_repo(body["name"])
            repo.private = bool(body.get("private"))
            return _json(201, {"name": repo.name, "private": repo.private})
        if len(parts) >= 3 and parts[0] == "repos":
            owner, name = parts[1], parts[2]
            repo = self.repos.get(name)
            if owner != self.login or repo is None:
                return _json(404, {"message": "Not Found"})
            if len(parts) == 3 and request.method == "GET":
                return _json(200, {"name": repo.name, "private": repo.private})
            if len(parts) >= 4 and parts[3] == "contents":
                return self._contents(request, repo, "/".join(parts[4:]))
            if len(parts) == 4 and parts[3] == "commits" and request.method == "GET":
                return self._commits(request, repo)
        return _json(404, {"message": "Not Found"})

    def _contents(self, request: httpx.Request, repo: Repo, path: str) -> httpx.Response:
        if request.method == "GET":
            files = self._snapshot(repo, request.url.params.get("ref"))
            if files is None:
                return _json(404, {"message": f"No commit found for the ref {request.url.params['ref']}"})
            if path in files:
                content = files[path]
                encoded = base64.encodebytes(content).decode("ascii")  # newline-wrapped like GitHub
                return _json(200, {
                    "type": "file",
                    "encoding": "base64",
                    "name": path.rsplit("/", 1)[-1],
                    "path": path,
                    "sha": git_blob_sha(content),
                    "content": encoded,
                })
            prefix = path + "/"
            children: dict[str, dict] = {}
            for file_path, content in files.items():
                if not file_path.startswith(prefix):
                    continue
                rest = file_path[len(prefix):]
                child = rest.split("/", 1)[0]
                is_file = "/" not in rest
                children[child] = {
                    "name": child,
                    "path": prefix + child,
                    "type": "file" if is_file else "dir",
                    "sha": git_blob_sha(content) if is_file else "0" * 40,
                }
            if not children:
                return _json(404, {"message": "Not Found"})
            return _json(200, list(children.values()))

        body = json.loads(request.content)
        current = repo.files.get(path)
        current_sha = git_blob_sha(current) if current is not None else None
        supplied = body.get("sha")

        if request.method == "PUT":
            if current_sha is not None and supplied is None:
                return _json(422, {"message": "Invalid request.\n\n\"sha\" wasn't supplied."})
            if supplied is not None and supplied != current_sha:
                return _json(409, {"message": f"{path} does not match {supplied}"})
            content = base64.b64decode(body["content"])
            commit_sha = self._commit(repo, path, content, body["message"])
            status = 200 if current is not None else 201
            return _json(status, {
                "content": {"name": path.rsplit("/", 1)[-1], "path": path, "sha": git_blob_sha(content)},
                "commit": {"sha": commit_sha, "message": body["message"]},
            })

        if request.method == "DELETE":
            if current is None:
                return _json(404, {"message": "Not Found"})
            if supplied != current_sha:
                return _json(409, {"message": f"{path} does not match {supplied}"})
            commit_sha = self._commit(repo, path, None, body["message"])
            return _json(200, {"content": None, "commit": {"sha": commit_sha}})

        return _json(405, {"message": "Method Not Allowed"})

    def _commits(self, request: httpx.Request, repo: Repo) -> httpx.Response:
        if not repo.commits:
            return _json(409, {"message": "Git Repository is empty."})
        path = request.url.params.get("path")
        page = int(request.url.params.get("page", 1))
        per_page = int(request.url.params.get("per_page", 30))
        matching = [c for c in reversed(repo.commits) if path is None or c.path == path]
        window = matching[(page - 1) * per_page: page * per_page]
        return _json(200, [
            {
                "sha": c.sha,
                "commit": {
                    "author": {"name": self.login, "date": c.date},
                    "message": c.message,
                },
            }
            for c in window
        ])
