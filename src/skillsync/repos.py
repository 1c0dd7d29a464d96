from __future__ import annotations

import asyncio
import io
import logging
import os
import shutil
import tempfile
import zipfile
import zlib
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import httpx

from .client import (
    ArchiveClient,
    ArchiveError,
    DownloadTimeoutError,
    EmptyArchiveError,
    SkillSyncError,
)
from .config import DEFAULT_TIMEOUT_S
from .manifest import SKILL_MANIFEST, parse_skill_metadata
from .models import DiscoverableSkill, Repository, SkillMetadata
from .store import list_skill_dirs

ARCHIVE_URL_TEMPLATE = "https://github.com/{owner}/{name}/archive/refs/heads/{branch}.zip"
TREE_URL_TEMPLATE = "https://github.com/{owner}/{name}/tree/{branch}/{path}"
ATTEMPT_TIMEOUT_S = 60.0
FALLBACK_BRANCHES = ("main", "master")

logger = logging.getLogger(__name__)


def archive_url(owner: str, name: str, branch: str) -> str:
    return ARCHIVE_URL_TEMPLATE.format(owner=owner, name=name, branch=branch)


def candidate_branches(repo: Repository) -> list[str]:
    """Configured branch first, then ``main`` and ``master``."""
    out: list[str] = []
    configured = repo.branch.strip()
    if configured:
        out.append(configured)
    for branch in FALLBACK_BRANCHES:
        if branch not in out:
            out.append(branch)
    return out


def parse_repo_spec(raw: str, *, skills_path: str | None = None) -> Repository:
    """
    Parse ``owner/name[@branch]``. GitHub URLs such as
    ``https://github.com/owner/name.git`` are accepted too.
    """
    value = raw.strip().rstrip("/")
    if not value:
        raise SkillSyncError("Repository must not be empty. Expected <owner>/<name>[@branch].")

    for prefix in ("https://github.com/", "http://github.com/"):
        if value.startswith(prefix):
            value = value[len(prefix):]
            break

    branch: str | None = None
    if "@" in value:
        value, branch = value.rsplit("@", 1)
        branch = branch.strip() or None
    value = value.removesuffix(".git")

    if "/" not in value:
        raise SkillSyncError(f"Invalid repository {raw!r}. Expected <owner>/<name>[@branch].")
    owner, name = value.split("/", 1)
    owner = owner.strip()
    name = name.strip()
    if not owner or not name:
        raise SkillSyncError(f"Invalid repository {raw!r}. Expected <owner>/<name>[@branch].")

    path = skills_path.strip().strip("/") if skills_path else None
    return Repository(owner=owner, name=name, branch=branch or "main", enabled=True, skills_path=path or None)


def extract_archive(zip_bytes: bytes, dest: Path) -> None:
    """Extract a GitHub archive into ``dest``, dropping its single top-level folder."""
    try:
        zf = zipfile.ZipFile(io.BytesIO(zip_bytes), "r")
    except zipfile.BadZipFile as e:
        raise ArchiveError(f"Invalid zip archive: {e}") from e

    with zf:
        infos = zf.infolist()
        if not infos:
            raise EmptyArchiveError("Downloaded archive is empty.")
        root_name = infos[0].filename.split("/", 1)[0]
        prefix = root_name + "/"

        dest.mkdir(parents=True, exist_ok=True)
        base = dest.resolve()
        for info in infos:
            if not info.filename.startswith(prefix):
                continue
            relative = info.filename[len(prefix):]
            if not relative:
                continue
            if relative.startswith("/"):
                raise ArchiveError(f"Archive contains an absolute path entry: {info.filename!r}")
            target = (dest / relative).resolve()
            if not str(target).startswith(str(base) + os.sep):
                raise ArchiveError(f"Archive contains an invalid path entry: {info.filename!r}")

            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue

            target.parent.mkdir(parents=True, exist_ok=True)
            try:
                with zf.open(info, "r") as src, target.open("wb") as out:
                    shutil.copyfileobj(src, out)
            except (zipfile.BadZipFile, zlib.error, NotImplementedError, RuntimeError) as e:
                raise ArchiveError(f"Invalid zip archive: {e}") from e


def scan_root(extracted: Path, repo: Repository) -> Path:
    if repo.skills_path and repo.skills_path.strip("/"):
        return extracted / repo.skills_path.strip("/")
    return extracted


def scan_repo_dir(extracted: Path, repo: Repository) -> list[DiscoverableSkill]:
    root = scan_root(extracted, repo)
    if not root.is_dir():
        return []

    skills: list[DiscoverableSkill] = []
    for path in list_skill_dirs(root):
        manifest = path / SKILL_MANIFEST
        if not manifest.is_file():
            continue
        try:
            meta = parse_skill_metadata(manifest)
        except OSError:
            meta = SkillMetadata()

        directory = path.name
        if repo.skills_path and repo.skills_path.strip("/"):
            readme_path = f"{repo.skills_path.strip('/')}/{directory}"
        else:
            readme_path = directory

        skills.append(
            DiscoverableSkill(
                key=f"{repo.owner}/{repo.name}:{directory}",
                name=meta.name or directory,
                description=meta.description or "",
                directory=directory,
                repo_owner=repo.owner,
                repo_name=repo.name,
                repo_branch=repo.branch,
                readme_url=TREE_URL_TEMPLATE.format(
                    owner=repo.owner, name=repo.name, branch=repo.branch, path=readme_path
                ),
                skills_path=repo.skills_path,
            )
        )
    return skills


def deduplicate_discoverable(skills: list[DiscoverableSkill]) -> list[DiscoverableSkill]:
    seen: set[tuple[str, str]] = set()
    out: list[DiscoverableSkill] = []
    for skill in skills:
        marker = (skill.repo_owner.lower(), skill.key.lower())
        if marker in seen:
            continue
        seen.add(marker)
        out.append(skill)
    return out


class RepoDownloader:
    def __init__(
        self,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        attempt_timeout_s: float = ATTEMPT_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout_s = timeout_s
        self.attempt_timeout_s = attempt_timeout_s
        self._transport = transport

    def _client(self) -> ArchiveClient:
        return ArchiveClient(timeout_s=self.timeout_s, transport=self._transport)

    async def _download_and_extract(self, client: ArchiveClient, url: str, dest: Path) -> None:
        data = await client.fetch(url)
        await asyncio.to_thread(extract_archive, data, dest)

    async def download_repo(self, repo: Repository, dest: Path) -> str:
        """
        Download and extract ``repo`` into ``dest``, trying each candidate
        branch in turn. Returns the branch that succeeded; raises the most
        recent error when none did.
        """
        last_error: SkillSyncError | None = None
        async with self._client() as client:
            for attempt, branch in enumerate(candidate_branches(repo)):
                url = archive_url(repo.owner, repo.name, branch)
                # Each attempt extracts into its own directory; a timed-out one may still be writing.
                staging = dest.with_name(f"{dest.name}.partial{attempt}")
                shutil.rmtree(staging, ignore_errors=True)
                try:
                    await asyncio.wait_for(
                        self._download_and_extract(client, url, staging),
                        timeout=self.attempt_timeout_s,
                    )
                except asyncio.TimeoutError:
                    last_error = DownloadTimeoutError(
                        f"Downloading {repo.key}@{branch} timed out after {self.attempt_timeout_s:g}s."
                    )
                except SkillSyncError as e:
                    last_error = e
                else:
                    if dest.exists():
                        shutil.rmtree(dest)
                    staging.replace(dest)
                    return branch
                logger.debug("Branch %s of %s unavailable: %s", branch, repo.key, last_error)
                shutil.rmtree(staging, ignore_errors=True)
        if last_error is None:
            raise SkillSyncError(f"Could not download {repo.key}.")
        raise last_error

    @asynccontextmanager
    async def checkout(self, repo: Repository) -> AsyncIterator[Path]:
        """Temporary extracted copy of ``repo``; removed on exit."""
        with tempfile.TemporaryDirectory(prefix="skillsync-") as td:
            dest = Path(td) / "repo"
            await self.download_repo(repo, dest)
            yield dest

    async def fetch_repo_skills(self, repo: Repository) -> list[DiscoverableSkill]:
        async with self.checkout(repo) as extracted:
            return scan_repo_dir(extracted, repo)

    async def discover_available(self, repos: list[Repository]) -> list[DiscoverableSkill]:
        enabled = [r for r in repos if r.enabled]
        results = await asyncio.gather(
            *(self.fetch_repo_skills(r) for r in enabled),
            return_exceptions=True,
        )

        skills: list[DiscoverableSkill] = []
        for repo, result in zip(enabled, results):
            if isinstance(result, BaseException):
                if not isinstance(result, (SkillSyncError, OSError)):
                    raise result
                logger.warning("Failed to fetch skills from %s: %s", repo.key, result)
                continue
            skills.extend(result)

        skills = deduplicate_discoverable(skills)
        skills.sort(key=lambda s: s.name.lower())
        return skills
