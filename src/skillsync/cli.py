from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import textwrap
from dataclasses import asdict
from typing import Any

from ._version import __version__
from .client import SkillSyncError, SkillSyncHTTPError, probe_endpoints
from .config import app_skills_dir, config_root, get_settings, settings_path, update_settings
from .index import repo_to_json, skill_to_json
from .models import ALL_APPS, AppType, InstalledSkill, SyncMethod
from .repos import parse_repo_spec
from .service import SkillService, filter_skills


def _app(value: str) -> AppType:
    try:
        return AppType.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _apps_label(skill: InstalledSkill) -> str:
    enabled = [app.value for app in skill.apps.enabled_apps()]
    return ",".join(enabled) if enabled else "-"


def _print_table(rows: list[list[str]]) -> None:
    if not rows:
        return
    widths = [0] * len(rows[0])
    for r in rows:
        for i, c in enumerate(r):
            widths[i] = max(widths[i], len(c))
    for r in rows:
        line = "  ".join(c.ljust(widths[i]) for i, c in enumerate(r))
        print(line.rstrip())


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True, ensure_ascii=False))


def _shorten(text: str | None, width: int = 60) -> str:
    if not text:
        return ""
    return textwrap.shorten(" ".join(text.split()), width=width, placeholder="...")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="skillsync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Install skills from GitHub repositories and keep them in sync across Claude, Codex and Gemini.",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              SKILLSYNC_HOME  private config root (index, skills store, settings)
            """
        ),
    )
    p.add_argument("--version", action="version", version=f"skillsync {__version__}")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = p.add_subparsers(dest="cmd", required=True)

    ls = sub.add_parser("list", aliases=["ls"], help="List installed skills")
    ls.add_argument("--json", action="store_true", help="Output JSON")

    discover = sub.add_parser("discover", help="List skills available from the configured repositories")
    discover.add_argument("query", nargs="?", default="", help="Case-insensitive filter on name, directory or description")
    discover.add_argument("--json", action="store_true", help="Output JSON")

    install = sub.add_parser("install", aliases=["i"], help="Install a skill and enable it for one app")
    install.add_argument("spec", help="Skill key (owner/name:directory) or directory name")
    install.add_argument("--app", type=_app, default=AppType.CLAUDE, help="Target app (default: claude)")
    install.add_argument("--json", action="store_true", help="Output JSON")

    uninstall = sub.add_parser("uninstall", aliases=["remove", "rm"], help="Remove a skill from every app and the store")
    uninstall.add_argument("skill", help="Installed skill directory or id")

    for name, verb in (("enable", "Enable"), ("disable", "Disable")):
        toggle = sub.add_parser(name, help=f"{verb} an installed skill for one app")
        toggle.add_argument("skill", help="Installed skill directory or id")
        toggle.add_argument("--app", type=_app, default=AppType.CLAUDE, help="Target app (default: claude)")

    sync = sub.add_parser("sync", help="Re-project every enabled skill into the app directories")
    sync.add_argument("--app", type=_app, help="Only sync this app")

    method = sub.add_parser("sync-method", help="Show or set how skills are projected")
    method.add_argument("method", nargs="?", choices=[m.value for m in SyncMethod])

    unmanaged = sub.add_parser("unmanaged", help="List skills found in app directories but not managed")
    unmanaged.add_argument("--json", action="store_true", help="Output JSON")

    imp = sub.add_parser("import", help="Adopt unmanaged skills from the app directories")
    imp.add_argument("directories", nargs="+", help="Skill directory names")

    probe = sub.add_parser("probe", help="Measure round-trip latency to one or more URLs")
    probe.add_argument("urls", nargs="+")
    probe.add_argument("--json", action="store_true", help="Output JSON")

    # repos
    repos = sub.add_parser("repos", help="Manage skill repositories")
    repos_sub = repos.add_subparsers(dest="subcmd", required=True)
    repos_list = repos_sub.add_parser("list", help="List configured repositories")
    repos_list.add_argument("--json", action="store_true", help="Output JSON")
    repos_add = repos_sub.add_parser("add", help="Add or replace a repository")
    repos_add.add_argument("repo", help="owner/name[@branch] or a GitHub URL")
    repos_add.add_argument("--skills-path", help="Subdirectory of the repository holding the skills")
    repos_remove = repos_sub.add_parser("remove", aliases=["rm"], help="Remove a repository")
    repos_remove.add_argument("repo", help="owner/name")
    repos_enable = repos_sub.add_parser("enable", help="Include a repository in discovery")
    repos_enable.add_argument("repo", help="owner/name")
    repos_disable = repos_sub.add_parser("disable", help="Exclude a repository from discovery")
    repos_disable.add_argument("repo", help="owner/name")

    # config
    cfg = sub.add_parser("config", help="Manage local settings")
    cfg_sub = cfg.add_subparsers(dest="subcmd", required=True)
    cfg_sub.add_parser("path", help="Print config root and settings path")
    cfg_sub.add_parser("show", help="Show settings")
    cfg_set = cfg_sub.add_parser("set", help="Set settings fields")
    cfg_set.add_argument("--language")
    cfg_set.add_argument("--claude-dir", help="Claude config directory (skills live in <dir>/skills); empty to reset")
    cfg_set.add_argument("--codex-dir", help="Codex config directory; empty to reset")
    cfg_set.add_argument("--gemini-dir", help="Gemini config directory; empty to reset")
    cfg_set.add_argument("--timeout-s", type=float, help="HTTP timeout in seconds")

    return p


def cmd_list(args: argparse.Namespace) -> int:
    skills = SkillService().list_installed()
    if args.json:
        _print_json([skill_to_json(s) for s in skills])
        return 0
    if not skills:
        print("No skills installed.")
        return 0
    rows = [["DIRECTORY", "NAME", "APPS", "SOURCE"]]
    for s in skills:
        source = f"{s.repo_owner}/{s.repo_name}" if s.repo_owner and s.repo_name else "local"
        rows.append([s.directory, s.name, _apps_label(s), source])
    _print_table(rows)
    return 0


def cmd_discover(args: argparse.Namespace) -> int:
    skills = filter_skills(asyncio.run(SkillService().list_skills()), args.query)
    if args.json:
        _print_json([asdict(s) for s in skills])
        return 0
    if not skills:
        print("No skills found.")
        return 0
    rows = [["KEY", "NAME", "INSTALLED", "DESCRIPTION"]]
    for s in skills:
        rows.append([s.key, s.name, "yes" if s.installed else "", _shorten(s.description)])
    _print_table(rows)
    return 0


def cmd_install(args: argparse.Namespace) -> int:
    record = asyncio.run(SkillService().install(args.spec, args.app))
    if args.json:
        _print_json(skill_to_json(record))
        return 0
    print(f"installed: {record.directory} ({record.id}) for {args.app.value}")
    return 0


def cmd_uninstall(args: argparse.Namespace) -> int:
    record = SkillService().uninstall(args.skill)
    print(f"removed: {record.directory}")
    return 0


def cmd_toggle(args: argparse.Namespace) -> int:
    enabled = args.cmd == "enable"
    record = SkillService().toggle_app(args.skill, args.app, enabled)
    print(f"{'enabled' if enabled else 'disabled'}: {record.directory} for {args.app.value}")
    return 0


def cmd_sync(args: argparse.Namespace) -> int:
    count = SkillService().sync_all_enabled(args.app)
    print(f"synced: {count}")
    return 0


def cmd_sync_method(args: argparse.Namespace) -> int:
    service = SkillService()
    if args.method is None:
        print(service.get_sync_method().value)
        return 0
    service.set_sync_method(SyncMethod(args.method))
    print(f"sync method: {args.method}")
    return 0


def cmd_unmanaged(args: argparse.Namespace) -> int:
    found = SkillService().scan_unmanaged()
    if args.json:
        _print_json(
            [
                {
                    "directory": u.directory,
                    "name": u.name,
                    "description": u.description,
                    "foundIn": [app.value for app in u.found_in],
                }
                for u in found
            ]
        )
        return 0
    if not found:
        print("No unmanaged skills.")
        return 0
    rows = [["DIRECTORY", "NAME", "FOUND IN"]]
    for u in found:
        rows.append([u.directory, u.name, ",".join(app.value for app in u.found_in)])
    _print_table(rows)
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    imported = SkillService().import_from_apps(list(args.directories))
    done = {s.directory for s in imported}
    for s in imported:
        print(f"imported: {s.directory} ({_apps_label(s)})")
    for directory in args.directories:
        if directory not in done:
            print(f"warning: {directory} not found in any app skills directory")
    return 0


def cmd_probe(args: argparse.Namespace) -> int:
    rows = asyncio.run(probe_endpoints(args.urls, timeout_s=get_settings().timeout_s))
    if args.json:
        _print_json([asdict(r) for r in rows])
        return 0
    table = [["URL", "LATENCY", "STATUS"]]
    for r in rows:
        if r.error is not None:
            table.append([r.url, "-", f"error: {r.error}"])
        else:
            table.append([r.url, f"{r.latency_ms}ms", str(r.status)])
    _print_table(table)
    return 0


def cmd_repos(args: argparse.Namespace) -> int:
    service = SkillService()

    if args.subcmd == "list":
        repos = service.list_repos()
        if args.json:
            _print_json([repo_to_json(r) for r in repos])
            return 0
        rows = [["REPO", "BRANCH", "ENABLED", "SKILLS PATH"]]
        for r in repos:
            rows.append([r.key, r.branch, "yes" if r.enabled else "no", r.skills_path or ""])
        _print_table(rows)
        return 0

    if args.subcmd == "add":
        repo = parse_repo_spec(args.repo, skills_path=args.skills_path)
        service.upsert_repo(repo)
        print(f"added: {repo.key}@{repo.branch}")
        return 0

    repo = parse_repo_spec(args.repo)
    if args.subcmd in ("remove", "rm"):
        if not service.remove_repo(repo.owner, repo.name):
            raise SkillSyncError(f"Repository not configured: {repo.key}")
        print(f"removed: {repo.key}")
        return 0

    if args.subcmd in ("enable", "disable"):
        service.set_repo_enabled(repo.owner, repo.name, args.subcmd == "enable")
        print(f"{args.subcmd}d: {repo.key}")
        return 0

    raise AssertionError("unreachable")


def cmd_config(args: argparse.Namespace) -> int:
    if args.subcmd == "path":
        print(str(config_root()))
        print(str(settings_path()))
        return 0

    if args.subcmd == "show":
        settings = get_settings()
        d = asdict(settings)
        d["skills_dirs"] = {app.value: str(app_skills_dir(app, settings)) for app in ALL_APPS}
        _print_json(d)
        return 0

    if args.subcmd == "set":
        changes: dict[str, Any] = {}
        if args.language is not None:
            changes["language"] = args.language
        for app in ALL_APPS:
            value = getattr(args, f"{app.value}_dir")
            if value is not None:
                changes[f"{app.value}_config_dir"] = value.strip() or None
        if args.timeout_s is not None:
            if args.timeout_s <= 0:
                raise SkillSyncError("--timeout-s must be > 0.")
            changes["timeout_s"] = args.timeout_s
        update_settings(**changes)
        print(f"Saved: {settings_path()}")
        return 0

    raise AssertionError("unreachable")


def _format_error(err: SkillSyncError) -> str:
    if isinstance(err, SkillSyncHTTPError):
        return f"{err} ({err.hint})"
    return str(err)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.cmd in ("list", "ls"):
            return cmd_list(args)
        if args.cmd == "discover":
            return cmd_discover(args)
        if args.cmd in ("install", "i"):
            return cmd_install(args)
        if args.cmd in ("uninstall", "remove", "rm"):
            return cmd_uninstall(args)
        if args.cmd in ("enable", "disable"):
            return cmd_toggle(args)
        if args.cmd == "sync":
            return cmd_sync(args)
        if args.cmd == "sync-method":
            return cmd_sync_method(args)
        if args.cmd == "unmanaged":
            return cmd_unmanaged(args)
        if args.cmd == "import":
            return cmd_import(args)
        if args.cmd == "probe":
            return cmd_probe(args)
        if args.cmd == "repos":
            return cmd_repos(args)
        if args.cmd == "config":
            return cmd_config(args)
        raise AssertionError("unreachable")
    except SkillSyncError as e:
        print(f"error: {_format_error(e)}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
