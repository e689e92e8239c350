#!/usr/bin/env python3
"""Entry point for the pair CLI."""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from pathlib import Path
from textwrap import dedent
from typing import Any, Callable

from paircli import __version__
from paircli.app.installer import LINK_STYLE_AUTO, InstallResult, KnowledgeBaseService
from paircli.app.kb_validate import validate_knowledge_base
from paircli.app.links import STYLE_ABSOLUTE, STYLE_RELATIVE, update_links
from paircli.app.packager import LAYOUT_TARGET, LAYOUTS, KnowledgeBasePackager
from paircli.app.verify import package_info, render_info, verify_package
from paircli.domain.errors import ApplyError, KnowledgeBaseError
from paircli.domain.registry import load_registry_config
from paircli.settings import SETTINGS
from paircli.utils.telemetry import record_event

HELP_OVERVIEW = dedent(
    """
    Quick start:
      - pair install                 install the knowledge base for this CLI version
      - pair install --source PATH   install from a local .zip, directory, URL or git repo
      - pair update                  refresh an installed knowledge base (with rollback)

    Bundle tooling:
      - pair package      build a distributable bundle (.zip + .sha256)
      - pair kb-verify    check a bundle's checksums, structure and manifest
      - pair kb-info      show a bundle's manifest
      - pair kb-validate  check registry content, skill metadata and links
    """
)


def _default_project_path(path_arg: str | None) -> Path:
    if path_arg:
        return Path(path_arg).expanduser().resolve()
    return Path(os.getcwd())


def _optional_path(value: str | None) -> Path | None:
    return Path(value).expanduser().resolve() if value else None


def _split_names(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _build_service() -> KnowledgeBaseService:
    return KnowledgeBaseService(SETTINGS)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _fail(command: str, exc: KnowledgeBaseError, started: float | None = None) -> int:
    print(f"{command} failed: {exc.render()}", file=sys.stderr)
    duration = (time.perf_counter() - started) * 1000 if started is not None else None
    record_event(
        SETTINGS,
        command,
        {"error": type(exc).__name__, "message": exc.message},
        level="error",
        status="error",
        duration_ms=duration,
    )
    return 1


def _print_apply_summary(result: InstallResult) -> None:
    bundle = result.bundle
    verb = "installed into" if result.action == "install" else "updated in"
    origin = "cache" if bundle.get("cache_hit") else bundle.get("source")
    print(f"Knowledge base {bundle['name']} v{bundle['version']} {verb} {result.project_root} (from {origin})")
    for row in result.report.targets:
        line = f"  - {row.name}: {row.status}"
        if row.status != "skipped":
            line += f" ({row.files_written} written, {row.files_unchanged} unchanged"
            line += f", {row.files_removed} removed)" if row.files_removed else ")"
        if row.detail:
            line += f" [{row.detail}]"
        print(line)
    if result.links is not None:
        print(f"Links: {result.links.files_modified} files rewritten to {result.links.style} style")
    if result.backup is not None:
        print(f"Backup kept at {result.backup.root}")


def _install_cmd(args: argparse.Namespace) -> int:
    started = time.perf_counter()
    project_path = _default_project_path(args.path)
    service = _build_service()
    config_path = _optional_path(args.config)
    try:
        if args.list_targets:
            targets = service.list_targets(project_path, config_path)
            if args.json:
                _print_json(targets)
            else:
                for item in targets:
                    state = "present" if item["present"] else "absent"
                    print(f"{item['name']}\t{item['behavior']}\t{item['source']} -> {item['target']} ({state})")
            return 0
        result = service.install(
            project_path,
            source=args.source,
            offline=args.offline,
            config_path=config_path,
            link_style=args.link_style,
        )
    except KnowledgeBaseError as exc:
        return _fail("install", exc, started)
    record_event(
        SETTINGS,
        "install",
        {"project": str(project_path), "source": result.bundle["source"], "version": result.bundle["version"]},
        status="ok",
        duration_ms=(time.perf_counter() - started) * 1000,
    )
    if args.json:
        _print_json(result.to_dict())
    else:
        _print_apply_summary(result)
    return 0


def _update_cmd(args: argparse.Namespace) -> int:
    started = time.perf_counter()
    project_path = _default_project_path(args.path)
    service = _build_service()
    try:
        result = service.update(
            project_path,
            source=args.source,
            offline=args.offline,
            config_path=_optional_path(args.config),
            persist_backup=args.persist_backup,
            link_style=args.link_style,
        )
    except ApplyError as exc:
        if args.json and exc.report is not None:
            _print_json({"action": "update", "restored": exc.restored, "report": exc.report.to_dict()})
        return _fail("update", exc, started)
    except KnowledgeBaseError as exc:
        return _fail("update", exc, started)
    record_event(
        SETTINGS,
        "update",
        {
            "project": str(project_path),
            "source": result.bundle["source"],
            "version": result.bundle["version"],
            "persist_backup": args.persist_backup,
        },
        status="ok",
        duration_ms=(time.perf_counter() - started) * 1000,
    )
    if args.json:
        _print_json(result.to_dict())
    else:
        _print_apply_summary(result)
    return 0


def _package_cmd(args: argparse.Namespace) -> int:
    source_dir = _default_project_path(args.source_dir)
    try:
        config = load_registry_config(source_dir, _optional_path(args.config))
        result = KnowledgeBasePackager(config).package(
            source_dir,
            _optional_path(args.output),
            name=args.name,
            version=args.pkg_version,
            description=args.description,
            author=args.author,
            layout=args.layout,
            skip=_split_names(args.skip_registries),
        )
    except KnowledgeBaseError as exc:
        return _fail("package", exc)
    payload = result.to_dict()
    record_event(SETTINGS, "package", {"output": payload["output"], "included": result.included}, status="ok")
    if args.json:
        _print_json(payload)
        return 0
    print(f"Package created: {result.output} ({payload['size_bytes']} bytes)")
    print(f"  sha256: {result.sha256}")
    print(f"  registries: {', '.join(result.included)}")
    if result.skipped:
        print(f"  skipped: {', '.join(result.skipped)}")
    return 0


def _kb_validate_cmd(args: argparse.Namespace) -> int:
    root = _default_project_path(args.path)
    try:
        config = load_registry_config(root, _optional_path(args.config), ignore_project=args.ignore_config)
        config = config.without(_split_names(args.skip_registries))
    except KnowledgeBaseError as exc:
        return _fail("kb-validate", exc)
    report = validate_knowledge_base(root, config, layout=args.layout, strict=args.strict)
    record_event(
        SETTINGS,
        "kb-validate",
        {"root": str(root), "errors": report.error_count, "warnings": report.warning_count},
        status="ok" if report.valid else "error",
    )
    if args.json:
        _print_json(report.to_dict())
    else:
        print(report.render())
    return 0 if report.valid else 1


def _kb_verify_cmd(args: argparse.Namespace) -> int:
    package = Path(args.package).expanduser().resolve()
    try:
        report = verify_package(package)
    except KnowledgeBaseError as exc:
        return _fail("kb-verify", exc)
    record_event(SETTINGS, "kb-verify", {"package": str(package), "overall": report.overall}, status=report.overall.lower())
    if args.json:
        _print_json(report.to_dict())
    else:
        print(report.render())
    return 0 if report.passed else 1


def _kb_info_cmd(args: argparse.Namespace) -> int:
    package = Path(args.package).expanduser().resolve()
    try:
        manifest = package_info(package)
    except KnowledgeBaseError as exc:
        return _fail("kb-info", exc)
    record_event(SETTINGS, "kb-info", {"package": str(package)}, status="ok")
    if args.json:
        _print_json(manifest.to_dict())
    else:
        print(render_info(manifest, package))
    return 0


def _update_link_cmd(args: argparse.Namespace) -> int:
    project_path = _default_project_path(args.path)
    style = STYLE_ABSOLUTE if args.absolute else STYLE_RELATIVE
    try:
        report = update_links(project_path, style, dry_run=args.dry_run)
    except KnowledgeBaseError as exc:
        return _fail("update-link", exc)
    record_event(
        SETTINGS,
        "update-link",
        {"project": str(project_path), "style": style, "dry_run": args.dry_run, "files": report.files_modified},
        status="ok",
    )
    if args.json:
        _print_json(report.to_dict())
        return 0
    prefix = "[dry-run] " if args.dry_run else ""
    for change in report.changes:
        print(f"{prefix}{change.file}: {change.before} -> {change.after}")
    print(
        f"{prefix}{report.total_links} links in {report.files_scanned} files; "
        f"{report.files_modified} files {'would be ' if args.dry_run else ''}modified ({style})"
    )
    return 0


def _validate_config_cmd(args: argparse.Namespace) -> int:
    project_path = _default_project_path(args.path)
    try:
        config = load_registry_config(project_path, _optional_path(args.config))
    except KnowledgeBaseError as exc:
        return _fail("validate-config", exc)
    record_event(SETTINGS, "validate-config", {"registries": len(config)}, status="ok")
    if args.json:
        _print_json({"valid": True, "sources": list(config.sources), **config.to_dict()})
        return 0
    print(f"Configuration valid: {len(config)} registries (from {', '.join(config.sources)})")
    for entry in config:
        print(f"  - {entry.name}: {entry.source} -> {entry.target_path} [{entry.behavior.value}]")
    return 0


def _cache_cmd(args: argparse.Namespace) -> int:
    cache = _build_service().cache
    if args.cache_command == "evict":
        removed = cache.evict(args.key)
        record_event(SETTINGS, "cache.evict", {"key": args.key, "removed": removed}, status="ok")
        if not removed:
            print(f"cache entry '{args.key}' not found", file=sys.stderr)
            return 1
        print(f"Evicted {args.key}")
        return 0
    entries = cache.entries()
    if args.json:
        _print_json([entry.to_dict() for entry in entries])
    elif not entries:
        print(f"Cache is empty ({cache.root})")
    else:
        for entry in entries:
            print(f"{entry.key}\t{entry.populated_at.isoformat()}\t{entry.path}")
    return 0


def _add_source_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("path", nargs="?", help="Project path (default: current directory)")
    parser.add_argument("--source", help="Release URL, git repository (url#ref), local .zip or directory")
    parser.add_argument("--offline", action="store_true", help="Never touch the network; use cached or local sources")
    parser.add_argument("--config", help="Additional registry config file merged last")
    parser.add_argument("--json", action="store_true", help="Emit machine-readable output")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pair",
        description=HELP_OVERVIEW,
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"pair {__version__}")

    sub = parser.add_subparsers(dest="command", required=True)

    install_cmd = sub.add_parser("install", help="Install the knowledge base into a project")
    _add_source_options(install_cmd)
    install_cmd.add_argument("--list-targets", action="store_true", help="Show registry destinations and exit")
    install_cmd.add_argument("--link-style", choices=(STYLE_RELATIVE, STYLE_ABSOLUTE), help="Rewrite installed links")
    install_cmd.set_defaults(func=_install_cmd)

    update_cmd = sub.add_parser("update", help="Update an installed knowledge base (restores on failure)")
    _add_source_options(update_cmd)
    update_cmd.add_argument("--persist-backup", action="store_true", help="Keep the pre-update backup")
    update_cmd.add_argument(
        "--link-style",
        choices=(STYLE_RELATIVE, STYLE_ABSOLUTE, LINK_STYLE_AUTO),
        help="Rewrite links after update (auto keeps the current style)",
    )
    update_cmd.set_defaults(func=_update_cmd)

    package_cmd = sub.add_parser("package", help="Build a knowledge-base bundle (.zip + .sha256)")
    package_cmd.add_argument("-o", "--output", help="Output .zip path (default: dist/knowledge-base-<version>.zip)")
    package_cmd.add_argument("-s", "--source-dir", help="Project directory to package (default: current directory)")
    package_cmd.add_argument("-c", "--config", help="Additional registry config file merged last")
    package_cmd.add_argument("--name", default="kb-package", help="Package name recorded in manifest.json")
    package_cmd.add_argument("--pkg-version", default="1.0.0", help="Package version recorded in manifest.json")
    package_cmd.add_argument("--description", default="", help="Package description")
    package_cmd.add_argument("--author", default="", help="Package author")
    package_cmd.add_argument("--layout", choices=LAYOUTS, default=LAYOUT_TARGET, help="Read registries from target or source paths")
    package_cmd.add_argument("--skip-registries", help="Comma-separated registries to leave out")
    package_cmd.add_argument("--json", action="store_true", help="Emit machine-readable output")
    package_cmd.set_defaults(func=_package_cmd)

    kb_validate_cmd = sub.add_parser("kb-validate", help="Validate knowledge-base content before packaging")
    kb_validate_cmd.add_argument("path", nargs="?", help="Knowledge-base root (default: current directory)")
    kb_validate_cmd.add_argument("--layout", choices=LAYOUTS, default=LAYOUT_TARGET)
    kb_validate_cmd.add_argument("--strict", action="store_true", help="Also probe external links over HTTP")
    kb_validate_cmd.add_argument("--config", help="Additional registry config file merged last")
    kb_validate_cmd.add_argument("--ignore-config", action="store_true", help="Ignore the project's own config file")
    kb_validate_cmd.add_argument("--skip-registries", help="Comma-separated registries to leave out")
    kb_validate_cmd.add_argument("--json", action="store_true")
    kb_validate_cmd.set_defaults(func=_kb_validate_cmd)

    kb_verify_cmd = sub.add_parser("kb-verify", help="Verify a bundle's checksums, structure and manifest")
    kb_verify_cmd.add_argument("package", help="Path to the bundle .zip")
    kb_verify_cmd.add_argument("--json", action="store_true")
    kb_verify_cmd.set_defaults(func=_kb_verify_cmd)

    kb_info_cmd = sub.add_parser("kb-info", help="Show bundle manifest information")
    kb_info_cmd.add_argument("package", help="Path to the bundle .zip")
    kb_info_cmd.add_argument("--json", action="store_true")
    kb_info_cmd.set_defaults(func=_kb_info_cmd)

    update_link_cmd = sub.add_parser("update-link", help="Rewrite knowledge-base links to relative or absolute form")
    update_link_cmd.add_argument("path", nargs="?", help="Project path (default: current directory)")
    style_group = update_link_cmd.add_mutually_exclusive_group()
    style_group.add_argument("--relative", action="store_true", help="Convert to relative links (default)")
    style_group.add_argument("--absolute", action="store_true", help="Convert to project-absolute links")
    update_link_cmd.add_argument("--dry-run", action="store_true", help="Report changes without writing")
    update_link_cmd.add_argument("--json", action="store_true")
    update_link_cmd.set_defaults(func=_update_link_cmd)

    validate_config_cmd = sub.add_parser("validate-config", help="Validate the resolved registry configuration")
    validate_config_cmd.add_argument("path", nargs="?", help="Project path (default: current directory)")
    validate_config_cmd.add_argument("--config", help="Additional registry config file merged last")
    validate_config_cmd.add_argument("--json", action="store_true")
    validate_config_cmd.set_defaults(func=_validate_config_cmd)

    cache_cmd = sub.add_parser("cache", help="Inspect or evict cached bundles")
    cache_sub = cache_cmd.add_subparsers(dest="cache_command")
    cache_list = cache_sub.add_parser("list", help="List cached bundles")
    cache_list.add_argument("--json", action="store_true")
    cache_evict = cache_sub.add_parser("evict", help="Remove a cached bundle")
    cache_evict.add_argument("key", help="Cache key (version, git-<hash> or url-<hash>)")
    cache_cmd.set_defaults(func=_cache_cmd, cache_command="list", json=False)

    return parser


def _known_commands(parser: argparse.ArgumentParser) -> set[str]:
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            return set(action.choices)
    return set()


def _preprocess_argv(argv: list[str]) -> list[str]:
    """Normalize argv: ``kb`` shorthands map to their ``kb-`` commands."""

    if not argv:
        return argv
    aliases = {"verify": "kb-verify", "info": "kb-info"}
    if argv[0] in aliases:
        return [aliases[argv[0]], *argv[1:]]
    return argv


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    processed_args = _preprocess_argv(sys.argv[1:] if argv is None else list(argv))
    if processed_args and not processed_args[0].startswith("-") and processed_args[0] not in _known_commands(parser):
        print(f"Unknown command: {processed_args[0]}. Run `pair --help` for usage.", file=sys.stderr)
        return 1
    args = parser.parse_args(processed_args)
    handler: Callable[[argparse.Namespace], int] = args.func
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
