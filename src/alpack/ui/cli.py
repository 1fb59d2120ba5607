"""Command-line interface router for alpack."""

from __future__ import annotations

import argparse
import json
import os
import shlex
import sys
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from alpack import __version__
from alpack.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    env_bindings,
    load_config,
    resolve_config_path,
    save_config_values,
)
from alpack.domain.models import BackendKind, Channel, CommandForm, ExecutionRequest
from alpack.errors import AlpackError
from alpack.lifecycle import EnvironmentManager
from alpack.observability import get_logger, setup_logging, shutdown_logging
from alpack.rootfs.mirror import host_architecture
from alpack.sandbox.drivers import probe_version, resolve_backend_binary
from alpack.ui.render import CLIRenderer, create_renderer

TERMINATOR: Final[str] = "--"

# run options that consume the following word as their value.
_RUN_VALUE_OPTIONS: Final[frozenset[str]] = frozenset(
    {
        "-c",
        "--command",
        "-b",
        "--bind",
        "-B",
        "--bind-args",
        "-w",
        "--workdir",
        "-e",
        "--env",
        "--no-default-bind",
        "--backend",
        "--config",
    }
)

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 2

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="alpack",
        description=(
            "alpack — Alpine Linux root filesystems and rootless sandboxes.\n\n"
            "Common workflows:\n"
            "  alpack setup build1 --channel edge   Download and unpack an Alpine rootfs\n"
            "  alpack run build1 -c 'echo hi'       Run a shell command inside it\n"
            "  alpack run build1 -- apk info        Run an argv command inside it\n"
            "  alpack list                          Show registered environments\n"
            "  alpack doctor                        Check backends and directories\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"alpack {__version__}")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to the TOML config (default: ~/.config/alpack/config.toml or $ALPACK_CONFIG).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Mirror debug logs to stderr.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # setup ---------------------------------------------------------------
    setup_parser = subparsers.add_parser(
        "setup",
        parents=[common],
        help="Create or repair an environment from the latest minirootfs",
        description=(
            "Fetch the latest Alpine minirootfs for a channel and architecture, verify it,\n"
            "and unpack it as a named environment. Re-running on a ready environment is a\n"
            "no-op unless --reinstall is given.\n\n"
            "Examples:\n"
            "  alpack setup build1\n"
            "  alpack setup build1 --edge --arch x86_64\n"
            "  alpack setup build1 --reinstall --refresh\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    setup_parser.add_argument("name", help="Environment name")
    channel_group = setup_parser.add_mutually_exclusive_group()
    channel_group.add_argument(
        "--channel",
        choices=[item.value for item in Channel],
        default=None,
        help="Release channel (default: mirror.default_channel)",
    )
    channel_group.add_argument(
        "--edge",
        dest="channel",
        action="store_const",
        const=Channel.EDGE.value,
        help="Shortcut for --channel edge",
    )
    setup_parser.add_argument(
        "--arch", default=None, help="Alpine architecture (default: the host's)"
    )
    setup_parser.add_argument("--mirror", default=None, help="Mirror base URL override")
    setup_parser.add_argument(
        "--backend",
        choices=[item.value for item in BackendKind],
        default=None,
        help="Backend to record for this environment (default: sandbox.backend)",
    )
    setup_parser.add_argument(
        "-r",
        "--reinstall",
        "--force",
        dest="force",
        action="store_true",
        default=False,
        help="Replace an existing root filesystem wholesale",
    )
    setup_parser.add_argument(
        "--refresh",
        action="store_true",
        default=False,
        help="Ignore the archive cache and download again",
    )
    cache_group = setup_parser.add_mutually_exclusive_group()
    cache_group.add_argument(
        "--cache",
        dest="cache_dir",
        default=None,
        metavar="DIR",
        help="Archive cache directory for this run (default: paths.cache_dir)",
    )
    cache_group.add_argument(
        "--no-cache",
        action="store_true",
        default=False,
        help="Download into a throw-away directory instead of the cache",
    )
    setup_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    setup_parser.set_defaults(handler=_cmd_setup)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        allow_abbrev=False,
        help="Run a command inside an environment",
        description=(
            "Run a command inside an environment through proot or bwrap. Without a\n"
            "command an interactive /bin/sh is started. alpack options go before the\n"
            "command: the first word after NAME, or everything after '--', starts the\n"
            "guest command and the rest is passed to it untouched. The guest exit code\n"
            "becomes alpack's exit code.\n\n"
            "Examples:\n"
            "  alpack run build1\n"
            "  alpack run build1 -c 'apk update && apk add git'\n"
            "  alpack run build1 ls -la /etc\n"
            "  alpack run build1 -b ~/src:/src -w /src -- make -j4\n"
            "  alpack run build1 --backend bwrap --bind-args=--unshare-net -- ip addr\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument("name", help="Environment name")
    run_parser.add_argument(
        "-c", "--command", dest="shell_command", default=None, help="Run via /bin/sh -c"
    )
    run_parser.add_argument(
        "-b",
        "--bind",
        dest="binds",
        action="append",
        default=[],
        metavar="HOST[:GUEST][:ro|rw]",
        help="Extra bind mount (repeatable)",
    )
    run_parser.add_argument(
        "-B",
        "--bind-args",
        dest="bind_args",
        action="append",
        default=[],
        metavar="ARGS",
        help="Arguments passed verbatim to the backend (repeatable, shell-quoted)",
    )
    run_parser.add_argument("-w", "--workdir", default=None, help="Guest working directory")
    run_parser.add_argument(
        "-e",
        "--env",
        dest="env",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Set a guest environment variable (repeatable)",
    )
    run_parser.add_argument(
        "-0", "--root", dest="as_root", action="store_true", help="Run as (fake) root"
    )
    run_parser.add_argument(
        "-n",
        "--no-groups",
        action="store_true",
        help="Do not bind the host /etc/passwd and /etc/group",
    )
    run_parser.add_argument(
        "-i",
        "--ignore-extra-binds",
        action="store_true",
        help="Skip desktop binds (fonts, themes, sound config, cursors)",
    )
    run_parser.add_argument(
        "--no-default-bind",
        dest="suppress",
        action="append",
        default=[],
        metavar="GUEST",
        help="Drop one default bind by guest path (repeatable)",
    )
    run_parser.add_argument(
        "--backend",
        choices=[item.value for item in BackendKind],
        default=None,
        help="Override the environment's backend for this run",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the backend command line instead of running it",
    )
    run_parser.set_defaults(handler=_cmd_run)

    # list ----------------------------------------------------------------
    list_parser = subparsers.add_parser(
        "list",
        parents=[common],
        help="List registered environments",
        description="List registered environments with their state and release.",
    )
    list_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    list_parser.set_defaults(handler=_cmd_list)

    # show ----------------------------------------------------------------
    show_parser = subparsers.add_parser(
        "show",
        parents=[common],
        help="Show one environment",
        description="Show the registry record and root filesystem status of one environment.",
    )
    show_parser.add_argument("name", help="Environment name")
    show_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    show_parser.set_defaults(handler=_cmd_show)

    # remove --------------------------------------------------------------
    remove_parser = subparsers.add_parser(
        "remove",
        parents=[common],
        help="Delete an environment and its files",
        description="Delete an environment's root filesystem, then its registry record.",
    )
    remove_parser.add_argument("name", help="Environment name")
    remove_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    remove_parser.set_defaults(handler=_cmd_remove)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show or change the configuration",
        description=(
            "Display the effective config after merging defaults, file, env and flags.\n"
            "With a setter flag the value is validated and saved to the config file.\n\n"
            "Examples:\n"
            "  alpack config\n"
            "  alpack config --env-vars\n"
            "  alpack config --use-bwrap --use-edge\n"
            "  alpack config --rootfs-dir ~/alpine\n"
            "  alpack config --default-mirror https://mirror.example/alpine/\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    config_parser.add_argument(
        "--env-vars", action="store_true", help="List recognised ALPACK_* variables"
    )
    backend_group = config_parser.add_mutually_exclusive_group()
    backend_group.add_argument(
        "--use-proot",
        dest="set_backend",
        action="store_const",
        const=BackendKind.PROOT.value,
        help="Save proot as the default backend",
    )
    backend_group.add_argument(
        "--use-bwrap",
        dest="set_backend",
        action="store_const",
        const=BackendKind.BWRAP.value,
        help="Save bwrap as the default backend",
    )
    release_group = config_parser.add_mutually_exclusive_group()
    release_group.add_argument(
        "--use-edge",
        dest="set_channel",
        action="store_const",
        const=Channel.EDGE.value,
        help="Save edge as the default release channel",
    )
    release_group.add_argument(
        "--use-latest-stable",
        dest="set_channel",
        action="store_const",
        const=Channel.STABLE.value,
        help="Save latest-stable as the default release channel",
    )
    config_parser.add_argument(
        "--cache-dir", dest="set_cache_dir", metavar="DIR", help="Save the archive cache directory"
    )
    config_parser.add_argument(
        "--rootfs-dir",
        dest="set_base_dir",
        metavar="DIR",
        help="Save the directory that holds environments",
    )
    config_parser.add_argument(
        "--default-mirror", dest="set_mirror", metavar="URL", help="Save the mirror base URL"
    )
    config_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    config_parser.set_defaults(handler=_cmd_config)

    # doctor --------------------------------------------------------------
    doctor_parser = subparsers.add_parser(
        "doctor",
        parents=[common],
        help="Check backends, directories and host support",
        description="Run offline diagnostics for sandbox backends and alpack directories.",
    )
    doctor_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    doctor_parser.set_defaults(handler=_cmd_doctor)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    raw = list(sys.argv[1:] if argv is None else argv)
    head, guest_argv = split_guest_command(raw)

    parser = build_parser()
    namespace = parser.parse_args(head)
    namespace.guest_argv = guest_argv
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        config = _load_effective_config(namespace)
        _start_logging(namespace, config)
        try:
            result = handler(namespace, config)
        finally:
            shutdown_logging()
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def split_terminator(argv: Sequence[str]) -> tuple[list[str], list[str] | None]:
    """Split at the first ``--``; everything after it is the guest argv."""

    items = list(argv)
    if TERMINATOR not in items:
        return items, None
    index = items.index(TERMINATOR)
    return items[:index], items[index + 1 :]


def split_guest_command(argv: Sequence[str]) -> tuple[list[str], list[str] | None]:
    """Split a ``run`` invocation into alpack arguments and the guest argv.

    The guest command starts at the first word after the environment name that is
    not an option or an option value, or right after ``--``. Options that follow it
    belong to the guest. Other subcommands only split at ``--``.
    """

    items = list(argv)
    subcommand = next((i for i, item in enumerate(items) if not _is_option(item)), None)
    if subcommand is None or items[subcommand] != "run":
        return split_terminator(items)

    seen_name = False
    index = subcommand + 1
    while index < len(items):
        item = items[index]
        if item == TERMINATOR:
            return items[:index], items[index + 1 :]
        if _is_option(item):
            index += 2 if _takes_separate_value(item) else 1
            continue
        if seen_name:
            return items[:index], items[index:]
        seen_name = True
        index += 1
    return items, None


def main(argv: Sequence[str] | None = None) -> int:
    """Compatibility wrapper for main-module wiring."""

    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_setup(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    manager = _manager(config)
    renderer = _get_renderer(args)

    with renderer.setup_progress() as progress:
        result = manager.setup(
            args.name,
            channel=Channel(args.channel) if args.channel else None,
            architecture=args.arch,
            backend=BackendKind(args.backend) if args.backend else None,
            force=args.force,
            refresh=args.refresh,
            no_cache=args.no_cache,
            download_progress=progress.download,
            extract_progress=progress.extract,
        )

    environment = result.environment
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "setup",
                "changed": result.changed,
                "environment": environment.to_dict(),
            }
        )
        return 0

    target = f"{environment.channel.value}/{environment.architecture}"
    if result.changed:
        renderer.text(
            f"Environment {environment.name} is ready "
            f"(Alpine {environment.release_version}, {target})"
        )
    else:
        renderer.text(
            f"Environment {environment.name} is already set up ({target}); "
            "use --reinstall to replace it"
        )
    renderer.next_steps([f"alpack run {environment.name}"])
    return 0


def _cmd_run(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    manager = _manager(config)
    request = _build_request(args)

    if _flag(args, "dry_run"):
        prepared = manager.engine.prepare(request)
        print(shlex.join(prepared.argv))
        return 0

    outcome = manager.run(request)
    return outcome.exit_code


def _cmd_list(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    environments = _manager(config).list_environments()

    if _flag(args, "json"):
        _emit_json(
            {"command": "list", "environments": [item.to_dict() for item in environments]}
        )
        return 0

    renderer = _get_renderer(args)
    if not environments:
        renderer.text("No environments. Create one with: alpack setup <name>")
        return 0
    renderer.table(
        ("NAME", "STATE", "CHANNEL", "ARCH", "RELEASE", "BACKEND"),
        [
            (
                item.name,
                item.state.value,
                item.channel.value,
                item.architecture,
                item.release_version or "-",
                item.backend_kind.value if item.backend_kind else "default",
            )
            for item in environments
        ],
    )
    return 0


def _cmd_show(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    info = _manager(config).inspect(args.name)
    environment = info.environment

    if _flag(args, "json"):
        payload: dict[str, object] = {
            "command": "show",
            "environment": environment.to_dict(),
            "populated": info.populated,
            "os_release": info.os_release,
        }
        _emit_json(payload)
        return 0

    renderer = _get_renderer(args)
    renderer.heading(environment.name)
    renderer.kv("State", environment.state.value)
    renderer.kv("Root", environment.root_path)
    renderer.kv("Channel", environment.channel.value)
    renderer.kv("Architecture", environment.architecture)
    renderer.kv("Release", environment.release_version or "-")
    renderer.kv("OS", info.os_release or "-")
    backend = environment.backend_kind.value if environment.backend_kind else "default"
    renderer.kv("Backend", backend)
    renderer.kv("Mirror", environment.mirror_url or "-")
    renderer.kv("Created", environment.to_dict()["created_at"])
    if not info.populated:
        renderer.warning("root filesystem is missing or empty; re-run setup")
    return 0


def _cmd_remove(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    removed = _manager(config).remove(args.name)

    if _flag(args, "json"):
        _emit_json({"command": "remove", "environment": removed.to_dict()})
        return 0

    _get_renderer(args).text(f"Removed environment {removed.name} ({removed.root_path})")
    return 0


def _cmd_config(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    config_path = resolve_config_path(getattr(args, "config_path", None))
    updates = _config_updates(args)
    if updates:
        return _save_config(args, config_path, updates)

    bindings = {name: ".".join(path) for name, path in env_bindings(config).items()}

    if _flag(args, "json"):
        payload: dict[str, object] = {
            "command": "config",
            "config_path": str(config_path),
            "config": dict(config),
        }
        if _flag(args, "env_vars"):
            payload["env_vars"] = bindings
        _emit_json(payload)
        return 0

    renderer = _get_renderer(args)
    state = "" if config_path.is_file() else " (not present, using defaults)"
    renderer.kv("Config file", f"{config_path}{state}")
    renderer.text(dump_effective_config(config))
    if _flag(args, "env_vars"):
        renderer.section("Environment variables:")
        renderer.items([f"{name} -> {path}" for name, path in bindings.items()])
    return 0


def _save_config(
    args: argparse.Namespace, config_path: Path, updates: Mapping[str, object]
) -> int:
    try:
        saved = save_config_values(updates, config_path)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc
    except OSError as exc:
        raise CLIError(f"cannot write config file {config_path}: {exc}", exit_code=1) from exc
    logger.info("config saved", extra={"path": config_path, "keys": sorted(saved)})

    if _flag(args, "json"):
        _emit_json({"command": "config", "config_path": str(config_path), "saved": saved})
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Config file", str(config_path))
    for name, value in saved.items():
        renderer.kv(name, str(value))
    return 0


def _cmd_doctor(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    checks: list[tuple[str, bool, str]] = []
    sandbox = config["sandbox"]
    configured_backend = BackendKind(sandbox["backend"])

    # 1. Backends
    for kind in BackendKind:
        label = f"backend:{kind.value}"
        try:
            path = resolve_backend_binary(kind, sandbox.get(f"{kind.value}_path"))
        except AlpackError as exc:
            # Only the configured default backend is required.
            checks.append((label, kind is not configured_backend, str(exc)))
            continue
        version = probe_version(path) or "unknown version"
        checks.append((label, True, f"{path} ({version})"))

    # 2. User namespaces for bwrap
    userns = Path("/proc/sys/kernel/unprivileged_userns_clone")
    if userns.is_file():
        enabled = userns.read_text(encoding="utf-8").strip() == "1"
        detail = "enabled" if enabled else "disabled; bwrap will not work without it"
        checks.append(("userns", enabled or configured_backend is BackendKind.PROOT, detail))

    # 3. Directories
    for key in ("base_dir", "cache_dir", "log_dir"):
        directory = Path(config["paths"][key])
        writable = _writable_dir(directory)
        detail = str(directory) if writable else f"{directory} is not writable"
        checks.append((f"paths:{key}", writable, detail))

    # 4. Host architecture
    try:
        checks.append(("arch", True, host_architecture()))
    except AlpackError as exc:
        checks.append(("arch", False, str(exc)))

    # 5. Registry
    try:
        count = len(_manager(config).list_environments())
        checks.append(("registry", True, f"{count} environment(s)"))
    except (AlpackError, OSError) as exc:
        checks.append(("registry", False, str(exc)))

    all_passed = all(passed for _, passed, _ in checks)
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "doctor",
                "ok": all_passed,
                "checks": [
                    {"name": name, "status": "ok" if passed else "fail", "detail": detail}
                    for name, passed, detail in checks
                ],
            }
        )
        return 0 if all_passed else 1

    renderer = _get_renderer(args)
    renderer.heading("alpack doctor")
    for name, passed, detail in checks:
        if passed:
            renderer.ok(f"{name}: {detail}")
        else:
            renderer.fail(f"{name}: {detail}")
    renderer.text("\nAll checks passed." if all_passed else "\nSome checks failed.")
    return 0 if all_passed else 1


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, object] = {}
    mirror = getattr(args, "mirror", None)
    if mirror:
        overrides["mirror.url"] = mirror
    cache_dir = getattr(args, "cache_dir", None)
    if cache_dir:
        overrides["paths.cache_dir"] = _absolute(cache_dir)

    try:
        return load_config(getattr(args, "config_path", None), cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _start_logging(args: argparse.Namespace, config: Mapping[str, Any]) -> None:
    try:
        setup_logging(
            config["observability"],
            run_id=uuid.uuid4().hex[:12],
            log_dir=config["paths"]["log_dir"],
            verbose=_flag(args, "verbose"),
        )
    except OSError as exc:
        print(f"warning: file logging disabled: {exc}", file=sys.stderr)
        return
    logger.debug("cli invocation", extra={"command": args.command})


def _manager(config: Mapping[str, Any]) -> EnvironmentManager:
    return EnvironmentManager.from_config(config)


def _build_request(args: argparse.Namespace) -> ExecutionRequest:
    argv = list(args.guest_argv or [])

    if args.shell_command is not None:
        if argv:
            raise CLIError("use either -c/--command or a guest command, not both")
        form = CommandForm.SHELL
        payload: tuple[str, ...] = (args.shell_command,)
    else:
        form = CommandForm.ARGV
        payload = tuple(argv)

    raw_backend_args: list[str] = []
    for chunk in args.bind_args:
        try:
            raw_backend_args.extend(shlex.split(chunk))
        except ValueError as exc:
            raise CLIError(f"cannot split --bind-args {chunk!r}: {exc}") from exc

    try:
        return ExecutionRequest(
            environment=args.name,
            command_form=form,
            payload=payload,
            binds=tuple(args.binds),
            working_dir=args.workdir,
            env_overrides=_parse_env_assignments(args.env),
            raw_backend_args=tuple(raw_backend_args),
            as_root=args.as_root,
            bind_groups=not args.no_groups,
            extra_binds=not args.ignore_extra_binds,
            suppress_defaults=tuple(args.suppress),
            backend=BackendKind(args.backend) if args.backend else None,
        )
    except ValueError as exc:
        raise CLIError(str(exc)) from exc


def _config_updates(args: argparse.Namespace) -> dict[str, object]:
    updates: dict[str, object] = {
        "sandbox.backend": getattr(args, "set_backend", None),
        "mirror.default_channel": getattr(args, "set_channel", None),
        "mirror.url": getattr(args, "set_mirror", None),
    }
    for dotted, attr in (("paths.cache_dir", "set_cache_dir"), ("paths.base_dir", "set_base_dir")):
        value = getattr(args, attr, None)
        updates[dotted] = None if value is None else _absolute(value)
    return {key: value for key, value in updates.items() if value is not None}


def _absolute(path: str) -> str:
    return str(Path(path).expanduser().resolve())


def _parse_env_assignments(values: Sequence[str]) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for value in values:
        name, sep, text = value.partition("=")
        if not sep or not name:
            raise CLIError(f"invalid --env {value!r}: expected NAME=VALUE")
        parsed[name] = text
    return parsed


def _writable_dir(directory: Path) -> bool:
    probe = directory
    while not probe.exists():
        if probe.parent == probe:
            return False
        probe = probe.parent
    return probe.is_dir() and os.access(probe, os.W_OK | os.X_OK)


def _is_option(item: str) -> bool:
    return item.startswith("-") and item != "-"


def _takes_separate_value(item: str) -> bool:
    if item.startswith("--"):
        return item in _RUN_VALUE_OPTIONS
    # Bundled short flags such as -0nb: the first value option takes the rest of
    # the word, or the next word when nothing follows it.
    for position, letter in enumerate(item[1:], start=2):
        if f"-{letter}" in _RUN_VALUE_OPTIONS:
            return position == len(item)
    return False


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = [
    "CLIError",
    "build_parser",
    "main",
    "run_cli",
    "split_guest_command",
    "split_terminator",
]
