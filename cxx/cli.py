"""Command line interface for the cxx build tool."""
from __future__ import annotations

from argparse import REMAINDER, ArgumentParser, Namespace
from pathlib import Path
from typing import Callable, Dict, Iterable, List
import sys

from core.command_runner import CommandRunner, RecordingCommandRunner, SubprocessCommandRunner

from . import __version__
from .build import BuildConfiguration, Builder
from .config import Settings, load_settings
from .context import Console, Context
from .devenv import EnvironmentCache, capture_dev_environment
from .errors import EXIT_FAILURE, EXIT_SUCCESS, CxxError
from .formatter import ParallelFormatter, discover_sources, summarize
from .paths import ProjectPaths, app_data_dir
from .scaffold import install_dependencies, new_project, vcpkg_environment
from .toolchain import Toolchain


EXIT_INTERRUPTED = 130

PASSTHROUGH_TOOLS = ("msbuild", "ninja", "vcpkg", "vswhere")


def _make_runner(dry_run: bool) -> SubprocessCommandRunner | RecordingCommandRunner:
    return RecordingCommandRunner() if dry_run else SubprocessCommandRunner()


def _make_console(args: Namespace) -> Console:
    # Explicit --log takes precedence, otherwise --verbose maps to debug.
    level = args.log or ("debug" if args.verbose else "info")
    return Console(level=level, dry_run=getattr(args, "dry_run", False))


def _load_settings(args: Namespace) -> Settings:
    settings = load_settings(args.config)
    return settings.with_overrides(jobs=getattr(args, "jobs", None))


def _cache_for(settings: Settings) -> EnvironmentCache:
    return EnvironmentCache(settings.cache_file or app_data_dir() / "DevEnv.json")


def _build_context(args: Namespace, console: Console, *, project: bool = True) -> Context:
    settings = _load_settings(args)
    runner = _make_runner(getattr(args, "dry_run", False))
    toolchain = Toolchain.locate(SubprocessCommandRunner(), formatter=settings.formatter)
    paths = ProjectPaths.discover(settings=settings) if project else None
    if paths is not None:
        console.debug(f"Project root: {paths.root}")
    return Context(settings=settings, console=console, runner=runner, toolchain=toolchain, paths=paths)


def _emit_dry_run_output(runner: CommandRunner, console: Console, *, workspace: Path | None) -> None:
    if not isinstance(runner, RecordingCommandRunner):
        return
    for line in runner.iter_formatted(workspace=workspace):
        console.out(line)


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="cxx", description=f"C++ build tool (version {__version__})")
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        metavar="FILE",
        help="Settings file (default: $CXX_CONFIG or ~/.config/cxx/config.toml)",
    )
    parser.add_argument(
        "--log",
        "-l",
        choices=["none", "error", "info", "debug"],
        default=None,
        help="Set log level (default: info)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug output")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("new", help="Create a new project in the current directory")
    subparsers.add_parser("install", help="Install project dependencies with vcpkg")
    subparsers.add_parser("generate", help="Generate the solution and project files")

    for name, description in (("build", "Build the project"), ("run", "Build and run the project")):
        sub = subparsers.add_parser(name, help=description)
        sub.add_argument(
            "configuration",
            nargs="?",
            default="debug",
            help="Build configuration: debug or release (default: debug)",
        )
        sub.add_argument("-n", "--dry-run", action="store_true", help="Print commands without executing them")
        if name == "run":
            sub.add_argument("arguments", nargs=REMAINDER, metavar="ARG", help="Arguments passed to the program")

    publish_parser = subparsers.add_parser("publish", help="Build Release and copy the executable to build/publish")
    publish_parser.add_argument("-n", "--dry-run", action="store_true", help="Print commands without executing them")

    subparsers.add_parser("clean", help="Remove build outputs and generated files")

    format_parser = subparsers.add_parser("format", help="Format project sources with clang-format")
    format_parser.add_argument("-j", "--jobs", type=int, default=None, help="Number of parallel formatter processes")

    devenv_parser = subparsers.add_parser("devenv", help="Capture the Visual Studio developer environment")
    devenv_parser.add_argument("--refresh", action="store_true", help="Ignore the cache and capture again")
    devenv_parser.add_argument("--show", action="store_true", help="Print the captured variables")
    devenv_parser.add_argument("--clear", action="store_true", help="Delete the environment cache")

    subparsers.add_parser("vs", help="Show the detected Visual Studio tools")

    for tool in PASSTHROUGH_TOOLS:
        passthrough = subparsers.add_parser(tool, help=f"Run {tool} from the detected installation")
        passthrough.add_argument("arguments", nargs=REMAINDER, metavar="ARG")

    args, extras = parser.parse_known_args(list(argv))
    if extras:
        # REMAINDER misses arguments that look like options when they come first.
        if args.command != "run" and args.command not in PASSTHROUGH_TOOLS:
            parser.error(f"unrecognized arguments: {' '.join(extras)}")
        args.arguments = [*extras, *args.arguments]
    return args


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)
    console = _make_console(args)

    handler = _HANDLERS.get(args.command)
    if handler is None:
        raise ValueError(f"Unknown command: {args.command}")
    try:
        return handler(args, console)
    except CxxError as exc:
        console.error(str(exc))
        return exc.exit_code
    except KeyboardInterrupt:
        console.error("Interrupted")
        return EXIT_INTERRUPTED


def _handle_new(args: Namespace, console: Console) -> int:
    context = _build_context(args, console, project=False)
    return new_project(
        Path.cwd(),
        settings=context.settings,
        runner=context.runner,
        toolchain=context.toolchain,
        console=console,
    )


def _handle_install(args: Namespace, console: Console) -> int:
    context = _build_context(args, console)
    return install_dependencies(
        context.project.root,
        runner=context.runner,
        toolchain=context.toolchain,
        console=console,
    )


def _handle_generate(args: Namespace, console: Console) -> int:
    context = _build_context(args, console)
    return Builder(context).generate()


def _parse_configuration(value: str, console: Console) -> BuildConfiguration | None:
    try:
        return BuildConfiguration.parse(value)
    except ValueError as exc:
        console.error(str(exc))
        return None


def _handle_build(args: Namespace, console: Console) -> int:
    configuration = _parse_configuration(args.configuration, console)
    if configuration is None:
        return EXIT_FAILURE
    context = _build_context(args, console)
    exit_code = Builder(context).build(configuration)
    _emit_dry_run_output(context.runner, console, workspace=context.project.build)
    return exit_code


def _handle_run(args: Namespace, console: Console) -> int:
    configuration = _parse_configuration(args.configuration, console)
    if configuration is None:
        return EXIT_FAILURE
    context = _build_context(args, console)
    exit_code = Builder(context).run(configuration, args.arguments)
    _emit_dry_run_output(context.runner, console, workspace=context.project.root)
    return exit_code


def _handle_publish(args: Namespace, console: Console) -> int:
    context = _build_context(args, console)
    exit_code = Builder(context).publish()
    _emit_dry_run_output(context.runner, console, workspace=context.project.build)
    return exit_code


def _handle_clean(args: Namespace, console: Console) -> int:
    context = _build_context(args, console)
    return Builder(context).clean()


def _handle_format(args: Namespace, console: Console) -> int:
    context = _build_context(args, console)
    files = discover_sources(context.project.src, context.settings.format_extensions)
    if not files:
        console.info(f"No source files found in {context.project.src}")
        return EXIT_SUCCESS

    formatter = ParallelFormatter(
        context.runner,
        console,
        context.toolchain.require("clang-format"),
        jobs=context.settings.jobs,
    )
    console.debug(f"Formatting {len(files)} files with {formatter.jobs} workers")
    formatted, failed, cancelled = summarize(formatter.format_all(files))
    message = f"Formatting complete: {formatted} formatted"
    if failed:
        message = f"{message}, {failed} failed"
    if cancelled:
        message = f"{message}, {cancelled} cancelled"
    console.info(message)
    return EXIT_SUCCESS


def _handle_devenv(args: Namespace, console: Console) -> int:
    context = _build_context(args, console, project=False)
    cache = _cache_for(context.settings)
    if args.clear:
        removed = cache.clear()
        console.info(f"Removed {cache.path}" if removed else f"No cache at {cache.path}")
        return EXIT_SUCCESS

    env = capture_dev_environment(
        context.toolchain,
        runner=context.runner,
        cache=cache,
        refresh=args.refresh,
        console=console,
    )
    if args.show:
        for name in sorted(env, key=str.upper):
            console.out(f"{name} = {env[name]}")
    else:
        console.info(f"Developer environment ready ({len(env)} variables, cache: {cache.path})")
    return EXIT_SUCCESS


def _handle_vs(args: Namespace, console: Console) -> int:
    context = _build_context(args, console, project=False)
    toolchain = context.toolchain
    cached = _cache_for(context.settings).load()
    if cached is not None and "PATH" in cached:
        toolchain = toolchain.with_search_path(cached["PATH"])

    installation = toolchain.installation
    if installation is not None:
        label = installation.display_name or "Visual Studio"
        console.out(f"{label} {installation.version}")
    else:
        console.error("No Visual Studio installation found")

    for name, path in toolchain.inventory().items():
        console.out(f"{name:<13} {path if path is not None else '-'}")
    return EXIT_SUCCESS if installation is not None else EXIT_FAILURE


def _make_passthrough(tool: str) -> Callable[[Namespace, Console], int]:
    def handler(args: Namespace, console: Console) -> int:
        context = _build_context(args, console, project=False)
        executable = context.toolchain.require(tool)
        extra: List[str] = list(args.arguments or [])
        env: Dict[str, str] | None = vcpkg_environment() if tool == "vcpkg" else None
        result = context.runner.run([str(executable), *extra], env=env, check=False, note=tool, stream=True)
        return result.returncode

    return handler


_HANDLERS: Dict[str, Callable[[Namespace, Console], int]] = {
    "new": _handle_new,
    "install": _handle_install,
    "generate": _handle_generate,
    "build": _handle_build,
    "run": _handle_run,
    "publish": _handle_publish,
    "clean": _handle_clean,
    "format": _handle_format,
    "devenv": _handle_devenv,
    "vs": _handle_vs,
}
_HANDLERS.update({tool: _make_passthrough(tool) for tool in PASSTHROUGH_TOOLS})


__all__ = ["main"]
