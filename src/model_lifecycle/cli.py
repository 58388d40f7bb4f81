"""
Command-line interface for model lifecycle management.

    model-lifecycle list [--provider ollama] [--refresh]
    model-lifecycle pull llama3:8b
    model-lifecycle delete llama3:8b
    model-lifecycle activate llama3:8b [--prompt "Hello"]

Ctrl+C during ``pull`` cancels the download cleanly.
Configuration comes from the environment / ``.env`` (see ``.env.example``).
"""

import argparse
import asyncio
import signal
import sys
from typing import Optional

from .acquisition import CancellationToken, PullProgress
from .config import Config
from .engine.base import EngineInitProgress
from .errors import ModelLifecycleError
from .services import ModelLifecycleService
from .utils.logging_config import setup_logging


def _format_bytes(count: int) -> str:
    if count < 1024:
        return f"{count} B"
    size = float(count)
    for unit in ("KB", "MB", "GB"):
        size /= 1024
        if size < 1024:
            break
    return f"{size:.1f} {unit}"


def _print_progress(progress: PullProgress) -> None:
    line = f"  [{progress.percent:3d}%] {progress.status}"
    if progress.aggregate_total:
        line += (
            f"  ({_format_bytes(progress.aggregate_completed)}"
            f" / {_format_bytes(progress.aggregate_total)})"
        )
    print(line.ljust(78), end="\r", flush=True)


def _print_engine_progress(report: EngineInitProgress) -> None:
    print(f"  [engine {report.progress:.0%}] {report.text}")


async def _cmd_list(args, config: Config) -> int:
    async with ModelLifecycleService.from_config(args.provider, config) as service:
        models = await service.list_models(refresh=args.refresh)

    if not models:
        print(f"No models found for provider '{args.provider}'.")
        return 0

    print(f"{'MODEL':<40} {'KIND':<10} {'INSTALLED':<10}")
    print("-" * 62)
    for model in models:
        installed = "yes" if model.installed else "no"
        print(f"{model.id:<40} {model.kind.value:<10} {installed:<10}")
    return 0


async def _cmd_pull(args, config: Config) -> int:
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
    except NotImplementedError:
        # Windows event loops have no signal handlers; Ctrl+C aborts the run.
        pass

    async with ModelLifecycleService.from_config(args.provider, config) as service:
        print(f"Pulling '{args.model}' from {args.provider}...")
        result = await service.install(args.model, _print_progress, token)

    print()
    print(
        f"Done: '{result.model_id}' in {result.elapsed_seconds:.1f}s "
        f"({result.attempts} attempt{'s' if result.attempts != 1 else ''})."
    )
    return 0


async def _cmd_delete(args, config: Config) -> int:
    async with ModelLifecycleService.from_config(args.provider, config) as service:
        deleted = await service.delete(args.model)

    if deleted:
        print(f"Deleted '{args.model}'.")
        return 0
    print(f"Could not delete '{args.model}'.", file=sys.stderr)
    return 1


async def _cmd_activate(args, config: Config) -> int:
    async with ModelLifecycleService.from_config(
        args.provider, config, with_engine=True
    ) as service:
        engine = await service.ensure_ready(
            args.model,
            on_progress=_print_progress,
            on_engine_progress=_print_engine_progress,
        )
        print(f"Engine ready for '{args.model}'.")
        if args.prompt:
            print(await engine.complete(args.prompt))
    return 0


COMMANDS = {
    "list": _cmd_list,
    "pull": _cmd_pull,
    "delete": _cmd_delete,
    "activate": _cmd_activate,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="model-lifecycle",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (default: MODEL_LIFECYCLE_LOG_LEVEL or INFO).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List available models.")
    list_parser.add_argument("--provider", default="ollama", choices=["ollama", "openai"])
    list_parser.add_argument(
        "--refresh", action="store_true", help="Ignore the cached catalog."
    )

    for name, help_text in (
        ("pull", "Download a model."),
        ("delete", "Delete an installed model."),
        ("activate", "Download if needed and load a model into the engine."),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("model", help="Model id, e.g. llama3:8b")
        sub.add_argument("--provider", default="ollama", choices=["ollama"])
        if name == "activate":
            sub.add_argument("--prompt", help="Send one prompt once the engine is ready.")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        return asyncio.run(COMMANDS[args.command](args, Config()))
    except ModelLifecycleError as exc:
        print()
        print(f"[ERROR] {exc.user_message}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
