import logging
import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any, BinaryIO, Optional

import click
from click.exceptions import Exit
from rich.console import Console
from rich.logging import RichHandler

from .config import load_config
from .errors import TetherError
from .pump import exec_and_wait

err = Console(stderr=True)


def exit_status(code: int) -> int:
    # a child killed by a signal reports -signum
    return 128 - code if code < 0 else code


def parse_env(items: tuple[str, ...]) -> dict[str, str]:
    env = dict(os.environ)
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            msg = f"expected KEY=VALUE, got {item!r}"
            raise click.BadParameter(msg, param_hint="'--env'")
        env[key] = value
    return env


def forward(stream: BinaryIO) -> Callable[[bytes], None]:
    def write(chunk: bytes) -> None:
        stream.write(chunk)
        stream.flush()

    return write


def run_command(command: Any, **kwargs: Any) -> None:
    try:
        code = exec_and_wait(
            command,
            stdout=forward(sys.stdout.buffer),
            stderr=forward(sys.stderr.buffer),
            **kwargs,
        )
    except TetherError as e:
        err.print(str(e), markup=False, highlight=False)
        raise Exit(1) from None

    raise Exit(exit_status(code))


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log process lifecycle events.")
@click.version_option(package_name="tether")
def main(*, verbose: bool) -> None:
    """Spawn commands and stream their output until they exit."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err, show_path=False)],
    )


@main.command("exec", context_settings={"ignore_unknown_options": True})
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.option(
    "--cwd",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Working directory of the command.",
)
@click.option("--env", "env_items", multiple=True, metavar="KEY=VALUE")
@click.option("--pty", is_flag=True, help="Attach the command to a pseudo-terminal.")
@click.option("--shell", is_flag=True, help="Run COMMAND through the shell.")
@click.option("--stdin", "stdin_file", type=click.File("rb"), help="Feed FILE to stdin.")
def exec_(
    command: tuple[str, ...],
    *,
    cwd: Optional[Path],
    env_items: tuple[str, ...],
    pty: bool,
    shell: bool,
    stdin_file: Optional[BinaryIO],
) -> None:
    """Run COMMAND and exit with its exit code."""
    run_command(
        " ".join(command) if shell else list(command),
        cwd=cwd,
        env=parse_env(env_items) if env_items else None,
        pty=pty,
        stdin=stdin_file,
    )


@main.command()
@click.argument(
    "config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
@click.argument("name")
def run(config_path: Path, name: str) -> None:
    """Run the command NAME from the TOML file CONFIG_PATH."""
    try:
        command = load_config(config_path).get(name)
    except TetherError as e:
        err.print(str(e), markup=False, highlight=False)
        raise Exit(1) from None

    err.print(
        f"$ cd {command.cwd} && {' '.join(command.resolve_command())}",
        markup=False,
        highlight=False,
    )
    run_command(
        command.resolve_command(),
        cwd=command.resolve_cwd(),
        env=command.resolve_env(),
        pty=command.pty,
    )


if __name__ == "__main__":
    main()
