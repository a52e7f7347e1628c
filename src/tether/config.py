import os
from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import dotenv

from .compat import tomllib
from .errors import ConfigurationError
from .typecast import TypeCastError, typecast


@dataclass(kw_only=True)
class CommandConfig:
    name: str
    exec: str
    args: list[str] = field(default_factory=list)
    cwd: str = "."
    env: dict[str, Optional[str]] = field(default_factory=dict)
    env_file: Optional[str] = None
    pty: bool = False

    def resolve_command(self) -> list[str]:
        return [self.exec, *self.args]

    def resolve_cwd(self) -> Path:
        return Path(self.cwd).resolve()

    def read_env_file(self) -> dict[str, Optional[str]]:
        env = {}

        if self.env_file:
            env_file = Path(self.cwd) / self.env_file
            env.update(dotenv.dotenv_values(env_file, interpolate=False))

        env.update(self.env)

        return OrderedDict(dotenv.main.resolve_variables(env.items(), override=True))

    def resolve_env(self, base: Optional[Mapping[str, str]] = None) -> dict[str, str]:
        """Layer the env file and ``env`` table over ``base``.

        A variable listed without a value in the env file is removed.
        """
        env = dict(os.environ if base is None else base)
        for key, value in self.read_env_file().items():
            if value is None:
                env.pop(key, None)
            else:
                env[key] = value
        return env


@dataclass(kw_only=True)
class Config:
    commands: list[CommandConfig] = field(default_factory=list)

    def get(self, name: str) -> CommandConfig:
        for command in self.commands:
            if command.name == name:
                return command
        msg = f"No command named {name!r} is configured"
        raise ConfigurationError(msg)


def load_config(path: Path) -> Config:
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as e:
        raise TypeCastError("", str(e)) from None
    return typecast(Config, data)
