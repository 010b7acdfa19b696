"""
Environment access for voyagez deployments.

Variables share the ``VOYAGEZ_`` prefix and are looked up by their short
name (``env.get("STORAGE_URL")`` reads ``VOYAGEZ_STORAGE_URL``). A ``.env``
file in the working directory is loaded through python-dotenv on request.

Durations accept plain seconds or a unit suffix, so a one day hold window
can be written ``86400``, ``1440m`` or ``24h``.
"""

from __future__ import annotations

import os
import re
from decimal import Decimal, InvalidOperation
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "VOYAGEZ_"

_DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhd]?)\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}
_TRUE = ("true", "1", "yes", "on")
_FALSE = ("false", "0", "no", "off")


def parse_duration(value: str) -> float:
    """
    Seconds in a duration string.

    Raises:
        ValueError: Not a number with an optional s/m/h/d suffix
    """
    match = _DURATION.match(value)
    if match is None:
        msg = f"Invalid duration: {value!r}"
        raise ValueError(msg)
    amount, unit = match.groups()
    return float(amount) * _UNIT_SECONDS[unit.lower()]


class EnvManager:
    """
    Reads prefixed booking settings from the process environment.

    Malformed numbers fall back to the default; a missing required
    variable raises.

    Example:
        >>> env = EnvManager()
        >>> env.load()  # Loads .env if exists
        >>> hold = env.get_duration("HOLD_WINDOW", 86400)
    """

    def __init__(self, project_root: Path | str | None = None, prefix: str = ENV_PREFIX):
        self.project_root = Path(project_root) if project_root else Path.cwd()
        self.prefix = prefix
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    def key(self, name: str) -> str:
        return name if name.startswith(self.prefix) else f"{self.prefix}{name}"

    def load(self, env_file: str | Path | None = None, override: bool = False) -> bool:
        """
        Load variables from a .env file.

        Returns:
            True if the file was loaded, False if it does not exist
        """
        env_file = self.project_root / ".env" if env_file is None else Path(env_file)
        if not env_file.exists():
            return False

        load_dotenv(env_file, override=override)
        self._loaded = True
        return True

    def get(self, name: str, default: str | None = None, required: bool = False) -> str | None:
        """
        Raw value of ``VOYAGEZ_<name>``; empty strings count as unset.

        Raises:
            ValueError: If required=True and the variable is not set
        """
        value = os.environ.get(self.key(name)) or default
        if required and value is None:
            msg = f"Required environment variable not set: {self.key(name)}"
            raise ValueError(msg)
        return value

    def get_bool(self, name: str, default: bool = False) -> bool:
        value = (self.get(name) or "").lower()
        if value in _TRUE:
            return True
        if value in _FALSE:
            return False
        return default

    def get_int(self, name: str, default: int = 0) -> int:
        value = self.get(name)
        try:
            return int(value) if value is not None else default
        except ValueError:
            return default

    def get_float(self, name: str, default: float = 0.0) -> float:
        value = self.get(name)
        try:
            return float(value) if value is not None else default
        except ValueError:
            return default

    def get_decimal(self, name: str, default: Decimal) -> Decimal:
        value = self.get(name)
        try:
            return Decimal(value) if value is not None else default
        except InvalidOperation:
            return default

    def get_duration(self, name: str, default: float) -> float:
        """Seconds in ``VOYAGEZ_<name>``, e.g. ``90``, ``15m`` or ``24h``."""
        value = self.get(name)
        if value is None:
            return default
        try:
            return parse_duration(value)
        except ValueError:
            return default


_global_env: EnvManager | None = None


def get_env() -> EnvManager:
    """Get the global environment manager instance."""
    global _global_env
    if _global_env is None:
        _global_env = EnvManager()
    return _global_env
