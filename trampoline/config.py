"""
Trampoline configuration.

Everything comes from the environment the host application launched us
with; there are no config files and no command-line options (argv belongs
to the forwarded command).

- DESKTOP_PORT              required, loopback TCP port of the server
- DESKTOP_TRAMPOLINE_DEBUG  optional flag, "[i]" traces on stderr
"""

from dataclasses import dataclass
from typing import Mapping

from .errors import ConfigurationError

PORT_ENV_VAR = "DESKTOP_PORT"
DEBUG_ENV_VAR = "DESKTOP_TRAMPOLINE_DEBUG"

# The server only ever listens on loopback.
DEFAULT_HOST = "127.0.0.1"


@dataclass(frozen=True)
class TrampolineConfig:
    port: int
    debug: bool = False
    host: str = DEFAULT_HOST


def _env_flag(environ: Mapping[str, str], name: str, *, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def parse_port(raw: str) -> int:
    """Parse a decimal TCP port, rejecting anything outside 1-65535."""
    # ASCII decimal digits only.
    digits = raw.strip()
    if not (digits.isascii() and digits.isdigit()):
        raise ConfigurationError(f"Invalid {PORT_ENV_VAR} value: {raw!r}")

    port = int(digits)

    if not 0 < port <= 0xFFFF:
        raise ConfigurationError(f"{PORT_ENV_VAR} out of range: {port}")
    return port


def load_config(environ: Mapping[str, str]) -> TrampolineConfig:
    raw_port = environ.get(PORT_ENV_VAR)
    if raw_port is None:
        raise ConfigurationError(f"Missing {PORT_ENV_VAR} environment variable")

    return TrampolineConfig(
        port=parse_port(raw_port),
        debug=_env_flag(environ, DEBUG_ENV_VAR, default=False),
    )
