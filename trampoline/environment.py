"""
Trampoline Environment Filter
Selects which environment variables are forwarded to the server.

Only a fixed allow-list of names is ever sent. Matching is exact:
- "DESKTOP_USERNAME=alice" is forwarded
- "DESKTOP_USERNAME_OTHER=alice" is not
"""

from typing import Iterable, List, Mapping, Union

# Variables the host application sets for, or expects back from, the
# trampoline. Not configurable.
VALID_ENV_VARS = (
    "DESKTOP_TRAMPOLINE_IDENTIFIER",
    "DESKTOP_TRAMPOLINE_TOKEN",
    "DESKTOP_USERNAME",
    "DESKTOP_ENDPOINT",
)


def is_valid_env_var(entry: str) -> bool:
    """Return True if a "NAME=value" entry names an allow-listed variable."""
    for name in VALID_ENV_VARS:
        # The name must be followed immediately by '=', otherwise
        # DESKTOP_USERNAME would also match DESKTOP_USERNAME_SOMETHING.
        if entry.startswith(name) and entry[len(name):len(name) + 1] == "=":
            return True
    return False


def filter_environment(environ: Union[Mapping[str, str], Iterable[str]]) -> List[str]:
    """
    Collect the allow-listed entries of an environment.

    Accepts a name -> value mapping (e.g. os.environ) or an iterable of
    "NAME=value" strings. Enumeration order is kept and nothing is
    deduplicated.
    """
    if isinstance(environ, Mapping):
        entries = (f"{name}={value}" for name, value in environ.items())
    else:
        entries = iter(environ)

    return [entry for entry in entries if is_valid_env_var(entry)]
