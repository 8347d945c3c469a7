"""Environment-supplied secrets referenced as ${env:NAME} in attributes."""

import os
from typing import Dict, Iterable, Mapping, Optional

from pydantic import SecretStr

from mlstack.utils.errors import ConfigurationError
from mlstack.utils.logging import get_logger, redaction_filter

logger = get_logger(__name__)


class SecretStore:
    """Secret values read once at startup.

    Values are held as SecretStr and registered with the log redaction
    filter, so they never show up in logs or repr output.
    """

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values: Dict[str, SecretStr] = {}
        for name, value in (values or {}).items():
            self._values[name] = SecretStr(value)
            redaction_filter.add_secret(value)

    @classmethod
    def from_environment(
        cls,
        names: Iterable[str],
        environ: Optional[Mapping[str, str]] = None,
    ) -> "SecretStore":
        """Read the given names from the environment.

        Raises:
            ConfigurationError: If any name is unset or empty
        """
        source = os.environ if environ is None else environ
        names = sorted(set(names))
        missing = [name for name in names if not source.get(name)]
        if missing:
            raise ConfigurationError(
                f"Required secrets not set in environment: {', '.join(missing)}",
                suggestions=[f"export {name}=..." for name in missing],
            )

        logger.debug(f"Loaded {len(names)} secret(s) from environment")
        return cls({name: source[name] for name in names})

    def get(self, name: str) -> str:
        """Secret value.

        Raises:
            ConfigurationError: If the name was not loaded at startup
        """
        if name not in self._values:
            raise ConfigurationError(f"Secret '{name}' was not loaded at startup")
        return self._values[name].get_secret_value()

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __len__(self) -> int:
        return len(self._values)
