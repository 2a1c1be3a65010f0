"""
YAML configuration file loading.

Values read from a file count as explicit values in the resolution chain.

Expected YAML format:
```yaml
conduit:
  batch_size: 5
  poll_frequency: 1000
  queue_url: http://localstack:4566/000000000000/ingress-events
  egress_bucket: egress
```
The top-level ``conduit:`` section is optional.
"""

from pathlib import Path
from typing import Any

import yaml

from conduit.core.errors import ConfigError

from .resolver import OPTION_NAMES


def load_config_file(config_path: str | Path) -> dict[str, Any]:
    """
    Load explicit option values from a YAML file.

    Args:
        config_path: Path to the YAML file

    Returns:
        Mapping of option name to value

    Raises:
        ConfigError: If the file is missing, is not valid YAML, or names
            unknown options
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path) as f:
            document = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ConfigError(f"Configuration file {config_path} must contain a mapping")

    section = document.get("conduit", document)
    if not isinstance(section, dict):
        raise ConfigError("'conduit' section must be a mapping")

    unknown = set(section) - OPTION_NAMES
    if unknown:
        raise ConfigError(f"Unknown options in {config_path}: {', '.join(sorted(unknown))}")

    return dict(section)
