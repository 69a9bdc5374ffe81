"""YAML utilities using ruamel.yaml for comment-preserving round-trip editing."""

from io import StringIO
from pathlib import Path
from typing import Any, Dict, Union

from ruamel.yaml import YAML


def _make_yaml() -> YAML:
    """Create a configured YAML instance for round-trip operations."""
    yml = YAML()
    yml.preserve_quotes = True
    return yml


def load_yaml(source: Union[str, Path, StringIO]) -> Dict[str, Any]:
    """Load YAML from a file path or string content.

    Args:
        source: File path (str or Path) or StringIO with YAML content

    Returns:
        Parsed mapping (empty dict if content is empty/None)

    Raises:
        ValueError: If the document is not a mapping at the top level
    """
    yml = _make_yaml()
    if isinstance(source, StringIO):
        data = yml.load(source)
    else:
        with open(Path(source)) as f:
            data = yml.load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping at the top level of {source}")
    return data


def save_yaml(data: Dict[str, Any], dest: Union[str, Path]) -> None:
    """Save data to a YAML file, preserving comments and formatting.

    Args:
        data: Mapping to write (may be a ruamel CommentedMap for round-trip)
        dest: File path to write to
    """
    yml = _make_yaml()
    with open(Path(dest), "w") as f:
        yml.dump(data, f)
