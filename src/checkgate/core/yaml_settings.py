"""YAML configuration loading with include directive support."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import yaml
from platformdirs import user_config_dir
from pydantic_settings import BaseSettings, YamlConfigSettingsSource

from checkgate.core.log import logger

CONFIG_FILENAME = "checkgate.yaml"
DEFAULTS_FILE = Path(__file__).parent.parent / "defaults" / "default.yaml"


def cli_includes(argv: list[str]) -> list[str]:
    """Collect ``--include FILE`` / ``--include=FILE`` values from argv."""
    includes = []
    i = 1
    while i < len(argv):
        arg = argv[i]
        if arg == "--include" and i + 1 < len(argv):
            includes.append(argv[i + 1])
            i += 1
        elif arg.startswith("--include="):
            includes.append(arg.split("=", 1)[1])
        i += 1
    return includes


def merge_configs(base: dict, override: dict) -> dict:
    """Deep merge ``override`` into a copy of ``base`` (override wins).

    Nested mappings merge key by key; anything else, lists included,
    is replaced wholesale.
    """
    result = base.copy()
    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value
    return result


class YamlWithIncludesSettingsSource(YamlConfigSettingsSource):
    """YAML settings source with ``include:`` and ``--include`` support.

    Files are deep-merged in increasing priority:
        package defaults < user config < project config
        < explicit yaml_file / CLI includes.
    Each file may pull in others with an ``include:`` key (a path or
    list of paths, relative to the including file).
    """

    def __init__(
        self, settings_cls: type[BaseSettings], yaml_file=None
    ):
        """Initialize with CLI include processing.

        Args:
            settings_cls: The Settings class being initialized
            yaml_file: Optional override for the config file path
        """
        includes = cli_includes(sys.argv)

        base = yaml_file or settings_cls.model_config.get("yaml_file")
        if base and includes:
            yaml_file = (
                [base] if isinstance(base, (str, os.PathLike)) else list(base)
            ) + includes
        elif includes:
            yaml_file = includes
        else:
            yaml_file = base

        super().__init__(settings_cls, yaml_file)

    def _read_files(self, files, deep_merge: bool = True):
        """Load defaults, user config, project config and extra files.

        Args:
            files: Extra file path(s): explicit yaml_file and/or
                --include arguments
            deep_merge: Ignored; files are always deep-merged

        Returns:
            Deep-merged dictionary of all loaded data
        """
        candidates = [
            DEFAULTS_FILE,
            Path(user_config_dir("checkgate", appauthor=False))
            / CONFIG_FILENAME,
            Path(CONFIG_FILENAME),
        ]
        if files:
            if isinstance(files, (str, os.PathLike)):
                files = [files]
            candidates.extend(Path(f).expanduser() for f in files)

        result: dict = {}
        loaded: set[Path] = set()
        for file_path in candidates:
            resolved = file_path.resolve()
            if resolved in loaded:
                continue
            if file_path.is_file():
                loaded.add(resolved)
                with logger.span(
                    "Configuration loading", file=str(file_path)
                ):
                    data = self._load_file_recursive(file_path, set())
                    result = merge_configs(result, data)
            else:
                logger.debug(
                    "Configuration file not found (skipping)",
                    file=str(file_path),
                )
        return result

    def _load_file_recursive(
        self, filepath: Path, visited: set[Path]
    ) -> dict:
        """Load a file and resolve its include: directives.

        Included files are merged first so the including file wins.

        Raises:
            ValueError: If an include cycle is detected
            FileNotFoundError: If an included file does not exist
        """
        filepath = filepath.resolve()
        if filepath in visited:
            raise ValueError(f"Circular include: {filepath}")
        visited.add(filepath)

        with open(filepath, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        includes = data.pop("include", None) or []
        if isinstance(includes, str):
            includes = [includes]

        merged: dict = {}
        for inc in includes:
            inc_path = self._resolve_path(inc, filepath)
            logger.debug(
                f"Including {inc_path.name}",
                included_from=str(filepath),
            )
            merged = merge_configs(
                merged, self._load_file_recursive(inc_path, visited.copy())
            )
        return merge_configs(merged, data)

    @staticmethod
    def _resolve_path(include_path: str, relative_to: Path) -> Path:
        path = Path(include_path).expanduser()
        if path.is_absolute():
            return path
        return (relative_to.parent / path).resolve()


__all__ = ["YamlWithIncludesSettingsSource", "cli_includes", "merge_configs"]
