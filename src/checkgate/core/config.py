"""Application state and configuration."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import platformdirs
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from checkgate.core.base import BaseConfig, BaseState
from checkgate.core.log import Logger
from checkgate.core.yaml_settings import YamlWithIncludesSettingsSource
from checkgate.report import (
    CommandReportSink,
    JsonReportSink,
    LogReportSink,
    ReportSink,
)
from checkgate.runner.check import (
    DEFAULT_GRACE_PERIOD,
    DEFAULT_MAX_OUTPUT_BYTES,
    CheckRunner,
)
from checkgate.workflow.orchestrator import DEFAULT_CONCURRENCY

# ============================================================
# TEMPLATE SUBSTITUTION NAMESPACE
# ============================================================

# Modules available for template substitution in YAML files
# Usage: {platformdirs.user_cache_dir}, {os.sep}
TEMPLATE_NAMESPACE = {
    'os': os,
    'platformdirs': platformdirs,
}

# ============================================================
# CONFIG MODELS (loaded from YAML/env/CLI)
# ============================================================

class RunConfig(BaseConfig):
    """How an evaluation cycle runs."""

    project_root: Path = Field(
        default=Path("."),
        description="Directory that relative check workdirs resolve against",
    )
    concurrency: int = Field(
        default=DEFAULT_CONCURRENCY,
        ge=1,
        description="Maximum number of checks running at once",
    )
    deadline_seconds: float | None = Field(
        default=None,
        gt=0,
        description=(
            "Overall deadline; checks still running or pending when it "
            "elapses are cancelled and the verdict is incomplete"
        ),
    )
    output_dir: Path | None = Field(
        default=None,
        description=(
            "Directory for per-attempt check logs "
            "(supports {config.*} templates); unset disables them"
        ),
    )
    max_output_bytes: int = Field(
        default=DEFAULT_MAX_OUTPUT_BYTES,
        gt=0,
        description="Output kept in memory per attempt; older output is dropped",
    )
    grace_period_seconds: float = Field(
        default=DEFAULT_GRACE_PERIOD,
        ge=0,
        description="Delay between SIGTERM and SIGKILL when stopping a check",
    )

    def create_runner(self) -> CheckRunner:
        return CheckRunner(
            project_root=self.project_root,
            output_dir=self.output_dir,
            max_output_bytes=self.max_output_bytes,
            grace_period=self.grace_period_seconds,
        )


class ReportConfig(BaseConfig):
    """Where finished verdicts go."""

    log: bool = Field(
        default=True,
        description="Summarize the verdict in the log",
    )
    tail_lines: int = Field(
        default=20,
        ge=0,
        description="Output lines shown for each failing check",
    )
    json_path: Path | None = Field(
        default=None,
        description="Write the verdict as JSON to this file",
    )
    command: list[str] | None = Field(
        default=None,
        description=(
            "Command that receives the verdict JSON on stdin "
            "(e.g. a status API uploader)"
        ),
    )
    command_timeout: int = Field(
        default=60,
        gt=0,
        description="Timeout for the report command in seconds",
    )

    def create_sinks(self, json_path: Path | None = None) -> list[ReportSink]:
        """Build the configured sinks.

        Args:
            json_path: Overrides ``json_path`` when given
        """
        sinks: list[ReportSink] = []
        if self.log:
            sinks.append(LogReportSink(tail_lines=self.tail_lines))
        path = json_path or self.json_path
        if path is not None:
            sinks.append(JsonReportSink(path))
        if self.command:
            sinks.append(
                CommandReportSink(self.command, timeout=self.command_timeout)
            )
        return sinks


class Config(BaseConfig):
    """Application configuration loaded from YAML/env/CLI."""

    logger: Logger = Field(
        default=None,
        description="Logger configuration and runtime instance"
    )
    run: RunConfig = Field(
        default_factory=RunConfig,
        description="Evaluation settings"
    )
    report: ReportConfig = Field(
        default_factory=ReportConfig,
        description="Report sink settings"
    )
    checks: list[dict[str, Any]] = Field(
        default_factory=list,
        description=(
            "Check definitions: name, command, timeout_seconds, "
            "blocking, max_retries, retry_backoff_seconds, backoff, "
            "depends_on, description"
        ),
    )
    log_root: Path = Field(
        default_factory=(
            lambda: Path(platformdirs.user_state_dir("checkgate"))
        ),
        description=(
            "Root directory for log files "
            "(supports {platformdirs.*} templates)"
        ),
    )
    run_name: str = Field(
        default="checkgate",
        description="Name for this run in logs and telemetry",
    )

    @model_validator(mode='after')
    def _setup_logger(self) -> Config:
        """Install the global logger once configuration is loaded."""
        from checkgate.core.log import Logger, setup_logger

        if self.logger is None:
            self.logger = Logger()

        setup_logger(
            log_root=self.log_root,
            run_name=self.run_name,
            console=self.logger.console,
            otlp=self.logger.otlp,
            file=self.logger.file,
            logfire=self.logger.logfire,
            level=self.logger.level,
        )

        # The bootstrap logging during YAML loading went through the
        # proxy, so nothing else needs tearing down here.
        return self

    def close(self):
        """Close config and the global logger."""
        from checkgate.core.log import logger
        logger.close()
        super().close()


# ============================================================
# RUNTIME STATE MODELS (mutable while a command runs)
# ============================================================

class GlobalState(BaseState):
    """Runtime state shared by all commands."""

    current_command: str | None = Field(
        default=None,
        description="Name of the command being executed",
    )


class RunState(BaseState):
    """Run command runtime state."""

    status: str = Field(
        default="pending",
        description="pending, running, complete, config_error",
    )
    verdict: Any = Field(
        default=None,
        description="FinalVerdict of the last evaluation",
    )
    report_failures: int = Field(
        default=0,
        description="Report sinks that failed to publish",
    )

    model_config = ConfigDict(arbitrary_types_allowed=True)


class Runtime(BaseModel):
    """All runtime state, one section per command."""

    global_: GlobalState = Field(
        default_factory=GlobalState,
        alias="global",
        description="Global state shared across all commands"
    )
    run: RunState = Field(
        default_factory=RunState,
        description="Run command runtime state"
    )


# ============================================================
# STATE (config + runtime combined)
# ============================================================

class State(BaseSettings):
    """Complete application state: configuration plus runtime.

    Loads, in priority order: init arguments, YAML files (with
    includes), .env, CHECKGATE_* environment variables and file
    secrets. CLI flags are layered on top by CliApp.
    """

    config: Config = Field(
        default_factory=Config,
        description="Application configuration (from YAML/env/CLI)"
    )
    runtime: Runtime = Field(
        default_factory=Runtime,
        description="Runtime state (mutates while a command runs)",
    )
    include: list[str] | None = Field(
        default=None,
        description=(
            "Additional YAML files to include and merge. "
            "Use --include on CLI or include: in YAML files."
        ),
    )

    model_config = SettingsConfigDict(
        yaml_file="checkgate.yaml",
        env_file=".env",
        env_prefix="CHECKGATE_",
        env_nested_delimiter="__",
        cli_parse_args=True,
        cli_implicit_flags=True,
        cli_use_class_docs_for_groups=True,
        arbitrary_types_allowed=True,
        # Disregard .env variables that don't match config
        extra='ignore'
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            YamlWithIncludesSettingsSource(settings_cls),
            dotenv_settings,
            env_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def substitute_templates(self) -> State:
        """Substitute {field.path} templates in every string field.

        ``{config.run.project_root}/reports`` becomes the configured
        project root followed by ``/reports``.
        """
        self._substitute_recursive(self)
        return self

    def _substitute_recursive(self, obj: Any) -> None:
        if isinstance(obj, BaseModel):
            for field_name in obj.__class__.model_fields:
                value = getattr(obj, field_name)
                new_value = self._substitute_value(value)
                if new_value is not value:
                    setattr(obj, field_name, new_value)
        elif isinstance(obj, dict):
            for key in obj:
                obj[key] = self._substitute_value(obj[key])
        elif isinstance(obj, list):
            for i in range(len(obj)):
                obj[i] = self._substitute_value(obj[i])

    def _substitute_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self._substitute_string(value)
        elif isinstance(value, Path):
            return Path(self._substitute_string(str(value)))
        elif isinstance(value, (BaseModel, dict, list)):
            self._substitute_recursive(value)
            return value
        else:
            return value

    def _substitute_string(self, value: str) -> str:
        """Replace {field.path} templates with actual field values.

        Unresolvable references are left untouched, so literal braces
        in check arguments survive.
        """
        def replace_template(match):
            parts = match.group(1).split(".")

            if parts[0] in TEMPLATE_NAMESPACE:
                obj = TEMPLATE_NAMESPACE[parts[0]]
                parts = parts[1:]
            else:
                obj = self

            try:
                for part in parts:
                    obj = getattr(obj, part)
            except AttributeError:
                return match.group(0)

            # Only platformdirs helpers are ever called
            if callable(obj):
                if getattr(obj, '__module__', None) != 'platformdirs':
                    return match.group(0)
                obj = obj('checkgate', appauthor=False)

            if obj is None:
                return match.group(0)
            return str(obj)

        return re.sub(r'\{([a-z._]+)\}', replace_template, value)


__all__ = ["Config", "ReportConfig", "RunConfig", "State"]
