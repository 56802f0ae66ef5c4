"""Shared state handed from the ``runnerops`` group to its commands."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import click

from runnerops.config import RunnerOpsConfig
from runnerops.contracts import paths
from runnerops.logger import resolve_log_dir
from runnerops.system import LocalSystem, SystemQuery


@dataclass
class CliContext:
    config: RunnerOpsConfig
    system: SystemQuery = field(default_factory=LocalSystem)
    use_colors: bool = True
    log_path: Optional[Path] = None

    def installation_log(self) -> Path:
        if self.log_path is not None:
            return self.log_path
        try:
            return resolve_log_dir(self.config) / paths.INSTALLATION_LOG_NAME
        except PermissionError as e:
            raise click.ClickException(str(e))


pass_context = click.make_pass_decorator(CliContext)
