"""
Shared state of one cluster command.

A ClusterSession holds the loaded configuration, the configured platform
and, once initialized, the Terraform executor bound to the platform's asset
directory. Orchestrators run their steps through ``session.stage(name)``,
which logs the stage, records a StageResult and wraps any failure in a
StageError carrying the stage name.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from rich.console import Console

from kforge.backends import get_backend
from kforge.components import Component, get_component
from kforge.config import ComponentConfig, KforgeConfig
from kforge.cluster.kubeconfig import resolve_kubeconfig
from kforge.errors import ConfigError, OperationCancelled, StageError
from kforge.helm import HelmClient
from kforge.k8s.kubectl import Kubectl
from kforge.platforms import Platform, PlatformMeta, PostApplyHook, get_platform, post_apply_hook_of
from kforge.terraform import workspace
from kforge.terraform.executor import Executor, ExecutorConfig
from kforge.terraform.signals import CancellationToken
from kforge.utils import console as default_console
from kforge.verify import ReadinessVerifier

logger = logging.getLogger(__name__)


@dataclass
class StageResult:
    """Result of one orchestrator stage."""

    stage_name: str
    success: bool
    duration_seconds: float
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage_name": self.stage_name,
            "success": self.success,
            "duration_seconds": self.duration_seconds,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }


@dataclass
class OperationResult:
    """Outcome of a whole orchestrated operation."""

    operation: str
    success: bool
    cancelled: bool = False
    cluster_existed: Optional[bool] = None
    stages: List[StageResult] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        return sum(s.duration_seconds for s in self.stages)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "success": self.success,
            "cancelled": self.cancelled,
            "cluster_existed": self.cluster_existed,
            "duration_seconds": self.duration_seconds,
            "stages": [s.to_dict() for s in self.stages],
        }


class ClusterSession:
    """Configuration, collaborators and per-command state of one operation."""

    def __init__(
        self,
        config: KforgeConfig,
        verbose: bool = False,
        require_platform: bool = True,
        cancellation: Optional[CancellationToken] = None,
        console: Optional[Console] = None,
        input_fn: Callable[[str], str] = input,
        platform_factory: Callable[[str], Platform] = get_platform,
        executor_factory: Callable[..., Executor] = Executor,
        kubectl_factory: Callable[[Optional[Path]], Kubectl] = Kubectl,
        helm_factory: Callable[[Optional[Path]], HelmClient] = HelmClient,
        component_factory: Callable[[ComponentConfig], Component] = get_component,
        verifier_factory: Callable[..., ReadinessVerifier] = ReadinessVerifier,
    ):
        self.config = config
        self.verbose = verbose
        self.cancellation = cancellation or CancellationToken()
        self.console = console or default_console
        self.input_fn = input_fn
        self.executor_factory = executor_factory
        self.kubectl_factory = kubectl_factory
        self.helm_factory = helm_factory
        self.component_factory = component_factory
        self.verifier_factory = verifier_factory

        self.platform: Optional[Platform] = None
        if config.platform_name:
            self.platform = platform_factory(config.platform_name)
            self.platform.load_config(config.platform_config)
        elif require_platform:
            raise ConfigError("no platform configured")

        # Optional capability, resolved once.
        self.post_apply_hook: Optional[PostApplyHook] = (
            post_apply_hook_of(self.platform) if self.platform is not None else None
        )

        self.executor: Optional[Executor] = None
        self.stages: List[StageResult] = []

    @property
    def meta(self) -> PlatformMeta:
        if self.platform is None:
            raise ConfigError("no platform configured")
        return self.platform.meta()

    @property
    def asset_dir(self) -> Path:
        return Path(self.meta.asset_dir).expanduser()

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        """Run a block as a named stage, recording its result."""
        self.cancellation.raise_if_cancelled()

        logger.info(f"Starting stage: {name}", extra={"stage": name, "event": "stage_started"})
        started_at = datetime.now(timezone.utc)
        start_time = time.time()

        try:
            yield
        except OperationCancelled:
            self._record(name, False, start_time, started_at, "cancelled")
            raise
        except Exception as e:
            self._record(name, False, start_time, started_at, str(e))
            logger.error(
                f"Stage {name} failed: {e}",
                extra={"stage": name, "event": "stage_failed", "metadata": {"error": str(e)}},
            )
            raise StageError(name, e) from e

        result = self._record(name, True, start_time, started_at)
        logger.info(
            f"Stage {name} completed successfully",
            extra={
                "stage": name,
                "event": "stage_completed",
                "metadata": {"duration_seconds": result.duration_seconds},
            },
        )

    def _record(
        self,
        name: str,
        success: bool,
        start_time: float,
        started_at: datetime,
        error: Optional[str] = None,
    ) -> StageResult:
        result = StageResult(
            stage_name=name,
            success=success,
            duration_seconds=time.time() - start_time,
            error_message=error,
            started_at=started_at,
            ended_at=datetime.now(timezone.utc),
        )
        self.stages.append(result)
        return result

    def result(self, operation: str, **kwargs: Any) -> OperationResult:
        kwargs.setdefault("success", not kwargs.get("cancelled", False))
        return OperationResult(operation=operation, stages=list(self.stages), **kwargs)

    def initialize(self) -> Executor:
        """
        Prepare the Terraform root directory and run ``terraform init``.

        Writes the backend file, creates the executor, lets the platform
        render its definition and initializes Terraform.
        """
        backend = get_backend(self.config.backend_type, self.config.backend_config)
        root = workspace.configure(self.asset_dir, backend.render() if backend else None)

        executor_config = ExecutorConfig(
            working_dir=root,
            quiet=not self.verbose,
            binary_path=self.config.terraform_binary,
            required_version=self.config.terraform_version,
        )
        executor = self.executor_factory(executor_config, cancellation=self.cancellation)

        self.platform.initialize(executor)
        executor.init()

        self.executor = executor
        return executor

    def require_executor(self) -> Executor:
        if self.executor is None:
            return self.initialize()
        return self.executor

    def cluster_exists(self) -> bool:
        """True if Terraform reports any output, i.e. the cluster was applied before."""
        outputs = self.require_executor().output()
        return bool(outputs)

    def kubeconfig(self, explicit: Optional[Path] = None) -> Path:
        if self.platform is None:
            return resolve_kubeconfig(explicit)
        return resolve_kubeconfig(explicit, self.asset_dir, self.require_executor)

    def component(self, name: str) -> Component:
        component_config = self.config.get_component(name)
        if component_config is None:
            raise ConfigError(f"component '{name}' is not configured")
        return self.component_factory(component_config)

    def select_component_names(self, names: Optional[List[str]] = None) -> List[str]:
        """Requested components, or every configured one in declaration order."""
        if not names:
            return self.config.component_names()

        unknown = [n for n in names if self.config.get_component(n) is None]
        if unknown:
            raise ConfigError(f"components not configured: {', '.join(unknown)}")
        return list(names)
