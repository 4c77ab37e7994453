"""
Per-invocation options for the orchestrators.

The CLI builds one of these for every command and passes it down the call
chain; no orchestrator reads process-wide flags.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


@dataclass(frozen=True)
class ApplyOptions:
    confirm: bool = False
    upgrade_kubelets: bool = False
    skip_components: bool = False
    verbose: bool = False
    config_path: Optional[Path] = None
    values_path: Optional[Path] = None


@dataclass(frozen=True)
class DestroyOptions:
    confirm: bool = False
    verbose: bool = False
    config_path: Optional[Path] = None
    values_path: Optional[Path] = None


@dataclass(frozen=True)
class HealthOptions:
    config_path: Optional[Path] = None
    values_path: Optional[Path] = None
    kubeconfig_path: Optional[Path] = None


@dataclass(frozen=True)
class CertificateRotateOptions:
    confirm: bool = False
    verbose: bool = False
    config_path: Optional[Path] = None
    values_path: Optional[Path] = None


@dataclass(frozen=True)
class ComponentOptions:
    """Options shared by the component apply, delete and render commands."""

    names: List[str] = field(default_factory=list)
    confirm: bool = False
    delete_namespace: bool = False
    config_path: Optional[Path] = None
    values_path: Optional[Path] = None
    kubeconfig_path: Optional[Path] = None
