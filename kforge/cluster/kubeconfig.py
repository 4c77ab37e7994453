"""
Kubeconfig resolution.

Precedence:

1. an explicitly given path
2. with a platform configured: ``<asset_dir>/cluster-assets/auth/kubeconfig``,
   falling back to the ``kubeconfig`` Terraform output, which is then
   written to that path
3. without a platform: ``$KUBECONFIG``, then ``~/.kube/config``
"""

import logging
import os
from pathlib import Path
from typing import Callable, Optional

from kforge.errors import ConfigError
from kforge.terraform.executor import Executor

logger = logging.getLogger(__name__)

KUBECONFIG_ENV = "KUBECONFIG"
DEFAULT_KUBECONFIG = "~/.kube/config"
KUBECONFIG_OUTPUT = "kubeconfig"


def assets_kubeconfig(asset_dir: Path) -> Path:
    return Path(asset_dir).expanduser() / "cluster-assets" / "auth" / "kubeconfig"


def resolve_kubeconfig(
    explicit: Optional[Path] = None,
    asset_dir: Optional[Path] = None,
    executor_fn: Optional[Callable[[], Executor]] = None,
) -> Path:
    """
    Return the kubeconfig file to use.

    Raises:
        ConfigError: If no usable kubeconfig can be found
    """
    if explicit:
        return Path(explicit).expanduser()

    if asset_dir is None:
        env_value = os.environ.get(KUBECONFIG_ENV, "")
        first = env_value.split(os.pathsep)[0] if env_value else ""
        return Path(first or DEFAULT_KUBECONFIG).expanduser()

    path = assets_kubeconfig(asset_dir)
    if path.is_file() and path.stat().st_size > 0:
        return path

    if executor_fn is None:
        raise ConfigError(f"kubeconfig not found at {path}")

    logger.warning(
        "Kubeconfig file not found in assets directory, pulling kubeconfig from "
        "Terraform state, this might be slow. Run 'kforge cluster apply' to fix it."
    )
    content = executor_fn().output(KUBECONFIG_OUTPUT)
    if not content:
        raise ConfigError("Terraform state contains no kubeconfig")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    path.chmod(0o600)
    return path
