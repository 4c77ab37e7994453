"""Preparation of the Terraform root directory inside an asset directory."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

TERRAFORM_DIR = "terraform"
BACKEND_FILE = "backend.tf.json"


def terraform_root_dir(asset_dir: Path) -> Path:
    return Path(asset_dir) / TERRAFORM_DIR


def configure(asset_dir: Path, backend: Optional[Dict[str, Any]] = None) -> Path:
    """
    Create the Terraform root directory and write the backend file.

    Args:
        asset_dir: Cluster asset directory
        backend: Rendered backend block, e.g. ``{"s3": {...}}``. When None
            any previous backend file is removed and Terraform falls back to
            local state.

    Returns:
        Path to the Terraform root directory
    """
    root = terraform_root_dir(asset_dir)
    root.mkdir(parents=True, exist_ok=True)

    backend_path = root / BACKEND_FILE
    if backend is None:
        if backend_path.exists():
            backend_path.unlink()
        return root

    document = {"terraform": {"backend": backend}}
    backend_path.write_text(json.dumps(document, indent=2) + "\n")
    logger.debug(f"Wrote Terraform backend configuration to {backend_path}")
    return root
