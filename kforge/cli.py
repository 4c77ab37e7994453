"""
CLI interface for kforge.

Provides command groups: cluster (apply, destroy, health, certificate rotate)
and component (apply, delete, render-manifest).
"""

import logging
import sys
from pathlib import Path
from typing import Callable, Optional

import click

from kforge import __version__
from kforge.cluster import (
    ClusterSession,
    OperationResult,
    apply_cluster,
    cluster_health,
    component_apply,
    component_delete,
    component_render_manifest,
    destroy_cluster,
    rotate_certificates,
)
from kforge.config import load_config
from kforge.errors import KforgeError, OperationCancelled
from kforge.options import (
    ApplyOptions,
    CertificateRotateOptions,
    ComponentOptions,
    DestroyOptions,
    HealthOptions,
)
from kforge.terraform.signals import CancellationToken, interrupt_handler
from kforge.utils import (
    format_duration,
    print_banner,
    print_error,
    print_info,
    print_warning,
    setup_logging,
)

logger = logging.getLogger(__name__)


def config_options(func):
    """Add the --config and --values options shared by every command."""
    func = click.option(
        "--values",
        "values_path",
        type=click.Path(path_type=Path),
        help="Values file interpolated into the configuration (default: kforge.vars.yaml)",
    )(func)
    func = click.option(
        "--config",
        "config_path",
        type=click.Path(path_type=Path),
        help="Cluster configuration file (default: kforge.yaml)",
    )(func)
    return func


def kubeconfig_option(func):
    return click.option(
        "--kubeconfig-file",
        "kubeconfig_path",
        type=click.Path(path_type=Path),
        help="Path to a kubeconfig file",
    )(func)


def error_chain(error: BaseException) -> str:
    """Render an exception and its causes as one line."""
    messages = []
    current: Optional[BaseException] = error
    while current is not None:
        text = str(current)
        if text and not any(text in m for m in messages):
            messages.append(text)
        current = current.__cause__
    return ": caused by: ".join(messages) if messages else type(error).__name__


def run_command(
    verbose: bool,
    action: Callable[[CancellationToken], Optional[OperationResult]],
) -> None:
    """
    Run one command with logging set up and SIGINT routed to cancellation.

    Any kforge error is reported and turns into exit status 1.
    """
    root = click.get_current_context().find_root()
    log_file = (root.obj or {}).get("log_file")
    setup_logging(log_level="DEBUG" if verbose else "INFO", log_file=log_file)
    token = CancellationToken()

    try:
        with interrupt_handler(token):
            result = action(token)
    except OperationCancelled as e:
        print_warning(str(e))
        sys.exit(1)
    except KforgeError as e:
        logger.debug("Command failed", exc_info=True)
        print_error(error_chain(e))
        sys.exit(1)

    if result is not None and result.stages:
        print_info(f"Finished in {format_duration(result.duration_seconds)}")


def make_session(
    config_path: Optional[Path],
    values_path: Optional[Path],
    token: CancellationToken,
    verbose: bool = False,
    require_platform: bool = True,
) -> ClusterSession:
    config = load_config(config_path, values_path)
    return ClusterSession(
        config,
        verbose=verbose,
        require_platform=require_platform,
        cancellation=token,
    )


@click.group()
@click.version_option(version=__version__, prog_name="kforge")
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    envvar="KFORGE_LOG_FILE",
    help="Also write JSON log records to this file",
)
@click.pass_context
def main(ctx, log_file):
    """
    kforge - Kubernetes cluster lifecycle orchestrator.

    Provisions clusters through Terraform and keeps them up to date.
    """
    ctx.ensure_object(dict)
    ctx.obj["log_file"] = log_file


@main.group()
def cluster():
    """Manage a cluster."""
    pass


@cluster.command()
@config_options
@click.option("--confirm", is_flag=True, help="Upgrade the cluster without asking for confirmation")
@click.option("--verbose", is_flag=True, help="Show output from Terraform")
@click.option("--skip-components", is_flag=True, help="Skip applying component configuration")
@click.option("--upgrade-kubelets", is_flag=True, help="Upgrade the kubelet release as well")
def apply(config_path, values_path, confirm, verbose, skip_components, upgrade_kubelets):
    """
    Deploy or update a cluster.

    Examples:

      # Create or reconcile the cluster in kforge.yaml
      kforge cluster apply

      # Non-interactive, including kubelets
      kforge cluster apply --confirm --upgrade-kubelets
    """
    options = ApplyOptions(
        confirm=confirm,
        upgrade_kubelets=upgrade_kubelets,
        skip_components=skip_components,
        verbose=verbose,
        config_path=config_path,
        values_path=values_path,
    )

    def action(token):
        session = make_session(config_path, values_path, token, verbose=verbose)
        print_banner("Cluster apply")
        return apply_cluster(options, session)

    run_command(verbose, action)


@cluster.command()
@config_options
@click.option("--confirm", is_flag=True, help="Destroy the cluster without asking for confirmation")
@click.option("--verbose", is_flag=True, help="Show output from Terraform")
def destroy(config_path, values_path, confirm, verbose):
    """Destroy a cluster."""
    options = DestroyOptions(
        confirm=confirm, verbose=verbose, config_path=config_path, values_path=values_path
    )

    def action(token):
        session = make_session(config_path, values_path, token, verbose=verbose)
        print_banner("Cluster destroy")
        return destroy_cluster(options, session)

    run_command(verbose, action)


@cluster.command()
@config_options
@kubeconfig_option
def health(config_path, values_path, kubeconfig_path):
    """Get the health of a cluster."""
    options = HealthOptions(
        config_path=config_path, values_path=values_path, kubeconfig_path=kubeconfig_path
    )

    def action(token):
        session = make_session(config_path, values_path, token, require_platform=False)
        return cluster_health(options, session)

    run_command(False, action)


@cluster.group()
def certificate():
    """Manage cluster certificates."""
    pass


@certificate.command()
@config_options
@click.option("--confirm", is_flag=True, help="Rotate certificates without asking for confirmation")
@click.option("--verbose", is_flag=True, help="Show output from Terraform")
def rotate(config_path, values_path, confirm, verbose):
    """Rotate the certificates of a cluster."""
    options = CertificateRotateOptions(
        confirm=confirm, verbose=verbose, config_path=config_path, values_path=values_path
    )

    def action(token):
        session = make_session(config_path, values_path, token, verbose=verbose)
        print_banner("Certificate rotation")
        return rotate_certificates(options, session)

    run_command(verbose, action)


@main.group()
def component():
    """Manage cluster components."""
    pass


@component.command("apply")
@click.argument("names", nargs=-1)
@config_options
@kubeconfig_option
@click.option("--verbose", is_flag=True, help="Enable debug logging")
def component_apply_cmd(names, config_path, values_path, kubeconfig_path, verbose):
    """
    Apply components.

    Without NAMES every configured component is applied in configuration order.
    """
    options = ComponentOptions(
        names=list(names),
        config_path=config_path,
        values_path=values_path,
        kubeconfig_path=kubeconfig_path,
    )

    def action(token):
        session = make_session(config_path, values_path, token, require_platform=False)
        return component_apply(options, session)

    run_command(verbose, action)


@component.command("delete")
@click.argument("names", nargs=-1)
@config_options
@kubeconfig_option
@click.option("--confirm", is_flag=True, help="Delete components without asking for confirmation")
@click.option("--delete-namespace", is_flag=True, help="Also delete the component namespaces")
@click.option("--verbose", is_flag=True, help="Enable debug logging")
def component_delete_cmd(names, config_path, values_path, kubeconfig_path, confirm, delete_namespace, verbose):
    """Delete components."""
    options = ComponentOptions(
        names=list(names),
        confirm=confirm,
        delete_namespace=delete_namespace,
        config_path=config_path,
        values_path=values_path,
        kubeconfig_path=kubeconfig_path,
    )

    def action(token):
        session = make_session(config_path, values_path, token, require_platform=False)
        return component_delete(options, session)

    run_command(verbose, action)


@component.command("render-manifest")
@click.argument("names", nargs=-1)
@config_options
def component_render_manifest_cmd(names, config_path, values_path):
    """Print the rendered manifests of components."""
    options = ComponentOptions(
        names=list(names), config_path=config_path, values_path=values_path
    )

    def action(token):
        session = make_session(config_path, values_path, token, require_platform=False)
        component_render_manifest(options, sys.stdout, session)
        return None

    run_command(False, action)


if __name__ == "__main__":
    main()
