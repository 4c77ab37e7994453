"""Component apply, delete and manifest rendering."""

import logging
from pathlib import Path
from typing import IO, List, Optional

from kforge.cluster.session import ClusterSession, OperationResult
from kforge.config import load_config
from kforge.options import ComponentOptions
from kforge.utils import ask_for_confirmation, print_success

logger = logging.getLogger(__name__)


def apply_components(session: ClusterSession, kubeconfig: Path, names: List[str]) -> None:
    """Install components strictly in the given order; the first failure stops the rest."""
    for name in names:
        session.cancellation.raise_if_cancelled()
        session.console.print(f"Applying component '{name}'...")

        component = session.component(name)
        component.install(kubeconfig)

        print_success(f"Successfully applied component '{name}' configuration!")


def _session(options: ComponentOptions, session: Optional[ClusterSession]) -> ClusterSession:
    if session is not None:
        return session
    config = load_config(options.config_path, options.values_path)
    return ClusterSession(config, require_platform=False)


def component_apply(options: ComponentOptions, session: Optional[ClusterSession] = None) -> OperationResult:
    session = _session(options, session)

    with session.stage("apply-components"):
        names = session.select_component_names(options.names)
        kubeconfig = session.kubeconfig(options.kubeconfig_path)
        apply_components(session, kubeconfig, names)

    return session.result("component-apply")


def component_delete(options: ComponentOptions, session: Optional[ClusterSession] = None) -> OperationResult:
    session = _session(options, session)
    names = session.select_component_names(options.names)

    if not options.confirm:
        listing = "\n\t".join(names)
        question = (
            f"The following components will be deleted:\n\t{listing}\n\n"
            "Are you sure you want to proceed?"
        )
        if not ask_for_confirmation(question, session.input_fn):
            session.console.print("Components deletion cancelled.")
            return session.result("component-delete", cancelled=True)

    with session.stage("delete-components"):
        kubeconfig = session.kubeconfig(options.kubeconfig_path)
        kubectl = session.kubectl_factory(kubeconfig)

        for name in names:
            session.cancellation.raise_if_cancelled()
            session.console.print(f"Deleting component '{name}'...")

            component = session.component(name)
            component.uninstall(kubeconfig)

            if options.delete_namespace:
                namespace = component.metadata().namespace
                logger.info(f"Deleting namespace '{namespace}' of component '{name}'")
                kubectl.delete("namespace", namespace)

            print_success(f"Successfully deleted component '{name}'!")

    return session.result("component-delete")


def component_render_manifest(
    options: ComponentOptions,
    stream: IO[str],
    session: Optional[ClusterSession] = None,
) -> None:
    """Write rendered manifests of the selected components to stream."""
    session = _session(options, session)

    for name in session.select_component_names(options.names):
        manifests = session.component(name).render_manifests()

        stream.write(f"# manifests for component {name}\n")
        for filename in sorted(manifests):
            stream.write(f"\n---\n# {filename}\n{manifests[filename]}\n")
