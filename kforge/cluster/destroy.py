"""Cluster destroy."""

import logging
from typing import Optional

from kforge.cluster.session import ClusterSession, OperationResult
from kforge.config import load_config
from kforge.options import DestroyOptions
from kforge.utils import ask_for_confirmation, print_success

logger = logging.getLogger(__name__)


class DestroyOrchestrator:
    """Tears a cluster down after confirmation."""

    def __init__(self, session: ClusterSession, options: DestroyOptions):
        self.session = session
        self.options = options

    def run(self) -> OperationResult:
        session = self.session

        with session.stage("initialize"):
            executor = session.initialize()

        with session.stage("check-existence"):
            exists = session.cluster_exists()

        if not exists:
            session.console.print("Cluster already destroyed, nothing to do")
            return session.result("destroy", cluster_existed=False)

        if not self.options.confirm:
            question = "WARNING: This action cannot be undone. Do you really want to destroy the cluster?"
            if not ask_for_confirmation(question, session.input_fn):
                session.console.print("Cluster destroy canceled")
                return session.result("destroy", cancelled=True, cluster_existed=True)

        with session.stage("destroy-infrastructure"):
            session.platform.destroy(executor)

        print_success("Cluster destroyed successfully")
        session.console.print("You can safely remove the assets directory now")
        return session.result("destroy", cluster_existed=True)


def destroy_cluster(options: DestroyOptions, session: Optional[ClusterSession] = None) -> OperationResult:
    if session is None:
        config = load_config(options.config_path, options.values_path)
        session = ClusterSession(config, verbose=options.verbose)
    return DestroyOrchestrator(session, options).run()
