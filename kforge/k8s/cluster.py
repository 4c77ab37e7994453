"""Cluster-level queries: connectivity, node readiness and etcd health."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from kforge.errors import KubectlError
from kforge.k8s.kubectl import Kubectl


@dataclass
class NodeCondition:
    status: str
    reason: str = ""
    message: str = ""


@dataclass
class NodeStatus:
    """Observed nodes and their Ready condition, against the expected count."""

    expected_nodes: int
    conditions: Dict[str, Optional[NodeCondition]] = field(default_factory=dict)

    @classmethod
    def from_nodes(cls, nodes: List[Dict[str, Any]], expected_nodes: int) -> "NodeStatus":
        conditions: Dict[str, Optional[NodeCondition]] = {}
        for node in nodes:
            name = node.get("metadata", {}).get("name", "")
            ready = None
            for condition in node.get("status", {}).get("conditions", []) or []:
                if condition.get("type") == "Ready":
                    ready = NodeCondition(
                        status=condition.get("status", "Unknown"),
                        reason=condition.get("reason", ""),
                        message=condition.get("message", ""),
                    )
            conditions[name] = ready
        return cls(expected_nodes=expected_nodes, conditions=conditions)

    @property
    def missing(self) -> int:
        return max(self.expected_nodes - len(self.conditions), 0)

    def ready(self) -> bool:
        """True when every expected node is present and no Ready condition is false."""
        if len(self.conditions) < self.expected_nodes:
            return False

        for condition in self.conditions.values():
            if condition is not None and condition.status != "True":
                return False

        return True

    def pretty_print(self, console: Optional[Console] = None) -> None:
        console = console or Console()

        table = Table("Node", "Ready", "Reason", "Message")
        for name in sorted(self.conditions):
            condition = self.conditions[name]
            if condition is None:
                continue
            table.add_row(name, condition.status, condition.reason, condition.message)

        console.print(table)
        if self.missing:
            console.print(f"{self.missing} nodes are missing")


class Cluster:
    """A running cluster reachable through kubectl."""

    def __init__(self, kubectl: Kubectl, expected_nodes: int = 0):
        self.kubectl = kubectl
        self.expected_nodes = expected_nodes

    def ping(self) -> bool:
        """True if the API server answers a node listing."""
        try:
            self.kubectl.list_nodes()
        except KubectlError:
            return False
        return True

    def get_node_status(self) -> NodeStatus:
        return NodeStatus.from_nodes(self.kubectl.list_nodes(), self.expected_nodes)

    def etcd_health(self) -> List[Dict[str, Any]]:
        """Component statuses of etcd members only."""
        return [
            item
            for item in self.kubectl.list_component_statuses()
            if item.get("metadata", {}).get("name", "").startswith("etcd")
        ]


def print_component_statuses(components: List[Dict[str, Any]], console: Optional[Console] = None) -> None:
    console = console or Console()

    table = Table("Name", "Status", "Message", "Error")
    for item in components:
        name = item.get("metadata", {}).get("name", "")
        for condition in item.get("conditions", []) or []:
            table.add_row(
                name,
                condition.get("status", ""),
                condition.get("message", ""),
                condition.get("error", ""),
            )
    console.print(table)
