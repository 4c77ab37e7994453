"""Manual DNS configuration prompt used between apply steps."""

import logging
import socket
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from rich.console import Console

from kforge.errors import ConfigError, ExecutionError
from kforge.terraform.executor import Executor

logger = logging.getLogger(__name__)

DNS_ENTRIES_OUTPUT = "dns_entries"
MANUAL = "manual"
PROVIDERS = (MANUAL, "route53")


@dataclass
class DnsEntry:
    name: str
    type: str
    ttl: int = 300
    records: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DnsEntry":
        return cls(
            name=data.get("name", ""),
            type=data.get("type", ""),
            ttl=int(data.get("ttl", 300)),
            records=list(data.get("records") or []),
        )


def parse_provider(config: Dict[str, Any]) -> str:
    """
    Return the configured DNS provider name.

    Raises:
        ConfigError: If zero or several providers are configured
    """
    provider = config.get("provider") or {}
    if isinstance(provider, str):
        provider = {provider: {}}

    chosen = [name for name in PROVIDERS if name in provider]
    if len(chosen) > 1:
        raise ConfigError("multiple DNS providers specified")
    if not chosen:
        raise ConfigError("no DNS provider specified")
    return chosen[0]


def read_dns_entries(executor: Executor) -> List[DnsEntry]:
    try:
        raw = executor.output(DNS_ENTRIES_OUTPUT)
    except ExecutionError as e:
        raise ExecutionError(f"failed to get DNS entries: {e}") from e
    return [DnsEntry.from_dict(entry) for entry in raw or []]


def print_dns_entries(entries: List[DnsEntry], console: Console) -> None:
    separator = "-" * 72
    console.print(separator)
    for entry in entries:
        console.print(f"Name: {entry.name}")
        console.print(f"Type: {entry.type}")
        console.print(f"Ttl: {entry.ttl}")
        console.print("Records:")
        for record in entry.records:
            console.print(f"- {record}")
        console.print(separator)


def check_dns_entries(entries: List[DnsEntry]) -> bool:
    """True if every entry resolves to exactly its expected records."""
    for entry in entries:
        try:
            infos = socket.getaddrinfo(entry.name, None)
        except OSError:
            return False

        resolved = sorted({info[4][0] for info in infos})
        if resolved != sorted(entry.records):
            return False

    return True


def ask_to_configure(
    executor: Executor,
    zone: str,
    input_fn: Callable[[str], str] = input,
    console: Console = None,
    checker: Callable[[List[DnsEntry]], bool] = check_dns_entries,
) -> None:
    """Show the DNS entries to create and wait until they resolve or the operator skips."""
    console = console or Console()
    entries = read_dns_entries(executor)

    console.print(f"Please configure the following DNS entries at the DNS provider which hosts '{zone}':")
    print_dns_entries(entries, console)

    while True:
        try:
            answer = input_fn('Press Enter to check the entries or type "skip" to continue the installation: ')
        except EOFError:
            answer = "skip"

        answer = answer.strip()
        if answer == "skip":
            logger.warning("Skipping DNS entry verification")
            return
        if answer:
            continue

        if checker(entries):
            return

        console.print("Entries are not correctly configured, please verify.")
