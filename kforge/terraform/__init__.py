"""Terraform integration: process executor, workspace preparation and cancellation."""

from kforge.terraform.executor import (
    ExecutionStatus,
    ExecutionStep,
    Executor,
    ExecutorConfig,
    Invocation,
)
from kforge.terraform.signals import CancellationToken, interrupt_handler

__all__ = [
    "CancellationToken",
    "ExecutionStatus",
    "ExecutionStep",
    "Executor",
    "ExecutorConfig",
    "Invocation",
    "interrupt_handler",
]
