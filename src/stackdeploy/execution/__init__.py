"""Execution engine for deploying and purging dependencies."""

from .deployers import CommandDeployer, Deployer, DryRunDeployer, OperationContext
from .output import BufferedSink, ConsoleWriter, OutputSink, StreamingSink
from .planner import Direction, ExecutionPlan, ExecutionPlanner, Wave, plan
from .runner import CancellationToken, DependencyRunner, RunOptions

__all__ = [
    "BufferedSink",
    "CancellationToken",
    "CommandDeployer",
    "ConsoleWriter",
    "DependencyRunner",
    "Deployer",
    "Direction",
    "DryRunDeployer",
    "ExecutionPlan",
    "ExecutionPlanner",
    "OperationContext",
    "OutputSink",
    "RunOptions",
    "StreamingSink",
    "Wave",
    "plan",
]
