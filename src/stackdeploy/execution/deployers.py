"""Deployers - the per-dependency lifecycle capability injected into the runner.

The runner never knows how a dependency is deployed. It hands each node and
an OperationContext to a Deployer and records whatever comes back (or is
raised).

Implementations:
---------------
CommandDeployer:
    Runs the shell commands declared by each deployment of the dependency's
    project file, inside the dependency's checkout:
      deploy -> build commands (unless build is skipped), then deploy commands,
                deployments in declaration order
      purge  -> purge commands, deployments in reverse declaration order,
                limited to the context's selected deployments when given

DryRunDeployer:
    Reports the commands CommandDeployer would run without running anything.
"""

import asyncio
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from ..dependency.graph import DependencyNode
from ..utils.exceptions import CommandError
from .output import OutputSink

if TYPE_CHECKING:
    from .runner import CancellationToken

logger = structlog.get_logger(__name__)


@dataclass
class OperationContext:
    """
    Everything a Deployer gets besides the node itself.

    Attributes:
        output: Sink for the operation's output lines
        skip_build: Deploy without rebuilding
        cancel_token: Run-wide cancellation token
        dry_run: Report only, change nothing
        deployments: Names of the deployments to purge (None = all of them)
    """

    output: OutputSink
    skip_build: bool = False
    cancel_token: "CancellationToken | None" = None
    dry_run: bool = False
    deployments: list[str] | None = None


class Deployer(ABC):
    """Deploys and purges a single dependency."""

    @abstractmethod
    async def deploy(self, node: DependencyNode, context: OperationContext) -> None:
        """
        Deploy a dependency.

        Raises:
            Exception: Any failure; the runner records it against the node
        """

    @abstractmethod
    async def purge(self, node: DependencyNode, context: OperationContext) -> None:
        """
        Remove a dependency's deployments.

        Raises:
            Exception: Any failure; the runner records it against the node
        """


def _deploy_commands(node: DependencyNode, skip_build: bool) -> list[str]:
    commands: list[str] = []
    for deployment in node.config.deployments:
        if not skip_build:
            commands.extend(deployment.build)
        commands.extend(deployment.deploy)
    return commands


def _purge_commands(node: DependencyNode, selected: list[str] | None) -> list[str]:
    commands: list[str] = []
    for deployment in reversed(node.config.deployments):
        if selected is not None and deployment.name not in selected:
            continue
        commands.extend(deployment.purge)
    return commands


class CommandDeployer(Deployer):
    """
    Run a dependency's declared commands with ``asyncio`` subprocesses.

    stdout and stderr are merged and forwarded line by line to the context's
    output sink. The first command exiting non-zero fails the operation.
    """

    def __init__(self, shell: str | None = None, env: dict[str, str] | None = None) -> None:
        """
        Initialize deployer.

        Args:
            shell: Shell executable (defaults to the platform shell)
            env: Extra environment variables for every command
        """
        self.shell = shell
        self.env = env or {}

    async def deploy(self, node: DependencyNode, context: OperationContext) -> None:
        commands = _deploy_commands(node, context.skip_build)
        if context.skip_build:
            context.output.write("Skipping build (sources unchanged)")
        await self._run_all(node, commands, context)

    async def purge(self, node: DependencyNode, context: OperationContext) -> None:
        await self._run_all(node, _purge_commands(node, context.deployments), context)

    async def _run_all(self, node: DependencyNode, commands: list[str], context: OperationContext) -> None:
        if not commands:
            context.output.write("Nothing to run")
            return
        for command in commands:
            await self._run(node, command, context)

    async def _run(self, node: DependencyNode, command: str, context: OperationContext) -> None:
        logger.debug("Running command", node_id=node.id, dependency=node.name, command=command)
        context.output.write(f"$ {command}")

        env = {
            **os.environ,
            **self.env,
            "STACKDEPLOY_DEPENDENCY": node.name,
            "STACKDEPLOY_PROFILE": node.declaration.profile or "",
        }
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=str(node.resolved_path),
            env=env,
            executable=self.shell,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )

        try:
            if process.stdout is not None:
                async for raw in process.stdout:
                    context.output.write(raw.decode("utf-8", errors="replace"))
            returncode = await process.wait()
        except asyncio.CancelledError:
            # Timed out: do not leave the command running behind the run
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        if returncode != 0:
            raise CommandError(command, returncode)


class DryRunDeployer(Deployer):
    """Write the commands that would run to the output sink."""

    async def deploy(self, node: DependencyNode, context: OperationContext) -> None:
        for command in _deploy_commands(node, context.skip_build):
            context.output.write(f"would run: {command}")

    async def purge(self, node: DependencyNode, context: OperationContext) -> None:
        for command in _purge_commands(node, context.deployments):
            context.output.write(f"would run: {command}")
