"""Dependency Runner - execute an ExecutionPlan wave by wave.

Execution Strategy:
------------------
1. Sequential waves: every node of wave N finishes before wave N+1 starts.
2. Parallel nodes within a wave, bounded by ``RunOptions.concurrency``
   (an asyncio.Semaphore) and joined with asyncio.gather.
3. A failed node never stops its siblings. Everything that transitively
   depends on it for the plan's direction is marked skipped instead of run.

Output:
------
Verbose runs stream each node's lines as they arrive, tagged with the node
name. Otherwise the lines are buffered per node and flushed as one block when
the node finishes.

Cancellation and timeouts:
-------------------------
Once the CancellationToken is cancelled no further node is dispatched; nodes
already running finish. ``node_timeout`` bounds each operation and
``run_timeout`` the whole run; an expiry fails the node with NodeTimeoutError.

State cache:
-----------
Before a deploy, the build is skipped when the declaration asks for it, or
when the cached fingerprint matches and the last deploy of the node succeeded
(unless forced). A purge outcome never counts as a successful build.
After each executed node the cache entry is written, success or failure.
"""

import asyncio
import time
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import datetime

import structlog
from rich.console import Console

from ..dependency.graph import DependencyNode
from ..models.results import (
    SKIPPED_DUE_TO_DEPENDENCY_FAILURE,
    NodeResult,
    NodeStatus,
    RunResult,
)
from ..observability.logger import LogContext
from ..persistence.state_cache import StateCache, StateEntry
from ..utils.exceptions import NodeOperationError, NodeTimeoutError
from .deployers import Deployer, OperationContext
from .output import BufferedSink, ConsoleWriter, OutputSink, StreamingSink
from .planner import Direction, ExecutionPlan

logger = structlog.get_logger(__name__)


class CancellationToken:
    """
    Run-wide cancellation flag.

    Usage:
        token = CancellationToken()
        loop.add_signal_handler(signal.SIGINT, token.cancel)
        await runner.run(plan, options, cancel_token=token)
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        if not self._event.is_set():
            logger.warning("Run cancellation requested")
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()


@dataclass
class RunOptions:
    """
    Options for a single run.

    Attributes:
        verbose: Stream node output live instead of buffering it
        concurrency: Max nodes running at once within a wave (None = unbounded)
        node_timeout: Seconds allowed per node operation
        run_timeout: Seconds allowed for the whole run
        force: Always rebuild, ignoring cached fingerprints
        dry_run: Do not persist state (the deployer decides what else that means)
        deployments: Deployments of the root project to purge (None = all)
    """

    verbose: bool = False
    concurrency: int | None = None
    node_timeout: float | None = None
    run_timeout: float | None = None
    force: bool = False
    dry_run: bool = False
    deployments: list[str] | None = None


class DependencyRunner:
    """Run deploy or purge operations for every node of a plan."""

    def __init__(
        self,
        deployer: Deployer,
        state_cache: StateCache | None = None,
        console: Console | None = None,
    ) -> None:
        """
        Initialize runner.

        Args:
            deployer: Performs the per-node deploy/purge
            state_cache: Optional cache of fingerprints and last outcomes
            console: Console node output is written to
        """
        self.deployer = deployer
        self.state_cache = state_cache
        self.writer = ConsoleWriter(console)

    async def run(
        self,
        plan: ExecutionPlan,
        options: RunOptions | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> RunResult:
        """
        Execute all waves of a plan.

        Execution Guarantees:
        1. All nodes of a wave complete before the next wave starts
        2. Failed nodes don't prevent independent nodes from completing
        3. Every planned node ends up in exactly one of succeeded, failed,
           skipped or cancelled

        Args:
            plan: Execution plan to run
            options: Run options
            cancel_token: Token that stops dispatching further nodes

        Returns:
            RunResult aggregated over all planned nodes
        """
        if plan.graph is None:
            raise ValueError("Execution plan has no graph attached")

        options = options or RunOptions()
        token = cancel_token or CancellationToken()
        semaphore = asyncio.Semaphore(options.concurrency) if options.concurrency else None
        loop = asyncio.get_running_loop()
        deadline = loop.time() + options.run_timeout if options.run_timeout else None

        result = RunResult(direction=plan.direction.value, started_at=datetime.now())
        blocked: set[str] = set()

        logger.info(
            "Starting run",
            direction=plan.direction.value,
            nodes=plan.node_count,
            waves=len(plan.waves),
            concurrency=options.concurrency or "unbounded",
            dry_run=options.dry_run,
        )

        for wave in plan.waves:
            runnable: list[DependencyNode] = []
            for node_id in wave.node_ids:
                node = plan.graph.get(node_id)
                if node_id in blocked:
                    result.record(
                        NodeResult(
                            node_id=node_id,
                            name=node.name,
                            status=NodeStatus.SKIPPED,
                            reason=SKIPPED_DUE_TO_DEPENDENCY_FAILURE,
                            wave=wave.index,
                        )
                    )
                elif token.cancelled:
                    result.record(self._cancelled(node, wave.index))
                else:
                    runnable.append(node)

            if not runnable:
                continue

            logger.info("Executing wave", wave=wave.index, nodes=len(runnable))

            outcomes = await asyncio.gather(
                *(
                    self._run_node(plan, node, wave.index, options, token, semaphore, deadline)
                    for node in runnable
                )
            )

            for outcome in outcomes:
                result.record(outcome)
                if outcome.status == NodeStatus.FAILED:
                    self._block_dependents(plan, outcome.node_id, blocked)

            logger.info(
                "Wave completed",
                wave=wave.index,
                succeeded=sum(1 for o in outcomes if o.status == NodeStatus.SUCCEEDED),
                failed=sum(1 for o in outcomes if o.status == NodeStatus.FAILED),
                cancelled=sum(1 for o in outcomes if o.status == NodeStatus.CANCELLED),
            )

        result.completed_at = datetime.now()
        logger.info(
            "Run complete",
            direction=plan.direction.value,
            succeeded=len(result.succeeded),
            failed=len(result.failed),
            skipped=len(result.skipped),
            cancelled=len(result.cancelled),
            duration_seconds=f"{result.duration_seconds:.2f}",
        )
        return result

    async def _run_node(
        self,
        plan: ExecutionPlan,
        node: DependencyNode,
        wave: int,
        options: RunOptions,
        token: CancellationToken,
        semaphore: asyncio.Semaphore | None,
        deadline: float | None,
    ) -> NodeResult:
        async with semaphore or nullcontext():
            # Cancelled while waiting for a slot: never dispatched
            if token.cancelled:
                return self._cancelled(node, wave)

            with LogContext(node_id=node.id, dependency=node.name):
                return await self._execute(plan, node, wave, options, token, deadline)

    async def _execute(
        self,
        plan: ExecutionPlan,
        node: DependencyNode,
        wave: int,
        options: RunOptions,
        token: CancellationToken,
        deadline: float | None,
    ) -> NodeResult:
        sink: OutputSink
        if options.verbose:
            sink = StreamingSink(node.name, self.writer)
        else:
            sink = BufferedSink(node.name, self.writer)

        skip_build = plan.direction == Direction.DEPLOY and self._should_skip_build(node, options)
        context = OperationContext(
            output=sink,
            skip_build=skip_build,
            cancel_token=token,
            dry_run=options.dry_run,
            deployments=options.deployments if node.id == plan.graph.root else None,
        )

        if plan.direction == Direction.DEPLOY:
            operation = self.deployer.deploy
        else:
            operation = self.deployer.purge

        timeout = self._timeout(options, deadline)
        error: NodeOperationError | None = None
        start = time.monotonic()

        logger.info("Node started", direction=plan.direction.value, skip_build=skip_build)
        try:
            if timeout is not None and timeout <= 0:
                raise NodeTimeoutError(node.id, options.run_timeout or 0.0)
            await asyncio.wait_for(operation(node, context), timeout)
        except asyncio.TimeoutError:
            error = NodeTimeoutError(node.id, timeout or 0.0)
        except NodeOperationError as e:
            error = e
        except Exception as e:
            error = NodeOperationError(
                node.id, f"{plan.direction.value} of '{node.name}' failed", cause=e
            )
        finally:
            sink.flush()

        duration_ms = (time.monotonic() - start) * 1000
        status = NodeStatus.SUCCEEDED if error is None else NodeStatus.FAILED

        if error is None:
            logger.info("Node succeeded", duration_ms=round(duration_ms, 1))
        else:
            logger.error(
                "Node failed",
                error=str(error),
                cause=str(error.cause) if error.cause else None,
                duration_ms=round(duration_ms, 1),
            )

        if self.state_cache is not None and not options.dry_run:
            self.state_cache.put(
                node.id,
                StateEntry(
                    id=node.id,
                    name=node.name,
                    last_fingerprint=node.fingerprint,
                    last_run_status=status.value,
                    last_operation=plan.direction.value,
                ),
            )

        return NodeResult(
            node_id=node.id,
            name=node.name,
            status=status,
            error=error,
            duration_ms=duration_ms,
            build_skipped=skip_build,
            wave=wave,
        )

    def _should_skip_build(self, node: DependencyNode, options: RunOptions) -> bool:
        if node.declaration.skip_build:
            return True
        if options.force or self.state_cache is None or not node.fingerprint:
            return False

        entry = self.state_cache.get(node.id)
        return (
            entry is not None
            and entry.last_fingerprint == node.fingerprint
            and entry.last_operation == Direction.DEPLOY.value
            and entry.last_run_status == NodeStatus.SUCCEEDED.value
        )

    @staticmethod
    def _timeout(options: RunOptions, deadline: float | None) -> float | None:
        """Effective time budget of a node: the tighter of node and run limits."""
        timeout = options.node_timeout
        if deadline is not None:
            remaining = deadline - asyncio.get_running_loop().time()
            timeout = remaining if timeout is None else min(timeout, remaining)
        return timeout

    @staticmethod
    def _cancelled(node: DependencyNode, wave: int) -> NodeResult:
        return NodeResult(
            node_id=node.id,
            name=node.name,
            status=NodeStatus.CANCELLED,
            reason="run cancelled",
            wave=wave,
        )

    @staticmethod
    def _block_dependents(plan: ExecutionPlan, failed_id: str, blocked: set[str]) -> None:
        """Mark everything that transitively depends on ``failed_id`` as blocked."""
        to_visit = plan.dependents(failed_id)
        while to_visit:
            dependent_id = to_visit.pop()
            if dependent_id in blocked:
                continue
            blocked.add(dependent_id)

            logger.warning(
                "Dependency skipped due to failure",
                node_id=dependent_id,
                failed_node_id=failed_id,
            )
            to_visit.extend(plan.dependents(dependent_id))
