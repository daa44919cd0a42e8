"""Command-line interface for stackdeploy."""

import asyncio
import signal
from dataclasses import dataclass
from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from .config import ToolConfig, load_config
from .constants import VERSION
from .dependency import DependencyGraph, build_graph
from .execution import (
    CancellationToken,
    CommandDeployer,
    DependencyRunner,
    Direction,
    DryRunDeployer,
    ExecutionPlan,
    ExecutionPlanner,
    RunOptions,
)
from .models.results import RunResult
from .observability import (
    ReportGenerator,
    add_context,
    clear_all_context,
    configure_logging,
    render_summary,
)
from .persistence import SQLiteStateCache, StateCache
from .sources import DefaultSourceResolver, YAMLConfigLoader, find_project_file
from .utils.exceptions import SourceResolutionError, StackDeployError

app = typer.Typer(
    name="stackdeploy",
    help="stackdeploy - deploy a project together with the projects it depends on",
    add_completion=False,
)

console = Console()
logger = structlog.get_logger(__name__)

EXIT_RUN_FAILED = 1
EXIT_SETUP_FAILED = 2


@dataclass
class CLIState:
    """Global options shared by all commands."""

    project: Path = Path(".")
    config_file: Path | None = None
    log_level: str | None = None
    json_logs: bool = False


@app.callback()
def main(
    ctx: typer.Context,
    project: Path = typer.Option(
        Path("."), "--project", "-p", help="Project file or directory containing stackdeploy.yaml"
    ),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="Tool configuration file"),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        help="Log verbosity: DEBUG, INFO, WARNING, ERROR",
    ),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON"),
) -> None:
    """Deploy, purge and inspect a project and its dependencies."""
    ctx.obj = CLIState(
        project=project,
        config_file=config_file,
        log_level=log_level,
        json_logs=json_logs,
    )


def _setup(state: CLIState) -> tuple[ToolConfig, Path]:
    """Load tool config, configure logging and locate the project file."""
    try:
        config = load_config(state.config_file)
        project_file = find_project_file(state.project)
    except (FileNotFoundError, StackDeployError) as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        raise typer.Exit(code=EXIT_SETUP_FAILED) from e

    configure_logging(
        level=state.log_level or config.logging.level,
        json_logs=state.json_logs or config.logging.format == "json",
        log_file=config.logging.file,
    )
    return config, project_file


def _work_path(project_dir: Path, configured: str) -> Path:
    path = Path(configured).expanduser()
    return path if path.is_absolute() else project_dir / path


def _build(
    config: ToolConfig,
    project_file: Path,
    profile: str | None,
    allow_cycles: bool,
) -> DependencyGraph:
    """Load the root project and resolve its dependency graph."""
    project_dir = project_file.parent.resolve()
    loader = YAMLConfigLoader()
    resolver = DefaultSourceResolver(
        cache_dir=_work_path(project_dir, config.sources.cache_dir),
        git_binary=config.sources.git_binary,
    )

    try:
        root_config = loader.load(project_file, profile=profile)
        with console.status("[cyan]Resolving dependencies..."):
            return build_graph(
                root_config,
                project_dir,
                loader,
                resolver,
                allow_cycles=allow_cycles or config.sources.allow_cycles,
            )
    except SourceResolutionError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        for path, cause in e.failures.items():
            console.print(f"  [red]-[/red] {path}: {cause}")
        raise typer.Exit(code=EXIT_SETUP_FAILED) from e
    except StackDeployError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        raise typer.Exit(code=EXIT_SETUP_FAILED) from e


def _plan(
    graph: DependencyGraph,
    direction: Direction,
    targets: list[str] | None,
    skip_dependencies: bool = False,
) -> ExecutionPlan:
    try:
        return ExecutionPlanner().create_plan(
            graph, direction, targets=targets, skip_dependencies=skip_dependencies
        )
    except StackDeployError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        raise typer.Exit(code=EXIT_SETUP_FAILED) from e


async def _run(runner: DependencyRunner, plan: ExecutionPlan, options: RunOptions) -> RunResult:
    """Run a plan, turning SIGINT into a graceful cancellation."""
    token = CancellationToken()
    loop = asyncio.get_running_loop()

    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        logger.debug("SIGINT handler unavailable, Ctrl+C will abort immediately")
        handler_installed = False

    try:
        return await runner.run(plan, options, cancel_token=token)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)


def _execute(
    config: ToolConfig,
    project_file: Path,
    plan: ExecutionPlan,
    options: RunOptions,
    report: Path | None,
) -> None:
    """Run a plan with the command deployer and report the outcome."""
    project_dir = project_file.parent.resolve()
    deployer = DryRunDeployer() if options.dry_run else CommandDeployer()

    state_cache: StateCache | None = None
    if config.state.enabled:
        state_cache = SQLiteStateCache(_work_path(project_dir, config.state.db_path))

    # Every event of the run carries the operation and project
    add_context(run=plan.direction.value, project=project_dir.name)
    try:
        runner = DependencyRunner(deployer, state_cache=state_cache, console=console)
        result = asyncio.run(_run(runner, plan, options))
    finally:
        clear_all_context()
        if state_cache is not None:
            state_cache.close()

    console.print()
    render_summary(console, plan, result)

    if report:
        generator = ReportGenerator()
        generator.write_json_report(
            generator.generate_report(plan, result, dry_run=options.dry_run), report
        )
        console.print(f"[green]Report written to {report}[/green]")

    if not result.success:
        raise typer.Exit(code=EXIT_RUN_FAILED)


def _options(
    config: ToolConfig,
    verbose: bool,
    concurrency: int | None,
    timeout: float | None,
    node_timeout: float | None,
    force: bool,
    dry_run: bool,
) -> RunOptions:
    return RunOptions(
        verbose=verbose,
        concurrency=concurrency or config.runner.concurrency,
        node_timeout=node_timeout or config.runner.node_timeout,
        run_timeout=timeout or config.runner.run_timeout,
        force=force,
        dry_run=dry_run,
    )


def _select_deployments(graph: DependencyGraph, deployments: str | None) -> list[str] | None:
    """Parse a comma-separated deployment list against the root project."""
    if not deployments:
        return None

    selected = [name.strip() for name in deployments.split(",") if name.strip()]
    known = {deployment.name for deployment in graph.root_node.config.deployments}
    unknown = [name for name in selected if name not in known]
    if unknown:
        console.print(f"[bold red]ERROR:[/bold red] Unknown deployments: {', '.join(unknown)}")
        raise typer.Exit(code=EXIT_SETUP_FAILED)
    return selected


@app.command()
def deploy(
    ctx: typer.Context,
    dependency: list[str] | None = typer.Option(
        None, "--dependency", "-d", help="Only deploy these dependencies (and what they need)"
    ),
    skip_dependencies: bool = typer.Option(
        False, "--skip-dependencies", help="Deploy the project without its dependencies"
    ),
    profile: str | None = typer.Option(None, "--profile", help="Profile to apply to the project"),
    allow_cycles: bool = typer.Option(
        False, "--allow-cycles", help="Tolerate cyclic dependencies (break at first repeat)"
    ),
    concurrency: int | None = typer.Option(
        None, "--concurrency", min=1, help="Max dependencies deployed at once"
    ),
    timeout: float | None = typer.Option(None, "--timeout", help="Overall time limit in seconds"),
    node_timeout: float | None = typer.Option(
        None, "--node-timeout", help="Time limit per dependency in seconds"
    ),
    force_build: bool = typer.Option(
        False, "--force-build", "-b", help="Rebuild even when sources are unchanged"
    ),
    verbose_dependencies: bool = typer.Option(
        True,
        "--verbose-dependencies/--no-verbose-dependencies",
        help="Stream dependency output live instead of one block per dependency",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would run without running it"),
    report: Path | None = typer.Option(None, "--report", help="Write a JSON report to this file"),
) -> None:
    """
    Deploy the project after all of its dependencies.

    Examples:
        stackdeploy deploy
        stackdeploy deploy --dependency backend --concurrency 2
        stackdeploy -p ../frontend deploy --profile dev --force-build
    """
    config, project_file = _setup(ctx.obj)
    graph = _build(config, project_file, profile, allow_cycles)
    plan = _plan(graph, Direction.DEPLOY, dependency, skip_dependencies=skip_dependencies)

    console.print(
        Panel.fit(
            f"[bold blue]Deploy[/bold blue] {graph.root_node.name}\n\n"
            f"Dependencies: {plan.node_count - (1 if graph.root in plan.node_ids else 0)}\n"
            f"Waves: {len(plan.waves)}\n"
            f"Mode: [yellow]{'DRY RUN' if dry_run else 'EXECUTE'}[/yellow]",
            border_style="blue",
        )
    )

    options = _options(
        config, verbose_dependencies, concurrency, timeout, node_timeout, force_build, dry_run
    )
    _execute(config, project_file, plan, options, report)


@app.command()
def purge(
    ctx: typer.Context,
    all_dependencies: bool = typer.Option(
        False, "--all", "-a", help="Purge the project and all of its dependencies"
    ),
    deployments: str | None = typer.Option(
        None,
        "--deployments",
        "-d",
        help="Comma-separated deployments of the project to purge (e.g. web,database)",
    ),
    dependency: list[str] | None = typer.Option(
        None, "--dependency", help="Purge only these dependencies and what only they use"
    ),
    profile: str | None = typer.Option(None, "--profile", help="Profile to apply to the project"),
    allow_cycles: bool = typer.Option(
        False, "--allow-cycles", help="Tolerate cyclic dependencies (break at first repeat)"
    ),
    concurrency: int | None = typer.Option(
        None, "--concurrency", min=1, help="Max dependencies purged at once"
    ),
    timeout: float | None = typer.Option(None, "--timeout", help="Overall time limit in seconds"),
    node_timeout: float | None = typer.Option(
        None, "--node-timeout", help="Time limit per dependency in seconds"
    ),
    verbose_dependencies: bool = typer.Option(
        True,
        "--verbose-dependencies/--no-verbose-dependencies",
        help="Stream dependency output live instead of one block per dependency",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would run without running it"),
    report: Path | None = typer.Option(None, "--report", help="Write a JSON report to this file"),
) -> None:
    """
    Purge the project's deployments.

    Without --all or --dependency only the project itself is purged; its
    dependencies keep running. --deployments narrows that to some of the
    project's deployments. With --dependency only the named dependencies and
    the dependencies only they use are purged; the projects using them keep
    running.

    Examples:
        stackdeploy purge
        stackdeploy purge --deployments web,database
        stackdeploy purge --all
        stackdeploy purge --dependency backend
    """
    config, project_file = _setup(ctx.obj)
    graph = _build(config, project_file, profile, allow_cycles)
    root_only = not all_dependencies and not dependency
    selected = _select_deployments(graph, deployments)
    plan = _plan(
        graph,
        Direction.PURGE,
        None if all_dependencies else dependency,
        skip_dependencies=root_only,
    )

    console.print(
        Panel.fit(
            f"[bold red]Purge[/bold red] {graph.root_node.name}\n\n"
            f"Nodes: {plan.node_count}\n"
            f"Waves: {len(plan.waves)}\n"
            f"Mode: [yellow]{'DRY RUN' if dry_run else 'EXECUTE'}[/yellow]",
            border_style="red",
        )
    )

    options = _options(config, verbose_dependencies, concurrency, timeout, node_timeout, False, dry_run)
    options.deployments = selected
    _execute(config, project_file, plan, options, report)


@app.command()
def graph(
    ctx: typer.Context,
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write the graph as DOT (for Graphviz) instead of a tree"
    ),
    profile: str | None = typer.Option(None, "--profile", help="Profile to apply to the project"),
    allow_cycles: bool = typer.Option(False, "--allow-cycles", help="Tolerate cyclic dependencies"),
) -> None:
    """
    Show the resolved dependency graph.

    Examples:
        stackdeploy graph
        stackdeploy graph --output deps.dot && dot -Tpng deps.dot -o deps.png
    """
    config, project_file = _setup(ctx.obj)
    dependency_graph = _build(config, project_file, profile, allow_cycles)

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(dependency_graph.to_dot(), encoding="utf-8")
        console.print(f"[green]Dependency graph written to {output}[/green]")
        return

    root = dependency_graph.root_node
    tree = Tree(f"[bold blue]{root.name}[/bold blue] [dim]{root.id}[/dim]")

    def add_children(branch: Tree, node_id: str, path: set[str]) -> None:
        for child_id in dependency_graph.get(node_id).children:
            child = dependency_graph.get(child_id)
            if (node_id, child_id) in dependency_graph.back_edges or child_id in path:
                branch.add(f"[red]{child.name}[/red] [dim](cycle)[/dim]")
                continue
            sub = branch.add(f"{child.name} [dim]{child.id}[/dim]")
            add_children(sub, child_id, path | {child_id})

    add_children(tree, root.id, {root.id})
    console.print(tree)


@app.command(name="plan")
def show_plan(
    ctx: typer.Context,
    purge_plan: bool = typer.Option(False, "--purge", help="Show the purge plan instead"),
    dependency: list[str] | None = typer.Option(
        None, "--dependency", "-d", help="Scope the plan to these dependencies"
    ),
    profile: str | None = typer.Option(None, "--profile", help="Profile to apply to the project"),
    allow_cycles: bool = typer.Option(False, "--allow-cycles", help="Tolerate cyclic dependencies"),
) -> None:
    """
    Preview the execution waves without changing anything.

    Examples:
        stackdeploy plan
        stackdeploy plan --purge --dependency backend
    """
    config, project_file = _setup(ctx.obj)
    dependency_graph = _build(config, project_file, profile, allow_cycles)
    direction = Direction.PURGE if purge_plan else Direction.DEPLOY
    execution_plan = _plan(dependency_graph, direction, dependency)

    table = Table(title=f"{direction.value.capitalize()} plan", show_header=True, header_style="bold cyan")
    table.add_column("Wave", justify="right")
    table.add_column("Dependencies")

    for wave in execution_plan.summary()["waves"]:
        table.add_row(str(wave["index"]), ", ".join(wave["nodes"]))

    console.print(table)
    console.print(
        f"{execution_plan.node_count} nodes in {len(execution_plan.waves)} waves, "
        f"max parallelism {execution_plan.max_parallelism}"
    )


@app.command()
def status(ctx: typer.Context) -> None:
    """
    Show the last recorded state of every dependency.

    Examples:
        stackdeploy status
        stackdeploy -p ../frontend status
    """
    config, project_file = _setup(ctx.obj)
    db_path = _work_path(project_file.parent.resolve(), config.state.db_path)

    if not db_path.exists():
        console.print("[yellow]WARNING: No state recorded yet[/yellow]")
        console.print(f"Path: {db_path}")
        return

    with SQLiteStateCache(db_path) as cache:
        entries = cache.entries()

    table = Table(title="Dependency state", show_header=True, header_style="bold cyan")
    table.add_column("Dependency", style="cyan")
    table.add_column("Id", style="dim")
    table.add_column("Last run")
    table.add_column("Status")
    table.add_column("Fingerprint", style="dim")
    table.add_column("Updated")

    for entry in entries:
        style = "green" if entry.last_run_status == "succeeded" else "red"
        table.add_row(
            entry.name or "-",
            entry.id,
            entry.last_operation,
            f"[{style}]{entry.last_run_status}[/{style}]",
            entry.last_fingerprint[:12],
            entry.updated_at,
        )

    console.print(table)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"stackdeploy [cyan]{VERSION}[/cyan]")
