"""Thin CLI wrapper for release_orchestrator.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
import os
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from release_orchestrator import __version__
from release_orchestrator.config import Settings, get_settings, print_settings_json
from release_orchestrator.errors import ReleaseConfigError
from release_orchestrator.orchestrator import ReleaseResult
from release_orchestrator.release_config import ReleaseConfig, load_release_config
from release_orchestrator.trigger.models import TriggerEvent
from release_orchestrator.types import PipelineResult

app = typer.Typer(
    name="relorch",
    help="Release Orchestrator - build, verify and publish packages and images",
    no_args_is_help=True,
)
console = Console()

STATUS_STYLES = {
    "succeeded": "green",
    "failed": "red",
    "blocked": "red",
    "skipped": "yellow",
    "running": "blue",
    "pending": "dim",
}

EventOption = Annotated[
    str | None,
    typer.Option("--event", "-e", help="Event name (default: $GITHUB_EVENT_NAME)"),
]
RefOption = Annotated[
    str | None,
    typer.Option("--ref", "-r", help="Full git ref (default: $GITHUB_REF)"),
]
ShaOption = Annotated[
    str | None,
    typer.Option("--sha", help="Commit SHA (default: $GITHUB_SHA)"),
]
ChangedFileOption = Annotated[
    list[str] | None,
    typer.Option("--changed-file", "-f", help="Changed path (can be repeated)"),
]
DiffBaseOption = Annotated[
    str | None,
    typer.Option("--diff-base", help="Compute changed files with git diff BASE..."),
]
ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Release configuration file (YAML/JSON)"),
]
DryRunOption = Annotated[
    bool,
    typer.Option("--dry-run", "-n", help="Log commands instead of executing them"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def configure_logging(level: str) -> None:
    """Route log records through Rich on stderr."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"release-orchestrator version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Release Orchestrator - build, verify and publish packages and images."""
    configure_logging(get_settings().log_level)


def _print_json(text: str) -> None:
    console.print(text, markup=False, highlight=False, soft_wrap=True)


def _settings(dry_run: bool = False, parallel: bool | None = None) -> Settings:
    settings = get_settings()
    updates: dict[str, object] = {}
    if dry_run:
        updates["dry_run"] = True
    if parallel is not None:
        updates["parallel_pipelines"] = parallel
    return settings.model_copy(update=updates) if updates else settings


def _load_release(path: Path | None, settings: Settings) -> ReleaseConfig:
    try:
        return load_release_config(path or settings.release_config)
    except ReleaseConfigError as e:
        console.print(f"[red]{escape(e.message)}[/red]")
        raise typer.Exit(code=2) from None


def _build_event(
    settings: Settings,
    event_name: str | None,
    ref: str | None,
    sha: str | None,
    changed_files: list[str] | None,
    diff_base: str | None,
) -> TriggerEvent:
    from release_orchestrator.trigger import list_changed_files

    files: tuple[str, ...] | None = None
    if changed_files:
        files = tuple(changed_files)
    elif diff_base:
        try:
            files = list_changed_files(settings.source_dir, diff_base)
        except ValueError as e:
            console.print(f"[red]Cannot list changed files: {escape(str(e))}[/red]")
            raise typer.Exit(code=2) from None

    env = dict(os.environ)
    if event_name:
        env["GITHUB_EVENT_NAME"] = event_name
    if ref:
        env["GITHUB_REF"] = ref
    if sha:
        env["GITHUB_SHA"] = sha
    try:
        return TriggerEvent.from_env(env, changed_files=files)
    except ValueError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        console.print("Pass --event and --ref, or run inside GitHub Actions")
        raise typer.Exit(code=2) from None


def _print_pipeline(result: PipelineResult) -> None:
    if result.success:
        outcome = "[green]✓ succeeded[/green]"
    else:
        outcome = "[red]✗ failed[/red]"
    console.print(f"[bold]{result.pipeline.value} pipeline:[/bold] {outcome}")
    for step in result.steps:
        style = STATUS_STYLES.get(step.status.value, "white")
        line = f"  [{style}]{step.status.value:<9}[/{style}] {step.name}"
        if step.message and step.status.value != "failed":
            line += f" ({escape(step.message)})"
        console.print(line)
        if step.status.value == "failed" and step.message:
            console.print(f"    [red]{escape(step.message)}[/red]")
        if step.log_path:
            console.print(f"    Log: {step.log_path}")
    for image in result.images:
        style = STATUS_STYLES.get(image.status.value, "white")
        console.print(f"  [{style}]{image.status.value:<9}[/{style}] {image.name}")
        for tag in image.tags:
            console.print(f"    Tag: {tag}")
        if image.message and image.status.value in ("failed", "blocked"):
            console.print(f"    [red]{escape(image.message)}[/red]")
    if result.artifacts:
        console.print("  Artifacts:")
        for artifact in result.artifacts:
            size = artifact["size_bytes"]
            console.print(f"    {artifact['filename']} ({size} bytes)")


def _report_release(
    result: ReleaseResult, json_output: bool, exit_on_skip: bool
) -> None:
    if json_output:
        _print_json(result.model_dump_json(indent=2))
    elif result.skipped:
        reason = escape(result.decision.reason)
        console.print(f"[yellow]Release skipped: {reason}[/yellow]")
    else:
        for pipeline in result.pipeline_results():
            _print_pipeline(pipeline)
            console.print()

    if result.skipped:
        if exit_on_skip:
            raise typer.Exit(code=1)
        return
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def config(
    json_output: JsonOption = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        _print_json(print_settings_json(settings))
        return

    def configured(value: object) -> str:
        return "configured" if value is not None else "not set"

    release_config_display = (
        str(settings.release_config) if settings.release_config else "(built-in)"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Source directory:    {settings.source_dir}")
    console.print(f"  Dist directory:      {settings.resolved_dist_dir()}")
    console.print(f"  Artifacts directory: {settings.artifacts_dir}")
    console.print(f"  Logs directory:      {settings.logs_dir}")
    console.print(f"  Release config:      {release_config_display}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Dry run:             {settings.dry_run}")
    console.print(f"  Parallel pipelines:  {settings.parallel_pipelines}")
    console.print()
    console.print("[bold]Registries:[/bold]")
    console.print(f"  Local registry:      {settings.local_registry}")
    console.print(f"  Registry image:      {settings.local_registry_image}")
    console.print(f"  Registry port:       {settings.local_registry_port}")
    console.print(f"  Package index:       {settings.package_index_url}")
    console.print(f"  GitHub API:          {settings.github_api_url}")
    console.print()
    console.print("[bold]Secrets:[/bold]")
    console.print(f"  GitHub token:        {configured(settings.github_token)}")
    console.print(f"  Index password:      {configured(settings.pypi_password)}")
    console.print(f"  Registry username:   {configured(settings.dockerhub_username)}")
    console.print(f"  Registry token:      {configured(settings.dockerhub_token)}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Step timeout:        {settings.step_timeout}")
    console.print(f"  HTTP timeout:        {settings.http_timeout}")


trigger_app = typer.Typer(help="Evaluate release triggers")
app.add_typer(trigger_app, name="trigger")


@trigger_app.command("evaluate")
def trigger_evaluate(
    event_name: EventOption = None,
    ref: RefOption = None,
    sha: ShaOption = None,
    changed_files: ChangedFileOption = None,
    diff_base: DiffBaseOption = None,
    config_path: ConfigOption = None,
    json_output: JsonOption = False,
) -> None:
    """Decide whether a release run executes for an event.

    Exits 0 when the run should execute and 1 when it is skipped.
    """
    from release_orchestrator.trigger import evaluate

    settings = _settings()
    release = _load_release(config_path, settings)
    event = _build_event(settings, event_name, ref, sha, changed_files, diff_base)
    decision = evaluate(event, release.triggers)

    if json_output:
        _print_json(decision.model_dump_json(indent=2))
    else:
        if decision.should_run:
            console.print(f"[green]✓ Run: {decision.reason}[/green]")
        else:
            console.print(f"[yellow]Skip: {decision.reason}[/yellow]")
        if decision.context is not None:
            context = decision.context
            console.print(f"  Ref:         {context.ref}")
            console.print(f"  Ref type:    {context.ref_type}")
            console.print(f"  Tag build:   {context.is_tag}")
            console.print(f"  Main branch: {context.is_main_branch}")
        if decision.ignored_files:
            console.print(f"  Ignored:     {', '.join(decision.ignored_files)}")

    if not decision.should_run:
        raise typer.Exit(code=1)


tags_app = typer.Typer(help="Calculate image tags")
app.add_typer(tags_app, name="tags")


@tags_app.command("resolve")
def tags_resolve(
    ref: Annotated[str, typer.Argument(help="Full git ref, e.g. refs/tags/1.2.3")],
    prefix: Annotated[
        str, typer.Argument(help="Tag prefix, e.g. 'jupyterhub/jupyterhub:'")
    ],
    default_tag: Annotated[
        str | None,
        typer.Option("--default-tag", help="Tag used when none is calculated"),
    ] = None,
    branch_regex: Annotated[
        str | None,
        typer.Option("--branch-regex", help="Pattern a branch must match"),
    ] = None,
    existing_tags: Annotated[
        list[str] | None,
        typer.Option(
            "--existing-tag", "-t", help="Existing tag, skips the API (repeatable)"
        ),
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """Resolve the tags an image is pushed under for a ref."""
    import httpx

    from release_orchestrator.errors import TagCalculationError
    from release_orchestrator.images.service import make_tag_resolver
    from release_orchestrator.images.tags import StaticTagResolver
    from release_orchestrator.release_config import DEFAULT_BRANCH_REGEX, DEFAULT_TAG

    settings = _settings()
    default = default_tag or f"{prefix}{DEFAULT_TAG}"
    pattern = branch_regex or DEFAULT_BRANCH_REGEX

    try:
        if existing_tags is not None:
            resolver = StaticTagResolver(existing_tags)
            tags = resolver.resolve_tags(ref, prefix, default, pattern)
        else:
            with httpx.Client() as client:
                github = make_tag_resolver(settings, client)
                tags = github.resolve_tags(ref, prefix, default, pattern)
    except TagCalculationError as e:
        console.print(f"[red]{escape(e.message)}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        _print_json(json.dumps(tags, indent=2))
    else:
        for tag in tags:
            console.print(tag, markup=False, highlight=False)


package_app = typer.Typer(help="Build, verify and publish the Python package")
app.add_typer(package_app, name="package")


@package_app.command("run")
def package_run(
    event_name: EventOption = None,
    ref: RefOption = None,
    sha: ShaOption = None,
    changed_files: ChangedFileOption = None,
    diff_base: DiffBaseOption = None,
    config_path: ConfigOption = None,
    dry_run: DryRunOption = False,
    json_output: JsonOption = False,
) -> None:
    """Run the package pipeline.

    Exits non-zero when any step fails or the trigger skips the run.
    """
    from release_orchestrator.orchestrator import run_release
    from release_orchestrator.types import PipelineName

    settings = _settings(dry_run=dry_run)
    release = _load_release(config_path, settings)
    event = _build_event(settings, event_name, ref, sha, changed_files, diff_base)
    result = run_release(event, release, settings, pipelines=[PipelineName.PACKAGE])
    _report_release(result, json_output, exit_on_skip=True)


images_app = typer.Typer(help="Build and push container images")
app.add_typer(images_app, name="images")


@images_app.command("run")
def images_run(
    event_name: EventOption = None,
    ref: RefOption = None,
    sha: ShaOption = None,
    changed_files: ChangedFileOption = None,
    diff_base: DiffBaseOption = None,
    config_path: ConfigOption = None,
    dry_run: DryRunOption = False,
    json_output: JsonOption = False,
) -> None:
    """Run the image pipeline.

    Exits non-zero when any image fails or the trigger skips the run.
    """
    from release_orchestrator.orchestrator import run_release
    from release_orchestrator.types import PipelineName

    settings = _settings(dry_run=dry_run)
    release = _load_release(config_path, settings)
    event = _build_event(settings, event_name, ref, sha, changed_files, diff_base)
    result = run_release(event, release, settings, pipelines=[PipelineName.IMAGES])
    _report_release(result, json_output, exit_on_skip=True)


@images_app.command("plan")
def images_plan(
    event_name: EventOption = None,
    ref: RefOption = None,
    sha: ShaOption = None,
    config_path: ConfigOption = None,
    existing_tags: Annotated[
        list[str] | None,
        typer.Option(
            "--existing-tag", "-t", help="Existing tag, skips the API (repeatable)"
        ),
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """Show the registry target, tags and build arguments of every image."""
    from dataclasses import asdict

    import httpx

    from release_orchestrator.errors import TagCalculationError
    from release_orchestrator.images.registry import resolve_registry_target
    from release_orchestrator.images.service import make_tag_resolver, plan_images
    from release_orchestrator.images.tags import StaticTagResolver
    from release_orchestrator.trigger.models import TriggerContext

    settings = _settings()
    release = _load_release(config_path, settings)
    event = _build_event(settings, event_name, ref, sha, None, None)
    try:
        context = TriggerContext.from_event(event, release.triggers.main_branch)
    except ValueError:
        console.print(f"[red]Unsupported event: {event.event_name}[/red]")
        raise typer.Exit(code=2) from None
    registry = resolve_registry_target(context, settings.local_registry)

    try:
        if existing_tags is not None:
            plans = plan_images(
                context, release, registry, StaticTagResolver(existing_tags)
            )
        else:
            with httpx.Client() as client:
                resolver = make_tag_resolver(settings, client, context.repository)
                plans = plan_images(context, release, registry, resolver)
    except TagCalculationError as e:
        console.print(f"[red]{escape(e.message)}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        output = {
            "registry": registry.prefix,
            "local": registry.is_local,
            "images": [asdict(plan) for plan in plans],
        }
        _print_json(json.dumps(output, indent=2))
        return

    console.print(f"[bold]Registry:[/bold] {registry.display}")
    console.print()
    for plan in plans:
        console.print(f"  [green]{plan.name}[/green]")
        console.print(f"    Context:   {plan.context}")
        console.print(f"    Platforms: {', '.join(plan.platforms)}")
        for tag in plan.tags:
            console.print(f"    Tag:       {tag}", markup=False)
        for key, value in plan.build_args.items():
            console.print(f"    Build arg: {key}={value}", markup=False)
        console.print()


release_app = typer.Typer(help="Run complete releases")
app.add_typer(release_app, name="release")


@release_app.command("show")
def release_show(
    config_path: ConfigOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show the effective release configuration."""
    from release_orchestrator.release_config import release_config_to_yaml

    settings = _settings()
    release = _load_release(config_path, settings)
    if json_output:
        _print_json(release.model_dump_json(indent=2, exclude_none=True))
    else:
        _print_json(release_config_to_yaml(release))


@release_app.command("validate")
def release_validate(
    path: Annotated[Path, typer.Argument(help="Release configuration file")],
) -> None:
    """Validate a release configuration file."""
    try:
        release = load_release_config(path)
    except ReleaseConfigError as e:
        console.print("[red]Validation failed:[/red]")
        console.print(e.message, markup=False)
        raise typer.Exit(code=1) from None

    console.print(f"[green]✓ Valid release config: {escape(str(path))}[/green]")
    console.print(f"  Package: {release.package.name}")
    console.print(f"  Images:  {len(release.images)}")
    for image in release.images:
        depends = f" (from {image.base_image_from})" if image.base_image_from else ""
        console.print(f"    {image.name}{depends}", markup=False)


@release_app.command("run")
def release_run(
    event_name: EventOption = None,
    ref: RefOption = None,
    sha: ShaOption = None,
    changed_files: ChangedFileOption = None,
    diff_base: DiffBaseOption = None,
    config_path: ConfigOption = None,
    parallel: Annotated[
        bool | None,
        typer.Option(
            "--parallel/--sequential", help="Run the two pipelines concurrently"
        ),
    ] = None,
    dry_run: DryRunOption = False,
    json_output: JsonOption = False,
) -> None:
    """Evaluate the trigger and run both pipelines.

    Exits 0 when the trigger skips the run, 1 when any pipeline fails.
    """
    from release_orchestrator.orchestrator import run_release

    settings = _settings(dry_run=dry_run, parallel=parallel)
    release = _load_release(config_path, settings)
    event = _build_event(settings, event_name, ref, sha, changed_files, diff_base)
    result = run_release(event, release, settings)
    _report_release(result, json_output, exit_on_skip=False)


if __name__ == "__main__":
    app()
