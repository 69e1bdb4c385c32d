"""Entry point for `python -m release_orchestrator`."""

from release_orchestrator.cli import app

app(prog_name="relorch")
