import logging
from pathlib import Path
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from traefiker.compose_runner import ComposeRunner, ComposeRunnerError
from traefiker.compose_store import ComposeStore, ComposeStoreError
from traefiker.labels import LabelError, format_labels
from traefiker.manager import (
    ServiceAlreadyRunningError,
    ServiceManager,
    ServiceManagerError,
    ServiceNotRunningError,
)
from traefiker.settings import Settings

app = typer.Typer(help="Traefiker: manage Traefik-routed services in a docker-compose file.")
console = Console()

USER_ERRORS = (ServiceManagerError, ComposeStoreError, ComposeRunnerError, LabelError, ValueError)


def build_components(settings: Settings):
    store = ComposeStore(settings.compose_file, lock_timeout=settings.lock_timeout)
    runner = ComposeRunner(store.path, timeout=settings.compose_timeout)
    return store, ServiceManager(store, runner, settings)


# Instantiate core components
settings = Settings.from_env()
store, manager = build_components(settings)


def get_status_color(status: str) -> str:
    """Get color for a service status."""
    if status == "running":
        return "green"
    elif status == "stopped":
        return "grey70"
    elif status == "error":
        return "red"
    return "white"


def _parse_env(values: Optional[List[str]]) -> Optional[Dict[str, str]]:
    if not values:
        return None
    environment = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got '{item}'.", param_hint="--env")
        environment[key] = value
    return environment


def _fail(e: Exception):
    console.print(f"[red]Error: {escape(str(e))}[/red]")
    raise typer.Exit(1)


@app.callback()
def main(
    compose_file: Optional[Path] = typer.Option(
        None, "--compose-file", "-f", help="The docker-compose file to manage.",
        dir_okay=False,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
):
    """Traefiker: manage Traefik-routed services in a docker-compose file."""
    global settings, store, manager
    if compose_file is not None:
        settings = settings.model_copy(update={"compose_file": compose_file})
        store, manager = build_components(settings)
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level,
        format="%(levelname)s: %(message)s",
    )


@app.command(name="list")
def list_services():
    """Show all services in display order."""
    try:
        services = manager.list_services()
    except USER_ERRORS as e:
        _fail(e)

    if not services:
        console.print("No services defined yet.")
        return

    table = Table("Order", "Name", "Image", "Hosts", "Redirects")
    for service in services:
        table.add_row(
            str(service.order),
            service.name,
            service.image or "-",
            ", ".join(str(host) for host in service.hosts) or "-",
            str(len(service.redirects)),
        )
    console.print(table)


@app.command()
def show(name: str = typer.Argument(..., help="The service to show.")):
    """View a service's routing configuration."""
    try:
        service = manager.get_service(name)
    except USER_ERRORS as e:
        _fail(e)
    console.print(service.model_dump(by_alias=True))


@app.command()
def labels(name: str = typer.Argument(..., help="The service whose labels to print.")):
    """Print the Traefik labels generated for a service."""
    try:
        annotations = manager.service_labels(name)
    except USER_ERRORS as e:
        _fail(e)
    for label in format_labels(annotations):
        typer.echo(label)


@app.command()
def create(
    name: str = typer.Argument(..., help="The name of the new service."),
    image: str = typer.Option(..., "--image", "-i", help="The image to run."),
    host: List[str] = typer.Option(
        ..., "--host", "-H", help="A hostname, optionally with a path (e.g. 'example.com/api')."
    ),
    env: Optional[List[str]] = typer.Option(None, "--env", "-e", help="KEY=VALUE environment variable."),
    deploy: bool = typer.Option(False, "--deploy", help="Run 'docker compose up' afterwards."),
):
    """Add a service to the compose file."""
    try:
        service = manager.create_service(name, image, host, environment=_parse_env(env))
        console.print(f"[green]✔ Service '{name}' created![/green]")
        console.print(f"  - Order: {service.order}")
        for route in service.hosts:
            console.print(f"  - URL: https://{route}")
        if deploy:
            console.print("Deploying...")
            manager.deploy()
            console.print("[green]✔ Deployed.[/green]")
    except USER_ERRORS as e:
        _fail(e)


@app.command()
def update(
    name: str = typer.Argument(..., help="The service to update."),
    host: Optional[List[str]] = typer.Option(None, "--host", "-H", help="Replacement host list."),
    env: Optional[List[str]] = typer.Option(None, "--env", "-e", help="Replacement environment."),
    deploy: bool = typer.Option(False, "--deploy", help="Run 'docker compose up' afterwards."),
):
    """Replace the hosts and/or environment of a service."""
    try:
        manager.update_service(name, hosts=host or None, environment=_parse_env(env))
        console.print(f"[green]✔ Service '{name}' updated.[/green]")
        if deploy:
            console.print("Deploying...")
            manager.deploy()
            console.print("[green]✔ Deployed.[/green]")
    except USER_ERRORS as e:
        _fail(e)


@app.command()
def delete(
    name: str = typer.Argument(..., help="The service to delete."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    remove_container: bool = typer.Option(
        False, "--remove-container", help="Also stop and remove the service's container."
    ),
):
    """Remove a service from the compose file."""
    if not yes and not typer.confirm(f"Are you sure you want to delete '{name}'?"):
        console.print("Deletion cancelled.")
        raise typer.Exit()

    try:
        manager.delete_service(name, remove_container=remove_container)
    except USER_ERRORS as e:
        _fail(e)
    console.print(f"[green]Service '{name}' has been deleted.[/green]")


@app.command()
def reorder(
    name: str = typer.Argument(..., help="The service to move."),
    order: int = typer.Argument(..., help="The new display order."),
):
    """Change the display order of a service."""
    try:
        manager.reorder_service(name, order)
    except USER_ERRORS as e:
        _fail(e)
    console.print(f"[green]Service '{name}' moved to order {order}.[/green]")


@app.command()
def start(name: str = typer.Argument(..., help="The service to start.")):
    """Start a service's container."""
    try:
        console.print(f"Starting service '{name}'...")
        manager.start_service(name)
        console.print(f"[green]✔ Service '{name}' started successfully![/green]")
    except ServiceAlreadyRunningError:
        console.print(f"[yellow]Service '{name}' is already running.[/yellow]")
        raise typer.Exit(0)
    except USER_ERRORS as e:
        _fail(e)


@app.command()
def stop(name: str = typer.Argument(..., help="The service to stop.")):
    """Stop a service's container."""
    try:
        console.print(f"Stopping service '{name}'...")
        manager.stop_service(name)
        console.print(f"[green]✔ Service '{name}' stopped successfully![/green]")
    except ServiceNotRunningError:
        console.print(f"[yellow]Service '{name}' is not running.[/yellow]")
        raise typer.Exit(0)
    except USER_ERRORS as e:
        _fail(e)


@app.command()
def status():
    """Show the container status of every service."""
    try:
        statuses = manager.all_status()
    except USER_ERRORS as e:
        _fail(e)

    if not statuses:
        console.print("No services defined yet.")
        return

    table = Table("Name", "Status")
    for name, state in statuses.items():
        color = get_status_color(state)
        table.add_row(name, f"[{color}]{state.capitalize()}[/{color}]")
    console.print(table)


@app.command(name="deploy")
def deploy_command():
    """Pull images and bring the whole compose file up."""
    try:
        console.print("Deploying...")
        manager.deploy()
    except USER_ERRORS as e:
        _fail(e)
    console.print("[green]✔ Deployed.[/green]")


@app.command(name="export")
def export_document(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to this file instead of stdout."),
):
    """Print the raw compose file."""
    try:
        text = store.read_raw()
    except USER_ERRORS as e:
        _fail(e)
    if output is None:
        typer.echo(text, nl=False)
    else:
        output.write_text(text, encoding="utf-8")
        console.print(f"Exported to {output}")


@app.command(name="import")
def import_document(
    source: Path = typer.Argument(
        ..., help="A compose file to install as the managed file.",
        exists=True, file_okay=True, dir_okay=False, readable=True,
    ),
):
    """Replace the compose file with the content of another file."""
    try:
        store.write_raw(source.read_text(encoding="utf-8"))
    except USER_ERRORS as e:
        _fail(e)
    console.print(f"[green]✔ Imported {source}.[/green]")


redirect_app = typer.Typer(help="Manage the URL redirects of a service.")
app.add_typer(redirect_app, name="redirect")


@redirect_app.command("list")
def redirect_list(name: str = typer.Argument(..., help="The service.")):
    """Show a service's redirects."""
    try:
        service = manager.get_service(name)
    except USER_ERRORS as e:
        _fail(e)

    if not service.redirects:
        console.print(f"Service '{name}' has no redirects.")
        return

    table = Table("ID", "From", "To")
    for redirect in service.redirects:
        table.add_row(str(redirect.id), Text(redirect.from_), Text(redirect.to))
    console.print(table)


@redirect_app.command("add")
def redirect_add(
    name: str = typer.Argument(..., help="The service."),
    from_: str = typer.Option(..., "--from", help="The regex matched against the request URL."),
    to: str = typer.Option(..., "--to", help="The replacement URL."),
):
    """Add a URL redirect to a service."""
    try:
        redirect = manager.add_redirect(name, from_, to)
    except USER_ERRORS as e:
        _fail(e)
    console.print(f"[green]✔ Redirect {redirect.id} added to '{name}'.[/green]")


@redirect_app.command("remove")
def redirect_remove(
    name: str = typer.Argument(..., help="The service."),
    redirect_id: int = typer.Argument(..., help="The id of the redirect to remove."),
):
    """Remove a URL redirect from a service."""
    try:
        manager.remove_redirect(name, redirect_id)
    except USER_ERRORS as e:
        _fail(e)
    console.print(f"[green]Redirect {redirect_id} removed from '{name}'.[/green]")


if __name__ == "__main__":
    app()
