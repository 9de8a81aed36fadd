"""
Roll out or delete the manifests of the cluster without touching its infrastructure.
"""

from typer import Context

from kcm.tools.typer import new_typer

from . import run_manager

app = new_typer(name="manifests", help=__doc__)


@app.command()
def apply(ctx: Context) -> None:
    """
    Render the manifests and apply the changes to the cluster.
    """

    run_manager(ctx, lambda manager, options, token: manager.apply_manifests(options, token))


@app.command()
def delete(ctx: Context) -> None:
    """
    Delete all manifests from the cluster, in the reverse order they were applied in.
    """

    run_manager(ctx, lambda manager, options, token: manager.delete_manifests(options, token))
