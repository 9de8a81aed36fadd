from typer import Context, Option

from . import app, run_manager


@app.command()
def destroy(
    ctx: Context,
    skip_manifests: bool = Option(
        False, "--skip-manifests", help="Tear down the infrastructure without deleting the manifests first."
    ),
) -> None:
    """
    Delete all manifests from the cluster and tear down its infrastructure.
    """

    run_manager(ctx, lambda manager, options, token: manager.destroy(options, token), skip_manifests)
