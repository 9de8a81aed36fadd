from typer import Context, Option

from . import app, run_manager


@app.command()
def provision(
    ctx: Context,
    skip_manifests: bool = Option(
        False, "--skip-manifests", help="Only provision the infrastructure, do not roll out manifests."
    ),
) -> None:
    """
    Create or update the cluster infrastructure and roll out the manifests.
    """

    run_manager(ctx, lambda manager, options, token: manager.provision(options, token), skip_manifests)
