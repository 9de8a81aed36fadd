import json
import platform
from typing import Optional

from rich.console import Console
from rich.table import Table
from typer import Option
import yaml

from kcm import __version__

from . import app
from .config import OutputFormat


@app.command()
def version(
    short: bool = Option(False, help="Only print the version number."),
    output: Optional[OutputFormat] = Option(None, "--output", "-o", help="Print the version info as YAML or JSON."),
) -> None:
    """
    Show the version of kcm.
    """

    if short:
        print(__version__)
        return

    info = {"version": __version__, "python": platform.python_version(), "platform": platform.platform()}

    match output:
        case OutputFormat.JSON:
            print(json.dumps(info))
        case OutputFormat.YAML:
            print(yaml.safe_dump(info, sort_keys=False), end="")
        case _:
            table = Table(show_header=False)
            table.add_column("Key", style="cyan")
            table.add_column("Value")
            for key, value in info.items():
                table.add_row(key, value)
            Console().print(table)
