from enum import Enum
from pathlib import Path

from typer import Argument, Option

from kcm.config import Config

from . import app


class OutputFormat(str, Enum):
    YAML = "yaml"
    JSON = "json"


@app.command("dump-config")
def dump_config(
    file: Path = Argument(..., exists=True, dir_okay=False, help="The config file to dump."),
    output: OutputFormat = Option(OutputFormat.YAML, "--output", "-o", help="The output format."),
) -> None:
    """
    Print the options that are set in a config file.
    """

    _, config = Config.load(file)
    print(config.dump(output.value), end="")
