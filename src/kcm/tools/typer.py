from typing import Any
from typer import Typer


def new_typer(**kwargs: Any) -> Typer:
    """
    Create a Typer application with the settings shared by all kcm command groups.
    """

    return Typer(no_args_is_help=True, pretty_exceptions_enable=False, add_completion=False, **kwargs)
