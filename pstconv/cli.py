"""CLI entry point using Click and Rich for display."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.progress import Progress

from . import __version__
from .converter import PstConverter
from .errors import ConversionError
from .log import setup_logging
from .models import OutputFormat

console = Console()
logger = logging.getLogger(__name__)

DEFAULT_FORMAT = OutputFormat.EML.value
DEFAULT_ENCODING = os.environ.get("PSTCONV_ENCODING", "UTF-8")


@click.command(
    context_settings={"help_option_names": ["-h", "--help"]},
    help="Converts a Microsoft Outlook OST/PST file to EML/MBOX format.",
)
@click.option(
    "-i", "--input", "input_file",
    metavar="FILE", required=True, type=click.Path(path_type=Path),
    help="Path to OST/PST input file.",
)
@click.option(
    "-o", "--output", "output_directory",
    metavar="DIRECTORY", required=True, type=click.Path(path_type=Path),
    help="Path to Mbox/EML output directory. Created if it doesn't exist.",
)
@click.option(
    "-f", "--format", "output_format",
    type=click.Choice(OutputFormat.formats(), case_sensitive=False),
    default=DEFAULT_FORMAT, show_default=True,
    help="Output format.",
)
@click.option(
    "-e", "--encoding",
    metavar="ENCODING", default=DEFAULT_ENCODING, show_default=True,
    help="Charset used to decode transport headers. Does not change how EML/MBOX files are written.",
)
@click.option("--verbose", is_flag=True, help="Log debug messages.")
@click.version_option(
    __version__, "-v", "--version",
    prog_name="pstconv", message="%(prog)s %(version)s",
    help="Print version and exit.",
)
def main(input_file: Path, output_directory: Path, output_format: str, encoding: str, verbose: bool):
    setup_logging(verbose)
    fmt = OutputFormat.from_value(output_format)

    console.print(f"[bold]Converting:[/] {input_file} -> {output_directory} ({fmt.value})")

    try:
        with Progress(console=console, transient=True) as progress:
            task = progress.add_task("[cyan]Converting folders...", total=None)

            def on_folder(path: str, count: int) -> None:
                progress.update(task, description=f"[cyan]{path}: {count:,} messages")

            converter = PstConverter(progress=on_folder)
            result = converter.convert(input_file, output_directory, fmt, encoding)
    except (ConversionError, OSError, ValueError) as e:
        logger.debug("Conversion failed", exc_info=True)
        console.print(f"[red]Error: {e}[/]")
        sys.exit(1)

    console.print("[bold green]Conversion complete![/]")
    console.print(f"  Messages: [bold]{result.message_count:,}[/]")
    console.print(f"  Elapsed:  {result.seconds:.2f}s")
    # Store is closed; end the process explicitly
    sys.exit(0)


if __name__ == "__main__":
    main()
