"""Command line interface of ``gptrealign``."""

from __future__ import annotations

import logging
import os
import sys
from typing import NamedTuple

from . import __version__
from .base import ArgumentError, RealignError
from .gpt import ImageVariant
from .image import patch_image
from .realign import Alignment

__all__ = ['main', 'run']


log = logging.getLogger(__name__)


USAGE = """\
Usage: {prog} [options] <alignment> <disk size sectors> <file type> <file name>

Where <alignment> can be {alignments}
  and <file type> must be set to one of two values: main / backup

Options:
  -h, --help         Show this help message
  -v, --verbose      Log debugging output
  -q, --quiet        Only log warnings and errors
  -n, --dry-run      Realign in memory, do not write anything
  -o, --output PATH  Write the result to PATH instead of the input file

Example: {prog} 8M 15302656 main gpt_main0.bin
         {prog} 8M 15302656 backup gpt_backup0.bin
"""


class Arguments(NamedTuple):
    """Parsed command line."""

    alignment: Alignment
    disk_size: int
    variant: ImageVariant
    path: str
    output: str | None
    dry_run: bool
    log_level: int


def usage(prog: str) -> int:
    alignments = ' / '.join(a.token for a in Alignment)
    print(USAGE.format(prog=prog, alignments=alignments))
    return 0


def parse_disk_size(token: str) -> int:
    # plain decimal digits only, no sign, underscores or whitespace
    if not (token.isascii() and token.isdigit()):
        raise ArgumentError(f'Incorrect disk size {token!r}')
    disk_size = int(token, 10)
    if disk_size <= 0:
        raise ArgumentError(f'Incorrect disk size {disk_size}')
    return disk_size


def parse_variant(token: str) -> ImageVariant:
    try:
        return ImageVariant(token)
    except ValueError:
        raise ArgumentError(
            f'Unknown file type {token!r}, must be one of '
            f'{", ".join(v.value for v in ImageVariant)}'
        ) from None


def parse_args(args: list[str]) -> Arguments | None:
    """Parse command line arguments, without the program name.

    Returns ``None`` if the usage text is to be shown instead.
    """
    output = None
    dry_run = False
    log_level = logging.INFO
    positional = []

    while args:
        arg, args = args[0], args[1:]
        if not arg.startswith('-') or arg == '-':
            positional.append(arg)
        elif arg in ('-h', '--help'):
            return None
        elif arg in ('-v', '--verbose'):
            log_level = logging.DEBUG
        elif arg in ('-q', '--quiet'):
            log_level = logging.WARNING
        elif arg in ('-n', '--dry-run'):
            dry_run = True
        elif arg in ('-o', '--output'):
            if not args:
                raise ArgumentError(f'Option {arg} requires a path')
            output, args = args[0], args[1:]
        else:
            raise ArgumentError(f'Unknown option {arg!r}')

    if len(positional) != 4:
        return None

    alignment_token, disk_size_token, variant_token, path = positional
    return Arguments(
        alignment=Alignment.from_token(alignment_token),
        disk_size=parse_disk_size(disk_size_token),
        variant=parse_variant(variant_token),
        path=path,
        output=output,
        dry_run=dry_run,
        log_level=log_level,
    )


def main(argv: list[str] = None) -> int:
    """Run the command line interface and return the exit status."""
    if argv is None:
        argv = sys.argv
    prog = os.path.basename(argv[0]) if argv else 'gptrealign'

    logging.basicConfig(format='%(levelname)s: %(message)s', level=logging.INFO)
    logging.captureWarnings(True)

    try:
        args = parse_args(list(argv[1:]))
        if args is None:
            return usage(prog)

        logging.getLogger().setLevel(args.log_level)
        log.debug(f'gptrealign {__version__}')

        patch_image(
            args.path,
            args.variant,
            args.alignment.sectors,
            args.disk_size,
            output=args.output,
            dry_run=args.dry_run,
        )
    except RealignError as e:
        log.error(e)
        return e.exit_code

    return 0


def run() -> None:
    sys.exit(main())
