"""Command line entry point: build an offline tile cache for a bbox and zoom range."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import TYPE_CHECKING

from domain.models import CacheJobSettings
from domain.profiles import load_profile, save_profile
from shared.constants import MAP_SERVICE_TYPE_LABELS
from tiles.pipeline import build_cache
from tiles.store import PersistenceError

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PERSISTENCE_ERROR = 1
EXIT_CONFIG_ERROR = 2

# argparse dest -> CacheJobSettings field
_SETTINGS_FIELDS = (
    'service_type',
    'service_url',
    'service_settings',
    'output_dir',
    'min_zoom',
    'max_zoom',
    'min_lon',
    'min_lat',
    'max_lon',
    'max_lat',
    'max_parallelism',
    'replace_existing',
    'verbose',
)


def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def _parse_bool(value: str) -> bool:
    v = value.strip().lower()
    if v in ('true', '1', 'yes', 'y', 'on'):
        return True
    if v in ('false', '0', 'no', 'n', 'off'):
        return False
    msg = f'expected true/false, got {value!r}'
    raise argparse.ArgumentTypeError(msg)


def build_parser() -> argparse.ArgumentParser:
    types_help = '; '.join(f'{t.value}: {label}' for t, label in MAP_SERVICE_TYPE_LABELS.items())
    parser = argparse.ArgumentParser(
        prog='tilecutter',
        description='Download map tiles for an area and zoom range into one MBTiles cache file.',
    )
    parser.add_argument('--profile', help='TOML profile with job settings; flags override it')
    parser.add_argument('--save-profile', help='Write the effective settings to this TOML file')
    parser.add_argument('-t', '--type', dest='service_type', help=f'Type of the map service ({types_help})')
    parser.add_argument('-m', '--mapservice', dest='service_url', help='Url of the map service to be cached')
    parser.add_argument(
        '-s',
        '--settings',
        dest='service_settings',
        help='Extra query-string settings for the map service, e.g. "layers=0&imageSR=3857"',
    )
    parser.add_argument('-o', '--output', dest='output_dir', help='Directory where the tile cache will be stored')
    parser.add_argument('-z', '--minz', dest='min_zoom', type=int, help='Minimum zoom level to cache')
    parser.add_argument('-Z', '--maxz', dest='max_zoom', type=int, help='Maximum zoom level to cache')
    parser.add_argument('-x', '--minx', dest='min_lon', type=float, help='Minimum longitude of the extent')
    parser.add_argument('-y', '--miny', dest='min_lat', type=float, help='Minimum latitude of the extent')
    parser.add_argument('-X', '--maxx', dest='max_lon', type=float, help='Maximum longitude of the extent')
    parser.add_argument('-Y', '--maxy', dest='max_lat', type=float, help='Maximum latitude of the extent')
    parser.add_argument(
        '-p',
        '--parallelops',
        dest='max_parallelism',
        type=int,
        help='Limits the number of concurrent operations (split between download and write)',
    )
    parser.add_argument(
        '-r',
        '--replace',
        dest='replace_existing',
        type=_parse_bool,
        help='Delete an existing cache file and create a new one (true/false)',
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument(
        '-v', '--verbose', dest='verbose', action='store_const', const=True, help='Log every downloaded tile'
    )
    verbosity.add_argument(
        '-q', '--quiet', dest='verbose', action='store_const', const=False, help='Only log failures and batches'
    )
    return parser


def settings_from_args(args: argparse.Namespace) -> CacheJobSettings:
    """Merge profile (if any) and command line values into validated settings."""
    overrides = {name: getattr(args, name, None) for name in _SETTINGS_FIELDS}
    if args.profile:
        return load_profile(args.profile, **overrides)
    return CacheJobSettings.model_validate({k: v for k, v in overrides.items() if v is not None})


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    try:
        settings = settings_from_args(args)
    except (ValueError, FileNotFoundError) as e:
        logger.error('Invalid configuration: %s', e)
        return EXIT_CONFIG_ERROR

    if args.save_profile:
        path = save_profile(args.save_profile, settings)
        logger.info('Settings saved to %s', path)

    logger.info('Output Cache Directory is: %s', settings.output_dir.resolve())
    try:
        asyncio.run(build_cache(settings))
    except ValueError as e:
        logger.error('Invalid configuration: %s', e)
        return EXIT_CONFIG_ERROR
    except PersistenceError:
        logger.exception('Cache build aborted; %s is not finalized', settings.cache_path)
        return EXIT_PERSISTENCE_ERROR

    logger.info('All Done !!!')
    return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())
