# Script that loads a ZIP index, runs a query against it and pulls ACS variables for the hits
from argparse import ArgumentParser
import asyncio
import json
import logging
import sys
from pathlib import Path

from zip_insights.acs import build_fetch_service
from zip_insights.index import ZipIndex
from zip_insights.settings import get_settings


def _select_zips(index: ZipIndex, args) -> list[str]:
    if args.radius is not None:
        centre = index.get(args.zip)
        if centre is None or not centre.has_coordinates:
            raise SystemExit(f'ZIP {args.zip} not found or has no coordinates')
        hits = index.search_radius(centre.lat, centre.lng, args.radius, limit=args.limit)
        return [h.zip for h in hits]
    if args.state:
        return [r.zip for r in index.by_state(args.state, limit=args.limit)]
    return [args.zip] if args.zip else []


async def main(args) -> int:
    service = build_fetch_service(get_settings())
    try:
        return await _run(service, args)
    finally:
        service.close()


async def _run(service, args) -> int:
    if args.clear_cache:
        print(json.dumps({'cleared': service.clear_cache()}))

    if args.cache_stats:
        stats = service.cache_stats()
        print(json.dumps({
            'entries': stats.count,
            'expired': stats.expired,
            'size_kb': stats.size_kb,
            'size_mb': stats.size_mb,
        }))

    if args.validate_key:
        check = await service.validate_credential()
        print(json.dumps({'status': check.status.value, 'message': check.message}))
        if not check.valid:
            return 1

    zips: list[str] = []
    if args.records:
        source = 'json' if args.records.suffix.lower() == '.json' else 'csv'
        index = ZipIndex.from_source(source, path=args.records)
        print(json.dumps({'index': vars(index.stats())}, default=str), file=sys.stderr)
        zips = _select_zips(index, args)
    elif args.zip:
        zips = [args.zip]

    if zips and args.variables:
        result = await service.fetch_variables(zips, args.variables)
        print(json.dumps({
            'values': result.as_dict(),
            'missing': result.missing,
            'failed': result.failed_zips,
            'cached': result.cached,
            'fetched': result.fetched,
        }, indent=2))
        return 0 if not result.failures else 2
    return 0


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    parser = ArgumentParser()
    parser.add_argument('--records', '-r', type=Path, help='ZIP records file (.csv or .json)')
    parser.add_argument('--zip', '-z', type=str)
    parser.add_argument('--radius', type=float, help='Search radius (km) around --zip')
    parser.add_argument('--state', '-s', type=str)
    parser.add_argument('--limit', '-l', type=int, default=100)
    parser.add_argument('--variables', '-v', nargs='+', default=[])
    parser.add_argument('--validate-key', action='store_true')
    parser.add_argument('--clear-cache', action='store_true')
    parser.add_argument('--cache-stats', action='store_true')
    args = parser.parse_args()

    sys.exit(asyncio.run(main(args)))
