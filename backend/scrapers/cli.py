#!/usr/bin/env python3
"""
Command line runner for the scraper system.

Usage:
    cd backend
    python -m scrapers.cli [command]

Examples:
    python -m scrapers.cli --list                        # List all scrapers
    python -m scrapers.cli run 12                        # Full run for search 12
    python -m scrapers.cli scrape --location "Arlington VA" --location 22203 \\
        --max-price 600000 --min-beds 2 --min-baths 1    # Ad-hoc scrape, nothing stored
"""

import asyncio
import argparse
import logging
import json
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

from scrapers.manager import ScraperManager
from scrapers.config import get_site_summary
from scrapers.models import SearchCriteria


def list_scrapers(manager: ScraperManager):
    """List all configured scrapers."""
    print(f"\n{'='*60}")
    print("Available Scrapers")
    print(f"{'='*60}\n")

    implemented = manager.registry
    for site in get_site_summary():
        status = "✅" if site['enabled'] else "⏳"
        impl = "IMPL" if site['key'] in implemented else "TODO"
        print(f"{status} [{impl}] {site['key']:12} - {site['name']}")
        print(f"              Type: {site['type']}")
        print(f"              URL:  {site['url']}")
        print()


async def scrape_criteria(criteria: SearchCriteria, site_keys=None, as_json: bool = False) -> int:
    """Scrape without persistence and print the matches."""
    print(f"\n{'='*60}")
    print(f"Scraping {', '.join(criteria.locations)} (max ${criteria.max_price:,.0f})")
    print(f"{'='*60}\n")

    manager = ScraperManager()
    by_site = await manager.scrape_all(criteria, site_keys=site_keys)

    if as_json:
        payload = {key: [l.to_dict() for l in listings] for key, listings in by_site.items()}
        print(json.dumps(payload, indent=2, default=str))
    else:
        for key, listings in by_site.items():
            print(f"--- {key}: {len(listings)} matching listings ---")
            for i, listing in enumerate(listings, 1):
                print(f"{i}. {listing.address}, {listing.city}, {listing.state} {listing.zip_code}")
                print(f"   ${listing.price:,.0f} | {listing.bedrooms} bd | {listing.bathrooms:g} ba | {listing.property_type.value}")
                print(f"   {listing.url}")
            print()

    summary = manager.get_results_summary()
    print(f"Sites: {summary['successful']} ok, {summary['failed']} with errors")
    return 0 if summary['failed'] == 0 else 1


async def run_search(search_id: int) -> int:
    """Full scrape-and-reconcile run against the configured database."""
    from api.config import settings
    from api.database import SessionLocal, init_db
    from api.errors import PropertyFinderError
    from api.notifications import NotificationService, build_notifier
    from api.reconcile import ReconciliationEngine
    from api.store import ListingStore

    init_db()
    db = SessionLocal()
    try:
        store = ListingStore(db)
        engine = ReconciliationEngine(
            store,
            manager=ScraperManager(),
            notifications=NotificationService(
                store,
                build_notifier(settings),
                placeholder_domain=settings.placeholder_email_domain,
            ),
            stale_after_minutes=settings.run_stale_after_minutes,
        )
        try:
            summary = await engine.run(search_id)
        except PropertyFinderError as e:
            print(f"Run failed: {e}")
            return 1
        print(json.dumps(summary.to_dict(), indent=2, default=str))
        return 0
    finally:
        db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Run the property scrapers')
    parser.add_argument('--list', action='store_true', help='List all scrapers')
    subparsers = parser.add_subparsers(dest='command')

    run_parser = subparsers.add_parser('run', help='Run a stored search end to end')
    run_parser.add_argument('search_id', type=int, help='Search id to run')

    scrape_parser = subparsers.add_parser('scrape', help='Scrape ad-hoc criteria without storing anything')
    scrape_parser.add_argument('--location', action='append', required=True,
                               help='City/state or 5-digit ZIP (repeatable)')
    scrape_parser.add_argument('--max-price', type=float, required=True)
    scrape_parser.add_argument('--min-price', type=float, default=None)
    scrape_parser.add_argument('--min-beds', type=int, default=0)
    scrape_parser.add_argument('--min-baths', type=float, default=0)
    scrape_parser.add_argument('--site', action='append', help='Limit to site key (repeatable)')
    scrape_parser.add_argument('--json', action='store_true', help='Print matches as JSON')
    return parser


async def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list:
        list_scrapers(ScraperManager())
        return 0

    if args.command == 'run':
        return await run_search(args.search_id)

    if args.command == 'scrape':
        try:
            criteria = SearchCriteria(
                max_price=args.max_price,
                locations=tuple(args.location),
                min_price=args.min_price,
                min_bedrooms=args.min_beds,
                min_bathrooms=args.min_baths,
            )
        except ValueError as e:
            parser.error(str(e))
        return await scrape_criteria(criteria, site_keys=args.site, as_json=args.json)

    parser.print_help()
    print("\nExample: python -m scrapers.cli scrape --location 22203 --max-price 600000")
    return 0


def run():
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == '__main__':
    run()
