#!/usr/bin/env python3
"""
Heat Map Runner

Runs one heat map scan from the command line:
1. Loads (or creates) the project
2. Checks the Google Maps position at every grid point (DataForSEO)
3. Resolves weak points to town names (Google Geocoding, if configured)
4. Stores the grid and scan history, prints the map

Usage:
    # Set environment variables first:
    export DATAFORSEO_LOGIN=your_login
    export DATAFORSEO_PASSWORD=your_password
    export GOOGLE_MAPS_API_KEY=your_key   # optional

    # Scan for an existing project:
    python scripts/run_heat_map.py "web design in doncaster" --project-id <uuid>

    # Ad-hoc business:
    python scripts/run_heat_map.py "web design in doncaster" \
        --business "Dolphin ICT" --lat 53.5228 --lng -1.1285 \
        --location Doncaster --preset quick
"""

import asyncio
import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


def print_grid(report):
    """Print positions as a map, north at the top."""
    size = report.config.grid_size
    positions = report.result.positions
    for y in reversed(range(size)):
        row = positions[y * size:(y + 1) * size]
        print("  " + " ".join(f"{p:>3}" if p is not None else "  -" for p in row))


async def run_heat_map(
    phrase: str,
    project_id: str = None,
    business: str = None,
    latitude: float = None,
    longitude: float = None,
    location: str = None,
    website: str = None,
    preset: str = None,
    grid_size: int = None,
    radius_km: float = None,
    persist: bool = True,
):
    """Run one scan and print the report."""

    load_dotenv()

    from geoscale.database import init_db, create_project
    from geoscale.heatmap import HeatMapService, HeatMapError, ScanAbortedError, estimate_scan
    from geoscale.integrations import ConfigurationError, ExternalAPIClients
    from geoscale.utils.config import get_settings

    settings = get_settings()
    if not settings.has_dataforseo:
        print("ERROR: Missing required environment variables:")
        print("  - DATAFORSEO_LOGIN")
        print("  - DATAFORSEO_PASSWORD")
        return None

    init_db()

    if not project_id:
        if not business or latitude is None or longitude is None:
            print("ERROR: Pass --project-id, or --business with --lat and --lng")
            return None
        project_id = create_project(
            business,
            company_name=business,
            base_location=location,
            latitude=latitude,
            longitude=longitude,
            blog_url=website,
        )

    size = grid_size or 5
    estimate = estimate_scan(
        size,
        cost_per_call=settings.HEATMAP_COST_PER_CALL,
        ms_per_call=settings.HEATMAP_MS_PER_CALL,
        concurrency=settings.HEATMAP_CONCURRENCY,
    )

    print(f"\n{'='*70}")
    print("GEOSCALE HEAT MAP")
    print(f"{'='*70}")
    print(f"Phrase:       {phrase}")
    print(f"Project:      {project_id}")
    print(f"Grid:         {preset or f'{size}x{size}'}")
    if not preset:
        print(f"Estimate:     {estimate.api_calls} calls, ~${estimate.estimated_cost:.2f}, ~{estimate.estimated_seconds:.0f}s")
    print(f"Geocoding:    {'on' if settings.has_google_maps else 'off (no GOOGLE_MAPS_API_KEY)'}")
    print(f"{'='*70}\n")

    def on_progress(progress):
        print(
            f"\r  {progress.completed}/{progress.total} points "
            f"(~{progress.estimated_percent:.0f}% estimated)",
            end="",
            flush=True,
        )

    async with ExternalAPIClients(settings) as clients:
        try:
            service = HeatMapService(clients.dataforseo, clients.google_maps, settings=settings)
        except ConfigurationError as e:
            print(f"ERROR: {e}")
            return None

        try:
            report = await service.run_scan(
                project_id,
                phrase,
                grid_size=grid_size,
                radius_km=radius_km,
                preset=preset,
                on_progress=on_progress,
                persist=persist,
            )
        except ScanAbortedError as e:
            partial = e.partial_result
            print(f"\n✗ Scan aborted: {e}")
            if partial:
                print(f"  {partial.completed_count}/{partial.total_points} points were checked")
            return None
        except HeatMapError as e:
            print(f"\n✗ {e}")
            return None

    aggregate = report.aggregate
    print("\n")
    print_grid(report)
    print(f"\n{'='*70}")
    print(f"Status:           {report.status.value}")
    print(f"Average position: {aggregate.average_position if aggregate.has_rankings else 'not ranked'}")
    print(f"Ranked points:    {aggregate.ranked_count}/{aggregate.total_points} ({aggregate.visibility_percent}%)")
    print(f"Failed points:    {len(report.failures)}")
    print(f"API cost:         ${report.result.api_cost:.2f}")

    if report.weak_locations:
        print("\nWeak locations:")
        for loc in report.weak_locations:
            print(f"  ⚠ {loc.name} ({'#' + str(loc.position) if loc.position else 'not ranked'})")

    if report.scan_id:
        print(f"\nSaved scan {report.scan_id}")

    return report


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run a local search ranking heat map scan"
    )
    parser.add_argument(
        "phrase",
        help="Keyword phrase to check (e.g., 'web design in doncaster')"
    )
    parser.add_argument("--project-id", default=None, help="Existing project id")
    parser.add_argument("--business", default=None, help="Business name as shown on Google Maps")
    parser.add_argument("--lat", type=float, default=None, help="Center latitude")
    parser.add_argument("--lng", type=float, default=None, help="Center longitude")
    parser.add_argument("--location", default=None, help="Base town (excluded from weak locations)")
    parser.add_argument("--website", default=None, help="Business website, used for domain matching")
    parser.add_argument(
        "--preset",
        default=None,
        choices=["quick", "standard", "detailed", "comprehensive"],
        help="Grid preset (default: quick)"
    )
    parser.add_argument("--grid-size", type=int, default=None, help="Points per side")
    parser.add_argument("--radius", type=float, default=None, help="Radius in km")
    parser.add_argument(
        "--no-save",
        action="store_true",
        help="Do not store the grid or scan history"
    )

    args = parser.parse_args()

    report = asyncio.run(run_heat_map(
        phrase=args.phrase,
        project_id=args.project_id,
        business=args.business,
        latitude=args.lat,
        longitude=args.lng,
        location=args.location,
        website=args.website,
        preset=args.preset,
        grid_size=args.grid_size,
        radius_km=args.radius,
        persist=not args.no_save,
    ))

    if report is None:
        sys.exit(1)


if __name__ == "__main__":
    main()
