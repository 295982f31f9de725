"""Run data collection from the project root without starting the web app.

    python run_collection.py next                      # one scheduler pass
    python run_collection.py make Toyota --days-back 30
    python run_collection.py targeted Toyota --model Camry --from 2025-01-01 --to 2025-03-31 --site 1
"""
import argparse
from datetime import date

from auction_pipeline.db import Base, engine
from auction_pipeline.errors import ValidationError
from auction_pipeline.pipeline import Pipeline
from auction_pipeline.schemas import TargetedCollectionRequest
import auction_pipeline.models  # noqa: F401


def build_parser():
    parser = argparse.ArgumentParser(description="Collect auction sales into the local store")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("next", help="process the next due scheduler job")

    make = sub.add_parser("make", help="collect one make with explicit window overrides")
    make.add_argument("make")
    make.add_argument("--model")
    make.add_argument("--days-back", type=int)
    make.add_argument("--year-from", type=int)
    make.add_argument("--year-to", type=int)
    make.add_argument("--site", type=int, choices=[1, 2])

    targeted = sub.add_parser("targeted", help="targeted collection for an explicit date range")
    targeted.add_argument("make")
    targeted.add_argument("--model")
    targeted.add_argument("--from", dest="date_from", required=True)
    targeted.add_argument("--to", dest="date_to", required=True)
    targeted.add_argument("--year-from", type=int, default=2012)
    targeted.add_argument("--year-to", type=int, default=date.today().year + 1)
    targeted.add_argument("--site", type=int, choices=[1, 2])
    targeted.add_argument("--force", action="store_true", help="collect even if rows already exist")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    Base.metadata.create_all(bind=engine)
    pipeline = Pipeline()

    if args.command == "next":
        result = pipeline.scheduler.process_next_job()
        if result is None:
            print("No collection job is due.")
            return 0
    elif args.command == "make":
        result = pipeline.scheduler.collect_make(
            args.make, days_back=args.days_back, year_from=args.year_from, year_to=args.year_to,
            model=args.model, sites=[args.site] if args.site else None,
        )
    else:
        req = TargetedCollectionRequest(
            make=args.make, model=args.model, year_from=args.year_from, year_to=args.year_to,
            sale_date_from=args.date_from, sale_date_to=args.date_to, site=args.site,
        )
        try:
            response = pipeline.targeted.collect(req, force=args.force)
        except ValidationError as e:
            print(f"Invalid request: {e}")
            return 2
        for r in response.results:
            print(f"{r.site_name}: {r.status}, {r.records_collected} new, {r.existing_records} existing"
                  + (f" ({r.error})" if r.error else ""))
        print(f"Total collected: {response.total_records_collected}")
        return 0

    for o in result.outcomes:
        print(f"{o.model or 'all models'} site={int(o.site)}: {o.status.value}, {o.records_collected} new"
              + (f" ({o.error})" if o.error else ""))
    print(f"{result.make}: {result.status.value}, {result.records_collected} records collected")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
