import argparse
import json
import sys
from dotenv import load_dotenv
from pydantic import ValidationError

# Load environment variables from .env
load_dotenv()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run one ad-hoc marketplace query and post the results.")
    parser.add_argument("filter", nargs="?", help='query filter as JSON, e.g. \'{"itemType": "boots", "affixes": ["5001"]}\'')
    parser.add_argument("--file", help="read the filter JSON from a file instead")
    parser.add_argument("--recipient", help="Discord user id to mention")
    return parser.parse_args(argv)


def load_filter(args):
    if args.file:
        with open(args.file, "r", encoding="utf-8") as fh:
            return json.load(fh)
    if args.filter:
        return json.loads(args.filter)
    raise SystemExit("A filter is required (positional JSON or --file)")


if __name__ == "__main__":
    from tradewatch.errors import ConfigError
    from tradewatch.schemas import QueryFilter
    from tradewatch.services import build_orchestrator
    from tradewatch.settings import load_settings

    args = parse_args()
    try:
        query = QueryFilter.model_validate(load_filter(args))
    except (ValueError, ValidationError) as e:
        raise SystemExit(f"Invalid filter: {e}")
    try:
        settings = load_settings()
    except ConfigError as e:
        raise SystemExit(str(e))

    print(f"Running query for itemType={query.item_type} affixes={[a.id for a in query.affixes]}...")
    outcome = build_orchestrator(settings).run(None, query, (), recipient=args.recipient)

    print(f"Fetched {outcome.fetched} listing(s), delivered {len(outcome.delivered_ids)}.")
    if outcome.capture_failures:
        print(f"Screenshots failed for: {', '.join(outcome.capture_failures)}")
    if outcome.failed_batches:
        print(f"{outcome.failed_batches} batch(es) could not be delivered.")
    if outcome.error:
        print(f"Run failed: {outcome.error}")
    sys.exit(0 if outcome.ok else 1)
