"""Command line interface for parlay-gen."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from parlay_gen.budget import current_month_utc, llm_budget_status
from parlay_gen.catalog import BOOKMAKER_KEYS, SPORT_CODES, user_selectable_bet_types
from parlay_gen.errors import InsufficientDataError, ParlayGenError
from parlay_gen.models import NoOpportunities
from parlay_gen.picks import suggest_picks
from parlay_gen.pipeline import ParlayRequest, build_components, build_pipeline
from parlay_gen.risk import RISK_POLICIES
from parlay_gen.settings import Settings


def _csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _request(args: argparse.Namespace) -> ParlayRequest:
    return ParlayRequest(
        sports=_csv(args.sports),
        bet_types=_csv(args.bet_types),
        num_legs=int(args.legs),
        risk_level=args.risk,
        date_range_days=int(args.days),
        bookmaker=args.book,
        fast_mode=bool(args.fast),
    )


def _print_json(payload: object) -> None:
    print(json.dumps(payload, sort_keys=True, indent=2, ensure_ascii=False))


def _cmd_generate(args: argparse.Namespace) -> int:
    settings = Settings()
    components = build_components(settings, fast_mode=bool(args.fast))
    try:
        result = build_pipeline(components).generate(_request(args))
    finally:
        components.close()
    if args.json:
        _print_json(result.to_dict())
        return 0 if not isinstance(result, NoOpportunities) else 1
    if isinstance(result, NoOpportunities):
        print(result.message)
        if result.retry_hint:
            print(result.retry_hint)
        return 1
    print(result.content)
    if result.combined is not None:
        print(
            f"\ncombined={result.combined.combined_american} "
            f"payout_on_100={result.combined.payout_on_100} "
            f"validated={result.metadata.get('fully_validated')}"
        )
    return 0


def _cmd_suggest(args: argparse.Namespace) -> int:
    settings = Settings()
    components = build_components(settings, fast_mode=bool(args.fast))
    try:
        suggestions = suggest_picks(
            _request(args),
            acquirer=components.acquirer,
            enricher=components.enricher,
            generate_fn=components.generate_fn("suggest_picks"),
        )
    except InsufficientDataError as exc:
        print(str(exc), file=sys.stderr)
        if exc.retry_hint:
            print(exc.retry_hint, file=sys.stderr)
        return 1
    finally:
        components.close()
    if args.json:
        _print_json(suggestions.to_dict())
        return 0
    for idx, pick in enumerate(suggestions.suggestions, start=1):
        confidence = f" conf={pick.confidence:g}" if pick.confidence is not None else ""
        print(f"{idx}. {pick.game_date} {pick.game} | {pick.pick} ({pick.odds}){confidence}")
    if suggestions.alert is not None:
        print(f"\n{suggestions.alert.title}: {suggestions.alert.message}")
        for line in suggestions.alert.suggestions:
            print(f"  {line}")
    return 0


def _cmd_catalog(args: argparse.Namespace) -> int:
    payload = {
        "sports": list(SPORT_CODES),
        "bet_types": user_selectable_bet_types(),
        "books": sorted(BOOKMAKER_KEYS),
        "risk_levels": list(RISK_POLICIES),
    }
    if args.json:
        _print_json(payload)
        return 0
    for key, values in payload.items():
        print(f"{key}: {', '.join(values)}")
    return 0


def _cmd_usage(args: argparse.Namespace) -> int:
    settings = Settings()
    month = args.month or current_month_utc()
    usage_dir = Path(settings.data_dir) / "llm_usage"
    status = llm_budget_status(usage_dir, month, settings.llm_monthly_cap_usd)
    if args.json:
        _print_json(status)
        return 0
    print(
        f"month={status['month']} used_usd={status['used_usd']} cap_usd={status['cap_usd']} "
        f"remaining_usd={status['remaining_usd']} cap_reached={status['cap_reached']}"
    )
    return 0


def _add_request_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--sports", default="NFL", help="Comma separated sports.")
    parser.add_argument(
        "--bet-types", default="Moneyline/Spread", help="Comma separated bet types or ALL."
    )
    parser.add_argument("--legs", type=int, default=3, choices=range(1, 11), metavar="N")
    parser.add_argument("--risk", default="Medium", choices=sorted(RISK_POLICIES))
    parser.add_argument("--days", type=int, default=1, choices=range(1, 8), metavar="DAYS")
    parser.add_argument("--book", default="DraftKings", help="Primary bookmaker.")
    parser.add_argument("--fast", action="store_true", help="Core markets only, short timeouts.")
    parser.add_argument("--json", action="store_true")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="parlay-gen")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level for diagnostics on stderr.",
    )
    subparsers = parser.add_subparsers(dest="command")

    generate = subparsers.add_parser("generate", help="Generate a validated parlay.")
    _add_request_args(generate)
    generate.set_defaults(func=_cmd_generate)

    suggest = subparsers.add_parser("suggest", help="Suggest independent picks.")
    _add_request_args(suggest)
    suggest.set_defaults(func=_cmd_suggest)

    catalog = subparsers.add_parser("catalog", help="List sports, bet types and books.")
    catalog.add_argument("--json", action="store_true")
    catalog.set_defaults(func=_cmd_catalog)

    usage = subparsers.add_parser("usage", help="Show monthly model spend against the cap.")
    usage.add_argument("--month", default="", help="YYYY-MM (default: current UTC month).")
    usage.add_argument("--json", action="store_true")
    usage.set_defaults(func=_cmd_usage)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the CLI."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    func = getattr(args, "func", None)
    if func is None:
        parser.print_help()
        return 0
    try:
        return int(func(args))
    except (ParlayGenError, FileNotFoundError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
