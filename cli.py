"""
CLI entry point for gitstatus. Wires fetch -> ledger -> query -> report.
"""

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone

from ingest.github import GitHubActivityClient
from ingest.sync import ActivitySync, RateLimitTooLow
from query.service import QueryService
from query.tools import member_activities, organization_stats, top_contributors, TOP_CONTRIBUTOR_FIELDS
from report.renderer import render
from settings import DATA_DIR, display_names, load_organizations, resolve_token
from storage.blobs import CorruptBlobError, JsonBlobStore
from storage.cache import Cache, configure_retry
from storage.ledger import (
    MONTH,
    WEEK,
    BucketAlreadyExists,
    BucketLedger,
    FlatLedger,
    get_all_organizations_last_updated,
    load_all_organizations_merged,
)

logger = logging.getLogger("gitstatus")


def _print_json(obj):
    print(json.dumps(obj, indent=2, default=str, ensure_ascii=False))


def _ledgers(args, organizations):
    store = JsonBlobStore(args.data_dir)
    names = display_names(organizations)
    return BucketLedger(store, getattr(args, 'kind', MONTH) or MONTH, names), FlatLedger(store, names)


def _load_records(args, organizations):
    bucket_ledger, flat_ledger = _ledgers(args, organizations)
    return load_all_organizations_merged(
        organizations, bucket_ledger, flat_ledger, getattr(args, 'start', None), getattr(args, 'end', None)
    )


def _open_cache(args):
    return Cache(args.cache) if args.cache else None


def _sync(args, organizations, cache) -> ActivitySync:
    client = GitHubActivityClient(resolve_token(args.token), cache=cache, batch_size=args.batch_size)
    bucket_ledger, flat_ledger = _ledgers(args, organizations)
    return ActivitySync(client, bucket_ledger, flat_ledger, organizations, min_rate_remaining=args.min_rate_remaining)


def _write_report_file(path: str, content: str):
    out_dir = os.path.dirname(path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    # newline='' keeps CSV line endings intact on Windows
    with open(path, 'w', encoding='utf-8', newline='') as fh:
        fh.write(content)
    print(f"Wrote report to {path}")


def cmd_fetch_bucket(args, organizations) -> int:
    cache = _open_cache(args)
    try:
        sync = _sync(args, organizations, cache)
        try:
            bucket = sync.fetch_bucket(args.org, args.start, args.end, force=args.force)
        except BucketAlreadyExists as ex:
            print(f"Bucket {ex.bucket_key} for {args.org} was already fetched ({ex.range_start} to {ex.range_end}). Use --force to re-fetch.")
            return 1
        except CorruptBlobError as ex:
            print(f"Not starting fetch: ledger file {ex.key} cannot be read ({ex.reason}). Repair or remove it first.")
            return 1
        except RateLimitTooLow as ex:
            print(f"Not starting fetch: {ex}")
            return 2
        _print_json({'organization': args.org, 'records': len(bucket.records), **bucket.summary()})
        return 0
    finally:
        if cache:
            cache.close()


def cmd_fetch_all(args, organizations) -> int:
    cache = _open_cache(args)
    try:
        sync = _sync(args, organizations, cache)
        try:
            report = sync.fetch_all_organizations(args.start, args.end)
        except RateLimitTooLow as ex:
            print(f"Not starting fetch: {ex}")
            return 2
        _print_json(report)
        return 0 if all(r['success'] for r in report.values()) else 1
    finally:
        if cache:
            cache.close()


def cmd_fetch_member(args, organizations) -> int:
    cache = _open_cache(args)
    try:
        sync = _sync(args, organizations, cache)
        try:
            records = sync.fetch_member_all_organizations(args.login, args.start, args.end)
        except RateLimitTooLow as ex:
            print(f"Not starting fetch: {ex}")
            return 2
        _print_json([r.to_json() for r in records])
        return 0
    finally:
        if cache:
            cache.close()


def cmd_list_buckets(args, organizations) -> int:
    bucket_ledger, _ = _ledgers(args, organizations)
    _print_json(bucket_ledger.list_fetched_buckets(args.org))
    return 0


def cmd_delete_bucket(args, organizations) -> int:
    bucket_ledger, _ = _ledgers(args, organizations)
    if bucket_ledger.delete_bucket(args.org, args.bucket_key):
        print(f"Deleted {bucket_ledger.kind} bucket {args.bucket_key} for {args.org}")
        return 0
    print(f"Bucket not found: {args.org} {args.bucket_key}")
    return 1


def cmd_query(args, organizations) -> int:
    loaded = _load_records(args, organizations)
    service = QueryService(loaded['records'], organizations)
    result = service.process(args.text)
    rendered = render(result, fmt=args.output, generated_at=datetime.now(timezone.utc).isoformat())
    if args.out_file:
        _write_report_file(args.out_file, rendered)
    else:
        print(rendered)
    return 0 if result.data is not None else 1


def cmd_rate_limit(args, organizations) -> int:
    client = GitHubActivityClient(resolve_token(args.token))
    _print_json(client.rate_limit_status())
    return 0


def cmd_stats(args, organizations) -> int:
    loaded = _load_records(args, organizations)
    bucket_ledger, flat_ledger = _ledgers(args, organizations)
    _print_json({
        'organizations': organization_stats(loaded['records'], args.org),
        'sources': loaded['per_org_stats'],
        'last_updated': get_all_organizations_last_updated(organizations, bucket_ledger, flat_ledger),
    })
    return 0


def cmd_top(args, organizations) -> int:
    loaded = _load_records(args, organizations)
    _print_json(top_contributors(loaded['records'], args.activity_type, args.limit, args.org))
    return 0


def cmd_member(args, organizations) -> int:
    loaded = _load_records(args, organizations)
    result = member_activities(loaded['records'], args.login, args.org, merged=args.merged)
    _print_json(result)
    return 0 if result['data'] else 1


def cmd_cache_info(args, organizations) -> int:
    with Cache(args.cache or 'cache.db') as cache:
        info = cache.stats()
        if args.list:
            info['keys'] = cache.list_keys(limit=args.limit)
        _print_json(info)
    return 0


def cmd_cache_clear(args, organizations) -> int:
    path = args.cache or 'cache.db'
    if not args.force:
        confirm = input(f"Are you sure you want to clear the cache at {path}? This cannot be undone. [y/N]: ")
        if confirm.strip().lower() not in ("y", "yes"):
            print("Aborted cache clear.")
            return 1
    with Cache(path) as cache:
        removed = cache.clear()
    print(f"Cleared {removed} entries from cache at {path}")
    return 0


def _add_range(p, required=True):
    p.add_argument("--start", type=str, required=required, help="Start date (YYYY-MM-DD, or YYYY-MM for reads)")
    p.add_argument("--end", type=str, required=required, help="End date (YYYY-MM-DD, or YYYY-MM for reads)")


def _add_kind(p):
    p.add_argument("--kind", choices=(WEEK, MONTH), default=MONTH, help="Bucket granularity (default: month)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gitstatus", description="Organization activity ledger and query CLI")
    parser.add_argument("--data-dir", type=str, default=DATA_DIR, help="Ledger directory (overrides GITSTATUS_DATA_DIR env)")
    parser.add_argument("--organizations-file", type=str, default=None, help="Organizations YAML (overrides GITSTATUS_ORGANIZATIONS_FILE env)")
    parser.add_argument("--token", type=str, default=None, help="GitHub token (defaults to GITHUB_TOKEN env)")
    parser.add_argument("--cache", type=str, default="", help="Path to SQLite response cache (optional)")
    parser.add_argument("--batch-size", type=int, default=None, help="Concurrent repository requests (overrides GITSTATUS_BATCH_SIZE env)")
    parser.add_argument("--min-rate-remaining", type=int, default=None, help="Refuse to fetch below this many remaining API calls")
    parser.add_argument("--max-retries", type=int, default=None, help="Maximum retry attempts for HTTP requests (overrides GITSTATUS_MAX_RETRIES env)")
    parser.add_argument("--backoff-base", type=float, default=None, help="Base backoff seconds (overrides GITSTATUS_BACKOFF_BASE env)")
    parser.add_argument("--backoff-jitter", type=float, default=None, help="Jitter seconds added to backoff (overrides GITSTATUS_BACKOFF_JITTER env)")
    parser.add_argument("--max-backoff", type=float, default=None, help="Maximum backoff cap in seconds (overrides GITSTATUS_MAX_BACKOFF env)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("fetch-bucket", help="Fetch one week/month bucket for one organization")
    p.add_argument("org")
    _add_range(p)
    _add_kind(p)
    p.add_argument("--force", action="store_true", help="Re-fetch even if the bucket was already fetched")
    p.set_defaults(func=cmd_fetch_bucket)

    p = sub.add_parser("fetch-all", help="Fetch every configured organization into flat snapshots")
    _add_range(p)
    p.set_defaults(func=cmd_fetch_all)

    p = sub.add_parser("fetch-member", help="Fetch one member across every configured organization")
    p.add_argument("login")
    _add_range(p)
    p.set_defaults(func=cmd_fetch_member)

    p = sub.add_parser("list-buckets", help="List fetched buckets for an organization")
    p.add_argument("org")
    _add_kind(p)
    p.set_defaults(func=cmd_list_buckets)

    p = sub.add_parser("delete-bucket", help="Delete one fetched bucket")
    p.add_argument("org")
    p.add_argument("bucket_key", help="YYYY-MM for months, YYYY-WW for ISO weeks")
    _add_kind(p)
    p.set_defaults(func=cmd_delete_bucket)

    p = sub.add_parser("query", help="Ask a natural-language question about stored activity")
    p.add_argument("text")
    _add_range(p, required=False)
    _add_kind(p)
    p.add_argument("--output", type=str, default="text", help="Output format (text, json, md, csv, html)")
    p.add_argument("--out-file", type=str, default="", help="Write the rendered result to this file")
    p.set_defaults(func=cmd_query)

    p = sub.add_parser("rate-limit", help="Show the current GitHub API rate limit")
    p.set_defaults(func=cmd_rate_limit)

    p = sub.add_parser("stats", help="Organization statistics from stored activity")
    p.add_argument("--org", type=str, default=None)
    _add_range(p, required=False)
    _add_kind(p)
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("top", help="Top contributors by activity type")
    p.add_argument("activity_type", choices=TOP_CONTRIBUTOR_FIELDS)
    p.add_argument("--limit", type=int, default=10)
    p.add_argument("--org", type=str, default=None)
    _add_range(p, required=False)
    _add_kind(p)
    p.set_defaults(func=cmd_top)

    p = sub.add_parser("member", help="Activity of one member")
    p.add_argument("login")
    p.add_argument("--org", type=str, default=None)
    p.add_argument("--merged", action="store_true", help="Sum the member's activity across organizations")
    _add_range(p, required=False)
    _add_kind(p)
    p.set_defaults(func=cmd_member)

    p = sub.add_parser("cache-info", help="Show response cache statistics")
    p.add_argument("--list", action="store_true", help="Also list cached keys")
    p.add_argument("--limit", type=int, default=100)
    p.set_defaults(func=cmd_cache_info)

    p = sub.add_parser("cache-clear", help="Clear the response cache")
    p.add_argument("--force", action="store_true", help="Do not ask for confirmation")
    p.set_defaults(func=cmd_cache_clear)
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # CLI flags take precedence over environment variables
    configure_retry(max_retries=args.max_retries, backoff_base=args.backoff_base, backoff_jitter=args.backoff_jitter, max_backoff=args.max_backoff)
    organizations = load_organizations(args.organizations_file)
    return args.func(args, organizations)


if __name__ == "__main__":
    sys.exit(main())
