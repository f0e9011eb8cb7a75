"""CLI with subcommands for the video catalog."""

import argparse
import json
import logging
import sys

from vidcatalog import db
from vidcatalog.config import FIX_TITLES_WORKERS, PATTERN_SAMPLE_SIZE, MatchConfig


def _open_input(path):
    return sys.stdin if path == "-" else open(path, encoding="utf-8")


def _read_json_lines(path, bad_lines):
    """Yield one upload per line; malformed lines go to ``bad_lines`` and are skipped."""
    f = _open_input(path)
    try:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                video = json.loads(line)
            except json.JSONDecodeError as e:
                problem = f"invalid JSON: {e}"
            else:
                if isinstance(video, dict):
                    yield video
                    continue
                problem = "expected a JSON object"
            bad_lines.append((f"{path}:{lineno}", problem))
            print(f"    ERROR on {path}:{lineno}: {problem}")
    finally:
        if f is not sys.stdin:
            f.close()


def cmd_ingest(args):
    """Ingest uploads from a JSON-lines file."""
    from vidcatalog.ingest import Ingestor
    from vidcatalog.scoring import constant_reputation

    conn = db.get_connection(args.db)
    catalog = None
    if args.omdb:
        from vidcatalog.omdb import OmdbClient
        catalog = OmdbClient(use_cache=not args.no_cache)

    ingestor = Ingestor(
        conn,
        config=MatchConfig(fuzzy_match_threshold=args.threshold,
                           year_tolerance=args.year_tolerance),
        reputation=constant_reputation(args.reputation),
        catalog=catalog,
    )
    print(f"Ingesting uploads from {args.input}...")
    bad_lines = []
    results, errors = ingestor.ingest_many(_read_json_lines(args.input, bad_lines),
                                           verbose=True)
    errors = bad_lines + errors

    by_match = {}
    for r in results:
        by_match[r.match_type] = by_match.get(r.match_type, 0) + 1
    print(f"  Ingested: {len(results)}")
    for match_type, n in sorted(by_match.items()):
        print(f"    {match_type:15s} {n}")
    print(f"  Primaries: {sum(1 for r in results if r.state == 'primary')}")
    if errors:
        print(f"  Errors:    {len(errors)}")
    conn.close()


def cmd_fix_titles(args):
    """Re-clean copy titles from their original upload titles."""
    from vidcatalog.maintenance import fix_all_titles

    conn = db.get_connection(args.db)
    print("Fixing copy titles...")
    report = fix_all_titles(
        conn,
        dry_run=args.dry_run,
        limit=args.limit,
        source_id=args.channel,
        workers=args.workers,
        verbose=True,
    )
    if args.dry_run:
        for change in report["changes"][:args.show]:
            print(f"    {change['old_title']!r} → {change['new_title']!r}")
        if len(report["changes"]) > args.show:
            print(f"    ... and {len(report['changes']) - args.show} more")
    conn.close()


def cmd_analyze_channel(args):
    """Detect a channel's title layout from sample titles (one per line)."""
    from vidcatalog.patterns import analyze_channel

    f = _open_input(args.titles)
    try:
        titles = [line.strip() for line in f if line.strip()]
    finally:
        if f is not sys.stdin:
            f.close()
    titles = titles[:args.sample]
    if not titles:
        print("  No titles to analyze.")
        sys.exit(1)

    conn = db.get_connection(args.db)
    pattern = analyze_channel(conn, args.channel, titles)
    print(f"  Channel:    {args.channel}")
    print(f"  Pattern:    {pattern['type']}")
    print(f"  Position:   {pattern['title_position']}")
    print(f"  Confidence: {pattern['confidence']:.2f}")
    print(f"  Samples:    {pattern['sample_count']}")
    print(f"  {pattern['notes']}")
    conn.close()


def cmd_resweep(args):
    """Re-pick the primary copy of one group."""
    from vidcatalog.maintenance import resweep_group

    conn = db.get_connection(args.db)
    primary = resweep_group(conn, args.group)
    if primary is None:
        print(f"  Group {args.group} has no available copies.")
    else:
        print(f"  Group {args.group}: primary is copy {primary}")
    conn.close()


def cmd_failover(args):
    """Replace a group's unavailable primary with its best backup."""
    from vidcatalog.maintenance import failover_primary

    conn = db.get_connection(args.db)
    new_primary = failover_primary(conn, args.group, failed_copy_id=args.copy)
    if new_primary is None:
        print(f"  No backups available for group {args.group}; admin alert raised.")
    else:
        print(f"  Group {args.group}: promoted copy {new_primary}")
    conn.close()


def cmd_merge_groups(args):
    """Merge work groups that were created twice for the same work."""
    from vidcatalog.maintenance import merge_duplicate_groups

    conn = db.get_connection(args.db)
    print("Merging duplicate groups...")
    merges = merge_duplicate_groups(
        conn, config=MatchConfig(year_tolerance=args.year_tolerance), verbose=True,
    )
    print(f"  {len(merges)} groups merged")
    conn.close()


def cmd_versions(args):
    """List all copies of a group."""
    from vidcatalog.maintenance import backup_count, group_versions

    conn = db.get_connection(args.db)
    group = db.get_group(conn, args.group)
    if group is None:
        print(f"  Group {args.group} not found.")
        conn.close()
        sys.exit(1)

    year = f" ({group['release_year']})" if group["release_year"] else ""
    print(f"  {group['canonical_title']}{year}")
    if group["external_id"]:
        print(f"  External id: {group['external_id']}")
    if group["merged_into"]:
        print(f"  Merged into group {group['merged_into']}")
    for row in group_versions(conn, args.group):
        flag = "*" if row["is_primary"] else " "
        avail = "" if row["is_available"] else "  [unavailable]"
        print(f"   {flag} {row['id']:>6} {row['quality_score']:>3}  "
              f"{row['source_video_id']}  {row['title']}{avail}")
    print(f"  Backups available: {backup_count(conn, args.group)}")
    conn.close()


def cmd_status(args):
    """Show database statistics."""
    conn = db.get_connection(args.db)
    stats = db.db_stats(conn)
    print(f"  Work groups:          {stats['work_groups']}")
    print(f"  Copies:               {stats['copies']}")
    print(f"  Primary copies:       {stats['primary_copies']}")
    print(f"  Ungrouped copies:     {stats['ungrouped_copies']}")
    print(f"  Groups w/o primary:   {stats['groups_without_primary']}")
    print(f"  Channels:             {stats['channels']}")
    print(f"  Failover events:      {stats['failover_events']}")

    alerts = db.unresolved_alerts(conn)
    if alerts:
        print(f"  Unresolved alerts:    {len(alerts)}")
        for row in alerts[:10]:
            print(f"    [{row['severity']}] {row['alert_type']}: {row['message']}")
    conn.close()


def build_parser():
    parser = argparse.ArgumentParser(
        prog="vidcatalog",
        description="Video catalog deduplication",
    )
    parser.add_argument("--db", default=None,
                        help="SQLite database path (default: $VIDCATALOG_DB or "
                             "~/.vidcatalog/vidcatalog.db)")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging level (default: WARNING)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ingest
    p_ingest = subparsers.add_parser("ingest", help="Ingest uploads from a JSON-lines file")
    p_ingest.add_argument("input", help="JSON-lines file, one upload per line ('-' = stdin)")
    p_ingest.add_argument("--threshold", type=float, default=MatchConfig.fuzzy_match_threshold,
                          help="Minimum title similarity for a fuzzy match (default: 0.7)")
    p_ingest.add_argument("--year-tolerance", type=int, default=MatchConfig.year_tolerance,
                          help="Max release-year difference for a match (default: 1)")
    p_ingest.add_argument("--reputation", type=float, default=0.5,
                          help="Channel reputation used for scoring (default: 0.5)")
    p_ingest.add_argument("--omdb", action="store_true",
                          help="Look up missing external ids on OMDb ($OMDB_API_KEY)")
    p_ingest.add_argument("--no-cache", action="store_true",
                          help="Disable local OMDb response cache")
    p_ingest.set_defaults(func=cmd_ingest)

    # fix-titles
    p_fix = subparsers.add_parser("fix-titles", help="Re-clean stored copy titles")
    p_fix.add_argument("--dry-run", action="store_true",
                       help="Report changes without writing them")
    p_fix.add_argument("--limit", type=int, default=None,
                       help="Process at most N copies")
    p_fix.add_argument("--channel", default=None,
                       help="Only copies from this channel")
    p_fix.add_argument("--workers", type=int, default=FIX_TITLES_WORKERS,
                       help=f"Parallel cleaning workers (default: {FIX_TITLES_WORKERS})")
    p_fix.add_argument("--show", type=int, default=20,
                       help="Changes to list in a dry run (default: 20)")
    p_fix.set_defaults(func=cmd_fix_titles)

    # analyze-channel
    p_chan = subparsers.add_parser("analyze-channel", help="Detect a channel's title layout")
    p_chan.add_argument("channel", help="Channel id")
    p_chan.add_argument("titles", help="File with sample titles, one per line ('-' = stdin)")
    p_chan.add_argument("--sample", type=int, default=PATTERN_SAMPLE_SIZE,
                        help=f"Max titles to analyze (default: {PATTERN_SAMPLE_SIZE})")
    p_chan.set_defaults(func=cmd_analyze_channel)

    # resweep
    p_resweep = subparsers.add_parser("resweep", help="Re-pick a group's primary copy")
    p_resweep.add_argument("group", type=int, help="Work group id")
    p_resweep.set_defaults(func=cmd_resweep)

    # failover
    p_fail = subparsers.add_parser("failover", help="Promote a backup for a failed primary")
    p_fail.add_argument("group", type=int, help="Work group id")
    p_fail.add_argument("--copy", type=int, default=None,
                        help="Failed copy id (default: current primary)")
    p_fail.set_defaults(func=cmd_failover)

    # merge-groups
    p_merge = subparsers.add_parser("merge-groups", help="Merge duplicate work groups")
    p_merge.add_argument("--year-tolerance", type=int, default=MatchConfig.year_tolerance,
                         help="Max release-year difference for a merge (default: 1)")
    p_merge.set_defaults(func=cmd_merge_groups)

    # versions
    p_versions = subparsers.add_parser("versions", help="List all copies of a group")
    p_versions.add_argument("group", type=int, help="Work group id")
    p_versions.set_defaults(func=cmd_versions)

    # status
    p_status = subparsers.add_parser("status", help="Show DB statistics")
    p_status.set_defaults(func=cmd_status)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        args.func(args)
    except db.RecordNotFound as e:
        print(f"  {e}")
        sys.exit(1)
