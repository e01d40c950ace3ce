#!/usr/bin/env python3
"""
Luminosity: reports over Lightroom Classic catalogs
---------------------------------------------------

Commands:
  stats PATH...        distribution stats for every .lrcat found (merged)
  sunburst CATALOG     per camera/lens/aperture/focal length/exposure counts,
                       flat or grouped with --groupby
  sidecars summary|list CATALOG...
  sidecars delete CATALOG... [--yes]
                       remove JPG sidecars of RAW originals (dry run without --yes)
  photos CATALOG       every photo with its file path and exif fields
  extract CATALOG      write the cached JPEG previews to a directory
  site CATALOG --out   static sunburst viewer (index.html + sunburst.json)
  serve CATALOG        localhost chart server
"""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, List, Optional

from catalog import Catalog, SidecarDeletion, Stats, find_catalogs
from previews import CatalogPreviews, extract_previews
from sunburst import GroupingError, build_tree
from sunburst_site import DEFAULT_CHARTS, build_charts, build_sunburst_site, charts_to_data, render_png


def write_json(path: str | Path, data: Any, pretty: bool = False) -> Path:
    path = Path(path).expanduser().resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    logging.debug("Writing JSON → %s", path)
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2 if pretty else None)
    return path


def format_bytes(n: int) -> str:
    size = float(n)
    for unit in ("B", "K", "M", "G", "T"):
        if size < 1024 or unit == "T":
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{n}B"


def _open_or_exit(path: str) -> Catalog:
    try:
        return Catalog(path)
    except FileNotFoundError:
        raise SystemExit(f"Catalog not found: {path}")

# -------------------- commands --------------------

def cmd_stats(args: argparse.Namespace) -> int:
    merged = Stats()
    total = 0
    for path in find_catalogs(*args.paths):
        try:
            with Catalog(path) as cat:
                stats = cat.get_stats()
                if args.per_catalog:
                    out = write_json(Path(path.name).with_suffix(".json"),
                                     {"path": str(path), "stats": stats.to_row()}, args.pretty)
                    logging.info("Wrote %s", out)
        except Exception as e:
            logging.warning("Error loading catalog %s, skipping: %s", path, e)
            continue
        merged.merge(stats)
        total += 1
        logging.info("Processed catalog %s", path)

    out = write_json(args.outfile, merged.to_row(), args.pretty)
    logging.info("Wrote stats → %s (%d catalogs)", out, total)
    return 0


def cmd_sunburst(args: argparse.Namespace) -> int:
    with _open_or_exit(args.catalog) as cat:
        rows = cat.get_sunburst_rows()
    if args.groupby:
        try:
            data = build_tree(args.label, rows, args.groupby, strict=args.strict).to_dict()
        except GroupingError as e:
            raise SystemExit(f"Cannot group rows: {e}")
    else:
        data = rows
    out = write_json(args.outfile, data, args.pretty)
    logging.info("Wrote sunburst data → %s (%d rows)", out, len(rows))
    return 0


def cmd_sidecars(args: argparse.Namespace) -> int:
    for path in args.catalogs:
        try:
            cat = Catalog(path)
        except Exception as e:
            logging.warning("Error opening catalog %s, skipping: %s", path, e)
            continue
        with cat:
            if args.action == "list":
                for s in cat.get_sidecar_files():
                    print(s.sidecar_path)
                continue
            if args.action == "delete":
                result = cat.delete_sidecars(dry_run=not args.yes,
                                             delete_missing_originals=args.delete_missing_originals)
                _print_deletion(path, result, dry_run=not args.yes)
                continue
            info = cat.get_sidecar_stats()
        print(f"Sidecar Summary for {path}")
        print(f"  Count:             {info.count}")
        print(f"  Total Size:        {format_bytes(info.total_size_bytes)}")
        print(f"  Missing Sidecars:  {info.missing_sidecars}")
        print(f"  Missing Originals: {info.missing_originals}")
    return 0


def _print_deletion(path: str, result: SidecarDeletion, dry_run: bool) -> None:
    print(f"Sidecar Delete for {path}" + (" (dry run, pass --yes to delete)" if dry_run else ""))
    print(f"  Total:   {result.total}")
    print(f"  Deleted: {result.deleted}")
    print(f"  Skipped: {result.skipped}")
    print(f"  Missing: {result.missing}")
    print(f"  Errors:  {result.errors}")


def cmd_photos(args: argparse.Namespace) -> int:
    with _open_or_exit(args.catalog) as cat:
        photos = cat.get_photos()
    out = write_json(args.outfile, [p.to_row() for p in photos], args.pretty)
    logging.info("Wrote %d photos → %s", len(photos), out)
    return 0


def cmd_extract(args: argparse.Namespace) -> int:
    with _open_or_exit(args.catalog) as cat:
        try:
            previews = CatalogPreviews(args.catalog)
        except FileNotFoundError as e:
            raise SystemExit(f"Previews not found: {e}")
        with previews:
            result = extract_previews(cat, previews, Path(args.output_dir).expanduser(), args.size)
    logging.info("Extracted %d previews → %s (%d not cached, %d errors)",
                 result.extracted, args.output_dir, result.missing, result.errors)
    return 1 if result.errors else 0


def cmd_site(args: argparse.Namespace) -> int:
    with _open_or_exit(args.catalog) as cat:
        rows = cat.get_sunburst_rows()
    out_site = Path(args.out).expanduser().resolve()
    try:
        charts = build_charts(rows, DEFAULT_CHARTS, args.label, args.strict)
    except GroupingError as e:
        raise SystemExit(f"Cannot group rows: {e}")
    build_sunburst_site(charts_to_data(charts), out_site, html_mode=args.html)
    if args.png:
        for i, (title, _, tree) in enumerate(charts, 1):
            png = render_png(tree, out_site / f"sunburst-{i}.png", size=args.png_size)
            logging.info("Rendered %s → %s", title, png)
    logging.info("Built sunburst site → %s (html=%s)", out_site, args.html)
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    from chart_server import create_app

    if not Path(args.catalog).expanduser().is_file():
        raise SystemExit(f"Catalog not found: {args.catalog}")
    create_app(args.catalog).run(host=args.host, port=args.port, debug=False)
    return 0

# -------------------- main --------------------

def _groupby_list(value: str) -> List[str]:
    return [f.strip() for f in value.split(",") if f.strip()]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="luminosity", description="Reports over Lightroom Classic catalogs.")
    p.add_argument("--log", default="INFO", help="Logging level (DEBUG, INFO, WARNING)")
    p.add_argument("-v", "--verbose", action="store_true", help="Shortcut for --log DEBUG")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("stats", help="Generate catalog statistics")
    s.add_argument("paths", nargs="+", help="Catalog files or directories to search")
    s.add_argument("-o", "--outfile", default="stats.json", help="Path to output file")
    s.add_argument("-c", "--per-catalog", action="store_true",
                   help="Also write a summary .json file for each catalog")
    s.add_argument("-p", "--pretty-print", dest="pretty", action="store_true",
                   help="Indent the JSON output")
    s.set_defaults(func=cmd_stats)

    s = sub.add_parser("sunburst", help="Generate stats for rendering sunburst graphs")
    s.add_argument("catalog")
    s.add_argument("-o", "--outfile", default="sunburst.json", help="Path to output file")
    s.add_argument("-p", "--pretty-print", dest="pretty", action="store_true",
                   help="Indent the JSON output")
    s.add_argument("--groupby", type=_groupby_list, default=[],
                   help="Comma separated fields (camera,lens,aperture,focal_length,exposure); "
                        "writes the grouped tree instead of flat rows")
    s.add_argument("--label", default="All photos", help="Name of the root node")
    s.add_argument("--strict", action="store_true",
                   help="Fail on non-integer counts or missing grouping fields")
    s.set_defaults(func=cmd_sunburst)

    s = sub.add_parser("sidecars", help="Sidecar JPG files of RAW originals")
    s.add_argument("action", choices=["summary", "list", "delete"])
    s.add_argument("catalogs", nargs="+")
    s.add_argument("-y", "--yes", action="store_true",
                   help="delete: actually remove files (default is a dry run)")
    s.add_argument("--delete-missing-originals", action="store_true",
                   help="delete: also remove sidecars whose original is missing")
    s.set_defaults(func=cmd_sidecars)

    s = sub.add_parser("photos", help="List every photo in a catalog")
    s.add_argument("catalog")
    s.add_argument("-o", "--outfile", default="photos.json", help="Path to output file")
    s.add_argument("-p", "--pretty-print", dest="pretty", action="store_true",
                   help="Indent the JSON output")
    s.set_defaults(func=cmd_photos)

    s = sub.add_parser("extract", help="Extract cached previews from a catalog")
    s.add_argument("catalog")
    s.add_argument("-o", "--output-dir", default="previews",
                   help="Directory to write extracted previews to")
    s.add_argument("--size", type=int, default=0,
                   help="Scale previews to fit this many px (default: original size)")
    s.set_defaults(func=cmd_extract)

    s = sub.add_parser("site", help="Write a static sunburst viewer site")
    s.add_argument("catalog")
    s.add_argument("--out", required=True, help="Output directory")
    s.add_argument("--html", choices=["force", "auto", "skip"], default="auto",
                   help="force=always rewrite index.html; auto=write only if missing; skip=never write")
    s.add_argument("--png", action="store_true", help="Also render each chart to a PNG")
    s.add_argument("--png-size", type=int, default=800, help="PNG edge in px (default 800)")
    s.add_argument("--label", default="All photos", help="Name of the root node")
    s.add_argument("--strict", action="store_true",
                   help="Fail on non-integer counts or missing grouping fields")
    s.set_defaults(func=cmd_site)

    s = sub.add_parser("serve", help="Serve the sunburst viewer on localhost")
    s.add_argument("catalog")
    s.add_argument("--host", default="127.0.0.1")
    s.add_argument("--port", type=int, default=8787)
    s.set_defaults(func=cmd_serve)

    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    level = "DEBUG" if args.verbose else args.log.upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO),
                        format="%(levelname)s: %(message)s")
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
