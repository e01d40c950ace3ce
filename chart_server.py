#!/usr/bin/env python3
"""Localhost chart server: the sunburst viewer plus JSON computed live from a catalog."""
from __future__ import annotations

import os
from pathlib import Path

from flask import Flask, Response, jsonify, request

from catalog import Catalog
from sunburst import GroupingError, build_tree
from sunburst_site import chart_data, index_html


def _flag(value: str | None) -> bool:
    return (value or "").lower() in ("1", "true", "yes", "on")


def create_app(catalog_path: str | Path) -> Flask:
    app = Flask(__name__)
    app.config["CATALOG_PATH"] = Path(catalog_path).expanduser()

    def _open() -> Catalog:
        return Catalog(app.config["CATALOG_PATH"])

    @app.errorhandler(FileNotFoundError)
    def catalog_missing(e):
        return jsonify(ok=False, error=f"catalog not found: {e}"), 404

    @app.errorhandler(GroupingError)
    def bad_grouping(e):
        return jsonify(ok=False, error=str(e)), 400

    @app.get("/")
    def index():
        return Response(index_html(), mimetype="text/html")

    @app.get("/sunburst.json")
    def sunburst_json():
        with _open() as cat:
            rows = cat.get_sunburst_rows()
        return jsonify(chart_data(rows, strict=_flag(request.args.get("strict"))))

    @app.get("/api/sunburst")
    def sunburst():
        groupby = [f for f in (request.args.get("groupby") or "").split(",") if f]
        label = request.args.get("label") or "All photos"
        with _open() as cat:
            rows = cat.get_sunburst_rows()
        tree = build_tree(label, rows, groupby, strict=_flag(request.args.get("strict")))
        return jsonify(ok=True, groupby=groupby, tree=tree.to_dict())

    @app.get("/api/stats")
    def stats():
        with _open() as cat:
            return jsonify(ok=True, stats=cat.get_stats().to_row())

    @app.get("/api/ping")
    def ping():
        return jsonify(ok=True)

    return app


def main():
    catalog_path = os.environ.get("LUMINOSITY_CATALOG")
    if not catalog_path:
        raise SystemExit("LUMINOSITY_CATALOG is not set")
    app = create_app(catalog_path)
    # loopback only; `luminosity serve --host` overrides
    app.run(host="127.0.0.1",
            port=int(os.environ.get("PORT") or "8787"), debug=False)


if __name__ == "__main__":
    main()
