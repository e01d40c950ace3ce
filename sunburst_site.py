#!/usr/bin/env python3
"""
Sunburst rendering: a static viewer site (index.html + sunburst.json, drawn
with d3 in the browser) and a Pillow PNG renderer for the same trees.
"""
from __future__ import annotations

import hashlib
import json
import logging
import math
from pathlib import Path
from typing import Any, List, Mapping, Sequence, Tuple

from PIL import Image, ImageDraw

from sunburst import GroupNode, build_tree

# (title, groupby) pairs drawn by default
DEFAULT_CHARTS: List[Tuple[str, List[str]]] = [
    ("Camera / Lens / Focal length", ["camera", "lens", "focal_length"]),
    ("Camera / Lens / Aperture", ["camera", "lens", "aperture"]),
    ("Lens / Aperture / Exposure", ["lens", "aperture", "exposure"]),
]

# d3 category20c
PALETTE = [
    "#3182bd", "#6baed6", "#9ecae1", "#c6dbef",
    "#e6550d", "#fd8d3c", "#fdae6b", "#fdd0a2",
    "#31a354", "#74c476", "#a1d99b", "#c7e9c0",
    "#756bb1", "#9e9ac8", "#bcbddc", "#dadaeb",
    "#636363", "#969696", "#bdbdbd", "#d9d9d9",
]


def path_color(path: Sequence[Any]) -> str:
    """Stable palette color for a node, keyed on the names from the root down."""
    key = "\x1f".join("" if p is None else str(p) for p in path)
    digest = hashlib.md5(key.encode("utf-8")).hexdigest()
    return PALETTE[int(digest[:8], 16) % len(PALETTE)]


def _colorize(d: dict, node: GroupNode, path: Tuple[Any, ...] = ()) -> dict:
    path = path + (node.name,)
    d["color"] = path_color(path)
    for cd, cn in zip(d.get("children", []), node.children):
        _colorize(cd, cn, path)
    return d


def build_charts(rows: Sequence[Mapping[str, Any]],
                 charts: Sequence[Tuple[str, Sequence[str]]] = DEFAULT_CHARTS,
                 label: str = "All photos",
                 strict: bool = False) -> List[Tuple[str, List[str], GroupNode]]:
    return [(title, list(groupby), build_tree(label, rows, groupby, strict=strict))
            for title, groupby in charts]


def chart_data(rows: Sequence[Mapping[str, Any]],
               charts: Sequence[Tuple[str, Sequence[str]]] = DEFAULT_CHARTS,
               label: str = "All photos",
               strict: bool = False) -> dict:
    """JSON document read by index.html: {"charts": [{title, groupby, tree}]}."""
    return charts_to_data(build_charts(rows, charts, label, strict))


def charts_to_data(built: Sequence[Tuple[str, List[str], GroupNode]]) -> dict:
    return {
        "charts": [
            {"title": title, "groupby": groupby, "tree": _colorize(tree.to_dict(), tree)}
            for title, groupby, tree in built
        ]
    }

# -------------------- PNG --------------------

def _positive(size) -> bool:
    return not (isinstance(size, float) and math.isnan(size)) and size > 0


def _layout(node: GroupNode, path: Tuple[Any, ...], level: int,
            start: float, span: float, out: list) -> None:
    path = path + (node.name,)
    out.append((level, start, start + span, path))
    kids = [c for c in node.children if _positive(c.size)]
    total = sum(c.size for c in kids)
    a = start
    for child in kids:
        s = span * child.size / total
        _layout(child, path, level + 1, a, s, out)
        a += s


def render_png(root: GroupNode, out_path: str | Path, size: int = 800,
               background: str = "white") -> Path:
    """
    Draw `root` as concentric rings: the root is the centre disc, each level
    one ring further out, arc span proportional to node size (starting at
    12 o'clock, clockwise). Nodes with NaN or non-positive size get no arc.
    """
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    img = Image.new("RGB", (size, size), background)
    draw = ImageDraw.Draw(img)

    arcs: list = []
    if _positive(root.size):
        _layout(root, (), 0, -90.0, 360.0, arcs)

    c = size / 2
    ring = c / (root.depth() + 1)
    # outermost first so inner rings paint over the wedge centres
    for level, start, end, path in sorted(arcs, key=lambda a: -a[0]):
        r = ring * (level + 1)
        box = [c - r, c - r, c + r, c + r]
        fill = path_color(path)
        if end - start >= 360.0:
            draw.ellipse(box, fill=fill, outline=background)
        else:
            draw.pieslice(box, start, end, fill=fill, outline=background)

    img.save(out_path.as_posix(), "PNG")
    return out_path

# -------------------- site --------------------

def index_html() -> str:
    BUILD_TAG = "LUMINOSITY-SUNBURST v1.0"
    html = r"""<!doctype html>
<!-- __BUILD_TAG__ -->
<html lang="en">
<head>
<meta charset="utf-8"/>
<meta name="viewport" content="width=device-width, initial-scale=1"/>
<title>Luminosity</title>
<style>
  *{box-sizing:border-box}
  :root { --gap:16px; --border:#ddd; --muted:#666; --bg:#fff; --bg2:#fafafa; }
  body{font-family:system-ui,-apple-system,Segoe UI,Roboto,Ubuntu;margin:24px;background:var(--bg2)}
  header.toolbar{display:flex;gap:12px;align-items:baseline;margin-bottom:16px}
  .muted{color:var(--muted);font-size:12px}
  .charts{display:grid;grid-template-columns:repeat(auto-fill,minmax(320px,1fr));gap:var(--gap)}
  .card{border:1px solid var(--border);border-radius:12px;padding:12px;background:var(--bg)}
  .card h2{font-size:15px;margin:0 0 8px}
  .chart svg{display:block;margin:0 auto}
  .chart path{cursor:default}
</style>
<script src="https://cdn.jsdelivr.net/npm/d3@7"></script>
</head>
<body>
<header class="toolbar">
  <h1>Luminosity</h1>
  <span id="status" class="muted"></span>
</header>
<main id="charts" class="charts"></main>

<script>
console.log("__BUILD_TAG__ loaded");

(async function(){
  async function getJSON(url){
    const res = await fetch(url + (url.includes('?')?'&ts=':'?ts=') + Date.now(), {cache:'no-store'});
    if(!res.ok) throw new Error(url+' → '+res.status);
    const txt = await res.text();
    if(!txt.trim()) return null;
    return JSON.parse(txt);
  }

  function label(d){ return d.data.name == null ? '(none)' : String(d.data.name); }

  function draw(chart, el){
    el.selectAll('svg').remove();
    const width = Math.max(240, el.node().clientWidth);
    const radius = width / 2;
    const root = d3.hierarchy(chart.tree)
      .sum(d => d.children ? 0 : Math.max(0, d.size || 0));
    d3.partition().size([2 * Math.PI, root.height + 1])(root);
    const ring = radius / (root.height + 1);
    const arc = d3.arc()
      .startAngle(d => d.x0)
      .endAngle(d => d.x1)
      .padAngle(0.002)
      .innerRadius(d => d.y0 * ring)
      .outerRadius(d => Math.max(d.y0 * ring, d.y1 * ring - 1));
    const svg = el.append('svg')
      .attr('viewBox', [-radius, -radius, width, width])
      .attr('width', width)
      .attr('height', width);
    svg.append('g')
      .selectAll('path')
      .data(root.descendants().filter(d => d.x1 > d.x0))
      .join('path')
        .attr('d', arc)
        .attr('fill', d => d.data.color)
        .attr('stroke', '#fff')
      .append('title')
        .text(d => d.ancestors().map(label).reverse().join(' / ') + '\n' +
                   (d.data.size == null ? 'NaN' : d.data.size));
  }

  const status = document.getElementById('status');
  let data;
  try {
    data = (await getJSON('sunburst.json')) || {charts: []};
  } catch(e) {
    status.textContent = String(e);
    return;
  }

  const cards = d3.select('#charts')
    .selectAll('section')
    .data(data.charts)
    .join('section')
      .attr('class', 'card');
  cards.append('h2').text(c => c.title);
  cards.append('div').attr('class', 'muted').text(c =>
    (c.tree.size == null ? 'NaN' : c.tree.size) + ' photos, grouped by ' + c.groupby.join(' → '));
  cards.append('div').attr('class', 'chart');

  function redraw(){
    cards.each(function(c){ draw(c, d3.select(this).select('.chart')); });
  }
  redraw();
  status.textContent = data.charts.length + ' charts';

  let pending = null;
  window.addEventListener('resize', function(){
    clearTimeout(pending);
    pending = setTimeout(redraw, 100);
  });
})();
</script>
</body>
</html>"""

    # only replace our token; never call .format()
    return html.replace("__BUILD_TAG__", BUILD_TAG)


def write_index_html(out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    (out_dir / "index.html").write_text(index_html(), encoding="utf-8")


def build_sunburst_site(data: dict, out_dir: str | Path, html_mode: str = "auto") -> None:
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    # Always refresh sunburst.json
    data_path = out_dir / "sunburst.json"
    with data_path.open("w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2, allow_nan=False)
    logging.info("Wrote sunburst.json → %s", data_path)

    # HTML policy
    index_path = out_dir / "index.html"
    if html_mode == "force":
        write_index_html(out_dir)
        logging.info("index.html: FORCE rewrite at %s", index_path)
    elif html_mode == "auto":
        if not index_path.exists():
            write_index_html(out_dir)
            logging.info("index.html: AUTO wrote (did not exist) at %s", index_path)
        else:
            logging.info("index.html: AUTO skipped (exists) at %s", index_path)
    elif html_mode == "skip":
        logging.info("index.html: SKIP per --html=skip (existing file untouched)")
    else:
        raise ValueError(f"unknown html mode: {html_mode!r}")
