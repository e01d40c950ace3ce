#!/usr/bin/env python3
"""
Cached previews of a Lightroom catalog.

Lightroom keeps rendered JPEG previews next to the catalog, in
"<name> Previews.lrdata". previews.db maps each image id to a cache entry
(uuid + digest); the entry's .lrprev file is a run of sections, each one an
"AgHg" header followed by its data:

    "AgHg" | header_length:u16 | version:u8 | kind:u8 | length:u64 | padding:u64 | name | data | padding

All integers big-endian. header_length counts the marker and the fixed
fields (24 bytes) plus the NUL-padded name.
"""
from __future__ import annotations

import io
import logging
import sqlite3
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Optional

from PIL import Image

from catalog import CATALOG_EXT, Catalog

PREVIEW_MARKER = b"AgHg"
PREVIEW_HEADER = struct.Struct(">HBBQQ")
PREVIEW_HEADER_LENGTH = len(PREVIEW_MARKER) + PREVIEW_HEADER.size  # 24

PREVIEWS_DIR_SUFFIX = " Previews.lrdata"
PREVIEWS_DB = "previews.db"

CACHE_INFO_SQL = """
SELECT     ice.imageId    as id,
           ice.uuid       as uuid,
           ice.digest     as digest,
           max(pl.level)  as max_level
FROM       ImageCacheEntry ice
INNER JOIN PyramidLevel pl
ON         pl.uuid = ice.uuid
WHERE      ice.imageId = ?
GROUP BY   ice.imageId
"""


class PreviewFormatError(ValueError):
    pass


@dataclass
class PreviewSection:
    name: str
    version: int
    kind: int
    offset: int
    length: int
    padding: int


def _read_section(f: BinaryIO) -> Optional[PreviewSection]:
    marker = f.read(len(PREVIEW_MARKER))
    if not marker:
        return None
    if marker != PREVIEW_MARKER:
        raise PreviewFormatError(f"unknown section marker {marker!r} at offset {f.tell() - len(marker)}")

    fixed = f.read(PREVIEW_HEADER.size)
    if len(fixed) < PREVIEW_HEADER.size:
        raise PreviewFormatError("truncated section header")
    header_length, version, kind, length, padding = PREVIEW_HEADER.unpack(fixed)
    if header_length < PREVIEW_HEADER_LENGTH:
        raise PreviewFormatError(f"section header length {header_length} is too short")

    raw_name = f.read(header_length - PREVIEW_HEADER_LENGTH)
    name = raw_name.split(b"\0", 1)[0].decode("utf-8", errors="replace")

    offset = f.tell()
    f.seek(length + padding, io.SEEK_CUR)
    return PreviewSection(name=name, version=version, kind=kind,
                          offset=offset, length=length, padding=padding)


def read_sections(f: BinaryIO) -> List[PreviewSection]:
    """Parse every section header of an .lrprev stream, in file order."""
    f.seek(0)
    sections = []
    while True:
        section = _read_section(f)
        if section is None:
            return sections
        sections.append(section)


class PreviewFile:
    """An open .lrprev file and its parsed sections."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.f = self.path.open("rb")
        try:
            self.sections = read_sections(self.f)
        except Exception:
            self.f.close()
            raise

    def close(self) -> None:
        self.f.close()

    def __enter__(self) -> "PreviewFile":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def read(self, section: PreviewSection) -> bytes:
        self.f.seek(section.offset)
        data = self.f.read(section.length)
        if len(data) < section.length:
            raise PreviewFormatError(
                f"section {section.name!r}: expected {section.length} bytes, got {len(data)}")
        return data

    def largest(self) -> Optional[PreviewSection]:
        """The biggest pyramid level ("level_N" section), if there is one."""
        levels = [s for s in self.sections if s.name.startswith("level_")]
        if not levels:
            return None
        return max(levels, key=lambda s: s.length)


@dataclass
class PhotoCacheInfo:
    root: Path
    id: int
    uuid: str
    digest: str
    max_level: int

    @property
    def path(self) -> Path:
        return self.root / self.uuid[0] / self.uuid[0:4] / f"{self.uuid}-{self.digest}.lrprev"


def previews_root(catalog_path: str | Path) -> Path:
    p = Path(catalog_path).expanduser()
    name = p.name[:-len(CATALOG_EXT)] if p.name.endswith(CATALOG_EXT) else p.name
    return p.parent / (name + PREVIEWS_DIR_SUFFIX)


class CatalogPreviews:
    """The read-only preview cache that belongs to a catalog."""

    def __init__(self, catalog_path: str | Path):
        self.root = previews_root(catalog_path)
        self.db_path = self.root / PREVIEWS_DB
        if not self.db_path.is_file():
            raise FileNotFoundError(str(self.db_path))
        self.db = sqlite3.connect(f"{self.db_path.resolve().as_uri()}?mode=ro", uri=True)
        self.db.row_factory = sqlite3.Row
        logging.debug("Opened previews %s", self.db_path)

    def close(self) -> None:
        if self.db is not None:
            self.db.close()
            self.db = None

    def __enter__(self) -> "CatalogPreviews":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def get_cache_info(self, image_id: int) -> Optional[PhotoCacheInfo]:
        r = self.db.execute(CACHE_INFO_SQL, (image_id,)).fetchone()
        if r is None:
            return None
        return PhotoCacheInfo(root=self.root, id=r["id"], uuid=r["uuid"],
                              digest=r["digest"], max_level=r["max_level"])


@dataclass
class ExtractResult:
    extracted: int = 0
    missing: int = 0
    errors: int = 0


def extract_previews(catalog: Catalog, previews: CatalogPreviews,
                     out_dir: str | Path, max_size: int = 0) -> ExtractResult:
    """
    Write the largest cached preview of every photo as <stem>-<id>.jpg.
    Photos without a cache entry count as missing; unreadable or malformed
    .lrprev files are logged and counted as errors. With max_size the JPEG
    is scaled down to fit a max_size square.
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    result = ExtractResult()

    for photo in catalog.get_photos():
        info = previews.get_cache_info(photo.id)
        if info is None:
            logging.debug("No cached preview for %s", photo.full_name)
            result.missing += 1
            continue

        out = out_dir / f"{Path(photo.full_name).stem}-{photo.id}.jpg"
        try:
            with PreviewFile(info.path) as pf:
                section = pf.largest()
                if section is None:
                    raise PreviewFormatError("no preview levels")
                data = pf.read(section)
            if max_size:
                with Image.open(io.BytesIO(data)) as im:
                    im.thumbnail((max_size, max_size))
                    im.convert("RGB").save(out.as_posix(), "JPEG", quality=85)
            else:
                out.write_bytes(data)
        except (OSError, PreviewFormatError) as e:
            logging.error("Cannot extract preview %s for %s: %s", info.path, photo.full_name, e)
            result.errors += 1
            continue

        logging.info("Extracted %s", out)
        result.extracted += 1

    return result
