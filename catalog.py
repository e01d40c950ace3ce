#!/usr/bin/env python3
"""
Read-only access to a Lightroom Classic catalog (.lrcat, a SQLite file).

Runs the fixed distribution / sunburst / photo / sidecar queries and converts the
rows into small dataclasses (or plain dicts for the sunburst rows, which
feed sunburst.build_tree directly).
"""
from __future__ import annotations

import logging
import os
import sqlite3
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from apex import aperture_to_fnumber, shutter_speed_to_exposure_time

CATALOG_EXT = ".lrcat"
CATALOG_DATA_DIR_EXT = ".lrdata"

# -------------------- SQL --------------------

SQL = {
    "lenses": "SELECT id_local, value FROM AgInternedExifLens",

    "cameras": "SELECT id_local, value FROM AgInternedExifCameraModel",

    "photo_counts_by_date": """
SELECT 0,
       date(captureTime),
       count(*)
FROM   Adobe_images
GROUP  BY date(captureTime)
ORDER  BY date(captureTime)
""",

    "lens_distribution": """
SELECT    LensRef.id_local      as id,
          LensRef.value         as name,
          count(LensRef.value)  as count
FROM      Adobe_images               image
JOIN      AgHarvestedExifMetadata    metadata   ON       image.id_local = metadata.image
LEFT JOIN AgInternedExifLens         LensRef    ON     LensRef.id_local = metadata.lensRef
WHERE     id is not null
GROUP BY  id
ORDER BY  count desc
""",

    "camera_distribution": """
SELECT    Camera.id_local       as id,
          Camera.value          as name,
          count(Camera.value)   as count
FROM      Adobe_images               image
JOIN      AgHarvestedExifMetadata    metadata   ON      image.id_local = metadata.image
LEFT JOIN AgInternedExifCameraModel  Camera     ON     Camera.id_local = metadata.cameraModelRef
WHERE     id is not null
GROUP BY  id
ORDER BY  count desc
""",

    "focal_length_distribution": """
SELECT id_local          as id,
       focalLength       as name,
       count(id_local)   as count
FROM   AgHarvestedExifMetadata
WHERE       focalLength is not null
GROUP BY    focalLength
ORDER BY    count DESC
""",

    "focal_length_distribution_by_camera_and_lens": """
SELECT metadata.id_local          as id,
       count(metadata.id_local)   as count,
       focalLength                as name,
       CameraRef.value            as camera,
       LensRef.value              as lens
FROM   AgHarvestedExifMetadata metadata
INNER JOIN  AgInternedExifCameraModel CameraRef
ON          CameraRef.id_local = metadata.cameraModelRef
INNER JOIN  AgInternedExifLens LensRef
ON          LensRef.id_local = metadata.lensRef
WHERE       focalLength is not null
GROUP BY    name, camera, lens
ORDER BY    count DESC
""",

    "aperture_distribution": """
SELECT   aperture,
         count(aperture)
FROM     AgHarvestedExifMetadata
WHERE    aperture is not null
GROUP BY aperture
ORDER BY aperture
""",

    "exposure_time_distribution": """
SELECT   shutterSpeed,
         count(shutterSpeed)
FROM     AgHarvestedExifMetadata
WHERE    shutterSpeed is not null
GROUP BY shutterSpeed
ORDER BY shutterSpeed
""",

    "sunburst": """
SELECT    count(*)            as count,
          Camera.value        as camera,
          Lens.value          as lens,
          exif.aperture       as aperture,
          exif.focalLength    as focal_length,
          exif.shutterSpeed   as exposure
FROM      Adobe_images              image
JOIN      AgHarvestedExifMetadata   exif      ON  image.id_local  = exif.image
LEFT JOIN AgInternedExifLens        Lens      ON  Lens.id_local   = exif.lensRef
LEFT JOIN AgInternedExifCameraModel Camera    ON  Camera.id_local = exif.cameraModelRef
WHERE     Camera.value is not null and Lens.value is not null
GROUP BY  Camera.value, Lens.value, exif.aperture, exif.focalLength, exif.shutterSpeed
ORDER BY  Camera.value, Lens.value, exif.aperture, exif.focalLength, count
""",

    "photos": """
SELECT    image.id_local                  as id,
          image.id_global                 as id_global,
          rootFolder.absolutePath || folder.pathFromRoot || rootFile.baseName || '.' || rootFile.extension
                                          as full_name,
          coalesce(Lens.value, 'Unknown')     as lens,
          coalesce(Camera.value, 'Unknown')   as camera,
          image.fileFormat                as file_format,
          image.captureTime               as capture_time,
          image.rating                    as rating,
          exif.focalLength                as focal_length,
          exif.aperture                   as aperture,
          exif.shutterSpeed               as exposure,
          exif.isoSpeedRating             as iso
FROM      Adobe_images              image
JOIN      AgLibraryFile             rootFile   ON   rootFile.id_local = image.rootFile
JOIN      AgLibraryFolder           folder     ON     folder.id_local = rootFile.folder
JOIN      AgLibraryRootFolder       rootFolder ON rootFolder.id_local = folder.rootFolder
LEFT JOIN AgHarvestedExifMetadata   exif       ON      image.id_local = exif.image
LEFT JOIN AgInternedExifLens        Lens       ON       Lens.id_local = exif.lensRef
LEFT JOIN AgInternedExifCameraModel Camera     ON     Camera.id_local = exif.cameraModelRef
ORDER BY  full_name
""",

    "sidecar_files": """
SELECT      image.id_local          as id,
            root.absolutePath       as rootPath,
            folder.pathFromRoot     as folderPath,
            file.baseName           as baseName,
            file.extension          as extension,
            file.sidecarExtensions  as sidecarExtension
FROM        AgLibraryFile           as file
INNER JOIN  Adobe_images            as image
ON          file.id_local = image.rootFile
INNER JOIN  AgLibraryFolder         as folder
ON          file.folder = folder.id_local
INNER JOIN  AgLibraryRootFolder     as root
ON          folder.rootFolder = root.id_local
WHERE       file.sidecarExtensions  = 'JPG'
AND         image.fileFormat        = 'RAW'
ORDER BY    file.id_local
""",
}

# -------------------- records --------------------

@dataclass
class NamedObject:
    id: int
    name: str

    def to_row(self) -> dict:
        return asdict(self)


@dataclass
class DistributionEntry:
    id: int
    label: str
    count: int

    def to_row(self) -> dict:
        return asdict(self)


def merge_distributions(*dists: Iterable[DistributionEntry]) -> List[DistributionEntry]:
    """Merge entries with the same label by summing counts; result sorted by label."""
    merged: Dict[str, DistributionEntry] = {}
    for dist in dists:
        for e in dist:
            target = merged.get(e.label)
            if target is not None:
                target.count += e.count
            else:
                merged[e.label] = DistributionEntry(id=e.id, label=e.label, count=e.count)
    return sorted(merged.values(), key=lambda e: e.label)


STAT_FIELDS = ("by_date", "by_camera", "by_lens", "by_focal_length",
               "by_aperture", "by_exposure_time")


@dataclass
class Stats:
    by_date: List[DistributionEntry] = field(default_factory=list)
    by_camera: List[DistributionEntry] = field(default_factory=list)
    by_lens: List[DistributionEntry] = field(default_factory=list)
    by_focal_length: List[DistributionEntry] = field(default_factory=list)
    by_aperture: List[DistributionEntry] = field(default_factory=list)
    by_exposure_time: List[DistributionEntry] = field(default_factory=list)

    def merge(self, other: "Stats") -> None:
        for name in STAT_FIELDS:
            setattr(self, name, merge_distributions(getattr(self, name), getattr(other, name)))

    def to_row(self) -> dict:
        return {name: [e.to_row() for e in getattr(self, name)] for name in STAT_FIELDS}


@dataclass
class PhotoRecord:
    id: int
    id_global: str
    full_name: str
    lens: str
    camera: str
    file_format: str
    capture_time: Optional[str] = None
    rating: Optional[int] = None
    focal_length: Optional[float] = None
    aperture: Optional[str] = None
    exposure: Optional[str] = None
    iso: Optional[float] = None

    def to_row(self) -> dict:
        return asdict(self)


@dataclass
class SidecarFile:
    id: int
    root_path: str
    folder_path: str
    base_name: str
    extension: str
    sidecar_extension: str

    @property
    def original_path(self) -> str:
        return f"{self.root_path}{self.folder_path}{self.base_name}.{self.extension}"

    @property
    def sidecar_path(self) -> str:
        return f"{self.root_path}{self.folder_path}{self.base_name}.{self.sidecar_extension}"


@dataclass
class SidecarStats:
    count: int = 0
    missing_sidecars: int = 0
    missing_originals: int = 0
    total_size_bytes: int = 0


@dataclass
class SidecarDeletion:
    total: int = 0
    deleted: int = 0
    skipped: int = 0
    missing: int = 0
    errors: int = 0


# -------------------- catalog --------------------

class Catalog:
    """An open, read-only Lightroom catalog."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()
        if not self.path.is_file():
            raise FileNotFoundError(str(self.path))
        # mode=ro: never write to a catalog Lightroom may also have open
        self.db = sqlite3.connect(f"{self.path.resolve().as_uri()}?mode=ro", uri=True,
                                  check_same_thread=False)
        self.db.row_factory = sqlite3.Row
        logging.debug("Opened catalog %s", self.path)

    def close(self) -> None:
        if self.db is not None:
            self.db.close()
            self.db = None

    def __enter__(self) -> "Catalog":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _query(self, label: str) -> List[sqlite3.Row]:
        try:
            rows = self.db.execute(SQL[label]).fetchall()
        except sqlite3.Error as e:
            logging.debug("query %s failed: %s", label, e)
            raise
        logging.debug("query %s: %d rows", label, len(rows))
        return rows

    def _named_objects(self, label: str) -> List[NamedObject]:
        return [NamedObject(id=r[0], name=r[1] or "") for r in self._query(label)]

    def _distribution(self, label: str,
                      convert: Optional[Callable[[sqlite3.Row], DistributionEntry]] = None
                      ) -> List[DistributionEntry]:
        convert = convert or _default_entry
        return [convert(r) for r in self._query(label)]

    def get_lenses(self) -> List[NamedObject]:
        return self._named_objects("lenses")

    def get_cameras(self) -> List[NamedObject]:
        return self._named_objects("cameras")

    def get_photo_counts_by_date(self) -> List[DistributionEntry]:
        return self._distribution("photo_counts_by_date")

    def get_lens_distribution(self) -> List[DistributionEntry]:
        return self._distribution("lens_distribution")

    def get_camera_distribution(self) -> List[DistributionEntry]:
        return self._distribution("camera_distribution")

    def get_focal_length_distribution(self) -> List[DistributionEntry]:
        return self._distribution("focal_length_distribution")

    def get_focal_length_distribution_by_camera_and_lens(self) -> List[dict]:
        return [dict(r) for r in self._query("focal_length_distribution_by_camera_and_lens")]

    def get_aperture_distribution(self) -> List[DistributionEntry]:
        return self._distribution(
            "aperture_distribution",
            lambda r: DistributionEntry(id=0, label=format_aperture(r[0]), count=r[1]),
        )

    def get_exposure_time_distribution(self) -> List[DistributionEntry]:
        return self._distribution(
            "exposure_time_distribution",
            lambda r: DistributionEntry(id=0, label=shutter_speed_to_exposure_time(r[0]), count=r[1]),
        )

    def get_stats(self) -> Stats:
        return Stats(
            by_date=self.get_photo_counts_by_date(),
            by_camera=self.get_camera_distribution(),
            by_lens=self.get_lens_distribution(),
            by_focal_length=self.get_focal_length_distribution(),
            by_aperture=self.get_aperture_distribution(),
            by_exposure_time=self.get_exposure_time_distribution(),
        )

    def get_sunburst_rows(self) -> List[dict]:
        """Per-combination photo counts, with aperture/exposure turned into readable labels."""
        rows = []
        for r in self._query("sunburst"):
            row = dict(r)
            if row["aperture"] is not None:
                row["aperture"] = format_aperture(row["aperture"])
            if row["exposure"] is not None:
                row["exposure"] = shutter_speed_to_exposure_time(row["exposure"])
            rows.append(row)
        return rows

    def get_sidecar_files(self) -> List[SidecarFile]:
        return [
            SidecarFile(
                id=r["id"],
                root_path=r["rootPath"] or "",
                folder_path=r["folderPath"] or "",
                base_name=r["baseName"] or "",
                extension=r["extension"] or "",
                sidecar_extension=r["sidecarExtension"] or "",
            )
            for r in self._query("sidecar_files")
        ]

    def get_sidecar_stats(self) -> SidecarStats:
        stats = SidecarStats()
        for s in self.get_sidecar_files():
            if not os.path.exists(s.original_path):
                stats.missing_originals += 1
            try:
                stats.total_size_bytes += os.path.getsize(s.sidecar_path)
                stats.count += 1
            except FileNotFoundError:
                stats.missing_sidecars += 1
        return stats

    def get_photos(self) -> List[PhotoRecord]:
        photos = []
        for r in self._query("photos"):
            row = dict(r)
            if row["aperture"] is not None:
                row["aperture"] = format_aperture(row["aperture"])
            if row["exposure"] is not None:
                row["exposure"] = shutter_speed_to_exposure_time(row["exposure"])
            photos.append(PhotoRecord(**row))
        return photos

    def delete_sidecars(self, dry_run: bool = True,
                        delete_missing_originals: bool = False) -> SidecarDeletion:
        """
        Remove the JPG sidecars of RAW photos. A sidecar whose original is gone
        is kept unless delete_missing_originals is set; with dry_run nothing is
        unlinked and the would-be deletions are only logged and counted.
        """
        result = SidecarDeletion()
        for s in self.get_sidecar_files():
            result.total += 1
            if not os.path.exists(s.sidecar_path):
                result.missing += 1
                continue
            if not delete_missing_originals and not os.path.exists(s.original_path):
                logging.info("Skipping %s, original %s is missing", s.sidecar_path, s.original_path)
                result.skipped += 1
                continue
            if dry_run:
                logging.info("Would delete %s", s.sidecar_path)
                result.deleted += 1
                continue
            try:
                os.remove(s.sidecar_path)
            except OSError as e:
                logging.error("Cannot delete %s: %s", s.sidecar_path, e)
                result.errors += 1
                continue
            logging.info("Deleted %s", s.sidecar_path)
            result.deleted += 1
        return result


def _default_entry(r: sqlite3.Row) -> DistributionEntry:
    return DistributionEntry(id=r[0], label="" if r[1] is None else str(r[1]), count=r[2])


def format_aperture(a: float) -> str:
    return "%.1f" % aperture_to_fnumber(a)

# -------------------- discovery --------------------

def find_catalogs(*paths: str | Path) -> List[Path]:
    """Expand files and directories into .lrcat paths, never descending into .lrdata."""
    found: List[Path] = []
    for raw in paths:
        p = Path(raw).expanduser()
        if not p.exists():
            logging.warning("Cannot stat path %s", p)
            continue
        if p.is_file():
            if p.suffix == CATALOG_EXT:
                found.append(p)
            continue
        for dirpath, dirnames, filenames in os.walk(p):
            dirnames[:] = sorted(d for d in dirnames if not d.endswith(CATALOG_DATA_DIR_EXT))
            for name in sorted(filenames):
                if name.endswith(CATALOG_EXT):
                    found.append(Path(dirpath) / name)
    return found
