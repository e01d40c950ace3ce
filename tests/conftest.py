import io
import sqlite3
import struct
from pathlib import Path

import pytest
from PIL import Image

SCHEMA = """
CREATE TABLE Adobe_images (
    id_local INTEGER PRIMARY KEY,
    rootFile INTEGER,
    captureTime TEXT,
    fileFormat TEXT,
    id_global TEXT,
    rating INTEGER
);
CREATE TABLE AgHarvestedExifMetadata (
    id_local INTEGER PRIMARY KEY,
    image INTEGER,
    cameraModelRef INTEGER,
    lensRef INTEGER,
    aperture REAL,
    focalLength REAL,
    shutterSpeed REAL,
    isoSpeedRating REAL
);
CREATE TABLE AgInternedExifLens (id_local INTEGER PRIMARY KEY, value TEXT);
CREATE TABLE AgInternedExifCameraModel (id_local INTEGER PRIMARY KEY, value TEXT);
CREATE TABLE AgLibraryRootFolder (id_local INTEGER PRIMARY KEY, absolutePath TEXT);
CREATE TABLE AgLibraryFolder (id_local INTEGER PRIMARY KEY, pathFromRoot TEXT, rootFolder INTEGER);
CREATE TABLE AgLibraryFile (
    id_local INTEGER PRIMARY KEY,
    baseName TEXT,
    extension TEXT,
    folder INTEGER,
    sidecarExtensions TEXT
);
"""


def make_catalog(path: Path, photos_root: Path) -> Path:
    conn = sqlite3.connect(path)
    conn.executescript(SCHEMA)
    conn.executemany("INSERT INTO AgInternedExifCameraModel VALUES (?, ?)",
                     [(1, "X100V"), (2, "Z6")])
    conn.executemany("INSERT INTO AgInternedExifLens VALUES (?, ?)",
                     [(1, "23mm F2"), (2, "24-70mm f/4")])
    conn.execute("INSERT INTO AgLibraryRootFolder VALUES (1, ?)", (photos_root.as_posix() + "/",))
    conn.execute("INSERT INTO AgLibraryFolder VALUES (1, '2023/', 1)")
    conn.executemany("INSERT INTO AgLibraryFile VALUES (?, ?, ?, ?, ?)", [
        (1, "DSC001", "NEF", 1, "JPG"),
        (2, "DSC002", "NEF", 1, "JPG"),
        (3, "IMG003", "JPG", 1, None),
        (4, "DSC004", "NEF", 1, None),
        (5, "DSC005", "NEF", 1, None),
    ])
    conn.executemany("INSERT INTO Adobe_images VALUES (?, ?, ?, ?, ?, ?)", [
        (1, 1, "2023-05-01T10:00:00", "RAW", "G-1", 5),
        (2, 2, "2023-05-01T11:00:00", "RAW", "G-2", 3),
        (3, 3, "2023-05-02T09:00:00", "JPG", "G-3", None),
        (4, 4, "2023-06-10T09:00:00", "RAW", "G-4", 0),
        (5, 5, "2023-06-10T12:00:00", "RAW", "G-5", None),
    ])
    # aperture / shutterSpeed are APEX values: 2.0 -> f/2.0, 4.0 -> f/4.0, 8 -> 1/256, 7 -> 1/128
    conn.executemany("INSERT INTO AgHarvestedExifMetadata VALUES (?, ?, ?, ?, ?, ?, ?, ?)", [
        (1, 1, 1, 1, 2.0, 23.0, 8.0, 200.0),
        (2, 2, 1, 1, 2.0, 23.0, 8.0, 400.0),
        (3, 3, 1, 1, 4.0, 23.0, 7.0, 200.0),
        (4, 4, 2, 2, 4.0, 50.0, 8.0, 800.0),
        (5, 5, None, None, None, None, None, None),
    ])
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def photos_root(tmp_path):
    root = tmp_path / "photos"
    (root / "2023").mkdir(parents=True)
    (root / "2023" / "DSC001.NEF").write_bytes(b"raw")
    (root / "2023" / "DSC001.JPG").write_bytes(b"12345")
    return root


@pytest.fixture
def lrcat(tmp_path, photos_root):
    return make_catalog(tmp_path / "Photos.lrcat", photos_root)


@pytest.fixture
def sample_records():
    return [
        {"camera": "A", "lens": "X", "count": "3"},
        {"camera": "A", "lens": "Y", "count": "2"},
        {"camera": "B", "lens": "X", "count": "1"},
    ]


PREVIEWS_SCHEMA = """
CREATE TABLE ImageCacheEntry (imageId INTEGER, uuid TEXT, digest TEXT);
CREATE TABLE PyramidLevel (uuid TEXT, level INTEGER);
"""


def jpeg_bytes(width: int, height: int, color="red") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, "JPEG")
    return buf.getvalue()


def lrprev_bytes(sections) -> bytes:
    """Pack (name, data, padding) triples the way Lightroom lays out an .lrprev."""
    out = b""
    for name, data, padding in sections:
        name_b = name.encode() + b"\0" * (8 - len(name) % 8)
        out += b"AgHg" + struct.pack(">HBBQQ", 24 + len(name_b), 1, 0, len(data), padding)
        out += name_b + data + b"\0" * padding
    return out


def make_previews(catalog_path: Path, entries, files) -> Path:
    """entries: (image_id, uuid, digest, max_level); files: {uuid: lrprev bytes}."""
    root = catalog_path.parent / (catalog_path.stem + " Previews.lrdata")
    root.mkdir()
    conn = sqlite3.connect(root / "previews.db")
    conn.executescript(PREVIEWS_SCHEMA)
    for image_id, uuid, digest, max_level in entries:
        conn.execute("INSERT INTO ImageCacheEntry VALUES (?, ?, ?)", (image_id, uuid, digest))
        conn.executemany("INSERT INTO PyramidLevel VALUES (?, ?)",
                         [(uuid, level) for level in range(1, max_level + 1)])
    conn.commit()
    conn.close()
    for image_id, uuid, digest, _ in entries:
        if uuid in files:
            d = root / uuid[0] / uuid[0:4]
            d.mkdir(parents=True, exist_ok=True)
            (d / f"{uuid}-{digest}.lrprev").write_bytes(files[uuid])
    return root


@pytest.fixture
def lrdata(lrcat):
    # image 1: a full preview; image 2: cache entry without its .lrprev; 3-5: not cached
    good = lrprev_bytes([
        ("header", b"AgHg-metadata", 3),
        ("level_1", jpeg_bytes(16, 8), 5),
        ("level_2", jpeg_bytes(64, 32), 0),
    ])
    return make_previews(
        lrcat,
        [(1, "ABCD1234-0001", "d1", 2), (2, "EF015678-0002", "d2", 1)],
        {"ABCD1234-0001": good},
    )
