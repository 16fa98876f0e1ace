"""Supported upload formats and their extension / content-type allow-lists."""

from enum import StrEnum


class FileFormat(StrEnum):
    TCX = "tcx"  # XML endurance format: activity -> lap -> trackpoint
    GPX = "gpx"  # XML track log: track -> segment -> point
    FIT = "fit"  # binary device format


FORMAT_LABELS: dict[FileFormat, str] = {
    FileFormat.TCX: "TCX",
    FileFormat.GPX: "GPX",
    FileFormat.FIT: "FIT",
}

EXTENSION_FORMATS: dict[str, FileFormat] = {
    ".tcx": FileFormat.TCX,
    ".gpx": FileFormat.GPX,
    ".fit": FileFormat.FIT,
}

CONTENT_TYPE_FORMATS: dict[str, frozenset[FileFormat]] = {
    "application/vnd.garmin.tcx+xml": frozenset({FileFormat.TCX}),
    "application/tcx+xml": frozenset({FileFormat.TCX}),
    "application/gpx+xml": frozenset({FileFormat.GPX}),
    "application/vnd.ant.fit": frozenset({FileFormat.FIT}),
    "application/fit": frozenset({FileFormat.FIT}),
    "application/xml": frozenset({FileFormat.TCX, FileFormat.GPX}),
    "text/xml": frozenset({FileFormat.TCX, FileFormat.GPX}),
}

# Browsers and CLI clients send these for anything they can't classify
GENERIC_CONTENT_TYPES = frozenset({"", "application/octet-stream", "binary/octet-stream"})

STORED_CONTENT_TYPES: dict[FileFormat, str] = {
    FileFormat.TCX: "application/vnd.garmin.tcx+xml",
    FileFormat.GPX: "application/gpx+xml",
    FileFormat.FIT: "application/vnd.ant.fit",
}


def allowed_extensions() -> list[str]:
    return sorted(EXTENSION_FORMATS)
