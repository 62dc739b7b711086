"""CLI entry point for extraedit.

Usage:
    python -m extraedit sniff <file>
    python -m extraedit show <file> [--sheet N]
    python -m extraedit convert <source> <destination>
    python -m extraedit resolve <file_id> --root <dir> --records <records.json>
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from extraedit.config import get_settings
from extraedit.doc_ingest import ingest_document
from extraedit.exceptions import EditorError
from extraedit.grid_ingest import ingest_grid
from extraedit.key_resolver import StorageKeyResolver
from extraedit.logging import setup_logging
from extraedit.records import FileRecord
from extraedit.serializer import serialize_document, serialize_grid
from extraedit.sniffer import (
    SPREADSHEET_EXTENSIONS,
    FileKindTag,
    classify_file_kind,
    sniff_format,
)
from extraedit.transport import InMemoryFileRecordStore, LocalBlobStore, TransportError
from extraedit.utils import escape_tsv_value, file_extension


def _read(path: Path) -> bytes:
    if not path.is_file():
        raise FileNotFoundError(f"No such file: {path}")
    return path.read_bytes()


async def cmd_sniff(args: argparse.Namespace) -> int:
    """Print the detected format and file kind of a local file."""
    path = Path(args.file)
    try:
        data = _read(path)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    tag = sniff_format(data[: get_settings().sniff_bytes], path.name)
    kind = classify_file_kind(FileRecord(id=path.name, name=path.name), tag)
    print(f"format: {tag.value}")
    print(f"kind:   {kind.tag.value}" + (f" ({kind.subtype})" if kind.subtype else ""))
    return 0


async def cmd_show(args: argparse.Namespace) -> int:
    """Print a grid as TSV or a document as HTML."""
    path = Path(args.file)
    try:
        data = _read(path)
        tag = sniff_format(data[: get_settings().sniff_bytes], path.name)
        kind = classify_file_kind(FileRecord(id=path.name, name=path.name), tag)

        if kind.tag is FileKindTag.SPREADSHEET:
            ingestion = ingest_grid(data, path.name, sheet_index=args.sheet)
            if len(ingestion.sheet_names) > 1:
                print(
                    f"# sheet {ingestion.active_sheet + 1}/{len(ingestion.sheet_names)}: "
                    f"{ingestion.sheet_name}",
                    file=sys.stderr,
                )
            for row in [ingestion.grid.header, *ingestion.grid.rows]:
                print("\t".join(escape_tsv_value(value) for value in row))
            if len(ingestion.metadata):
                print(f"# {len(ingestion.metadata)} formatted cells", file=sys.stderr)
            return 0

        document = ingest_document(data, path.name)
        print(document.html)
        for warning in document.warnings:
            print(f"# warning: {warning}", file=sys.stderr)
        return 0
    except (OSError, EditorError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


async def cmd_convert(args: argparse.Namespace) -> int:
    """Ingest a file and serialize it to the destination's format."""
    source = Path(args.source)
    destination = Path(args.destination)
    try:
        data = _read(source)
        if file_extension(destination.name) in SPREADSHEET_EXTENSIONS:
            ingestion = ingest_grid(data, source.name)
            payload = serialize_grid(
                ingestion.grid,
                ingestion.metadata,
                destination.name,
                base_workbook=data if file_extension(source.name) == "xlsx" else None,
                sheet_name=ingestion.sheet_name,
            )
        else:
            document = ingest_document(data, source.name)
            if document.placeholder:
                print(f"Error: {source.name} cannot be converted", file=sys.stderr)
                return 1
            payload = serialize_document(document.html, destination.name)

        if payload.upgraded:
            destination = destination.with_name(payload.file_name)
            print(f"Formatting cannot be stored as {args.destination}; writing {destination}")
        destination.write_bytes(payload.data)
        print(f"Wrote {len(payload.data)} bytes ({payload.content_type}) to {destination}")
        if payload.tier > 1:
            print(f"Note: document exported with fallback tier {payload.tier}")
        return 0
    except (OSError, EditorError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


async def cmd_resolve(args: argparse.Namespace) -> int:
    """Resolve the storage key of a file record against a local directory."""
    try:
        records = InMemoryFileRecordStore.from_json(Path(args.records))
    except (OSError, ValueError) as e:
        print(f"Error: could not read records: {e}", file=sys.stderr)
        return 1

    blobs = LocalBlobStore(Path(args.root))
    try:
        record = await records.read_by_id(args.file_id)
        if record is None:
            print(f"Error: no file record with id {args.file_id}", file=sys.stderr)
            return 1

        resolver = StorageKeyResolver(blobs, records)
        if args.verbose:
            print("Candidates:")
            for key in await resolver.candidates_for(record):
                print(f"  {key}")

        resolved = await resolver.resolve(record)
        print(f"key:      {resolved.key}")
        print(f"attempts: {resolved.attempts}")
        print(f"listing:  {'yes' if resolved.via_listing else 'no'}")
        return 0
    except (EditorError, TransportError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await blobs.close()
        await records.close()


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="extraedit",
        description="Inspect, convert and locate spreadsheet and document files",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Minimum log level (default: WARNING)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs as JSON lines",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # sniff subcommand
    sniff_parser = subparsers.add_parser(
        "sniff",
        help="Detect a file's format from its leading bytes",
    )
    sniff_parser.add_argument("file", help="Path to the file")
    sniff_parser.set_defaults(func=cmd_sniff)

    # show subcommand
    show_parser = subparsers.add_parser(
        "show",
        help="Print a spreadsheet as TSV or a document as HTML",
    )
    show_parser.add_argument("file", help="Path to the file")
    show_parser.add_argument(
        "--sheet",
        type=int,
        default=0,
        help="Zero-based worksheet index for workbooks (default: 0)",
    )
    show_parser.set_defaults(func=cmd_show)

    # convert subcommand
    convert_parser = subparsers.add_parser(
        "convert",
        help="Convert a file to the format implied by the destination name",
    )
    convert_parser.add_argument("source", help="Path to the source file")
    convert_parser.add_argument("destination", help="Path to write")
    convert_parser.set_defaults(func=cmd_convert)

    # resolve subcommand
    resolve_parser = subparsers.add_parser(
        "resolve",
        help="Find the storage key of a file record in a local storage directory",
    )
    resolve_parser.add_argument("file_id", help="Id of the file record")
    resolve_parser.add_argument(
        "--root",
        required=True,
        help="Directory playing the role of the storage bucket",
    )
    resolve_parser.add_argument(
        "--records",
        required=True,
        help="JSON file with the file records (a list, or {\"files\": [...]})",
    )
    resolve_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Print the candidate keys before resolving",
    )
    resolve_parser.set_defaults(func=cmd_resolve)

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(
        json_logs=args.json_logs or settings.json_logs,
        log_level=(args.log_level or "WARNING").upper(),
    )
    result: int = asyncio.run(args.func(args))
    return result


if __name__ == "__main__":
    sys.exit(main())
