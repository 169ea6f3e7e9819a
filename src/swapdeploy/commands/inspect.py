"""Inspect an archive: digest, signature block, entries and code units"""
import json

from swapdeploy.archive import ArchiveIndex
from swapdeploy.exceptions import SwapDeployError
from swapdeploy.units import PythonSourceSplitter


def setup_parser(parser):
    """Setup argument parser for inspect command"""
    parser.add_argument(
        'archive',
        help='Package archive to inspect'
    )
    parser.add_argument(
        '--units',
        action='store_true',
        help='Also split code containers and list their units'
    )
    parser.add_argument(
        '--json',
        action='store_true',
        help='Print as JSON'
    )


def describe(archive_path, with_units=False):
    """Index archive_path and return a JSON-ready description.

    Raises:
        ArchiveError: If the archive cannot be indexed or read
    """
    archive = ArchiveIndex().index(archive_path)
    splitter = PythonSourceSplitter()

    entries = []
    for entry in archive.entries:
        item = {
            "name": entry.name,
            "crc": f"{entry.crc:08x}",
            "size": entry.size,
            "compressed_size": entry.compressed_size,
        }
        if with_units and splitter.handles(entry):
            item["units"] = [
                {"name": unit.name, "checksum": f"{unit.checksum:08x}"}
                for unit in splitter.split(entry)
            ]
        entries.append(item)

    return {
        "path": archive.path,
        "digest": archive.digest,
        "central_directory": {"offset": archive.cd_offset, "size": archive.cd_size},
        "signature_block": {
            "offset": archive.signature_block_offset,
            "size": archive.signature_block_size,
        } if archive.has_signature_block else None,
        "entries": entries,
    }


def execute(args):
    """Execute inspect command"""
    try:
        info = describe(args.archive, with_units=args.units)
    except SwapDeployError as e:
        print(f"Error: {e}")
        return 1

    if args.json:
        print(json.dumps(info, indent=2))
        return 0

    print(f"Archive:   {info['path']}")
    print(f"Digest:    {info['digest']}")
    cd = info['central_directory']
    print(f"Central directory: {cd['size']} bytes at offset {cd['offset']}")
    block = info['signature_block']
    if block:
        print(f"Signature block:   {block['size']} bytes at offset {block['offset']}")
    else:
        print("Signature block:   none")

    print()
    print(f"{'CRC':<10} {'Size':>10}  Name")
    print("-" * 60)
    for entry in info['entries']:
        print(f"{entry['crc']:<10} {entry['size']:>10}  {entry['name']}")
        for unit in entry.get('units', []):
            print(f"{unit['checksum']:<10} {'':>10}    {unit['name']}")

    print(f"\n{len(info['entries'])} entries")
    return 0
