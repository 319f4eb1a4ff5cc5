"""
Solidity Metadata Extractor CLI Tool

Extracts the CBOR metadata trailer solc appends to contract bytecode, either
from a single blob (file, stdin or RPC) or continuously from a chain.
"""

import argparse
import asyncio
import json
import sys
from typing import Optional

from solcmeta.config import Settings, get_settings
from solcmeta.cursor import CursorError
from solcmeta.extract import ExtractionOutcome, Invalid, Metadata, NoTrailer, extract
from solcmeta.indexer import serve
from solcmeta.log import configure_logging
from solcmeta.metadata import jsonable
from solcmeta.sinks import SinkError
from solcmeta.source import SourceError, fetch_bytecode


# ANSI color codes for terminal output
class Colors:
    HEADER = "\033[95m"
    OKBLUE = "\033[94m"
    OKGREEN = "\033[92m"
    WARNING = "\033[93m"
    FAIL = "\033[91m"
    ENDC = "\033[0m"
    BOLD = "\033[1m"

    @staticmethod
    def disable():
        Colors.HEADER = ""
        Colors.OKBLUE = ""
        Colors.OKGREEN = ""
        Colors.WARNING = ""
        Colors.FAIL = ""
        Colors.ENDC = ""
        Colors.BOLD = ""


class InputError(Exception):
    pass


def parse_hex(text: str) -> bytes:
    """
    Decode hex-encoded bytecode, with or without a '0x' prefix.

    Raises:
        InputError: If the text is not valid hexadecimal
    """
    text = "".join(text.split())
    if text.startswith(("0x", "0X")):
        text = text[2:]
    try:
        return bytes.fromhex(text)
    except ValueError:
        raise InputError("Input does not contain valid hexadecimal bytecode")


def read_bytecode(filepath: Optional[str], is_hex: bool) -> bytes:
    """
    Read bytecode from a local file, or from standard input when no path is given.

    Raises:
        InputError: If the input cannot be read or is not valid hex
    """
    try:
        if filepath is None:
            data = sys.stdin.buffer.read()
        else:
            with open(filepath, "rb") as f:
                data = f.read()
    except FileNotFoundError:
        raise InputError(f"File not found: {filepath}")
    except OSError as e:
        raise InputError(f"Error reading bytecode: {e}")

    if not is_hex:
        return data
    try:
        return parse_hex(data.decode("ascii"))
    except UnicodeDecodeError:
        raise InputError("Input does not contain valid hexadecimal bytecode")


def print_results(blob: bytes, outcome: Metadata):
    """Print the decoded record in a readable format with colorized output."""
    print(f"\n{Colors.HEADER}{Colors.BOLD}" + "=" * 70)
    print("SOLIDITY METADATA EXTRACTION RESULTS")
    print("=" * 70 + f"{Colors.ENDC}")

    print(f"\n{Colors.BOLD}[*] Contract Bytecode Length:{Colors.ENDC} {len(blob)} bytes")

    print(f"\n{Colors.BOLD}[*] CBOR Decoded Metadata:{Colors.ENDC}")
    for key, value in outcome.record.as_dict().items():
        if isinstance(value, bytes):
            # Display bytes as hex
            print(f"    {Colors.OKBLUE}{key}:{Colors.ENDC} 0x{value.hex()}")
        else:
            print(f"    {Colors.OKBLUE}{key}:{Colors.ENDC} {json.dumps(jsonable(value))}")

    version = outcome.record.compiler_version
    if version:
        print(f"\n{Colors.BOLD}[*] Solidity Compiler Version:{Colors.ENDC} {version}")
    else:
        print(
            f"\n{Colors.BOLD}[*] Solidity Compiler Version:{Colors.ENDC} {Colors.WARNING}Not found in metadata{Colors.ENDC}"
        )

    if outcome.cid is not None:
        print(f"\n{Colors.BOLD}[*] Metadata IPFS Hash:{Colors.ENDC} {outcome.cid}")
        print(
            f"    {Colors.OKBLUE}Gateway URL:{Colors.ENDC} https://ipfs.io/ipfs/{outcome.cid}"
        )
    elif outcome.cid_error is not None:
        print(
            f"\n{Colors.BOLD}[*] Metadata IPFS Hash:{Colors.ENDC} {Colors.WARNING}{outcome.cid_error}{Colors.ENDC}"
        )
    else:
        print(
            f"\n{Colors.BOLD}[*] Metadata IPFS Hash:{Colors.ENDC} {Colors.WARNING}Not found in metadata{Colors.ENDC}"
        )

    print(f"\n{Colors.HEADER}{Colors.BOLD}" + "=" * 70 + f"{Colors.ENDC}\n")


def report(blob: bytes, outcome: ExtractionOutcome, show_metadata: bool, as_json: bool) -> None:
    if isinstance(outcome, NoTrailer):
        print(
            f"{Colors.WARNING}[!] No CBOR metadata present{Colors.ENDC}", file=sys.stderr
        )
        return
    if isinstance(outcome, Invalid):
        print(
            f"{Colors.WARNING}[!] Invalid metadata trailer ({outcome.kind}): {outcome.message}{Colors.ENDC}",
            file=sys.stderr,
        )
        return

    if as_json:
        record = outcome.record.to_json()
        record["cid"] = str(outcome.cid) if outcome.cid is not None else None
        print(json.dumps(record))
        return
    if show_metadata:
        print_results(blob, outcome)
    if outcome.reference is not None:
        print(outcome.reference)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="solcmeta",
        description="Extract Solidity metadata from smart contract bytecode",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Raw bytecode on stdin
  solcmeta < contract.bin

  # Hex bytecode from a file, showing the decoded record
  solcmeta --hex --metadata --file bytecode.txt

  # Fetch a deployed contract
  solcmeta --rpc https://eth.llamarpc.com --contract 0x1234...

  # Index every contract created on a chain
  solcmeta --live --rpc http://localhost:8545 --sink file --output records.ndjson
        """,
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--live", action="store_true", help="Follow the chain at --rpc")
    mode.add_argument("--replay", type=str, help="Replay recorded notifications (NDJSON)")

    parser.add_argument("--file", type=str, help="Path to a file containing bytecode")
    parser.add_argument("-i", "--hex", action="store_true", help="Input is hex text, not raw bytes")
    parser.add_argument("--rpc", type=str, help="RPC URL of an execution client")
    parser.add_argument("--contract", type=str, help="Contract address to fetch (requires --rpc)")
    parser.add_argument("-m", "--metadata", action="store_true", help="Print the decoded metadata")
    parser.add_argument("--json", action="store_true", help="Print the decoded metadata as JSON")
    parser.add_argument("--no-color", action="store_true", help="Disable colorized output")

    stream = parser.add_argument_group("streaming")
    stream.add_argument("--cursor", type=str, help="Progress cursor file")
    stream.add_argument("--sink", choices=["console", "file", "http"], help="Where records go")
    stream.add_argument("--output", type=str, help="Output file for --sink file")
    stream.add_argument("--sink-url", type=str, help="Endpoint for --sink http")
    stream.add_argument("--start-block", type=int, help="First block when no cursor exists")
    stream.add_argument("--confirmations", type=int, help="Blocks to stay behind the head")
    stream.add_argument("--log-level", type=str, help="Log level")
    return parser


def stream_settings(args: argparse.Namespace) -> Settings:
    overrides = {
        "rpc_url": args.rpc,
        "cursor_path": args.cursor,
        "sink": args.sink,
        "output_path": args.output,
        "sink_url": args.sink_url,
        "start_block": args.start_block,
        "confirmations": args.confirmations,
        "log_level": args.log_level,
    }
    base = get_settings().model_dump()
    base.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**base)


def main(argv=None):
    """
    Main CLI entry point.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.no_color or not sys.stdout.isatty():
        Colors.disable()

    if args.contract and not args.rpc:
        parser.error("--contract can only be used with --rpc")
    if args.contract and args.file:
        parser.error("--contract and --file are mutually exclusive")
    if args.rpc and not args.contract and not (args.live or args.replay):
        parser.error("--contract is required when using --rpc")

    try:
        if args.live or args.replay:
            settings = stream_settings(args)
            if args.live and not settings.rpc_url:
                parser.error("--live requires --rpc or SOLCMETA_RPC_URL")
            configure_logging(settings.log_level, settings.json_logs)
            return asyncio.run(serve(settings, replay=args.replay))

        configure_logging(args.log_level or "WARNING")
        if args.contract:
            blob = fetch_bytecode(args.rpc, args.contract)
        else:
            blob = read_bytecode(args.file, args.hex)

        report(blob, extract(blob), args.metadata, args.json)
        return 0

    except (InputError, SourceError, SinkError, CursorError, OSError, ValueError) as e:
        print(
            f"\n{Colors.FAIL}{Colors.BOLD}[ERROR]{Colors.ENDC} {str(e)}",
            file=sys.stderr,
        )
        return 1


if __name__ == "__main__":
    sys.exit(main())
