"""Command-line entry point: encrypt, decrypt, manifest, verify, calibrate."""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger("emmavault")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _read_passphrase(args: argparse.Namespace, confirm: bool = False) -> str:
    if args.passphrase_env:
        value = os.environ.get(args.passphrase_env)
        if not value:
            raise SystemExit(f"ERROR: environment variable {args.passphrase_env} is empty")
        return value
    passphrase = getpass.getpass("Vault passphrase: ")
    if confirm and getpass.getpass("Repeat passphrase: ") != passphrase:
        raise SystemExit("ERROR: passphrases do not match")
    return passphrase


# ============================================================================
#  Commands
# ============================================================================
def cmd_encrypt(args: argparse.Namespace) -> int:
    from emmavault.crypto.codec import encrypt_container

    document = json.loads(Path(args.input).read_text(encoding="utf-8"))
    blob = encrypt_container(document, _read_passphrase(args, confirm=True), iterations=args.iterations)
    Path(args.output).write_bytes(blob)
    print(f"Wrote {len(blob)} bytes to {args.output}")
    return EXIT_OK


def cmd_decrypt(args: argparse.Namespace) -> int:
    from emmavault.crypto.codec import decrypt_container

    document = decrypt_container(
        Path(args.input).read_bytes(), _read_passphrase(args), iterations=args.iterations
    )
    text = json.dumps(document.to_dict(), indent=2, ensure_ascii=False)
    if args.output:
        Path(args.output).write_text(text + "\n", encoding="utf-8")
    else:
        print(text)
    return EXIT_OK


def cmd_manifest(args: argparse.Namespace) -> int:
    from emmavault.crypto.journal import create_manifest

    manifest = create_manifest(Path(args.input).read_bytes(), args.chunk_size)
    text = json.dumps(manifest.to_dict(), indent=2)
    if args.output:
        Path(args.output).write_text(text + "\n", encoding="utf-8")
    else:
        print(text)
    return EXIT_OK


def cmd_verify(args: argparse.Namespace) -> int:
    from emmavault.crypto.journal import IntegrityManifest, verify_manifest

    manifest = IntegrityManifest.from_json(Path(args.manifest).read_text(encoding="utf-8"))
    if verify_manifest(Path(args.input).read_bytes(), manifest):
        print("OK")
        return EXIT_OK
    print("MISMATCH", file=sys.stderr)
    return EXIT_FAILED


def cmd_calibrate(args: argparse.Namespace) -> int:
    from emmavault.config import Config
    from emmavault.paths import get_data_dir

    data_dir = Path(args.data_dir) if args.data_dir else get_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    params = Config.calibrate_kdf(data_dir, target_ms=args.target_ms, algorithm=args.algorithm)
    print(json.dumps(params, indent=2))
    return EXIT_OK


# ============================================================================
#  Parser
# ============================================================================
def build_parser() -> argparse.ArgumentParser:
    from emmavault import __version__
    from emmavault.crypto.formats import CONTAINER_ITERATIONS, KDF_ALGORITHMS, KDF_PBKDF2_SHA256
    from emmavault.crypto.journal import DEFAULT_CHUNK_SIZE

    parser = argparse.ArgumentParser(prog="emma-vault", description="Emma encrypted vault tools")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="log to stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    def _with_passphrase(p: argparse.ArgumentParser) -> None:
        p.add_argument("--passphrase-env", metavar="VAR", help="read the passphrase from $VAR")
        p.add_argument("--iterations", type=int, default=CONTAINER_ITERATIONS)

    p = sub.add_parser("encrypt", help="encrypt a JSON document into a .emma container")
    p.add_argument("input")
    p.add_argument("output")
    _with_passphrase(p)
    p.set_defaults(func=cmd_encrypt)

    p = sub.add_parser("decrypt", help="decrypt a .emma container to JSON")
    p.add_argument("input")
    p.add_argument("-o", "--output")
    _with_passphrase(p)
    p.set_defaults(func=cmd_decrypt)

    p = sub.add_parser("manifest", help="write an integrity manifest for a file")
    p.add_argument("input")
    p.add_argument("-o", "--output")
    p.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE)
    p.set_defaults(func=cmd_manifest)

    p = sub.add_parser("verify", help="check a file against its integrity manifest")
    p.add_argument("input")
    p.add_argument("manifest")
    p.set_defaults(func=cmd_verify)

    p = sub.add_parser("calibrate", help="tune KDF cost for this machine")
    p.add_argument("--target-ms", type=int, default=1000)
    p.add_argument("--algorithm", choices=KDF_ALGORITHMS, default=KDF_PBKDF2_SHA256)
    p.add_argument("--data-dir")
    p.set_defaults(func=cmd_calibrate)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Application entry point."""
    from emmavault import check_dependencies

    check_dependencies()

    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s - %(levelname)s - %(message)s")
    else:
        from emmavault.logging_setup import setup_secure_logging
        from emmavault.paths import get_data_dir

        try:
            setup_secure_logging(get_data_dir())
        except OSError as exc:
            print(f"WARNING: file logging disabled ({exc})", file=sys.stderr)

    from emmavault.errors import VaultError

    try:
        return args.func(args)
    except VaultError as exc:
        logger.error("%s failed: %s", args.command, type(exc).__name__)
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_FAILED
    except (OSError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_USAGE
