"""ts_verify: Offline verifier for Thingstead export bundles and signed deliverables.

Verifies artifacts without trusting the application that produced them.

Usage:
    ts-verify bundle <bundle.json>          Full integrity report for an export bundle
    ts-verify bundle --stdin                Same, reading the bundle from stdin
    ts-verify dlc <deliverable.json>        Check the detached signature of a deliverable
    ts-verify sign <doc.json> [--key k.pem] Sign a JSON document (ephemeral key by default)

Exit codes: 0 all checks passed, 1 verification failed or input unparseable,
2 usage error.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from ts_kernel.bundle import BundleReport, VerifyMessage, load_bundle, verify_bundle
from ts_kernel.config import KernelConfig
from ts_kernel.crypto import EcdsaP256KeyPair
from ts_kernel.dlc import sign_bundle, verify_signed_bundle
from ts_kernel.errors import TSError


logger = logging.getLogger("ts_kernel.cli")

RESULT_PASSED = "RESULT: ALL CHECKS PASSED"
RESULT_FAILED = "RESULT: VERIFICATION FAILED"


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for CLI usage."""
    level = logging.DEBUG if verbose else getattr(logging, KernelConfig.from_env().log_level)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    logging.getLogger("ts_kernel").setLevel(level)


class _UsageError(Exception):
    pass


def _read_input(args: argparse.Namespace) -> Tuple[str, Union[str, bytes]]:
    """Return (source label, raw input). Files are read as bytes; load_bundle decodes them."""
    if getattr(args, "stdin", False):
        return "<stdin>", sys.stdin.read()
    if not args.path:
        raise _UsageError("no input: pass a file path or --stdin")
    try:
        return args.path, Path(args.path).read_bytes()
    except OSError as e:
        raise _UsageError(f"cannot read {args.path}: {e}") from e


def _printable(text: str) -> str:
    # Lone surrogates from JSON escapes cannot be written to a UTF-8 stream.
    return text.encode("utf-8", "backslashreplace").decode("utf-8")


def _print_messages(msgs: List[VerifyMessage]) -> None:
    for m in msgs:
        if m.skipped:
            mark = "-"
        else:
            mark = "✓" if m.ok else "✗"
        print(f"  {mark} {m.code}: {_printable(m.detail)}")


def _print_report(report: BundleReport) -> None:
    for section in report.sections:
        print(f"[{section.name}]")
        _print_messages(section.messages)
        print()
    print(RESULT_PASSED if report.overall else RESULT_FAILED)


def _emit_json(
    ok: bool,
    command: str,
    *,
    extra: Optional[Dict[str, Any]] = None,
    pretty: bool = False,
) -> int:
    """Emit a machine-readable JSON report and return an exit code."""

    payload: Dict[str, Any] = {"ok": bool(ok), "command": command}
    if extra:
        payload.update(extra)
    _print_json(payload, pretty)
    return 0 if ok else 1


def _print_json(payload: Any, pretty: bool) -> None:
    if pretty:
        print(json.dumps(payload, indent=2, sort_keys=True))
    else:
        print(json.dumps(payload, separators=(",", ":"), sort_keys=True))


def _input_error(args: argparse.Namespace, command: str, source: str, err: TSError) -> int:
    if args.json_out:
        return _emit_json(False, command, extra={"path": source, "error": err.as_dict()}, pretty=args.json_pretty)
    print(f"✗ {err.code}: {_printable(err.message)}")
    print(RESULT_FAILED)
    return 1


# ---------------------------
# Subcommands
# ---------------------------
def cmd_bundle(args: argparse.Namespace) -> int:
    source, text = _read_input(args)
    logger.debug("verifying bundle from %s", source)
    try:
        bundle = load_bundle(text)
    except TSError as e:
        return _input_error(args, "bundle", source, e)

    report = verify_bundle(bundle)
    if args.json_out:
        return _emit_json(report.overall, "bundle", extra={"path": source, **report.to_dict()}, pretty=args.json_pretty)
    _print_report(report)
    return 0 if report.overall else 1


def cmd_dlc(args: argparse.Namespace) -> int:
    source, text = _read_input(args)
    logger.debug("verifying signed deliverable from %s", source)
    try:
        bundle = load_bundle(text)
    except TSError as e:
        return _input_error(args, "dlc", source, e)

    result = verify_signed_bundle(bundle)
    if args.json_out:
        return _emit_json(result.valid, "dlc", extra={"path": source, **result.to_dict()}, pretty=args.json_pretty)
    _print_json(result.to_dict(), args.json_pretty)
    return 0 if result.valid else 1


def cmd_sign(args: argparse.Namespace) -> int:
    source, text = _read_input(args)
    try:
        payload = load_bundle(text)
    except TSError as e:
        return _input_error(args, "sign", source, e)

    if args.key:
        try:
            pem = Path(args.key).read_bytes().decode("utf-8", errors="replace")
        except OSError as e:
            raise _UsageError(f"cannot read key {args.key}: {e}") from e
        try:
            keypair = EcdsaP256KeyPair.from_private_pem("cli", pem)
        except TSError as e:
            return _input_error(args, "sign", args.key, e)
    else:
        keypair = EcdsaP256KeyPair.generate()
        logger.warning("no --key given; signing with an ephemeral P-256 key")

    signed = sign_bundle(payload, keypair)
    if args.out:
        out = Path(args.out)
    elif args.path:
        src = Path(args.path)
        out = src.with_name(f"{src.stem}.signed.json")
    else:
        out = Path("stdin.signed.json")
    out.write_text(json.dumps(signed, indent=2) + "\n", encoding="utf-8")

    if args.json_out:
        return _emit_json(
            True,
            "sign",
            extra={"path": source, "out": str(out), "publicKeyPem": keypair.public_key_pem},
            pretty=args.json_pretty,
        )
    print(f"Signed {source} -> {out}")
    print(keypair.public_key_pem.rstrip())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ts-verify",
        description="Offline verifier for Thingstead bundles and signed deliverables",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--json",
        dest="json_out",
        action="store_true",
        help="Emit machine-readable JSON output instead of human text",
    )
    parser.add_argument(
        "--pretty",
        dest="json_pretty",
        action="store_true",
        help="Pretty-print JSON output",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_bundle = sub.add_parser("bundle", help="Verify an export bundle")
    p_bundle.add_argument("path", nargs="?", help="Path to bundle JSON")
    p_bundle.add_argument("--stdin", action="store_true", help="Read the bundle from stdin")
    p_bundle.set_defaults(func=cmd_bundle)

    p_dlc = sub.add_parser("dlc", help="Verify a signed deliverable")
    p_dlc.add_argument("path", nargs="?", help="Path to signed deliverable JSON")
    p_dlc.add_argument("--stdin", action="store_true", help="Read the deliverable from stdin")
    p_dlc.set_defaults(func=cmd_dlc)

    p_sign = sub.add_parser("sign", help="Sign a JSON document as a deliverable")
    p_sign.add_argument("path", nargs="?", help="Path to JSON document")
    p_sign.add_argument("--stdin", action="store_true", help="Read the document from stdin")
    p_sign.add_argument("--out", default=None, help="Output path (default: <name>.signed.json)")
    p_sign.add_argument("--key", default=None, help="PKCS#8 PEM private key (default: ephemeral key)")
    p_sign.set_defaults(func=cmd_sign)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    try:
        return args.func(args)
    except _UsageError as e:
        print(f"ts-verify: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
