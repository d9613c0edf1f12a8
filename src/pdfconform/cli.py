from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

import structlog

from pdfconform.config import configure_logging, settings
from pdfconform.errors import PipelineCancelledError, RemediationExhaustedError
from pdfconform.flows.pipeline import ACCEPTED, REJECTED, build_pipeline
from pdfconform.stages.stage_1_validation import render_report
from pdfconform.tools.capabilities import ALL_TOOLS, detect_capabilities

log = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FIXABLE = 1
EXIT_REJECTED = 2


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="pdfconform",
        description="Validate PDFs against the gray / 300 DPI / 3 MB profile and fix them.",
    )
    p.add_argument("--log-level", default=None, help="Override the configured log level.")
    p.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines.")
    sub = p.add_subparsers(dest="command", required=True)

    v = sub.add_parser("validate", help="Validate a PDF and print the report.")
    v.add_argument("file", type=Path, help="PDF to validate.")
    v.add_argument("--json", action="store_true", help="Print the report as JSON.")

    r = sub.add_parser("remediate", help="Validate a PDF and convert it when fixable.")
    r.add_argument("file", type=Path, help="PDF to remediate.")
    r.add_argument("--output", "-o", required=True, type=Path, help="Where to write the result.")
    r.add_argument("--json", action="store_true", help="Print the outcome as JSON.")

    sub.add_parser("tools", help="List the external tools that were detected.")
    return p


def _validate(args: argparse.Namespace) -> int:
    buffer = args.file.read_bytes()
    with build_pipeline(settings) as pipeline:
        report = pipeline.validate(buffer, args.file.name)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(render_report(report))

    if not report.is_processable:
        return EXIT_REJECTED
    return EXIT_OK if report.valid else EXIT_FIXABLE


def _remediate(args: argparse.Namespace) -> int:
    buffer = args.file.read_bytes()
    with build_pipeline(settings) as pipeline:
        try:
            outcome = pipeline.process(buffer, args.file.name)
        except (RemediationExhaustedError, PipelineCancelledError) as exc:
            print(f"Remediation failed: {exc}", file=sys.stderr)
            return EXIT_FIXABLE

    if args.json:
        print(json.dumps(outcome.to_dict(), indent=2))
    else:
        print(render_report(outcome.report))

    if outcome.status == REJECTED:
        return EXIT_REJECTED
    if outcome.status == ACCEPTED:
        args.output.write_bytes(buffer)
        return EXIT_OK

    result = outcome.result
    args.output.write_bytes(result.buffer)
    if not args.json:
        print()
        print(
            f"Remediated: {result.original_size} -> {result.processed_size} bytes "
            f"(ratio {result.compression_ratio:.1%})"
        )
        for line in result.optimizations:
            print(f"  - {line}")
        for error in result.verification.errors:
            print(f"  ! {error}")
    return EXIT_OK if result.verification.compliant else EXIT_FIXABLE


def _tools(args: argparse.Namespace) -> int:
    capabilities = detect_capabilities(settings)
    for tool in ALL_TOOLS:
        path = capabilities.path_for(tool)
        print(f"{tool:12} {path if path else 'not found'}")
    return EXIT_OK if not capabilities.missing else EXIT_FIXABLE


_COMMANDS = {
    "validate": _validate,
    "remediate": _remediate,
    "tools": _tools,
}


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    configure_logging(args.log_level or settings.log_level, args.log_json or settings.log_json)
    log.debug("cli_command", command=args.command)
    return _COMMANDS[args.command](args)


if __name__ == "__main__":
    raise SystemExit(main())
