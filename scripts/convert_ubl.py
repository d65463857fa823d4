"""Convert between invoice action logs and UBL XML.

Export replays an action (or operation) log into a fresh invoice document and
writes it as UBL. Import reads a UBL invoice and writes the resulting state,
and optionally the operation log that produced it.

Usage:
    python -m scripts.convert_ubl export --actions ops.json --output invoice.xml [--pdf file.pdf]
    python -m scripts.convert_ubl import --input invoice.xml [--output state.json]
    python -m scripts.convert_ubl --metrics run.prom export --actions ops.json

The log level comes from APP_LOG_LEVEL.
"""

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from invoicing.document.errors import InvoiceError
from invoicing.document.reducer import InvoiceDocument
from invoicing.document.schema import InvoiceState
from invoicing.shared.config import Settings, get_settings
from invoicing.shared.metrics import get_metrics
from invoicing.ubl.export import UBLExporter
from invoicing.ubl.ingest import UBLImporter

logger = logging.getLogger(__name__)


def load_actions(path: Path) -> list[dict[str, Any]]:
    """Read actions from a JSON file.

    Accepts a list of actions (or operation log entries), or an object with an
    ``operations`` or ``actions`` list.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the JSON has an unexpected shape
    """
    if not path.exists():
        raise FileNotFoundError(f"Actions file not found: {path}")

    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get("operations", data.get("actions"))
    if not isinstance(data, list):
        raise ValueError(f"Expected a list of actions in {path}")

    logger.info(f"Loaded {len(data)} actions from {path.name}")
    return data


def export_invoice(
    actions_path: Path,
    output: Path,
    pdf: Path | None = None,
    settings: Settings | None = None,
) -> InvoiceState:
    """Build an invoice from an action log and write it as UBL XML."""
    settings = settings or get_settings()
    document = InvoiceDocument(settings=settings)
    document.dispatch_all(load_actions(actions_path))

    rejected = [op for op in document.operations if op.error]
    if rejected:
        logger.warning(f"{len(rejected)} of {len(document.operations)} actions were rejected")

    xml = UBLExporter(settings).convert(document.state, pdf)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(xml, encoding="utf-8")
    logger.info(f"Wrote UBL invoice to {output}")
    return document.state


def import_invoice(
    input_path: Path,
    output: Path | None = None,
    operations_output: Path | None = None,
    settings: Settings | None = None,
) -> InvoiceState:
    """Read a UBL invoice and write the resulting state (stdout if no output)."""
    if not input_path.exists():
        raise FileNotFoundError(f"UBL file not found: {input_path}")

    settings = settings or get_settings()
    document = InvoiceDocument(settings=settings)
    state = UBLImporter(settings).load(document, input_path.read_bytes())

    state_json = state.model_dump_json(by_alias=True, indent=2)
    if output is None:
        print(state_json)
    else:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(state_json, encoding="utf-8")
        logger.info(f"Wrote invoice state to {output}")

    if operations_output is not None:
        operations = [op.model_dump(mode="json") for op in document.operations]
        operations_output.parent.mkdir(parents=True, exist_ok=True)
        operations_output.write_text(json.dumps(operations, indent=2), encoding="utf-8")
        logger.info(f"Wrote {len(operations)} operations to {operations_output}")
    return state


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Convert invoices to and from UBL XML")
    parser.add_argument(
        "--metrics",
        type=Path,
        default=None,
        help="Write the Prometheus metrics of the run to this file",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    export_cmd = commands.add_parser("export", help="Action log JSON -> UBL XML")
    export_cmd.add_argument(
        "--actions",
        type=Path,
        required=True,
        help="JSON file with the actions or operation log to replay",
    )
    export_cmd.add_argument(
        "--output",
        type=Path,
        default=Path("invoice.xml"),
        help="Output UBL XML file path",
    )
    export_cmd.add_argument(
        "--pdf",
        type=Path,
        default=None,
        help="PDF rendering to embed as an attachment",
    )

    import_cmd = commands.add_parser("import", help="UBL XML -> invoice state JSON")
    import_cmd.add_argument("--input", type=Path, required=True, help="UBL XML file path")
    import_cmd.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Output state JSON file path (stdout if omitted)",
    )
    import_cmd.add_argument(
        "--operations",
        type=Path,
        default=None,
        help="Also write the operation log produced by the import",
    )
    return parser


def write_metrics(path: Path) -> None:
    """Write the Prometheus exposition of the counters collected so far."""
    payload, _ = get_metrics()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)
    logger.info(f"Wrote metrics to {path}")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(levelname)s: %(message)s")

    exit_code = 0
    try:
        if args.command == "export":
            export_invoice(args.actions, args.output, pdf=args.pdf, settings=settings)
        else:
            import_invoice(
                args.input, args.output, operations_output=args.operations, settings=settings
            )
    except (InvoiceError, FileNotFoundError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        exit_code = 1

    if args.metrics is not None:
        write_metrics(args.metrics)
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
