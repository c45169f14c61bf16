from __future__ import annotations

import argparse
import json
import os
import sqlite3
import sys
from typing import Callable, Sequence

from ..config import AppSettings, load_settings
from ..delivery.client import EmailDeliveryClient
from ..errors import (
    InitializationFailure,
    PersistenceFailure,
    TapstoreError,
    TransportFailure,
    ValidationFailure,
)
from ..export.csv_export import build_export_document
from ..logging import get_logger
from ..paths import expand_abs
from ..store.constants import CONTAINER_SIZES, EVENT_STATUSES
from ..store.engine import StoreEngine
from ..store.report import ReportBuilder
from ..store.service import SalesService
from ..store.storage import FileKeyValueStorage

LOG = get_logger("cli-main")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_VALIDATION = 2
EXIT_TRANSPORT = 3
EXIT_INITIALIZATION = 4


def _settings(ns: argparse.Namespace) -> AppSettings:
    settings = load_settings(ns.env_dir)
    if ns.data_dir:
        settings = AppSettings(
            data_dir=expand_abs(ns.data_dir),
            storage_quota=settings.storage_quota,
            email_api_base_url=settings.email_api_base_url,
            email_api_timeout=settings.email_api_timeout,
        )
    return settings


def _open_engine(settings: AppSettings) -> StoreEngine:
    storage = FileKeyValueStorage(settings.data_dir, quota_bytes=settings.storage_quota)
    engine = StoreEngine(storage)
    engine.open()
    return engine


def _with_engine(fn: Callable[[argparse.Namespace, StoreEngine], int]) -> Callable[[argparse.Namespace], int]:
    def handler(ns: argparse.Namespace) -> int:
        engine = _open_engine(_settings(ns))
        try:
            return fn(ns, engine)
        finally:
            engine.close()

    return handler


def _print_json(payload: object) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


# ---------- handlers ----------

def _init(ns: argparse.Namespace, engine: StoreEngine) -> int:
    LOG.info(f"Store ready at: {engine.storage.directory}")
    print(engine.storage.directory)
    return EXIT_OK


def _stats(ns: argparse.Namespace, engine: StoreEngine) -> int:
    _print_json({"state": engine.state.value, **engine.stats()})
    return EXIT_OK


def _report(ns: argparse.Namespace, engine: StoreEngine) -> int:
    builder = ReportBuilder(engine)
    payload = builder.get_full_report(ns.date_from, ns.date_to, ns.event).to_dict()
    payload["total_revenue"] = builder.get_total_revenue(ns.date_from, ns.date_to, ns.event)
    _print_json(payload)
    return EXIT_OK


def _export(ns: argparse.Namespace, engine: StoreEngine) -> int:
    doc = build_export_document(ReportBuilder(engine), ns.date_from, ns.date_to, ns.event)
    out = expand_abs(ns.output) if ns.output else os.path.abspath(doc.filename)
    if os.path.isdir(out):
        out = os.path.join(out, doc.filename)
    os.makedirs(os.path.dirname(out) or ".", exist_ok=True)
    with open(out, "wb") as fh:
        fh.write(doc.content)
    LOG.info(f"Wrote {doc.size} bytes to {out}")
    print(out)
    return EXIT_OK


def _send(ns: argparse.Namespace, engine: StoreEngine) -> int:
    settings = _settings(ns)
    service = SalesService(engine)
    recipients = list(ns.to or []) or service.get_configured_recipients()
    doc = build_export_document(ReportBuilder(engine), ns.date_from, ns.date_to, ns.event)
    client = EmailDeliveryClient(settings.email_api_base_url, timeout=settings.email_api_timeout)

    def progress(pct: int) -> None:
        LOG.info(f"Upload: {pct}%")

    result = client.send(recipients, doc, on_progress=progress)
    if ns.remember:
        service.set_configured_recipients(result.recipients)
    _print_json(result.__dict__)
    return EXIT_OK


def _record_sale(ns: argparse.Namespace, engine: StoreEngine) -> int:
    tx = SalesService(engine).record_sale(
        ns.item,
        ns.size,
        ns.quantity,
        timestamp=ns.timestamp,
        event_id=ns.event,
        username=ns.user,
    )
    _print_json(tx.__dict__)
    return EXIT_OK


def _stock(ns: argparse.Namespace, engine: StoreEngine) -> int:
    service = SalesService(engine)
    if ns.set_item:
        service.set_event_stock(ns.set_item, ns.liters, event_id=ns.event)
    if ns.min_liters is not None:
        service.set_stock_alert_min_liters(ns.min_liters)
    items = service.get_stock_alerts(ns.event) if ns.alerts else service.get_event_stock(ns.event)
    _print_json({"min_liters": service.get_stock_alert_min_liters(), "items": [s.__dict__ for s in items]})
    return EXIT_OK


def _event_status(ns: argparse.Namespace, engine: StoreEngine) -> int:
    if not SalesService(engine).update_event_status(ns.event, ns.status):
        LOG.error(f"No event with id {ns.event!r}")
        return EXIT_VALIDATION
    print(ns.status)
    return EXIT_OK


def _reset(ns: argparse.Namespace) -> int:
    if not ns.yes:
        LOG.error("Refusing to reset without --yes")
        return EXIT_VALIDATION
    engine = StoreEngine(FileKeyValueStorage(_settings(ns).data_dir))
    try:
        engine.open()
    except InitializationFailure as exc:
        LOG.warning(f"Stored image unreadable, resetting anyway: {exc}")
    try:
        engine.reset()
    finally:
        engine.close()
    print("reset")
    return EXIT_OK


def _serve(ns: argparse.Namespace) -> int:
    from ..frontend import create_app
    import uvicorn

    settings = _settings(ns)
    engine = _open_engine(settings)
    delivery = EmailDeliveryClient(settings.email_api_base_url, timeout=settings.email_api_timeout)
    allow_origins = ns.allow_origins
    if allow_origins and len(allow_origins) == 1 and allow_origins[0] == "*":
        allow_origins = ["*"]
    app = create_app(engine, delivery=delivery, allow_origins=allow_origins)
    try:
        uvicorn.run(app, host=ns.host, port=ns.port, log_level=ns.log_level)
    finally:
        engine.close()
    return EXIT_OK


def _add_range_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--from", dest="date_from", help="Start date (YYYY-MM-DD or ISO datetime, inclusive)")
    p.add_argument("--to", dest="date_to", help="End date (inclusive through the end of that day)")
    p.add_argument("--event", help="Restrict to one event id")


def _exit_code(exc: BaseException) -> int:
    if isinstance(exc, InitializationFailure):
        return EXIT_INITIALIZATION
    if isinstance(exc, TransportFailure):
        return EXIT_TRANSPORT
    if isinstance(exc, (ValidationFailure, ValueError, sqlite3.IntegrityError)):
        return EXIT_VALIDATION
    return EXIT_ERROR


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.info(f"tapstore CLI invoked with arguments: {provided}")

    parser = argparse.ArgumentParser(
        prog="tapstore",
        description="Sales store, reports, CSV export and e-mail delivery for a beer tap stand.",
    )
    parser.add_argument("--data-dir", help="Directory holding the persisted store (overrides TAPSTORE_DATA_DIR)")
    parser.add_argument("--env-dir", help="Directory to start the .env lookup from (default: cwd)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init = subparsers.add_parser("init", help="Open the store, creating and seeding it if missing.")
    init.set_defaults(handler=_with_engine(_init))

    stats = subparsers.add_parser("stats", help="Print row counts of the main tables.")
    stats.set_defaults(handler=_with_engine(_stats))

    report = subparsers.add_parser("report", help="Print the aggregate report as JSON.")
    _add_range_args(report)
    report.set_defaults(handler=_with_engine(_report))

    export = subparsers.add_parser("export", help="Write the CSV export to a file.")
    _add_range_args(export)
    export.add_argument("--output", help="Output file or directory (default: ./sales-report-<date>.csv)")
    export.set_defaults(handler=_with_engine(_export))

    send = subparsers.add_parser("send", help="E-mail the CSV export to one or more recipients.")
    _add_range_args(send)
    send.add_argument("--to", action="append", help="Recipient address (repeatable; default: saved recipients)")
    send.add_argument("--remember", action="store_true", help="Save the recipients for later sends")
    send.set_defaults(handler=_with_engine(_send))

    sale = subparsers.add_parser("record-sale", help="Record one sale.")
    sale.add_argument("--item", required=True, help="Catalog item id (e.g. ipa)")
    sale.add_argument(
        "--size",
        required=True,
        type=int,
        help=f"Container size in ml (offered: {', '.join(str(s) for s in CONTAINER_SIZES)})",
    )
    sale.add_argument("--quantity", type=int, default=1)
    sale.add_argument("--event", help="Event id")
    sale.add_argument("--user", help="Seller name")
    sale.add_argument("--timestamp", help="ISO timestamp (default: now)")
    sale.set_defaults(handler=_with_engine(_record_sale))

    stock = subparsers.add_parser("stock", help="Show, set or check the liters on hand per item.")
    stock.add_argument("--event", help="Event id (default: general stock)")
    stock.add_argument("--set", dest="set_item", metavar="ITEM", help="Catalog item id whose stock is set to --liters")
    stock.add_argument("--liters", type=float, default=0.0)
    stock.add_argument("--min-liters", type=float, help="Store a new alert threshold")
    stock.add_argument("--alerts", action="store_true", help="Only list items under the alert threshold")
    stock.set_defaults(handler=_with_engine(_stock))

    event_status = subparsers.add_parser("event-status", help="Move an event to planning, active or finished.")
    event_status.add_argument("--event", required=True)
    event_status.add_argument("--status", required=True, choices=EVENT_STATUSES)
    event_status.set_defaults(handler=_with_engine(_event_status))

    reset = subparsers.add_parser("reset", help="Drop all data and reseed the default catalog.")
    reset.add_argument("--yes", action="store_true", help="Confirm the reset")
    reset.set_defaults(handler=_reset)

    serve = subparsers.add_parser("serve", help="Run the JSON API.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8001)
    serve.add_argument("--log-level", default="info")
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )
    serve.set_defaults(handler=_serve)

    args = parser.parse_args(provided)
    try:
        code = args.handler(args)
    except PersistenceFailure as exc:
        LOG.error(f"{exc}")
        code = EXIT_ERROR
    except (TapstoreError, ValueError, sqlite3.IntegrityError) as exc:
        LOG.error(f"Subcommand '{args.command}' failed: {exc}")
        code = _exit_code(exc)
    LOG.info(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
