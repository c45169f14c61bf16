from __future__ import annotations

import sqlite3
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Tuple

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from ..delivery.client import EmailDeliveryClient
from ..errors import NotReady, PersistenceFailure, TransportFailure, ValidationFailure
from ..export.csv_export import build_export_document
from ..logging import get_logger
from ..store.engine import StoreEngine
from ..store.report import ReportBuilder
from ..store.service import SalesService


LOG = get_logger("frontend")

TRANSPORT_STATUS = {
    "connectivity": 502,
    "bad_request": 400,
    "payload_too_large": 413,
    "server_error": 502,
    "unavailable": 503,
}


def _range(request: Request) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    qp = request.query_params
    date_from = qp.get("from") or qp.get("date_from") or None
    date_to = qp.get("to") or qp.get("date_to") or None
    event_id = qp.get("event_id") or None
    return date_from, date_to, event_id


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Body must be JSON") from exc
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")
    return body


def create_app(
    engine: StoreEngine,
    *,
    delivery: Optional[EmailDeliveryClient] = None,
    allow_origins: Optional[List[str]] = None,
) -> Starlette:
    """Create a Starlette app exposing reports, exports and sale recording."""

    builder = ReportBuilder(engine)
    service = SalesService(engine)

    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok" if engine.is_ready else "degraded", "engine": engine.state.value, **engine.stats()})

    async def report(request: Request) -> JSONResponse:
        date_from, date_to, event_id = _range(request)
        try:
            payload = builder.get_full_report(date_from, date_to, event_id).to_dict()
            payload["total_revenue"] = builder.get_total_revenue(date_from, date_to, event_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse(payload)

    async def revenue(request: Request) -> JSONResponse:
        date_from, date_to, event_id = _range(request)
        try:
            total = builder.get_total_revenue(date_from, date_to, event_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse({"total_revenue": total})

    async def catalog(_: Request) -> JSONResponse:
        try:
            items = service.list_catalog()
        except NotReady as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return JSONResponse({"items": [item.__dict__ for item in items]})

    async def events(request: Request) -> JSONResponse:
        try:
            items = service.list_events(request.query_params.get("status") or None)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except NotReady as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return JSONResponse({"items": [asdict(e) for e in items]})

    async def event_status(request: Request) -> JSONResponse:
        event_id = request.path_params["event_id"]
        body = await _json_body(request)
        try:
            updated = service.update_event_status(event_id, str(body.get("status") or ""))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except NotReady as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        if not updated:
            raise HTTPException(status_code=404, detail="Event not found")
        return JSONResponse({"id": event_id, "status": body["status"]})

    async def event_statistics(request: Request) -> JSONResponse:
        event_id = request.path_params["event_id"]
        if builder.get_event(event_id) is None:
            raise HTTPException(status_code=404, detail="Event not found")
        return JSONResponse(asdict(builder.get_event_statistics(event_id)))

    async def stock(request: Request) -> JSONResponse:
        event_id = request.query_params.get("event_id") or None
        try:
            items = service.get_event_stock(event_id)
        except NotReady as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return JSONResponse({"items": [asdict(s) for s in items]})

    async def stock_alerts(request: Request) -> JSONResponse:
        event_id = request.query_params.get("event_id") or None
        try:
            items = service.get_stock_alerts(event_id)
            min_liters = service.get_stock_alert_min_liters()
        except NotReady as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return JSONResponse({"min_liters": min_liters, "items": [asdict(s) for s in items]})

    async def export(request: Request) -> Response:
        date_from, date_to, event_id = _range(request)
        try:
            doc = build_export_document(builder, date_from, date_to, event_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return Response(
            doc.content,
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{doc.filename}"'},
        )

    async def record_sale(request: Request) -> JSONResponse:
        body = await _json_body(request)
        try:
            tx = service.record_sale(
                str(body.get("catalog_item_id") or ""),
                int(body.get("container_size") or 0),
                int(body.get("quantity") or 0),
                timestamp=body.get("timestamp") or None,
                event_id=body.get("event_id") or None,
                username=body.get("username") or None,
            )
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except sqlite3.IntegrityError as exc:
            raise HTTPException(status_code=400, detail="Unknown catalog item or event") from exc
        except NotReady as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except PersistenceFailure as exc:
            LOG.error(f"Sale recorded in memory only: {exc}")
            raise HTTPException(status_code=507, detail=str(exc)) from exc
        return JSONResponse(tx.__dict__, status_code=201)

    async def send_report(request: Request) -> JSONResponse:
        if delivery is None:
            raise HTTPException(status_code=503, detail="E-mail delivery is not configured")
        body = await _json_body(request)
        recipients = body.get("recipients") or []
        if isinstance(recipients, str):
            recipients = [r.strip() for r in recipients.split(",")]
        try:
            doc = build_export_document(builder, body.get("from"), body.get("to"), body.get("event_id"))
            result = await run_in_threadpool(delivery.send, recipients, doc)
        except ValidationFailure as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except TransportFailure as exc:
            raise HTTPException(status_code=TRANSPORT_STATUS.get(exc.category, 502), detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse(result.__dict__)

    routes = [
        Route("/api/health", health, methods=["GET"]),
        Route("/api/report", report, methods=["GET"]),
        Route("/api/revenue", revenue, methods=["GET"]),
        Route("/api/catalog", catalog, methods=["GET"]),
        Route("/api/events", events, methods=["GET"]),
        Route("/api/events/{event_id:str}/status", event_status, methods=["POST"]),
        Route("/api/events/{event_id:str}/statistics", event_statistics, methods=["GET"]),
        Route("/api/stock", stock, methods=["GET"]),
        Route("/api/stock/alerts", stock_alerts, methods=["GET"]),
        Route("/api/export", export, methods=["GET"]),
        Route("/api/sales", record_sale, methods=["POST"]),
        Route("/api/report/send", send_report, methods=["POST"]),
    ]

    app = Starlette(debug=False, routes=routes)

    origins = allow_origins or ["http://localhost:5173", "http://127.0.0.1:5173"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if "*" in origins else origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app


__all__ = ["create_app"]
