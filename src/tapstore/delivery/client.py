from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
from urllib3.filepost import encode_multipart_formdata

from ..errors import TransportFailure, ValidationFailure
from ..export.csv_export import ExportDocument
from ..logging import get_logger


MAX_RECIPIENTS = 10
SEND_PATH = "/api/email/send"
CHUNK_SIZE = 8192

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

ProgressCallback = Callable[[int], None]

# status -> (category, fallback message); 0 is "no HTTP response at all"
STATUS_CATEGORIES: Dict[int, tuple] = {
    0: ("connectivity", "Could not reach the e-mail server. Check your connection."),
    400: ("bad_request", "Invalid request."),
    413: ("payload_too_large", "CSV file is too large."),
    500: ("server_error", "E-mail server error. Try again later."),
    503: ("unavailable", "E-mail service temporarily unavailable."),
}


@dataclass
class DeliveryResult:
    message: str
    recipients: List[str] = field(default_factory=list)
    emails_sent: int = 0
    filename: Optional[str] = None
    filesize: Optional[int] = None


def is_valid_email(address: str) -> bool:
    return bool(EMAIL_RE.match(address or ""))


def validate_request(recipients: Sequence[str], document: Optional[ExportDocument]) -> List[str]:
    """Check recipients and document; the first failing rule raises."""
    cleaned = [str(r).strip() for r in (recipients or []) if str(r).strip()]
    if not cleaned:
        raise ValidationFailure("at least one recipient required")
    if len(cleaned) > MAX_RECIPIENTS:
        raise ValidationFailure(f"maximum {MAX_RECIPIENTS} recipients allowed")
    invalid = [r for r in cleaned if not is_valid_email(r)]
    if invalid:
        raise ValidationFailure(f"invalid email addresses: {', '.join(invalid)}")
    if document is None or not document.content:
        raise ValidationFailure("a CSV document is required")
    if not document.filename.lower().endswith(".csv"):
        raise ValidationFailure("document must be a CSV file (.csv)")
    return cleaned


class ProgressReader:
    """File-like request body that reports upload percentages while it is read."""

    def __init__(
        self,
        body: bytes,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self._body = body
        self._pos = 0
        self._last = -1
        self.on_progress = on_progress
        self.cancel = cancel

    def __len__(self) -> int:
        return len(self._body)

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            size = len(self._body) - self._pos
        chunk = self._body[self._pos:self._pos + size]
        self._pos += len(chunk)
        self._report()
        return chunk

    def _report(self) -> None:
        if self.on_progress is None or (self.cancel is not None and self.cancel.is_set()):
            return
        total = len(self._body)
        percent = round(100 * self._pos / total) if total else 100
        if percent != self._last:
            self._last = percent
            self.on_progress(percent)


def parse_response(payload: Any, recipients: Sequence[str], document: ExportDocument) -> DeliveryResult:
    """Unify the current and the legacy success shapes."""
    data = payload if isinstance(payload, dict) else {}
    legacy = data.get("data") if isinstance(data.get("data"), dict) else None
    if legacy is not None:
        sent_to = list(legacy.get("recipients") or recipients)
        return DeliveryResult(
            message=str(data.get("message") or "E-mail sent."),
            recipients=sent_to,
            emails_sent=int(legacy.get("emailsSent") or len(sent_to)),
            filename=document.filename,
            filesize=document.size,
        )
    sent_to = data.get("recipients")
    if isinstance(sent_to, str):
        sent_to = [e.strip() for e in sent_to.split(",") if e.strip()]
    sent_to = list(sent_to or recipients)
    size = data.get("filesize")
    return DeliveryResult(
        message=str(data.get("message") or "E-mail sent."),
        recipients=sent_to,
        emails_sent=len(sent_to),
        filename=data.get("filename") or document.filename,
        filesize=int(size) if isinstance(size, (int, float)) else document.size,
    )


def _server_message(r: requests.Response) -> Optional[str]:
    try:
        body = r.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        msg = body.get("message") or body.get("error")
        return str(msg) if msg else None
    return None


def classify_status(status: int, server_message: Optional[str] = None) -> TransportFailure:
    category, fallback = STATUS_CATEGORIES.get(status, ("unknown", f"Server error: {status}"))
    if category in ("bad_request", "unknown") and server_message:
        fallback = server_message
    return TransportFailure(category, fallback, status_code=status)


class EmailDeliveryClient:
    """Uploads a CSV export to the e-mail service for delivery.

    One request per `send`; failures are reported, never retried.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: int = 60,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base = base_url.rstrip("/")
        self.timeout = int(timeout)
        self.log = get_logger("email-delivery")
        self.s = session if session is not None else requests.Session()
        self.s.headers.update({"Accept": "application/json"})

    def _url(self, path: str) -> str:
        return f"{self.base}{path}"

    def send(
        self,
        recipients: Sequence[str],
        document: Optional[ExportDocument],
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[threading.Event] = None,
    ) -> DeliveryResult:
        cleaned = validate_request(recipients, document)

        body, content_type = encode_multipart_formdata(
            [
                ("recipients", ",".join(cleaned)),
                ("csvFile", (document.filename, document.content, "text/csv")),
            ]
        )
        reader = ProgressReader(body, on_progress=on_progress, cancel=cancel)
        url = self._url(SEND_PATH)
        self.log.info(f"POST {url}: {document.filename} ({document.size} bytes) to {len(cleaned)} recipient(s)")
        try:
            r = self.s.post(
                url,
                data=reader,
                headers={"Content-Type": content_type, "Content-Length": str(len(reader))},
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            self.log.error(f"E-mail upload failed: {e}")
            raise classify_status(0) from e
        except (requests.exceptions.InvalidURL, requests.exceptions.MissingSchema, requests.exceptions.InvalidSchema) as e:
            self.log.error(f"E-mail service URL {url!r} is not usable: {e}")
            raise TransportFailure("connectivity", f"Invalid e-mail service URL {self.base!r}. Check EMAIL_API_BASE_URL.", status_code=0) from e
        except requests.RequestException as e:
            self.log.error(f"E-mail upload failed: {e}")
            raise TransportFailure("unknown", f"E-mail upload failed: {e}") from e

        if r.status_code >= 400:
            failure = classify_status(r.status_code, _server_message(r))
            self.log.error(f"E-mail service answered {r.status_code}: {failure}")
            raise failure

        try:
            payload = r.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get("error"):
            raise TransportFailure("unknown", str(payload["error"]), status_code=r.status_code)
        if isinstance(payload, dict) and payload.get("success") is False:
            raise TransportFailure("unknown", str(payload.get("message") or "E-mail not sent."), status_code=r.status_code)

        result = parse_response(payload, cleaned, document)
        self.log.info(f"E-mail sent to {len(result.recipients)} recipient(s): {result.message}")
        return result
