"""HTTP client for the remote PDF conversion services.

Each service takes a multipart upload of the PDF plus the target DPI, color
space and JPEG quality, authenticated with a bearer credential. It answers
either with the converted PDF bytes or with a small JSON document pointing
at a download URL::

    {"url": "https://.../result.pdf"}      # also "download_url" / "file_url"

Failure classes:
    - CloudConnectivityError  the service could not be reached (TLS trust,
                              refused connection, DNS, timeout). Never retried.
    - CloudServiceError       the service answered with an error. 429 and
                              502/503/504 are retried with exponential backoff.
"""

from __future__ import annotations

import httpx
import structlog
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from pdfconform.errors import CloudConnectivityError, CloudServiceError

log = structlog.get_logger(__name__)

TRANSIENT_STATUSES = frozenset({429, 502, 503, 504})

_REFERENCE_KEYS = ("url", "download_url", "file_url")
_PDF_SIGNATURE = b"%PDF-"


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, CloudServiceError) and exc.status_code in TRANSIENT_STATUSES


class CloudConversionClient:
    """One remote conversion service."""

    def __init__(
        self,
        name: str,
        endpoint: str,
        api_key: str,
        timeout: float = 60.0,
        max_attempts: int = 2,
        backoff_seconds: float = 1.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.name = name
        self._endpoint = endpoint
        self._api_key = api_key
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff_seconds
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout),
            transport=transport,
            follow_redirects=True,
        )

    @property
    def configured(self) -> bool:
        return bool(self._endpoint and self._api_key)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> CloudConversionClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def convert(
        self,
        pdf_bytes: bytes,
        filename: str = "document.pdf",
        dpi: int = 300,
        color_space: str = "gray",
        quality: int = 85,
    ) -> bytes:
        """Upload *pdf_bytes* and return the converted PDF."""
        retrying = Retrying(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._backoff, max=30),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                return self._convert_once(pdf_bytes, filename, dpi, color_space, quality)
        raise CloudServiceError(f"{self.name}: no attempt was made")

    def _convert_once(
        self,
        pdf_bytes: bytes,
        filename: str,
        dpi: int,
        color_space: str,
        quality: int,
    ) -> bytes:
        log.info("cloud_conversion_request", service=self.name, size_bytes=len(pdf_bytes))
        response = self._request(
            "POST",
            self._endpoint,
            headers={"Authorization": f"Bearer {self._api_key}"},
            files={"file": (filename, pdf_bytes, "application/pdf")},
            data={"dpi": str(dpi), "color_space": color_space, "quality": str(quality)},
        )

        body = self._pdf_body(response)
        if body is not None:
            return body

        reference = self._reference_url(response)
        log.info("cloud_conversion_download", service=self.name, url=reference)
        download = self._request("GET", reference)
        body = self._pdf_body(download)
        if body is None:
            raise CloudServiceError(f"{self.name}: download did not return a PDF")
        return body

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise CloudConnectivityError(f"{self.name}: request timed out") from exc
        except httpx.ConnectError as exc:
            # TLS trust failures, DNS failures and refused connections.
            raise CloudConnectivityError(f"{self.name}: connection failed: {exc}") from exc
        except httpx.TransportError as exc:
            raise CloudServiceError(f"{self.name}: transport error: {exc}") from exc
        except (httpx.InvalidURL, ValueError) as exc:
            # A malformed URL, usually a bad download link in the response.
            raise CloudServiceError(f"{self.name}: invalid URL {url!r}: {exc}") from exc

        if response.status_code >= 400:
            log.warning(
                "cloud_conversion_http_error",
                service=self.name,
                status_code=response.status_code,
            )
            raise CloudServiceError(
                f"{self.name}: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _pdf_body(response: httpx.Response) -> bytes | None:
        content_type = response.headers.get("content-type", "")
        if "application/pdf" in content_type or response.content.startswith(_PDF_SIGNATURE):
            return response.content
        return None

    def _reference_url(self, response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError as exc:
            raise CloudServiceError(f"{self.name}: unexpected response body") from exc

        if isinstance(payload, dict):
            for key in _REFERENCE_KEYS:
                if payload.get(key):
                    return str(payload[key])
        raise CloudServiceError(f"{self.name}: response carried neither a PDF nor a URL")
