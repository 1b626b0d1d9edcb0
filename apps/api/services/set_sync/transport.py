"""
Transport to the remote set-logging endpoint.

Every upload carries the entry's local_id as Idempotency-Key, so a retry
after a lost response never duplicates a set on the server.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
import time

import requests

from core.config import settings
from core.exceptions import SetUploadError
from services.set_sync.storage import PendingSetEntry

import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SetAck:
    """Server acknowledgement of an accepted set."""
    idempotency_key: str
    set_id: Optional[str] = None
    created: bool = True


class SetLoggingEndpoint(ABC):
    """Remote store for completed sets."""

    @abstractmethod
    def submit(self, entry: PendingSetEntry) -> SetAck:
        """
        Upload one set.

        Raises:
            SetUploadError: the set was not durably accepted.
        """
        pass


class HttpSetLoggingEndpoint(SetLoggingEndpoint):
    """
    POST /v1/sets over HTTP.

    Connection errors, timeouts and 5xx responses are retried with
    exponential backoff (base * 2**attempt). 4xx responses are final.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_s: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or settings.SET_LOGGING_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.EXTERNAL_API_TIMEOUT
        self.max_retries = max_retries if max_retries is not None else settings.EXTERNAL_API_RETRY_ATTEMPTS
        self.backoff_s = backoff_s if backoff_s is not None else settings.EXTERNAL_API_RETRY_BACKOFF_S
        self.http = session or requests.Session()

    @property
    def url(self) -> str:
        return f"{self.base_url}/v1/sets"

    def submit(self, entry: PendingSetEntry) -> SetAck:
        headers = {"Idempotency-Key": entry.local_id}
        payload = entry.to_payload()
        last_error: Optional[SetUploadError] = None

        for attempt in range(max(1, self.max_retries)):
            try:
                r = self.http.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                last_error = SetUploadError(f"Set upload {entry.local_id} failed: {e}")
            else:
                if r.status_code in (200, 201):
                    try:
                        body = r.json() if r.content else {}
                    except ValueError as e:
                        raise SetUploadError(
                            f"Set upload {entry.local_id} got an unreadable acknowledgement: {e}",
                            status_code=r.status_code,
                        ) from e
                    if not isinstance(body, dict):
                        raise SetUploadError(
                            f"Set upload {entry.local_id} got an unexpected acknowledgement body",
                            status_code=r.status_code,
                        )
                    return SetAck(
                        idempotency_key=entry.local_id,
                        set_id=body.get("id"),
                        created=r.status_code == 201,
                    )
                if 400 <= r.status_code < 500:
                    raise SetUploadError(
                        f"Set upload {entry.local_id} rejected: {r.status_code} {r.text[:200]}",
                        status_code=r.status_code,
                        retryable=False,
                    )
                last_error = SetUploadError(
                    f"Set upload {entry.local_id} failed: {r.status_code}",
                    status_code=r.status_code,
                )

            if attempt < self.max_retries - 1:
                wait_time = self.backoff_s * (2 ** attempt)
                logger.warning(
                    f"Set upload {entry.local_id} attempt {attempt + 1}/{self.max_retries} failed, "
                    f"retrying in {wait_time:.2f}s"
                )
                time.sleep(wait_time)

        raise last_error
