from typing import List, Optional
import logging
import threading
import time

from web3 import HTTPProvider

logger = logging.getLogger(__name__)

# Common rate limit indicators across providers
RATE_LIMIT_HINTS = (
    "rate limit", "too many requests", "daily request count exceeded",
    "request limit", "over capacity", "project id request rate exceeded",
)
RATE_LIMIT_CODES = (-32005, 429)


class RotatingHTTPProvider(HTTPProvider):
    """
    HTTP provider that rotates between the chain's RPC URLs when rate-limited
    or on connection errors. Each request tries every URL at most once.
    """

    def __init__(self, rpc_urls: List[str], request_kwargs: Optional[dict] = None, backoff: float = 0.1):
        urls = list(dict.fromkeys([u.strip() for u in rpc_urls if u and u.strip()]))
        if not urls:
            raise ValueError("rpc_urls must be a non-empty list")
        super().__init__(endpoint_uri=urls[0], request_kwargs=request_kwargs)
        self._urls: List[str] = urls
        self._idx: int = 0
        self._lock = threading.Lock()
        self._backoff = backoff

    @property
    def current_url(self) -> str:
        with self._lock:
            return self._urls[self._idx]

    def _advance(self) -> None:
        with self._lock:
            self._idx = (self._idx + 1) % len(self._urls)
            self.endpoint_uri = self._urls[self._idx]

    @staticmethod
    def is_rate_limited(error_obj: Optional[dict]) -> bool:
        if not error_obj:
            return False
        msg = str(error_obj.get("message", "")).lower()
        if any(tok in msg for tok in RATE_LIMIT_HINTS):
            return True
        return error_obj.get("code") in RATE_LIMIT_CODES

    def make_request(self, method, params):  # type: ignore[override]
        last_exc: Optional[BaseException] = None
        last_error_resp = None

        for _ in range(len(self._urls)):
            try:
                response = super().make_request(method, params)
            except (ConnectionError, TimeoutError, OSError) as e:
                last_exc = e
                logger.warning("RPC %s failed on %s: %s; rotating", method, self.current_url, e)
                self._advance()
                time.sleep(self._backoff)
                continue

            error = response.get("error") if isinstance(response, dict) else None
            if isinstance(error, dict) and self.is_rate_limited(error):
                last_error_resp = response
                logger.warning("RPC %s rate limited on %s; rotating", method, self.current_url)
                self._advance()
                time.sleep(self._backoff)
                continue
            return response

        if last_exc is not None:
            raise last_exc
        return last_error_resp
