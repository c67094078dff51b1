"""Shared HTTP plumbing for all provider clients."""

from typing import Any, Dict, Optional

import requests

from ..errors import ProviderError
from ..logger import get_logger
from ..retry import RetryError, is_transient_status, retry_transient

logger = get_logger()

DEFAULT_TIMEOUT = 15


@retry_transient(retries=2, retry_on=(requests.exceptions.Timeout, requests.exceptions.ConnectionError))
def _get(session: requests.Session, url: str, **kwargs) -> requests.Response:
    return session.get(url, **kwargs)


class ProviderClient:
    """
    Base class for bearer-authenticated JSON APIs.

    Subclasses set `source` and `base_url`. Every request is counted in the
    logger's API-call metric; failures are raised as ProviderError with
    `transient` set for statuses worth retrying.
    """

    source = "provider"
    base_url = ""

    def __init__(
        self,
        access_token: Optional[str],
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.access_token = access_token
        self.session = session or requests.Session()
        self.timeout = timeout

    def _auth(self, headers: Dict[str, str], params: Dict[str, Any]) -> None:
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Fetch a JSON document.

        Raises:
            ProviderError: On HTTP errors, exhausted network retries or an
                undecodable body
        """
        url = self._url(path)
        headers = {"Accept": "application/json"}
        query = dict(params or {})
        self._auth(headers, query)

        logger.record_api_call()
        try:
            resp = _get(
                self.session, url, headers=headers, params=query, timeout=self.timeout
            )
        except RetryError as e:
            logger.warning(f"{self.source.capitalize()} request failed after retries", url=url, error=str(e))
            raise ProviderError(f"{self.source} request failed: {e}", transient=True) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"{self.source.capitalize()} request error", url=url, error=str(e))
            raise ProviderError(f"{self.source} request error: {e}", transient=True) from e

        if resp.status_code >= 400:
            status = resp.status_code
            transient = is_transient_status(status)
            if status == 404:
                logger.debug(f"{self.source.capitalize()} resource not found", url=url, status=404)
            else:
                logger.warning(f"{self.source.capitalize()} request failed", url=url, status=status)
            raise ProviderError(
                f"{self.source} API error ({status}): {_error_detail(resp)}",
                status=status,
                transient=transient,
            )

        try:
            return resp.json()
        except ValueError as e:
            raise ProviderError(f"{self.source} returned invalid JSON from {url}") from e


def _error_detail(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or "")[:200] or "Unknown error"
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if body.get("message"):
            return str(body["message"])
        if body.get("detail"):
            return str(body["detail"])
    return "Unknown error"
