import logging
import os
import time
from typing import Any, Dict, Optional

import requests
from requests.exceptions import ConnectionError, RequestException, Timeout

logger = logging.getLogger(__name__)


class SupabaseError(Exception):
    """Base exception for Supabase-related errors."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


class SupabaseConnectionError(SupabaseError, ConnectionError):
    """Raised when unable to connect to Supabase after all retries."""
    pass


class SupabaseTimeoutError(SupabaseError, Timeout):
    """Raised when a request to Supabase times out after all retries."""
    pass


class SupabaseServerError(SupabaseError):
    """Raised when Supabase keeps returning a 5xx error."""

    def __init__(self, message: str, status_code: int, original_error: Optional[Exception] = None):
        super().__init__(message, original_error)
        self.status_code = status_code


class SupabaseClientError(SupabaseError):
    """
    Raised when Supabase returns a 4xx error.
    `code` carries the PostgREST / Postgres error code when the body has one
    (e.g. '23P01' for an exclusion constraint violation).
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        response_body: Optional[str] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
        self.code = code


class SupabaseConfigError(SupabaseError, RuntimeError):
    """Raised when Supabase configuration is missing or invalid."""
    pass


def _get_env(key: str, default: str = "") -> str:
    """Get environment variable, stripping whitespace."""
    return (os.getenv(key) or default).strip()


SUPABASE_URL = _get_env("SUPABASE_URL").rstrip("/")
SUPABASE_ANON_KEY = _get_env("SUPABASE_ANON_KEY")
SUPABASE_SERVICE_KEY = _get_env("SUPABASE_SERVICE_ROLE_KEY") or _get_env("SUPABASE_ACCESS_TOKEN")

DEFAULT_TIMEOUT = int(_get_env("SUPABASE_TIMEOUT", "30"))
MAX_RETRIES = int(_get_env("SUPABASE_MAX_RETRIES", "3"))
INITIAL_BACKOFF = float(_get_env("SUPABASE_INITIAL_BACKOFF", "0.5"))


def supabase_configured() -> bool:
    return bool(SUPABASE_URL and SUPABASE_ANON_KEY and SUPABASE_SERVICE_KEY)


def ensure_supabase_env() -> None:
    if not supabase_configured():
        missing = []
        if not SUPABASE_URL:
            missing.append("SUPABASE_URL")
        if not SUPABASE_ANON_KEY:
            missing.append("SUPABASE_ANON_KEY")
        if not SUPABASE_SERVICE_KEY:
            missing.append("SUPABASE_SERVICE_ROLE_KEY or SUPABASE_ACCESS_TOKEN")
        raise SupabaseConfigError(f"Missing Supabase configuration: {', '.join(missing)}")


def supabase_headers() -> Dict[str, str]:
    return {
        "apikey": SUPABASE_ANON_KEY or "",
        "Authorization": f"Bearer {SUPABASE_SERVICE_KEY}",
        "Content-Type": "application/json",
    }


def _backoff_delay(attempt: int) -> float:
    return INITIAL_BACKOFF * (2 ** attempt)


def _error_code(response: requests.Response) -> Optional[str]:
    """Pull the PostgREST error code out of an error body, if there is one."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("code")
    return None


def supabase_request(
    method: str,
    path: str,
    timeout: Optional[int] = None,
    max_retries: Optional[int] = None,
    raise_on_error: bool = False,
    **kwargs: Any
) -> requests.Response:
    """
    Make a request to the Supabase REST API with retry logic.

    Connection errors, timeouts and 5xx responses are retried with exponential
    backoff. 4xx responses are never retried.

    Args:
        method: HTTP method (GET, POST, PATCH, DELETE, ...)
        path: API path (e.g., /rest/v1/classes)
        timeout: Request timeout in seconds (default: SUPABASE_TIMEOUT)
        max_retries: Retries for transient errors (default: SUPABASE_MAX_RETRIES)
        raise_on_error: Raise SupabaseClientError / SupabaseServerError instead of
                        returning 4xx/5xx responses to the caller.
        **kwargs: Passed through to requests.request()

    Raises:
        SupabaseConfigError: Supabase configuration is missing
        SupabaseConnectionError: unable to connect after retries
        SupabaseTimeoutError: request timed out after retries
        SupabaseServerError: 5xx after retries (only if raise_on_error=True)
        SupabaseClientError: 4xx response (only if raise_on_error=True)
        SupabaseError: any other request failure
    """
    ensure_supabase_env()

    url = f"{SUPABASE_URL}{path}"
    headers = kwargs.pop("headers", {})
    merged_headers = {**supabase_headers(), **headers}
    request_timeout = timeout if timeout is not None else DEFAULT_TIMEOUT
    retries = max_retries if max_retries is not None else MAX_RETRIES
    verb = method.upper()

    for attempt in range(retries + 1):
        is_last = attempt == retries
        try:
            logger.debug(f"Supabase request attempt {attempt + 1}/{retries + 1}: {verb} {path}")
            response = requests.request(
                method=verb,
                url=url,
                headers=merged_headers,
                timeout=request_timeout,
                **kwargs,
            )
        except ConnectionError as e:
            if is_last:
                logger.error(f"Failed to connect to Supabase after {retries + 1} attempts: {e}")
                raise SupabaseConnectionError(
                    f"Failed to connect to Supabase after {retries + 1} attempts",
                    original_error=e,
                ) from e
            logger.warning(
                f"Connection error to Supabase, retrying in {_backoff_delay(attempt):.1f}s "
                f"(attempt {attempt + 1}/{retries + 1}): {e}"
            )
            time.sleep(_backoff_delay(attempt))
            continue
        except Timeout as e:
            if is_last:
                logger.error(f"Supabase request timed out after {retries + 1} attempts: {e}")
                raise SupabaseTimeoutError(
                    f"Supabase request timed out after {retries + 1} attempts",
                    original_error=e,
                ) from e
            logger.warning(
                f"Supabase request timed out, retrying in {_backoff_delay(attempt):.1f}s "
                f"(attempt {attempt + 1}/{retries + 1}): {e}"
            )
            time.sleep(_backoff_delay(attempt))
            continue
        except RequestException as e:
            logger.error(f"Unexpected request error to Supabase: {e}")
            raise SupabaseError(
                f"Unexpected error making request to Supabase: {e}",
                original_error=e,
            ) from e

        if 500 <= response.status_code < 600:
            if not is_last:
                logger.warning(
                    f"Supabase returned {response.status_code}, retrying in "
                    f"{_backoff_delay(attempt):.1f}s (attempt {attempt + 1}/{retries + 1})"
                )
                time.sleep(_backoff_delay(attempt))
                continue
            logger.error(
                f"Supabase request failed after {retries + 1} attempts: "
                f"{verb} {path} returned {response.status_code}"
            )
            if raise_on_error:
                raise SupabaseServerError(
                    f"Supabase server error: {response.status_code}",
                    status_code=response.status_code,
                )
            return response

        if 400 <= response.status_code < 500:
            logger.debug(f"Supabase client response: {verb} {path} returned {response.status_code}")
            if raise_on_error:
                raise SupabaseClientError(
                    f"Supabase client error: {response.status_code}",
                    status_code=response.status_code,
                    response_body=response.text,
                    code=_error_code(response),
                )
            return response

        logger.debug(f"Supabase request successful: {verb} {path}")
        return response

    raise SupabaseError("Supabase request failed unexpectedly")


def supabase_rpc(function: str, params: Dict[str, Any], **kwargs: Any) -> Any:
    """
    Call a Postgres function through PostgREST. Each call runs in one transaction.
    Returns the decoded JSON result; errors are raised, never returned.
    """
    response = supabase_request(
        "POST",
        f"/rest/v1/rpc/{function}",
        json=params,
        raise_on_error=True,
        **kwargs,
    )
    if response.status_code == 204 or not response.content:
        return None
    return response.json()


def check_connection(timeout: Optional[int] = None) -> bool:
    """
    Test if Supabase is reachable.

    Args:
        timeout: Request timeout in seconds (default: 10 seconds for health check)

    Returns:
        True if Supabase is reachable, False otherwise
    """
    if not supabase_configured():
        logger.warning("Supabase is not configured, cannot check connection")
        return False

    check_timeout = timeout if timeout is not None else 10

    try:
        response = requests.get(
            f"{SUPABASE_URL}/rest/v1/",
            headers=supabase_headers(),
            timeout=check_timeout,
        )
    except (ConnectionError, Timeout) as e:
        logger.warning(f"Supabase connection check failed: {e}")
        return False
    except RequestException as e:
        logger.warning(f"Supabase connection check failed with unexpected error: {e}")
        return False

    if response.status_code >= 500:
        logger.warning(f"Supabase connection check failed with status {response.status_code}")
        return False
    logger.debug("Supabase connection check successful")
    return True
