"""HTTP plumbing for catalog lookups."""

import logging
import time

import requests

logger = logging.getLogger(__name__)

# Throttled or a server-side failure; anything else is final
RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


def create_session(user_agent):
    s = requests.Session()
    s.headers.update({"User-Agent": user_agent, "Accept": "application/json"})
    return s


def retry_delay(resp, attempt):
    """Seconds to wait before the next attempt.

    Honours a numeric Retry-After header; otherwise backs off 1, 2, 4...
    """
    header = resp.headers.get("Retry-After")
    if header is not None:
        try:
            return max(0, int(header))
        except ValueError:
            # HTTP-date form
            pass
    return 2 ** attempt


def get_json(session, url, params=None, *, rate_limit=0.5, attempts=4, timeout=15):
    """GET ``url`` and decode its JSON body.

    Retryable statuses are retried up to ``attempts`` requests in total;
    the last one raises ``requests.HTTPError``, as does any other error
    status.  Sleeps ``rate_limit`` seconds after a success to stay under
    the API's request quota.
    """
    for attempt in range(attempts):
        resp = session.get(url, params=params, timeout=timeout)
        if resp.status_code not in RETRYABLE_STATUS:
            resp.raise_for_status()
            time.sleep(rate_limit)
            return resp.json()
        if attempt + 1 < attempts:
            delay = retry_delay(resp, attempt)
            logger.warning("HTTP %s from %s, retry %d/%d in %ss",
                           resp.status_code, url, attempt + 1, attempts - 1, delay)
            time.sleep(delay)
    resp.raise_for_status()
    raise requests.HTTPError(f"HTTP {resp.status_code} from {url}", response=resp)
