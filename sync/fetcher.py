"""
sync/fetcher.py -- Pull a batch of items from a partner integration endpoint.

Partners expose one POST endpoint (integration.integration_uri) that answers
with either a bare JSON list of items or a page envelope:

    {"items": [...], "hasNextPage": true}

Pages are requested until hasNextPage is false or max_pages is reached, and
the items are concatenated into one batch. Validation of the items themselves
is sync/inbound.py's job, not ours.

Unlike the best-effort lookups elsewhere, a failed fetch raises FetchError:
the scheduler must record it as an Error outcome instead of syncing an empty
batch.
"""

import base64
import logging
from typing import Any, Optional

import requests

from inventory.models import Integration

logger = logging.getLogger("vulnwatch.sync")

# Module-level session shared across fetches for connection pooling.
# Partner endpoints are configured by users, so redirects are kept short.
_session = requests.Session()
_session.max_redirects = 3


class FetchError(RuntimeError):
    """The partner endpoint could not be reached or answered with garbage."""


def build_auth_headers(integration: Integration) -> dict[str, str]:
    """Translate an integration's auth_type/authentication into request headers.

    Raises FetchError when the stored credentials lack a required key.
    """
    headers = {"Content-Type": "application/json"}
    creds = integration.authentication or {}
    try:
        if integration.auth_type == "Basic":
            raw = f"{creds['username']}:{creds['password']}".encode()
            headers["Authorization"] = "Basic " + base64.b64encode(raw).decode("ascii")
        elif integration.auth_type == "Bearer":
            headers["Authorization"] = f"Bearer {creds['token']}"
        elif integration.auth_type == "Header":
            headers[creds["header"]] = creds["value"]
    except KeyError as exc:
        raise FetchError(f"{integration.auth_type} authentication is missing {exc.args[0]!r}") from None
    return headers


def fetch_partner_batch(
    integration: Integration,
    page_size: int = 500,
    timeout: float = 30.0,
    max_pages: int = 20,
    last_sync: Optional[str] = None,
) -> list[Any]:
    """POST to the partner endpoint and return the raw items of every page."""
    headers = build_auth_headers(integration)
    items: list[Any] = []
    for page in range(1, max_pages + 1):
        body = {"lastSync": last_sync, "page": page, "pageSize": page_size}
        try:
            resp = _session.post(integration.integration_uri, json=body, headers=headers, timeout=timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as e:
            raise FetchError(f"Failed to sync data from {integration.integration_uri}: {e}") from e
        except ValueError as e:
            raise FetchError(f"Partner response from {integration.integration_uri} is not JSON") from e

        if isinstance(data, list):
            items.extend(data)
            break
        if not isinstance(data, dict) or not isinstance(data.get("items"), list):
            raise FetchError(f"Unexpected partner response shape from {integration.integration_uri}")
        items.extend(data["items"])
        if not data.get("hasNextPage"):
            break
    else:
        logger.warning(
            "Integration %s still had pages after %d requests; remaining items wait for the next sync",
            integration.id,
            max_pages,
        )
    return items
