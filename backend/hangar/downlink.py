import logging

import httpx

from .errors import DownlinkError

logger = logging.getLogger(__name__)


def _extract_error_detail(response: httpx.Response) -> str:
    text = response.text.strip()
    return f"Downlink rejected with HTTP {response.status_code}" + (f": {text}" if text else "")


async def post_downlink(client: httpx.AsyncClient, url: str, body: bytes) -> httpx.Response:
    """POST an encoded downlink envelope once; no retry is attempted."""

    try:
        response = await client.post(url, content=body, headers={"Content-Type": "application/json"})
    except (httpx.RequestError, httpx.InvalidURL) as exc:
        raise DownlinkError(f"Unable to send downlink request to {url}: {exc}") from exc

    logger.info("Downlink response status: %s", response.status_code)
    logger.debug("Downlink response headers: %s", dict(response.headers))
    logger.debug("Downlink response body: %s", response.text)

    if not response.is_success:
        raise DownlinkError(_extract_error_detail(response))
    return response
