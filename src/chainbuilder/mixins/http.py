"""
HTTP operations backed by aiohttp.

Requires the 'aiohttp' package to be installed:
    pip install chainbuilder[http]

Usage:
    >>> from chainbuilder.mixins.http import http_methods
    >>> api = chainbuilder(mixins=[http_methods])
    >>> outcome = await api().get_json("https://api.example.com/items").run()

A missing URL argument defaults to the previous result, so a chain can
compute the URL and then fetch it.
"""

import logging
from typing import Any, Dict, Optional

from ..context import CallContext
from ..operation import Operation, operation

logger = logging.getLogger("chainbuilder")

DEFAULT_TIMEOUT = 30


def _import_aiohttp():
    try:
        import aiohttp
    except ImportError:
        raise ImportError(
            "aiohttp is required for the HTTP mixin. "
            "Install it with: pip install chainbuilder[http]"
        ) from None
    return aiohttp


async def _get(url: str, headers: Optional[Dict[str, str]], timeout: float, as_json: bool) -> Any:
    aiohttp = _import_aiohttp()

    async with aiohttp.ClientSession() as session:
        async with session.get(
            url,
            headers=headers or {},
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            logger.info("GET %s -> %s", url, response.status)
            response.raise_for_status()
            if as_json:
                return await response.json()
            return await response.text()


_REQUEST_ARGS = [
    {"type": "str", "default_to_previous_result": True},
    {"type": "dict", "default": {}},
    {"default": DEFAULT_TIMEOUT},
]


@operation(args=_REQUEST_ARGS)
async def get_json(ctx: CallContext, url: str, headers: Dict[str, str], timeout: float) -> Any:
    """GET ``url`` and return the decoded JSON body."""
    return await _get(url, headers, timeout, as_json=True)


@operation(args=_REQUEST_ARGS)
async def get_text(ctx: CallContext, url: str, headers: Dict[str, str], timeout: float) -> str:
    """GET ``url`` and return the body as text."""
    return await _get(url, headers, timeout, as_json=False)


http_methods: Dict[str, Operation] = {
    "get_json": get_json,
    "get_text": get_text,
}
