"""Helpers for Pryv API endpoints.

An API endpoint may embed its access token as URL credentials:
``https://{token}@{username}.pryv.me/``. Endpoints without the token always
end with a slash so that relative paths can be appended.
"""

from __future__ import annotations

from typing import Optional, Tuple
from urllib.parse import urlsplit, urlunsplit


def extract_token_and_endpoint(api_endpoint: str) -> Tuple[Optional[str], str]:
    """Split ``https://token@host/path/`` into ``(token, 'https://host/path/')``."""
    parts = urlsplit(api_endpoint.strip())
    if parts.scheme not in ('http', 'https') or not parts.hostname:
        raise ValueError(f'Cannot find endpoint, invalid URL format: {api_endpoint!r}')
    token = parts.username or None
    netloc = parts.netloc.rsplit('@', 1)[-1]
    path = parts.path if parts.path.endswith('/') else parts.path + '/'
    return token, urlunsplit((parts.scheme, netloc, path, '', ''))


def build_api_endpoint(endpoint: str, token: Optional[str] = None) -> str:
    """Inverse of ``extract_token_and_endpoint``."""
    _, endpoint = extract_token_and_endpoint(endpoint)
    if not token:
        return endpoint
    scheme, rest = endpoint.split('://', 1)
    return f'{scheme}://{token}@{rest}'
