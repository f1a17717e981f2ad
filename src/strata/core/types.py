"""Type aliases used across the Strata package."""

from __future__ import annotations

# header and query values may repeat
HeaderValue = str | list[str]
