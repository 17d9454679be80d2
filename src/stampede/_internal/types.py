"""Shared type aliases for Stampede."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

# HTTP headers as supplied by scenario authors.
Headers = Mapping[str, str]

# Pacing range (min_seconds, max_seconds) between iterations.
PaceRange = tuple[float, float]

# Payload template: raw text, raw bytes, or a JSON-serializable mapping.
Payload = str | bytes | Mapping[str, Any]

# Check predicate over a response outcome.
Predicate = Callable[[Any], bool]
