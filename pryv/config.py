"""
Configuration management for the Pryv client engine.

This module defines a dataclass ``ConnectionConfig`` that holds the settings
of one connection. It can be loaded from a YAML file or constructed
manually. The configuration covers the API endpoint, batch chunking,
transport timeouts, streamed read sizes and the attachment size cap.

Example YAML configuration (config/connection.yaml):

```yaml
api_endpoint: "https://ck6bwmcar00041ep87c8ujf90@demo.datasafe.dev/"
chunk_size: 100             # calls per batch request, omit for one request
timeout: 30                 # seconds per HTTP exchange
stream_chunk_bytes: 65536   # bytes per read of streamed listings
streaming: true             # false forces whole-body reads
max_upload_bytes: 26214400
```

Using the ``ConnectionConfig.from_yaml`` method simplifies loading configuration:

```python
from pryv.config import ConnectionConfig
config = ConnectionConfig.from_yaml('config/connection.yaml')
```
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import yaml


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


@dataclass
class ConnectionConfig:
    """Settings of one Pryv connection."""

    api_endpoint: str
    chunk_size: Optional[int] = None
    timeout: float = 30  # seconds
    stream_chunk_bytes: int = 64 * 1024
    streaming: bool = True
    max_upload_bytes: int = 25 * 1024 * 1024

    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.validate()

    @classmethod
    def from_yaml(cls, path: str) -> 'ConnectionConfig':
        """Load configuration from a YAML file.

        Raises:
            FileNotFoundError: if the YAML file cannot be found.
            yaml.YAMLError: if the YAML file is invalid.
            KeyError: if required keys are missing.
            ValueError: if a value is out of range.
        """
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        required_keys = ['api_endpoint']
        missing = [k for k in required_keys if k not in data]
        if missing:
            raise KeyError(f'Missing required configuration keys: {missing}')

        return cls(
            api_endpoint=data['api_endpoint'],
            chunk_size=data.get('chunk_size'),
            timeout=data.get('timeout', 30),
            stream_chunk_bytes=data.get('stream_chunk_bytes', 64 * 1024),
            streaming=bool(data.get('streaming', True)),
            max_upload_bytes=data.get('max_upload_bytes', 25 * 1024 * 1024),
            extra={k: v for k, v in data.items() if k not in cls.__annotations__},
        )

    def validate(self) -> None:
        """Reject out of range values.

        Raises:
            ValueError: on a non-positive chunk size, timeout or byte size.
        """
        if self.chunk_size is not None and not _is_positive_int(self.chunk_size):
            raise ValueError(f'chunk_size must be a positive integer, got {self.chunk_size!r}')
        if self.timeout <= 0:
            raise ValueError(f'timeout must be positive, got {self.timeout!r}')
        if self.stream_chunk_bytes < 1:
            raise ValueError(f'stream_chunk_bytes must be positive, got {self.stream_chunk_bytes!r}')
        if self.max_upload_bytes < 1:
            raise ValueError(f'max_upload_bytes must be positive, got {self.max_upload_bytes!r}')
