"""
Wire codec based on orjson.
- decode(raw)    -> Any (raises orjson.JSONDecodeError on malformed input)
- encode(data)   -> str (compact, UTF-8)

Note:
- orjson works on bytes; the WebSocket layer sends text frames, so encode()
  decodes the bytes once here.
"""
from typing import Any, Union

import orjson as json

JSONDecodeError = json.JSONDecodeError


def decode(raw: Union[str, bytes]) -> Any:
    """Parse one inbound frame."""
    return json.loads(raw)


def encode(data: Any) -> str:
    """Serialise one outbound message."""
    return json.dumps(data).decode("utf-8")
