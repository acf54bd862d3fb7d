from .transport import (
    bearer,
    decode_body,
    parse_link_header,
    raise_for_canvas_status,
    relative_to_base,
    send,
)

__all__ = [
    "bearer",
    "decode_body",
    "parse_link_header",
    "raise_for_canvas_status",
    "relative_to_base",
    "send",
]
