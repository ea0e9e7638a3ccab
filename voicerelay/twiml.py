"""TwiML that points an incoming Twilio call at the media stream endpoint."""

from __future__ import annotations

from xml.sax.saxutils import quoteattr


def stream_url(public_host: str, path: str = "/media") -> str:
    """``wss://<host><path>``; an explicit ws:// or wss:// scheme on the host is kept."""
    host = public_host.rstrip("/")
    for plain, secure in (("https://", "wss://"), ("http://", "ws://")):
        if host.startswith(plain):
            host = secure + host[len(plain):]
    if not host.startswith(("ws://", "wss://")):
        host = f"wss://{host}"
    return f"{host}{path}"


def connect_stream_twiml(url: str, parameters: dict[str, str] | None = None) -> str:
    params = "".join(
        f"\n            <Parameter name={quoteattr(k)} value={quoteattr(str(v))} />"
        for k, v in (parameters or {}).items()
    )
    closing = "\n        </Stream>" if params else ""
    stream = f"<Stream url={quoteattr(url)}{'>' if params else ' />'}{params}{closing}"
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Connect>
        {stream}
    </Connect>
</Response>"""
