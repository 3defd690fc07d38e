import os
from typing import List, Optional


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class Settings:
    def __init__(self) -> None:
        # Fixed upstream endpoint; it answers chat requests with an SSE stream
        self.upstream_url: str = os.environ.get(
            "UPSTREAM_URL", "https://ai.enencloud.top/v1/chat/completions"
        )
        # Used for the envelope's `model` when upstream sends no model header
        self.default_model: str = os.environ.get("DEFAULT_MODEL", "@tx/deepseek-ai/deepseek-v3-0324")
        self.model_header: str = os.environ.get("MODEL_HEADER", "x-model").strip().lower()
        self.debug: bool = _env_flag("DEBUG_PROXY", "")
        try:
            self.upstream_timeout: float = max(1.0, float(os.environ.get("UPSTREAM_TIMEOUT", "300")))
        except Exception:
            self.upstream_timeout = 300.0
        try:
            self.upstream_connect_timeout: float = max(
                0.5, float(os.environ.get("UPSTREAM_CONNECT_TIMEOUT", "10"))
            )
        except Exception:
            self.upstream_connect_timeout = 10.0
        # Treat the `data: [DONE]` sentinel as end of stream instead of a skipped record
        self.stop_on_done: bool = _env_flag("STOP_ON_DONE", "1")
        # Optional comma-separated allow-list of inbound headers to forward.
        # Empty keeps full passthrough (credentials included).
        forward_raw = os.environ.get("FORWARD_HEADERS", "")
        self.forward_headers: List[str] = [h.strip().lower() for h in forward_raw.split(",") if h.strip()]
        # Enable HTTP/2 to improve latency and throughput when supported by upstream.
        self.http2: bool = _env_flag("PROXY_HTTP2", "1")
        try:
            self.disconnect_poll_interval: float = max(
                0.01, float(os.environ.get("DISCONNECT_POLL_INTERVAL", "0.25"))
            )
        except Exception:
            self.disconnect_poll_interval = 0.25

    def header_allow_list(self) -> Optional[List[str]]:
        return list(self.forward_headers) or None


settings = Settings()
