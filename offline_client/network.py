import httpx
import structlog

from .config import ClientSettings, settings as default_settings

logger = structlog.get_logger()


class ConnectivityProbe:
    def is_online(self) -> bool: ...


class HttpConnectivityProbe(ConnectivityProbe):
    """Сеть считается доступной, если сервер отвечает на /health."""

    def __init__(self, http: httpx.Client, path: str = "/health", timeout: float = 3.0):
        self.http = http
        self.path = path
        self.timeout = timeout

    @classmethod
    def from_settings(cls, config: ClientSettings = default_settings) -> "HttpConnectivityProbe":
        http = httpx.Client(base_url=config.INSTANCE_URL.rstrip("/"), timeout=config.PROBE_TIMEOUT)
        return cls(http, timeout=config.PROBE_TIMEOUT)

    def is_online(self) -> bool:
        try:
            response = self.http.get(self.path, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.debug("connectivity_probe_failed", error=str(e))
            return False
        return response.status_code < 500
