"""
Clients the dispatcher uses to get a package rendered.
RenderServiceClient calls the remote render service; LocalRenderClient runs the
pipeline in-process.
"""

from typing import Any, Dict

import requests
from requests.adapters import HTTPAdapter

from jobs.stream import LastLineDecoder
from renderer.core import DISPATCH_CONCURRENCY, RENDER_REQUEST_TIMEOUT
from renderer.errors import NetworkFailure
from renderer.models import Diagnostics

USER_AGENT = "BmsRenderDispatcher/1.0"


class RenderServiceClient:
    def __init__(self, base_url: str, timeout: float = RENDER_REQUEST_TIMEOUT,
                 pool_size: int = DISPATCH_CONCURRENCY, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(pool_connections=1, pool_maxsize=pool_size)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

    def render(self, operation_id: str, url: str) -> Dict[str, Any]:
        """
        PUT the job to the service and decode the streamed body (last JSON line wins).
        Raises NetworkFailure for transport errors and non-2xx statuses, ParseFailure for bad bodies.
        """
        endpoint = f"{self.base_url}/renders/{operation_id}"
        try:
            response = self.session.put(
                endpoint,
                json={"url": url},
                timeout=self.timeout,
                headers={"User-Agent": USER_AGENT},
                stream=True,
            )
        except requests.exceptions.Timeout as e:
            raise NetworkFailure(f"Render request timed out after {self.timeout:g}s: {endpoint}") from e
        except requests.exceptions.RequestException as e:
            raise NetworkFailure(f"Render request failed: {endpoint}: {e}") from e

        try:
            if not 200 <= response.status_code < 300:
                raise NetworkFailure(
                    f"Render service returned HTTP {response.status_code}: {endpoint}",
                    status_code=response.status_code,
                    response_body=response.text,
                )
            if not response.encoding:
                response.encoding = "utf-8"
            decoder = LastLineDecoder()
            try:
                for chunk in response.iter_content(chunk_size=None, decode_unicode=True):
                    decoder.feed(chunk)
            except requests.exceptions.RequestException as e:
                raise NetworkFailure(f"Render response interrupted: {endpoint}: {e}") from e
        finally:
            response.close()
        return decoder.result()

    def close(self):
        self.session.close()


class LocalRenderClient:
    """Runs the pipeline directly; nothing is uploaded."""

    def __init__(self, pipeline):
        self.pipeline = pipeline

    def render(self, operation_id: str, url: str) -> Dict[str, Any]:
        diagnostics = self.pipeline.render(url, diagnostics=Diagnostics(operation_id=operation_id))
        return diagnostics.to_dict()

    def close(self):
        pass
