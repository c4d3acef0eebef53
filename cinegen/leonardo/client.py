"""Async HTTP client for the Leonardo AI REST API."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from cinegen.config import settings
from cinegen.errors import UpstreamError
from cinegen.jobs.models import GenerationKind
from cinegen.leonardo import endpoints
from cinegen.leonardo.normalizer import ASSET_ID_PATHS, first_string, probe

logger = logging.getLogger(__name__)


@dataclass
class InitImageUpload:
    """Result of registering an asset with the init-image endpoint.

    When ``storage_url`` is set the bytes still have to be posted there as a
    multipart form (``storage_fields`` first, file last) before the asset id
    is usable.
    """
    asset_id: str
    storage_url: Optional[str] = None
    storage_fields: Dict[str, str] = field(default_factory=dict)

    @property
    def needs_storage_upload(self) -> bool:
        return bool(self.storage_url and self.storage_fields)


def error_message(response: httpx.Response) -> str:
    """Best-effort human readable error out of a failed response."""
    text = response.text
    try:
        data = response.json()
    except ValueError:
        return text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        for key in ("error", "message", "details"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return text or f"HTTP {response.status_code}"


class LeonardoClient:
    """Thin async wrapper over the Leonardo REST endpoints.

    Every method raises ``UpstreamError`` on network failures, non-2xx
    responses and bodies that are not JSON objects.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.leonardo_api_key
        self.base_url = (base_url or settings.leonardo_base_url).rstrip("/")
        self._http = httpx.AsyncClient(
            timeout=timeout or settings.request_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    def _headers(self, json_body: bool = True) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"{type(exc).__name__}: {exc}") from exc

    @staticmethod
    def _json_object(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError(
                f"Malformed JSON from {response.request.url}", response.status_code
            ) from exc
        if not isinstance(data, dict):
            raise UpstreamError(
                f"Expected a JSON object from {response.request.url}",
                response.status_code,
            )
        return data

    async def _request_json(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = await self._send(method, self._url(path), **kwargs)
        if response.is_error:
            raise UpstreamError(error_message(response), response.status_code)
        return self._json_object(response)

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    async def upload_init_image(
        self, data: bytes, filename: str, extension: str
    ) -> InitImageUpload:
        """Register an asset; may hand back a presigned direct-storage target."""
        body = await self._request_json(
            "POST",
            endpoints.INIT_IMAGE,
            headers=self._headers(json_body=False),
            files={"file": (filename, data)},
            data={"extension": extension},
        )
        asset_id = first_string(body, ASSET_ID_PATHS)
        if not asset_id:
            raise UpstreamError("No asset id in init-image response")

        storage_url = probe(body, "uploadInitImage.url")
        raw_fields = probe(body, "uploadInitImage.fields")
        fields: Dict[str, str] = {}
        if isinstance(raw_fields, str) and raw_fields:
            try:
                fields = json.loads(raw_fields)
            except ValueError as exc:
                raise UpstreamError("Malformed storage fields in init-image response") from exc
        elif isinstance(raw_fields, dict):
            fields = raw_fields

        return InitImageUpload(
            asset_id=asset_id,
            storage_url=storage_url if isinstance(storage_url, str) else None,
            storage_fields={k: str(v) for k, v in fields.items()},
        )

    async def upload_to_storage(
        self, url: str, fields: Dict[str, str], data: bytes, filename: str
    ) -> None:
        """POST the file to a presigned form target; the file part goes last."""
        response = await self._send(
            "POST", url, data=fields, files={"file": (filename, data)}
        )
        if response.is_error:
            raise UpstreamError(
                f"Storage upload failed: {response.text[:200]}", response.status_code
            )

    # ------------------------------------------------------------------
    # Generations
    # ------------------------------------------------------------------

    async def submit(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(f"POST {path} | keys: {sorted(body)}")
        return await self._request_json(
            "POST", path, headers=self._headers(), json=body
        )

    async def fetch_status(self, kind: GenerationKind, job_id: str) -> Dict[str, Any]:
        """Fetch the raw status body, falling through candidates that 404."""
        candidates = endpoints.status_paths(kind, job_id)
        last_response: Optional[httpx.Response] = None
        for path in candidates:
            response = await self._send("GET", self._url(path), headers=self._headers())
            if response.status_code == 404:
                logger.debug(f"Status endpoint {path} returned 404")
                last_response = response
                continue
            if response.is_error:
                raise UpstreamError(error_message(response), response.status_code)
            return self._json_object(response)

        raise UpstreamError(
            f"No status endpoint answered for job {job_id}",
            last_response.status_code if last_response is not None else None,
        )

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def improve_prompt(self, prompt: str) -> Dict[str, Any]:
        return await self._request_json(
            "POST", endpoints.PROMPT_IMPROVE, headers=self._headers(), json={"prompt": prompt}
        )

    async def random_prompt(self) -> Dict[str, Any]:
        return await self._request_json(
            "GET", endpoints.PROMPT_RANDOM, headers=self._headers(json_body=False)
        )

    async def get_user_info(self) -> Dict[str, Any]:
        return await self._request_json(
            "GET", endpoints.ME, headers=self._headers(json_body=False)
        )

    async def list_platform_models(self) -> Dict[str, Any]:
        return await self._request_json(
            "GET", endpoints.PLATFORM_MODELS, headers=self._headers()
        )

    async def list_motion_control_elements(self) -> Any:
        """Return the raw listing from the first element endpoint that answers."""
        for path in endpoints.MOTION_CONTROL_ELEMENTS:
            try:
                response = await self._send("GET", self._url(path), headers=self._headers())
            except UpstreamError as exc:
                logger.debug(f"Element listing {path} failed: {exc}")
                continue
            if response.is_error:
                continue
            try:
                return response.json()
            except ValueError:
                continue
        return None
