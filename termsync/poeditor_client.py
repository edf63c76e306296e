"""Async client for the POEditor v2 API."""
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx
from aiolimiter import AsyncLimiter

from termsync.errors import ApiError, ConfigurationError, ErrorKind, parse_retry_after
from termsync.models import RemoteTerm, TermUpdate, TranslationEntry

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.poeditor.com/v2"

EXPORT_TYPES = (
    'po', 'pot', 'mo', 'xls', 'xlsx', 'csv', 'ini', 'resw', 'resx', 'android_strings',
    'apple_strings', 'xliff', 'properties', 'key_value_json', 'json', 'yml', 'xlf',
    'xmb', 'xtb', 'arb', 'rise_360_xliff',
)


def _encode_form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _translation_content(translation: Any) -> str:
    """Extract the content of a terms/list translation; plurals yield their 'other' form."""
    if not isinstance(translation, dict):
        return ""
    content = translation.get("content")
    if isinstance(content, dict):
        return content.get("other") or next((v for v in content.values() if v), "")
    return content or ""


def _counters(result: Dict[str, Any], section: str) -> Dict[str, int]:
    """Unwrap the per-section counters POEditor nests under result.terms / result.translations."""
    counters = result.get(section, result) if isinstance(result, dict) else {}
    return {name: int(value) for name, value in counters.items() if isinstance(value, (int, str)) and str(value).isdigit()}


class PoeditorClient:
    """
    POEditor API client.

    Every request is a form-encoded POST carrying the API token. Responses are
    checked for POEditor's own success marker before the ``result`` payload is
    returned, so an HTTP 200 carrying ``"status": "fail"`` still raises.
    """

    def __init__(self, api_token: Optional[str], api_url: str = DEFAULT_API_URL,
                 timeout: float = 30.0, requests_per_minute: int = 60,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_token = api_token
        self.api_url = api_url.rstrip("/")
        self.rate_limiter = AsyncLimiter(max_rate=requests_per_minute, time_period=60)
        self.client = httpx.AsyncClient(
            base_url=self.api_url,
            timeout=timeout,
            headers={"User-Agent": "termsync/1.0"},
            transport=transport,
        )

    @classmethod
    def from_config(cls, config, transport: Optional[httpx.AsyncBaseTransport] = None) -> "PoeditorClient":
        return cls(
            api_token=config.api_token,
            api_url=config.api_url,
            timeout=config.request_timeout,
            requests_per_minute=config.requests_per_minute,
            transport=transport,
        )

    async def __aenter__(self) -> "PoeditorClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def set_api_token(self, token: str) -> None:
        self.api_token = token

    async def _make_request(self, endpoint: str, data: Optional[Dict[str, Any]] = None) -> Any:
        """
        POST to ``endpoint`` and return the unwrapped ``result`` payload.

        Raises:
            ConfigurationError: If no API token is set; nothing is sent.
            ApiError: For throttling (429), bad credentials (401), service
                unavailability (503), any other HTTP failure, transport errors
                and application-level rejections.
        """
        if not self.api_token:
            raise ConfigurationError(
                "POEditor API token is required. Set POEDITOR_API_TOKEN or 'api_token' in the config file."
            )

        form = {"api_token": self.api_token}
        for name, value in (data or {}).items():
            if value is not None:
                form[name] = _encode_form_value(value)

        try:
            async with self.rate_limiter:
                response = await self.client.post(endpoint, data=form)
        except httpx.RequestError as request_exc:
            raise ApiError(f"POEditor API request failed: {request_exc}", kind=ErrorKind.TRANSPORT) from request_exc

        status = response.status_code
        if status == 429:
            raise ApiError(
                "Rate limit exceeded.", status,
                retry_after_ms=parse_retry_after(response.headers.get("retry-after")),
                kind=ErrorKind.THROTTLED,
            )
        if status == 401:
            raise ApiError("Invalid API token. Check the POEditor API token.", status, kind=ErrorKind.CREDENTIAL)
        if status == 503:
            raise ApiError(
                "POEditor API temporarily unavailable.", status,
                retry_after_ms=parse_retry_after(response.headers.get("retry-after")),
                kind=ErrorKind.UNAVAILABLE,
            )
        if response.is_error:
            raise ApiError(f"POEditor API request failed: HTTP {status} {response.reason_phrase}", status)

        try:
            payload = response.json()
        except ValueError as json_exc:
            raise ApiError("POEditor API returned a response that is not JSON.", kind=ErrorKind.APPLICATION) from json_exc

        marker = payload.get("response") if isinstance(payload, dict) else None
        if not isinstance(marker, dict) or marker.get("status") != "success":
            message = (marker or {}).get("message") or "Unknown error"
            code = (marker or {}).get("code")
            suffix = f" [code {code}]" if code else ""
            raise ApiError(f"POEditor API error: {message}{suffix}", kind=ErrorKind.APPLICATION)

        logger.debug("POST %s succeeded", endpoint)
        return payload.get("result") or {}

    # Projects

    async def list_projects(self) -> List[Dict[str, Any]]:
        result = await self._make_request("/projects/list")
        return result.get("projects") or []

    async def get_project(self, project_id: str) -> Dict[str, Any]:
        result = await self._make_request("/projects/view", {"id": project_id})
        return result.get("project") or {}

    # Languages

    async def list_languages(self, project_id: str) -> List[Dict[str, Any]]:
        result = await self._make_request("/languages/list", {"id": project_id})
        return result.get("languages") or []

    async def add_language(self, project_id: str, language: str) -> None:
        await self._make_request("/languages/add", {"id": project_id, "language": language})

    # Terms

    async def list_terms(self, project_id: str, language: Optional[str] = None) -> List[RemoteTerm]:
        result = await self._make_request("/terms/list", {"id": project_id, "language": language})
        return [RemoteTerm.from_dict(term) for term in result.get("terms") or []]

    async def add_terms(self, project_id: str, terms: Sequence[RemoteTerm]) -> Dict[str, int]:
        terms_data = [
            {
                "term": term.term,
                "context": term.context,
                "reference": term.reference,
                "plural": term.plural,
                "tags": list(term.tags),
                "comment": term.comment,
            }
            for term in terms
        ]
        result = await self._make_request("/terms/add", {"id": project_id, "data": terms_data})
        return _counters(result, "terms")

    async def update_terms(self, project_id: str, updates: Sequence[TermUpdate],
                           contexts: Optional[Mapping[str, str]] = None) -> Dict[str, int]:
        """
        Update existing terms with only their changed fields.

        POEditor matches a term by (term, context), so ``contexts`` supplies the
        current remote context of terms that have one; a changed context is
        sent as ``new_context``.
        """
        contexts = contexts or {}
        terms_data = []
        for update in updates:
            entry: Dict[str, Any] = {"term": update.term}
            if contexts.get(update.term):
                entry["context"] = contexts[update.term]
            for name, value in update.updates.items():
                if name == "context":
                    entry["new_context"] = value
                else:
                    entry[name] = list(value) if name == "tags" else value
            terms_data.append(entry)
        result = await self._make_request("/terms/update", {"id": project_id, "data": terms_data})
        return _counters(result, "terms")

    async def delete_terms(self, project_id: str, terms: Sequence[str],
                           contexts: Optional[Mapping[str, str]] = None) -> Dict[str, int]:
        contexts = contexts or {}
        terms_data = []
        for term in terms:
            entry = {"term": term}
            if contexts.get(term):
                entry["context"] = contexts[term]
            terms_data.append(entry)
        result = await self._make_request("/terms/delete", {"id": project_id, "data": terms_data})
        return _counters(result, "terms")

    # Translations

    async def list_translations(self, project_id: str, language: str) -> List[TranslationEntry]:
        """List the translations of one language; terms without content are skipped."""
        result = await self._make_request("/terms/list", {"id": project_id, "language": language})
        entries = []
        for term in result.get("terms") or []:
            content = _translation_content(term.get("translation"))
            if content:
                entries.append(TranslationEntry(term=term["term"], language=language, content=content))
        return entries

    async def add_translations(self, project_id: str, language: str,
                               translations: Sequence[TranslationEntry],
                               fuzzy: bool = False) -> Dict[str, int]:
        result = await self._make_request("/translations/add", {
            "id": project_id,
            "language": language,
            "data": self._translations_data(translations, fuzzy),
        })
        return _counters(result, "translations")

    async def update_translations(self, project_id: str, language: str,
                                  translations: Sequence[TranslationEntry],
                                  fuzzy: bool = False) -> Dict[str, int]:
        result = await self._make_request("/translations/update", {
            "id": project_id,
            "language": language,
            "data": self._translations_data(translations, fuzzy),
        })
        return _counters(result, "translations")

    async def delete_translations(self, project_id: str, language: str, terms: Sequence[str]) -> Dict[str, int]:
        result = await self._make_request("/translations/delete", {
            "id": project_id,
            "language": language,
            "data": [{"term": term} for term in terms],
        })
        return _counters(result, "translations")

    @staticmethod
    def _translations_data(translations: Sequence[TranslationEntry], fuzzy: bool) -> List[Dict[str, Any]]:
        return [
            {
                "term": entry.term,
                "translation": {"content": entry.content, "fuzzy": 1 if fuzzy else 0},
            }
            for entry in translations
        ]

    # Export

    async def export_translations(self, project_id: str, language: str, file_type: str = "json",
                                  filters: Optional[Sequence[str]] = None,
                                  tags: Optional[Sequence[str]] = None,
                                  order: Optional[str] = None) -> str:
        """Request an export and return the (short-lived) download URL."""
        if file_type not in EXPORT_TYPES:
            raise ValueError(f"Unsupported export type '{file_type}'")
        result = await self._make_request("/projects/export", {
            "id": project_id,
            "language": language,
            "type": file_type,
            "filters": list(filters) if filters else None,
            "tags": list(tags) if tags else None,
            "order": order,
        })
        return result.get("url", "")
