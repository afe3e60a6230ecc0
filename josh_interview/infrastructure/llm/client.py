"""
Vertex AI REST client for interview extraction.
"""
import logging
from typing import Optional, Dict, Any

import requests
import google.auth
import google.auth.exceptions
import google.auth.transport.requests
from google.oauth2 import service_account

from .provider import (
    LlmProvider, LlmProviderError, LlmRequest, LlmResponse, LlmUsage, is_transient_http_status,
)
from ...config import VERTEX_LOCATION, MODEL_NAME, LLM_TIMEOUT_MS, MAX_OUTPUT_TOKENS

logger = logging.getLogger("llm_client")

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


class VertexRestClient(LlmProvider):
    """REST-based client for Vertex AI Gemini models."""

    name = "vertex"

    def __init__(self,
                 project: Optional[str],
                 location: str = VERTEX_LOCATION,
                 model: str = MODEL_NAME,
                 credentials_json: Optional[str] = None,
                 timeout_ms: int = LLM_TIMEOUT_MS,
                 max_output_tokens: int = MAX_OUTPUT_TOKENS,
                 session: Optional[requests.Session] = None):
        self.project = project
        self.location = location
        self.model = model
        self.credentials_json = credentials_json
        self.timeout_ms = timeout_ms
        self.max_output_tokens = max_output_tokens
        self.base_url = f"https://{self.location}-aiplatform.googleapis.com/v1"
        self.model_resource = f"projects/{self.project}/locations/{self.location}/publishers/google/models/{self.model}"
        self._session = session or requests.Session()
        self._token: Optional[str] = None

    def _refresh_token(self):
        """Refresh the OAuth token for API calls."""
        if self.credentials_json:
            creds = service_account.Credentials.from_service_account_file(
                self.credentials_json,
                scopes=[CLOUD_PLATFORM_SCOPE],
            )
        else:
            creds, _ = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])

        auth_req = google.auth.transport.requests.Request()
        creds.refresh(auth_req)
        self._token = creds.token

    def _ensure_token(self):
        """Ensure we have a valid token, refreshing if needed."""
        if self._token:
            return
        try:
            self._refresh_token()
        except google.auth.exceptions.TransportError as e:
            raise LlmProviderError(f"Vertex token refresh failed: {e}", transient=True)
        except (google.auth.exceptions.GoogleAuthError, OSError) as e:
            raise LlmProviderError(f"Vertex credentials unavailable: {e}", transient=False)

    def build_request_body(self, request: LlmRequest) -> Dict[str, Any]:
        return {
            "systemInstruction": {"parts": [{"text": request.system_prompt}]},
            "contents": [
                {
                    "role": "user",
                    "parts": [{"text": request.user_prompt}],
                }
            ],
            "generationConfig": {
                "temperature": 0.0,
                "maxOutputTokens": int(self.max_output_tokens),
                "responseMimeType": "application/json",
            },
        }

    def generate_text(self, request: LlmRequest) -> LlmResponse:
        """Generate content using the Vertex AI REST API."""
        if not self.project:
            raise LlmProviderError("GOOGLE_CLOUD_PROJECT is not configured", transient=False)
        if request.cancelled:
            raise LlmProviderError("Request cancelled before dispatch", transient=True)

        self._ensure_token()
        url = f"{self.base_url}/{self.model_resource}:generateContent"
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }
        timeout_seconds = (request.timeout_ms or self.timeout_ms) / 1000.0

        try:
            resp = self._session.post(url, headers=headers, json=self.build_request_body(request), timeout=timeout_seconds)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise LlmProviderError(f"Vertex request failed: {e}", transient=True)
        except requests.RequestException as e:
            raise LlmProviderError(f"Vertex request failed: {e}", transient=False)

        if request.cancelled:
            raise LlmProviderError("Request cancelled after timeout", transient=True)

        if resp.status_code == 401:
            # Expired token: drop it so the retry refreshes
            self._token = None
            raise LlmProviderError("Vertex rejected the access token", transient=True, status=401)
        if resp.status_code >= 400:
            raise LlmProviderError(
                f"Vertex REST error {resp.status_code}: {resp.text[:500]}",
                transient=is_transient_http_status(resp.status_code),
                status=resp.status_code,
            )

        try:
            resp_json = resp.json()
        except ValueError:
            raise LlmProviderError("Vertex response body was not JSON", transient=False, status=resp.status_code)

        return LlmResponse(
            text=self._parse_response_text(resp_json),
            model=resp_json.get("modelVersion") or self.model,
            provider=self.name,
            usage=self._parse_usage(resp_json),
        )

    def _parse_response_text(self, resp_json: Dict[str, Any]) -> str:
        """
        Parse response JSON to extract text content.
        Vertex schema: candidates[0].content.parts[*].text
        """
        cands = resp_json.get("candidates") or []
        if cands and isinstance(cands[0], dict):
            content = cands[0].get("content") or {}
            parts = content.get("parts") or []
            texts = [p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
            if texts:
                return "".join(texts)
        if isinstance(resp_json.get("text"), str):
            return resp_json["text"]
        logger.warning("Vertex response carried no text parts")
        return ""

    def _parse_usage(self, resp_json: Dict[str, Any]) -> Optional[LlmUsage]:
        usage = resp_json.get("usageMetadata")
        if not isinstance(usage, dict):
            return None
        return LlmUsage(
            input_tokens=int(usage.get("promptTokenCount") or 0),
            output_tokens=int(usage.get("candidatesTokenCount") or 0),
        )
