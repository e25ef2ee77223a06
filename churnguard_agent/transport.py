"""HTTP transport between the agent and the collection API."""

import logging
from typing import Any, Dict, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """An event could not be delivered (transport error or non-2xx response)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PredictionError(Exception):
    """The prediction endpoint could not be reached or rejected the request."""


class Transport(Protocol):
    async def send(self, payload: Dict[str, Any]) -> None: ...

    async def fetch_prediction(self, api_key: str, user_id: str) -> Dict[str, Any]: ...


class HttpTransport:
    """httpx based transport.

    A client passed in is shared and left open by `aclose`; otherwise the
    transport owns its client.
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = endpoint.rstrip('/')
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, payload: Dict[str, Any]) -> None:
        """POST one event envelope.

        Raises:
            DeliveryError: On transport errors and non-2xx responses
        """
        try:
            response = await self._client.post(f'{self.endpoint}/track-event', json=payload)
        except httpx.HTTPError as e:
            raise DeliveryError(f'Transport error: {e}') from e

        if not response.is_success:
            raise DeliveryError(f'HTTP error {response.status_code}', status_code=response.status_code)

    async def fetch_prediction(self, api_key: str, user_id: str) -> Dict[str, Any]:
        """Fetch the current prediction of a user.

        Raises:
            PredictionError: On transport errors, non-2xx responses or malformed bodies
        """
        try:
            response = await self._client.post(
                f'{self.endpoint}/predict-churn',
                json={'apiKey': api_key, 'userId': user_id},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise PredictionError(f'Prediction request failed: HTTP {e.response.status_code}') from e
        except (httpx.HTTPError, ValueError) as e:
            raise PredictionError(f'Prediction request failed: {e}') from e

        prediction = data.get('prediction') if isinstance(data, dict) else None
        if not isinstance(prediction, dict):
            raise PredictionError('Prediction missing from response')
        return prediction

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
