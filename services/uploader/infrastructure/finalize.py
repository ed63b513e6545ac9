from __future__ import annotations

import logging
from typing import Any

import httpx

from services.uploader.application.interfaces import FinalizeClient
from services.uploader.domain.errors import FinalizeFailed, TransportError
from services.uploader.domain.upload import FinalizeRequest
from services.uploader.infrastructure.http import body_snippet, translate_transport_errors

LOGGER = logging.getLogger(__name__)


class HttpFinalizeClient(FinalizeClient):
    def __init__(
        self, client: httpx.AsyncClient, *, api_base_url: str, debug: bool = False
    ) -> None:
        self._client = client
        self._url = f"{api_base_url.rstrip('/')}/Video/finalize"
        self._debug = debug

    async def finalize(self, request: FinalizeRequest) -> Any:
        LOGGER.info(
            "Requesting processing of %s into %s",
            request.blob_prefix,
            request.output_file_name,
        )
        try:
            async with translate_transport_errors("finalize"):
                response = await self._client.post(
                    self._url, json=request.to_payload()
                )
        except TransportError as exc:
            raise FinalizeFailed(str(exc)) from exc

        if response.status_code != 200:
            if self._debug:
                LOGGER.debug("Finalize response body: %s", body_snippet(response))
            raise FinalizeFailed(
                f"Finalize returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            ack = response.json()
        except ValueError:
            # Undecodable or non-JSON acknowledgments are kept as text.
            ack = response.text
        if self._debug:
            LOGGER.debug("Finalize acknowledgment: %s", ack)
        return ack
