from __future__ import annotations

import logging

import httpx
from pydantic import AliasChoices, BaseModel, Field, ValidationError

from services.uploader.application.interfaces import CredentialClient
from services.uploader.domain.errors import CredentialDenied, UnexpectedStatus
from services.uploader.domain.upload import CredentialSet, UploadSession
from services.uploader.infrastructure.http import body_snippet, translate_transport_errors

LOGGER = logging.getLogger(__name__)


class CredentialPayload(BaseModel):
    video_write_url: str | None = Field(
        default=None, validation_alias=AliasChoices("videoSasUrl", "videoWriteUrl")
    )
    audio_write_url: str | None = Field(
        default=None, validation_alias=AliasChoices("audioSasUrl", "audioWriteUrl")
    )
    blob_prefix: str | None = Field(default=None, validation_alias="blobPrefix")
    status_channel_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("statusChannelUrl", "statusUrl", "hubUrl"),
    )


class CredentialResponse(BaseModel):
    success: bool = False
    message: str | None = None
    payload: CredentialPayload | None = None


class HttpCredentialClient(CredentialClient):
    def __init__(
        self, client: httpx.AsyncClient, *, api_base_url: str, debug: bool = False
    ) -> None:
        self._client = client
        self._url = f"{api_base_url.rstrip('/')}/Video/sas"
        self._debug = debug

    async def fetch_credentials(self, session: UploadSession) -> CredentialSet:
        request_data = {
            "companyIdFromUserToken": session.company_id,
            "sessionId": session.session_id,
            "streamId": session.stream_id,
        }
        LOGGER.info("Requesting write URLs from %s", self._url)
        async with translate_transport_errors("credential exchange"):
            response = await self._client.post(self._url, json=request_data)

        if response.status_code in (401, 403):
            raise CredentialDenied(
                f"Credential exchange rejected with HTTP {response.status_code}"
            )
        if not response.is_success:
            raise UnexpectedStatus(
                f"Credential exchange returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=body_snippet(response),
            )
        try:
            envelope = CredentialResponse.model_validate_json(response.content)
        except ValidationError as exc:
            raise UnexpectedStatus(
                "Credential exchange returned an unreadable body",
                status_code=response.status_code,
                body=body_snippet(response),
            ) from exc

        if not envelope.success:
            raise CredentialDenied(
                envelope.message or "Credential exchange returned success: false"
            )
        payload = envelope.payload
        if payload is None or not payload.video_write_url or not payload.audio_write_url:
            raise CredentialDenied("Credential payload is missing a write URL")
        if not payload.blob_prefix:
            raise CredentialDenied("Credential payload is missing the blob prefix")
        for url in (payload.video_write_url, payload.audio_write_url):
            try:
                httpx.URL(url)
            except httpx.InvalidURL as exc:
                raise CredentialDenied(
                    f"Credential payload has an invalid write URL: {exc}"
                ) from exc

        credentials = CredentialSet(
            video_write_url=payload.video_write_url,
            audio_write_url=payload.audio_write_url,
            blob_prefix=payload.blob_prefix,
            status_channel_url=payload.status_channel_url,
        )
        if self._debug:
            LOGGER.debug("Credentials: %r", credentials)
        return credentials
