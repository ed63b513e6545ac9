from __future__ import annotations

import logging

import httpx

from services.uploader.application.interfaces import BlockStore
from services.uploader.domain.blocks import BlockListManifest
from services.uploader.domain.errors import CommitRejected, UnexpectedStatus
from services.uploader.domain.upload import strip_sas_token
from services.uploader.infrastructure.http import body_snippet, translate_transport_errors

LOGGER = logging.getLogger(__name__)

CREATED = 201


def block_url(destination_url: str, block_id: str) -> httpx.URL:
    return httpx.URL(destination_url).copy_merge_params(
        {"comp": "block", "blockid": block_id}
    )


def block_list_url(destination_url: str) -> httpx.URL:
    return httpx.URL(destination_url).copy_merge_params({"comp": "blocklist"})


class AzureBlockBlobStore(BlockStore):
    """Stages and commits blocks against a SAS write URL."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def put_block(
        self, *, destination_url: str, block_id: str, data: bytes
    ) -> None:
        async with translate_transport_errors("put block"):
            response = await self._client.put(
                block_url(destination_url, block_id),
                content=data,
                headers={
                    "Content-Type": "application/octet-stream",
                    "x-ms-blob-type": "BlockBlob",
                },
            )
        if response.status_code != CREATED:
            LOGGER.error(
                "Block %s to %s returned HTTP %d",
                block_id,
                strip_sas_token(destination_url),
                response.status_code,
            )
            raise UnexpectedStatus(
                f"Put block returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=body_snippet(response),
            )

    async def commit_block_list(
        self, *, destination_url: str, manifest: BlockListManifest
    ) -> None:
        async with translate_transport_errors("put block list"):
            response = await self._client.put(
                block_list_url(destination_url),
                content=manifest.to_xml(),
                headers={"Content-Type": "application/xml"},
            )
        if response.status_code != CREATED:
            raise CommitRejected(
                f"Block list for {strip_sas_token(destination_url)} rejected with "
                f"HTTP {response.status_code}: {body_snippet(response)}",
                status_code=response.status_code,
            )
