from __future__ import annotations

from typing import TYPE_CHECKING, Any, AsyncGenerator, Callable, Protocol

if TYPE_CHECKING:
    from services.uploader.domain.blocks import BlockListManifest
    from services.uploader.domain.upload import (
        CredentialSet,
        FinalizeRequest,
        UploadSession,
    )


class CredentialClient(Protocol):
    async def fetch_credentials(self, session: "UploadSession") -> "CredentialSet": ...


class BlockStore(Protocol):
    async def put_block(
        self, *, destination_url: str, block_id: str, data: bytes
    ) -> None: ...

    async def commit_block_list(
        self, *, destination_url: str, manifest: "BlockListManifest"
    ) -> None: ...


class FinalizeClient(Protocol):
    async def finalize(self, request: "FinalizeRequest") -> Any: ...


class StatusChannel(Protocol):
    """A persistent connection yielding raw text messages until it closes."""

    def messages(self) -> AsyncGenerator[str, None]: ...


StatusChannelFactory = Callable[[str, str], StatusChannel]
