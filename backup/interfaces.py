"""Collaborators the pipelines talk to."""

from __future__ import annotations

from typing import Any, AsyncIterator, Mapping, Protocol, Sequence, runtime_checkable


@runtime_checkable
class DocumentStore(Protocol):
    """Database the pipelines dump from and restore into."""

    @property
    def database_name(self) -> str: ...

    @property
    def is_connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def list_collections(self) -> list[str]: ...

    def stream_documents(
        self, collection: str, query: Mapping[str, Any] | None = None
    ) -> AsyncIterator[dict[str, Any]]: ...

    async def drop_collection(self, collection: str) -> bool: ...

    async def bulk_insert(self, collection: str, documents: Sequence[Mapping[str, Any]]) -> int: ...

    async def create_collection(self, collection: str) -> None: ...


class Authenticator(Protocol):
    def verify(self) -> bool: ...


class Confirmer(Protocol):
    def ask_yes_no(self, prompt: str) -> bool: ...
