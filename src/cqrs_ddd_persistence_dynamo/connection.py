"""DynamoConnectionManager — shared aiobotocore DynamoDB client lifecycle."""

from __future__ import annotations

from types import TracebackType
from typing import Any

from aiobotocore.session import AioSession
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import DynamoConnectionError


class DynamoConnectionManager:
    """Manages one aiobotocore DynamoDB client shared by every repository.

    The client is created lazily and is safe to use from concurrent
    coroutines; no locking happens at this level.
    """

    def __init__(
        self,
        region_name: str = "us-east-1",
        *,
        endpoint_url: str | None = None,
        session: AioSession | None = None,
        **client_kwargs: Any,
    ) -> None:
        """Configure region, optional endpoint (e.g. DynamoDB Local) and session."""
        self._region = region_name
        self._endpoint_url = endpoint_url
        self._session = session or AioSession()
        self._client_kwargs = client_kwargs
        self._client: Any = None
        self._client_cm: Any = None

    async def get_client(self) -> Any:
        """Return shared DynamoDB client; create if needed."""
        if self._client is None:
            kwargs = dict(self._client_kwargs)
            if self._endpoint_url is not None:
                kwargs["endpoint_url"] = self._endpoint_url
            try:
                self._client_cm = self._session.create_client(
                    "dynamodb",
                    region_name=self._region,
                    **kwargs,
                )
                self._client = await self._client_cm.__aenter__()
            except (BotoCoreError, ValueError) as e:
                self._client_cm = None
                raise DynamoConnectionError(str(e)) from e
        return self._client

    async def close(self) -> None:
        """Close the client if open."""
        if self._client_cm is not None:
            await self._client_cm.__aexit__(None, None, None)
            self._client_cm = None
            self._client = None

    async def health_check(self) -> bool:
        """Return True if we can list tables (lightweight check)."""
        try:
            client = await self.get_client()
            await client.list_tables(Limit=1)
            return True
        except (BotoCoreError, ClientError, DynamoConnectionError):
            return False

    async def __aenter__(self) -> DynamoConnectionManager:
        await self.get_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
