"""Backend readers used by the metadata cache on a miss.

The production reader goes through the kubernetes-asyncio dynamic client so
that any kind an event may refer to (built-in or custom resource) can be
fetched without a per-kind API class.
"""

from __future__ import annotations

from typing import Any, Protocol

from kexporter.models.events import ObjectReference


class ObjectNotFoundError(Exception):
    """The referenced object does not exist (anymore) on the API server."""

    def __init__(self, ref: ObjectReference) -> None:
        super().__init__(f"{ref} not found")
        self.ref = ref


class ObjectReader(Protocol):
    """Reads a single object document from the API server."""

    async def read(self, ref: ObjectReference) -> dict[str, Any]:
        """Return the object as a JSON-compatible dict.

        Raises:
            ObjectNotFoundError: if the object does not exist.
        """
        ...


class DynamicObjectReader:
    """ObjectReader backed by ``kubernetes_asyncio.dynamic.DynamicClient``.

    Discovery runs lazily on the first read; the DynamicClient caches the
    discovered resource list afterwards.
    """

    def __init__(self, api_client: Any) -> None:
        self._api_client = api_client
        self._client: Any = None

    async def _dynamic(self) -> Any:
        if self._client is None:
            from kubernetes_asyncio.dynamic import DynamicClient  # type: ignore[import-untyped]

            self._client = await DynamicClient(self._api_client)
        return self._client

    async def read(self, ref: ObjectReference) -> dict[str, Any]:
        from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]
        from kubernetes_asyncio.dynamic.exceptions import (  # type: ignore[import-untyped]
            NotFoundError,
            ResourceNotFoundError,
        )

        client = await self._dynamic()
        try:
            resource = await client.resources.get(api_version=ref.api_version or "v1", kind=ref.kind)
            obj = await client.get(resource, name=ref.name, namespace=ref.namespace or None)
        except (NotFoundError, ResourceNotFoundError) as exc:
            raise ObjectNotFoundError(ref) from exc
        except ApiException as exc:
            if exc.status == 404:
                raise ObjectNotFoundError(ref) from exc
            raise
        return obj.to_dict()
