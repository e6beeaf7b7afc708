"""Registry of pixel collections keyed by browsing context."""

from __future__ import annotations

from pixeltrack.pixels.collection import ClassificationPolicy, PixelCollection


class ContextRegistry:
    """Owns one ``PixelCollection`` per browsing context.

    Collections are created lazily on the first pixel of a context and
    dropped once they are empty or their context goes away.
    """

    def __init__(self, policy: ClassificationPolicy | None = None) -> None:
        self._policy = policy or ClassificationPolicy()
        self._collections: dict[int, PixelCollection] = {}

    @property
    def policy(self) -> ClassificationPolicy:
        return self._policy

    def __contains__(self, context_id: object) -> bool:
        return context_id in self._collections

    def __len__(self) -> int:
        return len(self._collections)

    def context_ids(self) -> list[int]:
        return list(self._collections)

    def get(self, context_id: int) -> PixelCollection | None:
        return self._collections.get(context_id)

    def get_or_create(self, context_id: int) -> PixelCollection:
        collection = self._collections.get(context_id)
        if collection is None:
            collection = PixelCollection(context_id=context_id, policy=self._policy)
            self._collections[context_id] = collection
        return collection

    def remove(self, context_id: int) -> PixelCollection | None:
        return self._collections.pop(context_id, None)

    def snapshot(self, context_id: int) -> PixelCollection:
        """Copy of a context's collection, or an empty one for unknown contexts."""
        collection = self._collections.get(context_id)
        if collection is None:
            return PixelCollection(context_id=context_id, policy=self._policy)
        return collection.snapshot()
