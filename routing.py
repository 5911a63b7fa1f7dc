import logging
from typing import Dict, Iterable, List

logger = logging.getLogger(__name__)


class ModelRouter:
    """
    Maps client-facing model names (gpt-4, claude-3-opus, ...) to NIM model ids.
    Unknown names fall back to the large or small backend model depending on
    whether the name contains one of the large-tier markers.
    """

    def __init__(
        self,
        mapping: Dict[str, str],
        large_markers: Iterable[str],
        large_model: str,
        small_model: str,
    ):
        self._mapping = dict(mapping)
        self._large_markers = tuple(marker.lower() for marker in large_markers)
        self.large_model = large_model
        self.small_model = small_model

    @classmethod
    def from_settings(cls, settings) -> "ModelRouter":
        return cls(
            mapping=settings.MODEL_MAPPING,
            large_markers=settings.LARGE_MODEL_MARKERS,
            large_model=settings.FALLBACK_LARGE_MODEL,
            small_model=settings.FALLBACK_SMALL_MODEL,
        )

    def client_models(self) -> List[str]:
        return list(self._mapping)

    def resolve(self, client_model: str) -> str:
        backend_model = self._mapping.get(client_model)
        if backend_model:
            return backend_model

        logger.info(f"No mapping found for model '{client_model}', using fallback")
        model_lower = (client_model or "").lower()
        if any(marker in model_lower for marker in self._large_markers):
            return self.large_model
        return self.small_model
