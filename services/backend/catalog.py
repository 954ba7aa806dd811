"""Model discovery, selection and loading."""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from models.chat_models import LoadState, ModelDescriptor
from services.backend.transport import BackendTransport
from services.chat.cancellation import CancellationToken
from services.chat.errors import (
    BackendUnreachableError,
    DiscoveryError,
    GenerationCancelled,
    ModelLoadError,
    ModelValidationError,
)

LOGGER = logging.getLogger(__name__)

EMBEDDING_KEYWORDS = ("embed", "embedding", "bge", "e5-", "gte-", "jina")

VISION_KEYWORDS = (
    "vision",
    "llava",
    "gemma-3",
    "pixtral",
    "devstral",
    "magistral",
    "qwen3-vl",
    "qwen2-vl",
    "qwen-vl",
    "bakllava",
    "obsidian",
    "moondream",
    "minicpm-v",
    "cogvlm",
    "glm-4v",
    "glm-4.6v",
    "internlm-xcomposer",
)

DEFAULT_FALLBACK_MODELS = (
    "google/gemma-3-12b",
    "llama-3.1-swallow-8b-instruct-v0.5",
    "qwen/qwen3-4b-2507",
)


def is_embedding_model(model_id: str) -> bool:
    lower = str(model_id).lower()
    return any(keyword in lower for keyword in EMBEDDING_KEYWORDS)


def is_vision_model(model_id: str) -> bool:
    lower = str(model_id).lower()
    return any(keyword in lower for keyword in VISION_KEYWORDS)


def display_sort_key(model_id: str) -> str:
    """Case-insensitive key on the id with any publisher path removed."""
    return model_id.rsplit("/", 1)[-1].casefold()


def resolve_selection(candidates: Iterable[Optional[str]], discovered: Sequence[str]) -> Optional[str]:
    """Return the first candidate present in ``discovered``.

    The first discovered id is always the last link of the chain, so a
    non-empty catalog always yields a selection.
    """
    available = set(discovered)
    chain = [candidate for candidate in candidates if candidate]
    if discovered:
        chain.append(discovered[0])
    for candidate in chain:
        if candidate in available:
            return candidate
    return None


def descriptor_from_entry(entry: Dict[str, Any]) -> Optional[ModelDescriptor]:
    """Build a descriptor from one management-catalog entry."""
    model_id = entry.get("key") or entry.get("id")
    if not model_id:
        return None

    instances = entry.get("loaded_instances")
    if isinstance(instances, list):
        state = LoadState.LOADED if instances else LoadState.NOT_LOADED
    elif entry.get("state") == LoadState.LOADED.value:
        state = LoadState.LOADED
    else:
        state = LoadState.NOT_LOADED

    quantization = entry.get("quantization")
    if isinstance(quantization, dict):
        quantization = quantization.get("name")

    capabilities = entry.get("capabilities") or {}
    if isinstance(capabilities, dict):
        vision_flag = bool(capabilities.get("vision"))
    else:
        vision_flag = "vision" in capabilities

    max_context = entry.get("max_context_length")
    return ModelDescriptor(
        id=str(model_id),
        load_state=state,
        vision_capable=vision_flag or is_vision_model(model_id),
        quantization=str(quantization) if quantization else None,
        max_context_length=int(max_context) if isinstance(max_context, int) and max_context > 0 else None,
    )


class ModelDirectory:
    """Discovered models plus the active selection for one backend.

    The directory is the only writer of its descriptors: a discovery pass
    replaces them wholesale and a successful load marks one as loaded.
    """

    def __init__(
        self,
        transport: BackendTransport,
        fallback_models: Sequence[str] = DEFAULT_FALLBACK_MODELS,
    ) -> None:
        self.transport = transport
        self.fallback_models = tuple(fallback_models)
        self.models: Dict[str, ModelDescriptor] = {}
        self.selection: Optional[str] = None
        self.management_available = False
        self.loading: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def discovered_ids(self) -> List[str]:
        return list(self.models)

    def contains(self, model_id: Optional[str]) -> bool:
        return bool(self.models) and model_id in self.models

    def get(self, model_id: str) -> Optional[ModelDescriptor]:
        return self.models.get(model_id)

    def validate(self, model_id: Optional[str]) -> ModelDescriptor:
        """Return the descriptor for ``model_id`` or block the submission."""
        if not model_id or not self.contains(model_id):
            raise ModelValidationError(f"Selected model was not found on the server: {model_id}")
        return self.models[model_id]

    async def discover(self, preferred: Optional[str] = None) -> Optional[str]:
        """Refresh the catalog and resolve the selection through the fallback chain.

        Args:
            preferred: Previously persisted choice; defaults to the current selection.

        Returns:
            The selected model id.

        Raises:
            BackendUnreachableError: If the server cannot be reached.
            DiscoveryError: If the catalog yields no usable model.
        """
        preferred = preferred if preferred is not None else self.selection
        async with self._lock:
            try:
                return await self._discover(preferred)
            except BackendUnreachableError:
                self.models = {}
                self.selection = None
                raise

    async def _discover(self, preferred: Optional[str]) -> Optional[str]:
        entries = await self.transport.fetch_management_catalog()
        descriptors: List[ModelDescriptor] = []
        if entries is not None:
            self.management_available = True
            for entry in entries:
                if str(entry.get("type") or "").lower() in ("embedding", "embeddings"):
                    continue
                descriptor = descriptor_from_entry(entry)
                if descriptor is not None:
                    descriptors.append(descriptor)
        else:
            self.management_available = False
            # The minimal listing only reports models that are already loaded.
            for model_id in await self.transport.list_model_ids():
                descriptors.append(ModelDescriptor(id=model_id, vision_capable=is_vision_model(model_id)))

        descriptors = [d for d in descriptors if not is_embedding_model(d.id)]
        descriptors.sort(key=lambda d: display_sort_key(d.id))
        self.models = {d.id: d for d in descriptors}

        self.selection = resolve_selection([preferred, *self.fallback_models], self.discovered_ids)
        LOGGER.info(
            "Discovered %d model(s) via %s listing; selected %s",
            len(self.models),
            "management" if self.management_available else "minimal",
            self.selection,
        )
        if self.selection is None:
            raise DiscoveryError("No usable models were found. Check the base URL, key and server state.")
        return self.selection

    async def select(self, model_id: str, token: Optional[CancellationToken] = None) -> ModelDescriptor:
        """Make ``model_id`` the active model, loading it first when needed.

        The prior selection stays active until the load succeeds; ``loading``
        names the model while its load is in flight.

        Raises:
            ModelValidationError: If the id was not discovered.
            ModelLoadError: If the remote load fails; the selection is unchanged.
        """
        descriptor = self.validate(model_id)
        if not (self.management_available and descriptor.load_state is LoadState.NOT_LOADED):
            self.selection = model_id
            LOGGER.info("Switched model to %s", descriptor.display_name)
            return descriptor

        self.loading = model_id
        LOGGER.info("Loading model %s", descriptor.display_name)
        try:
            if token is not None:
                token.raise_if_cancelled()
            await self.transport.load_model(model_id)
        except (ModelLoadError, GenerationCancelled) as exc:
            LOGGER.error("Loading %s failed; keeping %s: %s", model_id, self.selection, exc)
            raise
        except Exception as exc:
            LOGGER.error("Loading %s failed; keeping %s: %r", model_id, self.selection, exc)
            raise ModelLoadError(f"Load failed: {exc}") from exc
        finally:
            self.loading = None

        descriptor.load_state = LoadState.LOADED
        self.selection = model_id
        try:
            await self.discover(preferred=model_id)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            LOGGER.warning("Re-discovery after loading %s failed: %s", model_id, exc)
            if self.contains(model_id):
                self.selection = model_id
        LOGGER.info("Model %s loaded", descriptor.display_name)
        return self.models.get(model_id, descriptor)
