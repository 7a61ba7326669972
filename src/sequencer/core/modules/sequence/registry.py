from sequencer.core.db import REVISION, SequenceStore
from sequencer.core.modules.sequence.models import SequenceConfig, SequenceState

CONFIG_SEGMENT = "sequence:config:"
STATE_SEGMENT = "sequence:state:"


class SequenceRegistry:
    """Typed access to the configs and states of one domain.

    Storage keys are namespaced as ``<domain>:sequence:config:<key>`` and
    ``<domain>:sequence:state:<key>`` so equal keys in different domains never
    collide. Holds no business rules.
    """

    def __init__(self, store: SequenceStore, domain: str) -> None:
        self._store = store
        self.domain = domain

    def _config_key(self, key: str) -> str:
        return f"{self.domain}:{CONFIG_SEGMENT}{key}"

    def _state_key(self, key: str) -> str:
        return f"{self.domain}:{STATE_SEGMENT}{key}"

    async def get_config(self, key: str) -> SequenceConfig | None:
        data = await self._store.get(self._config_key(key))
        if data is None:
            return None
        data.pop(REVISION, None)
        return SequenceConfig.model_validate(data)

    async def put_config(self, key: str, config: SequenceConfig) -> None:
        await self._store.put(self._config_key(key), config.model_dump(mode="json"))

    async def delete_config(self, key: str) -> bool:
        return await self._store.delete(self._config_key(key))

    async def get_state(self, key: str) -> SequenceState:
        """Stored state, or a fresh zero state (revision 0) when none exists."""
        data = await self._store.get(self._state_key(key))
        if data is None:
            return SequenceState()
        return SequenceState.model_validate(data)

    async def put_state(self, key: str, state: SequenceState) -> None:
        await self._store.put(self._state_key(key), state.model_dump(mode="json", exclude={"revision"}))

    async def swap_state(self, key: str, state: SequenceState) -> bool:
        """Write state only if the stored revision still equals state.revision."""
        return await self._store.swap(
            self._state_key(key), state.model_dump(mode="json", exclude={"revision"}), state.revision
        )

    async def delete_state(self, key: str) -> bool:
        return await self._store.delete(self._state_key(key))

    async def list_keys(self) -> list[str]:
        """Keys that have a stored config in this domain."""
        prefix = self._config_key("")
        return [k.removeprefix(prefix) for k in await self._store.keys(prefix)]
