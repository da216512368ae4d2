import enum


class GateState(enum.Enum):
    UNCONVINCED = "unconvinced"
    CONVINCED = "convinced"


class TradingGate:
    """One-way convinced flag per user, stored in the local conversation store."""

    def __init__(self, store) -> None:
        self.store = store

    async def is_convinced(self, user_id: str) -> bool:
        return await self.store.get_convinced(user_id)

    async def mark_convinced(self, user_id: str) -> None:
        await self.store.set_convinced(user_id)

    async def state(self, user_id: str) -> GateState:
        if await self.is_convinced(user_id):
            return GateState.CONVINCED
        return GateState.UNCONVINCED
