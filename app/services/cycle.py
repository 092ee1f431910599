from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from app.core.logger import get_logger
from app.core.timeutils import isoformat_utc
from app.data.sports import SPORTS_TO_PROCESS
from app.services.aggregator import reset_all_snapshot

log = get_logger("services.cycle")

JOB_STATE_KEY = "update_job_state"
CYCLE_COMPLETED_KEY = "update_cycle_completed"
LAST_SUCCESSFUL_RUN_KEY = "last_successful_run_timestamp"


@dataclass(frozen=True)
class CycleStep:
    index: int
    sport: str
    cycle_started: bool


class CycleScheduler:
    """Round-robin cursor over the sports list.

    The cross-sport snapshot is emptied once at the start of every cycle
    whose predecessor ran to completion; each advance past the last sport
    closes the cycle and stamps ``last_successful_run_timestamp``.
    """

    def __init__(self, store, sports: Sequence[str] = SPORTS_TO_PROCESS):
        if not sports:
            raise ValueError("CycleScheduler needs at least one sport")
        self.store = store
        self.sports = tuple(sports)

    @property
    def size(self) -> int:
        return len(self.sports)

    async def current_index(self) -> int:
        state = await self.store.get_persistent(JOB_STATE_KEY)
        raw = state.get("nextSportIndex") if isinstance(state, dict) else None
        try:
            index = int(raw)
        except (TypeError, ValueError):
            return 0
        if index < 0 or index >= self.size:
            log.warning("cycle cursor out of range index=%s size=%s; restarting at 0", index, self.size)
            return 0
        return index

    async def is_cycle_completed(self) -> bool:
        raw = await self.store.get_persistent(CYCLE_COMPLETED_KEY)
        if raw is None:
            return True
        return str(raw).strip().lower() == "true"

    async def begin_step(self) -> CycleStep:
        index = await self.current_index()
        started = False
        if index == 0 and await self.is_cycle_completed():
            await reset_all_snapshot(self.store)
            await self.store.put_persistent(CYCLE_COMPLETED_KEY, "false")
            started = True
            log.info("cycle started sports=%s", ",".join(self.sports))
        return CycleStep(index=index, sport=self.sports[index], cycle_started=started)

    async def advance(self, *, now: Optional[datetime] = None) -> bool:
        """Move the cursor one sport forward; True when the cycle wrapped."""
        index = (await self.current_index() + 1) % self.size
        await self.store.put_persistent(JOB_STATE_KEY, {"nextSportIndex": index})
        if index != 0:
            return False
        await self.store.put_persistent(CYCLE_COMPLETED_KEY, "true")
        await self.store.put_persistent(LAST_SUCCESSFUL_RUN_KEY, isoformat_utc(now))
        log.info("cycle completed sports=%s", self.size)
        return True

    async def state(self) -> dict:
        index = await self.current_index()
        return {
            "nextSportIndex": index,
            "sport": self.sports[index],
            "cycleCompleted": await self.is_cycle_completed(),
            "sports": list(self.sports),
        }
