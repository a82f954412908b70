"""
Duel Lifecycle Manager

The per-guild state machine that drives the duel cycle:

    Idle -> Voting -> Cooldown -> Voting -> ...
    any  -> Paused -> (state rebuilt from persisted rows)

State is never kept in memory. It is derived on demand from the guild's
configuration flags, its ActiveDuel row and the end time of its last
concluded duel, which is what lets the manager survive restarts: timers are
only a latency optimisation and reconciliation re-creates them.

Concurrency:
- one asyncio.Lock per guild serialises start, resolve and vote
- an optional Redis lock extends resolution exclusion across processes
- the resolver's compare-and-swap on duels.ended_at makes double resolution
  impossible even without either lock
"""

import asyncio
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, Optional, Set, Tuple

from duel_bot.database.models import ActiveDuel, AuditAction, Duel, GuildConfig, Image
from duel_bot.operations.duel_resolver import DuelResolver, ResolutionResult
from duel_bot.operations.matchup_selector import MatchupSelector
from duel_bot.operations.vote_ledger import VoteLedger, VoteOutcome
from duel_bot.services.audit_log import AuditLogService
from duel_bot.services.duel_scheduler import DuelScheduler, TimerKind
from duel_bot.services.guild_config import GuildConfigService
from duel_bot.services.redis_cache import ResolutionLock, TallyCache
from duel_bot.utils.clock import utcnow
from duel_bot.utils.exceptions import (
    AlreadyResolvedError, CollaboratorUnavailableError, ConfigMissingError,
    DuelAlreadyRunningError, DuelInvariantError, DuelPausedError,
    InsufficientPoolError, InvalidTargetError, NoActiveDuelError
)
from duel_bot.utils.logger import setup_logger

if TYPE_CHECKING:
    from duel_bot.ui.duel_presenter import DuelPresenter

logger = setup_logger(__name__)


class DuelState(Enum):
    IDLE = "idle"
    VOTING = "voting"
    COOLDOWN = "cooldown"
    PAUSED = "paused"


@dataclass
class DuelOpening:
    """What the presentation layer needs to post a new duel"""
    guild_id: int
    duel_id: int
    image1: Image
    image2: Image
    ends_at: datetime
    is_wildcard: bool = False


class DuelLifecycleManager:
    def __init__(self, database, presenter: Optional['DuelPresenter'] = None,
                 scheduler: Optional[DuelScheduler] = None,
                 selector: Optional[MatchupSelector] = None,
                 leaderboard_service=None,
                 resolution_lock: Optional[ResolutionLock] = None,
                 tally_cache: Optional[TallyCache] = None,
                 clock: Callable[[], datetime] = utcnow,
                 rng: Optional[random.Random] = None):
        self.db = database
        self.presenter = presenter
        self.clock = clock
        self.scheduler = scheduler or DuelScheduler(clock=clock)
        self.config_service = GuildConfigService(database.session_factory)
        self.audit = AuditLogService(database.session_factory)
        self.selector = selector or MatchupSelector(database, rng=rng)
        self.ledger = VoteLedger(database)
        self.resolver = DuelResolver(database, leaderboard_service=leaderboard_service, clock=clock)
        self.resolution_lock = resolution_lock or ResolutionLock(None)
        self.tally_cache = tally_cache or TallyCache(None)
        self.logger = logger

        self._locks: Dict[int, asyncio.Lock] = {}
        # Duels whose resolution hit an invariant violation; left open for an operator
        self._faulted: Set[int] = set()

    def _lock(self, guild_id: int) -> asyncio.Lock:
        lock = self._locks.get(guild_id)
        if lock is None:
            lock = self._locks[guild_id] = asyncio.Lock()
        return lock

    async def _require_config(self, guild_id: int) -> GuildConfig:
        config = await self.config_service.get(guild_id)
        if config is None or not config.is_configured:
            raise ConfigMissingError(guild_id)
        return config

    # ------------------------------------------------------------------
    # Queries

    async def get_active_duel(self, guild_id: int) -> Optional[ActiveDuel]:
        return await self.db.get_active_duel(guild_id)

    async def get_state(self, guild_id: int) -> DuelState:
        config = await self.config_service.get(guild_id)
        active = await self.db.get_active_duel(guild_id)
        state = self._derive_state(config, active)
        # Enabled but nothing is due: the last start failed for lack of images
        if state is DuelState.COOLDOWN and await self.next_start_at(config) <= self.clock():
            return DuelState.IDLE
        return state

    @staticmethod
    def _derive_state(config: Optional[GuildConfig], active: Optional[ActiveDuel]) -> DuelState:
        if config is None or not config.is_configured:
            return DuelState.IDLE
        if config.duel_paused:
            return DuelState.PAUSED
        if active is not None:
            return DuelState.VOTING
        if config.duel_active:
            return DuelState.COOLDOWN
        return DuelState.IDLE

    async def get_tally(self, guild_id: int) -> Optional[Dict[int, int]]:
        """Live counts for the open duel, from the cache when available"""
        active = await self.db.get_active_duel(guild_id)
        if active is None:
            return None
        cached = await self.tally_cache.fetch(active.duel_id)
        if cached is not None:
            return cached
        return await self.ledger.get_tally(active.duel_id)

    async def next_start_at(self, config: GuildConfig) -> datetime:
        """When the cooldown after the last concluded duel elapses"""
        last_end = await self.db.get_last_duel_end(config.guild_id)
        if last_end is None:
            return self.clock()
        return last_end + timedelta(seconds=config.duel_interval)

    # ------------------------------------------------------------------
    # Manual overrides

    async def start_duel(self, guild_id: int, admin_id: Optional[int] = None) -> Optional[DuelOpening]:
        """
        Start a duel now, bypassing any cooldown, and enable the cycle.

        Returns None when the pool is too small. The guild stays Idle but the
        cycle stays enabled, so reconciliation retries once images are added.

        Raises:
            ConfigMissingError, DuelPausedError, DuelAlreadyRunningError
        """
        async with self._lock(guild_id):
            config = await self._require_config(guild_id)
            if config.duel_paused:
                raise DuelPausedError(guild_id)
            if await self.db.get_active_duel(guild_id):
                raise DuelAlreadyRunningError(guild_id)

            await self.config_service.set_cycle_flags(guild_id, active=True)
            await self.audit.record(guild_id, AuditAction.DUEL_CONTROL, admin_id, action='start')
            self.scheduler.cancel(guild_id)
            return await self._open_window(config, admin_id=admin_id)

    async def stop_duel(self, guild_id: int, admin_id: Optional[int] = None) -> Optional[ResolutionResult]:
        """
        Disable the cycle. An open window is resolved immediately with the
        votes it has. Ends in Idle from any state, including Paused.
        """
        async with self._lock(guild_id):
            config = await self._require_config(guild_id)
            self.scheduler.cancel(guild_id)
            await self.config_service.set_cycle_flags(guild_id, active=False, paused=False)
            await self.audit.record(guild_id, AuditAction.DUEL_CONTROL, admin_id, action='stop')

            active = await self.db.get_active_duel(guild_id)
            if active is None:
                self.logger.info(f"Duel cycle stopped for guild {guild_id}")
                return None
            result = await self._resolve(config, active, force=True, admin_id=admin_id)
            self.logger.info(f"Duel cycle stopped for guild {guild_id} after resolving duel {active.duel_id}")
            return result

    async def skip_duel(self, guild_id: int,
                        admin_id: Optional[int] = None) -> Tuple[Optional[ResolutionResult], Optional[DuelOpening]]:
        """
        Resolve the open window now and immediately open the next one.

        Raises:
            ConfigMissingError, DuelPausedError, NoActiveDuelError
        """
        async with self._lock(guild_id):
            config = await self._require_config(guild_id)
            if config.duel_paused:
                raise DuelPausedError(guild_id)
            active = await self.db.get_active_duel(guild_id)
            if active is None:
                raise NoActiveDuelError(guild_id)

            self.scheduler.cancel(guild_id)
            await self.audit.record(guild_id, AuditAction.DUEL_CONTROL, admin_id,
                                    action='skip', duel_id=active.duel_id)
            result = await self._resolve(config, active, force=True, admin_id=admin_id)
            if await self.db.get_active_duel(guild_id):
                # Resolution did not go through, the window is still open
                return result, None

            await self.config_service.set_cycle_flags(guild_id, active=True)
            opening = await self._open_window(config, admin_id=admin_id)
            return result, opening

    async def pause_duel(self, guild_id: int, admin_id: Optional[int] = None) -> None:
        """Freeze the guild. The open window, if any, stays on the ledger untouched."""
        async with self._lock(guild_id):
            await self._require_config(guild_id)
            self.scheduler.cancel(guild_id)
            await self.config_service.set_cycle_flags(guild_id, paused=True)
            await self.audit.record(guild_id, AuditAction.DUEL_CONTROL, admin_id, action='pause')
            self.logger.info(f"Duels paused for guild {guild_id}")

    async def resume_duel(self, guild_id: int, admin_id: Optional[int] = None) -> DuelState:
        """Unpause and rebuild the state the persisted rows describe"""
        async with self._lock(guild_id):
            await self._require_config(guild_id)
            await self.config_service.set_cycle_flags(guild_id, paused=False)
            await self.audit.record(guild_id, AuditAction.DUEL_CONTROL, admin_id, action='resume')
            self.logger.info(f"Duels resumed for guild {guild_id}")
            config = await self.config_service.get(guild_id)
            return await self._reconcile(config)

    async def cast_vote(self, guild_id: int, voter_id: int, image_id: int,
                        duel_id: Optional[int] = None) -> VoteOutcome:
        """
        Record or change a vote in the guild's open duel. When `duel_id` is
        given (from a posted button) it must still be the open duel.

        Raises:
            DuelPausedError, NoActiveDuelError, InvalidTargetError, DuplicateVoteError
        """
        async with self._lock(guild_id):
            config = await self.config_service.get(guild_id)
            if config is not None and config.duel_paused:
                raise DuelPausedError(guild_id)

            active = await self.db.get_active_duel(guild_id)
            if active is None or active.ends_at <= self.clock():
                raise NoActiveDuelError(guild_id)
            if active.duel_id in self._faulted:
                raise NoActiveDuelError(guild_id)
            if duel_id is not None and duel_id != active.duel_id:
                raise InvalidTargetError(duel_id, image_id)

            try:
                outcome = await self.ledger.cast_or_change_vote(active.duel_id, voter_id, image_id)
            except AlreadyResolvedError:
                raise NoActiveDuelError(guild_id) from None

            await self.tally_cache.store(active.duel_id, await self.ledger.get_tally(active.duel_id))
            return outcome

    # ------------------------------------------------------------------
    # Recovery and reconciliation

    async def recover_all(self) -> Dict[int, DuelState]:
        """Rebuild every configured guild's timers from persisted state (process start)"""
        states = await self.reconcile_all()
        self.logger.info(f"Recovered duel state for {len(states)} guild(s)")
        return states

    async def reconcile_all(self) -> Dict[int, DuelState]:
        """Liveness sweep across all configured guilds. One failing guild never blocks the others."""
        states = {}
        for config in await self.config_service.list_configured_guilds():
            try:
                states[config.guild_id] = await self.reconcile_guild(config.guild_id)
            except Exception as e:
                self.logger.error(f"Reconciliation failed for guild {config.guild_id}: {e}", exc_info=True)
        return states

    async def reconcile_guild(self, guild_id: int) -> DuelState:
        async with self._lock(guild_id):
            config = await self.config_service.get(guild_id)
            return await self._reconcile(config)

    async def _reconcile(self, config: Optional[GuildConfig]) -> DuelState:
        """Bring timers in line with persisted rows. Caller holds the guild lock."""
        if config is None or not config.is_configured:
            if config is not None:
                self.scheduler.cancel(config.guild_id)
            return DuelState.IDLE

        guild_id = config.guild_id
        if config.duel_paused:
            self.scheduler.cancel(guild_id)
            return DuelState.PAUSED

        active = await self.db.get_active_duel(guild_id)
        if active is not None:
            if active.duel_id in self._faulted:
                return DuelState.VOTING
            if active.ends_at > self.clock():
                timer = self.scheduler.get(guild_id)
                if timer is None or timer.kind != TimerKind.VOTING or timer.fire_at != active.ends_at:
                    self._arm_voting(guild_id, active.ends_at)
                return DuelState.VOTING

            await self._resolve(config, active)
            if await self.db.get_active_duel(guild_id):
                return DuelState.VOTING

        if not config.duel_active:
            self.scheduler.cancel(guild_id)
            return DuelState.IDLE

        start_at = await self.next_start_at(config)
        if start_at <= self.clock():
            opening = await self._open_window(config)
            return DuelState.VOTING if opening else DuelState.IDLE

        timer = self.scheduler.get(guild_id)
        if timer is None or timer.kind != TimerKind.COOLDOWN or timer.fire_at != start_at:
            self.scheduler.arm(guild_id, TimerKind.COOLDOWN, start_at, self._on_cooldown_elapsed)
        return DuelState.COOLDOWN

    async def cancel_timers(self, guild_id: int):
        """Forget a guild's timers, e.g. after its data was reset"""
        async with self._lock(guild_id):
            self.scheduler.cancel(guild_id)

    async def shutdown(self):
        await self.scheduler.shutdown()
        self.logger.info("Duel lifecycle shut down")

    # ------------------------------------------------------------------
    # Timer callbacks

    def _arm_voting(self, guild_id: int, ends_at: datetime):
        self.scheduler.arm(guild_id, TimerKind.VOTING, ends_at, self._on_voting_ended)

    async def _on_voting_ended(self, guild_id: int):
        async with self._lock(guild_id):
            config = await self.config_service.get(guild_id)
            await self._reconcile(config)

    async def _on_cooldown_elapsed(self, guild_id: int):
        async with self._lock(guild_id):
            config = await self.config_service.get(guild_id)
            await self._reconcile(config)

    # ------------------------------------------------------------------
    # Transitions (caller holds the guild lock)

    async def _open_window(self, config: GuildConfig, admin_id: Optional[int] = None) -> Optional[DuelOpening]:
        guild_id = config.guild_id
        try:
            matchup = await self.selector.select_pair(
                guild_id,
                wildcard_chance=config.wildcard_chance,
                balanced=config.balanced_matchmaking
            )
        except InsufficientPoolError as e:
            self.logger.warning(f"Cannot start duel for guild {guild_id}: {e}")
            return None

        now = self.clock()
        ends_at = now + timedelta(seconds=config.duel_duration)
        async with self.db.transaction() as session:
            duel = Duel(
                guild_id=guild_id,
                image1_id=matchup.image1.id,
                image2_id=matchup.image2.id,
                is_wildcard=matchup.is_wildcard,
                started_at=now
            )
            session.add(duel)
            await session.flush()
            session.add(ActiveDuel(
                guild_id=guild_id,
                duel_id=duel.id,
                image1_id=matchup.image1.id,
                image2_id=matchup.image2.id,
                ends_at=ends_at
            ))
            duel_id = duel.id

        await self.audit.record(guild_id, AuditAction.DUEL_STARTED, admin_id, duel_id=duel_id,
                                image_ids=[matchup.image1.id, matchup.image2.id],
                                is_wildcard=matchup.is_wildcard)
        self.logger.info(f"Opened duel {duel_id} for guild {guild_id}: image {matchup.image1.id} vs "
                         f"{matchup.image2.id}{' (wildcard)' if matchup.is_wildcard else ''}, ends {ends_at}")

        self._arm_voting(guild_id, ends_at)

        opening = DuelOpening(
            guild_id=guild_id,
            duel_id=duel_id,
            image1=matchup.image1,
            image2=matchup.image2,
            ends_at=ends_at,
            is_wildcard=matchup.is_wildcard
        )
        await self._announce_opening(config, opening)
        return opening

    async def _resolve(self, config: GuildConfig, active: ActiveDuel, force: bool = False,
                       admin_id: Optional[int] = None) -> Optional[ResolutionResult]:
        """
        Resolve the open window. With `force` (admin stop/skip) a duel whose
        data fails the resolution checks is closed without rating changes
        instead of being left open.
        """
        guild_id = config.guild_id
        async with self.resolution_lock.hold(guild_id) as acquired:
            if not acquired:
                self.logger.info(f"Another process is resolving guild {guild_id}, skipping")
                return None
            try:
                result = await self.resolver.resolve(
                    guild_id, active.duel_id, active.image1_id, active.image2_id, config
                )
            except AlreadyResolvedError:
                self.logger.debug(f"Duel {active.duel_id} was already resolved")
                return None
            except DuelInvariantError as e:
                if not force:
                    self._faulted.add(active.duel_id)
                    self.scheduler.cancel(guild_id)
                    self.logger.error(f"Duel {active.duel_id} left open for an operator: {e}")
                    return None
                self.logger.error(f"Duel {active.duel_id} failed resolution, closing it: {e}")
                try:
                    result = await self.resolver.close_without_rating(
                        guild_id, active.duel_id, admin_id=admin_id
                    )
                except AlreadyResolvedError:
                    return None
                self._faulted.discard(active.duel_id)

        await self.tally_cache.clear(active.duel_id)
        await self._announce_result(config, result, active.message_id)
        return result

    # ------------------------------------------------------------------
    # Presentation (failures never stop the lifecycle)

    async def _announce_opening(self, config: GuildConfig, opening: DuelOpening):
        if not self.presenter:
            return
        try:
            message_id = await self.presenter.announce_duel(config, opening)
        except CollaboratorUnavailableError as e:
            self.logger.warning(f"Failed to post duel {opening.duel_id} for guild {config.guild_id}: {e}",
                                exc_info=True)
            return
        if message_id:
            await self.db.set_active_duel_message(config.guild_id, opening.duel_id, message_id)

    async def _announce_result(self, config: GuildConfig, result: ResolutionResult,
                               message_id: Optional[int]):
        if not self.presenter:
            return
        try:
            await self.presenter.announce_result(config, result, message_id)
        except CollaboratorUnavailableError as e:
            self.logger.warning(f"Failed to post result of duel {result.duel_id}: {e}", exc_info=True)
