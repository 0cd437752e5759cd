"""Flash session orchestration.

The SessionController runs one flash session at a time:

    IDLE -> DETECTING_MODE -> [TRANSITIONING_MODE <-> AWAITING_RECONNECT]*
         -> EXTRACTING_SOURCES / FLASHING -> POST_PROCESSING
         -> COMPLETED | FAILED | CANCELLED

Per-step problems (missing image, failed extraction, rejected write) are
recorded on the step and the session moves on. A failed mode transition
fails the steps that needed that mode. Nothing that was written is ever
rolled back, and every session ends with a succeeded/failed/skipped tally.
"""

import logging
import shutil
import tempfile
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path

from partflash.config import Settings, get_settings
from partflash.flash.errors import (
    ExtractionError,
    FlashAbortedError,
    FlashError,
    MissingImageError,
    ResolveError,
    SessionBusyError,
    TransitionError,
)
from partflash.flash.link import (
    AuthMaterialProvider,
    BootloaderVariableProbe,
    CancellationToken,
    DeviceHandle,
    DeviceLink,
    ImageExtractor,
    PlatformProbe,
)
from partflash.flash.planner import ExecutionPlan, FlashPlanner, PlannedStep
from partflash.flash.postflash import PostFlashPolicyExecutor
from partflash.flash.progress import ProgressAggregator, format_size
from partflash.flash.resolver import FlashUnit, PartitionSourceResolver, SelectionItem
from partflash.flash.supervisor import DeviceModeSupervisor
from partflash.policy import PartitionPolicy, load_policy
from partflash.types import (
    DeviceMode,
    FlashOptions,
    PostFlashReport,
    ProgressSample,
    SessionOutcome,
    SessionState,
    Slot,
    StepEvent,
    StepStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class StepRecord:
    """Mutable bookkeeping for one planned step."""

    step: PlannedStep
    status: StepStatus = StepStatus.PENDING
    error_code: str | None = None
    error_message: str | None = None

    def to_event(self) -> StepEvent:
        return StepEvent(
            index=self.step.index,
            target_name=self.step.target_name,
            status=self.status,
            error_code=self.error_code,
            message=self.error_message,
        )


@dataclass
class FlashSession:
    """State of one flash session, owned by its SessionController.

    Attributes:
        session_id: Unique session ID.
        options: Options snapshotted at start.
        token: Cancellation scope threaded through every device call.
        state: Current session state.
        current_slot: Slot the device booted from when the session started.
        steps: Per-step records in plan order.
        completed_bytes: Bytes of successfully written steps.
        total_bytes: Bytes of all planned steps; never decreases.
        device: Handle of the device after the last reconnect.
        scratch_dir: Directory for extracted images.
        resolve_errors: Selection items dropped at resolve time.
        transition_failed: Whether any mode transition failed.
    """

    session_id: str
    options: FlashOptions
    token: CancellationToken = field(default_factory=CancellationToken)
    state: SessionState = SessionState.IDLE
    current_slot: Slot = Slot.UNKNOWN
    steps: list[StepRecord] = field(default_factory=list)
    completed_bytes: int = 0
    total_bytes: int = 0
    device: DeviceHandle | None = None
    scratch_dir: Path | None = None
    resolve_errors: list[ResolveError] = field(default_factory=list)
    transition_failed: bool = False
    fastbootd_prepared: bool = False
    scratch_files: dict[int, Path] = field(default_factory=dict)

    def add_completed(self, size_bytes: int) -> None:
        self.completed_bytes = min(self.completed_bytes + size_bytes, self.total_bytes)

    def grow_total(self, delta: int) -> None:
        if delta > 0:
            self.total_bytes += delta

    def count(self, *statuses: StepStatus) -> int:
        return sum(1 for record in self.steps if record.status in statuses)


class SessionController:
    """Runs flash sessions against one device link.

    Args:
        link: Device transport.
        extractor: Extracts payload partitions; required for payload sources.
        auth_provider: Optional source of signed loader material.
        probe: Platform probe; defaults to BootloaderVariableProbe.
        policy: Partition policy; defaults to the settings' policy file.
        settings: Application settings.
        on_progress: Receives progress samples.
        on_step: Receives per-step outcome events.
        on_state: Receives session state changes.
        clock: Monotonic time source used for progress and speed.
    """

    def __init__(
        self,
        link: DeviceLink,
        *,
        extractor: ImageExtractor | None = None,
        auth_provider: AuthMaterialProvider | None = None,
        probe: PlatformProbe | None = None,
        policy: PartitionPolicy | None = None,
        settings: Settings | None = None,
        on_progress: Callable[[ProgressSample], None] | None = None,
        on_step: Callable[[StepEvent], None] | None = None,
        on_state: Callable[[SessionState], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.link = link
        self.extractor = extractor
        self.auth_provider = auth_provider
        self.probe = probe or BootloaderVariableProbe(link)
        self.settings = settings or get_settings()
        self.policy = policy or load_policy(self.settings.policy_file)
        self.on_progress = on_progress
        self.on_step = on_step
        self.on_state = on_state
        self._clock = clock

        self.resolver = PartitionSourceResolver(self.policy)
        self.planner = FlashPlanner()

        self._busy = False
        self._session: FlashSession | None = None
        self.last_session: FlashSession | None = None

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def session(self) -> FlashSession | None:
        """The active session, if any."""
        return self._session

    def cancel(self) -> bool:
        """Cancel the active session.

        Returns:
            True if a session was active.
        """
        if self._session is None:
            return False
        logger.info("Cancelling flash session %s", self._session.session_id)
        self._session.token.cancel()
        return True

    async def start(
        self,
        selection: list[SelectionItem],
        options: FlashOptions | None = None,
    ) -> SessionOutcome:
        """Run a flash session to completion.

        Args:
            selection: Partitions selected by the user.
            options: Session options (defaults to FlashOptions()).

        Returns:
            SessionOutcome with the terminal state and the step tally.

        Raises:
            SessionBusyError: Another session is active on this controller.
        """
        # Checked and set before the first await
        if self._busy:
            active = self._session.session_id if self._session else None
            logger.warning("Rejecting flash request, session %s is active", active)
            raise SessionBusyError(active)
        self._busy = True

        session = FlashSession(
            session_id=uuid.uuid4().hex, options=options or FlashOptions()
        )
        self._session = session
        logger.info("Flash session %s started", session.session_id)

        try:
            return await self._run(session, selection)
        finally:
            self._remove_scratch_dir(session)
            self._session = None
            self.last_session = session
            self._busy = False

    async def _run(
        self, session: FlashSession, selection: list[SelectionItem]
    ) -> SessionOutcome:
        options = session.options
        token = session.token
        post_flash: PostFlashReport | None = None
        supervisor = DeviceModeSupervisor(
            self.link,
            token,
            poll_interval=self.settings.reconnect_poll_interval,
            on_state=lambda state: self._set_state(session, state),
        )

        try:
            resolved = self.resolver.resolve(selection)
            session.resolve_errors = resolved.errors

            self._set_state(session, SessionState.DETECTING_MODE)
            await supervisor.detect_mode()
            session.current_slot = await self._query_slot(token)
            await self._authenticate(token)

            plan = self.planner.plan(resolved.units, options, session.current_slot)
            session.steps = [StepRecord(step) for step in plan.steps]
            session.total_bytes = plan.total_bytes
            session.scratch_dir = self._make_scratch_dir(session)
            aggregator = ProgressAggregator(
                plan.total_steps, on_sample=self.on_progress, clock=self._clock
            )
            logger.info(
                "Flashing %d step(s), %s total",
                plan.total_steps,
                format_size(session.total_bytes),
            )

            for mode, steps in plan.groups():
                token.raise_if_cancelled()
                try:
                    handle = await supervisor.ensure_mode(
                        mode, self.settings.reconnect_timeout
                    )
                except TransitionError as e:
                    logger.error("Cannot enter %s mode: %s", mode.value, e.message)
                    session.transition_failed = True
                    for step in steps:
                        self._finish_step(
                            session,
                            aggregator,
                            self._record(session, step),
                            StepStatus.FAILED,
                            e.error_code,
                            e.message,
                        )
                    continue

                session.device = handle or session.device
                if mode == DeviceMode.FASTBOOTD:
                    await self._prepare_fastbootd(session, plan)
                await self._flash_group(session, aggregator, steps)

            if (
                plan.modem_steps
                and not options.pure_fbd_mode
                and (options.clear_data or options.erase_frp)
                and supervisor.current_mode == DeviceMode.BOOTLOADER
            ):
                # Return to FastbootD for the post-flash erase operations
                try:
                    await supervisor.ensure_mode(
                        DeviceMode.FASTBOOTD, self.settings.reconnect_timeout
                    )
                except TransitionError as e:
                    logger.warning(
                        "Staying in bootloader for post-flash steps: %s", e.message
                    )

            self._set_state(session, SessionState.POST_PROCESSING)
            executor = PostFlashPolicyExecutor(self.link, token, self.policy, self.probe)
            post_flash = await executor.run(options, session.count(StepStatus.SUCCEEDED))

            aggregator.finish()
            final = SessionState.FAILED if session.transition_failed else SessionState.COMPLETED
        except FlashAbortedError:
            logger.warning("Flash session %s cancelled", session.session_id)
            final = SessionState.CANCELLED
        except Exception:
            logger.exception("Flash session %s failed", session.session_id)
            final = SessionState.FAILED

        self._set_state(session, final)
        outcome = self._outcome(session, post_flash)
        logger.info(
            "Flash session %s %s: %d succeeded, %d failed, %d skipped",
            session.session_id,
            final.value,
            outcome.succeeded,
            outcome.failed,
            outcome.skipped,
        )
        return outcome

    async def _flash_group(
        self,
        session: FlashSession,
        aggregator: ProgressAggregator,
        steps: list[PlannedStep],
    ) -> None:
        token = session.token
        last_step_of_unit = {id(step.unit): step.index for step in steps}

        for step in steps:
            token.raise_if_cancelled()
            record = self._record(session, step)
            try:
                if record.status != StepStatus.PENDING:
                    continue
                try:
                    image = await self._image_for(session, step)
                except (ExtractionError, MissingImageError) as e:
                    logger.warning(
                        "Skipping %s (partition=%s, slot=%s): %s",
                        step.target_name,
                        step.unit.name,
                        step.slot,
                        e.message,
                    )
                    for sibling in steps:
                        sibling_record = self._record(session, sibling)
                        if (
                            sibling.unit is step.unit
                            and sibling_record.status == StepStatus.PENDING
                        ):
                            self._finish_step(
                                session,
                                aggregator,
                                sibling_record,
                                StepStatus.SKIPPED,
                                e.error_code,
                                e.message,
                            )
                    continue

                await self._flash_step(session, aggregator, record, image)
            finally:
                if last_step_of_unit[id(step.unit)] == step.index:
                    self._delete_scratch_file(session, step.unit)

    async def _image_for(self, session: FlashSession, step: PlannedStep) -> Path:
        """Return the image file for a step's unit, extracting it if needed."""
        unit = step.unit
        if not unit.requires_extraction:
            path = Path(unit.data_ref)
            if not path.is_file() or path.stat().st_size <= 0:
                raise MissingImageError(unit.name, str(path))
            return path

        cached = session.scratch_files.get(id(unit))
        if cached is not None:
            return cached

        self._set_state(session, SessionState.EXTRACTING_SOURCES)
        if self.extractor is None:
            raise ExtractionError(unit.name, "no payload extractor configured")
        if session.scratch_dir is None:
            raise ExtractionError(unit.name, "no scratch directory")

        dest = session.scratch_dir / f"{step.index}-{unit.name}.img"
        session.scratch_files[id(unit)] = dest
        logger.info("Extracting %s", unit.name)

        try:
            extracted = await session.token.run(
                self.extractor.extract_to_file(unit.data_ref, dest, session.token)
            )
        except FlashAbortedError:
            raise
        except Exception as e:
            raise ExtractionError(unit.name, str(e)) from e

        if not extracted or not dest.is_file() or dest.stat().st_size <= 0:
            raise ExtractionError(unit.name)

        planned_writes = sum(1 for record in session.steps if record.step.unit is unit)
        delta = unit.refine_size(dest.stat().st_size)
        session.grow_total(delta * planned_writes)
        logger.info("Extracted %s (%s)", unit.name, format_size(unit.size_bytes))
        return dest

    async def _flash_step(
        self,
        session: FlashSession,
        aggregator: ProgressAggregator,
        record: StepRecord,
        image: Path,
    ) -> None:
        step = record.step
        self._set_state(session, SessionState.FLASHING)
        record.status = StepStatus.RUNNING
        logger.info("Writing %s -> %s", image.name, step.target_name)

        def progress(sent: int, total: int) -> None:
            aggregator.on_bytes(step.index, sent, total, step.target_name)

        error: FlashError | None = None
        try:
            ok = await self.link.flash(step.target_name, image, progress, session.token)
        except FlashAbortedError:
            self._finish_step(
                session, aggregator, record, StepStatus.FAILED, "FLASH_ABORTED", "Cancelled"
            )
            raise
        except Exception as e:
            logger.debug("Flash of %s raised", step.target_name, exc_info=True)
            ok = False
            error = FlashError(step.target_name, str(e))

        if ok:
            session.add_completed(step.unit.size_bytes)
            self._finish_step(session, aggregator, record, StepStatus.SUCCEEDED)
            logger.info("%s flashed", step.target_name)
            return

        error = error or FlashError(step.target_name)
        logger.error(
            "%s (partition=%s, slot=%s)", error.message, step.unit.name, step.slot
        )
        self._finish_step(
            session, aggregator, record, StepStatus.FAILED, error.error_code, error.message
        )

    async def _prepare_fastbootd(self, session: FlashSession, plan: ExecutionPlan) -> None:
        """One-time FastbootD preparation before the first write.

        Removes leftover OTA snapshot partitions and, in AB mode, switches
        to the target slot and recreates the logical partitions for it.
        """
        if session.fastbootd_prepared:
            return
        session.fastbootd_prepared = True
        options = session.options
        token = session.token

        if options.cleanup_cow_snapshots:
            deleted = 0
            for name in self.policy.cow_partition_names():
                if await self._best_effort(self.link.delete_logical_partition(name, token)):
                    deleted += 1
            logger.info("Snapshot partition cleanup done, %d deleted", deleted)

        target = Slot.parse(options.target_slot)
        # A device that reports no slot boots from slot a
        current = Slot.A if session.current_slot == Slot.UNKNOWN else session.current_slot
        if not options.ab_flash_mode or current == target:
            return

        logger.info("Switching active slot %s -> %s", current.value, target.value)
        if not await self._best_effort(self.link.set_active_slot(target.value, token)):
            logger.warning("Could not set active slot to %s", target.value)

        if not any(step.unit.is_logical_partition for step in plan.fbd_steps):
            return

        logger.info("Rebuilding logical partitions for slot %s", target.value)
        for name in self.policy.logical_partitions:
            for slot in (Slot.A.value, Slot.B.value):
                await self._best_effort(
                    self.link.delete_logical_partition(f"{name}_{slot}", token)
                )
        for name in self.policy.logical_partitions:
            if not await self._best_effort(
                self.link.create_logical_partition(f"{name}_{target.value}", 0, token)
            ):
                logger.warning("Could not create logical partition %s_%s", name, target.value)

    async def _best_effort(self, call: Awaitable[object]) -> bool:
        try:
            return bool(await call)
        except FlashAbortedError:
            raise
        except Exception as e:
            logger.debug("Best-effort device call failed: %s", e)
            return False

    async def _query_slot(self, token: CancellationToken) -> Slot:
        try:
            slot = Slot.parse(await self.link.get_current_slot(token))
        except FlashAbortedError:
            raise
        except Exception as e:
            logger.warning("Could not read current slot: %s", e)
            slot = Slot.UNKNOWN
        logger.info("Current slot: %s", slot.value)
        return slot

    async def _authenticate(self, token: CancellationToken) -> None:
        if self.auth_provider is None:
            return

        try:
            platform_id = await self.probe.classify(token)
        except FlashAbortedError:
            raise
        except Exception as e:
            logger.warning("Platform probe failed, proceeding unauthenticated: %s", e)
            return

        material = self.auth_provider.try_get(platform_id)
        if material is None:
            logger.info("No auth material for %s, proceeding unauthenticated", platform_id)
            return

        if await self._best_effort(self.link.authenticate(material, token)):
            logger.info("Authenticated with %s loader material", platform_id)
        else:
            logger.warning("Authentication for %s was rejected, continuing", platform_id)

    def _record(self, session: FlashSession, step: PlannedStep) -> StepRecord:
        return session.steps[step.index]

    def _finish_step(
        self,
        session: FlashSession,
        aggregator: ProgressAggregator,
        record: StepRecord,
        status: StepStatus,
        error_code: str | None = None,
        message: str | None = None,
    ) -> None:
        record.status = status
        record.error_code = error_code
        record.error_message = message
        aggregator.complete_step(record.step.index, record.step.target_name)
        if self.on_step:
            self.on_step(record.to_event())

    def _set_state(self, session: FlashSession, state: SessionState) -> None:
        if session.state == state:
            return
        logger.debug("Session %s: %s -> %s", session.session_id, session.state.value, state.value)
        session.state = state
        if self.on_state:
            self.on_state(state)

    def _make_scratch_dir(self, session: FlashSession) -> Path:
        parent = self.settings.scratch_dir
        if parent is not None:
            parent.mkdir(parents=True, exist_ok=True)
        path = Path(
            tempfile.mkdtemp(prefix=f"partflash-{session.session_id[:8]}-", dir=parent)
        )
        logger.debug("Scratch directory: %s", path)
        return path

    def _delete_scratch_file(self, session: FlashSession, unit: FlashUnit) -> None:
        path = session.scratch_files.pop(id(unit), None)
        if path is None:
            return
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not delete scratch file %s: %s", path, e)

    def _remove_scratch_dir(self, session: FlashSession) -> None:
        session.scratch_files.clear()
        if session.scratch_dir is None or not session.scratch_dir.exists():
            return
        try:
            shutil.rmtree(session.scratch_dir)
            logger.debug("Removed scratch directory %s", session.scratch_dir)
        except OSError as e:
            logger.warning("Could not remove scratch directory %s: %s", session.scratch_dir, e)

    def _outcome(
        self, session: FlashSession, post_flash: PostFlashReport | None
    ) -> SessionOutcome:
        return SessionOutcome(
            session_id=session.session_id,
            state=session.state,
            succeeded=session.count(StepStatus.SUCCEEDED),
            failed=session.count(StepStatus.FAILED),
            skipped=session.count(StepStatus.SKIPPED, StepStatus.PENDING)
            + len(session.resolve_errors),
            steps=[record.to_event() for record in session.steps],
            post_flash=post_flash,
        )


__all__ = ["FlashSession", "SessionController", "StepRecord"]
