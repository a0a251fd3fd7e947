"""
Side effects for new alert arrivals: one audio cue per arrival burst, a
single deploy/dismiss prompt, and the deploy sequence for the primary unit.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .. import config
from ..schemas.feed import Alert, FireTriggered, Severity
from ..schemas.fleet import AudioCue, DeploymentOutcome, DeploymentPrompt, FleetUnit, UnitStatus
from .feed import FeedWriteError
from .fleet import FleetRoster
from .observer import Channel, Unsubscribe
from .state_store import RealtimeStateStore

logger = logging.getLogger(__name__)

_PROMPT_TEXT = {
    "fire": ("Fire Alert", "Fire detected in perimeter. Deploy surveillance drone for immediate assessment?"),
    "help": ("Help Alert", "Someone is asking for help. Deploy surveillance drone for immediate assessment?"),
}
_DEFAULT_PROMPT_TEXT = ("Critical Alert", "Perimeter breach detected. Deploy surveillance drone for immediate assessment?")


class DispatchError(Exception):
    pass


def highest_severity(alerts: list[Alert]) -> Severity:
    return max((a.severity for a in alerts), key=lambda s: s.rank, default=Severity.INFO)


class AlertDispatcher:
    def __init__(
        self,
        store: RealtimeStateStore,
        fleet: FleetRoster,
        unit_id: str = "drone1",
        settle_delay: float = config.DEPLOY_SETTLE_MS / 1000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.fleet = fleet
        self.unit_id = unit_id
        self.settle_delay = settle_delay
        self._sleep = sleep

        self.audio_cues: Channel[AudioCue] = Channel("audio_cue")
        self.prompts: Channel[DeploymentPrompt] = Channel("prompt")
        self.outcomes: Channel[DeploymentOutcome] = Channel("deployment")

        self._known_ids: Optional[set[str]] = None
        self._prompt = DeploymentPrompt(open=False)
        self._deploying = False
        self._handles: list[Unsubscribe] = []

    @property
    def prompt(self) -> DeploymentPrompt:
        return self._prompt

    def attach(self) -> None:
        if self._handles:
            return
        self._handles = [
            self.store.subscribe_alerts(self.on_alerts),
            self.store.subscribe_fire_triggered(self.on_fire),
        ]

    def detach(self) -> None:
        for handle in self._handles:
            handle()
        self._handles = []

    # ── arrivals ──

    def on_alerts(self, alerts: list[Alert]) -> None:
        ids = {a.id for a in alerts}
        if self._known_ids is None:
            # First delivery is the existing history, not an arrival.
            self._known_ids = ids
            return
        new_ids = ids - self._known_ids
        self._known_ids = ids
        if not new_ids:
            return

        severity = highest_severity(alerts)
        logger.info("[dispatch] %d new alert(s), cue severity %s", len(new_ids), severity.value)
        self.audio_cues.publish(AudioCue(severity=severity, alert_count=len(alerts)))

        newest = alerts[0]
        self._open_prompt(newest.id, newest.kind, newest.severity)

    def on_fire(self, event: FireTriggered) -> None:
        self.audio_cues.publish(AudioCue(severity=event.severity, alert_count=len(self.store.snapshot().alerts)))
        self._open_prompt(None, event.kind, event.severity)

    def _open_prompt(self, alert_id: Optional[str], kind: str, severity: Severity) -> None:
        if self._prompt.open:
            logger.debug("[dispatch] prompt already open, not opening another for %s", kind)
            return
        title, message = _PROMPT_TEXT.get(kind, _DEFAULT_PROMPT_TEXT)
        self._prompt = DeploymentPrompt(
            open=True, title=title, message=message, alert_id=alert_id, alert_kind=kind, severity=severity
        )
        self.prompts.publish(self._prompt)

    def _close_prompt(self) -> None:
        self._prompt = DeploymentPrompt(open=False)
        self.prompts.publish(self._prompt)

    # ── operator decisions ──

    async def deploy(self) -> DeploymentOutcome:
        if not self._prompt.open:
            raise DispatchError("no deployment prompt is open")
        if self._deploying:
            raise DispatchError("deployment already in progress")

        self._deploying = True
        self._prompt = self._prompt.model_copy(update={"deploying": True})
        self.prompts.publish(self._prompt)

        unit = self.fleet.get(self.unit_id)
        previous = self.fleet.set_status(self.unit_id, UnitStatus.DEPLOYED)
        try:
            await self.store.set_fleet_activation_signal()
            await self._sleep(self.settle_delay)
        except FeedWriteError as exc:
            return self._rollback(unit, previous, exc)
        except asyncio.CancelledError as exc:
            self._rollback(unit, previous, exc)
            raise
        except Exception as exc:
            logger.exception("[dispatch] unexpected error while deploying %s", self.unit_id)
            return self._rollback(unit, previous, exc)

        self.fleet.set_status(self.unit_id, UnitStatus.ON_MISSION)
        self._deploying = False
        self._close_prompt()
        outcome = DeploymentOutcome(
            success=True,
            unit_id=self.unit_id,
            title="Drone Deployed Successfully!",
            message=f"{unit.name} is now on mission. Monitoring perimeter for threats.",
        )
        self.outcomes.publish(outcome)
        return outcome

    def _rollback(self, unit: FleetUnit, previous: FleetUnit, exc: BaseException) -> DeploymentOutcome:
        """Return the unit to its earlier status and leave the prompt open for another decision."""
        self.fleet.set_status(self.unit_id, previous.status)
        self._deploying = False
        self._prompt = self._prompt.model_copy(update={"deploying": False})
        self.prompts.publish(self._prompt)
        reason = str(exc) or type(exc).__name__
        outcome = DeploymentOutcome(
            success=False,
            unit_id=self.unit_id,
            title="Deployment Failed",
            message=f"Failed to deploy {unit.name}. Please try again. ({reason})",
        )
        logger.error("[dispatch] deployment of %s failed: %s", self.unit_id, reason)
        self.outcomes.publish(outcome)
        return outcome

    def dismiss(self) -> bool:
        """Close the prompt without any external write. False if there was nothing to close."""
        if not self._prompt.open or self._deploying:
            return False
        self._close_prompt()
        return True
