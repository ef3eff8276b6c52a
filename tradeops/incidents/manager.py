"""IncidentManager — incident records, auto-remediation and MTTD/MTTR accounting."""

from __future__ import annotations

import asyncio
import time
import uuid

import structlog

from tradeops.core.types import Alert, Incident, IncidentStatus
from tradeops.incidents.remediation import REMEDIATION_PLANS, RemediationPlan
from tradeops.incidents.runbooks import get_runbook
from tradeops.storage.base import MetricStore
from tradeops.storage.exceptions import StorageError

logger = structlog.stdlib.get_logger()


def new_incident_id(started_at: float) -> str:
    """``INC-<epoch ms>-<random hex>``; unique even for same-millisecond triggers."""
    return f"INC-{int(started_at * 1000)}-{uuid.uuid4().hex[:8]}"


class IncidentManager:
    """Opens, remediates and resolves incidents for alert occurrences.

    Follow-up remediation updates (e.g. "reconnection successful") run as
    asyncio tasks keyed by incident id.  Resolving an incident cancels its
    pending follow-up, and the follow-up re-reads the incident before writing
    so a resolved incident is never reopened.

    Usage::

        incidents = IncidentManager(store, remediation_delay_secs=5)
        incident = await incidents.open_incident(alert)
        await incidents.auto_remediate(alert, incident)
        ...
        await incidents.resolve_incident(alert, resolved_at)
    """

    def __init__(
        self,
        store: MetricStore,
        remediation_delay_secs: float = 5.0,
        plans: dict[str, RemediationPlan] | None = None,
    ) -> None:
        self._store = store
        self._delay = remediation_delay_secs
        self._plans = plans if plans is not None else REMEDIATION_PLANS
        self._pending: dict[str, asyncio.Task[None]] = {}

    @property
    def pending_follow_ups(self) -> list[str]:
        """Incident ids with a scheduled follow-up that has not run yet."""
        return [iid for iid, task in self._pending.items() if not task.done()]

    # ── Lifecycle of one incident ───────────────────────────────

    def next_incident_id(self, started_at: float) -> str:
        return new_incident_id(started_at)

    async def open_incident(self, alert: Alert) -> Incident:
        """Create and persist the incident for a newly triggered alert.

        Uses the ``incident_id`` already recorded on the alert when present.
        """
        metadata: dict[str, object] = {}
        runbook = get_runbook(alert.alert_id)
        if runbook is not None:
            metadata["runbook_id"] = runbook.runbook_id

        incident_id = alert.metadata.get("incident_id")
        if not isinstance(incident_id, str):
            incident_id = new_incident_id(alert.triggered_at)

        incident = Incident(
            incident_id=incident_id,
            alert_id=alert.alert_id,
            title=alert.name,
            description=alert.message,
            severity=alert.severity,
            status=IncidentStatus.OPEN,
            started_at=alert.triggered_at,
            metadata=metadata,
        )
        await self._store.insert_incident(incident)
        logger.info(
            "incident_opened",
            incident_id=incident.incident_id,
            alert_id=alert.alert_id,
            severity=alert.severity,
        )
        return incident

    async def auto_remediate(
        self, alert: Alert, incident: Incident | None = None,
    ) -> Incident | None:
        """Attach the alert's remediation action to its open incident.

        Returns the updated incident, or None when the alert has no plan or no
        open incident exists.
        """
        plan = self._plans.get(alert.alert_id)
        if plan is None:
            logger.info("no_remediation_plan", alert_id=alert.alert_id)
            return None

        target = incident or await self._open_incident_for(alert)
        if target is None:
            logger.warning("remediation_without_incident", alert_id=alert.alert_id)
            return None

        updated = await self._store.update_incident(
            target.incident_id,
            {"remediation_action": plan.action, "remediation_status": plan.status},
        )
        logger.info(
            "remediation_started",
            incident_id=target.incident_id,
            alert_id=alert.alert_id,
            action=plan.action,
            status=plan.status,
        )
        if plan.has_follow_up:
            self._schedule_follow_up(target.incident_id, plan)
        return updated

    async def resolve_incident(self, alert: Alert, resolved_at: float) -> Incident | None:
        """Close the incident tied to this alert occurrence.

        MTTR is ``resolved_at - triggered_at``.  MTTD is ``triggered_at -
        created_at`` when the alert carries a creation time, otherwise 0.
        Both are clamped at 0.
        """
        incident = await self._open_incident_for(alert)
        if incident is None:
            logger.warning("no_open_incident", alert_id=alert.alert_id)
            return None

        self._cancel_follow_up(incident.incident_id)

        mttr = max(resolved_at - alert.triggered_at, 0.0)
        mttd = 0.0
        if alert.created_at is not None:
            mttd = max(alert.triggered_at - alert.created_at, 0.0)

        updated = await self._store.update_incident(
            incident.incident_id,
            {
                "status": IncidentStatus.RESOLVED,
                "resolved_at": max(resolved_at, alert.triggered_at),
                "mttd_seconds": mttd,
                "mttr_seconds": mttr,
            },
        )
        logger.info(
            "incident_resolved",
            incident_id=incident.incident_id,
            alert_id=alert.alert_id,
            mttr_seconds=round(mttr, 3),
            mttd_seconds=round(mttd, 3),
        )
        return updated

    async def acknowledge_incident(self, alert_id: str) -> Incident | None:
        """Move the alert's open incident to ``investigating``."""
        incident = await self._store.find_open_incident(alert_id)
        if incident is None or incident.status != IncidentStatus.OPEN:
            return incident
        logger.info("incident_investigating", incident_id=incident.incident_id)
        return await self._store.update_incident(
            incident.incident_id, {"status": IncidentStatus.INVESTIGATING},
        )

    async def get_recent_incidents(
        self, hours: float = 24, now: float | None = None,
    ) -> list[Incident]:
        """Incidents started within the last ``hours``, newest first."""
        now = time.time() if now is None else now
        return await self._store.list_incidents(since=now - hours * 3600)

    async def close(self) -> None:
        """Cancel pending follow-ups (best effort; none are durable)."""
        tasks = list(self._pending.values())
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._pending.clear()

    # ── Internal ────────────────────────────────────────────────

    async def _open_incident_for(self, alert: Alert) -> Incident | None:
        """The non-resolved incident for this occurrence.

        Prefers the incident id recorded on the alert; falls back to the most
        recent open incident for the alert id.
        """
        incident_id = alert.metadata.get("incident_id")
        if isinstance(incident_id, str):
            incident = await self._store.get_incident(incident_id)
            if incident is not None and incident.status != IncidentStatus.RESOLVED:
                return incident
            if incident is not None:
                return None
        return await self._store.find_open_incident(alert.alert_id)

    def _schedule_follow_up(self, incident_id: str, plan: RemediationPlan) -> None:
        self._cancel_follow_up(incident_id)
        task = asyncio.create_task(self._follow_up(incident_id, plan))
        self._pending[incident_id] = task

        def _forget(done: asyncio.Task[None]) -> None:
            if self._pending.get(incident_id) is done:
                del self._pending[incident_id]

        task.add_done_callback(_forget)

    def _cancel_follow_up(self, incident_id: str) -> None:
        task = self._pending.pop(incident_id, None)
        if task is not None and not task.done():
            task.cancel()

    async def _follow_up(self, incident_id: str, plan: RemediationPlan) -> None:
        await asyncio.sleep(self._delay)
        try:
            current = await self._store.get_incident(incident_id)
            if current is None or current.status == IncidentStatus.RESOLVED:
                logger.debug("remediation_follow_up_skipped", incident_id=incident_id)
                return
            await self._store.update_incident(
                incident_id,
                {
                    "remediation_action": plan.follow_up_action,
                    "remediation_status": plan.follow_up_status,
                },
            )
            logger.info(
                "remediation_completed",
                incident_id=incident_id,
                action=plan.follow_up_action,
            )
        except StorageError:
            logger.exception("remediation_follow_up_error", incident_id=incident_id)
