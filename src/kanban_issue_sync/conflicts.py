"""Conflict classification and strategy-driven resolution."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .operations import ConflictResolution, SyncConflict

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .diff import DiffEngine, DiffResult, FieldDivergence, PairPlan
    from .models import ConflictStrategy
    from .operations import ConflictKind

logger: logging.Logger = logging.getLogger(__name__)

_FIELD_NAMES: dict[ConflictKind, str] = {
    "title_mismatch": "title",
    "description_mismatch": "description",
    "state_mismatch": "state",
    "label_mismatch": "labels",
}


def conflict_id(card_id: str, issue_number: int, kind: ConflictKind) -> str:
    """Stable id, so the same divergence gets the same id on every pass."""
    return f"conflict_{card_id}_{issue_number}_{_FIELD_NAMES[kind]}"


@dataclass
class Classification:
    """Conflicts found in one pass, split by outcome."""

    unresolved: list[SyncConflict] = field(default_factory=list)
    auto_resolved: list[SyncConflict] = field(default_factory=list)
    applied_from_user: list[SyncConflict] = field(default_factory=list)


class ConflictClassifier:
    """Turns field divergences into conflicts and folds resolutions into pair plans.

    ``remote_wins`` and ``local_wins`` resolve every conflict automatically.
    ``manual`` leaves them for the caller, except that a resolution the user
    recorded earlier is applied if the divergence reappears unchanged.
    """

    def __init__(
        self,
        diff_engine: DiffEngine,
        strategy: ConflictStrategy,
        recorded: Mapping[str, SyncConflict] | None = None,
    ) -> None:
        self.diff_engine = diff_engine
        self.strategy = strategy
        self.recorded: Mapping[str, SyncConflict] = recorded or {}

    def classify(self, diff: DiffResult) -> Classification:
        classification = Classification()
        for plan in diff.divergent_plans:
            for divergence in plan.divergences:
                self._classify_one(plan, divergence, classification)
            plan.divergences = []
        return classification

    def _classify_one(self, plan: PairPlan, divergence: FieldDivergence, classification: Classification) -> None:
        conflict = SyncConflict(
            id=conflict_id(plan.card.id, plan.issue.number, divergence.kind),
            card_id=plan.card.id,
            issue_number=plan.issue.number,
            kind=divergence.kind,
            local_value=divergence.local_value,
            remote_value=divergence.remote_value,
            repo=plan.issue.repo,
        )

        previous = self.recorded.get(conflict.id)
        if previous is not None and previous.resolution is not None and previous.same_divergence(conflict):
            conflict.resolve(previous.resolution)
            self.apply(plan, conflict)
            classification.applied_from_user.append(conflict)
            logger.info(f"Applying recorded resolution for {conflict.id} ({previous.resolution.strategy})")
            return

        resolution = self._automatic_resolution(conflict)
        if resolution is None:
            classification.unresolved.append(conflict)
            logger.info(f"Conflict on card {conflict.card_id} / issue #{conflict.issue_number}: {conflict.kind}")
            return

        conflict.resolve(resolution)
        self.apply(plan, conflict)
        classification.auto_resolved.append(conflict)
        logger.debug(f"Resolved {conflict.id} automatically ({resolution.strategy})")

    def _automatic_resolution(self, conflict: SyncConflict) -> ConflictResolution | None:
        if self.strategy == "remote_wins":
            return ConflictResolution(
                strategy="use_remote", resolved_value=conflict.remote_value, resolved_by="automatic"
            )
        if self.strategy == "local_wins":
            return ConflictResolution(
                strategy="use_local", resolved_value=conflict.local_value, resolved_by="automatic"
            )
        return None

    def apply(self, plan: PairPlan, conflict: SyncConflict) -> None:
        """Fold a resolved conflict into the pair's proposed writes."""
        resolution = conflict.resolution
        if resolution is None:
            return
        if resolution.strategy in ("use_local", "merge"):
            self.diff_engine.push_to_issue(plan, conflict.kind, resolution.resolved_value)
        if resolution.strategy in ("use_remote", "merge"):
            self.diff_engine.push_to_card(plan, conflict.kind, resolution.resolved_value)
