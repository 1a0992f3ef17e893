"""Gate satisfaction rules evaluated when a workflow advances."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from ..exceptions import GateNotSatisfiedError
from .collaborators import ChainStatusLookup, CommandRunner
from .models import StageGate, WorkflowStage, utcnow

logger = logging.getLogger(__name__)

CHAIN_DONE = "done"


def mark_gate_satisfied(stage: WorkflowStage, satisfied_by: str) -> None:
    """Satisfy ``stage``'s gate once; later calls keep the first record."""
    gate = stage.gate
    if gate.satisfied:
        return
    gate.satisfied = True
    gate.satisfied_by = satisfied_by
    gate.satisfied_at = utcnow()


class GateEvaluator:
    """Apply the type-specific satisfaction rule for a stage gate."""

    def __init__(
        self,
        project_root: str | Path,
        command_runner: CommandRunner,
        chain_status: Optional[ChainStatusLookup] = None,
    ) -> None:
        self.project_root = Path(project_root)
        self._command_runner = command_runner
        self._chain_status = chain_status

    async def ensure_satisfied(self, stage: WorkflowStage) -> None:
        """Satisfy the gate or raise :class:`GateNotSatisfiedError`.

        Only the gate fields of ``stage`` are touched, and only on success.
        """
        gate = stage.gate
        if gate.satisfied:
            return

        if gate.type == "auto":
            mark_gate_satisfied(stage, "system")
        elif gate.type == "human_approval":
            raise GateNotSatisfiedError(
                f"Gate not satisfied: stage {stage.name} requires human approval"
            )
        elif gate.type == "chain_complete":
            await self._check_chain(gate)
            mark_gate_satisfied(stage, "system")
        elif gate.type == "verification_pass":
            await self._run_verification(gate)
            mark_gate_satisfied(stage, "system")
        elif gate.type == "post_commit":
            if gate.commit is None:
                raise GateNotSatisfiedError("post_commit gate requires commit metadata")
            mark_gate_satisfied(stage, gate.commit.author or "system")
        else:
            raise AssertionError(f"Unsupported gate type: {gate.type}")

    async def _check_chain(self, gate: StageGate) -> None:
        if not gate.chain_id:
            raise GateNotSatisfiedError("chain_complete gate requires chainId")
        if self._chain_status is None:
            raise GateNotSatisfiedError(
                f"Chain {gate.chain_id} not complete: no chain status lookup configured"
            )
        status = await self._chain_status(gate.chain_id)
        if status != CHAIN_DONE:
            raise GateNotSatisfiedError(f"Chain {gate.chain_id} not complete")

    async def _run_verification(self, gate: StageGate) -> None:
        if not gate.commands:
            raise GateNotSatisfiedError(
                "verification_pass gate requires at least one command"
            )
        for command in gate.commands:
            result = await self._command_runner(command, self.project_root)
            if result.exit_code != 0:
                logger.info(
                    f"Verification command failed ({result.exit_code}): {command}"
                )
                raise GateNotSatisfiedError(f"Verification command failed: {command}")
