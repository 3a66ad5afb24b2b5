"""Deployment plan sequencing."""

from .sequencer import DeploymentCursor, DeploymentSequencer, SequencerState, StepEvent, StepEventKind

__all__ = [
    "DeploymentCursor",
    "DeploymentSequencer",
    "SequencerState",
    "StepEvent",
    "StepEventKind",
]
