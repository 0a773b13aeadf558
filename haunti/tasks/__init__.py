"""Task lifecycle: creation with escrow, claim, proof submission, settlement."""

from .state_machine import TaskStateMachine, is_dataset_ref, is_model_ref

__all__ = ["TaskStateMachine", "is_model_ref", "is_dataset_ref"]
