from .engine import NeverApproved, ReviewChecker, StepProgress, WorkflowEngine

__all__ = ["NeverApproved", "ReviewChecker", "StepProgress", "WorkflowEngine"]
