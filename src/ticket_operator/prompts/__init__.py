from .composer import OPERATOR_OUTPUT_INSTRUCTIONS, PromptComposer, StepCarry, render_template

__all__ = ["OPERATOR_OUTPUT_INSTRUCTIONS", "PromptComposer", "StepCarry", "render_template"]
