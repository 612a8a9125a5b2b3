"""Core business logic.

Modules:
- errors: Error taxonomy shared by every layer
- quiz_definition: Quiz payload normalization
- grader: Pure grading engine
- quiz_state: Best-score / pass aggregation
- certification: Course certificate evaluator
- hooks: Post-commit hooks with isolated error handling
- attempt_lifecycle: start / autosave / retake / submit controller
"""

__all__ = [
    "errors",
    "quiz_definition",
    "grader",
    "quiz_state",
    "certification",
    "hooks",
    "attempt_lifecycle",
]
