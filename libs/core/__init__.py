__all__ = [
    "models",
    "state_machine",
    "cancellation",
    "llm_provider",
    "tracing",
    "logging",
]
