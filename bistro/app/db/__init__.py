from .engine import build_engine, create_test_engine, init_models, session_factory

__all__ = [
    "build_engine",
    "create_test_engine",
    "init_models",
    "session_factory",
]
