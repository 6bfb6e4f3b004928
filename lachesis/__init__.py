"""Lachesis - AI-guided planning for markdown project folders."""

__version__ = "0.1.0"

__all__ = ["SessionEngine", "LachesisConfig", "__version__"]


def __getattr__(name: str):
    if name == "SessionEngine":
        from lachesis.engine.session_engine import SessionEngine
        return SessionEngine
    if name == "LachesisConfig":
        from lachesis.engine.config import LachesisConfig
        return LachesisConfig
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
