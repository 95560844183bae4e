from .config import MemoConfig, load_config

__all__ = ["MemoConfig", "load_config"]
