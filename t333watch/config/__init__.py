from t333watch.config.config import Config

__all__ = ["Config"]
