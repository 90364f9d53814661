from wins_column.config.settings import Settings, settings

__all__ = ["Settings", "settings"]
