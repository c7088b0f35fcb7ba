"""
Cross-platform locations for application data
"""

import platform
from pathlib import Path

APP_NAME = "StackWarp"


def get_app_data_directory() -> Path:
    """Get application data directory"""
    system = platform.system()

    if system == "Windows":
        app_data = Path.home() / "AppData" / "Local" / APP_NAME
    elif system == "Darwin":
        app_data = Path.home() / "Library" / "Application Support" / APP_NAME
    else:
        app_data = Path.home() / ".local" / "share" / APP_NAME

    app_data.mkdir(parents=True, exist_ok=True)
    return app_data


def get_logs_directory() -> Path:
    """Get logs directory"""
    logs_dir = get_app_data_directory() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir
