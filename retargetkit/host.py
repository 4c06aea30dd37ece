"""
Host adapter: the services the surrounding application provides.

Library code never talks to a UI or a file picker directly. It is handed
a HostAdapter and calls show_notification / open_file_dialog / read_file /
save_file on it. LoggingHost is the default for scripts and tests.
"""

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

NOTIFICATION_LEVELS = ('info', 'success', 'warning', 'error')


class HostAdapter:
    """Interface implemented by the application embedding retargetkit."""

    def show_notification(self, message: str, level: str = 'info', duration: Optional[int] = None):
        raise NotImplementedError

    def open_file_dialog(self, filters: Optional[Sequence[str]] = None) -> Optional[str]:
        raise NotImplementedError

    def read_file(self, path: Union[str, Path]) -> bytes:
        raise NotImplementedError

    def save_file(self, path: Union[str, Path], data: bytes) -> Path:
        raise NotImplementedError


class LoggingHost(HostAdapter):
    """
    Host that logs notifications and uses the local filesystem.

    Notifications are also kept in ``notifications`` as (level, message).
    There is no file dialog; open_file_dialog returns ``default_path``.
    """

    def __init__(self, default_path: Optional[str] = None):
        self.default_path = default_path
        self.notifications: List[Tuple[str, str]] = []

    def show_notification(self, message: str, level: str = 'info', duration: Optional[int] = None):
        if level not in NOTIFICATION_LEVELS:
            level = 'info'
        self.notifications.append((level, message))
        if level == 'error':
            logger.error(message)
        elif level == 'warning':
            logger.warning(message)
        else:
            logger.info(message)

    def open_file_dialog(self, filters: Optional[Sequence[str]] = None) -> Optional[str]:
        return self.default_path

    def read_file(self, path: Union[str, Path]) -> bytes:
        return Path(path).read_bytes()

    def save_file(self, path: Union[str, Path], data: bytes) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path
