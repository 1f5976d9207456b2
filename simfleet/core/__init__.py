from .asyncio_utils import cancel_task, create_logged_task
from .config_manager import ConfigManager, get_config_manager
from .logging_config import configure_logging
from .logging_utils import get_module_logger
from .monitor_config import MonitorConfig
from .operation_timer import OperationTimer

__all__ = [
    'cancel_task',
    'create_logged_task',
    'ConfigManager',
    'get_config_manager',
    'configure_logging',
    'get_module_logger',
    'MonitorConfig',
    'OperationTimer',
]
