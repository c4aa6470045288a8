"""
Centralized Logging Configuration for deploy-guard

Provides structured logging with:
- JSON format for log aggregation (LOG_FORMAT=json)
- Colored console output for CI job logs
- Log levels based on environment
"""

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Optional
import json

from deploy_guard.secret_masking import mask_string


# ============================================================================
# Custom Formatters
# ============================================================================

class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output"""
    
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'
    
    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color
    
    def format(self, record):
        color = self.COLORS.get(record.levelname, self.RESET) if self.use_color else ""
        reset = self.RESET if self.use_color else ""
        
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')
        
        if record.levelname in ['ERROR', 'CRITICAL']:
            prefix = f"{color}[{record.levelname}]{reset}"
        else:
            prefix = f"{color}[{record.name}]{reset}"
        
        message = f"{timestamp} {prefix} {mask_string(record.getMessage())}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


class JSONFormatter(logging.Formatter):
    """JSON formatter for log aggregation"""
    
    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": mask_string(record.getMessage()),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        
        return json.dumps(log_entry)


# ============================================================================
# Logger Setup
# ============================================================================

def setup_logging(
    level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Configure the root logger with appropriate handlers"""
    
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_format = log_format or os.getenv("LOG_FORMAT", "console")
    log_file = log_file or os.getenv("LOG_FILE")
    
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))
    root_logger.handlers.clear()
    
    # CI log viewers render ANSI colors; plain files do not
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level, logging.INFO))
    
    if log_format == "json":
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(ColoredFormatter(use_color=not os.getenv("NO_COLOR")))
    
    root_logger.addHandler(console_handler)
    
    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5
        )
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)
    
    return root_logger

