"""표준 에러 스트림 + 선택적 로테이팅 파일 핸들러 로깅 설정."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flowrelay.utils.config import Config

LOG_FORMAT  = "%(asctime)s [%(levelname)-8s] %(name)-25s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(config: Config) -> logging.Logger:
    """flowrelay 로거에 콘솔(stderr) 핸들러와, 설정 시 파일 핸들러를 붙인다."""
    level_str    = config.get("logging.level", "INFO")
    log_dir      = config.get("logging.directory")
    max_bytes    = config.get("logging.max_bytes", 10_485_760)
    backup_count = config.get("logging.backup_count", 5)

    root = logging.getLogger("flowrelay")
    root.setLevel(getattr(logging, str(level_str).upper(), logging.INFO))

    # 재호출 시 핸들러 중복 방지
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    # 진단 메시지는 모두 에러 스트림으로
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path / "flowrelay.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    return root
