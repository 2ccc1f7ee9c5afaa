"""기본값 병합 기능을 갖춘 YAML 설정 로더."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml

from flowrelay.netflow.elements import NAT_EVENT_ELEMENTS

DEFAULTS: dict[str, Any] = {
    "bind":        {"host": "127.0.0.2", "port": 2055},
    "destination": {"host": "127.0.0.1", "port": 2055},
    "relay": {
        "max_packet_size":      1468,
        "template_resend_secs": 3,
    },
    "filter": {"elements": list(NAT_EVENT_ELEMENTS)},
    "logging": {
        "level":        "INFO",
        "directory":    None,
        "max_bytes":    10_485_760,
        "backup_count": 5,
    },
}


class ConfigError(ValueError):
    """설정 파일 또는 설정 값이 잘못됨."""


def _deep_merge(base: dict, override: dict) -> dict:
    """override를 base에 재귀적으로 병합하여 새 dict를 반환한다."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _set_nested(data: dict, dotted_key: str, value: Any) -> None:
    """점 표기법을 사용하여 중첩 dict에 값을 설정한다."""
    keys = dotted_key.split(".")
    current = data
    for key in keys[:-1]:
        if key not in current or not isinstance(current[key], dict):
            current[key] = {}
        current = current[key]
    current[keys[-1]] = value


class Config:
    """기본값 위에 YAML 파일 내용을 병합한 설정 컨테이너."""

    def __init__(self, data: dict[str, Any], config_path: str | Path | None = None) -> None:
        self._data = data
        self.config_path: str | None = str(config_path) if config_path else None

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> Config:
        """YAML 파일에서 설정을 로드한다.

        config_path가 None이면 기본값만 사용한다. 파일의 최상위에
        "flowrelay:" 키가 있으면 그 아래를 설정으로 본다.

        Raises:
            FileNotFoundError: 지정한 파일이 없는 경우.
            ConfigError: YAML 문법 오류 또는 최상위가 매핑이 아닌 경우.
        """
        defaults = copy.deepcopy(DEFAULTS)
        if config_path is None:
            return cls(defaults)

        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        try:
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ConfigError(f"{config_path}: top level must be a mapping")
        inner = data.get("flowrelay", data)
        if not isinstance(inner, dict):
            raise ConfigError(f"{config_path}: 'flowrelay' must be a mapping")

        return cls(_deep_merge(defaults, inner), config_path=config_path)

    def get(self, dotted_key: str, default: Any = None) -> Any:
        """점 표기법으로 값을 조회한다: 'bind.port' -> config['bind']['port']."""
        keys = dotted_key.split(".")
        current = self._data
        for key in keys:
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

    def set(self, dotted_key: str, value: Any) -> None:
        """점 표기법으로 값을 덮어쓴다 (명령행 인자 반영용)."""
        _set_nested(self._data, dotted_key, value)

    def section(self, key: str) -> dict[str, Any]:
        """주어진 최상위 키에 대한 하위 dict를 반환한다."""
        return self._data.get(key, {})

    @property
    def raw(self) -> dict[str, Any]:
        """설정 데이터의 원본 dict를 반환한다."""
        return self._data
