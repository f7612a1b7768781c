"""
编码质量预设

mov / mp4 使用 libx265，预设和 CRF 由质量名称决定。
"""

from dataclasses import dataclass, asdict
from typing import List, Dict, Any

DEFAULT_QUALITY_NAME = "default"


@dataclass(frozen=True)
class QualitySetting:
    """编码质量设置"""
    name: str
    preset: str
    crf: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


QUALITY_SETTINGS = {
    "default": QualitySetting(name="default", preset="slow", crf=22),
    "high": QualitySetting(name="high", preset="slower", crf=20),
    "fast": QualitySetting(name="fast", preset="medium", crf=23),
}


def _normalize(name: str) -> str:
    return (name or "").strip().lower()


def resolve_quality_setting(name: str) -> QualitySetting:
    """根据名称获取质量设置，未知名称回退到默认质量

    Args:
        name: 质量名称（不区分大小写）

    Returns:
        QualitySetting 实例
    """
    return QUALITY_SETTINGS.get(_normalize(name), QUALITY_SETTINGS[DEFAULT_QUALITY_NAME])


def is_valid_quality_name(name: str) -> bool:
    return _normalize(name) in QUALITY_SETTINGS


def available_quality_settings() -> List[QualitySetting]:
    """按固定顺序返回所有质量设置（用于展示）"""
    return [QUALITY_SETTINGS["default"], QUALITY_SETTINGS["high"], QUALITY_SETTINGS["fast"]]
