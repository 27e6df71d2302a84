"""Tolerant decoders for device ``detailed_value`` payloads.

Payloads are usually JSON objects but older gateways emitted loose text such as
``{"sysData":120,"diaData":80,"pulseData":"72"}`` with trailing junk. Every
parser returns a model whose fields are ``None`` when the key is absent or
cannot be coerced, so a missing vital is never confused with an explicit zero.
"""

from __future__ import annotations

import json
import math
import re
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

_KEY_VALUE_PATTERN = re.compile(r'"([A-Za-z0-9_]+)"\s*:\s*("(?:[^"\\]|\\.)*"|[^,}\s]+)')


def decode_payload(raw: Any) -> dict[str, Any]:
    """Decode a payload into a flat key/value mapping; never raises."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    text = str(raw).strip()
    if not text:
        return {}
    try:
        data = json.loads(text)
        # Some gateways double-encode the payload.
        if isinstance(data, str):
            data = json.loads(data)
    except ValueError:
        data = None
    if isinstance(data, dict):
        return data

    found: dict[str, Any] = {}
    for key, value in _KEY_VALUE_PATTERN.findall(text):
        if value.startswith('"'):
            value = value[1:-1]
        found.setdefault(key, value)
    return found


def coerce_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def coerce_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return int(value)
    number = coerce_float(value)
    return int(number) if number is not None else None


def coerce_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes"}:
            return True
        if lowered in {"false", "0", "no"}:
            return False
    return None


def coerce_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip().lower()
    return text or None


OptionalFloat = Annotated[Optional[float], BeforeValidator(coerce_float)]
OptionalInt = Annotated[Optional[int], BeforeValidator(coerce_int)]
OptionalBool = Annotated[Optional[bool], BeforeValidator(coerce_bool)]
OptionalText = Annotated[Optional[str], BeforeValidator(coerce_text)]


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


class BloodPressureValue(_Payload):
    sys: OptionalFloat = Field(default=None, alias="sysData")
    dia: OptionalFloat = Field(default=None, alias="diaData")
    hr: OptionalFloat = Field(default=None, alias="pulseData")
    arrhythmia_flag: OptionalInt = Field(default=None, alias="arrhythmia")
    ihb: OptionalBool = None

    @property
    def arrhythmia(self) -> Optional[int]:
        """Arrhythmia indicator, preferring the explicit field over ``ihb``."""
        if self.arrhythmia_flag is not None:
            return self.arrhythmia_flag
        if self.ihb is not None:
            return 1 if self.ihb else 0
        return None


class OximeterValue(_Payload):
    spo2: OptionalFloat = None
    pulse: OptionalFloat = Field(default=None, alias="pr")


class WeightValue(_Payload):
    weight: OptionalFloat = None
    height: OptionalFloat = None
    bmi: OptionalFloat = None


class GlucoseValue(_Payload):
    value: OptionalFloat = Field(default=None, alias="bloodGlucose")
    type: OptionalText = None

    @property
    def category(self) -> str:
        """``fasting``, ``post_meal`` or ``random``."""
        reading_type = self.type or ""
        if "fasting" in reading_type:
            return "fasting"
        if "post" in reading_type or "meal" in reading_type:
            return "post_meal"
        return "random"


def parse_bp(raw: Any) -> BloodPressureValue:
    return BloodPressureValue.model_validate(decode_payload(raw))


def parse_spo2(raw: Any) -> OximeterValue:
    return OximeterValue.model_validate(decode_payload(raw))


def parse_weight(raw: Any) -> WeightValue:
    return WeightValue.model_validate(decode_payload(raw))


def parse_glucose(raw: Any, entry_type: Optional[str] = None) -> GlucoseValue:
    """Parse a glucose payload; the reading type falls back to ``entry_type``."""
    data = dict(decode_payload(raw))
    if coerce_text(data.get("type")) is None:
        data["type"] = entry_type
    return GlucoseValue.model_validate(data)
