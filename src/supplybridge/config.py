from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple
from urllib.parse import urlsplit

from .errors import ConfigError

DEFAULT_PORT = "/dev/ttyACM0"
DEFAULT_URL = "http://localhost:8428/api/v1/import/prometheus"
_BOOL_WORDS = {"true": True, "yes": True, "on": True, "1": True, "false": False, "no": False, "off": False, "0": False}


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


@dataclass(frozen=True)
class LabelSet:
    pairs: Tuple[Tuple[str, str], ...] = ()

    def render(self) -> str:
        if not self.pairs:
            return ""
        body = ",".join(f'{key}="{_escape_label_value(value)}"' for key, value in self.pairs)
        return "{" + body + "}"

    def __bool__(self) -> bool:
        return bool(self.pairs)


def parse_labels(items: Iterable[str]) -> LabelSet:
    """
    Turn ``key=value`` declarations into an ordered :class:`LabelSet`.

    The value may itself contain ``=``; only the first one splits.
    """
    pairs = []
    for item in items:
        if "=" not in item:
            raise ConfigError(f"Label '{item}' must use key=value syntax")
        key, value = item.split("=", 1)
        key = key.strip()
        if not key:
            raise ConfigError(f"Label '{item}' has an empty key")
        pairs.append((key, value))
    return LabelSet(tuple(pairs))


@dataclass
class BridgeSettings:
    port: str = DEFAULT_PORT
    baudrate: int = 115200
    url: str = DEFAULT_URL
    delay: float = 5.0  # steady-state flush interval (seconds)
    initial_delay: float = 2.0
    http_timeout: float = 5.0
    min_idle: float = 0.5  # read timeout and frame clock limit (seconds)
    backoff: float = 5.0
    verbose: bool = False
    labels: LabelSet = field(default_factory=LabelSet)

    def validate(self) -> "BridgeSettings":
        if not self.port:
            raise ConfigError("port may not be empty")
        if self.baudrate <= 0:
            raise ConfigError(f"baudrate must be positive, got {self.baudrate}")
        for name in ("delay", "initial_delay", "http_timeout", "min_idle", "backoff"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        try:
            scheme = urlsplit(self.url).scheme.lower()
        except ValueError as exc:
            raise ConfigError(f"url is malformed: {exc}") from exc
        if scheme not in {"http", "https"}:
            raise ConfigError(f"url must be http or https, got '{self.url}'")
        return self


def _load_json(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a JSON object")
    return data


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def load_settings(
    path: Optional[Path | str] = None,
    overrides: Sequence[str] | None = None,
    base: Optional[Dict[str, Any]] = None,
) -> BridgeSettings:
    """
    Build :class:`BridgeSettings` from an optional JSON file and overrides.

    Precedence, lowest first: ``base`` (usually the CLI flags), the JSON
    file, then ``key=value`` overrides such as ``["delay=10", "min_idle=0.2"]``.
    Labels may be given as a list of ``key=value`` strings or as a mapping.
    """
    data: Dict[str, Any] = dict(base or {})
    if path is not None:
        data = _merge(data, _load_json(Path(path)))
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        override_data[key] = raw_value
    merged = _merge(data, override_data)

    known = set(BridgeSettings.__dataclass_fields__)
    unknown = sorted(set(merged) - known)
    if unknown:
        raise ConfigError(f"Unknown setting(s): {', '.join(unknown)}")

    try:
        settings = BridgeSettings(
            port=str(merged.get("port", DEFAULT_PORT)),
            baudrate=int(merged.get("baudrate", 115200)),
            url=str(merged.get("url", DEFAULT_URL)),
            delay=float(merged.get("delay", 5.0)),
            initial_delay=float(merged.get("initial_delay", 2.0)),
            http_timeout=float(merged.get("http_timeout", 5.0)),
            min_idle=float(merged.get("min_idle", 0.5)),
            backoff=float(merged.get("backoff", 5.0)),
            verbose=bool(merged.get("verbose", False)),
            labels=_coerce_labels(merged.get("labels")),
        )
    except ConfigError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigError(str(exc)) from exc
    return settings.validate()


def _coerce_labels(raw: Any) -> LabelSet:
    if raw is None:
        return LabelSet()
    if isinstance(raw, LabelSet):
        return raw
    if isinstance(raw, dict):
        return LabelSet(tuple((str(key), str(value)) for key, value in raw.items()))
    if isinstance(raw, str):
        return parse_labels([raw])
    return parse_labels(str(item) for item in raw)


def _parse_override(item: str) -> Tuple[str, Any]:
    key, sep, raw_value = item.partition("=")
    key = key.strip()
    if not sep:
        raise ConfigError(f"Override '{item}' must use key=value syntax")
    if not key:
        raise ConfigError("Override key may not be empty")
    return key, _coerce_value(key, raw_value.strip())


def _coerce_value(key: str, raw: str) -> Any:
    """
    Interpret an override value for one settings field.

    Numeric fields stay strings here; ``load_settings`` converts them along
    with the values from the file and the CLI.
    """
    if key == "verbose":
        try:
            return _BOOL_WORDS[raw.lower()]
        except KeyError:
            raise ConfigError(f"verbose must be true or false, got '{raw}'") from None
    if key == "labels" and raw.startswith(("[", "{")):
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"labels override is not valid JSON: {exc}") from exc
    return raw
