"""
Notification text lookup.

The host app registers its translator with register_translation_function().
Until then (or when it is cleared) the built-in English table is used, so
notification content never depends on localization being initialized.
"""

from typing import Callable, Dict, Optional, Union

Params = Dict[str, Union[str, int]]
TranslateFunction = Callable[[str, Optional[Params]], str]

FALLBACK_TEXTS: Dict[str, str] = {
    "departure.notification.title": "Time to Leave",
    "departure.notification.withTransit": "Take {line} from {stop} (→ {direction})",
    "departure.notification.departureTime": "Departure: {time}",
    "departure.notification.leaveIn": "Leave in {minutes} min",
    "departure.notification.leaveNow": "Leave now!",
    "departure.notification.clustered": "{count} games at nearby venues",
}

_translate_fn: Optional[TranslateFunction] = None


def register_translation_function(fn: Optional[TranslateFunction]) -> None:
    """Install the host translator; pass None to go back to the fallback table."""
    global _translate_fn
    _translate_fn = fn


def fallback_translation(key: str, params: Optional[Params] = None) -> str:
    text = FALLBACK_TEXTS.get(key, key)
    for name, value in (params or {}).items():
        text = text.replace(f"{{{name}}}", str(value))
    return text


def translate(key: str, params: Optional[Params] = None) -> str:
    if _translate_fn is not None:
        return _translate_fn(key, params)
    return fallback_translation(key, params)
