"""Per-request harvest options."""

from dataclasses import dataclass, field, fields, replace
from typing import Any, Optional

from ..core.config import WAIT_UNTIL_STATES

SELECTOR_STATES = ("attached", "detached", "visible", "hidden")
SCREENSHOT_TYPES = ("png", "jpeg")

# camelCase names accepted in option mappings (batch files, dict options)
OPTION_ALIASES = {
    "baseDelay": "base_delay",
    "maxBackoff": "max_backoff",
    "retryOn": "retry_on",
    "waitUntil": "wait_until",
    "waitForLoadState": "wait_until",
    "waitForSelector": "wait_for_selector",
}
SCREENSHOT_ALIASES = {"fullPage": "full_page"}


def normalize_keys(
    data: dict[str, Any], target: type, aliases: Optional[dict[str, str]] = None
) -> dict[str, Any]:
    """Map aliases onto dataclass field names.

    Raises:
        ValueError: On unknown keys or a key given under two names.
    """
    aliases = aliases or {}
    known = {f.name for f in fields(target)}
    normalized: dict[str, Any] = {}
    unknown = []

    for key, value in data.items():
        name = aliases.get(key, key)
        if name not in known:
            unknown.append(key)
            continue
        if name in normalized:
            raise ValueError(f"{target.__name__} option {name!r} given more than once")
        normalized[name] = value

    if unknown:
        raise ValueError(
            f"Unknown {target.__name__} option(s): {', '.join(sorted(unknown))}. "
            f"Available: {', '.join(sorted(known))}"
        )
    return normalized


@dataclass
class WaitForSelectorOptions:
    """Explicit selector wait after navigation.

    When `selector` is None the request's root selector is awaited.
    """

    selector: Optional[str] = None
    state: str = "visible"
    timeout: Optional[float] = None  # Falls back to the request timeout


@dataclass
class ScreenshotOptions:
    """Screenshot captured around extraction."""

    path: Optional[str] = None
    type: str = "png"
    full_page: bool = False
    when: str = "after"  # "before" or "after" extraction


@dataclass
class HarvestOptions:
    """Options for a single harvest request."""

    # Retry
    retries: int = 0
    backoff: str = "exponential"
    base_delay: float = 1.0
    max_backoff: float = 10.0
    retry_on: Optional[list[str]] = None

    # Navigation
    wait_until: str = "domcontentloaded"
    wait_for_selector: Optional[WaitForSelectorOptions] = None
    timeout: Optional[float] = None  # Falls back to the engine timeout

    # Side effects
    screenshot: Optional[ScreenshotOptions] = None

    def __post_init__(self) -> None:
        if self.wait_until not in WAIT_UNTIL_STATES:
            raise ValueError(
                f"wait_until must be one of {', '.join(WAIT_UNTIL_STATES)}, got {self.wait_until}"
            )
        if isinstance(self.wait_for_selector, dict):
            self.wait_for_selector = WaitForSelectorOptions(
                **normalize_keys(self.wait_for_selector, WaitForSelectorOptions)
            )
        if isinstance(self.screenshot, dict):
            self.screenshot = ScreenshotOptions(
                **normalize_keys(self.screenshot, ScreenshotOptions, SCREENSHOT_ALIASES)
            )
        if self.wait_for_selector and self.wait_for_selector.state not in SELECTOR_STATES:
            raise ValueError(f"wait_for_selector.state must be one of {', '.join(SELECTOR_STATES)}")
        if self.screenshot:
            if self.screenshot.type not in SCREENSHOT_TYPES:
                raise ValueError(f"screenshot.type must be one of {', '.join(SCREENSHOT_TYPES)}")
            if self.screenshot.when not in ("before", "after"):
                raise ValueError("screenshot.when must be 'before' or 'after'")

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "HarvestOptions":
        """Build options from a mapping.

        Accepts field names and their camelCase aliases (`retryOn`,
        `maxBackoff`, `waitForLoadState`, ...). Durations are seconds.

        Raises:
            ValueError: On unknown keys.
        """
        if not data:
            return cls()
        return cls(**normalize_keys(data, cls, OPTION_ALIASES))

    def merged(self, **overrides: Any) -> "HarvestOptions":
        """Copy with the given fields (or their aliases) replaced."""
        return replace(self, **normalize_keys(overrides, HarvestOptions, OPTION_ALIASES))


@dataclass
class BatchItem:
    """One entry of a batch run."""

    url: str
    selector: str
    schema: Any
    options: HarvestOptions = field(default_factory=HarvestOptions)

    @classmethod
    def coerce(cls, item: "BatchItem | dict[str, Any]") -> "BatchItem":
        if isinstance(item, BatchItem):
            return item
        options = item.get("options")
        if not isinstance(options, HarvestOptions):
            options = HarvestOptions.from_dict(options)
        return cls(
            url=item["url"],
            selector=item["selector"],
            schema=item["schema"],
            options=options,
        )
