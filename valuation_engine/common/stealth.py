"""Request shaping for browser sessions that must look like ordinary visitors.

One strategy only: stock Playwright Chromium hardened by hand (launch
flags, context fingerprint, init script, tracker blocking, human-paced
interaction). No third-party stealth plugin is layered on top.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field

# Realistic desktop Chrome user agents for rotation
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
    "--disable-features=IsolateOrigins,site-per-process",
    "--disable-site-isolation-trials",
]

# Hides the automation flag and makes the notifications permission query
# answer like a regular browser.
INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
const originalQuery = window.navigator.permissions.query.bind(window.navigator.permissions);
window.navigator.permissions.query = (parameters) =>
  parameters.name === 'notifications'
    ? Promise.resolve({ state: Notification.permission })
    : originalQuery(parameters);
"""

BLOCKED_URL_PATTERNS = [
    "**/*google-analytics*",
    "**/*googletagmanager*",
    "**/*facebook*",
    "**/*doubleclick*",
]

BLOCK_MARKERS = ("Access Denied", "Blocked")


@dataclass
class StealthPolicy:
    """Fingerprint and pacing settings for a browser-backed source."""

    user_agents: list[str] = field(default_factory=lambda: list(USER_AGENTS))
    viewport: dict[str, int] = field(
        default_factory=lambda: {"width": 1920, "height": 1080}
    )
    locale: str = "it-IT"
    timezone_id: str = "Europe/Rome"
    launch_args: list[str] = field(default_factory=lambda: list(LAUNCH_ARGS))
    init_script: str = INIT_SCRIPT
    blocked_url_patterns: list[str] = field(
        default_factory=lambda: list(BLOCKED_URL_PATTERNS)
    )
    # Scales every human_delay(); tests set it to 0
    delay_scale: float = 1.0

    def random_user_agent(self) -> str:
        return random.choice(self.user_agents)

    def extra_headers(self) -> dict[str, str]:
        return {
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
            "Accept-Language": "it-IT,it;q=0.9,en-US;q=0.8,en;q=0.7",
            "Accept-Encoding": "gzip, deflate, br",
            "Cache-Control": "max-age=0",
            "Sec-Ch-Ua": '"Not_A Brand";v="8", "Chromium";v="120", "Google Chrome";v="120"',
            "Sec-Ch-Ua-Mobile": "?0",
            "Sec-Ch-Ua-Platform": '"Windows"',
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "none",
            "Sec-Fetch-User": "?1",
            "Upgrade-Insecure-Requests": "1",
        }

    def context_options(self) -> dict:
        """Keyword arguments for ``browser.new_context()``."""
        return {
            "user_agent": self.random_user_agent(),
            "viewport": dict(self.viewport),
            "locale": self.locale,
            "timezone_id": self.timezone_id,
            "extra_http_headers": self.extra_headers(),
        }

    def human_delay(self, min_seconds: float, max_seconds: float) -> None:
        """Sleep a random duration in [min_seconds, max_seconds]."""
        delay = random.uniform(min_seconds, max_seconds) * self.delay_scale
        if delay > 0:
            time.sleep(delay)

    @staticmethod
    def looks_blocked(title: str) -> bool:
        return any(marker in (title or "") for marker in BLOCK_MARKERS)
