# caselookup/utils/playwright_utils.py
import os
import re
import logging
from typing import Any, Dict, List, Optional
import httpx
from playwright.async_api import Playwright, Browser, Page
from caselookup.core.config import AppSettings

logger = logging.getLogger(__name__)

BROWSER_LAUNCH_ARGS = ['--disable-blink-features=AutomationControlled', '--no-sandbox']

async def launch_browser(playwright_instance: Playwright) -> Browser:
    return await playwright_instance.chromium.launch(headless=True, args=BROWSER_LAUNCH_ARGS)

def context_options(user_agent: str) -> Dict[str, Any]:
    return {
        "user_agent": user_agent,
        "viewport": {"width": 1920, "height": 1080},
        "java_script_enabled": True,
    }

def _sanitize_filename(name: str, max_length: int = 50) -> str:
    name = re.sub(r'[^\w\-.]', '_', name or "")
    return name[:max_length]

async def safe_screenshot(page: Page, settings: AppSettings, filename_prefix: str, details: str = ""):
    screenshot_filename = f"debug_{filename_prefix}_{_sanitize_filename(details)}.png"
    screenshot_path = os.path.join(settings.DATA_DIRECTORY, "debug_screenshots", screenshot_filename)
    try:
        os.makedirs(os.path.dirname(screenshot_path), exist_ok=True)
        await page.screenshot(path=screenshot_path)
        logger.info(f"Debug screenshot saved: {screenshot_path}")
    except Exception as e:
        logger.error(f"Failed to save screenshot {screenshot_path}: {e}")

def cookies_to_jar(cookies: List[Dict[str, Any]]) -> httpx.Cookies:
    """Builds an httpx jar from Playwright-style cookie dicts (name, value, domain, path)."""
    jar = httpx.Cookies()
    for cookie in cookies or []:
        if not cookie.get("name"):
            continue
        jar.set(cookie["name"], cookie.get("value", ""), domain=cookie.get("domain", ""), path=cookie.get("path", "/"))
    return jar

def jar_to_cookies(jar: Optional[httpx.Cookies]) -> List[Dict[str, Any]]:
    if jar is None:
        return []
    return [
        {"name": c.name, "value": c.value, "domain": c.domain, "path": c.path}
        for c in jar.jar
    ]
