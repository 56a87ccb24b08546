from __future__ import annotations
import re

from lms_telemetry.client.dom import Host
from lms_telemetry.schemas.interaction import ClientInfo

UNKNOWN = 'Unknown'
UNKNOWN_VERSION = 'unknown'

# Order matters: Edge and Opera user agents also contain "Chrome/", and
# Chrome's contains "Safari/".
_BROWSERS: tuple[tuple[str, str, re.Pattern[str]], ...] = (
    ('Edge', 'Edg/', re.compile(r'Edg/(\d+\.\d+)')),
    ('Opera', 'OPR/', re.compile(r'OPR/(\d+\.\d+)')),
    ('Chrome', 'Chrome/', re.compile(r'Chrome/(\d+\.\d+)')),
    ('Firefox', 'Firefox/', re.compile(r'Firefox/(\d+\.\d+)')),
    ('Safari', 'Safari', re.compile(r'Version/(\d+\.\d+)')),
)

_WINDOWS_VERSIONS = {
    'Windows NT 10.0': '10/11',
    'Windows NT 6.3': '8.1',
    'Windows NT 6.2': '8',
    'Windows NT 6.1': '7',
}

_MOBILE = re.compile(r'iPhone|iPod|Android.*Mobile|webOS|BlackBerry|IEMobile|Opera Mini', re.IGNORECASE)


def detect_browser(ua: str) -> tuple[str, str]:
    for name, marker, pattern in _BROWSERS:
        if marker not in ua:
            continue
        if name == 'Chrome' and 'Chromium' in ua:
            continue
        if name == 'Safari' and 'Chrome' in ua:
            continue
        match = pattern.search(ua)
        return name, match.group(1) if match else UNKNOWN_VERSION
    return UNKNOWN, UNKNOWN_VERSION


def detect_os(ua: str) -> tuple[str, str]:
    if 'Windows' in ua:
        for marker, version in _WINDOWS_VERSIONS.items():
            if marker in ua:
                return 'Windows', version
        return 'Windows', UNKNOWN_VERSION
    # iPad/iPhone user agents say "like Mac OS X"; check them first
    if 'iPhone' in ua or 'iPad' in ua:
        match = re.search(r'OS (\d+_\d+)', ua)
        return 'iOS', match.group(1).replace('_', '.') if match else UNKNOWN_VERSION
    if 'Mac OS X' in ua:
        match = re.search(r'Mac OS X (\d+[._]\d+)', ua)
        return 'macOS', match.group(1).replace('_', '.') if match else UNKNOWN_VERSION
    if 'Android' in ua:
        match = re.search(r'Android (\d+\.?\d*)', ua)
        return 'Android', match.group(1) if match else UNKNOWN_VERSION
    if 'Linux' in ua:
        return 'Linux', UNKNOWN_VERSION
    return UNKNOWN, UNKNOWN_VERSION


def detect_device_type(ua: str) -> str:
    if 'iPad' in ua or ('Android' in ua and 'Mobile' not in ua):
        return 'tablet'
    if _MOBILE.search(ua):
        return 'mobile'
    return 'desktop'


def probe_client_info(
    user_agent: str,
    *,
    screen_width: int | None = None,
    screen_height: int | None = None,
    language: str | None = None,
    timezone: str | None = None,
) -> ClientInfo:
    """Browser, OS and device class from a user-agent string plus screen/locale facts."""
    browser_name, browser_version = detect_browser(user_agent or '')
    os_name, os_version = detect_os(user_agent or '')
    return ClientInfo(
        userAgent=user_agent,
        browserName=browser_name,
        browserVersion=browser_version,
        osName=os_name,
        osVersion=os_version,
        deviceType=detect_device_type(user_agent or ''),
        screenWidth=screen_width,
        screenHeight=screen_height,
        language=language,
        timezone=timezone,
    )


def probe_host(host: Host) -> ClientInfo:
    nav = host.navigator
    return probe_client_info(
        nav.user_agent,
        screen_width=nav.screen_width,
        screen_height=nav.screen_height,
        language=nav.language,
        timezone=nav.timezone,
    )
