"""
Localized notification and CLI messages (English and Chinese).

Tenants pick their language in settings; unknown languages fall back to
English.
"""

from typing import Optional

SUPPORTED_LANGUAGES = frozenset({"en", "zh"})
DEFAULT_LANGUAGE = "en"

# {message_key: {language_code: template}}
TRANSLATIONS: dict[str, dict[str, str]] = {
    "notify.server_down.title": {
        "en": "Server down alert",
        "zh": "服务器宕机通知",
    },
    "notify.server_down.line": {
        "en": "Server: {name} | Checked at: {time}",
        "zh": "服务器: {name} | 检测时间: {time}",
    },
    "notify.domain_expiring.title": {
        "en": "Domain expiry alert",
        "zh": "域名到期通知",
    },
    "notify.domain_expiring.line": {
        "en": "Domain: {name} | Expires: {date}",
        "zh": "域名: {name} | 到期时间: {date}",
    },
    "notify.test.title": {
        "en": "Test notification",
        "zh": "测试通知",
    },
    "notify.test.body": {
        "en": "Notification channels are configured correctly.",
        "zh": "通知渠道配置正确。",
    },
    "check.servers.summary": {
        "en": "Checked {total} servers: {success} up, {failed} down",
        "zh": "已检查 {total} 台服务器: {success} 台在线, {failed} 台离线",
    },
    "check.domains.summary": {
        "en": "Checked {total} domains: {success} ok, {failed} failed, {expiring} expiring",
        "zh": "已检查 {total} 个域名: {success} 个成功, {failed} 个失败, {expiring} 个即将到期",
    },
}


def get_message(key: str, language: Optional[str] = None, **kwargs) -> str:
    """
    Get a translated message by key.

    Returns:
        The formatted message; the key itself when unknown. Missing format
        arguments leave the template unformatted.
    """
    if language is None or language not in SUPPORTED_LANGUAGES:
        language = DEFAULT_LANGUAGE

    translations = TRANSLATIONS.get(key)
    if translations is None:
        return key

    template = translations.get(language) or translations.get(DEFAULT_LANGUAGE, key)
    if not kwargs:
        return template
    try:
        return template.format(**kwargs)
    except (KeyError, IndexError):
        return template


def get_all_message_keys() -> set[str]:
    return set(TRANSLATIONS.keys())


def has_translation(key: str, language: str) -> bool:
    return language in TRANSLATIONS.get(key, {})


def get_missing_translations(language: str) -> set[str]:
    return {key for key, translations in TRANSLATIONS.items() if language not in translations}


def validate_translations() -> dict[str, set[str]]:
    """Map each supported language to its missing keys."""
    return {language: get_missing_translations(language) for language in SUPPORTED_LANGUAGES}
