"""Localized user-visible notices."""

from typing import Dict

DEFAULT_LOCALE = "en"

NOTICES: Dict[str, Dict[str, str]] = {
    "en": {
        "empty_message": "Message cannot be empty!",
        "save_failed": "Failed to save chat history.",
        "send_failed": "Failed to send message. Please try again.",
        "delete_failed": "Failed to delete chat history.",
        "prediction_failed": "Prediction failed. Please try again.",
        "generic_failure": "Something went wrong. Please try again.",
        "delete_title": "Delete Chat",
        "delete_prompt": "Are you sure you want to delete all chat data?",
    },
    "ar": {
        "empty_message": "لا يمكن أن تكون الرسالة فارغة!",
        "save_failed": "خطأ، فشل في حفظ تاريخ الدردشة.",
        "send_failed": "خطأ، فشل في إرسال الرسالة. يرجى المحاولة مرة أخرى.",
        "delete_failed": "خطأ، فشل في حذف تاريخ الدردشة.",
        "prediction_failed": "فشل التنبؤ. يرجى المحاولة مرة أخرى.",
        "generic_failure": "حدث خطأ ما. يرجى المحاولة مرة أخرى.",
        "delete_title": "حذف الدردشة",
        "delete_prompt": "هل أنت متأكد أنك تريد حذف جميع بيانات الدردشة؟",
    },
}


def notice(key: str, locale: str = DEFAULT_LOCALE) -> str:
    """Return the notice ``key`` in ``locale``, falling back to English."""
    table = NOTICES.get(locale, NOTICES[DEFAULT_LOCALE])
    return table.get(key) or NOTICES[DEFAULT_LOCALE].get(key, NOTICES[DEFAULT_LOCALE]["generic_failure"])
