"""
Canned support replies.

WHAT: Keyword-matched answers for the support chat peer
WHY: Visitors get an immediate acknowledgement before a human picks the thread up
HOW: Ordered (pattern, template) rules; first match wins, generic reply otherwise
"""

import re

SUPPORT_EMAIL = "support@reride.com"

_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\b(hello|hi|hey)\b"), "Hello {user_name}! How can I help you today?"),
    (
        re.compile(r"price|cost"),
        "Our prices vary based on the vehicle. Could you tell me which vehicle you're interested in?",
    ),
    (
        re.compile(r"contact|phone|email"),
        f"You can reach us at {SUPPORT_EMAIL}. Our support team is available 24/7!",
    ),
    (
        re.compile(r"help|support"),
        "I'm here to help! You can ask me about vehicles, pricing, registration, "
        "or any other questions. What would you like to know?",
    ),
    (re.compile(r"thank"), "You're welcome! Is there anything else I can help you with?"),
]

_DEFAULT_REPLY = (
    "Thank you for your message, {user_name}! Our support team will get back to you shortly. "
    "In the meantime, feel free to ask me any questions about our vehicles or services."
)


def generate_bot_response(text: str, user_name: str = "Guest") -> str:
    """Pick the canned reply for a visitor message."""
    lowered = text.lower()
    for pattern, template in _RULES:
        if pattern.search(lowered):
            return template.format(user_name=user_name)
    return _DEFAULT_REPLY.format(user_name=user_name)
