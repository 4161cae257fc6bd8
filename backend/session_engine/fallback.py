from __future__ import annotations

import hashlib

# Replies carry no urgency keywords so classification reflects the patient's own words.
_TEMPLATES = (
    "Hello, I'm {name}, your virtual health assistant. Thank you for telling me how you feel. "
    "Several common conditions could explain what you describe. Keep track of how things change over "
    "the next day or two, and please book a consultation with one of our healthcare providers if "
    "anything persists or gets worse.",
    "Hi there. I understand these symptoms are worrying. I can offer general guidance, but a proper "
    "evaluation by a clinician is the best way to understand what is going on. Would you like help "
    "arranging a consultation?",
    "{details}",
    "Hello, I'm {name}. What you're experiencing could have various causes. Some can be managed with "
    "self-care, while others need a professional opinion. I'd be happy to connect you with one of our "
    "doctors for a more thorough evaluation.",
)

_DETAILS_TEXT = (
    "Thank you for describing your symptoms in detail. They could be related to several conditions, and "
    "an examination by a healthcare professional is the best way to find the cause and the right treatment."
)
_DETAILS_IMAGES = (
    "Thank you for sharing those images along with your description. Visual information helps with "
    "assessment, and I'd recommend having this reviewed by a healthcare professional who can give you a "
    "proper diagnosis and treatment plan."
)


class FallbackResponder:
    def __init__(self, assistant_name: str = "Dr. Ava") -> None:
        self.assistant_name = assistant_name

    def reply(self, user_text: str, has_images: bool) -> str:
        digest = hashlib.sha1((user_text or "").strip().lower().encode("utf-8")).hexdigest()
        template = _TEMPLATES[int(digest[:8], 16) % len(_TEMPLATES)]
        if has_images:
            template = "{details}"
        return template.format(
            name=self.assistant_name,
            details=_DETAILS_IMAGES if has_images else _DETAILS_TEXT,
        )
