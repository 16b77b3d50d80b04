"""
HOOKWATCH - Mock Data Generator
===============================
Synthetic payloads for webhook tests and the comprehensive-mode variants
(minimal, maximal, edge case).
"""

import random
import re
import string
import uuid
from datetime import datetime, timezone
from typing import Dict, Any

MAX_SAFE_INTEGER = 2 ** 53 - 1

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_.]*)\s*\}\}")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _short_id(length: int = 9) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


class MockDataGenerator:
    """Generates plausible user, form and event data."""

    def generate_user_data(self) -> Dict[str, Any]:
        return {
            "id": random.randint(0, 999999),
            "email": f"test.user.{uuid.uuid4().hex[:12]}@example.com",
            "name": f"Test User {random.randint(0, 999)}",
            "created_at": _now_iso(),
            "preferences": {
                "theme": "dark",
                "notifications": True,
                "language": "en",
            },
        }

    def generate_form_data(self, element_type: str) -> Dict[str, Any]:
        common = {
            "timestamp": _now_iso(),
            "form_id": f"form_{_short_id()}",
            "page_url": "https://example.com/test-page",
        }

        if element_type == "button":
            return {
                **common,
                "button_id": "test-button",
                "button_text": "Test Button",
                "click_count": 1,
            }
        if element_type == "form":
            return {
                **common,
                "form_data": {
                    "field1": "test value 1",
                    "field2": "test value 2",
                    "email": "test@example.com",
                    "checkbox": True,
                    "select": "option1",
                },
            }
        return common

    def generate_event_data(self, event_type: str) -> Dict[str, Any]:
        base = {
            "event_id": _short_id(),
            "timestamp": _now_iso(),
            "session_id": f"session_{_short_id()}",
            "user_agent": "Mozilla/5.0 (Test Browser) WebhookTester/1.0",
        }

        if event_type == "click":
            return {
                **base,
                "event_type": "click",
                "target_element": "button#test-btn",
                "coordinates": {"x": 123, "y": 456},
            }
        if event_type == "form_submit":
            return {
                **base,
                "event_type": "form_submit",
                "form_data": self.generate_form_data("form"),
            }
        if event_type == "page_view":
            return {
                **base,
                "event_type": "page_view",
                "page_title": "Test Page",
                "referrer": "https://example.com/previous",
            }
        return base

    def generate_custom_payload(self) -> Dict[str, Any]:
        return {
            **self.generate_user_data(),
            "event": self.generate_event_data("click"),
            "form": self.generate_form_data("form"),
            "metadata": {
                "test_mode": True,
                "generated_at": _now_iso(),
                "version": "1.0",
            },
        }

    # =========================================================================
    # PAYLOAD VARIANTS
    # =========================================================================

    def create_minimal_payload(self, base: Dict[str, Any]) -> Dict[str, Any]:
        """Top-level scalar fields only."""
        return {
            key: value for key, value in base.items()
            if isinstance(value, (str, int, float, bool))
        }

    def create_maximal_payload(self, base: Dict[str, Any]) -> Dict[str, Any]:
        return {
            **base,
            **self.generate_custom_payload(),
            "metadata": {
                "test_timestamp": _now_iso(),
                "test_mode": True,
                "additional_data": [
                    {"id": i, "value": f"test_value_{i}", "nested": {"level": 2, "data": f"nested_{i}"}}
                    for i in range(10)
                ],
            },
        }

    def create_edge_case_payload(self, base: Dict[str, Any]) -> Dict[str, Any]:
        return {
            **base,
            "null_value": None,
            "empty_string": "",
            "zero_value": 0,
            "false_value": False,
            "large_number": MAX_SAFE_INTEGER,
            "unicode_string": "🚀 Unicode test 测试 ñoño",
            "special_chars": "<>&\"'",
            "long_string": "x" * 1000,
            "deep_nested": self._deep_nested(5),
        }

    def _deep_nested(self, depth: int) -> Any:
        if depth <= 0:
            return "deep_value"
        return {"nested": self._deep_nested(depth - 1)}


def substitute_variables(data: Any, variables: Dict[str, Any]) -> Any:
    """
    Replace {{name}} placeholders in string values.

    A string that is exactly one placeholder takes the variable's value as-is
    (so numbers stay numbers); embedded placeholders are stringified. Unknown
    names are left untouched.
    """
    if isinstance(data, dict):
        return {key: substitute_variables(value, variables) for key, value in data.items()}
    if isinstance(data, list):
        return [substitute_variables(item, variables) for item in data]
    if not isinstance(data, str):
        return data

    whole = _PLACEHOLDER.fullmatch(data.strip())
    if whole and whole.group(1) in variables:
        return variables[whole.group(1)]

    def _replace(match):
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        return str(variables[name])

    return _PLACEHOLDER.sub(_replace, data)
